"""
Pytest fixtures for posledger backend tests.

Provides test database setup, a small coffee-shop catalog, and test client.
"""

import pytest
from posledger import create_app
from posledger.extensions import db
from posledger.models import Product, RecipeLine
from posledger.services import inventory_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'TAX_RATE_BPS': 0,
        'REPORT_TIMEZONE': 'UTC',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """Create CLI runner."""
    return app.test_cli_runner()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema; Core deletes bypass the append-only guards
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def coffee_beans(db_session):
    """Coffee beans in grams: 1000 g on hand, reorder at 500 g, 0.35 cents/g."""
    return inventory_service.create_inventory_item(
        name="Coffee Beans",
        unit="g",
        reorder_level=500,
        unit_cost_cents="0.35",
        opening_quantity=1000,
        actor="test",
    )


@pytest.fixture(scope='function')
def milk(db_session):
    """Milk in millilitres: 2000 ml on hand, no cost recorded."""
    return inventory_service.create_inventory_item(
        name="Milk",
        unit="ml",
        reorder_level=0,
        opening_quantity=2000,
    )


@pytest.fixture(scope='function')
def catalog(db_session):
    """Espresso, Latte and Gift Card products."""
    products = [
        Product(id="espresso", name="Espresso", category="Coffee", price_cents=8000),
        Product(id="latte", name="Latte", category="Coffee", price_cents=12000),
        Product(id="gift-card", name="Gift Card", category="Other", price_cents=50000),
    ]
    db_session.add_all(products)
    db_session.commit()
    return {p.id: p for p in products}


@pytest.fixture(scope='function')
def espresso_recipe(db_session, catalog, coffee_beans):
    """Espresso uses 18 g of beans per cup."""
    line = RecipeLine(product_id="espresso", inventory_item_id=coffee_beans.id, quantity_per_unit=18, unit="g")
    db_session.add(line)
    db_session.commit()
    return line


@pytest.fixture(scope='function')
def latte_recipe(db_session, catalog, coffee_beans, milk):
    """Latte uses 18 g of beans and 150 ml of milk per cup."""
    lines = [
        RecipeLine(product_id="latte", inventory_item_id=coffee_beans.id, quantity_per_unit=18, unit="g"),
        RecipeLine(product_id="latte", inventory_item_id=milk.id, quantity_per_unit=150, unit="ml"),
    ]
    db_session.add_all(lines)
    db_session.commit()
    return lines
