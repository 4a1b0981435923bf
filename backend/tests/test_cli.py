from datetime import datetime

from posledger.models import InventoryItem, Product, RecipeLine
from posledger.services import sales_service


def test_seed_demo_is_idempotent(runner, db_session):
    result = runner.invoke(args=["system", "seed-demo"])
    assert result.exit_code == 0, result.output
    assert "Demo data ready" in result.output

    again = runner.invoke(args=["system", "seed-demo"])
    assert again.exit_code == 0, again.output

    assert db_session.query(Product).count() == 2
    assert db_session.query(InventoryItem).count() == 1
    assert db_session.query(RecipeLine).count() == 1


def test_init_db(runner, db_session):
    result = runner.invoke(args=["system", "init-db"])
    assert result.exit_code == 0
    assert "schema ready" in result.output


def test_reports_show_and_finalize(runner, catalog):
    sales_service.settle_sale(
        [{"product_id": "gift-card", "quantity": 1, "unit_price_cents": 1000, "name": None}],
        "none", "cash",
        occurred_at=datetime(2024, 5, 1, 9, 0),
    )

    shown = runner.invoke(args=["reports", "show", "2024-05-01"])
    assert shown.exit_code == 0, shown.output
    assert "[OPEN]" in shown.output
    assert "Gift Card" in shown.output

    finalized = runner.invoke(args=["reports", "finalize", "2024-05-01", "--actor", "manager"])
    assert finalized.exit_code == 0, finalized.output
    assert "[FINALIZED]" in finalized.output
    assert "by manager" in finalized.output

    bad = runner.invoke(args=["reports", "show", "May 1"])
    assert bad.exit_code != 0

    future = runner.invoke(args=["reports", "finalize", "2999-01-01"])
    assert future.exit_code != 0
    assert "has not started" in future.output


def test_reports_retry_pending(runner, db_session):
    result = runner.invoke(args=["reports", "retry-pending"])
    assert result.exit_code == 0
    assert "Retried 0" in result.output


def test_inventory_commands(runner, espresso_recipe, coffee_beans):
    sales_service.settle_sale(
        [{"product_id": "espresso", "quantity": 30, "unit_price_cents": 8000, "name": None}],
        "none", "cash",
    )

    verify = runner.invoke(args=["inventory", "verify"])
    assert verify.exit_code == 0, verify.output
    assert "PASS item" in verify.output

    history = runner.invoke(args=["inventory", "history", str(coffee_beans.id), "--limit", "5"])
    assert history.exit_code == 0, history.output
    assert "sale" in history.output
    assert "purchase" in history.output

    low = runner.invoke(args=["inventory", "low-stock"])
    assert low.exit_code == 0
    assert "Coffee Beans" in low.output

    missing = runner.invoke(args=["inventory", "verify", "--item-id", "424242"])
    assert missing.exit_code != 0
