# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/posledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Demo catalog: espresso (18 g beans per cup), coffee beans, gift card.
#
# Daily reports:
# - python -m flask reports show 2024-05-01
#   Print the X-Read (or Z-Read once finalized) for a business date.
# - python -m flask reports finalize 2024-05-01 --actor manager
#   Z-Read: close the day. Safe to repeat.
# - python -m flask reports retry-pending
#   Re-run aggregation for sales flagged aggregation_failed.
#
# Inventory ledger:
# - python -m flask inventory verify [--item-id 1]
#   Replay movement chains and report any break.
# - python -m flask inventory history 1 --limit 20
#   Newest movements of an item.
# - python -m flask inventory low-stock
#   Items at or below their reorder level.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import InventoryItem, Product, RecipeLine
from .numbers import format_quantity
from .services import inventory_service, report_service
from .services.inventory_service import UnknownItem
from .services.report_service import ReportDateInFuture
from .time_utils import parse_report_date


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database schema ready.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the append-only sales and stock
    history.
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for sample data.")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create a small demo catalog (idempotent)."""
    db.create_all()

    products = [
        ("espresso", "Espresso", "Coffee", 8000),
        ("gift-card", "Gift Card", "Other", 50000),
    ]
    for product_id, name, category, price_cents in products:
        if db.session.get(Product, product_id) is None:
            db.session.add(Product(id=product_id, name=name, category=category, price_cents=price_cents))
            click.echo(f"PASS Created product: {name}")
    db.session.commit()

    beans = db.session.query(InventoryItem).filter_by(name="Coffee Beans").first()
    if beans is None:
        beans = inventory_service.create_inventory_item(
            name="Coffee Beans",
            unit="g",
            reorder_level=500,
            unit_cost_cents="0.35",
            opening_quantity=5000,
            actor="seed",
        )
        click.echo(f"PASS Created inventory item: Coffee Beans (ID: {beans.id}, 5000 g)")

    exists = db.session.query(RecipeLine).filter_by(product_id="espresso", inventory_item_id=beans.id).first()
    if exists is None:
        db.session.add(RecipeLine(
            product_id="espresso",
            inventory_item_id=beans.id,
            quantity_per_unit=18,
            unit="g",
        ))
        db.session.commit()
        click.echo("PASS Espresso recipe: 18 g Coffee Beans per cup")

    click.echo("DONE Demo data ready.")


@click.group('reports')
def reports_group():
    """Daily report (X-Read / Z-Read) commands."""


def _echo_report(snapshot):
    data = snapshot.to_dict()
    click.echo(f"Report {data['report_date']} [{data['status']}]")
    click.echo(f"  Transactions: {data['transaction_count']}")
    click.echo(f"  Total sales:  {data['total_sales_cents']} cents")
    click.echo(f"  Items sold:   {data['items_sold']}")
    click.echo(f"  Discounts:    {data['discount_cents']} cents")
    click.echo(f"  Tax:          {data['tax_cents']} cents (exempt sales {data['tax_exempt_cents']})")
    for method, cents in data["payment_totals"].items():
        click.echo(f"  {method:<12}{cents} cents")
    for item in data["items"]:
        click.echo(f"    {item['product_name']:<24} x{item['quantity_sold']:<5} {item['revenue_cents']} cents")
    if data.get("finalized_at"):
        click.echo(f"  Finalized at {data['finalized_at']} by {data['finalized_by'] or 'system'}")


@reports_group.command('show')
@click.argument('report_date')
@with_appcontext
def show_report(report_date):
    """Print the report of a business date (YYYY-MM-DD)."""
    try:
        day = parse_report_date(report_date)
    except ValueError:
        raise click.BadParameter("expected YYYY-MM-DD", param_hint="REPORT_DATE")
    _echo_report(report_service.get_report(day))


@reports_group.command('finalize')
@click.argument('report_date')
@click.option('--actor', default=None, help='Who closes the day')
@with_appcontext
def finalize_report(report_date, actor):
    """Z-Read: finalize a business date."""
    try:
        day = parse_report_date(report_date)
    except ValueError:
        raise click.BadParameter("expected YYYY-MM-DD", param_hint="REPORT_DATE")
    try:
        snapshot = report_service.finalize_report(day, actor=actor)
    except ReportDateInFuture as e:
        raise click.ClickException(str(e))
    click.echo("PASS Report finalized.")
    _echo_report(snapshot)


@reports_group.command('retry-pending')
@with_appcontext
def retry_pending():
    """Retry aggregation for sales that could not be added to their report."""
    summary = report_service.retry_pending_aggregations()
    click.echo(
        f"Retried {summary['retried']}: {summary['recorded']} recorded, "
        f"{summary['finalized']} day already finalized, {summary['failed']} still failing"
    )


@click.group('inventory')
def inventory_group():
    """Inventory ledger inspection commands."""


@inventory_group.command('verify')
@click.option('--item-id', type=int, default=None, help='Only verify this item')
@with_appcontext
def verify_inventory(item_id):
    """Replay movement chains and compare with stored balances."""
    if item_id is not None:
        item_ids = [item_id]
    else:
        item_ids = [row.id for row in db.session.query(InventoryItem.id).order_by(InventoryItem.id)]

    broken = 0
    for current_id in item_ids:
        try:
            result = inventory_service.verify_chain(current_id)
        except UnknownItem as e:
            raise click.ClickException(str(e))
        if result["consistent"]:
            click.echo(
                f"PASS item {current_id}: {result['movement_count']} movements, "
                f"balance {result['current_balance']}"
            )
            continue
        broken += 1
        click.echo(
            f"FAIL item {current_id}: replayed {result['replayed_balance']} "
            f"vs stored {result['current_balance']}"
        )
        for problem in result["breaks"]:
            click.echo(f"    movement {problem['movement_id']}: {problem['problem']}")

    if broken:
        raise click.ClickException(f"{broken} item(s) with inconsistent ledgers")


@inventory_group.command('history')
@click.argument('item_id', type=int)
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def item_history(item_id, limit):
    """Newest stock movements of an item."""
    try:
        history = inventory_service.history_for(item_id, limit)
    except UnknownItem as e:
        raise click.ClickException(str(e))
    for movement in history:
        click.echo(
            f"#{movement.id:<6} {movement.kind:<10} {format_quantity(movement.quantity_delta):>12} "
            f"{format_quantity(movement.quantity_before)} -> {format_quantity(movement.quantity_after)}"
            f"  {movement.note or ''}"
        )


@inventory_group.command('low-stock')
@with_appcontext
def low_stock():
    """Items at or below their reorder level."""
    items = inventory_service.low_stock_items()
    if not items:
        click.echo("PASS No items at or below reorder level.")
        return
    for item in items:
        click.echo(
            f"WARN {item.name}: {format_quantity(item.quantity_on_hand)} {item.unit} "
            f"(reorder at {format_quantity(item.reorder_level)})"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(reports_group)
    app.cli.add_command(inventory_group)
