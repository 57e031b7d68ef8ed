# Overview: Flask CLI command groups for bootstrap, ledger inspection, and maintenance.

# backend/shopledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to shopledger (PowerShell: $env:FLASK_APP="shopledger").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create all tables (idempotent). Prefer `flask db upgrade` once migrations are in use.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Create a couple of demo products with opening stock.
#
# Stock ledger inspection:
# - python -m flask ledger check
#   Verify qty == SUM(IN) - SUM(OUT) for every product. Exits 1 on drift.
# - python -m flask ledger movements --product-id 1 --limit 20
#   Print the most recent movements for a product.
# - python -m flask ledger low-stock
#   List products at or below their reorder level.

import click
from decimal import Decimal
from flask.cli import with_appcontext

from .extensions import db
from .models import Product
from .numeric import to_json_number
from .services import products_service, stock_service
from .validation import NotFoundError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create database tables if they do not exist."""
    db.create_all()
    click.echo("PASS Tables ready.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create demo products, each stocked through an opening IN movement."""
    demo = [
        ({"name": "Ice", "sku": "ICE-01", "unit": "bags", "reorder_level": Decimal("10")}, Decimal("50")),
        ({"name": "Fish", "sku": "FSH-01", "unit": "kg", "reorder_level": Decimal("5")}, Decimal("20")),
    ]
    for patch, qty in demo:
        exists = db.session.query(Product).filter_by(sku=patch["sku"]).first()
        if exists:
            click.echo(f"SKIP  {patch['name']} already exists (id={exists.id})")
            continue
        created = products_service.create_product(patch=patch, initial_qty=qty)
        click.echo(f"PASS  Created {created['name']} id={created['id']} qty={created['qty']}")


@click.group('ledger')
def ledger_group():
    """Stock ledger inspection commands."""


@ledger_group.command('check')
@with_appcontext
def ledger_check():
    """Verify the conservation invariant for every product."""
    drift = stock_service.check_conservation()
    if not drift:
        count = db.session.query(Product).count()
        click.echo(f"PASS Ledger consistent for {count} product(s).")
        return

    for row in drift:
        click.echo(
            f"FAIL product {row['product_id']} ({row['name']}): "
            f"qty={row['qty']} ledger={row['ledger_balance']}",
            err=True,
        )
    raise SystemExit(1)


@ledger_group.command('movements')
@click.option('--product-id', type=int, required=True, help='Product ID')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def ledger_movements(product_id, limit):
    """Print recent movements for one product."""
    try:
        movements = stock_service.list_movements(product_id=product_id, limit=limit)
    except NotFoundError as e:
        raise click.ClickException(str(e))

    if not movements:
        click.echo("No movements.")
        return
    for m in movements:
        click.echo(f"{m.created_at:%Y-%m-%d %H:%M}  {m.type:<3}  {to_json_number(m.qty):>10}  {m.note or ''}")


@ledger_group.command('low-stock')
@with_appcontext
def ledger_low_stock():
    """List products whose qty is at or below their reorder level."""
    products = (
        db.session.query(Product)
        .filter(Product.qty <= Product.reorder_level)
        .order_by(Product.name.asc())
        .all()
    )
    if not products:
        click.echo("No products at or below reorder level.")
        return
    for p in products:
        click.echo(f"{p.id:>5}  {p.name:<30} qty={to_json_number(p.qty)} reorder={to_json_number(p.reorder_level)}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
