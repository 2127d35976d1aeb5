# Overview: Flask CLI command groups for the expiry sweep, warehouse inspection and maintenance.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to storefront (PowerShell: $env:FLASK_APP="storefront").
# - Use: python -m flask <group> <command> [options]
#
# Orders:
# - python -m flask orders sweep-expired
#   Cancel unpaid orders past their payment deadline and return their stock.
#   Intended to be run by cron (e.g. every minute).
#
# Warehouses:
# - python -m flask warehouses list
#   List warehouses with coordinates.
# - python -m flask warehouses stock --product-id 1
#   Show per-warehouse stock of one product.
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Warehouse
from .errors import NotFoundError
from .services import order_service, stock_service


@click.group('orders')
def orders_group():
    """Order lifecycle commands."""


@orders_group.command('sweep-expired')
@with_appcontext
def sweep_expired_cli():
    """
    Cancel every PENDING order without payment proof whose payment window
    has expired. Exits with status 1 if any order failed to cancel.
    """
    report = order_service.cancel_expired_orders()

    click.echo(f"Cancelled {report.cancelled_count} expired order(s).")
    for order_id in report.cancelled_order_ids:
        click.echo(f"PASS Order {order_id} cancelled")
    for failure in report.failures:
        click.echo(f"FAIL Order {failure.order_id}: {failure.reason}")

    if report.failures:
        raise SystemExit(1)


@click.group('warehouses')
def warehouses_group():
    """Warehouse inspection commands."""


@warehouses_group.command('list')
@with_appcontext
def list_warehouses_cli():
    """List all warehouses."""
    warehouses = db.session.query(Warehouse).order_by(Warehouse.id).all()

    if not warehouses:
        click.echo("No warehouses found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<35} {'Latitude':>12} {'Longitude':>12}")
    click.echo("="*70)
    for wh in warehouses:
        click.echo(f"{wh.id:<5} {wh.name:<35} {wh.latitude:>12.6f} {wh.longitude:>12.6f}")
    click.echo("="*70 + "\n")


@warehouses_group.command('stock')
@click.option('--product-id', type=int, required=True, help='Product ID')
@with_appcontext
def product_stock_cli(product_id):
    """Show stock of one product in every warehouse."""
    try:
        levels = stock_service.get_stock_levels(product_id)
    except NotFoundError as e:
        raise click.ClickException(str(e))

    if not levels:
        click.echo(f"Product {product_id} has no stock rows.")
        return

    for level in levels:
        click.echo(f"Warehouse {level['warehouse_id']:<5} stock={level['stock']}")
    click.echo(f"Total: {sum(level['stock'] for level in levels)}")


@click.group('system')
def system_group():
    """System maintenance commands."""


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
    click.echo("BUILD Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset complete.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(orders_group)
    app.cli.add_command(warehouses_group)
    app.cli.add_command(system_group)
