# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/stockbill/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use `flask db upgrade` for migrated databases).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Inventory inspection/repair:
# - python -m flask inventory sync-stock [--product-id 1]
#   Recompute aggregate product stock from cost lots.
# - python -m flask inventory lots 1 [--open-only]
#   List a product's cost lots, newest first.
#
# Cards:
# - python -m flask cards list
#   List cards with their next closing and due dates.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product
from .services.billing_cycle import next_closing_date, next_due_date
from .services.card_service import list_cards
from .services.concurrency import commit_with_retry
from .services.inventory_service import (
    StockError,
    list_cost_lots,
    sync_all_product_stock,
    sync_product_stock,
)
from .time_utils import today_utc, to_utc_z


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("OK  Tables created")


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

    click.echo("OK  Database reset complete")


@click.group('inventory')
def inventory_group():
    """Cost-lot inventory inspection and repair."""


@inventory_group.command('sync-stock')
@click.option('--product-id', type=int, help='Only resync this product')
@with_appcontext
def sync_stock_cli(product_id):
    """
    Recompute products.stock as the sum of remaining lot quantities.

    Example:
        flask inventory sync-stock
        flask inventory sync-stock --product-id 3
    """
    if product_id:
        product = db.session.get(Product, product_id)
        if product is None:
            raise click.ClickException(f"Product {product_id} not found")
        before = product.stock
        after = sync_product_stock(product_id)
        commit_with_retry()
        click.echo(f"Product {product_id}: {before} -> {after}")
        return

    changed = sync_all_product_stock()
    commit_with_retry()

    if not changed:
        click.echo("All products in sync.")
        return
    for pid, (before, after) in changed.items():
        click.echo(f"Product {pid}: {before} -> {after}")
    click.echo(f"\nResynced {len(changed)} product(s)")


@inventory_group.command('lots')
@click.argument('product_id', type=int)
@click.option('--open-only', is_flag=True, help='Hide fully consumed lots')
@with_appcontext
def list_lots_cli(product_id, open_only):
    """
    List cost lots for a product.

    Example:
        flask inventory lots 1
        flask inventory lots 1 --open-only
    """
    try:
        lots = list_cost_lots(product_id=product_id, include_empty=not open_only)
    except StockError as e:
        raise click.ClickException(str(e))

    if not lots:
        click.echo("No lots found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<6} {'Received':<22} {'Unit cost':>10} {'Original':>10} {'Remaining':>10}")
    click.echo("="*80)
    for lot in lots:
        click.echo(
            f"{lot.id:<6} {to_utc_z(lot.created_at):<22} {lot.unit_cost_cents:>10} "
            f"{lot.original_quantity:>10} {lot.remaining_quantity:>10}"
        )
    click.echo("="*80)
    click.echo(f"Total: {len(lots)} lot(s)\n")


@click.group('cards')
def cards_group():
    """Card inspection commands."""


@cards_group.command('list')
@with_appcontext
def list_cards_cli():
    """List cards with their next closing and due dates."""
    cards = list_cards()
    if not cards:
        click.echo("No cards found.")
        return

    today = today_utc()
    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Alias':<25} {'Close':>6} {'Due':>5} {'Next close':<12} {'Next due':<12}")
    click.echo("="*80)
    for card in cards:
        click.echo(
            f"{card.id:<5} {card.alias:<25} {card.closing_day:>6} {card.due_day:>5} "
            f"{next_closing_date(card.closing_day, today).isoformat():<12} "
            f"{next_due_date(card.due_day, today).isoformat():<12}"
        )
    click.echo("="*80 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(cards_group)
