# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/bizdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent) and seed the default membership tiers.
# - python -m flask system seed-tiers
#   Create missing default tiers (regular, silver, gold, platinum, diamond).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock ledger:
# - python -m flask stock verify [--product-id 3]
#   Compare each product's stock counter with the sum of its ledger rows.
#   Exit code 1 when any product is out of sync.
#
# Receivables:
# - python -m flask receivables refresh-overdue [--as-of 2025-02-15T00:00:00Z]
#   Recompute open receivable statuses; past-due unpaid balances become overdue.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import membership_service, receivable_service, stock_service
from .time_utils import parse_iso_datetime


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create tables and default tiers. Safe to run repeatedly."""
    click.echo("BUILD  Creating tables...")
    db.create_all()

    created = membership_service.seed_default_tiers()
    click.echo(f"PASS Tiers created: {', '.join(t.tier for t in created) or 'none (already present)'}")


@system_group.command('seed-tiers')
@with_appcontext
def seed_tiers():
    """Create the default membership tiers that do not exist yet."""
    created = membership_service.seed_default_tiers()
    if not created:
        click.echo("PASS All default tiers already exist")
        return
    for config in created:
        click.echo(
            f"PASS {config.tier:<9} discount={config.discount_rate_bps}bps "
            f"points={config.points_rate_bps}bps min_spending={config.min_spending_cents}"
        )


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-tiers' to add default tiers.")


@click.group('stock')
def stock_group():
    """Stock ledger inspection."""


@stock_group.command('verify')
@click.option('--product-id', type=int, default=None, help='Check a single product')
@with_appcontext
def verify_stock_cli(product_id):
    """Check current_stock == ledger sum for every product."""
    mismatches = stock_service.verify_stock(product_id)
    if not mismatches:
        click.echo("PASS Stock counters match the ledger")
        return

    for row in mismatches:
        click.echo(
            f"FAIL {row['sku']} (id {row['product_id']}): counter={row['current_stock']} "
            f"ledger={row['ledger_stock']} diff={row['difference']}"
        )
    raise SystemExit(1)


@click.group('receivables')
def receivables_group():
    """Accounts receivable maintenance."""


def _parse_as_of(ctx, param, value):
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise click.BadParameter(f"not an ISO-8601 timestamp: {value}")


@receivables_group.command('refresh-overdue')
@click.option('--as-of', default=None, callback=_parse_as_of, help='ISO-8601 timestamp (default: now)')
@with_appcontext
def refresh_overdue_cli(as_of):
    """Recompute open receivable statuses."""
    changed = receivable_service.refresh_overdue(as_of)
    click.echo(f"Updated {changed} receivable(s).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(receivables_group)
