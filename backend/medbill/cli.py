# Overview: Flask CLI command groups for bootstrap, invoice numbering and ledger checks.

# backend/medbill/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--prefix INV] [--fiscal-year 2025-26]
#   Idempotent: creates tables and the invoice counter.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Invoice numbering:
# - python -m flask sequence show
# - python -m flask sequence start-year 2026-27 [--prefix INV]
#   Restart numbering at 1 for a new fiscal year (forward only).
#
# Ledger checks:
# - python -m flask ledger verify
#   Compare every customer balance and batch quantity with its ledger.
#   Exits non-zero if anything diverges.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import BillingError
from .models import Customer, Batch
from .services import sequence_service, credit_service, inventory_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--prefix', default=None, help='Invoice prefix (default: INVOICE_PREFIX)')
@click.option('--fiscal-year', default=None, help='Fiscal year as YYYY-YY (default: current)')
@with_appcontext
def init_system(prefix, fiscal_year):
    """Create tables and the invoice counter if missing."""
    click.echo("START Initializing medbill...")
    db.create_all()
    click.echo("PASS Tables ready")

    try:
        seq = sequence_service.init_invoice_sequence(prefix=prefix, fiscal_year=fiscal_year)
    except BillingError as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Invoice sequence: prefix={seq.prefix} fiscal_year={seq.fiscal_year} current={seq.current_number}")
    if prefix and seq.prefix != prefix:
        click.echo(f"WARN  Sequence already existed; prefix {prefix!r} ignored")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the invoice counter.
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("DONE Database reset. Run 'flask system init' to create the invoice counter.")


@click.group('sequence')
def sequence_group():
    """Invoice numbering commands."""


@sequence_group.command('show')
@with_appcontext
def show_sequence():
    seq = sequence_service.peek_invoice_sequence()
    if seq is None:
        raise click.ClickException("Invoice sequence not initialized; run 'flask system init'")

    click.echo(f"Prefix:       {seq.prefix}")
    click.echo(f"Fiscal year:  {seq.fiscal_year}")
    click.echo(f"Last issued:  {seq.current_number}")
    if seq.current_number:
        click.echo(
            "Last number:  "
            + sequence_service.format_invoice_number(seq.prefix, seq.fiscal_year, seq.current_number)
        )


@sequence_group.command('start-year')
@click.argument('fiscal_year')
@click.option('--prefix', default=None, help='Change the invoice prefix as well')
@with_appcontext
def start_year(fiscal_year, prefix):
    """Begin numbering for FISCAL_YEAR (YYYY-YY)."""
    try:
        seq = sequence_service.start_fiscal_year(fiscal_year, prefix=prefix)
    except BillingError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Numbering now {seq.prefix} / {seq.fiscal_year}, next number 1")


@click.group('ledger')
def ledger_group():
    """Ledger consistency checks."""


@ledger_group.command('verify')
@with_appcontext
def verify_ledgers():
    """Check customer balances and batch quantities against their ledgers."""
    failures = 0

    for customer in db.session.query(Customer).order_by(Customer.id).all():
        ledger = credit_service.ledger_balance(customer.id)
        if ledger != customer.current_balance_cents:
            failures += 1
            click.echo(
                f"FAIL Customer {customer.id} ({customer.name}): "
                f"balance {customer.current_balance_cents} != ledger {ledger}"
            )

    for batch in db.session.query(Batch).order_by(Batch.id).all():
        if not inventory_service.verify_stock_ledger(batch.id):
            failures += 1
            click.echo(
                f"FAIL Batch {batch.id} ({batch.batch_number}): "
                f"quantity {batch.quantity} != movements {inventory_service.movement_total(batch.id)}"
            )

    if failures:
        click.echo(f"\n{failures} divergence(s) found")
        raise SystemExit(1)
    click.echo("PASS All ledgers consistent")


def register_commands(app):
    """Register CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(sequence_group)
    app.cli.add_command(ledger_group)
