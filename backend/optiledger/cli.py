# Overview: Flask CLI command groups for schema setup, inspection, and ledger maintenance.

# backend/optiledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system create-tables
#   Create any missing tables (use `flask db upgrade` when migrations exist).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Cash register inspection:
# - python -m flask registers current
#   Show the open session and its running totals.
# - python -m flask registers sessions --status open --limit 20
#   List recent sessions with variance.
#
# Client debt:
# - python -m flask debts recalculate
#   Rewrite cached debt for every active client from live order data.
# - python -m flask debts recalculate --customer-id 3
# - python -m flask debts recalculate --legacy-client-id 7
#
# Boletos:
# - python -m flask boletos sync [--customer-id 3 | --legacy-client-id 7]
#   Reconcile every pending, issued bank slip with the bank.
# - python -m flask boletos test-connection
#   Check that a gateway token can be obtained.

import click
from flask.cli import with_appcontext

from .extensions import db
from .money import format_brl
from .services import boleto_service, debt_service, register_service
from .services.boleto_gateway import get_gateway
from .validation import NotFoundError


@click.group('system')
def system_group():
    """Schema setup commands."""


@system_group.command('create-tables')
@with_appcontext
def create_tables():
    """Create missing tables. Existing tables are left untouched."""
    db.create_all()
    click.echo("PASS Tables created.")


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


@click.group('registers')
def registers_group():
    """Cash register inspection commands."""


@registers_group.command('current')
@with_appcontext
def current_register_cli():
    """Show the open session and its totals."""
    session = register_service.find_open_register()
    if session is None:
        click.echo("No open cash register.")
        return

    click.echo(f"Session {session.id} opened {str(session.opened_at)[:19]} by {session.opened_by}")
    click.echo(f"   Opening balance: {format_brl(session.opening_balance_cents)}")
    for method, cents in session.sales_dict().items():
        click.echo(f"   Sales {method:<16} {format_brl(cents)}")
    click.echo(f"   Debt received:   {format_brl(session.payments_received_cents)}")
    click.echo(f"   Expenses paid:   {format_brl(session.payments_made_cents)}")


@registers_group.command('sessions')
@click.option('--status', type=click.Choice(['open', 'closed']), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max sessions to show')
@with_appcontext
def list_sessions_cli(status, limit):
    """
    List register sessions.

    Example:
        flask registers sessions
        flask registers sessions --status closed --limit 5
    """
    result = register_service.list_registers(page=1, per_page=limit, status=status)
    sessions = result["items"]

    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo("\n" + "="*110)
    click.echo(f"{'ID':<5} {'Status':<8} {'Opened':<20} {'By':<15} {'Sales':<16} {'Variance':<16} {'Closed by'}")
    click.echo("="*110)

    for session in sessions:
        variance_str = "-"
        if session["variance_cents"] is not None:
            variance_str = format_brl(session["variance_cents"])

        click.echo(f"{session['id']:<5} {session['status']:<8} {(session['opened_at'] or '')[:19]:<20} "
                   f"{session['opened_by'][:15]:<15} {format_brl(session['sales']['total']):<16} "
                   f"{variance_str:<16} {session['closed_by'] or '-'}")

    click.echo("="*110 + "\n")


@click.group('debts')
def debts_group():
    """Client debt maintenance commands."""


@debts_group.command('recalculate')
@click.option('--customer-id', type=int, help='Only this customer')
@click.option('--legacy-client-id', type=int, help='Only this legacy client')
@with_appcontext
def recalculate_debts_cli(customer_id, legacy_client_id):
    """
    Rewrite cached client debt from live order data.

    Running it twice in a row reports no changes the second time.
    """
    if customer_id and legacy_client_id:
        raise click.UsageError("Use --customer-id or --legacy-client-id, not both")

    try:
        if legacy_client_id:
            result = debt_service.recalculate_client_debts(legacy_client_id, legacy=True)
        else:
            result = debt_service.recalculate_client_debts(customer_id)
    except NotFoundError as e:
        click.echo(f"FAIL Error: {str(e)}")
        return

    if not result.clients:
        click.echo("PASS All cached debts already match.")
        return

    for client in result.clients:
        click.echo(f"   {client['kind']:<14} {client['id']:<6} {format_brl(client['old'])} -> {format_brl(client['new'])}")
    click.echo(f"PASS Updated {result.updated} client(s).")


@click.group('boletos')
def boletos_group():
    """Boleto gateway commands."""


@boletos_group.command('sync')
@click.option('--customer-id', type=int, help='Only this customer\'s slips')
@click.option('--legacy-client-id', type=int, help='Only this legacy client\'s slips')
@with_appcontext
def sync_boletos_cli(customer_id, legacy_client_id):
    """Reconcile every pending, issued bank slip with the bank."""
    if customer_id and legacy_client_id:
        raise click.UsageError("Use --customer-id or --legacy-client-id, not both")

    result = boleto_service.sync_pending_boletos(customer_id, actor="cli", legacy_client_id=legacy_client_id)

    click.echo(f"Processed: {result.total_processed}")
    click.echo(f"   Updated: {result.updated_payments}")
    click.echo(f"   Settled: {result.settled_payments}")
    click.echo(f"   Paid / overdue / cancelled / pending: {result.summary.paid} / "
               f"{result.summary.overdue} / {result.summary.cancelled} / {result.summary.pending}")
    for error in result.errors:
        click.echo(f"FAIL Payment {error['payment_id']}: {error.get('code', '')} {error['error']}")


@boletos_group.command('test-connection')
@with_appcontext
def test_connection_cli():
    """Check gateway configuration and authentication."""
    gateway = get_gateway()
    info = gateway.describe()
    click.echo(f"Environment: {info['environment']}  Auth: {info['auth_mode']}")
    if not info["configured"]:
        click.echo("FAIL Boleto gateway is not configured.")
        return
    if gateway.test_connection():
        click.echo("PASS Token obtained.")
    else:
        click.echo("FAIL Could not authenticate with the boleto gateway.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(registers_group)
    app.cli.add_command(debts_group)
    app.cli.add_command(boletos_group)
