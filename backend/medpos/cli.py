# Overview: Flask CLI command groups for drawers, shifts and maintenance.

# backend/medpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to medpos (PowerShell: $env:FLASK_APP="medpos").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Drawers:
# - python -m flask drawers create --owner-id PRO-1 --name "Reception" [--code FRONT]
#   Create a cash drawer (code generated from the name when omitted).
# - python -m flask drawers list --owner-id PRO-1
#   List drawers with their current open session.
#
# Sessions (shifts):
# - python -m flask sessions start --drawer-id 1 [--opening-balance 10000]
#   Open a shift; float defaults to the last counted cash of the drawer.
# - python -m flask sessions close --session-id 1 --counted-cash 115000
#   Close a shift and print its variance.
# - python -m flask sessions list --owner-id PRO-1 [--drawer-id 1] [--active-only] [--limit 20]
#   List recent sessions, newest first.
# - python -m flask sessions report --session-id 1
#   Print the reconciliation report of a session.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import drawer_service, reconciliation_service, shift_service
from .validation import ConflictError, NotFoundError, ValidationError


def _money(cents) -> str:
    if cents is None:
        return "-"
    return f"{cents / 100:,.2f}"


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

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


# =============================================================================
# DRAWERS
# =============================================================================

@click.group('drawers')
def drawers_group():
    """Cash drawer management commands."""


@drawers_group.command('create')
@click.option('--owner-id', required=True, help='Owning professional')
@click.option('--name', required=True, help='Display name')
@click.option('--code', default=None, help='Drawer code (generated when omitted)')
@with_appcontext
def create_drawer_cli(owner_id, name, code):
    """
    Create a cash drawer.

    Example:
        flask drawers create --owner-id PRO-1 --name "Reception"
    """
    try:
        drawer = drawer_service.create_drawer(owner_id, name, code)
    except ValidationError as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Created drawer {drawer.code} ({drawer.name}) ID: {drawer.id}")


@drawers_group.command('list')
@click.option('--owner-id', required=True, help='Owning professional')
@with_appcontext
def list_drawers_cli(owner_id):
    """List drawers and their open session."""
    drawers = drawer_service.list_drawers(owner_id)

    if not drawers:
        click.echo("No drawers found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Code':<16} {'Name':<30} {'Open session'}")
    click.echo("="*80)

    for d in drawers:
        current = d["current_session"]
        open_str = current["session_number"] if current else "-"
        click.echo(f"{d['id']:<5} {d['code']:<16} {d['name'][:30]:<30} {open_str}")

    click.echo("="*80 + "\n")


# =============================================================================
# SESSIONS
# =============================================================================

@click.group('sessions')
def sessions_group():
    """Drawer session (shift) commands."""


@sessions_group.command('start')
@click.option('--drawer-id', type=int, required=True, help='Drawer ID')
@click.option('--opening-balance', type=int, default=None, help='Opening float in cents')
@click.option('--notes', default=None, help='Opening notes')
@with_appcontext
def start_session_cli(drawer_id, opening_balance, notes):
    """
    Open a shift on a drawer.

    Example:
        flask sessions start --drawer-id 1 --opening-balance 10000
    """
    try:
        session = shift_service.start_shift(drawer_id, opening_balance, notes)
    except (ValidationError, NotFoundError, ConflictError) as e:
        raise click.ClickException(str(e))

    click.echo(
        f"PASS Opened {session.session_number} (ID: {session.id}) "
        f"with float {_money(session.opening_balance_cents)}"
    )


@sessions_group.command('close')
@click.option('--session-id', type=int, required=True, help='Session ID')
@click.option('--counted-cash', type=int, required=True, help='Counted cash in cents')
@click.option('--notes', default=None, help='Closing notes')
@with_appcontext
def close_session_cli(session_id, counted_cash, notes):
    """
    Close a shift with the counted cash.

    Example:
        flask sessions close --session-id 1 --counted-cash 115000
    """
    try:
        session, report = shift_service.close_shift(session_id, counted_cash, notes)
    except (ValidationError, NotFoundError, ConflictError) as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Closed {session.session_number}")
    click.echo(f"   Expected: {_money(report['expected_cash_cents'])}")
    click.echo(f"   Counted:  {_money(report['counted_cash_cents'])}")
    click.echo(f"   Variance: {report['variance_cents'] / 100:+,.2f}")


@sessions_group.command('list')
@click.option('--owner-id', required=True, help='Owning professional')
@click.option('--drawer-id', type=int, default=None, help='Filter by drawer ID')
@click.option('--active-only', is_flag=True, help='Only open sessions')
@click.option('--limit', type=int, default=20, help='Max sessions to show')
@with_appcontext
def list_sessions_cli(owner_id, drawer_id, active_only, limit):
    """
    List drawer sessions.

    Example:
        flask sessions list --owner-id PRO-1
        flask sessions list --owner-id PRO-1 --drawer-id 1 --active-only
    """
    sessions = shift_service.list_sessions(owner_id, drawer_id=drawer_id, active_only=active_only, limit=limit)

    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Number':<24} {'Drawer':<8} {'Status':<8} {'Opened':<20} {'Sales':<6} {'Variance'}")
    click.echo("="*100)

    for session in sessions:
        variance_str = "-"
        if session.variance_cents is not None:
            variance_str = f"{session.variance_cents / 100:+.2f}"

        opened = session.opened_at.strftime('%Y-%m-%d %H:%M') if session.opened_at else "-"
        click.echo(
            f"{session.id:<5} {session.session_number:<24} {session.drawer_id:<8} {session.status:<8} "
            f"{opened:<20} {session.sale_count:<6} {variance_str}"
        )

    click.echo("="*100 + "\n")


@sessions_group.command('report')
@click.option('--session-id', type=int, required=True, help='Session ID')
@with_appcontext
def session_report_cli(session_id):
    """Print the reconciliation report of a session."""
    try:
        session = shift_service.get_session(session_id)
    except NotFoundError as e:
        raise click.ClickException(str(e))

    report = reconciliation_service.build_report(session)

    click.echo("\n" + "="*60)
    click.echo(f"Session {report['session_number']} ({report['status']})")
    click.echo("="*60)
    click.echo(f"Transactions:        {report['transactions']}")
    click.echo(f"Total sales:         {_money(report['total_sales_cents'])}")
    click.echo(f"Cash (net change):   {_money(report['total_cash_cents'])}")
    click.echo(f"Card:                {_money(report['total_card_cents'])}")
    click.echo(f"Insurance covered:   {_money(report['total_insurance_covered_cents'])}")
    click.echo(f"Change given:        {_money(report['total_change_cents'])}")
    click.echo(f"Opening balance:     {_money(report['opening_balance_cents'])}")
    click.echo(f"Expected cash:       {_money(report['expected_cash_cents'])}")
    click.echo(f"Counted cash:        {_money(report['counted_cash_cents'])}")
    if report['variance_cents'] is not None:
        click.echo(f"Variance:            {report['variance_cents'] / 100:+,.2f}")
    click.echo("="*60 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(drawers_group)
    app.cli.add_command(sessions_group)
