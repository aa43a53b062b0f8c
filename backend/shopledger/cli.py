# Overview: Flask CLI command groups for bootstrap, owner setup, alerts and income maintenance.

# backend/shopledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "shopledger:create_app".
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated deployments).
#
# Owners:
# - python -m flask owners create --username mya --full-name "Mya Mya"
# - python -m flask owners list
#
# Alerts (schedule externally, e.g. cron every minute with --at $(date +%H:%M)):
# - python -m flask alerts low-stock [--at 09:00]
#   Send one low-stock alert per low item to devices due at that time.
#
# Income maintenance:
# - python -m flask income rebuild --date 2026-10-01 [--apply]
#   Replay paid sale lines for a day and report (or correct) drift.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db, notifications
from .models import Owner
from .services import device_service, income_service, inventory_service
from .services.concurrency import run_in_transaction
from .services.notification_service import LowStockCrossing, Recipients
from .time_utils import business_date, parse_iso_date
from .validation import parse_alert_time


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@click.group('owners')
def owners_group():
    """Owner account commands."""


@owners_group.command('create')
@click.option('--username', prompt=True, help='Username (unique)')
@click.option('--full-name', prompt=True, help='Display name')
@with_appcontext
def create_owner_cli(username, full_name):
    """Create an owner that items and income can be attributed to."""
    existing = db.session.query(Owner).filter_by(username=username).first()
    if existing:
        click.echo(f"FAIL Owner '{username}' already exists (ID: {existing.id})")
        return

    owner = Owner(username=username, full_name=full_name, is_active=True)
    db.session.add(owner)
    db.session.commit()

    click.echo(f"PASS Created owner: {owner.username} (ID: {owner.id})")


@owners_group.command('list')
@with_appcontext
def list_owners():
    """List all owners."""
    owners = db.session.query(Owner).order_by(Owner.id).all()

    if not owners:
        click.echo("No owners found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Username':<20} {'Full name':<30} {'Active'}")
    click.echo("="*70)

    for owner in owners:
        active_str = "Yes" if owner.is_active else "No"
        click.echo(f"{owner.id:<5} {owner.username:<20} {owner.full_name:<30} {active_str}")

    click.echo("="*70 + "\n")


@click.group('alerts')
def alerts_group():
    """Push notification commands."""


@alerts_group.command('low-stock')
@click.option('--at', 'at_time', help='Only devices whose alert time is HH:MM')
@with_appcontext
def low_stock_alerts(at_time):
    """Send the daily low-stock digest."""
    try:
        at = parse_alert_time(at_time, key="--at") if at_time else None
    except LedgerError as e:
        raise click.BadParameter(str(e), param_hint="--at")

    tokens = device_service.devices_due_for_low_stock(at)
    if not tokens:
        click.echo("No devices due for low-stock alerts.")
        return

    items = inventory_service.list_low_stock_items()
    if not items:
        click.echo("No low stock items.")
        return

    events = [
        LowStockCrossing(
            item_id=item.id,
            owner_id=item.owner_id,
            name=item.name,
            current_quantity=item.quantity,
            minimum_stock=item.minimum_stock,
        )
        for item in items
    ]
    notifications.publish(events, Recipients(low_stock_tokens=tuple(tokens)))
    current_app.logger.info("Low-stock digest: %d item(s) to %d device(s)", len(events), len(tokens))
    click.echo(f"PASS Queued {len(events)} low-stock alert(s) for {len(tokens)} device(s).")


@click.group('income')
def income_group():
    """Income ledger maintenance commands."""


@income_group.command('rebuild')
@click.option('--date', 'day_str', help='Business day YYYY-MM-DD (defaults to today)')
@click.option('--apply', 'apply_fix', is_flag=True, help='Write the corrections')
@with_appcontext
def rebuild_income(day_str, apply_fix):
    """
    Compare income_summary for a day with a replay of its paid sale lines.

    Without --apply this only reports drift.
    """
    try:
        day = parse_iso_date(day_str) if day_str else business_date()
    except ValueError:
        raise click.BadParameter("must be YYYY-MM-DD", param_hint="--date")

    drift = income_service.find_drift(day)
    if not drift:
        click.echo(f"PASS income_summary for {day} matches sale history.")
        return

    for owner_id in sorted(drift):
        d = drift[owner_id]
        click.echo(
            f"DRIFT owner {owner_id}: sales {d.sales_cents:+d} cents, "
            f"profit {d.profit_cents:+d} cents, items {d.items:+d}"
        )

    if not apply_fix:
        click.echo("Run again with --apply to correct.")
        return

    def _op():
        # Recompute under the write lock so concurrent sales are not double-counted
        for owner_id, correction in sorted(income_service.find_drift(day).items()):
            income_service.apply_delta(owner_id, day, correction)

    run_in_transaction(_op)
    click.echo(f"PASS Corrected income_summary for {day}.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(owners_group)
    app.cli.add_command(alerts_group)
    app.cli.add_command(income_group)
