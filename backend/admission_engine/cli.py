# Overview: Flask CLI command group for bootstrap, inspection, and corrections.

# backend/admission_engine/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask engine <command> [options]
#
# - python -m flask engine init-db
#   Create all tables (idempotent). Use flask db upgrade for managed migrations.
# - python -m flask engine create-org --name "Acme Ltda" --code "ACME" [--currency BRL]
#   Create a new organization (tenant).
# - python -m flask engine pending-credit --org-id 1
#   List sales awaiting credit review with customer credit usage.
# - python -m flask engine reverse-movement --movement-id 42 --actor-id 7 --reason "Duplicated entry"
#   Reverse a posted movement with a compensating entry.

import click
from flask.cli import with_appcontext

from .errors import EngineError
from .extensions import db
from .models import Organization
from .money import format_money
from .services import credit_service, reversal_service


@click.group('engine')
def engine_group():
    """Admission and reversal engine commands."""


@engine_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo("PASS Database tables created")


@engine_group.command('create-org')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@click.option('--currency', default='BRL', show_default=True, help='ISO 4217 currency code')
@with_appcontext
def create_org_cli(name, code, currency):
    """Create a new organization (tenant)."""
    existing = db.session.query(Organization).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Organization with code '{code}' already exists")
        return

    org = Organization(name=name, code=code, currency_code=currency.upper(), is_active=True)
    db.session.add(org)
    db.session.commit()

    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")


@engine_group.command('pending-credit')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@with_appcontext
def pending_credit(org_id):
    """List sales awaiting credit review."""
    org = db.session.query(Organization).filter_by(id=org_id).first()
    if not org:
        click.echo(f"FAIL Organization ID {org_id} not found")
        return

    rows = credit_service.get_pending_credit_sales(org_id)
    if not rows:
        click.echo("No sales awaiting credit review.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'Sale':<12} {'Customer':<25} {'Total':>15} {'Available':>15} {'Cycle':>6}")
    click.echo("="*80)

    for row in rows:
        credit = row.get("credit_info") or {}
        available = credit.get("limit_available")
        click.echo(
            f"{row['document_number']:<12} {(row.get('customer_name') or '-'):<25} "
            f"{format_money(row['total_cents'], org.currency_code):>15} "
            f"{(format_money(available, org.currency_code) if available is not None else '-'):>15} "
            f"{row['credit_review_cycle']:>6}"
        )

    click.echo("="*80 + "\n")


@engine_group.command('reverse-movement')
@click.option('--movement-id', type=int, required=True, help='Movement ID')
@click.option('--actor-id', type=int, required=True, help='Acting user ID')
@click.option('--reason', required=True, help='Reason for the reversal')
@click.option('--org-id', type=int, default=None, help='Restrict to this organization')
@with_appcontext
def reverse_movement_cli(movement_id, actor_id, reason, org_id):
    """Reverse a posted movement."""
    try:
        result = reversal_service.reverse_movement(movement_id, reason, actor_id, org_id=org_id)
    except EngineError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    click.echo(
        f"PASS Movement {result.original_movement_id} reversed "
        f"(compensation: {result.reversal_movement_id}, log: {result.credit_log_id})"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(engine_group)
