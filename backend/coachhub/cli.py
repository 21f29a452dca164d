# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/coachhub/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "coachhub:create_app".
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` in production).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organization management (MULTI-TENANT):
# - python -m flask orgs list
# - python -m flask orgs create --name "Acme Ventures" --code "ACME"
#
# User inspection/bootstrap:
# - python -m flask users list [--org-id 1]
# - python -m flask users create --org-id 1 --email coach@acme.test --role coach --hourly-rate 150
#
# Billing maintenance:
# - python -m flask payments check-links [--org-id 1]
#   Report sessions whose payment_id disagrees with invoice line items.

import click
from flask.cli import with_appcontext

from .errors import ValidationError
from .extensions import db
from .models import Organization, User
from .models.tenancy import VALID_ROLES, ROLE_COACH
from .services import invoice_service
from .validation import parse_money_cents


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        return
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


# =============================================================================
# ORGANIZATION COMMANDS
# =============================================================================

@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).order_by(Organization.id).all()

    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "="*64)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Users'}")
    click.echo("="*64)

    for org in orgs:
        user_count = db.session.query(User).filter_by(org_id=org.id).count()
        active_str = "Yes" if org.is_active else "No"
        click.echo(f"{org.id:<5} {org.name:<30} {org.code or '-':<15} {active_str:<8} {user_count}")

    click.echo("="*64 + "\n")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_org_cli(name, code):
    """Create a new organization (tenant)."""
    existing = db.session.query(Organization).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Organization with code '{code}' already exists")
        return

    org = Organization(name=name, code=code, is_active=True)
    db.session.add(org)
    db.session.commit()

    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")


# =============================================================================
# USER MANAGEMENT COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--email', prompt=True, help='Email address')
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), prompt=True, help='Role')
@click.option('--first-name', default='', help='First name')
@click.option('--last-name', default='', help='Last name')
@click.option('--hourly-rate', default=None, help='Coach hourly rate, e.g. 150.00')
@with_appcontext
def create_user_cli(org_id, email, role, first_name, last_name, hourly_rate):
    """
    Create a user inside an organization.

    Only coaches carry an hourly rate; it prices their invoice line items.
    """
    org = db.session.get(Organization, org_id)
    if not org:
        click.echo(f"FAIL Organization ID {org_id} not found")
        return

    existing = db.session.query(User).filter_by(org_id=org_id, email=email).first()
    if existing:
        click.echo(f"FAIL User '{email}' already exists in this organization")
        return

    rate_cents = None
    if hourly_rate is not None:
        if role != ROLE_COACH:
            click.echo("FAIL --hourly-rate only applies to coaches")
            return
        try:
            rate_cents = parse_money_cents("hourly_rate", hourly_rate)
        except ValidationError as e:
            click.echo(f"FAIL {e.message}")
            return

    user = User(
        org_id=org_id,
        email=email,
        role=role,
        first_name=first_name,
        last_name=last_name,
        hourly_rate_cents=rate_cents,
    )
    db.session.add(user)
    db.session.commit()

    click.echo(f"PASS Created {role} {user.email} (ID: {user.id}) in org '{org.name}'")


@users_group.command('list')
@click.option('--org-id', type=int, help='Filter by organization ID')
@with_appcontext
def list_users(org_id):
    """List users with their roles."""
    query = db.session.query(User)
    if org_id:
        query = query.filter_by(org_id=org_id)

    users = query.order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    for user in users:
        rate = f"{user.hourly_rate_cents / 100:.2f}" if user.hourly_rate_cents is not None else "-"
        active_str = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:<5} org={user.org_id:<4} {user.role:<13} {user.email:<35} rate={rate:<9} {active_str}")


# =============================================================================
# BILLING MAINTENANCE
# =============================================================================

@click.group('payments')
def payments_group():
    """Billing inspection commands."""


@payments_group.command('check-links')
@click.option('--org-id', type=int, help='Limit to one organization')
@with_appcontext
def check_links(org_id):
    """Report sessions whose billing reference disagrees with invoice line items."""
    problems = invoice_service.find_dangling_session_links(org_id)
    if not problems:
        click.echo("PASS All session billing links are consistent")
        return

    for problem in problems:
        click.echo(
            f"FAIL session {problem['session_id']} / payment {problem['payment_id']}: {problem['problem']}"
        )
    raise click.exceptions.Exit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)  # Multi-tenant organization management
    app.cli.add_command(users_group)
    app.cli.add_command(payments_group)
