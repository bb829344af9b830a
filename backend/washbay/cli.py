# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/washbay/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--org "Org Name"]
#   Idempotent bootstrap: default org, webhook secret, default users, starter services.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organization management (MULTI-TENANT):
# - python -m flask orgs list
# - python -m flask orgs create --name "Sparkle Wash" --code "SPARKLE"
# - python -m flask orgs rotate-webhook-secret --org-id 1
#
# Users:
# - python -m flask users list [--org-id 1]
# - python -m flask users create --org-id 1 --username manager --email m@washbay.local --role manager
#
# Catalog:
# - python -m flask services seed --org-id 1
#   Add the starter wash services if they are missing.
#
# Maintenance:
# - python -m flask bookings reconcile --org-id 1
#   Re-derive booking statuses from job card stages (repair tool).

import secrets

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Organization, Service, User
from .models.auth import ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF, VALID_ROLES
from .services.auth_service import create_user, PasswordValidationError
from .services.booking_service import reconcile_booking_statuses


STARTER_SERVICES = [
    # (name, category, price_cents, duration_minutes, lifecycle_stages)
    ("Basic Wash", "wash", 29900, 30, ["check_in", "foam_wash", "qc", "completed", "delivered"]),
    ("Premium Wash", "wash", 59900, 60, None),
    ("Interior Detailing", "detailing", 149900, 120, None),
    ("Ceramic Coating", "protection", 1499900, 480,
     ["check_in", "pre_wash", "decontamination", "polishing", "coating", "curing", "qc", "completed", "delivered"]),
]


def _resolve_org(org_id):
    if org_id:
        return db.session.query(Organization).filter_by(id=org_id).first()
    return db.session.query(Organization).order_by(Organization.id.asc()).first()


def _seed_services(org: Organization) -> int:
    created = 0
    for name, category, price_cents, duration, stages in STARTER_SERVICES:
        if db.session.query(Service).filter_by(org_id=org.id, name=name).first():
            continue
        db.session.add(Service(
            org_id=org.id,
            name=name,
            category=category,
            base_price_cents=price_cents,
            duration_minutes=duration,
            lifecycle_stages=stages,
        ))
        created += 1
    db.session.commit()
    return created


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--org', 'org_name', default='Default Organization', help='Organization name')
@click.option('--org-code', default='DEFAULT', help='Organization code')
@with_appcontext
def init_system(org_name, org_code):
    """
    Initialize WashBay: organization, default users and starter services.

    Default users (password "Password123!"): admin, manager, staff.
    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing WashBay...")

    org = db.session.query(Organization).first()
    if not org:
        org = Organization(
            name=org_name,
            code=org_code,
            is_active=True,
            webhook_secret=secrets.token_urlsafe(32),
        )
        db.session.add(org)
        db.session.commit()
        click.echo(f"PASS Created default organization: {org.name} (ID: {org.id}, Code: {org.code})")
    else:
        click.echo(f"PASS Using existing organization: {org.name} (ID: {org.id})")

    default_password = "Password123!"
    default_users = [
        ("admin", "admin@washbay.local", ROLE_ADMIN),
        ("manager", "manager@washbay.local", ROLE_MANAGER),
        ("staff", "staff@washbay.local", ROLE_STAFF),
    ]

    click.echo("\nUSERS Creating default users...")
    for username, email, role in default_users:
        existing = db.session.query(User).filter_by(org_id=org.id, username=username).first()
        if existing:
            click.echo(f"WARN  User '{username}' already exists in org, skipping...")
            continue
        try:
            create_user(username=username, email=email, password=default_password, org_id=org.id, role=role)
            click.echo(f"PASS Created user: {username} ({email}) with role '{role}'")
        except (PasswordValidationError, ValueError) as e:
            click.echo(f"FAIL Failed to create user '{username}': {str(e)}")

    created = _seed_services(org)
    click.echo(f"\nPASS Seeded {created} starter services")

    click.echo("\n" + "="*60)
    click.echo("DONE WashBay Initialized Successfully!")
    click.echo("="*60)
    click.echo(f"\nOrganization: {org.name} (ID: {org.id})")
    click.echo(f"Webhook secret: {org.webhook_secret}")
    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    click.echo("   admin   / Password123!")
    click.echo("   manager / Password123!")
    click.echo("   staff   / Password123!")
    click.echo("")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """DANGER: Drop all tables and recreate schema. This will DELETE ALL DATA!"""
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset. Run: python -m flask system init")


# =============================================================================
# ORGANIZATION MANAGEMENT COMMANDS (MULTI-TENANT)
# =============================================================================

@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).all()

    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Users'}")
    click.echo("="*70)

    for org in orgs:
        user_count = db.session.query(User).filter_by(org_id=org.id).count()
        active_str = "Yes" if org.is_active else "No"
        click.echo(f"{org.id:<5} {org.name:<30} {org.code or '-':<15} {active_str:<8} {user_count}")

    click.echo("="*70 + "\n")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_org_cli(name, code):
    """Create a new organization (tenant) with a fresh webhook secret."""
    existing = db.session.query(Organization).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Organization with code '{code}' already exists")
        return

    org = Organization(name=name, code=code, is_active=True, webhook_secret=secrets.token_urlsafe(32))
    db.session.add(org)
    db.session.commit()

    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")
    click.echo(f"     Webhook secret: {org.webhook_secret}")


@orgs_group.command('rotate-webhook-secret')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@with_appcontext
def rotate_webhook_secret_cli(org_id):
    """Issue a new webhook secret; the old one stops working immediately."""
    org = db.session.query(Organization).filter_by(id=org_id).first()
    if not org:
        click.echo(f"FAIL Organization ID {org_id} not found")
        return

    org.webhook_secret = secrets.token_urlsafe(32)
    db.session.commit()
    click.echo(f"PASS New webhook secret for '{org.name}': {org.webhook_secret}")


# =============================================================================
# USER MANAGEMENT COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--org-id', type=int, help='Organization ID (uses default if not specified)')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(org_id, username, email, password, role):
    """
    Create a new user.

    Password must be 8+ chars with uppercase, lowercase, digit and special char.
    """
    org = _resolve_org(org_id)
    if not org:
        click.echo("FAIL Organization not found. Run 'python -m flask system init' first.")
        return

    try:
        create_user(username=username, email=email, password=password, org_id=org.id, role=role)
        click.echo(f"PASS Created user: {username} ({email}) with role '{role}'")
        click.echo(f"     Organization: {org.name} (ID: {org.id})")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('list')
@click.option('--org-id', type=int, help='Filter by organization ID')
@with_appcontext
def list_users(org_id):
    """List all users with their roles."""
    query = db.session.query(User)
    if org_id:
        query = query.filter_by(org_id=org_id)

    users = query.all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Org':<5} {'Username':<20} {'Email':<30} {'Active':<8} {'Role'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.org_id:<5} {user.username:<20} {user.email:<30} {active_str:<8} {user.role}")

    click.echo("="*90 + "\n")


# =============================================================================
# CATALOG AND MAINTENANCE COMMANDS
# =============================================================================

@click.group('services')
def services_group():
    """Service catalog commands."""


@services_group.command('seed')
@click.option('--org-id', type=int, help='Organization ID (uses default if not specified)')
@with_appcontext
def seed_services_cli(org_id):
    """Add the starter services (skips names that already exist)."""
    org = _resolve_org(org_id)
    if not org:
        click.echo("FAIL Organization not found")
        return
    created = _seed_services(org)
    click.echo(f"PASS Seeded {created} services for '{org.name}'")


@click.group('bookings')
def bookings_group():
    """Booking maintenance commands."""


@bookings_group.command('reconcile')
@click.option('--org-id', type=int, help='Organization ID (all organizations if not specified)')
@with_appcontext
def reconcile_bookings_cli(org_id):
    """Re-derive every linked booking's status from its job card."""
    query = db.session.query(Organization)
    if org_id:
        query = query.filter_by(id=org_id)

    orgs = query.all()
    if not orgs:
        click.echo("FAIL Organization not found")
        return

    for org in orgs:
        changed = reconcile_booking_statuses(org.id)
        click.echo(f"PASS {org.name}: {changed} booking(s) corrected")


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)
    app.cli.add_command(users_group)
    app.cli.add_command(services_group)
    app.cli.add_command(bookings_group)
