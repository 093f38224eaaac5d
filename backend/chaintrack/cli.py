# Overview: Flask CLI command groups for bootstrap, user management and serial maintenance.

# backend/chaintrack/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables, serial settings and one demo user per role.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list [--role RESELLER]
# - python -m flask users create --name "Acme Tools" --email tools@acme.local --role PRODUCER
#
# Serial numbers:
# - python -m flask serials show
#   Range, capacity, usage and the reclaim pool.
# - python -m flask serials set-range 100000 199999
# - python -m flask serials reclaim 100042
#   Put a number back in the reclaim pool (ignored while a live unit carries it).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.accounts import ROLE_ADMIN, ROLE_BUYER, ROLE_PRODUCER, ROLE_RESELLER, VALID_ROLES
from .services import serial_service
from .validation import ValidationError


DEMO_USERS = [
    ("Admin", "admin@chaintrack.local", ROLE_ADMIN),
    ("Demo Producer", "producer@chaintrack.local", ROLE_PRODUCER),
    ("Demo Reseller", "reseller@chaintrack.local", ROLE_RESELLER),
    ("Demo Buyer", "buyer@chaintrack.local", ROLE_BUYER),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize ChainTrack: schema, serial settings and demo users.

    Safe to run repeatedly; existing rows are left alone.
    """
    click.echo("START Initializing ChainTrack...")

    db.create_all()
    click.echo("PASS Tables ready")

    settings = serial_service.load_serial_settings()
    click.echo(f"PASS Serial range: [{settings.range_start}, {settings.range_end}]")

    click.echo("\nUSERS Creating demo users...")
    for name, email, role in DEMO_USERS:
        if db.session.query(User).filter_by(email=email).first():
            click.echo(f"WARN  User '{email}' already exists, skipping...")
            continue
        user = User(name=name, email=email, role=role, is_active=True)
        db.session.add(user)
        db.session.commit()
        click.echo(f"PASS Created user: {name} ({email}) with role '{role}' (ID: {user.id})")

    click.echo("\n" + "="*60)
    click.echo("DONE ChainTrack Initialized Successfully!")
    click.echo("="*60)
    click.echo("\nAPI calls identify the acting user with the X-User-Id header.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and bootstrap."""


@users_group.command('list')
@click.option('--role', type=click.Choice(sorted(VALID_ROLES), case_sensitive=False), help='Filter by role')
@with_appcontext
def list_users(role):
    """List users with their roles."""
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role.upper())

    users = query.order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Name':<25} {'Email':<35} {'Role':<10} {'Active'}")
    click.echo("="*90)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.name:<25} {user.email:<35} {user.role:<10} {active_str}")
    click.echo("="*90 + "\n")


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address (unique)')
@click.option('--role', prompt=True, type=click.Choice(sorted(VALID_ROLES), case_sensitive=False))
@with_appcontext
def create_user_command(name, email, role):
    """Create a supply-chain party."""
    email = email.strip().lower()
    if db.session.query(User).filter_by(email=email).first():
        click.echo(f"FAIL User with email '{email}' already exists")
        raise SystemExit(1)

    user = User(name=name.strip(), email=email, role=role.upper(), is_active=True)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user: {user.name} ({user.email}) with role '{user.role}' (ID: {user.id})")


@click.group('serials')
def serials_group():
    """Serial number range and reclaim pool."""


@serials_group.command('show')
@with_appcontext
def show_serials():
    """Show the serial range and its usage."""
    usage = serial_service.serial_usage()
    click.echo(f"Range:      [{usage['range_start']}, {usage['range_end']}] (capacity {usage['capacity']})")
    click.echo(f"Used:       {usage['used']} (+{usage['used_outside_range']} outside range)")
    click.echo(f"Reserved:   {usage['reserved']}")
    click.echo(f"Available:  {usage['available']}")
    reclaimed = usage["reclaimed"]
    click.echo(f"Reclaimed:  {', '.join(str(n) for n in reclaimed) if reclaimed else 'none'}")


@serials_group.command('set-range')
@click.argument('range_start', type=int)
@click.argument('range_end', type=int)
@with_appcontext
def set_range(range_start, range_end):
    """Replace the managed serial range."""
    try:
        settings = serial_service.set_serial_range(range_start, range_end)
    except ValidationError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Serial range set to [{settings.range_start}, {settings.range_end}]")


@serials_group.command('reclaim')
@click.argument('serial_number')
@with_appcontext
def reclaim(serial_number):
    """Return a serial number to the reclaim pool."""
    if serial_service.reclaim_serial(serial_number):
        click.echo(f"PASS {serial_number} added to the reclaim pool")
    else:
        click.echo(f"WARN {serial_number} not reclaimed (non-numeric, already pooled, or in use)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(serials_group)
