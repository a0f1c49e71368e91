# Overview: Flask CLI command groups for bootstrap, inspection, and stock registration.

# backend/fieldstock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables, a sample hierarchy
#   (admin -> regional manager -> team leader -> field officer), its region and products.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list [--role team_leader]
# - python -m flask users create --name "Jane" --email jane@fieldstock.local --role field_officer --team-leader-id 3
#
# Stock:
# - python -m flask stock register --product-id 1 --imei 351234567890123 [--imei ...] [--source watu]

import click
from flask.cli import with_appcontext

from .constants import ROLE_VALUES, SOURCE_VALUES, UserRole
from .extensions import db
from .models import Product, User
from .services import imei_service, products_service, region_service, user_service
from .validation import SERVICE_ERRORS


DEFAULT_PASSWORD = "Password123!"

SAMPLE_USERS = [
    # (key, name, email, role, region, link attr, link key)
    ("admin", "System Admin", "admin@fieldstock.local", UserRole.ADMIN.value, None, None, None),
    ("rm", "Nairobi Regional Manager", "rm@fieldstock.local", UserRole.REGIONAL_MANAGER.value, "Nairobi", None, None),
    ("tl", "Nairobi Team Leader", "tl@fieldstock.local", UserRole.TEAM_LEADER.value, "Nairobi", "regional_manager_id", "rm"),
    ("fo", "Nairobi Field Officer", "fo@fieldstock.local", UserRole.FIELD_OFFICER.value, "Nairobi", "team_leader_id", "tl"),
]

SAMPLE_REGION = "Nairobi"

SAMPLE_PRODUCTS = [
    {"name": "Galaxy A15", "brand": "Samsung", "category": "Smartphones", "price_cents": 1_899_900,
     "fo_commission_cents": 50_000, "tl_commission_cents": 20_000, "rm_commission_cents": 10_000},
    {"name": "Redmi 13C", "brand": "Xiaomi", "category": "Smartphones", "price_cents": 1_399_900,
     "fo_commission_cents": 40_000, "tl_commission_cents": 15_000, "rm_commission_cents": 8_000},
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create tables, a sample four-level hierarchy and two products.

    All sample passwords default to "Password123!".
    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing FieldStock...")
    db.create_all()

    created: dict[str, User] = {}
    for key, name, email, role, region, link_attr, link_key in SAMPLE_USERS:
        user = db.session.query(User).filter_by(email=email).first()
        if user is None:
            payload = {"name": name, "email": email, "role": role, "region": region}
            if link_attr:
                payload[link_attr] = created[link_key].id
            user = user_service.create_user(None, payload, DEFAULT_PASSWORD)
            db.session.commit()
            click.echo(f"PASS Created {role}: {email}")
        else:
            click.echo(f"PASS Using existing {role}: {email}")
        created[key] = user

    if region_service.find_by_name(SAMPLE_REGION) is None:
        region_service.create_region(None, {"name": SAMPLE_REGION, "manager_id": created["rm"].id})
        db.session.commit()
        click.echo(f"PASS Created region: {SAMPLE_REGION}")

    for sample in SAMPLE_PRODUCTS:
        existing = db.session.query(Product).filter_by(name=sample["name"], brand=sample["brand"]).first()
        if existing is None:
            products_service.create_product(None, dict(sample))
            db.session.commit()
            click.echo(f"PASS Created product: {sample['brand']} {sample['name']}")

    click.echo(f"\nDONE Sample users share the password {DEFAULT_PASSWORD!r}")


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
    """User inspection and bootstrap commands."""


@users_group.command('list')
@click.option('--role', type=click.Choice(ROLE_VALUES), help='Filter by role')
@with_appcontext
def list_users(role):
    """List users with role, region and hierarchy links."""
    users = user_service.list_users(role=role, include_inactive=True)
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 110)
    click.echo(f"{'ID':<5} {'Name':<28} {'Email':<30} {'Role':<18} {'Region':<12} {'TL':<5} {'RM':<5} Active")
    click.echo("=" * 110)
    for user in users:
        click.echo(
            f"{user.id:<5} {user.name[:27]:<28} {user.email[:29]:<30} {user.role:<18} "
            f"{(user.region or '-'):<12} {str(user.team_leader_id or '-'):<5} "
            f"{str(user.regional_manager_id or '-'):<5} {'Yes' if user.is_active else 'No'}"
        )
    click.echo("=" * 110 + "\n")


@users_group.command('create')
@click.option('--name', prompt=True, help='Full name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(ROLE_VALUES), prompt=True, help='Hierarchy role')
@click.option('--region', default=None, help='Region name')
@click.option('--team-leader-id', type=int, default=None, help='Team leader (field officers)')
@click.option('--regional-manager-id', type=int, default=None, help='Regional manager (team leaders)')
@with_appcontext
def create_user_cli(name, email, password, role, region, team_leader_id, regional_manager_id):
    """
    Create a hierarchy member.

    Password must meet strength requirements:
    8+ chars, uppercase, lowercase, digit, special char.
    """
    payload = {"name": name, "email": email, "role": role, "region": region}
    if team_leader_id is not None:
        payload["team_leader_id"] = team_leader_id
    if regional_manager_id is not None:
        payload["regional_manager_id"] = regional_manager_id

    try:
        user = user_service.create_user(None, payload, password)
        db.session.commit()
    except SERVICE_ERRORS as e:
        db.session.rollback()
        raise click.ClickException(f"Failed to create user: {e}")

    click.echo(f"PASS Created user: {user.name} ({user.email}) with role '{user.role}' (ID: {user.id})")


@click.group('stock')
def stock_group():
    """IMEI stock commands."""


@stock_group.command('register')
@click.option('--product-id', type=int, required=True, help='Product ID')
@click.option('--imei', 'imeis', multiple=True, required=True, help='15-digit IMEI (repeatable)')
@click.option('--source', type=click.Choice(SOURCE_VALUES), default=SOURCE_VALUES[0], show_default=True)
@click.option('--admin-email', default='admin@fieldstock.local', show_default=True, help='Registering admin')
@with_appcontext
def register_stock(product_id, imeis, source, admin_email):
    """Register IMEIs into the unallocated pool."""
    admin = db.session.query(User).filter_by(email=admin_email.lower()).first()
    if admin is None:
        raise click.ClickException(f"No user with email {admin_email}")

    try:
        result = imei_service.bulk_register(
            admin,
            [{"imei": number, "product_id": product_id, "source": source} for number in imeis],
        )
        db.session.commit()
    except SERVICE_ERRORS as e:
        db.session.rollback()
        raise click.ClickException(str(e))

    for number in result["success"]:
        click.echo(f"PASS Registered {number}")
    for row in result["failed"]:
        click.echo(f"FAIL {row['imei']}: {row['error']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
