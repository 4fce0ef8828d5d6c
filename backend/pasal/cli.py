# Overview: Flask CLI command groups for bootstrap, seeding and maintenance.

# backend/pasal/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create all tables (idempotent). Use `flask db upgrade` once migrations exist.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users create-admin --email admin@pasal.local --name "Store Admin" --password "Password123!"
#   Create a back-office account (prompts if options are omitted).
# - python -m flask users list [--role admin]
#   List accounts with role and active status.
#
# Catalog:
# - python -m flask catalog seed
#   Demo categories, brands, products and the WELCOME10 discount code.
#
# Maintenance:
# - python -m flask maintenance expire-pending-payments
#   Mark gateway checkouts past their expiry as expired.
# - python -m flask maintenance cleanup-sessions --retention-days 30
#   Delete expired/revoked session rows older than the retention window.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Brand, Category, Discount, Product, User
from .models.auth import ROLE_ADMIN, VALID_ROLES
from .services.auth_service import create_user, PasswordValidationError
from .services import catalog_service, discount_service, payment_service, session_service
from .validation import ConflictError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables ready.")
    click.echo("NEXT Create an admin: python -m flask users create-admin")


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


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create-admin')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', prompt=True, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), default=ROLE_ADMIN, show_default=True)
@with_appcontext
def create_admin_cli(email, name, password, role):
    """
    Create a back-office account.

    Storefront signup always produces shoppers; this is the only way to get
    an admin or superadmin.
    """
    try:
        user = create_user(name=name, email=email, password=password, role=role)
        click.echo(f"PASS Created {user.role} {user.email} (ID: {user.id})")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL {str(e)}")


@users_group.command('list')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with their roles."""
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role)

    users = query.order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Name':<25} {'Email':<35} {'Role':<11} {'Active'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.name[:24]:<25} {user.email[:34]:<35} {user.role:<11} {active_str}")

    click.echo("="*90 + "\n")


@click.group('catalog')
def catalog_group():
    """Catalog commands."""


DEMO_CATEGORIES = ("Electronics", "Fashion", "Home & Kitchen")
DEMO_BRANDS = ("Himalayan Goods", "Kathmandu Crafts")
DEMO_PRODUCTS = (
    # name, category, brand, price (paisa), stock
    ("Pashmina Shawl", "Fashion", "Kathmandu Crafts", 450_000, 25),
    ("Dhaka Topi", "Fashion", "Kathmandu Crafts", 80_000, 60),
    ("Copper Water Bottle", "Home & Kitchen", "Himalayan Goods", 150_000, 40),
    ("Bluetooth Speaker", "Electronics", "Himalayan Goods", 350_000, 8),
)


@catalog_group.command('seed')
@with_appcontext
def seed_catalog():
    """Insert demo catalog rows. Skips anything that already exists by name."""
    categories = {}
    for name in DEMO_CATEGORIES:
        existing = db.session.query(Category).filter_by(name=name).first()
        categories[name] = existing or catalog_service.create_category({"name": name})

    brands = {}
    for name in DEMO_BRANDS:
        existing = db.session.query(Brand).filter_by(name=name).first()
        brands[name] = existing or catalog_service.create_brand({"name": name})

    created = 0
    for name, category, brand, price, stock in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(name=name).first():
            continue
        catalog_service.create_product({
            "name": name,
            "price_paisa": price,
            "stock": stock,
            "category_id": categories[category].id,
            "brand_id": brands[brand].id,
        })
        created += 1

    if not db.session.query(Discount).filter_by(code="WELCOME10").first():
        discount_service.create_discount({
            "code": "WELCOME10",
            "description": "10% off your first order, up to Rs. 500",
            "discount_type": "percentage",
            "value": 1000,
            "max_discount_paisa": 50_000,
        })
        click.echo("PASS Created discount WELCOME10")

    click.echo(f"PASS Seeded {created} products.")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('expire-pending-payments')
@with_appcontext
def expire_pending_payments_cli():
    """Mark abandoned eSewa/Khalti checkouts as expired."""
    expired = payment_service.expire_pending_payments()
    click.echo(f"Expired {expired} pending payments.")


@maintenance_group.command('cleanup-sessions')
@click.option('--retention-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(retention_days):
    """
    Cleanup expired and revoked sessions.

    Default retention: 30 days.
    """
    deleted = session_service.cleanup_expired_sessions(retention_days=retention_days)
    click.echo(f"Deleted {deleted} sessions older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(maintenance_group)
