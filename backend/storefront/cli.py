# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to storefront (PowerShell: $env:FLASK_APP="storefront").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --email admin@shop.local --name Admin --password "Password123" --admin
#   Create a user (prompts if options are omitted).
# - python -m flask users list
#   List users with role, active flag and lockout state.
# - python -m flask users unlock admin@shop.local
#   Clear a login lockout.
#
# Catalog:
# - python -m flask products create --sku TSHIRT-01 --name "T-Shirt" --price 19000 --stock 20 --discount 10
#   Create a product (discount is a percent; 0 disables it).
# - python -m flask products restock TSHIRT-01 5
#   Add stock to a product.
# - python -m flask products list
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions
#   Delete expired and revoked sessions older than SESSION_RETENTION_DAYS (default 30).

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import StorefrontError
from .models import Product, User
from .services import account_guard_service, session_service
from .services.auth_service import create_user, find_user_by_email
from .time_utils import to_utc_z


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


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


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', prompt=True, help='Display name')
@click.option('--phone', default=None, help='Phone number (used for password reset)')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--admin', 'is_admin', is_flag=True, help='Create an admin account')
@with_appcontext
def create_user_cli(email, name, phone, password, is_admin):
    """
    Create a new user.

    Password must be 8-20 characters.
    """
    role = "admin" if is_admin else "customer"
    try:
        user = create_user(email=email, password=password, name=name, phone=phone, role=role)
    except StorefrontError as e:
        raise click.ClickException(f"Failed to create user: {e.message}")

    click.echo(f"PASS Created user: {user.email} (ID: {user.id}) with role '{user.role}'")
    click.echo("SECURITY Password securely hashed with bcrypt")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with role, active flag and lockout state."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    for user in users:
        state = "active" if user.is_active else "inactive"
        if account_guard_service.is_locked(user):
            state += f", locked until {to_utc_z(user.lock_until)}"
        click.echo(f"{user.id:>4}  {user.email:<32} {user.role:<8} {state}")


@users_group.command('unlock')
@click.argument('email')
@with_appcontext
def unlock_user_cli(email):
    """Clear the failed-login counter and lock for a user."""
    user = find_user_by_email(email)
    if user is None:
        raise click.ClickException(f"User {email} not found")

    account_guard_service.unlock(user.id)
    click.echo(f"PASS Unlocked {user.email}")


@click.group('products')
def products_group():
    """Catalog bootstrap commands."""


@products_group.command('create')
@click.option('--sku', required=True, help='Unique SKU')
@click.option('--name', required=True, help='Product name')
@click.option('--price', type=click.IntRange(min=0), required=True, help='Unit price (integer currency units)')
@click.option('--stock', type=click.IntRange(min=0), default=0, show_default=True, help='Initial stock')
@click.option('--discount', type=click.IntRange(0, 100), default=0, show_default=True, help='Discount percent (0 = none)')
@with_appcontext
def create_product_cli(sku, name, price, stock, discount):
    """Create a product."""
    if db.session.query(Product).filter_by(sku=sku).first():
        raise click.ClickException(f"SKU {sku} already exists")

    product = Product(
        sku=sku,
        name=name,
        price=price,
        stock=stock,
        sales_count=0,
        discount_enabled=discount > 0,
        discount_rate=discount,
        is_active=True,
    )
    db.session.add(product)
    db.session.commit()

    click.echo(f"PASS Created product {product.sku} (ID: {product.id}) price={product.effective_price} stock={product.stock}")


@products_group.command('restock')
@click.argument('sku')
@click.argument('quantity', type=click.IntRange(min=1))
@with_appcontext
def restock_product_cli(sku, quantity):
    """Add QUANTITY units of stock to the product with SKU."""
    product = db.session.query(Product).filter_by(sku=sku).first()
    if product is None:
        raise click.ClickException(f"SKU {sku} not found")

    product.stock = Product.stock + quantity
    db.session.commit()

    click.echo(f"PASS {product.sku} stock is now {product.stock}")


@products_group.command('list')
@with_appcontext
def list_products():
    products = db.session.query(Product).order_by(Product.id).all()
    if not products:
        click.echo("No products found.")
        return

    for product in products:
        click.echo(
            f"{product.id:>4}  {product.sku:<16} {product.name:<32} "
            f"price={product.effective_price:<8} stock={product.stock:<6} sold={product.sales_count}"
        )


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions():
    """Delete expired and revoked sessions older than 30 days."""
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"PASS Deleted {deleted} sessions.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(products_group)
    app.cli.add_command(maintenance_group)
