# Overview: Flask CLI command groups for bootstrap, operators and sale maintenance.

# backend/storepos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use "flask db upgrade" for migrated deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Operators:
# - python -m flask users list
#   List operator accounts.
# - python -m flask users create --username cashier1 --full-name "Ana Ruiz" --role cashier
#   Create an operator (prompts for the password).
#
# Sales:
# - python -m flask sales list [--status Annulled] [--limit 20]
#   Show recent sales, newest first.
# - python -m flask sales annul AS12
#   Annul a sale and restore its stock (same engine as PUT /api/sales/annul).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .services import sales_service
from .services.auth_service import create_user, PasswordValidationError
from .services.sales_service import SaleError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create any missing tables. Existing data is left alone."""
    db.create_all()
    click.echo("PASS Tables created (existing tables untouched).")


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
    """Operator account commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List operator accounts."""
    users = db.session.query(User).order_by(User.username.asc()).all()
    if not users:
        click.echo("No users found.")
        return

    for user in users:
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.username:<20} {user.role:<10} {status:<8} {user.full_name or ''}")


@users_group.command('create')
@click.option('--username', prompt=True, help='Login name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password (8+ chars)')
@click.option('--full-name', default=None, help='Display name printed on sales')
@click.option('--role', default='cashier', type=click.Choice(['admin', 'cashier']), help='Role label')
@with_appcontext
def create_user_command(username, password, full_name, role):
    """Create an operator account."""
    try:
        user = create_user(username=username, password=password, full_name=full_name, role=role)
    except (ValueError, PasswordValidationError) as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Created user: {user.username} (ID: {user.id}, role '{user.role}')")


@click.group('sales')
def sales_group():
    """Sale inspection and maintenance commands."""


@sales_group.command('list')
@click.option('--status', default=None, type=click.Choice(['Completed', 'Annulled']), help='Filter by status')
@click.option('--limit', default=20, show_default=True, help='Maximum rows')
@with_appcontext
def list_sales_command(status, limit):
    """Show recent sales, newest first."""
    sales = sales_service.list_sales(status=status, limit=limit)
    if not sales:
        click.echo("No sales found.")
        return

    for sale in sales:
        total = f"{sale.total_cents / 100:,.2f}"
        click.echo(
            f"{sale.sale_code:<10} {sale.status:<10} {total:>12}  "
            f"{sale.created_at:%Y-%m-%d %H:%M}  {sale.customer_name}"
        )


@sales_group.command('annul')
@click.argument('sale_code')
@with_appcontext
def annul_sale_command(sale_code):
    """Annul SALE_CODE and restore its stock."""
    try:
        result = sales_service.annul_sale(sale_code)
    except SaleError as e:
        raise click.ClickException(f"{e.code}: {e}")

    click.echo(f"PASS Sale {result.sale.sale_code} annulled; {result.restored_count} line(s) restored.")
    for skipped in result.skipped:
        click.echo(f"WARN  Skipped: {skipped}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(sales_group)
