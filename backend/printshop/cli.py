# Overview: Flask CLI command groups for bootstrap and maintenance of the print shop engine.

# backend/printshop/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables, one user per role and the tax_rate setting.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --username jo --name "Jo Press" --role production
#
# Billing and quotations (no scheduler; run these from cron if needed):
# - python -m flask invoices mark-overdue
#   Issued/partial invoices past their due date become overdue.
# - python -m flask quotations expire
#   Open quotations past valid_until become expired.
#
# Pricing:
# - python -m flask pricing quote --product-id 1 --quantity 150 [--width 2 --height 3 --unit ft] [--customer-id 4]
#   Preview the resolved price without creating anything.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import PrintshopError
from .extensions import db
from .models import User
from .models.auth import ROLE_ADMIN, ROLE_COUNTER, ROLE_MANAGER, ROLE_PRODUCTION, ROLE_QA, VALID_ROLES
from .services import invoice_service, pricing_service, quotation_service, users_service
from .services.settings_service import TAX_RATE_KEY, get_setting, set_setting


DEFAULT_USERS = (
    ("admin", "Administrator", ROLE_ADMIN),
    ("manager", "Shop Manager", ROLE_MANAGER),
    ("counter", "Counter Staff", ROLE_COUNTER),
    ("production", "Production Operator", ROLE_PRODUCTION),
    ("qa", "Quality Control", ROLE_QA),
)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the print shop database.

    Creates:
    - All tables (if missing)
    - One user per role: admin, manager, counter, production, qa
    - tax_rate setting from TAX_RATE_PERCENT (if missing)
    """
    click.echo("START Initializing print shop system...")

    db.create_all()
    click.echo("PASS Tables ready")

    for username, name, role in DEFAULT_USERS:
        user = db.session.query(User).filter_by(username=username).first()
        if user:
            click.echo(f"PASS User exists: {username} ({user.role})")
            continue
        user = users_service.create_user(username, name, role)
        click.echo(f"PASS Created user: {username} ({role}, ID: {user.id})")

    if get_setting(TAX_RATE_KEY) is None:
        set_setting(TAX_RATE_KEY, str(current_app.config.get("TAX_RATE_PERCENT", "0")))
        db.session.commit()
        click.echo(f"PASS tax_rate set to {get_setting(TAX_RATE_KEY)}%")
    else:
        click.echo(f"PASS tax_rate is {get_setting(TAX_RATE_KEY)}%")

    click.echo("DONE System initialized")


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


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--name', prompt=True)
@click.option('--role', type=click.Choice(VALID_ROLES), prompt=True)
@with_appcontext
def create_user_cli(username, name, role):
    try:
        user = users_service.create_user(username, name, role)
    except PrintshopError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    click.echo(f"PASS Created user {user.username} (ID: {user.id}, role: {user.role})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List active users with their roles."""
    users = users_service.list_users()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*60)
    click.echo(f"{'ID':<5} {'Username':<20} {'Role':<15} {'Name'}")
    click.echo("="*60)
    for user in users:
        click.echo(f"{user.id:<5} {user.username:<20} {user.role:<15} {user.name}")
    click.echo("="*60 + "\n")


@click.group('invoices')
def invoices_group():
    """Invoice maintenance."""


@invoices_group.command('mark-overdue')
@with_appcontext
def mark_overdue_cli():
    invoices = invoice_service.mark_overdue_invoices()
    for invoice in invoices:
        click.echo(f"OVERDUE {invoice.invoice_number} balance={invoice.balance} due={invoice.due_date}")
    click.echo(f"PASS {len(invoices)} invoice(s) marked overdue")


@click.group('quotations')
def quotations_group():
    """Quotation maintenance."""


@quotations_group.command('expire')
@with_appcontext
def expire_quotations_cli():
    quotations = quotation_service.expire_quotations()
    for quotation in quotations:
        click.echo(f"EXPIRED {quotation.quote_number} valid_until={quotation.valid_until}")
    click.echo(f"PASS {len(quotations)} quotation(s) expired")


@click.group('pricing')
def pricing_group():
    """Pricing previews."""


@pricing_group.command('quote')
@click.option('--product-id', type=int, required=True)
@click.option('--quantity', type=int, default=1, show_default=True)
@click.option('--width', default=None, help='Print width (dimension products)')
@click.option('--height', default=None, help='Print height (dimension products)')
@click.option('--unit', default='ft', show_default=True, help='in, ft, mm, cm or m')
@click.option('--customer-id', type=int, default=None)
@with_appcontext
def quote_cli(product_id, quantity, width, height, unit, customer_id):
    dimensions = None
    if width is not None or height is not None:
        dimensions = {"width": width, "height": height, "unit": unit}
    try:
        quote = pricing_service.calculate_price(product_id, quantity, dimensions, customer_id)
    except PrintshopError as e:
        click.echo(f"FAIL {type(e).__name__}: {e.message}")
        raise SystemExit(1)

    click.echo(f"unit_price={quote.unit_price} line_total={quote.line_total} rule={quote.applied_rule_id} ({quote.rule_type})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(invoices_group)
    app.cli.add_command(quotations_group)
    app.cli.add_command(pricing_group)
