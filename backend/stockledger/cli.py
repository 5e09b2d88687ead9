# Overview: Flask CLI command groups for bootstrap and operator recovery.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory, FLASK_APP=wsgi.py):
#
# - flask users create --username admin --email admin@example.com --password "Password123" --role admin
#   Create a user (prompts if options are omitted).
# - flask products create --sku SKU-1 --name "Widget" --price 12.50
#   Create a catalog product.
# - flask inventory create --product-id 1 --quantity 10 --min-stock 2
#   Create the inventory record for a product.
# - flask inventory reconcile [--inventory-id 1]
#   Compare stored quantities with the movement ledger; exits non-zero on drift.
# - flask invoices settle 42 [--payment-id 123456]
#   Mark an invoice paid and take its stock. Safe to re-run.
# - flask payments refresh-qrs
#   Re-issue gateway QR codes for pending invoices whose QR expired.

import click
from flask.cli import with_appcontext

from .errors import StockLedgerError
from .models.auth import VALID_ROLES
from .services import auth_service, inventory_service, products_service
from .services.payment_service import get_payment_coordinator
from .services.settlement_service import settle_invoice


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), prompt=True, help='Role')
@click.option('--full-name', default='', help='Display name')
@with_appcontext
def create_user_command(username, email, password, role, full_name):
    try:
        user = auth_service.create_user(
            username=username, email=email, password=password, role=role, full_name=full_name
        )
    except StockLedgerError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{user.role}' (ID: {user.id})")


@click.group('products')
def products_group():
    """Catalog commands."""


@products_group.command('create')
@click.option('--sku', required=True, help='Unique SKU')
@click.option('--name', required=True, help='Product name')
@click.option('--price', help='Unit price, e.g. 12.50')
@click.option('--description', help='Optional description')
@with_appcontext
def create_product_command(sku, name, price, description):
    try:
        product = products_service.create_product(sku=sku, name=name, price=price, description=description)
    except StockLedgerError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created product: {product.sku} {product.name} (ID: {product.id})")


@click.group('inventory')
def inventory_group():
    """Inventory commands."""


@inventory_group.command('create')
@click.option('--product-id', type=int, required=True, help='Product ID')
@click.option('--quantity', type=int, default=0, show_default=True, help='Opening quantity')
@click.option('--min-stock', type=int, default=0, show_default=True, help='Low-stock threshold')
@click.option('--max-stock', type=int, help='Optional maximum')
@click.option('--location', help='Optional shelf/bin location')
@with_appcontext
def create_inventory_command(product_id, quantity, min_stock, max_stock, location):
    try:
        inventory = inventory_service.create_inventory(
            product_id=product_id,
            quantity=quantity,
            min_stock=min_stock,
            max_stock=max_stock,
            location=location,
        )
    except StockLedgerError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created inventory {inventory.id} for product {product_id} (quantity {inventory.quantity})")


@inventory_group.command('reconcile')
@click.option('--inventory-id', type=int, help='Check a single record')
@with_appcontext
def reconcile_command(inventory_id):
    """Report records whose quantity disagrees with the sum of their movements."""
    try:
        if inventory_id is not None:
            report = inventory_service.reconcile_inventory(inventory_id)
            reports = [] if report["consistent"] else [report]
        else:
            reports = inventory_service.find_unreconciled()
    except StockLedgerError as e:
        raise click.ClickException(str(e))

    if not reports:
        click.echo("PASS Ledger is consistent")
        return

    for report in reports:
        click.echo(
            f"FAIL inventory {report['inventory_id']}: quantity={report['quantity']} "
            f"movements={report['movement_sum']} difference={report['difference']}"
        )
    raise click.ClickException(f"{len(reports)} inventory record(s) out of balance")


@click.group('invoices')
def invoices_group():
    """Invoice recovery commands."""


@invoices_group.command('settle')
@click.argument('invoice_id', type=int)
@click.option('--payment-id', help='Gateway payment id to bind')
@with_appcontext
def settle_command(invoice_id, payment_id):
    """Mark INVOICE_ID paid and decrement its stock (no-op if already paid)."""
    try:
        result = settle_invoice(invoice_id, payment_id=payment_id)
    except StockLedgerError as e:
        raise click.ClickException(str(e))

    if result.applied:
        click.echo(f"PASS Invoice {result.invoice.number} settled ({len(result.movements)} movement(s))")
    else:
        click.echo(f"WARN  Invoice {result.invoice.number} was already paid; nothing to do")


@click.group('payments')
def payments_group():
    """Payment gateway commands."""


@payments_group.command('refresh-qrs')
@with_appcontext
def refresh_qrs_command():
    result = get_payment_coordinator().refresh_expired_qrs()
    click.echo(f"Refreshed: {result['refreshed']}  Failed: {result['failed']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(users_group)
    app.cli.add_command(products_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(invoices_group)
    app.cli.add_command(payments_group)
