"""
Operator CLI tests via Flask's CLI runner.
"""

from sqlalchemy import text

from stockledger.models import Product, User
from stockledger.models.invoices import INVOICE_PAID
from stockledger.services import inventory_service, invoice_service


def test_users_create(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=[
        "users", "create",
        "--username", "clerk", "--email", "clerk@example.com",
        "--password", "Password123", "--role", "employee",
    ])

    assert result.exit_code == 0, result.output
    assert "Created user: clerk" in result.output
    assert User.query.filter_by(username="clerk").one().role == "employee"


def test_users_create_rejects_weak_password(app, db_session):
    result = app.test_cli_runner().invoke(args=[
        "users", "create",
        "--username", "clerk", "--email", "clerk@example.com",
        "--password", "short", "--role", "viewer",
    ])
    assert result.exit_code != 0
    assert User.query.count() == 0


def test_products_and_inventory_create(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["products", "create", "--sku", "SKU-9", "--name", "Bolt", "--price", "0.35"])
    assert result.exit_code == 0, result.output

    product = Product.query.filter_by(sku="SKU-9").one()
    assert product.price_cents == 35

    result = runner.invoke(args=["inventory", "create", "--product-id", str(product.id), "--quantity", "40"])
    assert result.exit_code == 0, result.output
    assert inventory_service.get_inventory_by_product(product.id).quantity == 40


def test_reconcile_reports_drift(app, db_session, inventory):
    runner = app.test_cli_runner()
    assert "Ledger is consistent" in runner.invoke(args=["inventory", "reconcile"]).output

    db_session.execute(text("UPDATE inventory SET quantity = 3 WHERE id = :id"), {"id": inventory.id})
    db_session.commit()

    result = runner.invoke(args=["inventory", "reconcile"])
    assert result.exit_code != 0
    assert f"FAIL inventory {inventory.id}" in result.output
    assert "difference=-7" in result.output


def test_invoices_settle_is_rerunnable(app, db_session, inventory, product, admin_user):
    invoice = invoice_service.create_invoice(
        items=[{"product_id": product.id, "quantity": 2}], created_by_user_id=admin_user.id
    )
    runner = app.test_cli_runner()

    first = runner.invoke(args=["invoices", "settle", str(invoice.id), "--payment-id", "MP-77"])
    assert first.exit_code == 0, first.output
    assert "settled" in first.output

    second = runner.invoke(args=["invoices", "settle", str(invoice.id)])
    assert second.exit_code == 0
    assert "already paid" in second.output

    db_session.expire_all()
    assert invoice_service.get_invoice(invoice.id).status == INVOICE_PAID
    assert inventory_service.get_inventory(inventory.id).quantity == 8


def test_invoices_settle_unknown_invoice(app, db_session):
    result = app.test_cli_runner().invoke(args=["invoices", "settle", "404"])
    assert result.exit_code != 0
    assert "not found" in result.output


def test_refresh_qrs_with_nothing_expired(app, gateway, db_session):
    result = app.test_cli_runner().invoke(args=["payments", "refresh-qrs"])
    assert result.exit_code == 0
    assert "Refreshed: 0" in result.output
