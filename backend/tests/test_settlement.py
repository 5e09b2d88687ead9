"""
Settlement tests: marking an invoice paid and taking its stock exactly once.
"""

import pytest

from stockledger.errors import (
    InsufficientStockError,
    InvalidStateTransitionError,
    InventoryUnavailableError,
    NotFoundError,
)
from stockledger.models import InventoryMovement
from stockledger.models.inventory import MOVEMENT_OUT
from stockledger.models.invoices import INVOICE_PAID, INVOICE_PENDING
from stockledger.services import inventory_service, invoice_service
from stockledger.services.audit_service import list_audit_entries
from stockledger.services.settlement_service import settle_invoice


def _invoice(user, lines):
    return invoice_service.create_invoice(
        items=[{"product_id": pid, "quantity": qty} for pid, qty in lines],
        created_by_user_id=user.id,
    )


def _invoice_movements(invoice_id):
    return InventoryMovement.query.filter_by(invoice_id=invoice_id).all()


def test_end_to_end_payment_decrements_stock(inventory, product, admin_user):
    invoice = _invoice(admin_user, [(product.id, 3)])
    assert invoice.status == INVOICE_PENDING
    assert inventory_service.get_inventory(inventory.id).quantity == 10

    result = settle_invoice(invoice.id, payment_id="MP-1001")

    assert result.applied is True
    assert result.invoice.status == INVOICE_PAID
    assert result.invoice.payment_id == "MP-1001"
    assert inventory_service.get_inventory(inventory.id).quantity == 7

    movements = _invoice_movements(invoice.id)
    assert len(movements) == 1
    assert movements[0].amount == -3
    assert movements[0].type == MOVEMENT_OUT
    assert movements[0].inventory_id == inventory.id
    assert inventory_service.reconcile_inventory(inventory.id)["consistent"] is True


def test_duplicate_confirmation_is_a_no_op(inventory, product, admin_user):
    invoice = _invoice(admin_user, [(product.id, 3)])
    settle_invoice(invoice.id, payment_id="MP-1001")

    again = settle_invoice(invoice.id, payment_id="MP-1001")

    assert again.applied is False
    assert again.movements == []
    assert inventory_service.get_inventory(inventory.id).quantity == 7
    assert len(_invoice_movements(invoice.id)) == 1


def test_repeated_product_lines_produce_one_movement(inventory, product, admin_user):
    invoice = _invoice(admin_user, [(product.id, 2), (product.id, 3)])
    result = settle_invoice(invoice.id)

    assert len(result.movements) == 1
    assert _invoice_movements(invoice.id)[0].amount == -5
    assert inventory_service.get_inventory(inventory.id).quantity == 5


def test_oversell_at_settlement_rolls_back(inventory, product, admin_user):
    invoice = _invoice(admin_user, [(product.id, 8)])
    # Stock sold elsewhere between invoice creation and payment
    inventory_service.adjust_inventory(inventory.id, amount=5, movement_type=MOVEMENT_OUT)

    with pytest.raises(InsufficientStockError):
        settle_invoice(invoice.id, payment_id="MP-2002")

    reloaded = invoice_service.get_invoice(invoice.id)
    assert reloaded.status == INVOICE_PENDING
    assert reloaded.payment_id is None
    assert inventory_service.get_inventory(inventory.id).quantity == 5
    assert _invoice_movements(invoice.id) == []

    failures = [
        e for e in list_audit_entries(table_name="invoices", record_id=invoice.id)
        if e.new_values and e.new_values.get("settlement_failed")
    ]
    assert len(failures) == 1
    assert failures[0].new_values["error_type"] == "InsufficientStockError"
    assert failures[0].new_values["payment_id"] == "MP-2002"


def test_failed_settlement_can_be_retried(inventory, product, admin_user):
    invoice = _invoice(admin_user, [(product.id, 8)])
    inventory_service.adjust_inventory(inventory.id, amount=5, movement_type=MOVEMENT_OUT)
    with pytest.raises(InsufficientStockError):
        settle_invoice(invoice.id)

    inventory_service.adjust_inventory(inventory.id, amount=10, movement_type="IN")
    result = settle_invoice(invoice.id)

    assert result.applied is True
    assert inventory_service.get_inventory(inventory.id).quantity == 7


def test_all_items_decrement_or_none(inventory, product, second_product, admin_user):
    gadget = inventory_service.create_inventory(product_id=second_product.id, quantity=4)
    invoice = _invoice(admin_user, [(product.id, 2), (second_product.id, 4)])
    inventory_service.adjust_inventory(gadget.id, amount=1, movement_type=MOVEMENT_OUT)

    with pytest.raises(InsufficientStockError):
        settle_invoice(invoice.id)

    assert inventory_service.get_inventory(inventory.id).quantity == 10
    assert inventory_service.get_inventory(gadget.id).quantity == 3
    assert _invoice_movements(invoice.id) == []


def test_inactive_inventory_fails_settlement(inventory, product, admin_user):
    invoice = _invoice(admin_user, [(product.id, 1)])
    inventory_service.soft_delete_inventory(inventory.id)

    with pytest.raises(InventoryUnavailableError):
        settle_invoice(invoice.id)
    assert invoice_service.get_invoice(invoice.id).status == INVOICE_PENDING
    assert _invoice_movements(invoice.id) == []


def test_cancelled_invoice_cannot_be_settled(inventory, product, admin_user):
    invoice = _invoice(admin_user, [(product.id, 1)])
    invoice_service.cancel_invoice(invoice.id)

    with pytest.raises(InvalidStateTransitionError):
        settle_invoice(invoice.id)
    assert inventory_service.get_inventory(inventory.id).quantity == 10


def test_unknown_invoice(db_session):
    with pytest.raises(NotFoundError):
        settle_invoice(31337)
