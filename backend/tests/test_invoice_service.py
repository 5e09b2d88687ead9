"""
Invoice settlement engine tests: creation, numbering and the status state machine.
"""

from datetime import timedelta

import pytest

from stockledger.errors import (
    DuplicateError,
    InsufficientStockError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from stockledger.models import AuditLogEntry, Invoice, InvoiceItem
from stockledger.models.audit import AUDIT_CREATE, AUDIT_UPDATE
from stockledger.models.invoices import (
    INVOICE_CANCELLED,
    INVOICE_EXPIRED,
    INVOICE_FAILED,
    INVOICE_PAID,
    INVOICE_PENDING,
)
from stockledger.services import inventory_service, invoice_service
from stockledger.services.audit_service import list_audit_entries
from stockledger.time_utils import utcnow


def _create(user, product_id, quantity, **kwargs):
    return invoice_service.create_invoice(
        items=[{"product_id": product_id, "quantity": quantity, **kwargs}],
        created_by_user_id=user.id,
    )


# =============================================================================
# CREATION
# =============================================================================


class TestCreateInvoice:

    def test_creates_pending_invoice_without_touching_stock(self, inventory, product, admin_user):
        invoice = _create(admin_user, product.id, 3, unit_price="12.50")

        assert invoice.number == "INV-0001"
        assert invoice.status == INVOICE_PENDING
        assert invoice.total_cents == 3750
        assert invoice.item_count == 1
        assert invoice.items[0].unit_price_cents == 1250
        assert invoice.items[0].subtotal_cents == 3750
        assert inventory_service.get_inventory(inventory.id).quantity == 10

    def test_totals_are_exact_in_cents(self, inventory, product, second_product, admin_user):
        inventory_service.create_inventory(product_id=second_product.id, quantity=100)
        invoice = invoice_service.create_invoice(
            items=[
                {"product_id": product.id, "quantity": 3, "unit_price": "0.10"},
                {"product_id": second_product.id, "quantity": 7, "unit_price": "0.20"},
            ],
            created_by_user_id=admin_user.id,
        )
        assert invoice.total_cents == 170
        assert invoice.item_count == 2

    def test_price_falls_back_to_catalog(self, inventory, product, admin_user):
        invoice = _create(admin_user, product.id, 2)
        assert invoice.items[0].unit_price_cents == 1250
        assert invoice.total_cents == 2500

    def test_product_without_price_is_rejected(self, db_session, product, admin_user):
        product.price_cents = None
        db_session.commit()
        inventory_service.create_inventory(product_id=product.id, quantity=5)

        with pytest.raises(ValidationError):
            _create(admin_user, product.id, 1)

    def test_numbers_are_sequential(self, inventory, product, admin_user):
        numbers = [_create(admin_user, product.id, 1).number for _ in range(3)]
        assert numbers == ["INV-0001", "INV-0002", "INV-0003"]

    def test_counter_is_seeded_from_highest_existing_number(self, db_session, inventory, product, admin_user):
        db_session.add(Invoice(number="INV-0041", total_cents=0, item_count=0, created_by_user_id=admin_user.id))
        db_session.commit()

        assert _create(admin_user, product.id, 1).number == "INV-0042"

    def test_create_is_audited(self, inventory, product, admin_user):
        invoice = _create(admin_user, product.id, 2)
        entries = list_audit_entries(table_name="invoices", record_id=invoice.id)
        assert [e.action for e in entries] == [AUDIT_CREATE]
        assert entries[0].new_values["number"] == invoice.number
        assert entries[0].new_values["items"][0]["quantity"] == 2
        assert entries[0].user_id == admin_user.id

    def test_insufficient_stock_persists_nothing(self, inventory, product, admin_user):
        audits_before = AuditLogEntry.query.count()

        with pytest.raises(InsufficientStockError) as exc_info:
            _create(admin_user, product.id, 11)

        assert "Widget" in str(exc_info.value)
        assert exc_info.value.details == {"product_id": product.id, "available": 10, "requested": 11}
        assert Invoice.query.count() == 0
        assert InvoiceItem.query.count() == 0
        assert AuditLogEntry.query.count() == audits_before

    def test_failed_create_does_not_consume_a_number(self, inventory, product, admin_user):
        with pytest.raises(InsufficientStockError):
            _create(admin_user, product.id, 50)
        assert _create(admin_user, product.id, 1).number == "INV-0001"

    def test_repeated_product_lines_are_checked_together(self, inventory, product, admin_user):
        with pytest.raises(InsufficientStockError):
            invoice_service.create_invoice(
                items=[
                    {"product_id": product.id, "quantity": 6},
                    {"product_id": product.id, "quantity": 6},
                ],
                created_by_user_id=admin_user.id,
            )
        assert Invoice.query.count() == 0

    def test_inactive_inventory_counts_as_no_stock(self, inventory, product, admin_user):
        inventory_service.soft_delete_inventory(inventory.id)
        with pytest.raises(InsufficientStockError):
            _create(admin_user, product.id, 1)

    def test_unknown_product(self, db_session, admin_user):
        with pytest.raises(NotFoundError):
            _create(admin_user, 4242, 1)

    @pytest.mark.parametrize("items", [
        [],
        None,
        "not-a-list",
        [{"product_id": 1, "quantity": 0}],
        [{"product_id": 1, "quantity": -2}],
        [{"product_id": 1, "quantity": 1.5}],
        [{"product_id": 1}],
        [{"product_id": 1, "quantity": 1, "unit_price": "1.005"}],
        [{"product_id": 1, "quantity": 1, "unit_price": "-1"}],
    ])
    def test_rejects_malformed_items(self, db_session, admin_user, items):
        with pytest.raises(ValidationError):
            invoice_service.create_invoice(items=items, created_by_user_id=admin_user.id)

    def test_rejects_unknown_payment_method(self, inventory, product, admin_user):
        with pytest.raises(ValidationError):
            invoice_service.create_invoice(
                items=[{"product_id": product.id, "quantity": 1}],
                created_by_user_id=admin_user.id,
                payment_method="bitcoin",
            )


# =============================================================================
# STATE MACHINE
# =============================================================================


class TestStatusTransitions:

    @pytest.mark.parametrize("status", [INVOICE_FAILED, INVOICE_EXPIRED, INVOICE_CANCELLED])
    def test_pending_can_move_to_terminal_state(self, inventory, product, admin_user, status):
        invoice = _create(admin_user, product.id, 1)
        updated = invoice_service.update_payment_status(invoice.id, status, actor_user_id=admin_user.id)
        assert updated.status == status

        entries = list_audit_entries(table_name="invoices", record_id=invoice.id)
        assert entries[0].action == AUDIT_UPDATE
        assert entries[0].old_values["status"] == INVOICE_PENDING
        assert entries[0].new_values["status"] == status

    @pytest.mark.parametrize("terminal", [INVOICE_FAILED, INVOICE_EXPIRED, INVOICE_CANCELLED])
    def test_terminal_states_are_final(self, inventory, product, admin_user, terminal):
        invoice = _create(admin_user, product.id, 1)
        invoice_service.update_payment_status(invoice.id, terminal)

        for target in (INVOICE_PENDING, INVOICE_PAID, INVOICE_CANCELLED):
            with pytest.raises(InvalidStateTransitionError):
                invoice_service.update_payment_status(invoice.id, target)
        assert invoice_service.get_invoice(invoice.id).status == terminal

    def test_paid_goes_through_settlement(self, inventory, product, admin_user):
        invoice = _create(admin_user, product.id, 4)
        updated = invoice_service.update_payment_status(invoice.id, INVOICE_PAID, payment_id="PAY-1")

        assert updated.status == INVOICE_PAID
        assert updated.payment_id == "PAY-1"
        assert updated.paid_at is not None
        assert inventory_service.get_inventory(inventory.id).quantity == 6

    def test_unknown_status(self, inventory, product, admin_user):
        invoice = _create(admin_user, product.id, 1)
        with pytest.raises(ValidationError):
            invoice_service.update_payment_status(invoice.id, "refunded")

    def test_payment_id_bound_to_another_invoice(self, inventory, product, admin_user):
        first = _create(admin_user, product.id, 1)
        second = _create(admin_user, product.id, 1)
        invoice_service.update_payment_status(first.id, INVOICE_PAID, payment_id="PAY-9")

        with pytest.raises(DuplicateError):
            invoice_service.update_payment_status(second.id, INVOICE_PAID, payment_id="PAY-9")
        assert invoice_service.get_invoice(second.id).status == INVOICE_PENDING

    def test_cancel_invoice(self, inventory, product, admin_user):
        invoice = _create(admin_user, product.id, 1)
        assert invoice_service.cancel_invoice(invoice.id).status == INVOICE_CANCELLED
        with pytest.raises(InvalidStateTransitionError):
            invoice_service.cancel_invoice(invoice.id)

    def test_unknown_invoice(self, db_session):
        with pytest.raises(NotFoundError):
            invoice_service.update_payment_status(999, INVOICE_CANCELLED)


# =============================================================================
# QR AND QUERIES
# =============================================================================


class TestQrAndQueries:

    def test_expired_qr_query(self, inventory, product, admin_user):
        now = utcnow()
        expired = _create(admin_user, product.id, 1)
        fresh = _create(admin_user, product.id, 1)
        cancelled = _create(admin_user, product.id, 1)
        _create(admin_user, product.id, 1)  # no QR at all

        invoice_service.update_invoice_qr(expired.id, "QR-A", now - timedelta(minutes=1))
        invoice_service.update_invoice_qr(fresh.id, "QR-B", now + timedelta(hours=1))
        invoice_service.update_invoice_qr(cancelled.id, "QR-C", now - timedelta(hours=1))
        invoice_service.cancel_invoice(cancelled.id)

        assert [i.id for i in invoice_service.get_expired_qr_invoices(now)] == [expired.id]

    def test_qr_only_for_pending(self, inventory, product, admin_user):
        invoice = _create(admin_user, product.id, 1)
        invoice_service.cancel_invoice(invoice.id)
        with pytest.raises(InvalidStateTransitionError):
            invoice_service.update_invoice_qr(invoice.id, "QR", utcnow())

    def test_list_paginates_and_filters(self, inventory, product, admin_user):
        invoices = [_create(admin_user, product.id, 1) for _ in range(5)]
        invoice_service.cancel_invoice(invoices[0].id)

        page = invoice_service.list_invoices(page=1, limit=2)
        assert page["total"] == 5
        assert len(page["data"]) == 2
        assert page["data"][0].id == invoices[-1].id

        cancelled = invoice_service.list_invoices(status=INVOICE_CANCELLED)
        assert [i.id for i in cancelled["data"]] == [invoices[0].id]

        with pytest.raises(ValidationError):
            invoice_service.list_invoices(status="bogus")
