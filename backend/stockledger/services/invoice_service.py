# Overview: Service-layer operations for invoices; creation, numbering and the status state machine.

"""
Invoice Service

WHY: Separates sale intent from stock movement. Creating an invoice checks
that the requested stock exists but reserves nothing; stock only moves when
the invoice is settled as paid (see settlement_service).

STATE MACHINE:
    pending -> paid | failed | expired | cancelled

    Every non-pending state is terminal. A transition to 'paid' always goes
    through settle_invoice() so the stock decrement cannot be skipped.

NUMBERING:
    INV-0001, INV-0002, ... allocated from the INVOICE document sequence in
    the same transaction as the invoice insert.
"""

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..errors import (
    DuplicateError,
    InsufficientStockError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from ..models import Invoice, InvoiceItem, Product, User
from ..models.audit import AUDIT_CREATE, AUDIT_UPDATE
from ..models.invoices import (
    INVOICE_CANCELLED,
    INVOICE_EXPIRED,
    INVOICE_FAILED,
    INVOICE_PAID,
    INVOICE_PENDING,
    VALID_INVOICE_STATUSES,
    VALID_PAYMENT_METHODS,
)
from ..time_utils import utcnow
from ..validation import MAX_DB_INT, MAX_PRICE_CENTS, coerce_int, parse_money_cents
from .audit_service import record_audit
from .concurrency import begin_write, lock_for_update, run_with_retry
from .inventory_service import get_available_quantity
from .sequence_service import allocate_number, format_document_number, parse_document_number


INVOICES_TABLE = "invoices"
INVOICE_DOCUMENT_TYPE = "INVOICE"
INVOICE_PREFIX = "INV"

ALLOWED_TRANSITIONS = {
    INVOICE_PENDING: {INVOICE_PAID, INVOICE_FAILED, INVOICE_EXPIRED, INVOICE_CANCELLED},
    INVOICE_PAID: set(),
    INVOICE_FAILED: set(),
    INVOICE_EXPIRED: set(),
    INVOICE_CANCELLED: set(),
}


def _normalize_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    lines = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        line = {
            "product_id": coerce_int(raw.get("product_id"), f"items[{index}].product_id", minimum=1),
            "quantity": coerce_int(raw.get("quantity"), f"items[{index}].quantity", minimum=1),
            "unit_price_cents": None,
        }
        if raw.get("unit_price_cents") is not None:
            line["unit_price_cents"] = coerce_int(
                raw["unit_price_cents"], f"items[{index}].unit_price_cents", minimum=0, maximum=MAX_PRICE_CENTS
            )
        elif raw.get("unit_price") is not None:
            line["unit_price_cents"] = parse_money_cents(raw["unit_price"], f"items[{index}].unit_price")
        lines.append(line)
    return lines


def _highest_invoice_number() -> int:
    """Highest numeric suffix among existing invoice numbers (0 when none)."""
    highest = 0
    for (number,) in db.session.query(Invoice.number).all():
        parsed = parse_document_number(number, INVOICE_PREFIX)
        if parsed is not None and parsed > highest:
            highest = parsed
    return highest


def next_invoice_number() -> str:
    """Allocate an invoice number inside the caller's transaction."""
    number = allocate_number(document_type=INVOICE_DOCUMENT_TYPE, seed=_highest_invoice_number)
    return format_document_number(INVOICE_PREFIX, number)


def create_invoice(
    *,
    items,
    created_by_user_id: int,
    payment_method: str | None = None,
    notes: str | None = None,
) -> Invoice:
    """
    Create a pending invoice from line items.

    Validation, numbering, header, items and the CREATE audit entry share one
    transaction: on any failure nothing is persisted.

    Raises:
        ValidationError: malformed items, unknown payment method, missing price
        NotFoundError: unknown product or user
        InsufficientStockError: requested quantity exceeds available stock
    """
    lines = _normalize_items(items)
    if payment_method is not None and payment_method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {payment_method}. Must be one of {list(VALID_PAYMENT_METHODS)}"
        )

    def _op():
        begin_write()

        if db.session.get(User, created_by_user_id) is None:
            raise NotFoundError(f"User with id {created_by_user_id} not found")

        products: dict[int, Product] = {}
        requested: dict[int, int] = {}
        for line in lines:
            product_id = line["product_id"]
            if product_id not in products:
                product = db.session.get(Product, product_id)
                if product is None:
                    raise NotFoundError(f"Product with id {product_id} not found")
                if not product.is_active:
                    raise ValidationError(f"Product {product.name} is not active")
                products[product_id] = product
            requested[product_id] = requested.get(product_id, 0) + line["quantity"]

        # Advisory check only: nothing is reserved until settlement
        for product_id, quantity in requested.items():
            available = get_available_quantity(product_id)
            if available < quantity:
                product = products[product_id]
                raise InsufficientStockError(
                    f"Insufficient stock for product {product.name}. "
                    f"Available: {available}, Requested: {quantity}",
                    details={"product_id": product_id, "available": available, "requested": quantity},
                )

        invoice_items = []
        for line in lines:
            product = products[line["product_id"]]
            unit_price_cents = line["unit_price_cents"]
            if unit_price_cents is None:
                unit_price_cents = product.price_cents
            if unit_price_cents is None:
                raise ValidationError(f"Product {product.name} has no price")
            invoice_items.append(
                InvoiceItem(
                    product_id=product.id,
                    quantity=line["quantity"],
                    unit_price_cents=unit_price_cents,
                    subtotal_cents=unit_price_cents * line["quantity"],
                )
            )

        total_cents = sum(item.subtotal_cents for item in invoice_items)
        if total_cents > MAX_DB_INT:
            raise ValidationError("Invoice total exceeds maximum allowed value")

        invoice = Invoice(
            number=next_invoice_number(),
            total_cents=total_cents,
            item_count=len(invoice_items),
            status=INVOICE_PENDING,
            payment_method=payment_method,
            notes=notes,
            created_by_user_id=created_by_user_id,
            items=invoice_items,
        )
        db.session.add(invoice)
        db.session.flush()

        record_audit(
            table_name=INVOICES_TABLE,
            record_id=invoice.id,
            action=AUDIT_CREATE,
            new_values={
                "number": invoice.number,
                "total_cents": invoice.total_cents,
                "item_count": invoice.item_count,
                "status": invoice.status,
                "payment_method": invoice.payment_method,
                "items": [
                    {
                        "product_id": item.product_id,
                        "quantity": item.quantity,
                        "unit_price_cents": item.unit_price_cents,
                        "subtotal_cents": item.subtotal_cents,
                    }
                    for item in invoice_items
                ],
            },
            user_id=created_by_user_id,
        )

        db.session.commit()
        return invoice

    return run_with_retry(_op)


def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError(f"Invoice with id {invoice_id} not found")
    return invoice


def lock_invoice(invoice_id: int) -> Invoice:
    """Load an invoice with a row lock, refreshing any stale identity-map copy."""
    invoice = (
        lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id))
        .populate_existing()
        .first()
    )
    if invoice is None:
        raise NotFoundError(f"Invoice with id {invoice_id} not found")
    return invoice


def list_invoices(*, page: int = 1, limit: int = 10, status: str | None = None) -> dict:
    page = coerce_int(page, "page", minimum=1)
    limit = coerce_int(limit, "limit", minimum=1)
    if status is not None and status not in VALID_INVOICE_STATUSES:
        raise ValidationError(f"Invalid status: {status}")

    q = Invoice.query
    if status:
        q = q.filter(Invoice.status == status)
    total = q.count()
    data = (
        q.order_by(Invoice.created_at.desc(), Invoice.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {"data": data, "total": total, "page": page, "limit": limit}


def apply_status_transition(
    invoice: Invoice,
    new_status: str,
    *,
    payment_id: str | None = None,
    actor_user_id: int | None = None,
) -> Invoice:
    """Core state-machine step without locking, retry, or commit."""
    if new_status not in VALID_INVOICE_STATUSES:
        raise ValidationError(f"Invalid status: {new_status}")

    if new_status not in ALLOWED_TRANSITIONS[invoice.status]:
        raise InvalidStateTransitionError(
            f"Cannot change invoice {invoice.number} from {invoice.status} to {new_status}",
            details={"invoice_id": invoice.id, "status": invoice.status},
        )

    if payment_id:
        holder = (
            db.session.query(Invoice.id)
            .filter(Invoice.payment_id == payment_id, Invoice.id != invoice.id)
            .first()
        )
        if holder is not None:
            raise DuplicateError(
                f"Payment {payment_id} is already bound to another invoice",
                details={"invoice_id": holder.id},
            )

    old_values = invoice.status_snapshot()
    invoice.status = new_status
    if payment_id:
        invoice.payment_id = payment_id
    if new_status == INVOICE_PAID:
        invoice.paid_at = utcnow()
    db.session.flush()

    record_audit(
        table_name=INVOICES_TABLE,
        record_id=invoice.id,
        action=AUDIT_UPDATE,
        old_values=old_values,
        new_values=invoice.status_snapshot(),
        user_id=actor_user_id,
    )
    return invoice


def update_payment_status(
    invoice_id: int,
    status: str,
    *,
    payment_id: str | None = None,
    actor_user_id: int | None = None,
) -> Invoice:
    """
    Move an invoice along the state machine.

    'paid' is delegated to settle_invoice(), which also takes the stock.
    """
    if status == INVOICE_PAID:
        from .settlement_service import settle_invoice
        return settle_invoice(invoice_id, payment_id=payment_id, actor_user_id=actor_user_id).invoice

    def _op():
        begin_write()
        invoice = lock_invoice(invoice_id)
        apply_status_transition(invoice, status, payment_id=payment_id, actor_user_id=actor_user_id)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def cancel_invoice(invoice_id: int, *, actor_user_id: int | None = None) -> Invoice:
    return update_payment_status(invoice_id, INVOICE_CANCELLED, actor_user_id=actor_user_id)


def update_invoice_qr(
    invoice_id: int,
    qr_code: str,
    qr_expiration: datetime,
    *,
    payment_method: str | None = None,
) -> Invoice:
    """Store the gateway QR payload verbatim on a pending invoice."""
    def _op():
        begin_write()
        invoice = lock_invoice(invoice_id)
        if invoice.status != INVOICE_PENDING:
            raise InvalidStateTransitionError(
                f"Invoice {invoice.number} is {invoice.status}; QR codes are only issued for pending invoices"
            )
        old_values = {"qr_expiration": invoice.qr_expiration.isoformat() if invoice.qr_expiration else None}
        invoice.qr_code = qr_code
        invoice.qr_expiration = qr_expiration
        if payment_method:
            invoice.payment_method = payment_method
        db.session.flush()

        record_audit(
            table_name=INVOICES_TABLE,
            record_id=invoice.id,
            action=AUDIT_UPDATE,
            old_values=old_values,
            new_values={"qr_expiration": qr_expiration.isoformat(), "payment_method": invoice.payment_method},
        )

        db.session.commit()
        return invoice

    return run_with_retry(_op)


def get_expired_qr_invoices(now: datetime | None = None) -> list[Invoice]:
    """Pending invoices whose QR code has expired."""
    now = now or utcnow()
    return (
        Invoice.query.filter(
            Invoice.status == INVOICE_PENDING,
            Invoice.qr_code.isnot(None),
            Invoice.qr_expiration <= now,
        )
        .order_by(Invoice.id.asc())
        .all()
    )
