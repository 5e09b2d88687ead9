from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


INVOICE_PENDING = "pending"
INVOICE_PAID = "paid"
INVOICE_FAILED = "failed"
INVOICE_EXPIRED = "expired"
INVOICE_CANCELLED = "cancelled"

VALID_INVOICE_STATUSES = (
    INVOICE_PENDING,
    INVOICE_PAID,
    INVOICE_FAILED,
    INVOICE_EXPIRED,
    INVOICE_CANCELLED,
)

PAYMENT_METHOD_MERCADO_PAGO = "mercado_pago"
PAYMENT_METHOD_CASH = "cash"
PAYMENT_METHOD_TRANSFER = "transfer"

VALID_PAYMENT_METHODS = (
    PAYMENT_METHOD_MERCADO_PAGO,
    PAYMENT_METHOD_CASH,
    PAYMENT_METHOD_TRANSFER,
)


class Invoice(db.Model):
    """
    A sale transaction awaiting (or having received) payment.

    Totals are stored in cents and always equal the sum of item subtotals.
    Stock is only decremented when the invoice moves to 'paid'.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    total_cents = db.Column(db.Integer, nullable=False, default=0)
    item_count = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=INVOICE_PENDING, index=True)
    payment_method = db.Column(db.String(32), nullable=True)

    # External gateway payment id; unique so one payment settles one invoice
    payment_id = db.Column(db.String(64), nullable=True, unique=True)

    # Opaque gateway QR payload, stored verbatim
    qr_code = db.Column(db.Text, nullable=True)
    qr_expiration = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="InvoiceItem.id",
    )
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.number!r} status={self.status}>"

    def status_snapshot(self) -> dict:
        return {"status": self.status, "payment_id": self.payment_id}

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "number": self.number,
            "total_cents": self.total_cents,
            "item_count": self.item_count,
            "status": self.status,
            "payment_method": self.payment_method,
            "payment_id": self.payment_id,
            "qr_code": self.qr_code,
            "qr_expiration": to_utc_z(self.qr_expiration),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "paid_at": to_utc_z(self.paid_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class InvoiceItem(db.Model):
    __tablename__ = "invoice_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_invoice_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    invoice = db.relationship("Invoice", back_populates="items")
    product = db.relationship("Product", lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "sku": self.product.sku if self.product else None,
            "name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
        }


class DocumentSequence(db.Model):
    """
    Atomic per-type document sequences.

    WHY: Prevent race conditions when generating invoice numbers.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_doc_sequences_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
