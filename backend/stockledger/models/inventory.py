from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# Lifecycle states for an inventory record (soft delete is INACTIVE)
INVENTORY_ACTIVE = "ACTIVE"
INVENTORY_INACTIVE = "INACTIVE"

MOVEMENT_IN = "IN"
MOVEMENT_OUT = "OUT"
MOVEMENT_ADJUST = "ADJUST"
VALID_MOVEMENT_TYPES = (MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUST)


class Inventory(db.Model):
    """
    Current stock projection for one product (1:1 with Product).

    `quantity` is only changed by the adjustment engine, which appends an
    InventoryMovement for every change. Sum of movement amounts == quantity.
    """
    __tablename__ = "inventory"
    __table_args__ = (
        db.UniqueConstraint("product_id", name="uq_inventory_product"),
        db.CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
        db.Index("ix_inventory_state_quantity", "state", "quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)
    max_stock = db.Column(db.Integer, nullable=True)
    location = db.Column(db.String(100), nullable=True)

    state = db.Column(db.String(16), nullable=False, default=INVENTORY_ACTIVE, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("inventory", uselist=False, lazy=True))
    movements = db.relationship(
        "InventoryMovement",
        back_populates="inventory",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy=True,
        order_by="InventoryMovement.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.state == INVENTORY_ACTIVE

    def __repr__(self) -> str:
        return f"<Inventory id={self.id} product_id={self.product_id} quantity={self.quantity} state={self.state}>"

    def snapshot(self) -> dict:
        """Plain values used for audit old/new snapshots."""
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "min_stock": self.min_stock,
            "max_stock": self.max_stock,
            "location": self.location,
            "state": self.state,
        }

    def to_dict(self) -> dict:
        data = {"id": self.id, **self.snapshot()}
        data.update({
            "is_active": self.is_active,
            "is_low_stock": self.quantity <= self.min_stock,
            "product": self.product.to_dict() if self.product else None,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        })
        return data


class InventoryMovement(db.Model):
    """
    Immutable ledger entry. amount is signed: positive for IN/ADJUST, negative for OUT.

    (inventory_id, invoice_id) is unique so a paid invoice can only
    decrement a given record once.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.UniqueConstraint("inventory_id", "invoice_id", name="uq_movement_inventory_invoice"),
        db.Index("ix_movements_inventory_created", "inventory_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_id = db.Column(
        db.Integer,
        db.ForeignKey("inventory.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    amount = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(16), nullable=False, default=MOVEMENT_ADJUST, index=True)
    reason = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    inventory = db.relationship("Inventory", back_populates="movements")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_id": self.inventory_id,
            "amount": self.amount,
            "type": self.type,
            "reason": self.reason,
            "created_by_user_id": self.created_by_user_id,
            "invoice_id": self.invoice_id,
            "created_at": to_utc_z(self.created_at),
        }
