# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

# backend/stockledger/services/inventory_service.py

from __future__ import annotations

from sqlalchemy import func, or_

from ..extensions import db
from ..errors import (
    AlreadyActiveError,
    DuplicateError,
    InsufficientStockError,
    InvalidStateTransitionError,
    InventoryUnavailableError,
    NotFoundError,
    ValidationError,
)
from ..models import Inventory, InventoryMovement, Product
from ..models.audit import AUDIT_CREATE, AUDIT_DELETE, AUDIT_UPDATE
from ..models.inventory import (
    INVENTORY_ACTIVE,
    INVENTORY_INACTIVE,
    MOVEMENT_IN,
    MOVEMENT_OUT,
    VALID_MOVEMENT_TYPES,
)
from ..validation import MAX_DB_INT, coerce_int
from .audit_service import record_audit
from .concurrency import begin_write, lock_for_update, run_with_retry
"""
Inventory Invariants (authoritative)

Inventory model:
- One Inventory row per product holds the current quantity (a projection).
- InventoryMovement rows are the append-only ledger behind it. Every quantity
  change appends exactly one movement with the signed delta, so
  SUM(amount) over a record's movements == its quantity at all times.
- Creation with a positive initial quantity appends an opening IN movement.

Business invariants:
- Quantity may never go negative. An adjustment that would do so raises
  InsufficientStockError and writes nothing.
- OUT subtracts; IN and ADJUST add. A downward correction is expressed as OUT.
- Inactive (soft-deleted) records reject adjustments until restored.

Concurrency:
- Adjustments lock the inventory row (SELECT ... FOR UPDATE; BEGIN IMMEDIATE
  on SQLite) and the mapper's version counter catches any write that slipped
  past the lock. Conflicts are retried by run_with_retry().

Audit:
- Quantity update, movement insert and their audit entries share one
  transaction.
"""

INVENTORY_TABLE = "inventory"
MOVEMENTS_TABLE = "inventory_movements"

_SETTINGS_FIELDS = ("min_stock", "max_stock", "location")


def _get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product with ID {product_id} not found")
    return product


def _get_inventory(inventory_id: int, *, lock: bool = False) -> Inventory:
    query = db.session.query(Inventory).filter_by(id=inventory_id)
    if lock:
        query = lock_for_update(query).populate_existing()
    inventory = query.first()
    if inventory is None:
        raise NotFoundError(f"Inventory with ID {inventory_id} not found")
    return inventory


def _validate_settings(min_stock, max_stock, location) -> None:
    if max_stock is not None and max_stock < min_stock:
        raise ValidationError("max_stock cannot be lower than min_stock")
    if location is not None and not isinstance(location, str):
        raise ValidationError("location must be a string")
    if location is not None and len(location) > 100:
        raise ValidationError("location cannot exceed 100 characters")


def get_inventory(inventory_id: int) -> Inventory:
    return _get_inventory(inventory_id)


def get_inventory_by_product(product_id: int) -> Inventory:
    inventory = db.session.query(Inventory).filter_by(product_id=product_id).first()
    if inventory is None:
        raise NotFoundError(f"Inventory for product {product_id} not found")
    return inventory


def get_available_quantity(product_id: int) -> int:
    """Sellable stock for a product: its active record's quantity, else 0."""
    qty = (
        db.session.query(Inventory.quantity)
        .filter(Inventory.product_id == product_id, Inventory.state == INVENTORY_ACTIVE)
        .scalar()
    )
    return int(qty or 0)


def list_inventory(*, include_inactive: bool = False, search: str | None = None) -> list[Inventory]:
    q = db.session.query(Inventory).join(Product, Inventory.product_id == Product.id)
    if not include_inactive:
        q = q.filter(Inventory.state == INVENTORY_ACTIVE)
    if search:
        pattern = f"%{search.strip().lower()}%"
        q = q.filter(or_(func.lower(Product.name).like(pattern), func.lower(Product.sku).like(pattern)))
    return q.order_by(Inventory.created_at.desc(), Inventory.id.desc()).all()


def get_low_stock() -> list[Inventory]:
    """Active records at or below their minimum. Read-only monitoring query."""
    return (
        db.session.query(Inventory)
        .filter(Inventory.state == INVENTORY_ACTIVE, Inventory.quantity <= Inventory.min_stock)
        .order_by(Inventory.quantity.asc(), Inventory.id.asc())
        .all()
    )


def get_history(inventory_id: int, limit: int = 200) -> list[InventoryMovement]:
    _get_inventory(inventory_id)
    return (
        InventoryMovement.query.filter_by(inventory_id=inventory_id)
        .order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc())
        .limit(limit)
        .all()
    )


def create_inventory(
    *,
    product_id: int,
    quantity: int = 0,
    min_stock: int = 0,
    max_stock: int | None = None,
    location: str | None = None,
    actor_user_id: int | None = None,
) -> Inventory:
    """
    Create the inventory record for a product (1:1).

    Raises NotFoundError for an unknown product and DuplicateError if the
    product already has a record (active or not).
    """
    product_id = coerce_int(product_id, "product_id", minimum=1)
    quantity = coerce_int(quantity, "quantity", minimum=0)
    min_stock = coerce_int(min_stock, "min_stock", minimum=0)
    max_stock = coerce_int(max_stock, "max_stock", minimum=0, allow_none=True)
    _validate_settings(min_stock, max_stock, location)

    def _op():
        begin_write()
        _get_product(product_id)

        existing = db.session.query(Inventory.id).filter_by(product_id=product_id).first()
        if existing is not None:
            raise DuplicateError(
                "Inventory for this product already exists",
                details={"inventory_id": existing.id},
            )

        inventory = Inventory(
            product_id=product_id,
            quantity=quantity,
            min_stock=min_stock,
            max_stock=max_stock,
            location=location,
            state=INVENTORY_ACTIVE,
        )
        db.session.add(inventory)
        db.session.flush()

        if quantity > 0:
            opening = InventoryMovement(
                inventory_id=inventory.id,
                amount=quantity,
                type=MOVEMENT_IN,
                reason="Opening balance",
                created_by_user_id=actor_user_id,
            )
            db.session.add(opening)
            db.session.flush()

        record_audit(
            table_name=INVENTORY_TABLE,
            record_id=inventory.id,
            action=AUDIT_CREATE,
            new_values=inventory.snapshot(),
            user_id=actor_user_id,
        )

        db.session.commit()
        return inventory

    return run_with_retry(_op)


def update_inventory_settings(inventory_id: int, changes: dict, *, actor_user_id: int | None = None) -> Inventory:
    """
    Update min_stock / max_stock / location. Quantity is never writable here.
    """
    if not isinstance(changes, dict):
        raise ValidationError("Request body must be an object")
    unknown = set(changes) - set(_SETTINGS_FIELDS)
    if unknown:
        raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

    def _op():
        begin_write()
        inventory = _get_inventory(inventory_id, lock=True)
        old_values = inventory.snapshot()

        min_stock = inventory.min_stock
        max_stock = inventory.max_stock
        location = inventory.location
        if "min_stock" in changes:
            min_stock = coerce_int(changes["min_stock"], "min_stock", minimum=0)
        if "max_stock" in changes:
            max_stock = coerce_int(changes["max_stock"], "max_stock", minimum=0, allow_none=True)
        if "location" in changes:
            location = changes["location"]
        _validate_settings(min_stock, max_stock, location)

        inventory.min_stock = min_stock
        inventory.max_stock = max_stock
        inventory.location = location
        db.session.flush()

        record_audit(
            table_name=INVENTORY_TABLE,
            record_id=inventory.id,
            action=AUDIT_UPDATE,
            old_values=old_values,
            new_values=inventory.snapshot(),
            user_id=actor_user_id,
        )

        db.session.commit()
        return inventory

    return run_with_retry(_op)


def _apply_movement(
    inventory: Inventory,
    *,
    amount: int,
    movement_type: str,
    reason: str | None = None,
    actor_user_id: int | None = None,
    invoice_id: int | None = None,
) -> InventoryMovement:
    """Core movement logic without locking, retry, or commit.

    Called by adjust_inventory() and by invoice settlement. The caller must
    hold the row lock on `inventory`.
    """
    if not inventory.is_active:
        raise InvalidStateTransitionError(
            f"Inventory {inventory.id} is inactive",
            details={"inventory_id": inventory.id},
        )

    delta = -amount if movement_type == MOVEMENT_OUT else amount
    old_quantity = inventory.quantity
    new_quantity = old_quantity + delta
    if new_quantity < 0:
        raise InsufficientStockError(
            "Resulting stock cannot be negative",
            details={
                "inventory_id": inventory.id,
                "product_id": inventory.product_id,
                "available": old_quantity,
                "requested": amount,
            },
        )

    if new_quantity > MAX_DB_INT:
        raise ValidationError(
            f"Resulting stock cannot exceed {MAX_DB_INT}",
            details={"inventory_id": inventory.id, "quantity": old_quantity, "amount": amount},
        )

    inventory.quantity = new_quantity

    movement = InventoryMovement(
        inventory_id=inventory.id,
        amount=delta,
        type=movement_type,
        reason=reason,
        created_by_user_id=actor_user_id,
        invoice_id=invoice_id,
    )
    db.session.add(movement)
    db.session.flush()

    record_audit(
        table_name=INVENTORY_TABLE,
        record_id=inventory.id,
        action=AUDIT_UPDATE,
        old_values={"quantity": old_quantity},
        new_values={"quantity": new_quantity},
        user_id=actor_user_id,
    )
    record_audit(
        table_name=MOVEMENTS_TABLE,
        record_id=movement.id,
        action=AUDIT_CREATE,
        new_values={
            "inventory_id": movement.inventory_id,
            "amount": movement.amount,
            "type": movement.type,
            "reason": movement.reason,
            "invoice_id": movement.invoice_id,
        },
        user_id=actor_user_id,
    )
    return movement


def adjust_inventory(
    inventory_id: int,
    *,
    amount,
    movement_type: str,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> Inventory:
    """
    Apply a stock movement to an inventory record.

    `amount` is always positive; direction comes from `movement_type`
    (OUT subtracts, IN and ADJUST add). Returns the record with the
    post-adjustment quantity.
    """
    amount = coerce_int(amount, "amount", minimum=1)
    if movement_type not in VALID_MOVEMENT_TYPES:
        raise ValidationError(
            f"Invalid movement type: {movement_type}. Must be one of {list(VALID_MOVEMENT_TYPES)}"
        )

    def _op():
        begin_write()
        inventory = _get_inventory(inventory_id, lock=True)
        _apply_movement(
            inventory,
            amount=amount,
            movement_type=movement_type,
            reason=reason,
            actor_user_id=actor_user_id,
        )
        db.session.commit()
        return inventory

    return run_with_retry(_op)


def decrement_for_invoice(invoice, *, actor_user_id: int | None = None) -> list[InventoryMovement]:
    """
    Take the stock for every item of a paid invoice. No commit.

    Re-validates availability at decrement time: the check made when the
    invoice was created reserved nothing. Quantities are summed per product so
    each inventory record gets a single OUT movement tagged with the invoice.
    A missing or inactive record raises InventoryUnavailableError. Any failure
    propagates and the caller rolls back the whole invoice.
    """
    required: dict[int, int] = {}
    for item in invoice.items:
        required[item.product_id] = required.get(item.product_id, 0) + item.quantity

    movements = []
    for product_id in sorted(required):
        inventory = lock_for_update(
            db.session.query(Inventory).filter_by(product_id=product_id)
        ).populate_existing().first()
        if inventory is None:
            raise InventoryUnavailableError(
                f"Inventory for product {product_id} not found",
                details={"product_id": product_id, "invoice_id": invoice.id},
            )
        if not inventory.is_active:
            raise InventoryUnavailableError(
                f"Inventory {inventory.id} is inactive",
                details={"inventory_id": inventory.id, "product_id": product_id, "invoice_id": invoice.id},
            )
        movements.append(
            _apply_movement(
                inventory,
                amount=required[product_id],
                movement_type=MOVEMENT_OUT,
                reason=f"Invoice {invoice.number} paid",
                actor_user_id=actor_user_id,
                invoice_id=invoice.id,
            )
        )
    return movements


def _set_state(inventory_id: int, new_state: str, action: str, actor_user_id: int | None) -> Inventory:
    def _op():
        begin_write()
        inventory = _get_inventory(inventory_id, lock=True)
        if new_state == INVENTORY_ACTIVE and inventory.state == INVENTORY_ACTIVE:
            raise AlreadyActiveError("Inventory is already active", details={"inventory_id": inventory_id})

        old_state = inventory.state
        inventory.state = new_state
        db.session.flush()

        record_audit(
            table_name=INVENTORY_TABLE,
            record_id=inventory.id,
            action=action,
            old_values={"state": old_state, "is_active": old_state == INVENTORY_ACTIVE},
            new_values={"state": new_state, "is_active": new_state == INVENTORY_ACTIVE},
            user_id=actor_user_id,
        )

        db.session.commit()
        return inventory

    return run_with_retry(_op)


def soft_delete_inventory(inventory_id: int, *, actor_user_id: int | None = None) -> Inventory:
    """Deactivate a record. Always allowed, including on an inactive record."""
    return _set_state(inventory_id, INVENTORY_INACTIVE, AUDIT_DELETE, actor_user_id)


def restore_inventory(inventory_id: int, *, actor_user_id: int | None = None) -> Inventory:
    """Reactivate a soft-deleted record. AlreadyActiveError if it is active."""
    return _set_state(inventory_id, INVENTORY_ACTIVE, AUDIT_UPDATE, actor_user_id)


def reconcile_inventory(inventory_id: int) -> dict:
    """Compare the stored quantity with the sum of the movement ledger."""
    inventory = _get_inventory(inventory_id)
    movement_sum, movement_count = (
        db.session.query(
            func.coalesce(func.sum(InventoryMovement.amount), 0),
            func.count(InventoryMovement.id),
        )
        .filter(InventoryMovement.inventory_id == inventory_id)
        .one()
    )
    movement_sum = int(movement_sum or 0)
    return {
        "inventory_id": inventory.id,
        "product_id": inventory.product_id,
        "quantity": inventory.quantity,
        "movement_sum": movement_sum,
        "movement_count": int(movement_count or 0),
        "difference": inventory.quantity - movement_sum,
        "consistent": inventory.quantity == movement_sum,
    }


def find_unreconciled() -> list[dict]:
    """All records whose quantity disagrees with their ledger."""
    ids = [row.id for row in db.session.query(Inventory.id).order_by(Inventory.id).all()]
    reports = (reconcile_inventory(inventory_id) for inventory_id in ids)
    return [report for report in reports if not report["consistent"]]
