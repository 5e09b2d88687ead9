# backend/stockledger/routes/inventory.py
"""
Inventory management routes.

SECURITY: All routes require authentication.
- Reads are open to every role
- Mutations require the admin or employee role
"""
from flask import Blueprint, current_app, g, request

from ..decorators import require_auth, require_role
from ..errors import StockLedgerError
from ..models.auth import ROLE_ADMIN, ROLE_EMPLOYEE
from ..services import inventory_service
from ..validation import coerce_int, reject_unknown_fields, require_fields


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

WRITE_ROLES = (ROLE_ADMIN, ROLE_EMPLOYEE)

CREATE_FIELDS = {"product_id", "quantity", "min_stock", "max_stock", "location"}
ADJUST_FIELDS = {"amount", "type", "reason"}


def _flag(name: str) -> bool:
    return (request.args.get(name) or "").lower() in {"1", "true", "yes"}


@inventory_bp.post("")
@require_auth
@require_role(*WRITE_ROLES)
def create_inventory_route():
    payload = request.get_json(silent=True) or {}
    try:
        reject_unknown_fields(payload, CREATE_FIELDS)
        require_fields(payload, ["product_id"])
        inventory = inventory_service.create_inventory(
            product_id=payload["product_id"],
            quantity=coerce_int(payload.get("quantity", 0), "quantity", minimum=0),
            min_stock=coerce_int(payload.get("min_stock", 0), "min_stock", minimum=0),
            max_stock=coerce_int(payload.get("max_stock"), "max_stock", minimum=0, allow_none=True),
            location=payload.get("location"),
            actor_user_id=g.current_user.id,
        )
    except StockLedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create inventory")
        return {"error": "Internal server error"}, 500

    return {"inventory": inventory.to_dict()}, 201


@inventory_bp.get("")
@require_auth
def list_inventory_route():
    records = inventory_service.list_inventory(
        include_inactive=_flag("include_inactive"),
        search=request.args.get("search"),
    )
    return {"items": [r.to_dict() for r in records], "count": len(records)}, 200


@inventory_bp.get("/low-stock")
@require_auth
def low_stock_route():
    records = inventory_service.get_low_stock()
    return {"items": [r.to_dict() for r in records], "count": len(records)}, 200


@inventory_bp.get("/product/<int:product_id>")
@require_auth
def inventory_by_product_route(product_id: int):
    try:
        inventory = inventory_service.get_inventory_by_product(product_id)
    except StockLedgerError as e:
        return e.to_dict(), e.status_code
    return {"inventory": inventory.to_dict()}, 200


@inventory_bp.get("/<int:inventory_id>")
@require_auth
def get_inventory_route(inventory_id: int):
    try:
        inventory = inventory_service.get_inventory(inventory_id)
    except StockLedgerError as e:
        return e.to_dict(), e.status_code
    return {"inventory": inventory.to_dict()}, 200


@inventory_bp.patch("/<int:inventory_id>")
@require_auth
@require_role(*WRITE_ROLES)
def update_inventory_route(inventory_id: int):
    """Update min_stock, max_stock or location. Quantity changes go through /adjust."""
    payload = request.get_json(silent=True) or {}
    try:
        inventory = inventory_service.update_inventory_settings(
            inventory_id, payload, actor_user_id=g.current_user.id
        )
    except StockLedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update inventory %s", inventory_id)
        return {"error": "Internal server error"}, 500

    return {"inventory": inventory.to_dict()}, 200


@inventory_bp.post("/<int:inventory_id>/adjust")
@require_auth
@require_role(*WRITE_ROLES)
def adjust_inventory_route(inventory_id: int):
    """
    Request body:
    {
        "amount": 5,          (positive integer)
        "type": "OUT",        (IN | OUT | ADJUST)
        "reason": "Damaged"   (optional)
    }
    """
    payload = request.get_json(silent=True) or {}
    try:
        reject_unknown_fields(payload, ADJUST_FIELDS)
        require_fields(payload, ["amount", "type"])
        inventory = inventory_service.adjust_inventory(
            inventory_id,
            amount=payload["amount"],
            movement_type=payload["type"],
            reason=payload.get("reason"),
            actor_user_id=g.current_user.id,
        )
    except StockLedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust inventory %s", inventory_id)
        return {"error": "Internal server error"}, 500

    return {"inventory": inventory.to_dict()}, 200


@inventory_bp.delete("/<int:inventory_id>")
@require_auth
@require_role(*WRITE_ROLES)
def delete_inventory_route(inventory_id: int):
    try:
        inventory = inventory_service.soft_delete_inventory(inventory_id, actor_user_id=g.current_user.id)
    except StockLedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete inventory %s", inventory_id)
        return {"error": "Internal server error"}, 500

    return {"inventory": inventory.to_dict()}, 200


@inventory_bp.post("/<int:inventory_id>/restore")
@require_auth
@require_role(*WRITE_ROLES)
def restore_inventory_route(inventory_id: int):
    try:
        inventory = inventory_service.restore_inventory(inventory_id, actor_user_id=g.current_user.id)
    except StockLedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to restore inventory %s", inventory_id)
        return {"error": "Internal server error"}, 500

    return {"inventory": inventory.to_dict()}, 200


@inventory_bp.get("/<int:inventory_id>/history")
@require_auth
def inventory_history_route(inventory_id: int):
    try:
        limit = coerce_int(request.args.get("limit", 200), "limit", minimum=1)
        movements = inventory_service.get_history(inventory_id, limit=limit)
    except StockLedgerError as e:
        return e.to_dict(), e.status_code
    return {"items": [m.to_dict() for m in movements], "count": len(movements)}, 200


@inventory_bp.get("/<int:inventory_id>/reconcile")
@require_auth
def reconcile_inventory_route(inventory_id: int):
    try:
        return inventory_service.reconcile_inventory(inventory_id), 200
    except StockLedgerError as e:
        return e.to_dict(), e.status_code
