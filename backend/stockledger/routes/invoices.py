# Overview: Flask API routes for invoice operations; parses input and returns JSON responses.

"""
Invoice API Routes

Creating an invoice checks stock but does not take it. Stock moves only when
the invoice is settled (payment webhook or `flask invoices settle`).
"""

from flask import Blueprint, current_app, g, request

from ..decorators import require_auth, require_role
from ..errors import StockLedgerError
from ..models.auth import ROLE_ADMIN, ROLE_EMPLOYEE
from ..services import invoice_service
from ..validation import reject_unknown_fields


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")

WRITE_ROLES = (ROLE_ADMIN, ROLE_EMPLOYEE)
CREATE_FIELDS = {"items", "payment_method", "notes"}


@invoices_bp.post("")
@require_auth
@require_role(*WRITE_ROLES)
def create_invoice_route():
    """
    Request body:
    {
        "items": [{"product_id": 1, "quantity": 3, "unit_price": "12.50"}],
        "payment_method": "mercado_pago",   (optional)
        "notes": "Table 4"                  (optional)
    }

    unit_price is optional and falls back to the catalog price.
    """
    payload = request.get_json(silent=True) or {}
    try:
        reject_unknown_fields(payload, CREATE_FIELDS)
        invoice = invoice_service.create_invoice(
            items=payload.get("items"),
            created_by_user_id=g.current_user.id,
            payment_method=payload.get("payment_method"),
            notes=payload.get("notes"),
        )
    except StockLedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return {"error": "Internal server error"}, 500

    return {"invoice": invoice.to_dict()}, 201


@invoices_bp.get("")
@require_auth
def list_invoices_route():
    try:
        result = invoice_service.list_invoices(
            page=request.args.get("page", 1),
            limit=request.args.get("limit", 10),
            status=request.args.get("status") or None,
        )
    except StockLedgerError as e:
        return e.to_dict(), e.status_code

    return {
        "items": [invoice.to_dict(include_items=False) for invoice in result["data"]],
        "total": result["total"],
        "page": result["page"],
        "limit": result["limit"],
    }, 200


@invoices_bp.get("/<int:invoice_id>")
@require_auth
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
    except StockLedgerError as e:
        return e.to_dict(), e.status_code
    return {"invoice": invoice.to_dict()}, 200


@invoices_bp.post("/<int:invoice_id>/cancel")
@require_auth
@require_role(*WRITE_ROLES)
def cancel_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.cancel_invoice(invoice_id, actor_user_id=g.current_user.id)
    except StockLedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel invoice %s", invoice_id)
        return {"error": "Internal server error"}, 500

    return {"invoice": invoice.to_dict()}, 200
