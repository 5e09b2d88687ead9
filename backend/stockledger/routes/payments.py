# Overview: Flask API routes for payments operations; QR issuance and the gateway webhook.

"""
Payment API Routes

WEBHOOK STATUS CODES:
- 200: settled, already paid, or ignored notification
- 400: malformed notification (missing data.id or external_reference)
- 401: missing or invalid x-signature (when a webhook secret is configured)
- 409: invoice cannot be paid (cancelled, expired, failed)
- 503: gateway unreachable, or stock short or inventory unavailable at
       settlement; the gateway redelivers
"""

from flask import Blueprint, current_app, request

from ..decorators import require_auth, require_role
from ..errors import InsufficientStockError, InventoryUnavailableError, PaymentGatewayError, StockLedgerError
from ..models.auth import ROLE_ADMIN, ROLE_EMPLOYEE
from ..services.payment_service import get_payment_coordinator


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")

RETRYABLE_ERRORS = (PaymentGatewayError, InsufficientStockError, InventoryUnavailableError)


@payments_bp.post("/process/<int:invoice_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_EMPLOYEE)
def process_payment_route(invoice_id: int):
    """Issue a Mercado Pago QR for a pending invoice."""
    try:
        result = get_payment_coordinator().process_payment(invoice_id)
    except StockLedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process payment for invoice %s", invoice_id)
        return {"error": "Internal server error"}, 500

    return result, 200


@payments_bp.post("/webhook/mercadopago")
def mercadopago_webhook_route():
    coordinator = get_payment_coordinator()
    if coordinator.config.webhook_secret and not request.headers.get("x-signature"):
        current_app.logger.warning("Webhook rejected: missing x-signature header")
        return {"error": "Missing signature"}, 401

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    data_id = str(data.get("id") or request.args.get("data.id") or "")

    if not coordinator.verify_signature(request.headers, data_id):
        current_app.logger.warning("Webhook rejected: invalid signature for data.id=%s", data_id)
        return {"error": "Invalid signature"}, 401

    try:
        result = coordinator.handle_webhook(payload)
    except RETRYABLE_ERRORS as e:
        current_app.logger.warning("Webhook for data.id=%s deferred: %s", data_id, e)
        return e.to_dict(), 503
    except StockLedgerError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to handle Mercado Pago webhook")
        return {"error": "Internal server error"}, 500

    return result, 200
