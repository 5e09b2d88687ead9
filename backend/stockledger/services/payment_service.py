# Overview: Service-layer operations for payment; QR issuance and webhook reconciliation.

"""
Payment Reconciliation Coordinator

WHY: Payment confirmation arrives asynchronously from the gateway and may be
delivered more than once. The coordinator turns each confirmation into a
single settle_invoice() call, which is idempotent, so redelivery is safe.

FLOW:
    process_payment(invoice)  -> gateway order, QR stored on the invoice
    gateway webhook           -> handle_webhook -> settle_invoice (paid + stock)
    refresh_expired_qrs()     -> re-issues QRs for pending invoices
"""

from __future__ import annotations

from datetime import datetime
from typing import Mapping

from flask import current_app

from ..config import GatewayConfig
from ..errors import (
    DuplicateError,
    InvalidStateTransitionError,
    PaymentGatewayError,
    StockLedgerError,
    ValidationError,
)
from ..models import Invoice
from ..models.invoices import INVOICE_PENDING, PAYMENT_METHOD_MERCADO_PAGO
from ..time_utils import hours_from_now, to_utc_z, utcnow
from ..validation import cents_to_decimal, coerce_int
from .invoice_service import get_expired_qr_invoices, get_invoice, update_invoice_qr
from .payment_gateway import MercadoPagoClient, verify_webhook_signature
from .settlement_service import settle_invoice


# =============================================================================
# GATEWAY CONSTANTS
# =============================================================================

WEBHOOK_TYPE_PAYMENT = "payment"
GATEWAY_STATUS_APPROVED = "approved"

WEBHOOK_IGNORED = "ignored"
WEBHOOK_SETTLED = "settled"
WEBHOOK_ALREADY_PAID = "already_paid"


def _money(cents: int) -> float:
    return float(cents_to_decimal(cents))


def build_gateway_order(invoice: Invoice) -> dict:
    """Order body for the in-store QR endpoint."""
    items = []
    for item in invoice.items:
        product = item.product
        items.append({
            "sku_number": product.sku if product else str(item.product_id),
            "category": "product",
            "title": product.name if product else f"Product {item.product_id}",
            "unit_price": _money(item.unit_price_cents),
            "quantity": item.quantity,
            "unit_measure": "unit",
            "total_amount": _money(item.subtotal_cents),
        })

    return {
        "external_reference": str(invoice.id),
        "title": f"Invoice {invoice.number}",
        "description": f"Payment for invoice {invoice.number} with {invoice.item_count} items",
        "total_amount": _money(invoice.total_cents),
        "items": items,
    }


class PaymentCoordinator:
    """
    Gateway-facing payment operations.

    The gateway client and settings are injected; tests pass a fake client.
    """

    def __init__(self, gateway, config: GatewayConfig):
        self.gateway = gateway
        self.config = config

    @classmethod
    def from_config(cls, config: GatewayConfig) -> "PaymentCoordinator":
        gateway = MercadoPagoClient(config) if config.is_complete else None
        return cls(gateway, config)

    def _require_gateway(self):
        if self.gateway is None:
            raise PaymentGatewayError("Payment gateway is not configured")
        return self.gateway

    # =========================================================================
    # QR ISSUANCE
    # =========================================================================

    def process_payment(self, invoice_id: int, *, now: datetime | None = None) -> dict:
        """
        Create a gateway order for a pending invoice and store its QR payload.

        Raises:
            InvalidStateTransitionError: invoice is not pending
            DuplicateError: invoice already has an unexpired QR
            PaymentGatewayError: upstream failure or missing qr_data
        """
        now = now or utcnow()
        invoice = get_invoice(invoice_id)

        if invoice.status != INVOICE_PENDING:
            raise InvalidStateTransitionError(
                f"Invoice {invoice.number} is {invoice.status}; only pending invoices can be paid"
            )
        if invoice.qr_code and invoice.qr_expiration and invoice.qr_expiration > now:
            raise DuplicateError(
                f"Invoice {invoice.number} already has an active QR code",
                details={"qr_expiration": to_utc_z(invoice.qr_expiration)},
            )

        gateway = self._require_gateway()
        response = gateway.create_qr_order(build_gateway_order(invoice))
        qr_data = response.get("qr_data") if isinstance(response, dict) else None
        if not qr_data:
            raise PaymentGatewayError("Payment provider did not return qr_data")

        expires_at = hours_from_now(self.config.qr_expiration_hours, now=now)
        invoice = update_invoice_qr(
            invoice.id, qr_data, expires_at, payment_method=PAYMENT_METHOD_MERCADO_PAGO
        )
        current_app.logger.info("Issued QR for invoice %s (expires %s)", invoice.number, to_utc_z(expires_at))

        return {
            "invoice_id": invoice.id,
            "number": invoice.number,
            "qr_data": qr_data,
            "expires_at": to_utc_z(expires_at),
        }

    def refresh_expired_qrs(self, *, now: datetime | None = None) -> dict:
        """Re-issue QRs for pending invoices whose QR expired; failures are counted, not raised."""
        now = now or utcnow()
        refreshed = 0
        failed = 0
        for invoice in get_expired_qr_invoices(now):
            try:
                self.process_payment(invoice.id, now=now)
                refreshed += 1
            except StockLedgerError:
                current_app.logger.exception("Failed to refresh QR for invoice %s", invoice.id)
                failed += 1
        return {"refreshed": refreshed, "failed": failed}

    # =========================================================================
    # WEBHOOK
    # =========================================================================

    def verify_signature(self, headers: Mapping[str, str], data_id: str) -> bool:
        """True when no secret is configured or the x-signature matches."""
        if not self.config.webhook_secret:
            return True
        return verify_webhook_signature(self.config.webhook_secret, headers, data_id)

    def handle_webhook(self, payload: dict) -> dict:
        """
        Reconcile one gateway notification.

        Non-payment notifications and non-approved payments are ignored.
        Approved payments settle the referenced invoice; a redelivered
        confirmation for an already-paid invoice is a no-op.
        """
        if not isinstance(payload, dict) or payload.get("type") != WEBHOOK_TYPE_PAYMENT:
            return {"status": WEBHOOK_IGNORED}

        data = payload.get("data") or {}
        data_id = data.get("id") if isinstance(data, dict) else None
        if data_id in (None, ""):
            raise ValidationError("Webhook payload is missing data.id")

        payment = self._require_gateway().get_payment(str(data_id))
        if not isinstance(payment, dict):
            raise PaymentGatewayError("Invalid response from payment provider")
        payment_status = payment.get("status")
        if payment_status != GATEWAY_STATUS_APPROVED:
            current_app.logger.info("Ignoring payment %s with status %s", data_id, payment_status)
            return {"status": WEBHOOK_IGNORED, "payment_status": payment_status}

        reference = payment.get("external_reference")
        if reference in (None, ""):
            raise ValidationError("No external reference found in payment")
        invoice_id = coerce_int(reference, "external_reference", minimum=1)

        payment_id = str(payment.get("id") or data_id)
        result = settle_invoice(invoice_id, payment_id=payment_id)

        return {
            "status": WEBHOOK_SETTLED if result.applied else WEBHOOK_ALREADY_PAID,
            "invoice_id": result.invoice.id,
            "payment_id": payment_id,
        }


def get_payment_coordinator() -> PaymentCoordinator:
    return current_app.extensions["payment_coordinator"]
