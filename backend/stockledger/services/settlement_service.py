# Overview: Service-layer operations for settlement; marks invoices paid and takes their stock exactly once.

"""
Settlement

settle_invoice() is the only path to 'paid'. The status transition and the
stock decrement for every item run in ONE transaction:

- already paid      -> no-op (duplicate webhook delivery, operator retry)
- any item short    -> InsufficientStockError, full rollback, invoice stays pending
- success           -> invoice paid, one OUT movement per product, audit rows

Because a failed settlement leaves the invoice pending, retrying (gateway
redelivery, `flask invoices settle`) is always safe. Each failed attempt is
recorded with a best-effort audit entry for operators.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..errors import StockLedgerError
from ..models import Invoice, InventoryMovement
from ..models.audit import AUDIT_UPDATE
from ..models.invoices import INVOICE_PAID
from .audit_service import record_audit_best_effort
from .concurrency import begin_write, run_with_retry
from .invoice_service import INVOICES_TABLE, apply_status_transition, lock_invoice
from .inventory_service import decrement_for_invoice


@dataclass
class SettlementResult:
    invoice: Invoice
    applied: bool
    movements: list[InventoryMovement] = field(default_factory=list)


def settle_invoice(
    invoice_id: int,
    *,
    payment_id: str | None = None,
    actor_user_id: int | None = None,
) -> SettlementResult:
    """
    Mark an invoice paid and decrement stock for its items, atomically.

    Idempotent: an invoice that is already paid is returned unchanged with
    applied=False.
    """
    def _op():
        begin_write()
        invoice = lock_invoice(invoice_id)

        if invoice.status == INVOICE_PAID:
            db.session.commit()
            return SettlementResult(invoice=invoice, applied=False)

        apply_status_transition(invoice, INVOICE_PAID, payment_id=payment_id, actor_user_id=actor_user_id)
        movements = decrement_for_invoice(invoice, actor_user_id=actor_user_id)

        db.session.commit()
        return SettlementResult(invoice=invoice, applied=True, movements=movements)

    try:
        result = run_with_retry(_op)
    except StockLedgerError as exc:
        current_app.logger.error("Settlement of invoice %s failed: %s", invoice_id, exc)
        if db.session.get(Invoice, invoice_id) is not None:
            record_audit_best_effort(
                table_name=INVOICES_TABLE,
                record_id=invoice_id,
                action=AUDIT_UPDATE,
                new_values={
                    "settlement_failed": True,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "payment_id": payment_id,
                },
                user_id=actor_user_id,
            )
        raise

    if result.applied:
        current_app.logger.info(
            "Invoice %s settled; %d stock movement(s) applied", result.invoice.number, len(result.movements)
        )
    else:
        current_app.logger.info("Invoice %s already paid; confirmation ignored", result.invoice.number)
    return result
