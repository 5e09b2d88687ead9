# backend/stockledger/routes/system.py
"""
System health endpoint.

Reports database reachability, the ledger reconciliation state and whether
the payment gateway is configured.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Inventory, Invoice
from ..models.invoices import INVOICE_PENDING
from ..services.inventory_service import find_unreconciled
from ..services.payment_service import get_payment_coordinator
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        inventory_count = db.session.query(Inventory).count()
        pending_invoices = db.session.query(Invoice).filter_by(status=INVOICE_PENDING).count()
        unreconciled = len(find_unreconciled())

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy" if unreconciled == 0 else "degraded",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "inventory_records": inventory_count,
                "pending_invoices": pending_invoices,
                "unreconciled_records": unreconciled,
            }
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_gateway_health() -> dict:
    coordinator = get_payment_coordinator()
    if coordinator.gateway is None:
        return {"status": "degraded", "warning": "Payment gateway credentials are not configured"}
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    gateway_health = check_gateway_health()

    all_checks = [database_health, gateway_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "payment_gateway": gateway_health,
        }
    }, http_status
