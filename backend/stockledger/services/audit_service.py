# Overview: Service-layer operations for the audit trail; append-only writes and simple reads.

from __future__ import annotations

from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditLogEntry
from ..models.audit import VALID_AUDIT_ACTIONS
"""
Audit trail invariants

- Append-only: entries are never updated or deleted.
- record_audit() joins the caller's transaction. If the insert fails, the
  caller's mutation fails with it (inventory adjustments, invoice creation,
  status transitions).
- record_audit_best_effort() commits on its own. Failures are logged and
  swallowed; use it only where losing the entry must not fail the caller.
"""


def _build_entry(
    table_name: str,
    record_id: int,
    action: str,
    old_values: Optional[dict],
    new_values: Optional[dict],
    user_id: int | None,
    ip_address: str | None,
    user_agent: str | None,
) -> AuditLogEntry:
    if action not in VALID_AUDIT_ACTIONS:
        raise ValueError(f"invalid audit action {action!r}")
    return AuditLogEntry(
        table_name=table_name,
        record_id=record_id,
        action=action,
        old_values=old_values,
        new_values=new_values,
        user_id=user_id,
        ip_address=ip_address,
        user_agent=user_agent,
    )


def record_audit(
    *,
    table_name: str,
    record_id: int,
    action: str,
    old_values: Optional[dict] = None,
    new_values: Optional[dict] = None,
    user_id: int | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AuditLogEntry:
    """Add an audit entry to the current transaction (flushed, not committed)."""
    entry = _build_entry(table_name, record_id, action, old_values, new_values, user_id, ip_address, user_agent)
    db.session.add(entry)
    db.session.flush()
    return entry


def record_audit_best_effort(
    *,
    table_name: str,
    record_id: int,
    action: str,
    old_values: Optional[dict] = None,
    new_values: Optional[dict] = None,
    user_id: int | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AuditLogEntry | None:
    """
    Write and commit an audit entry outside any business transaction.

    Never raises; returns None when the write failed.
    """
    try:
        entry = _build_entry(table_name, record_id, action, old_values, new_values, user_id, ip_address, user_agent)
        db.session.add(entry)
        db.session.commit()
        return entry
    except (SQLAlchemyError, ValueError):
        db.session.rollback()
        current_app.logger.exception(
            "Failed to write audit entry for %s:%s (%s)", table_name, record_id, action
        )
        return None


def list_audit_entries(
    *,
    table_name: str | None = None,
    record_id: int | None = None,
    limit: int = 100,
) -> list[AuditLogEntry]:
    q = AuditLogEntry.query
    if table_name:
        q = q.filter(AuditLogEntry.table_name == table_name)
    if record_id is not None:
        q = q.filter(AuditLogEntry.record_id == record_id)
    return q.order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc()).limit(limit).all()
