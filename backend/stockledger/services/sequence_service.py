# Overview: Service-layer operations for document numbering; atomic per-type counters.

from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def format_document_number(prefix: str, number: int, pad: int = 4) -> str:
    """INV + 7 -> 'INV-0007'; numbers wider than `pad` are not truncated."""
    return f"{prefix}-{number:0{pad}d}"


def parse_document_number(value: str, prefix: str) -> int | None:
    head, sep, tail = (value or "").partition("-")
    if head != prefix or not sep or not tail.isdigit():
        return None
    return int(tail)


def _current_next_number(document_type: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )


def allocate_number(
    *,
    document_type: str,
    seed: Optional[Callable[[], int]] = None,
) -> int:
    """
    Atomically allocate the next number for a document type.

    Runs inside the caller's transaction so the number and the document that
    uses it commit (or roll back) together. The UPDATE takes the row lock on
    (document_type); the first allocation inserts the row under a savepoint,
    starting after `seed()` (the highest number already in use).
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        return _current_next_number(document_type) - 1

    start = (seed() if seed else 0) + 1
    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(document_type=document_type, next_number=start + 1))
        return start
    except IntegrityError:
        # Lost the race to create the row; fall back to incrementing it.
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        return _current_next_number(document_type) - 1
