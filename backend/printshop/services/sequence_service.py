# Overview: Numbering service; issues PREFIX-YYYY-NNNN document numbers.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import DocumentSequence
from printshop.time_utils import utcnow


KIND_ORDER = "ORDER"
KIND_INVOICE = "INVOICE"
KIND_PAYMENT = "PAYMENT"
KIND_QUOTATION = "QUOTATION"
KIND_JOB = "JOB"

PREFIXES = {
    KIND_ORDER: "ORD",
    KIND_INVOICE: "INV",
    KIND_PAYMENT: "PAY",
    KIND_QUOTATION: "QUO",
    KIND_JOB: "JOB",
}


def format_document_number(prefix: str, year: int, number: int, pad: int = 4) -> str:
    return f"{prefix}-{year}-{number:0{pad}d}"


def _current_value(kind: str, year: int) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_kind=kind, year=year)
        .scalar()
    )


def next_document_number(kind: str, *, at_time: datetime | None = None) -> str:
    """
    Atomically allocate the next number for a document kind in a year.

    Runs inside the caller's unit of work: the counter row is incremented in
    place (row lock on the UPDATE), so two concurrent creations can never read
    the same value. If the creation later aborts, the increment rolls back
    with it; a number skipped by any other path is simply never reused.
    """
    prefix = PREFIXES.get(kind)
    if not prefix:
        raise ValidationError(f"Unknown document kind '{kind}'", details={"kind": kind})

    year = (at_time or utcnow()).year

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_kind == kind,
            DocumentSequence.year == year,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        return format_document_number(prefix, year, _current_value(kind, year) - 1)

    # First document of this kind in this year. Another writer may create the
    # row between our UPDATE and INSERT; the savepoint keeps the outer unit of
    # work alive in that case and we fall back to the UPDATE.
    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(document_kind=kind, year=year, next_number=2))
        return format_document_number(prefix, year, 1)
    except IntegrityError:
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        return format_document_number(prefix, year, _current_value(kind, year) - 1)


def peek_next_number(kind: str, year: int) -> int:
    """Next value that would be issued (no allocation)."""
    current = _current_value(kind, year)
    return current or 1
