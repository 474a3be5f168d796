from __future__ import annotations

from ..extensions import db
from printshop.time_utils import to_utc_z


class DocumentSequence(db.Model):
    """
    Atomic per-(kind, year) document counters.

    WHY: human-facing numbers (ORD-2026-0001, ...) must never be issued twice.
    Counting existing rows races under concurrency and renumbers after
    deletions; an explicit counter row incremented in place does neither.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_kind", "year", name="uq_doc_sequences_kind_year"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_kind = db.Column(db.String(32), nullable=False, index=True)
    year = db.Column(db.Integer, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_kind": self.document_kind,
            "year": self.year,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
