"""
Document numbering tests.

Verifies:
- PREFIX-YYYY-NNNN format per document kind
- Independent counters per kind and per year
- Allocation rolls back with an aborted unit of work
"""

from datetime import datetime

import pytest

from printshop.errors import ValidationError
from printshop.services import sequence_service


class TestDocumentNumbers:

    def test_sequential_per_kind(self, db_session):
        at = datetime(2026, 3, 1)
        assert sequence_service.next_document_number("ORDER", at_time=at) == "ORD-2026-0001"
        assert sequence_service.next_document_number("ORDER", at_time=at) == "ORD-2026-0002"
        assert sequence_service.next_document_number("INVOICE", at_time=at) == "INV-2026-0001"
        assert sequence_service.next_document_number("PAYMENT", at_time=at) == "PAY-2026-0001"
        assert sequence_service.next_document_number("QUOTATION", at_time=at) == "QUO-2026-0001"
        assert sequence_service.next_document_number("JOB", at_time=at) == "JOB-2026-0001"
        db_session.commit()

    def test_new_year_restarts(self, db_session):
        sequence_service.next_document_number("ORDER", at_time=datetime(2026, 12, 31))
        sequence_service.next_document_number("ORDER", at_time=datetime(2026, 12, 31))
        assert sequence_service.next_document_number("ORDER", at_time=datetime(2027, 1, 1)) == "ORD-2027-0001"
        assert sequence_service.peek_next_number("ORDER", 2026) == 3
        assert sequence_service.peek_next_number("ORDER", 2028) == 1

    def test_rollback_releases_number(self, db_session):
        at = datetime(2026, 5, 5)
        sequence_service.next_document_number("INVOICE", at_time=at)
        db_session.commit()

        sequence_service.next_document_number("INVOICE", at_time=at)
        db_session.rollback()

        assert sequence_service.next_document_number("INVOICE", at_time=at) == "INV-2026-0002"

    def test_unknown_kind(self, db_session):
        with pytest.raises(ValidationError):
            sequence_service.next_document_number("RECEIPT")

    def test_padding_grows_past_four_digits(self):
        assert sequence_service.format_document_number("ORD", 2026, 12345) == "ORD-2026-12345"
