"""
Tests for DocumentNumberAllocator.

Verifies:
- First number of a scope is 0001
- Scopes are independent per document type and per year
- A rolled-back allocation is returned to the scope
- Numbers of deleted documents are never reissued
"""

from amptrack_kernel.services.numbering_service import DocumentNumberAllocator


class TestDocumentNumberAllocator:

    def test_first_number(self, session):
        allocator = DocumentNumberAllocator(session)
        assert allocator.next_number("estimate", 2024) == "EST-2024-0001"
        assert allocator.next_number("estimate", 2024) == "EST-2024-0002"

    def test_scopes_are_independent(self, session):
        allocator = DocumentNumberAllocator(session)
        assert allocator.next_number("estimate", 2024) == "EST-2024-0001"
        assert allocator.next_number("invoice", 2024) == "INV-2024-0001"
        assert allocator.next_number("change_order", 2024) == "CO-2024-0001"
        assert allocator.next_number("estimate", 2025) == "EST-2025-0001"
        assert allocator.current_value("estimate", 2024) == 1

    def test_custom_prefixes(self, session):
        allocator = DocumentNumberAllocator(session, {"estimate": "Q", "invoice": "BILL"})
        assert allocator.next_number("invoice", 2024) == "BILL-2024-0001"

    def test_allocate_returns_parts(self, session):
        number, year, seq = DocumentNumberAllocator(session).allocate("invoice", 2024)
        assert (number, year, seq) == ("INV-2024-0001", 2024, 1)

    def test_rollback_returns_number(self, session_factory):
        first = session_factory()
        try:
            assert DocumentNumberAllocator(first).next_number("invoice", 2024) == "INV-2024-0001"
            first.rollback()
        finally:
            first.close()

        second = session_factory()
        try:
            assert DocumentNumberAllocator(second).next_number("invoice", 2024) == "INV-2024-0001"
            second.commit()
        finally:
            second.close()

    def test_deleted_number_not_reissued(
        self, document_service, make_estimate_request, session
    ):
        first = document_service.create_estimate(make_estimate_request())
        document_service.delete(first.id)
        session.flush()

        second = document_service.create_estimate(make_estimate_request())
        assert first.document_number == "EST-2024-0001"
        assert second.document_number == "EST-2024-0002"
