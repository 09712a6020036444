"""
Tests for DocumentService.

Verifies:
- Creation numbers, derives totals and starts in draft
- Validation failures write nothing and consume no number
- Status edits follow the per-type workflow and stamp dates
- Every effective mutation bumps artifact_revision
- Item replacement recomputes totals
- Listing, effective overdue status and the overdue sweep
- Sending moves draft to sent only on a successful send
- Timestamps read back as aware UTC, equal to what was written
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from amptrack_kernel.domain.requests import (
    ChangeOrderUpdate,
    EstimateUpdate,
    InvoiceUpdate,
)
from amptrack_kernel.exceptions import (
    DocumentNotFoundError,
    ExternalServiceUnavailableError,
    IllegalTransitionError,
    InvalidStatusError,
    LineItemValidationError,
    NotificationFailedError,
    ProjectNotFoundError,
    ValidationError,
)
from amptrack_kernel.services.numbering_service import DocumentNumberAllocator


class TestCreate:

    def test_create_estimate(self, document_service, make_estimate_request):
        info = document_service.create_estimate(make_estimate_request())

        assert info.document_number == "EST-2024-0001"
        assert info.document_type == "estimate"
        assert info.status == "draft"
        assert info.subtotal == Decimal("250.00")
        assert info.tax_amount == Decimal("25.00")
        assert info.total_amount == Decimal("275.00")
        assert [item.position for item in info.items] == [1, 2]
        assert info.items[0].total_price == Decimal("200.00")
        assert info.customer.name == "Jane Homeowner"
        assert info.artifact_revision == 1

    def test_sequential_numbers(self, document_service, make_estimate_request, make_invoice_request):
        numbers = [document_service.create_estimate(make_estimate_request()).document_number for _ in range(3)]
        invoice = document_service.create_invoice(make_invoice_request())
        assert numbers == ["EST-2024-0001", "EST-2024-0002", "EST-2024-0003"]
        assert invoice.document_number == "INV-2024-0001"

    def test_year_comes_from_clock(self, document_service, clock, make_invoice_request):
        clock.advance_days(200)
        assert document_service.create_invoice(make_invoice_request()).document_number == "INV-2025-0001"

    def test_invalid_item_consumes_no_number(self, document_service, make_estimate_request, session):
        bad_items = [{"description": "Panel", "quantity": "0", "unit_price": "10"}]
        with pytest.raises(LineItemValidationError):
            document_service.create_estimate(make_estimate_request(items=bad_items))

        assert DocumentNumberAllocator(session).current_value("estimate", 2024) == 0
        assert document_service.create_estimate(make_estimate_request()).document_number == "EST-2024-0001"

    def test_empty_items_rejected(self, document_service, make_invoice_request):
        with pytest.raises(ValidationError) as exc_info:
            document_service.create_invoice(make_invoice_request(items=()))
        assert exc_info.value.field == "items"

    def test_unknown_project(self, document_service, make_estimate_request):
        with pytest.raises(ProjectNotFoundError):
            document_service.create_estimate(make_estimate_request(project_id=uuid4()))

    def test_invoice_with_unknown_estimate(self, document_service, make_invoice_request):
        with pytest.raises(DocumentNotFoundError):
            document_service.create_invoice(make_invoice_request(estimate_id=uuid4()))

    def test_change_order_inherits_project_customer(
        self, document_service, project, make_change_order_request
    ):
        info = document_service.create_change_order(make_change_order_request(project.id))

        assert info.document_number == "CO-2024-0001"
        assert info.project_id == project.id
        assert info.customer.name == "Jane Homeowner"
        assert info.requested_date == date(2024, 6, 15)
        assert info.reason == "Customer request"
        assert info.total_amount == Decimal("400.00")


class TestRead:

    def test_get_unknown(self, document_service):
        with pytest.raises(DocumentNotFoundError):
            document_service.get(uuid4())

    def test_get_with_malformed_id(self, document_service):
        with pytest.raises(DocumentNotFoundError):
            document_service.get("not-an-id")

    def test_get_with_wrong_type(self, document_service, make_estimate_request):
        info = document_service.create_estimate(make_estimate_request())
        with pytest.raises(DocumentNotFoundError):
            document_service.get(info.id, "invoice")

    def test_list_filters_and_pages(self, document_service, make_estimate_request, make_invoice_request):
        for index in range(3):
            document_service.create_estimate(make_estimate_request(title=f"Estimate {index}"))
        document_service.create_invoice(make_invoice_request())

        page = document_service.list_documents("estimate", page_size=2)
        assert page.total == 3
        assert page.pages == 2
        assert len(page.items) == 2
        assert {doc.document_type for doc in page.items} == {"estimate"}

        assert document_service.list_documents().total == 4
        assert document_service.list_documents(search="INV-2024").total == 1

    def test_list_rejects_unknown_status(self, document_service):
        with pytest.raises(InvalidStatusError):
            document_service.list_documents("estimate", status="paid")

    def test_list_rejects_bad_page(self, document_service):
        with pytest.raises(ValidationError):
            document_service.list_documents(page=0)


class TestStatusEdits:

    def test_estimate_approve(self, document_service, make_estimate_request):
        info = document_service.create_estimate(make_estimate_request())
        updated = document_service.update(info.id, EstimateUpdate(status="approved"))
        assert updated.status == "approved"
        assert updated.artifact_revision == 2

    def test_invalid_status_value(self, document_service, make_estimate_request):
        info = document_service.create_estimate(make_estimate_request())
        with pytest.raises(InvalidStatusError):
            document_service.update(info.id, EstimateUpdate(status="paid"))
        assert document_service.get(info.id).status == "draft"

    def test_illegal_transition_writes_nothing(self, document_service, make_invoice_request):
        info = document_service.create_invoice(make_invoice_request())
        document_service.update(info.id, InvoiceUpdate(status="paid"))
        with pytest.raises(IllegalTransitionError):
            document_service.update(info.id, InvoiceUpdate(status="sent", notes="changed"))

        current = document_service.get(info.id)
        assert current.status == "paid"
        assert current.notes == ""

    def test_paid_stamps_date(self, document_service, make_invoice_request):
        info = document_service.create_invoice(make_invoice_request())
        paid = document_service.update(info.id, InvoiceUpdate(status="paid"))
        assert paid.paid_date == date(2024, 6, 15)

    def test_explicit_paid_date_kept(self, document_service, make_invoice_request):
        info = document_service.create_invoice(make_invoice_request())
        paid = document_service.update(
            info.id, InvoiceUpdate(status="paid", paid_date="2024-06-01")
        )
        assert paid.paid_date == date(2024, 6, 1)

    def test_change_order_approval_stamps_date(
        self, document_service, project, make_change_order_request
    ):
        info = document_service.create_change_order(make_change_order_request(project.id))
        approved = document_service.update(info.id, ChangeOrderUpdate(status="approved"))
        assert approved.approved_date == date(2024, 6, 15)

    def test_update_type_must_match_document(self, document_service, make_estimate_request):
        info = document_service.create_estimate(make_estimate_request())
        with pytest.raises(ValidationError):
            document_service.update(info.id, InvoiceUpdate(notes="x"))

    def test_empty_update_rejected(self, document_service, make_estimate_request):
        info = document_service.create_estimate(make_estimate_request())
        with pytest.raises(ValidationError):
            document_service.update(info.id, EstimateUpdate())


class TestInvalidation:

    def test_noop_update_keeps_revision(self, document_service, make_estimate_request):
        info = document_service.create_estimate(make_estimate_request())
        same = document_service.update(info.id, EstimateUpdate(title="Panel upgrade"))
        assert same.artifact_revision == 1

    def test_snapshot_field_change_bumps_revision(self, document_service, make_estimate_request):
        info = document_service.create_estimate(make_estimate_request())
        updated = document_service.update(info.id, EstimateUpdate(customer_name="J. Homeowner"))
        assert updated.artifact_revision == 2
        assert updated.customer.name == "J. Homeowner"

    def test_tax_rate_change_recomputes(self, document_service, make_estimate_request):
        info = document_service.create_estimate(make_estimate_request())
        updated = document_service.update(info.id, EstimateUpdate(tax_rate="0"))
        assert updated.tax_amount == Decimal("0.00")
        assert updated.total_amount == Decimal("250.00")
        assert updated.artifact_revision == 2

    def test_replace_items_recomputes_and_invalidates(self, document_service, make_estimate_request):
        info = document_service.create_estimate(make_estimate_request())
        updated = document_service.replace_items(
            info.id,
            [{"description": "Subpanel", "quantity": "1", "unit_price": "80.00"}],
        )

        assert [item.description for item in updated.items] == ["Subpanel"]
        assert updated.subtotal == Decimal("80.00")
        assert updated.tax_amount == Decimal("8.00")
        assert updated.total_amount == Decimal("88.00")
        assert updated.artifact_revision == 2

    def test_replace_items_with_new_rate(self, document_service, make_estimate_request):
        info = document_service.create_estimate(make_estimate_request())
        updated = document_service.replace_items(
            info.id,
            [{"description": "Subpanel", "quantity": "1", "unit_price": "80.00"}],
            tax_rate="5",
        )
        assert updated.total_amount == Decimal("84.00")

    def test_replace_items_rejects_empty(self, document_service, make_estimate_request):
        info = document_service.create_estimate(make_estimate_request())
        with pytest.raises(ValidationError):
            document_service.replace_items(info.id, [])
        assert len(document_service.get(info.id).items) == 2


class TestOverdue:

    def test_effective_overdue_on_read(self, document_service, clock, make_invoice_request):
        info = document_service.create_invoice(
            make_invoice_request(due_date=clock.today() + timedelta(days=10))
        )
        assert info.status == "draft"

        clock.advance_days(11)
        current = document_service.get(info.id)
        assert current.status == "overdue"
        assert current.stored_status == "draft"

    def test_overdue_filter_includes_date_based(self, document_service, clock, make_invoice_request):
        document_service.create_invoice(make_invoice_request(due_date=clock.today() - timedelta(days=1)))
        document_service.create_invoice(make_invoice_request(due_date=clock.today() + timedelta(days=1)))

        assert document_service.list_documents("invoice", status="overdue").total == 1
        assert document_service.list_documents("invoice", status="draft").total == 1

    def test_sweep_persists_status(self, document_service, clock, make_invoice_request):
        late = document_service.create_invoice(
            make_invoice_request(due_date=clock.today() - timedelta(days=1))
        )
        paid = document_service.create_invoice(
            make_invoice_request(due_date=clock.today() - timedelta(days=1))
        )
        document_service.update(paid.id, InvoiceUpdate(status="paid"))

        assert document_service.mark_overdue_invoices() == [late.document_number]
        swept = document_service.get(late.id)
        assert swept.stored_status == "overdue"
        assert swept.artifact_revision == 2
        assert document_service.get(paid.id).status == "paid"
        assert document_service.mark_overdue_invoices() == []


class TestTimestamps:

    def test_reloaded_row_equals_fresh_snapshot(self, document_service, make_estimate_request, session):
        estimate = document_service.create_estimate(make_estimate_request())
        approved = document_service.update(estimate.id, EstimateUpdate(status="approved"))

        session.expire_all()
        assert document_service.get(estimate.id) == approved

    def test_timestamps_are_aware_utc(self, document_service, clock, make_estimate_request, session):
        estimate = document_service.create_estimate(make_estimate_request())
        session.expire_all()

        reloaded = document_service.get(estimate.id)
        assert reloaded.status_changed_at == clock.now()
        for value in (reloaded.status_changed_at, reloaded.created_at, reloaded.updated_at):
            assert value.tzinfo is not None
            assert value.utcoffset() == timedelta(0)

    def test_naive_input_is_stored_as_utc(self, document_service, make_estimate_request, session):
        estimate = document_service.create_estimate(make_estimate_request())
        row = document_service.get_row(estimate.id)
        row.status_changed_at = datetime(2024, 6, 1, 8, 30)
        session.flush()
        session.expire_all()

        assert document_service.get(estimate.id).status_changed_at == datetime(
            2024, 6, 1, 8, 30, tzinfo=timezone.utc
        )


class TestDelete:

    def test_delete_returns_snapshot(self, document_service, make_estimate_request):
        info = document_service.create_estimate(make_estimate_request())
        deleted = document_service.delete(info.id)
        assert deleted.document_number == info.document_number
        with pytest.raises(DocumentNotFoundError):
            document_service.get(info.id)

    def test_delete_unknown(self, document_service):
        with pytest.raises(DocumentNotFoundError):
            document_service.delete(uuid4())


class TestSend:

    def test_send_moves_draft_to_sent(self, document_service, notifier, make_estimate_request):
        info = document_service.create_estimate(make_estimate_request())
        result = document_service.send_document(info.id, "jane@example.com", "Mike")

        assert result.status_changed
        assert result.document.status == "sent"
        assert result.message_id == "msg-1"
        assert notifier.sent[0]["recipient"] == "jane@example.com"
        assert notifier.sent[0]["sender"] == "Mike"

    def test_resend_keeps_status(self, document_service, make_estimate_request):
        info = document_service.create_estimate(make_estimate_request())
        document_service.update(info.id, EstimateUpdate(status="approved"))
        result = document_service.send_document(info.id, "jane@example.com")
        assert not result.status_changed
        assert result.document.status == "approved"

    def test_default_sender_name(self, document_service, notifier, make_estimate_request):
        info = document_service.create_estimate(make_estimate_request())
        document_service.send_document(info.id, "jane@example.com", "  ")
        assert notifier.sent[0]["sender"] == "AmpTrack"

    def test_invalid_recipient(self, document_service, make_estimate_request):
        info = document_service.create_estimate(make_estimate_request())
        with pytest.raises(ValidationError):
            document_service.send_document(info.id, "not-an-email")

    def test_failed_send_leaves_draft(self, document_service, notifier, make_estimate_request):
        info = document_service.create_estimate(make_estimate_request())
        notifier.success = False
        notifier.error = "mailbox unavailable"
        with pytest.raises(NotificationFailedError):
            document_service.send_document(info.id, "jane@example.com")
        assert document_service.get(info.id).status == "draft"

    def test_unavailable_notifier(self, document_service, notifier, make_estimate_request):
        info = document_service.create_estimate(make_estimate_request())
        notifier.available = False
        with pytest.raises(ExternalServiceUnavailableError):
            document_service.send_document(info.id, "jane@example.com")
        assert notifier.sent == []
        assert document_service.get(info.id).status == "draft"
