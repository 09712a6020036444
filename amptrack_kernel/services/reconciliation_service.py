"""
ReconciliationService -- apply verified payment-provider events to invoices.

Responsibility:
    Turns a PaymentEvent (already signature-verified by the webhook handler)
    into at most one effective change of invoice payment state.

Architecture position:
    Kernel > Services.  Flush-only.  Runs concurrently with interactive
    edits of the same invoice; conflicts resolve last-write-wins at the row
    level except for the rule below.

Invariants enforced:
    - Idempotence: the event id is recorded in ``payment_events`` before
      the invoice is touched.  A second delivery of the same id trips the
      unique constraint and is reported as a duplicate.
    - Forward-only: a succeeded event against an invoice that is already
      succeeded or ``paid`` changes nothing (paid_date is not rewritten).
      A failed event never overrides succeeded.

Failure modes:
    - None for unknown invoices or unhandled event types: both are logged,
      recorded and acknowledged so the provider stops redelivering.
    - Database errors propagate; the provider will redeliver.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from amptrack_kernel.domain.clock import Clock
from amptrack_kernel.domain.payments import (
    PaymentEvent,
    PaymentEventType,
    ReconciliationOutcome,
    ReconciliationResult,
)
from amptrack_kernel.domain.status import apply_status_change, plan_transition
from amptrack_kernel.logging_config import LogContext, document_context, get_logger
from amptrack_kernel.models.document import Document, DocumentType, PaymentStatus
from amptrack_kernel.models.payment_event import PaymentEventRecord
from amptrack_kernel.services.base import BaseService
from amptrack_kernel.services.document_service import invalidate_artifact

logger = get_logger("services.reconciliation")

CARD_PAYMENT_METHOD = "card"


class ReconciliationService(BaseService[Document]):
    """
    Applies payment events exactly once in effect.

    Contract:
        ``apply_event`` always returns a result for a verified event; every
        outcome is safe to acknowledge to the provider.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    def apply_event(self, event: PaymentEvent) -> ReconciliationResult:
        with LogContext.bind(event_id=event.event_id):
            record = self._record(event)
            if record is None:
                logger.info(
                    "payment_event_duplicate",
                    extra={"event_type": event.event_type.value},
                )
                return ReconciliationResult(event.event_id, ReconciliationOutcome.DUPLICATE)

            if event.event_type is PaymentEventType.OTHER:
                logger.info("payment_event_ignored", extra={"raw_type": event.raw_type})
                return self._finish(record, ReconciliationOutcome.IGNORED, None)

            invoice = self._find_invoice(event)
            if invoice is None:
                logger.warning(
                    "payment_event_unknown_invoice",
                    extra={
                        "invoice_ref": event.invoice_id,
                        "provider_reference_id": event.provider_reference_id,
                    },
                )
                return self._finish(record, ReconciliationOutcome.UNKNOWN_INVOICE, None)

            record.invoice_id = invoice.id
            with document_context(invoice):
                mismatch = self._check_amount(event, invoice)
                if event.event_type is PaymentEventType.SUCCEEDED:
                    outcome = self._apply_succeeded(event, invoice)
                else:
                    outcome = self._apply_failed(event, invoice)
                return self._finish(record, outcome, invoice, amount_mismatch=mismatch)

    # ------------------------------------------------------------------

    def _record(self, event: PaymentEvent) -> PaymentEventRecord | None:
        """Insert the ledger row, or return None when the id was seen before."""
        existing = self.session.execute(
            select(PaymentEventRecord.id).where(PaymentEventRecord.event_id == event.event_id)
        ).first()
        if existing is not None:
            return None

        record = PaymentEventRecord(
            event_id=event.event_id,
            event_type=event.raw_type or event.event_type.value,
            provider_reference_id=event.provider_reference_id,
            amount=event.amount,
            outcome="pending",
        )
        savepoint = self.session.begin_nested()
        try:
            self.session.add(record)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            # Concurrent delivery of the same event won the insert
            savepoint.rollback()
            return None
        return record

    def _finish(
        self,
        record: PaymentEventRecord,
        outcome: ReconciliationOutcome,
        invoice: Document | None,
        *,
        amount_mismatch: bool = False,
    ) -> ReconciliationResult:
        record.outcome = outcome.value
        self.session.flush()
        return ReconciliationResult(
            event_id=record.event_id,
            outcome=outcome,
            invoice_id=str(invoice.id) if invoice is not None else None,
            amount_mismatch=amount_mismatch,
        )

    def _find_invoice(self, event: PaymentEvent) -> Document | None:
        stmt = select(Document).where(Document.document_type == DocumentType.INVOICE.value)
        invoice_id = _parse_uuid(event.invoice_id)
        if invoice_id is not None:
            stmt = stmt.where(Document.id == invoice_id)
        elif event.provider_reference_id:
            ref = event.provider_reference_id
            stmt = stmt.where(
                or_(Document.payment_intent_id == ref, Document.checkout_session_id == ref)
            )
        else:
            return None
        return self.session.execute(
            stmt.with_for_update().execution_options(populate_existing=True)
        ).scalars().first()

    def _check_amount(self, event: PaymentEvent, invoice: Document) -> bool:
        if event.amount is None or event.amount == invoice.total_amount:
            return False
        logger.warning(
            "payment_amount_mismatch",
            extra={
                "document_id": str(invoice.id),
                "event_amount": str(event.amount),
                "total_amount": str(invoice.total_amount),
            },
        )
        return True

    def _apply_succeeded(self, event: PaymentEvent, invoice: Document) -> ReconciliationOutcome:
        if invoice.payment_status == PaymentStatus.SUCCEEDED.value or invoice.status == "paid":
            logger.info(
                "payment_event_noop",
                extra={"document_id": str(invoice.id), "reason": "already_paid"},
            )
            return ReconciliationOutcome.NOOP

        change = plan_transition(DocumentType.INVOICE.value, invoice.status, "paid")
        apply_status_change(invoice, change, now=self.clock.now())
        invoice.payment_status = PaymentStatus.SUCCEEDED.value
        invoice.payment_method = CARD_PAYMENT_METHOD
        if event.provider_reference_id:
            invoice.payment_reference_id = event.provider_reference_id
        invalidate_artifact(invoice)
        self.session.flush()

        logger.info(
            "invoice_paid",
            extra={
                "document_id": str(invoice.id),
                "document_number": invoice.document_number,
                "provider_reference_id": event.provider_reference_id,
            },
        )
        return ReconciliationOutcome.APPLIED

    def _apply_failed(self, event: PaymentEvent, invoice: Document) -> ReconciliationOutcome:
        if invoice.payment_status == PaymentStatus.SUCCEEDED.value:
            logger.info(
                "payment_event_noop",
                extra={"document_id": str(invoice.id), "reason": "already_succeeded"},
            )
            return ReconciliationOutcome.NOOP

        invoice.payment_status = PaymentStatus.FAILED.value
        if event.provider_reference_id:
            invoice.payment_reference_id = event.provider_reference_id
        self.session.flush()

        logger.warning(
            "invoice_payment_failed",
            extra={
                "document_id": str(invoice.id),
                "provider_reference_id": event.provider_reference_id,
            },
        )
        return ReconciliationOutcome.APPLIED


def _parse_uuid(value: str | None) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None
