"""
Payment webhook entry point.

Order of work for one delivery:

    1. Verify the signature (gateway).  Rejection happens before any
       database access.
    2. Translate the provider payload into a PaymentEvent.
    3. Apply it in its own transaction (ReconciliationService).

Every verified event is acknowledged, including duplicates, unknown
invoices and unhandled types, so the provider stops redelivering.
"""

from __future__ import annotations

from sqlalchemy.orm import Session, sessionmaker

from amptrack_kernel.db.engine import session_scope
from amptrack_kernel.domain.clock import Clock
from amptrack_kernel.domain.collaborators import PaymentGateway
from amptrack_kernel.domain.payments import ReconciliationResult
from amptrack_kernel.exceptions import ReconciliationRejectedError
from amptrack_kernel.logging_config import LogContext, get_logger
from amptrack_kernel.services.reconciliation_service import ReconciliationService

logger = get_logger("services.webhook")


class PaymentWebhookHandler:

    def __init__(
        self,
        gateway: PaymentGateway,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
    ):
        self.gateway = gateway
        self.session_factory = session_factory
        self.clock = clock

    def handle(self, payload: bytes, signature_header: str | None) -> ReconciliationResult:
        """
        Verify and apply one webhook delivery.

        Raises:
            ReconciliationRejectedError: signature missing, invalid or stale.
                Nothing was read or written.
        """
        try:
            raw_event = self.gateway.verify_webhook(payload, signature_header)
        except ReconciliationRejectedError as exc:
            logger.warning("payment_webhook_rejected", extra={"reason": exc.reason})
            raise

        event = self.gateway.parse_event(raw_event)
        with LogContext.bind(event_id=event.event_id):
            logger.info(
                "payment_webhook_received",
                extra={"raw_type": event.raw_type, "event_type": event.event_type.value},
            )
            with session_scope(self.session_factory) as session:
                result = ReconciliationService(session, self.clock).apply_event(event)

            logger.info(
                "payment_webhook_processed",
                extra={
                    "outcome": result.outcome.value,
                    "invoice_id": result.invoice_id,
                    "amount_mismatch": result.amount_mismatch,
                },
            )
        return result
