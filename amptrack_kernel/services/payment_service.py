"""
PaymentService -- start card payments for invoices.

Responsibility:
    Opens payment intents and checkout sessions with the payment gateway
    and records the provider id on the invoice with ``payment_status =
    pending``.  Completion arrives later through reconciliation.

Invariants enforced:
    - Paid, cancelled or already-succeeded invoices are not payable.
    - payment_status never moves back from succeeded.
    - Amounts are the invoice's ``total_amount``; the gateway converts to
      minor units.  One currency, from configuration.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urlparse

from sqlalchemy.orm import Session

from amptrack_kernel.domain.clock import Clock
from amptrack_kernel.domain.collaborators import PaymentGateway
from amptrack_kernel.domain.payments import (
    CheckoutSessionResult,
    PaymentIntentResult,
    PaymentStatusInfo,
)
from amptrack_kernel.exceptions import (
    ExternalServiceError,
    ExternalServiceUnavailableError,
    InvoiceNotPayableError,
    ValidationError,
)
from amptrack_kernel.logging_config import get_logger
from amptrack_kernel.models.document import Document, DocumentType, PaymentStatus
from amptrack_kernel.services.base import BaseService
from amptrack_kernel.services.document_service import DocumentService

logger = get_logger("services.payment")

NOT_PAYABLE_STATUSES = frozenset({"paid", "cancelled"})


def _require_url(value: Any, field_name: str) -> str:
    parsed = urlparse(value if isinstance(value, str) else "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"{field_name} must be a valid URL", field=field_name)
    return value


class PaymentService(BaseService[Document]):

    def __init__(
        self,
        session: Session,
        gateway: PaymentGateway | None,
        clock: Clock | None = None,
        *,
        documents: DocumentService | None = None,
    ):
        super().__init__(session, clock)
        self.gateway = gateway
        self.documents = documents or DocumentService(session, self.clock)

    @property
    def available(self) -> bool:
        return self.gateway is not None and self.gateway.available

    def _require_gateway(self) -> PaymentGateway:
        if not self.available:
            raise ExternalServiceUnavailableError("payments", "payment processing is not configured")
        return self.gateway

    def _payable_invoice(self, invoice_id: Any) -> Document:
        invoice = self.documents.get_row(invoice_id, DocumentType.INVOICE.value, for_update=True)
        if (
            invoice.status in NOT_PAYABLE_STATUSES
            or invoice.payment_status == PaymentStatus.SUCCEEDED.value
        ):
            raise InvoiceNotPayableError(str(invoice.id), invoice.status)
        return invoice

    @staticmethod
    def _metadata(invoice: Document) -> dict[str, str]:
        return {
            "invoice_id": str(invoice.id),
            "invoice_number": invoice.document_number,
            "customer_email": invoice.customer_email or "",
        }

    def create_payment_intent(self, invoice_id: Any) -> PaymentIntentResult:
        gateway = self._require_gateway()
        invoice = self._payable_invoice(invoice_id)

        result = gateway.create_payment_intent(self.documents.to_info(invoice), self._metadata(invoice))
        invoice.payment_intent_id = result.provider_id
        invoice.payment_status = PaymentStatus.PENDING.value
        self.session.flush()

        logger.info(
            "payment_intent_created",
            extra={
                "document_id": str(invoice.id),
                "payment_intent_id": result.provider_id,
                "amount": str(result.amount),
            },
        )
        return result

    def create_checkout_session(
        self,
        invoice_id: Any,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSessionResult:
        _require_url(success_url, "success_url")
        _require_url(cancel_url, "cancel_url")
        gateway = self._require_gateway()
        invoice = self._payable_invoice(invoice_id)

        result = gateway.create_checkout_session(
            self.documents.to_info(invoice),
            success_url,
            cancel_url,
            self._metadata(invoice),
        )
        invoice.checkout_session_id = result.session_id
        invoice.payment_status = PaymentStatus.PENDING.value
        self.session.flush()

        logger.info(
            "checkout_session_created",
            extra={"document_id": str(invoice.id), "checkout_session_id": result.session_id},
        )
        return result

    def get_payment_status(self, invoice_id: Any) -> PaymentStatusInfo:
        """
        Local payment state, plus the provider's status of the last intent
        when the gateway is reachable.  Provider errors are logged and the
        local state is still returned.
        """
        invoice = self.documents.get_row(invoice_id, DocumentType.INVOICE.value)
        info = self.documents.to_info(invoice)

        provider_status = None
        if invoice.payment_intent_id and self.available:
            try:
                provider_status = self.gateway.retrieve_payment_status(invoice.payment_intent_id)
            except ExternalServiceError as exc:
                logger.warning(
                    "payment_status_lookup_failed",
                    extra={"document_id": str(invoice.id), "error": str(exc)},
                )

        return PaymentStatusInfo(
            invoice_id=str(invoice.id),
            invoice_number=invoice.document_number,
            status=info.status,
            payment_status=invoice.payment_status,
            paid_date=invoice.paid_date,
            total_amount=invoice.total_amount,
            provider_status=provider_status,
        )
