"""
Collaborator ports consumed by the document kernel.

Contract:
    Every port exposes an ``available`` flag.  A collaborator that is
    disabled or unconfigured reports ``available = False`` instead of being
    None; services check the flag and raise ExternalServiceUnavailableError
    so callers can degrade.

Architecture: kernel domain.  Implementations live in amptrack_services and
are injected through constructors; the kernel never imports them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from amptrack_kernel.domain.dtos import BusinessProfile, DocumentInfo
    from amptrack_kernel.domain.payments import (
        CheckoutSessionResult,
        PaymentEvent,
        PaymentIntentResult,
    )


@runtime_checkable
class DocumentRenderer(Protocol):
    """Turns a document snapshot into artifact bytes (PDF)."""

    available: bool

    def render(self, document: "DocumentInfo", profile: "BusinessProfile") -> bytes: ...


@runtime_checkable
class ArtifactStore(Protocol):
    """
    Durable byte storage addressed by string keys.

    ``get`` returns None for a missing object.  ``delete`` of a missing key
    is not an error.
    """

    available: bool

    def put(self, key: str, data: bytes) -> None: ...

    def get(self, key: str) -> bytes | None: ...

    def delete(self, key: str) -> None: ...


@dataclass(frozen=True)
class NotificationResult:
    """Outcome of a send.  ``unavailable`` is a first-class outcome."""

    success: bool
    error: str | None = None
    unavailable: bool = False
    message_id: str | None = None


@runtime_checkable
class Notifier(Protocol):
    available: bool

    def send(
        self,
        document: "DocumentInfo",
        recipient_email: str,
        sender_name: str,
        attachment: bytes | None = None,
    ) -> NotificationResult: ...


@runtime_checkable
class PaymentGateway(Protocol):
    """Outbound payment calls and inbound event verification."""

    available: bool
    currency: str

    def create_payment_intent(
        self, invoice: "DocumentInfo", metadata: dict[str, str]
    ) -> "PaymentIntentResult": ...

    def create_checkout_session(
        self,
        invoice: "DocumentInfo",
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> "CheckoutSessionResult": ...

    def retrieve_payment_status(self, provider_id: str) -> str: ...

    def verify_webhook(self, payload: bytes, signature_header: str | None) -> dict[str, Any]:
        """Return the decoded event or raise ReconciliationRejectedError."""
        ...

    def parse_event(self, event: dict[str, Any]) -> "PaymentEvent": ...


@runtime_checkable
class BusinessProfileProvider(Protocol):
    def get_profile(self) -> "BusinessProfile": ...
