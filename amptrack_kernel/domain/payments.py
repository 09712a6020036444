"""
Payment-provider events and outbound payment results, provider neutral.

Gateways translate their wire payloads into these types; reconciliation
consumes only these.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any


class PaymentEventType(str, Enum):
    SUCCEEDED = "payment_succeeded"
    FAILED = "payment_failed"
    OTHER = "other"


@dataclass(frozen=True)
class PaymentEvent:
    """
    A verified inbound event.

    ``invoice_id`` is the raw reference the provider echoed back (metadata);
    it may not parse or may not exist.  ``amount`` is in major units.
    """

    event_id: str
    event_type: PaymentEventType
    invoice_id: str | None
    provider_reference_id: str | None
    amount: Decimal | None = None
    raw_type: str = ""
    payload: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


class ReconciliationOutcome(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    UNKNOWN_INVOICE = "unknown_invoice"


@dataclass(frozen=True)
class ReconciliationResult:
    """What applying an event did.  Every outcome is acknowledged."""

    event_id: str
    outcome: ReconciliationOutcome
    invoice_id: str | None = None
    amount_mismatch: bool = False

    @property
    def acknowledged(self) -> bool:
        return True


@dataclass(frozen=True)
class PaymentIntentResult:
    provider_id: str
    client_secret: str | None
    amount: Decimal
    currency: str
    status: str


@dataclass(frozen=True)
class CheckoutSessionResult:
    session_id: str
    url: str | None
    amount: Decimal
    currency: str


@dataclass(frozen=True)
class PaymentStatusInfo:
    """Local payment state plus, when available, the provider's view."""

    invoice_id: str
    invoice_number: str
    status: str
    payment_status: str | None
    paid_date: Any
    total_amount: Decimal
    provider_status: str | None = None
