"""
Stripe payment gateway.

Talks to the Stripe REST API with httpx (form-encoded requests, bearer
secret key) and verifies webhook signatures locally:

    Stripe-Signature: t=<unix ts>,v1=<hex hmac-sha256 of "<t>.<body>">

A signature is accepted when any ``v1`` value matches and the timestamp is
within the configured tolerance (300 seconds by default).

Amounts cross the wire in minor units (cents); everything on the kernel
side is Decimal major units.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from decimal import Decimal
from typing import Any, Callable, Mapping

import httpx

from amptrack_config.schema import PaymentSettings, is_placeholder
from amptrack_kernel.db.types import MAX_MONEY, from_minor_units, to_minor_units
from amptrack_kernel.domain.dtos import DocumentInfo
from amptrack_kernel.domain.payments import (
    CheckoutSessionResult,
    PaymentEvent,
    PaymentEventType,
    PaymentIntentResult,
)
from amptrack_kernel.exceptions import (
    ExternalServiceUnavailableError,
    PaymentProviderError,
    ReconciliationRejectedError,
)
from amptrack_kernel.logging_config import get_logger

logger = get_logger("services.stripe")

SIGNATURE_SCHEME = "v1"

SUCCEEDED_EVENT_TYPES = frozenset({"payment_intent.succeeded", "checkout.session.completed"})
FAILED_EVENT_TYPES = frozenset({"payment_intent.payment_failed"})


def _major_units(value: Any) -> Decimal | None:
    """Cents from a provider payload; anything but a whole number is unknown."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, float) and not value.is_integer():
            raise ValueError(value)
        cents = int(value)
        if abs(cents) > MAX_MONEY * 100:
            raise ValueError(value)
    except (TypeError, ValueError, OverflowError):
        logger.warning("stripe_amount_unparseable", extra={"amount": repr(value)})
        return None
    return from_minor_units(cents)


def form_encode(data: Mapping[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """Flatten nested dicts/lists into Stripe's ``a[b][0][c]`` form keys."""
    pairs: list[tuple[str, str]] = []
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, Mapping):
            pairs.extend(form_encode(value, name))
        elif isinstance(value, (list, tuple)):
            for index, element in enumerate(value):
                element_name = f"{name}[{index}]"
                if isinstance(element, Mapping):
                    pairs.extend(form_encode(element, element_name))
                else:
                    pairs.append((element_name, str(element)))
        elif isinstance(value, bool):
            pairs.append((name, "true" if value else "false"))
        else:
            pairs.append((name, str(value)))
    return pairs


def parse_signature_header(header: str) -> tuple[int, list[str]]:
    """
    Split a ``Stripe-Signature`` header into (timestamp, v1 signatures).

    Raises:
        ReconciliationRejectedError: header malformed or missing parts.
    """
    timestamp: int | None = None
    signatures: list[str] = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise ReconciliationRejectedError("malformed signature timestamp") from None
        elif key == SIGNATURE_SCHEME:
            signatures.append(value)
    if timestamp is None:
        raise ReconciliationRejectedError("signature header has no timestamp")
    if not signatures:
        raise ReconciliationRejectedError(f"signature header has no {SIGNATURE_SCHEME} signature")
    return timestamp, signatures


def compute_signature(secret: str, timestamp: int, payload: bytes) -> str:
    signed_payload = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()


def signature_header(secret: str, payload: bytes, timestamp: int) -> str:
    """Build a header the way Stripe does; used by tests and local tooling."""
    return f"t={timestamp},{SIGNATURE_SCHEME}={compute_signature(secret, timestamp, payload)}"


class StripeGateway:
    """PaymentGateway implementation for Stripe."""

    def __init__(
        self,
        settings: PaymentSettings,
        *,
        client: httpx.Client | None = None,
        now: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.currency = settings.currency
        self._now = now
        self._client = client
        if self._client is None and settings.configured:
            self._client = httpx.Client(
                base_url=settings.api_base,
                timeout=settings.timeout_seconds,
                headers={"Authorization": f"Bearer {settings.secret_key}"},
            )

    @property
    def available(self) -> bool:
        return self.settings.configured and self._client is not None

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, data: Mapping[str, Any] | None = None) -> dict[str, Any]:
        if not self.available:
            raise ExternalServiceUnavailableError("payments", "Stripe is not configured")
        try:
            response = self._client.request(
                method,
                path,
                data=dict(form_encode(data)) if data else None,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            message = _error_message(exc.response)
            logger.error(
                "stripe_request_failed",
                extra={"path": path, "status_code": exc.response.status_code, "error": message},
            )
            raise PaymentProviderError(message, status_code=exc.response.status_code) from exc
        except httpx.RequestError as exc:
            logger.error("stripe_unreachable", extra={"path": path, "error": str(exc)})
            raise ExternalServiceUnavailableError("payments", f"Stripe unreachable: {exc}") from exc
        return response.json()

    def create_payment_intent(
        self, invoice: DocumentInfo, metadata: dict[str, str]
    ) -> PaymentIntentResult:
        body = self._request(
            "POST",
            "/v1/payment_intents",
            {
                "amount": to_minor_units(invoice.total_amount),
                "currency": self.currency,
                "automatic_payment_methods": {"enabled": True},
                "description": f"Invoice {invoice.document_number}",
                "metadata": metadata,
            },
        )
        return PaymentIntentResult(
            provider_id=body["id"],
            client_secret=body.get("client_secret"),
            amount=_major_units(body.get("amount")) or invoice.total_amount,
            currency=body.get("currency", self.currency),
            status=body.get("status", ""),
        )

    def create_checkout_session(
        self,
        invoice: DocumentInfo,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> CheckoutSessionResult:
        payload: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {"name": f"Invoice {invoice.document_number}"},
                        "unit_amount": to_minor_units(invoice.total_amount),
                    },
                    "quantity": 1,
                }
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            # Copy metadata onto the underlying intent so intent events resolve too
            "payment_intent_data": {"metadata": metadata},
        }
        if invoice.customer.email:
            payload["customer_email"] = invoice.customer.email
        body = self._request("POST", "/v1/checkout/sessions", payload)
        return CheckoutSessionResult(
            session_id=body["id"],
            url=body.get("url"),
            amount=_major_units(body.get("amount_total")) or invoice.total_amount,
            currency=body.get("currency", self.currency),
        )

    def retrieve_payment_status(self, provider_id: str) -> str:
        if provider_id.startswith("cs_"):
            body = self._request("GET", f"/v1/checkout/sessions/{provider_id}")
            return body.get("payment_status", "")
        body = self._request("GET", f"/v1/payment_intents/{provider_id}")
        return body.get("status", "")

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def verify_webhook(self, payload: bytes, signature_header: str | None) -> dict[str, Any]:
        secret = self.settings.webhook_secret
        if is_placeholder(secret):
            raise ReconciliationRejectedError("webhook secret is not configured")
        if not signature_header:
            raise ReconciliationRejectedError("missing signature header")

        timestamp, signatures = parse_signature_header(signature_header)
        expected = compute_signature(secret, timestamp, payload)
        if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
            raise ReconciliationRejectedError("signature mismatch")

        tolerance = self.settings.webhook_tolerance_seconds
        if tolerance and abs(self._now() - timestamp) > tolerance:
            raise ReconciliationRejectedError("timestamp outside tolerance")

        try:
            event = json.loads(payload)
        except ValueError:
            raise ReconciliationRejectedError("payload is not valid JSON") from None
        if not isinstance(event, dict) or not event.get("id"):
            raise ReconciliationRejectedError("payload is not an event")
        return event

    def parse_event(self, event: dict[str, Any]) -> PaymentEvent:
        raw_type = str(event.get("type", ""))
        obj = (event.get("data") or {}).get("object") or {}
        metadata = obj.get("metadata") or {}

        if raw_type == "checkout.session.completed":
            amount = _major_units(obj.get("amount_total"))
        elif raw_type == "payment_intent.succeeded":
            amount = _major_units(obj.get("amount_received", obj.get("amount")))
        else:
            amount = _major_units(obj.get("amount"))

        if raw_type in SUCCEEDED_EVENT_TYPES:
            event_type = PaymentEventType.SUCCEEDED
        elif raw_type in FAILED_EVENT_TYPES:
            event_type = PaymentEventType.FAILED
        else:
            event_type = PaymentEventType.OTHER

        return PaymentEvent(
            event_id=str(event["id"]),
            event_type=event_type,
            invoice_id=metadata.get("invoice_id"),
            provider_reference_id=obj.get("id"),
            amount=amount,
            raw_type=raw_type,
            payload=event,
        )


def _error_message(response: httpx.Response) -> str:
    try:
        error = response.json().get("error") or {}
    except ValueError:
        return f"Stripe returned HTTP {response.status_code}"
    return error.get("message") or f"Stripe returned HTTP {response.status_code}"
