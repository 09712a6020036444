"""
Typed exception hierarchy for the document lifecycle kernel.

Every error carries a machine-readable ``code`` class attribute and stores
its context as attributes, so callers (the HTTP layer, the webhook
endpoint, background jobs) can branch on type and serialize the payload
without parsing messages.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    AmpTrackError (base)
    |
    +-- ValidationError                 user-correctable input problem (4xx)
    |   +-- InvalidStatusError
    |   +-- LineItemValidationError
    |
    +-- NotFoundError
    |   +-- DocumentNotFoundError
    |   +-- ProjectNotFoundError
    |
    +-- ConflictError                   operation not allowed in current state
    |   +-- EstimateNotApprovedError
    |   +-- IllegalTransitionError
    |   +-- NumberAllocationConflictError
    |   +-- ProjectNameConflictError
    |   +-- InvoiceNotPayableError
    |
    +-- ExternalServiceError
    |   +-- ExternalServiceUnavailableError   collaborator disabled/unreachable
    |   +-- NotificationFailedError
    |   +-- PaymentProviderError
    |
    +-- RenderFailureError
    |   +-- RenderTimeoutError
    |
    +-- ReconciliationRejectedError     webhook signature invalid

===============================================================================
PROPAGATION
===============================================================================

ValidationError and NotFoundError always reach the caller.
ExternalServiceUnavailableError from rendering or notification never aborts
document creation or update -- the document persists and the feature is
reported unavailable.  ConflictError aborts only the operation that raised
it.  ReconciliationRejectedError aborts the webhook before any state is read
or written.
"""

from __future__ import annotations


class AmpTrackError(Exception):
    """Base exception for all document-kernel errors."""

    code: str = "AMPTRACK_ERROR"


# Validation


class ValidationError(AmpTrackError):
    """Bad input shape or values."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidStatusError(ValidationError):
    """Target status is not part of the document type's status set."""

    code: str = "INVALID_STATUS"

    def __init__(self, document_type: str, status: str, allowed: tuple[str, ...]):
        self.document_type = document_type
        self.status = status
        self.allowed = allowed
        super().__init__(
            f"Status '{status}' is not valid for {document_type}; "
            f"expected one of: {', '.join(allowed)}",
            field="status",
        )


class LineItemValidationError(ValidationError):
    """A line item failed quantity/price/description rules."""

    code: str = "INVALID_LINE_ITEM"

    def __init__(self, index: int, message: str, field: str | None = None):
        self.index = index
        super().__init__(f"Item {index}: {message}", field=field)


# Not found


class NotFoundError(AmpTrackError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"


class DocumentNotFoundError(NotFoundError):
    """Estimate, invoice or change order not found."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str, document_type: str | None = None):
        self.document_id = document_id
        self.document_type = document_type
        label = document_type or "document"
        super().__init__(f"{label.replace('_', ' ').capitalize()} not found: {document_id}")


class ProjectNotFoundError(NotFoundError):
    """Project not found."""

    code: str = "PROJECT_NOT_FOUND"

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


# Conflicts


class ConflictError(AmpTrackError):
    """The operation conflicts with the current state of the record."""

    code: str = "CONFLICT"


class EstimateNotApprovedError(ConflictError):
    """Conversion requested for an estimate that is not approved."""

    code: str = "ESTIMATE_NOT_APPROVED"

    def __init__(self, estimate_id: str, status: str):
        self.estimate_id = estimate_id
        self.status = status
        super().__init__(
            f"Estimate {estimate_id} must be approved before conversion "
            f"(current status: {status})"
        )


class IllegalTransitionError(ConflictError):
    """The status machine has no transition for this (from, to) pair."""

    code: str = "ILLEGAL_TRANSITION"

    def __init__(self, document_type: str, from_status: str, to_status: str):
        self.document_type = document_type
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cannot move {document_type} from '{from_status}' to '{to_status}'"
        )


class NumberAllocationConflictError(ConflictError):
    """A document number collided with an existing one."""

    code: str = "NUMBER_ALLOCATION_CONFLICT"

    def __init__(self, document_type: str, document_number: str):
        self.document_type = document_type
        self.document_number = document_number
        super().__init__(
            f"Document number {document_number} already issued for {document_type}"
        )


class ProjectNameConflictError(ConflictError):
    """A project with this name already exists."""

    code: str = "PROJECT_NAME_CONFLICT"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Project name already exists: {name}")


class InvoiceNotPayableError(ConflictError):
    """Payment requested for a paid or cancelled invoice."""

    code: str = "INVOICE_NOT_PAYABLE"

    def __init__(self, invoice_id: str, status: str):
        self.invoice_id = invoice_id
        self.status = status
        super().__init__(f"Invoice {invoice_id} is not payable (status: {status})")


# External collaborators


class ExternalServiceError(AmpTrackError):
    """Base for notification, rendering backend and payment provider errors."""

    code: str = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(message)


class ExternalServiceUnavailableError(ExternalServiceError):
    """Collaborator is disabled or unreachable; callers may degrade."""

    code: str = "EXTERNAL_SERVICE_UNAVAILABLE"

    def __init__(self, service: str, reason: str | None = None):
        self.reason = reason
        message = f"{service} service is currently unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(service, message)


class NotificationFailedError(ExternalServiceError):
    """The notification backend accepted the call but reported failure."""

    code: str = "NOTIFICATION_FAILED"

    def __init__(self, recipient: str, error: str | None):
        self.recipient = recipient
        self.error = error
        super().__init__("notification", f"Failed to send to {recipient}: {error}")


class PaymentProviderError(ExternalServiceError):
    """The payment provider rejected an outbound call."""

    code: str = "PAYMENT_PROVIDER_ERROR"

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__("payments", message)


# Rendering


class RenderFailureError(AmpTrackError):
    """Artifact generation failed; no bytes are returned, no handle stored."""

    code: str = "RENDER_FAILURE"

    def __init__(self, document_id: str, reason: str):
        self.document_id = document_id
        self.reason = reason
        super().__init__(f"Failed to render document {document_id}: {reason}")


class RenderTimeoutError(RenderFailureError):
    """Rendering exceeded the configured timeout."""

    code: str = "RENDER_TIMEOUT"

    def __init__(self, document_id: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(document_id, f"timed out after {timeout_seconds}s")


# Reconciliation


class ReconciliationRejectedError(AmpTrackError):
    """Inbound payment event failed authenticity verification."""

    code: str = "RECONCILIATION_REJECTED"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Webhook event rejected: {reason}")
