"""
Read-side value objects returned by services.

Services never hand ORM rows to callers; rows are converted to these frozen
dataclasses inside the session, so renderers and notifiers (which may run on
other threads) never touch a live session.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from amptrack_kernel.domain.requests import CustomerSnapshot


@dataclass(frozen=True)
class LineItemInfo:
    position: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal


@dataclass(frozen=True)
class DocumentInfo:
    """
    Snapshot of a document and its items.

    ``status`` is the effective status (overdue evaluated against the
    service clock); ``stored_status`` is the persisted value.
    """

    id: UUID
    document_type: str
    document_number: str
    title: str
    description: str
    notes: str
    customer: CustomerSnapshot
    status: str
    stored_status: str
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    items: tuple[LineItemInfo, ...]
    project_id: UUID | None = None
    estimate_id: UUID | None = None
    status_changed_at: datetime | None = None
    valid_until: date | None = None
    due_date: date | None = None
    paid_date: date | None = None
    requested_date: date | None = None
    approved_date: date | None = None
    reason: str = ""
    justification: str = ""
    payment_status: str | None = None
    payment_method: str | None = None
    payment_intent_id: str | None = None
    checkout_session_id: str | None = None
    payment_reference_id: str | None = None
    artifact_key: str | None = None
    artifact_revision: int = 1
    uploaded_file_key: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by_id: UUID | None = None

    @property
    def type_label(self) -> str:
        return self.document_type.replace("_", " ").title()


@dataclass(frozen=True)
class ProjectInfo:
    id: UUID
    name: str
    description: str
    status: str
    customer: CustomerSnapshot
    source_estimate_id: UUID | None
    folders: tuple[str, ...] = ()


@dataclass(frozen=True)
class BusinessProfile:
    """Business display data used only as template input for rendering."""

    name: str
    address: str = ""
    phone: str = ""
    email: str = ""
    website: str = ""
    logo_url: str | None = None
    footer_lines: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class DocumentPage:
    """One page of a document listing."""

    items: tuple[DocumentInfo, ...]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size
