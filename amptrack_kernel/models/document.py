"""
Module: amptrack_kernel.models.document
Responsibility: ORM persistence for commercial documents (estimates, invoices,
    change orders) and their line items.
Architecture position: Kernel > Models.  May import from db/ only.
    MUST NOT import from services/ or domain/.

Invariants enforced:
    - Number uniqueness: UNIQUE (document_type, document_number).  Numbers are
      issued by the numbering service; this constraint is the backstop.
    - Derived totals: subtotal/tax_amount/total_amount are written only by
      the document service from amptrack_kernel.domain.totals.
    - Items belong to exactly one document and are deleted with it.

Design:
    One table for all three document types, discriminated by
    ``document_type``.  Type-specific columns (valid_until, due_date,
    payment fields, approved_date, ...) are nullable and only populated for
    the types that use them.  Status is stored as a plain string; the legal
    values per type live in amptrack_kernel.domain.status.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from amptrack_kernel.db.base import Base, TrackedBase, UUIDString
from amptrack_kernel.db.types import UTCDateTime


class DocumentType(str, Enum):
    """Kind of commercial document.

    Contract: the value doubles as the numbering-counter scope and the
    artifact storage folder.
    """

    ESTIMATE = "estimate"
    INVOICE = "invoice"
    CHANGE_ORDER = "change_order"


class PaymentStatus(str, Enum):
    """Invoice payment state as reported by the payment provider.

    Contract: moves forward only -- PENDING -> SUCCEEDED | FAILED.
    SUCCEEDED is terminal; FAILED may be re-attempted (back to PENDING).
    """

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Document(TrackedBase):
    """
    Document header -- one numbered, totaled, stateful commercial record.

    Contract:
        Created in ``draft`` together with its items in one transaction.
        Totals always equal the derivation from ``items`` and ``tax_rate``.

    Guarantees:
        - document_number is unique per document_type and embeds the year.
        - artifact_revision increases on every mutation that changes the
          rendered output; an artifact_key for an older revision is stale.
    """

    __tablename__ = "documents"

    __table_args__ = (
        UniqueConstraint("document_type", "document_number", name="uq_document_number"),
        Index("idx_document_type_status", "document_type", "status"),
        Index("idx_document_project", "project_id"),
        Index("idx_document_estimate", "estimate_id"),
        Index("idx_document_payment_intent", "payment_intent_id"),
    )

    document_type: Mapped[DocumentType] = mapped_column(
        String(20),
        nullable=False,
    )

    # Human-readable number, e.g. INV-2024-0007
    document_number: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
    )

    number_year: Mapped[int] = mapped_column(Integer, nullable=False)
    number_seq: Mapped[int] = mapped_column(Integer, nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Customer snapshot, copied at creation time
    customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    customer_phone: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    customer_address: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    # References
    project_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
    )
    estimate_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("documents.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Lifecycle
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    status_changed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    # Money -- derived, never authored directly
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Type-specific dates
    valid_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    paid_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    requested_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    approved_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Change order narrative
    reason: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    justification: Mapped[str] = mapped_column(String(1000), nullable=False, default="")

    # Invoice payment record
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    checkout_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_reference_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Rendered artifact cache
    artifact_key: Mapped[str | None] = mapped_column(String(500), nullable=True)
    artifact_revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    uploaded_file_key: Mapped[str | None] = mapped_column(String(500), nullable=True)

    items: Mapped[list["LineItem"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="LineItem.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Document {self.document_number} type={self.document_type} status={self.status}>"

    @property
    def is_invoice(self) -> bool:
        return self.document_type == DocumentType.INVOICE

    @property
    def is_estimate(self) -> bool:
        return self.document_type == DocumentType.ESTIMATE


class LineItem(Base):
    """
    One description/quantity/unit-price row of a document.

    Contract:
        total_price == round(quantity * unit_price, 2).  Rows are replaced
        as a set; the parent's totals are recomputed on every replacement.
    """

    __tablename__ = "document_line_items"

    __table_args__ = (
        Index("idx_line_item_document", "document_id"),
    )

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(1000), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    document: Mapped["Document"] = relationship(back_populates="items")

    def __repr__(self) -> str:
        return f"<LineItem {self.position} {self.quantity} x {self.unit_price}>"
