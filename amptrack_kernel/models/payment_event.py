"""
Module: amptrack_kernel.models.payment_event
Responsibility: One row per distinct payment-provider event received.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Event ids are unique (uq_payment_event_id).  A second delivery of the
      same event id is detected here, before any invoice row is touched.

This is a replay-detection ledger, not an audit trail of invoice history.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Index, Numeric, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from amptrack_kernel.db.base import Base, UUIDString
from amptrack_kernel.db.types import UTCDateTime


class PaymentEventRecord(Base):
    """
    A payment-provider event as it was received and what it did.

    outcome is one of: applied, noop, ignored, unknown_invoice.
    """

    __tablename__ = "payment_events"

    __table_args__ = (
        UniqueConstraint("event_id", name="uq_payment_event_id"),
        Index("idx_payment_event_invoice", "invoice_id"),
    )

    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)

    # Not a foreign key: events for unknown invoices are recorded too
    invoice_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    provider_reference_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)

    received_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<PaymentEventRecord {self.event_id} {self.event_type} {self.outcome}>"
