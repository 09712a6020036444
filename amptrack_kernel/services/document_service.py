"""
DocumentService -- create, read, update, delete and send commercial
documents.

Responsibility:
    Owns the write path for estimates, invoices and change orders: request
    validation hand-off to the computation engine, number allocation, header
    plus item persistence, status-machine enforcement on edits, wholesale
    item replacement and artifact invalidation.

Architecture position:
    Kernel > Services.  Flush-only; the caller owns the transaction.

Invariants enforced:
    - Atomic creation: number allocation, totals and item inserts happen in
      the caller's transaction.  Any failure leaves no header row and
      returns the number.
    - Derived totals: every item or tax-rate mutation recomputes subtotal,
      tax and total through compute_totals().
    - Invalidation: any effective change to totals, status, snapshot fields
      or items bumps ``artifact_revision``, which makes the cached artifact
      stale before the transaction commits.
    - Status edits go through the status machine; undefined transitions are
      rejected before anything is written.

Failure modes:
    - ValidationError / InvalidStatusError / LineItemValidationError: bad
      input; nothing written.
    - DocumentNotFoundError / ProjectNotFoundError: missing references.
    - IllegalTransitionError: status edit outside the workflow.
    - NumberAllocationConflictError: unique-constraint backstop tripped.
    - ExternalServiceUnavailableError / NotificationFailedError: send only;
      the document is not modified.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from amptrack_kernel.domain.clock import Clock
from amptrack_kernel.domain.collaborators import Notifier
from amptrack_kernel.domain.dtos import DocumentInfo, DocumentPage, LineItemInfo
from amptrack_kernel.domain.requests import (
    SENDER_NAME_MAX,
    UPDATE_TYPES,
    ChangeOrderCreate,
    CustomerSnapshot,
    DocumentCreate,
    DocumentUpdate,
    EstimateCreate,
    InvoiceCreate,
    clean_text,
    validate_email,
)
from amptrack_kernel.domain.status import (
    OVERDUE_ELIGIBLE,
    apply_status_change,
    effective_status,
    plan_transition,
    validate_status,
)
from amptrack_kernel.domain.totals import DocumentTotals, LineItemSpec, compute_totals
from amptrack_kernel.exceptions import (
    DocumentNotFoundError,
    ExternalServiceUnavailableError,
    NotificationFailedError,
    NumberAllocationConflictError,
    ProjectNotFoundError,
    ValidationError,
)
from amptrack_kernel.logging_config import get_logger
from amptrack_kernel.models.document import Document, DocumentType, LineItem
from amptrack_kernel.models.project import Project
from amptrack_kernel.services.base import BaseService
from amptrack_kernel.services.numbering_service import DocumentNumberAllocator

logger = get_logger("services.document")

SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000000")
DEFAULT_SENDER_NAME = "AmpTrack"
MAX_PAGE_SIZE = 200

_SNAPSHOT_FIELDS = (
    "customer_id",
    "customer_name",
    "customer_email",
    "customer_phone",
    "customer_address",
)


def coerce_document_id(document_id: Any, document_type: str | None = None) -> UUID:
    """Parse an id; anything that is not a UUID cannot name a document."""
    if isinstance(document_id, UUID):
        return document_id
    try:
        return UUID(str(document_id))
    except ValueError:
        raise DocumentNotFoundError(str(document_id), document_type) from None


def snapshot_of(row: Any) -> CustomerSnapshot:
    """Customer snapshot carried by a document or project row."""
    return CustomerSnapshot(
        customer_id=row.customer_id,
        name=row.customer_name or "",
        email=row.customer_email or "",
        phone=row.customer_phone or "",
        address=row.customer_address or "",
    )


def document_to_info(document: Document, today: date) -> DocumentInfo:
    """Convert a row (and its loaded items) to a detached DTO."""
    doc_type = DocumentType(document.document_type).value
    return DocumentInfo(
        id=document.id,
        document_type=doc_type,
        document_number=document.document_number,
        title=document.title,
        description=document.description or "",
        notes=document.notes or "",
        customer=snapshot_of(document),
        status=effective_status(doc_type, document.status, document.due_date, today),
        stored_status=document.status,
        subtotal=document.subtotal,
        tax_rate=document.tax_rate,
        tax_amount=document.tax_amount,
        total_amount=document.total_amount,
        items=tuple(
            LineItemInfo(
                position=item.position,
                description=item.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
            )
            for item in document.items
        ),
        project_id=document.project_id,
        estimate_id=document.estimate_id,
        status_changed_at=document.status_changed_at,
        valid_until=document.valid_until,
        due_date=document.due_date,
        paid_date=document.paid_date,
        requested_date=document.requested_date,
        approved_date=document.approved_date,
        reason=document.reason or "",
        justification=document.justification or "",
        payment_status=document.payment_status,
        payment_method=document.payment_method,
        payment_intent_id=document.payment_intent_id,
        checkout_session_id=document.checkout_session_id,
        payment_reference_id=document.payment_reference_id,
        artifact_key=document.artifact_key,
        artifact_revision=document.artifact_revision,
        uploaded_file_key=document.uploaded_file_key,
        created_at=document.created_at,
        updated_at=document.updated_at,
        created_by_id=document.created_by_id,
    )


def invalidate_artifact(document: Document) -> None:
    """Make any cached artifact for this document stale."""
    document.artifact_revision = (document.artifact_revision or 0) + 1


@dataclass(frozen=True)
class SendResult:
    document: DocumentInfo
    recipient: str
    message_id: str | None
    status_changed: bool


class DocumentService(BaseService[Document]):
    """
    Lifecycle operations for all three document types.

    Contract:
        Every method returns DTOs, never ORM rows.  ``get_row`` is the one
        exception, for sibling services that need the row inside the same
        transaction.

    Non-goals:
        - Rendering.  Creation never depends on the renderer; see
          ArtifactCache.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        prefixes: dict[str, str] | None = None,
        notifier: Notifier | None = None,
        actor_id: UUID | None = None,
    ):
        super().__init__(session, clock)
        self.allocator = DocumentNumberAllocator(session, prefixes)
        self.notifier = notifier
        self.actor_id = actor_id or SYSTEM_ACTOR_ID

    # =========================================================================
    # Reads
    # =========================================================================

    def get_row(
        self,
        document_id: Any,
        document_type: str | None = None,
        *,
        for_update: bool = False,
    ) -> Document:
        """Load a document row or raise DocumentNotFoundError."""
        doc_id = coerce_document_id(document_id, document_type)
        stmt = select(Document).where(Document.id == doc_id)
        if document_type is not None:
            stmt = stmt.where(Document.document_type == DocumentType(document_type).value)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        document = self.session.execute(stmt).scalar_one_or_none()
        if document is None:
            raise DocumentNotFoundError(str(doc_id), document_type)
        return document

    def get(self, document_id: Any, document_type: str | None = None) -> DocumentInfo:
        return self.to_info(self.get_row(document_id, document_type))

    def to_info(self, document: Document) -> DocumentInfo:
        return document_to_info(document, self.clock.today())

    def list_documents(
        self,
        document_type: str | None = None,
        *,
        status: str | None = None,
        search: str | None = None,
        project_id: Any = None,
        page: int = 1,
        page_size: int = 50,
    ) -> DocumentPage:
        """
        Page through documents, newest first.

        ``status`` filters on the effective status, so ``overdue`` includes
        invoices that are only overdue by date.
        """
        if page < 1:
            raise ValidationError("page must be at least 1", field="page")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"page_size must be between 1 and {MAX_PAGE_SIZE}", field="page_size"
            )

        stmt = select(Document)
        if document_type is not None:
            doc_type = DocumentType(document_type).value
            stmt = stmt.where(Document.document_type == doc_type)
            if status is not None:
                validate_status(doc_type, status)
        if status is not None:
            stmt = stmt.where(self._status_filter(status))
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(
                    Document.title.ilike(pattern),
                    Document.document_number.ilike(pattern),
                    Document.customer_name.ilike(pattern),
                )
            )
        if project_id is not None:
            stmt = stmt.where(Document.project_id == coerce_document_id(project_id))

        total = self.session.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()
        rows = self.session.execute(
            stmt.order_by(Document.created_at.desc(), Document.document_number.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).scalars().all()

        return DocumentPage(
            items=tuple(self.to_info(row) for row in rows),
            total=total,
            page=page,
            page_size=page_size,
        )

    def _status_filter(self, status: str):
        today = self.clock.today()
        overdue_by_date = and_(
            Document.document_type == DocumentType.INVOICE.value,
            Document.status.in_(OVERDUE_ELIGIBLE),
            Document.due_date < today,
        )
        if status == "overdue":
            return or_(Document.status == "overdue", overdue_by_date)
        if status in OVERDUE_ELIGIBLE:
            return and_(
                Document.status == status,
                or_(
                    Document.document_type != DocumentType.INVOICE.value,
                    Document.due_date.is_(None),
                    Document.due_date >= today,
                ),
            )
        return Document.status == status

    # =========================================================================
    # Creation
    # =========================================================================

    def create_estimate(self, request: EstimateCreate) -> DocumentInfo:
        if request.project_id is not None:
            self._require_project(request.project_id)
        document = self._create(
            DocumentType.ESTIMATE,
            request,
            valid_until=request.valid_until,
        )
        return self.to_info(document)

    def create_invoice(self, request: InvoiceCreate) -> DocumentInfo:
        if request.project_id is not None:
            self._require_project(request.project_id)
        if request.estimate_id is not None:
            self.get_row(request.estimate_id, DocumentType.ESTIMATE.value)
        document = self._create(
            DocumentType.INVOICE,
            request,
            due_date=request.due_date,
            estimate_id=request.estimate_id,
        )
        return self.to_info(document)

    def create_change_order(self, request: ChangeOrderCreate) -> DocumentInfo:
        project = self._require_project(request.project_id)
        customer = request.customer
        if customer is None or customer.is_empty:
            customer = snapshot_of(project)
        document = self._create(
            DocumentType.CHANGE_ORDER,
            request,
            customer=customer,
            reason=request.reason,
            justification=request.justification,
            requested_date=request.requested_date or self.clock.today(),
        )
        return self.to_info(document)

    def _create(
        self,
        document_type: DocumentType,
        request: DocumentCreate,
        customer: CustomerSnapshot | None = None,
        **type_fields: Any,
    ) -> Document:
        totals = compute_totals(request.items, request.tax_rate, require_items=True)
        return self.insert_document(
            document_type,
            totals,
            title=request.title,
            description=request.description,
            notes=request.notes,
            customer=customer or request.customer or CustomerSnapshot(),
            project_id=request.project_id,
            **type_fields,
        )

    def insert_document(
        self,
        document_type: DocumentType,
        totals: DocumentTotals,
        *,
        title: str,
        customer: CustomerSnapshot,
        description: str = "",
        notes: str = "",
        **fields: Any,
    ) -> Document:
        """
        Allocate a number and insert header plus items.

        Preconditions: ``totals`` came from compute_totals() or is an exact
        copy of another document's derived values.
        """
        number, year, seq = self.allocator.allocate(document_type.value, self.clock.today().year)

        document = Document(
            document_type=document_type.value,
            document_number=number,
            number_year=year,
            number_seq=seq,
            title=title,
            description=description,
            notes=notes,
            customer_id=customer.customer_id,
            customer_name=customer.name,
            customer_email=customer.email,
            customer_phone=customer.phone,
            customer_address=customer.address,
            status="draft",
            status_changed_at=self.clock.now(),
            subtotal=totals.subtotal,
            tax_rate=totals.tax_rate,
            tax_amount=totals.tax_amount,
            total_amount=totals.total_amount,
            artifact_revision=1,
            created_by_id=self.actor_id,
            **fields,
        )
        document.items = self._item_rows(totals.items)

        savepoint = self.session.begin_nested()
        try:
            self.session.add(document)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            taken = self.session.execute(
                select(Document.id).where(
                    Document.document_type == document_type.value,
                    Document.document_number == number,
                )
            ).first()
            if taken is not None:
                raise NumberAllocationConflictError(document_type.value, number) from None
            raise

        logger.info(
            "document_created",
            extra={
                "document_id": str(document.id),
                "document_type": document_type.value,
                "document_number": number,
                "item_count": len(totals.items),
                "total_amount": str(totals.total_amount),
            },
        )
        return document

    @staticmethod
    def _item_rows(items: Sequence[LineItemSpec]) -> list[LineItem]:
        return [
            LineItem(
                position=position,
                description=spec.description,
                quantity=spec.quantity,
                unit_price=spec.unit_price,
                total_price=spec.total_price,
            )
            for position, spec in enumerate(items, start=1)
        ]

    def _require_project(self, project_id: Any) -> Project:
        try:
            pid = project_id if isinstance(project_id, UUID) else UUID(str(project_id))
        except ValueError:
            raise ProjectNotFoundError(str(project_id)) from None
        project = self.session.get(Project, pid)
        if project is None:
            raise ProjectNotFoundError(str(pid))
        return project

    # =========================================================================
    # Updates
    # =========================================================================

    def update(self, document_id: Any, request: DocumentUpdate) -> DocumentInfo:
        """
        Apply a typed update request.

        Explicit date fields are written before the status change, so a
        caller-supplied ``paid_date`` or ``approved_date`` is not replaced by
        the transition's stamp.
        """
        document = self.get_row(document_id, for_update=True)
        doc_type = DocumentType(document.document_type).value
        expected = UPDATE_TYPES[doc_type]
        if type(request) is not expected:
            raise ValidationError(
                f"{type(request).__name__} cannot update a {doc_type}",
                field="document_type",
            )

        changes = request.changes()
        if not changes:
            raise ValidationError("No valid fields to update")

        status_change = None
        if "status" in changes:
            status_change = plan_transition(doc_type, document.status, changes.pop("status"))

        changed: list[str] = []
        if "tax_rate" in changes:
            totals = compute_totals(
                self._current_specs(document), changes.pop("tax_rate"), require_items=False
            )
            if totals.tax_rate != document.tax_rate:
                self._apply_totals(document, totals)
                changed.append("tax_rate")

        for name, value in changes.items():
            if getattr(document, name) != value:
                setattr(document, name, value)
                changed.append(name)

        if status_change is not None and apply_status_change(
            document, status_change, now=self.clock.now()
        ):
            changed.append("status")
            logger.info(
                "document_status_changed",
                extra={
                    "document_id": str(document.id),
                    "document_type": doc_type,
                    "from_status": status_change.from_status,
                    "to_status": status_change.to_status,
                },
            )

        if changed:
            invalidate_artifact(document)
            document.updated_by_id = self.actor_id
            self.session.flush()
            logger.info(
                "document_updated",
                extra={"document_id": str(document.id), "fields": changed},
            )
        return self.to_info(document)

    def replace_items(
        self,
        document_id: Any,
        items: Sequence[Any],
        tax_rate: Any = None,
    ) -> DocumentInfo:
        """Replace all items wholesale and recompute totals."""
        document = self.get_row(document_id, for_update=True)
        rate = document.tax_rate if tax_rate is None else tax_rate
        totals = compute_totals(items, rate, require_items=True)

        document.items = self._item_rows(totals.items)
        self._apply_totals(document, totals)
        invalidate_artifact(document)
        document.updated_by_id = self.actor_id
        self.session.flush()

        logger.info(
            "document_items_replaced",
            extra={
                "document_id": str(document.id),
                "item_count": len(totals.items),
                "total_amount": str(totals.total_amount),
            },
        )
        return self.to_info(document)

    @staticmethod
    def _current_specs(document: Document) -> list[LineItemSpec]:
        return [
            LineItemSpec(
                description=item.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
            )
            for item in document.items
        ]

    @staticmethod
    def _apply_totals(document: Document, totals: DocumentTotals) -> None:
        document.subtotal = totals.subtotal
        document.tax_rate = totals.tax_rate
        document.tax_amount = totals.tax_amount
        document.total_amount = totals.total_amount

    def attach_uploaded_file(self, document_id: Any, file_key: str | None) -> DocumentInfo:
        """Record (or clear) the original uploaded document of an estimate."""
        document = self.get_row(document_id, DocumentType.ESTIMATE.value, for_update=True)
        document.uploaded_file_key = file_key or None
        document.updated_by_id = self.actor_id
        self.session.flush()
        logger.info(
            "estimate_file_attached",
            extra={"document_id": str(document.id), "file_key": file_key},
        )
        return self.to_info(document)

    def mark_overdue_invoices(self) -> list[str]:
        """
        Persist ``overdue`` for invoices whose due date has passed.

        Reads already report such invoices as overdue; this sweep only makes
        the stored status match.  Returns the affected invoice numbers.
        """
        today = self.clock.today()
        rows = self.session.execute(
            select(Document)
            .where(
                Document.document_type == DocumentType.INVOICE.value,
                Document.status.in_(OVERDUE_ELIGIBLE),
                Document.due_date < today,
            )
            .with_for_update()
        ).scalars().all()

        now = self.clock.now()
        numbers = []
        for document in rows:
            change = plan_transition(DocumentType.INVOICE.value, document.status, "overdue")
            if apply_status_change(document, change, now=now):
                invalidate_artifact(document)
                numbers.append(document.document_number)
        self.session.flush()

        if numbers:
            logger.info("invoices_marked_overdue", extra={"count": len(numbers), "numbers": numbers})
        return numbers

    # =========================================================================
    # Deletion
    # =========================================================================

    def delete(self, document_id: Any, document_type: str | None = None) -> DocumentInfo:
        """
        Delete the document and its items.

        Returns the final snapshot so the caller can discard stored
        artifacts after commit.  The number is never reissued.
        """
        document = self.get_row(document_id, document_type, for_update=True)
        info = self.to_info(document)
        self.session.delete(document)
        self.session.flush()
        logger.info(
            "document_deleted",
            extra={
                "document_id": str(info.id),
                "document_type": info.document_type,
                "document_number": info.document_number,
            },
        )
        return info

    # =========================================================================
    # Sending
    # =========================================================================

    def send_document(
        self,
        document_id: Any,
        recipient_email: str,
        sender_name: str | None = None,
        *,
        attachment: bytes | None = None,
    ) -> SendResult:
        """
        Email the document and move draft -> sent on success.

        Raises:
            ExternalServiceUnavailableError: Notifier disabled or reports
                itself unavailable.  The document is not modified.
            NotificationFailedError: The notifier reported failure.
        """
        recipient = validate_email(recipient_email, "recipient_email")
        sender = clean_text(sender_name, "sender_name", SENDER_NAME_MAX) or DEFAULT_SENDER_NAME

        document = self.get_row(document_id, for_update=True)
        if self.notifier is None or not self.notifier.available:
            raise ExternalServiceUnavailableError("notification", "email is not configured")

        result = self.notifier.send(self.to_info(document), recipient, sender, attachment)
        if result.unavailable:
            raise ExternalServiceUnavailableError("notification", result.error)
        if not result.success:
            logger.warning(
                "document_send_failed",
                extra={"document_id": str(document.id), "recipient": recipient, "error": result.error},
            )
            raise NotificationFailedError(recipient, result.error)

        status_changed = False
        if document.status == "draft":
            change = plan_transition(document.document_type, document.status, "sent")
            status_changed = apply_status_change(document, change, now=self.clock.now())
            invalidate_artifact(document)
            document.updated_by_id = self.actor_id
            self.session.flush()

        logger.info(
            "document_sent",
            extra={
                "document_id": str(document.id),
                "document_number": document.document_number,
                "recipient": recipient,
                "status_changed": status_changed,
            },
        )
        return SendResult(
            document=self.to_info(document),
            recipient=recipient,
            message_id=result.message_id,
            status_changed=status_changed,
        )
