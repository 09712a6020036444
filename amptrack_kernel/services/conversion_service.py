"""
ConversionService -- promote an approved estimate to an invoice or project.

Invariants enforced:
    - Only ``approved`` estimates convert (EstimateNotApprovedError
      otherwise).  The estimate itself is not modified and stays approved.
    - The invoice copies snapshot, tax rate, derived totals and every item
      verbatim, gets a fresh INV number in the same transaction and keeps
      ``estimate_id`` for traceability only.
    - Project names are unique (ProjectNameConflictError).
"""

from __future__ import annotations

from datetime import date
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from amptrack_kernel.domain.clock import Clock
from amptrack_kernel.domain.dtos import DocumentInfo, ProjectInfo
from amptrack_kernel.domain.requests import (
    CustomerSnapshot,
    ProjectCreate,
    clean_title,
    parse_date,
)
from amptrack_kernel.domain.totals import DocumentTotals, LineItemSpec
from amptrack_kernel.exceptions import EstimateNotApprovedError, ProjectNameConflictError
from amptrack_kernel.logging_config import get_logger
from amptrack_kernel.models.document import Document, DocumentType
from amptrack_kernel.models.project import Project, ProjectFolder
from amptrack_kernel.services.base import BaseService
from amptrack_kernel.services.document_service import DocumentService, snapshot_of

logger = get_logger("services.conversion")

DEFAULT_PROJECT_FOLDERS = ("Bidding", "Plans and Drawings", "Plan Review", "Field Markups")


def project_to_info(project: Project) -> ProjectInfo:
    return ProjectInfo(
        id=project.id,
        name=project.name,
        description=project.description or "",
        status=project.status,
        customer=snapshot_of(project),
        source_estimate_id=project.source_estimate_id,
        folders=tuple(folder.name for folder in project.folders),
    )


class ConversionService(BaseService[Document]):

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        documents: DocumentService | None = None,
        default_folders: Sequence[str] = DEFAULT_PROJECT_FOLDERS,
    ):
        super().__init__(session, clock)
        self.documents = documents or DocumentService(session, self.clock)
        self.default_folders = tuple(default_folders)

    def _approved_estimate(self, estimate_id: Any) -> Document:
        estimate = self.documents.get_row(estimate_id, DocumentType.ESTIMATE.value)
        if estimate.status != "approved":
            raise EstimateNotApprovedError(str(estimate.id), estimate.status)
        return estimate

    def create_invoice_from_estimate(
        self,
        estimate_id: Any,
        *,
        title: str | None = None,
        due_date: date | str | None = None,
    ) -> DocumentInfo:
        estimate = self._approved_estimate(estimate_id)

        totals = DocumentTotals(
            items=tuple(
                LineItemSpec(
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total_price=item.total_price,
                )
                for item in estimate.items
            ),
            subtotal=estimate.subtotal,
            tax_rate=estimate.tax_rate,
            tax_amount=estimate.tax_amount,
            total_amount=estimate.total_amount,
        )
        invoice = self.documents.insert_document(
            DocumentType.INVOICE,
            totals,
            title=clean_title(title) if title else estimate.title,
            description=estimate.description or "",
            notes=estimate.notes or "",
            customer=snapshot_of(estimate),
            project_id=estimate.project_id,
            estimate_id=estimate.id,
            due_date=parse_date(due_date, "due_date"),
        )

        logger.info(
            "estimate_converted_to_invoice",
            extra={
                "estimate_id": str(estimate.id),
                "estimate_number": estimate.document_number,
                "document_id": str(invoice.id),
                "document_number": invoice.document_number,
            },
        )
        return self.documents.to_info(invoice)

    def create_project_from_estimate(self, estimate_id: Any, request: ProjectCreate) -> ProjectInfo:
        estimate = self._approved_estimate(estimate_id)
        project = self._insert_project(request, snapshot_of(estimate), source_estimate_id=estimate.id)
        logger.info(
            "estimate_converted_to_project",
            extra={
                "estimate_id": str(estimate.id),
                "project_id": str(project.id),
                "folder_count": len(project.folders),
            },
        )
        return project_to_info(project)

    def create_project(
        self, request: ProjectCreate, customer: CustomerSnapshot | None = None
    ) -> ProjectInfo:
        """Create a standalone project (no source estimate) with default folders."""
        project = self._insert_project(request, customer or CustomerSnapshot())
        logger.info("project_created", extra={"project_id": str(project.id)})
        return project_to_info(project)

    def _insert_project(
        self,
        request: ProjectCreate,
        customer: CustomerSnapshot,
        source_estimate_id: Any = None,
    ) -> Project:
        existing = self.session.execute(
            select(Project.id).where(Project.name == request.name)
        ).first()
        if existing is not None:
            raise ProjectNameConflictError(request.name)

        project = Project(
            name=request.name,
            description=request.description,
            status="active",
            customer_id=customer.customer_id,
            customer_name=customer.name,
            customer_email=customer.email,
            customer_phone=customer.phone,
            customer_address=customer.address,
            source_estimate_id=source_estimate_id,
            created_by_id=self.documents.actor_id,
        )
        project.folders = [
            ProjectFolder(name=name, position=position)
            for position, name in enumerate(self.default_folders, start=1)
        ]

        # Unique name is the backstop for a concurrent insert
        savepoint = self.session.begin_nested()
        try:
            self.session.add(project)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            raise ProjectNameConflictError(request.name) from None
        return project
