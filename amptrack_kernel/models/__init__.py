"""ORM models for documents, projects and payment events."""

from amptrack_kernel.models.document import (
    Document,
    DocumentType,
    LineItem,
    PaymentStatus,
)
from amptrack_kernel.models.payment_event import PaymentEventRecord
from amptrack_kernel.models.project import Project, ProjectFolder

__all__ = [
    "Document",
    "DocumentType",
    "LineItem",
    "PaymentEventRecord",
    "PaymentStatus",
    "Project",
    "ProjectFolder",
]
