"""Kernel services.  Every service flushes; callers own the transaction."""

from amptrack_kernel.services.artifact_service import ArtifactCache
from amptrack_kernel.services.conversion_service import ConversionService
from amptrack_kernel.services.document_service import DocumentService
from amptrack_kernel.services.numbering_service import (
    DocumentNumberAllocator,
    DocumentNumberCounter,
)
from amptrack_kernel.services.payment_service import PaymentService
from amptrack_kernel.services.reconciliation_service import ReconciliationService

__all__ = [
    "ArtifactCache",
    "ConversionService",
    "DocumentNumberAllocator",
    "DocumentNumberCounter",
    "DocumentService",
    "PaymentService",
    "ReconciliationService",
]
