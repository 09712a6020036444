"""
amptrack_services.engine -- caller-facing facade over the document kernel.

Responsibility:
    Owns transaction boundaries (one ``session_scope`` per operation),
    wires collaborators by constructor injection and exposes the
    operations an HTTP layer or job runner calls: create/get/update/delete
    per document type, send, artifact download and regeneration,
    conversion, payment initiation and the payment webhook.

Architecture position:
    Services.  The only module that combines ``amptrack_kernel`` services
    with concrete collaborators; ``build_engine`` is the only place that
    reads settings to construct them.

Invariants enforced:
    - Creation never depends on rendering.  The document commits first;
      the artifact is then warmed best-effort when ``render_on_create`` is
      set, and a render failure is logged, not raised.
    - Stored artifacts of a deleted document are discarded only after the
      delete committed.
    - Kernel services are built once per transaction and share its session
      and clock (``DocumentServices``).

Usage:
    engine = build_engine(get_settings())
    estimate = engine.create_estimate({"title": "Panel upgrade", "items": [...]})
    pdf = engine.get_artifact(estimate.id)
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, Mapping, Sequence
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from amptrack_config.schema import AppSettings
from amptrack_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from amptrack_kernel.domain.clock import Clock, SystemClock
from amptrack_kernel.domain.collaborators import (
    ArtifactStore,
    BusinessProfileProvider,
    DocumentRenderer,
    Notifier,
    PaymentGateway,
)
from amptrack_kernel.domain.dtos import DocumentInfo, DocumentPage, ProjectInfo
from amptrack_kernel.domain.payments import (
    CheckoutSessionResult,
    PaymentIntentResult,
    PaymentStatusInfo,
    ReconciliationResult,
)
from amptrack_kernel.domain.requests import (
    ChangeOrderCreate,
    CustomerSnapshot,
    DocumentUpdate,
    EstimateCreate,
    InvoiceCreate,
    ProjectCreate,
    update_request_for,
)
from amptrack_kernel.exceptions import (
    AmpTrackError,
    ExternalServiceUnavailableError,
    NotFoundError,
)
from amptrack_kernel.logging_config import LogContext, configure_logging, get_logger
from amptrack_kernel.models.document import DocumentType
from amptrack_kernel.services.artifact_service import DEFAULT_RENDER_TIMEOUT, ArtifactCache
from amptrack_kernel.services.conversion_service import DEFAULT_PROJECT_FOLDERS, ConversionService
from amptrack_kernel.services.document_service import DocumentService, SendResult
from amptrack_kernel.services.payment_service import PaymentService
from amptrack_services.business_profile import StaticBusinessProfileProvider
from amptrack_services.notifications import build_notifier
from amptrack_services.rendering import HtmlPdfRenderer
from amptrack_services.storage import LocalArtifactStore
from amptrack_services.stripe_gateway import StripeGateway
from amptrack_services.webhook import PaymentWebhookHandler

logger = get_logger("services.engine")

UPLOAD_KEY_TEMPLATE = "estimate/{document_id}/upload/{filename}"


class DocumentServices:
    """
    Kernel services bound to one session.

    Non-goals:
        - Does NOT commit or roll back; the engine's session_scope does.
    """

    def __init__(self, session: Session, engine: "DocumentEngine"):
        self.session = session
        self.documents = DocumentService(
            session,
            engine.clock,
            prefixes=engine.prefixes,
            notifier=engine.notifier,
            actor_id=engine.actor_id,
        )
        self.artifacts = ArtifactCache(
            session,
            engine.renderer,
            engine.store,
            engine.profile_provider,
            engine.clock,
            timeout_seconds=engine.render_timeout,
            documents=self.documents,
        )
        self.conversion = ConversionService(
            session,
            engine.clock,
            documents=self.documents,
            default_folders=engine.default_folders,
        )
        self.payments = PaymentService(
            session,
            engine.gateway,
            engine.clock,
            documents=self.documents,
        )


class DocumentEngine:
    """
    Facade for the document lifecycle.

    Contract:
        Every public method runs in its own transaction and returns DTOs.
        Mappings are accepted wherever a request object is, and are parsed
        with the request's ``from_mapping``.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        *,
        clock: Clock | None = None,
        renderer: DocumentRenderer | None = None,
        store: ArtifactStore | None = None,
        notifier: Notifier | None = None,
        gateway: PaymentGateway | None = None,
        profile_provider: BusinessProfileProvider | None = None,
        prefixes: dict[str, str] | None = None,
        default_folders: Sequence[str] = DEFAULT_PROJECT_FOLDERS,
        render_timeout: float = DEFAULT_RENDER_TIMEOUT,
        render_on_create: bool = True,
        attach_pdf: bool = True,
        actor_id: UUID | None = None,
    ):
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.renderer = renderer
        self.store = store
        self.notifier = notifier
        self.gateway = gateway
        self.profile_provider = profile_provider or StaticBusinessProfileProvider.from_settings(
            AppSettings().business_profile
        )
        self.prefixes = prefixes
        self.default_folders = tuple(default_folders)
        self.render_timeout = render_timeout
        self.render_on_create = render_on_create
        self.attach_pdf = attach_pdf
        self.actor_id = actor_id
        self.webhooks = (
            PaymentWebhookHandler(gateway, session_factory, self.clock) if gateway is not None else None
        )

    @contextmanager
    def _transaction(self, **context: Any) -> Generator[DocumentServices, None, None]:
        with LogContext.bind(correlation_id=str(uuid4()), actor_id=self.actor_id, **context):
            with session_scope(self.session_factory) as session:
                yield DocumentServices(session, self)

    @property
    def rendering_available(self) -> bool:
        return (
            self.renderer is not None
            and self.renderer.available
            and self.store is not None
            and self.store.available
        )

    # =========================================================================
    # Documents
    # =========================================================================

    def create_estimate(self, request: EstimateCreate | Mapping[str, Any]) -> DocumentInfo:
        if isinstance(request, Mapping):
            request = EstimateCreate.from_mapping(request)
        with self._transaction() as services:
            info = services.documents.create_estimate(request)
        return self._after_create(info)

    def create_invoice(self, request: InvoiceCreate | Mapping[str, Any]) -> DocumentInfo:
        if isinstance(request, Mapping):
            request = InvoiceCreate.from_mapping(request)
        with self._transaction() as services:
            info = services.documents.create_invoice(request)
        return self._after_create(info)

    def create_change_order(self, request: ChangeOrderCreate | Mapping[str, Any]) -> DocumentInfo:
        if isinstance(request, Mapping):
            request = ChangeOrderCreate.from_mapping(request)
        with self._transaction() as services:
            info = services.documents.create_change_order(request)
        return self._after_create(info)

    def get_document(self, document_id: Any, document_type: str | None = None) -> DocumentInfo:
        with self._transaction(document_id=document_id) as services:
            return services.documents.get(document_id, document_type)

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
        with self._transaction() as services:
            return services.documents.list_documents(
                document_type,
                status=status,
                search=search,
                project_id=project_id,
                page=page,
                page_size=page_size,
            )

    def update_document(
        self,
        document_id: Any,
        request: DocumentUpdate | Mapping[str, Any],
    ) -> DocumentInfo:
        with self._transaction(document_id=document_id) as services:
            if isinstance(request, Mapping):
                row = services.documents.get_row(document_id)
                request = update_request_for(row.document_type, request)
            return services.documents.update(document_id, request)

    def replace_items(
        self,
        document_id: Any,
        items: Sequence[Any],
        tax_rate: Any = None,
    ) -> DocumentInfo:
        with self._transaction(document_id=document_id) as services:
            return services.documents.replace_items(document_id, items, tax_rate)

    def delete_document(self, document_id: Any, document_type: str | None = None) -> DocumentInfo:
        with self._transaction(document_id=document_id) as services:
            info = services.documents.delete(document_id, document_type)
        with self._transaction(document_id=document_id) as services:
            services.artifacts.discard(info)
        return info

    def mark_overdue_invoices(self) -> list[str]:
        with self._transaction() as services:
            return services.documents.mark_overdue_invoices()

    def attach_estimate_file(
        self,
        document_id: Any,
        data: bytes,
        *,
        filename: str = "original.pdf",
    ) -> DocumentInfo:
        """Store an uploaded original for an estimate; it is served instead of a render."""
        if self.store is None or not self.store.available:
            raise ExternalServiceUnavailableError("artifact_storage", "no artifact store configured")
        with self._transaction(document_id=document_id) as services:
            row = services.documents.get_row(document_id, DocumentType.ESTIMATE.value)
            previous = row.uploaded_file_key
            key = UPLOAD_KEY_TEMPLATE.format(document_id=row.id, filename=Path(filename).name)
            self.store.put(key, data)
            info = services.documents.attach_uploaded_file(row.id, key)
        if previous and previous != key:
            self._delete_quietly(previous)
        return info

    def remove_estimate_file(self, document_id: Any) -> DocumentInfo:
        with self._transaction(document_id=document_id) as services:
            previous = services.documents.get_row(document_id, DocumentType.ESTIMATE.value).uploaded_file_key
            info = services.documents.attach_uploaded_file(document_id, None)
        if previous:
            self._delete_quietly(previous)
        return info

    def send_document(
        self,
        document_id: Any,
        recipient_email: str,
        sender_name: str | None = None,
    ) -> SendResult:
        """
        Email a document.  The rendered PDF is attached when rendering is
        available; a render failure sends the email without it.
        """
        attachment = None
        notifier_ready = self.notifier is not None and self.notifier.available
        if self.attach_pdf and notifier_ready and self.rendering_available:
            try:
                attachment = self.get_artifact(document_id)
            except NotFoundError:
                raise
            except (AmpTrackError, OSError) as exc:
                logger.warning(
                    "send_attachment_skipped",
                    extra={"document_id": str(document_id), "error": str(exc)},
                )

        with self._transaction(document_id=document_id) as services:
            return services.documents.send_document(
                document_id, recipient_email, sender_name, attachment=attachment
            )

    # =========================================================================
    # Artifacts
    # =========================================================================

    def get_artifact(self, document_id: Any) -> bytes:
        with self._transaction(document_id=document_id) as services:
            return services.artifacts.get_artifact(document_id)

    def refresh_artifact(self, document_id: Any) -> bytes:
        with self._transaction(document_id=document_id) as services:
            return services.artifacts.refresh_artifact(document_id)

    def _after_create(self, info: DocumentInfo) -> DocumentInfo:
        if not self.render_on_create:
            return info
        if not self.rendering_available:
            logger.info(
                "artifact_warm_skipped",
                extra={"document_id": str(info.id), "reason": "rendering unavailable"},
            )
            return info
        try:
            with self._transaction(document_id=info.id) as services:
                services.artifacts.get_artifact(info.id)
                return services.documents.get(info.id)
        except (AmpTrackError, OSError) as exc:
            logger.warning(
                "artifact_warm_failed",
                extra={"document_id": str(info.id), "error": str(exc)},
            )
            return info

    def _delete_quietly(self, key: str) -> None:
        try:
            self.store.delete(key)
        except OSError as exc:
            logger.warning("artifact_delete_failed", extra={"artifact_key": key, "error": str(exc)})

    # =========================================================================
    # Conversion
    # =========================================================================

    def create_invoice_from_estimate(
        self,
        estimate_id: Any,
        *,
        title: str | None = None,
        due_date: Any = None,
    ) -> DocumentInfo:
        with self._transaction(document_id=estimate_id) as services:
            info = services.conversion.create_invoice_from_estimate(
                estimate_id, title=title, due_date=due_date
            )
        return self._after_create(info)

    def create_project_from_estimate(
        self,
        estimate_id: Any,
        request: ProjectCreate | Mapping[str, Any],
    ) -> ProjectInfo:
        if isinstance(request, Mapping):
            request = ProjectCreate.from_mapping(request)
        with self._transaction(document_id=estimate_id) as services:
            return services.conversion.create_project_from_estimate(estimate_id, request)

    def create_project(
        self,
        request: ProjectCreate | Mapping[str, Any],
        customer: CustomerSnapshot | Mapping[str, Any] | None = None,
    ) -> ProjectInfo:
        if isinstance(request, Mapping):
            if customer is None:
                customer = CustomerSnapshot.from_mapping(request)
            request = ProjectCreate.from_mapping(request)
        if isinstance(customer, Mapping):
            customer = CustomerSnapshot.from_mapping(customer)
        with self._transaction() as services:
            return services.conversion.create_project(request, customer)

    # =========================================================================
    # Payments
    # =========================================================================

    def create_payment_intent(self, invoice_id: Any) -> PaymentIntentResult:
        with self._transaction(document_id=invoice_id) as services:
            return services.payments.create_payment_intent(invoice_id)

    def create_checkout_session(
        self,
        invoice_id: Any,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSessionResult:
        with self._transaction(document_id=invoice_id) as services:
            return services.payments.create_checkout_session(invoice_id, success_url, cancel_url)

    def get_payment_status(self, invoice_id: Any) -> PaymentStatusInfo:
        with self._transaction(document_id=invoice_id) as services:
            return services.payments.get_payment_status(invoice_id)

    def handle_payment_webhook(
        self, payload: bytes, signature_header: str | None
    ) -> ReconciliationResult:
        if self.webhooks is None:
            raise ExternalServiceUnavailableError("payments", "no payment gateway configured")
        return self.webhooks.handle(payload, signature_header)


def build_engine(
    settings: AppSettings,
    *,
    clock: Clock | None = None,
    create_schema: bool = False,
) -> DocumentEngine:
    """
    Construct the production engine from settings.

    Initializes the database engine, then builds each collaborator.
    Unconfigured collaborators report themselves unavailable.
    """
    configure_logging(level=settings.logging.level)
    db = settings.database
    init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
    )
    if create_schema:
        create_tables()

    profile_provider = StaticBusinessProfileProvider.from_settings(settings.business_profile)
    rendering = settings.rendering
    engine = DocumentEngine(
        get_session_factory(),
        clock=clock,
        renderer=HtmlPdfRenderer(rendering.template_dir, enabled=rendering.enabled),
        store=LocalArtifactStore(rendering.storage_dir),
        notifier=build_notifier(
            settings.notification, company_name=settings.business_profile.name
        ),
        gateway=StripeGateway(settings.payments),
        profile_provider=profile_provider,
        prefixes=dict(settings.numbering.prefixes),
        default_folders=settings.projects.default_folders,
        render_timeout=rendering.timeout_seconds,
        render_on_create=rendering.render_on_create,
        attach_pdf=settings.notification.attach_pdf,
    )
    logger.info(
        "document_engine_built",
        extra={
            "rendering_available": engine.rendering_available,
            "notification_available": engine.notifier.available,
            "payments_available": engine.gateway.available,
        },
    )
    return engine
