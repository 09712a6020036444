"""
ArtifactCache -- rendered PDF of a document, cached until invalidated.

Responsibility:
    Serves the artifact bytes for a document: the uploaded original for
    estimates that have one, else the cached render for the current
    revision, else a fresh render that is stored and recorded.

Architecture position:
    Kernel > Services.  Flush-only.  Renderer, store and business profile
    are injected collaborators.

Invariants enforced:
    - Staleness: the cache key embeds ``artifact_revision``.  Every
      invalidating mutation bumps the revision, so a handle written for an
      older state never matches and is never served.
    - No partial output: empty or failed renders raise and leave the handle
      untouched.
    - Bounded rendering: a render that exceeds ``timeout_seconds`` raises
      RenderTimeoutError.

Failure modes:
    - ExternalServiceUnavailableError: renderer or store disabled.
    - RenderFailureError / RenderTimeoutError: rendering failed.
    - ExternalServiceError: the store rejected the write.

Concurrency:
    Two requests for the same uncached document may both render.  Both
    write the same key; the last writer's handle wins.  Rendering is a pure
    function of persisted state, so either result is correct.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any

from sqlalchemy.orm import Session

from amptrack_kernel.domain.clock import Clock
from amptrack_kernel.domain.collaborators import (
    ArtifactStore,
    BusinessProfileProvider,
    DocumentRenderer,
)
from amptrack_kernel.domain.dtos import DocumentInfo
from amptrack_kernel.exceptions import (
    AmpTrackError,
    ExternalServiceError,
    ExternalServiceUnavailableError,
    RenderFailureError,
    RenderTimeoutError,
)
from amptrack_kernel.logging_config import document_context, get_logger, with_log_context
from amptrack_kernel.models.document import Document, DocumentType
from amptrack_kernel.services.base import BaseService
from amptrack_kernel.services.document_service import DocumentService, invalidate_artifact

logger = get_logger("services.artifact")

DEFAULT_RENDER_TIMEOUT = 30.0


def artifact_key_for(document_type: str, document_id: Any, revision: int) -> str:
    return f"{document_type}/{document_id}/r{revision}.pdf"


def current_artifact_key(document: Document) -> str:
    return artifact_key_for(
        DocumentType(document.document_type).value,
        document.id,
        document.artifact_revision,
    )


class ArtifactCache(BaseService[Document]):
    """
    Read-through cache of rendered documents.

    Contract:
        ``get_artifact`` twice with no mutation in between returns
        byte-identical output, the second time from the store.
    """

    def __init__(
        self,
        session: Session,
        renderer: DocumentRenderer | None,
        store: ArtifactStore | None,
        profile_provider: BusinessProfileProvider,
        clock: Clock | None = None,
        *,
        timeout_seconds: float = DEFAULT_RENDER_TIMEOUT,
        documents: DocumentService | None = None,
    ):
        super().__init__(session, clock)
        self.renderer = renderer
        self.store = store
        self.profile_provider = profile_provider
        self.timeout_seconds = timeout_seconds
        self.documents = documents or DocumentService(session, self.clock)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_artifact(self, document_id: Any) -> bytes:
        document = self.documents.get_row(document_id)
        self._require_store()

        with document_context(document):
            if document.document_type == DocumentType.ESTIMATE.value and document.uploaded_file_key:
                data = self._read(document.uploaded_file_key)
                if data:
                    logger.debug("artifact_uploaded_original_served")
                    return data

            expected = current_artifact_key(document)
            if document.artifact_key == expected:
                data = self._read(expected)
                if data:
                    logger.debug("artifact_cache_hit", extra={"artifact_key": expected})
                    return data

            logger.info(
                "artifact_cache_miss",
                extra={"artifact_key": document.artifact_key, "expected_key": expected},
            )
            stale_key = document.artifact_key if document.artifact_key != expected else None
            return self._render_and_store(document, stale_key=stale_key)

    def refresh_artifact(self, document_id: Any) -> bytes:
        """Drop the cached artifact (best-effort) and render a new one."""
        document = self.documents.get_row(document_id, for_update=True)
        self._require_store()
        with document_context(document):
            old_key = document.artifact_key
            if old_key:
                self._discard(old_key, document.id)
            invalidate_artifact(document)
            return self._render_and_store(document, stale_key=None)

    def invalidate(self, document_id: Any) -> None:
        document = self.documents.get_row(document_id, for_update=True)
        invalidate_artifact(document)
        self.session.flush()

    def discard(self, info: DocumentInfo) -> None:
        """Best-effort removal of a deleted document's stored objects."""
        if self.store is None or not self.store.available:
            return
        for key in (info.artifact_key, info.uploaded_file_key):
            if key:
                self._discard(key, info.id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_store(self) -> None:
        if self.store is None or not self.store.available:
            raise ExternalServiceUnavailableError("artifact_storage", "no artifact store configured")

    def _read(self, key: str) -> bytes | None:
        try:
            return self.store.get(key)
        except OSError as exc:
            logger.warning("artifact_read_failed", extra={"artifact_key": key, "error": str(exc)})
            return None

    def _discard(self, key: str, document_id: Any) -> None:
        try:
            self.store.delete(key)
        except OSError as exc:
            logger.warning(
                "artifact_delete_failed",
                extra={"document_id": str(document_id), "artifact_key": key, "error": str(exc)},
            )

    def _render_and_store(self, document: Document, stale_key: str | None) -> bytes:
        if self.renderer is None or not self.renderer.available:
            raise ExternalServiceUnavailableError("rendering", "document renderer is not configured")

        info = self.documents.to_info(document)
        data = self._render(info)

        key = current_artifact_key(document)
        try:
            self.store.put(key, data)
        except OSError as exc:
            raise ExternalServiceError(
                "artifact_storage", f"Could not store artifact {key}: {exc}"
            ) from exc

        document.artifact_key = key
        self.session.flush()
        if stale_key:
            self._discard(stale_key, document.id)

        logger.info(
            "artifact_rendered",
            extra={
                "document_id": str(document.id),
                "artifact_key": key,
                "size_bytes": len(data),
            },
        )
        return data

    def _render(self, info: DocumentInfo) -> bytes:
        profile = self.profile_provider.get_profile()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="amptrack-render")
        future = executor.submit(with_log_context(self.renderer.render), info, profile)
        try:
            data = future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            logger.error(
                "artifact_render_timeout",
                extra={"document_id": str(info.id), "timeout_seconds": self.timeout_seconds},
            )
            raise RenderTimeoutError(str(info.id), self.timeout_seconds) from None
        except AmpTrackError:
            raise
        except Exception as exc:
            logger.error(
                "artifact_render_failed",
                extra={"document_id": str(info.id), "error": str(exc)},
            )
            raise RenderFailureError(str(info.id), str(exc)) from exc
        finally:
            executor.shutdown(wait=False)

        if not isinstance(data, (bytes, bytearray)) or not data:
            raise RenderFailureError(str(info.id), "renderer returned no data")
        return bytes(data)
