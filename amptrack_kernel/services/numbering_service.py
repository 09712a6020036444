"""
DocumentNumberAllocator -- per (type, year) document numbers via locked
counter rows.

Responsibility:
    Issues ``EST-2024-0001``-style numbers that are unique and strictly
    increasing within a (document_type, year) scope, under concurrent
    creation.

Architecture position:
    Kernel > Services.  Called by DocumentService and ConversionService
    inside the transaction that inserts the document.

Invariants enforced:
    - Uniqueness and monotonicity: the counter row is the sole source of
      truth.  It is read with ``SELECT ... FOR UPDATE`` and incremented in
      place.  Counting or MAX-ing existing documents is forbidden; it races
      and reissues numbers of deleted documents.
    - Transactional: the increment commits with the caller's transaction.
      A rollback (e.g. an item insert failure) returns the value, so no
      number is issued without a persisted document.

Failure modes:
    - IntegrityError on first use of a scope when two transactions insert
      the counter row at once: handled with a savepoint rollback and a
      locked re-read.
    - Any other database error propagates and aborts document creation.
"""

from sqlalchemy import BigInteger, Integer, String, UniqueConstraint, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from amptrack_kernel.db.base import Base
from amptrack_kernel.domain.numbering import (
    DEFAULT_PREFIXES,
    format_document_number,
    prefix_for,
)
from amptrack_kernel.logging_config import get_logger

logger = get_logger("services.numbering")


class DocumentNumberCounter(Base):
    """
    One row per numbering scope.

    ``current_value`` is the last sequence issued in the scope; 0 means
    none yet.
    """

    __tablename__ = "document_number_counters"

    __table_args__ = (
        UniqueConstraint("document_type", "year", name="uq_number_counter_scope"),
    )

    document_type: Mapped[str] = mapped_column(String(20), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class DocumentNumberAllocator:
    """
    Allocates formatted document numbers.

    Contract:
        ``next_number`` must be called inside an open transaction; the
        counter row stays locked until that transaction ends, so concurrent
        creators in the same scope serialize.

    Usage:
        with session_scope() as session:
            allocator = DocumentNumberAllocator(session)
            number, year, seq = allocator.allocate("invoice", 2024)
            session.add(Document(document_number=number, ...))
    """

    def __init__(self, session: Session, prefixes: dict[str, str] | None = None):
        self._session = session
        self._prefixes = dict(prefixes or DEFAULT_PREFIXES)

    def next_number(self, document_type: str, year: int) -> str:
        """Allocate and return the next formatted number for the scope."""
        number, _, _ = self.allocate(document_type, year)
        return number

    def allocate(self, document_type: str, year: int) -> tuple[str, int, int]:
        """
        Allocate the next number.

        Returns:
            (formatted number, year, sequence value).
        """
        scope = getattr(document_type, "value", document_type)
        prefix = prefix_for(scope, self._prefixes)
        seq = self._next_value(scope, year)
        number = format_document_number(prefix, year, seq)
        logger.debug(
            "document_number_allocated",
            extra={"document_type": scope, "year": year, "seq": seq, "document_number": number},
        )
        return number, year, seq

    def _locked_counter(self, scope: str, year: int) -> DocumentNumberCounter | None:
        return self._session.execute(
            select(DocumentNumberCounter)
            .where(
                DocumentNumberCounter.document_type == scope,
                DocumentNumberCounter.year == year,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _next_value(self, scope: str, year: int) -> int:
        counter = self._locked_counter(scope, year)

        if counter is None:
            # First number of the scope; another transaction may be
            # inserting the same row, so isolate the insert in a savepoint.
            savepoint = self._session.begin_nested()
            try:
                counter = DocumentNumberCounter(document_type=scope, year=year, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                return 1
            except IntegrityError:
                logger.debug(
                    "number_counter_race_retry",
                    extra={"document_type": scope, "year": year},
                )
                savepoint.rollback()
                counter = self._locked_counter(scope, year)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        return counter.current_value

    def current_value(self, document_type: str, year: int) -> int:
        """Last sequence issued in the scope, 0 if none."""
        scope = getattr(document_type, "value", document_type)
        counter = self._session.execute(
            select(DocumentNumberCounter).where(
                DocumentNumberCounter.document_type == scope,
                DocumentNumberCounter.year == year,
            )
        ).scalar_one_or_none()
        return counter.current_value if counter else 0
