"""
BaseService -- common constructor for kernel services.

Services receive a SQLAlchemy ``Session`` and persist with
``session.flush()`` only; the caller (DocumentEngine or a test harness)
owns commit and rollback through ``session_scope``.  This is what makes
number allocation, totals and item inserts one all-or-nothing unit.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from amptrack_kernel.db.base import Base
from amptrack_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
