"""
BaseService -- abstract base for all billing write services.

Responsibility:
    Common constructor and session-handling contract.  Services receive a
    SQLAlchemy ``Session`` plus the acting user's id and persist changes
    with ``session.flush()`` -- never ``session.commit()``.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or roll back.  The caller (BillingService facade,
    session_scope(), or a test) owns commit/rollback, so a multi-step
    operation either persists completely or not at all.
"""

from abc import ABC
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.orm import Session

from billing_kernel.db.base import Base
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.exceptions import OptimisticLockError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel write services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
        - ``_flush()`` maps optimistic-lock failures to OptimisticLockError.

    Non-goals:
        - Read-only queries belong in ``billing_kernel/selectors/``.
    """

    entity_type: str = "entity"

    def __init__(self, session: Session, actor_id: UUID, clock: Clock | None = None):
        self.session = session
        self.actor_id = actor_id
        self.clock = clock or SystemClock()

    def _flush(self, entity_id: object = None) -> None:
        try:
            self.session.flush()
        except StaleDataError as e:
            raise OptimisticLockError(self.entity_type, str(entity_id)) from e
