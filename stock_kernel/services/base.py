"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor and session-handling contract for every write-side
    service.  Services receive a SQLAlchemy ``Session`` and use
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or roll back the outer transaction themselves.  The
    caller (ProductionLedgerService, a script, or a test) owns commit.
    Savepoints (``session.begin_nested()``) are allowed for resolving
    constraint races inside a single call.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from stock_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide query-only (read) methods -- those belong
          in ``stock_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
