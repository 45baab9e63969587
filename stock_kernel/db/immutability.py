"""
ORM-Level Immutability and Balance Ownership Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The movement log is the source of truth for every material balance and the
stage history is the source of truth for every duration metric.  Both only
stay trustworthy if nobody rewrites them.  qty_on_hand is a cache of the
movement log, so it must only ever move together with a new movement.

SQLAlchemy fires mapper events before UPDATE/DELETE reach the database.
The listeners registered here intercept those events:

    session.flush()
         |
         v
    [before_insert / before_update / before_delete]
         |
         +--> violation --> ImmutabilityViolationError / BalanceOwnershipError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                | Rule
----------------------|-----------------------------------------------------
StockTransaction      | No UPDATE, no DELETE
StockTransactionLine  | No UPDATE, no DELETE
StockMovement         | No UPDATE, no DELETE
StageHistoryEntry     | Only exited_at may change, only once (NULL -> value);
                      | no DELETE
Material.qty_on_hand  | Must start at 0 on INSERT; changes only inside
                      | ledger_write_scope() (the ledger service)

Raw SQL bypasses these listeners; they guard application code paths.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session, object_session
from sqlalchemy.orm.attributes import get_history

from stock_kernel.exceptions import BalanceOwnershipError, ImmutabilityViolationError
from stock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_LEDGER_WRITE_FLAG = "stock_ledger_write"
_AUDIT_FIELDS = ("updated_at", "updated_by_id")


@contextmanager
def ledger_write_scope(session: Session) -> Generator[Session, None, None]:
    """
    Mark a session as inside a ledger apply.

    Balance changes made (and flushed) inside this block pass the ownership
    check.  Nested use is allowed; the flag is restored on exit.
    """
    previous = session.info.get(_LEDGER_WRITE_FLAG, False)
    session.info[_LEDGER_WRITE_FLAG] = True
    try:
        yield session
    finally:
        session.info[_LEDGER_WRITE_FLAG] = previous


def _in_ledger_scope(target) -> bool:
    session = object_session(target)
    return bool(session is not None and session.info.get(_LEDGER_WRITE_FLAG))


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _changed_fields(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.mapper.column_attrs
        if attr.key not in _AUDIT_FIELDS
        and insp.attrs[attr.key].history.has_changes()
    ]


# ---------------------------------------------------------------------------
# Append-only ledger records
# ---------------------------------------------------------------------------


def _check_append_only_update(mapper, connection, target):
    """Transactions, lines and movements are immutable once inserted."""
    changed = _changed_fields(target)
    if changed:
        _block(
            type(target).__name__,
            target,
            "UPDATE",
            f"Cannot modify field '{changed[0]}' on an append-only ledger record",
            field=changed[0],
        )


def _check_append_only_delete(mapper, connection, target):
    _block(
        type(target).__name__,
        target,
        "DELETE",
        "Ledger records cannot be deleted",
    )


# ---------------------------------------------------------------------------
# Stage history
# ---------------------------------------------------------------------------


def _check_stage_history_update(mapper, connection, target):
    """
    Allow exactly one change: closing an open interval.

    Any other field change, reopening, or moving an existing exited_at is
    blocked.
    """
    for field in _changed_fields(target):
        if field != "exited_at":
            _block(
                "StageHistoryEntry",
                target,
                "UPDATE",
                f"Cannot modify field '{field}' on stage history",
                field=field,
            )

    hist = get_history(target, "exited_at")
    if not hist.has_changes():
        return
    previous = hist.deleted[0] if hist.deleted else None
    if previous is not None:
        _block(
            "StageHistoryEntry",
            target,
            "UPDATE",
            "Stage interval is already closed",
            field="exited_at",
        )
    if target.exited_at is None:
        _block(
            "StageHistoryEntry",
            target,
            "UPDATE",
            "Cannot reopen a stage interval",
            field="exited_at",
        )


def _check_stage_history_delete(mapper, connection, target):
    _block(
        "StageHistoryEntry",
        target,
        "DELETE",
        "Stage history cannot be deleted",
    )


# ---------------------------------------------------------------------------
# Balance ownership
# ---------------------------------------------------------------------------


def _check_material_insert(mapper, connection, target):
    """New materials start at zero; opening stock goes through the ledger."""
    if target.qty_on_hand and not _in_ledger_scope(target):
        logger.error(
            "balance_ownership_violation_blocked",
            extra={"material_id": str(target.id), "operation": "INSERT"},
        )
        raise BalanceOwnershipError(material_id=str(target.id))


def _check_material_update(mapper, connection, target):
    if not get_history(target, "qty_on_hand").has_changes():
        return
    if not _in_ledger_scope(target):
        logger.error(
            "balance_ownership_violation_blocked",
            extra={"material_id": str(target.id), "operation": "UPDATE"},
        )
        raise BalanceOwnershipError(material_id=str(target.id))


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def _listeners():
    from stock_kernel.models.job import StageHistoryEntry
    from stock_kernel.models.material import Material
    from stock_kernel.models.movement import StockMovement
    from stock_kernel.models.transaction import StockTransaction, StockTransactionLine

    pairs = []
    for model in (StockTransaction, StockTransactionLine, StockMovement):
        pairs.append((model, "before_update", _check_append_only_update))
        pairs.append((model, "before_delete", _check_append_only_delete))
    pairs.extend([
        (StageHistoryEntry, "before_update", _check_stage_history_update),
        (StageHistoryEntry, "before_delete", _check_stage_history_delete),
        (Material, "before_insert", _check_material_insert),
        (Material, "before_update", _check_material_update),
    ])
    return pairs


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners (idempotent).

    Call after models are imported and before any database writes.
    """
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally bypass the rules.
    """
    for target, event_name, fn in _listeners():
        _safe_remove_listener(target, event_name, fn)
