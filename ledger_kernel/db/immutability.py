"""
ORM-level immutability enforcement for ledger and inventory records.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners below inspect attribute history and raise
ImmutabilityViolationError when a flush would rewrite history:

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
    [before_delete] --> _check_*_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Protected entities:

Entity            | Mutable after insert                         | Delete
------------------|----------------------------------------------|---------
JournalEntry      | void fields, once (posted -> voided)         | never
JournalLine       | nothing                                      | never
Account           | name, is_active, parent_code                 | if unreferenced
CostLayer         | quantity_remaining, decreasing, never < 0    | never
LayerConsumption  | nothing                                      | never
OperationRecord   | nothing                                      | never

updated_at/updated_by and the optimistic version column are audit or
concurrency metadata and may change on any row.

Usage, once at startup after models are imported:

    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

unregister_immutability_listeners() exists for tests that must bypass the
guards to prove detection elsewhere.
"""

from sqlalchemy import event, func, inspect, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.db.base import AUDIT_METADATA_FIELDS
from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_VERSION_FIELD = "version_id"

_ENTRY_VOID_FIELDS = frozenset({"is_voided", "voided_at", "void_reason", "reversed_by_id"})

_ACCOUNT_MUTABLE_FIELDS = frozenset({"name", "is_active", "parent_code"})


def _violation(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _changed_columns(target) -> list[str]:
    """Column attributes with pending changes, excluding metadata fields."""
    insp = inspect(target)
    changed = []
    for attr in insp.mapper.column_attrs:
        if attr.key in AUDIT_METADATA_FIELDS or attr.key == _VERSION_FIELD:
            continue
        if insp.attrs[attr.key].history.has_changes():
            changed.append(attr.key)
    return changed


def _old_value(target, key: str):
    history = get_history(target, key)
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


def _check_journal_entry_immutability(mapper, connection, target):
    """
    Allow exactly one transition on a posted entry: posted -> voided.

    The void fields may be written only while the stored row is still
    un-voided, and is_voided may only move from False to True.
    """
    changed = _changed_columns(target)
    if not changed:
        return

    for key in changed:
        if key not in _ENTRY_VOID_FIELDS:
            raise _violation(
                "JournalEntry",
                target,
                "UPDATE",
                f"Cannot modify field '{key}' on a posted journal entry",
                field=key,
            )

    if _old_value(target, "is_voided"):
        raise _violation(
            "JournalEntry",
            target,
            "UPDATE",
            "Voided journal entries are terminal and cannot be modified",
        )

    if not target.is_voided:
        raise _violation(
            "JournalEntry",
            target,
            "UPDATE",
            "Void fields may only be written by voiding the entry",
        )


def _check_journal_entry_delete(mapper, connection, target):
    raise _violation(
        "JournalEntry", target, "DELETE", "Journal entries cannot be deleted"
    )


def _check_journal_line_immutability(mapper, connection, target):
    changed = _changed_columns(target)
    if changed:
        raise _violation(
            "JournalLine",
            target,
            "UPDATE",
            "Journal lines cannot be modified",
            field=changed[0],
        )


def _check_journal_line_delete(mapper, connection, target):
    raise _violation("JournalLine", target, "DELETE", "Journal lines cannot be deleted")


def _check_account_structural_immutability(mapper, connection, target):
    """Code, type, normal balance and tenant are frozen at creation."""
    for key in _changed_columns(target):
        if key not in _ACCOUNT_MUTABLE_FIELDS:
            raise _violation(
                "Account",
                target,
                "UPDATE",
                f"Cannot modify structural field '{key}' on an account",
                field=key,
            )


def _check_account_deletion_before_flush(session, flush_context, instances):
    """
    Block deletion of accounts referenced by any journal line.

    Runs in before_flush, before the flush plan is finalized; mapper-level
    delete events fire too late to stop the cascade.
    """
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.journal import JournalLine

    for obj in list(session.deleted):
        if not isinstance(obj, Account):
            continue

        with session.no_autoflush:
            referenced = session.execute(
                select(func.count(JournalLine.id)).where(JournalLine.account_id == obj.id)
            ).scalar_one()

        if referenced:
            raise _violation(
                "Account",
                obj,
                "DELETE",
                f"Account {obj.code} is referenced by {referenced} journal line(s); "
                "deactivate it instead",
            )


def _check_cost_layer_immutability(mapper, connection, target):
    """Only quantity_remaining may change, and only downwards to >= 0."""
    for key in _changed_columns(target):
        if key != "quantity_remaining":
            raise _violation(
                "CostLayer",
                target,
                "UPDATE",
                f"Cannot modify field '{key}' on a cost layer",
                field=key,
            )

        old = _old_value(target, "quantity_remaining")
        new = target.quantity_remaining
        if new < 0 or (old is not None and new > old):
            raise _violation(
                "CostLayer",
                target,
                "UPDATE",
                f"quantity_remaining may only decrease to zero (from {old} to {new})",
                field=key,
            )


def _check_cost_layer_delete(mapper, connection, target):
    raise _violation(
        "CostLayer", target, "DELETE", "Cost layers are kept for audit and cannot be deleted"
    )


def _check_consumption_immutability(mapper, connection, target):
    if _changed_columns(target):
        raise _violation(
            "LayerConsumption", target, "UPDATE", "Layer consumption records cannot be modified"
        )


def _check_consumption_delete(mapper, connection, target):
    raise _violation(
        "LayerConsumption", target, "DELETE", "Layer consumption records cannot be deleted"
    )


def _check_operation_immutability(mapper, connection, target):
    if _changed_columns(target):
        raise _violation(
            "OperationRecord", target, "UPDATE", "Operation records cannot be modified"
        )


def _check_operation_delete(mapper, connection, target):
    raise _violation(
        "OperationRecord", target, "DELETE", "Operation records cannot be deleted"
    )


def _listeners():
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.cost_layer import CostLayer, LayerConsumption
    from ledger_kernel.models.journal import JournalEntry, JournalLine
    from ledger_kernel.models.operation import OperationRecord

    return [
        (Session, "before_flush", _check_account_deletion_before_flush),
        (JournalEntry, "before_update", _check_journal_entry_immutability),
        (JournalEntry, "before_delete", _check_journal_entry_delete),
        (JournalLine, "before_update", _check_journal_line_immutability),
        (JournalLine, "before_delete", _check_journal_line_delete),
        (Account, "before_update", _check_account_structural_immutability),
        (CostLayer, "before_update", _check_cost_layer_immutability),
        (CostLayer, "before_delete", _check_cost_layer_delete),
        (LayerConsumption, "before_update", _check_consumption_immutability),
        (LayerConsumption, "before_delete", _check_consumption_delete),
        (OperationRecord, "before_update", _check_operation_immutability),
        (OperationRecord, "before_delete", _check_operation_delete),
    ]


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement listeners.

    Safe to call more than once; a listener already present is skipped.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove the immutability listeners.

    WARNING: Only use this in tests that must deliberately bypass the guards.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)


def immutability_listeners_registered() -> bool:
    return all(
        event.contains(target, event_name, listener_fn)
        for target, event_name, listener_fn in _listeners()
    )
