"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Contract and liquidation numbers are legal identifiers.  Once issued they
must never change, never be deleted and never be handed out again, and the
history of a contract is its audit trail.  These rules hold regardless of
which service touches the rows, so they are enforced at the ORM boundary:
SQLAlchemy fires events before UPDATE/DELETE reach the database and the
listeners below abort the flush with ImmutabilityViolationError.

    session.flush()
         |
         v
    [before_update] --> _check_*_update() --> ImmutabilityViolationError
         |
    [before_delete] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                 | Rule
-----------------------|----------------------------------------------------
Contract               | contract_number, created_at, idempotency_key fixed;
                       | never deleted
LiquidationRecord      | never deleted; only is_cancelled False -> True and
                       | its cancellation_reason may change, once
ContractHistory        | append-only: never updated or deleted
YearlySequenceCounter  | never deleted; last_value never decreases;
                       | series_name and year fixed

===============================================================================
USAGE
===============================================================================

    from contract_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

In tests that need to bypass protection:

    from contract_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()
    # ... test code ...
    register_immutability_listeners()
"""

from sqlalchemy import event
from sqlalchemy.orm import attributes

from contract_kernel.exceptions import ImmutabilityViolationError
from contract_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

CONTRACT_FIXED_FIELDS = frozenset({"contract_number", "created_at", "idempotency_key"})

LIQUIDATION_MUTABLE_FIELDS = frozenset({"is_cancelled", "cancellation_reason"})

COUNTER_FIXED_FIELDS = frozenset({"series_name", "year"})


def _changed_fields(target, candidates=None) -> set[str]:
    """Column attributes of target with pending changes."""
    state = attributes.instance_state(target)
    names = candidates or [attr.key for attr in state.mapper.column_attrs]
    changed = set()
    for name in names:
        history = state.attrs[name].history
        if history.has_changes():
            changed.add(name)
    return changed


def _blocked(entity_type: str, target, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


# =============================================================================
# Contract
# =============================================================================


def _check_contract_update(mapper, connection, target):
    changed = _changed_fields(target, CONTRACT_FIXED_FIELDS)
    if changed:
        raise _blocked(
            "Contract",
            target,
            "UPDATE",
            f"Fields are fixed once issued: {', '.join(sorted(changed))}",
        )


def _check_contract_delete(mapper, connection, target):
    raise _blocked("Contract", target, "DELETE", "Contracts are never deleted")


# =============================================================================
# LiquidationRecord
# =============================================================================


def _check_liquidation_update(mapper, connection, target):
    changed = _changed_fields(target)
    forbidden = changed - LIQUIDATION_MUTABLE_FIELDS
    if forbidden:
        raise _blocked(
            "LiquidationRecord",
            target,
            "UPDATE",
            f"Fields are fixed once issued: {', '.join(sorted(forbidden))}",
        )

    if not changed:
        return

    flag_history = attributes.instance_state(target).attrs["is_cancelled"].history
    was_cancelled = bool(flag_history.deleted and flag_history.deleted[0])
    if not flag_history.has_changes():
        was_cancelled = bool(target.is_cancelled)

    if was_cancelled:
        raise _blocked(
            "LiquidationRecord",
            target,
            "UPDATE",
            "A cancelled liquidation record cannot be changed",
        )
    if not target.is_cancelled:
        raise _blocked(
            "LiquidationRecord",
            target,
            "UPDATE",
            "Only cancellation (is_cancelled False -> True) is permitted",
        )


def _check_liquidation_delete(mapper, connection, target):
    raise _blocked(
        "LiquidationRecord",
        target,
        "DELETE",
        "Liquidation records are never deleted; issued numbers stay reserved",
    )


# =============================================================================
# ContractHistory
# =============================================================================


def _check_history_update(mapper, connection, target):
    raise _blocked("ContractHistory", target, "UPDATE", "History entries are append-only")


def _check_history_delete(mapper, connection, target):
    raise _blocked("ContractHistory", target, "DELETE", "History entries are append-only")


# =============================================================================
# YearlySequenceCounter
# =============================================================================


def _check_counter_update(mapper, connection, target):
    changed = _changed_fields(target, COUNTER_FIXED_FIELDS)
    if changed:
        raise _blocked(
            "YearlySequenceCounter",
            target,
            "UPDATE",
            f"Fields are fixed: {', '.join(sorted(changed))}",
        )
    history = attributes.instance_state(target).attrs["last_value"].history
    if history.deleted and history.added and history.added[0] < history.deleted[0]:
        raise _blocked(
            "YearlySequenceCounter",
            target,
            "UPDATE",
            "Sequence counters never move backwards",
        )


def _check_counter_delete(mapper, connection, target):
    raise _blocked(
        "YearlySequenceCounter", target, "DELETE", "Sequence counters are never deleted"
    )


def _listeners():
    from contract_kernel.models.contract import Contract
    from contract_kernel.models.history import ContractHistory
    from contract_kernel.models.liquidation import LiquidationRecord
    from contract_kernel.services.sequence_service import YearlySequenceCounter

    return [
        (Contract, "before_update", _check_contract_update),
        (Contract, "before_delete", _check_contract_delete),
        (LiquidationRecord, "before_update", _check_liquidation_update),
        (LiquidationRecord, "before_delete", _check_liquidation_delete),
        (ContractHistory, "before_update", _check_history_update),
        (ContractHistory, "before_delete", _check_history_delete),
        (YearlySequenceCounter, "before_update", _check_counter_update),
        (YearlySequenceCounter, "before_delete", _check_counter_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent.  Call after models are importable and before any writes.
    """
    for target, name, fn in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally bypass the rules.
    """
    for target, name, fn in _listeners():
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
