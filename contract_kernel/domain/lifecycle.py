"""
Lifecycle -- the contract state machine as pure data.

Responsibility:
    Defines the single tagged lifecycle state of a contract, the operations
    that move it, and the transition table that guards them.  The user-facing
    status and the "liquidation cancelled" flag are derived from the state,
    never stored separately.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Only edges listed in TRANSITIONS are legal.
    - CANCELLED is terminal: no operation leaves it, and details may not be
      edited once a contract is cancelled.
    - Editing details never changes the state.

Failure modes:
    - IllegalTransitionError when an operation has no edge from the current
      state.

State machine:

    create ──> ACTIVE ──liquidate──> LIQUIDATED
                 │                      │  ^
                 │          cancel_liquidation  liquidate
                 │                      v  │
                 │          ACTIVE_LIQUIDATION_REVERSED
                 │                      │
                 └──cancel_contract──> CANCELLED <──cancel_contract──┘
"""

from enum import Enum

from contract_kernel.exceptions import IllegalTransitionError


class LifecycleState(str, Enum):
    """Persisted lifecycle state of a contract."""

    ACTIVE = "active"
    # Active again after its latest liquidation was cancelled
    ACTIVE_LIQUIDATION_REVERSED = "active_liquidation_reversed"
    LIQUIDATED = "liquidated"
    CANCELLED = "cancelled"


class ContractStatus(str, Enum):
    """User-facing status derived from LifecycleState."""

    ACTIVE = "active"
    LIQUIDATED = "liquidated"
    CANCELLED = "cancelled"

    @property
    def label(self) -> str:
        """Display label used on printed forms and exported lists."""
        return STATUS_LABELS[self]


STATUS_LABELS: dict[ContractStatus, str] = {
    ContractStatus.ACTIVE: "Đang hiệu lực",
    ContractStatus.LIQUIDATED: "Đã thanh lý",
    ContractStatus.CANCELLED: "Đã hủy",
}


class LifecycleOperation(str, Enum):
    """Operations that are checked against the transition table."""

    LIQUIDATE = "liquidate"
    CANCEL_LIQUIDATION = "cancel_liquidation"
    CANCEL_CONTRACT = "cancel_contract"
    EDIT_DETAILS = "edit_details"


INITIAL_STATE = LifecycleState.ACTIVE

# (operation, from-state) -> to-state
TRANSITIONS: dict[LifecycleOperation, dict[LifecycleState, LifecycleState]] = {
    LifecycleOperation.LIQUIDATE: {
        LifecycleState.ACTIVE: LifecycleState.LIQUIDATED,
        LifecycleState.ACTIVE_LIQUIDATION_REVERSED: LifecycleState.LIQUIDATED,
    },
    LifecycleOperation.CANCEL_LIQUIDATION: {
        LifecycleState.LIQUIDATED: LifecycleState.ACTIVE_LIQUIDATION_REVERSED,
    },
    LifecycleOperation.CANCEL_CONTRACT: {
        LifecycleState.ACTIVE: LifecycleState.CANCELLED,
        LifecycleState.ACTIVE_LIQUIDATION_REVERSED: LifecycleState.CANCELLED,
    },
    LifecycleOperation.EDIT_DETAILS: {
        LifecycleState.ACTIVE: LifecycleState.ACTIVE,
        LifecycleState.ACTIVE_LIQUIDATION_REVERSED: LifecycleState.ACTIVE_LIQUIDATION_REVERSED,
        LifecycleState.LIQUIDATED: LifecycleState.LIQUIDATED,
    },
}

_STATUS_BY_STATE: dict[LifecycleState, ContractStatus] = {
    LifecycleState.ACTIVE: ContractStatus.ACTIVE,
    LifecycleState.ACTIVE_LIQUIDATION_REVERSED: ContractStatus.ACTIVE,
    LifecycleState.LIQUIDATED: ContractStatus.LIQUIDATED,
    LifecycleState.CANCELLED: ContractStatus.CANCELLED,
}


def status_of(state: LifecycleState) -> ContractStatus:
    return _STATUS_BY_STATE[state]


def states_for_status(status: ContractStatus) -> frozenset[LifecycleState]:
    """All lifecycle states that present as the given status."""
    return frozenset(s for s, st in _STATUS_BY_STATE.items() if st is status)


def is_liquidation_cancelled(state: LifecycleState) -> bool:
    return state is LifecycleState.ACTIVE_LIQUIDATION_REVERSED


def can_apply(operation: LifecycleOperation, state: LifecycleState) -> bool:
    return state in TRANSITIONS[operation]


def next_state(
    operation: LifecycleOperation,
    state: LifecycleState,
    contract_id: object = None,
) -> LifecycleState:
    """
    Resolve the target state of an operation.

    Raises:
        IllegalTransitionError: If the table has no edge from ``state``.
    """
    try:
        return TRANSITIONS[operation][state]
    except KeyError:
        raise IllegalTransitionError(
            contract_id=str(contract_id),
            operation=operation.value,
            current_state=state.value,
        ) from None
