"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O (except SystemClock)

All domain objects are immutable and deterministic.
"""

from contract_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from contract_kernel.domain.dtos import (
    ContractDetailsView,
    ContractFilter,
    ContractInfo,
    HistoryEntryInfo,
    LiquidationInfo,
    SortDirection,
    SortKey,
)
from contract_kernel.domain.identifiers import (
    IdentifierSeries,
    LocationCodeResolver,
    NumberingPolicy,
    format_identifier,
)
from contract_kernel.domain.lifecycle import (
    ContractStatus,
    LifecycleOperation,
    LifecycleState,
    next_state,
)

__all__ = [
    # Time
    "Clock",
    "SystemClock",
    "DeterministicClock",
    # DTOs
    "ContractInfo",
    "LiquidationInfo",
    "HistoryEntryInfo",
    "ContractDetailsView",
    "ContractFilter",
    "SortKey",
    "SortDirection",
    # Identifiers
    "IdentifierSeries",
    "LocationCodeResolver",
    "NumberingPolicy",
    "format_identifier",
    # Lifecycle
    "ContractStatus",
    "LifecycleOperation",
    "LifecycleState",
    "next_state",
]
