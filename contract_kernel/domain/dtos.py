"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable records returned by the registry: ContractInfo, LiquidationInfo,
    HistoryEntryInfo and the merged ContractDetailsView, plus the
    ContractFilter accepted by the list read path.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods are boundary converters invoked only from
    services and selectors; callers never receive ORM entities.

Invariants enforced:
    - ContractDetailsView.cancellation_reason is a single resolved value
      (see selectors.details_selector.merge_details_view).
    - ContractFilter rejects negative limit/offset and inverted date ranges.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from contract_kernel.domain.clock import as_utc
from contract_kernel.domain.lifecycle import (
    ContractStatus,
    LifecycleState,
    is_liquidation_cancelled,
    status_of,
)

if TYPE_CHECKING:
    from contract_kernel.models.contract import Contract as ContractModel
    from contract_kernel.models.history import ContractHistory as ContractHistoryModel
    from contract_kernel.models.liquidation import (
        LiquidationRecord as LiquidationRecordModel,
    )


@dataclass(frozen=True)
class ContractInfo:
    """Immutable snapshot of a contract row."""

    id: UUID
    contract_number: str
    ward: str
    owner_name: str
    sheet_number: str
    plot_number: str
    is_branch: bool
    state: LifecycleState
    status: ContractStatus
    is_liquidation_cancelled: bool
    notes: str | None
    cancellation_reason: str | None
    created_at: datetime
    updated_at: datetime | None
    revision: int

    @classmethod
    def from_model(cls, contract: ContractModel) -> ContractInfo:
        state = LifecycleState(contract.state)
        return cls(
            id=contract.id,
            contract_number=contract.contract_number,
            ward=contract.ward,
            owner_name=contract.owner_name,
            sheet_number=contract.sheet_number,
            plot_number=contract.plot_number,
            is_branch=contract.is_branch,
            state=state,
            status=status_of(state),
            is_liquidation_cancelled=is_liquidation_cancelled(state),
            notes=contract.notes,
            cancellation_reason=contract.cancellation_reason,
            created_at=as_utc(contract.created_at),
            updated_at=as_utc(contract.updated_at),
            revision=contract.revision,
        )


@dataclass(frozen=True)
class LiquidationInfo:
    """Immutable snapshot of a liquidation record."""

    id: UUID
    contract_id: UUID
    liquidation_number: str
    liquidation_date: datetime
    is_cancelled: bool
    cancellation_reason: str | None
    created_at: datetime
    contract_revision: int

    @classmethod
    def from_model(cls, record: LiquidationRecordModel) -> LiquidationInfo:
        return cls(
            id=record.id,
            contract_id=record.contract_id,
            liquidation_number=record.liquidation_number,
            liquidation_date=as_utc(record.liquidation_date),
            is_cancelled=record.is_cancelled,
            cancellation_reason=record.cancellation_reason,
            created_at=as_utc(record.created_at),
            contract_revision=record.contract_revision,
        )


@dataclass(frozen=True)
class HistoryEntryInfo:
    """One audit entry.  Append-only."""

    id: UUID
    contract_id: UUID
    timestamp: datetime
    action: str
    details: str | None
    actor_id: str | None
    contract_revision: int

    @classmethod
    def from_model(cls, entry: ContractHistoryModel) -> HistoryEntryInfo:
        return cls(
            id=entry.id,
            contract_id=entry.contract_id,
            timestamp=as_utc(entry.timestamp),
            action=entry.action,
            details=entry.details,
            actor_id=entry.actor_id,
            contract_revision=entry.contract_revision,
        )


@dataclass(frozen=True)
class ContractDetailsView:
    """
    A contract merged with its current (most recent) liquidation record.

    liquidation_* fields are None when the contract was never liquidated.
    status_label is the display text of status.
    """

    id: UUID
    contract_number: str
    ward: str
    owner_name: str
    sheet_number: str
    plot_number: str
    is_branch: bool
    status: ContractStatus
    status_label: str
    notes: str | None
    created_at: datetime
    liquidation_number: str | None
    liquidation_date: datetime | None
    is_liquidation_cancelled: bool
    cancellation_reason: str | None


class SortKey(str, Enum):
    CONTRACT_NUMBER = "contract_number"
    LIQUIDATION_NUMBER = "liquidation_number"
    OWNER_NAME = "owner_name"
    CREATED_AT = "created_at"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class ContractFilter:
    """
    Criteria for list_contract_details_views.

    search matches case-insensitively against contract number, liquidation
    number, owner name and plot number; case folding follows Unicode rules,
    so "NGUYỄN" finds "Nguyễn".  Accents are significant.  created_from is
    inclusive, created_to exclusive.
    """

    search: str | None = None
    status: ContractStatus | None = None
    ward: str | None = None
    is_branch: bool | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    sort_key: SortKey = SortKey.CREATED_AT
    sort_direction: SortDirection = SortDirection.DESC
    limit: int | None = None
    offset: int = 0

    def __post_init__(self) -> None:
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"limit must be non-negative, got {self.limit}")
        if self.offset < 0:
            raise ValueError(f"offset must be non-negative, got {self.offset}")
        if (
            self.created_from is not None
            and self.created_to is not None
            and self.created_from > self.created_to
        ):
            raise ValueError("created_from must not be after created_to")
