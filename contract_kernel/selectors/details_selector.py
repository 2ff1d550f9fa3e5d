"""
Module: contract_kernel.selectors.details_selector
Responsibility: Read model joining each contract with its current
    liquidation record.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - The current liquidation record is picked with
      ROW_NUMBER() OVER (PARTITION BY contract_id ORDER BY created_at DESC,
      contract_revision DESC) = 1, cancelled or not.
    - cancellation_reason is resolved in exactly one place,
      merge_details_view(), for both the single and the list read path:
      the contract's own reason when the contract is cancelled, otherwise
      the current record's reason when that record is cancelled, otherwise
      None.

Failure modes:
    - ContractNotFoundError from resolve() for an unknown ID.

Notes:
    Search compares lower(column) with a lowered term.  The SQLite engine
    registers a Unicode lower(), so Vietnamese capitals fold on both backends.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.orm import aliased

from contract_kernel.domain.clock import as_utc
from contract_kernel.domain.dtos import (
    ContractDetailsView,
    ContractFilter,
    ContractInfo,
    LiquidationInfo,
    SortDirection,
    SortKey,
)
from contract_kernel.domain.lifecycle import (
    ContractStatus,
    LifecycleState,
    states_for_status,
    status_of,
)
from contract_kernel.exceptions import ContractNotFoundError
from contract_kernel.models.contract import Contract
from contract_kernel.models.liquidation import LiquidationRecord
from contract_kernel.selectors.base import BaseSelector


def merge_details_view(
    contract: ContractInfo,
    current: LiquidationInfo | None,
) -> ContractDetailsView:
    """Merge a contract with its current liquidation record (or None)."""
    if contract.status is ContractStatus.CANCELLED:
        reason = contract.cancellation_reason
    elif current is not None and current.is_cancelled:
        reason = current.cancellation_reason
    else:
        reason = None

    return ContractDetailsView(
        id=contract.id,
        contract_number=contract.contract_number,
        ward=contract.ward,
        owner_name=contract.owner_name,
        sheet_number=contract.sheet_number,
        plot_number=contract.plot_number,
        is_branch=contract.is_branch,
        status=contract.status,
        status_label=contract.status.label,
        notes=contract.notes,
        created_at=contract.created_at,
        liquidation_number=current.liquidation_number if current else None,
        liquidation_date=current.liquidation_date if current else None,
        is_liquidation_cancelled=bool(current and current.is_cancelled),
        cancellation_reason=reason,
    )


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class DetailsSelector(BaseSelector):
    """Contract details views, one per contract."""

    def _base_query(self) -> tuple[Select, type[LiquidationRecord]]:
        rn = (
            func.row_number()
            .over(
                partition_by=LiquidationRecord.contract_id,
                order_by=(
                    LiquidationRecord.created_at.desc(),
                    LiquidationRecord.contract_revision.desc(),
                ),
            )
            .label("rn")
        )
        ranked = select(LiquidationRecord, rn).subquery("ranked_liquidations")
        latest = aliased(LiquidationRecord, ranked)

        stmt = select(Contract, latest).outerjoin(
            latest,
            and_(latest.contract_id == Contract.id, ranked.c.rn == 1),
        )
        return stmt, latest

    def resolve(self, contract_id: UUID) -> ContractDetailsView:
        stmt, _ = self._base_query()
        row = self.session.execute(stmt.where(Contract.id == contract_id)).first()
        if row is None:
            raise ContractNotFoundError(str(contract_id))
        return self._to_view(row)

    def list_views(self, filter: ContractFilter | None = None) -> list[ContractDetailsView]:
        filter = filter or ContractFilter()
        stmt, latest = self._base_query()

        if filter.search:
            # Term folded here, columns folded by the database's lower()
            pattern = f"%{_escape_like(filter.search.strip().lower())}%"
            columns = (
                Contract.contract_number,
                latest.liquidation_number,
                Contract.owner_name,
                Contract.plot_number,
            )
            stmt = stmt.where(
                or_(*(func.lower(c).like(pattern, escape="\\") for c in columns))
            )
        if filter.status is not None:
            states = sorted(s.value for s in states_for_status(filter.status))
            stmt = stmt.where(Contract.state.in_(states))
        if filter.ward is not None:
            stmt = stmt.where(Contract.ward == filter.ward)
        if filter.is_branch is not None:
            stmt = stmt.where(Contract.is_branch == filter.is_branch)
        if filter.created_from is not None:
            stmt = stmt.where(Contract.created_at >= as_utc(filter.created_from))
        if filter.created_to is not None:
            stmt = stmt.where(Contract.created_at < as_utc(filter.created_to))

        sort_column = {
            SortKey.CONTRACT_NUMBER: Contract.contract_number,
            SortKey.LIQUIDATION_NUMBER: latest.liquidation_number,
            SortKey.OWNER_NAME: Contract.owner_name,
            SortKey.CREATED_AT: Contract.created_at,
        }[filter.sort_key]
        if filter.sort_direction is SortDirection.ASC:
            stmt = stmt.order_by(sort_column.asc().nulls_last(), Contract.contract_number.asc())
        else:
            stmt = stmt.order_by(sort_column.desc().nulls_last(), Contract.contract_number.desc())

        if filter.offset:
            stmt = stmt.offset(filter.offset)
        if filter.limit is not None:
            stmt = stmt.limit(filter.limit)

        return [self._to_view(row) for row in self.session.execute(stmt)]

    def count_by_status(self) -> dict[ContractStatus, int]:
        """Number of contracts per status; every status is present."""
        counts = {status: 0 for status in ContractStatus}
        rows = self.session.execute(
            select(Contract.state, func.count(Contract.id)).group_by(Contract.state)
        )
        for state, count in rows:
            counts[status_of(LifecycleState(state))] += count
        return counts

    @staticmethod
    def _to_view(row) -> ContractDetailsView:
        contract, record = row
        current = LiquidationInfo.from_model(record) if record is not None else None
        return merge_details_view(ContractInfo.from_model(contract), current)
