"""
Module: contract_kernel.selectors.history_selector
Responsibility: Read access to a contract's audit trail, newest first.
Architecture position: Kernel > Selectors.  Read-only.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from contract_kernel.domain.dtos import HistoryEntryInfo
from contract_kernel.exceptions import ContractNotFoundError
from contract_kernel.models.contract import Contract
from contract_kernel.models.history import ContractHistory
from contract_kernel.selectors.base import BaseSelector


class HistorySelector(BaseSelector):
    def get_history(self, contract_id: UUID) -> list[HistoryEntryInfo]:
        """
        Entries ordered by timestamp descending, ties by revision descending.

        Raises:
            ContractNotFoundError: If the contract does not exist.
        """
        exists = self.session.execute(
            select(Contract.id).where(Contract.id == contract_id)
        ).scalar_one_or_none()
        if exists is None:
            raise ContractNotFoundError(str(contract_id))

        rows = self.session.execute(
            select(ContractHistory)
            .where(ContractHistory.contract_id == contract_id)
            .order_by(
                ContractHistory.timestamp.desc(),
                ContractHistory.contract_revision.desc(),
            )
        ).scalars()
        return [HistoryEntryInfo.from_model(entry) for entry in rows]
