"""
HistoryRecorder -- append-only audit entries for contract transitions.

Responsibility:
    Writes one ContractHistory row per successful lifecycle transition.

Architecture position:
    Kernel > Services -- imperative shell.  Called only by
    ContractLifecycleService, inside the transaction of the transition it
    describes, so the entry commits or rolls back with the state change.

Invariants enforced:
    - Flush-only: never commits or rolls back.
    - Entries are never updated or deleted (ORM immutability listener).
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from contract_kernel.domain.dtos import HistoryEntryInfo
from contract_kernel.logging_config import get_logger
from contract_kernel.models.history import ContractHistory, HistoryAction
from contract_kernel.services.base import BaseService

logger = get_logger("services.history")


class HistoryRecorder(BaseService):
    """Appends audit entries to contract_history."""

    def record(
        self,
        contract_id: UUID,
        action: HistoryAction,
        timestamp: datetime,
        contract_revision: int,
        details: str | None = None,
        actor_id: str | None = None,
    ) -> HistoryEntryInfo:
        entry = ContractHistory(
            contract_id=contract_id,
            timestamp=timestamp,
            action=action.value,
            details=details,
            actor_id=actor_id,
            contract_revision=contract_revision,
        )
        self.session.add(entry)
        self.session.flush()

        logger.debug(
            "history_recorded",
            extra={
                "contract_id": str(contract_id),
                "action": action.value,
                "contract_revision": contract_revision,
            },
        )
        return HistoryEntryInfo.from_model(entry)
