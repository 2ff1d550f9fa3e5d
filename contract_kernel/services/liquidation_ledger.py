"""
LiquidationLedger -- append-only store of liquidation records.

Responsibility:
    Appends a record for every liquidation, marks a record cancelled when a
    liquidation is reversed, and answers "which record is current" for a
    contract.

Architecture position:
    Kernel > Services -- imperative shell.  Writes are made only by
    ContractLifecycleService within its transaction.

Invariants enforced:
    - Records are never deleted; a cancelled record keeps its number, so
      that number is never issued again.
    - mark_cancelled is the only mutation and applies at most once.
    - The current record is the one with the greatest created_at, ties
      broken by contract_revision, regardless of is_cancelled.

Failure modes:
    - LiquidationRecordNotFoundError when mark_cancelled targets an unknown ID.
    - StateError when the record is already cancelled.
    - ValidationError when the reason is blank.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from contract_kernel.domain.dtos import LiquidationInfo
from contract_kernel.domain.validation import require_text
from contract_kernel.exceptions import LiquidationRecordNotFoundError, StateError
from contract_kernel.logging_config import get_logger
from contract_kernel.models.liquidation import LiquidationRecord
from contract_kernel.services.base import BaseService

logger = get_logger("services.liquidation_ledger")


class LiquidationLedger(BaseService):
    """Append-only liquidation records.  Flush-only."""

    def append(
        self,
        contract_id: UUID,
        liquidation_number: str,
        liquidation_date: datetime,
        contract_revision: int,
        idempotency_key: str | None = None,
    ) -> LiquidationInfo:
        record = LiquidationRecord(
            contract_id=contract_id,
            liquidation_number=liquidation_number,
            liquidation_date=liquidation_date,
            is_cancelled=False,
            cancellation_reason=None,
            created_at=liquidation_date,
            contract_revision=contract_revision,
            idempotency_key=idempotency_key,
        )
        self.session.add(record)
        self.session.flush()

        logger.info(
            "liquidation_record_appended",
            extra={
                "contract_id": str(contract_id),
                "liquidation_number": liquidation_number,
            },
        )
        return LiquidationInfo.from_model(record)

    def mark_cancelled(self, record_id: UUID, reason: str) -> LiquidationInfo:
        reason = require_text(reason, "reason")
        record = self.session.execute(
            select(LiquidationRecord)
            .where(LiquidationRecord.id == record_id)
            .with_for_update()
        ).scalar_one_or_none()
        if record is None:
            raise LiquidationRecordNotFoundError(str(record_id))
        if record.is_cancelled:
            raise StateError(
                f"Liquidation {record.liquidation_number} is already cancelled"
            )

        record.is_cancelled = True
        record.cancellation_reason = reason
        self.session.flush()

        logger.info(
            "liquidation_record_cancelled",
            extra={
                "contract_id": str(record.contract_id),
                "liquidation_number": record.liquidation_number,
            },
        )
        return LiquidationInfo.from_model(record)

    def current_for(self, contract_id: UUID) -> LiquidationInfo | None:
        record = self._current_record(contract_id)
        return LiquidationInfo.from_model(record) if record is not None else None

    def records_for(self, contract_id: UUID) -> list[LiquidationInfo]:
        """All records of a contract, newest first."""
        rows = self.session.execute(
            select(LiquidationRecord)
            .where(LiquidationRecord.contract_id == contract_id)
            .order_by(
                LiquidationRecord.created_at.desc(),
                LiquidationRecord.contract_revision.desc(),
            )
        ).scalars()
        return [LiquidationInfo.from_model(r) for r in rows]

    def get_by_idempotency_key(self, key: str) -> LiquidationInfo | None:
        record = self.session.execute(
            select(LiquidationRecord).where(LiquidationRecord.idempotency_key == key)
        ).scalar_one_or_none()
        return LiquidationInfo.from_model(record) if record is not None else None

    def _current_record(self, contract_id: UUID) -> LiquidationRecord | None:
        return self.session.execute(
            select(LiquidationRecord)
            .where(LiquidationRecord.contract_id == contract_id)
            .order_by(
                LiquidationRecord.created_at.desc(),
                LiquidationRecord.contract_revision.desc(),
            )
            .limit(1)
        ).scalar_one_or_none()
