"""
Module: contract_kernel.models.liquidation
Responsibility: ORM persistence for the append-only liquidation ledger.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - liquidation_number is unique and never reassigned, including after the
      record is cancelled.
    - Rows are never deleted.  The only permitted update is is_cancelled
      False -> True together with cancellation_reason.
    - A contract may own any number of records; the current one is the most
      recently created (ties broken by contract_revision).

Failure modes:
    - IntegrityError on duplicate liquidation_number or idempotency_key.
    - ImmutabilityViolationError on forbidden UPDATE or any DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from contract_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from contract_kernel.models.contract import Contract


class LiquidationRecord(Base):
    """One issued liquidation of a contract."""

    __tablename__ = "liquidation_records"

    __table_args__ = (
        Index("idx_liquidation_contract_created", "contract_id", "created_at"),
    )

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("contracts.id", ondelete="CASCADE"),
        nullable=False,
    )

    liquidation_number: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        unique=True,
    )

    liquidation_date: Mapped[datetime] = mapped_column(nullable=False)

    is_cancelled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    # Present iff is_cancelled
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    # Contract revision produced by the liquidation that wrote this record
    contract_revision: Mapped[int] = mapped_column(Integer, nullable=False)

    idempotency_key: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
    )

    contract: Mapped[Contract] = relationship(
        back_populates="liquidations",
        lazy="raise",
    )

    def __repr__(self) -> str:
        flag = " cancelled" if self.is_cancelled else ""
        return f"<LiquidationRecord {self.liquidation_number}{flag}>"
