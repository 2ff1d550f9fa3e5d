"""
Module: contract_kernel.models.history
Responsibility: ORM persistence for the per-contract audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: no UPDATE or DELETE (ORM immutability listener).
    - Every successful lifecycle transition writes exactly one row in the
      same transaction as the state change.

Audit relevance:
    Canonical order is timestamp descending, ties broken by
    contract_revision descending.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from contract_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from contract_kernel.models.contract import Contract


class HistoryAction(str, Enum):
    """Labels written to contract_history.action."""

    CREATED = "created"
    LIQUIDATED = "liquidated"
    LIQUIDATION_CANCELLED = "liquidation cancelled"
    CONTRACT_CANCELLED = "contract cancelled"
    DETAILS_EDITED = "details edited"


class ContractHistory(Base):
    """One audit entry."""

    __tablename__ = "contract_history"

    __table_args__ = (
        Index("idx_history_contract_ts", "contract_id", "timestamp"),
    )

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("contracts.id", ondelete="CASCADE"),
        nullable=False,
    )

    timestamp: Mapped[datetime] = mapped_column(nullable=False)

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    details: Mapped[str | None] = mapped_column(Text, nullable=True)

    actor_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    contract_revision: Mapped[int] = mapped_column(Integer, nullable=False)

    contract: Mapped[Contract] = relationship(
        back_populates="history",
        lazy="raise",
    )
