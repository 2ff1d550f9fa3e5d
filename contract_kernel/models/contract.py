"""
Module: contract_kernel.models.contract
Responsibility: ORM persistence for land-use contracts.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - contract_number is unique and never changes after insert
      (UNIQUE constraint + ORM immutability listener).
    - created_at never changes after insert.
    - Rows are never deleted.
    - cancellation_reason is present iff state is CANCELLED (maintained by
      ContractLifecycleService).
    - revision increases by one on every lifecycle write, under the row lock.

Failure modes:
    - IntegrityError on duplicate contract_number or idempotency_key.
    - ImmutabilityViolationError on change of contract_number/created_at or
      on DELETE.

Audit relevance:
    The contract row holds current state only; every change to it is paired
    with a ContractHistory row written in the same transaction.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from contract_kernel.db.base import Base
from contract_kernel.domain.lifecycle import (
    LifecycleState,
    is_liquidation_cancelled,
    status_of,
)

if TYPE_CHECKING:
    from contract_kernel.models.history import ContractHistory
    from contract_kernel.models.liquidation import LiquidationRecord


class Contract(Base):
    """
    A land-use contract.

    Guarantees:
        - state holds a LifecycleState value; status and
          is_liquidation_cancelled are derived from it.
    """

    __tablename__ = "contracts"

    __table_args__ = (
        Index("idx_contract_state", "state"),
        Index("idx_contract_ward", "ward"),
        Index("idx_contract_created", "created_at"),
        Index("idx_contract_owner", "owner_name"),
    )

    contract_number: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        unique=True,
    )

    ward: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_name: Mapped[str] = mapped_column(String(255), nullable=False)
    sheet_number: Mapped[str] = mapped_column(String(50), nullable=False)
    plot_number: Mapped[str] = mapped_column(String(50), nullable=False)

    is_branch: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    state: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=LifecycleState.ACTIVE.value,
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Present iff state is CANCELLED
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    revision: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # Caller-supplied key making create_contract safe to retry
    idempotency_key: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
    )

    liquidations: Mapped[list[LiquidationRecord]] = relationship(
        back_populates="contract",
        cascade="save-update, merge",
        passive_deletes=True,
        lazy="raise",
    )

    history: Mapped[list[ContractHistory]] = relationship(
        back_populates="contract",
        cascade="save-update, merge",
        passive_deletes=True,
        lazy="raise",
    )

    @property
    def lifecycle_state(self) -> LifecycleState:
        return LifecycleState(self.state)

    @property
    def status(self):
        return status_of(self.lifecycle_state)

    @property
    def is_liquidation_cancelled(self) -> bool:
        return is_liquidation_cancelled(self.lifecycle_state)

    def __repr__(self) -> str:
        return f"<Contract {self.contract_number} {self.state}>"
