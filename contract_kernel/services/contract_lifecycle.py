"""
ContractLifecycleService -- the only writer of contract state.

Responsibility:
    Creates contracts and moves them through the lifecycle: liquidate,
    cancel a liquidation, cancel the contract, edit details.  Each
    operation obtains a location code, allocates a sequence value where a
    number is issued, renders the identifier, persists the state change and
    records exactly one history entry.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by ContractRegistry, which owns the transaction.  This service
    is flush-only; everything it writes commits or rolls back together.

Invariants enforced:
    - Guarded transitions: every operation is checked against the
      lifecycle table (domain.lifecycle.TRANSITIONS) after the contract
      row is locked, so two concurrent transitions of one contract see
      each other's result.
    - Never-reuse: a liquidation number is allocated fresh on every
      liquidation, including re-liquidation after a cancelled one.
    - Input is validated before any lock is taken or number allocated.
    - Every transition bumps Contract.revision and writes one history
      entry carrying that revision.

Failure modes:
    - MissingFieldError: owner/sheet/plot or a reason is blank.
    - ContractNotFoundError: unknown contract ID.
    - IllegalTransitionError: operation not allowed from the current state.
    - ValidationError: an idempotency key reused for a different contract.

Audit relevance:
    Each transition is logged with contract id, number and resulting state,
    and persisted to contract_history in the same transaction.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from contract_kernel.domain.clock import Clock, SystemClock
from contract_kernel.domain.dtos import ContractInfo, LiquidationInfo
from contract_kernel.domain.identifiers import IdentifierSeries, NumberingPolicy
from contract_kernel.domain.lifecycle import (
    INITIAL_STATE,
    LifecycleOperation,
    LifecycleState,
    next_state,
)
from contract_kernel.domain.validation import optional_text, require_text
from contract_kernel.exceptions import (
    ContractNotFoundError,
    StateError,
    ValidationError,
)
from contract_kernel.logging_config import get_logger
from contract_kernel.models.contract import Contract
from contract_kernel.models.history import HistoryAction
from contract_kernel.services.base import BaseService
from contract_kernel.services.history_recorder import HistoryRecorder
from contract_kernel.services.liquidation_ledger import LiquidationLedger
from contract_kernel.services.sequence_service import SequenceService

logger = get_logger("services.contract_lifecycle")

# Fields covered by edit_details, in the order they are reported
EDITABLE_FIELDS = ("ward", "owner_name", "sheet_number", "plot_number", "is_branch", "notes")


class ContractLifecycleService(BaseService):
    """
    State machine over contracts.  Flush-only.

    Non-goals:
        - Does NOT commit, roll back or retry.
        - Does NOT renumber a contract when its ward or branch flag is
          edited; the issued contract number is permanent.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: NumberingPolicy | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._policy = policy or NumberingPolicy()
        self._sequences = SequenceService(session)
        self._ledger = LiquidationLedger(session)
        self._history = HistoryRecorder(session)

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    def create(
        self,
        ward: str,
        owner_name: str,
        sheet_number: str,
        plot_number: str,
        is_branch: bool,
        notes: str | None = None,
        *,
        actor_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> ContractInfo:
        """
        Register a new Active contract with a freshly allocated number.

        A repeated call with an idempotency_key already used returns the
        existing contract and allocates nothing.
        """
        owner_name = require_text(owner_name, "owner_name")
        sheet_number = require_text(sheet_number, "sheet_number")
        plot_number = require_text(plot_number, "plot_number")
        ward = (ward or "").strip()
        notes = optional_text(notes)

        if idempotency_key is not None:
            existing = self.get_by_idempotency_key(idempotency_key)
            if existing is not None:
                logger.info(
                    "contract_create_replayed",
                    extra={
                        "contract_id": str(existing.id),
                        "contract_number": existing.contract_number,
                    },
                )
                return existing

        now = self._clock.now_utc()
        year = self._policy.allocation_year(now)
        sequence = self._sequences.allocate_next(IdentifierSeries.CONTRACT, year)
        contract_number = self._policy.render(
            IdentifierSeries.CONTRACT, sequence, year, ward, is_branch
        )

        contract = Contract(
            contract_number=contract_number,
            ward=ward,
            owner_name=owner_name,
            sheet_number=sheet_number,
            plot_number=plot_number,
            is_branch=bool(is_branch),
            state=INITIAL_STATE.value,
            notes=notes,
            cancellation_reason=None,
            created_at=now,
            updated_at=now,
            revision=1,
            idempotency_key=idempotency_key,
        )
        self.session.add(contract)
        self.session.flush()

        self._history.record(
            contract.id,
            HistoryAction.CREATED,
            timestamp=now,
            contract_revision=contract.revision,
            details=contract_number,
            actor_id=actor_id,
        )

        logger.info(
            "contract_created",
            extra={
                "contract_id": str(contract.id),
                "contract_number": contract_number,
                "ward": ward,
                "is_branch": bool(is_branch),
            },
        )
        return ContractInfo.from_model(contract)

    # ------------------------------------------------------------------
    # liquidate
    # ------------------------------------------------------------------

    def liquidate(
        self,
        contract_id: UUID,
        *,
        actor_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> LiquidationInfo:
        """
        Liquidate an Active contract, issuing a new liquidation number.

        Also used for re-liquidation after a cancelled liquidation: the
        cancelled record keeps its number and a new one is allocated.
        """
        contract = self._lock(contract_id)

        # Checked under the contract lock so that racing retries see the
        # record written by whichever committed first.
        if idempotency_key is not None:
            existing = self._ledger.get_by_idempotency_key(idempotency_key)
            if existing is not None:
                if existing.contract_id != contract.id:
                    raise ValidationError(
                        "Idempotency key already used for another contract",
                        field="idempotency_key",
                    )
                logger.info(
                    "liquidation_replayed",
                    extra={"liquidation_number": existing.liquidation_number},
                )
                return existing

        target = next_state(
            LifecycleOperation.LIQUIDATE, contract.lifecycle_state, contract.id
        )

        now = self._clock.now_utc()
        year = self._policy.allocation_year(now)
        sequence = self._sequences.allocate_next(IdentifierSeries.LIQUIDATION, year)
        liquidation_number = self._policy.render(
            IdentifierSeries.LIQUIDATION, sequence, year, contract.ward, contract.is_branch
        )

        self._advance(contract, target, now)
        record = self._ledger.append(
            contract.id,
            liquidation_number,
            liquidation_date=now,
            contract_revision=contract.revision,
            idempotency_key=idempotency_key,
        )
        self._history.record(
            contract.id,
            HistoryAction.LIQUIDATED,
            timestamp=now,
            contract_revision=contract.revision,
            details=liquidation_number,
            actor_id=actor_id,
        )

        logger.info(
            "contract_liquidated",
            extra={
                "contract_id": str(contract.id),
                "contract_number": contract.contract_number,
                "liquidation_number": liquidation_number,
            },
        )
        return record

    # ------------------------------------------------------------------
    # cancel liquidation
    # ------------------------------------------------------------------

    def cancel_liquidation(
        self,
        contract_id: UUID,
        reason: str,
        *,
        actor_id: str | None = None,
    ) -> LiquidationInfo:
        """Reverse the current liquidation; the contract becomes Active again."""
        reason = require_text(reason, "reason")
        contract = self._lock(contract_id)
        target = next_state(
            LifecycleOperation.CANCEL_LIQUIDATION, contract.lifecycle_state, contract.id
        )

        current = self._ledger.current_for(contract.id)
        if current is None or current.is_cancelled:
            # A LIQUIDATED contract always has a live current record
            raise StateError(
                f"Contract {contract.id} has no active liquidation to cancel"
            )

        now = self._clock.now_utc()
        cancelled = self._ledger.mark_cancelled(current.id, reason)
        self._advance(contract, target, now)
        self._history.record(
            contract.id,
            HistoryAction.LIQUIDATION_CANCELLED,
            timestamp=now,
            contract_revision=contract.revision,
            details=reason,
            actor_id=actor_id,
        )

        logger.warning(
            "liquidation_cancelled",
            extra={
                "contract_id": str(contract.id),
                "liquidation_number": cancelled.liquidation_number,
            },
        )
        return cancelled

    # ------------------------------------------------------------------
    # cancel contract
    # ------------------------------------------------------------------

    def cancel_contract(
        self,
        contract_id: UUID,
        reason: str,
        *,
        actor_id: str | None = None,
    ) -> ContractInfo:
        """Cancel an Active contract.  Cancelled is terminal."""
        reason = require_text(reason, "reason")
        contract = self._lock(contract_id)
        target = next_state(
            LifecycleOperation.CANCEL_CONTRACT, contract.lifecycle_state, contract.id
        )

        now = self._clock.now_utc()
        contract.cancellation_reason = reason
        self._advance(contract, target, now)
        self._history.record(
            contract.id,
            HistoryAction.CONTRACT_CANCELLED,
            timestamp=now,
            contract_revision=contract.revision,
            details=reason,
            actor_id=actor_id,
        )

        logger.warning(
            "contract_cancelled",
            extra={
                "contract_id": str(contract.id),
                "contract_number": contract.contract_number,
            },
        )
        return ContractInfo.from_model(contract)

    # ------------------------------------------------------------------
    # edit details
    # ------------------------------------------------------------------

    def edit_details(
        self,
        contract_id: UUID,
        ward: str,
        owner_name: str,
        sheet_number: str,
        plot_number: str,
        is_branch: bool,
        notes: str | None = None,
        *,
        actor_id: str | None = None,
    ) -> ContractInfo:
        """
        Replace the descriptive fields of a non-cancelled contract.

        The state and the contract number are unchanged.  The history entry
        lists the fields that actually changed.
        """
        new_values = {
            "ward": (ward or "").strip(),
            "owner_name": require_text(owner_name, "owner_name"),
            "sheet_number": require_text(sheet_number, "sheet_number"),
            "plot_number": require_text(plot_number, "plot_number"),
            "is_branch": bool(is_branch),
            "notes": optional_text(notes),
        }
        contract = self._lock(contract_id)
        target = next_state(
            LifecycleOperation.EDIT_DETAILS, contract.lifecycle_state, contract.id
        )

        changed = [f for f in EDITABLE_FIELDS if getattr(contract, f) != new_values[f]]
        for name in changed:
            setattr(contract, name, new_values[name])

        now = self._clock.now_utc()
        self._advance(contract, target, now)
        self._history.record(
            contract.id,
            HistoryAction.DETAILS_EDITED,
            timestamp=now,
            contract_revision=contract.revision,
            details=", ".join(changed) if changed else None,
            actor_id=actor_id,
        )

        logger.info(
            "contract_details_edited",
            extra={"contract_id": str(contract.id), "changed_fields": changed},
        )
        return ContractInfo.from_model(contract)

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------

    def get(self, contract_id: UUID) -> ContractInfo:
        contract = self.session.get(Contract, contract_id)
        if contract is None:
            raise ContractNotFoundError(str(contract_id))
        return ContractInfo.from_model(contract)

    def get_by_idempotency_key(self, key: str) -> ContractInfo | None:
        contract = self.session.execute(
            select(Contract).where(Contract.idempotency_key == key)
        ).scalar_one_or_none()
        return ContractInfo.from_model(contract) if contract is not None else None

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _lock(self, contract_id: UUID) -> Contract:
        """Load the contract with a row lock held until the transaction ends."""
        contract = self.session.execute(
            select(Contract)
            .where(Contract.id == contract_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if contract is None:
            raise ContractNotFoundError(str(contract_id))
        return contract

    def _advance(self, contract: Contract, target: LifecycleState, now: datetime) -> None:
        contract.state = target.value
        contract.revision += 1
        contract.updated_at = now
        self.session.flush()
