"""
ContractRegistry -- transactional facade over the contract kernel.

Responsibility:
    The external interface of the registry.  Each public method is one
    atomic unit of work: it opens a session, runs the lifecycle service or
    a selector, commits on success and rolls back on any failure.  Storage
    exceptions are translated into the kernel's typed errors.

Architecture position:
    Kernel > Services -- imperative shell, outermost kernel layer.
    Owns transaction boundaries; everything below it is flush-only.

Invariants enforced:
    - All-or-nothing: a failed operation leaves no contract, record,
      counter increment or history entry behind.
    - No retries: the kernel never re-runs a failed operation.  Callers
      may retry UnavailableError with the same idempotency key.
    - Idempotent create/liquidate: a duplicate idempotency key returns the
      row created by the first call, including when two calls race and the
      loser hits the unique constraint.

Failure modes:
    - ValidationError / StateError / NotFoundError: raised by the services,
      rolled back, re-raised unchanged.
    - ConflictError: a unique constraint fired (IntegrityError).
    - UnavailableError: OperationalError, InterfaceError or a DBAPIError
      that invalidated the connection.

Audit relevance:
    Every operation runs inside LogContext.bind(correlation_id=...,
    operation=..., contract_id=..., actor_id=...) so all log lines of one
    unit of work share a correlation ID.
"""

from __future__ import annotations

import time
from typing import Callable, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from contract_kernel.domain.clock import Clock, SystemClock
from contract_kernel.domain.dtos import (
    ContractDetailsView,
    ContractFilter,
    ContractInfo,
    HistoryEntryInfo,
    LiquidationInfo,
)
from contract_kernel.domain.identifiers import NumberingPolicy
from contract_kernel.domain.lifecycle import ContractStatus
from contract_kernel.exceptions import (
    ConflictError,
    LandContractError,
    UnavailableError,
    ValidationError,
)
from contract_kernel.logging_config import LogContext, get_logger
from contract_kernel.selectors.details_selector import DetailsSelector
from contract_kernel.selectors.history_selector import HistorySelector
from contract_kernel.services.contract_lifecycle import ContractLifecycleService
from contract_kernel.services.liquidation_ledger import LiquidationLedger

logger = get_logger("services.contract_registry")

T = TypeVar("T")


class ContractRegistry:
    """
    Public entry point: one transaction per call.

    Usage:
        registry = ContractRegistry(get_session_factory())
        info = registry.create_contract(
            "Phường Long Khánh", "Nguyễn Văn A", "12", "345", is_branch=False,
        )
        registry.liquidate_contract(info.id)
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        policy: NumberingPolicy | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._policy = policy or NumberingPolicy()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_contract(
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
        Create an Active contract with a new contract number.

        Raises:
            MissingFieldError: owner_name, sheet_number or plot_number blank.
        """

        def work(session: Session) -> ContractInfo:
            return self._lifecycle(session).create(
                ward,
                owner_name,
                sheet_number,
                plot_number,
                is_branch,
                notes,
                actor_id=actor_id,
                idempotency_key=idempotency_key,
            )

        replay = None
        if idempotency_key is not None:
            replay = lambda: self._read(  # noqa: E731
                lambda s: self._lifecycle(s).get_by_idempotency_key(idempotency_key)
            )

        return self._execute(
            "create_contract",
            work,
            actor_id=actor_id,
            idempotency_key=idempotency_key,
            replay=replay,
        )

    def liquidate_contract(
        self,
        contract_id: UUID,
        *,
        actor_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> LiquidationInfo:
        """
        Liquidate an Active contract, issuing a new liquidation number.

        Raises:
            StateError: contract is Liquidated or Cancelled.
            ContractNotFoundError: unknown contract.
        """

        def work(session: Session) -> LiquidationInfo:
            return self._lifecycle(session).liquidate(
                contract_id, actor_id=actor_id, idempotency_key=idempotency_key
            )

        replay = None
        if idempotency_key is not None:
            replay = lambda: self._replay_liquidation(contract_id, idempotency_key)  # noqa: E731

        return self._execute(
            "liquidate_contract",
            work,
            contract_id=contract_id,
            actor_id=actor_id,
            idempotency_key=idempotency_key,
            replay=replay,
        )

    def cancel_liquidation(
        self,
        contract_id: UUID,
        reason: str,
        *,
        actor_id: str | None = None,
    ) -> None:
        """
        Cancel the current liquidation.  Its number stays reserved forever.

        Raises:
            StateError: contract is not Liquidated.
            MissingFieldError: reason blank.
        """
        self._execute(
            "cancel_liquidation",
            lambda s: self._lifecycle(s).cancel_liquidation(
                contract_id, reason, actor_id=actor_id
            ),
            contract_id=contract_id,
            actor_id=actor_id,
        )

    def cancel_contract(
        self,
        contract_id: UUID,
        reason: str,
        *,
        actor_id: str | None = None,
    ) -> None:
        """
        Cancel an Active contract.  Terminal.

        Raises:
            StateError: contract is Liquidated or already Cancelled.
            MissingFieldError: reason blank.
        """
        self._execute(
            "cancel_contract",
            lambda s: self._lifecycle(s).cancel_contract(
                contract_id, reason, actor_id=actor_id
            ),
            contract_id=contract_id,
            actor_id=actor_id,
        )

    def update_contract_details(
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
    ) -> None:
        """
        Replace descriptive fields.  State and contract number are unchanged.

        Raises:
            StateError: contract is Cancelled.
        """
        self._execute(
            "update_contract_details",
            lambda s: self._lifecycle(s).edit_details(
                contract_id,
                ward,
                owner_name,
                sheet_number,
                plot_number,
                is_branch,
                notes,
                actor_id=actor_id,
            ),
            contract_id=contract_id,
            actor_id=actor_id,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_contract(self, contract_id: UUID) -> ContractInfo:
        return self._execute(
            "get_contract",
            lambda s: self._lifecycle(s).get(contract_id),
            contract_id=contract_id,
        )

    def get_contract_details_view(self, contract_id: UUID) -> ContractDetailsView:
        return self._execute(
            "get_contract_details_view",
            lambda s: DetailsSelector(s).resolve(contract_id),
            contract_id=contract_id,
        )

    def list_contract_details_views(
        self, filter: ContractFilter | None = None
    ) -> list[ContractDetailsView]:
        return self._execute(
            "list_contract_details_views",
            lambda s: DetailsSelector(s).list_views(filter),
        )

    def get_history(self, contract_id: UUID) -> list[HistoryEntryInfo]:
        """Audit entries, newest first."""
        return self._execute(
            "get_history",
            lambda s: HistorySelector(s).get_history(contract_id),
            contract_id=contract_id,
        )

    def get_liquidation_records(self, contract_id: UUID) -> list[LiquidationInfo]:
        """Every liquidation record of a contract, cancelled ones included."""
        return self._execute(
            "get_liquidation_records",
            lambda s: LiquidationLedger(s).records_for(contract_id),
            contract_id=contract_id,
        )

    def count_by_status(self) -> dict[ContractStatus, int]:
        return self._execute(
            "count_by_status",
            lambda s: DetailsSelector(s).count_by_status(),
        )

    # ------------------------------------------------------------------
    # Transaction handling
    # ------------------------------------------------------------------

    def _lifecycle(self, session: Session) -> ContractLifecycleService:
        return ContractLifecycleService(session, clock=self._clock, policy=self._policy)

    def _replay_liquidation(
        self, contract_id: UUID, idempotency_key: str
    ) -> LiquidationInfo | None:
        """Record written under idempotency_key, only if it liquidated contract_id."""
        existing = self._read(
            lambda s: LiquidationLedger(s).get_by_idempotency_key(idempotency_key)
        )
        if existing is not None and existing.contract_id != contract_id:
            raise ValidationError(
                "Idempotency key already used for another contract",
                field="idempotency_key",
            )
        return existing

    def _read(self, work: Callable[[Session], T]) -> T:
        session = self._session_factory()
        try:
            return work(session)
        finally:
            session.close()

    def _execute(
        self,
        operation: str,
        work: Callable[[Session], T],
        *,
        contract_id: UUID | None = None,
        actor_id: str | None = None,
        idempotency_key: str | None = None,
        replay: Callable[[], T | None] | None = None,
    ) -> T:
        """
        Run work in its own session and transaction.

        replay is consulted after a unique-constraint failure; when it
        finds the row written by a concurrent call with the same
        idempotency key, that row is returned instead of ConflictError.
        """
        with LogContext.bind(
            correlation_id=str(uuid4()),
            operation=operation,
            contract_id=str(contract_id) if contract_id else None,
            actor_id=actor_id,
            idempotency_key=idempotency_key,
        ):
            t0 = time.monotonic()
            session = self._session_factory()
            try:
                result = work(session)
                session.commit()
                logger.debug(
                    "operation_committed",
                    extra={"duration_ms": _elapsed_ms(t0)},
                )
                return result

            except LandContractError as exc:
                session.rollback()
                logger.warning(
                    "operation_rejected",
                    extra={"error_code": exc.code, "error": str(exc)},
                )
                raise

            except IntegrityError as exc:
                session.rollback()
                if replay is not None:
                    try:
                        existing = replay()
                    except LandContractError as rejected:
                        logger.warning(
                            "operation_rejected",
                            extra={"error_code": rejected.code, "error": str(rejected)},
                        )
                        raise rejected from exc
                    if existing is not None:
                        logger.info("operation_replayed_after_conflict")
                        return existing
                logger.error(
                    "operation_conflict",
                    extra={"duration_ms": _elapsed_ms(t0)},
                    exc_info=True,
                )
                raise ConflictError(operation, str(exc.orig)) from exc

            except (OperationalError, InterfaceError) as exc:
                session.rollback()
                logger.error(
                    "operation_unavailable",
                    extra={"duration_ms": _elapsed_ms(t0)},
                    exc_info=True,
                )
                raise UnavailableError(operation, str(exc.orig)) from exc

            except DBAPIError as exc:
                session.rollback()
                logger.error(
                    "operation_failed",
                    extra={"duration_ms": _elapsed_ms(t0)},
                    exc_info=True,
                )
                if exc.connection_invalidated:
                    raise UnavailableError(operation, str(exc.orig)) from exc
                raise

            except Exception:
                session.rollback()
                logger.error(
                    "operation_failed",
                    extra={"duration_ms": _elapsed_ms(t0)},
                    exc_info=True,
                )
                raise

            finally:
                session.close()


def _elapsed_ms(t0: float) -> float:
    return round((time.monotonic() - t0) * 1000, 2)
