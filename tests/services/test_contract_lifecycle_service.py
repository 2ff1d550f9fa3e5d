"""
ContractLifecycleService: numbering, guarded transitions and history.

All tests run on the rollback-isolated session; the service only flushes.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from contract_kernel.domain.identifiers import IdentifierSeries
from contract_kernel.domain.lifecycle import ContractStatus, LifecycleState
from contract_kernel.exceptions import (
    ContractNotFoundError,
    IllegalTransitionError,
    MissingFieldError,
    StateError,
    ValidationError,
)
from contract_kernel.models.contract import Contract
from contract_kernel.models.history import ContractHistory, HistoryAction
from contract_kernel.models.liquidation import LiquidationRecord
from contract_kernel.selectors.details_selector import DetailsSelector
from contract_kernel.selectors.history_selector import HistorySelector
from contract_kernel.services.sequence_service import SequenceService
from tests.conftest import WARD_BV, WARD_LK


def _history_actions(session, contract_id):
    return [e.action for e in HistorySelector(session).get_history(contract_id)]


class TestCreate:

    def test_first_contract_of_year(self, make_contract):
        info = make_contract()
        assert info.contract_number == "01/25.HĐ.LK"
        assert info.state is LifecycleState.ACTIVE
        assert info.status is ContractStatus.ACTIVE
        assert info.is_liquidation_cancelled is False
        assert info.revision == 1
        assert info.created_at == datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)

    def test_numbers_increment_across_wards(self, make_contract):
        first = make_contract(ward=WARD_LK)
        second = make_contract(ward=WARD_BV)
        assert first.contract_number == "01/25.HĐ.LK"
        assert second.contract_number == "02/25.HĐ.BV"

    def test_branch_contract_uses_branch_code(self, make_contract):
        info = make_contract(ward=WARD_BV, is_branch=True)
        assert info.contract_number == "01/25.HĐ.CNLK"

    def test_unknown_ward_uses_fallback_code(self, make_contract):
        assert make_contract(ward="Xã Bình Lộc Mới").contract_number == "01/25.HĐ.XX"

    def test_fields_are_stripped(self, make_contract):
        info = make_contract(owner_name="  Lê Văn Cường  ", notes="   ")
        assert info.owner_name == "Lê Văn Cường"
        assert info.notes is None

    @pytest.mark.parametrize("field", ["owner_name", "sheet_number", "plot_number"])
    def test_blank_required_field_allocates_nothing(self, session, make_contract, field):
        with pytest.raises(MissingFieldError) as exc_info:
            make_contract(**{field: "  "})
        assert exc_info.value.field == field
        assert SequenceService(session).current_value(IdentifierSeries.CONTRACT, 2025) == 0
        assert session.scalar(select(func.count(Contract.id))) == 0

    def test_history_entry_written(self, session, make_contract, test_actor_id):
        info = make_contract()
        entries = HistorySelector(session).get_history(info.id)
        assert len(entries) == 1
        assert entries[0].action == HistoryAction.CREATED.value
        assert entries[0].details == info.contract_number
        assert entries[0].actor_id == test_actor_id
        assert entries[0].contract_revision == 1

    def test_year_follows_office_timezone(self, make_contract, deterministic_clock):
        deterministic_clock.set_time(datetime(2025, 12, 31, 18, 0, tzinfo=timezone.utc))
        assert make_contract().contract_number == "01/26.HĐ.LK"

    def test_idempotent_create_returns_existing(self, session, make_contract):
        first = make_contract(idempotency_key="form-17")
        again = make_contract(owner_name="Someone Else", idempotency_key="form-17")
        assert again == first
        assert SequenceService(session).current_value(IdentifierSeries.CONTRACT, 2025) == 1

    def test_created_logged(self, make_contract, captured_logs):
        info = make_contract()
        created = [r for r in captured_logs() if r["message"] == "contract_created"]
        assert created[0]["contract_number"] == info.contract_number


class TestLiquidate:

    def test_liquidate_active_contract(self, session, lifecycle, make_contract):
        info = make_contract()
        record = lifecycle.liquidate(info.id)
        assert record.liquidation_number == "01/25.TL.LK"
        assert record.is_cancelled is False
        assert record.contract_id == info.id

        contract = lifecycle.get(info.id)
        assert contract.state is LifecycleState.LIQUIDATED
        assert contract.status is ContractStatus.LIQUIDATED
        assert contract.revision == 2
        assert record.contract_revision == 2

    def test_liquidation_number_uses_current_ward(self, lifecycle, make_contract):
        info = make_contract(ward=WARD_LK)
        lifecycle.edit_details(info.id, WARD_BV, info.owner_name, "12", "345", False)
        assert lifecycle.liquidate(info.id).liquidation_number == "01/25.TL.BV"
        # Contract number is never rewritten by an edit
        assert lifecycle.get(info.id).contract_number == "01/25.HĐ.LK"

    def test_branch_liquidation(self, lifecycle, make_contract):
        info = make_contract(is_branch=True)
        assert lifecycle.liquidate(info.id).liquidation_number == "01/25.TL.CNLK"

    def test_double_liquidation_rejected(self, session, lifecycle, make_contract):
        info = make_contract()
        lifecycle.liquidate(info.id)
        with pytest.raises(IllegalTransitionError):
            lifecycle.liquidate(info.id)
        assert SequenceService(session).current_value(IdentifierSeries.LIQUIDATION, 2025) == 1

    def test_cancelled_contract_cannot_be_liquidated(self, lifecycle, make_contract):
        info = make_contract()
        lifecycle.cancel_contract(info.id, "trùng hồ sơ")
        with pytest.raises(StateError):
            lifecycle.liquidate(info.id)

    def test_unknown_contract(self, lifecycle):
        with pytest.raises(ContractNotFoundError):
            lifecycle.liquidate(uuid4())

    def test_idempotent_liquidation(self, session, lifecycle, make_contract):
        info = make_contract()
        first = lifecycle.liquidate(info.id, idempotency_key="liq-1")
        again = lifecycle.liquidate(info.id, idempotency_key="liq-1")
        assert again == first
        assert session.scalar(select(func.count(LiquidationRecord.id))) == 1

    def test_idempotency_key_of_other_contract_rejected(self, lifecycle, make_contract):
        a = make_contract()
        b = make_contract()
        lifecycle.liquidate(a.id, idempotency_key="liq-shared")
        with pytest.raises(ValidationError):
            lifecycle.liquidate(b.id, idempotency_key="liq-shared")


class TestCancelLiquidation:

    def test_cancel_returns_contract_to_active(self, session, lifecycle, make_contract):
        info = make_contract()
        lifecycle.liquidate(info.id)
        cancelled = lifecycle.cancel_liquidation(info.id, "clerical error")

        assert cancelled.is_cancelled is True
        assert cancelled.cancellation_reason == "clerical error"
        contract = lifecycle.get(info.id)
        assert contract.state is LifecycleState.ACTIVE_LIQUIDATION_REVERSED
        assert contract.status is ContractStatus.ACTIVE
        assert contract.is_liquidation_cancelled is True

    def test_requires_liquidated_state(self, lifecycle, make_contract):
        info = make_contract()
        with pytest.raises(StateError):
            lifecycle.cancel_liquidation(info.id, "nothing to cancel")

    def test_blank_reason_rejected_before_lock(self, lifecycle, make_contract):
        info = make_contract()
        lifecycle.liquidate(info.id)
        with pytest.raises(MissingFieldError):
            lifecycle.cancel_liquidation(info.id, " ")
        assert lifecycle.get(info.id).state is LifecycleState.LIQUIDATED

    def test_cannot_cancel_twice(self, lifecycle, make_contract):
        info = make_contract()
        lifecycle.liquidate(info.id)
        lifecycle.cancel_liquidation(info.id, "first")
        with pytest.raises(StateError):
            lifecycle.cancel_liquidation(info.id, "second")


class TestCancelContract:

    def test_cancel_active(self, lifecycle, make_contract):
        info = make_contract()
        cancelled = lifecycle.cancel_contract(info.id, "khách hàng rút hồ sơ")
        assert cancelled.status is ContractStatus.CANCELLED
        assert cancelled.cancellation_reason == "khách hàng rút hồ sơ"

    def test_cancel_after_reversed_liquidation(self, lifecycle, make_contract):
        info = make_contract()
        lifecycle.liquidate(info.id)
        lifecycle.cancel_liquidation(info.id, "sai ngày")
        assert lifecycle.cancel_contract(info.id, "hủy").state is LifecycleState.CANCELLED

    def test_liquidated_contract_cannot_be_cancelled(self, lifecycle, make_contract):
        info = make_contract()
        lifecycle.liquidate(info.id)
        with pytest.raises(IllegalTransitionError):
            lifecycle.cancel_contract(info.id, "too late")

    def test_cancelled_is_terminal(self, lifecycle, make_contract):
        info = make_contract()
        lifecycle.cancel_contract(info.id, "hủy")
        with pytest.raises(StateError):
            lifecycle.cancel_contract(info.id, "again")
        with pytest.raises(StateError):
            lifecycle.edit_details(info.id, WARD_LK, "A", "1", "2", False)

    def test_blank_reason(self, lifecycle, make_contract):
        info = make_contract()
        with pytest.raises(MissingFieldError):
            lifecycle.cancel_contract(info.id, "")


class TestEditDetails:

    def test_edit_keeps_state_and_number(self, session, lifecycle, make_contract):
        info = make_contract()
        lifecycle.liquidate(info.id)
        edited = lifecycle.edit_details(
            info.id, WARD_LK, "Phạm Thị Dung", "12", "346", False, "ghi chú"
        )
        assert edited.state is LifecycleState.LIQUIDATED
        assert edited.contract_number == info.contract_number
        assert edited.owner_name == "Phạm Thị Dung"
        assert edited.notes == "ghi chú"
        assert edited.revision == 3

    def test_history_lists_changed_fields(self, session, lifecycle, make_contract):
        info = make_contract()
        lifecycle.edit_details(info.id, WARD_BV, info.owner_name, "12", "999", True)
        entry = HistorySelector(session).get_history(info.id)[0]
        assert entry.action == HistoryAction.DETAILS_EDITED.value
        assert entry.details == "ward, plot_number, is_branch"

    def test_no_change_still_recorded(self, session, lifecycle, make_contract):
        info = make_contract()
        lifecycle.edit_details(info.id, info.ward, info.owner_name, "12", "345", False)
        entry = HistorySelector(session).get_history(info.id)[0]
        assert entry.action == HistoryAction.DETAILS_EDITED.value
        assert entry.details is None

    def test_blank_owner_rejected(self, lifecycle, make_contract):
        info = make_contract()
        with pytest.raises(MissingFieldError):
            lifecycle.edit_details(info.id, WARD_LK, "", "12", "345", False)


class TestFullScenario:

    def test_numbers_never_reappear(self, session, lifecycle, make_contract, deterministic_clock):
        first = make_contract(ward=WARD_LK)
        deterministic_clock.tick()
        second = make_contract(ward=WARD_LK)
        assert first.contract_number == "01/25.HĐ.LK"
        assert second.contract_number == "02/25.HĐ.LK"

        deterministic_clock.tick()
        liq1 = lifecycle.liquidate(first.id)
        assert liq1.liquidation_number == "01/25.TL.LK"

        deterministic_clock.tick()
        lifecycle.cancel_liquidation(first.id, "clerical error")
        view = DetailsSelector(session).resolve(first.id)
        assert view.status is ContractStatus.ACTIVE
        assert view.is_liquidation_cancelled is True
        assert view.cancellation_reason == "clerical error"
        assert view.liquidation_number == "01/25.TL.LK"

        deterministic_clock.tick()
        liq2 = lifecycle.liquidate(first.id)
        assert liq2.liquidation_number == "02/25.TL.LK"

        view = DetailsSelector(session).resolve(first.id)
        assert view.status is ContractStatus.LIQUIDATED
        assert view.liquidation_number == "02/25.TL.LK"
        assert view.is_liquidation_cancelled is False
        assert view.cancellation_reason is None

        assert _history_actions(session, first.id) == [
            HistoryAction.LIQUIDATED.value,
            HistoryAction.LIQUIDATION_CANCELLED.value,
            HistoryAction.LIQUIDATED.value,
            HistoryAction.CREATED.value,
        ]
        assert session.scalar(
            select(func.count(ContractHistory.id)).where(ContractHistory.contract_id == first.id)
        ) == 4

    def test_same_second_history_ordered_by_revision(self, session, lifecycle, make_contract):
        info = make_contract()
        lifecycle.liquidate(info.id)
        lifecycle.cancel_liquidation(info.id, "x")
        revisions = [e.contract_revision for e in HistorySelector(session).get_history(info.id)]
        assert revisions == [3, 2, 1]

    def test_cancelled_numbers_survive_year_rollover(
        self, session, lifecycle, make_contract, deterministic_clock
    ):
        info = make_contract()
        lifecycle.liquidate(info.id)
        lifecycle.cancel_liquidation(info.id, "x")

        deterministic_clock.set_time(datetime(2026, 2, 1, 3, 0, tzinfo=timezone.utc))
        record = lifecycle.liquidate(info.id)
        assert record.liquidation_number == "01/26.TL.LK"

        numbers = session.scalars(select(LiquidationRecord.liquidation_number)).all()
        assert sorted(numbers) == ["01/25.TL.LK", "01/26.TL.LK"]
