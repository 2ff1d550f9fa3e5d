"""
DetailsSelector: merged contract + current liquidation views, filters,
sorting and per-status counts.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from contract_kernel.domain.dtos import (
    ContractFilter,
    ContractInfo,
    LiquidationInfo,
    SortDirection,
    SortKey,
)
from contract_kernel.domain.lifecycle import (
    ContractStatus,
    LifecycleState,
    is_liquidation_cancelled,
    status_of,
)
from contract_kernel.exceptions import ContractNotFoundError
from contract_kernel.selectors.details_selector import DetailsSelector, merge_details_view
from contract_kernel.services.liquidation_ledger import LiquidationLedger
from tests.conftest import WARD_BV, WARD_LK

T0 = datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)


def _contract_info(state=LifecycleState.ACTIVE, cancellation_reason=None) -> ContractInfo:
    return ContractInfo(
        id=uuid4(),
        contract_number="01/25.HĐ.LK",
        ward=WARD_LK,
        owner_name="Nguyễn Văn An",
        sheet_number="12",
        plot_number="345",
        is_branch=False,
        state=state,
        status=status_of(state),
        is_liquidation_cancelled=is_liquidation_cancelled(state),
        notes=None,
        cancellation_reason=cancellation_reason,
        created_at=T0,
        updated_at=T0,
        revision=1,
    )


def _record(contract_id, number, is_cancelled=False, reason=None, revision=2):
    return LiquidationInfo(
        id=uuid4(),
        contract_id=contract_id,
        liquidation_number=number,
        liquidation_date=T0,
        is_cancelled=is_cancelled,
        cancellation_reason=reason,
        created_at=T0,
        contract_revision=revision,
    )


class TestMergeDetailsView:

    def test_never_liquidated(self):
        view = merge_details_view(_contract_info(), None)
        assert view.liquidation_number is None
        assert view.liquidation_date is None
        assert view.is_liquidation_cancelled is False
        assert view.cancellation_reason is None
        assert view.status_label == "Đang hiệu lực"

    def test_cancelled_current_record_supplies_reason(self):
        contract = _contract_info(LifecycleState.ACTIVE_LIQUIDATION_REVERSED)
        view = merge_details_view(
            contract, _record(contract.id, "01/25.TL.LK", True, "clerical error")
        )
        assert view.is_liquidation_cancelled is True
        assert view.cancellation_reason == "clerical error"

    def test_live_current_record_has_no_reason(self):
        contract = _contract_info(LifecycleState.LIQUIDATED)
        view = merge_details_view(contract, _record(contract.id, "02/25.TL.LK"))
        assert view.cancellation_reason is None
        assert view.status_label == "Đã thanh lý"

    def test_contract_reason_wins_when_cancelled(self):
        contract = _contract_info(LifecycleState.CANCELLED, cancellation_reason="hủy hợp đồng")
        view = merge_details_view(
            contract, _record(contract.id, "01/25.TL.LK", True, "old reason")
        )
        assert view.cancellation_reason == "hủy hợp đồng"
        assert view.status is ContractStatus.CANCELLED
        assert view.status_label == "Đã hủy"


class TestResolve:

    def test_older_cancelled_newer_active(self, session, make_contract):
        info = make_contract()
        ledger = LiquidationLedger(session)
        old = ledger.append(info.id, "01/25.TL.LK", T0, contract_revision=2)
        ledger.mark_cancelled(old.id, "clerical error")
        ledger.append(info.id, "02/25.TL.LK", T0 + timedelta(hours=2), contract_revision=4)

        view = DetailsSelector(session).resolve(info.id)
        assert view.liquidation_number == "02/25.TL.LK"
        assert view.is_liquidation_cancelled is False
        assert view.cancellation_reason is None

    def test_unknown_contract(self, session, db_tables):
        with pytest.raises(ContractNotFoundError):
            DetailsSelector(session).resolve(uuid4())

    def test_single_and_list_paths_agree(self, session, lifecycle, make_contract):
        info = make_contract()
        lifecycle.liquidate(info.id)
        lifecycle.cancel_liquidation(info.id, "clerical error")
        selector = DetailsSelector(session)
        assert selector.list_views() == [selector.resolve(info.id)]


@pytest.fixture
def populated(session, lifecycle, make_contract, deterministic_clock):
    """Four contracts, one per interesting state, one minute apart."""
    a = make_contract(ward=WARD_LK, owner_name="Nguyễn Văn An", plot_number="101")
    deterministic_clock.advance(60)
    b = make_contract(ward=WARD_BV, owner_name="Trần Thị Bình", plot_number="202")
    deterministic_clock.advance(60)
    c = make_contract(ward=WARD_LK, owner_name="Lê Văn Cường", plot_number="303", is_branch=True)
    deterministic_clock.advance(60)
    d = make_contract(ward=WARD_BV, owner_name="Phạm Thị Dung", plot_number="404")

    lifecycle.liquidate(b.id)
    lifecycle.liquidate(c.id)
    lifecycle.cancel_liquidation(c.id, "sai ngày")
    lifecycle.cancel_contract(d.id, "rút hồ sơ")
    return a, b, c, d


class TestListViews:

    def test_default_order_newest_first(self, session, populated):
        a, b, c, d = populated
        views = DetailsSelector(session).list_views()
        assert [v.id for v in views] == [d.id, c.id, b.id, a.id]

    def test_one_row_per_contract(self, session, populated, lifecycle):
        _, _, c, _ = populated
        lifecycle.liquidate(c.id)
        views = DetailsSelector(session).list_views()
        assert len(views) == 4
        c_view = next(v for v in views if v.id == c.id)
        assert c_view.liquidation_number == "03/25.TL.CNLK"

    def test_search_by_contract_number(self, session, populated):
        views = DetailsSelector(session).list_views(ContractFilter(search="02/25.HĐ"))
        assert [v.owner_name for v in views] == ["Trần Thị Bình"]

    def test_search_by_liquidation_number(self, session, populated):
        views = DetailsSelector(session).list_views(ContractFilter(search=".tl."))
        assert {v.owner_name for v in views} == {"Trần Thị Bình", "Lê Văn Cường"}

    def test_search_by_plot_number(self, session, populated):
        views = DetailsSelector(session).list_views(ContractFilter(search="404"))
        assert [v.owner_name for v in views] == ["Phạm Thị Dung"]

    def test_search_is_case_insensitive(self, session, populated):
        views = DetailsSelector(session).list_views(ContractFilter(search="VăN AN"))
        assert [v.owner_name for v in views] == ["Nguyễn Văn An"]

    def test_search_folds_vietnamese_capitals(self, session, populated):
        for term in ("NGUYỄN", "VĂN AN", "TRẦN THỊ"):
            views = DetailsSelector(session).list_views(ContractFilter(search=term))
            assert views, term
        views = DetailsSelector(session).list_views(ContractFilter(search="NGUYỄN VĂN"))
        assert [v.owner_name for v in views] == ["Nguyễn Văn An"]

    def test_search_folds_series_tag(self, session, populated):
        views = DetailsSelector(session).list_views(ContractFilter(search="02/25.hđ"))
        assert [v.owner_name for v in views] == ["Trần Thị Bình"]

    def test_search_escapes_wildcards(self, session, populated):
        assert DetailsSelector(session).list_views(ContractFilter(search="%")) == []

    def test_status_filter_includes_reversed(self, session, populated):
        a, _, c, _ = populated
        views = DetailsSelector(session).list_views(
            ContractFilter(status=ContractStatus.ACTIVE)
        )
        assert {v.id for v in views} == {a.id, c.id}

    def test_ward_and_branch_filters(self, session, populated):
        _, _, c, d = populated
        selector = DetailsSelector(session)
        assert {v.id for v in selector.list_views(ContractFilter(ward=WARD_LK, is_branch=True))} == {c.id}
        by_ward = selector.list_views(ContractFilter(ward=WARD_BV, status=ContractStatus.CANCELLED))
        assert [v.id for v in by_ward] == [d.id]

    def test_created_range_is_half_open(self, session, populated):
        _, b, c, _ = populated
        views = DetailsSelector(session).list_views(
            ContractFilter(
                created_from=T0 + timedelta(minutes=1),
                created_to=T0 + timedelta(minutes=3),
            )
        )
        assert {v.id for v in views} == {b.id, c.id}

    def test_sort_by_owner_ascending(self, session, populated):
        views = DetailsSelector(session).list_views(
            ContractFilter(sort_key=SortKey.OWNER_NAME, sort_direction=SortDirection.ASC)
        )
        names = [v.owner_name for v in views]
        assert names[0] == "Lê Văn Cường"
        assert names[-1] == "Trần Thị Bình"

    def test_sort_by_liquidation_number_puts_unliquidated_last(self, session, populated):
        views = DetailsSelector(session).list_views(
            ContractFilter(sort_key=SortKey.LIQUIDATION_NUMBER, sort_direction=SortDirection.ASC)
        )
        numbers = [v.liquidation_number for v in views]
        assert numbers[:2] == ["01/25.TL.BV", "02/25.TL.CNLK"]
        assert numbers[2:] == [None, None]

    def test_paging(self, session, populated):
        a, b, c, d = populated
        selector = DetailsSelector(session)
        page = selector.list_views(
            ContractFilter(
                sort_key=SortKey.CONTRACT_NUMBER,
                sort_direction=SortDirection.ASC,
                limit=2,
                offset=1,
            )
        )
        assert [v.id for v in page] == [b.id, c.id]


class TestCountByStatus:

    def test_every_status_present_when_empty(self, session, db_tables):
        assert DetailsSelector(session).count_by_status() == {
            ContractStatus.ACTIVE: 0,
            ContractStatus.LIQUIDATED: 0,
            ContractStatus.CANCELLED: 0,
        }

    def test_counts(self, session, populated):
        assert DetailsSelector(session).count_by_status() == {
            ContractStatus.ACTIVE: 2,
            ContractStatus.LIQUIDATED: 1,
            ContractStatus.CANCELLED: 1,
        }
