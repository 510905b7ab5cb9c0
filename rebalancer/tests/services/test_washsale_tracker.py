"""
Tests for wash-sale records, views and the tracker.

Tests: rebalancer/services/washsale/tracker.py
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal

import pytest

from rebalancer.conf import EngineSettings
from rebalancer.exceptions import RestrictionStoreUnavailable
from rebalancer.services.washsale import (
    InMemoryRestrictionStore,
    WashSaleTracker,
    WashSaleView,
)
from rebalancer.tests.constants import IRA_ID, NOW, TAXABLE_ID, WASH_SALE_WINDOW
from rebalancer.tests.factories import TransactionFactory, WashSaleRecordFactory
from rebalancer.types import CASH_TICKER, WarningKind, WashSaleScope


class BrokenStore:
    """Store whose backing data source is down."""

    def active_records(self, now, account_ids=None):
        raise RestrictionStoreUnavailable("connection refused")

    def add(self, record):
        raise RestrictionStoreUnavailable("connection refused")


@pytest.mark.unit
@pytest.mark.services
class TestWashSaleRecord:
    def test_active_until_window_end(self) -> None:
        record = WashSaleRecordFactory(blocked_until=NOW)
        assert record.is_active(NOW - timedelta(seconds=1))
        assert not record.is_active(NOW)

    def test_unknown_window_is_active(self) -> None:
        """A record without an end date keeps blocking."""
        record = WashSaleRecordFactory(blocked_until=None)
        assert record.is_active(NOW + timedelta(days=3650))


@pytest.mark.unit
@pytest.mark.services
class TestInMemoryRestrictionStore:
    def test_active_records_filtered(self) -> None:
        store = InMemoryRestrictionStore(
            [
                WashSaleRecordFactory(ticker="AAA"),
                WashSaleRecordFactory(ticker="BBB", account_id=IRA_ID),
                WashSaleRecordFactory(ticker="OLD", blocked_until=NOW - timedelta(days=1)),
            ]
        )
        assert {r.ticker for r in store.active_records(NOW)} == {"AAA", "BBB"}
        assert [r.ticker for r in store.active_records(NOW, [IRA_ID])] == ["BBB"]

    def test_purge_expired(self) -> None:
        store = InMemoryRestrictionStore(
            [
                WashSaleRecordFactory(ticker="AAA"),
                WashSaleRecordFactory(ticker="OLD", blocked_until=NOW - timedelta(days=1)),
            ]
        )
        assert store.purge_expired(NOW) == 1
        assert len(store) == 1

    def test_concurrent_reads_and_writes(self) -> None:
        """Purges running alongside writers never drop an active record."""
        store = InMemoryRestrictionStore()
        expired = NOW - timedelta(days=1)

        def write(n: int) -> None:
            store.add(WashSaleRecordFactory(ticker=f"T{n:03d}"))
            store.add(WashSaleRecordFactory(ticker=f"X{n:03d}", blocked_until=expired))

        def read(_: int) -> int:
            store.purge_expired(NOW)
            return len(store.active_records(NOW))

        with ThreadPoolExecutor(max_workers=8) as pool:
            writes = [pool.submit(write, n) for n in range(200)]
            reads = [pool.submit(read, n) for n in range(200)]
            for future in writes + reads:
                future.result()

        store.purge_expired(NOW)
        assert len(store) == 200
        assert len({r.ticker for r in store.active_records(NOW)}) == 200


@pytest.mark.unit
@pytest.mark.services
class TestWashSaleView:
    """Block lookups under each scope."""

    def test_household_scope_blocks_every_account(self) -> None:
        view = WashSaleView(NOW, WashSaleScope.HOUSEHOLD, (WashSaleRecordFactory(),))
        assert view.is_blocked("AAA", TAXABLE_ID)
        assert view.is_blocked("AAA", IRA_ID)
        assert not view.is_blocked("BBB", TAXABLE_ID)

    def test_account_scope_blocks_only_selling_account(self) -> None:
        view = WashSaleView(NOW, WashSaleScope.ACCOUNT, (WashSaleRecordFactory(),))
        assert view.is_blocked("AAA", TAXABLE_ID)
        assert not view.is_blocked("AAA", IRA_ID)

    def test_expired_records_ignored(self) -> None:
        record = WashSaleRecordFactory(blocked_until=NOW - timedelta(seconds=1))
        view = WashSaleView(NOW, WashSaleScope.HOUSEHOLD, (record,))
        assert not view.is_blocked("AAA", TAXABLE_ID)
        assert view.blocked_tickers() == set()

    def test_fail_closed_blocks_everything_but_cash(self) -> None:
        view = WashSaleView(NOW, WashSaleScope.HOUSEHOLD, fail_closed=True)
        assert view.is_blocked("AAA", TAXABLE_ID)
        assert view.is_blocked("ANYTHING", IRA_ID)
        assert not view.is_blocked(CASH_TICKER, TAXABLE_ID)

    def test_with_records_is_additive(self) -> None:
        view = WashSaleView(NOW, WashSaleScope.HOUSEHOLD, (WashSaleRecordFactory(),))
        extended = view.with_records([WashSaleRecordFactory(ticker="BBB")])

        assert extended.blocked_tickers() == {"AAA", "BBB"}
        assert view.blocked_tickers() == {"AAA"}


@pytest.mark.unit
@pytest.mark.services
class TestWashSaleTracker:
    """Loading views and recording loss sales."""

    def test_household_view_reads_all_accounts(self, store, tracker) -> None:
        store.add(WashSaleRecordFactory(account_id="outside-group"))
        view = tracker.view(NOW, [TAXABLE_ID])
        assert view.is_blocked("AAA", TAXABLE_ID)

    def test_account_view_reads_only_group_accounts(self, store) -> None:
        tracker = WashSaleTracker(store, scope=WashSaleScope.ACCOUNT)
        store.add(WashSaleRecordFactory(account_id="outside-group"))
        store.add(WashSaleRecordFactory(ticker="BBB"))

        view = tracker.view(NOW, [TAXABLE_ID])
        assert view.records and all(r.account_id == TAXABLE_ID for r in view.records)
        assert not view.is_blocked("AAA", TAXABLE_ID)
        assert view.is_blocked("BBB", TAXABLE_ID)

    def test_store_failure_fails_closed(self) -> None:
        tracker = WashSaleTracker(BrokenStore())
        view = tracker.view(NOW, [TAXABLE_ID])

        assert view.fail_closed
        assert view.is_blocked("AAA", TAXABLE_ID)
        (warning,) = view.warnings
        assert warning.kind is WarningKind.WASH_SALE_DATA_UNAVAILABLE

    def test_is_blocked_single_lookup(self, store, tracker) -> None:
        store.add(WashSaleRecordFactory())
        assert tracker.is_blocked("AAA", IRA_ID, NOW)
        assert not tracker.is_blocked("BBB", IRA_ID, NOW)
        assert WashSaleTracker(BrokenStore()).is_blocked("BBB", IRA_ID, NOW)

    def test_blocks_from_transactions(self, tracker) -> None:
        """Loss sales in history block even without a stored record."""
        transactions = [
            TransactionFactory(ticker="AAA"),
            TransactionFactory(ticker="BBB", realized_gain=Decimal("50")),
            TransactionFactory(ticker="CCC", action="BUY"),
            TransactionFactory(ticker="DDD", executed_at=NOW - timedelta(days=40)),
        ]
        view = tracker.view(NOW, [TAXABLE_ID], transactions)
        assert view.blocked_tickers() == {"AAA"}
        (record,) = view.records
        assert record.loss_amount == Decimal("100")
        assert record.blocked_until == record.sold_at + WASH_SALE_WINDOW

    def test_account_scope_drops_foreign_transactions(self, store) -> None:
        tracker = WashSaleTracker(store, scope=WashSaleScope.ACCOUNT)
        view = tracker.view(NOW, [TAXABLE_ID], [TransactionFactory(account_id=IRA_ID)])
        assert view.records == ()

    def test_record_sale_stores_loss_block(self, store, tracker) -> None:
        record = tracker.record_sale(
            ticker="AAA",
            account_id=TAXABLE_ID,
            quantity=100,
            cost_basis_per_share=Decimal("100"),
            sale_price=Decimal("90"),
            sold_at=NOW,
            sleeve_id="us_large",
        )
        assert record.loss_amount == Decimal("1000")
        assert record.blocked_until == NOW + timedelta(days=31)
        assert record.sleeve_id == "us_large"
        assert store.active_records(NOW) == [record]

    def test_record_sale_ignores_gains(self, store, tracker) -> None:
        for price in (Decimal("100"), Decimal("110")):
            assert (
                tracker.record_sale("AAA", TAXABLE_ID, 10, Decimal("100"), price, NOW) is None
            )
        assert len(store) == 0

    def test_record_sale_propagates_store_failure(self) -> None:
        tracker = WashSaleTracker(BrokenStore())
        with pytest.raises(RestrictionStoreUnavailable):
            tracker.record_sale("AAA", TAXABLE_ID, 10, Decimal("100"), Decimal("90"), NOW)

    def test_from_settings(self, store) -> None:
        settings = EngineSettings(wash_sale_window_days=61, wash_sale_scope=WashSaleScope.ACCOUNT)
        tracker = WashSaleTracker.from_settings(store, settings)
        assert tracker.window == timedelta(days=61)
        assert tracker.scope is WashSaleScope.ACCOUNT
        assert tracker.blocked_until(NOW) == NOW + timedelta(days=61)
