"""
Tests for AllocationCalculator.

Tests: rebalancer/services/allocations/calculator.py
"""

from decimal import Decimal

import pytest

from rebalancer.exceptions import InputError
from rebalancer.services.allocations import AllocationCalculator, AllocationSummary
from rebalancer.tests.base import make_group, make_model, prices_with
from rebalancer.tests.constants import IRA_ID, NOW, STANDARD_PRICES
from rebalancer.tests.factories import CashFactory, HoldingFactory
from rebalancer.types import MemberKind


@pytest.mark.unit
@pytest.mark.services
class TestAllocationCalculator:
    """Group-wide drift against the balanced model."""

    @pytest.fixture
    def group(self, balanced_model, taxable_account, ira_account):
        return make_group(balanced_model, taxable_account, ira_account)

    @pytest.fixture
    def snapshot(self, builder, group):
        holdings = [
            HoldingFactory(ticker="AAA", quantity=Decimal("60")),  # $6,000
            HoldingFactory(ticker="EEE", quantity=Decimal("25")),  # $2,000
            CashFactory(quantity=Decimal("1000")),
            HoldingFactory(account_id=IRA_ID, ticker="CCC", quantity=Decimal("25")),  # $1,000
        ]
        return builder.build(group, holdings, STANDARD_PRICES, NOW)

    @pytest.fixture
    def summary(self, calculator, snapshot, balanced_model) -> AllocationSummary:
        return calculator.calculate(snapshot, balanced_model)

    def test_sleeve_order(self, summary: AllocationSummary) -> None:
        """Model sleeves, held sleeves and cash, by sleeve id."""
        assert [s.sleeve_id for s in summary.sleeves] == ["bonds", "cash", "intl", "us_large"]

    def test_under_target_sleeve(self, summary: AllocationSummary) -> None:
        intl = summary.sleeve("intl")
        assert intl.target_weight_bp == 2000
        assert intl.target_value == Decimal("2000")
        assert intl.current_value == Decimal("1000")
        assert intl.difference == Decimal("1000")
        assert intl.target_percent == Decimal("20")
        assert intl.current_percent == Decimal("10")
        assert intl.percent_distance == Decimal("10")
        assert intl.in_model

    def test_on_target_sleeves(self, summary: AllocationSummary) -> None:
        assert summary.sleeve("us_large").difference == 0
        assert summary.sleeve("bonds").percent_distance == 0

    def test_cash_above_target_is_slack(self, summary: AllocationSummary) -> None:
        """Cash over target is investable, never an over-allocation."""
        cash = summary.sleeve("cash")
        assert cash.is_cash
        assert cash.current_value == Decimal("1000")
        assert cash.difference == 0
        assert cash.percent_distance == 0
        assert summary.cash_value == Decimal("1000")
        assert summary.cash_target == 0
        assert summary.investable_cash == Decimal("1000")

    def test_under_and_over_target(self, summary: AllocationSummary) -> None:
        assert [s.sleeve_id for s in summary.under_target] == ["intl"]
        assert summary.over_target == []
        assert summary.total_percent_distance == Decimal("10")

    def test_target_member_carries_sleeve_target(self, summary: AllocationSummary) -> None:
        rows = {s.ticker: s for s in summary.securities_in("us_large")}
        assert list(rows) == ["AAA", "BBB", "OLD"]
        assert rows["AAA"].member_kind is MemberKind.TARGET
        assert rows["AAA"].target_value == Decimal("6000")
        assert rows["BBB"].member_kind is MemberKind.ALTERNATE
        assert rows["BBB"].target_value == 0
        assert not rows["BBB"].is_held
        assert rows["OLD"].member_kind is MemberKind.LEGACY

    def test_security_rows_aggregate_across_accounts(self, summary: AllocationSummary) -> None:
        ccc = next(s for s in summary.securities if s.ticker == "CCC")
        assert ccc.quantity == Decimal("25")
        assert ccc.price == Decimal("40")
        assert ccc.difference == Decimal("1000")
        assert ccc.is_held

    def test_deterministic(self, calculator, snapshot, balanced_model) -> None:
        assert calculator.calculate(snapshot, balanced_model) == calculator.calculate(
            snapshot, balanced_model
        )

    def test_unknown_model_sleeve(self, calculator, snapshot) -> None:
        with pytest.raises(InputError):
            calculator.calculate(snapshot, make_model(us_large=5000, gold=5000))


@pytest.mark.unit
@pytest.mark.services
class TestAllocationEdgeCases:
    """Cash targets, sleeves outside the model and unassigned tickers."""

    def test_cash_below_target(self, builder, calculator, taxable_account) -> None:
        model = make_model(us_large=9000, cash=1000)
        group = make_group(model, taxable_account)
        holdings = [HoldingFactory(quantity=Decimal("95")), CashFactory(quantity=Decimal("500"))]
        summary = calculator.calculate(builder.build(group, holdings, STANDARD_PRICES, NOW), model)

        cash = summary.sleeve("cash")
        assert cash.target_value == Decimal("1000")
        assert cash.difference == Decimal("500")
        assert cash.percent_distance == Decimal("5")
        assert summary.investable_cash == 0
        assert [s.sleeve_id for s in summary.over_target] == ["us_large"]
        assert summary.under_target == []

    def test_cash_above_model_target(self, builder, calculator, taxable_account) -> None:
        """A weighted cash sleeve drifts like any other sleeve."""
        model = make_model(us_large=9000, cash=1000)
        group = make_group(model, taxable_account)
        holdings = [HoldingFactory(quantity=Decimal("70")), CashFactory(quantity=Decimal("3000"))]
        summary = calculator.calculate(builder.build(group, holdings, STANDARD_PRICES, NOW), model)

        cash = summary.sleeve("cash")
        assert cash.target_percent == Decimal("10")
        assert cash.current_percent == Decimal("30")
        assert cash.difference == Decimal("-2000")
        assert cash.percent_distance == Decimal("20")
        assert summary.investable_cash == Decimal("2000")
        assert summary.over_target == []
        assert [s.sleeve_id for s in summary.under_target] == ["us_large"]
        assert summary.total_percent_distance == Decimal("40")

    def test_held_sleeve_outside_model(self, builder, calculator, taxable_account) -> None:
        """A held sleeve with no model weight has a zero target and no distance."""
        model = make_model(us_large=10000)
        group = make_group(model, taxable_account)
        holdings = [
            HoldingFactory(ticker="AAA", quantity=Decimal("50")),
            HoldingFactory(ticker="CCC", quantity=Decimal("125")),
        ]
        summary = calculator.calculate(builder.build(group, holdings, STANDARD_PRICES, NOW), model)

        intl = summary.sleeve("intl")
        assert not intl.in_model
        assert intl.target_value == 0
        assert intl.difference == Decimal("-5000")
        assert intl.percent_distance == 0
        assert summary.sleeve("us_large").percent_distance == Decimal("50")
        assert summary.sleeve("bonds") is None

    def test_unassigned_rows(self, builder, calculator, taxable_account) -> None:
        model = make_model(us_large=10000)
        group = make_group(model, taxable_account)
        holdings = [HoldingFactory(), HoldingFactory(ticker="XYZ", quantity=Decimal("5"))]
        snapshot = builder.build(group, holdings, prices_with(XYZ="10"), NOW)
        summary = calculator.calculate(snapshot, model)

        (xyz,) = summary.unassigned
        assert xyz.sleeve_id is None
        assert xyz.member_kind is None
        assert xyz.current_value == Decimal("50")
        assert xyz.difference == Decimal("-50")
        assert summary.total_value == Decimal("10050")

    def test_empty_snapshot(self, builder, calculator, balanced_model, taxable_account) -> None:
        group = make_group(balanced_model, taxable_account)
        snapshot = builder.build(group, [], STANDARD_PRICES, NOW)
        summary = calculator.calculate(snapshot, balanced_model)
        assert summary.total_value == 0
        assert all(s.target_value == 0 for s in summary.sleeves)
        assert summary.under_target == []

    def test_calculate_for_account(
        self, builder, calculator, balanced_model, taxable_account, ira_account
    ) -> None:
        """Per-account drift uses the account's own total as the base."""
        group = make_group(balanced_model, taxable_account, ira_account)
        holdings = [
            HoldingFactory(ticker="AAA", quantity=Decimal("60")),
            HoldingFactory(account_id=IRA_ID, ticker="CCC", quantity=Decimal("25")),
        ]
        snapshot = builder.build(group, holdings, STANDARD_PRICES, NOW)
        summary = calculator.calculate_for_account(snapshot, balanced_model, IRA_ID)

        assert summary.account_id == IRA_ID
        assert summary.total_value == Decimal("1000")
        assert summary.sleeve("intl").difference == Decimal("-800")
        assert summary.sleeve("us_large").difference == Decimal("600")
        assert summary.sleeve("us_large").current_value == 0


@pytest.mark.unit
@pytest.mark.services
def test_calculator_is_stateless() -> None:
    """Calculator instances hold no per-call state."""
    assert vars(AllocationCalculator()) == {}
