"""
Tests for AllocationFormatter.

Tests: rebalancer/services/allocations/formatters.py
"""

from decimal import Decimal

import pytest

from rebalancer.services.allocations import AllocationFormatter
from rebalancer.services.rebalancing import TradeIntent
from rebalancer.tests.base import make_group, make_model
from rebalancer.tests.constants import NOW, STANDARD_PRICES, TAXABLE_ID
from rebalancer.tests.factories import CashFactory, HoldingFactory
from rebalancer.types import TradeAction


@pytest.mark.unit
@pytest.mark.services
class TestAllocationFormatter:
    """Decimal results become float rows only at this boundary."""

    @pytest.fixture
    def formatter(self) -> AllocationFormatter:
        return AllocationFormatter()

    @pytest.fixture
    def model(self):
        return make_model(us_large=5000, bonds=5000)

    @pytest.fixture
    def summary(self, builder, calculator, model, taxable_account):
        group = make_group(model, taxable_account)
        holdings = [
            HoldingFactory(ticker="AAA", quantity=Decimal("30")),  # $3,000
            HoldingFactory(ticker="EEE", quantity=Decimal("50")),  # $4,000
            HoldingFactory(ticker="XYZ", quantity=Decimal("10")),  # unassigned
            CashFactory(quantity=Decimal("3000")),
        ]
        prices = {**STANDARD_PRICES, "XYZ": Decimal("0")}
        return calculator.calculate(builder.build(group, holdings, prices, NOW), model)

    @pytest.fixture
    def trades(self) -> list[TradeIntent]:
        return [
            TradeIntent(
                account_id=TAXABLE_ID,
                ticker="AAA",
                action=TradeAction.BUY,
                quantity=20,
                estimated_price=Decimal("100"),
                estimated_value=Decimal("2000"),
                reason="Sleeve us_large under target",
                sleeve_id="us_large",
            ),
            TradeIntent(
                account_id=TAXABLE_ID,
                ticker="EEE",
                action=TradeAction.BUY,
                quantity=12,
                estimated_price=Decimal("80"),
                estimated_value=Decimal("960"),
                reason="Sleeve bonds under target",
                sleeve_id="bonds",
            ),
        ]

    def test_sleeve_rows(self, formatter, summary) -> None:
        rows = formatter.format_sleeve_rows(summary)
        assert [r["sleeve_id"] for r in rows] == ["bonds", "cash", "us_large"]

        us_large = rows[2]
        assert us_large["sleeve_name"] == "US Large Cap"
        assert us_large["target_weight_bp"] == 5000
        assert us_large["target_value"] == pytest.approx(5000.0)
        assert us_large["current_value"] == pytest.approx(3000.0)
        assert us_large["difference"] == pytest.approx(2000.0)
        assert isinstance(us_large["current_percent"], float)

    def test_security_rows(self, formatter, summary) -> None:
        rows = formatter.format_security_rows(summary)
        by_ticker = {r["ticker"]: r for r in rows}

        assert by_ticker["AAA"]["member_kind"] == "TARGET"
        assert by_ticker["OLD"]["member_kind"] == "LEGACY"
        assert by_ticker["AAA"]["is_held"] is True
        assert by_ticker["BBB"]["is_held"] is False
        # Unassigned tickers come last
        assert rows[-1]["ticker"] == "XYZ"
        assert rows[-1]["sleeve_id"] is None
        assert rows[-1]["member_kind"] is None

    def test_security_rows_without_unassigned(self, formatter, summary) -> None:
        rows = formatter.format_security_rows(summary, include_unassigned=False)
        assert "XYZ" not in {r["ticker"] for r in rows}

    def test_trade_rows(self, formatter, trades) -> None:
        rows = formatter.format_trade_rows(trades)
        assert rows[0] == {
            "account_id": TAXABLE_ID,
            "ticker": "AAA",
            "sleeve_id": "us_large",
            "action": "BUY",
            "quantity": 20,
            "estimated_price": 100.0,
            "estimated_value": 2000.0,
            "realized_gain": 0.0,
            "reason": "Sleeve us_large under target",
        }

    def test_sleeves_dataframe(self, formatter, summary) -> None:
        df = formatter.sleeves_to_dataframe(summary)
        assert df.index.name == "sleeve_id"
        assert list(df.index) == ["bonds", "cash", "us_large"]
        assert df.loc["bonds", "current_value"] == pytest.approx(4000.0)

    def test_securities_dataframe(self, formatter, summary) -> None:
        df = formatter.securities_to_dataframe(summary)
        assert "member_kind" in df.columns
        assert set(df["ticker"]) >= {"AAA", "EEE", "XYZ"}

    def test_trades_dataframe(self, formatter, trades) -> None:
        df = formatter.trades_to_dataframe(trades)
        assert list(df["ticker"]) == ["AAA", "EEE"]
        assert df["estimated_value"].sum() == pytest.approx(2960.0)

    def test_empty_trades_dataframe_keeps_columns(self, formatter) -> None:
        df = formatter.trades_to_dataframe([])
        assert df.empty
        assert "estimated_value" in df.columns

    def test_drift_rows(self, formatter, summary) -> None:
        rows = formatter.format_drift_rows(summary, summary)
        us_large = next(r for r in rows if r["sleeve_id"] == "us_large")
        assert us_large["pre_percent"] == us_large["post_percent"]
        assert us_large["target_percent"] == pytest.approx(50.0)
