"""Data structures for rebalancing calculations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from rebalancer.types import PlanWarning, TradeAction, WarningKind

if TYPE_CHECKING:
    from rebalancer.services.allocations.calculator import AllocationSummary
    from rebalancer.services.snapshot import HoldingsSnapshot
    from rebalancer.services.washsale.tracker import WashSaleRecord


@dataclass(frozen=True)
class TradeIntent:
    """A single recommended buy or sell.

    Attributes:
        account_id: Account the trade is placed in
        ticker: Security to trade
        action: BUY or SELL
        quantity: Whole shares, always positive
        estimated_price: Price used for estimation
        estimated_value: quantity * estimated_price
        reason: Short human-readable explanation
        sleeve_id: Sleeve the security belongs to
        realized_gain: Estimated gain on a SELL (negative = loss), 0 for BUYs
    """

    account_id: str
    ticker: str
    action: TradeAction
    quantity: int
    estimated_price: Decimal
    estimated_value: Decimal
    reason: str
    sleeve_id: str | None = None
    realized_gain: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        """Validate trade data."""
        if self.quantity <= 0:
            raise ValueError(f"Quantity must be positive, got {self.quantity}")
        if self.estimated_price < 0:
            raise ValueError(f"Price must be non-negative, got {self.estimated_price}")

    @property
    def is_buy(self) -> bool:
        return self.action is TradeAction.BUY

    @property
    def is_sell(self) -> bool:
        return self.action is TradeAction.SELL

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.is_buy else -self.quantity

    @property
    def cash_effect(self) -> Decimal:
        """Change in account cash: negative for buys, positive for sells."""
        return -self.estimated_value if self.is_buy else self.estimated_value


@dataclass(frozen=True)
class GenerationResult:
    """Trades and warnings from one run of the trade generator.

    ``harvested`` holds the blocks implied by loss sales in the run; they
    only become durable once the plan is accepted.
    """

    trades: tuple[TradeIntent, ...] = ()
    warnings: tuple[PlanWarning, ...] = ()
    harvested: tuple[WashSaleRecord, ...] = ()


@dataclass(frozen=True)
class SleeveTradeSummary:
    """Net effect of a plan on one sleeve."""

    sleeve_id: str
    name: str
    current_value: Decimal
    target_value: Decimal
    target_percent: Decimal
    current_percent: Decimal
    trade_qty: int
    trade_value: Decimal
    post_value: Decimal
    post_percent: Decimal


@dataclass(frozen=True)
class ProFormaPosition:
    """Position after applying a plan's trades."""

    account_id: str
    ticker: str
    sleeve_id: str | None
    current_quantity: Decimal
    trade_quantity: int
    proforma_quantity: Decimal
    price: Decimal | None
    proforma_value: Decimal


@dataclass(frozen=True)
class RebalancingPlan:
    """Complete rebalancing plan for a group.

    Attributes:
        group_id: The group being rebalanced
        model_id: Model the group is measured against
        strategy: Strategy name used
        trades: Consolidated trade intents, sells first
        warnings: Data gaps that caused parts of the plan to be skipped
        snapshot: Valuation the plan was computed from
        summary: Allocation before trading
        proforma_summary: Estimated allocation after trading
        proforma_positions: Estimated positions after trading
        sleeve_summaries: Per-sleeve net trade effect
        harvested: Wash-sale blocks the plan creates once accepted
        total_buy_amount: Sum of all buys
        total_sell_amount: Sum of all sells
        net_cash_impact: Negative if cash is consumed, positive if freed
        generated_at: Timestamp the plan was computed for
    """

    group_id: str
    model_id: str
    strategy: str
    trades: tuple[TradeIntent, ...]
    warnings: tuple[PlanWarning, ...]
    snapshot: HoldingsSnapshot
    summary: AllocationSummary
    proforma_summary: AllocationSummary
    proforma_positions: tuple[ProFormaPosition, ...] = ()
    sleeve_summaries: tuple[SleeveTradeSummary, ...] = ()
    harvested: tuple[WashSaleRecord, ...] = ()
    total_buy_amount: Decimal = Decimal("0")
    total_sell_amount: Decimal = Decimal("0")
    net_cash_impact: Decimal = Decimal("0")
    generated_at: datetime = field(default_factory=datetime.now)

    @property
    def buy_trades(self) -> list[TradeIntent]:
        """Get only buy trades."""
        return [t for t in self.trades if t.is_buy]

    @property
    def sell_trades(self) -> list[TradeIntent]:
        """Get only sell trades."""
        return [t for t in self.trades if t.is_sell]

    @property
    def realized_gain(self) -> Decimal:
        return sum((t.realized_gain for t in self.sell_trades), Decimal("0"))

    @property
    def is_partial(self) -> bool:
        return bool(self.warnings)

    def warnings_of(self, kind: WarningKind) -> list[PlanWarning]:
        return [w for w in self.warnings if w.kind is kind]

    def trades_for_account(self, account_id: str) -> list[TradeIntent]:
        return [t for t in self.trades if t.account_id == account_id]

    @property
    def distance_improvement(self) -> Decimal:
        """Total percent distance removed by the plan (pre - post)."""
        return self.summary.total_percent_distance - self.proforma_summary.total_percent_distance


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of submitting a plan under account locks."""

    plan: RebalancingPlan
    submitted: tuple[TradeIntent, ...]
    recorded_blocks: tuple[WashSaleRecord, ...]
