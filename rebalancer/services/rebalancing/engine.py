"""High-level orchestration for rebalancing plans."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Protocol

import structlog

from rebalancer.conf import EngineSettings
from rebalancer.domain.holdings import Holding
from rebalancer.domain.registry import validate_model_weights
from rebalancer.services.allocations.calculator import AllocationCalculator
from rebalancer.services.rebalancing.calculator import RebalanceStrategy, TradeGenerator
from rebalancer.services.rebalancing.dataclasses import (
    ExecutionResult,
    ProFormaPosition,
    RebalancingPlan,
    SleeveTradeSummary,
    TradeIntent,
)
from rebalancer.services.snapshot import ZERO, HoldingsSnapshotBuilder
from rebalancer.types import CASH_PRICE, CASH_TICKER, PositionKey

if TYPE_CHECKING:
    from rebalancer.domain.holdings import Transaction
    from rebalancer.domain.registry import RebalancingGroup, SleeveRegistry
    from rebalancer.services.allocations.calculator import AllocationSummary
    from rebalancer.services.rebalancing.locks import AccountLockManager
    from rebalancer.services.snapshot import HoldingsSnapshot
    from rebalancer.services.washsale.tracker import WashSaleRecord, WashSaleTracker

logger = structlog.get_logger(__name__)


class OrderSubmitter(Protocol):
    """Places orders with a broker and reports which trades were accepted."""

    def submit(self, trades: Sequence[TradeIntent]) -> Sequence[TradeIntent]: ...


class RebalancingEngine:
    """Orchestrates plan generation for a rebalancing group."""

    def __init__(
        self,
        registry: SleeveRegistry,
        tracker: WashSaleTracker,
        settings: EngineSettings | None = None,
    ) -> None:
        """Initialize engine.

        Args:
            registry: Sleeve and security reference data
            tracker: Wash-sale tracker consulted for buy candidates
            settings: Engine thresholds; defaults when omitted
        """
        self.registry = registry
        self.tracker = tracker
        self.settings = settings or EngineSettings()
        self.builder = HoldingsSnapshotBuilder(registry)
        self.calculator = AllocationCalculator()
        self.generator = TradeGenerator(self.settings)

    def generate_plan(
        self,
        group: RebalancingGroup,
        holdings: Iterable[Holding],
        prices: Mapping[str, Decimal],
        strategy: str | RebalanceStrategy,
        now: datetime,
        transactions: Iterable[Transaction] = (),
        cash_amount: Decimal | None = None,
    ) -> RebalancingPlan:
        """Generate a complete rebalancing plan.

        Input is validated before anything is computed. Data gaps do not
        abort the run; they are returned as warnings on a partial plan.

        Returns:
            RebalancingPlan with trades, warnings and pro-forma analysis

        Raises:
            MissingModelError: If the group has no model
            ModelWeightError: If the model's weights do not sum to 10,000 bp
            UnknownStrategyError: For an unrecognised strategy
            InvariantViolation: If generated trades break a trading rule
        """
        strategy = RebalanceStrategy.parse(strategy)
        model = group.require_model()
        validate_model_weights(model, self.settings.model_weight_tolerance_bp)
        self.registry.check_model(model)

        logger.info(
            "generating_rebalancing_plan",
            group_id=group.group_id,
            group_name=group.name,
            strategy=strategy.value,
            account_count=len(group.accounts),
        )

        holdings = list(holdings)
        snapshot = self.builder.build(group, holdings, prices, now)
        summary = self.calculator.calculate(snapshot, model)
        view = self.tracker.view(now, group.account_ids, transactions)
        result = self.generator.generate(strategy, snapshot, summary, view, cash_amount)

        proforma_snapshot = self._proforma_snapshot(snapshot, result.trades, now)
        proforma_summary = self.calculator.calculate(proforma_snapshot, model)

        total_buy = sum((t.estimated_value for t in result.trades if t.is_buy), ZERO)
        total_sell = sum((t.estimated_value for t in result.trades if t.is_sell), ZERO)
        warnings = tuple(dict.fromkeys(snapshot.warnings + result.warnings))

        logger.info(
            "rebalancing_plan_generated",
            group_id=group.group_id,
            strategy=strategy.value,
            trade_count=len(result.trades),
            warning_count=len(warnings),
            total_buy=float(total_buy),
            total_sell=float(total_sell),
        )

        return RebalancingPlan(
            group_id=group.group_id,
            model_id=model.model_id,
            strategy=strategy.value,
            trades=result.trades,
            warnings=warnings,
            snapshot=snapshot,
            summary=summary,
            proforma_summary=proforma_summary,
            proforma_positions=self._proforma_positions(snapshot, proforma_snapshot, result.trades),
            sleeve_summaries=self._sleeve_summaries(summary, proforma_summary, result.trades),
            harvested=result.harvested,
            total_buy_amount=total_buy,
            total_sell_amount=total_sell,
            net_cash_impact=total_sell - total_buy,
            generated_at=now,
        )

    def accept_plan(
        self,
        plan: RebalancingPlan,
        executed_at: datetime,
        trades: Iterable[TradeIntent] | None = None,
    ) -> list[WashSaleRecord]:
        """Record wash-sale blocks for accepted loss-realising sells.

        Args:
            plan: Plan the trades came from
            executed_at: Sale timestamp; blocks run from here
            trades: Subset of the plan actually executed; all trades if None

        Returns:
            Records written to the tracker's store
        """
        accepted = plan.trades if trades is None else tuple(trades)
        records = []
        for trade in accepted:
            if not trade.is_sell:
                continue
            position = plan.snapshot.position(trade.account_id, trade.ticker)
            if position is None:
                logger.warning(
                    "accepted_sell_without_position",
                    ticker=trade.ticker,
                    account_id=trade.account_id,
                )
                continue
            record = self.tracker.record_sale(
                ticker=trade.ticker,
                account_id=trade.account_id,
                quantity=trade.quantity,
                cost_basis_per_share=position.holding.cost_basis_per_share,
                sale_price=trade.estimated_price,
                sold_at=executed_at,
                sleeve_id=trade.sleeve_id,
            )
            if record is not None:
                records.append(record)

        logger.info(
            "rebalancing_plan_accepted",
            group_id=plan.group_id,
            trade_count=len(accepted),
            blocks_recorded=len(records),
        )
        return records

    def execute_plan(
        self,
        group: RebalancingGroup,
        holdings: Iterable[Holding],
        prices: Mapping[str, Decimal],
        strategy: str | RebalanceStrategy,
        now: datetime,
        submitter: OrderSubmitter,
        lock_manager: AccountLockManager,
        transactions: Iterable[Transaction] = (),
        cash_amount: Decimal | None = None,
    ) -> ExecutionResult:
        """Compute, submit and record a plan while holding every account's lock.

        Holdings must be read by the caller before calling; the lock covers
        computation through to recording so two runs cannot sell the same
        shares.
        """
        with lock_manager.hold(group.account_ids, holder=f"group:{group.group_id}"):
            plan = self.generate_plan(
                group,
                holdings,
                prices,
                strategy,
                now,
                transactions=transactions,
                cash_amount=cash_amount,
            )
            submitted = tuple(submitter.submit(plan.trades)) if plan.trades else ()
            records = self.accept_plan(plan, now, submitted)

        return ExecutionResult(plan=plan, submitted=submitted, recorded_blocks=tuple(records))

    def _proforma_snapshot(
        self,
        snapshot: HoldingsSnapshot,
        trades: Sequence[TradeIntent],
        now: datetime,
    ) -> HoldingsSnapshot:
        """Re-value holdings with every trade applied at its estimated price."""
        quantities: dict[PositionKey, Decimal] = {
            (p.account_id, p.ticker): p.quantity for p in snapshot.positions
        }
        cash_change: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for trade in trades:
            key = (trade.account_id, trade.ticker)
            quantities[key] = quantities.get(key, ZERO) + trade.signed_quantity
            cash_change[trade.account_id] += trade.cash_effect

        for account_id, delta in cash_change.items():
            key = (account_id, CASH_TICKER)
            quantities[key] = quantities.get(key, ZERO) + delta

        holdings = []
        for (account_id, ticker), qty in sorted(quantities.items()):
            if qty <= 0:
                continue
            existing = snapshot.position(account_id, ticker)
            if existing is not None:
                cost = existing.holding.cost_basis_per_share
                opened_at = existing.holding.opened_at
            else:
                cost = CASH_PRICE if ticker == CASH_TICKER else snapshot.price(ticker) or ZERO
                opened_at = now
            holdings.append(
                Holding(
                    account_id=account_id,
                    ticker=ticker,
                    quantity=qty,
                    cost_basis_per_share=cost,
                    opened_at=opened_at,
                )
            )

        return self.builder.build(snapshot.group, holdings, snapshot.prices, now)

    def _proforma_positions(
        self,
        snapshot: HoldingsSnapshot,
        proforma: HoldingsSnapshot,
        trades: Sequence[TradeIntent],
    ) -> tuple[ProFormaPosition, ...]:
        changes: dict[PositionKey, int] = defaultdict(int)
        for trade in trades:
            changes[(trade.account_id, trade.ticker)] += trade.signed_quantity

        keys = {(p.account_id, p.ticker) for p in snapshot.positions} | set(changes)
        rows = []
        for account_id, ticker in sorted(keys):
            after = proforma.position(account_id, ticker)
            rows.append(
                ProFormaPosition(
                    account_id=account_id,
                    ticker=ticker,
                    sleeve_id=after.sleeve_id if after else self._sleeve_id_for(ticker),
                    current_quantity=snapshot.held_quantity(account_id, ticker),
                    trade_quantity=changes.get((account_id, ticker), 0),
                    proforma_quantity=after.quantity if after else ZERO,
                    price=snapshot.price(ticker),
                    proforma_value=after.market_value if after else ZERO,
                )
            )
        return tuple(rows)

    def _sleeve_id_for(self, ticker: str) -> str | None:
        sleeve = self.registry.sleeve_for(ticker)
        return sleeve.sleeve_id if sleeve else None

    def _sleeve_summaries(
        self,
        summary: AllocationSummary,
        proforma: AllocationSummary,
        trades: Sequence[TradeIntent],
    ) -> tuple[SleeveTradeSummary, ...]:
        qty: dict[str | None, int] = defaultdict(int)
        value: dict[str | None, Decimal] = defaultdict(lambda: ZERO)
        for trade in trades:
            qty[trade.sleeve_id] += trade.signed_quantity
            value[trade.sleeve_id] -= trade.cash_effect

        rows = []
        for sleeve in summary.sleeves:
            after = proforma.sleeve(sleeve.sleeve_id)
            rows.append(
                SleeveTradeSummary(
                    sleeve_id=sleeve.sleeve_id,
                    name=sleeve.name,
                    current_value=sleeve.current_value,
                    target_value=sleeve.target_value,
                    target_percent=sleeve.target_percent,
                    current_percent=sleeve.current_percent,
                    trade_qty=qty.get(sleeve.sleeve_id, 0),
                    trade_value=value.get(sleeve.sleeve_id, ZERO),
                    post_value=after.current_value if after else ZERO,
                    post_percent=after.current_percent if after else ZERO,
                )
            )
        return tuple(rows)
