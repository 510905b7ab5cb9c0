"""Trade generation for the allocation and tax-loss-harvesting strategies."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import timedelta
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from rebalancer.conf import EngineSettings
from rebalancer.exceptions import InputError, InvariantViolation, UnknownStrategyError
from rebalancer.services.rebalancing.dataclasses import GenerationResult, TradeIntent
from rebalancer.services.washsale.tracker import WashSaleRecord
from rebalancer.types import (
    MemberKind,
    PlanWarning,
    PositionKey,
    TradeAction,
    WarningKind,
    WashSaleScope,
)

if TYPE_CHECKING:
    from rebalancer.domain.registry import Sleeve, SleeveMember
    from rebalancer.services.allocations.calculator import AllocationSummary, SleeveAllocation
    from rebalancer.services.snapshot import HoldingsSnapshot, Position
    from rebalancer.services.washsale.tracker import WashSaleView

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


class RebalanceStrategy(str, Enum):
    ALLOCATION = "allocation"
    TLH_SWAP = "tlhSwap"
    TLH_REBALANCE = "tlhRebalance"
    INVEST_CASH = "investCash"

    @classmethod
    def parse(cls, value: str | RebalanceStrategy) -> RebalanceStrategy:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            choices = ", ".join(s.value for s in cls)
            raise UnknownStrategyError(
                f"Unknown rebalance strategy {value!r}; expected one of {choices}"
            ) from None


def floor_shares(dollars: Decimal, price: Decimal) -> int:
    """Whole shares affordable with ``dollars``; 0 for a non-positive price."""
    if price <= 0 or dollars <= 0:
        return 0
    return int(dollars // price)


def consolidate_trades(trades: Iterable[TradeIntent]) -> list[TradeIntent]:
    """Merge trades per (account, ticker, action), sells first.

    First-seen order is kept within each action.
    """
    merged: dict[tuple[str, str, TradeAction], TradeIntent] = {}
    for trade in trades:
        key = (trade.account_id, trade.ticker, trade.action)
        prior = merged.get(key)
        if prior is None:
            merged[key] = trade
            continue
        merged[key] = replace(
            prior,
            quantity=prior.quantity + trade.quantity,
            estimated_value=prior.estimated_value + trade.estimated_value,
            realized_gain=prior.realized_gain + trade.realized_gain,
        )

    ordered = list(merged.values())
    return [t for t in ordered if t.is_sell] + [t for t in ordered if t.is_buy]


@dataclass
class _RunState:
    """Mutable working state for one generation run."""

    snapshot: HoldingsSnapshot
    initial_view: WashSaleView
    view: WashSaleView
    cash: dict[str, Decimal]
    held: dict[PositionKey, Decimal]
    budget: Decimal = ZERO
    trades: list[TradeIntent] = field(default_factory=list)
    warnings: list[PlanWarning] = field(default_factory=list)
    harvested: list[WashSaleRecord] = field(default_factory=list)
    bought: set[PositionKey] = field(default_factory=set)

    def whole_shares(self, account_id: str, ticker: str) -> int:
        return int(self.held.get((account_id, ticker), ZERO))


class TradeGenerator:
    """Emits trade intents for one strategy over an immutable snapshot.

    Rules shared by every strategy:
    - Never sell more whole shares than an account holds
    - Never buy a wash-sale blocked ticker, including tickers sold at a
      loss earlier in the same run
    - Buy the lowest-rank, non-legacy, unblocked sleeve member
    - Round share counts down; leftover dollars stay as cash
    - Never spend more than the funding account's cash
    """

    def __init__(self, settings: EngineSettings | None = None) -> None:
        self.settings = settings or EngineSettings()
        self.window = timedelta(days=self.settings.wash_sale_window_days)

    def generate(
        self,
        strategy: str | RebalanceStrategy,
        snapshot: HoldingsSnapshot,
        summary: AllocationSummary,
        view: WashSaleView,
        cash_amount: Decimal | None = None,
    ) -> GenerationResult:
        """Generate trades.

        Args:
            strategy: allocation, tlhSwap, tlhRebalance or investCash
            snapshot: Valued holdings
            summary: Allocation of ``snapshot`` against the group's model
            view: Wash-sale blocks loaded for this run
            cash_amount: Explicit amount to invest (investCash only)

        Returns:
            GenerationResult with consolidated trades and warnings

        Raises:
            UnknownStrategyError: For an unrecognised strategy name
            InputError: For a bad ``cash_amount``
            InvariantViolation: If the generated trades break a trading rule
        """
        strategy = RebalanceStrategy.parse(strategy)
        if cash_amount is not None and strategy is not RebalanceStrategy.INVEST_CASH:
            raise InputError("cash_amount only applies to the investCash strategy")

        state = _RunState(
            snapshot=snapshot,
            initial_view=view,
            view=view,
            cash=snapshot.cash_by_account,
            held={(p.account_id, p.ticker): p.quantity for p in snapshot.positions},
        )
        state.warnings.extend(view.warnings)

        if strategy is RebalanceStrategy.ALLOCATION:
            self._run_allocation(state, summary)
        elif strategy is RebalanceStrategy.TLH_SWAP:
            self._run_tlh_swap(state)
        elif strategy is RebalanceStrategy.TLH_REBALANCE:
            self._run_tlh_rebalance(state, summary)
        else:
            self._run_invest_cash(state, summary, cash_amount)

        trades = consolidate_trades(state.trades)
        self._check_invariants(state, trades)

        logger.info(
            "trades_generated",
            strategy=strategy.value,
            group_id=snapshot.group.group_id,
            trade_count=len(trades),
            warning_count=len(state.warnings),
            harvested=len(state.harvested),
        )
        return GenerationResult(
            trades=tuple(trades),
            warnings=tuple(state.warnings),
            harvested=tuple(state.harvested),
        )

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _run_allocation(self, state: _RunState, summary: AllocationSummary) -> None:
        threshold = self.settings.min_trade_value
        rows = [s for s in summary.sleeves if not s.is_cash and abs(s.difference) >= threshold]
        rows.sort(key=lambda s: (-abs(s.difference), s.sleeve_id))

        proceeds = ZERO
        for row in rows:
            if row.difference < 0:
                proceeds += self._reduce_sleeve(state, row)

        state.budget = summary.investable_cash + proceeds
        for row in rows:
            if row.difference > 0:
                self._fund_sleeve(
                    state,
                    row.sleeve_id,
                    row.difference,
                    reason=f"Sleeve {row.sleeve_id} under target by ${row.difference:,.2f}",
                )

    def _run_tlh_swap(self, state: _RunState) -> None:
        snapshot = state.snapshot
        for pos in self._harvest_candidates(state):
            if self._bought_in_scope(state, pos.ticker, pos.account_id):
                logger.debug("harvest_skipped_bought_this_run", ticker=pos.ticker)
                continue

            sleeve = snapshot.registry.sleeve(pos.sleeve_id)
            replacement = self._replacement_for(state, sleeve, pos)
            if replacement is None:
                self._warn(
                    state,
                    WarningKind.NO_BUY_CANDIDATE,
                    f"No unblocked replacement for {pos.ticker}; harvest skipped",
                    ticker=pos.ticker,
                    sleeve_id=pos.sleeve_id,
                    account_id=pos.account_id,
                )
                continue

            price = snapshot.price(replacement.ticker)
            if price is None or price <= 0:
                self._warn(
                    state,
                    WarningKind.MISSING_PRICE,
                    f"No price for replacement {replacement.ticker}; "
                    f"harvest of {pos.ticker} skipped",
                    ticker=replacement.ticker,
                    sleeve_id=pos.sleeve_id,
                    account_id=pos.account_id,
                )
                continue

            expected = pos.unit_price * state.whole_shares(pos.account_id, pos.ticker)
            if floor_shares(expected, price) == 0:
                self._warn(
                    state,
                    WarningKind.NO_BUY_CANDIDATE,
                    f"Proceeds from {pos.ticker} buy no whole share of {replacement.ticker}; "
                    f"harvest skipped",
                    ticker=pos.ticker,
                    sleeve_id=pos.sleeve_id,
                    account_id=pos.account_id,
                )
                continue

            proceeds = self._harvest(state, pos)
            self._buy(
                state,
                pos.account_id,
                replacement.ticker,
                pos.sleeve_id,
                proceeds,
                price,
                reason=f"Replace harvested {pos.ticker}",
            )

    def _run_tlh_rebalance(self, state: _RunState, summary: AllocationSummary) -> None:
        freed: dict[str | None, Decimal] = defaultdict(lambda: ZERO)
        for pos in self._harvest_candidates(state):
            freed[pos.sleeve_id] += self._harvest(state, pos)

        state.budget = summary.investable_cash + sum(freed.values(), ZERO)

        threshold = self.settings.min_trade_value
        deficits = []
        for row in summary.sleeves:
            if row.is_cash:
                continue
            difference = row.difference + freed.get(row.sleeve_id, ZERO)
            if difference >= threshold:
                deficits.append((difference, row.sleeve_id))
        deficits.sort(key=lambda d: (-d[0], d[1]))

        for difference, sleeve_id in deficits:
            self._fund_sleeve(
                state,
                sleeve_id,
                difference,
                reason=f"Reinvest harvest proceeds; sleeve {sleeve_id} under target",
            )

    def _run_invest_cash(
        self, state: _RunState, summary: AllocationSummary, cash_amount: Decimal | None
    ) -> None:
        if cash_amount is None:
            budget = summary.investable_cash
        else:
            budget = cash_amount if isinstance(cash_amount, Decimal) else Decimal(str(cash_amount))
            if budget <= 0:
                raise InputError(f"Cash amount must be positive, got {budget}")
            available = state.snapshot.total_cash
            if budget > available:
                self._warn(
                    state,
                    WarningKind.CASH_CAPPED,
                    f"Requested ${budget:,.2f} exceeds available cash ${available:,.2f}",
                )
                budget = available
        state.budget = budget

        for row in summary.under_target:
            if state.budget <= 0:
                break
            self._fund_sleeve(state, row.sleeve_id, row.difference, reason="Invest available cash")

    # ------------------------------------------------------------------
    # Selling
    # ------------------------------------------------------------------

    def _reduce_sleeve(self, state: _RunState, row: SleeveAllocation) -> Decimal:
        """Sell down an over-target sleeve; fully exit sleeves with no target."""
        full_exit = row.target_weight_bp == 0
        remaining = -row.difference
        total = ZERO

        for pos in self._sell_candidates(state, row.sleeve_id):
            whole = state.whole_shares(pos.account_id, pos.ticker)
            if full_exit:
                qty = whole
                reason = f"Exit sleeve {row.sleeve_id} (not in model)"
            else:
                if remaining <= 0:
                    break
                qty = min(whole, floor_shares(remaining, pos.unit_price))
                reason = f"Sleeve {row.sleeve_id} over target by ${-row.difference:,.2f}"

            if qty > 0:
                value = self._sell(state, pos, qty, reason)
                remaining -= value
                total += value

        if full_exit:
            for pos in state.snapshot.positions_in_sleeve(row.sleeve_id):
                self._warn_fractional(state, pos)

        return total

    def _harvest(self, state: _RunState, pos: Position) -> Decimal:
        qty = state.whole_shares(pos.account_id, pos.ticker)
        loss = -pos.holding.unrealized_gain(pos.unit_price)
        value = self._sell(state, pos, qty, reason=f"Harvest ${loss:,.2f} unrealized loss")
        self._warn_fractional(state, pos)
        return value

    def _sell(self, state: _RunState, pos: Position, quantity: int, reason: str) -> Decimal:
        price = pos.unit_price
        value = price * quantity
        gain = pos.holding.realized_gain(quantity, price)
        key = (pos.account_id, pos.ticker)

        state.held[key] -= quantity
        state.cash[pos.account_id] = state.cash.get(pos.account_id, ZERO) + value
        state.trades.append(
            TradeIntent(
                account_id=pos.account_id,
                ticker=pos.ticker,
                action=TradeAction.SELL,
                quantity=quantity,
                estimated_price=price,
                estimated_value=value,
                reason=reason,
                sleeve_id=pos.sleeve_id,
                realized_gain=gain,
            )
        )

        if gain < 0:
            # Loss sale: block repurchase for the rest of this run
            record = WashSaleRecord(
                ticker=pos.ticker,
                account_id=pos.account_id,
                sold_at=state.snapshot.as_of,
                blocked_until=state.snapshot.as_of + self.window,
                loss_amount=-gain,
                sleeve_id=pos.sleeve_id,
            )
            state.harvested.append(record)
            state.view = state.view.with_records([record])

        return value

    def _sell_candidates(self, state: _RunState, sleeve_id: str) -> list[Position]:
        """Held positions in a sleeve, in the order they should be sold.

        Losses go first, then long-term gains, then short-term gains. Within
        a tier legacy holdings go before alternates, alternates before the
        target, and smaller gain fractions before larger ones.
        """
        snapshot = state.snapshot
        sleeve = snapshot.registry.sleeve(sleeve_id)
        candidates = []
        for pos in snapshot.positions_in_sleeve(sleeve_id):
            if state.whole_shares(pos.account_id, pos.ticker) <= 0:
                continue
            if not pos.is_priced:
                self._warn(
                    state,
                    WarningKind.MISSING_PRICE,
                    f"No price for {pos.ticker}; cannot sell",
                    ticker=pos.ticker,
                    sleeve_id=sleeve_id,
                    account_id=pos.account_id,
                )
                continue
            if self._protects_legacy_gain(state, sleeve, pos):
                logger.info(
                    "legacy_gain_protected",
                    ticker=pos.ticker,
                    account_id=pos.account_id,
                )
                continue
            candidates.append(pos)

        return sorted(candidates, key=lambda p: self._sell_priority(state, sleeve, p))

    def _sell_priority(
        self, state: _RunState, sleeve: Sleeve, pos: Position
    ) -> tuple[int, int, Decimal, str, str]:
        holding = pos.holding
        gain = holding.unrealized_gain(pos.unit_price)
        if gain <= 0:
            tier = 0
        elif holding.is_long_term(state.snapshot.as_of, self.settings.long_term_holding_days):
            tier = 1
        else:
            tier = 2

        cost = holding.cost_basis
        if cost > 0:
            fraction = gain / cost
        else:
            fraction = Decimal("Infinity") if gain > 0 else ZERO
        return (tier, sleeve.kind_of(pos.ticker).value, fraction, pos.account_id, pos.ticker)

    def _protects_legacy_gain(self, state: _RunState, sleeve: Sleeve, pos: Position) -> bool:
        if not self.settings.protect_legacy_gains:
            return False
        if sleeve.kind_of(pos.ticker) is not MemberKind.LEGACY:
            return False
        account = state.snapshot.group.account(pos.account_id)
        if account is None or not account.is_taxable:
            return False
        return pos.holding.unrealized_gain(pos.unit_price) > 0

    # ------------------------------------------------------------------
    # Harvest selection
    # ------------------------------------------------------------------

    def _is_harvestable(self, pos: Position) -> bool:
        """Either configured threshold is sufficient; a disabled one never matches."""
        price = pos.unit_price
        loss = -pos.holding.unrealized_gain(price)
        if loss <= 0:
            return False
        pct = self.settings.harvest_loss_percent
        dollars = self.settings.harvest_loss_dollars
        if pct is not None and pos.holding.loss_percent(price) >= pct:
            return True
        return dollars is not None and loss >= dollars

    def _harvest_candidates(self, state: _RunState) -> list[Position]:
        snapshot = state.snapshot
        ordered = sorted(
            snapshot.positions,
            key=lambda p: (p.account_id, p.sleeve_id or "", p.rank or 0, p.ticker),
        )
        candidates = []
        for pos in ordered:
            if pos.is_cash or pos.sleeve_id is None or not pos.is_priced:
                continue
            account = snapshot.group.account(pos.account_id)
            if account is None or not account.is_taxable:
                continue
            if state.whole_shares(pos.account_id, pos.ticker) <= 0:
                continue
            if not self._is_harvestable(pos):
                continue
            if state.initial_view.is_blocked(pos.ticker, pos.account_id):
                logger.debug(
                    "harvest_skipped_blocked",
                    ticker=pos.ticker,
                    account_id=pos.account_id,
                )
                continue
            candidates.append(pos)
        return candidates

    def _replacement_for(
        self, state: _RunState, sleeve: Sleeve, pos: Position
    ) -> SleeveMember | None:
        for member in sleeve.buyable_members:
            if member.ticker == pos.ticker:
                continue
            if state.view.is_blocked(member.ticker, pos.account_id):
                continue
            return member
        return None

    def _bought_in_scope(self, state: _RunState, ticker: str, account_id: str) -> bool:
        if self.settings.wash_sale_scope is WashSaleScope.HOUSEHOLD:
            return any(t == ticker for _, t in state.bought)
        return (account_id, ticker) in state.bought

    # ------------------------------------------------------------------
    # Buying
    # ------------------------------------------------------------------

    def _buy_candidate(
        self, state: _RunState, sleeve: Sleeve, account_id: str
    ) -> SleeveMember | None:
        for member in sleeve.buyable_members:
            if not state.view.is_blocked(member.ticker, account_id):
                return member
        return None

    def _funding_order(self, state: _RunState, sleeve_id: str) -> list[str]:
        """Accounts already holding the sleeve first, then most cash, then id."""
        holders = {
            p.account_id for p in state.snapshot.positions_in_sleeve(sleeve_id) if p.quantity > 0
        }
        accounts = [a for a in state.snapshot.account_ids if state.cash.get(a, ZERO) > 0]
        return sorted(
            accounts,
            key=lambda a: (0 if a in holders else 1, -state.cash.get(a, ZERO), a),
        )

    def _fund_sleeve(
        self, state: _RunState, sleeve_id: str, amount: Decimal, reason: str
    ) -> Decimal:
        """Buy up to ``amount`` of a sleeve's preferred member, bounded by the run budget."""
        sleeve = state.snapshot.registry.sleeve(sleeve_id)
        candidates = {
            account_id: self._buy_candidate(state, sleeve, account_id)
            for account_id in state.snapshot.account_ids
        }
        if not any(candidates.values()):
            self._warn(
                state,
                WarningKind.NO_BUY_CANDIDATE,
                f"Sleeve {sleeve_id} has no unblocked, non-legacy member to buy",
                sleeve_id=sleeve_id,
            )
            return ZERO

        spent_total = ZERO
        for account_id in self._funding_order(state, sleeve_id):
            remaining = min(amount - spent_total, state.budget)
            if remaining <= 0:
                break
            member = candidates[account_id]
            if member is None:
                continue

            price = state.snapshot.price(member.ticker)
            if price is None or price <= 0:
                self._warn(
                    state,
                    WarningKind.MISSING_PRICE,
                    f"No price for buy candidate {member.ticker}; skipped in {account_id}",
                    ticker=member.ticker,
                    sleeve_id=sleeve_id,
                    account_id=account_id,
                )
                continue

            spent = self._buy(state, account_id, member.ticker, sleeve_id, remaining, price, reason)
            state.budget -= spent
            spent_total += spent

        return spent_total

    def _buy(
        self,
        state: _RunState,
        account_id: str,
        ticker: str,
        sleeve_id: str | None,
        dollars: Decimal,
        price: Decimal,
        reason: str,
    ) -> Decimal:
        spendable = min(dollars, state.cash.get(account_id, ZERO))
        qty = floor_shares(spendable, price)
        if qty <= 0:
            return ZERO

        value = price * qty
        key = (account_id, ticker)
        state.cash[account_id] -= value
        state.held[key] = state.held.get(key, ZERO) + qty
        state.bought.add(key)
        state.trades.append(
            TradeIntent(
                account_id=account_id,
                ticker=ticker,
                action=TradeAction.BUY,
                quantity=qty,
                estimated_price=price,
                estimated_value=value,
                reason=reason,
                sleeve_id=sleeve_id,
            )
        )
        return value

    # ------------------------------------------------------------------
    # Warnings and invariants
    # ------------------------------------------------------------------

    def _warn(
        self,
        state: _RunState,
        kind: WarningKind,
        message: str,
        ticker: str | None = None,
        sleeve_id: str | None = None,
        account_id: str | None = None,
    ) -> None:
        warning = PlanWarning(
            kind=kind,
            message=message,
            ticker=ticker,
            sleeve_id=sleeve_id,
            account_id=account_id,
        )
        if warning in state.warnings:
            return
        logger.warning(
            "plan_warning",
            kind=kind.value,
            ticker=ticker,
            sleeve_id=sleeve_id,
            account_id=account_id,
        )
        state.warnings.append(warning)

    def _warn_fractional(self, state: _RunState, pos: Position) -> None:
        remainder = state.held.get((pos.account_id, pos.ticker), ZERO)
        if ZERO < remainder < 1:
            self._warn(
                state,
                WarningKind.FRACTIONAL_REMAINDER,
                f"{remainder} fractional shares of {pos.ticker} left unsold",
                ticker=pos.ticker,
                sleeve_id=pos.sleeve_id,
                account_id=pos.account_id,
            )

    def _check_invariants(self, state: _RunState, trades: list[TradeIntent]) -> None:
        snapshot = state.snapshot
        sold: dict[PositionKey, int] = defaultdict(int)
        cash_delta: dict[str, Decimal] = defaultdict(lambda: ZERO)

        for trade in trades:
            if trade.quantity <= 0:
                raise InvariantViolation(f"Non-positive quantity for {trade.ticker}")
            cash_delta[trade.account_id] += trade.cash_effect
            if trade.is_sell:
                sold[(trade.account_id, trade.ticker)] += trade.quantity
            elif state.view.is_blocked(trade.ticker, trade.account_id):
                raise InvariantViolation(
                    f"BUY of wash-sale blocked {trade.ticker} in {trade.account_id}"
                )

        for (account_id, ticker), qty in sold.items():
            held = snapshot.held_quantity(account_id, ticker)
            if qty > held:
                raise InvariantViolation(
                    f"SELL of {qty} {ticker} exceeds {held} held in {account_id}"
                )

        for account_id, delta in cash_delta.items():
            if snapshot.cash(account_id) + delta < 0:
                raise InvariantViolation(f"Trades overdraw cash in {account_id}")
