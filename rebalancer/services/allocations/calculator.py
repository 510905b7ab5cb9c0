"""Pure allocation drift calculations over a holdings snapshot."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

import structlog

from rebalancer.services.snapshot import HUNDRED, ZERO, Position, percent_of
from rebalancer.types import CASH_SLEEVE_ID, TOTAL_WEIGHT_BP, MemberKind

if TYPE_CHECKING:
    from rebalancer.domain.registry import AllocationModel, Sleeve
    from rebalancer.services.snapshot import HoldingsSnapshot

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SleeveAllocation:
    """Current vs target for one sleeve.

    Attributes:
        difference: target_value - current_value; positive means under target
        percent_distance: |current_percent - target_percent|, 0 when the
            target percent is 0
    """

    sleeve_id: str
    name: str
    is_cash: bool
    target_weight_bp: int
    target_value: Decimal
    current_value: Decimal
    difference: Decimal
    target_percent: Decimal
    current_percent: Decimal
    percent_distance: Decimal

    @property
    def in_model(self) -> bool:
        return self.target_weight_bp > 0


@dataclass(frozen=True)
class SecurityAllocation:
    """Current vs target for one security; unassigned tickers have no sleeve."""

    sleeve_id: str | None
    ticker: str
    member_kind: MemberKind | None
    rank: int | None
    quantity: Decimal
    price: Decimal | None
    current_value: Decimal
    current_percent: Decimal
    target_value: Decimal
    target_percent: Decimal
    difference: Decimal

    @property
    def is_held(self) -> bool:
        return self.quantity > 0


@dataclass(frozen=True)
class AllocationSummary:
    """Allocation of a group (or a single account) against a model."""

    model_id: str
    account_id: str | None
    total_value: Decimal
    sleeves: tuple[SleeveAllocation, ...]
    securities: tuple[SecurityAllocation, ...]
    unassigned: tuple[SecurityAllocation, ...]
    cash_value: Decimal
    cash_target: Decimal
    investable_cash: Decimal

    def sleeve(self, sleeve_id: str) -> SleeveAllocation | None:
        for s in self.sleeves:
            if s.sleeve_id == sleeve_id:
                return s
        return None

    def securities_in(self, sleeve_id: str) -> list[SecurityAllocation]:
        return [s for s in self.securities if s.sleeve_id == sleeve_id]

    @property
    def total_percent_distance(self) -> Decimal:
        return sum((s.percent_distance for s in self.sleeves), ZERO)

    @property
    def under_target(self) -> list[SleeveAllocation]:
        """Non-cash sleeves below target, largest deficit first."""
        rows = [s for s in self.sleeves if not s.is_cash and s.difference > 0]
        return sorted(rows, key=lambda s: (-s.difference, s.sleeve_id))

    @property
    def over_target(self) -> list[SleeveAllocation]:
        rows = [s for s in self.sleeves if not s.is_cash and s.difference < 0]
        return sorted(rows, key=lambda s: (s.difference, s.sleeve_id))


class AllocationCalculator:
    """
    Stateless allocation math.

    Given the same snapshot and model, always returns the same summary.
    """

    def calculate(self, snapshot: HoldingsSnapshot, model: AllocationModel) -> AllocationSummary:
        """Calculate group-wide allocation against ``model``."""
        return self._calculate(
            snapshot=snapshot,
            model=model,
            positions=snapshot.positions,
            total_value=snapshot.total_value,
            account_id=None,
        )

    def calculate_for_account(
        self,
        snapshot: HoldingsSnapshot,
        model: AllocationModel,
        account_id: str,
    ) -> AllocationSummary:
        """Calculate allocation for one account, using its own total as the base."""
        return self._calculate(
            snapshot=snapshot,
            model=model,
            positions=tuple(snapshot.positions_in_account(account_id)),
            total_value=snapshot.account_total(account_id),
            account_id=account_id,
        )

    def _calculate(
        self,
        snapshot: HoldingsSnapshot,
        model: AllocationModel,
        positions: Sequence[Position],
        total_value: Decimal,
        account_id: str | None,
    ) -> AllocationSummary:
        registry = snapshot.registry
        registry.check_model(model)

        current_by_sleeve: dict[str | None, Decimal] = defaultdict(lambda: ZERO)
        for pos in positions:
            current_by_sleeve[pos.sleeve_id] += pos.market_value

        sleeve_ids = set(model.sleeve_ids) | {sid for sid in current_by_sleeve if sid is not None}
        sleeve_ids.add(CASH_SLEEVE_ID)

        sleeve_rows: list[SleeveAllocation] = []
        security_rows: list[SecurityAllocation] = []
        cash_value = ZERO
        cash_target = ZERO

        for sleeve_id in sorted(sleeve_ids):
            sleeve = registry.sleeve(sleeve_id)
            weight = model.weight_for(sleeve_id)
            current = current_by_sleeve.get(sleeve_id, ZERO)
            target = self._target_value(weight, total_value)
            row = self._sleeve_row(sleeve, weight, target, current, total_value)
            sleeve_rows.append(row)
            security_rows.extend(
                self._security_rows(sleeve, row.target_value, positions, snapshot, total_value)
            )
            if sleeve.is_cash:
                cash_value = current
                cash_target = target

        unassigned_rows = self._unassigned_rows(positions, total_value)
        investable_cash = max(ZERO, cash_value - cash_target)

        summary = AllocationSummary(
            model_id=model.model_id,
            account_id=account_id,
            total_value=total_value,
            sleeves=tuple(sleeve_rows),
            securities=tuple(security_rows),
            unassigned=tuple(unassigned_rows),
            cash_value=cash_value,
            cash_target=cash_target,
            investable_cash=investable_cash,
        )

        logger.debug(
            "allocation_calculated",
            model_id=model.model_id,
            account_id=account_id,
            sleeve_count=len(sleeve_rows),
            total_value=float(total_value),
            total_percent_distance=float(summary.total_percent_distance),
        )
        return summary

    def _target_value(self, weight_bp: int, total_value: Decimal) -> Decimal:
        return Decimal(weight_bp) / Decimal(TOTAL_WEIGHT_BP) * total_value

    def _sleeve_row(
        self,
        sleeve: Sleeve,
        weight_bp: int,
        target: Decimal,
        current: Decimal,
        total_value: Decimal,
    ) -> SleeveAllocation:
        target_pct = Decimal(weight_bp) / Decimal(TOTAL_WEIGHT_BP) * HUNDRED
        current_pct = percent_of(current, total_value)

        if weight_bp == 0 and sleeve.is_cash:
            # Cash outside the model is slack to invest, never an over-allocation
            difference = ZERO
            distance = ZERO
        else:
            difference = target - current
            distance = abs(current_pct - target_pct) if weight_bp else ZERO

        return SleeveAllocation(
            sleeve_id=sleeve.sleeve_id,
            name=sleeve.name,
            is_cash=sleeve.is_cash,
            target_weight_bp=weight_bp,
            target_value=target,
            current_value=current,
            difference=difference,
            target_percent=target_pct,
            current_percent=current_pct,
            percent_distance=distance,
        )

    def _security_rows(
        self,
        sleeve: Sleeve,
        sleeve_target: Decimal,
        positions: Sequence[Position],
        snapshot: HoldingsSnapshot,
        total_value: Decimal,
    ) -> list[SecurityAllocation]:
        """One row per sleeve member; the TARGET member carries the sleeve's target."""
        quantities: dict[str, Decimal] = defaultdict(lambda: ZERO)
        values: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for pos in positions:
            if pos.sleeve_id == sleeve.sleeve_id:
                quantities[pos.ticker] += pos.quantity
                values[pos.ticker] += pos.market_value

        rows = []
        for member in sleeve.members:
            kind = sleeve.kind_of(member.ticker)
            target = sleeve_target if kind is MemberKind.TARGET else ZERO
            current = values.get(member.ticker, ZERO)
            rows.append(
                SecurityAllocation(
                    sleeve_id=sleeve.sleeve_id,
                    ticker=member.ticker,
                    member_kind=kind,
                    rank=member.rank,
                    quantity=quantities.get(member.ticker, ZERO),
                    price=snapshot.price(member.ticker),
                    current_value=current,
                    current_percent=percent_of(current, total_value),
                    target_value=target,
                    target_percent=percent_of(target, total_value),
                    difference=target - current,
                )
            )
        return rows

    def _unassigned_rows(
        self, positions: Sequence[Position], total_value: Decimal
    ) -> list[SecurityAllocation]:
        quantities: dict[str, Decimal] = defaultdict(lambda: ZERO)
        values: dict[str, Decimal] = defaultdict(lambda: ZERO)
        prices: dict[str, Decimal | None] = {}
        for pos in positions:
            if pos.sleeve_id is None:
                quantities[pos.ticker] += pos.quantity
                values[pos.ticker] += pos.market_value
                prices[pos.ticker] = pos.price

        return [
            SecurityAllocation(
                sleeve_id=None,
                ticker=ticker,
                member_kind=None,
                rank=None,
                quantity=quantities[ticker],
                price=prices[ticker],
                current_value=values[ticker],
                current_percent=percent_of(values[ticker], total_value),
                target_value=ZERO,
                target_percent=ZERO,
                difference=-values[ticker],
            )
            for ticker in sorted(quantities)
        ]
