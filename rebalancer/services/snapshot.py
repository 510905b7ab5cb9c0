"""Point-in-time valuation of a rebalancing group's holdings."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

import structlog

from rebalancer.domain.holdings import Holding, merge_lots
from rebalancer.exceptions import InputError
from rebalancer.types import (
    CASH_PRICE,
    CASH_TICKER,
    PlanWarning,
    PositionKey,
    PriceMap,
    SleeveKey,
    WarningKind,
)

if TYPE_CHECKING:
    import pandas as pd

    from rebalancer.domain.registry import RebalancingGroup, SleeveRegistry

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def percent_of(value: Decimal, total: Decimal) -> Decimal:
    if total == 0:
        return ZERO
    return value / total * HUNDRED


@dataclass(frozen=True)
class Position:
    """A valued holding with its sleeve assignment.

    Attributes:
        holding: The (merged) holding
        sleeve_id: Owning sleeve, or None when the ticker is unassigned
        rank: Rank within the sleeve, or None when unassigned
        price: Price used for valuation, or None when missing
        market_value: quantity * price (0 when the price is missing)
        current_percent: Share of total group value, 0-100
    """

    holding: Holding
    sleeve_id: str | None
    rank: int | None
    price: Decimal | None
    market_value: Decimal
    current_percent: Decimal

    @property
    def account_id(self) -> str:
        return self.holding.account_id

    @property
    def ticker(self) -> str:
        return self.holding.ticker

    @property
    def quantity(self) -> Decimal:
        return self.holding.quantity

    @property
    def is_cash(self) -> bool:
        return self.ticker == CASH_TICKER

    @property
    def is_priced(self) -> bool:
        return self.price is not None and self.price > 0

    @property
    def unit_price(self) -> Decimal:
        """Valuation price, 0 when missing."""
        return self.price if self.price is not None else ZERO


@dataclass(frozen=True)
class HoldingsSnapshot:
    """Immutable valuation of every position in a group.

    Prices are captured once at build time; nothing here touches I/O.
    """

    group: RebalancingGroup
    registry: SleeveRegistry
    as_of: datetime
    prices: PriceMap
    positions: tuple[Position, ...]
    total_value: Decimal
    warnings: tuple[PlanWarning, ...] = ()
    _by_key: dict[PositionKey, Position] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_key", {(p.account_id, p.ticker): p for p in self.positions})

    @property
    def account_ids(self) -> tuple[str, ...]:
        return self.group.account_ids

    def price(self, ticker: str) -> Decimal | None:
        if ticker == CASH_TICKER:
            return CASH_PRICE
        return self.prices.get(ticker)

    def position(self, account_id: str, ticker: str) -> Position | None:
        return self._by_key.get((account_id, ticker))

    def held_quantity(self, account_id: str, ticker: str) -> Decimal:
        pos = self._by_key.get((account_id, ticker))
        return pos.quantity if pos else ZERO

    def cash(self, account_id: str) -> Decimal:
        return self.held_quantity(account_id, CASH_TICKER)

    @property
    def cash_by_account(self) -> dict[str, Decimal]:
        return {account_id: self.cash(account_id) for account_id in self.account_ids}

    @property
    def total_cash(self) -> Decimal:
        return sum(self.cash_by_account.values(), ZERO)

    def positions_in_sleeve(self, sleeve_id: str | None) -> list[Position]:
        return [p for p in self.positions if p.sleeve_id == sleeve_id]

    def positions_in_account(self, account_id: str) -> list[Position]:
        return [p for p in self.positions if p.account_id == account_id]

    @property
    def unassigned(self) -> list[Position]:
        return self.positions_in_sleeve(None)

    def sleeve_values(self) -> dict[str | None, Decimal]:
        """Group-wide market value per sleeve id (None = unassigned)."""
        values: dict[str | None, Decimal] = defaultdict(lambda: ZERO)
        for pos in self.positions:
            values[pos.sleeve_id] += pos.market_value
        return dict(values)

    def account_sleeve_values(self) -> dict[SleeveKey, Decimal]:
        values: dict[SleeveKey, Decimal] = defaultdict(lambda: ZERO)
        for pos in self.positions:
            values[(pos.account_id, pos.sleeve_id)] += pos.market_value
        return dict(values)

    def account_sleeve_percents(self) -> dict[SleeveKey, Decimal]:
        return {k: percent_of(v, self.total_value) for k, v in self.account_sleeve_values().items()}

    def account_total(self, account_id: str) -> Decimal:
        return sum((p.market_value for p in self.positions_in_account(account_id)), ZERO)

    def to_dataframe(self) -> pd.DataFrame:
        """Flat DataFrame projection, one row per position."""
        import pandas as pd

        columns = [
            "Account_ID",
            "Ticker",
            "Sleeve_ID",
            "Rank",
            "Shares",
            "Price",
            "Value",
            "Cost_Basis",
            "Current_Pct",
        ]
        rows = [
            {
                "Account_ID": p.account_id,
                "Ticker": p.ticker,
                "Sleeve_ID": p.sleeve_id,
                "Rank": p.rank,
                "Shares": float(p.quantity),
                "Price": float(p.price) if p.price is not None else None,
                "Value": float(p.market_value),
                "Cost_Basis": float(p.holding.cost_basis),
                "Current_Pct": float(p.current_percent),
            }
            for p in self.positions
        ]
        return pd.DataFrame(rows, columns=columns)


class HoldingsSnapshotBuilder:
    """Values raw holdings against a price map and the sleeve registry."""

    def __init__(self, registry: SleeveRegistry) -> None:
        self.registry = registry

    def build(
        self,
        group: RebalancingGroup,
        holdings: Iterable[Holding],
        prices: Mapping[str, Decimal],
        as_of: datetime,
    ) -> HoldingsSnapshot:
        """Build a snapshot for ``group``.

        Args:
            group: Rebalancing group whose accounts are valued
            holdings: Raw holdings; lots outside the group are ignored
            prices: Ticker -> price; the cash ticker is always priced at 1
            as_of: Valuation timestamp

        Returns:
            HoldingsSnapshot with positions sorted by account then ticker

        Raises:
            InputError: On negative prices, quantities or cost basis
        """
        price_map = self._normalize_prices(prices)
        account_ids = set(group.account_ids)
        index = self.registry.membership_index()

        lots: dict[PositionKey, list[Holding]] = defaultdict(list)
        skipped = 0
        for holding in holdings:
            if holding.account_id not in account_ids:
                skipped += 1
                continue
            lots[(holding.account_id, holding.ticker)].append(holding)

        if skipped:
            logger.debug("holdings_outside_group_ignored", group_id=group.group_id, count=skipped)

        warnings: list[PlanWarning] = []
        valued: list[tuple[Holding, str | None, int | None, Decimal | None, Decimal]] = []
        for key in sorted(lots):
            holding = merge_lots(lots[key])
            price = price_map.get(holding.ticker)
            entry = index.get(holding.ticker)
            sleeve_id, rank = entry if entry else (None, None)

            if price is None:
                logger.warning(
                    "missing_price_for_holding",
                    account_id=holding.account_id,
                    ticker=holding.ticker,
                )
                warnings.append(
                    PlanWarning(
                        kind=WarningKind.MISSING_PRICE,
                        message=f"No price for {holding.ticker}; valued at 0",
                        ticker=holding.ticker,
                        sleeve_id=sleeve_id,
                        account_id=holding.account_id,
                    )
                )
            valued.append((holding, sleeve_id, rank, price, holding.market_value(price)))

        total_value = sum((v[4] for v in valued), ZERO)
        positions = tuple(
            Position(
                holding=holding,
                sleeve_id=sleeve_id,
                rank=rank,
                price=price,
                market_value=value,
                current_percent=percent_of(value, total_value),
            )
            for holding, sleeve_id, rank, price, value in valued
        )

        logger.info(
            "holdings_snapshot_built",
            group_id=group.group_id,
            position_count=len(positions),
            total_value=float(total_value),
            missing_prices=len(warnings),
        )

        return HoldingsSnapshot(
            group=group,
            registry=self.registry,
            as_of=as_of,
            prices=price_map,
            positions=positions,
            total_value=total_value,
            warnings=tuple(warnings),
        )

    def _normalize_prices(self, prices: Mapping[str, Decimal]) -> PriceMap:
        price_map: PriceMap = {}
        for ticker, raw in prices.items():
            if raw is None:
                continue
            price = raw if isinstance(raw, Decimal) else Decimal(str(raw))
            if price < 0:
                raise InputError(f"Negative price for {ticker}: {price}")
            price_map[ticker] = price
        price_map[CASH_TICKER] = CASH_PRICE
        return price_map
