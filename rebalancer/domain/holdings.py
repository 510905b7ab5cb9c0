from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from rebalancer.exceptions import InputError


@dataclass(frozen=True)
class Holding:
    """A position in one account, valued at average cost."""

    account_id: str
    ticker: str
    quantity: Decimal
    cost_basis_per_share: Decimal
    opened_at: datetime

    def __post_init__(self) -> None:
        if self.quantity < 0:
            raise InputError(
                f"{self.ticker} in {self.account_id}: negative quantity {self.quantity}"
            )
        if self.cost_basis_per_share < 0:
            raise InputError(
                f"{self.ticker} in {self.account_id}: "
                f"negative cost basis {self.cost_basis_per_share}"
            )

    @property
    def cost_basis(self) -> Decimal:
        return self.quantity * self.cost_basis_per_share

    @property
    def whole_shares(self) -> int:
        """Largest whole number of shares that can be sold."""
        return int(self.quantity)

    def market_value(self, price: Decimal | None) -> Decimal:
        """Return 0.00 when no price is available."""
        if price is None:
            return Decimal("0.00")
        return self.quantity * price

    def unrealized_gain(self, price: Decimal) -> Decimal:
        return self.market_value(price) - self.cost_basis

    def realized_gain(self, quantity: int | Decimal, sale_price: Decimal) -> Decimal:
        """Gain (negative = loss) from selling ``quantity`` shares at ``sale_price``."""
        return Decimal(quantity) * (sale_price - self.cost_basis_per_share)

    def loss_percent(self, price: Decimal) -> Decimal:
        """Unrealized loss as a percentage of cost basis (0 when in a gain)."""
        if self.cost_basis == 0:
            return Decimal("0")
        loss = -self.unrealized_gain(price)
        if loss <= 0:
            return Decimal("0")
        return loss / self.cost_basis * Decimal("100")

    def holding_days(self, as_of: datetime) -> int:
        return (as_of - self.opened_at).days

    def is_long_term(self, as_of: datetime, long_term_days: int = 366) -> bool:
        return as_of - self.opened_at >= timedelta(days=long_term_days)


def merge_lots(lots: list[Holding]) -> Holding:
    """Combine lots of the same ticker in one account.

    Quantity is summed, cost basis is the quantity-weighted average and
    ``opened_at`` is the most recent lot so gains are never classified as
    long-term too early.
    """
    first = lots[0]
    if len(lots) == 1:
        return first

    total_qty = sum((lot.quantity for lot in lots), Decimal("0"))
    total_cost = sum((lot.cost_basis for lot in lots), Decimal("0"))
    avg_cost = total_cost / total_qty if total_qty else first.cost_basis_per_share
    return Holding(
        account_id=first.account_id,
        ticker=first.ticker,
        quantity=total_qty,
        cost_basis_per_share=avg_cost,
        opened_at=max(lot.opened_at for lot in lots),
    )


@dataclass(frozen=True)
class Transaction:
    """An executed trade from account history."""

    account_id: str
    ticker: str
    action: str
    quantity: Decimal
    price: Decimal
    executed_at: datetime
    realized_gain: Decimal = Decimal("0")

    @property
    def is_loss_sale(self) -> bool:
        return self.action == "SELL" and self.realized_gain < 0
