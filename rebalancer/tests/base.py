"""Plain helpers shared by the engine tests."""

from collections.abc import Iterable
from decimal import Decimal

from rebalancer.domain import Account, AllocationModel, ModelMember, RebalancingGroup
from rebalancer.services.rebalancing import TradeIntent
from rebalancer.tests.constants import GROUP_ID, STANDARD_PRICES


def make_model(model_id: str = "model-1", **weights: int) -> AllocationModel:
    """Build a model from ``sleeve_id=basis_points`` keyword arguments."""
    return AllocationModel(
        model_id=model_id,
        name=model_id.replace("-", " ").title(),
        members=tuple(ModelMember(sleeve_id=k, target_weight_bp=v) for k, v in weights.items()),
    )


def make_group(model: AllocationModel | None, *accounts: Account) -> RebalancingGroup:
    return RebalancingGroup(group_id=GROUP_ID, name="Household", accounts=accounts, model=model)


def prices_with(**overrides: str | None) -> dict[str, Decimal]:
    """Standard prices with some replaced; ``None`` removes a ticker."""
    prices = dict(STANDARD_PRICES)
    for ticker, value in overrides.items():
        if value is None:
            prices.pop(ticker, None)
        else:
            prices[ticker] = Decimal(value)
    return prices


def trade_tuples(trades: Iterable[TradeIntent]) -> list[tuple[str, str, str, int]]:
    """(account, action, ticker, quantity) for compact assertions."""
    return [(t.account_id, t.action.value, t.ticker, t.quantity) for t in trades]
