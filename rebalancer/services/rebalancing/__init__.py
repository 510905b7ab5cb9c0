"""Trade generation and plan orchestration.

Usage:
    from rebalancer.services.rebalancing import RebalancingEngine

    engine = RebalancingEngine(registry, tracker)
    plan = engine.generate_plan(group, holdings, prices, "allocation", now)

    for trade in plan.trades:
        print(f"{trade.action.value} {trade.quantity} {trade.ticker}")
"""

from rebalancer.services.rebalancing.calculator import RebalanceStrategy, TradeGenerator
from rebalancer.services.rebalancing.dataclasses import (
    ExecutionResult,
    GenerationResult,
    ProFormaPosition,
    RebalancingPlan,
    SleeveTradeSummary,
    TradeIntent,
)
from rebalancer.services.rebalancing.engine import OrderSubmitter, RebalancingEngine
from rebalancer.services.rebalancing.locks import AccountLockManager

__all__ = [
    "AccountLockManager",
    "ExecutionResult",
    "GenerationResult",
    "OrderSubmitter",
    "ProFormaPosition",
    "RebalanceStrategy",
    "RebalancingEngine",
    "RebalancingPlan",
    "SleeveTradeSummary",
    "TradeGenerator",
    "TradeIntent",
]
