"""
Pytest configuration and fixtures for the rebalancer tests.

Reference data:
- registry: Three sleeves plus cash
    us_large: AAA (1), BBB (2), OLD (9, legacy)
    intl:     CCC (1), DDD (2)
    bonds:    EEE (1), FFF (2)
- taxable_account / ira_account: One taxable and one tax-advantaged account
- balanced_model: 60 / 20 / 20 across us_large / intl / bonds

Engine wiring:
- store: Empty in-memory wash-sale store
- tracker: Household-scope tracker over ``store``
- engine_settings: Engine defaults
- engine: RebalancingEngine over the fixtures above
- make_engine: Build an engine with other settings, registry or store
"""

from collections.abc import Callable

import pytest

from rebalancer.conf import EngineSettings
from rebalancer.domain import Account, Security, Sleeve, SleeveMember, SleeveRegistry
from rebalancer.services import HoldingsSnapshotBuilder
from rebalancer.services.allocations import AllocationCalculator
from rebalancer.services.rebalancing import RebalancingEngine, TradeGenerator
from rebalancer.services.washsale import InMemoryRestrictionStore, WashSaleTracker
from rebalancer.tests.base import make_model
from rebalancer.tests.constants import IRA_ID, STANDARD_PRICES, TAXABLE_ID

# ============================================================================
# REFERENCE DATA
# ============================================================================


@pytest.fixture
def registry() -> SleeveRegistry:
    """Sleeves and securities used across the engine tests."""
    sleeves = [
        Sleeve(
            sleeve_id="us_large",
            name="US Large Cap",
            members=(
                SleeveMember("AAA", 1),
                SleeveMember("BBB", 2),
                SleeveMember("OLD", 9, is_legacy=True),
            ),
        ),
        Sleeve(
            sleeve_id="intl",
            name="International",
            members=(SleeveMember("CCC", 1), SleeveMember("DDD", 2)),
        ),
        Sleeve(
            sleeve_id="bonds",
            name="Bonds",
            members=(SleeveMember("EEE", 1), SleeveMember("FFF", 2)),
        ),
    ]
    securities = [
        Security(ticker=ticker, name=f"{ticker} Fund", last_price=price)
        for ticker, price in STANDARD_PRICES.items()
    ]
    return SleeveRegistry.build(sleeves, securities)


@pytest.fixture
def taxable_account() -> Account:
    return Account(account_id=TAXABLE_ID, name="Brokerage", is_taxable=True)


@pytest.fixture
def ira_account() -> Account:
    return Account(account_id=IRA_ID, name="Rollover IRA", is_taxable=False)


@pytest.fixture
def balanced_model():
    return make_model("balanced", us_large=6000, intl=2000, bonds=2000)


# ============================================================================
# ENGINE WIRING
# ============================================================================


@pytest.fixture
def store() -> InMemoryRestrictionStore:
    return InMemoryRestrictionStore()


@pytest.fixture
def tracker(store: InMemoryRestrictionStore) -> WashSaleTracker:
    return WashSaleTracker(store)


@pytest.fixture
def engine_settings() -> EngineSettings:
    return EngineSettings()


@pytest.fixture
def builder(registry: SleeveRegistry) -> HoldingsSnapshotBuilder:
    return HoldingsSnapshotBuilder(registry)


@pytest.fixture
def calculator() -> AllocationCalculator:
    return AllocationCalculator()


@pytest.fixture
def generator(engine_settings: EngineSettings) -> TradeGenerator:
    return TradeGenerator(engine_settings)


@pytest.fixture
def engine(
    registry: SleeveRegistry, tracker: WashSaleTracker, engine_settings: EngineSettings
) -> RebalancingEngine:
    return RebalancingEngine(registry, tracker, engine_settings)


@pytest.fixture
def make_engine(
    registry: SleeveRegistry, store: InMemoryRestrictionStore
) -> Callable[..., RebalancingEngine]:
    """
    Factory for engines with non-default wiring.

    The tracker always follows the settings' window and scope.
    """

    def _make(settings=None, registry_override=None, store_override=None):
        settings = settings or EngineSettings()
        # An empty in-memory store is falsy
        chosen = store if store_override is None else store_override
        tracker = WashSaleTracker.from_settings(chosen, settings)
        return RebalancingEngine(registry_override or registry, tracker, settings)

    return _make
