from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from decimal import Decimal

import structlog

from rebalancer.exceptions import InputError, MissingModelError, ModelWeightError
from rebalancer.types import (
    CASH_PRICE,
    CASH_SLEEVE_ID,
    CASH_TICKER,
    TOTAL_WEIGHT_BP,
    AssetType,
    MemberKind,
    SleeveKind,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Security:
    """Reference data for a tradable security.

    ``last_price`` is whatever the external feed last reported; the engine
    only uses it when a caller asks for reference prices explicitly.
    """

    ticker: str
    name: str = ""
    last_price: Decimal | None = None
    sector: str = ""
    industry: str = ""
    asset_type: AssetType = AssetType.EQUITY


@dataclass(frozen=True)
class SleeveMember:
    ticker: str
    rank: int
    is_legacy: bool = False


@dataclass(frozen=True)
class Sleeve:
    """A ranked list of interchangeable securities.

    Rank 1 is the most preferred buy. Legacy members can be held and sold
    but are never bought.
    """

    sleeve_id: str
    name: str
    members: tuple[SleeveMember, ...] = ()
    kind: SleeveKind = SleeveKind.NORMAL

    def __post_init__(self) -> None:
        ranks = [m.rank for m in self.members]
        if any(r <= 0 for r in ranks):
            raise InputError(f"Sleeve {self.sleeve_id}: ranks must be positive, got {ranks}")
        if len(set(ranks)) != len(ranks):
            raise InputError(f"Sleeve {self.sleeve_id}: duplicate ranks {sorted(ranks)}")
        tickers = [m.ticker for m in self.members]
        if len(set(tickers)) != len(tickers):
            raise InputError(f"Sleeve {self.sleeve_id}: duplicate tickers {sorted(tickers)}")
        # Keep members in rank order regardless of input order
        object.__setattr__(self, "members", tuple(sorted(self.members, key=lambda m: m.rank)))

    @classmethod
    def cash(cls) -> Sleeve:
        return cls(
            sleeve_id=CASH_SLEEVE_ID,
            name="Cash",
            members=(SleeveMember(ticker=CASH_TICKER, rank=1),),
            kind=SleeveKind.CASH,
        )

    @property
    def is_cash(self) -> bool:
        return self.kind is SleeveKind.CASH

    @property
    def tickers(self) -> tuple[str, ...]:
        return tuple(m.ticker for m in self.members)

    @property
    def buyable_members(self) -> tuple[SleeveMember, ...]:
        """Non-legacy members in rank order."""
        return tuple(m for m in self.members if not m.is_legacy)

    @property
    def target_member(self) -> SleeveMember | None:
        buyable = self.buyable_members
        return buyable[0] if buyable else None

    def member(self, ticker: str) -> SleeveMember | None:
        for m in self.members:
            if m.ticker == ticker:
                return m
        return None

    def kind_of(self, ticker: str) -> MemberKind:
        member = self.member(ticker)
        if member is None:
            raise KeyError(f"{ticker} is not a member of sleeve {self.sleeve_id}")
        if member.is_legacy:
            return MemberKind.LEGACY
        if member == self.target_member:
            return MemberKind.TARGET
        return MemberKind.ALTERNATE


@dataclass(frozen=True)
class ModelMember:
    sleeve_id: str
    target_weight_bp: int


@dataclass(frozen=True)
class AllocationModel:
    """Named weighting template; weights are integer basis points."""

    model_id: str
    name: str
    members: tuple[ModelMember, ...] = ()

    @property
    def total_weight_bp(self) -> int:
        return sum(m.target_weight_bp for m in self.members)

    def weight_for(self, sleeve_id: str) -> int:
        for m in self.members:
            if m.sleeve_id == sleeve_id:
                return m.target_weight_bp
        return 0

    @property
    def sleeve_ids(self) -> tuple[str, ...]:
        return tuple(m.sleeve_id for m in self.members)


def validate_model_weights(model: AllocationModel, tolerance_bp: int = 1) -> None:
    """Check that a model's weights sum to 10,000 bp within ``tolerance_bp``.

    Raises:
        ModelWeightError: On negative weights, duplicate sleeves, or a bad total
    """
    sleeve_ids = model.sleeve_ids
    if len(set(sleeve_ids)) != len(sleeve_ids):
        raise ModelWeightError(f"Model {model.name} lists a sleeve more than once")

    negative = [m.sleeve_id for m in model.members if m.target_weight_bp < 0]
    if negative:
        raise ModelWeightError(f"Model {model.name} has negative weights for {negative}")

    total = model.total_weight_bp
    if abs(total - TOTAL_WEIGHT_BP) > tolerance_bp:
        raise ModelWeightError(
            f"Model {model.name} weights sum to {total} bp "
            f"({Decimal(total) / 100:.2f}%), expected {TOTAL_WEIGHT_BP} bp"
        )


@dataclass(frozen=True)
class Account:
    account_id: str
    name: str = ""
    is_taxable: bool = True


@dataclass(frozen=True)
class RebalancingGroup:
    """Accounts managed together against at most one model."""

    group_id: str
    name: str
    accounts: tuple[Account, ...]
    model: AllocationModel | None = None

    def __post_init__(self) -> None:
        if not self.accounts:
            raise InputError(f"Rebalancing group {self.name} has no accounts")

    def __iter__(self) -> Iterator[Account]:
        return iter(self.accounts)

    @property
    def account_ids(self) -> tuple[str, ...]:
        return tuple(a.account_id for a in self.accounts)

    def account(self, account_id: str) -> Account | None:
        for acc in self.accounts:
            if acc.account_id == account_id:
                return acc
        return None

    def require_model(self) -> AllocationModel:
        if self.model is None:
            raise MissingModelError(f"Rebalancing group {self.name} has no assigned model")
        return self.model


@dataclass(frozen=True)
class SleeveRegistry:
    """Read-only lookup over sleeves and securities.

    The synthetic cash sleeve is always present.
    """

    sleeves: tuple[Sleeve, ...] = ()
    securities: tuple[Security, ...] = ()
    _by_id: dict[str, Sleeve] = field(init=False, repr=False, compare=False)
    _index: dict[str, tuple[str, int]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_id: dict[str, Sleeve] = {}
        for sleeve in self.sleeves:
            if sleeve.sleeve_id in by_id:
                raise InputError(f"Duplicate sleeve id {sleeve.sleeve_id}")
            by_id[sleeve.sleeve_id] = sleeve
        if CASH_SLEEVE_ID not in by_id:
            by_id[CASH_SLEEVE_ID] = Sleeve.cash()

        index: dict[str, tuple[str, int]] = {}
        for sleeve_id in sorted(by_id):
            sleeve = by_id[sleeve_id]
            for member in sleeve.members:
                if member.ticker in index:
                    raise InputError(
                        f"{member.ticker} belongs to both {index[member.ticker][0]} "
                        f"and {sleeve_id}"
                    )
                index[member.ticker] = (sleeve_id, member.rank)

            target = sleeve.target_member
            if not sleeve.is_cash and (target is None or target.rank != 1):
                logger.warning(
                    "sleeve_without_rank_one_target",
                    sleeve_id=sleeve_id,
                    target=target.ticker if target else None,
                )

        object.__setattr__(self, "sleeves", tuple(by_id[k] for k in sorted(by_id)))
        object.__setattr__(self, "_by_id", by_id)
        object.__setattr__(self, "_index", index)

    @classmethod
    def build(
        cls, sleeves: Iterable[Sleeve], securities: Iterable[Security] = ()
    ) -> SleeveRegistry:
        return cls(sleeves=tuple(sleeves), securities=tuple(securities))

    def __iter__(self) -> Iterator[Sleeve]:
        return iter(self.sleeves)

    def __contains__(self, sleeve_id: object) -> bool:
        return sleeve_id in self._by_id

    def sleeve(self, sleeve_id: str) -> Sleeve:
        try:
            return self._by_id[sleeve_id]
        except KeyError:
            raise InputError(f"Unknown sleeve {sleeve_id}") from None

    def sleeve_for(self, ticker: str) -> Sleeve | None:
        entry = self._index.get(ticker)
        return self._by_id[entry[0]] if entry else None

    def membership_index(self) -> dict[str, tuple[str, int]]:
        """Map ticker -> (sleeve_id, rank)."""
        return dict(self._index)

    def check_model(self, model: AllocationModel) -> None:
        unknown = [sid for sid in model.sleeve_ids if sid not in self._by_id]
        if unknown:
            raise InputError(f"Model {model.name} references unknown sleeves {unknown}")

    def reference_prices(self) -> dict[str, Decimal]:
        """Last known prices from security reference data, plus cash at 1.0."""
        prices = {s.ticker: s.last_price for s in self.securities if s.last_price is not None}
        prices[CASH_TICKER] = CASH_PRICE
        return prices
