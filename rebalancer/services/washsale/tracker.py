"""Wash-sale window tracking.

A realised loss on a sale blocks repurchase of the same ticker for a fixed
window. The tracker answers "may this ticker be bought here, now?" and
records new blocks when sales are accepted.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Protocol

import structlog

from rebalancer.exceptions import RestrictionStoreUnavailable
from rebalancer.types import CASH_TICKER, PlanWarning, WarningKind, WashSaleScope

if TYPE_CHECKING:
    from rebalancer.conf import EngineSettings
    from rebalancer.domain.holdings import Transaction

logger = structlog.get_logger(__name__)

DEFAULT_WINDOW_DAYS = 31


@dataclass(frozen=True)
class WashSaleRecord:
    """A block on repurchasing ``ticker`` created by a loss sale.

    ``blocked_until`` of None means the window is unknown; such records
    are treated as blocking.
    """

    ticker: str
    account_id: str
    sold_at: datetime
    blocked_until: datetime | None
    loss_amount: Decimal = Decimal("0")
    sleeve_id: str | None = None

    def is_active(self, now: datetime) -> bool:
        return self.blocked_until is None or now < self.blocked_until


class RestrictionStore(Protocol):
    """Durable storage for wash-sale records.

    Implementations raise RestrictionStoreUnavailable when they cannot answer.
    """

    def active_records(
        self, now: datetime, account_ids: Iterable[str] | None = None
    ) -> list[WashSaleRecord]: ...

    def add(self, record: WashSaleRecord) -> None: ...


class InMemoryRestrictionStore:
    """Thread-safe store for tests and single-process use."""

    def __init__(self, records: Iterable[WashSaleRecord] = ()) -> None:
        self._lock = threading.Lock()
        self._records: list[WashSaleRecord] = list(records)

    def active_records(
        self, now: datetime, account_ids: Iterable[str] | None = None
    ) -> list[WashSaleRecord]:
        wanted = set(account_ids) if account_ids is not None else None
        with self._lock:
            return [
                r
                for r in self._records
                if r.is_active(now) and (wanted is None or r.account_id in wanted)
            ]

    def add(self, record: WashSaleRecord) -> None:
        with self._lock:
            self._records.append(record)

    def purge_expired(self, now: datetime) -> int:
        with self._lock:
            before = len(self._records)
            self._records = [r for r in self._records if r.is_active(now)]
            return before - len(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


@dataclass(frozen=True)
class WashSaleView:
    """Blocks loaded once for a whole planning run.

    When ``fail_closed`` is set the store could not be read and every
    ticker except cash is reported as blocked.
    """

    now: datetime
    scope: WashSaleScope
    records: tuple[WashSaleRecord, ...] = ()
    fail_closed: bool = False
    warnings: tuple[PlanWarning, ...] = ()
    _blocked: frozenset[tuple[str, str | None]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        keys: set[tuple[str, str | None]] = set()
        for r in self.records:
            if not r.is_active(self.now):
                continue
            if self.scope is WashSaleScope.HOUSEHOLD:
                keys.add((r.ticker, None))
            else:
                keys.add((r.ticker, r.account_id))
        object.__setattr__(self, "_blocked", frozenset(keys))

    def is_blocked(self, ticker: str, account_id: str) -> bool:
        if ticker == CASH_TICKER:
            return False
        if self.fail_closed:
            return True
        if self.scope is WashSaleScope.HOUSEHOLD:
            return (ticker, None) in self._blocked
        return (ticker, account_id) in self._blocked

    def blocked_tickers(self) -> set[str]:
        return {ticker for ticker, _ in self._blocked}

    def with_records(self, records: Iterable[WashSaleRecord]) -> WashSaleView:
        """Return a new view that also honours ``records``."""
        return WashSaleView(
            now=self.now,
            scope=self.scope,
            records=self.records + tuple(records),
            fail_closed=self.fail_closed,
            warnings=self.warnings,
        )


class WashSaleTracker:
    """Reads and writes wash-sale blocks through a RestrictionStore."""

    def __init__(
        self,
        store: RestrictionStore,
        window_days: int = DEFAULT_WINDOW_DAYS,
        scope: WashSaleScope = WashSaleScope.HOUSEHOLD,
    ) -> None:
        self.store = store
        self.window = timedelta(days=window_days)
        self.scope = scope

    @classmethod
    def from_settings(cls, store: RestrictionStore, settings: EngineSettings) -> WashSaleTracker:
        return cls(
            store=store,
            window_days=settings.wash_sale_window_days,
            scope=settings.wash_sale_scope,
        )

    def blocked_until(self, sold_at: datetime) -> datetime:
        return sold_at + self.window

    def is_blocked(self, ticker: str, account_id: str, now: datetime) -> bool:
        """Single lookup; fails closed when the store is unavailable."""
        return self.view(now, [account_id]).is_blocked(ticker, account_id)

    def view(
        self,
        now: datetime,
        account_ids: Iterable[str],
        transactions: Iterable[Transaction] = (),
    ) -> WashSaleView:
        """Load every active block relevant to ``account_ids``.

        Household scope consults records from all accounts. Loss sales found
        in ``transactions`` are merged in even if no record was persisted.
        """
        account_ids = list(account_ids)
        lookup = None if self.scope is WashSaleScope.HOUSEHOLD else account_ids
        try:
            records = self.store.active_records(now, lookup)
        except RestrictionStoreUnavailable as exc:
            logger.error(
                "wash_sale_store_unavailable",
                error=str(exc),
                account_ids=account_ids,
            )
            warning = PlanWarning(
                kind=WarningKind.WASH_SALE_DATA_UNAVAILABLE,
                message="Wash-sale data unavailable; all buys blocked",
            )
            return WashSaleView(now=now, scope=self.scope, fail_closed=True, warnings=(warning,))

        derived = self.blocks_from_transactions(transactions, now)
        if self.scope is WashSaleScope.ACCOUNT:
            derived = [r for r in derived if r.account_id in account_ids]

        logger.debug(
            "wash_sale_view_loaded",
            scope=self.scope.value,
            stored=len(records),
            from_transactions=len(derived),
        )
        return WashSaleView(now=now, scope=self.scope, records=tuple(records) + tuple(derived))

    def blocks_from_transactions(
        self, transactions: Iterable[Transaction], now: datetime
    ) -> list[WashSaleRecord]:
        records = []
        for txn in transactions:
            if not txn.is_loss_sale:
                continue
            record = WashSaleRecord(
                ticker=txn.ticker,
                account_id=txn.account_id,
                sold_at=txn.executed_at,
                blocked_until=self.blocked_until(txn.executed_at),
                loss_amount=-txn.realized_gain,
            )
            if record.is_active(now):
                records.append(record)
        return records

    def loss_record(
        self,
        ticker: str,
        account_id: str,
        quantity: Decimal | int,
        cost_basis_per_share: Decimal,
        sale_price: Decimal,
        sold_at: datetime,
        sleeve_id: str | None = None,
    ) -> WashSaleRecord | None:
        """Build the block a sale would create, or None for a gain or break-even."""
        loss = Decimal(quantity) * (cost_basis_per_share - sale_price)
        if loss <= 0:
            return None
        return WashSaleRecord(
            ticker=ticker,
            account_id=account_id,
            sold_at=sold_at,
            blocked_until=self.blocked_until(sold_at),
            loss_amount=loss,
            sleeve_id=sleeve_id,
        )

    def record_sale(
        self,
        ticker: str,
        account_id: str,
        quantity: Decimal | int,
        cost_basis_per_share: Decimal,
        sale_price: Decimal,
        sold_at: datetime,
        sleeve_id: str | None = None,
    ) -> WashSaleRecord | None:
        """Persist a block if the sale realised a loss.

        Raises:
            RestrictionStoreUnavailable: If the block could not be written
        """
        record = self.loss_record(
            ticker, account_id, quantity, cost_basis_per_share, sale_price, sold_at, sleeve_id
        )
        if record is None:
            return None

        self.store.add(record)
        logger.info(
            "wash_sale_block_recorded",
            ticker=ticker,
            account_id=account_id,
            loss_amount=float(record.loss_amount),
            blocked_until=record.blocked_until.isoformat() if record.blocked_until else None,
        )
        return record
