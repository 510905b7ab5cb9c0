"""Shared enums, constants and row types for the rebalancing engine."""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum, IntEnum
from typing import TypedDict

CASH_TICKER = "$$$"
CASH_SLEEVE_ID = "cash"
CASH_PRICE = Decimal("1")

TOTAL_WEIGHT_BP = 10_000

# Type aliases (Python 3.12+ syntax)
type PriceMap = dict[str, Decimal]  # {ticker: price}
type PositionKey = tuple[str, str]  # (account_id, ticker)
type SleeveKey = tuple[str, str | None]  # (account_id, sleeve_id); None = unassigned


class AssetType(str, Enum):
    EQUITY = "equity"
    ETF = "etf"
    CASH_EQUIVALENT = "cash_equivalent"


class SleeveKind(str, Enum):
    """Variant tag for sleeves; the cash sleeve is never traded directly."""

    NORMAL = "normal"
    CASH = "cash"


class MemberKind(IntEnum):
    """Role of a security within its sleeve.

    Values double as sell priority: legacy holdings are sold before
    alternates, alternates before the target security.
    """

    LEGACY = 0
    ALTERNATE = 1
    TARGET = 2


class TradeAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class WashSaleScope(str, Enum):
    """Accounts a wash-sale block applies to."""

    ACCOUNT = "account"
    HOUSEHOLD = "household"


class WarningKind(str, Enum):
    MISSING_PRICE = "missing_price"
    NO_BUY_CANDIDATE = "no_buy_candidate"
    WASH_SALE_DATA_UNAVAILABLE = "wash_sale_data_unavailable"
    FRACTIONAL_REMAINDER = "fractional_remainder"
    CASH_CAPPED = "cash_capped"


@dataclass(frozen=True)
class PlanWarning:
    """A data gap that caused part of a plan to be skipped."""

    kind: WarningKind
    message: str
    ticker: str | None = None
    sleeve_id: str | None = None
    account_id: str | None = None


class SleeveRow(TypedDict):
    """Single sleeve row for allocation display."""

    sleeve_id: str
    sleeve_name: str
    is_cash: bool
    target_weight_bp: int
    target_value: float
    current_value: float
    difference: float
    target_percent: float
    current_percent: float
    percent_distance: float


class SecurityRow(TypedDict):
    """Single security row nested under a sleeve."""

    sleeve_id: str | None
    ticker: str
    member_kind: str | None
    rank: int | None
    quantity: float
    price: float | None
    current_value: float
    current_percent: float
    target_value: float
    target_percent: float
    difference: float
    is_held: bool


class TradeRow(TypedDict):
    """Single trade intent row for the order blotter."""

    account_id: str
    ticker: str
    sleeve_id: str | None
    action: str
    quantity: int
    estimated_price: float
    estimated_value: float
    realized_gain: float
    reason: str
