"""
Standard test data constants.

Prices are chosen so share counts in the scenario tests come out whole
and the expected trades can be checked by hand.
"""
from datetime import UTC, datetime, timedelta
from decimal import Decimal

NOW = datetime(2025, 6, 2, 15, 0, tzinfo=UTC)
LONG_AGO = NOW - timedelta(days=800)
RECENT = NOW - timedelta(days=30)

WASH_SALE_WINDOW = timedelta(days=31)

TAXABLE_ID = "acct-tax"
IRA_ID = "acct-ira"
GROUP_ID = "grp-1"

# Standard prices per ticker
STANDARD_PRICES = {
    "AAA": Decimal("100"),
    "BBB": Decimal("50"),
    "OLD": Decimal("20"),
    "CCC": Decimal("40"),
    "DDD": Decimal("25"),
    "EEE": Decimal("80"),
    "FFF": Decimal("10"),
}
