"""Engine configuration read from Django settings."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from decimal import Decimal
from typing import Any

from rebalancer.types import WashSaleScope


@dataclass(frozen=True)
class EngineSettings:
    """Tunable thresholds for trade generation and wash-sale tracking.

    Attributes:
        min_trade_value: Sleeve drift (in dollars) below which no trade is made
        harvest_loss_percent: Loss as % of cost basis that qualifies for harvest,
            or None to disable the percentage rule
        harvest_loss_dollars: Loss in dollars that qualifies for harvest,
            or None to disable the dollar rule
        wash_sale_window_days: Days a ticker stays blocked after a loss sale
        wash_sale_scope: Whether blocks apply per account or household-wide
        long_term_holding_days: Holding period at which gains become long-term
        model_weight_tolerance_bp: Allowed deviation from 10,000 bp
        protect_legacy_gains: Never sell legacy positions at a taxable gain
    """

    min_trade_value: Decimal = Decimal("50.00")
    harvest_loss_percent: Decimal | None = Decimal("5")
    harvest_loss_dollars: Decimal | None = Decimal("2500")
    wash_sale_window_days: int = 31
    wash_sale_scope: WashSaleScope = WashSaleScope.HOUSEHOLD
    long_term_holding_days: int = 366
    model_weight_tolerance_bp: int = 1
    protect_legacy_gains: bool = False

    def with_overrides(self, **overrides: Any) -> EngineSettings:
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)

    @classmethod
    def from_settings(cls) -> EngineSettings:
        """Build settings from the ``REBALANCER`` Django setting.

        Missing keys fall back to the dataclass defaults.
        """
        from django.conf import settings

        raw: dict[str, Any] = getattr(settings, "REBALANCER", {}) or {}
        return cls.from_mapping(raw)

    @classmethod
    def from_mapping(cls, raw: dict[str, Any]) -> EngineSettings:
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in raw.items():
            name = key.lower()
            if name not in known:
                raise ValueError(f"Unknown REBALANCER setting: {key}")
            values[name] = value

        for name in ("min_trade_value", "harvest_loss_percent", "harvest_loss_dollars"):
            if values.get(name) is not None:
                values[name] = Decimal(str(values[name]))
        if "wash_sale_scope" in values:
            values["wash_sale_scope"] = WashSaleScope(values["wash_sale_scope"])

        return cls(**values)
