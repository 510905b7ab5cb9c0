"""
Startup validation of engine configuration.

Fails fast with a clear message instead of surfacing bad thresholds as
odd trade plans later.
"""

from typing import Any

from django.core.exceptions import ImproperlyConfigured

from rebalancer.conf import EngineSettings


def validate_engine_config(raw: dict[str, Any] | None = None) -> EngineSettings:
    """
    Validate the ``REBALANCER`` settings dict.

    Args:
        raw: Settings to check; read from Django settings when omitted

    Returns:
        The parsed EngineSettings

    Raises:
        ImproperlyConfigured: On unknown keys or out-of-range values
    """
    if raw is None:
        from django.conf import settings

        raw = getattr(settings, "REBALANCER", {}) or {}

    try:
        engine = EngineSettings.from_mapping(raw)
    except (ValueError, ArithmeticError, TypeError) as exc:
        raise ImproperlyConfigured(f"Invalid REBALANCER setting: {exc}") from exc

    problems = []
    if engine.min_trade_value < 0:
        problems.append("MIN_TRADE_VALUE must not be negative")
    if engine.harvest_loss_percent is not None and not 0 < engine.harvest_loss_percent <= 100:
        problems.append("HARVEST_LOSS_PERCENT must be in (0, 100]")
    if engine.harvest_loss_dollars is not None and engine.harvest_loss_dollars <= 0:
        problems.append("HARVEST_LOSS_DOLLARS must be positive")
    if engine.wash_sale_window_days < 1:
        problems.append("WASH_SALE_WINDOW_DAYS must be at least 1")
    if engine.long_term_holding_days < 1:
        problems.append("LONG_TERM_HOLDING_DAYS must be at least 1")
    if engine.model_weight_tolerance_bp < 0:
        problems.append("MODEL_WEIGHT_TOLERANCE_BP must not be negative")

    if problems:
        raise ImproperlyConfigured("Invalid REBALANCER settings: " + "; ".join(problems))

    return engine
