"""Formatting layer for converting allocation results to display rows."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

import pandas as pd

from rebalancer.types import SecurityRow, SleeveRow, TradeRow

if TYPE_CHECKING:
    from rebalancer.services.allocations.calculator import AllocationSummary
    from rebalancer.services.rebalancing.dataclasses import TradeIntent


class AllocationFormatter:
    """Map strictly typed results onto plain rows for presentation layers.

    Decimal values become floats here and only here.
    """

    def format_sleeve_rows(self, summary: AllocationSummary) -> list[SleeveRow]:
        return [
            SleeveRow(
                sleeve_id=s.sleeve_id,
                sleeve_name=s.name,
                is_cash=s.is_cash,
                target_weight_bp=s.target_weight_bp,
                target_value=float(s.target_value),
                current_value=float(s.current_value),
                difference=float(s.difference),
                target_percent=float(s.target_percent),
                current_percent=float(s.current_percent),
                percent_distance=float(s.percent_distance),
            )
            for s in summary.sleeves
        ]

    def format_security_rows(
        self, summary: AllocationSummary, include_unassigned: bool = True
    ) -> list[SecurityRow]:
        """
        Flatten per-security rows.

        Sleeve members come first in sleeve order, then unassigned tickers.
        """
        securities = list(summary.securities)
        if include_unassigned:
            securities.extend(summary.unassigned)

        return [
            SecurityRow(
                sleeve_id=sec.sleeve_id,
                ticker=sec.ticker,
                member_kind=sec.member_kind.name if sec.member_kind is not None else None,
                rank=sec.rank,
                quantity=float(sec.quantity),
                price=float(sec.price) if sec.price is not None else None,
                current_value=float(sec.current_value),
                current_percent=float(sec.current_percent),
                target_value=float(sec.target_value),
                target_percent=float(sec.target_percent),
                difference=float(sec.difference),
                is_held=sec.is_held,
            )
            for sec in securities
        ]

    def format_trade_rows(self, trades: Iterable[TradeIntent]) -> list[TradeRow]:
        return [
            TradeRow(
                account_id=t.account_id,
                ticker=t.ticker,
                sleeve_id=t.sleeve_id,
                action=t.action.value,
                quantity=t.quantity,
                estimated_price=float(t.estimated_price),
                estimated_value=float(t.estimated_value),
                realized_gain=float(t.realized_gain),
                reason=t.reason,
            )
            for t in trades
        ]

    def sleeves_to_dataframe(self, summary: AllocationSummary) -> pd.DataFrame:
        """Sleeve rows as a DataFrame indexed by sleeve id."""
        rows = self.format_sleeve_rows(summary)
        if not rows:
            return pd.DataFrame(columns=list(SleeveRow.__annotations__)).set_index("sleeve_id")
        return pd.DataFrame(rows).set_index("sleeve_id")

    def securities_to_dataframe(self, summary: AllocationSummary) -> pd.DataFrame:
        rows = self.format_security_rows(summary)
        return pd.DataFrame(rows, columns=list(SecurityRow.__annotations__))

    def trades_to_dataframe(self, trades: Iterable[TradeIntent]) -> pd.DataFrame:
        rows = self.format_trade_rows(trades)
        return pd.DataFrame(rows, columns=list(TradeRow.__annotations__))

    def format_drift_rows(
        self, before: AllocationSummary, after: AllocationSummary
    ) -> list[dict[str, float | str]]:
        """Side-by-side percent distance per sleeve, before and after a plan."""
        post = {s.sleeve_id: s for s in after.sleeves}
        rows: list[dict[str, float | str]] = []
        for s in before.sleeves:
            projected = post.get(s.sleeve_id)
            rows.append(
                {
                    "sleeve_id": s.sleeve_id,
                    "target_percent": float(s.target_percent),
                    "pre_percent": float(s.current_percent),
                    "post_percent": float(projected.current_percent) if projected else 0.0,
                    "pre_distance": float(s.percent_distance),
                    "post_distance": float(projected.percent_distance) if projected else 0.0,
                }
            )
        return rows
