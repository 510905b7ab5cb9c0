"""Wash-sale window tracking.

Usage:
    from rebalancer.services.washsale import WashSaleTracker, InMemoryRestrictionStore

    tracker = WashSaleTracker(InMemoryRestrictionStore())
    view = tracker.view(now, group.account_ids)
    view.is_blocked("VTI", "acct-1")

DjangoRestrictionStore lives in ``rebalancer.services.washsale.store`` and
needs configured Django settings.
"""

from rebalancer.services.washsale.tracker import (
    InMemoryRestrictionStore,
    RestrictionStore,
    WashSaleRecord,
    WashSaleTracker,
    WashSaleView,
)

__all__ = [
    "InMemoryRestrictionStore",
    "RestrictionStore",
    "WashSaleRecord",
    "WashSaleTracker",
    "WashSaleView",
]
