"""
Rebalancer Django Models

Durable state only:
- washsale.py: Wash-sale blocks (restricted securities)
- locks.py: Per-account submission locks
"""

from __future__ import annotations

__all__ = [
    "AccountLock",
    "RestrictedSecurity",
]

from .locks import AccountLock
from .washsale import RestrictedSecurity
