from __future__ import annotations

from django.db import models

from rebalancer.managers import LockRowManager


class AccountLock(models.Model):
    """Row locked with SELECT ... FOR UPDATE while orders for an account are submitted."""

    account_id = models.CharField(max_length=64, unique=True)
    acquired_at = models.DateTimeField(null=True, blank=True)
    holder = models.CharField(max_length=128, blank=True)

    objects = LockRowManager()

    class Meta:
        ordering = ["account_id"]

    def __str__(self) -> str:
        return f"Lock for {self.account_id}"
