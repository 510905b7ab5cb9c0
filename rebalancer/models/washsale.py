from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from django.core.validators import MinValueValidator
from django.db import models

from rebalancer.managers import RestrictedSecurityManager

if TYPE_CHECKING:
    from rebalancer.services.washsale.tracker import WashSaleRecord


class RestrictedSecurity(models.Model):
    """
    Wash-sale block created by a loss-realising sale.

    While active, ``ticker`` may not be bought in the block's scope.
    A null ``blocked_until`` is treated as blocking indefinitely.
    """

    ticker = models.CharField(max_length=16, db_index=True)
    account_id = models.CharField(max_length=64, db_index=True)
    sleeve_id = models.CharField(max_length=64, blank=True, null=True)
    loss_amount = models.DecimalField(
        max_digits=20, decimal_places=2, validators=[MinValueValidator(0)]
    )
    sold_at = models.DateTimeField()
    blocked_until = models.DateTimeField(null=True, blank=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = RestrictedSecurityManager()

    class Meta:
        ordering = ["blocked_until", "ticker"]
        verbose_name_plural = "Restricted securities"

    def __str__(self) -> str:
        until = self.blocked_until.date() if self.blocked_until else "unknown"
        return f"{self.ticker} blocked in {self.account_id} until {until}"

    def is_active(self, now: datetime) -> bool:
        return self.blocked_until is None or now < self.blocked_until

    def to_record(self) -> WashSaleRecord:
        from rebalancer.services.washsale.tracker import WashSaleRecord

        return WashSaleRecord(
            ticker=self.ticker,
            account_id=self.account_id,
            sold_at=self.sold_at,
            blocked_until=self.blocked_until,
            loss_amount=self.loss_amount,
            sleeve_id=self.sleeve_id,
        )

    @classmethod
    def from_record(cls, record: WashSaleRecord) -> RestrictedSecurity:
        return cls(
            ticker=record.ticker,
            account_id=record.account_id,
            sleeve_id=record.sleeve_id,
            loss_amount=record.loss_amount.quantize(Decimal("0.01")),
            sold_at=record.sold_at,
            blocked_until=record.blocked_until,
        )
