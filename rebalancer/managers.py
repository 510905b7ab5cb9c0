from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from django.db import models
from django.db.models import Q


class RestrictedSecurityQuerySet(models.QuerySet):
    def active(self, now: datetime) -> RestrictedSecurityQuerySet:
        # A missing window end is ambiguous and counts as active
        return self.filter(Q(blocked_until__isnull=True) | Q(blocked_until__gt=now))

    def expired(self, now: datetime) -> RestrictedSecurityQuerySet:
        return self.filter(blocked_until__lte=now)

    def for_accounts(self, account_ids: Iterable[str]) -> RestrictedSecurityQuerySet:
        return self.filter(account_id__in=list(account_ids))

    def for_ticker(self, ticker: str) -> RestrictedSecurityQuerySet:
        return self.filter(ticker=ticker)


class RestrictedSecurityManager(models.Manager):
    def get_queryset(self) -> RestrictedSecurityQuerySet:
        return RestrictedSecurityQuerySet(self.model, using=self._db)

    def active(self, now: datetime) -> RestrictedSecurityQuerySet:
        return self.get_queryset().active(now)

    def active_for_accounts(
        self, now: datetime, account_ids: Iterable[str]
    ) -> RestrictedSecurityQuerySet:
        return self.active(now).for_accounts(account_ids)


class LockRowQuerySet(models.QuerySet):
    def for_accounts(self, account_ids: Iterable[str]) -> LockRowQuerySet:
        return self.filter(account_id__in=list(account_ids)).order_by("account_id")


class LockRowManager(models.Manager):
    def get_queryset(self) -> LockRowQuerySet:
        return LockRowQuerySet(self.model, using=self._db)

    def for_accounts(self, account_ids: Iterable[str]) -> LockRowQuerySet:
        return self.get_queryset().for_accounts(account_ids)

    def ensure(self, account_ids: Iterable[str]) -> None:
        """Create lock rows for any account that does not have one yet."""
        wanted = set(account_ids)
        existing = set(
            self.get_queryset().for_accounts(wanted).values_list("account_id", flat=True)
        )
        missing = sorted(wanted - existing)
        if missing:
            self.bulk_create(
                [self.model(account_id=account_id) for account_id in missing],
                ignore_conflicts=True,
            )
