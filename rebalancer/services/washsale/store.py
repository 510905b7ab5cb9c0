"""ORM-backed restriction store."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from django.db import DatabaseError, transaction

from rebalancer.exceptions import RestrictionStoreUnavailable

if TYPE_CHECKING:
    from rebalancer.managers import RestrictedSecurityManager
    from rebalancer.services.washsale.tracker import WashSaleRecord

logger = structlog.get_logger(__name__)


class DjangoRestrictionStore:
    """Reads and writes RestrictedSecurity rows.

    Writes are atomic so readers never observe a partial record. Any
    database error is reported as RestrictionStoreUnavailable so the
    tracker can fail closed.
    """

    def __init__(self, using: str | None = None) -> None:
        self.using = using

    def _manager(self) -> RestrictedSecurityManager:
        from rebalancer.models import RestrictedSecurity

        manager = RestrictedSecurity.objects
        return manager.db_manager(self.using) if self.using else manager

    def active_records(
        self, now: datetime, account_ids: Iterable[str] | None = None
    ) -> list[WashSaleRecord]:
        try:
            qs = self._manager().active(now)
            if account_ids is not None:
                qs = qs.for_accounts(account_ids)
            return [row.to_record() for row in qs]
        except DatabaseError as exc:
            logger.error("restriction_store_read_failed", error=str(exc))
            raise RestrictionStoreUnavailable(str(exc)) from exc

    def add(self, record: WashSaleRecord) -> None:
        from rebalancer.models import RestrictedSecurity

        try:
            with transaction.atomic(using=self.using):
                row = RestrictedSecurity.from_record(record)
                row.save(using=self.using)
        except DatabaseError as exc:
            logger.error(
                "restriction_store_write_failed",
                ticker=record.ticker,
                account_id=record.account_id,
                error=str(exc),
            )
            raise RestrictionStoreUnavailable(str(exc)) from exc

    def purge_expired(self, now: datetime) -> int:
        """Delete blocks whose window has lapsed; returns the number removed."""
        try:
            with transaction.atomic(using=self.using):
                deleted, _ = self._manager().get_queryset().expired(now).delete()
        except DatabaseError as exc:
            raise RestrictionStoreUnavailable(str(exc)) from exc
        logger.info("expired_wash_sale_blocks_purged", count=deleted)
        return deleted
