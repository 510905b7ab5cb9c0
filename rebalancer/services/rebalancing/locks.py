"""Per-account advisory locks for plan submission."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import ExitStack, contextmanager

import structlog

from rebalancer.exceptions import LockUnavailable

logger = structlog.get_logger(__name__)


class AccountLockManager:
    """Serialises compute -> submit -> record per account.

    Always takes an in-process lock per account. When ``use_database`` is
    set it also locks the accounts' AccountLock rows with SELECT ... FOR
    UPDATE inside one transaction, which serialises across processes on
    databases that support row locks. Locks are taken in sorted account
    order so overlapping groups cannot deadlock.

    The in-process table keeps one lock per account id ever held and never
    shrinks, so it is bounded by the number of accounts the process serves.
    Evicting entries would let two runs hold different locks for one account.
    """

    _registry_lock = threading.Lock()
    _locks: dict[str, threading.Lock] = {}

    def __init__(self, use_database: bool = True, timeout: float | None = None) -> None:
        self.use_database = use_database
        self.timeout = timeout

    @classmethod
    def _lock_for(cls, account_id: str) -> threading.Lock:
        with cls._registry_lock:
            lock = cls._locks.get(account_id)
            if lock is None:
                lock = cls._locks[account_id] = threading.Lock()
            return lock

    def is_locked(self, account_id: str) -> bool:
        return self._lock_for(account_id).locked()

    @contextmanager
    def hold(self, account_ids: Iterable[str], holder: str = "") -> Iterator[list[str]]:
        """Hold every account's lock for the duration of the block.

        Raises:
            LockUnavailable: If ``timeout`` elapses before a lock is free
        """
        ordered = sorted(set(account_ids))
        with ExitStack() as stack:
            for account_id in ordered:
                lock = self._lock_for(account_id)
                acquired = lock.acquire(timeout=self.timeout) if self.timeout else lock.acquire()
                if not acquired:
                    logger.warning("account_lock_timeout", account_id=account_id, holder=holder)
                    raise LockUnavailable(f"Account {account_id} is locked by another run")
                stack.callback(lock.release)

            logger.debug("account_locks_acquired", account_ids=ordered, holder=holder)
            if self.use_database:
                with self._database_locks(ordered, holder):
                    yield ordered
            else:
                yield ordered

        logger.debug("account_locks_released", account_ids=ordered, holder=holder)

    @contextmanager
    def _database_locks(self, account_ids: list[str], holder: str) -> Iterator[None]:
        from django.db import transaction
        from django.utils import timezone

        from rebalancer.models import AccountLock

        AccountLock.objects.ensure(account_ids)
        with transaction.atomic():
            rows = list(
                AccountLock.objects.select_for_update().for_accounts(account_ids)
            )
            now = timezone.now()
            for row in rows:
                row.acquired_at = now
                row.holder = holder[:128]
                row.save(update_fields=["acquired_at", "holder"])
            yield
