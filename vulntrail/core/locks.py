"""Per-account serialization of ingestion batches."""

import logging
import threading
import time
import zlib
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.orm import Session

from vulntrail.services.errors import LockTimeoutError

logger = logging.getLogger(__name__)

# Namespace for pg advisory locks so other applications sharing the database do not collide.
ADVISORY_LOCK_NAMESPACE = 0x56544C  # "VTL"

_ADVISORY_POLL_INTERVAL_SEC = 0.1


def advisory_key(account_id: str) -> int:
    """Stable 32-bit signed key for an account (crc32 is deterministic across processes)."""
    value = zlib.crc32(account_id.encode("utf-8"))
    return value - (1 << 32) if value >= (1 << 31) else value


class AccountLockManager:
    """
    Exclusive per-account locks held for the duration of one ingestion batch.

    Two layers: a process-local lock per account (threads in this worker), and on
    PostgreSQL a transaction-scoped advisory lock (other worker processes). The
    advisory lock is released by the database when the batch transaction ends.
    Accounts are always locked in sorted order so multi-account batches cannot deadlock.
    """

    def __init__(self, timeout_sec: float) -> None:
        self.timeout_sec = timeout_sec
        self._guard = threading.Lock()
        # account -> (lock, number of batches holding or waiting for it); pruned at zero.
        self._locks: dict[str, tuple[threading.Lock, int]] = {}

    def _checkout(self, account_id: str) -> threading.Lock:
        with self._guard:
            lock, users = self._locks.get(account_id, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[account_id] = (lock, users + 1)
            return lock

    def _checkin(self, account_id: str) -> None:
        with self._guard:
            lock, users = self._locks[account_id]
            if users <= 1:
                del self._locks[account_id]
            else:
                self._locks[account_id] = (lock, users - 1)

    @contextmanager
    def hold(self, db: Session, account_ids: Iterable[str]) -> Iterator[None]:
        """Acquire all account locks or raise LockTimeoutError; release on exit."""
        ordered = sorted(set(account_ids))
        deadline = time.monotonic() + self.timeout_sec
        checked_out: list[str] = []
        acquired: list[threading.Lock] = []
        try:
            for account_id in ordered:
                lock = self._checkout(account_id)
                checked_out.append(account_id)
                remaining = max(0.0, deadline - time.monotonic())
                if not lock.acquire(timeout=remaining):
                    raise LockTimeoutError(
                        f"Timed out after {self.timeout_sec}s waiting for ingestion lock on account {account_id}."
                    )
                acquired.append(lock)
                self._acquire_advisory(db, account_id, deadline)
            logger.debug("Ingestion locks held", extra={"accounts": ordered})
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for account_id in checked_out:
                self._checkin(account_id)

    def _acquire_advisory(self, db: Session, account_id: str, deadline: float) -> None:
        if db.get_bind().dialect.name != "postgresql":
            return
        key = advisory_key(account_id)
        while True:
            got = db.execute(
                text("SELECT pg_try_advisory_xact_lock(:ns, :key)"),
                {"ns": ADVISORY_LOCK_NAMESPACE, "key": key},
            ).scalar()
            if got:
                return
            if time.monotonic() >= deadline:
                raise LockTimeoutError(
                    f"Timed out after {self.timeout_sec}s waiting for ingestion lock on account {account_id}."
                )
            time.sleep(_ADVISORY_POLL_INTERVAL_SEC)
