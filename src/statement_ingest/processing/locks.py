"""Per-account write serialization."""

import threading
from contextlib import ExitStack, contextmanager
from typing import Iterable, Iterator

from statement_ingest.utils.logging_config import get_logger

logger = get_logger(__name__)


class AccountLocks:
    """Registry of one re-entrant lock per account.

    Ingestion holds an account's lock across deduplication and insert, so
    two statements for the same account never interleave there. Exports
    take every account's lock in sorted order to read a consistent
    snapshot without deadlocking against each other.
    """

    def __init__(self) -> None:
        self._locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, account_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[account_id] = lock
            return lock

    @contextmanager
    def hold(self, account_id: str) -> Iterator[None]:
        """Hold one account's write lock for the duration of the block."""
        lock = self._lock_for(account_id)
        with lock:
            logger.debug(f"Acquired write lock for account {account_id}")
            yield

    @contextmanager
    def hold_many(self, account_ids: Iterable[str]) -> Iterator[None]:
        """Hold several accounts' locks, acquired in sorted id order."""
        with ExitStack() as stack:
            for account_id in sorted(set(account_ids)):
                stack.enter_context(self.hold(account_id))
            yield
