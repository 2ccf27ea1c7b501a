"""Tests for per-account write locks."""

import threading
import time

from statement_ingest.processing.locks import AccountLocks


class TestAccountLocks:
    """Tests for AccountLocks."""

    def test_same_account_is_serialized(self) -> None:
        """Test that two writers for one account never overlap."""
        locks = AccountLocks()
        active = 0
        overlaps = []
        guard = threading.Lock()

        def writer() -> None:
            nonlocal active
            with locks.hold("checking"):
                with guard:
                    active += 1
                    overlaps.append(active)
                time.sleep(0.01)
                with guard:
                    active -= 1

        threads = [threading.Thread(target=writer) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert max(overlaps) == 1

    def test_different_accounts_do_not_block(self) -> None:
        locks = AccountLocks()
        entered = threading.Event()

        def other() -> None:
            with locks.hold("savings"):
                entered.set()

        with locks.hold("checking"):
            thread = threading.Thread(target=other)
            thread.start()
            assert entered.wait(timeout=5)
        thread.join()

    def test_reentrant(self) -> None:
        locks = AccountLocks()
        with locks.hold("checking"):
            with locks.hold_many(["savings", "checking"]):
                pass

    def test_hold_many_blocks_each_account(self) -> None:
        locks = AccountLocks()
        acquired = threading.Event()

        def writer() -> None:
            with locks.hold("savings"):
                acquired.set()

        with locks.hold_many(["savings", "checking", "savings"]):
            thread = threading.Thread(target=writer)
            thread.start()
            assert not acquired.wait(timeout=0.05)
        assert acquired.wait(timeout=5)
        thread.join()
