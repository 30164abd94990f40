"""Per-portfolio serialization of units of work."""

import threading
from contextlib import contextmanager
from typing import Iterator


class PortfolioLockRegistry:
    """
    Hands out one re-entrant lock per portfolio id.

    Units of work on the same portfolio run one at a time; different
    portfolios never contend.

    Example:
        >>> locks = PortfolioLockRegistry()
        >>> with locks.hold("pf_001"):
        ...     ...  # mutate holdings, then recalculate totals
    """

    def __init__(self) -> None:
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def lock_for(self, portfolio_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(portfolio_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[portfolio_id] = lock
            return lock

    @contextmanager
    def hold(self, portfolio_id: str) -> Iterator[None]:
        with self.lock_for(portfolio_id):
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
