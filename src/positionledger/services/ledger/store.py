"""In-memory Store with optimistic versioning."""

import threading

from positionledger.services.ledger.exceptions import ConcurrencyConflict, NotFound
from positionledger.services.ledger.models import Holding, Portfolio
from positionledger.system import LoggerFactory

logger = LoggerFactory.get_logger()


class InMemoryStore:
    """
    Dict-backed Store.

    Every load and save copies the portfolio, so callers always work on a
    private snapshot. ``save_portfolio`` compares the caller's loaded version
    with the stored one and raises ConcurrencyConflict on mismatch.

    Example:
        >>> store = InMemoryStore()
        >>> saved = store.save_portfolio(Portfolio(name="Growth"), expected_version=0)
        >>> saved.version
        1
    """

    def __init__(self) -> None:
        self._portfolios: dict[str, Portfolio] = {}
        self._holding_index: dict[str, str] = {}  # holding id → portfolio id
        self._lock = threading.Lock()

    def load_portfolio(self, portfolio_id: str) -> Portfolio:
        with self._lock:
            stored = self._portfolios.get(portfolio_id)
            if stored is None:
                raise NotFound("Portfolio", portfolio_id)
            return stored.model_copy(deep=True)

    def save_portfolio(self, portfolio: Portfolio, expected_version: int | None = None) -> Portfolio:
        with self._lock:
            stored = self._portfolios.get(portfolio.id)
            current_version = stored.version if stored is not None else 0
            if expected_version is not None and expected_version != current_version:
                logger.warning(
                    "in_memory_store.version_conflict",
                    portfolio_id=portfolio.id,
                    expected_version=expected_version,
                    actual_version=current_version,
                )
                raise ConcurrencyConflict(portfolio.id, expected_version, current_version)

            portfolio.version = current_version + 1
            self._portfolios[portfolio.id] = portfolio.model_copy(deep=True)
            for holding_id in portfolio.holdings:
                self._holding_index[holding_id] = portfolio.id
            return portfolio

    def load_holding(self, holding_id: str) -> Holding:
        with self._lock:
            portfolio_id = self._holding_index.get(holding_id)
            if portfolio_id is None:
                raise NotFound("Holding", holding_id)
            return self._portfolios[portfolio_id].holdings[holding_id].model_copy(deep=True)

    def save_holding(self, holding: Holding) -> Holding:
        """Replace one holding inside its portfolio; bumps the portfolio version."""
        with self._lock:
            stored = self._portfolios.get(holding.portfolio_id)
            if stored is None:
                raise NotFound("Portfolio", holding.portfolio_id)
            stored.holdings[holding.id] = holding.model_copy(deep=True)
            stored.version += 1
            self._holding_index[holding.id] = holding.portfolio_id
            return holding

    def list_portfolio_ids(self) -> list[str]:
        with self._lock:
            return list(self._portfolios)
