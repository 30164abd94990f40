"""Unit tests for InMemoryStore and PortfolioLockRegistry."""

import threading
from decimal import Decimal

import pytest

from positionledger.services.ledger.exceptions import ConcurrencyConflict, NotFound
from positionledger.services.ledger.locking import PortfolioLockRegistry
from positionledger.services.ledger.models import Portfolio
from positionledger.services.ledger.store import InMemoryStore


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


class TestPortfolioStorage:
    """Test portfolio load/save and versioning."""

    def test_save_new_portfolio_bumps_version(self, store, portfolio):
        """Test the first save moves version 0 to 1."""
        saved = store.save_portfolio(portfolio, expected_version=0)

        assert saved.version == 1
        assert store.load_portfolio(portfolio.id).version == 1
        assert store.list_portfolio_ids() == [portfolio.id]

    def test_load_returns_private_copy(self, store, portfolio):
        """Test mutating a loaded portfolio does not change the store."""
        store.save_portfolio(portfolio)

        loaded = store.load_portfolio(portfolio.id)
        loaded.name = "changed"

        assert store.load_portfolio(portfolio.id).name == "Growth"

    def test_stale_version_conflicts(self, store, portfolio):
        """Test saving with an old version raises ConcurrencyConflict."""
        store.save_portfolio(portfolio, expected_version=0)
        first = store.load_portfolio(portfolio.id)
        second = store.load_portfolio(portfolio.id)
        store.save_portfolio(first, expected_version=1)

        with pytest.raises(ConcurrencyConflict) as exc_info:
            store.save_portfolio(second, expected_version=1)

        error = exc_info.value
        assert error.expected_version == 1
        assert error.actual_version == 2
        assert error.context["portfolio_id"] == portfolio.id
        assert second.version == 1

    def test_save_without_expected_version_skips_check(self, store, portfolio):
        """Test expected_version=None always writes."""
        store.save_portfolio(portfolio)
        store.save_portfolio(store.load_portfolio(portfolio.id))

        assert store.load_portfolio(portfolio.id).version == 2

    def test_missing_portfolio(self, store):
        """Test loading an unknown portfolio raises NotFound."""
        with pytest.raises(NotFound) as exc_info:
            store.load_portfolio("missing")

        assert exc_info.value.kind == "Portfolio"
        assert exc_info.value.code == "RESOURCE_NOT_FOUND"


class TestHoldingStorage:
    """Test holding-level get/put."""

    def test_load_and_save_holding(self, store, portfolio, make_holding):
        """Test a holding can be loaded and replaced through its portfolio."""
        holding = make_holding()
        portfolio.holdings[holding.id] = holding
        store.save_portfolio(portfolio, expected_version=0)

        loaded = store.load_holding(holding.id)
        loaded.target_price = Decimal("200")
        store.save_holding(loaded)

        stored = store.load_portfolio(portfolio.id)
        assert stored.holdings[holding.id].target_price == Decimal("200")
        assert stored.version == 2

    def test_unknown_holding(self, store):
        """Test loading an unknown holding raises NotFound."""
        with pytest.raises(NotFound):
            store.load_holding("missing")

    def test_save_holding_without_portfolio(self, store, make_holding):
        """Test a holding cannot be saved into a missing portfolio."""
        with pytest.raises(NotFound):
            store.save_holding(make_holding(portfolio_id="nowhere"))


class TestLockRegistry:
    """Test per-portfolio locks."""

    def test_same_portfolio_same_lock(self):
        """Test one lock per portfolio id."""
        locks = PortfolioLockRegistry()

        assert locks.lock_for("a") is locks.lock_for("a")
        assert locks.lock_for("a") is not locks.lock_for("b")
        assert len(locks) == 2

    def test_lock_is_reentrant(self):
        """Test nested holds on the same thread do not deadlock."""
        locks = PortfolioLockRegistry()

        with locks.hold("a"):
            with locks.hold("a"):
                pass

    def test_hold_serializes_threads(self):
        """Test concurrent read-modify-write under the lock loses no updates."""
        locks = PortfolioLockRegistry()
        counter = {"value": 0}

        def increment():
            for _ in range(500):
                with locks.hold("pf"):
                    current = counter["value"]
                    counter["value"] = current + 1

        threads = [threading.Thread(target=increment) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert counter["value"] == 4000
