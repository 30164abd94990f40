"""Fixtures for LedgerService integration tests."""

import threading
from decimal import Decimal

import pytest

from positionledger.events import EventBus
from positionledger.services.ledger import LedgerService
from positionledger.services.ledger.exceptions import MarketDataUnavailable
from positionledger.services.ledger.models import CompanyInfo
from positionledger.services.ledger.store import InMemoryStore
from positionledger.system.config import MarketDataSettings, SystemConfig


class FakeMarketData:
    """
    Scripted market data provider.

    Prices come from ``prices``; symbols in ``unavailable`` raise
    MarketDataUnavailable, symbols in ``errors`` raise the given exception,
    symbols in ``raw`` return that value unconverted and symbols in ``slow``
    block until ``release`` is set.
    """

    def __init__(self, prices: dict[str, str] | None = None, unavailable: set[str] | None = None) -> None:
        self.prices = {symbol: Decimal(price) for symbol, price in (prices or {}).items()}
        self.unavailable = set(unavailable or ())
        self.slow: set[str] = set()
        self.errors: dict[str, Exception] = {}
        self.raw: dict[str, object] = {}
        self.release = threading.Event()
        self.companies: dict[str, CompanyInfo] = {}
        self.calls: list[str] = []

    def get_current_price(self, symbol: str) -> Decimal:
        self.calls.append(symbol)
        if symbol in self.slow:
            self.release.wait(timeout=5)
        if symbol in self.errors:
            raise self.errors[symbol]
        if symbol in self.raw:
            return self.raw[symbol]  # type: ignore[return-value]
        if symbol in self.unavailable or symbol not in self.prices:
            raise MarketDataUnavailable(symbol, "quote feed down")
        return self.prices[symbol]

    def get_company_info(self, symbol: str) -> CompanyInfo:
        info = self.companies.get(symbol)
        if info is None:
            raise MarketDataUnavailable(symbol, "no profile")
        return info


@pytest.fixture
def system_config() -> SystemConfig:
    return SystemConfig(market_data=MarketDataSettings(refresh_workers=4, fetch_timeout_seconds=2.0))


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def market_data() -> FakeMarketData:
    provider = FakeMarketData(prices={"AAPL": "110", "MSFT": "210"})
    yield provider
    provider.release.set()


@pytest.fixture
def service(store, market_data, event_bus, system_config) -> LedgerService:
    return LedgerService(store=store, market_data=market_data, event_bus=event_bus, config=system_config)


@pytest.fixture
def recorded(event_bus) -> list:
    """Every event published on the bus, in order."""
    events: list = []
    for event_type in (
        "transaction_applied",
        "holding_price_updated",
        "portfolio_recalculated",
        "status_changed",
        "price_refresh_failed",
    ):
        event_bus.subscribe(event_type, events.append)
    return events
