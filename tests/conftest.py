"""Root conftest for all tests - shared ledger fixtures."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from positionledger.services.ledger.models import Holding, Portfolio
from positionledger.system.config import LedgerSettings


@pytest.fixture
def timestamp() -> datetime:
    """Standard timestamp for tests."""
    return datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings() -> LedgerSettings:
    """Default ledger settings."""
    return LedgerSettings()


@pytest.fixture
def portfolio() -> Portfolio:
    """Empty ACTIVE portfolio."""
    return Portfolio(id="pf_001", name="Growth")


@pytest.fixture
def make_holding():
    """Factory for holdings with consistent derived fields."""

    def _make(
        symbol: str = "AAPL",
        quantity: str = "10",
        average_price: str = "100",
        current_price: str | None = None,
        portfolio_id: str = "pf_001",
        **fields,
    ) -> Holding:
        quantity_d = Decimal(quantity)
        average = Decimal(average_price)
        current = Decimal(current_price) if current_price is not None else average
        return Holding(
            portfolio_id=portfolio_id,
            symbol=symbol,
            quantity=quantity_d,
            average_price=average,
            current_price=current,
            cost_basis=quantity_d * average,
            current_value=quantity_d * current,
            gain_loss=quantity_d * current - quantity_d * average,
            **fields,
        )

    return _make
