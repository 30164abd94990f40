"""Position ledger and valuation engine.

Tracks holdings inside portfolios and keeps their financial state consistent
as buy, sell, dividend and split events are applied.

Key components:
- LedgerService: Unit-of-work service over a Store (the exposed contract)
- HoldingLedger: Per-holding valuation (cost basis, value, gain/loss)
- TransactionProcessor: Validates and applies BUY/SELL/DIVIDEND/SPLIT events
- PortfolioAggregator: Portfolio totals from active holdings
- AllocationAnalyzer: Sector/geographic/asset allocation and concentration
- StatusStateMachine: Holding, portfolio and transaction lifecycles

Example:
    >>> from decimal import Decimal
    >>> from positionledger.services.ledger import BuyEvent, LedgerService
    >>>
    >>> service = LedgerService()
    >>> portfolio = service.create_portfolio("Growth")
    >>> result = service.process_transaction(
    ...     portfolio.id,
    ...     BuyEvent(symbol="AAPL", quantity=Decimal("10"), price=Decimal("100")),
    ... )
    >>> print(service.recalculate_portfolio(portfolio.id).total_value)
"""

from positionledger.services.ledger.aggregator import HoldingStatistics, PortfolioAggregator, PortfolioSummary
from positionledger.services.ledger.allocation import AllocationAnalyzer, AllocationReport
from positionledger.services.ledger.exceptions import (
    ConcurrencyConflict,
    HoldingLimitExceeded,
    InsufficientQuantity,
    InvalidPrice,
    InvalidStateTransition,
    LedgerError,
    MarketDataUnavailable,
    NotFound,
    OperationNotAllowed,
    ValidationError,
)
from positionledger.services.ledger.holding_ledger import HoldingLedger
from positionledger.services.ledger.interface import ILedgerService, MarketDataProvider, Store
from positionledger.services.ledger.locking import PortfolioLockRegistry
from positionledger.services.ledger.models import (
    BuyEvent,
    CompanyInfo,
    DividendEvent,
    Holding,
    HoldingType,
    Portfolio,
    SellEvent,
    SplitEvent,
    Transaction,
    TransactionEvent,
    TransactionResult,
    TransactionType,
)
from positionledger.services.ledger.service import LedgerService, RefreshResult
from positionledger.services.ledger.status import (
    HoldingStatus,
    PortfolioStatus,
    StatusStateMachine,
    TransactionStatus,
)
from positionledger.services.ledger.store import InMemoryStore
from positionledger.services.ledger.transaction_processor import TransactionProcessor

__all__ = [
    # Service
    "LedgerService",
    "ILedgerService",
    "RefreshResult",
    # Components
    "HoldingLedger",
    "TransactionProcessor",
    "PortfolioAggregator",
    "AllocationAnalyzer",
    "StatusStateMachine",
    # Collaborators
    "MarketDataProvider",
    "Store",
    "InMemoryStore",
    "PortfolioLockRegistry",
    # Models
    "Holding",
    "HoldingType",
    "Portfolio",
    "Transaction",
    "TransactionType",
    "TransactionResult",
    "TransactionEvent",
    "BuyEvent",
    "SellEvent",
    "DividendEvent",
    "SplitEvent",
    "CompanyInfo",
    "PortfolioSummary",
    "HoldingStatistics",
    "AllocationReport",
    # Statuses
    "HoldingStatus",
    "PortfolioStatus",
    "TransactionStatus",
    # Errors
    "LedgerError",
    "ValidationError",
    "InvalidPrice",
    "InsufficientQuantity",
    "NotFound",
    "InvalidStateTransition",
    "OperationNotAllowed",
    "HoldingLimitExceeded",
    "MarketDataUnavailable",
    "ConcurrencyConflict",
]
