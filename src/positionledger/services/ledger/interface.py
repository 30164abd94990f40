"""Ledger service interfaces (Protocols).

Defines the collaborator contracts the engine consumes (market data and
storage) and the contract it exposes to callers. Enables dependency injection
and makes the service independently testable.
"""

from datetime import timedelta
from decimal import Decimal
from typing import Protocol

from positionledger.services.ledger.aggregator import PortfolioSummary
from positionledger.services.ledger.allocation import AllocationReport
from positionledger.services.ledger.models import (
    CompanyInfo,
    Holding,
    Portfolio,
    TransactionEvent,
    TransactionResult,
)
from positionledger.services.ledger.status import AnyStatus


class MarketDataProvider(Protocol):
    """
    Source of market prices and company classification.

    Implementations raise ``MarketDataUnavailable`` when data cannot be
    fetched. Calls may block; the service bounds them with a timeout during
    bulk refresh.
    """

    def get_current_price(self, symbol: str) -> Decimal:
        """
        Get the latest price for a symbol.

        Raises:
            MarketDataUnavailable: If the price cannot be fetched
        """
        ...

    def get_company_info(self, symbol: str) -> CompanyInfo:
        """
        Get classification (sector, country, ...) for a symbol.

        Raises:
            MarketDataUnavailable: If the info cannot be fetched
        """
        ...


class Store(Protocol):
    """
    Persistence for portfolios and their holdings.

    Loads return private copies: mutating a loaded object has no effect until
    it is saved.
    """

    def load_portfolio(self, portfolio_id: str) -> Portfolio:
        """
        Raises:
            NotFound: If the portfolio does not exist
        """
        ...

    def save_portfolio(self, portfolio: Portfolio, expected_version: int | None = None) -> Portfolio:
        """
        Persist a portfolio and bump its version.

        Args:
            portfolio: Portfolio to store
            expected_version: Version the caller loaded; None skips the check

        Returns:
            The saved portfolio with its new version

        Raises:
            ConcurrencyConflict: If the stored version differs from expected_version
        """
        ...

    def load_holding(self, holding_id: str) -> Holding:
        """
        Raises:
            NotFound: If no portfolio owns the holding
        """
        ...

    def save_holding(self, holding: Holding) -> Holding:
        """
        Persist one holding into its owning portfolio.

        Raises:
            NotFound: If the owning portfolio does not exist
        """
        ...

    def list_portfolio_ids(self) -> list[str]:
        ...


class ILedgerService(Protocol):
    """
    Ledger service interface.

    Every mutating operation is one unit of work per portfolio: the holding
    mutation and the portfolio recalculation commit together or not at all.

    Example:
        >>> service: ILedgerService = LedgerService(store=InMemoryStore(), market_data=provider)
        >>> portfolio = service.create_portfolio("Growth")
        >>> result = service.process_transaction(
        ...     portfolio.id, BuyEvent(symbol="AAPL", quantity=Decimal("10"), price=Decimal("100"))
        ... )
        >>> service.recalculate_portfolio(portfolio.id).total_value
        Decimal('1000')
    """

    # ==================== Transactions ====================

    def process_transaction(self, portfolio_id: str, event: TransactionEvent) -> TransactionResult:
        """
        Apply one BUY/SELL/DIVIDEND/SPLIT event and recalculate the portfolio.

        Raises:
            NotFound: Unknown portfolio or holding
            ValidationError: Non-positive quantity, price or ratio
            InsufficientQuantity: Sell exceeds the position
            OperationNotAllowed: Status forbids the event
            ConcurrencyConflict: Commit still conflicted after max_commit_retries retries
        """
        ...

    # ==================== Valuation ====================

    def recalculate_portfolio(self, portfolio_id: str) -> PortfolioSummary:
        ...

    def get_allocation(self, portfolio_id: str) -> AllocationReport:
        ...

    def update_holding_price(self, portfolio_id: str, holding_id: str, new_price: Decimal) -> Holding:
        """
        Raises:
            InvalidPrice: If new_price <= 0
        """
        ...

    # ==================== Lifecycle ====================

    def transition_status(self, portfolio_id: str, new_status: AnyStatus, entity_id: str | None = None) -> AnyStatus:
        """
        Move a holding, transaction or the portfolio itself to ``new_status``.

        The entity kind follows the status type; ``entity_id`` names the
        holding or transaction and is ignored for portfolio statuses.

        Returns:
            The previous status

        Raises:
            InvalidStateTransition: If the transition is not allowed
        """
        ...

    def archive_portfolio(self, portfolio_id: str) -> Portfolio:
        ...

    def stale_holdings(self, portfolio_id: str, threshold: timedelta) -> list[Holding]:
        ...
