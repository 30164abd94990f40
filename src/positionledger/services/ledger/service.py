"""Ledger service: the engine's exposed contract.

Every mutating call is one unit of work on one portfolio:
1. Take the portfolio's lock
2. Load a private copy from the store
3. Mutate holdings through the TransactionProcessor / HoldingLedger
4. Recalculate portfolio totals
5. Save with the loaded version (retry on ConcurrencyConflict)
6. Publish events, only after the commit succeeded
"""

from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, TypeVar

from pydantic import BaseModel, Field

from positionledger.events import (
    BaseEvent,
    EventBus,
    HoldingPriceUpdatedEvent,
    IEventBus,
    PortfolioRecalculatedEvent,
    PriceRefreshFailedEvent,
    StatusChangedEvent,
    TransactionAppliedEvent,
)
from positionledger.services.ledger.aggregator import PortfolioAggregator, PortfolioSummary
from positionledger.services.ledger.allocation import AllocationAnalyzer, AllocationReport
from positionledger.services.ledger.exceptions import (
    ConcurrencyConflict,
    InvalidStateTransition,
    MarketDataUnavailable,
    NotFound,
)
from positionledger.services.ledger.holding_ledger import HoldingLedger
from positionledger.services.ledger.interface import MarketDataProvider, Store
from positionledger.services.ledger.locking import PortfolioLockRegistry
from positionledger.services.ledger.models import (
    Holding,
    Portfolio,
    TransactionEvent,
    TransactionResult,
    utc_now,
)
from positionledger.services.ledger.status import (
    AnyStatus,
    HoldingStatus,
    PortfolioStatus,
    StatusStateMachine,
    TransactionStatus,
)
from positionledger.services.ledger.store import InMemoryStore
from positionledger.services.ledger.transaction_processor import TransactionProcessor
from positionledger.system import LoggerFactory, SystemConfig, get_system_config

logger = LoggerFactory.get_logger()

T = TypeVar("T")

UnitOfWork = Callable[[Portfolio, list[BaseEvent]], T]


class RefreshResult(BaseModel):
    """
    Outcome of a bulk price refresh.

    Attributes:
        updated: symbol → price applied
        failed: symbol → reason the fetch failed (holdings kept their last price)
        portfolios: Portfolios that were recalculated and committed
    """

    updated: dict[str, Decimal] = Field(default_factory=dict)
    failed: dict[str, str] = Field(default_factory=dict)
    portfolios: list[str] = Field(default_factory=list)


class LedgerService:
    """
    Ledger service implementation.

    Coordinates the processor, aggregator and allocation analyzer over a
    Store, serializing work per portfolio and publishing domain events.

    Example:
        >>> service = LedgerService(store=InMemoryStore(), market_data=provider)
        >>> portfolio = service.create_portfolio("Growth")
        >>> service.process_transaction(portfolio.id, BuyEvent(symbol="AAPL", quantity=Decimal("10"), price=Decimal("100")))
        >>> service.refresh_all_prices()
    """

    def __init__(
        self,
        store: Store | None = None,
        market_data: MarketDataProvider | None = None,
        event_bus: IEventBus | None = None,
        config: SystemConfig | None = None,
    ) -> None:
        self._config = config or get_system_config()
        self._settings = self._config.ledger
        self._store = store or InMemoryStore()
        self._market_data = market_data
        if event_bus is None:
            display = ["*"] if self._config.logging.enable_event_display else None
            event_bus = EventBus(display_events=display)
        self._event_bus = event_bus
        self._locks = PortfolioLockRegistry()

        self._ledger = HoldingLedger(self._settings)
        self._processor = TransactionProcessor(self._ledger, self._settings)
        self._aggregator = PortfolioAggregator(self._ledger, self._settings)
        self._allocation = AllocationAnalyzer(self._aggregator, self._ledger, self._settings)

        logger.debug(
            "ledger_service.initialized",
            store=type(self._store).__name__,
            market_data=type(market_data).__name__ if market_data else None,
        )

    @property
    def event_bus(self) -> IEventBus:
        return self._event_bus

    # ==================== Unit of work ====================

    def _run(self, portfolio_id: str, work: UnitOfWork[T], recalculate: bool = True) -> tuple[Portfolio, T]:
        """
        Run ``work`` as one committed unit on a private copy of the portfolio.

        ``work`` receives the portfolio and a list to append events to; the
        events are published only after the save succeeds.
        """
        retries = self._settings.max_commit_retries
        attempt = 0
        while True:
            attempt += 1
            events: list[BaseEvent] = []
            with self._locks.hold(portfolio_id):
                portfolio = self._store.load_portfolio(portfolio_id)
                loaded_version = portfolio.version
                outcome = work(portfolio, events)
                if recalculate:
                    self._aggregator.recalculate_totals(portfolio)
                    events.append(self._recalculated_event(portfolio, version=loaded_version + 1))
                try:
                    self._store.save_portfolio(portfolio, expected_version=loaded_version)
                except ConcurrencyConflict as e:
                    if attempt > retries:
                        logger.error(
                            "ledger_service.commit_failed",
                            portfolio_id=portfolio_id,
                            attempts=attempt,
                            error=str(e),
                        )
                        raise
                    logger.warning(
                        "ledger_service.commit_conflict",
                        portfolio_id=portfolio_id,
                        attempt=attempt,
                        expected_version=e.expected_version,
                        actual_version=e.actual_version,
                    )
                    continue

            for event in events:
                self._event_bus.publish(event)
            return portfolio, outcome

    @staticmethod
    def _recalculated_event(portfolio: Portfolio, version: int) -> PortfolioRecalculatedEvent:
        return PortfolioRecalculatedEvent(
            portfolio_id=portfolio.id,
            total_value=portfolio.total_value,
            total_cost=portfolio.total_cost,
            total_gain_loss=portfolio.total_gain_loss,
            total_gain_loss_percent=portfolio.total_gain_loss_percent,
            active_holdings=len(portfolio.active_holdings()),
            version=version,
        )

    @staticmethod
    def _holding(portfolio: Portfolio, holding_id: str) -> Holding:
        holding = portfolio.holdings.get(holding_id)
        if holding is None:
            raise NotFound("Holding", holding_id)
        return holding

    # ==================== Portfolios ====================

    def create_portfolio(
        self,
        name: str,
        currency: str = "USD",
        status: PortfolioStatus = PortfolioStatus.ACTIVE,
    ) -> Portfolio:
        portfolio = Portfolio(name=name, currency=currency, status=status)
        self._store.save_portfolio(portfolio, expected_version=0)
        logger.info("ledger_service.portfolio_created", portfolio_id=portfolio.id, name=name, currency=currency)
        return portfolio

    def get_portfolio(self, portfolio_id: str) -> Portfolio:
        return self._store.load_portfolio(portfolio_id)

    def archive_portfolio(self, portfolio_id: str) -> Portfolio:
        """Archive a portfolio together with every holding not already in a final status."""
        portfolio, _ = self._run(portfolio_id, self._archive)
        logger.info("ledger_service.portfolio_archived", portfolio_id=portfolio_id)
        return portfolio

    def _archive(self, portfolio: Portfolio, events: list[BaseEvent]) -> PortfolioStatus:
        previous = portfolio.status
        portfolio.status = StatusStateMachine.validate(previous, PortfolioStatus.ARCHIVED)
        events.append(self._status_event("portfolio", portfolio.id, portfolio.id, previous, portfolio.status))

        # Archiving cascades through ownership; holdings follow the portfolio
        # even from statuses whose own table has no ARCHIVED successor.
        for holding in portfolio.holdings.values():
            if holding.status.is_final:
                continue
            holding_previous = holding.status
            holding.status = HoldingStatus.ARCHIVED
            holding.last_updated = utc_now()
            events.append(
                self._status_event("holding", holding.id, portfolio.id, holding_previous, HoldingStatus.ARCHIVED)
            )
        return previous

    # ==================== Transactions ====================

    def process_transaction(self, portfolio_id: str, event: TransactionEvent) -> TransactionResult:
        """
        Apply one transaction event as a unit of work.

        Returns:
            TransactionResult with the committed holding, its Transaction
            record and any realized gain/loss or dividend amount
        """

        def work(portfolio: Portfolio, events: list[BaseEvent]) -> TransactionResult:
            before = portfolio.holdings.get(getattr(event, "holding_id", ""))
            if before is None and hasattr(event, "symbol"):
                before = portfolio.holding_for_symbol(event.symbol)
            previous_status = before.status if before is not None else None

            result = self._processor.apply(portfolio, event)
            self._processor.record(portfolio, result)

            holding = result.holding
            transaction = result.transaction
            events.append(
                TransactionAppliedEvent(
                    correlation_id=transaction.id,
                    portfolio_id=portfolio.id,
                    holding_id=holding.id,
                    transaction_id=transaction.id,
                    transaction_type=transaction.type.value,
                    symbol=holding.symbol,
                    quantity=transaction.quantity,
                    price=transaction.price,
                    fees=transaction.fees,
                    total_amount=transaction.total_amount,
                    realized_gain_loss=result.realized_gain_loss,
                    dividend_amount=result.dividend_amount,
                    created=result.created,
                )
            )
            if previous_status is not None and previous_status != holding.status:
                events.append(
                    self._status_event("holding", holding.id, portfolio.id, previous_status, holding.status)
                )
            return result

        _, result = self._run(portfolio_id, work)
        logger.info(
            "ledger_service.transaction_committed",
            portfolio_id=portfolio_id,
            transaction_id=result.transaction.id,
            transaction_type=result.transaction.type.value,
            symbol=result.holding.symbol,
        )
        return result

    # ==================== Valuation ====================

    def recalculate_portfolio(self, portfolio_id: str) -> PortfolioSummary:
        portfolio, _ = self._run(portfolio_id, lambda p, events: None)
        summary = self._aggregator.summary(portfolio)
        logger.info(
            "ledger_service.portfolio_recalculated",
            portfolio_id=portfolio_id,
            total_value=str(summary.total_value),
            total_gain_loss=str(summary.total_gain_loss),
        )
        return summary

    def get_allocation(self, portfolio_id: str) -> AllocationReport:
        """Allocation report over freshly recomputed totals (read only; nothing is committed)."""
        with self._locks.hold(portfolio_id):
            portfolio = self._store.load_portfolio(portfolio_id)
        self._aggregator.recalculate_totals(portfolio)
        return self._allocation.report(portfolio)

    def holdings_requiring_attention(self, portfolio_id: str) -> list[Holding]:
        with self._locks.hold(portfolio_id):
            portfolio = self._store.load_portfolio(portfolio_id)
        return self._allocation.holdings_requiring_attention(portfolio)

    def update_holding_price(self, portfolio_id: str, holding_id: str, new_price: Decimal) -> Holding:
        def work(portfolio: Portfolio, events: list[BaseEvent]) -> Holding:
            holding = self._holding(portfolio, holding_id)
            previous = holding.current_price
            self._ledger.apply_price_update(holding, new_price)
            events.append(
                HoldingPriceUpdatedEvent(
                    portfolio_id=portfolio.id,
                    holding_id=holding.id,
                    symbol=holding.symbol,
                    previous_price=previous,
                    current_price=holding.current_price,
                )
            )
            return holding

        _, holding = self._run(portfolio_id, work)
        return holding

    def enrich_holding(self, portfolio_id: str, holding_id: str) -> Holding:
        """
        Fill a holding's classification from the market data provider.

        Only fields the provider returns are overwritten.

        Raises:
            MarketDataUnavailable: If the provider cannot supply company info
        """
        provider = self._require_market_data()
        with self._locks.hold(portfolio_id):
            symbol = self._holding(self._store.load_portfolio(portfolio_id), holding_id).symbol
        info = provider.get_company_info(symbol)

        def work(portfolio: Portfolio, events: list[BaseEvent]) -> Holding:
            holding = self._holding(portfolio, holding_id)
            for field in ("company_name", "sector", "country", "market"):
                value = getattr(info, field)
                if value:
                    setattr(holding, field, value)
            holding.last_updated = utc_now()
            return holding

        _, holding = self._run(portfolio_id, work)
        logger.info(
            "ledger_service.holding_enriched",
            portfolio_id=portfolio_id,
            holding_id=holding_id,
            sector=holding.sector,
            country=holding.country,
        )
        return holding

    # ==================== Bulk price refresh ====================

    def refresh_portfolio_prices(self, portfolio_id: str) -> RefreshResult:
        return self._refresh([portfolio_id])

    def refresh_all_prices(self) -> RefreshResult:
        return self._refresh(self._store.list_portfolio_ids())

    def _refresh(self, portfolio_ids: list[str]) -> RefreshResult:
        """
        Fetch prices concurrently per symbol, then commit each portfolio once.

        A symbol whose fetch fails (or times out) is logged and skipped; its
        holdings keep their last price and the rest of the sweep continues.
        """
        provider = self._require_market_data()

        symbols_by_portfolio: dict[str, set[str]] = {}
        for portfolio_id in portfolio_ids:
            with self._locks.hold(portfolio_id):
                portfolio = self._store.load_portfolio(portfolio_id)
            symbols_by_portfolio[portfolio_id] = {h.symbol for h in portfolio.holdings.values() if not h.status.is_final}

        all_symbols = sorted(set().union(*symbols_by_portfolio.values())) if symbols_by_portfolio else []
        prices, failures = self._fetch_prices(provider, all_symbols)

        for symbol, reason in failures.items():
            affected = [pid for pid, symbols in symbols_by_portfolio.items() if symbol in symbols]
            logger.warning("ledger_service.price_refresh_failed", symbol=symbol, reason=reason, portfolios=affected)
            self._event_bus.publish(PriceRefreshFailedEvent(symbol=symbol, reason=reason, portfolio_ids=affected))

        result = RefreshResult(updated=prices, failed=failures)
        for portfolio_id, symbols in symbols_by_portfolio.items():
            if not symbols & prices.keys():
                continue
            self._run(portfolio_id, lambda p, events: self._apply_prices(p, prices, events))
            result.portfolios.append(portfolio_id)

        logger.info(
            "ledger_service.prices_refreshed",
            symbols=len(all_symbols),
            updated=len(prices),
            failed=len(failures),
            portfolios=len(result.portfolios),
        )
        return result

    def _fetch_prices(
        self, provider: MarketDataProvider, symbols: list[str]
    ) -> tuple[dict[str, Decimal], dict[str, str]]:
        prices: dict[str, Decimal] = {}
        failures: dict[str, str] = {}
        if not symbols:
            return prices, failures

        market_settings = self._config.market_data
        executor = ThreadPoolExecutor(
            max_workers=max(1, min(market_settings.refresh_workers, len(symbols))),
            thread_name_prefix="price-refresh",
        )
        try:
            futures: dict[Future, str] = {executor.submit(provider.get_current_price, s): s for s in symbols}
            done, not_done = wait(futures, timeout=market_settings.fetch_timeout_seconds)

            for future in not_done:
                future.cancel()
                failures[futures[future]] = f"timed out after {market_settings.fetch_timeout_seconds}s"

            for future in done:
                symbol = futures[future]
                try:
                    price = Decimal(str(future.result()))
                except MarketDataUnavailable as e:
                    failures[symbol] = e.reason or str(e)
                    continue
                except Exception as e:
                    failures[symbol] = f"{type(e).__name__}: {e}"
                    continue
                if not price.is_finite():
                    failures[symbol] = f"non-finite price {price}"
                    continue
                if price <= 0:
                    failures[symbol] = f"non-positive price {price}"
                    continue
                prices[symbol] = price
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return prices, failures

    def _apply_prices(self, portfolio: Portfolio, prices: dict[str, Decimal], events: list[BaseEvent]) -> None:
        for holding in portfolio.holdings.values():
            price = prices.get(holding.symbol)
            if price is None or holding.status.is_final:
                continue
            previous = holding.current_price
            self._ledger.apply_price_update(holding, price)
            events.append(
                HoldingPriceUpdatedEvent(
                    portfolio_id=portfolio.id,
                    holding_id=holding.id,
                    symbol=holding.symbol,
                    previous_price=previous,
                    current_price=price,
                )
            )

    def _require_market_data(self) -> MarketDataProvider:
        if self._market_data is None:
            raise MarketDataUnavailable("*", "no market data provider configured")
        return self._market_data

    # ==================== Lifecycle ====================

    def transition_status(self, portfolio_id: str, new_status: AnyStatus, entity_id: str | None = None) -> AnyStatus:
        """
        Move a holding, a transaction or the portfolio to ``new_status``.

        Archiving the portfolio this way cascades to its holdings, the same as
        ``archive_portfolio``.
        """

        def work(portfolio: Portfolio, events: list[BaseEvent]) -> AnyStatus:
            if new_status is PortfolioStatus.ARCHIVED:
                return self._archive(portfolio, events)
            if isinstance(new_status, PortfolioStatus):
                entity, target_id, previous = "portfolio", portfolio.id, portfolio.status
                portfolio.status = StatusStateMachine.validate(previous, new_status)
            elif isinstance(new_status, HoldingStatus):
                holding = self._holding(portfolio, entity_id or "")
                entity, target_id = "holding", holding.id
                previous = self._ledger.set_status(holding, new_status)
            elif isinstance(new_status, TransactionStatus):
                transaction = portfolio.find_transaction(entity_id or "")
                if transaction is None:
                    raise NotFound("Transaction", entity_id or "")
                entity, target_id, previous = "transaction", transaction.id, transaction.status
                transaction.status = StatusStateMachine.validate(previous, new_status)
            else:
                raise TypeError(f"Unknown status type: {type(new_status).__name__}")

            if previous != new_status:
                events.append(self._status_event(entity, target_id, portfolio.id, previous, new_status))
            return previous

        try:
            recalculate = isinstance(new_status, HoldingStatus) or new_status is PortfolioStatus.ARCHIVED
            _, previous = self._run(portfolio_id, work, recalculate=recalculate)
        except InvalidStateTransition as e:
            logger.warning(
                "ledger_service.status_transition_rejected",
                portfolio_id=portfolio_id,
                entity_id=entity_id,
                to_status=getattr(new_status, "value", str(new_status)),
                error=str(e),
            )
            raise
        if new_status is PortfolioStatus.ARCHIVED:
            logger.info("ledger_service.portfolio_archived", portfolio_id=portfolio_id)
        return previous

    def deactivate_holding(self, portfolio_id: str, holding_id: str) -> Holding:
        self.transition_status(portfolio_id, HoldingStatus.INACTIVE, holding_id)
        return self._store.load_portfolio(portfolio_id).holdings[holding_id]

    def reactivate_holding(self, portfolio_id: str, holding_id: str) -> Holding:
        self.transition_status(portfolio_id, HoldingStatus.ACTIVE, holding_id)
        return self._store.load_portfolio(portfolio_id).holdings[holding_id]

    def stale_holdings(self, portfolio_id: str, threshold: timedelta, now: datetime | None = None) -> list[Holding]:
        """Open holdings not updated within ``threshold``."""
        cutoff = (now or utc_now()) - threshold
        portfolio = self._store.load_portfolio(portfolio_id)
        return [h for h in portfolio.holdings.values() if not h.status.is_final and h.last_updated < cutoff]

    @staticmethod
    def _status_event(
        entity: str, entity_id: str, portfolio_id: str, from_status: AnyStatus, to_status: AnyStatus
    ) -> StatusChangedEvent:
        return StatusChangedEvent(
            entity=entity,
            entity_id=entity_id,
            portfolio_id=portfolio_id,
            from_status=from_status.value,
            to_status=to_status.value,
        )
