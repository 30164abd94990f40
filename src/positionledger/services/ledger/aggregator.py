"""Portfolio aggregator: portfolio-level totals derived from ACTIVE holdings.

Cached totals on Portfolio are written here and nowhere else. Holdings in any
other status stay in the arena for history but never count towards totals.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from positionledger.services.ledger.holding_ledger import HoldingLedger, percent_of
from positionledger.services.ledger.models import ZERO, Holding, Portfolio, TransactionType, utc_now
from positionledger.services.ledger.status import HoldingStatus
from positionledger.system import LoggerFactory
from positionledger.system.config import LedgerSettings

logger = LoggerFactory.get_logger()


class PortfolioSummary(BaseModel):
    """
    Snapshot of a portfolio's aggregate state.

    Attributes:
        portfolio_id: Portfolio identifier
        total_value: Σ current value of active holdings
        total_cost: Σ cost basis of active holdings
        total_gain_loss: total_value - total_cost
        total_gain_loss_percent: total_gain_loss / total_cost * 100
        day_change: Σ day change of active holdings
        day_change_percent: day_change / (total_value - day_change) * 100
        total_dividends: All dividend income on record
        holdings_count: All holdings in the arena
        active_holdings_count: Holdings counted in totals
        transactions_count: Length of the transaction log
        computed_at: When the snapshot was taken
    """

    portfolio_id: str
    total_value: Decimal
    total_cost: Decimal
    total_gain_loss: Decimal
    total_gain_loss_percent: Decimal
    day_change: Decimal
    day_change_percent: Decimal
    total_dividends: Decimal
    holdings_count: int
    active_holdings_count: int
    transactions_count: int
    computed_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(frozen=True)


class HoldingStatistics(BaseModel):
    """Counts and totals across a portfolio's holdings."""

    total_holdings: int
    active_holdings: int
    closed_holdings: int
    profitable_holdings: int
    losing_holdings: int
    total_value: Decimal
    total_cost: Decimal
    unique_sectors: int
    unique_countries: int

    model_config = ConfigDict(frozen=True)


class PortfolioAggregator:
    """
    Derives portfolio totals from the holding arena.

    Example:
        >>> aggregator = PortfolioAggregator()
        >>> aggregator.recalculate_totals(portfolio)
        >>> aggregator.holding_percentage(holding, portfolio)
        Decimal('60.0000')
    """

    def __init__(self, ledger: HoldingLedger | None = None, settings: LedgerSettings | None = None) -> None:
        self._ledger = ledger or HoldingLedger(settings)
        self._settings = settings or self._ledger.settings

    def recalculate_totals(self, portfolio: Portfolio, as_of: datetime | None = None) -> Portfolio:
        """
        Recompute cached totals from the active holdings and clear dirty flags.

        Idempotent: repeated calls without an intervening mutation produce the
        same totals.

        Returns:
            The same portfolio, for chaining
        """
        active = portfolio.active_holdings()
        total_value = sum((h.current_value for h in active), start=ZERO)
        total_cost = sum((h.cost_basis for h in active), start=ZERO)

        portfolio.total_value = total_value
        portfolio.total_cost = total_cost
        portfolio.total_gain_loss = total_value - total_cost
        portfolio.total_gain_loss_percent = percent_of(
            portfolio.total_gain_loss, total_cost, self._settings.percent_quantum
        )
        portfolio.last_recalculated = as_of or utc_now()

        for holding in portfolio.holdings.values():
            holding.dirty = False

        logger.debug(
            "portfolio_aggregator.recalculated",
            portfolio_id=portfolio.id,
            total_value=str(portfolio.total_value),
            total_cost=str(portfolio.total_cost),
            active_holdings=len(active),
        )
        return portfolio

    def day_change(self, portfolio: Portfolio) -> Decimal:
        """Σ day change over active holdings with a recorded previous close."""
        return sum(
            (self._ledger.day_change(h) for h in portfolio.active_holdings() if h.previous_close_price is not None),
            start=ZERO,
        )

    def day_change_percent(self, portfolio: Portfolio) -> Decimal:
        """Day change relative to yesterday's value (0 when there is no base)."""
        change = self.day_change(portfolio)
        current = sum((h.current_value for h in portfolio.active_holdings()), start=ZERO)
        return percent_of(change, current - change, self._settings.percent_quantum)

    @staticmethod
    def total_dividends(
        portfolio: Portfolio,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Decimal:
        """
        Σ dividend amounts recorded in the transaction log.

        Args:
            portfolio: Portfolio whose log is scanned
            start: Inclusive lower bound on the pay date (None for no bound)
            end: Inclusive upper bound on the pay date (None for no bound)
        """
        total = ZERO
        for transaction in portfolio.transactions:
            if transaction.type != TransactionType.DIVIDEND or transaction.status.is_failed:
                continue
            if start is not None and transaction.transaction_date < start:
                continue
            if end is not None and transaction.transaction_date > end:
                continue
            total += transaction.total_amount
        return total

    def holding_percentage(self, holding: Holding, portfolio: Portfolio) -> Decimal:
        """Holding's share of the portfolio's cached total value, or 0 for an empty portfolio."""
        return percent_of(holding.current_value, portfolio.total_value, self._settings.percent_quantum)

    # ==================== Rankings ====================

    @staticmethod
    def top_holdings_by_value(portfolio: Portfolio, limit: int = 10) -> list[Holding]:
        return sorted(portfolio.active_holdings(), key=lambda h: h.current_value, reverse=True)[:limit]

    @staticmethod
    def top_holdings_by_gain_loss(portfolio: Portfolio, limit: int = 10) -> list[Holding]:
        return sorted(portfolio.active_holdings(), key=lambda h: h.gain_loss, reverse=True)[:limit]

    @staticmethod
    def worst_performers(portfolio: Portfolio, limit: int = 10) -> list[Holding]:
        """Active holdings ordered by gain/loss percent, worst first."""
        return sorted(portfolio.active_holdings(), key=lambda h: h.gain_loss_percent)[:limit]

    # ==================== Reporting ====================

    @staticmethod
    def holding_statistics(portfolio: Portfolio) -> HoldingStatistics:
        holdings = list(portfolio.holdings.values())
        active = portfolio.active_holdings()
        return HoldingStatistics(
            total_holdings=len(holdings),
            active_holdings=len(active),
            closed_holdings=sum(1 for h in holdings if h.status == HoldingStatus.CLOSED),
            profitable_holdings=sum(1 for h in active if h.gain_loss > 0),
            losing_holdings=sum(1 for h in active if h.gain_loss < 0),
            total_value=sum((h.current_value for h in active), start=ZERO),
            total_cost=sum((h.cost_basis for h in active), start=ZERO),
            unique_sectors=len({h.sector for h in active if h.sector}),
            unique_countries=len({h.country for h in active if h.country}),
        )

    def summary(self, portfolio: Portfolio) -> PortfolioSummary:
        """Snapshot of the portfolio's cached totals plus day change and dividends."""
        return PortfolioSummary(
            portfolio_id=portfolio.id,
            total_value=portfolio.total_value,
            total_cost=portfolio.total_cost,
            total_gain_loss=portfolio.total_gain_loss,
            total_gain_loss_percent=portfolio.total_gain_loss_percent,
            day_change=self.day_change(portfolio),
            day_change_percent=self.day_change_percent(portfolio),
            total_dividends=self.total_dividends(portfolio),
            holdings_count=len(portfolio.holdings),
            active_holdings_count=len(portfolio.active_holdings()),
            transactions_count=len(portfolio.transactions),
        )
