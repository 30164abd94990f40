"""Allocation analysis: sector, geographic and asset-type breakdowns.

All percentages are shares of the portfolio's cached ``total_value`` over its
ACTIVE holdings, rounded half-up to the configured percent precision.
"""

from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field

from positionledger.services.ledger.aggregator import PortfolioAggregator
from positionledger.services.ledger.holding_ledger import HoldingLedger, percent_of
from positionledger.services.ledger.models import ZERO, Holding, Portfolio, utc_now
from positionledger.system.config import LedgerSettings

UNKNOWN_BUCKET = "Unknown"


class AllocationReport(BaseModel):
    """Allocation maps and concentration indicators for one portfolio."""

    portfolio_id: str
    sector_allocation: dict[str, Decimal]
    geographic_allocation: dict[str, Decimal]
    asset_type_allocation: dict[str, Decimal]
    diversification_score: Decimal
    max_sector_allocation: Decimal
    is_diversified: bool
    overconcentrated_holding_ids: list[str] = Field(default_factory=list)
    highly_concentrated_holding_ids: list[str] = Field(default_factory=list)
    computed_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(frozen=True)


class AllocationAnalyzer:
    """
    Computes allocation percentages and concentration flags.

    Example:
        >>> analyzer = AllocationAnalyzer()
        >>> analyzer.sector_allocation(portfolio)
        {'Technology': Decimal('60.0000'), 'Unknown': Decimal('40.0000')}
    """

    def __init__(
        self,
        aggregator: PortfolioAggregator | None = None,
        ledger: HoldingLedger | None = None,
        settings: LedgerSettings | None = None,
    ) -> None:
        self._ledger = ledger or HoldingLedger(settings)
        self._settings = settings or self._ledger.settings
        self._aggregator = aggregator or PortfolioAggregator(self._ledger, self._settings)

    # ==================== Allocation maps ====================

    def sector_allocation(self, portfolio: Portfolio) -> dict[str, Decimal]:
        return self._allocate(portfolio, lambda h: h.sector)

    def geographic_allocation(self, portfolio: Portfolio) -> dict[str, Decimal]:
        return self._allocate(portfolio, lambda h: h.country)

    def asset_type_allocation(self, portfolio: Portfolio) -> dict[str, Decimal]:
        return self._allocate(portfolio, lambda h: h.type.value)

    def _allocate(self, portfolio: Portfolio, key: Callable[[Holding], str | None]) -> dict[str, Decimal]:
        """Group active holdings by ``key`` and express each group's value as a percentage."""
        values: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for holding in portfolio.active_holdings():
            values[key(holding) or UNKNOWN_BUCKET] += holding.current_value

        quantum = self._settings.percent_quantum
        return {group: percent_of(value, portfolio.total_value, quantum) for group, value in values.items()}

    # ==================== Diversification ====================

    def diversification_score(self, portfolio: Portfolio) -> Decimal:
        """
        Distinct sectors per active holding, as a 0-100 score.

        Holdings without a sector share the "Unknown" bucket. 0 when the
        portfolio has no active holdings.
        """
        active = portfolio.active_holdings()
        if not active:
            return ZERO
        sectors = {h.sector or UNKNOWN_BUCKET for h in active}
        return percent_of(Decimal(len(sectors)), Decimal(len(active)), self._settings.percent_quantum)

    def max_sector_allocation(self, portfolio: Portfolio) -> Decimal:
        return max(self.sector_allocation(portfolio).values(), default=ZERO)

    def is_diversified(self, portfolio: Portfolio) -> bool:
        """True when no single sector exceeds ``diversified_max_sector_pct`` of the portfolio."""
        return self.max_sector_allocation(portfolio) <= self._settings.diversified_max_sector_pct

    # ==================== Concentration ====================

    def is_overconcentrated(self, holding: Holding, portfolio: Portfolio, limit_percent: Decimal | None = None) -> bool:
        """Holding's share of the portfolio is strictly above ``limit_percent`` (default from settings)."""
        limit = self._settings.concentration_limit_pct if limit_percent is None else Decimal(limit_percent)
        return self._aggregator.holding_percentage(holding, portfolio) > limit

    def overconcentrated_holdings(self, portfolio: Portfolio, limit_percent: Decimal | None = None) -> list[Holding]:
        return [h for h in portfolio.active_holdings() if self.is_overconcentrated(h, portfolio, limit_percent)]

    def holdings_requiring_attention(self, portfolio: Portfolio) -> list[Holding]:
        """
        Active holdings that hit their target, triggered their stop loss, or
        fell at least ``day_change_alert_pct`` since the previous close.
        """
        alert = -self._settings.day_change_alert_pct
        flagged: dict[str, Holding] = {}
        for holding in portfolio.active_holdings():
            if (
                self._ledger.is_target_reached(holding)
                or self._ledger.is_stop_loss_triggered(holding)
                or self._ledger.day_change_percent(holding) <= alert
            ):
                flagged.setdefault(holding.id, holding)
        return list(flagged.values())

    # ==================== Report ====================

    def report(self, portfolio: Portfolio) -> AllocationReport:
        sectors = self.sector_allocation(portfolio)
        max_sector = max(sectors.values(), default=ZERO)
        return AllocationReport(
            portfolio_id=portfolio.id,
            sector_allocation=sectors,
            geographic_allocation=self.geographic_allocation(portfolio),
            asset_type_allocation=self.asset_type_allocation(portfolio),
            diversification_score=self.diversification_score(portfolio),
            max_sector_allocation=max_sector,
            is_diversified=max_sector <= self._settings.diversified_max_sector_pct,
            overconcentrated_holding_ids=[h.id for h in self.overconcentrated_holdings(portfolio)],
            highly_concentrated_holding_ids=[
                h.id for h in self.overconcentrated_holdings(portfolio, self._settings.high_concentration_limit_pct)
            ],
        )
