"""Holding ledger: keeps one holding's derived valuation consistent.

Every mutation of quantity or price ends with ``recompute``; the derived
fields (cost basis, current value, gain/loss) are never written anywhere else.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from positionledger.services.ledger.exceptions import InvalidPrice
from positionledger.services.ledger.models import ZERO, Holding, utc_now
from positionledger.services.ledger.status import HoldingStatus, StatusStateMachine
from positionledger.system import LoggerFactory
from positionledger.system.config import LedgerSettings

logger = LoggerFactory.get_logger()

HUNDRED = Decimal("100")


def quantize_half_up(value: Decimal, quantum: Decimal) -> Decimal:
    """Round ``value`` to ``quantum`` using ROUND_HALF_UP."""
    return value.quantize(quantum, rounding=ROUND_HALF_UP)


def percent_of(part: Decimal, whole: Decimal, quantum: Decimal) -> Decimal:
    """``part / whole * 100`` rounded half-up, or 0 when ``whole`` is not positive."""
    if whole <= 0:
        return ZERO
    return quantize_half_up(part / whole * HUNDRED, quantum)


class HoldingLedger:
    """
    Owns the valuation rules for a single holding.

    Example:
        >>> ledger = HoldingLedger()
        >>> holding = Holding(portfolio_id="pf", symbol="AAPL", quantity=Decimal("10"),
        ...                   average_price=Decimal("100"), current_price=Decimal("100"))
        >>> ledger.recompute(holding)
        >>> ledger.apply_price_update(holding, Decimal("105"))
        >>> ledger.day_change(holding)
        Decimal('50')
    """

    def __init__(self, settings: LedgerSettings | None = None) -> None:
        self._settings = settings or LedgerSettings()

    @property
    def settings(self) -> LedgerSettings:
        return self._settings

    def recompute(self, holding: Holding, as_of: datetime | None = None) -> Holding:
        """
        Recompute derived valuation fields from quantity and prices.

        cost_basis = quantity * average_price
        current_value = quantity * current_price
        gain_loss = current_value - cost_basis
        gain_loss_percent = gain_loss / cost_basis * 100 (0 if no cost basis)

        Args:
            holding: Holding to update in place
            as_of: Timestamp for last_updated (defaults to now)

        Returns:
            The same holding, for chaining
        """
        holding.cost_basis = holding.quantity * holding.average_price
        holding.current_value = holding.quantity * holding.current_price
        holding.gain_loss = holding.current_value - holding.cost_basis
        holding.gain_loss_percent = percent_of(
            holding.gain_loss, holding.cost_basis, self._settings.percent_quantum
        )
        holding.last_updated = as_of or utc_now()

        logger.debug(
            "holding_ledger.recomputed",
            holding_id=holding.id,
            symbol=holding.symbol,
            quantity=str(holding.quantity),
            cost_basis=str(holding.cost_basis),
            current_value=str(holding.current_value),
        )
        return holding

    def apply_price_update(self, holding: Holding, new_price: Decimal, as_of: datetime | None = None) -> Holding:
        """
        Record a new market price.

        The old current price becomes the previous close, the holding is
        recomputed and flagged dirty until its portfolio is recalculated.

        Raises:
            InvalidPrice: If new_price <= 0
        """
        new_price = Decimal(new_price)
        if new_price <= 0:
            raise InvalidPrice(holding.symbol, new_price)

        holding.previous_close_price = holding.current_price
        holding.current_price = new_price
        self.recompute(holding, as_of)
        holding.dirty = True
        return holding

    def day_change(self, holding: Holding) -> Decimal:
        """Value movement since previous close at current quantity (0 without a previous close)."""
        if holding.previous_close_price is None:
            return ZERO
        return (holding.current_price - holding.previous_close_price) * holding.quantity

    def day_change_percent(self, holding: Holding) -> Decimal:
        """Price movement since previous close as a percentage."""
        previous = holding.previous_close_price
        if previous is None or previous == 0:
            return ZERO
        return percent_of(holding.current_price - previous, previous, self._settings.percent_quantum)

    @staticmethod
    def is_target_reached(holding: Holding) -> bool:
        return holding.target_price is not None and holding.current_price >= holding.target_price

    @staticmethod
    def is_stop_loss_triggered(holding: Holding) -> bool:
        return holding.stop_loss_price is not None and holding.current_price <= holding.stop_loss_price

    def set_status(self, holding: Holding, new_status: HoldingStatus) -> HoldingStatus:
        """
        Move the holding to ``new_status`` if the lifecycle allows it.

        Returns:
            The previous status

        Raises:
            InvalidStateTransition: If the transition is not allowed
        """
        previous = holding.status
        StatusStateMachine.validate(previous, new_status)
        holding.status = new_status
        holding.last_updated = utc_now()
        return previous
