"""Transaction processor: validates and applies BUY/SELL/DIVIDEND/SPLIT events.

Every operation follows the same shape:
1. Validate the event and the target holding's status (no mutation yet)
2. Deep-copy the holding (or build a new one on first buy)
3. Mutate the copy and ``recompute`` it through the HoldingLedger
4. Return a TransactionResult carrying the new holding and its Transaction

The caller's holding is never touched, so a failure at any step leaves the
portfolio exactly as it was. ``process`` additionally records a successful
result into the portfolio.
"""

from decimal import Decimal

from positionledger.services.ledger.exceptions import (
    HoldingLimitExceeded,
    InsufficientQuantity,
    NotFound,
    OperationNotAllowed,
    ValidationError,
)
from positionledger.services.ledger.holding_ledger import HoldingLedger, quantize_half_up
from positionledger.services.ledger.models import (
    ZERO,
    BuyEvent,
    DividendEvent,
    Holding,
    Portfolio,
    SellEvent,
    SplitEvent,
    Transaction,
    TransactionEvent,
    TransactionResult,
    TransactionType,
)
from positionledger.services.ledger.status import HoldingStatus
from positionledger.system import LoggerFactory
from positionledger.system.config import LedgerSettings

logger = LoggerFactory.get_logger()

# Statuses a BUY moves back to ACTIVE before adding shares
_REOPEN_ON_BUY = (HoldingStatus.CLOSED, HoldingStatus.WATCHING)


class TransactionProcessor:
    """
    Applies one transaction event to one holding of a portfolio.

    Example:
        >>> processor = TransactionProcessor()
        >>> result = processor.process(portfolio, BuyEvent(symbol="AAPL", quantity=Decimal("10"), price=Decimal("100")))
        >>> result.holding.average_price
        Decimal('100')
    """

    def __init__(self, ledger: HoldingLedger | None = None, settings: LedgerSettings | None = None) -> None:
        self._ledger = ledger or HoldingLedger(settings)
        self._settings = settings or self._ledger.settings

    @property
    def ledger(self) -> HoldingLedger:
        return self._ledger

    # ==================== Entry points ====================

    def apply(self, portfolio: Portfolio, event: TransactionEvent) -> TransactionResult:
        """
        Validate and apply ``event`` without modifying ``portfolio``.

        Args:
            portfolio: Portfolio the event targets (read only)
            event: BuyEvent, SellEvent, DividendEvent or SplitEvent

        Returns:
            TransactionResult with the updated holding copy and its Transaction

        Raises:
            ValidationError: Non-positive quantity, price or ratio
            NotFound: Unknown holding id
            InsufficientQuantity: Sell exceeds the position
            OperationNotAllowed: Portfolio or holding status forbids the event
            HoldingLimitExceeded: A new holding would exceed the portfolio limit
            InvalidStateTransition: Required status change is illegal
        """
        if not portfolio.status.allows_transactions:
            raise OperationNotAllowed(
                f"Portfolio {portfolio.id} does not accept transactions in status {portfolio.status.value}",
                portfolio_id=portfolio.id,
                status=portfolio.status,
            )

        if isinstance(event, BuyEvent):
            return self.buy(portfolio, event)
        if isinstance(event, SellEvent):
            return self.sell(portfolio, event)
        if isinstance(event, DividendEvent):
            return self.dividend(portfolio, event)
        if isinstance(event, SplitEvent):
            return self.split(portfolio, event)
        raise ValidationError(f"Unsupported transaction event: {type(event).__name__}")

    def process(self, portfolio: Portfolio, event: TransactionEvent) -> TransactionResult:
        """Apply ``event`` and record the result into ``portfolio``."""
        result = self.apply(portfolio, event)
        self.record(portfolio, result)
        return result

    @staticmethod
    def record(portfolio: Portfolio, result: TransactionResult) -> None:
        """Store the result's holding in the arena and append its transaction to the log."""
        portfolio.holdings[result.holding.id] = result.holding
        portfolio.transactions.append(result.transaction)

    # ==================== BUY ====================

    def buy(self, portfolio: Portfolio, event: BuyEvent) -> TransactionResult:
        """
        Buy shares, opening a holding on the first buy of a symbol.

        Weighted average:
            new_avg = (old_qty * old_avg + qty * price) / (old_qty + qty)
        rounded half-up to the price precision. Fees are tracked on
        ``fees_paid`` and never enter the cost basis.
        """
        self._require_positive("quantity", event.quantity)
        self._require_positive("price", event.price)
        self._require_non_negative("fees", event.fees)

        existing = portfolio.holding_for_symbol(event.symbol)

        if existing is None:
            limit = self._settings.max_holdings_per_portfolio
            if len(portfolio.holdings) >= limit:
                raise HoldingLimitExceeded(portfolio.id, limit)

            holding = Holding(
                portfolio_id=portfolio.id,
                symbol=event.symbol,
                company_name=event.company_name,
                sector=event.sector,
                country=event.country,
                market=event.market,
                currency=portfolio.currency,
                type=event.holding_type,
                quantity=event.quantity,
                average_price=event.price,
                current_price=event.price,
                fees_paid=event.fees,
                purchase_date=event.transaction_date,
            )
            created = True
        else:
            if not (existing.status.allows_buying or existing.status in _REOPEN_ON_BUY):
                raise OperationNotAllowed(
                    f"Cannot buy {existing.symbol}: holding status is {existing.status.value}",
                    holding_id=existing.id,
                    symbol=existing.symbol,
                    status=existing.status,
                )

            holding = existing.model_copy(deep=True)
            if holding.status in _REOPEN_ON_BUY:
                self._ledger.set_status(holding, HoldingStatus.ACTIVE)

            old_quantity = holding.quantity
            new_quantity = old_quantity + event.quantity
            weighted = (old_quantity * holding.average_price + event.quantity * event.price) / new_quantity

            holding.average_price = quantize_half_up(weighted, self._settings.price_quantum)
            holding.quantity = new_quantity
            holding.current_price = event.price
            holding.fees_paid += event.fees
            if old_quantity == 0:
                holding.purchase_date = event.transaction_date
            created = False

        self._ledger.recompute(holding)

        transaction = self._transaction(
            holding,
            TransactionType.BUY,
            quantity=event.quantity,
            price=event.price,
            fees=event.fees,
            transaction_date=event.transaction_date,
            notes=event.notes,
        )

        logger.info(
            "transaction_processor.buy_applied",
            portfolio_id=portfolio.id,
            holding_id=holding.id,
            symbol=holding.symbol,
            quantity=str(event.quantity),
            price=str(event.price),
            average_price=str(holding.average_price),
            created=created,
        )
        return TransactionResult(holding=holding, transaction=transaction, created=created)

    # ==================== SELL ====================

    def sell(self, portfolio: Portfolio, event: SellEvent) -> TransactionResult:
        """
        Sell shares from an existing holding.

        The average price is unchanged; the sold lot books
        ``(price - average_price) * quantity`` of realized gain/loss. A holding
        sold down to zero is CLOSED.
        """
        self._require_positive("quantity", event.quantity)
        self._require_positive("price", event.price)
        self._require_non_negative("fees", event.fees)

        existing = self._holding(portfolio, event.holding_id)
        if not existing.status.allows_selling:
            raise OperationNotAllowed(
                f"Cannot sell {existing.symbol}: holding status is {existing.status.value}",
                holding_id=existing.id,
                symbol=existing.symbol,
                status=existing.status,
            )
        if event.quantity > existing.quantity:
            raise InsufficientQuantity(existing.symbol, existing.quantity, event.quantity)

        holding = existing.model_copy(deep=True)
        realized = (event.price - holding.average_price) * event.quantity

        holding.quantity = holding.quantity - event.quantity
        holding.current_price = event.price
        holding.realized_gain_loss += realized
        holding.fees_paid += event.fees
        if holding.quantity == 0:
            self._ledger.set_status(holding, HoldingStatus.CLOSED)

        self._ledger.recompute(holding)

        transaction = self._transaction(
            holding,
            TransactionType.SELL,
            quantity=event.quantity,
            price=event.price,
            fees=event.fees,
            transaction_date=event.transaction_date,
            realized_gain_loss=realized,
            notes=event.notes,
        )

        logger.info(
            "transaction_processor.sell_applied",
            portfolio_id=portfolio.id,
            holding_id=holding.id,
            symbol=holding.symbol,
            quantity=str(event.quantity),
            price=str(event.price),
            realized_gain_loss=str(realized),
            remaining=str(holding.quantity),
            closed=holding.status == HoldingStatus.CLOSED,
        )
        return TransactionResult(holding=holding, transaction=transaction, realized_gain_loss=realized)

    # ==================== DIVIDEND ====================

    def dividend(self, portfolio: Portfolio, event: DividendEvent) -> TransactionResult:
        """Pay ``per_share`` on the current quantity; position and cost basis are unchanged."""
        self._require_positive("per_share", event.per_share)
        if event.pay_date < event.ex_date:
            raise ValidationError(
                f"Dividend pay date {event.pay_date} precedes ex-date {event.ex_date}",
                ex_date=event.ex_date,
                pay_date=event.pay_date,
            )

        existing = self._holding(portfolio, event.holding_id)
        self._require_position(existing, "dividend")

        holding = existing.model_copy(deep=True)
        amount = event.per_share * holding.quantity

        holding.dividends_received += amount
        holding.last_dividend_date = event.pay_date
        self._ledger.recompute(holding)

        transaction = self._transaction(
            holding,
            TransactionType.DIVIDEND,
            quantity=holding.quantity,
            price=event.per_share,
            transaction_date=event.pay_date,
            ex_date=event.ex_date,
            notes=event.notes,
        )

        logger.info(
            "transaction_processor.dividend_applied",
            portfolio_id=portfolio.id,
            holding_id=holding.id,
            symbol=holding.symbol,
            per_share=str(event.per_share),
            amount=str(amount),
        )
        return TransactionResult(holding=holding, transaction=transaction, dividend_amount=amount)

    # ==================== SPLIT ====================

    def split(self, portfolio: Portfolio, event: SplitEvent) -> TransactionResult:
        """
        Apply a stock split of ``ratio`` new shares per old share.

        Quantity is multiplied and prices divided by the ratio, each rounded
        half-up to its field precision, so cost basis is preserved within
        rounding. Target and stop-loss prices are scaled too unless
        ``scale_targets_on_split`` is disabled.
        """
        self._require_positive("ratio", event.ratio)

        existing = self._holding(portfolio, event.holding_id)
        self._require_position(existing, "split")

        holding = existing.model_copy(deep=True)
        ratio = event.ratio
        quantity_q = self._settings.quantity_quantum
        price_q = self._settings.price_quantum

        holding.quantity = quantize_half_up(holding.quantity * ratio, quantity_q)
        holding.average_price = quantize_half_up(holding.average_price / ratio, price_q)
        holding.current_price = quantize_half_up(holding.current_price / ratio, price_q)
        if holding.previous_close_price is not None:
            holding.previous_close_price = quantize_half_up(holding.previous_close_price / ratio, price_q)
        if self._settings.scale_targets_on_split:
            if holding.target_price is not None:
                holding.target_price = quantize_half_up(holding.target_price / ratio, price_q)
            if holding.stop_loss_price is not None:
                holding.stop_loss_price = quantize_half_up(holding.stop_loss_price / ratio, price_q)

        scaled = {
            "average_price": holding.average_price,
            "current_price": holding.current_price,
            "previous_close_price": holding.previous_close_price,
        }
        for name, value in scaled.items():
            if value is not None and value <= 0:
                raise ValidationError(
                    f"Split ratio {ratio} rounds {existing.symbol} {name} to zero",
                    symbol=existing.symbol,
                    ratio=ratio,
                    field=name,
                )

        self._ledger.recompute(holding)

        transaction = self._transaction(
            holding,
            TransactionType.SPLIT,
            quantity=ratio,
            price=ZERO,
            transaction_date=event.effective_date,
            notes=event.notes,
        )

        logger.info(
            "transaction_processor.split_applied",
            portfolio_id=portfolio.id,
            holding_id=holding.id,
            symbol=holding.symbol,
            ratio=str(ratio),
            quantity=str(holding.quantity),
            average_price=str(holding.average_price),
        )
        return TransactionResult(holding=holding, transaction=transaction)

    # ==================== Helpers ====================

    @staticmethod
    def _holding(portfolio: Portfolio, holding_id: str) -> Holding:
        holding = portfolio.holdings.get(holding_id)
        if holding is None:
            raise NotFound("Holding", holding_id)
        return holding

    @staticmethod
    def _require_positive(name: str, value: Decimal) -> None:
        if value <= 0:
            raise ValidationError(f"{name} must be greater than zero, got {value}", field=name, value=value)

    @staticmethod
    def _require_non_negative(name: str, value: Decimal) -> None:
        if value < 0:
            raise ValidationError(f"{name} cannot be negative, got {value}", field=name, value=value)

    @staticmethod
    def _require_position(holding: Holding, action: str) -> None:
        if not holding.status.has_position or holding.quantity == 0:
            raise OperationNotAllowed(
                f"Cannot apply {action} to {holding.symbol}: no open position (status {holding.status.value})",
                holding_id=holding.id,
                symbol=holding.symbol,
                status=holding.status,
            )

    @staticmethod
    def _transaction(holding: Holding, transaction_type: TransactionType, **fields) -> Transaction:
        quantity = fields["quantity"]
        price = fields["price"]
        fees = fields.pop("fees", ZERO)
        return Transaction(
            portfolio_id=holding.portfolio_id,
            holding_id=holding.id,
            symbol=holding.symbol,
            type=transaction_type,
            fees=fees,
            total_amount=Transaction.total_for(transaction_type, quantity, price, fees),
            **fields,
        )
