"""Data models for the position ledger.

Defines the core entities of the valuation engine:
- Holding: One symbol's position inside one portfolio
- Portfolio: Aggregate owning an arena of holdings (indexed by id) and the
  append-only transaction log
- Transaction: Immutable-by-convention record of an applied event
- BuyEvent / SellEvent / DividendEvent / SplitEvent: Incoming events
- TransactionResult: What the processor hands back to its caller
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from positionledger.services.ledger.status import HoldingStatus, PortfolioStatus, TransactionStatus

ZERO = Decimal("0")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class HoldingType(str, Enum):
    """Asset class of a holding."""

    STOCK = "stock"
    ETF = "etf"
    MUTUAL_FUND = "mutual_fund"
    BOND = "bond"
    OPTION = "option"
    CRYPTO = "crypto"


class TransactionType(str, Enum):
    """Kind of event applied to a holding."""

    BUY = "buy"
    SELL = "sell"
    DIVIDEND = "dividend"
    SPLIT = "split"


class Holding(BaseModel):
    """
    A quantity of one symbol held in one portfolio.

    Position fields (quantity and prices) are authoritative; the derived
    valuation fields are only ever written by ``HoldingLedger.recompute``.

    Attributes:
        id: Unique identifier
        portfolio_id: Owning portfolio
        symbol: Ticker symbol (stored upper-case)
        company_name, sector, country, market, currency, type: Classification
        quantity: Shares held (>= 0)
        average_price: Weighted-average acquisition price
        current_price: Last known market price
        previous_close_price: Price before the last update (for day change)
        target_price: Optional take-profit level
        stop_loss_price: Optional stop-loss level
        cost_basis: quantity * average_price (derived)
        current_value: quantity * current_price (derived)
        gain_loss: current_value - cost_basis (derived)
        gain_loss_percent: gain_loss / cost_basis * 100 (derived)
        realized_gain_loss: Lifetime realized P&L booked by sells
        dividends_received: Lifetime dividend income
        fees_paid: Lifetime fees (never part of cost basis)
        last_dividend_date: Pay date of the last dividend
        status: Lifecycle status
        dirty: Set by price updates until the portfolio is recalculated
        purchase_date: When the position was first opened
        last_updated: Last mutation timestamp

    Example:
        >>> holding = Holding(
        ...     portfolio_id="pf_001",
        ...     symbol="AAPL",
        ...     quantity=Decimal("10"),
        ...     average_price=Decimal("100.00"),
        ...     current_price=Decimal("100.00"),
        ... )
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    portfolio_id: str
    symbol: str

    # Classification
    company_name: str | None = None
    sector: str | None = None
    country: str | None = None
    market: str | None = None
    currency: str = "USD"
    type: HoldingType = HoldingType.STOCK

    # Position
    quantity: Decimal = ZERO
    average_price: Decimal
    current_price: Decimal
    previous_close_price: Decimal | None = None
    target_price: Decimal | None = None
    stop_loss_price: Decimal | None = None

    # Derived valuation
    cost_basis: Decimal = ZERO
    current_value: Decimal = ZERO
    gain_loss: Decimal = ZERO
    gain_loss_percent: Decimal = ZERO

    # Lifetime tracking
    realized_gain_loss: Decimal = ZERO
    dividends_received: Decimal = ZERO
    fees_paid: Decimal = ZERO
    last_dividend_date: datetime | None = None

    status: HoldingStatus = HoldingStatus.ACTIVE
    dirty: bool = False

    purchase_date: datetime = Field(default_factory=utc_now)
    last_updated: datetime = Field(default_factory=utc_now)

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, v: str) -> str:
        """Strip and upper-case the symbol."""
        symbol = v.strip().upper()
        if not symbol:
            raise ValueError("Symbol cannot be empty")
        return symbol

    @field_validator("quantity")
    @classmethod
    def validate_quantity(cls, v: Decimal) -> Decimal:
        """Validate quantity is non-negative."""
        if v < 0:
            raise ValueError(f"Quantity cannot be negative, got {v}")
        return v

    @model_validator(mode="after")
    def validate_prices(self) -> "Holding":
        """Prices must be positive while a position is held."""
        if self.quantity > 0 and (self.average_price <= 0 or self.current_price <= 0):
            raise ValueError(
                f"Prices must be positive while quantity > 0 "
                f"(average_price={self.average_price}, current_price={self.current_price})"
            )
        return self

    model_config = ConfigDict(arbitrary_types_allowed=True)  # NOT frozen - mutated by HoldingLedger


class Transaction(BaseModel):
    """
    Record of one applied event.

    Appended to the portfolio's log by the processor and never rewritten,
    except for lifecycle status changes.

    Attributes:
        id: Unique identifier
        portfolio_id: Owning portfolio
        holding_id: Holding the event was applied to
        symbol: Ticker symbol
        type: BUY, SELL, DIVIDEND or SPLIT
        quantity: Shares traded (shares held for dividends, ratio for splits)
        price: Trade price (per-share amount for dividends)
        fees: Fees charged
        total_amount: BUY: qty*price + fees, SELL: qty*price - fees,
            DIVIDEND: per-share * shares, SPLIT: 0
        realized_gain_loss: Realized P&L of a sell
        status: Lifecycle status
        transaction_date: When the event occurred (pay date for dividends)
        ex_date: Ex-dividend date (dividends only)
        notes: Free-form notes
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    portfolio_id: str
    holding_id: str
    symbol: str
    type: TransactionType
    quantity: Decimal
    price: Decimal
    fees: Decimal = ZERO
    total_amount: Decimal = ZERO
    realized_gain_loss: Decimal | None = None
    status: TransactionStatus = TransactionStatus.EXECUTED
    transaction_date: datetime = Field(default_factory=utc_now)
    ex_date: datetime | None = None
    notes: str | None = None

    @property
    def net_amount(self) -> Decimal:
        """Cash impact: negative for buys, positive for sells and dividends."""
        if self.type == TransactionType.BUY:
            return -self.total_amount
        return self.total_amount

    @staticmethod
    def total_for(transaction_type: TransactionType, quantity: Decimal, price: Decimal, fees: Decimal) -> Decimal:
        """Total amount for a transaction, with fees applied by direction."""
        if transaction_type == TransactionType.BUY:
            return quantity * price + fees
        if transaction_type == TransactionType.SELL:
            return quantity * price - fees
        if transaction_type == TransactionType.DIVIDEND:
            return quantity * price
        return ZERO


class Portfolio(BaseModel):
    """
    Portfolio aggregate.

    Owns its holdings (an arena indexed by holding id) and its append-only
    transaction log. Aggregate totals are cached results written only by
    ``PortfolioAggregator.recalculate_totals``.

    Attributes:
        id: Unique identifier
        name: Display name
        currency: ISO 4217 currency code
        status: Lifecycle status
        holdings: holding id → Holding
        transactions: Applied transactions in order
        total_value, total_cost, total_gain_loss, total_gain_loss_percent:
            Cached aggregate totals
        version: Optimistic-concurrency stamp, bumped on every commit
        last_recalculated: When totals were last recomputed
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = ""
    currency: str = "USD"
    status: PortfolioStatus = PortfolioStatus.ACTIVE

    holdings: dict[str, Holding] = Field(default_factory=dict)
    transactions: list[Transaction] = Field(default_factory=list)

    total_value: Decimal = ZERO
    total_cost: Decimal = ZERO
    total_gain_loss: Decimal = ZERO
    total_gain_loss_percent: Decimal = ZERO

    version: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    last_recalculated: datetime | None = None

    def holding_for_symbol(self, symbol: str) -> Holding | None:
        """Find this portfolio's holding for a symbol (case-insensitive)."""
        wanted = symbol.strip().upper()
        for holding in self.holdings.values():
            if holding.symbol == wanted:
                return holding
        return None

    def active_holdings(self) -> list[Holding]:
        """Holdings that count towards totals and allocation (status ACTIVE)."""
        return [h for h in self.holdings.values() if h.status == HoldingStatus.ACTIVE]

    def find_transaction(self, transaction_id: str) -> Transaction | None:
        for transaction in self.transactions:
            if transaction.id == transaction_id:
                return transaction
        return None

    model_config = ConfigDict(arbitrary_types_allowed=True)


# ==================== Incoming events ====================


class BuyEvent(BaseModel):
    """Buy ``quantity`` shares of ``symbol`` at ``price``."""

    kind: Literal["buy"] = "buy"
    symbol: str
    quantity: Decimal
    price: Decimal
    fees: Decimal = ZERO
    transaction_date: datetime = Field(default_factory=utc_now)
    company_name: str | None = None
    sector: str | None = None
    country: str | None = None
    market: str | None = None
    holding_type: HoldingType = HoldingType.STOCK
    notes: str | None = None

    model_config = ConfigDict(frozen=True)


class SellEvent(BaseModel):
    """Sell ``quantity`` shares from an existing holding at ``price``."""

    kind: Literal["sell"] = "sell"
    holding_id: str
    quantity: Decimal
    price: Decimal
    fees: Decimal = ZERO
    transaction_date: datetime = Field(default_factory=utc_now)
    notes: str | None = None

    model_config = ConfigDict(frozen=True)


class DividendEvent(BaseModel):
    """Cash dividend of ``per_share`` on an existing holding."""

    kind: Literal["dividend"] = "dividend"
    holding_id: str
    per_share: Decimal
    ex_date: datetime
    pay_date: datetime
    notes: str | None = None

    model_config = ConfigDict(frozen=True)


class SplitEvent(BaseModel):
    """Stock split: ``ratio`` new shares per old share (0.25 = 1-for-4 reverse)."""

    kind: Literal["split"] = "split"
    holding_id: str
    ratio: Decimal
    effective_date: datetime = Field(default_factory=utc_now)
    notes: str | None = None

    model_config = ConfigDict(frozen=True)


TransactionEvent = Annotated[Union[BuyEvent, SellEvent, DividendEvent, SplitEvent], Field(discriminator="kind")]


class CompanyInfo(BaseModel):
    """Classification data returned by a market data provider."""

    symbol: str
    company_name: str | None = None
    sector: str | None = None
    country: str | None = None
    market: str | None = None

    model_config = ConfigDict(frozen=True)


class TransactionResult(BaseModel):
    """
    Outcome of applying one event.

    Attributes:
        holding: The holding after the event (a new object; the input is untouched)
        transaction: The transaction record to append to the portfolio log
        created: True if the event opened a new holding
        realized_gain_loss: Realized P&L of a sell
        dividend_amount: Total dividend paid
    """

    holding: Holding
    transaction: Transaction
    created: bool = False
    realized_gain_loss: Decimal | None = None
    dividend_amount: Decimal | None = None

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)
