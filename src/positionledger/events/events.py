"""
Domain events published by the ledger service.

Design Principles:
- Immutable Pydantic models with a shared envelope
- UTC timezone-aware timestamps (RFC3339 with Z on the wire)
- Decimals kept as Decimal in Python, serialized as strings
- event_type is the subscription key
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_serializer, field_validator


class BaseEvent(BaseModel):
    """Base for all events - provides envelope fields only."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str = "base"
    occurred_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="UTC timestamp RFC3339"
    )
    correlation_id: Optional[str] = None
    source_service: str = "ledger_service"

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("occurred_at", mode="before")
    @classmethod
    def ensure_utc(cls, v: Any) -> datetime:
        """Ensure timestamp is UTC timezone-aware."""
        if isinstance(v, str):
            dt = datetime.fromisoformat(v.replace("Z", "+00:00"))
        elif isinstance(v, datetime):
            dt = v
        else:
            raise ValueError(f"Cannot parse datetime from {type(v)}: {v}")

        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        elif dt.tzinfo != timezone.utc:
            dt = dt.astimezone(timezone.utc)

        return dt

    @field_serializer("occurred_at")
    def _serialize_occurred_at(self, v: datetime) -> str:
        """Serialize datetime to RFC3339 with Z suffix."""
        return v.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

    @classmethod
    def type_name(cls) -> str:
        """The event_type default declared by this class."""
        return cls.model_fields["event_type"].default


# ============================================
# Ledger Events
# ============================================


class TransactionAppliedEvent(BaseEvent):
    """
    A transaction was applied and committed.

    Attributes:
        portfolio_id: Portfolio the transaction belongs to
        holding_id: Holding that was mutated (or created)
        transaction_id: Id of the appended Transaction record
        transaction_type: "buy", "sell", "dividend" or "split"
        symbol: Ticker symbol
        quantity: Shares traded (split ratio for splits)
        price: Trade price (per-share amount for dividends)
        fees: Fees charged
        total_amount: Transaction total amount
        realized_gain_loss: Realized P&L for sells
        dividend_amount: Total dividend for dividends
        created: True if the buy opened a new holding
    """

    event_type: str = "transaction_applied"

    portfolio_id: str
    holding_id: str
    transaction_id: str
    transaction_type: str
    symbol: str
    quantity: Decimal
    price: Decimal
    fees: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")
    realized_gain_loss: Optional[Decimal] = None
    dividend_amount: Optional[Decimal] = None
    created: bool = False

    @field_serializer("quantity", "price", "fees", "total_amount", "realized_gain_loss", "dividend_amount")
    def _serialize_decimal(self, v: Optional[Decimal]) -> Optional[str]:
        return format(v, "f") if v is not None else None


class HoldingPriceUpdatedEvent(BaseEvent):
    """A holding was marked to a new market price."""

    event_type: str = "holding_price_updated"

    portfolio_id: str
    holding_id: str
    symbol: str
    previous_price: Optional[Decimal] = None
    current_price: Decimal

    @field_serializer("previous_price", "current_price")
    def _serialize_decimal(self, v: Optional[Decimal]) -> Optional[str]:
        return format(v, "f") if v is not None else None


class PortfolioRecalculatedEvent(BaseEvent):
    """Portfolio totals were recomputed and committed."""

    event_type: str = "portfolio_recalculated"

    portfolio_id: str
    total_value: Decimal
    total_cost: Decimal
    total_gain_loss: Decimal
    total_gain_loss_percent: Decimal
    active_holdings: int
    version: int

    @field_serializer("total_value", "total_cost", "total_gain_loss", "total_gain_loss_percent")
    def _serialize_decimal(self, v: Decimal) -> str:
        return format(v, "f")


class StatusChangedEvent(BaseEvent):
    """
    A holding, portfolio or transaction changed lifecycle status.

    Attributes:
        entity: "holding", "portfolio" or "transaction"
        entity_id: Id of the entity
        portfolio_id: Owning portfolio
        from_status: Previous status value
        to_status: New status value
    """

    event_type: str = "status_changed"

    entity: str
    entity_id: str
    portfolio_id: str
    from_status: str
    to_status: str


class PriceRefreshFailedEvent(BaseEvent):
    """Market data for a symbol could not be fetched during a refresh; its holdings keep their last price."""

    event_type: str = "price_refresh_failed"

    symbol: str
    reason: str = ""
    portfolio_ids: list[str] = Field(default_factory=list)
