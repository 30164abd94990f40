"""Error taxonomy for the ledger engine.

Every error carries a machine-readable ``code`` and a ``context`` dict with the
ids and attempted values involved, so callers can build their own messages.
"""

from decimal import Decimal
from typing import Any


class LedgerError(Exception):
    """Base class for all ledger engine errors."""

    code = "LEDGER_ERROR"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context: dict[str, Any] = context


class ValidationError(LedgerError, ValueError):
    """Non-positive quantity, price or ratio; raised before any mutation."""

    code = "INVALID_REQUEST"


class InvalidPrice(ValidationError):
    """Price update with a non-positive price."""

    def __init__(self, symbol: str, price: Decimal) -> None:
        super().__init__(f"Price must be greater than zero for {symbol}, got {price}", symbol=symbol, price=price)
        self.symbol = symbol
        self.price = price


class InsufficientQuantity(LedgerError):
    """Sell quantity exceeds the position."""

    code = "INSUFFICIENT_QUANTITY"

    def __init__(self, symbol: str, available: Decimal, requested: Decimal) -> None:
        super().__init__(
            f"Insufficient quantity for {symbol}. Available: {available}, Requested: {requested}",
            symbol=symbol,
            available=available,
            requested=requested,
        )
        self.symbol = symbol
        self.available = available
        self.requested = requested


class NotFound(LedgerError):
    """Unknown holding, portfolio or symbol reference."""

    code = "RESOURCE_NOT_FOUND"

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: {identifier}", kind=kind, identifier=identifier)
        self.kind = kind
        self.identifier = identifier


class InvalidStateTransition(LedgerError):
    """Illegal lifecycle change."""

    code = "INVALID_STATE_TRANSITION"

    def __init__(self, entity: str, from_status: Any, to_status: Any) -> None:
        super().__init__(
            f"Invalid {entity} status transition: {from_status} -> {to_status}",
            entity=entity,
            from_status=from_status,
            to_status=to_status,
        )
        self.entity = entity
        self.from_status = from_status
        self.to_status = to_status


class OperationNotAllowed(LedgerError):
    """The entity's current status forbids the requested operation."""

    code = "OPERATION_NOT_ALLOWED"


class HoldingLimitExceeded(LedgerError):
    """A buy would create more holdings than the portfolio allows."""

    code = "HOLDING_LIMIT_EXCEEDED"

    def __init__(self, portfolio_id: str, limit: int) -> None:
        super().__init__(
            f"Portfolio {portfolio_id} already holds the maximum of {limit} holdings",
            portfolio_id=portfolio_id,
            limit=limit,
        )
        self.portfolio_id = portfolio_id
        self.limit = limit


class MarketDataUnavailable(LedgerError):
    """Price or company-info fetch failed. Recoverable during bulk refresh."""

    code = "MARKET_DATA_UNAVAILABLE"

    def __init__(self, symbol: str, reason: str = "") -> None:
        message = f"Market data unavailable for {symbol}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, symbol=symbol, reason=reason)
        self.symbol = symbol
        self.reason = reason


class ConcurrencyConflict(LedgerError):
    """Optimistic-lock version mismatch on portfolio commit; caller should retry."""

    code = "CONCURRENCY_CONFLICT"

    def __init__(self, portfolio_id: str, expected_version: int, actual_version: int) -> None:
        super().__init__(
            f"Portfolio {portfolio_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})",
            portfolio_id=portfolio_id,
            expected_version=expected_version,
            actual_version=actual_version,
        )
        self.portfolio_id = portfolio_id
        self.expected_version = expected_version
        self.actual_version = actual_version
