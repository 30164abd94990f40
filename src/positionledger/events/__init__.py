"""
Event infrastructure for the position ledger.

- Event classes: Immutable Pydantic events sharing a common envelope
- EventBus: Synchronous publish/subscribe for event distribution

The ledger service publishes an event after each committed unit of work, so
subscribers never observe a transaction that was rolled back.
"""

from positionledger.events.event_bus import EventBus, IEventBus, SubscriptionToken
from positionledger.events.events import (
    BaseEvent,
    HoldingPriceUpdatedEvent,
    PortfolioRecalculatedEvent,
    PriceRefreshFailedEvent,
    StatusChangedEvent,
    TransactionAppliedEvent,
)

__all__ = [
    "BaseEvent",
    "TransactionAppliedEvent",
    "HoldingPriceUpdatedEvent",
    "PortfolioRecalculatedEvent",
    "StatusChangedEvent",
    "PriceRefreshFailedEvent",
    "EventBus",
    "IEventBus",
    "SubscriptionToken",
]
