"""
EventBus implementation for ledger domain events.

Synchronous publish/subscribe: events are dispatched in priority order with
error isolation and bounded history tracking.

Key Features:
- Synchronous execution (handlers run on the publishing thread)
- Deterministic ordering (priority-based)
- Error isolation (one handler failure doesn't stop others)
- Event history for debugging
- Lock-guarded so several portfolio threads may publish at once
"""

import threading
import time
from collections import defaultdict, deque
from datetime import datetime
from typing import Any, Callable, ContextManager, Dict, List, Optional, Protocol, Tuple, Type, TypeVar, Union

from positionledger.events.events import BaseEvent
from positionledger.system import LoggerFactory

EventT = TypeVar("EventT", bound=BaseEvent)

logger = LoggerFactory.get_logger()


class IEventBus(Protocol):
    """
    Event bus interface for publish/subscribe messaging.

    Usage:
        >>> bus = EventBus()
        >>> def on_applied(event: TransactionAppliedEvent):
        ...     print(event.symbol)
        >>> bus.subscribe("transaction_applied", on_applied, priority=10)
        >>> bus.publish(TransactionAppliedEvent(...))  # Handler called synchronously
    """

    def publish(self, event: BaseEvent) -> None:
        """
        Publish event to all subscribers.

        Handlers run synchronously in priority order. A failing handler is
        logged and the remaining handlers still run.
        """
        ...

    def subscribe(
        self,
        event_type: Union[str, Type[BaseEvent]],
        handler: Callable[[Any], None],
        priority: int = 0,
    ) -> "SubscriptionToken":
        """
        Subscribe to event type (by string or event class).

        Handlers with higher priority are called first.

        Returns:
            SubscriptionToken for context-managed unsubscription
        """
        ...

    def unsubscribe(self, event_type: str, handler: Callable[[BaseEvent], None]) -> None:
        """Remove a handler. No-op if it was not subscribed."""
        ...

    def get_history(
        self,
        event_type: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[BaseEvent]:
        """Get event history, optionally filtered by type and time and capped to the newest ``limit``."""
        ...

    def clear_history(self) -> None:
        """Clear event history."""
        ...


class SubscriptionToken(ContextManager):
    """Token for context-managed subscription removal."""

    def __init__(self, bus: "EventBus", event_type: str, handler: Callable):
        self.bus = bus
        self.event_type = event_type
        self.handler = handler
        self._active = True

    def unsubscribe(self):
        if self._active:
            self.bus.unsubscribe(self.event_type, self.handler)
            self._active = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.unsubscribe()


class EventBus:
    """
    Synchronous event bus for ledger events.

    Features:
    - Synchronous execution: publish() blocks until all handlers complete
    - Deterministic ordering: Handlers called in priority order (highest first)
    - Error isolation: One handler failure doesn't stop others
    - Memory bounded: History capped to prevent memory issues

    Thread Safety: subscription changes and history are lock-guarded; handlers
    run outside the lock on the publishing thread.

    Example:
        >>> bus = EventBus(max_history=10_000)
        >>> bus.subscribe("portfolio_recalculated", dashboard.refresh, priority=100)
        >>> bus.publish(PortfolioRecalculatedEvent(...))
        >>> recent = bus.get_history(event_type="portfolio_recalculated", limit=10)
    """

    def __init__(self, max_history: int = 10_000, display_events: Optional[list[str]] = None):
        """
        Initialize event bus.

        Args:
            max_history: Maximum events to keep in history (0 = unlimited).
                        When limit reached, oldest events are discarded.
            display_events: Event types to render in the console
                          (e.g., ["transaction_applied"]). Use ["*"] for all events.
                          None or [] disables event display.
        """
        self._subscribers: Dict[str, List[Tuple[int, Callable]]] = defaultdict(list)
        self._handler_cache: Dict[str, List[Tuple[int, Callable]]] = {}
        self._event_history: deque[BaseEvent] = deque(maxlen=max_history if max_history > 0 else None)
        self._max_history = max_history
        self._on_error: Optional[Callable[[BaseEvent, Callable, Exception], None]] = None
        self._display_events = display_events or []
        self._lock = threading.RLock()
        logger.debug("event_bus.initialized", max_history=max_history, display_events=self._display_events)

    def _should_display_event(self, event: BaseEvent) -> bool:
        if not self._display_events:
            return False
        if "*" in self._display_events:
            return True
        return event.event_type in self._display_events

    def _log_event(self, event: BaseEvent) -> None:
        """
        Log event for console display.

        Uses the positionledger.events.{event_type} logger name, which the
        console renderer picks up for event formatting.
        """
        event_logger = LoggerFactory.get_logger(f"positionledger.events.{event.event_type}")
        event_logger.info("event.display", **event.model_dump())

    def publish(self, event: BaseEvent) -> None:
        """
        Publish event to all subscribers.

        Processing order:
        1. Add event to history
        2. Get handlers for this event type, highest priority first
        3. Call each handler synchronously
        4. If a handler raises, log it and continue

        Args:
            event: Event to publish
        """
        start = time.perf_counter()
        with self._lock:
            self._event_history.append(event)
            sorted_handlers = self._handler_cache.get(event.event_type)
            if sorted_handlers is None:
                handlers = self._subscribers.get(event.event_type, [])
                sorted_handlers = sorted(handlers, key=lambda x: x[0], reverse=True)
                self._handler_cache[event.event_type] = sorted_handlers

        if self._should_display_event(event):
            self._log_event(event)

        errors = []
        for priority, handler in sorted_handlers:
            try:
                handler(event)
            except Exception as e:
                errors.append((handler, e))
                logger.error(
                    "event_bus.handler_error",
                    event_type=event.event_type,
                    event_id=event.event_id,
                    handler=getattr(handler, "__name__", str(handler)),
                    error=str(e),
                )
                if self._on_error:
                    self._on_error(event, handler, e)
        duration = time.perf_counter() - start
        logger.debug(
            "event_bus.published",
            event_type=event.event_type,
            event_id=event.event_id,
            subscriber_count=len(sorted_handlers),
            duration=duration,
            errors=len(errors),
        )

    def subscribe(
        self, event_type: Union[str, Type[BaseEvent]], handler: Callable[[Any], None], priority: int = 0
    ) -> SubscriptionToken:
        """
        Subscribe to event type (by string or class).
        Returns a SubscriptionToken for context-managed unsubscription.
        """
        if isinstance(event_type, str):
            event_type_str = event_type
        else:
            type_name = getattr(event_type, "type_name", None)
            event_type_str = type_name() if callable(type_name) else None
            if not isinstance(event_type_str, str) or event_type_str == BaseEvent.type_name():
                raise ValueError(f"Event class {event_type} missing event_type")
        with self._lock:
            self._subscribers[event_type_str].append((priority, handler))
            self._handler_cache.pop(event_type_str, None)
            total = len(self._subscribers[event_type_str])
        logger.debug(
            "event_bus.subscribed",
            event_type=event_type_str,
            handler=getattr(handler, "__name__", str(handler)),
            priority=priority,
            total_handlers=total,
        )
        return SubscriptionToken(self, event_type_str, handler)

    def unsubscribe(self, event_type: str, handler: Callable[[BaseEvent], None]) -> None:
        """
        Unsubscribe from event type.

        Idempotent: removing a handler that is not subscribed is a no-op.
        """
        with self._lock:
            if event_type not in self._subscribers:
                return
            original_count = len(self._subscribers[event_type])
            self._subscribers[event_type] = [(p, h) for p, h in self._subscribers[event_type] if h != handler]
            removed_count = original_count - len(self._subscribers[event_type])
            self._handler_cache.pop(event_type, None)
        if removed_count > 0:
            logger.debug(
                "event_bus.unsubscribed",
                event_type=event_type,
                handler=getattr(handler, "__name__", str(handler)),
                removed_count=removed_count,
            )

    def get_history(
        self,
        event_type: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[BaseEvent]:
        """
        Get event history with optional filters.

        Filters are applied in order: event type, timestamp, then limit
        (keeping the most recent events).

        Returns:
            List of events in chronological order
        """
        with self._lock:
            events = list(self._event_history)
        if event_type is not None:
            events = [e for e in events if e.event_type == event_type]
        if since is not None:
            events = [e for e in events if e.occurred_at >= since]
        if limit is not None:
            events = events[-limit:]
        return events

    def clear_history(self) -> None:
        """Clear event history. Does not affect subscriptions."""
        with self._lock:
            self._event_history.clear()
        logger.debug("event_bus.history_cleared")

    def get_subscriber_count(self, event_type: str) -> int:
        with self._lock:
            return len(self._subscribers.get(event_type, []))

    def set_error_handler(self, on_error: Optional[Callable[[BaseEvent, Callable, Exception], None]]) -> None:
        """Set a hook called with (event, handler, exception) whenever a handler fails."""
        self._on_error = on_error
        logger.debug(
            "event_bus.error_handler_set",
            on_error=getattr(on_error, "__name__", None) if on_error else None,
        )
