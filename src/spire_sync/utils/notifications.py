"""
In-process event bus for spire-sync.

This module provides the publish/subscribe primitive behind the
same-device broadcast channel:
- Subscriptions filtered by category, event name or predicate
- Sync and async handlers
- Handler failures isolated from the emitter
- Bounded event history for diagnostics
"""

from typing import Optional, Dict, Any, List, Callable, Set, Union
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import asyncio

from .logging import get_logger


logger = get_logger("spire-sync.notifications")


class EventCategory(Enum):
    """Event categories for routing."""
    SYNC = "sync"
    SYSTEM = "system"


@dataclass
class Event:
    """Event data structure."""
    name: str
    category: EventCategory
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.utcnow)
    source: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "category": self.category.value,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
        }


@dataclass
class Subscription:
    """Event subscription."""
    handler: Callable[[Event], Any]
    categories: Optional[Set[EventCategory]] = None
    event_names: Optional[Set[str]] = None
    is_async: bool = True
    filter_func: Optional[Callable[[Event], bool]] = None

    def matches(self, event: Event) -> bool:
        """Check if subscription matches event."""
        if self.categories and event.category not in self.categories:
            return False

        if self.event_names and event.name not in self.event_names:
            return False

        if self.filter_func and not self.filter_func(event):
            return False

        return True


class EventBus:
    """Event bus shared by every context on one device.

    Delivery is immediate: ``emit`` returns once every matching handler
    has run, so an emitter never races its own subscribers.
    """

    def __init__(self, max_history: int = 1000):
        self._subscriptions: List[Subscription] = []
        self._event_history: List[Event] = []
        self._max_history = max_history

    def subscribe(
        self,
        handler: Callable[[Event], Any],
        categories: Optional[Union[EventCategory, List[EventCategory]]] = None,
        event_names: Optional[Union[str, List[str]]] = None,
        is_async: Optional[bool] = None,
        filter_func: Optional[Callable[[Event], bool]] = None
    ) -> Subscription:
        """
        Subscribe to events.

        Args:
            handler: Event handler function
            categories: Event categories to subscribe to
            event_names: Specific event names to subscribe to
            is_async: Whether handler is async (auto-detected if None)
            filter_func: Custom filter function

        Returns:
            Subscription object
        """
        if isinstance(categories, EventCategory):
            categories = {categories}
        elif isinstance(categories, list):
            categories = set(categories)

        if isinstance(event_names, str):
            event_names = {event_names}
        elif isinstance(event_names, list):
            event_names = set(event_names)

        if is_async is None:
            is_async = asyncio.iscoroutinefunction(handler)

        subscription = Subscription(
            handler=handler,
            categories=categories,
            event_names=event_names,
            is_async=is_async,
            filter_func=filter_func
        )
        self._subscriptions.append(subscription)

        logger.debug(
            "subscription_added",
            categories=[c.value for c in categories] if categories else None,
            event_names=list(event_names) if event_names else None,
            handler=getattr(handler, '__name__', str(handler))
        )

        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """
        Unsubscribe from events.

        Returns:
            True if removed, False if not found
        """
        try:
            self._subscriptions.remove(subscription)
            logger.debug("subscription_removed")
            return True
        except ValueError:
            return False

    async def emit(
        self,
        name: str,
        category: EventCategory,
        data: Dict[str, Any],
        source: Optional[str] = None
    ) -> Event:
        """
        Emit an event and deliver it to every matching subscriber.

        Args:
            name: Event name
            category: Event category
            data: Event data
            source: Event source

        Returns:
            The emitted event
        """
        event = Event(name=name, category=category, data=data, source=source)
        self._add_to_history(event)

        logger.debug(
            "event_emitted",
            event_name=name,
            category=category.value,
        )

        await self._dispatch_event(event)
        return event

    async def _dispatch_event(self, event: Event) -> None:
        """Dispatch event to subscribed handlers."""
        # Copy: handlers may subscribe or unsubscribe while we iterate
        subscriptions = [s for s in list(self._subscriptions) if s.matches(event)]

        if not subscriptions:
            logger.debug("no_subscribers", event_name=event.name)
            return

        for subscription in subscriptions:
            try:
                if subscription.is_async:
                    await subscription.handler(event)
                else:
                    subscription.handler(event)
            except Exception as e:
                logger.error(
                    "handler_error",
                    handler=getattr(subscription.handler, '__name__', 'unknown'),
                    event_name=event.name,
                    error=str(e),
                    exc_info=True
                )

    def _add_to_history(self, event: Event) -> None:
        """Add event to history."""
        self._event_history.append(event)

        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history:]

    def get_history(
        self,
        category: Optional[EventCategory] = None,
        event_name: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[Event]:
        """
        Get event history.

        Args:
            category: Filter by category
            event_name: Filter by event name
            limit: Maximum events to return (most recent)

        Returns:
            List of events
        """
        events = self._event_history

        if category:
            events = [e for e in events if e.category == category]

        if event_name:
            events = [e for e in events if e.name == event_name]

        if limit:
            events = events[-limit:]

        return list(events)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def shutdown(self) -> None:
        """Drop all subscriptions and history."""
        self._subscriptions.clear()
        self._event_history.clear()
        logger.info("event_bus_shutdown")


__all__ = [
    'Event',
    'EventCategory',
    'EventBus',
    'Subscription',
]
