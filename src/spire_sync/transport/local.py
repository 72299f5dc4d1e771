"""Same-device broadcast transport"""

from typing import Any, Optional

from ..utils.errors import TransportError
from ..utils.logging import get_logger
from ..utils.notifications import Event, EventBus, EventCategory, Subscription
from .base import ConnectionState, Message, Transport

logger = get_logger("spire-sync.transport.local")


# Every context on one device shares a single hub
LocalHub = EventBus


class LocalTransport(Transport):
    """Broadcast channel over an in-process hub.

    Messages reach every other transport on the same hub and channel, never
    the sender itself.
    """

    def __init__(self, hub: LocalHub, channel: str = "campaigns", name: Optional[str] = None):
        super().__init__(name)
        self.hub = hub
        self.channel = channel
        self._subscription: Optional[Subscription] = None

    @property
    def event_name(self) -> str:
        return f"broadcast:{self.channel}"

    async def init(self, config: Any = None) -> None:
        if self.state == ConnectionState.CONNECTED:
            return

        self.state = ConnectionState.CONNECTING
        self._subscription = self.hub.subscribe(
            self._on_event,
            categories=EventCategory.SYNC,
            event_names=self.event_name,
            filter_func=lambda event: event.source != self.name,
        )
        await self._handle_connect()

    async def send(self, message: Message) -> None:
        if self.state != ConnectionState.CONNECTED:
            raise TransportError(f"Cannot send message in state: {self.state.value}")

        await self.hub.emit(self.event_name, EventCategory.SYNC, dict(message), source=self.name)
        self._stats["messages_sent"] += 1

    async def close(self) -> None:
        if self.state in (ConnectionState.DISCONNECTED, ConnectionState.CLOSED):
            return

        self.state = ConnectionState.CLOSING
        if self._subscription is not None:
            self.hub.unsubscribe(self._subscription)
            self._subscription = None
        await self._handle_close()

    async def _on_event(self, event: Event) -> None:
        await self._handle_message(dict(event.data))

    def __repr__(self) -> str:
        return f"LocalTransport(channel={self.channel}, state={self.state.value})"
