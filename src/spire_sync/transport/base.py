"""Base transport for cross-context notifications"""

import enum
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..utils.logging import get_logger

logger = get_logger("spire-sync.transport")


Message = Dict[str, Any]
ReceiveHandler = Callable[[Message], Awaitable[None]]


class ConnectionState(enum.Enum):
    """Connection state for transport"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"
    CLOSED = "closed"
    ERROR = "error"


class Transport(ABC):
    """Abstract base class for notification transports

    A transport moves JSON-compatible messages between execution contexts.
    It knows nothing about what the messages mean.
    """

    def __init__(self, name: Optional[str] = None):
        self.name = name or f"{self.__class__.__name__}_{uuid.uuid4().hex[:8]}"
        self.state = ConnectionState.DISCONNECTED
        self._receive_handlers: List[ReceiveHandler] = []
        self._stats = {
            "messages_sent": 0,
            "messages_received": 0,
            "errors": 0,
            "connected_at": None,
            "disconnected_at": None
        }

    @abstractmethod
    async def init(self, config: Any = None) -> None:
        """Open the channel; raises TransportUnavailable on failure"""

    @abstractmethod
    async def send(self, message: Message) -> None:
        """Send a message to every other context on the channel"""

    @abstractmethod
    async def close(self) -> None:
        """Close the channel"""

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def on_receive(self, handler: ReceiveHandler) -> Callable[[], None]:
        """Register a handler for incoming messages; returns an unregister function"""
        self._receive_handlers.append(handler)

        def remove() -> None:
            if handler in self._receive_handlers:
                self._receive_handlers.remove(handler)

        return remove

    async def _handle_message(self, message: Message) -> None:
        """Deliver an incoming message to every handler"""
        self._stats["messages_received"] += 1

        for handler in list(self._receive_handlers):
            try:
                await handler(message)
            except Exception as e:
                self._stats["errors"] += 1
                logger.error(
                    "receive_handler_failed",
                    transport=self.name,
                    message_type=message.get("type"),
                    error=str(e),
                    exc_info=True
                )

    async def _handle_error(self, error: Exception) -> None:
        self._stats["errors"] += 1
        logger.warning("transport_error", transport=self.name, error=str(error))

    async def _handle_connect(self) -> None:
        self.state = ConnectionState.CONNECTED
        self._stats["connected_at"] = datetime.now()
        logger.info("transport_connected", transport=self.name)

    async def _handle_close(self) -> None:
        self.state = ConnectionState.CLOSED
        self._stats["disconnected_at"] = datetime.now()
        self._receive_handlers.clear()
        logger.info("transport_closed", transport=self.name)

    def get_stats(self) -> Dict[str, Any]:
        """Get transport statistics"""
        return {
            **self._stats,
            "state": self.state.value,
            "handlers": len(self._receive_handlers)
        }
