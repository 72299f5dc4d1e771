"""Online/offline signal."""

import asyncio
from typing import Awaitable, Callable, List, Union

from ..utils.logging import get_logger


logger = get_logger("spire-sync.sync.connectivity")

Listener = Callable[[bool], Union[None, Awaitable[None]]]


class Connectivity:
    """Tracks whether the durable medium is reachable and notifies on change."""

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: List[Listener] = []

    @property
    def online(self) -> bool:
        return self._online

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a listener called with the new flag; returns a remover."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def set_online(self, online: bool) -> None:
        """Set the flag; listeners run only when it actually changes."""
        if online == self._online:
            return

        self._online = online
        logger.info("connectivity_changed", online=online)

        for listener in list(self._listeners):
            try:
                result = listener(online)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("connectivity_listener_failed", error=str(e), exc_info=True)
