"""
Cross-context write notifications.

Announces committed writes to other contexts and hands incoming
announcements to subscribers. The local transport is always available;
a remote transport may replace it, and any failure of the remote one
falls back to local without raising.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..campaign.models import ActorRole
from ..storage.revision import RevisionToken
from ..transport.base import Message, Transport
from ..utils.errors import ErrorSeverity, TransportError, handle_errors
from ..utils.logging import get_logger


logger = get_logger("spire-sync.sync.notifier")

MESSAGE_TYPE = "campaign_saved"


@dataclass
class WriteCommitted:
    """A write this context committed."""
    revision: RevisionToken
    campaign_id: Optional[str]
    actor_label: str
    actor_role: ActorRole
    client_id: Optional[str] = None
    time: datetime = field(default_factory=datetime.utcnow)

    def to_message(self, client_id: str) -> Message:
        return {
            "type": MESSAGE_TYPE,
            "revision": self.revision,
            "campaignId": self.campaign_id,
            "actor": self.actor_label,
            "actorRole": self.actor_role.value,
            "clientId": client_id,
            "time": self.time.isoformat(),
        }

    @classmethod
    def from_message(cls, message: Message) -> "WriteCommitted":
        return cls(
            revision=message["revision"],
            campaign_id=message.get("campaignId"),
            actor_label=message.get("actor", ""),
            actor_role=ActorRole(message.get("actorRole", ActorRole.PLAYER.value)),
            client_id=message.get("clientId"),
            time=datetime.fromisoformat(message["time"]) if message.get("time") else datetime.utcnow(),
        )


Handler = Callable[[WriteCommitted], Awaitable[None]]


class Notifier:
    """Announce/subscribe over a pluggable transport."""

    def __init__(self, client_id: str, local_transport: Transport):
        """
        Initialize the notifier.

        Args:
            client_id: Identifies this context; used to drop self-echo
            local_transport: Same-device transport used by default and as
                the fallback
        """
        self.client_id = client_id
        self.local_transport = local_transport
        self.transport: Transport = local_transport
        self.diagnostics: List[Dict[str, Any]] = []
        self._handlers: List[Handler] = []
        self._remove_remote_receiver: Optional[Callable[[], None]] = None

    async def start(self) -> None:
        await self.local_transport.init()
        # Other contexts on this device always reach us over the local channel
        self.local_transport.on_receive(self._receive)

    async def stop(self) -> None:
        if not self.is_local_only:
            remote = self._detach_remote()
            await remote.close()
        await self.local_transport.close()

    @property
    def is_local_only(self) -> bool:
        return self.transport is self.local_transport

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        """Register a handler for other contexts' writes; returns an unsubscribe function."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def announce(self, event: WriteCommitted) -> bool:
        """
        Broadcast a committed write.

        The message always goes out on the local channel, and on the remote
        transport when one is in use. Never raises: a failing remote
        transport is dropped in favour of local-only.

        Returns:
            Whether the message was sent on some transport
        """
        message = event.to_message(self.client_id)
        sent = False

        if not self.is_local_only:
            try:
                await self.transport.send(message)
                sent = True
            except Exception as e:
                await self._downgrade("send_failed", e)

        try:
            await self.local_transport.send(message)
            sent = True
        except TransportError as e:
            logger.error("local_announce_failed", error=str(e))

        return sent

    async def set_transport(self, transport: Transport, config: Any = None, timeout: float = 5.0) -> bool:
        """
        Switch to another transport.

        Initialisation failure or timeout keeps the local transport and is
        recorded in ``diagnostics``.

        Returns:
            Whether the new transport is now in use
        """
        try:
            await asyncio.wait_for(transport.init(config), timeout=timeout)
        except (asyncio.TimeoutError, TransportError, OSError) as e:
            await self._record_downgrade(transport, "init_failed", e)
            await self._close_quietly(transport)
            return False

        if not self.is_local_only:
            await self._detach_remote().close()
        self.transport = transport
        self._remove_remote_receiver = transport.on_receive(self._receive)

        logger.info("transport_switched", transport=transport.name)
        return True

    def _detach_remote(self) -> Transport:
        remote = self.transport
        if self._remove_remote_receiver:
            self._remove_remote_receiver()
            self._remove_remote_receiver = None
        self.transport = self.local_transport
        return remote

    async def _downgrade(self, reason: str, error: Exception) -> None:
        failed = self._detach_remote()
        await self._record_downgrade(failed, reason, error)
        await self._close_quietly(failed)

    @handle_errors(TransportError, OSError, reraise=False, log_level=ErrorSeverity.DEBUG)
    async def _close_quietly(self, transport: Transport) -> None:
        await transport.close()

    async def _record_downgrade(self, transport: Transport, reason: str, error: Exception) -> None:
        self.diagnostics.append({
            "time": datetime.utcnow().isoformat(),
            "transport": transport.name,
            "reason": reason,
            "error": str(error),
        })
        logger.warning(
            "transport_downgraded",
            transport=transport.name,
            reason=reason,
            error=str(error),
        )

    async def _receive(self, message: Message) -> None:
        if message.get("type") != MESSAGE_TYPE:
            return
        if message.get("clientId") == self.client_id:
            return

        try:
            event = WriteCommitted.from_message(message)
        except (KeyError, ValueError) as e:
            logger.warning("malformed_notification", error=str(e))
            return

        for handler in list(self._handlers):
            try:
                await handler(event)
            except Exception as e:
                logger.error("notification_handler_failed", error=str(e), exc_info=True)
