"""Remote relay transport over HTTP

Receives channel messages from a server-sent-events stream and publishes
with HTTP POST, both on ``<url>/channels/<channel>``.
"""

import asyncio
import json
from typing import Any, Dict, Optional

import aiohttp

from ..utils.config import RelayConfig
from ..utils.errors import TransportError, TransportUnavailable
from ..utils.logging import get_logger
from .base import ConnectionState, Message, Transport

logger = get_logger("spire-sync.transport.relay")


class RelayTransport(Transport):
    """Realtime channel through a remote relay.

    The relay echoes every message to all subscribers, the sender included;
    filtering self-echo is left to the receiver.
    """

    def __init__(self, name: Optional[str] = None):
        super().__init__(name)
        self.config: Optional[RelayConfig] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._sse_task: Optional[asyncio.Task] = None
        self._ready = asyncio.Event()
        self._connect_error: Optional[BaseException] = None
        self._reconnect_attempts = 0
        self._reconnect_delay = 1.0

    @property
    def channel_url(self) -> str:
        return f"{self.config.url.rstrip('/')}/channels/{self.config.channel}"

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "text/event-stream"}
        if self.config and self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def init(self, config: Any = None) -> None:
        """Open the event stream

        Raises:
            TransportUnavailable: No relay URL is configured, or the stream
                could not be opened within ``connect_timeout``
        """
        if self.state == ConnectionState.CONNECTED:
            return

        if not isinstance(config, RelayConfig) or not config.url:
            raise TransportUnavailable("Relay URL is not configured")

        self.config = config
        self._reconnect_delay = config.reconnect_delay
        self.state = ConnectionState.CONNECTING
        logger.info("relay_connecting", url=self.channel_url)

        self._session = aiohttp.ClientSession(headers=self._headers())
        self._ready.clear()
        self._connect_error = None
        self._sse_task = asyncio.create_task(self._sse_loop())

        try:
            await asyncio.wait_for(self._ready.wait(), timeout=config.connect_timeout)
            if self._connect_error is not None:
                raise self._connect_error
        except (asyncio.TimeoutError, aiohttp.ClientError, TransportError) as e:
            await self._teardown()
            self.state = ConnectionState.ERROR
            raise TransportUnavailable(f"Failed to connect relay: {e}", cause=e) from e

    async def send(self, message: Message) -> None:
        """Publish a message with HTTP POST"""
        if self.state != ConnectionState.CONNECTED:
            raise TransportError(f"Cannot send message in state: {self.state.value}")

        try:
            async with self._session.post(self.channel_url, json=message) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise TransportError(f"HTTP {response.status}: {text}")
        except aiohttp.ClientError as e:
            await self._handle_error(e)
            raise TransportError(f"Failed to send message: {e}", cause=e) from e

        self._stats["messages_sent"] += 1
        logger.debug("relay_message_sent", message_type=message.get("type"))

    async def close(self) -> None:
        if self.state in (ConnectionState.DISCONNECTED, ConnectionState.CLOSED):
            return

        self.state = ConnectionState.CLOSING
        await self._teardown()
        await self._handle_close()

    async def _teardown(self) -> None:
        if self._sse_task and not self._sse_task.done():
            self._sse_task.cancel()
            try:
                await self._sse_task
            except asyncio.CancelledError:
                pass
        self._sse_task = None

        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _sse_loop(self) -> None:
        """Background task reading the event stream"""
        while self.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            try:
                async with self._session.get(self.channel_url) as response:
                    if response.status >= 400:
                        text = await response.text()
                        raise TransportError(f"HTTP {response.status}: {text}")

                    self._reconnect_attempts = 0
                    if self.state == ConnectionState.CONNECTING:
                        await self._handle_connect()
                        self._ready.set()

                    async for raw in response.content:
                        if self.state != ConnectionState.CONNECTED:
                            break
                        await self._handle_line(raw)

                # Stream ended by the server
                if self.state == ConnectionState.CONNECTED:
                    await asyncio.sleep(self._reconnect_delay)

            except asyncio.CancelledError:
                logger.debug("relay_loop_cancelled")
                raise
            except (aiohttp.ClientError, TransportError) as e:
                if not self._ready.is_set():
                    self._connect_error = e
                    self._ready.set()
                    return

                await self._handle_error(e)
                if self._reconnect_attempts >= self.config.max_reconnect_attempts:
                    logger.error("relay_reconnect_exhausted", attempts=self._reconnect_attempts)
                    self.state = ConnectionState.ERROR
                    return

                self._reconnect_attempts += 1
                delay = self._reconnect_delay * (2 ** (self._reconnect_attempts - 1))
                logger.info("relay_reconnecting", delay=delay, attempt=self._reconnect_attempts)
                await asyncio.sleep(delay)

    async def _handle_line(self, raw: bytes) -> None:
        try:
            line = raw.decode("utf-8").strip()
        except UnicodeDecodeError as e:
            logger.warning("relay_invalid_line", error=str(e))
            return

        if line.startswith("data: "):
            try:
                message = json.loads(line[6:])
            except json.JSONDecodeError as e:
                logger.warning("relay_invalid_json", error=str(e))
                return
            if isinstance(message, dict):
                await self._handle_message(message)
        elif line.startswith("retry: "):
            try:
                self._reconnect_delay = int(line[7:]) / 1000.0
            except ValueError:
                logger.debug("relay_invalid_retry", value=line[7:])

    def __repr__(self) -> str:
        url = self.channel_url if self.config and self.config.url else None
        return f"RelayTransport(url={url}, state={self.state.value})"
