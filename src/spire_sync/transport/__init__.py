"""Notification transports

Transports carry "a write happened" messages between execution contexts:
a same-device broadcast channel and an optional remote relay.
"""

from .base import Transport, ConnectionState, Message
from .local import LocalHub, LocalTransport
from .relay import RelayTransport

__all__ = [
    "Transport",
    "ConnectionState",
    "Message",
    "LocalHub",
    "LocalTransport",
    "RelayTransport",
]
