"""
Wiring for one execution context.

``session_scope`` builds the storage, sync and history components for a
single user session from configuration and tears them down on exit.
Contexts that should hear each other on one device pass the same hub.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from .campaign.models import ActorRole
from .history.manager import HistoryManager
from .session import SessionContext
from .storage.codec import SnapshotCodec
from .storage.database import Database
from .storage.journal import PendingOpsJournal
from .storage.revision import RevisionClock
from .storage.store import DurableStore
from .sync.conflict import ConflictMonitor
from .sync.connectivity import Connectivity
from .sync.controller import SyncController, history_validators
from .sync.notifier import Notifier
from .sync.queue import OfflineQueue
from .transport.local import LocalHub, LocalTransport
from .transport.relay import RelayTransport
from .utils.config import SpireSyncConfig
from .utils.logging import get_logger


logger = get_logger("spire-sync.runtime")


def open_database(config: SpireSyncConfig) -> Database:
    storage = config.storage
    return Database(
        storage.database_path,
        journal_mode=storage.journal_mode,
        synchronous=storage.synchronous,
        busy_timeout=storage.busy_timeout,
    )


@asynccontextmanager
async def session_scope(
    config: SpireSyncConfig,
    user_id: str,
    hub: Optional[LocalHub] = None,
    actor_label: str = "Anonymous",
    actor_role: ActorRole = ActorRole.GM,
    connectivity: Optional[Connectivity] = None,
    clock: Optional[RevisionClock] = None,
) -> AsyncIterator[SyncController]:
    """
    Start a context for ``user_id`` and yield its controller.

    Args:
        config: Loaded configuration
        user_id: Owner of the campaigns
        hub: Same-device broadcast hub shared with other contexts
        actor_label: Name shown to other contexts in notifications
        actor_role: Role shown to other contexts in notifications
        connectivity: Online/offline signal; a fresh online one by default
        clock: Revision token source

    Yields:
        A started SyncController
    """
    database = open_database(config)
    await database.initialize()

    codec = SnapshotCodec()
    store = DurableStore(database, codec, clock)
    session = SessionContext(user_id=user_id, actor_label=actor_label, actor_role=actor_role)
    monitor = ConflictMonitor(store, session)
    queue = OfflineQueue(
        store,
        monitor,
        PendingOpsJournal(config.storage.journal_dir),
        user_id,
        max_entries=config.queue.max_entries,
        codec=codec,
    )
    own_hub = hub is None
    if own_hub:
        hub = LocalHub()
    notifier = Notifier(session.client_id, LocalTransport(hub, config.relay.channel))
    history = HistoryManager(config.history, history_validators(codec))
    controller = SyncController(
        session,
        store,
        monitor,
        queue,
        notifier,
        history,
        connectivity or Connectivity(),
        codec,
    )

    try:
        await notifier.start()
        if config.relay.enabled:
            await notifier.set_transport(
                RelayTransport(), config.relay, timeout=config.relay.connect_timeout
            )

        await controller.start()
        logger.info(
            "session_started",
            user_id=user_id,
            client_id=session.client_id,
            revision=monitor.known_revision,
            pending=len(queue),
        )
        yield controller
    finally:
        await controller.stop()
        await notifier.stop()
        if own_hub:
            hub.shutdown()
        await database.close()
        logger.info("session_closed", user_id=user_id, client_id=session.client_id)
