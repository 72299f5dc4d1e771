"""
Pytest configuration and shared fixtures for spire-sync tests.
"""

import pytest
import tempfile
import shutil
from contextlib import AsyncExitStack
from pathlib import Path
from typing import AsyncGenerator, Generator

from spire_sync.campaign.models import Campaign, CampaignSet, Entity, EntityKind, Relationship
from spire_sync.history.manager import HistoryManager
from spire_sync.runtime import session_scope
from spire_sync.session import SessionContext
from spire_sync.storage.codec import SnapshotCodec
from spire_sync.storage.database import Database
from spire_sync.storage.journal import PendingOpsJournal
from spire_sync.storage.store import DurableStore
from spire_sync.sync.conflict import ConflictMonitor
from spire_sync.sync.connectivity import Connectivity
from spire_sync.sync.controller import history_validators
from spire_sync.sync.queue import OfflineQueue
from spire_sync.transport.local import LocalHub
from spire_sync.utils.config import HistoryConfig, SpireSyncConfig
from spire_sync.utils.logging import setup_logging


USER_ID = "user-1"


@pytest.fixture(scope="session", autouse=True)
def configure_logging(tmp_path_factory):
    """Route test logs to a temporary directory."""
    setup_logging(
        app_name="spire-sync-tests",
        log_level="DEBUG",
        log_dir=tmp_path_factory.mktemp("logs"),
        enable_json=True,
        enable_console=False,
    )


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def test_config(temp_dir: Path) -> SpireSyncConfig:
    """Configuration rooted in the temporary directory."""
    return SpireSyncConfig(
        storage={"data_dir": temp_dir / "data"},
        logging={"directory": temp_dir / "logs", "level": "DEBUG"},
    )


@pytest.fixture
async def test_db(temp_dir: Path) -> AsyncGenerator[Database, None]:
    """Create a test database."""
    db = Database(temp_dir / "test.db")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def codec() -> SnapshotCodec:
    return SnapshotCodec()


@pytest.fixture
def store(test_db: Database, codec: SnapshotCodec) -> DurableStore:
    return DurableStore(test_db, codec)


@pytest.fixture
def session() -> SessionContext:
    return SessionContext(user_id=USER_ID, actor_label="Tester")


@pytest.fixture
def monitor(store: DurableStore, session: SessionContext) -> ConflictMonitor:
    return ConflictMonitor(store, session)


@pytest.fixture
def journal(temp_dir: Path) -> PendingOpsJournal:
    return PendingOpsJournal(temp_dir / "pending")


@pytest.fixture
def offline_queue(
    store: DurableStore,
    monitor: ConflictMonitor,
    journal: PendingOpsJournal,
) -> OfflineQueue:
    return OfflineQueue(store, monitor, journal, USER_ID, max_entries=5)


@pytest.fixture
def history(codec: SnapshotCodec) -> HistoryManager:
    return HistoryManager(
        HistoryConfig(campaign_limit=3, relationship_limit=3, section_limit=3),
        history_validators(codec),
    )


@pytest.fixture
def hub() -> LocalHub:
    """Same-device broadcast hub shared by contexts in one test."""
    return LocalHub()


@pytest.fixture
def sample_campaign_set() -> CampaignSet:
    """A campaign with two entities and one relationship between them."""
    campaign = Campaign(id="camp-1", name="Ashes of Christendom")
    campaign.entities["pc-1"] = Entity(
        id="pc-1", kind=EntityKind.PC, name="Ysolde", fields={"class": "Azurite"}
    )
    campaign.entities["npc-1"] = Entity(id="npc-1", kind=EntityKind.NPC, name="Marcus")
    campaign.relationships["rel-1"] = Relationship(
        id="rel-1", source_id="pc-1", target_id="npc-1", kind="ally", strength=2
    )
    return CampaignSet(campaigns={campaign.id: campaign}, active_campaign_id=campaign.id)


@pytest.fixture
async def context_factory(test_config: SpireSyncConfig, hub: LocalHub):
    """
    Open execution contexts on one data directory.

    Contexts share the ``hub`` fixture unless given their own, so by
    default they hear each other's write notifications.
    """
    async with AsyncExitStack() as stack:
        async def open_context(
            actor_label: str = "Tester",
            connectivity: Connectivity = None,
            own_hub: bool = False,
            user_id: str = USER_ID,
        ):
            return await stack.enter_async_context(session_scope(
                test_config,
                user_id,
                hub=LocalHub() if own_hub else hub,
                actor_label=actor_label,
                connectivity=connectivity,
            ))

        yield open_context
