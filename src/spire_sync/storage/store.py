"""
Durable store for campaign sets.

One user's campaigns live under four keys of the ``kv`` table:

- ``campaigns``: the serialized campaign set
- ``campaigns-rev``: the current revision token
- ``campaigns-backup`` / ``campaigns-backup-ts``: rolling last-good copy

A put writes all four in one transaction, revision last. Nothing is
published unless the transaction commits.
"""

import sqlite3
from datetime import datetime
from typing import Optional, Tuple, Union

from ..campaign.models import CampaignSet
from ..utils.errors import (
    CampaignNotFound,
    ErrorContext,
    SnapshotCorrupt,
    StaleRevision,
    StorageError,
    StorageUnavailable,
    StorageWriteFailure,
)
from ..utils.logging import get_logger
from .codec import SnapshotCodec
from .database import Database
from .revision import RevisionClock, RevisionToken


logger = get_logger("spire-sync.storage.store")


KEY_DATA = "campaigns"
KEY_REVISION = "campaigns-rev"
KEY_BACKUP = "campaigns-backup"
KEY_BACKUP_TS = "campaigns-backup-ts"


class _Unchecked:
    def __repr__(self) -> str:
        return "UNCHECKED"


UNCHECKED = _Unchecked()
"""Default for ``expected_revision``: write without comparing revisions."""

_UNAVAILABLE_MARKERS = ("locked", "busy", "unable to open", "not a database", "readonly")
_WRITE_FAILURE_MARKERS = ("full", "quota", "too big")


def map_storage_error(error: sqlite3.Error, operation: str, user_id: str) -> StorageError:
    """Translate an sqlite error into the storage error taxonomy."""
    message = str(error).lower()
    context = ErrorContext(user_id=user_id, component="storage", operation=operation)

    if any(marker in message for marker in _UNAVAILABLE_MARKERS):
        return StorageUnavailable(f"Storage unavailable during {operation}: {error}", context=context, cause=error)
    if any(marker in message for marker in _WRITE_FAILURE_MARKERS) or operation == "put":
        return StorageWriteFailure(f"Storage refused {operation}: {error}", context=context, cause=error)
    return StorageError(f"Storage error during {operation}: {error}", context=context, cause=error)


class DurableStore:
    """Single source of truth for each user's campaign set."""

    def __init__(
        self,
        database: Database,
        codec: Optional[SnapshotCodec] = None,
        clock: Optional[RevisionClock] = None,
    ):
        """
        Initialize the store.

        Args:
            database: Initialized database holding the ``kv`` table
            codec: Serializer for campaign sets
            clock: Source of revision tokens
        """
        self.database = database
        self.codec = codec or SnapshotCodec()
        self.clock = clock or RevisionClock()

    async def get(self, user_id: str) -> Tuple[CampaignSet, RevisionToken]:
        """
        Load the last committed campaign set.

        A corrupt primary copy falls back to the backup.

        Returns:
            The campaign set and its revision token

        Raises:
            CampaignNotFound: Nothing has been committed for this user
            SnapshotCorrupt: Both primary and backup copies are unreadable
        """
        rows = await self._read(user_id, (KEY_DATA, KEY_REVISION, KEY_BACKUP))
        if KEY_DATA not in rows:
            raise CampaignNotFound(user_id)

        revision = rows.get(KEY_REVISION)
        try:
            campaign_set = self.codec.decode(rows[KEY_DATA])
        except SnapshotCorrupt:
            if KEY_BACKUP not in rows:
                raise
            logger.warning("primary_copy_corrupt_using_backup", user_id=user_id, revision=revision)
            campaign_set = self.codec.decode(rows[KEY_BACKUP])

        logger.debug("campaigns_loaded", user_id=user_id, revision=revision)
        return campaign_set, revision

    async def put(
        self,
        user_id: str,
        campaign_set: CampaignSet,
        expected_revision: Union[Optional[RevisionToken], _Unchecked] = UNCHECKED,
    ) -> RevisionToken:
        """
        Commit a campaign set and advance the revision.

        Args:
            user_id: Owner of the set
            campaign_set: Set to persist
            expected_revision: When given, the write is refused unless the
                committed revision equals it (None means "nothing committed")

        Returns:
            The new revision token

        Raises:
            StaleRevision: The committed revision is not ``expected_revision``
            StorageWriteFailure: Serialization or the write itself failed
            StorageUnavailable: The database could not be reached
        """
        payload = self.codec.encode(campaign_set)
        token = self.clock.next()
        timestamp = datetime.utcnow().isoformat()

        try:
            async with self.database.transaction() as conn:
                if expected_revision is not UNCHECKED:
                    cursor = await conn.execute(
                        "SELECT value FROM kv WHERE user_id = ? AND key = ?",
                        (user_id, KEY_REVISION),
                    )
                    row = await cursor.fetchone()
                    actual = row[0] if row else None
                    if actual != expected_revision:
                        raise StaleRevision(
                            expected_revision,
                            actual,
                            context=ErrorContext(user_id=user_id, component="storage", operation="put"),
                        )

                await conn.executemany(
                    "INSERT OR REPLACE INTO kv (user_id, key, value) VALUES (?, ?, ?)",
                    [
                        (user_id, KEY_DATA, payload),
                        (user_id, KEY_BACKUP, payload),
                        (user_id, KEY_BACKUP_TS, timestamp),
                        (user_id, KEY_REVISION, token),
                    ],
                )
        except sqlite3.Error as e:
            error = map_storage_error(e, "put", user_id)
            logger.warning("put_failed", user_id=user_id, code=error.code, error=str(e))
            raise error from e

        logger.info("put_committed", user_id=user_id, revision=token, bytes=len(payload))
        return token

    async def current_revision(self, user_id: str) -> Optional[RevisionToken]:
        """The committed revision, or None if nothing was ever committed."""
        rows = await self._read(user_id, (KEY_REVISION,))
        return rows.get(KEY_REVISION)

    async def get_backup(self, user_id: str) -> Tuple[CampaignSet, Optional[datetime]]:
        """Load the rolling backup copy and when it was written."""
        rows = await self._read(user_id, (KEY_BACKUP, KEY_BACKUP_TS))
        if KEY_BACKUP not in rows:
            raise CampaignNotFound(user_id)

        written_at = rows.get(KEY_BACKUP_TS)
        return (
            self.codec.decode(rows[KEY_BACKUP]),
            datetime.fromisoformat(written_at) if written_at else None,
        )

    async def _read(self, user_id: str, keys: Tuple[str, ...]) -> dict:
        placeholders = ", ".join("?" for _ in keys)
        try:
            rows = await self.database.fetchall(
                f"SELECT key, value FROM kv WHERE user_id = ? AND key IN ({placeholders})",
                (user_id, *keys),
            )
        except sqlite3.Error as e:
            raise map_storage_error(e, "get", user_id) from e
        return dict(rows)
