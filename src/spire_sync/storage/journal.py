"""
Pending-operations journal.

Queued writes are kept in one JSON file per user, outside the database, so
they survive a reload even when the database itself was the reason they
could not be committed.
"""

import asyncio
import hashlib
import json
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

import aiofiles

from ..utils.errors import ErrorContext, StorageWriteFailure
from ..utils.logging import get_logger


logger = get_logger("spire-sync.storage.journal")


class PendingOpsJournal:
    """Durable list of pending operations, one file per user."""

    def __init__(self, journal_dir: Path):
        self.journal_dir = Path(journal_dir)

    def path_for(self, user_id: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", user_id)[:40]
        digest = hashlib.sha256(user_id.encode("utf-8")).hexdigest()[:12]
        return self.journal_dir / f"{safe}-{digest}.pending-ops.json"

    async def load(self, user_id: str) -> List[Dict[str, Any]]:
        """
        Read the journal for a user.

        An unreadable journal is moved aside and treated as empty.

        Returns:
            Journal entries, oldest first
        """
        path = self.path_for(user_id)
        if not path.exists():
            return []

        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                content = await f.read()
            data = json.loads(content)
            entries = data["operations"]
            if not isinstance(entries, list):
                raise ValueError("operations is not a list")
        except (ValueError, KeyError, TypeError) as e:
            aside = path.with_suffix(f".corrupt-{datetime.utcnow():%Y%m%d%H%M%S}")
            await asyncio.to_thread(os.replace, path, aside)
            logger.warning("journal_corrupt", user_id=user_id, moved_to=str(aside), error=str(e))
            return []

        logger.debug("journal_loaded", user_id=user_id, entries=len(entries))
        return entries

    async def save(self, user_id: str, entries: List[Dict[str, Any]]) -> None:
        """
        Replace the journal for a user.

        Raises:
            StorageWriteFailure: The journal could not be written
        """
        path = self.path_for(user_id)
        temp_file = path.with_suffix(".tmp")

        try:
            self.journal_dir.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(temp_file, "w", encoding="utf-8") as f:
                await f.write(json.dumps({"user_id": user_id, "operations": entries}))
            await asyncio.to_thread(os.replace, temp_file, path)
        except (OSError, TypeError, ValueError) as e:
            logger.error("journal_persist_error", user_id=user_id, error=str(e))
            raise StorageWriteFailure(
                f"Failed to persist pending operations: {e}",
                context=ErrorContext(user_id=user_id, component="journal", operation="save"),
                cause=e,
            ) from e

        logger.debug("journal_persisted", user_id=user_id, entries=len(entries))

