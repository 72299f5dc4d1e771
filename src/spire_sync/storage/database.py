"""
Async SQLite wrapper for spire-sync.

A thin layer over aiosqlite: one connection per instance, serialized by a
lock, in autocommit mode with explicit transactions.
"""

import aiosqlite
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional, List, AsyncIterator
import asyncio

from ..utils.logging import get_logger


logger = get_logger("spire-sync.storage.database")


SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    user_id TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    PRIMARY KEY (user_id, key)
)
"""


class Database:
    """Async SQLite database wrapper."""

    def __init__(
        self,
        db_path: Path | str,
        journal_mode: str = "WAL",
        synchronous: str = "NORMAL",
        busy_timeout: float = 5.0,
    ):
        """
        Initialize database wrapper.

        Args:
            db_path: Path to SQLite database file
            journal_mode: SQLite journal mode pragma
            synchronous: SQLite synchronous pragma
            busy_timeout: Seconds to wait on a locked database
        """
        self.db_path = Path(db_path)
        self.journal_mode = journal_mode
        self.synchronous = synchronous
        self.busy_timeout = busy_timeout
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open database connection."""
        if self._connection is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = await aiosqlite.connect(
                self.db_path,
                timeout=self.busy_timeout,
                isolation_level=None  # Autocommit; transactions are explicit
            )
            await self._connection.execute(f"PRAGMA journal_mode={self.journal_mode}")
            await self._connection.execute(f"PRAGMA synchronous={self.synchronous}")
            logger.debug("database_connected", path=str(self.db_path))

    async def initialize(self) -> None:
        """Connect and create the key/value table."""
        await self.connect()
        await self.execute(SCHEMA)

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.debug("database_closed", path=str(self.db_path))

    async def execute(self, sql: str, parameters: tuple = ()) -> aiosqlite.Cursor:
        """
        Execute SQL statement.

        Args:
            sql: SQL statement
            parameters: Query parameters

        Returns:
            Cursor object
        """
        async with self._lock:
            if not self._connection:
                await self.connect()
            return await self._connection.execute(sql, parameters)

    async def fetchone(self, sql: str, parameters: tuple = ()) -> Optional[tuple]:
        """Execute query and fetch one result."""
        cursor = await self.execute(sql, parameters)
        return await cursor.fetchone()

    async def fetchall(self, sql: str, parameters: tuple = ()) -> List[tuple]:
        """Execute query and fetch all results."""
        cursor = await self.execute(sql, parameters)
        return await cursor.fetchall()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Run a block inside ``BEGIN IMMEDIATE`` ... ``COMMIT``.

        The write lock is taken up front so a read-check-write sequence
        inside the block cannot interleave with another writer. Any
        exception rolls the transaction back and propagates.

        Yields:
            The raw connection; use it directly, not ``execute``.
        """
        async with self._lock:
            if not self._connection:
                await self.connect()
            conn = self._connection
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                await conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    await conn.execute("ROLLBACK")
                raise

    @property
    def connection(self) -> Optional[aiosqlite.Connection]:
        """Get raw connection object."""
        return self._connection

    async def __aenter__(self):
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
