"""Key-value blob storage backends for persisted runtime state."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional
import asyncio

import aiosqlite

from .logger import get_logger

logger = get_logger(__name__)


class Storage(ABC):
    """Abstract storage interface.

    Values are opaque strings; serialization is the caller's concern.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Get a value by key."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a value under key, replacing any previous value."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key. Returns True if deleted, False if not found."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close storage connection."""
        pass


class MemoryStorage(Storage):
    """Dict-backed storage; contents are lost with the process."""

    def __init__(self, data: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(data or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> bool:
        if key in self._data:
            del self._data[key]
            return True
        return False

    async def close(self) -> None:
        pass


class SQLiteStorage(Storage):
    """Blob storage in a single SQLite table, one row per key."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def _init_db(self) -> None:
        """Open the connection and create the blob table."""
        if self._db is not None:
            return

        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS runtime_blobs (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        await self._db.commit()
        logger.info("SQLite storage initialized", db_path=self.db_path)

    async def _ensure_connection(self) -> aiosqlite.Connection:
        """Return the open connection, connecting lazily."""
        if self._db is None:
            await self._init_db()
        return self._db  # type: ignore

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            db = await self._ensure_connection()
            cursor = await db.execute(
                "SELECT value FROM runtime_blobs WHERE key = ?",
                (key,)
            )
            row = await cursor.fetchone()
            return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            db = await self._ensure_connection()
            await db.execute(
                "INSERT OR REPLACE INTO runtime_blobs (key, value) VALUES (?, ?)",
                (key, value)
            )
            await db.commit()

    async def delete(self, key: str) -> bool:
        async with self._lock:
            db = await self._ensure_connection()
            cursor = await db.execute("DELETE FROM runtime_blobs WHERE key = ?", (key,))
            await db.commit()
            return cursor.rowcount > 0

    async def close(self) -> None:
        """Close the connection; the store reconnects on next use."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("SQLite storage closed")


async def init_storage(db_path: Optional[str] = None) -> Storage:
    """Initialize a storage backend: SQLite when a path is given, else memory."""
    if db_path:
        storage: Storage = SQLiteStorage(db_path)
        await storage._init_db()
    else:
        storage = MemoryStorage()

    logger.info("Storage initialized", backend=type(storage).__name__)
    return storage
