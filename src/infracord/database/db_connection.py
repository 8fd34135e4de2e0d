"""
The single aiosqlite connection shared by the infraction and mirror stores.

Reads go straight to the connection. Writes queue on a one-slot semaphore and
run inside ``transaction()``, so a mirror snapshot or an infraction update is
committed whole or not at all, and two writers never interleave.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from infracord.util.logger import get_logger

logger = get_logger("database_connection")

_PRAGMAS = [
    "PRAGMA journal_mode = WAL",
    "PRAGMA foreign_keys = ON",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA busy_timeout = 5000",
]


class ConnectionManager:
    """Owns the connection; ``read()`` for queries, ``transaction()`` for writes."""

    def __init__(self) -> None:
        self._conn: aiosqlite.Connection | None = None
        self._write_sem = asyncio.Semaphore(1)

    async def open(self, path: Path) -> None:
        """Connect to ``path``, creating its directory, and apply the pragmas."""
        if self._conn is not None:
            logger.warning("[DB CONNECTION] Already open; ignoring open(%s)", path)
            return

        path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(path)
        self._conn.row_factory = aiosqlite.Row

        for pragma in _PRAGMAS:
            await self._conn.execute(pragma)
        await self._conn.commit()

        logger.info("[DB CONNECTION] Opened %s", path)

    async def close(self) -> None:
        """Checkpoint the WAL and close. Does nothing when already closed."""
        if self._conn is None:
            return

        try:
            await self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            await self._conn.commit()
        except Exception:
            logger.exception("[DB CONNECTION] WAL checkpoint failed during close")
        finally:
            await self._conn.close()
            self._conn = None
            logger.info("[DB CONNECTION] Closed")

    @property
    def connection(self) -> aiosqlite.Connection:
        """
        The raw aiosqlite connection.

        Raises:
            RuntimeError: If open() has not been awaited.
        """
        if self._conn is None:
            raise RuntimeError("Infracord database is not open")
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Serialised write: commit on clean exit, roll back on any exception."""
        conn = self.connection

        async with self._write_sem:
            try:
                yield conn
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

    @asynccontextmanager
    async def read(self) -> AsyncIterator[aiosqlite.Connection]:
        yield self.connection
