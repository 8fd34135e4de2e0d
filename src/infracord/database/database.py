"""
Database initialization and lifecycle for SQLite.

The Database class owns the single aiosqlite connection and hands it to the
two stores built on top of it:
- infractions: append-only infraction records (InfractionStore)
- mirror: local copy of guild users and roles (MirrorStore)
"""

from __future__ import annotations

from pathlib import Path

from infracord.database.db_connection import ConnectionManager
from infracord.database.db_schema import SchemaManager
from infracord.database.infraction_store import InfractionStore
from infracord.database.mirror_store import MirrorStore
from infracord.util.logger import get_logger

logger = get_logger("database")

DB_PATH = Path("./data/infracord.db").resolve()


class Database:
    """
    Central database coordinator.

    Lifecycle:
        1. Call initialize() at program startup
        2. Use ``infractions`` and ``mirror``
        3. Call shutdown() at program end
    """

    def __init__(self, db_path: Path = DB_PATH):
        self.db_path = db_path
        self.connection = ConnectionManager()
        self.infractions = InfractionStore(self.connection)
        self.mirror = MirrorStore(self.connection)
        self._initialized = False

    async def initialize(self) -> bool:
        """
        Open the connection and create the schema.

        Returns:
            True if initialization succeeded, False otherwise
        """
        if self._initialized:
            logger.debug("[DATABASE] Already initialized, skipping")
            return True

        try:
            await self.connection.open(self.db_path)
            await SchemaManager.initialize_schema(self.connection.connection)
        except Exception as e:
            logger.error("[DATABASE] Database initialization failed: %s", e)
            await self.connection.close()
            return False

        self._initialized = True
        logger.info("[DATABASE] Database initialized at %s", self.db_path)
        return True

    async def shutdown(self) -> None:
        """Close the connection. Safe to call more than once."""
        if not self._initialized:
            return

        await self.connection.close()
        self._initialized = False
        logger.info("[DATABASE] Database shutdown complete")
