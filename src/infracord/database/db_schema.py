"""
Database schema initialization.

Creates the infraction table, the user/role mirror tables and their junction,
plus schema version tracking. Every statement is idempotent, so running the
schema on each startup is safe.
"""

import aiosqlite
from infracord.util.logger import get_logger

logger = get_logger("database_schema")

SCHEMA_VERSION = 1


class SchemaManager:
    """Manages database schema creation."""

    @staticmethod
    async def initialize_schema(db: aiosqlite.Connection) -> None:
        """
        Create all database tables and indexes if they do not exist yet.

        Args:
            db: Open database connection
        """
        await SchemaManager._create_tables(db)
        await SchemaManager._create_indexes(db)
        await SchemaManager._update_schema_version(db)
        await db.commit()
        logger.info("[SCHEMA] Database schema initialized")

    @staticmethod
    async def _create_tables(db: aiosqlite.Connection) -> None:
        """Create all required database tables."""
        # Append-only infraction records; timestamps are unix seconds (UTC)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS infractions (
                id TEXT PRIMARY KEY,
                target_id INTEGER NOT NULL,
                actor_id INTEGER NOT NULL,
                kind TEXT NOT NULL,
                reason TEXT NOT NULL DEFAULT '',
                created_at INTEGER NOT NULL,
                expires_at INTEGER,
                active INTEGER NOT NULL DEFAULT 1
            )
        """)

        # Mirror of guild accounts; rows are never deleted
        await db.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY,
                username TEXT NOT NULL,
                discriminator TEXT NOT NULL DEFAULT '0',
                avatar_url TEXT NOT NULL DEFAULT '',
                present INTEGER NOT NULL DEFAULT 1
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS roles (
                id INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                colour INTEGER NOT NULL DEFAULT 0,
                position INTEGER NOT NULL DEFAULT 0
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS user_roles (
                user_id INTEGER NOT NULL,
                role_id INTEGER NOT NULL,
                PRIMARY KEY (user_id, role_id),
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
            )
        """)
        # role_id has no FK: a member may hold a role not mirrored yet.
        # MirrorStore.delete_role drops the junction rows itself.

        await db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    @staticmethod
    async def _create_indexes(db: aiosqlite.Connection) -> None:
        """Create indexes backing the per-user and expiry queries."""
        await db.execute("CREATE INDEX IF NOT EXISTS idx_infractions_target ON infractions(target_id, active)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_infractions_expiry ON infractions(active, expires_at)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_user_roles_role ON user_roles(role_id)")

    @staticmethod
    async def _update_schema_version(db: aiosqlite.Connection) -> None:
        await db.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
