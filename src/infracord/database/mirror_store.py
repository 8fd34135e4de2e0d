"""
Local mirror of guild users, roles and the user/role junction.

Writes always store a complete snapshot: a user upsert overwrites every column
and replaces the whole role set inside one transaction. Two concurrent writers
for the same user therefore leave exactly one of their snapshots behind, never
a mix of both.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, Optional

from infracord.database.db_connection import ConnectionManager
from infracord.datatypes.mirror_datatypes import MirrorRole, MirrorUser
from infracord.util.logger import get_logger

logger = get_logger("mirror_store")


class MirrorStore:
    """Low-level CRUD for the ``users``, ``roles`` and ``user_roles`` tables."""

    def __init__(self, connection: ConnectionManager) -> None:
        self._connection = connection

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_user(self, user_id: int) -> Optional[MirrorUser]:
        async with self._connection.read() as conn:
            cursor = await conn.execute(
                "SELECT id, username, discriminator, avatar_url, present FROM users WHERE id = ?",
                (int(user_id),),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            cursor = await conn.execute("SELECT role_id FROM user_roles WHERE user_id = ?", (int(user_id),))
            role_rows = await cursor.fetchall()

        return MirrorUser(
            id=row["id"],
            username=row["username"],
            discriminator=row["discriminator"],
            avatar_url=row["avatar_url"],
            present=bool(row["present"]),
            role_ids=frozenset(r["role_id"] for r in role_rows),
        )

    async def all_users(self) -> Dict[int, MirrorUser]:
        """Return every mirrored user keyed by ID, with their role sets."""
        async with self._connection.read() as conn:
            cursor = await conn.execute("SELECT id, username, discriminator, avatar_url, present FROM users")
            user_rows = await cursor.fetchall()
            cursor = await conn.execute("SELECT user_id, role_id FROM user_roles")
            junction_rows = await cursor.fetchall()

        roles_by_user: Dict[int, set[int]] = defaultdict(set)
        for row in junction_rows:
            roles_by_user[row["user_id"]].add(row["role_id"])

        return {
            row["id"]: MirrorUser(
                id=row["id"],
                username=row["username"],
                discriminator=row["discriminator"],
                avatar_url=row["avatar_url"],
                present=bool(row["present"]),
                role_ids=frozenset(roles_by_user.get(row["id"], ())),
            )
            for row in user_rows
        }

    async def upsert_user(self, user: MirrorUser) -> None:
        """Store ``user`` as the complete current state of that account."""
        async with self._connection.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO users (id, username, discriminator, avatar_url, present)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    username      = excluded.username,
                    discriminator = excluded.discriminator,
                    avatar_url    = excluded.avatar_url,
                    present       = excluded.present
                """,
                (user.id, user.username, user.discriminator, user.avatar_url, int(user.present)),
            )
            await conn.execute("DELETE FROM user_roles WHERE user_id = ?", (user.id,))
            if user.role_ids:
                await conn.executemany(
                    "INSERT INTO user_roles (user_id, role_id) VALUES (?, ?)",
                    [(user.id, role_id) for role_id in sorted(user.role_ids)],
                )

        logger.debug("[MIRROR] Stored user %s (%s), present=%s, %d roles",
                     user.id, user.username, user.present, len(user.role_ids))

    async def mark_absent(self, user_id: int) -> bool:
        """Flag a user as no longer in the guild. Returns False if nothing changed."""
        async with self._connection.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE users SET present = 0 WHERE id = ? AND present = 1", (int(user_id),)
            )
            changed = cursor.rowcount > 0

        if changed:
            logger.debug("[MIRROR] Marked user %s as absent", user_id)
        return changed

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    async def get_role(self, role_id: int) -> Optional[MirrorRole]:
        async with self._connection.read() as conn:
            cursor = await conn.execute(
                "SELECT id, name, colour, position FROM roles WHERE id = ?", (int(role_id),)
            )
            row = await cursor.fetchone()

        if row is None:
            return None
        return MirrorRole(id=row["id"], name=row["name"], colour=row["colour"], position=row["position"])

    async def all_roles(self) -> Dict[int, MirrorRole]:
        async with self._connection.read() as conn:
            cursor = await conn.execute("SELECT id, name, colour, position FROM roles")
            rows = await cursor.fetchall()

        return {
            row["id"]: MirrorRole(id=row["id"], name=row["name"], colour=row["colour"], position=row["position"])
            for row in rows
        }

    async def upsert_role(self, role: MirrorRole) -> None:
        async with self._connection.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO roles (id, name, colour, position)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name     = excluded.name,
                    colour   = excluded.colour,
                    position = excluded.position
                """,
                (role.id, role.name, role.colour, role.position),
            )

        logger.debug("[MIRROR] Stored role %s (%s)", role.id, role.name)

    async def delete_role(self, role_id: int) -> bool:
        """Remove a role and every user's membership of it. Returns False if it was unknown."""
        async with self._connection.transaction() as conn:
            await conn.execute("DELETE FROM user_roles WHERE role_id = ?", (int(role_id),))
            cursor = await conn.execute("DELETE FROM roles WHERE id = ?", (int(role_id),))
            deleted = cursor.rowcount > 0

        logger.debug("[MIRROR] Deleted role %s (existed=%s)", role_id, deleted)
        return deleted
