"""
Persistent storage for infraction records.

Infractions are append-only: rows are inserted once and afterwards only their
``active`` flag changes, when a temporary infraction expires or is pardoned.
Timestamps are stored as INTEGER unix seconds (UTC) so comparisons in SQL are
trivial and no string parsing or timezone conversion is needed.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional

import aiosqlite

from infracord.database.db_connection import ConnectionManager
from infracord.datatypes.infraction_datatypes import Infraction, InfractionType, utcnow
from infracord.errors import InvalidDurationError, MalformedRecordError
from infracord.util.logger import get_logger

logger = get_logger("infraction_store")

_COLUMNS = "id, target_id, actor_id, kind, reason, created_at, expires_at, active"


def to_unix(moment: datetime) -> int:
    """Convert an aware datetime to unix seconds; naive values are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp())


def from_unix(seconds: int) -> datetime:
    return datetime.fromtimestamp(int(seconds), tz=timezone.utc)


def decode_infraction(row: aiosqlite.Row) -> Infraction:
    """Build an Infraction from a row of the ``infractions`` table.

    Raises:
        MalformedRecordError: If any column cannot be decoded.
    """
    key = row["id"]
    try:
        expires_at = row["expires_at"]
        return Infraction(
            id=str(key),
            target_id=int(row["target_id"]),
            actor_id=int(row["actor_id"]),
            kind=InfractionType(row["kind"]),
            reason=row["reason"] or "",
            created_at=from_unix(row["created_at"]),
            expires_at=from_unix(expires_at) if expires_at is not None else None,
            active=bool(row["active"]),
        )
    except (TypeError, ValueError, OverflowError, OSError) as exc:
        raise MalformedRecordError("infractions", key, str(exc)) from exc


class InfractionStore:
    """CRUD over the ``infractions`` table.

    Every write runs inside the connection manager's serialised transaction,
    so concurrent commands touching the same target cannot interleave.
    """

    def __init__(self, connection: ConnectionManager) -> None:
        self._connection = connection

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(
        self,
        target_id: int,
        actor_id: int,
        kind: InfractionType,
        reason: str,
        expires_at: Optional[datetime],
        *,
        active: bool = True,
    ) -> Infraction:
        """Insert a new infraction and return it.

        Raises:
            InvalidDurationError: If ``expires_at`` is given for a kind that never expires.
        """
        if expires_at is not None and not kind.expires:
            raise InvalidDurationError(f"{kind.name.title()} infractions cannot expire")

        infraction = Infraction(
            id=str(uuid.uuid4()),
            target_id=int(target_id),
            actor_id=int(actor_id),
            kind=kind,
            reason=reason or "",
            created_at=utcnow().replace(microsecond=0),
            expires_at=from_unix(to_unix(expires_at)) if expires_at is not None else None,
            active=active,
        )

        async with self._connection.transaction() as conn:
            await conn.execute(
                f"INSERT INTO infractions ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    infraction.id,
                    infraction.target_id,
                    infraction.actor_id,
                    infraction.kind.value,
                    infraction.reason,
                    to_unix(infraction.created_at),
                    to_unix(infraction.expires_at) if infraction.expires_at is not None else None,
                    int(infraction.active),
                ),
            )

        logger.debug(
            "[STORE] Created %s infraction %s for user %s (expires=%s)",
            kind.value, infraction.id, infraction.target_id, infraction.expires_at,
        )
        return infraction

    async def set_active(self, infraction_id: str, active: bool) -> bool:
        """Set the ``active`` flag of an infraction.

        Returns False, without raising, when the ID does not exist or the flag
        already had that value. Callers racing on the same record (pardon
        against expiry) therefore see the loser's update as a harmless no-op.
        """
        async with self._connection.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE infractions SET active = ? WHERE id = ? AND active != ?",
                (int(active), infraction_id, int(active)),
            )
            changed = cursor.rowcount > 0

        if not changed:
            logger.debug("[STORE] set_active(%s, %s) changed nothing", infraction_id, active)
        return changed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, infraction_id: str) -> Optional[Infraction]:
        """Return the infraction with ``infraction_id``, or None."""
        async with self._connection.read() as conn:
            cursor = await conn.execute(f"SELECT {_COLUMNS} FROM infractions WHERE id = ?", (infraction_id,))
            row = await cursor.fetchone()

        if row is None:
            return None
        records = self._decode_all([row])
        return records[0] if records else None

    async def list_by_user(self, target_id: int) -> List[Infraction]:
        """Return every infraction ever issued against ``target_id``, newest first."""
        return await self._query(
            f"SELECT {_COLUMNS} FROM infractions WHERE target_id = ? ORDER BY created_at DESC",
            (int(target_id),),
        )

    async def list_active_by_user(self, target_id: int) -> List[Infraction]:
        """Return the active infractions of ``target_id``, oldest first."""
        return await self._query(
            f"SELECT {_COLUMNS} FROM infractions WHERE target_id = ? AND active = 1 ORDER BY created_at",
            (int(target_id),),
        )

    async def list_active(self) -> List[Infraction]:
        """Return every active infraction, oldest first."""
        return await self._query(
            f"SELECT {_COLUMNS} FROM infractions WHERE active = 1 ORDER BY created_at",
            (),
        )

    async def list_active_expirable(self) -> List[Infraction]:
        """Return every active infraction that has an expiry, soonest first."""
        return await self._query(
            f"SELECT {_COLUMNS} FROM infractions "
            "WHERE active = 1 AND expires_at IS NOT NULL ORDER BY expires_at",
            (),
        )

    async def count(self) -> int:
        """Total number of infractions ever recorded."""
        async with self._connection.read() as conn:
            cursor = await conn.execute("SELECT COUNT(*) FROM infractions")
            row = await cursor.fetchone()
        return row[0] if row else 0

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _query(self, sql: str, params: tuple) -> List[Infraction]:
        async with self._connection.read() as conn:
            cursor = await conn.execute(sql, params)
            rows = await cursor.fetchall()
        return self._decode_all(rows)

    @staticmethod
    def _decode_all(rows: Iterable[aiosqlite.Row]) -> List[Infraction]:
        records: List[Infraction] = []
        for row in rows:
            try:
                records.append(decode_infraction(row))
            except MalformedRecordError as exc:
                logger.error("[STORE] %s; leaving it out of the result", exc)
        return records
