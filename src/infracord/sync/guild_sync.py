"""
Keeps the local mirror of the guild and the infraction effects in step with Discord.

Two ways in:

- ``full_sync`` reconciles everything after startup (or on demand): roles,
  members, then active infractions. Only records whose snapshot differs from the
  mirror are written, so a second pass without remote changes writes nothing.
- The incremental handlers apply one gateway event each.

Failures are logged with the ``[SYNC]`` tag and swallowed; the next event or
full pass repairs whatever was missed.
"""

from __future__ import annotations

import asyncio
import functools
from typing import Any, Callable, Iterable, Optional, Set

import discord

from infracord.database.infraction_store import InfractionStore
from infracord.database.mirror_store import MirrorStore
from infracord.datatypes.mirror_datatypes import MirrorRole, MirrorUser, SyncStats
from infracord.moderation.action_applier import ActionApplier
from infracord.remote.remote_client import RemotePlatform
from infracord.scheduler.expiry_scheduler import ExpiryScheduler
from infracord.util.logger import get_logger

logger = get_logger("guild_sync")


def _logged(default: Any = None) -> Callable:
    """Log and swallow any failure of the wrapped coroutine, returning ``default``."""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[SYNC] %s failed", func.__name__)
                return default

        return wrapper

    return decorator


class GuildSyncEngine:
    """Reconciles the mirror and active infractions with the live guild.

    Args:
        platform: The remote guild.
        mirror: Local copy of users and roles.
        store: Infraction records.
        applier: Used to re-apply effects that went missing.
        scheduler: Expiry timers for temporary infractions.
    """

    def __init__(
        self,
        platform: RemotePlatform,
        mirror: MirrorStore,
        store: InfractionStore,
        applier: ActionApplier,
        scheduler: ExpiryScheduler,
    ) -> None:
        self.platform = platform
        self.mirror = mirror
        self.store = store
        self.applier = applier
        self.scheduler = scheduler

    # ------------------------------------------------------------------
    # Full sync
    # ------------------------------------------------------------------

    @_logged(default=None)
    async def full_sync(self) -> Optional[SyncStats]:
        """Reconcile roles, members and infractions.

        Returns:
            The pass statistics, or None if the pass failed.
        """
        stats = SyncStats()
        logger.info("[SYNC] Starting full sync")

        await self.sync_roles(stats)
        present_ids = await self.sync_users(stats)
        await self.sync_infractions(stats, present_ids)

        logger.info(
            "[SYNC] Full sync done: roles %d updated / %d removed, users %d updated / %d left, "
            "infractions %d total / %d expired",
            stats.roles_updated, stats.roles_removed, stats.users_updated, stats.users_absent,
            stats.infractions_total, stats.infractions_expired,
        )
        return stats

    async def sync_roles(self, stats: SyncStats) -> None:
        remote = {role.id: MirrorRole.from_role(role) for role in await self.platform.list_roles()}
        local = await self.mirror.all_roles()

        for role_id, snapshot in remote.items():
            if local.get(role_id) != snapshot:
                await self.mirror.upsert_role(snapshot)
                stats.roles_updated += 1

        for role_id in local.keys() - remote.keys():
            await self.mirror.delete_role(role_id)
            stats.roles_removed += 1

    async def sync_users(self, stats: SyncStats) -> Set[int]:
        """Upsert stale members and flag departed ones.

        Returns:
            IDs of every current member.
        """
        local = await self.mirror.all_users()
        present_ids: Set[int] = set()

        for member in await self.platform.list_members():
            present_ids.add(member.id)
            snapshot = MirrorUser.from_member(member)
            if local.get(member.id) != snapshot:
                await self.mirror.upsert_user(snapshot)
                stats.users_updated += 1

        for user_id, user in local.items():
            if user.present and user_id not in present_ids:
                if await self.mirror.mark_absent(user_id):
                    stats.users_absent += 1

        return present_ids

    async def sync_infractions(self, stats: SyncStats, present_ids: Iterable[int]) -> None:
        """Fire overdue infractions, re-arm timers and re-drive effects on present members."""
        present = set(present_ids)
        now = self.scheduler.clock()

        for infraction in await self.store.list_active():
            if infraction.is_due(now):
                # A timer recovered at startup may already be firing.
                if infraction.id not in self.scheduler:
                    self.scheduler.fire_now(infraction)
                stats.infractions_expired += 1
                continue

            if infraction.expires_at is not None and infraction.id not in self.scheduler:
                self.scheduler.schedule_reversal(infraction, infraction.expires_at)

            if infraction.kind.reapplies_on_presence and infraction.target_id in present:
                await self.applier.apply(infraction.kind, infraction.target_id,
                                         f"Infraction {infraction.id} re-applied by sync")

        stats.infractions_total = await self.store.count()

    # ------------------------------------------------------------------
    # Incremental updates
    # ------------------------------------------------------------------

    @_logged(default=False)
    async def role_updated(self, role: discord.Role) -> bool:
        """Store ``role`` if it changed. Also used for created roles."""
        snapshot = MirrorRole.from_role(role)
        if await self.mirror.get_role(role.id) == snapshot:
            return False
        await self.mirror.upsert_role(snapshot)
        return True

    @_logged(default=False)
    async def role_deleted(self, role_id: int) -> bool:
        return await self.mirror.delete_role(role_id)

    @_logged(default=0)
    async def member_joined(self, member: discord.Member) -> int:
        """Mirror a (re)joining member and restore their active effects.

        Roles are granted again; an active ban bans the account again.

        Returns:
            Number of infractions re-applied.
        """
        await self.mirror.upsert_user(MirrorUser.from_member(member))

        reapplied = 0
        now = self.scheduler.clock()
        for infraction in await self.store.list_active_by_user(member.id):
            if not infraction.kind.reapplies_on_presence or infraction.is_due(now):
                continue
            result = await self.applier.apply(infraction.kind, member.id,
                                              f"Infraction {infraction.id} re-applied on rejoin")
            if result.ok:
                reapplied += 1

        if reapplied:
            logger.info("[SYNC] Re-applied %d infractions to rejoining user %s", reapplied, member.id)
        return reapplied

    @_logged(default=False)
    async def member_updated(self, member: discord.Member) -> bool:
        snapshot = MirrorUser.from_member(member)
        if await self.mirror.get_user(member.id) == snapshot:
            return False
        await self.mirror.upsert_user(snapshot)
        return True

    @_logged(default=False)
    async def member_left(self, user_id: int) -> bool:
        return await self.mirror.mark_absent(user_id)

    @_logged(default=False)
    async def user_updated(self, user: discord.abc.User) -> bool:
        """Refresh the account fields of a mirrored user; presence is asked of Discord."""
        existing = await self.mirror.get_user(user.id)
        if existing is None:
            return False

        present = await self.platform.get_member(user.id) is not None
        snapshot = MirrorUser.from_user(user, present=present, role_ids=existing.role_ids)
        if existing == snapshot:
            return False
        await self.mirror.upsert_user(snapshot)
        return True
