"""
The remote-platform boundary used by the Infracord core.

RemotePlatform is the protocol the applier and the sync engine depend on;
DiscordPlatformClient implements it on top of a py-cord bot. Every Discord
HTTP failure leaves this module as RemotePlatformError, so callers only have to
handle the Infracord error taxonomy. Retries and rate limits are left to
py-cord's HTTP client.
"""

from __future__ import annotations

from typing import Any, Awaitable, List, Optional, Protocol, TypeVar

import discord

from infracord.errors import AbsentTargetError, RemotePlatformError
from infracord.util.logger import get_logger

logger = get_logger("remote_client")

T = TypeVar("T")


class RemotePlatform(Protocol):
    """Operations the core needs from the remote guild."""

    async def get_member(self, user_id: int) -> Optional[Any]: ...

    async def add_role(self, member: Any, role_id: int, reason: str) -> bool: ...

    async def remove_role(self, member: Any, role_id: int, reason: str) -> bool: ...

    async def ban(self, user_id: int, reason: str) -> None: ...

    async def unban(self, user_id: int, reason: str) -> bool: ...

    async def kick(self, user_id: int, reason: str) -> None: ...

    async def list_members(self) -> List[Any]: ...

    async def list_roles(self) -> List[Any]: ...


def has_role(member: Any, role_id: int) -> bool:
    return any(role.id == role_id for role in getattr(member, "roles", ()))


class DiscordPlatformClient:
    """RemotePlatform backed by a py-cord bot and one configured guild.

    Args:
        bot: The running bot; the guild is looked up lazily from its cache.
        guild_id: ID of the moderated guild.
    """

    def __init__(self, bot: discord.Bot, guild_id: int) -> None:
        self.bot = bot
        self.guild_id = guild_id

    @property
    def guild(self) -> discord.Guild:
        guild = self.bot.get_guild(self.guild_id)
        if guild is None:
            raise RemotePlatformError("get_guild", f"guild {self.guild_id} is not available")
        return guild

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except discord.HTTPException as exc:
            logger.warning("[REMOTE] %s failed with status %s: %s", operation, exc.status, exc.text)
            raise RemotePlatformError(operation, exc.text or str(exc), exc.status) from exc

    # ------------------------------------------------------------------
    # Members and roles
    # ------------------------------------------------------------------

    async def get_member(self, user_id: int) -> Optional[discord.Member]:
        """Return the guild member for ``user_id``, or None if they are not in the guild."""
        guild = self.guild
        member = guild.get_member(user_id)
        if member is not None:
            return member

        try:
            return await self._call("get_member", guild.fetch_member(user_id))
        except RemotePlatformError as exc:
            if exc.status == 404:
                return None
            raise

    async def add_role(self, member: discord.Member, role_id: int, reason: str) -> bool:
        """Grant ``role_id``. Returns False when the member already holds it."""
        if has_role(member, role_id):
            return False
        await self._call("add_role", member.add_roles(discord.Object(id=role_id), reason=reason))
        return True

    async def remove_role(self, member: discord.Member, role_id: int, reason: str) -> bool:
        """Remove ``role_id``. Returns False when the member does not hold it."""
        if not has_role(member, role_id):
            return False
        await self._call("remove_role", member.remove_roles(discord.Object(id=role_id), reason=reason))
        return True

    async def list_members(self) -> List[discord.Member]:
        guild = self.guild
        if not guild.chunked:
            await self._call("list_members", guild.chunk())
        return list(guild.members)

    async def list_roles(self) -> List[discord.Role]:
        return list(self.guild.roles)

    # ------------------------------------------------------------------
    # Bans and kicks
    # ------------------------------------------------------------------

    async def ban(self, user_id: int, reason: str) -> None:
        """Ban by ID; works whether or not the account is currently a member."""
        await self._call("ban", self.guild.ban(discord.Object(id=user_id), reason=reason))

    async def unban(self, user_id: int, reason: str) -> bool:
        """Lift a ban. Returns False when the account was not banned."""
        try:
            await self._call("unban", self.guild.unban(discord.Object(id=user_id), reason=reason))
        except RemotePlatformError as exc:
            if exc.status == 404:
                logger.debug("[REMOTE] %s was not banned; nothing to lift", user_id)
                return False
            raise
        return True

    async def kick(self, user_id: int, reason: str) -> None:
        """Kick by ID.

        Raises:
            AbsentTargetError: Discord reports the member as unknown.
        """
        try:
            await self._call("kick", self.guild.kick(discord.Object(id=user_id), reason=reason))
        except RemotePlatformError as exc:
            if exc.status == 404:
                raise AbsentTargetError(user_id) from exc
            raise
