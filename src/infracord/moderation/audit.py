"""
Audit events and the sinks that publish them.

Every lifecycle transition of an infraction (created, expired, pardoned) and
every completed full sync is described by an AuditEvent. Sinks are fire and
forget: ``publish_safely`` logs any failure and never lets it reach the caller,
because an unreachable log channel must not undo a moderation action.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

import discord

from infracord.datatypes.infraction_datatypes import Infraction, InfractionType
from infracord.datatypes.mirror_datatypes import SyncStats
from infracord.util.logger import get_logger

logger = get_logger("audit")


class AuditEventKind(Enum):
    CREATED = "created"
    EXPIRED = "expired"
    PARDONED = "pardoned"
    SYNC_COMPLETED = "sync_completed"


@dataclass(slots=True)
class AuditEvent:
    """Something moderators should be able to read about later.

    Attributes:
        kind: Which transition happened.
        infraction: The record concerned; None for sync reports.
        actor_id: Who caused it; None when the bot did it on its own (expiry, sync).
        detail: Free-text addition (the applier's result detail, for instance).
        stats: Counters of a full sync, for SYNC_COMPLETED events.
    """

    kind: AuditEventKind
    infraction: Optional[Infraction] = None
    actor_id: Optional[int] = None
    detail: str = ""
    stats: Optional[SyncStats] = None


class AuditSink(Protocol):
    async def publish(self, event: AuditEvent) -> None: ...


class NullAuditSink:
    """Discards every event. Used headless and in tests."""

    async def publish(self, event: AuditEvent) -> None:
        return None


async def publish_safely(sink: AuditSink, event: AuditEvent) -> None:
    """Publish ``event``, logging and discarding any failure of the sink."""
    try:
        await sink.publish(event)
    except Exception as exc:
        logger.warning("[AUDIT] Failed to publish %s event: %s", event.kind.value, exc)


# ---------------------------------------------------------------------------
# Embeds
# ---------------------------------------------------------------------------

_TITLES = {
    AuditEventKind.CREATED: "Infraction created",
    AuditEventKind.EXPIRED: "Infraction Expired",
    AuditEventKind.PARDONED: "Infraction pardoned",
    AuditEventKind.SYNC_COMPLETED: "Sync statistics",
}

_COLOURS = {
    AuditEventKind.CREATED: discord.Color.red(),
    AuditEventKind.EXPIRED: discord.Color.green(),
    AuditEventKind.PARDONED: discord.Color.green(),
    AuditEventKind.SYNC_COMPLETED: discord.Color.blurple(),
}


def _timestamp(moment: Optional[datetime.datetime]) -> str:
    if moment is None:
        return "Never"
    return discord.utils.format_dt(moment, style="f")


def build_stats_embed(stats: SyncStats) -> discord.Embed:
    """Embed summarising a full sync pass."""
    embed = discord.Embed(
        title=_TITLES[AuditEventKind.SYNC_COMPLETED],
        color=_COLOURS[AuditEventKind.SYNC_COMPLETED],
        timestamp=datetime.datetime.now(datetime.timezone.utc),
    )
    embed.add_field(name="Roles updated", value=str(stats.roles_updated), inline=True)
    embed.add_field(name="Roles removed", value=str(stats.roles_removed), inline=True)
    embed.add_field(name="Users updated", value=str(stats.users_updated), inline=True)
    embed.add_field(name="Users left", value=str(stats.users_absent), inline=True)
    embed.add_field(name="Infractions", value=str(stats.infractions_total), inline=True)
    embed.add_field(name="Expired during sync", value=str(stats.infractions_expired), inline=True)
    return embed


def build_event_embed(event: AuditEvent) -> discord.Embed:
    """Render ``event`` for the moderator log channel."""
    if event.kind is AuditEventKind.SYNC_COMPLETED:
        return build_stats_embed(event.stats or SyncStats())

    embed = discord.Embed(
        title=_TITLES[event.kind],
        color=_COLOURS[event.kind],
        timestamp=datetime.datetime.now(datetime.timezone.utc),
    )
    infraction = event.infraction
    if infraction is not None:
        embed.add_field(name="User", value=f"<@{infraction.target_id}> (`{infraction.target_id}`)", inline=True)
        embed.add_field(name="Type", value=infraction.kind.name.replace("_", " ").title(), inline=True)
        if event.kind is AuditEventKind.CREATED:
            embed.add_field(name="Expires", value=_timestamp(infraction.expires_at), inline=True)
        embed.add_field(name="Reason", value=infraction.reason or "No reason given.", inline=False)
        embed.set_footer(text=f"ID: {infraction.id}")

    if event.actor_id is not None:
        embed.add_field(name="Actor", value=f"<@{event.actor_id}>", inline=True)
    if event.detail:
        embed.add_field(name="Detail", value=event.detail, inline=False)
    return embed


class ChannelAuditSink:
    """Posts audit events as embeds in a text channel.

    Args:
        bot: The running bot, used to resolve the channel lazily.
        channel_id: ID of the moderator log channel. None disables the sink.
    """

    def __init__(self, bot: discord.Bot, channel_id: Optional[int]) -> None:
        self.bot = bot
        self.channel_id = channel_id

    async def publish(self, event: AuditEvent) -> None:
        if self.channel_id is None:
            logger.debug("[AUDIT] No log channel configured; dropping %s event", event.kind.value)
            return

        channel = self.bot.get_channel(self.channel_id)
        if channel is None:
            channel = await self.bot.fetch_channel(self.channel_id)
        await channel.send(embed=build_event_embed(event))


# ---------------------------------------------------------------------------
# Direct messages
# ---------------------------------------------------------------------------

def relay_text(kind: InfractionType, reason: str, expires_at: Optional[datetime.datetime], guild_name: str) -> str:
    """Message sent to the target of a relayed infraction."""
    text = f"You have been {kind.action_text} in {guild_name}."
    if reason:
        text += f"\nReason: {reason}"
    if expires_at is not None:
        text += f"\nThis expires {discord.utils.format_dt(expires_at, style='R')}."
    return text


def pardon_text(infraction: Infraction, guild_name: str) -> str:
    """Message sent to the target when a relayed infraction is pardoned."""
    return (
        f"You are no longer {infraction.kind.action_text} in {guild_name}: "
        f"infraction `{infraction.id}` has been pardoned."
    )


async def relay_to_target(
    bot: discord.Bot,
    infraction: Infraction,
    guild_name: str,
    pardoned: bool = False,
) -> bool:
    """DM the target about ``infraction`` if its kind relays. Best effort.

    With ``pardoned`` the message announces the pardon instead of the infraction.
    """
    if not infraction.kind.relay:
        return False

    if pardoned:
        text = pardon_text(infraction, guild_name)
    else:
        text = relay_text(infraction.kind, infraction.reason, infraction.expires_at, guild_name)

    try:
        user = bot.get_user(infraction.target_id) or await bot.fetch_user(infraction.target_id)
        await user.send(text)
    except discord.HTTPException as exc:
        logger.debug("[AUDIT] Could not DM user %s about %s: %s", infraction.target_id, infraction.kind.value, exc)
        return False
    return True
