"""Sync listener cog for Infracord.

Feeds gateway events for the configured guild into the GuildSyncEngine, runs
startup recovery once the bot is ready, and exposes /sync for administrators.
"""

import asyncio
from typing import Optional

import discord
from discord.ext import commands

from infracord.datatypes.mirror_datatypes import SyncStats
from infracord.moderation.audit import AuditEvent, AuditEventKind, AuditSink, NullAuditSink, build_stats_embed, publish_safely
from infracord.scheduler.expiry_scheduler import ExpiryScheduler
from infracord.sync.guild_sync import GuildSyncEngine
from infracord.util.logger import get_logger

logger = get_logger("sync_listener")


class SyncCog(commands.Cog):
    """Gateway listeners keeping the mirror and infraction effects current.

    Parameters
    ----------
    discord_bot_instance:
        The running bot.
    engine:
        Sync engine the events are forwarded to.
    scheduler:
        Expiry scheduler, recovered on startup.
    guild_id:
        The moderated guild; events from other guilds are ignored.
    ready_delay:
        Seconds to wait after on_ready before the first full sync.
    sink:
        Where the startup sync statistics are posted.
    """

    def __init__(
        self,
        discord_bot_instance,
        engine: GuildSyncEngine,
        scheduler: ExpiryScheduler,
        guild_id: int,
        ready_delay: float = 10.0,
        sink: Optional[AuditSink] = None,
    ):
        self.bot = discord_bot_instance
        self.engine = engine
        self.scheduler = scheduler
        self.guild_id = guild_id
        self.ready_delay = ready_delay
        self.sink = sink or NullAuditSink()
        self._startup_done = False
        logger.info("[SYNC] Sync listener cog loaded")

    def _is_ours(self, guild: Optional[discord.Guild]) -> bool:
        return guild is not None and guild.id == self.guild_id

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    @commands.Cog.listener(name="on_ready")
    async def on_ready(self) -> None:
        """Recover expiry timers and run the first full sync.

        on_ready fires again after every reconnect; recovery only runs once.
        """
        if self._startup_done:
            logger.debug("[SYNC] Reconnected; startup recovery already done")
            return
        self._startup_done = True

        await asyncio.sleep(self.ready_delay)
        await self.run_startup()

    async def run_startup(self) -> Optional[SyncStats]:
        await self.scheduler.recover_all()

        stats = await self.engine.full_sync()
        if stats is not None:
            await publish_safely(self.sink, AuditEvent(AuditEventKind.SYNC_COMPLETED, stats=stats))
        return stats

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    @commands.Cog.listener()
    async def on_guild_role_create(self, role: discord.Role) -> None:
        if self._is_ours(role.guild):
            await self.engine.role_updated(role)

    @commands.Cog.listener()
    async def on_guild_role_update(self, before: discord.Role, after: discord.Role) -> None:
        if self._is_ours(after.guild):
            await self.engine.role_updated(after)

    @commands.Cog.listener()
    async def on_guild_role_delete(self, role: discord.Role) -> None:
        if self._is_ours(role.guild):
            await self.engine.role_deleted(role.id)

    # ------------------------------------------------------------------
    # Members and users
    # ------------------------------------------------------------------

    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member) -> None:
        if self._is_ours(member.guild):
            await self.engine.member_joined(member)

    @commands.Cog.listener()
    async def on_member_remove(self, member: discord.Member) -> None:
        if self._is_ours(member.guild):
            await self.engine.member_left(member.id)

    @commands.Cog.listener()
    async def on_member_update(self, before: discord.Member, after: discord.Member) -> None:
        if self._is_ours(after.guild):
            await self.engine.member_updated(after)

    @commands.Cog.listener()
    async def on_user_update(self, before: discord.User, after: discord.User) -> None:
        # User updates are global; only accounts we mirror matter.
        await self.engine.user_updated(after)

    # ------------------------------------------------------------------
    # Manual sync
    # ------------------------------------------------------------------

    @commands.slash_command(name="sync", description="Reconcile the member and role mirror with Discord.")
    @discord.default_permissions(administrator=True)
    async def sync(self, ctx: discord.ApplicationContext) -> None:
        await ctx.defer(ephemeral=True)

        if not getattr(ctx.author, "guild_permissions", None) or not ctx.author.guild_permissions.administrator:
            await ctx.send_followup("You do not have permission to use this command.", ephemeral=True)
            return

        stats = await self.engine.full_sync()
        if stats is None:
            await ctx.send_followup("The sync failed; see the bot log for details.", ephemeral=True)
            return
        await ctx.send_followup(embed=build_stats_embed(stats), ephemeral=True)

