"""
Infraction cog: slash commands issuing, pardoning and listing infractions.

Every issuing command funnels into ``InfractionCog.issue`` and every pardon
command into ``InfractionCog.lift``; the commands themselves only declare
their options. Replies are ephemeral. Errors the moderator can fix (bad
duration, nothing to pardon) are answered with the error message, anything
else is logged with its traceback and answered generically.

Permissions
- The invoker must be an administrator or hold the configured ``admin`` or
  ``moderator`` role.
- Moderators cannot target themselves or other moderators.
"""

from typing import Iterable, List, Mapping, Optional

import discord
from discord import Option
from discord.ext import commands

from infracord.datatypes.infraction_datatypes import Infraction, InfractionType
from infracord.errors import InfracordError
from infracord.moderation.infraction_service import InfractionService, PardonOutcome, format_duration, parse_duration
from infracord.util.logger import get_logger

logger = get_logger("infraction_cmds")

MODERATOR_ROLE_KEYS = ("admin", "moderator")
HISTORY_LIMIT = 15
REASON_PREVIEW = 200
EMBED_DESCRIPTION_LIMIT = 4096


def is_moderator(member: object, role_ids: Mapping[str, int]) -> bool:
    """True when ``member`` is an administrator or holds a moderator role."""
    permissions = getattr(member, "guild_permissions", None)
    if permissions is not None and permissions.administrator:
        return True

    allowed = {role_ids[key] for key in MODERATOR_ROLE_KEYS if role_ids.get(key)}
    return any(role.id in allowed for role in getattr(member, "roles", ()))


def resolve_target_id(user: Optional[discord.abc.User], user_id: Optional[str]) -> int:
    """Pick the target from the user option or a raw ID.

    Raises:
        InfracordError: Neither was given or the ID is not a number.
    """
    if user is not None:
        return user.id

    cleaned = (user_id or "").strip().strip("<@!>")
    if not cleaned:
        raise InfracordError("Give either a user or a user ID.")
    if not cleaned.isdigit():
        raise InfracordError(f"'{user_id}' is not a valid user ID.")
    return int(cleaned)


def format_history(infractions: Iterable[Infraction]) -> List[str]:
    """One line per infraction, newest first as given. Long reasons are shortened."""
    lines = []
    for infraction in infractions:
        created = discord.utils.format_dt(infraction.created_at, style="d")
        status = "active" if infraction.active else "inactive"
        expiry = ""
        if infraction.expires_at is not None:
            expiry = f", expires {discord.utils.format_dt(infraction.expires_at, style='R')}"
        reason = infraction.reason or "no reason"
        if len(reason) > REASON_PREVIEW:
            reason = reason[:REASON_PREVIEW - 3] + "..."
        lines.append(
            f"`{infraction.id[:8]}` {created} **{infraction.kind.name.replace('_', ' ').title()}** "
            f"({status}{expiry}): {reason}"
        )
    return lines


def format_pardon(outcome: PardonOutcome) -> str:
    """Reply for a pardon command, naming every revert that failed."""
    label = outcome.kind.name.lower().replace("_", " ")
    lines = []
    if outcome.pardoned:
        lines.append(f"Pardoned {len(outcome.pardoned)} {label} infraction(s) for <@{outcome.target_id}>.")
    elif outcome.ok:
        lines.append(f"<@{outcome.target_id}> had no active {label} infraction; the leftover {label} was lifted.")

    for failure in outcome.failures:
        lines.append(f"Lifting the {label} on Discord failed: {failure.detail}. Run the command again to retry.")
    return "\n".join(lines)


class InfractionCog(commands.Cog):
    """Slash commands for the infraction lifecycle.

    Parameters
    ----------
    discord_bot_instance:
        The running bot.
    service:
        Infraction pipelines the commands delegate to.
    role_ids:
        Configured role keys, used for the moderator check.
    """

    def __init__(self, discord_bot_instance, service: InfractionService, role_ids: Mapping[str, int]):
        self.bot = discord_bot_instance
        self.service = service
        self.role_ids = dict(role_ids)
        logger.info("[INFRACTIONS] Infraction cog loaded")

    # ------------------------------------------------------------------
    # Shared checks and pipelines
    # ------------------------------------------------------------------

    async def check_moderator(self, ctx: discord.ApplicationContext, target_id: Optional[int] = None) -> bool:
        if not is_moderator(ctx.author, self.role_ids):
            await ctx.send_followup("You do not have permission to use this command.", ephemeral=True)
            return False

        if target_id is None:
            return True

        if target_id == ctx.author.id:
            await ctx.send_followup("You cannot perform moderation actions on yourself.", ephemeral=True)
            return False

        target = ctx.guild.get_member(target_id) if ctx.guild else None
        if target is not None and is_moderator(target, self.role_ids):
            await ctx.send_followup("You cannot perform moderation actions against moderators.", ephemeral=True)
            return False

        return True

    async def issue(
        self,
        ctx: discord.ApplicationContext,
        kind: InfractionType,
        user: Optional[discord.abc.User],
        user_id: Optional[str],
        reason: str,
        duration: Optional[str] = None,
    ) -> None:
        """Create an infraction of ``kind`` and report the outcome."""
        await ctx.defer(ephemeral=True)
        try:
            target_id = resolve_target_id(user, user_id)
            if not await self.check_moderator(ctx, target_id):
                return

            delta = parse_duration(duration)
            outcome = await self.service.create_infraction(kind, target_id, ctx.author.id, reason, delta)
        except InfracordError as exc:
            await ctx.send_followup(str(exc), ephemeral=True)
            return
        except Exception:
            logger.exception("[INFRACTIONS] Failed to issue %s", kind.value)
            await ctx.send_followup("An error occurred while processing the command.", ephemeral=True)
            return

        message = f"<@{target_id}> has been {kind.action_text}"
        if kind.expires:
            message += f" ({format_duration(delta)})"
        message += f". Infraction `{outcome.infraction.id[:8]}`."
        if not outcome.ok:
            message += f"\nThe infraction was recorded, but applying it failed: {outcome.result.detail}"
        await ctx.send_followup(message, ephemeral=True)

    async def lift(
        self,
        ctx: discord.ApplicationContext,
        kind: InfractionType,
        user: Optional[discord.abc.User],
        user_id: Optional[str],
    ) -> None:
        """Pardon the active infractions of ``kind`` for the target."""
        await ctx.defer(ephemeral=True)
        try:
            target_id = resolve_target_id(user, user_id)
            if not await self.check_moderator(ctx):
                return
            outcome = await self.service.pardon(kind, target_id, ctx.author.id)
        except InfracordError as exc:
            await ctx.send_followup(str(exc), ephemeral=True)
            return
        except Exception:
            logger.exception("[INFRACTIONS] Failed to pardon %s", kind.value)
            await ctx.send_followup("An error occurred while processing the command.", ephemeral=True)
            return

        await ctx.send_followup(format_pardon(outcome), ephemeral=True)

    # ------------------------------------------------------------------
    # Issuing commands
    # ------------------------------------------------------------------

    @commands.slash_command(name="ban", description="Ban a user, optionally for a limited time.")
    async def ban(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to ban.", required=False, default=None),  # type: ignore
        user_id: Option(str, "Raw ID of the user to ban.", required=False, default=None),  # type: ignore
        duration: Option(str, "How long, e.g. 1h30m or 7d. Empty for permanent.", required=False, default=None),  # type: ignore
        reason: Option(str, "Reason for the ban.", default="No reason provided."),  # type: ignore
    ) -> None:
        await self.issue(ctx, InfractionType.BAN, user, user_id, reason, duration)

    @commands.slash_command(name="kick", description="Kick a user from the server.")
    async def kick(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to kick.", required=False, default=None),  # type: ignore
        user_id: Option(str, "Raw ID of the user to kick.", required=False, default=None),  # type: ignore
        reason: Option(str, "Reason for the kick.", default="No reason provided."),  # type: ignore
    ) -> None:
        await self.issue(ctx, InfractionType.KICK, user, user_id, reason)

    @commands.slash_command(name="mute", description="Mute a user, optionally for a limited time.")
    async def mute(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to mute.", required=False, default=None),  # type: ignore
        user_id: Option(str, "Raw ID of the user to mute.", required=False, default=None),  # type: ignore
        duration: Option(str, "How long, e.g. 10m or 2d. Empty for permanent.", required=False, default=None),  # type: ignore
        reason: Option(str, "Reason for the mute.", default="No reason provided."),  # type: ignore
    ) -> None:
        await self.issue(ctx, InfractionType.MUTE, user, user_id, reason, duration)

    @commands.slash_command(name="mute-meta", description="Stop a user from posting in meta channels.")
    async def mute_meta(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to meta-mute.", required=False, default=None),  # type: ignore
        user_id: Option(str, "Raw ID of the user.", required=False, default=None),  # type: ignore
        duration: Option(str, "How long. Empty for permanent.", required=False, default=None),  # type: ignore
        reason: Option(str, "Reason for the meta-mute.", default="No reason provided."),  # type: ignore
    ) -> None:
        await self.issue(ctx, InfractionType.META_MUTE, user, user_id, reason, duration)

    @commands.slash_command(name="mute-reactions", description="Stop a user from adding reactions.")
    async def mute_reactions(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to reaction-mute.", required=False, default=None),  # type: ignore
        user_id: Option(str, "Raw ID of the user.", required=False, default=None),  # type: ignore
        duration: Option(str, "How long. Empty for permanent.", required=False, default=None),  # type: ignore
        reason: Option(str, "Reason for the reaction-mute.", default="No reason provided."),  # type: ignore
    ) -> None:
        await self.issue(ctx, InfractionType.REACTION_MUTE, user, user_id, reason, duration)

    @commands.slash_command(name="mute-requests", description="Stop a user from posting requests.")
    async def mute_requests(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to requests-mute.", required=False, default=None),  # type: ignore
        user_id: Option(str, "Raw ID of the user.", required=False, default=None),  # type: ignore
        duration: Option(str, "How long. Empty for permanent.", required=False, default=None),  # type: ignore
        reason: Option(str, "Reason for the requests-mute.", default="No reason provided."),  # type: ignore
    ) -> None:
        await self.issue(ctx, InfractionType.REQUESTS_MUTE, user, user_id, reason, duration)

    @commands.slash_command(name="mute-support", description="Stop a user from using support channels.")
    async def mute_support(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to support-mute.", required=False, default=None),  # type: ignore
        user_id: Option(str, "Raw ID of the user.", required=False, default=None),  # type: ignore
        duration: Option(str, "How long. Empty for permanent.", required=False, default=None),  # type: ignore
        reason: Option(str, "Reason for the support-mute.", default="No reason provided."),  # type: ignore
    ) -> None:
        await self.issue(ctx, InfractionType.SUPPORT_MUTE, user, user_id, reason, duration)

    @commands.slash_command(name="warn", description="Warn a user.")
    async def warn(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to warn.", required=False, default=None),  # type: ignore
        user_id: Option(str, "Raw ID of the user to warn.", required=False, default=None),  # type: ignore
        reason: Option(str, "Reason for the warning.", default="No reason provided."),  # type: ignore
    ) -> None:
        await self.issue(ctx, InfractionType.WARN, user, user_id, reason)

    @commands.slash_command(name="note", description="Attach a moderator note to a user. The user is not told.")
    async def note(
        self,
        ctx: discord.ApplicationContext,
        reason: Option(str, "The note.", required=True),  # type: ignore
        user: Option(discord.User, "The user the note is about.", required=False, default=None),  # type: ignore
        user_id: Option(str, "Raw ID of the user.", required=False, default=None),  # type: ignore
    ) -> None:
        await self.issue(ctx, InfractionType.NOTE, user, user_id, reason)

    # ------------------------------------------------------------------
    # Pardon commands
    # ------------------------------------------------------------------

    @commands.slash_command(name="unban", description="Lift a user's ban.")
    async def unban(
        self,
        ctx: discord.ApplicationContext,
        user_id: Option(str, "Raw ID of the banned user.", required=True),  # type: ignore
    ) -> None:
        await self.lift(ctx, InfractionType.BAN, None, user_id)

    @commands.slash_command(name="unmute", description="Lift a user's mute.")
    async def unmute(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The muted user.", required=False, default=None),  # type: ignore
        user_id: Option(str, "Raw ID of the muted user.", required=False, default=None),  # type: ignore
    ) -> None:
        await self.lift(ctx, InfractionType.MUTE, user, user_id)

    @commands.slash_command(name="unmute-meta", description="Lift a user's meta-mute.")
    async def unmute_meta(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The meta-muted user.", required=False, default=None),  # type: ignore
        user_id: Option(str, "Raw ID of the user.", required=False, default=None),  # type: ignore
    ) -> None:
        await self.lift(ctx, InfractionType.META_MUTE, user, user_id)

    @commands.slash_command(name="unmute-reactions", description="Lift a user's reaction-mute.")
    async def unmute_reactions(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The reaction-muted user.", required=False, default=None),  # type: ignore
        user_id: Option(str, "Raw ID of the user.", required=False, default=None),  # type: ignore
    ) -> None:
        await self.lift(ctx, InfractionType.REACTION_MUTE, user, user_id)

    @commands.slash_command(name="unmute-requests", description="Lift a user's requests-mute.")
    async def unmute_requests(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The requests-muted user.", required=False, default=None),  # type: ignore
        user_id: Option(str, "Raw ID of the user.", required=False, default=None),  # type: ignore
    ) -> None:
        await self.lift(ctx, InfractionType.REQUESTS_MUTE, user, user_id)

    @commands.slash_command(name="unmute-support", description="Lift a user's support-mute.")
    async def unmute_support(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The support-muted user.", required=False, default=None),  # type: ignore
        user_id: Option(str, "Raw ID of the user.", required=False, default=None),  # type: ignore
    ) -> None:
        await self.lift(ctx, InfractionType.SUPPORT_MUTE, user, user_id)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @commands.slash_command(name="infractions", description="Show a user's infraction history.")
    async def infractions(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to look up.", required=False, default=None),  # type: ignore
        user_id: Option(str, "Raw ID of the user.", required=False, default=None),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        try:
            target_id = resolve_target_id(user, user_id)
            if not await self.check_moderator(ctx):
                return
            history = await self.service.history(target_id)
        except InfracordError as exc:
            await ctx.send_followup(str(exc), ephemeral=True)
            return

        if not history:
            await ctx.send_followup(f"<@{target_id}> has no infractions.", ephemeral=True)
            return

        lines = format_history(history[:HISTORY_LIMIT])
        embed = discord.Embed(
            title=f"Infractions for {target_id}",
            description="\n".join(lines)[:EMBED_DESCRIPTION_LIMIT],
            color=discord.Color.orange(),
        )
        if len(history) > HISTORY_LIMIT:
            embed.set_footer(text=f"Showing {HISTORY_LIMIT} of {len(history)}")
        await ctx.send_followup(embed=embed, ephemeral=True)

    @commands.Cog.listener()
    async def on_application_command_error(self, ctx: discord.ApplicationContext, error: Exception) -> None:
        logger.error("[INFRACTIONS] Command /%s failed", getattr(ctx.command, "qualified_name", "?"),
                     exc_info=error)
        try:
            await ctx.respond("An error occurred while processing the command.", ephemeral=True)
        except discord.HTTPException:
            logger.error("[INFRACTIONS] Failed to send error response to user.")

