"""
Infracord
=========

A Discord bot that records moderation infractions, applies and lifts their
effects on the guild, and keeps a local mirror of the guild's members and
roles in sync.
"""

import os
import sys
from pathlib import Path


def resolve_base_dir() -> Path:
    """Determine the base directory of the project.
    Resolution order:
    1. INFRACORD_HOME environment variable, if set.
    2. If running in a frozen/compiled context (e.g., PyInstaller, Nuitka), use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of this file's directory.
    """
    if env_home := os.getenv("INFRACORD_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


BASE_DIR = resolve_base_dir()
os.chdir(BASE_DIR)

import asyncio
from dataclasses import dataclass

import discord
from dotenv import load_dotenv

from infracord.bot.cogs.infraction_cmds import InfractionCog
from infracord.bot.cogs.sync_listener import SyncCog
from infracord.configuration.app_configuration import app_config
from infracord.database.database import Database
from infracord.datatypes.infraction_datatypes import Infraction
from infracord.moderation.action_applier import ActionApplier
from infracord.moderation.audit import AuditSink, ChannelAuditSink, relay_to_target
from infracord.moderation.infraction_service import InfractionService
from infracord.remote.remote_client import DiscordPlatformClient
from infracord.scheduler.expiry_scheduler import ExpiryScheduler
from infracord.sync.guild_sync import GuildSyncEngine
from infracord.util.logger import get_logger, handle_exception, set_level

logger = get_logger("main")


@dataclass
class Runtime:
    """Everything the cogs share, built once per process."""

    database: Database
    platform: DiscordPlatformClient
    applier: ActionApplier
    scheduler: ExpiryScheduler
    service: InfractionService
    engine: GuildSyncEngine
    moderator_sink: AuditSink
    action_sink: AuditSink


def load_environment() -> str:
    """Load environment variables and return the Discord bot token.

    Raises
    ------
    SystemExit
        If the required ``DISCORD_BOT_TOKEN`` variable is missing.
    """
    load_dotenv(dotenv_path=BASE_DIR / ".env")
    token = os.getenv("DISCORD_BOT_TOKEN")
    if not token:
        logger.critical("'DISCORD_BOT_TOKEN' environment variable not set. Bot cannot start.")
        sys.exit(1)
    return token


def build_intents() -> discord.Intents:
    """Intents for guild, role and member events."""
    intents = discord.Intents.default()
    intents.guilds = True
    intents.members = True
    return intents


def build_runtime(bot: discord.Bot, database: Database, guild_id: int) -> Runtime:
    """Wire the platform client, applier, scheduler, service and sync engine together."""
    platform = DiscordPlatformClient(bot, guild_id)
    applier = ActionApplier(platform, app_config.role_ids)
    moderator_sink = ChannelAuditSink(bot, app_config.moderator_log_channel_id)
    action_sink = ChannelAuditSink(bot, app_config.action_log_channel_id)
    scheduler = ExpiryScheduler(database.infractions, applier, moderator_sink)

    async def notify(infraction: Infraction, pardoned: bool = False) -> bool:
        guild = bot.get_guild(guild_id)
        return await relay_to_target(bot, infraction, guild.name if guild else "the server", pardoned=pardoned)

    service = InfractionService(database.infractions, applier, scheduler, moderator_sink, notify)
    engine = GuildSyncEngine(platform, database.mirror, database.infractions, applier, scheduler)

    return Runtime(
        database=database,
        platform=platform,
        applier=applier,
        scheduler=scheduler,
        service=service,
        engine=engine,
        moderator_sink=moderator_sink,
        action_sink=action_sink,
    )


def load_cogs(bot: discord.Bot, runtime: Runtime, guild_id: int) -> None:
    bot.add_cog(InfractionCog(bot, runtime.service, app_config.role_ids))
    bot.add_cog(
        SyncCog(
            bot,
            runtime.engine,
            runtime.scheduler,
            guild_id,
            ready_delay=app_config.sync_ready_delay,
            sink=runtime.action_sink,
        )
    )
    logger.info("All cogs loaded successfully.")


async def start_bot(bot: discord.Bot, token: str) -> None:
    logger.info("Attempting to connect to Discord…")
    try:
        await bot.start(token)
    except asyncio.CancelledError:
        logger.info("Discord bot start cancelled; shutting down")
    finally:
        logger.info("Discord bot start routine finished.")


async def shutdown_runtime(bot: discord.Bot, runtime: Runtime) -> None:
    """Stop the timers, close the bot, then close the database."""
    try:
        await runtime.scheduler.shutdown()
    except Exception as exc:
        logger.exception("Error during scheduler shutdown: %s", exc)

    if not bot.is_closed():
        await bot.close()

    try:
        await runtime.database.shutdown()
    except Exception as exc:
        logger.exception("Error during database shutdown: %s", exc)

    logger.info("Shutdown complete.")


async def async_main() -> int:
    """Bootstrap the database and bot, returning an exit code."""
    token = load_environment()
    set_level(app_config.log_level)

    guild_id = app_config.guild_id
    if guild_id is None:
        logger.critical("'guild_id' is not set in %s. Bot cannot start.", app_config.config_path)
        return 1

    database = Database(app_config.database_path)
    if not await database.initialize():
        logger.critical("Failed to initialize database at %s", app_config.database_path)
        return 1

    try:
        bot = discord.Bot(intents=build_intents())
        runtime = build_runtime(bot, database, guild_id)
        load_cogs(bot, runtime, guild_id)
    except Exception as exc:
        logger.critical("Failed to initialize Discord bot: %s", exc)
        await database.shutdown()
        return 1

    runtime.scheduler.start()
    exit_code = 0
    try:
        await start_bot(bot, token)
    except Exception as exc:
        logger.critical("Discord bot runtime error: %s", exc)
        exit_code = 1
    finally:
        await shutdown_runtime(bot, runtime)

    return exit_code


def main() -> int:
    """Entrypoint that runs the async runtime and returns the process exit code."""
    sys.excepthook = handle_exception
    logger.info("Starting Infracord…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except SystemExit as exit_exc:
        code = exit_exc.code
        if isinstance(code, int):
            return code
        return 1
    except Exception as exc:
        logger.critical("An unexpected error occurred while running the bot: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
