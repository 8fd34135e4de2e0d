from __future__ import annotations
from pathlib import Path
import fcntl
from typing import Any, Dict
import yaml

from infracord.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path("./config/app_config.yml").resolve()

DEFAULT_DATABASE_PATH = "./data/infracord.db"
DEFAULT_SYNC_READY_DELAY = 10.0


class AppConfig:
    """File-lock based accessor around the YAML-based application configuration.

    The class caches the contents of ``./config/app_config.yml`` and exposes
    typed shortcuts for the settings the bot needs: the moderated guild, the
    role behind each mute kind, the log channels, the database path and sync
    timing. Uses fcntl file locks for safe concurrent access across processes.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    data = yaml.safe_load(f)
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except FileNotFoundError:
            logger.error("[APP CONFIGURATION] Config file %s not found.", self.config_path)
            return {}
        except Exception as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
            return {}

        if not isinstance(data, dict):
            logger.error("[APP CONFIGURATION] Config %s is not a mapping; ignoring it.", self.config_path)
            return {}
        return data

    def _section(self, key: str) -> Dict[str, Any]:
        value = self._data.get(key, {})
        return value if isinstance(value, dict) else {}

    @staticmethod
    def _as_id(value: Any) -> int | None:
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            logger.warning("[APP CONFIGURATION] Ignoring non-numeric ID %r", value)
            return None

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Reload configuration from disk and return the loaded mapping.

        Returns the raw mapping that was loaded (an empty dict on error).
        """
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        """Return the current cached configuration mapping."""
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    # --------------------------
    # High-level shortcuts
    # --------------------------
    @property
    def guild_id(self) -> int | None:
        """ID of the guild this bot moderates."""
        return self._as_id(self._data.get("guild_id"))

    @property
    def role_ids(self) -> Dict[str, int]:
        """Mapping of role keys (``muted``, ``no_meta``, ``moderator``...) to role IDs.

        Entries that are missing or not numeric are left out.
        """
        roles: Dict[str, int] = {}
        for key, value in self._section("roles").items():
            role_id = self._as_id(value)
            if role_id is not None:
                roles[str(key)] = role_id
        return roles

    def role_id(self, key: str) -> int | None:
        """Return the configured ID for ``key``, or None when unset."""
        return self.role_ids.get(key)

    @property
    def moderator_log_channel_id(self) -> int | None:
        return self._as_id(self._section("channels").get("moderator_log"))

    @property
    def action_log_channel_id(self) -> int | None:
        """Channel receiving startup sync statistics; defaults to the moderator log."""
        channel_id = self._as_id(self._section("channels").get("action_log"))
        return channel_id if channel_id is not None else self.moderator_log_channel_id

    @property
    def database_path(self) -> Path:
        value = self._section("database").get("path") or DEFAULT_DATABASE_PATH
        return Path(str(value)).resolve()

    @property
    def sync_ready_delay(self) -> float:
        """Seconds to wait after on_ready before the startup sync.

        Gives the gateway time to fill the member cache.
        """
        try:
            return float(self._section("sync").get("ready_delay_seconds", DEFAULT_SYNC_READY_DELAY))
        except (TypeError, ValueError):
            return DEFAULT_SYNC_READY_DELAY

    @property
    def log_level(self) -> str:
        return str(self._section("logging").get("level", "DEBUG"))


# Shared application-wide configuration instance
app_config = AppConfig(CONFIG_PATH)
