import logging
from logging.handlers import RotatingFileHandler
import os
import sys
from pathlib import Path
from datetime import datetime
from prompt_toolkit import print_formatted_text
from prompt_toolkit.formatted_text import ANSI

# -------------------- Configuration --------------------
LOGS_DIR: Path = Path(os.getenv("INFRACORD_LOG_DIR") or Path(__file__).parents[3] / "logs").resolve()

LOG_FORMAT: str = "[%(asctime)s] [%(levelname)s] [%(name)s:%(funcName)s:%(lineno)d] %(message)s"
DATE_FORMAT: str = "%Y-%m-%d %H-%M-%S"

LOG_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[38;5;88m",
}
RESET_COLOR = "\033[0m"

# Shared by every logger of the session; resolved on first use
LOG_FILEPATH: Path | None = None

# Level applied to newly created loggers; main() lowers or raises it from the config
BASE_LEVEL: int = logging.DEBUG


# -------------------- Formatters --------------------
class ColorFormatter(logging.Formatter):
    """Log formatter that wraps each record in the ANSI colour of its level."""

    def format(self, record: logging.LogRecord) -> str:
        color = LOG_COLORS.get(record.levelname, "")
        message = super().format(record)
        return f"{color}{message}{RESET_COLOR}" if color else message


class PromptToolkitHandler(logging.Handler):
    """
    Logging handler that prints through prompt_toolkit.

    Using ``print_formatted_text`` keeps log lines from tearing an active
    prompt when the bot runs in an interactive terminal.
    """

    def __init__(self, formatter: logging.Formatter | None = None):
        super().__init__()
        if formatter:
            self.setFormatter(formatter)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            print_formatted_text(ANSI(msg))
        except Exception:
            self.handleError(record)


plain_formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)


def should_use_color() -> bool:
    """Return True when stderr is a TTY and ANSI colours can be shown."""
    try:
        return sys.stderr.isatty()
    except Exception:
        return False


color_formatter = ColorFormatter(LOG_FORMAT, datefmt=DATE_FORMAT) if should_use_color() else plain_formatter


# -------------------- Logger Setup --------------------

def get_log_filepath() -> Path:
    """
    Return the log file used by every logger in this session.

    A log file from today that was touched less than 60 seconds ago is reused,
    so a quick restart keeps appending to the same file. Otherwise a new file
    named after the current timestamp is created under ``LOGS_DIR``.
    """
    global LOG_FILEPATH

    if LOG_FILEPATH is None:
        LOGS_DIR.mkdir(parents=True, exist_ok=True)
        today_prefix = datetime.now().strftime("%Y-%m-%d")
        existing_logs = sorted(LOGS_DIR.glob(f"{today_prefix}*.log"), key=lambda p: p.stat().st_mtime, reverse=True)

        if existing_logs and datetime.now().timestamp() - existing_logs[0].stat().st_mtime < 60:
            LOG_FILEPATH = existing_logs[0]
        else:
            LOG_FILEPATH = LOGS_DIR / (datetime.now().strftime(DATE_FORMAT) + ".log")

    return LOG_FILEPATH


def setup_logger(logger_name: str) -> logging.Logger:
    """Configure and return a logger with console and file handlers.

    Parameters
    ----------
    logger_name:
        Name of the logger to configure.

    Returns
    -------
    logging.Logger
        Configured logger instance. Calling this twice for the same name
        returns the already configured logger untouched.
    """
    logger = logging.getLogger(logger_name)

    if logger.handlers:
        return logger

    logger.setLevel(BASE_LEVEL)
    logger.propagate = False

    console_handler = PromptToolkitHandler(formatter=color_formatter)
    console_handler.setLevel(BASE_LEVEL)
    logger.addHandler(console_handler)

    file_handler = RotatingFileHandler(get_log_filepath(), encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(plain_formatter)
    logger.addHandler(file_handler)

    return logger


def get_logger(logger_name: str) -> logging.Logger:
    """Retrieve a logger configured for Infracord, creating it if necessary."""
    return setup_logger(logger_name)


def set_level(level_name: str) -> None:
    """Apply ``level_name`` to every logger created so far and to future ones."""
    global BASE_LEVEL

    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        logging.getLogger(__name__).warning("Unknown log level %r, keeping %s", level_name, BASE_LEVEL)
        return

    BASE_LEVEL = level
    for name in list(logging.root.manager.loggerDict):
        existing = logging.getLogger(name)
        if any(isinstance(handler, PromptToolkitHandler) for handler in existing.handlers):
            existing.setLevel(level)


# -------------------- Exception Handling --------------------
def handle_exception(exception_type, exception_instance, exception_traceback) -> None:
    """
    Global exception hook logging every uncaught exception.

    ``KeyboardInterrupt`` goes to the default hook so Ctrl+C still ends the
    process normally.
    """
    if issubclass(exception_type, KeyboardInterrupt):
        sys.__excepthook__(exception_type, exception_instance, exception_traceback)
    else:
        logging.error("Uncaught exception", exc_info=(exception_type, exception_instance, exception_traceback))


# -------------------- Suppress Noisy Libraries --------------------
NOISY_LOGGERS = [
    "discord", "discord.gateway", "discord.client", "discord.http",
    "aiosqlite", "websockets", "aiohttp", "asyncio",
]

for noisy_logger in NOISY_LOGGERS:
    lg = logging.getLogger(noisy_logger)
    lg.setLevel(logging.WARNING)
    lg.propagate = False
    lg.handlers = []
