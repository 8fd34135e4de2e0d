import logging

from infracord.util import logger as logger_module
from infracord.util.logger import (
    ColorFormatter,
    PromptToolkitHandler,
    get_log_filepath,
    get_logger,
    handle_exception,
    set_level,
    setup_logger,
)


def test_get_logger_returns_configured_logger():
    logger = get_logger("test_logger")
    assert isinstance(logger, logging.Logger)
    assert any(isinstance(h, PromptToolkitHandler) for h in logger.handlers)
    assert logger.propagate is False


def test_setup_logger_idempotent():
    logger1 = setup_logger("test_logger_idem")
    logger2 = setup_logger("test_logger_idem")
    assert logger1 is logger2
    assert len(logger1.handlers) == 2


def test_color_formatter_applies_color():
    formatter = ColorFormatter("%(levelname)s %(message)s")
    record = logging.LogRecord("test", logging.ERROR, "", 0, "error occurred", None, None)
    formatted = formatter.format(record)
    assert "\033[31m" in formatted and "error occurred" in formatted


def test_get_log_filepath_is_stable_within_session():
    path = get_log_filepath()
    assert path.suffix == ".log"
    assert path.parent.exists()
    assert get_log_filepath() == path


def test_set_level_updates_existing_and_future_loggers():
    original = logger_module.BASE_LEVEL
    existing = get_logger("test_logger_level")
    try:
        set_level("warning")
        assert existing.level == logging.WARNING
        assert get_logger("test_logger_level_new").level == logging.WARNING
    finally:
        set_level(logging.getLevelName(original))


def test_set_level_ignores_unknown_names():
    original = logger_module.BASE_LEVEL
    set_level("LOUD")
    assert logger_module.BASE_LEVEL == original


def test_noisy_loggers_are_clamped():
    assert logging.getLogger("discord").level == logging.WARNING
    assert logging.getLogger("aiosqlite").level == logging.WARNING


def test_handle_exception_logs(caplog):
    try:
        raise ValueError("boom")
    except ValueError as exc:
        with caplog.at_level(logging.ERROR):
            handle_exception(type(exc), exc, exc.__traceback__)
    assert "Uncaught exception" in caplog.text
