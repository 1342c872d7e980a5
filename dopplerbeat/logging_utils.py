from __future__ import annotations

import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

_LOGGER = logging.getLogger("dopplerbeat.logging")
_LOG_FILE = "dopplerbeat.log"
_logging_configured = False
_CONSOLE_FORMAT = "%(level_prefix)s %(name)s: %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_LEVEL_PREFIXES = {
    logging.DEBUG: "🐛",
    logging.INFO: "ℹ️",
    logging.WARNING: "⚠️",
    logging.ERROR: "❌",
    logging.CRITICAL: "💥",
}


def _level_prefix(levelno: int) -> str:
    return _LEVEL_PREFIXES.get(levelno, "")


class _ConsoleEmojiFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.level_prefix = _level_prefix(record.levelno)
        return super().format(record)


def get_log_path(log_dir: str | Path) -> Path:
    return Path(log_dir).expanduser() / _LOG_FILE


def configure_logging(
    *,
    force: bool = False,
    debug: bool = False,
    log_dir: str | Path | None = None,
) -> None:
    """Attach console (and optionally file) handlers to the package logger.

    The console handler is only installed when the host application has not
    configured the root logger. File logging is opt-in through ``log_dir``.
    """

    global _logging_configured
    if _logging_configured and not force:
        return

    logger = logging.getLogger("dopplerbeat")
    logger.setLevel(logging.DEBUG)

    if force:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)

    root_has_handlers = bool(logging.getLogger().handlers)
    if force or not root_has_handlers:
        console_handler = logging.StreamHandler(stream=sys.__stderr__)
        console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
        console_handler.setFormatter(_ConsoleEmojiFormatter(_CONSOLE_FORMAT))
        logger.addHandler(console_handler)

    if log_dir is not None:
        try:
            path = get_log_path(log_dir)
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(path, encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATE_FORMAT))
            logger.addHandler(file_handler)
        except OSError as exc:
            _LOGGER.warning("Failed to configure file logging: %s", exc, exc_info=True)

    # Allow app/test harness handlers to capture logs.
    logger.propagate = True
    _logging_configured = True


def log_exception(context: str, exc: BaseException, log_dir: str | Path) -> Path | None:
    try:
        path = get_log_path(log_dir)
        path.parent.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().isoformat()
        stage = getattr(exc, "stage", "unknown")
        with path.open("a", encoding="utf-8") as handle:
            handle.write(
                f"[{timestamp}] {context} failed at stage {stage}: {type(exc).__name__}: {exc}\n"
            )
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=handle)
            handle.write("\n")
        return path
    except OSError as log_exc:
        _LOGGER.warning("Failed to write log file: %s", log_exc, exc_info=True)
        return None
