import logging
from pathlib import Path

from dopplerbeat.errors import EncodingError
from dopplerbeat.logging_utils import configure_logging, get_log_path, log_exception


def test_get_log_path(tmp_path: Path) -> None:
    assert get_log_path(tmp_path) == tmp_path / "dopplerbeat.log"


def test_configure_logging_adds_file_handler(tmp_path: Path) -> None:
    logger = logging.getLogger("dopplerbeat")
    try:
        configure_logging(force=True, log_dir=tmp_path)
        assert any(isinstance(handler, logging.FileHandler) for handler in logger.handlers)
        logging.getLogger("dopplerbeat.test").info("hello file")
        for handler in logger.handlers:
            handler.flush()
        assert "hello file" in get_log_path(tmp_path).read_text(encoding="utf-8")
    finally:
        for handler in list(logger.handlers):
            if isinstance(handler, logging.FileHandler):
                handler.close()
                logger.removeHandler(handler)


def test_configure_logging_debug_console_level() -> None:
    logger = logging.getLogger("dopplerbeat")
    configure_logging(force=True, debug=True)
    levels = [handler.level for handler in logger.handlers]
    assert logging.DEBUG in levels
    configure_logging(force=True)


def test_log_exception_records_stage(tmp_path: Path) -> None:
    try:
        raise EncodingError("container overflow")
    except EncodingError as exc:
        path = log_exception("render", exc, tmp_path)
    assert path == tmp_path / "dopplerbeat.log"
    text = path.read_text(encoding="utf-8")
    assert "render failed at stage encoding" in text
    assert "Traceback" in text
