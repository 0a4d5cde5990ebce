"""Tests for JSON logging configuration."""

import json
import logging
from collections.abc import Generator
from pathlib import Path

import pytest

from pki_operations.lib.logging_config import LOGGER, CustomJsonFormatter, add_file_handler


@pytest.fixture
def restore_logger() -> Generator[None]:
    handlers = list(LOGGER.handlers)
    levels = [h.level for h in handlers]
    level = LOGGER.level
    yield
    for handler in LOGGER.handlers:
        if handler not in handlers:
            handler.close()
    LOGGER.handlers = handlers
    for handler, handler_level in zip(handlers, levels):
        handler.setLevel(handler_level)
    LOGGER.setLevel(level)


class TestCustomJsonFormatter:
    def test_focused_field_set(self) -> None:
        formatter = CustomJsonFormatter(
            fmt="%(timestamp)s %(levelname)s %(funcName)s %(lineno)d %(message)s", timestamp=True
        )
        record = logging.LogRecord("pki_operations", logging.INFO, __file__, 10, "hello %s", ("ca",), None)

        output = json.loads(formatter.format(record))

        assert output["message"] == "hello ca"
        assert output["level"] == "INFO"
        assert set(output) <= {"timestamp", "level", "message", "exc_info", "funcName", "lineno"}


@pytest.mark.usefixtures("restore_logger")
class TestAddFileHandler:
    """Tests for add_file_handler()."""

    def test_writes_json_lines(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "pki.log"

        handler = add_file_handler(log_file)
        LOGGER.info("issued %s", "web01")
        handler.flush()

        entry = json.loads(log_file.read_text().splitlines()[-1])
        assert entry["message"] == "issued web01"

    def test_quiet_console_without_verbose(self, tmp_path: Path) -> None:
        add_file_handler(tmp_path / "pki.log")

        consoles = [h for h in LOGGER.handlers if type(h) is logging.StreamHandler]
        assert all(h.level == logging.WARNING for h in consoles)

    def test_verbose_enables_debug(self, tmp_path: Path) -> None:
        add_file_handler(tmp_path / "pki.log", verbose=True)

        assert LOGGER.level == logging.DEBUG

    def test_unwritable_location(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("")

        assert add_file_handler(blocker / "pki.log") is None
