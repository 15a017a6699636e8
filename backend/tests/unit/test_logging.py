"""
Unit tests for logging setup.

WHAT: Test handler wiring, the log file and library log levels
WHY: Feed errors and skipped settlements are only reported through logs
HOW: Point LOG_FILE at a temp dir, run setup_logging, restore root handlers
"""

import logging

import pytest

from bazaar.core.config import settings
from bazaar.utils.logger import NOISY_LOGGERS, get_logger, setup_logging


@pytest.fixture
def isolated_root_logger(tmp_path, monkeypatch):
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    saved_library_levels = {name: logging.getLogger(name).level for name in NOISY_LOGGERS}
    log_file = tmp_path / "logs" / "bazaar.log"
    monkeypatch.setattr(settings, "LOG_FILE", str(log_file))

    yield log_file

    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)
    for name, level in saved_library_levels.items():
        logging.getLogger(name).setLevel(level)


@pytest.mark.unit
class TestLogging:

    def test_creates_log_file_and_writes_debug(self, isolated_root_logger, monkeypatch):
        monkeypatch.setattr(settings, "LOG_LEVEL", "DEBUG")
        setup_logging()
        get_logger("bazaar.services.subscription_coordinator").debug("Closed messages feed")

        for handler in logging.getLogger().handlers:
            handler.flush()
        content = isolated_root_logger.read_text(encoding="utf-8")
        assert "Logging initialized for" in content
        assert "Closed messages feed" in content

    def test_library_loggers_held_back(self, isolated_root_logger, monkeypatch):
        monkeypatch.setattr(settings, "DEBUG", False)
        setup_logging()
        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_library_loggers_open_in_debug(self, isolated_root_logger, monkeypatch):
        monkeypatch.setattr(settings, "DEBUG", True)
        setup_logging()
        assert logging.getLogger("httpx").level == logging.DEBUG
