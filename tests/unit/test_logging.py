"""Unit tests for utils/logging.py."""

import logging
from logging.handlers import RotatingFileHandler

import pytest

from fleet_agent.utils.logging import setup_logger, switch_log_target


@pytest.fixture
def cleanup_loggers():
    """Close handlers of loggers created by a test."""
    created = []
    yield created
    for name in created:
        lg = logging.getLogger(name)
        for h in list(lg.handlers):
            h.close()
            lg.removeHandler(h)


@pytest.mark.unit
class TestSetupLogger:
    """Test setup_logger function."""

    def test_creates_log_directory(self, tmp_path, cleanup_loggers):
        log_dir = tmp_path / "new_logs" / "subdir"
        cleanup_loggers.append("test_agent_logger_dir")

        setup_logger("test_agent_logger_dir", str(log_dir / "agent.log"))

        assert log_dir.exists()

    def test_handlers_and_level(self, tmp_path, cleanup_loggers):
        cleanup_loggers.append("test_agent_logger_handlers")

        logger = setup_logger("test_agent_logger_handlers", str(tmp_path / "agent.log"), backup_count=5)

        assert logger.level == logging.INFO
        file_handlers = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
        assert len(file_handlers) == 1
        assert file_handlers[0].backupCount == 5
        assert file_handlers[0].maxBytes == 10 * 1024 * 1024
        stream_handlers = [
            h for h in logger.handlers
            if isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        ]
        assert len(stream_handlers) == 1

    def test_no_duplicate_handlers_on_second_call(self, tmp_path, cleanup_loggers):
        name = "test_agent_logger_no_dup"
        cleanup_loggers.append(name)

        logger1 = setup_logger(name, str(tmp_path / "agent.log"))
        handler_count = len(logger1.handlers)
        logger2 = setup_logger(name, str(tmp_path / "agent.log"))

        assert logger1 is logger2
        assert len(logger2.handlers) == handler_count


@pytest.mark.unit
class TestSwitchLogTarget:
    """Test switch_log_target function."""

    def test_attaches_handler(self, tmp_path, cleanup_loggers):
        cleanup_loggers.append("test_agent_switch_attach")
        logger = logging.getLogger("test_agent_switch_attach")
        logger.setLevel(logging.INFO)

        handler = switch_log_target(logger, tmp_path / "logs" / "install.log")
        logger.info("booting message")
        handler.flush()

        assert handler in logger.handlers
        assert "booting message" in (tmp_path / "logs" / "install.log").read_text()

    def test_none_detaches_previous(self, tmp_path, cleanup_loggers):
        cleanup_loggers.append("test_agent_switch_detach")
        logger = logging.getLogger("test_agent_switch_detach")
        previous = switch_log_target(logger, tmp_path / "install.log")

        assert switch_log_target(logger, None, previous) is None
        assert previous not in logger.handlers

    def test_replaces_previous(self, tmp_path, cleanup_loggers):
        cleanup_loggers.append("test_agent_switch_replace")
        logger = logging.getLogger("test_agent_switch_replace")
        previous = switch_log_target(logger, tmp_path / "install.log")

        handler = switch_log_target(logger, tmp_path / "decommission.log", previous, logging.WARNING)

        assert previous not in logger.handlers
        assert handler in logger.handlers
        assert handler.level == logging.WARNING
        assert handler.baseFilename == str(tmp_path / "decommission.log")

    def test_new_target_truncates_file(self, tmp_path, cleanup_loggers):
        cleanup_loggers.append("test_agent_switch_truncate")
        logger = logging.getLogger("test_agent_switch_truncate")
        log_file = tmp_path / "install.log"
        log_file.write_text("previous boot\n")

        switch_log_target(logger, log_file)

        assert "previous boot" not in log_file.read_text()
