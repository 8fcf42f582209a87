"""
Tests for logging setup.
"""

import logging

from sftpsource.utils.logging import (
    PlainFormatter,
    get_logger,
    parse_level,
    reset_logging,
    setup_logging,
    setup_logging_from_config,
)


class TestParseLevel:
    def test_names_and_ints(self):
        assert parse_level("debug") == logging.DEBUG
        assert parse_level("WARNING") == logging.WARNING
        assert parse_level(logging.ERROR) == logging.ERROR

    def test_unknown_falls_back(self):
        assert parse_level("chatty") == logging.INFO
        assert parse_level(None, default=logging.WARNING) == logging.WARNING


class TestSetupLogging:
    def teardown_method(self):
        reset_logging()

    def test_repeated_setup_replaces_handlers(self):
        setup_logging("INFO", use_rich=False)
        logger = setup_logging("DEBUG", use_rich=False)
        assert len(logger.handlers) == 1
        assert logger.level == logging.DEBUG

    def test_library_loggers_quieted(self):
        setup_logging("DEBUG", console_enabled=False)
        assert logging.getLogger("paramiko").level == logging.WARNING

    def test_file_logging_from_config(self, tmp_path):
        config = {"logging": {"level": "INFO", "console_enabled": False, "file_enabled": True, "file": "logs/out.log"}}
        setup_logging_from_config(config, project_dir=tmp_path)

        get_logger("sftpsource.poller").info("cycle 1 done")
        for handler in logging.getLogger("sftpsource").handlers:
            handler.flush()

        content = (tmp_path / "logs" / "out.log").read_text()
        assert "sftpsource.poller: cycle 1 done" in content

    def test_file_logging_off_by_default(self, tmp_path):
        logger = setup_logging_from_config({"logging": {"console_enabled": False}}, project_dir=tmp_path)
        assert logger.handlers == []
        assert not (tmp_path / "logs").exists()


class TestPlainFormatter:
    def test_error_includes_location(self):
        record = logging.LogRecord("sftpsource.x", logging.ERROR, "/a/b/poller.py", 42, "boom", None, None)
        line = PlainFormatter().format(record)
        assert line.startswith("ERROR ")
        assert "sftpsource.x: boom (poller.py:42)" in line

    def test_info_has_no_location(self):
        record = logging.LogRecord("sftpsource.x", logging.INFO, "/a/b/poller.py", 42, "ok", None, None)
        assert "poller.py" not in PlainFormatter().format(record)
