"""Tests for logging setup."""

import logging
from pathlib import Path

from convo_vault.logging import get_logger, setup_logging


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_module_loggers_write_to_component_file(self, tmp_path: Path) -> None:
        """Should route every convo_vault.* logger into <log_dir>/<name>.log."""
        setup_logging("archive", log_dir=tmp_path / "logs", console=False)

        get_logger("media").info("Stored media: hash=%s", "abc")
        for handler in logging.getLogger("convo_vault").handlers:
            handler.flush()

        text = (tmp_path / "logs" / "archive.log").read_text()
        assert "[INFO] convo_vault.media: Stored media: hash=abc" in text

    def test_reconfiguring_replaces_handlers(self, tmp_path: Path) -> None:
        """Should not stack handlers across invocations."""
        setup_logging("first", log_dir=tmp_path / "a", console=True)
        logger = setup_logging("second", log_dir=tmp_path / "b", console=False)

        assert len(logger.handlers) == 1
        assert Path(logger.handlers[0].baseFilename) == tmp_path / "b" / "second.log"

    def test_http_request_logs_are_quiet_unless_debugging(self, tmp_path: Path) -> None:
        setup_logging("quiet", log_dir=tmp_path, console=False)
        assert logging.getLogger("httpx").level == logging.WARNING
