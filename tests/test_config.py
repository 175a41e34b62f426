"""Tests for settings and logging setup."""

import logging
from io import StringIO
from pathlib import Path

import pytest
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from jvmprof.config import MIN_ARCHIVE_BYTES, Settings, get_settings, load_settings, reload_settings
from jvmprof.logs import configure_logging


class TestSettings:
    """Tests for environment driven settings."""

    def test_defaults(self):
        """No environment gives the documented defaults."""
        settings = load_settings({})

        assert settings.profiler_version == "4.1"
        assert settings.profiler_dir == Path("profiler")
        assert settings.resolved_results_dir == Path("profiler") / "results"
        assert settings.min_archive_bytes == MIN_ARCHIVE_BYTES
        assert settings.transports == ["httpx", "curl"]

    def test_environment_overrides(self):
        """JVMPROF_ variables override the defaults."""
        settings = load_settings(
            {
                "JVMPROF_PROFILER_DIR": "/opt/profiler",
                "JVMPROF_RESULTS_DIR": "/tmp/results",
                "JVMPROF_TRANSPORTS": "curl, httpx",
                "JVMPROF_GRACEFUL_TIMEOUT": "30",
                "JVMPROF_LOG_LEVEL": "debug",
                "UNRELATED": "ignored",
            }
        )

        assert settings.profiler_dir == Path("/opt/profiler")
        assert settings.resolved_results_dir == Path("/tmp/results")
        assert settings.transports == ["curl", "httpx"]
        assert settings.graceful_timeout == 30
        assert settings.log_level == "DEBUG"

    def test_invalid_values_are_rejected(self):
        """A zero graceful timeout is rejected."""
        with pytest.raises(ValidationError):
            load_settings({"JVMPROF_GRACEFUL_TIMEOUT": "0"})

    def test_cached_settings_reload(self, monkeypatch):
        """Settings are cached until reloaded."""
        monkeypatch.setenv("JVMPROF_PROFILER_VERSION", "3.0")
        assert reload_settings().profiler_version == "3.0"
        assert get_settings() is get_settings()

        monkeypatch.delenv("JVMPROF_PROFILER_VERSION")
        assert reload_settings().profiler_version == "4.1"


class TestLogging:
    """Tests for configure_logging."""

    def test_single_rich_handler(self):
        """Reconfiguring replaces the handler instead of stacking them."""
        console = Console(file=StringIO())
        configure_logging("INFO", console)
        logger = configure_logging("DEBUG", console)

        handlers = [h for h in logger.handlers if isinstance(h, RichHandler)]
        assert len(handlers) == 1
        assert logger.level == logging.DEBUG

    def test_messages_reach_console(self):
        """Log records are written to the rich console."""
        console = Console(file=StringIO(), width=200)
        configure_logging("INFO", console)

        logging.getLogger("jvmprof.executor").info("Executing CpuSample against pid 4821")

        assert "Executing CpuSample against pid 4821" in console.file.getvalue()

    def test_unknown_level_defaults_to_warning(self):
        """Unknown level names fall back to WARNING."""
        logger = configure_logging("chatty", Console(file=StringIO()))

        assert logger.level == logging.WARNING
