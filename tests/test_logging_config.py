"""Tests for logging configuration and timing helpers."""
import logging

import pytest

from netscript.utils import logging_config
from netscript.utils.logging_config import (
    get_log_file,
    get_log_level,
    perf_logger,
    setup_logging,
    timed,
    timed_section,
    timed_section_sync,
)


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__(logging.DEBUG)
        self.messages = []

    def emit(self, record):
        self.messages.append(record.getMessage())


@pytest.fixture
def perf_messages():
    handler = ListHandler()
    perf_logger.addHandler(handler)
    level = perf_logger.level
    perf_logger.setLevel(logging.DEBUG)
    yield handler.messages
    perf_logger.removeHandler(handler)
    perf_logger.setLevel(level)


class TestEnvironment:
    """Tests for environment-driven settings."""

    def test_log_level(self, monkeypatch):
        """NETSCRIPT_LOG_LEVEL picks the level."""
        monkeypatch.setenv("NETSCRIPT_LOG_LEVEL", "debug")
        assert get_log_level() == logging.DEBUG

    def test_log_level_invalid(self, monkeypatch):
        """Unknown levels fall back to INFO."""
        monkeypatch.setenv("NETSCRIPT_LOG_LEVEL", "chatty")
        assert get_log_level() == logging.INFO

    def test_log_file(self, tmp_path, monkeypatch):
        """NETSCRIPT_LOG_FILE picks the file."""
        monkeypatch.setenv("NETSCRIPT_LOG_FILE", str(tmp_path / "x.log"))
        assert get_log_file() == tmp_path / "x.log"

    def test_setup_creates_files(self, tmp_path, monkeypatch):
        """Setup writes the main and perf logs next to each other."""
        monkeypatch.setenv("NETSCRIPT_LOG_FILE", str(tmp_path / "logs" / "netscript.log"))
        setup_logging(logging.WARNING)

        logging.getLogger("netscript.test").debug("hello file")
        for handler in logging.getLogger("netscript").handlers:
            handler.flush()

        assert (tmp_path / "logs" / "netscript.log").exists()
        assert (tmp_path / "logs" / "netscript-perf.log").exists()
        assert "hello file" in (tmp_path / "logs" / "netscript.log").read_text()
        assert perf_logger.propagate is False


class TestTiming:
    """Tests for the timing helpers."""

    def test_timed_sync(self, perf_messages):
        """Sync functions are timed with the machine label."""
        class Compiler:
            @timed("compile")
            def compile(self, machine, action):
                return action

        assert Compiler().compile("r1", "audit") == "audit"
        assert len(perf_messages) == 1
        assert "compile" in perf_messages[0]
        assert "r1" in perf_messages[0]
        assert perf_messages[0].endswith("OK")

    def test_timed_failure(self, perf_messages):
        """Failures are logged and re-raised."""
        @timed("compile")
        def broken(machine=None):
            raise ValueError("bad")

        with pytest.raises(ValueError):
            broken(machine="r1")
        assert "FAIL: bad" in perf_messages[0]

    @pytest.mark.asyncio
    async def test_timed_async(self, perf_messages):
        """Coroutines are timed too."""
        @timed("session")
        async def run(machine=None):
            return 1

        assert await run(machine="r1") == 1
        assert "session" in perf_messages[0]

    @pytest.mark.asyncio
    async def test_timed_section(self, perf_messages):
        """Async sections log their extras."""
        async with timed_section("session", machine="r1", action="audit"):
            pass
        assert "action=audit" in perf_messages[0]

    def test_timed_section_sync(self, perf_messages):
        """Sync sections log failures."""
        with pytest.raises(RuntimeError):
            with timed_section_sync("initialize", machines=4):
                raise RuntimeError("boom")
        assert "FAIL: boom" in perf_messages[0]
        assert "machines=4" in perf_messages[0]


def test_module_logger_name():
    """The perf logger lives under the package namespace."""
    assert logging_config.perf_logger.name == "netscript.perf"
