"""
Tests for structured logging configuration.

Validates:
  1. configure_logging() is idempotent (safe to call twice)
  2. JSON output mode produces one parseable object per line
  3. stdlib loggers also route through the structlog pipeline
  4. Engine modules log through structlog
"""

from __future__ import annotations

import io
import json
import logging

import structlog

from agentmux.core.logging import configure_logging


def _structlog_handlers() -> list[logging.Handler]:
    return [
        h
        for h in logging.getLogger().handlers
        if isinstance(h.formatter, structlog.stdlib.ProcessorFormatter)
    ]


class TestConfigureLogging:
    def setup_method(self) -> None:
        root = logging.getLogger()
        self._saved_handlers = list(root.handlers)
        self._saved_level = root.level
        for h in _structlog_handlers():
            root.removeHandler(h)
        structlog.reset_defaults()

    def teardown_method(self) -> None:
        root = logging.getLogger()
        for h in _structlog_handlers():
            root.removeHandler(h)
        for h in self._saved_handlers:
            if h not in root.handlers:
                root.addHandler(h)
        root.setLevel(self._saved_level)
        structlog.reset_defaults()

    def test_idempotent_double_call(self) -> None:
        configure_logging(level="DEBUG")
        configure_logging(level="DEBUG", json_output=True)
        assert len(_structlog_handlers()) == 1

    def test_sets_root_log_level(self) -> None:
        configure_logging(level="WARNING")
        assert logging.getLogger().level == logging.WARNING

        configure_logging(level="debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self) -> None:
        configure_logging(level="chatty")
        assert logging.getLogger().level == logging.INFO

    def test_asyncio_logger_quietened(self) -> None:
        configure_logging(level="DEBUG")
        assert logging.getLogger("asyncio").level == logging.WARNING

    def test_json_lines(self) -> None:
        configure_logging(level="DEBUG", json_output=True)
        stream = io.StringIO()
        _structlog_handlers()[0].setStream(stream)

        log = structlog.get_logger("agentmux.test.json").bind(session_id="sess_3f2a")
        log.info("session_state_changed", old="busy", new="idle")

        entry = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert entry["event"] == "session_state_changed"
        assert entry["session_id"] == "sess_3f2a"
        assert entry["new"] == "idle"
        assert entry["level"] == "info"
        assert entry["logger"] == "agentmux.test.json"
        assert "timestamp" in entry

    def test_stdlib_loggers_use_the_same_pipeline(self) -> None:
        configure_logging(level="DEBUG", json_output=True)
        stream = io.StringIO()
        _structlog_handlers()[0].setStream(stream)

        logging.getLogger("agentmux.test.stdlib").warning("stdlib message: %s", "test")

        entry = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert entry["event"] == "stdlib message: test"
        assert entry["level"] == "warning"


class TestStructlogIntegration:
    def test_registry_uses_structlog(self) -> None:
        import agentmux.core.session.registry as registry_mod

        assert hasattr(registry_mod.logger, "bind")

    def test_engine_manager_uses_structlog(self) -> None:
        import agentmux.core.daemon.manager as daemon_mod

        assert hasattr(daemon_mod.logger, "bind")
