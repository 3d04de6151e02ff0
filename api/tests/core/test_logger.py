"""Unit tests for core.logger (structlog configuration)."""

import json
import logging
import os
from unittest.mock import patch

import pytest
import structlog

from core.logger import configure_logging, get_logger


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.mark.unit
class TestConfigureLogging:
    def test_adds_stdout_handler(self):
        configure_logging()
        assert any(
            isinstance(h, logging.StreamHandler) for h in logging.getLogger().handlers
        )

    def test_json_output(self, capsys):
        with patch.dict(os.environ, {"LOG_FORMAT": "json"}):
            configure_logging()

        get_logger("test").info("streak.reconciled", user_id="user_1", current_streak=2)

        line = capsys.readouterr().out.strip().splitlines()[-1]
        payload = json.loads(line)
        assert payload["event"] == "streak.reconciled"
        assert payload["user_id"] == "user_1"
        assert payload["current_streak"] == 2
        assert payload["level"] == "info"

    def test_context_vars_merged(self, capsys):
        with patch.dict(os.environ, {"LOG_FORMAT": "json"}):
            configure_logging()

        structlog.contextvars.bind_contextvars(request_id="req-1")
        try:
            get_logger("test").warning("streak.drift_detected")
        finally:
            structlog.contextvars.clear_contextvars()

        payload = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert payload["request_id"] == "req-1"

    def test_respects_log_level_env(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "WARNING"}):
            configure_logging()
        assert logging.getLogger().level == logging.WARNING

    def test_quiets_noisy_loggers(self):
        configure_logging()
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("uvicorn.access").level == logging.WARNING

    def test_stamps_service_context(self, capsys):
        with patch.dict(
            os.environ, {"LOG_FORMAT": "json", "ENVIRONMENT": "staging"}
        ):
            configure_logging()
            get_logger("test").info("streak.repair.complete")

        payload = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert payload["service"] == "gym-streak-api"
        assert payload["env"] == "staging"

    def test_reconfigure_does_not_stack_handlers(self):
        configure_logging()
        configure_logging()
        stream_handlers = [
            h
            for h in logging.getLogger().handlers
            if type(h) is logging.StreamHandler
        ]
        assert len(stream_handlers) == 1

    @pytest.mark.parametrize(
        "echo,expected", [("true", logging.INFO), ("", logging.WARNING)]
    )
    def test_sql_logging_follows_db_echo(self, echo, expected):
        with patch.dict(os.environ, {"DB_ECHO": echo}):
            configure_logging()
        assert logging.getLogger("sqlalchemy.engine").level == expected
