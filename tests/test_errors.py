"""Tests for error categorization and formatting."""

import logging
import json

import pytest

from cadence.agent.state import TaskStatus
from cadence.errors import (
    AlreadyStarted,
    ErrorCategory,
    ErrorFormatter,
    InvalidTransition,
    MistakeLimitExceeded,
    TaskCancelled,
    ToolParseError,
    TurnLimitExceeded,
    categorize_error,
    format_error_for_user,
)
from cadence.logging_config import JSONFormatter, configure_logging


class TestCategorize:
    @pytest.mark.parametrize("error, category", [
        (TaskCancelled(), ErrorCategory.CANCELLED),
        (AlreadyStarted("t1"), ErrorCategory.STATE),
        (InvalidTransition(TaskStatus.RUNNING, TaskStatus.CREATED), ErrorCategory.STATE),
        (MistakeLimitExceeded(3, 3), ErrorCategory.LIMIT),
        (TurnLimitExceeded(10), ErrorCategory.LIMIT),
        (ToolParseError("t1", "write", '{"a":'), ErrorCategory.PARSE),
        (RuntimeError("401 Unauthorized"), ErrorCategory.AUTH),
        (RuntimeError("request timed out"), ErrorCategory.TIMEOUT),
        (ConnectionError("refused"), ErrorCategory.NETWORK),
        (RuntimeError("429 rate limit"), ErrorCategory.API),
        (RuntimeError("Tool 'run' execution failed"), ErrorCategory.TOOL),
        (ValueError("something odd"), ErrorCategory.INTERNAL),
    ])
    def test_categories(self, error, category):
        assert categorize_error(error)[0] is category


class TestExceptions:
    def test_invalid_transition_message(self):
        error = InvalidTransition(TaskStatus.COMPLETED, TaskStatus.RUNNING, [])
        assert error.code == "INVALID_TRANSITION"
        assert "completed -> running" in str(error)
        assert "none (terminal)" in str(error)

    def test_parse_error_keeps_buffer(self):
        error = ToolParseError("t1", "write", "x" * 500, ValueError("bad"))
        assert error.buffer == "x" * 500
        assert "..." in str(error)


class TestFormatter:
    def test_concise(self):
        text = ErrorFormatter.format_error_concise(MistakeLimitExceeded(3, 3))
        assert text.startswith("LIMIT: ")
        assert "3/3" in text

    def test_to_dict(self):
        data = ErrorFormatter.to_dict(TurnLimitExceeded(5))
        assert data["category"] == "limit"
        assert data["code"] == "TURN_LIMIT"
        assert data["type"] == "TurnLimitExceeded"
        assert data["suggestions"]

    def test_user_report_mentions_suggestions(self):
        report = format_error_for_user(ConnectionError("refused"))
        assert "refused" in report
        assert "connectivity to the provider host" in report


class TestLoggingConfig:
    def test_json_formatter(self):
        record = logging.LogRecord("cadence.test", logging.INFO, __file__, 10, "hello %s", ("world",), None)
        record.task_id = "task-1"
        data = json.loads(JSONFormatter().format(record))
        assert data["message"] == "hello world"
        assert data["level"] == "INFO"
        assert data["task_id"] == "task-1"

    def test_configure_logging_quiets_http_libraries(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_logging(level="debug", format_style="json")
            assert root.level == logging.DEBUG
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
