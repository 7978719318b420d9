"""Tests for logger.py: setup_logging() and JsonFormatter.

basicConfig is patched throughout; pytest's log capture already owns the
root logger, so a real call would be a no-op.
"""

import json
import logging
import sys
from unittest.mock import patch

import pytest

from openxml_editor.logger import DEFAULT_LOG_FILE, JsonFormatter, setup_logging


@pytest.fixture
def basic_config():
    with patch("openxml_editor.logger.logging.basicConfig") as mock_basic:
        yield mock_basic


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("LOG_FILE", raising=False)


def _record(msg="Hello %s", args=("world",), exc_info=None, level=logging.INFO):
    return logging.LogRecord(
        name="openxml_editor.archive.engine",
        level=level,
        pathname="engine.py",
        lineno=1,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )


class TestSetupLogging:
    def test_mcp_mode_never_uses_stderr(self, basic_config):
        setup_logging(mode="mcp")

        kwargs = basic_config.call_args.kwargs
        assert kwargs["filename"] == DEFAULT_LOG_FILE
        assert "handlers" not in kwargs
        assert kwargs["level"] == logging.WARNING

    def test_mcp_mode_log_file_precedence(self, basic_config, monkeypatch, tmp_path):
        monkeypatch.setenv("LOG_FILE", str(tmp_path / "env.log"))

        setup_logging(mode="mcp")
        assert basic_config.call_args.kwargs["filename"] == str(tmp_path / "env.log")

        setup_logging(mode="mcp", log_file=str(tmp_path / "arg.log"))
        assert basic_config.call_args.kwargs["filename"] == str(tmp_path / "arg.log")

    def test_cli_mode_logs_to_stderr(self, basic_config):
        setup_logging(mode="cli")

        kwargs = basic_config.call_args.kwargs
        (handler,) = kwargs["handlers"]
        assert handler.stream is sys.stderr
        assert kwargs["level"] == logging.INFO

    def test_cli_mode_with_log_file(self, basic_config, tmp_path):
        setup_logging(mode="cli", log_file=str(tmp_path / "cli.log"))

        handlers = basic_config.call_args.kwargs["handlers"]
        file_handlers = [h for h in handlers if isinstance(h, logging.FileHandler)]
        assert len(handlers) == 2
        assert len(file_handlers) == 1
        for h in file_handlers:
            h.close()

    @pytest.mark.parametrize(
        "env, debug, expected",
        [
            ("ERROR", False, logging.ERROR),
            ("ERROR", True, logging.DEBUG),
            ("bogus", False, logging.INFO),
        ],
    )
    def test_level_resolution(self, basic_config, monkeypatch, env, debug, expected):
        monkeypatch.setenv("LOG_LEVEL", env)

        setup_logging(mode="cli", debug=debug)

        assert basic_config.call_args.kwargs["level"] == expected

    def test_json_format(self, basic_config):
        setup_logging(mode="cli", debug_format="json")

        (handler,) = basic_config.call_args.kwargs["handlers"]
        assert isinstance(handler.formatter, JsonFormatter)

    def test_noisy_libraries_quieted(self, basic_config):
        setup_logging(mode="cli")

        assert logging.getLogger("watchdog").level == logging.WARNING
        assert logging.getLogger("mcp").level == logging.WARNING


class TestJsonFormatter:
    def test_fields(self):
        data = json.loads(JsonFormatter().format(_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "openxml_editor.archive.engine"
        assert data["msg"] == "Hello world"
        assert "ts" in data
        assert "exc" not in data

    def test_exception_is_single_line(self):
        try:
            raise ValueError("bad zip")
        except ValueError:
            exc_info = sys.exc_info()

        output = JsonFormatter().format(
            _record("Save failed", (), exc_info, logging.ERROR)
        )

        assert "\n" not in output
        assert "bad zip" in json.loads(output)["exc"]
