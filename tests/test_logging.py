# tests/test_logging.py
"""Tests for console helpers and structlog file configuration."""

import json
import logging
import logging.handlers
from pathlib import Path

import pytest
import structlog

from sysmeter import logging as console
from sysmeter.config import Config


@pytest.fixture
def restore_logging():
    """Undo configure(): root handlers, level and structlog defaults."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def test_usage_color_thresholds():
    assert console.usage_color(10) == "green"
    assert console.usage_color(60) == "bright_yellow"
    assert console.usage_color(95) == "bright_red"


def test_info_line_has_level_and_message(capsys):
    console.info("hello world", console.Icon.OK)
    out = capsys.readouterr().out
    assert "[info]" in out
    assert "hello world" in out
    assert "✓" in out


def test_error_line(capsys):
    console.process_kill_failed(4242, "access denied")
    out = capsys.readouterr().out
    assert "[err]" in out
    assert "4242" in out
    assert "access denied" in out


def test_heartbeat_line(capsys):
    console.heartbeat(12.34, 56.78, 321, 60, 42.0)
    out = capsys.readouterr().out
    assert "cpu 12.3%" in out
    assert "mem 56.8%" in out
    assert "321 procs" in out


def test_config_summary_line(capsys):
    console.config_summary({"cpu": 1.0, "disk": 2.5}, 60)
    out = capsys.readouterr().out
    assert "1/2.5" in out
    assert "history=60" in out


def test_configure_writes_json_lines(isolated_home: Path, restore_logging):
    """configure() routes stdlib records to a rotating JSON file."""
    config = Config()
    console.configure(config, source="test")

    root = logging.getLogger()
    handlers = [h for h in root.handlers if isinstance(h, logging.handlers.RotatingFileHandler)]
    assert len(handlers) == 1
    assert handlers[0].maxBytes == config.system.log_max_bytes
    assert handlers[0].backupCount == config.system.log_backup_count

    logging.getLogger("sysmeter.test").warning("disk_full")
    handlers[0].flush()

    lines = config.log_path.read_text().splitlines()
    record = json.loads(lines[-1])
    assert record["event"] == "disk_full"
    assert record["level"] == "warning"
    assert record["source"] == "test"
    assert "ts" in record
