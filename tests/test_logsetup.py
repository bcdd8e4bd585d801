"""Tests for log formatting and setup."""

from __future__ import annotations

import io
import json
import logging
from datetime import datetime, timezone

import pytest

from querysniper.config import LogConfig
from querysniper.models import QuerySession
from querysniper.reaper import SessionReaper
from querysniper.logsetup import (
    TRACE,
    JsonFormatter,
    TextFormatter,
    record_fields,
    resolve_level,
    setup_logging,
)


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord("querysniper.reaper", logging.INFO, "/src/reaper.py", 42, "Killed mysql process", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_record_fields_only_returns_extras() -> None:
    record = _record(db="primary", process_id=7)

    assert record_fields(record) == {"db": "primary", "process_id": 7}


def test_json_formatter_includes_extra_fields() -> None:
    line = JsonFormatter().format(_record(db="primary", process_id=7, dry_run=False))

    payload = json.loads(line)
    assert payload["msg"] == "Killed mysql process"
    assert payload["level"] == "INFO"
    assert payload["db"] == "primary"
    assert payload["process_id"] == 7
    assert payload["dry_run"] is False
    assert "source" not in payload


def test_json_formatter_can_include_caller() -> None:
    payload = json.loads(JsonFormatter(include_caller=True).format(_record()))

    assert payload["source"] == "/src/reaper.py:42"


def test_json_formatter_keeps_timestamp_when_extra_uses_base_key() -> None:
    record = _record(db="primary", time=90, level="custom")

    payload = json.loads(JsonFormatter().format(record))

    assert payload["time"] == datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="seconds")
    assert payload["level"] == "INFO"
    assert payload["extra.time"] == 90
    assert payload["extra.level"] == "custom"
    assert payload["db"] == "primary"


@pytest.mark.anyio
async def test_session_events_keep_timestamp_in_json(make_pool, caplog: pytest.LogCaptureFixture) -> None:
    reaper = SessionReaper("primary", make_pool(), dry_run=True)

    with caplog.at_level(logging.INFO, logger="querysniper.reaper"):
        await reaper.kill_processes([QuerySession(id=5, command="Query", time=90)])

    payload = json.loads(JsonFormatter().format(caplog.records[0]))
    assert payload["msg"] == "DRY RUN - Would kill mysql process"
    assert payload["time"] != 90
    assert payload["extra.time"] == 90


def test_text_formatter_renders_key_values() -> None:
    line = TextFormatter().format(_record(db="primary", digest_text="SELECT * FROM t"))

    assert "INFO" in line
    assert "Killed mysql process" in line
    assert "db=primary" in line
    assert 'digest_text="SELECT * FROM t"' in line


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("TRACE", TRACE),
        ("debug", logging.DEBUG),
        ("INFO", logging.INFO),
        ("WARN", logging.WARNING),
        ("ERROR", logging.ERROR),
        ("FATAL", logging.CRITICAL),
        ("bogus", logging.INFO),
    ],
)
def test_resolve_level(name: str, expected: int) -> None:
    assert resolve_level(name) == expected


def test_setup_logging_installs_single_handler() -> None:
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    stream = io.StringIO()
    try:
        handler = setup_logging(LogConfig(format="TEXT", level="DEBUG"), stream=stream)
        logging.getLogger("querysniper.test").debug("hello", extra={"db": "primary"})

        assert root.handlers == [handler]
        assert root.level == logging.DEBUG
        assert isinstance(handler.formatter, TextFormatter)
        assert "hello db=primary" in stream.getvalue()
    finally:
        for existing in list(root.handlers):
            root.removeHandler(existing)
        for existing in saved_handlers:
            root.addHandler(existing)
        root.setLevel(saved_level)
