"""Root logger setup for the agent (JSON or key=value text)."""

from __future__ import annotations

import json
import logging
import platform
import sys
from datetime import datetime, timezone
from typing import IO

from .config import LogConfig

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LEVELS: dict[str, int] = {
    "TRACE": TRACE,
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "FATAL": logging.CRITICAL,
}

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


def resolve_level(name: str) -> int:
    """Map a configured level name to a logging level, defaulting to INFO."""

    return LEVELS.get(name.strip().upper(), logging.INFO)


def record_fields(record: logging.LogRecord) -> dict[str, object]:
    """Return the structured fields attached to ``record`` via ``extra``."""

    return {key: value for key, value in vars(record).items() if key not in _RESERVED}


def _timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="seconds")


class JsonFormatter(logging.Formatter):
    """One JSON object per line: time, level, msg, source and the extra fields."""

    def __init__(self, *, include_caller: bool = False) -> None:
        super().__init__()
        self._include_caller = include_caller

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "time": _timestamp(record),
            "level": record.levelname,
            "msg": record.getMessage(),
        }
        if self._include_caller:
            payload["source"] = f"{record.pathname}:{record.lineno}"
        for key, value in record_fields(record).items():
            # base keys win; a colliding extra such as the elapsed "time" is kept under a prefix
            payload[f"extra.{key}" if key in payload else key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """Human readable ``time LEVEL msg key=value ...`` lines."""

    def __init__(self, *, include_caller: bool = False) -> None:
        super().__init__()
        self._include_caller = include_caller

    def format(self, record: logging.LogRecord) -> str:
        parts = [_timestamp(record), f"{record.levelname:<5}"]
        if self._include_caller:
            parts.append(f"{record.filename}:{record.lineno}")
        parts.append(record.getMessage())
        for key, value in record_fields(record).items():
            text = str(value)
            if not text or any(char.isspace() for char in text):
                text = json.dumps(text)
            parts.append(f"{key}={text}")
        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(config: LogConfig, stream: IO[str] | None = None) -> logging.Handler:
    """Replace the root logger's handlers with one configured from ``config``."""

    if config.format.strip().upper() == "JSON":
        formatter: logging.Formatter = JsonFormatter(include_caller=config.include_caller)
    else:
        formatter = TextFormatter(include_caller=config.include_caller)
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)
    root = logging.getLogger()
    for existing in tuple(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(resolve_level(config.level))
    return handler


def log_build_info(logger: logging.Logger | None = None) -> None:
    """Log interpreter and package version details at startup."""

    from . import __version__

    (logger or logging.getLogger(__name__)).info(
        "build info",
        extra={
            "version": __version__,
            "python": platform.python_version(),
            "implementation": platform.python_implementation(),
            "platform": platform.platform(),
        },
    )


__all__ = [
    "JsonFormatter",
    "LEVELS",
    "TRACE",
    "TextFormatter",
    "log_build_info",
    "record_fields",
    "resolve_level",
    "setup_logging",
]
