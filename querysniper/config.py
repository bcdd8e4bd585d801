"""Configuration loading, merging and validation."""

from __future__ import annotations

import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Mapping

import tomllib
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, field_validator

from .models import DatabaseTarget

CONFIG_ENV = "SNIPER_CONFIG_FILE"
CREDENTIALS_ENV = "SNIPER_CREDS_FILE"
CONFIG_SEARCH_PATHS = (Path("config.toml"), Path("configs") / "config.toml")
DEFAULT_PORT = 3306
REDACTED = "[REDACTED]"

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


class ConfigurationError(ValueError):
    """Raised when configuration is missing or malformed."""


def parse_duration(value: object) -> timedelta:
    """Parse a Go style duration ("1m30s", "1500ms") or a number of seconds."""

    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    if not isinstance(value, str):
        raise ValueError(f"invalid duration {value!r}")
    text = value.strip()
    sign = 1.0
    if text[:1] in {"+", "-"}:
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if text == "0":
        return timedelta(0)
    if not text:
        raise ValueError(f"invalid duration {value!r}")
    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            raise ValueError(f"invalid duration {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return timedelta(seconds=sign * total)


def format_duration(value: timedelta) -> str:
    seconds = value.total_seconds()
    if seconds == int(seconds):
        return f"{int(seconds)}s"
    return f"{int(round(seconds * 1000))}ms"


def parse_address(address: str, port: int | None = None) -> tuple[str, int]:
    """Split ``host:port`` (or a bare host plus ``port``) into its parts."""

    address = address.strip()
    if not address:
        raise ConfigurationError("empty address")
    port_text = ""
    if address.startswith("["):
        host, _, rest = address[1:].partition("]")
        if rest.startswith(":"):
            port_text = rest[1:]
    elif address.count(":") == 1:
        host, port_text = address.split(":")
    else:
        host = address
    if not host:
        raise ConfigurationError(f"address {address!r} is missing a host")
    if port_text:
        try:
            resolved = int(port_text)
        except ValueError as exc:
            raise ConfigurationError(f"address {address!r} has an invalid port") from exc
    else:
        resolved = port if port is not None else DEFAULT_PORT
    if not 0 < resolved < 65536:
        raise ConfigurationError(f"port {resolved} is out of range for address {address!r}")
    return host, resolved


class LogConfig(BaseModel):
    """Logger settings consumed by :func:`querysniper.logsetup.setup_logging`."""

    format: str = "JSON"
    level: str = "INFO"
    include_caller: bool = False


class DatabaseConfig(BaseModel):
    """One ``[databases.<name>]`` table."""

    model_config = ConfigDict(populate_by_name=True)

    address: str = ""
    port: int | None = None
    schema_name: str = Field(default="", alias="schema")
    username: str = ""
    password: str = ""
    ssl_ca: str | None = None
    ssl_cert: str | None = None
    ssl_key: str | None = None
    interval: timedelta = timedelta(0)
    long_query_limit: timedelta = timedelta(0)
    long_transaction_limit: timedelta = timedelta(0)
    dry_run: bool = False

    @field_validator("interval", "long_query_limit", "long_transaction_limit", mode="before")
    @classmethod
    def _parse_durations(cls, value: object) -> timedelta:
        return parse_duration(value)

    @field_serializer("interval", "long_query_limit", "long_transaction_limit")
    def _format_durations(self, value: timedelta) -> str:
        return format_duration(value)


class AppConfig(BaseModel):
    """Shape of the agent configuration after merging credentials."""

    model_config = ConfigDict(populate_by_name=True)

    databases: dict[str, DatabaseConfig] = Field(default_factory=dict)
    credential_file: str | None = None
    log: LogConfig = Field(default_factory=LogConfig)
    safe_mode: bool = Field(default=False, alias="safe-mode")
    telemetry_enabled: bool = False

    def ensure_valid(self) -> None:
        """Raise :class:`ConfigurationError` for the first invalid database entry."""

        if not self.databases:
            raise ConfigurationError("no databases have been configured")
        for name, db in self.databases.items():
            if not db.username:
                raise ConfigurationError(f"username is missing for database {name}")
            if not db.password:
                raise ConfigurationError(f"password is missing for database {name}")
            if not db.address:
                raise ConfigurationError(f"address is missing for database {name}")
            if db.interval <= timedelta(0):
                raise ConfigurationError(f"interval {db.interval} is invalid for database {name}")
            if db.long_query_limit <= timedelta(0):
                raise ConfigurationError(
                    f"long_query_limit {db.long_query_limit} is invalid for database {name}"
                )
            if db.long_transaction_limit < timedelta(0):
                raise ConfigurationError(
                    f"long_transaction_limit {db.long_transaction_limit} is invalid for database {name}"
                )

    def target(self, name: str) -> DatabaseTarget:
        """Resolve the named entry into a :class:`DatabaseTarget`."""

        db = self.databases.get(name)
        if db is None:
            raise ConfigurationError(f"database '{name}' is not configured")
        host, port = parse_address(db.address, db.port)
        return DatabaseTarget(
            name=name,
            host=host,
            port=port,
            username=db.username,
            password=db.password,
            schema=db.schema_name,
            interval=db.interval,
            query_limit=db.long_query_limit,
            transaction_limit=db.long_transaction_limit,
            dry_run=db.dry_run,
            ssl_ca=db.ssl_ca or None,
            ssl_cert=db.ssl_cert or None,
            ssl_key=db.ssl_key or None,
        )

    def redact(self) -> AppConfig:
        """Return a copy with every password replaced, for printing."""

        databases = {
            name: db.model_copy(update={"password": REDACTED})
            for name, db in self.databases.items()
        }
        return self.model_copy(update={"databases": databases})

    def with_overrides(
        self,
        *,
        safe_mode: bool | None = None,
        log_format: str | None = None,
        log_level: str | None = None,
        include_caller: bool | None = None,
    ) -> AppConfig:
        """Return a copy with command line overrides applied."""

        log_updates: dict[str, object] = {}
        if log_format is not None:
            log_updates["format"] = log_format
        if log_level is not None:
            log_updates["level"] = log_level
        if include_caller is not None:
            log_updates["include_caller"] = include_caller
        updates: dict[str, object] = {}
        if log_updates:
            updates["log"] = self.log.model_copy(update=log_updates)
        if safe_mode is not None:
            updates["safe_mode"] = safe_mode
        return self.model_copy(update=updates)


def load_config(
    config_file: str | Path | None = None,
    credentials_file: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> AppConfig:
    """Load the config file, merge the credentials file over it and validate."""

    env = os.environ if environ is None else environ
    explicit = config_file or env.get(CONFIG_ENV)
    data: dict[str, Any] = {}
    if explicit:
        data = _read_toml(Path(explicit))
    else:
        found = _find_config_file()
        if found is not None:
            data = _read_toml(found)

    credentials = credentials_file or env.get(CREDENTIALS_ENV) or data.get("credential_file")
    if not credentials:
        raise ConfigurationError("no credentials file specified")
    merged = _deep_merge(data, _read_toml(Path(str(credentials))))

    try:
        settings = AppConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigurationError(f"error unmarshalling config: {exc}") from exc
    settings.ensure_valid()
    return settings


def _find_config_file() -> Path | None:
    for candidate in CONFIG_SEARCH_PATHS:
        if candidate.is_file():
            return candidate
    return None


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigurationError(f"error reading config file {path}: {exc}") from exc


def _deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged: dict[str, Any] = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


__all__ = [
    "AppConfig",
    "CONFIG_ENV",
    "CREDENTIALS_ENV",
    "ConfigurationError",
    "DatabaseConfig",
    "LogConfig",
    "format_duration",
    "load_config",
    "parse_address",
    "parse_duration",
]
