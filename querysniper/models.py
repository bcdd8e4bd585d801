"""Shared dataclasses used across the sniper modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta


@dataclass(frozen=True, slots=True)
class DatabaseTarget:
    """Resolved settings for one monitored database."""

    name: str
    host: str
    port: int
    username: str
    password: str = field(repr=False)
    schema: str = ""
    interval: timedelta = timedelta(seconds=30)
    query_limit: timedelta = timedelta(seconds=60)
    transaction_limit: timedelta = timedelta(seconds=0)
    dry_run: bool = False
    ssl_ca: str | None = None
    ssl_cert: str | None = None
    ssl_key: str | None = None

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True, slots=True)
class QuerySession:
    """A processlist row matched by the long running query hunter."""

    id: int
    command: str
    time: int
    user: str = ""
    schema: str = ""
    digest_text: str = ""


@dataclass(frozen=True, slots=True)
class TransactionSession:
    """An InnoDB transaction matched by the long running transaction hunter."""

    trx_id: int
    process_id: int
    time: int
    command: str = ""
    state: str = ""
    user: str = ""
    schema: str = ""
    digest_text: str = ""


__all__ = ["DatabaseTarget", "QuerySession", "TransactionSession"]
