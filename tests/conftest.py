"""Shared fakes standing in for an aiomysql pool."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any, Callable

import pytest

from querysniper.models import DatabaseTarget


class FakeCursor:
    def __init__(self, pool: "FakePool") -> None:
        self._pool = pool
        self._rows: list[dict[str, Any]] = []

    async def __aenter__(self) -> "FakeCursor":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None

    async def execute(self, sql: str, args: tuple[object, ...] | None = None) -> int:
        self._pool.executed.append((sql, args))
        if self._pool.hang is not None:
            await self._pool.hang.wait()
        if sql.startswith("KILL"):
            session_id = int(args[0]) if args else int(sql.split()[1])
            self._pool.kills.append(session_id)
            error = self._pool.kill_errors.get(session_id)
            if error is not None:
                raise error
            return 0
        if "INNODB_TRX" in sql:
            result = self._pool.transaction_rows
        else:
            result = self._pool.query_rows
        if isinstance(result, BaseException):
            raise result
        self._rows = list(result)
        return len(self._rows)

    async def fetchall(self) -> list[dict[str, Any]]:
        return self._rows


class FakeConnection:
    def __init__(self, pool: "FakePool") -> None:
        self._pool = pool

    def cursor(self, *cursor_types: object) -> FakeCursor:
        self._pool.cursor_types.append(cursor_types)
        return FakeCursor(self._pool)


class _Acquire:
    def __init__(self, pool: "FakePool") -> None:
        self._pool = pool

    async def __aenter__(self) -> FakeConnection:
        self._pool.acquired += 1
        return FakeConnection(self._pool)

    async def __aexit__(self, *exc_info: object) -> None:
        return None


class FakePool:
    """Records statements and serves canned rows keyed by hunter type."""

    def __init__(
        self,
        *,
        query_rows: list[dict[str, Any]] | BaseException | None = None,
        transaction_rows: list[dict[str, Any]] | BaseException | None = None,
        kill_errors: dict[int, BaseException] | None = None,
        hang: asyncio.Event | None = None,
    ) -> None:
        self.query_rows = query_rows if query_rows is not None else []
        self.transaction_rows = transaction_rows if transaction_rows is not None else []
        self.kill_errors = kill_errors or {}
        self.hang = hang
        self.executed: list[tuple[str, tuple[object, ...] | None]] = []
        self.kills: list[int] = []
        self.cursor_types: list[tuple[object, ...]] = []
        self.acquired = 0
        self.closed = False

    def acquire(self) -> _Acquire:
        return _Acquire(self)

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None

    @property
    def hunts(self) -> list[str]:
        return [sql for sql, _ in self.executed if not sql.startswith("KILL")]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_pool() -> Callable[..., FakePool]:
    return FakePool


@pytest.fixture
def make_target() -> Callable[..., DatabaseTarget]:
    def _make(name: str = "primary", **overrides: Any) -> DatabaseTarget:
        values: dict[str, Any] = {
            "name": name,
            "host": "127.0.0.1",
            "port": 3306,
            "username": "sniper",
            "password": "secret",
            "schema": "production",
            "interval": timedelta(seconds=30),
            "query_limit": timedelta(seconds=60),
            "transaction_limit": timedelta(seconds=120),
            "dry_run": False,
        }
        values.update(overrides)
        return DatabaseTarget(**values)

    return _make
