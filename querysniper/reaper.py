"""Detection and termination of long running sessions."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Iterable, Mapping, TypeVar

import aiomysql

from .metrics import REASON_LONG_QUERY, REASON_LONG_TRANSACTION, MetricsSink, NullMetrics
from .models import QuerySession, TransactionSession

LOG = logging.getLogger(__name__)

KILL_STATEMENT = "KILL %s"

T = TypeVar("T")


class ReaperError(RuntimeError):
    """Base class for detection and termination failures."""


class QueryError(ReaperError):
    """Raised when a hunter query fails to execute."""


class ScanError(ReaperError):
    """Raised when a result row cannot be decoded into a session record."""


class TerminationError(ReaperError):
    """Raised when a single KILL statement fails."""


class OperationAbandoned(ReaperError):
    """Raised when cancellation fires while a database call is in flight."""


class SessionReaper:
    """Runs hunter queries for one database and kills what they find."""

    def __init__(
        self,
        name: str,
        pool: aiomysql.Pool,
        *,
        dry_run: bool = False,
        logger: logging.Logger | None = None,
        metrics: MetricsSink | None = None,
    ) -> None:
        self._name = name
        self._pool = pool
        self._dry_run = dry_run
        self._log = logger or LOG
        self._metrics = metrics or NullMetrics()

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    async def find_long_running_queries(
        self,
        query: str,
        cancelled: asyncio.Event | None = None,
    ) -> list[QuerySession]:
        """Return processlist rows matching the long running query hunter."""

        rows = await self._fetch(query, cancelled, "long running queries")
        sessions: list[QuerySession] = []
        for row in rows:
            try:
                sessions.append(
                    QuerySession(
                        id=int(row["id"]),
                        user=_text(row.get("user")),
                        schema=_text(row.get("current_schema")),
                        command=_text(row["command"]),
                        time=int(row["time"]),
                        digest_text=_text(row.get("digest_text")),
                    )
                )
            except (KeyError, TypeError, ValueError) as exc:
                raise ScanError(f"error scanning row: {exc!r}") from exc
        return sessions

    async def find_long_running_transactions(
        self,
        query: str,
        cancelled: asyncio.Event | None = None,
    ) -> list[TransactionSession]:
        """Return InnoDB transactions matching the long running transaction hunter."""

        rows = await self._fetch(query, cancelled, "long running transactions")
        sessions: list[TransactionSession] = []
        for row in rows:
            try:
                sessions.append(
                    TransactionSession(
                        trx_id=int(row["trx_id"]),
                        process_id=int(row["process_id"]),
                        state=_text(row.get("trx_state")),
                        time=int(row["time"]),
                        user=_text(row.get("user")),
                        schema=_text(row.get("current_schema")),
                        command=_text(row.get("command")),
                        digest_text=_text(row.get("digest_text")),
                    )
                )
            except (KeyError, TypeError, ValueError) as exc:
                raise ScanError(f"error scanning row: {exc!r}") from exc
        return sessions

    async def kill_processes(
        self,
        sessions: Iterable[QuerySession],
        cancelled: asyncio.Event | None = None,
    ) -> int:
        """Kill (or, in dry run, log) each session; returns how many were handled."""

        killed = 0
        for session in sessions:
            if session.id <= 0:
                continue
            fields = {
                "db": self._name,
                "user": session.user,
                "dry_run": self._dry_run,
                "time": session.time,
                "process_id": session.id,
                "command": session.command,
                "schema": session.schema,
                "digest_text": session.digest_text,
            }
            if self._dry_run:
                self._log.info("DRY RUN - Would kill mysql process", extra=fields)
                killed += 1
                continue
            try:
                await self._kill(session.id, cancelled)
            except TerminationError as exc:
                self._log.error("Error killing mysql process", extra={**fields, "err": str(exc)})
                continue
            # digest_text rather than the raw query keeps literal values out of the logs
            self._log.info("Killed mysql process", extra=fields)
            self._metrics.record_session_killed(self._name, REASON_LONG_QUERY, session.command, session.time)
            killed += 1
        return killed

    async def kill_transactions(
        self,
        sessions: Iterable[TransactionSession],
        cancelled: asyncio.Event | None = None,
    ) -> int:
        """Kill the process backing each transaction; returns how many were handled."""

        killed = 0
        for session in sessions:
            if session.trx_id <= 0 or session.process_id <= 0:
                continue
            fields = {
                "db": self._name,
                "user": session.user,
                "dry_run": self._dry_run,
                "time": session.time,
                "trx_id": session.trx_id,
                "process_id": session.process_id,
                "trx_state": session.state,
                "command": session.command,
                "schema": session.schema,
                "digest_text": session.digest_text,
            }
            if self._dry_run:
                self._log.info("DRY RUN - Would kill mysql transaction", extra=fields)
                killed += 1
                continue
            try:
                await self._kill(session.process_id, cancelled)
            except TerminationError as exc:
                self._log.error("Error killing mysql transaction", extra={**fields, "err": str(exc)})
                continue
            self._log.info("Killed mysql transaction", extra=fields)
            self._metrics.record_session_killed(
                self._name, REASON_LONG_TRANSACTION, session.command, session.time
            )
            killed += 1
        return killed

    async def _fetch(
        self,
        query: str,
        cancelled: asyncio.Event | None,
        label: str,
    ) -> list[Mapping[str, Any]]:
        try:
            return await _abandon_on_cancel(self._fetch_rows(query), cancelled)
        except Exception as exc:
            raise QueryError(f"error getting {label}: {exc}") from exc

    async def _fetch_rows(self, query: str) -> list[Mapping[str, Any]]:
        async with self._pool.acquire() as conn:
            async with conn.cursor(aiomysql.DictCursor) as cursor:
                await cursor.execute(query)
                return list(await cursor.fetchall())

    async def _kill(self, session_id: int, cancelled: asyncio.Event | None) -> None:
        try:
            await _abandon_on_cancel(self._execute_kill(session_id), cancelled)
        except Exception as exc:
            raise TerminationError(f"KILL {session_id} failed: {exc}") from exc

    async def _execute_kill(self, session_id: int) -> None:
        async with self._pool.acquire() as conn:
            async with conn.cursor() as cursor:
                await cursor.execute(KILL_STATEMENT, (session_id,))


async def _abandon_on_cancel(work: Awaitable[T], cancelled: asyncio.Event | None) -> T:
    """Await ``work`` unless ``cancelled`` fires first, in which case it is cancelled."""

    if cancelled is None:
        return await work
    task = asyncio.ensure_future(work)
    waiter = asyncio.ensure_future(cancelled.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()
    if task in done:
        return task.result()
    task.cancel()
    raise OperationAbandoned("operation abandoned: shutdown in progress")


def _text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


__all__ = [
    "KILL_STATEMENT",
    "OperationAbandoned",
    "QueryError",
    "ReaperError",
    "ScanError",
    "SessionReaper",
    "TerminationError",
]
