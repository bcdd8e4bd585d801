"""Per-database monitoring loop."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable

import aiomysql

from .connections import create_pool
from .metrics import MetricsSink, NullMetrics
from .models import DatabaseTarget
from .queries import HunterQueries, build_hunter_queries
from .reaper import QueryError, ScanError, SessionReaper

LOG = logging.getLogger(__name__)

PoolFactory = Callable[[DatabaseTarget], Awaitable[aiomysql.Pool]]


class Ticker:
    """Fixed-cadence ticker anchored at its start time.

    Ticks land on ``start + k * interval``. Ticks that would have fired while
    the consumer was busy are dropped rather than queued.
    """

    def __init__(self, interval: timedelta, *, clock: Callable[[], float] | None = None) -> None:
        seconds = interval.total_seconds()
        if seconds <= 0:
            raise ValueError(f"Ticker interval must be positive, got {interval}")
        self._interval = seconds
        self._clock = clock or asyncio.get_running_loop().time
        self._deadline = self._clock() + seconds
        self._stopped = False

    @property
    def deadline(self) -> float:
        return self._deadline

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def wait(self, cancelled: asyncio.Event) -> bool:
        """Sleep until the next tick; return ``False`` if ``cancelled`` fires first."""

        if self._stopped or cancelled.is_set():
            return False
        timeout = max(0.0, self._deadline - self._clock())
        try:
            await asyncio.wait_for(cancelled.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            self.advance()
            return True
        return False

    def advance(self) -> None:
        now = self._clock()
        self._deadline += self._interval
        while self._deadline <= now:
            self._deadline += self._interval

    def stop(self) -> None:
        self._stopped = True


class Monitor:
    """Owns one database's pool and hunter queries and runs its loop."""

    def __init__(
        self,
        target: DatabaseTarget,
        pool: aiomysql.Pool,
        queries: HunterQueries,
        *,
        dry_run: bool,
        logger: logging.Logger | None = None,
        metrics: MetricsSink | None = None,
    ) -> None:
        self._target = target
        self._pool = pool
        self._queries = queries
        self._dry_run = dry_run
        self._log = logger or LOG
        self._reaper = SessionReaper(
            target.name,
            pool,
            dry_run=dry_run,
            logger=self._log,
            metrics=metrics or NullMetrics(),
        )

    @classmethod
    async def create(
        cls,
        target: DatabaseTarget,
        *,
        safe_mode: bool = False,
        logger: logging.Logger | None = None,
        metrics: MetricsSink | None = None,
        pool_factory: PoolFactory = create_pool,
    ) -> Monitor:
        """Compile the hunter queries and open the pool for ``target``.

        Global safe mode overrides a per-database ``dry_run = false``.
        """

        log = logger or LOG
        queries = build_hunter_queries(target.query_limit, target.transaction_limit, target.schema)
        pool = await pool_factory(target)
        monitor = cls(
            target,
            pool,
            queries,
            dry_run=target.dry_run or safe_mode,
            logger=log,
            metrics=metrics,
        )
        log.info(
            "Created new sniper",
            extra={
                "db": target.name,
                "address": target.address,
                "username": target.username,
                "schema": target.schema,
                "interval": target.interval.total_seconds(),
                "query_limit": target.query_limit.total_seconds(),
                "transaction_limit": target.transaction_limit.total_seconds(),
                "dry_run": monitor.dry_run,
                "safe_mode_active": safe_mode,
                "lrq_query": queries.queries,
                "lrtxn_query": queries.transactions,
            },
        )
        return monitor

    @property
    def name(self) -> str:
        return self._target.name

    @property
    def target(self) -> DatabaseTarget:
        return self._target

    @property
    def queries(self) -> HunterQueries:
        return self._queries

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    @property
    def pool(self) -> aiomysql.Pool:
        return self._pool

    async def run(self, cancelled: asyncio.Event) -> None:
        """Hunt on every tick until ``cancelled`` is set."""

        ticker = Ticker(self._target.interval)
        while await ticker.wait(cancelled):
            await self.tick(cancelled)
        self._log.debug("Cancellation received, stopping ticker", extra={"db": self.name})
        ticker.stop()

    async def tick(self, cancelled: asyncio.Event | None = None) -> tuple[int, int]:
        """Run one query pass and one transaction pass; return handled counts."""

        return (
            await self._hunt_queries(cancelled),
            await self._hunt_transactions(cancelled),
        )

    async def close(self) -> None:
        """Close the pool and wait for its connections to go away."""

        self._pool.close()
        await self._pool.wait_closed()

    async def _hunt_queries(self, cancelled: asyncio.Event | None) -> int:
        try:
            sessions = await self._reaper.find_long_running_queries(self._queries.queries, cancelled)
        except (QueryError, ScanError) as exc:
            self._log.error(
                "Error finding long running queries",
                extra={"db": self.name, "query": self._queries.queries, "err": str(exc)},
            )
            return 0
        if not sessions:
            return 0
        return await self._reaper.kill_processes(sessions, cancelled)

    async def _hunt_transactions(self, cancelled: asyncio.Event | None) -> int:
        try:
            sessions = await self._reaper.find_long_running_transactions(
                self._queries.transactions, cancelled
            )
        except (QueryError, ScanError) as exc:
            self._log.error(
                "Error finding long running transactions",
                extra={"db": self.name, "query": self._queries.transactions, "err": str(exc)},
            )
            return 0
        if not sessions:
            return 0
        return await self._reaper.kill_transactions(sessions, cancelled)


__all__ = ["Monitor", "PoolFactory", "Ticker"]
