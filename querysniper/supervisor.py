"""Fan-out/fan-in of monitoring loops across all configured databases."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Iterable, Protocol

from .config import AppConfig, ConfigurationError
from .metrics import MetricsSink, NullMetrics
from .models import DatabaseTarget
from .monitor import Monitor

LOG = logging.getLogger(__name__)


class MonitorFactory(Protocol):
    def __call__(
        self,
        target: DatabaseTarget,
        *,
        safe_mode: bool,
        logger: logging.Logger,
        metrics: MetricsSink,
    ) -> Awaitable[Monitor]: ...


class Supervisor:
    """Builds one :class:`Monitor` per target and runs them all until cancelled."""

    def __init__(
        self,
        targets: Iterable[DatabaseTarget],
        *,
        safe_mode: bool = False,
        logger: logging.Logger | None = None,
        metrics: MetricsSink | None = None,
        monitor_factory: MonitorFactory | None = None,
    ) -> None:
        self._targets = tuple(targets)
        self._safe_mode = safe_mode
        self._log = logger or LOG
        self._metrics = metrics or NullMetrics()
        self._monitor_factory: MonitorFactory = monitor_factory or Monitor.create

    @classmethod
    def from_config(
        cls,
        settings: AppConfig,
        *,
        logger: logging.Logger | None = None,
        metrics: MetricsSink | None = None,
        monitor_factory: MonitorFactory | None = None,
    ) -> Supervisor:
        """Resolve every configured database, skipping entries that cannot be resolved."""

        log = logger or LOG
        targets: list[DatabaseTarget] = []
        for name in settings.databases:
            try:
                targets.append(settings.target(name))
            except ConfigurationError as exc:
                log.error("Error resolving database target", extra={"db": name, "err": str(exc)})
        return cls(
            targets,
            safe_mode=settings.safe_mode,
            logger=log,
            metrics=metrics,
            monitor_factory=monitor_factory,
        )

    @property
    def targets(self) -> tuple[DatabaseTarget, ...]:
        return self._targets

    async def run(self, cancelled: asyncio.Event) -> list[Monitor]:
        """Run every loop concurrently and return once all of them have stopped."""

        monitors = await self._create_monitors()
        if not monitors:
            self._log.warning("No snipers could be created; nothing to do")
            return monitors
        try:
            results = await asyncio.gather(
                *(monitor.run(cancelled) for monitor in monitors),
                return_exceptions=True,
            )
            for monitor, result in zip(monitors, results):
                if isinstance(result, BaseException):
                    self._log.error(
                        "Sniper loop exited unexpectedly",
                        exc_info=result,
                        extra={"db": monitor.name},
                    )
        finally:
            await self._close(monitors)
        return monitors

    async def _create_monitors(self) -> list[Monitor]:
        monitors: list[Monitor] = []
        for target in self._targets:
            try:
                monitor = await self._monitor_factory(
                    target,
                    safe_mode=self._safe_mode,
                    logger=self._log,
                    metrics=self._metrics,
                )
            except Exception as exc:
                self._log.error("Error creating sniper", extra={"db": target.name, "err": str(exc)})
                continue
            monitors.append(monitor)
        return monitors

    async def _close(self, monitors: Iterable[Monitor]) -> None:
        for monitor in monitors:
            try:
                await monitor.close()
            except Exception:  # pragma: no cover - best effort cleanup
                self._log.exception("Failed to close sniper pool", extra={"db": monitor.name})


__all__ = ["MonitorFactory", "Supervisor"]
