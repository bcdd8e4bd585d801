"""Metric sinks for killed session counters."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Protocol, runtime_checkable

from opentelemetry import metrics

LOG = logging.getLogger(__name__)

METER_NAME = "querysniper"
QUERIES_KILLED = "query_sniper.queries_killed_total"

REASON_LONG_QUERY = "long_running_query"
REASON_LONG_TRANSACTION = "long_running_transaction"


@runtime_checkable
class MetricsSink(Protocol):
    """Protocol implemented by metric sinks."""

    def record_session_killed(self, database: str, reason: str, command: str, duration: int) -> None:
        """Count one terminated session."""


class NullMetrics:
    """Sink that drops every measurement."""

    def record_session_killed(self, database: str, reason: str, command: str, duration: int) -> None:
        return None


class InMemoryMetrics:
    """Sink that tallies kills per (database, reason, command); handy in tests."""

    def __init__(self) -> None:
        self.killed: Counter[tuple[str, str, str]] = Counter()
        self.durations: list[int] = []

    def record_session_killed(self, database: str, reason: str, command: str, duration: int) -> None:
        self.killed[(database, reason, command)] += 1
        self.durations.append(duration)

    @property
    def total(self) -> int:
        return sum(self.killed.values())


class OpenTelemetryMetrics:
    """Sink that increments an OpenTelemetry counter.

    Uses whatever meter provider is installed globally; without one the API
    falls back to a no-op provider.
    """

    def __init__(self, meter: metrics.Meter | None = None) -> None:
        self._meter = meter or metrics.get_meter(METER_NAME)
        self._killed = self._meter.create_counter(
            QUERIES_KILLED,
            unit="{query}",
            description="Total number of queries killed by query-sniper",
        )

    def record_session_killed(self, database: str, reason: str, command: str, duration: int) -> None:
        self._killed.add(
            1,
            attributes={"database": database, "reason": reason, "command": command},
        )
        LOG.debug(
            "recorded query_killed metric",
            extra={"database": database, "reason": reason, "command": command, "duration": duration},
        )


__all__ = [
    "InMemoryMetrics",
    "MetricsSink",
    "NullMetrics",
    "OpenTelemetryMetrics",
    "QUERIES_KILLED",
    "REASON_LONG_QUERY",
    "REASON_LONG_TRANSACTION",
]
