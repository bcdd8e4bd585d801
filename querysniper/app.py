"""Command line entry point for the query-sniper agent."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from typing import Callable, Sequence

from .config import AppConfig, ConfigurationError, LogConfig, load_config
from .logsetup import log_build_info, setup_logging
from .metrics import MetricsSink, NullMetrics, OpenTelemetryMetrics
from .monitor import Monitor
from .supervisor import Supervisor

LOG = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)
_HANGUP = getattr(signal, "SIGHUP", None)
_USER_SIGNALS = tuple(
    sig for sig in (getattr(signal, "SIGUSR1", None), getattr(signal, "SIGUSR2", None)) if sig is not None
)


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise argparse.ArgumentTypeError(f"expected true or false, got {value!r}")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="query-sniper",
        description="Kill long running MySQL queries and transactions.",
    )
    parser.add_argument(
        "--show-config",
        dest="show_config",
        action="store_true",
        help="Print the redacted configuration and exit",
    )
    parser.add_argument(
        "--safe-mode",
        dest="safe_mode",
        type=_parse_bool,
        nargs="?",
        const=True,
        default=None,
        help="Force dry run on every database, overriding each dry_run setting",
    )
    parser.add_argument(
        "--log.format",
        dest="log_format",
        choices=("JSON", "TEXT"),
        type=str.upper,
        default=None,
        help="Format of the logs (default: JSON)",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default=None,
        help="Log level: TRACE, DEBUG, INFO, WARN, ERROR or FATAL (default: INFO)",
    )
    parser.add_argument(
        "--log.include_caller",
        dest="include_caller",
        type=_parse_bool,
        nargs="?",
        const=True,
        default=None,
        help="Include the caller in the logs",
    )
    return parser.parse_args(argv)


def handle_signal(signum: int, cancelled: asyncio.Event, logger: logging.Logger | None = None) -> None:
    """React to a process signal; only SIGINT and SIGTERM stop the agent."""

    log = logger or LOG
    if signum in SHUTDOWN_SIGNALS:
        log.info(
            "Received shutdown signal, initiating graceful shutdown",
            extra={"signal": signal.Signals(signum).name},
        )
        cancelled.set()
    elif _HANGUP is not None and signum == _HANGUP:
        log.info("Received SIGHUP signal", extra={"signal": "SIGHUP"})
    elif signum in _USER_SIGNALS:
        log.info("Received SIGUSR signal", extra={"signal": signal.Signals(signum).name})
    else:
        log.warning("Received unhandled signal", extra={"signal": signum})


def install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    cancelled: asyncio.Event,
) -> Callable[[], None]:
    """Route process signals to :func:`handle_signal`; returns an uninstall handle."""

    installed: list[int] = []
    hangup = (_HANGUP,) if _HANGUP is not None else ()
    for sig in (*SHUTDOWN_SIGNALS, *hangup, *_USER_SIGNALS):
        try:
            loop.add_signal_handler(sig, handle_signal, sig, cancelled)
        except (NotImplementedError, RuntimeError):  # pragma: no cover - non-unix loops
            continue
        installed.append(sig)

    def _uninstall() -> None:
        for sig in installed:
            loop.remove_signal_handler(sig)

    return _uninstall


async def serve(
    settings: AppConfig,
    *,
    metrics: MetricsSink | None = None,
    cancelled: asyncio.Event | None = None,
) -> list[Monitor]:
    """Run every configured sniper until a shutdown signal arrives.

    Returns the monitors that ran; an empty list means no target could be started.
    """

    stop = cancelled or asyncio.Event()
    uninstall = install_signal_handlers(asyncio.get_running_loop(), stop)
    supervisor = Supervisor.from_config(settings, metrics=metrics)
    try:
        monitors = await supervisor.run(stop)
    finally:
        uninstall()
    LOG.info("QuerySniper shut down")
    return monitors


def build_metrics(settings: AppConfig) -> MetricsSink:
    if settings.telemetry_enabled:
        return OpenTelemetryMetrics()
    return NullMetrics()


def main(argv: Sequence[str] | None = None) -> int:
    """Load configuration, set up logging and run until stopped."""

    args = parse_args(argv)
    setup_logging(LogConfig())
    try:
        settings = load_config()
    except ConfigurationError as exc:
        LOG.error("Error in load_config()", extra={"err": str(exc)})
        return 1
    settings = settings.with_overrides(
        safe_mode=args.safe_mode,
        log_format=args.log_format,
        log_level=args.log_level,
        include_caller=args.include_caller,
    )
    if args.show_config:
        print(settings.redact().model_dump_json(indent=2, by_alias=True))
        return 0

    setup_logging(settings.log)
    log_build_info()
    monitors = asyncio.run(serve(settings, metrics=build_metrics(settings)))
    if not monitors:
        LOG.critical("No database could be monitored, exiting")
        return 1
    return 0


__all__ = [
    "build_metrics",
    "handle_signal",
    "install_signal_handlers",
    "main",
    "parse_args",
    "serve",
]
