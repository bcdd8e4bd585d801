"""Pooled MySQL connection handles for snipers."""

from __future__ import annotations

import ssl
from typing import Literal

import aiomysql

from .models import DatabaseTarget

TlsMode = Literal["ca", "mutual"]


class ConnectionBackendError(RuntimeError):
    """Raised when a connection handle cannot be constructed."""


def tls_mode(ca: str | None, cert: str | None, key: str | None) -> TlsMode | None:
    """Decide which TLS mode, if any, the given certificate paths enable.

    CA only gives an encrypted connection without a client certificate, and
    all three give mutual TLS. Any other partial combination is ignored and the
    connection is made without TLS.
    """

    if ca and not cert and not key:
        return "ca"
    if ca and cert and key:
        return "mutual"
    return None


def ssl_context(ca: str | None, cert: str | None, key: str | None) -> ssl.SSLContext | None:
    """Build the SSL context for :func:`tls_mode`, or ``None`` when TLS is off."""

    mode = tls_mode(ca, cert, key)
    if mode is None:
        return None
    context = ssl.create_default_context(cafile=ca)
    if mode == "mutual":
        context.load_cert_chain(certfile=cert, keyfile=key)
    return context


async def create_pool(target: DatabaseTarget) -> aiomysql.Pool:
    """Build a single-connection pool for the target.

    No connection is opened here; an unreachable server only surfaces on the
    first query.
    """

    try:
        context = ssl_context(target.ssl_ca, target.ssl_cert, target.ssl_key)
    except (OSError, ssl.SSLError) as exc:
        raise ConnectionBackendError(f"Failed to load TLS material for '{target.name}': {exc}") from exc
    kwargs: dict[str, object] = {
        "host": target.host,
        "port": target.port,
        "user": target.username,
        "password": target.password,
        "autocommit": True,
        "minsize": 0,
        "maxsize": 1,
    }
    if context is not None:
        kwargs["ssl"] = context
    try:
        return await aiomysql.create_pool(**kwargs)
    except Exception as exc:
        raise ConnectionBackendError(f"Failed to build connection pool for '{target.name}': {exc}") from exc


__all__ = [
    "ConnectionBackendError",
    "TlsMode",
    "create_pool",
    "ssl_context",
    "tls_mode",
]
