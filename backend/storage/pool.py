"""
Bounded Postgres connection pool for the membership store.

Why:
    Every login attempt performs one lookup; a connection per call (or a single
    shared connection behind a lock) does not hold up under concurrent joins.
    This module wraps `psycopg_pool.ConnectionPool` so the store borrows one
    connection for exactly one round trip and hands it back.

Behavior:
    - `ConnectionPool.open()` probes the backend with a direct connection first
      so unreachable hosts and rejected credentials fail fast with the driver's
      own message, then opens the pool and validates one pooled round trip.
    - `connection()` blocks up to `connection_timeout` and maps psycopg_pool
      failures onto `storage.errors` types.
    - Idle/lifetime retirement is handled by psycopg_pool (`max_idle`,
      `max_lifetime`) and is invisible to callers.
    - `close()` is idempotent. Connections still lent out are closed when they
      are returned, so in-flight operations on a swapped-out pool complete.

Security:
    The conninfo carries the password; never log it. Errors are logged with
    their exception type only.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

import psycopg
from psycopg_pool import ConnectionPool as _PgPool
from psycopg_pool import PoolClosed, PoolTimeout, TooManyRequests

from storage.config import PoolSettings
from storage.errors import (
    ConnectError,
    PoolClosedError,
    PoolExhaustedError,
    PoolTimeoutError,
)

_log = logging.getLogger("whitelist.storage")

# Waiters beyond this multiple of max_pool_size are rejected instead of queued.
_MAX_WAITING_FACTOR = 8


def _connection_kwargs(settings: PoolSettings) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"autocommit": settings.elide_set_auto_commit}
    if not settings.cache_stmt:
        kwargs["prepare_threshold"] = None
    elif settings.use_server_prep_stmts:
        kwargs["prepare_threshold"] = 0
    return kwargs


def _configure(settings: PoolSettings):
    def configure(conn: psycopg.Connection) -> None:
        if settings.cache_stmt and settings.prep_stmt_cache_size > 0:
            conn.prepared_max = settings.prep_stmt_cache_size

    return configure


class ConnectionPool:
    """Thin, typed facade over psycopg_pool used by `DBMembershipStore`."""

    def __init__(self, pool: _PgPool, settings: PoolSettings) -> None:
        self._pool = pool
        self._settings = settings
        self._closed = False

    @classmethod
    def open(cls, settings: PoolSettings, *, name: str = "whitelist") -> "ConnectionPool":
        """Open and validate a pool sized `[min_idle, max_pool_size]`.

        Raises:
            ConnectError: backend unreachable, credentials rejected or the
                pooled validation query failed.
        """
        _log.debug(
            "opening pool name=%s min=%s max=%s timeout=%.1fs",
            name,
            settings.min_idle,
            settings.max_pool_size,
            settings.connection_timeout,
        )
        _log.debug(
            "driver knobs without psycopg equivalent: prepStmtCacheSqlLimit=%s useLocalSessionState=%s cacheServerConfiguration=%s",
            settings.prep_stmt_cache_sql_limit,
            settings.use_local_session_state,
            settings.cache_server_configuration,
        )
        kwargs = _connection_kwargs(settings)
        try:
            with psycopg.connect(settings.conninfo, **kwargs) as probe:
                probe.execute("select 1")
        except psycopg.Error as exc:
            _log.error("database probe failed: error=%s", type(exc).__name__)
            raise ConnectError(f"Cannot connect to database: {exc}") from exc

        pool = _PgPool(
            settings.conninfo,
            min_size=settings.min_idle,
            max_size=settings.max_pool_size,
            kwargs=kwargs,
            configure=_configure(settings),
            check=_PgPool.check_connection,
            name=name,
            timeout=settings.connection_timeout,
            max_waiting=settings.max_pool_size * _MAX_WAITING_FACTOR,
            max_idle=settings.idle_timeout,
            max_lifetime=settings.max_lifetime,
            open=False,
        )
        try:
            pool.open(wait=settings.min_idle > 0, timeout=settings.connection_timeout)
            with pool.connection(timeout=settings.connection_timeout) as conn:
                conn.execute("select 1")
        except (PoolTimeout, psycopg.Error) as exc:
            _log.error("pool validation failed: error=%s", type(exc).__name__)
            pool.close()
            raise ConnectError(f"Connection pool could not be validated: {exc}") from exc
        _log.info("connection pool ready (max=%s)", settings.max_pool_size)
        return cls(pool, settings)

    @property
    def settings(self) -> PoolSettings:
        return self._settings

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def connection(self) -> Iterator[psycopg.Connection]:
        """Lend one connection for the duration of the `with` block."""
        try:
            with self._pool.connection(timeout=self._settings.connection_timeout) as conn:
                yield conn
        except TooManyRequests as exc:
            raise PoolExhaustedError("connection pool exhausted") from exc
        except PoolTimeout as exc:
            raise PoolTimeoutError(
                f"no connection available within {self._settings.connection_timeout:.1f}s"
            ) from exc
        except PoolClosed as exc:
            raise PoolClosedError("connection pool is closed") from exc

    def stats(self) -> dict[str, int]:
        return dict(self._pool.get_stats())

    def close(self, timeout: float = 5.0) -> None:
        if self._closed:
            return
        self._closed = True
        if self._settings.maintain_time_stats:
            _log.debug("pool stats at close: %s", self.stats())
        self._pool.close(timeout=timeout)
        _log.debug("connection pool closed")


__all__ = ["ConnectionPool"]
