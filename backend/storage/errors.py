"""
Error taxonomy for the persistence layer.

Why:
    Callers of the membership store must never need driver-specific error
    handling. The pool and the store convert psycopg / psycopg_pool failures
    into these types at their boundary and log the underlying exception type.

Hierarchy:
    ConnectError            pool could not be established (startup/reload)
    PoolError               a single borrow failed
      PoolTimeoutError      waited longer than connection_timeout
      PoolExhaustedError    waiting queue is full
      PoolClosedError       pool already closed (e.g. swapped out on reload)
    StoreError              a store operation could not be completed
      StoreConnectivityError  backend unreachable or failing; answer unknown
      StoreDataError        backend rejected the values (e.g. too long)
"""
from __future__ import annotations


class ConnectError(RuntimeError):
    """Raised when the pool cannot be opened or validated."""


class PoolError(RuntimeError):
    pass


class PoolTimeoutError(PoolError):
    pass


class PoolExhaustedError(PoolError):
    pass


class PoolClosedError(PoolError):
    pass


class StoreError(RuntimeError):
    pass


class StoreConnectivityError(StoreError):
    """The backend could not be reached; the answer is unknown, not negative."""


class StoreDataError(StoreError):
    """The backend rejected the values of an otherwise healthy request."""


__all__ = [
    "ConnectError",
    "PoolError",
    "PoolTimeoutError",
    "PoolExhaustedError",
    "PoolClosedError",
    "StoreError",
    "StoreConnectivityError",
    "StoreDataError",
]
