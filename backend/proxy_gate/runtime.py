"""
Runtime wiring for the whitelist gate: config snapshot, pool, store, service.

Why:
    The login gate and the command dispatcher must always see a consistent
    bundle of configuration and database plumbing, including while an operator
    runs `vwl reload`. This module owns that bundle and swaps it as a whole.

Behavior:
    - `start()` loads config.yml, applies the debug level, opens the pool,
      provisions the table and logs the startup banner. A pool that cannot be
      opened is logged and leaves the runtime "unavailable"; the gate then
      fails closed.
    - `reload()` builds a complete new state first and swaps the single state
      reference. A failed reload keeps the previous state.
    - The replaced state is retired, not closed on the spot: its pool stays
      usable for a grace period (twice its connection timeout by default) so
      callers that picked up the old service before the swap can finish.
      `close()` disposes retired states immediately.
    - Writers (`reload`, `set_enabled`, `set_debug`) are serialized by one
      lock held from reading config.yml to swapping the state, so a toggle is
      never overwritten by a reload that read the file before it. Readers never
      take the lock.

Permissions:
    Reads/writes config.yml and connects with the configured database role.
"""
from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Tuple

from identity_access.service import WhitelistService
from identity_access.stores import MembershipStore
from identity_access.stores_db import DBMembershipStore
from storage.bootstrap import ensure_table_from_config
from storage.config import ConfigError, ConfigFile, WhitelistConfig, build_config
from storage.errors import ConnectError
from storage.pool import ConnectionPool

NAME = "whitelist-gate"
VERSION = "1.0.0"

_log = logging.getLogger("whitelist.gate")

# Retired pools stay open for this multiple of their connection timeout.
_RETIRE_GRACE_FACTOR = 2

Connector = Callable[[WhitelistConfig], Tuple[Optional[ConnectionPool], MembershipStore]]


def connect_database(config: WhitelistConfig) -> Tuple[Optional[ConnectionPool], MembershipStore]:
    pool = ConnectionPool.open(config.database.pool)
    return pool, DBMembershipStore(pool, config.database.table)


def apply_log_level(debug: bool) -> None:
    logging.getLogger("whitelist").setLevel(logging.DEBUG if debug else logging.INFO)


@dataclass(frozen=True)
class _State:
    config: WhitelistConfig
    pool: Optional[ConnectionPool] = None
    service: Optional[WhitelistService] = None


class WhitelistRuntime:
    def __init__(
        self,
        config_path: str | Path,
        *,
        connector: Connector = connect_database,
        retire_after: Optional[float] = None,
    ) -> None:
        self._file = ConfigFile(config_path)
        self._connector = connector
        self._retire_after = retire_after
        self._lock = threading.RLock()
        self._state: Optional[_State] = None
        self._retiring: dict[int, Tuple[_State, threading.Timer]] = {}

    # --- Accessors ---------------------------------------------------------------
    @property
    def config(self) -> WhitelistConfig:
        state = self._state
        if state is None:
            raise RuntimeError("runtime not started")
        return state.config

    @property
    def service(self) -> Optional[WhitelistService]:
        state = self._state
        return state.service if state else None

    @property
    def available(self) -> bool:
        return self.service is not None

    # --- Lifecycle ---------------------------------------------------------------
    def _build(self, config: WhitelistConfig) -> _State:
        try:
            pool, store = self._connector(config)
        except ConnectError as exc:
            _log.error("Failed to initialize storage: %s", exc)
            return _State(config=config)
        ensure_table_from_config(config, store)
        return _State(config=config, pool=pool, service=WhitelistService(store))

    def start(self) -> bool:
        """Load configuration and wire storage. Returns True when storage is available.

        Raises:
            ConfigError: config.yml is unreadable or invalid; startup must abort.
        """
        with self._lock:
            config = build_config(self._file.load())
            apply_log_level(config.debug)
            _log.debug("loading configuration from %s", self._file.path)
            _log.info("Debug mode is %s", "enabled" if config.debug else "disabled")
            self._state = self._build(config)
        _log.info("%s %s loaded successfully!", NAME, VERSION)
        return self.available

    def reload(self) -> bool:
        """Re-read config.yml and rebuild the pool; swap atomically on success."""
        _log.debug("reloading configuration")
        with self._lock:
            try:
                config = build_config(self._file.load())
            except (ConfigError, OSError) as exc:
                _log.error("Error while reloading configuration: %s", exc)
                return False
            new_state = self._build(config)
            if new_state.service is None and self.available:
                _log.error("reload aborted: new storage unavailable, keeping previous configuration")
                return False
            old, self._state = self._state, new_state
            apply_log_level(config.debug)
            self._retire(old)
        _log.info("Debug mode is %s", "enabled" if config.debug else "disabled")
        return True

    def _swap_config(self, **changes) -> WhitelistConfig:
        if self._state is None:
            raise RuntimeError("runtime not started")
        config = dataclasses.replace(self._state.config, **changes)
        self._state = dataclasses.replace(self._state, config=config)
        return config

    def set_enabled(self, enabled: bool) -> None:
        with self._lock:
            self._file.set("enabled", enabled)
            self._swap_config(enabled=enabled)
        _log.info("whitelist %s", "enabled" if enabled else "disabled")

    def set_debug(self, debug: bool) -> None:
        with self._lock:
            self._file.set("debug", debug)
            self._swap_config(debug=debug)
            apply_log_level(debug)
        _log.info("Debug mode is %s", "enabled" if debug else "disabled")

    # --- Disposal ----------------------------------------------------------------
    def _retire(self, state: Optional[_State]) -> None:
        if state is None or (state.pool is None and state.service is None):
            return
        grace = self._retire_after
        if grace is None:
            grace = state.config.database.pool.connection_timeout * _RETIRE_GRACE_FACTOR
        key = id(state)
        timer = threading.Timer(grace, self._finish_retirement, args=(key,))
        timer.daemon = True
        self._retiring[key] = (state, timer)
        _log.debug("retiring previous storage in %.1fs", grace)
        timer.start()

    def _finish_retirement(self, key: int) -> None:
        with self._lock:
            entry = self._retiring.pop(key, None)
        if entry is not None:
            self._dispose(entry[0])

    @staticmethod
    def _dispose(state: Optional[_State]) -> None:
        if state is None:
            return
        if state.service is not None:
            state.service.close()
        if state.pool is not None:
            state.pool.close()

    def close(self) -> None:
        with self._lock:
            old, self._state = self._state, None
            retiring = list(self._retiring.values())
            self._retiring.clear()
        for state, timer in retiring:
            timer.cancel()
            self._dispose(state)
        self._dispose(old)


__all__ = ["NAME", "VERSION", "WhitelistRuntime", "apply_log_level", "connect_database"]
