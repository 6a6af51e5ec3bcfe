"""
Whitelist configuration: YAML file plus immutable snapshots.

Intent:
    Provide a single source of truth for the settings the gate, the membership
    store and the connection pool read. The file on disk is the operator's
    interface; everything else receives a frozen `WhitelistConfig` snapshot.

Behavior:
    - `ConfigFile.load()` creates `config.yml` from `DEFAULT_CONFIG` when it is
      missing and fills in keys added by newer versions (auto-update). The file
      is only written back when something was actually added.
    - `build_config()` turns the raw mapping into a `WhitelistConfig`. The
      table identifier is validated here, once, because it cannot be bound as a
      query parameter.
    - Toggles (`enabled`, `debug`) are persisted via `ConfigFile.set()`; the
      caller swaps in a new snapshot with `dataclasses.replace`.

Env:
    WHITELIST_DATABASE_URL – full libpq DSN; overrides host/port/database/user.
    WHITELIST_DB_PASSWORD  – overrides `database.password` (keep secrets out of
                             the YAML file).

Permissions:
    Pure configuration; reads and writes the config file only.
"""
from __future__ import annotations

import copy
import math
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import parse_qsl

import psycopg
import yaml
from psycopg.conninfo import make_conninfo


FILE_VERSION = 1

DEFAULT_CONFIG: dict[str, Any] = {
    "file-version": FILE_VERSION,
    "enabled": True,
    "debug": False,
    "defaultLocale": "en",
    "database": {
        "host": "localhost",
        "port": 5432,
        "database": "minecraft",
        "user": "whitelist",
        "password": "",
        "params": "",
        "table": "g_whitelist",
        "createTables": True,
        "maxPoolSize": 10,
        "minIdle": 2,
        "connectionTimeout": 5000,
        "idleTimeout": 600000,
        "maxLifetime": 1800000,
        "cacheStmt": True,
        "prepStmtCacheSize": 250,
        "prepStmtCacheSqlLimit": 2048,
        "useServerPrepStmts": True,
        "useLocalSessionState": True,
        "cacheServerConfiguration": True,
        "elideSetAutoCommit": True,
        "maintainTimeStats": False,
    },
    "messages": {
        "kicked": "You are not whitelisted on this server.",
        "insufficientPermission": "You do not have permission to use this command.",
        "failedToCheckWhitelist": "Could not verify the whitelist right now. Please try again later.",
    },
}

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")


class ConfigError(ValueError):
    pass


def validate_table_name(table: str) -> str:
    """Return `table` unchanged if it is a safe (optionally schema-qualified) identifier."""
    if not isinstance(table, str) or not _TABLE_RE.match(table):
        raise ConfigError(f"Invalid table name: {table!r}")
    return table


@dataclass(frozen=True)
class PoolSettings:
    conninfo: str = field(repr=False)
    max_pool_size: int = 10
    min_idle: int = 2
    connection_timeout_ms: int = 5000
    idle_timeout_ms: int = 600000
    max_lifetime_ms: int = 1800000
    cache_stmt: bool = True
    prep_stmt_cache_size: int = 250
    prep_stmt_cache_sql_limit: int = 2048
    use_server_prep_stmts: bool = True
    use_local_session_state: bool = True
    cache_server_configuration: bool = True
    elide_set_auto_commit: bool = True
    maintain_time_stats: bool = False

    @property
    def connection_timeout(self) -> float:
        return self.connection_timeout_ms / 1000.0

    @property
    def idle_timeout(self) -> float:
        return self.idle_timeout_ms / 1000.0

    @property
    def max_lifetime(self) -> float:
        return self.max_lifetime_ms / 1000.0


@dataclass(frozen=True)
class DatabaseSettings:
    host: str
    port: int
    database: str
    user: str
    table: str
    create_tables: bool
    pool: PoolSettings
    # Never rendered in repr/logs.
    password: str = field(default="", repr=False)
    params: str = ""


@dataclass(frozen=True)
class Messages:
    kicked: str
    insufficient_permission: str
    failed_to_check_whitelist: str


@dataclass(frozen=True)
class WhitelistConfig:
    enabled: bool
    debug: bool
    default_locale: str
    messages: Mapping[str, Messages]
    database: DatabaseSettings

    def messages_for(self, locale: str | None = None) -> Messages:
        """Return the message set for `locale`, falling back to the default locale."""
        if locale and locale in self.messages:
            return self.messages[locale]
        return self.messages[self.default_locale]


# --- Parsing helpers -----------------------------------------------------------

def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"true", "yes", "on", "1"}:
            return True
        if v in {"false", "no", "off", "0"}:
            return False
    return default


def _as_int(value: Any, default: int, *, minimum: int | None = None) -> int:
    try:
        out = int(value)
    except (TypeError, ValueError):
        return default
    if minimum is not None and out < minimum:
        return default
    return out


def _as_str(value: Any, default: str) -> str:
    if value is None:
        return default
    return str(value)


def _template(value: Any, default: str) -> str:
    # YAML authors write "\n" literally inside single-quoted strings.
    return _as_str(value, default).replace("\\n", "\n")


def _merge_defaults(data: dict[str, Any], defaults: Mapping[str, Any]) -> bool:
    """Fill keys missing from `data` with `defaults` in place; return True if anything changed."""
    changed = False
    for key, dval in defaults.items():
        if key not in data:
            data[key] = copy.deepcopy(dval)
            changed = True
        elif isinstance(dval, Mapping) and isinstance(data[key], dict):
            changed = _merge_defaults(data[key], dval) or changed
    return changed


def _conninfo(db: Mapping[str, Any], *, password: str, timeout_ms: int) -> str:
    try:
        return _make_conninfo(db, password=password, timeout_ms=timeout_ms)
    except psycopg.ProgrammingError as exc:
        raise ConfigError(f"Invalid connection parameters: {exc}") from exc


def _make_conninfo(db: Mapping[str, Any], *, password: str, timeout_ms: int) -> str:
    connect_timeout = max(1, math.ceil(timeout_ms / 1000))
    url = (os.getenv("WHITELIST_DATABASE_URL") or "").strip()
    if url:
        return make_conninfo(url, connect_timeout=connect_timeout)
    extra = dict(parse_qsl(_as_str(db.get("params"), "").lstrip("?")))
    kwargs: dict[str, Any] = {
        "host": _as_str(db.get("host"), "localhost"),
        "port": _as_int(db.get("port"), 5432, minimum=1),
        "dbname": _as_str(db.get("database"), ""),
        "user": _as_str(db.get("user"), ""),
        "connect_timeout": connect_timeout,
    }
    if password:
        kwargs["password"] = password
    kwargs.update(extra)
    return make_conninfo("", **kwargs)


def build_config(raw: Mapping[str, Any]) -> WhitelistConfig:
    """Build an immutable snapshot from a raw config mapping.

    Raises:
        ConfigError: when a section has the wrong shape or the table name is unsafe.
    """
    defaults_db = DEFAULT_CONFIG["database"]
    defaults_msg = DEFAULT_CONFIG["messages"]
    db = raw.get("database") or {}
    msg = raw.get("messages") or {}
    if not isinstance(db, Mapping) or not isinstance(msg, Mapping):
        raise ConfigError("'database' and 'messages' must be mappings")

    password = os.getenv("WHITELIST_DB_PASSWORD") or _as_str(db.get("password"), "")
    timeout_ms = _as_int(db.get("connectionTimeout"), defaults_db["connectionTimeout"], minimum=1)
    max_pool = _as_int(db.get("maxPoolSize"), defaults_db["maxPoolSize"], minimum=1)
    min_idle = min(_as_int(db.get("minIdle"), defaults_db["minIdle"], minimum=0), max_pool)

    pool = PoolSettings(
        conninfo=_conninfo(db, password=password, timeout_ms=timeout_ms),
        max_pool_size=max_pool,
        min_idle=min_idle,
        connection_timeout_ms=timeout_ms,
        idle_timeout_ms=_as_int(db.get("idleTimeout"), defaults_db["idleTimeout"], minimum=1),
        max_lifetime_ms=_as_int(db.get("maxLifetime"), defaults_db["maxLifetime"], minimum=1),
        cache_stmt=_as_bool(db.get("cacheStmt"), defaults_db["cacheStmt"]),
        prep_stmt_cache_size=_as_int(db.get("prepStmtCacheSize"), defaults_db["prepStmtCacheSize"], minimum=0),
        prep_stmt_cache_sql_limit=_as_int(db.get("prepStmtCacheSqlLimit"), defaults_db["prepStmtCacheSqlLimit"], minimum=0),
        use_server_prep_stmts=_as_bool(db.get("useServerPrepStmts"), defaults_db["useServerPrepStmts"]),
        use_local_session_state=_as_bool(db.get("useLocalSessionState"), defaults_db["useLocalSessionState"]),
        cache_server_configuration=_as_bool(db.get("cacheServerConfiguration"), defaults_db["cacheServerConfiguration"]),
        elide_set_auto_commit=_as_bool(db.get("elideSetAutoCommit"), defaults_db["elideSetAutoCommit"]),
        maintain_time_stats=_as_bool(db.get("maintainTimeStats"), defaults_db["maintainTimeStats"]),
    )
    database = DatabaseSettings(
        host=_as_str(db.get("host"), defaults_db["host"]),
        port=_as_int(db.get("port"), defaults_db["port"], minimum=1),
        database=_as_str(db.get("database"), defaults_db["database"]),
        user=_as_str(db.get("user"), defaults_db["user"]),
        password=password,
        params=_as_str(db.get("params"), ""),
        table=validate_table_name(_as_str(db.get("table"), defaults_db["table"])),
        create_tables=_as_bool(db.get("createTables"), defaults_db["createTables"]),
        pool=pool,
    )

    default_locale = _as_str(raw.get("defaultLocale"), DEFAULT_CONFIG["defaultLocale"]).strip() or "en"
    messages = {
        default_locale: Messages(
            kicked=_template(msg.get("kicked"), defaults_msg["kicked"]),
            insufficient_permission=_template(msg.get("insufficientPermission"), defaults_msg["insufficientPermission"]),
            failed_to_check_whitelist=_template(msg.get("failedToCheckWhitelist"), defaults_msg["failedToCheckWhitelist"]),
        )
    }
    return WhitelistConfig(
        enabled=_as_bool(raw.get("enabled"), DEFAULT_CONFIG["enabled"]),
        debug=_as_bool(raw.get("debug"), DEFAULT_CONFIG["debug"]),
        default_locale=default_locale,
        messages=messages,
        database=database,
    )


class ConfigFile:
    """The operator-editable `config.yml` backing the snapshots."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._data: dict[str, Any] = {}

    def load(self) -> dict[str, Any]:
        """Read the file, creating or auto-updating it from `DEFAULT_CONFIG`."""
        if not self.path.exists():
            self._data = copy.deepcopy(DEFAULT_CONFIG)
            self.save()
            return copy.deepcopy(self._data)
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Cannot parse {self.path.name}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"{self.path.name} must contain a mapping at the top level")
        changed = _merge_defaults(data, DEFAULT_CONFIG)
        if _as_int(data.get("file-version"), 0) < FILE_VERSION:
            data["file-version"] = FILE_VERSION
            changed = True
        self._data = data
        if changed:
            self.save()
        return copy.deepcopy(self._data)

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(yaml.safe_dump(self._data, sort_keys=False, allow_unicode=True), encoding="utf-8")

    def set(self, key: str, value: Any) -> None:
        """Set a top-level or dotted key (e.g. ``database.table``) and persist."""
        if not self._data:
            self.load()
        parts = key.split(".")
        node = self._data
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = value
        self.save()


def load_config(path: str | Path) -> WhitelistConfig:
    return build_config(ConfigFile(path).load())


__all__ = [
    "FILE_VERSION",
    "DEFAULT_CONFIG",
    "ConfigError",
    "ConfigFile",
    "DatabaseSettings",
    "Messages",
    "PoolSettings",
    "WhitelistConfig",
    "build_config",
    "load_config",
    "validate_table_name",
]
