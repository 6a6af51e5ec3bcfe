"""
Postgres-backed membership store for production use.

Why: The whitelist must survive restarts and be shared by every proxy
instance. Records live in a single table keyed by the offline identity; the
display name is metadata for operators only.

Design:
- One borrowed pool connection per call, exactly one statement, no transaction
  spanning calls.
- The table identifier is validated once in the constructor and quoted into
  the statements; every value is a bound parameter.
- Backend failures are logged and converted into `StoreConnectivityError`;
  rejected values (`psycopg.DataError`) into `StoreDataError`. Callers never
  handle psycopg exceptions.

Schema:
    "identity"   char(36) primary key   -- canonical hyphenated UUID
    display_name varchar(100) not null
"""
from __future__ import annotations

import logging
from typing import Any, Sequence
from uuid import UUID

import psycopg

from identity_access.domain import MembershipRecord
from storage.config import validate_table_name
from storage.errors import PoolError, StoreConnectivityError, StoreDataError
from storage.pool import ConnectionPool

_log = logging.getLogger("whitelist.identity_access")


def _quote_table(table: str) -> str:
    validate_table_name(table)
    return ".".join(f'"{part}"' for part in table.split("."))


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class DBMembershipStore:
    """Membership store over a shared `ConnectionPool`.

    Parameters
    ----------
    pool:
        Open pool; owned by the caller (the runtime closes it on reload).
    table:
        Table name, optionally schema-qualified (``public.g_whitelist``).
    """

    def __init__(self, pool: ConnectionPool, table: str) -> None:
        self._pool = pool
        self._table = table
        t = _quote_table(table)
        self._sql_create = (
            f'create table if not exists {t} ('
            f'"identity" char(36) primary key, '
            f"display_name varchar(100) not null)"
        )
        self._sql_exists = f'select 1 from {t} where "identity" = %s'
        self._sql_upsert = (
            f'insert into {t} ("identity", display_name) values (%s, %s) '
            f'on conflict ("identity") do update set display_name = excluded.display_name'
        )
        self._sql_delete = f'delete from {t} where "identity" = %s'
        self._sql_rename = (
            f"update {t} set display_name = %s "
            f'where "identity" = %s and display_name is distinct from %s'
        )
        self._sql_search = (
            f"select display_name from {t} "
            f"where lower(display_name) like %s escape '\\' "
            f'order by "identity" limit %s'
        )
        self._sql_list = f'select "identity", display_name from {t} order by "identity" limit %s offset %s'

    @property
    def table(self) -> str:
        return self._table

    def _run(self, what: str, stmt: str, params: Sequence[Any] = (), *, fetch: str | None = None):
        try:
            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(stmt, params)
                    if fetch == "one":
                        return cur.fetchone()
                    if fetch == "all":
                        return cur.fetchall()
                    return None
        except psycopg.DataError as exc:
            _log.warning("whitelist %s rejected: error=%s", what, type(exc).__name__)
            raise StoreDataError(f"whitelist {what} rejected by the database") from exc
        except (PoolError, psycopg.Error) as exc:
            _log.error("whitelist %s failed: error=%s", what, type(exc).__name__)
            raise StoreConnectivityError(f"whitelist {what} failed") from exc

    def ensure_table(self) -> bool:
        """Create the table if missing. Logs and returns False on failure (non-fatal)."""
        _log.debug("ensuring whitelist table %s", self._table)
        try:
            self._run("create table", self._sql_create)
        except (StoreConnectivityError, StoreDataError):
            _log.warning("could not create table %s; assuming it already exists", self._table)
            return False
        return True

    def exists(self, identity: UUID) -> bool:
        return self._run("lookup", self._sql_exists, (str(identity),), fetch="one") is not None

    def upsert(self, identity: UUID, name: str) -> None:
        self._run("upsert", self._sql_upsert, (str(identity), name))

    def delete(self, identity: UUID) -> None:
        self._run("delete", self._sql_delete, (str(identity),))

    def update_display_name(self, identity: UUID, name: str) -> None:
        """Refresh the stored name of an existing record; never inserts."""
        self._run("rename", self._sql_rename, (name, str(identity), name))

    def search_by_prefix(self, prefix: str, limit: int) -> list[str]:
        if limit <= 0:
            return []
        pattern = _escape_like(prefix.lower()) + "%"
        rows = self._run("search", self._sql_search, (pattern, int(limit)), fetch="all") or []
        return [str(r[0]) for r in rows]

    def list_all(self, *, limit: int, offset: int = 0) -> list[MembershipRecord]:
        limit = max(0, int(limit))
        if not limit:
            return []
        rows = self._run("list", self._sql_list, (limit, max(0, int(offset))), fetch="all") or []
        return [MembershipRecord(identity=UUID(str(r[0]).strip()), display_name=str(r[1])) for r in rows]


__all__ = ["DBMembershipStore"]
