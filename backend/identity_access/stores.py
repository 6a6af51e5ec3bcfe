"""
Membership store contract and an in-memory implementation for development.

Why: The service and the gate depend on a small protocol so tests and local
runs work without Postgres. For production use `stores_db.DBMembershipStore`.

Behavior (shared by all implementations):
- `exists` answers True/False, or raises `StoreError` when it cannot tell.
- `upsert` inserts or refreshes the display name; identity never changes.
- `delete` of an absent identity is a no-op.
- `update_display_name` refreshes the name of an existing record only.
- `search_by_prefix` matches display names case-insensitively, ordered by
  identity, at most `limit` results.
"""
from __future__ import annotations

import threading
from typing import Dict, Protocol
from uuid import UUID

from identity_access.domain import MAX_NAME_LENGTH, MembershipRecord
from storage.errors import StoreConnectivityError, StoreDataError


class MembershipStore(Protocol):
    def ensure_table(self) -> bool: ...

    def exists(self, identity: UUID) -> bool: ...

    def upsert(self, identity: UUID, name: str) -> None: ...

    def delete(self, identity: UUID) -> None: ...

    def update_display_name(self, identity: UUID, name: str) -> None: ...

    def search_by_prefix(self, prefix: str, limit: int) -> list[str]: ...

    def list_all(self, *, limit: int, offset: int = 0) -> list[MembershipRecord]: ...


class InMemoryMembershipStore:
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()
        self._failing = False

    def fail(self, failing: bool = True) -> None:
        """Simulate a backend outage: every operation raises StoreConnectivityError."""
        self._failing = failing

    def _check(self) -> None:
        if self._failing:
            raise StoreConnectivityError("in-memory store is marked as unavailable")

    def ensure_table(self) -> bool:
        return not self._failing

    def exists(self, identity: UUID) -> bool:
        self._check()
        with self._lock:
            return str(identity) in self._data

    def upsert(self, identity: UUID, name: str) -> None:
        self._check()
        if len(name) > MAX_NAME_LENGTH:
            raise StoreDataError("display name too long")
        with self._lock:
            self._data[str(identity)] = name

    def delete(self, identity: UUID) -> None:
        self._check()
        with self._lock:
            self._data.pop(str(identity), None)

    def update_display_name(self, identity: UUID, name: str) -> None:
        self._check()
        with self._lock:
            if str(identity) in self._data:
                self._data[str(identity)] = name

    def search_by_prefix(self, prefix: str, limit: int) -> list[str]:
        self._check()
        if limit <= 0:
            return []
        p = prefix.lower()
        with self._lock:
            rows = sorted(self._data.items())
        return [name for _, name in rows if name.lower().startswith(p)][:limit]

    def list_all(self, *, limit: int, offset: int = 0) -> list[MembershipRecord]:
        self._check()
        with self._lock:
            rows = sorted(self._data.items())
        page = rows[max(0, offset):max(0, offset) + max(0, limit)]
        return [MembershipRecord(identity=UUID(k), display_name=v) for k, v in page]

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
