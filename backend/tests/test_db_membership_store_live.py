"""
DBMembershipStore against a real Postgres (optional).

Runs only when WHITELIST_TEST_DSN points at a database where the test role may
create tables. Each run uses its own table and drops it afterwards.
"""
from __future__ import annotations

import os
import uuid
from concurrent.futures import ThreadPoolExecutor

import pytest

psycopg = pytest.importorskip("psycopg")

from identity_access.service import WhitelistService  # noqa: E402
from identity_access.stores_db import DBMembershipStore  # noqa: E402
from identity_access.domain import AddOutcome, Decision, RemoveOutcome  # noqa: E402
from storage.config import build_config  # noqa: E402
from storage.pool import ConnectionPool  # noqa: E402

DSN = os.getenv("WHITELIST_TEST_DSN")

pytestmark = pytest.mark.skipif(not DSN, reason="WHITELIST_TEST_DSN not set")


@pytest.fixture
def live_store(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("WHITELIST_DATABASE_URL", DSN or "")
    table = f"wl_test_{uuid.uuid4().hex[:12]}"
    cfg = build_config({"database": {"table": table, "maxPoolSize": 4, "minIdle": 1}})
    pool = ConnectionPool.open(cfg.database.pool, name="whitelist-test")
    store = DBMembershipStore(pool, table)
    assert store.ensure_table() is True
    try:
        yield store
    finally:
        with pool.connection() as conn:
            conn.execute(f'drop table if exists "{table}"')
        pool.close()


def test_membership_lifecycle(live_store):
    service = WhitelistService(live_store)
    try:
        assert service.is_authorized("Steve") is Decision.DENY
        assert service.add("Steve") is AddOutcome.ADDED
        assert service.add("Steve") is AddOutcome.ALREADY_PRESENT
        assert service.is_authorized("Steve") is Decision.ALLOW
        assert service.search("ST").names == ["Steve"]
        assert service.remove("Steve") is RemoveOutcome.REMOVED
        assert service.remove("Steve") is RemoveOutcome.NOT_PRESENT
    finally:
        service.close()


def test_ensure_table_is_idempotent(live_store):
    assert live_store.ensure_table() is True


def test_like_metacharacters_match_literally(live_store):
    from identity_access.uuids import derive_identity

    live_store.upsert(derive_identity("a_b"), "a_b")
    live_store.upsert(derive_identity("axb"), "axb")
    assert live_store.search_by_prefix("a_", 10) == ["a_b"]


def test_concurrent_adds_through_small_pool(live_store):
    service = WhitelistService(live_store)
    names = [f"racer{i}" for i in range(16)]  # 4 x maxPoolSize
    try:
        with ThreadPoolExecutor(max_workers=len(names)) as workers:
            outcomes = list(workers.map(service.add, names))
    finally:
        service.close()
    assert outcomes == [AddOutcome.ADDED] * len(names)
    assert len(live_store.list_all(limit=100)) == len(names)


def test_overlong_name_is_a_data_error(live_store):
    from identity_access.uuids import derive_identity
    from storage.errors import StoreDataError

    with pytest.raises(StoreDataError):
        live_store.upsert(derive_identity("x"), "x" * 101)
