"""
Pytest configuration for backend tests.

Why: Tests run without a Postgres instance by default. The in-memory store and
small psycopg fakes cover the logic; live-DB tests opt in via
WHITELIST_TEST_DSN and skip otherwise.
"""
import sys
from pathlib import Path

import pytest

# Ensure modules in backend/ are importable across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(REPO_ROOT), str(BACKEND_DIR), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)


@pytest.fixture(autouse=True)
def _isolate_whitelist_env(monkeypatch: pytest.MonkeyPatch):
    """Keep developer env overrides from leaking into config parsing."""
    for var in ("WHITELIST_DATABASE_URL", "WHITELIST_DB_PASSWORD", "WHITELIST_CONFIG"):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def memory_store():
    from identity_access.stores import InMemoryMembershipStore

    return InMemoryMembershipStore()


@pytest.fixture
def started_runtime(tmp_path: Path, memory_store):
    """A runtime over a fresh config.yml whose storage is the in-memory store."""
    from proxy_gate.runtime import WhitelistRuntime

    runtime = WhitelistRuntime(tmp_path / "config.yml", connector=lambda cfg: (None, memory_store))
    runtime.start()
    yield runtime
    runtime.close()
