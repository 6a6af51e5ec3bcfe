"""
Whitelist table bootstrap.

Intent:
    Ensure the membership table exists on startup and after a reload.

Security & Safety:
    - Controlled by `database.createTables` in config.yml.
    - Idempotent: `create table if not exists`.
    - Non-fatal: a failure is logged and the service keeps running against a
      table that may already exist.

Usage:
    Call `ensure_table_from_config()` after the pool and store are wired.
"""
from __future__ import annotations

import logging

from identity_access.stores import MembershipStore
from storage.config import WhitelistConfig

_log = logging.getLogger("whitelist.storage")


def ensure_table_from_config(config: WhitelistConfig, store: MembershipStore) -> bool:
    """Create the whitelist table when `createTables` is enabled.

    Returns:
        True when the table was ensured, False when disabled or the DDL failed
        (details in the log).
    """
    if not config.database.create_tables:
        _log.debug("createTables=false; skipping table provisioning")
        return False
    ok = store.ensure_table()
    if not ok:
        _log.warning("table '%s' could not be provisioned; continuing", config.database.table)
    return ok


__all__ = ["ensure_table_from_config"]
