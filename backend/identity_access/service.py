"""
Whitelist service: authorization decisions and operator mutations.

Why:
    The login gate and the `vwl` command both need the same rules: identity
    derivation, fail-closed lookups, "already there" vs. fresh insert, and the
    search input policy. Keeping them here leaves the adapters thin.

Behavior:
    - Stateless over a `MembershipStore`; safe to call from many threads.
    - Names longer than the display_name column are rejected up front.
    - Store failures never escape: lookups become `Decision.INDETERMINATE`,
      mutations `FAILED`, searches `SearchResult(failed=True)`.
    - Suggestions run on a private thread pool and return a Future so the
      caller's event thread never blocks on the database.
"""
from __future__ import annotations

import logging
import re
from concurrent.futures import Future, ThreadPoolExecutor

from identity_access.domain import (
    MAX_NAME_LENGTH,
    MIN_SEARCH_LENGTH,
    AddOutcome,
    Decision,
    RemoveOutcome,
    SearchQueryError,
    SearchResult,
)
from identity_access.stores import MembershipStore
from identity_access.uuids import derive_identity
from storage.errors import StoreError

_log = logging.getLogger("whitelist.identity_access")

_UNSAFE = re.compile(r"[^A-Za-z0-9]")

LIST_LIMIT = 20
SUGGESTION_LIMIT = 10


def sanitize_query(raw: str) -> tuple[str, str]:
    """Split `raw` into (kept alphanumerics, stripped characters)."""
    return _UNSAFE.sub("", raw), "".join(_UNSAFE.findall(raw))


class WhitelistService:
    def __init__(self, store: MembershipStore, *, suggestion_workers: int = 2) -> None:
        self._store = store
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, suggestion_workers), thread_name_prefix="whitelist-suggest"
        )

    @property
    def store(self) -> MembershipStore:
        return self._store

    def is_authorized(self, account_name: str) -> Decision:
        """Strict membership check; the `enabled` toggle is the caller's concern."""
        identity = derive_identity(account_name)
        _log.debug("checking whitelist for %s (identity %s)", account_name, identity)
        try:
            found = self._store.exists(identity)
        except StoreError:
            _log.warning("whitelist lookup indeterminate for %s", account_name)
            return Decision.INDETERMINATE
        return Decision.ALLOW if found else Decision.DENY

    def add(self, account_name: str) -> AddOutcome:
        _log.debug("adding %s to the whitelist", account_name)
        if not account_name or len(account_name) > MAX_NAME_LENGTH:
            return AddOutcome.INVALID_NAME
        identity = derive_identity(account_name)
        try:
            if self._store.exists(identity):
                return AddOutcome.ALREADY_PRESENT
            self._store.upsert(identity, account_name)
        except StoreError:
            return AddOutcome.FAILED
        _log.info("%s added to the whitelist", account_name)
        return AddOutcome.ADDED

    def remove(self, account_name: str) -> RemoveOutcome:
        _log.debug("removing %s from the whitelist", account_name)
        identity = derive_identity(account_name)
        try:
            if not self._store.exists(identity):
                return RemoveOutcome.NOT_PRESENT
            self._store.delete(identity)
        except StoreError:
            return RemoveOutcome.FAILED
        _log.info("%s removed from the whitelist", account_name)
        return RemoveOutcome.REMOVED

    def refresh_display_name(self, account_name: str) -> bool:
        """Best-effort: store `account_name` as the display name of its record.

        Called after an allowed login. Failures are logged and reported as False.
        """
        if not account_name or len(account_name) > MAX_NAME_LENGTH:
            return False
        try:
            self._store.update_display_name(derive_identity(account_name), account_name)
        except StoreError as exc:
            _log.warning("could not refresh display name of %s: error=%s", account_name, type(exc).__name__)
            return False
        return True

    def search(self, raw_query: str, limit: int = LIST_LIMIT) -> SearchResult:
        """Search display names by prefix after sanitizing the query.

        Policy (in order):
            1. raw query shorter than 2 -> SearchQueryError(TOO_SHORT)
            2. characters outside [A-Za-z0-9] are stripped and reported as a warning
            3. nothing left -> SearchQueryError(NO_USABLE_CHARACTERS)
            4. fewer than 2 left -> SearchQueryError(TOO_SHORT)

        Raises:
            SearchQueryError: the query cannot be used; `warning` carries the
                stripped-characters notice when one applies.
        """
        _log.debug("listing whitelisted players matching %r", raw_query)
        if len(raw_query) < MIN_SEARCH_LENGTH:
            raise SearchQueryError(
                SearchQueryError.TOO_SHORT,
                f"Search string must be at least {MIN_SEARCH_LENGTH} characters long.",
            )
        sanitized, stripped = sanitize_query(raw_query)
        warning = f"Invalid characters in search string: {stripped!r}" if stripped else None
        if not sanitized:
            raise SearchQueryError(
                SearchQueryError.NO_USABLE_CHARACTERS, "No usable characters found.", warning=warning
            )
        if len(sanitized) < MIN_SEARCH_LENGTH:
            raise SearchQueryError(
                SearchQueryError.TOO_SHORT, "Not enough usable characters.", warning=warning
            )
        try:
            names = self._store.search_by_prefix(sanitized, limit)
        except StoreError:
            return SearchResult(names=[], warning=warning, failed=True)
        return SearchResult(names=list(names), warning=warning)

    def suggest(self, prefix: str, limit: int = SUGGESTION_LIMIT) -> "Future[list[str]]":
        """Dispatch a prefix lookup for tab completion without blocking the caller."""
        return self._executor.submit(self._suggest, prefix.lower(), limit)

    def _suggest(self, prefix: str, limit: int) -> list[str]:
        try:
            return self._store.search_by_prefix(prefix, limit)
        except StoreError:
            _log.debug("suggestions unavailable for prefix %r", prefix)
            return []

    def close(self) -> None:
        self._executor.shutdown(wait=False)


__all__ = ["WhitelistService", "sanitize_query", "LIST_LIMIT", "SUGGESTION_LIMIT"]
