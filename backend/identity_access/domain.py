"""
Whitelist domain types: decisions, outcomes and validation errors.

Why:
- Keep the gate, the command dispatcher and the CLI speaking the same
  vocabulary.
- Tagged results instead of booleans so "could not determine" is never
  mistaken for "not whitelisted".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    INDETERMINATE = "indeterminate"


class AddOutcome(str, Enum):
    ADDED = "added"
    ALREADY_PRESENT = "already_present"
    INVALID_NAME = "invalid_name"
    FAILED = "failed"


class RemoveOutcome(str, Enum):
    REMOVED = "removed"
    NOT_PRESENT = "not_present"
    FAILED = "failed"


@dataclass(frozen=True)
class MembershipRecord:
    identity: UUID
    display_name: str


# Search input rules shared by `list` and the suggestion path.
MIN_SEARCH_LENGTH = 2

# Width of the display_name column.
MAX_NAME_LENGTH = 100


class SearchQueryError(ValueError):
    """User input problem with a search query; always recoverable."""

    TOO_SHORT = "too_short"
    NO_USABLE_CHARACTERS = "no_usable_characters"

    def __init__(self, reason: str, message: str, *, warning: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.warning = warning


@dataclass(frozen=True)
class SearchResult:
    names: list[str] = field(default_factory=list)
    warning: str | None = None
    failed: bool = False


__all__ = [
    "Decision",
    "AddOutcome",
    "RemoveOutcome",
    "MembershipRecord",
    "MIN_SEARCH_LENGTH",
    "MAX_NAME_LENGTH",
    "SearchQueryError",
    "SearchResult",
]
