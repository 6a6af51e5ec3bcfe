"""
Offline-mode identity derivation.

Why:
    Whitelist records are keyed by a stable 128-bit identity rather than by the
    account name. The proxy runs in offline mode, so the identity is the
    name-based (version 3) UUID of ``OfflinePlayer:<name>``, the same value the
    game server computes for that player.

Behavior:
    - MD5 over the UTF-8 bytes of the source string, then version/variant bits
      forced into the RFC 4122 layout (``UUID(bytes=..., version=3)``).
    - Case-sensitive: "Steve" and "steve" are different identities.
    - Pure; the empty string is accepted and maps to a value.
"""
from __future__ import annotations

import hashlib
from uuid import UUID

OFFLINE_PREFIX = "OfflinePlayer:"


def derive_identity(name: str) -> UUID:
    digest = hashlib.md5((OFFLINE_PREFIX + name).encode("utf-8")).digest()
    return UUID(bytes=digest, version=3)


__all__ = ["OFFLINE_PREFIX", "derive_identity"]
