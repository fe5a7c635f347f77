from __future__ import annotations

import threading
from datetime import datetime
from typing import Protocol

from authsession.core.clock import Clock, SystemClock, as_utc


class TokenBlacklist(Protocol):
    """
    Abstraction for a blacklist of **access token** identifiers.

    Implementations are shared by every request thread and must be safe for
    concurrent inserts and lookups without external locking. Methods are
    expected to be idempotent.
    """

    def add(self, *, jti: str, expires_at: datetime) -> None:
        """Reject ``jti`` until ``expires_at`` (the token's own ``exp``)."""

    def contains(self, jti: str) -> bool:
        """Return True while ``jti`` is blacklisted and its entry has not expired."""

    def purge_expired(self) -> int:
        """Drop entries past their expiry. :returns: Number of entries removed."""


class InMemoryBlacklist(TokenBlacklist):
    """Thread-safe in-memory blacklist keyed by JTI with per-entry expiry."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._entries: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def add(self, *, jti: str, expires_at: datetime) -> None:
        expires_at = as_utc(expires_at)
        with self._lock:
            current = self._entries.get(jti)
            # never shorten an existing entry
            if current is None or current < expires_at:
                self._entries[jti] = expires_at

    def contains(self, jti: str) -> bool:
        with self._lock:
            expires_at = self._entries.get(jti)
        return expires_at is not None and expires_at > self._clock.now()

    def purge_expired(self) -> int:
        now = self._clock.now()
        with self._lock:
            expired = [jti for jti, exp in self._entries.items() if exp <= now]
            for jti in expired:
                del self._entries[jti]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
