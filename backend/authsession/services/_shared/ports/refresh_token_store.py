from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Protocol
from uuid import uuid4

from authsession.core.clock import as_utc

# 64 random bytes -> 86 url-safe characters; well beyond brute-force range
REFRESH_TOKEN_BYTES = 64


def new_token_value() -> str:
    """Generate an unpredictable refresh-token bearer secret."""
    return secrets.token_urlsafe(REFRESH_TOKEN_BYTES)


def new_record_id() -> str:
    """Generate a new refresh-token record identifier."""
    return uuid4().hex


@dataclass(frozen=True, slots=True)
class RefreshTokenRecord:
    """
    Persisted refresh-token record.

    :ivar id: Record identifier (also the target of ``replaced_by``).
    :ivar token_value: Opaque bearer secret presented by the client.
    :ivar user_id: Owner user id.
    :ivar device_id: Explicit device id or derived fingerprint.
    :ivar issued_at: Creation instant (UTC).
    :ivar expires_at: Absolute expiration (UTC).
    :ivar revoked: Explicitly revoked (logout, eviction, cascade).
    :ivar revoked_at: When it was revoked.
    :ivar revoked_by: Optional actor that revoked it.
    :ivar revoke_reason: Free-text reason kept for audit.
    :ivar replaced_by: Id of the successor once rotated out.
    :ivar last_used_at: Last successful refresh with this token.
    :ivar ip_address: Client address seen at issuance.
    :ivar user_agent: Client user agent seen at issuance.
    :ivar access_jti: ``jti`` of the access token issued alongside it.
    :ivar access_expires_at: ``exp`` of that access token.
    :ivar access_claims: Extra claims (roles, permissions) granted at login
        and re-issued on every refresh.
    """

    id: str
    token_value: str
    user_id: str
    device_id: str
    issued_at: datetime
    expires_at: datetime
    revoked: bool = False
    revoked_at: datetime | None = None
    revoked_by: str | None = None
    revoke_reason: str | None = None
    replaced_by: str | None = None
    last_used_at: datetime | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    access_jti: str | None = None
    access_expires_at: datetime | None = None
    access_claims: dict[str, Any] | None = None

    # ------------------------------ state ------------------------------

    def is_expired(self, now: datetime) -> bool:
        return as_utc(self.expires_at) <= now

    @property
    def is_rotated_out(self) -> bool:
        return self.replaced_by is not None

    @property
    def is_consumed(self) -> bool:
        """Revoked or rotated out: the record can no longer be written."""
        return self.revoked or self.is_rotated_out

    def is_terminal(self, now: datetime) -> bool:
        return self.is_consumed or self.is_expired(now)

    def is_active(self, now: datetime) -> bool:
        return not self.is_terminal(now)

    # ---------------------------- transitions ----------------------------

    def revoke(
        self, *, now: datetime, reason: str | None = None, revoked_by: str | None = None
    ) -> RefreshTokenRecord:
        """Return a revoked copy of this record."""
        return replace(
            self,
            revoked=True,
            revoked_at=now,
            revoked_by=revoked_by,
            revoke_reason=reason,
        )

    def rotate_to(self, successor_id: str, *, now: datetime) -> RefreshTokenRecord:
        """Return a copy consumed by rotation (``revoked`` stays ``False``)."""
        return replace(self, replaced_by=successor_id, last_used_at=now)


class RefreshTokenStore(Protocol):
    """
    Persistence port for refresh-token records.

    ``update`` MUST be an atomic conditional write: it is applied only while
    the stored record is still non-terminal (not revoked and not rotated out)
    and reports whether it was applied. Two concurrent rotations of the same
    record can therefore never both succeed.
    """

    def create(self, record: RefreshTokenRecord) -> None:
        """Insert a brand-new record."""

    def find_by_value(self, token_value: str) -> RefreshTokenRecord | None:
        """Exact-match lookup on the bearer secret."""

    def find_by_id(self, record_id: str) -> RefreshTokenRecord | None:
        """Lookup by record id."""

    def find_active_by_user(self, user_id: str, now: datetime) -> list[RefreshTokenRecord]:
        """Active records of a user ordered by ``issued_at`` ascending."""

    def update(self, record: RefreshTokenRecord) -> bool:
        """
        Persist ``record`` if the stored copy is not yet revoked or rotated out.

        :returns: ``True`` when the write was applied.
        """

    def delete_expired_before(self, cutoff: datetime) -> int:
        """
        Delete records whose ``expires_at`` is older than ``cutoff``.

        :returns: Number of records deleted.
        """


class InMemoryRefreshTokenStore(RefreshTokenStore):
    """
    In-memory refresh-token store.

    .. note::
       A single lock makes every operation atomic, including the conditional
       write in :meth:`update`.
    """

    def __init__(self) -> None:
        self._by_id: dict[str, RefreshTokenRecord] = {}
        self._id_by_value: dict[str, str] = {}
        self._by_user: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    # -------------------------- API ----------------------------

    def create(self, record: RefreshTokenRecord) -> None:
        with self._lock:
            if record.id in self._by_id or record.token_value in self._id_by_value:
                raise ValueError("Refresh token record already exists.")
            self._by_id[record.id] = record
            self._id_by_value[record.token_value] = record.id
            self._by_user.setdefault(record.user_id, set()).add(record.id)

    def find_by_value(self, token_value: str) -> RefreshTokenRecord | None:
        with self._lock:
            record_id = self._id_by_value.get(token_value)
            return self._by_id.get(record_id) if record_id else None

    def find_by_id(self, record_id: str) -> RefreshTokenRecord | None:
        with self._lock:
            return self._by_id.get(record_id)

    def find_active_by_user(self, user_id: str, now: datetime) -> list[RefreshTokenRecord]:
        with self._lock:
            records = [self._by_id[i] for i in self._by_user.get(user_id, set())]
        active = [r for r in records if r.is_active(now)]
        return sorted(active, key=lambda r: (as_utc(r.issued_at), r.id))

    def update(self, record: RefreshTokenRecord) -> bool:
        with self._lock:
            stored = self._by_id.get(record.id)
            if stored is None or stored.is_consumed:
                return False
            self._by_id[record.id] = record
            return True

    def delete_expired_before(self, cutoff: datetime) -> int:
        with self._lock:
            doomed = [r for r in self._by_id.values() if as_utc(r.expires_at) < cutoff]
            for r in doomed:
                del self._by_id[r.id]
                self._id_by_value.pop(r.token_value, None)
                ids = self._by_user.get(r.user_id)
                if ids is not None:
                    ids.discard(r.id)
                    if not ids:
                        del self._by_user[r.user_id]
            return len(doomed)
