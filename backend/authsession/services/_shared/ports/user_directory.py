from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from authsession.core.clock import as_utc


@dataclass(frozen=True, slots=True)
class UserIdentity:
    """
    Read-only view of a user, produced by the upstream authentication check.

    :ivar user_id: Stable opaque identifier.
    :ivar active: Whether the account is enabled.
    :ivar locked: Whether the account is locked out.
    :ivar lockout_until: End of a temporary lockout (``None`` = indefinite).
    """

    user_id: str
    active: bool = True
    locked: bool = False
    lockout_until: datetime | None = None

    def is_locked(self, now: datetime) -> bool:
        """Return True while a lockout is in effect at ``now``."""
        if not self.locked:
            return False
        if self.lockout_until is None:
            return True
        return as_utc(self.lockout_until) > now

    def is_available(self, now: datetime) -> bool:
        """A user may hold sessions only while active and not locked."""
        return self.active and not self.is_locked(now)


class UserDirectory(Protocol):
    """Lookup owned by the user-management collaborator."""

    def get(self, user_id: str) -> UserIdentity | None: ...


class InMemoryUserDirectory(UserDirectory):
    """Dictionary-backed directory used in unit tests and local wiring."""

    def __init__(self, users: list[UserIdentity] | None = None) -> None:
        self._users: dict[str, UserIdentity] = {u.user_id: u for u in users or []}

    def put(self, user: UserIdentity) -> None:
        self._users[user.user_id] = user

    def get(self, user_id: str) -> UserIdentity | None:
        return self._users.get(user_id)
