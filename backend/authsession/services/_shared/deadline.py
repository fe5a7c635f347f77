"""Caller-supplied deadlines for store and cache calls."""

from __future__ import annotations

import time
from dataclasses import dataclass

from authsession.services._shared.errors import StorageUnavailableError


@dataclass(frozen=True, slots=True)
class Deadline:
    """
    Absolute point on the monotonic clock after which work must stop.

    :param expires_at: Value of :func:`time.monotonic` at which the deadline lapses.
    :type expires_at: float
    """

    expires_at: float

    @classmethod
    def after(cls, seconds: float) -> Deadline:
        """Build a deadline ``seconds`` from now."""
        return cls(expires_at=time.monotonic() + seconds)

    def remaining(self) -> float:
        """Seconds left (never negative)."""
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at

    def check(self, backend: str) -> None:
        """
        Fail closed when the deadline has lapsed.

        :param backend: Collaborator about to be called, used in the error.
        :raises StorageUnavailableError: If no time is left.
        """
        if self.expired:
            raise StorageUnavailableError(backend=backend, detail="deadline exceeded")
