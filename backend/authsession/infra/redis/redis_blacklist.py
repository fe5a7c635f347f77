from __future__ import annotations

import math
from datetime import datetime
from typing import cast

import redis  # type: ignore[import-untyped]
from redis.exceptions import RedisError  # type: ignore[import-untyped]

from authsession.core.clock import Clock, SystemClock, as_utc
from authsession.services._shared.errors import StorageUnavailableError
from authsession.services._shared.ports.blacklist import TokenBlacklist


class RedisTokenBlacklist(TokenBlacklist):
    """
    Blacklist for **access tokens** by jti, expiring natively via Redis TTL.
    """

    def __init__(self, r: redis.Redis, clock: Clock | None = None, prefix: str = "deny:at:"):
        self.r = r
        self.clock = clock or SystemClock()
        self.prefix = prefix

    def _k(self, jti: str) -> str:
        return f"{self.prefix}{jti}"

    def add(self, *, jti: str, expires_at: datetime) -> None:
        remaining = (as_utc(expires_at) - self.clock.now()).total_seconds()
        if remaining <= 0:
            return
        ttl = max(1, math.ceil(remaining))
        try:
            # store a small marker with TTL; idempotent
            self.r.set(self._k(jti), "1", ex=ttl)
        except RedisError as exc:
            raise StorageUnavailableError(backend="blacklist", detail=str(exc)) from exc

    def contains(self, jti: str) -> bool:
        try:
            return cast(int, self.r.exists(self._k(jti))) == 1
        except RedisError as exc:
            raise StorageUnavailableError(backend="blacklist", detail=str(exc)) from exc

    def purge_expired(self) -> int:
        # Redis evicts expired keys on its own
        return 0
