"""
authsession.services._shared.ports
==================================

Collection of *ports* (hexagonal interfaces) that the session manager
depends on.

Modules
-------
- :mod:`refresh_token_store`:
    :class:`~.RefreshTokenStore` and :class:`~.RefreshTokenRecord`, the
    persistence contract with its atomic conditional update.

- :mod:`blacklist`:
    :class:`~.TokenBlacklist`, revoked access-token ``jti`` lookup with TTL.

- :mod:`signer`:
    :class:`~.TokenSigner`, signs/verifies access-token payloads.

- :mod:`user_directory`:
    :class:`~.UserDirectory` and :class:`~.UserIdentity`, the narrow view of
    the user-management collaborator.

Concrete adapters (SQLAlchemy, Redis, PyJWT) live under ``authsession.infra``.
"""

from __future__ import annotations

from .blacklist import InMemoryBlacklist, TokenBlacklist
from .refresh_token_store import (
    InMemoryRefreshTokenStore,
    RefreshTokenRecord,
    RefreshTokenStore,
    new_record_id,
    new_token_value,
)
from .signer import TokenSigner, TokenVerificationError
from .user_directory import InMemoryUserDirectory, UserDirectory, UserIdentity

__all__ = [
    "TokenBlacklist",
    "InMemoryBlacklist",
    "RefreshTokenRecord",
    "RefreshTokenStore",
    "InMemoryRefreshTokenStore",
    "new_record_id",
    "new_token_value",
    "TokenSigner",
    "TokenVerificationError",
    "UserDirectory",
    "UserIdentity",
    "InMemoryUserDirectory",
]
