# authsession/services/sessions/dto.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Literal

from authsession.services._shared.ports.refresh_token_store import RefreshTokenRecord
from authsession.services.tokens.dto import TokenError

# ---------------------------- Failure variants ----------------------------- #


class FailureReason(str, Enum):
    """
    Business outcomes of the session state machine that deny a request.

    These distinctions exist for logs and audit only; the transport layer
    collapses all of them into a single "please log in again" answer.
    """

    INVALID_TOKEN = "invalid_token"
    EXPIRED_TOKEN = "expired_token"
    REVOKED_TOKEN = "revoked_token"
    TOKEN_REUSE_DETECTED = "token_reuse_detected"
    DEVICE_MISMATCH = "device_mismatch"
    ACCOUNT_UNAVAILABLE = "account_unavailable"

    @classmethod
    def from_token_error(cls, error: TokenError) -> FailureReason:
        """Fold an access-token validation category into the session taxonomy."""
        if error is TokenError.EXPIRED:
            return cls.EXPIRED_TOKEN
        if error is TokenError.REVOKED:
            return cls.REVOKED_TOKEN
        return cls.INVALID_TOKEN


@dataclass(frozen=True, slots=True)
class SessionFailure:
    """
    Denied session operation.

    :param reason: Machine-readable failure category.
    :type reason: FailureReason
    :param user_id: Owner of the presented token, when known (audit only).
    :type user_id: str | None
    """

    reason: FailureReason
    user_id: str | None = None
    ok: Literal[False] = False


# --------------------------- Success variants ------------------------------ #


@dataclass(frozen=True, slots=True)
class SessionTokens:
    """
    Token pair handed to the client.

    :param access_token: Encoded access JWT.
    :type access_token: str
    :param refresh_token: Opaque refresh secret.
    :type refresh_token: str
    :param user_id: Session owner.
    :type user_id: str
    :param device_id: Device the refresh token is bound to.
    :type device_id: str
    :param access_expires_at: Access token ``exp``.
    :type access_expires_at: datetime
    :param refresh_expires_at: Refresh token expiry.
    :type refresh_expires_at: datetime
    :param expires_in: Access token lifetime in seconds.
    :type expires_in: int
    :param evicted: Older sessions revoked by the device limit.
    :type evicted: int
    """

    access_token: str
    refresh_token: str
    user_id: str
    device_id: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    expires_in: int
    evicted: int = 0
    ok: Literal[True] = True


SessionResult = SessionTokens | SessionFailure


@dataclass(frozen=True, slots=True)
class SessionInfo:
    """
    Public view of an active session; never carries the refresh secret.
    """

    id: str
    device_id: str
    issued_at: datetime
    expires_at: datetime
    last_used_at: datetime | None
    ip_address: str | None
    user_agent: str | None

    @classmethod
    def from_record(cls, record: RefreshTokenRecord) -> SessionInfo:
        return cls(
            id=record.id,
            device_id=record.device_id,
            issued_at=record.issued_at,
            expires_at=record.expires_at,
            last_used_at=record.last_used_at,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
        )
