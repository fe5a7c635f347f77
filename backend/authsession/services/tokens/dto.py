# authsession/services/tokens/dto.py
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

ACCESS_TOKEN_TYPE = "access"

# Claims owned by the issuer; extra claims may never override them
RESERVED_CLAIMS = frozenset({"sub", "jti", "iat", "exp", "nbf", "iss", "aud", "typ"})


class TokenError(str, Enum):
    """Category of an access-token validation failure."""

    MALFORMED = "malformed"
    EXPIRED = "expired"
    BAD_SIGNATURE = "bad-signature"
    REVOKED = "revoked"


def _ts(value: datetime) -> int:
    return int(value.timestamp())


def _dt(value: Any) -> datetime:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValueError(f"Expected a numeric timestamp, got {type(value).__name__}.")
    return datetime.fromtimestamp(int(value), tz=UTC)


@dataclass(frozen=True, slots=True)
class AccessTokenClaims:
    """
    Claims carried by an access token. Never persisted.

    :param sub: Subject (user id).
    :type sub: str
    :param jti: Unique token identifier, the blacklist key.
    :type jti: str
    :param iat: Issued-at (UTC, whole seconds).
    :type iat: datetime
    :param exp: Expires-at (UTC, whole seconds).
    :type exp: datetime
    :param iss: Optional issuer.
    :type iss: str | None
    :param aud: Optional audience.
    :type aud: str | None
    :param extra: Additional claims (roles, permissions, device id).
    :type extra: dict[str, Any]
    """

    sub: str
    jti: str
    iat: datetime
    exp: datetime
    iss: str | None = None
    aud: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """Serialize to a JWT payload."""
        payload: dict[str, Any] = dict(self.extra)
        payload.update(
            {
                "sub": self.sub,
                "jti": self.jti,
                "iat": _ts(self.iat),
                "exp": _ts(self.exp),
                "typ": ACCESS_TOKEN_TYPE,
            }
        )
        if self.iss is not None:
            payload["iss"] = self.iss
        if self.aud is not None:
            payload["aud"] = self.aud
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> AccessTokenClaims:
        """
        Parse a decoded JWT payload.

        :raises ValueError: If a required claim is missing or mistyped.
        """
        if payload.get("typ") != ACCESS_TOKEN_TYPE:
            raise ValueError("Not an access token.")
        sub = payload.get("sub")
        jti = payload.get("jti")
        if not isinstance(sub, str) or not sub:
            raise ValueError("Missing subject.")
        if not isinstance(jti, str) or not jti:
            raise ValueError("Missing jti.")
        aud = payload.get("aud")
        return cls(
            sub=sub,
            jti=jti,
            iat=_dt(payload.get("iat")),
            exp=_dt(payload.get("exp")),
            iss=payload.get("iss"),
            aud=aud if isinstance(aud, str) or aud is None else None,
            extra={k: v for k, v in payload.items() if k not in RESERVED_CLAIMS},
        )

    @property
    def permissions(self) -> list[str]:
        value = self.extra.get("permissions") or []
        return [str(p) for p in value] if isinstance(value, list) else []

    @property
    def roles(self) -> list[str]:
        value = self.extra.get("roles") or []
        return [str(r) for r in value] if isinstance(value, list) else []


@dataclass(frozen=True, slots=True)
class IssuedAccessToken:
    """
    A freshly signed access token and the claims it carries.

    :param token: Encoded JWT.
    :type token: str
    :param claims: Claims embedded in ``token``.
    :type claims: AccessTokenClaims
    """

    token: str
    claims: AccessTokenClaims


@dataclass(frozen=True, slots=True)
class TokenValidation:
    """
    Structured outcome of :meth:`TokenIssuer.validate`.

    :param valid: Whether the token may be accepted.
    :type valid: bool
    :param claims: Decoded claims (present when the signature verified).
    :type claims: AccessTokenClaims | None
    :param error: Failure category when ``valid`` is ``False``.
    :type error: TokenError | None
    """

    valid: bool
    claims: AccessTokenClaims | None = None
    error: TokenError | None = None

    @classmethod
    def ok(cls, claims: AccessTokenClaims) -> TokenValidation:
        return cls(valid=True, claims=claims)

    @classmethod
    def invalid(cls, error: TokenError, claims: AccessTokenClaims | None = None) -> TokenValidation:
        return cls(valid=False, claims=claims, error=error)
