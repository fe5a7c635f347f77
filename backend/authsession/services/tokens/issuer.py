# authsession/services/tokens/issuer.py
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any
from uuid import uuid4

from authsession.core.clock import Clock, SystemClock
from authsession.core.config import SessionSettings
from authsession.services._shared.ports.blacklist import TokenBlacklist
from authsession.services._shared.ports.signer import TokenSigner, TokenVerificationError
from authsession.services._shared.ports.user_directory import UserIdentity
from authsession.services.tokens.dto import (
    RESERVED_CLAIMS,
    AccessTokenClaims,
    IssuedAccessToken,
    TokenError,
    TokenValidation,
)

log = logging.getLogger(__name__)


class TokenIssuer:
    """
    Build and validate short-lived access tokens.

    The issuer never touches the refresh-token store. Validation is the only
    place the blacklist is read, and only once signature and expiry have
    passed.
    """

    def __init__(
        self,
        *,
        signer: TokenSigner,
        blacklist: TokenBlacklist,
        settings: SessionSettings | None = None,
        clock: Clock | None = None,
        issuer: str | None = None,
        audience: str | None = None,
    ) -> None:
        """
        :param signer: Signs/verifies payloads (key material lives there).
        :param blacklist: Revoked ``jti`` lookup.
        :param settings: Lifetimes, leeway and the blacklist toggle.
        :param clock: Time source for ``iat``/``exp``.
        :param issuer: ``iss`` claim to stamp (must match the signer's check).
        :param audience: ``aud`` claim to stamp (must match the signer's check).
        """
        self.signer = signer
        self.blacklist = blacklist
        self.settings = settings or SessionSettings()
        self.clock = clock or SystemClock()
        self.issuer = issuer
        self.audience = audience

    # ------------------------------------------------------------------ #
    # Issue
    # ------------------------------------------------------------------ #

    def issue_access_token(
        self, user: UserIdentity, extra_claims: Mapping[str, Any] | None = None
    ) -> IssuedAccessToken:
        """
        Sign a new access token for ``user``.

        :param user: Validated identity (availability is the caller's concern).
        :param extra_claims: Roles/permissions etc. Reserved claims are ignored.
        :returns: The encoded token and its claims.
        :raises SigningKeyError: If the signing key is unusable.
        """
        now = self.clock.now().replace(microsecond=0)
        extra = {k: v for k, v in (extra_claims or {}).items() if k not in RESERVED_CLAIMS}
        claims = AccessTokenClaims(
            sub=user.user_id,
            jti=uuid4().hex,
            iat=now,
            exp=now + self.settings.access_token_lifetime,
            iss=self.issuer,
            aud=self.audience,
            extra=extra,
        )
        token = self.signer.sign(claims.to_payload())
        return IssuedAccessToken(token=token, claims=claims)

    # ------------------------------------------------------------------ #
    # Validate
    # ------------------------------------------------------------------ #

    def validate(self, token: str) -> TokenValidation:
        """
        Check signature, expiry and blacklist membership.

        Never raises on bad input; only an unreachable blacklist propagates
        (as :class:`StorageUnavailableError`), so a revoked token is never
        accepted by accident.
        """
        if not isinstance(token, str) or not token.strip():
            return TokenValidation.invalid(TokenError.MALFORMED)

        try:
            payload = self.signer.verify(token)
        except TokenVerificationError as exc:
            log.debug("Access token rejected: %s", exc.error.value)
            return TokenValidation.invalid(exc.error)

        try:
            claims = AccessTokenClaims.from_payload(payload)
        except ValueError:
            return TokenValidation.invalid(TokenError.MALFORMED)

        if claims.exp + self.settings.leeway <= self.clock.now():
            return TokenValidation.invalid(TokenError.EXPIRED, claims)

        # adapters raise StorageUnavailableError when the cache is unreachable
        if self.settings.blacklist_enabled and self.blacklist.contains(claims.jti):
            return TokenValidation.invalid(TokenError.REVOKED, claims)

        return TokenValidation.ok(claims)
