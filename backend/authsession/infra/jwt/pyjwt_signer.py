# authsession/infra/jwt/pyjwt_signer.py
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, cast

import jwt
from jwt.exceptions import (
    DecodeError,
    InvalidAlgorithmError,
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidKeyError,
    InvalidSignatureError,
    MissingRequiredClaimError,
    PyJWTError,
)

from authsession.services._shared.errors import SigningKeyError
from authsession.services._shared.ports.signer import TokenSigner, TokenVerificationError
from authsession.services.tokens.dto import TokenError

SYMMETRIC_PREFIX = "HS"
REQUIRED_CLAIMS = ["sub", "jti", "iat", "exp"]


@dataclass(slots=True)
class PyJWTSigner(TokenSigner):
    """
    Adapter signing access tokens with PyJWT.

    HMAC algorithms (``HS*``) use ``secret`` for both operations; asymmetric
    ones sign with ``private_key`` and verify with ``public_key`` (PEM).

    :param algorithm: JWS algorithm name.
    :param secret: Shared secret for ``HS*``.
    :param private_key: PEM private key for asymmetric algorithms.
    :param public_key: PEM public key for asymmetric algorithms.
    :param issuer: Stamped by the issuer and required on verification.
    :param audience: Stamped by the issuer and required on verification.
    """

    algorithm: str = "HS256"
    secret: str | None = None
    private_key: str | None = None
    public_key: str | None = None
    issuer: str | None = None
    audience: str | None = None
    _signing_key: Any = field(init=False, repr=False, default=None)
    _verifying_key: Any = field(init=False, repr=False, default=None)

    def __post_init__(self) -> None:
        if self.is_symmetric:
            if not self.secret:
                raise SigningKeyError(f"{self.algorithm} requires a shared secret.")
            self._signing_key = self._verifying_key = self.secret
        else:
            if not self.private_key or not self.public_key:
                raise SigningKeyError(f"{self.algorithm} requires a PEM key pair.")
            self._signing_key = self.private_key
            self._verifying_key = self.public_key

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> PyJWTSigner:
        """Build a signer from the ``JWT_*`` keys of a Flask config."""
        return cls(
            algorithm=str(config.get("JWT_ALGORITHM", "HS256")),
            secret=config.get("JWT_SECRET_KEY"),
            private_key=config.get("JWT_PRIVATE_KEY"),
            public_key=config.get("JWT_PUBLIC_KEY"),
            issuer=config.get("JWT_ISSUER") or None,
            audience=config.get("JWT_AUDIENCE") or None,
        )

    @property
    def is_symmetric(self) -> bool:
        return self.algorithm.upper().startswith(SYMMETRIC_PREFIX)

    # ------------------------------ API ------------------------------

    def sign(self, payload: dict[str, Any]) -> str:
        try:
            token = jwt.encode(payload, self._signing_key, algorithm=self.algorithm)
        except (InvalidKeyError, ValueError, TypeError) as exc:
            raise SigningKeyError(f"Unable to sign with {self.algorithm}: {exc}") from exc
        # PyJWT 2.x returns str; older type stubs may declare bytes
        return str(token)

    def verify(self, token: str) -> dict[str, Any]:
        try:
            payload = jwt.decode(
                token,
                self._verifying_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                audience=self.audience,
                options={
                    "require": REQUIRED_CLAIMS,
                    # time claims are checked by the issuer against its clock
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                },
            )
        except (InvalidSignatureError, InvalidAlgorithmError) as exc:
            raise TokenVerificationError(TokenError.BAD_SIGNATURE, str(exc)) from exc
        except (InvalidIssuerError, InvalidAudienceError) as exc:
            raise TokenVerificationError(TokenError.BAD_SIGNATURE, str(exc)) from exc
        except (MissingRequiredClaimError, DecodeError) as exc:
            raise TokenVerificationError(TokenError.MALFORMED, str(exc)) from exc
        except PyJWTError as exc:
            raise TokenVerificationError(TokenError.MALFORMED, str(exc)) from exc
        return cast(dict[str, Any], payload)
