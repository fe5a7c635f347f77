from __future__ import annotations

from typing import Any, Protocol

from authsession.services.tokens.dto import TokenError


class TokenVerificationError(Exception):
    """
    Raised by a :class:`TokenSigner` when a token cannot be trusted.

    :param error: ``TokenError.MALFORMED`` or ``TokenError.BAD_SIGNATURE``.
    """

    def __init__(self, error: TokenError, message: str = "") -> None:
        super().__init__(message or error.value)
        self.error = error


class TokenSigner(Protocol):
    """
    Port for signing and verifying access-token payloads.

    Implementations are stateless apart from key material. Time-based claims
    (``exp``, ``iat``) are *not* checked here; the issuer checks them against
    its injected clock.
    """

    def sign(self, payload: dict[str, Any]) -> str:
        """
        Serialize and sign ``payload``.

        :raises SigningKeyError: If the key is unavailable or unusable.
        """

    def verify(self, token: str) -> dict[str, Any]:
        """
        Verify the signature (and ``iss``/``aud`` when configured).

        :returns: The decoded payload.
        :raises TokenVerificationError: On malformed input or bad signature.
        """

