"""Request helpers that let route handlers consume the session manager."""

from __future__ import annotations

import functools
from collections.abc import Callable
from typing import Any, TypeVar

from flask import current_app, g, request

from authsession.core.errors import Forbidden, Unauthorized, validation_to_api_error
from authsession.services.sessions.service import SessionManager
from authsession.services.tokens.dto import AccessTokenClaims

F = TypeVar("F", bound=Callable[..., Any])

BEARER_PREFIX = "Bearer "


def get_session_manager() -> SessionManager:
    """Return the manager registered by the application factory."""

    return current_app.extensions["session_manager"]


def bearer_token() -> str | None:
    """Extract the bearer token from the ``Authorization`` header."""

    header = request.headers.get("Authorization", "")
    if not header.startswith(BEARER_PREFIX):
        return None
    return header[len(BEARER_PREFIX) :].strip() or None


def current_claims() -> AccessTokenClaims:
    """Return the claims verified by :func:`require_auth` for this request."""

    claims = getattr(g, "access_claims", None)
    if claims is None:
        raise Unauthorized()
    return claims


def require_auth(func: F) -> F:
    """Ensure the request carries a valid, non-revoked access token."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any):
        token = bearer_token()
        if token is None:
            raise Unauthorized()
        result = get_session_manager().validate(token)
        error = validation_to_api_error(result)
        if error is not None:
            raise error
        g.access_claims = result.claims
        return func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]


def require_permission(required: str) -> Callable[[F], F]:
    """Ensure the verified access token carries the ``required`` permission."""

    def decorator(func: F) -> F:
        @require_auth
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any):
            if required not in current_claims().permissions:
                raise Forbidden("Insufficient permissions")
            return func(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator
