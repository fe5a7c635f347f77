"""
Service-level exceptions for the token lifecycle manager.

These exceptions are **framework-agnostic** and never import Flask or HTTP
helpers. Business outcomes of the session state machine (expired, revoked,
reuse, ...) are *not* exceptions: they are returned as typed
:class:`~authsession.services.sessions.dto.SessionFailure` values. Only
infrastructure and configuration faults are raised.

The translation to HTTP responses (RFC 7807) is handled by
``authsession/core/errors.py``.
"""

from __future__ import annotations

# --------------------------------------------------------------------------- #
# Base types
# --------------------------------------------------------------------------- #


class ServiceError(Exception):
    """
    Base class for all service-level errors.

    Notes
    -----
    - These are *not* HTTP errors.
    - They can be safely raised from stores, adapters or services.
    """

    pass


# --------------------------------------------------------------------------- #
# Infrastructure / configuration errors
# --------------------------------------------------------------------------- #


class StorageUnavailableError(ServiceError):
    """
    Raised when a store or cache call fails or the caller's deadline lapses.

    Fatal for the current call. Rotation writes are not idempotent, so the
    service never retries them; the caller's own policy decides.

    :param backend: Name of the failing collaborator (e.g. ``"refresh_store"``).
    :type backend: str
    :param detail: Short explanation safe for logs.
    :type detail: str
    """

    def __init__(self, backend: str, detail: str = "unavailable") -> None:
        super().__init__(f"{backend} unavailable: {detail}")
        self.backend = backend
        self.detail = detail


class ConfigurationError(ServiceError):
    """Raised when session settings or key material are invalid."""


class SigningKeyError(ConfigurationError):
    """Raised when the access-token signing key is missing or unusable."""
