"""Application settings with environment-based simple classes."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Final

from dotenv import load_dotenv

from authsession.services._shared.errors import ConfigurationError

# Public selector env var (keep neutral name to avoid collisions)
ENV_VAR: Final[str] = "APP_ENV"  # 'development' | 'testing' | 'production'

# HMAC keys shorter than this are rejected unless DEBUG or TESTING is on
MIN_HMAC_SECRET_BYTES: Final[int] = 32

TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "y", "on"})

# Load .env in development (no-op when the file does not exist)
load_dotenv()


def env_bool(name: str, default: bool = False) -> bool:
    """Parse a boolean flag from an environment variable.

    Parameters
    ----------
    name: str
        Environment variable to inspect.
    default: bool, optional
        Value returned when the variable is unset. Defaults to ``False``.

    Returns
    -------
    bool
        ``True`` if the value resembles ``{"1", "true", "yes", "y", "on"}``
        ignoring case; otherwise ``False`` or ``default`` when missing.
    """
    return as_bool(os.getenv(name), default)


def as_bool(value: Any, default: bool = False) -> bool:
    """Interpret a config value as a flag; strings follow :func:`env_bool`."""
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY
    return bool(value)


def env_int(name: str, default: int) -> int:
    """Parse an integer from an environment variable, falling back to ``default``."""
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    return int(val)


class BaseConfig:
    """Base configuration shared across environments.

    Attributes
    ----------
    SECRET_KEY: str
        Flask secret. Unused by the token manager but required by Flask.
    JWT_SECRET_KEY: str
        Symmetric key used to sign access tokens (HS* algorithms).
    JWT_ALGORITHM: str
        Signing algorithm. ``RS*``/``ES*`` require the key pair below.
    JWT_PRIVATE_KEY / JWT_PUBLIC_KEY: str | None
        PEM key pair for asymmetric signing.
    JWT_ISSUER / JWT_AUDIENCE: str | None
        Optional ``iss``/``aud`` claims stamped on and required from tokens.
    JWT_LEEWAY_SECONDS: int
        Clock skew tolerated when checking ``exp``.
    ACCESS_TOKEN_LIFETIME_MINUTES: int
        Access token lifetime.
    REFRESH_TOKEN_LIFETIME_DAYS: int
        Refresh token lifetime.
    MAX_ACTIVE_DEVICES: int
        Maximum active refresh tokens per user; the oldest is evicted beyond it.
    REFRESH_TOKEN_ROTATION: bool
        Issue a successor on every refresh. ``False`` is a reduced-security
        mode that extends the presented token in place (no replay detection).
    CASCADE_REVOKE_ON_REUSE: bool
        Revoke every active session of a user when refresh reuse is detected.
    TOKEN_BLACKLIST_ENABLED: bool
        Consult and populate the access-token blacklist.
    REFRESH_TOKEN_RETENTION_DAYS: int
        Grace window kept for audit before expired records are deleted.
    CLEANUP_ENABLED / CLEANUP_INTERVAL_SECONDS:
        Background sweep toggle and period.
    STORE_TIMEOUT_SECONDS: float
        Socket timeout applied to the Redis client.
    SQLALCHEMY_DATABASE_URI: str
        Database holding the ``refresh_tokens`` table.
    REDIS_URL: str | None
        When set, the blacklist is backed by Redis; otherwise in-memory.
    LOG_LEVEL: str
        Root logging verbosity (``INFO`` by default).

    Notes
    -----
    Values are primarily sourced from environment variables, enabling
    configuration without code changes.
    """

    SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME")

    # Signing
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "CHANGE_ME_JWT")
    JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_PRIVATE_KEY = os.getenv("JWT_PRIVATE_KEY")
    JWT_PUBLIC_KEY = os.getenv("JWT_PUBLIC_KEY")
    JWT_ISSUER = os.getenv("JWT_ISSUER")
    JWT_AUDIENCE = os.getenv("JWT_AUDIENCE")
    JWT_LEEWAY_SECONDS = env_int("JWT_LEEWAY_SECONDS", 0)

    # Token lifecycle
    ACCESS_TOKEN_LIFETIME_MINUTES = env_int("ACCESS_TOKEN_LIFETIME_MINUTES", 15)
    REFRESH_TOKEN_LIFETIME_DAYS = env_int("REFRESH_TOKEN_LIFETIME_DAYS", 7)
    MAX_ACTIVE_DEVICES = env_int("MAX_ACTIVE_DEVICES", 5)
    REFRESH_TOKEN_ROTATION = env_bool("REFRESH_TOKEN_ROTATION", True)
    CASCADE_REVOKE_ON_REUSE = env_bool("CASCADE_REVOKE_ON_REUSE", True)
    TOKEN_BLACKLIST_ENABLED = env_bool("TOKEN_BLACKLIST_ENABLED", True)

    # Cleanup
    REFRESH_TOKEN_RETENTION_DAYS = env_int("REFRESH_TOKEN_RETENTION_DAYS", 7)
    CLEANUP_ENABLED = env_bool("CLEANUP_ENABLED", True)
    CLEANUP_INTERVAL_SECONDS = env_int("CLEANUP_INTERVAL_SECONDS", 3600)

    # Storage
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///./dev.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = env_bool("SQLALCHEMY_ECHO", False)
    REDIS_URL = os.getenv("REDIS_URL")
    STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", "2"))

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Flask built-ins
    DEBUG = False
    TESTING = False


class DevelopmentConfig(BaseConfig):
    """Configuration tailored for local development."""

    DEBUG = env_bool("FLASK_DEBUG", True)
    SQLALCHEMY_ECHO = env_bool("SQLALCHEMY_ECHO", False)


class TestingConfig(BaseConfig):
    """Configuration for automated test runs.

    Notes
    -----
    - Uses an in-memory SQLite database unless ``TEST_DATABASE_URL`` is set.
    - Keeps the background sweep off; tests drive it explicitly.
    - Forces the in-memory blacklist.
    """

    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    CLEANUP_ENABLED = False
    REDIS_URL = None
    JWT_SECRET_KEY = "testing-secret-key-0123456789abcdef"
    JWT_ALGORITHM = "HS256"


class ProductionConfig(BaseConfig):
    """Configuration defaults for production deployments."""

    DEBUG = False
    SQLALCHEMY_ECHO = False


# Map names -> classes (simple, explicit)
CONFIG_MAP: Mapping[str, type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
}


def get_config() -> type[BaseConfig]:
    """Return the configuration class inferred from ``APP_ENV``.

    Falls back to :class:`DevelopmentConfig` when ``APP_ENV`` is unset or
    unknown.
    """
    name = os.getenv(ENV_VAR, "development").strip().lower()
    return CONFIG_MAP.get(name, DevelopmentConfig)


# ---------------------------------------------------------------------------
# Typed settings consumed by the service layer
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SessionSettings:
    """
    Tunable token lifecycle parameters.

    :param access_token_lifetime: Access token lifetime.
    :param refresh_token_lifetime: Refresh token lifetime.
    :param max_active_devices: Active refresh tokens allowed per user.
    :param rotation_enabled: Rotate refresh tokens on use.
    :param cascade_revoke_on_reuse: Revoke all user sessions on replay.
    :param blacklist_enabled: Consult/populate the access-token blacklist.
    :param refresh_token_retention: Audit grace window before deletion.
    :param cleanup_interval: Period of the background sweep.
    :param leeway: Clock skew tolerated when checking ``exp``.
    """

    access_token_lifetime: timedelta = timedelta(minutes=15)
    refresh_token_lifetime: timedelta = timedelta(days=7)
    max_active_devices: int = 5
    rotation_enabled: bool = True
    cascade_revoke_on_reuse: bool = True
    blacklist_enabled: bool = True
    refresh_token_retention: timedelta = timedelta(days=7)
    cleanup_interval: timedelta = timedelta(hours=1)
    leeway: timedelta = timedelta(0)

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> SessionSettings:
        """Build settings from a Flask config (or any mapping of the same keys)."""
        return cls(
            access_token_lifetime=timedelta(
                minutes=int(config.get("ACCESS_TOKEN_LIFETIME_MINUTES", 15))
            ),
            refresh_token_lifetime=timedelta(days=int(config.get("REFRESH_TOKEN_LIFETIME_DAYS", 7))),
            max_active_devices=int(config.get("MAX_ACTIVE_DEVICES", 5)),
            rotation_enabled=as_bool(config.get("REFRESH_TOKEN_ROTATION"), True),
            cascade_revoke_on_reuse=as_bool(config.get("CASCADE_REVOKE_ON_REUSE"), True),
            blacklist_enabled=as_bool(config.get("TOKEN_BLACKLIST_ENABLED"), True),
            refresh_token_retention=timedelta(
                days=int(config.get("REFRESH_TOKEN_RETENTION_DAYS", 7))
            ),
            cleanup_interval=timedelta(seconds=int(config.get("CLEANUP_INTERVAL_SECONDS", 3600))),
            leeway=timedelta(seconds=int(config.get("JWT_LEEWAY_SECONDS", 0))),
        )

    def validation_errors(self) -> list[str]:
        """Return human-readable problems with these settings (empty when valid)."""
        errors: list[str] = []
        if self.access_token_lifetime <= timedelta(0):
            errors.append("Access token lifetime must be positive.")
        if self.refresh_token_lifetime <= timedelta(0):
            errors.append("Refresh token lifetime must be positive.")
        if self.refresh_token_lifetime <= self.access_token_lifetime:
            errors.append("Refresh token lifetime must exceed the access token lifetime.")
        if self.max_active_devices < 1:
            errors.append("Max active devices must be at least 1.")
        if self.refresh_token_retention < timedelta(0):
            errors.append("Refresh token retention cannot be negative.")
        if self.cleanup_interval <= timedelta(0):
            errors.append("Cleanup interval must be positive.")
        if self.leeway < timedelta(0):
            errors.append("JWT leeway cannot be negative.")
        return errors

    def validate(self) -> SessionSettings:
        """
        Raise :class:`ConfigurationError` listing every invalid setting.

        :returns: ``self`` for chaining.
        """
        errors = self.validation_errors()
        if errors:
            raise ConfigurationError("; ".join(errors))
        return self


def signing_config_errors(config: Mapping[str, Any]) -> list[str]:
    """
    Return problems with the ``JWT_*`` signing configuration.

    :param config: Flask config (or any mapping of the same keys).
    :returns: Human-readable problems (empty when usable).
    """
    errors: list[str] = []
    algorithm = str(config.get("JWT_ALGORITHM") or "")
    if not algorithm:
        errors.append("JWT_ALGORITHM must be set.")
    elif algorithm.upper().startswith("HS"):
        secret = config.get("JWT_SECRET_KEY") or ""
        if len(str(secret).encode("utf-8")) < MIN_HMAC_SECRET_BYTES:
            errors.append(
                f"JWT_SECRET_KEY must be at least {MIN_HMAC_SECRET_BYTES} bytes for {algorithm}."
            )
    elif not config.get("JWT_PRIVATE_KEY") or not config.get("JWT_PUBLIC_KEY"):
        errors.append(f"{algorithm} requires JWT_PRIVATE_KEY and JWT_PUBLIC_KEY.")
    return errors
