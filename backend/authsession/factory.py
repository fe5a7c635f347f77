"""Application factory wiring Flask extensions and the session manager."""

from __future__ import annotations

import atexit
import logging

from flask import Flask
from authsession.core.clock import SystemClock
from authsession.core.config import (
    BaseConfig,
    SessionSettings,
    as_bool,
    get_config,
    signing_config_errors,
)
from authsession.core.logger import configure_logging, init_app as init_logging
from authsession.services._shared.errors import ConfigurationError

log = logging.getLogger(__name__)


def create_app(
    config: str | type[BaseConfig] | object | None = None,
    *,
    instance_relative_config: bool = True,
    instance_config_filename: str = "config.py",
) -> Flask:
    """Build and configure the Flask application."""

    app = Flask(__name__, instance_relative_config=instance_relative_config)

    app.config.from_object(get_config() if config is None else config)
    if instance_relative_config and instance_config_filename:
        app.config.from_pyfile(instance_config_filename, silent=True)

    configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    from authsession.core import extensions

    extensions.init_app(app)

    init_logging(app)

    init_sessions(app)

    from authsession.core import errors

    errors.init_app(app)

    from authsession import cli as app_cli

    app_cli.init_app(app)

    return app


def init_sessions(app: Flask) -> None:
    """
    Build the session manager and cleanup job and register them on ``app``.

    Stored under ``app.extensions["session_manager"]`` and
    ``app.extensions["session_cleanup"]``.

    :raises ConfigurationError: On invalid lifetimes, limits or key material.
    """
    from authsession.core import extensions
    from authsession.infra.jwt.pyjwt_signer import PyJWTSigner
    from authsession.infra.redis.redis_blacklist import RedisTokenBlacklist
    from authsession.infra.sqlalchemy.refresh_token_store import SQLAlchemyRefreshTokenStore
    from authsession.services._shared.ports.blacklist import InMemoryBlacklist, TokenBlacklist
    from authsession.services.sessions.cleanup import CleanupScheduler
    from authsession.services.sessions.service import SessionManager
    from authsession.services.tokens.issuer import TokenIssuer

    settings = SessionSettings.from_mapping(app.config).validate()
    if not (app.testing or app.debug):
        problems = signing_config_errors(app.config)
        if problems:
            raise ConfigurationError("; ".join(problems))

    signer = PyJWTSigner.from_config(app.config)
    clock = SystemClock()

    blacklist: TokenBlacklist
    if extensions.redis_client is not None:
        blacklist = RedisTokenBlacklist(extensions.redis_client, clock=clock)
    else:
        blacklist = InMemoryBlacklist(clock=clock)

    store = SQLAlchemyRefreshTokenStore(extensions.session_factory(app))

    issuer = TokenIssuer(
        signer=signer,
        blacklist=blacklist,
        settings=settings,
        clock=clock,
        issuer=signer.issuer,
        audience=signer.audience,
    )
    manager = SessionManager(
        store=store, issuer=issuer, blacklist=blacklist, settings=settings, clock=clock
    )
    cleanup = CleanupScheduler(store=store, blacklist=blacklist, settings=settings, clock=clock)

    app.extensions["session_manager"] = manager
    app.extensions["session_cleanup"] = cleanup

    if as_bool(app.config.get("CLEANUP_ENABLED")):
        cleanup.start()
        atexit.register(cleanup.shutdown)

    log.info(
        "Session manager ready (rotation=%s, blacklist=%s, max_devices=%d)",
        settings.rotation_enabled,
        type(blacklist).__name__,
        settings.max_active_devices,
    )
