"""Flask extension singletons and the storage handles built from them."""

from __future__ import annotations

import logging

import redis  # type: ignore[import-untyped]
from flask import Flask
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from redis.exceptions import RedisError  # type: ignore[import-untyped]
from sqlalchemy import MetaData
from sqlalchemy.orm import Session, sessionmaker

log = logging.getLogger(__name__)

# Constraint names stay stable across SQLite and PostgreSQL migrations
NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

db: SQLAlchemy = SQLAlchemy(
    session_options={"autoflush": False},
    metadata=MetaData(naming_convention=NAMING_CONVENTION),
)
migrate = Migrate(render_as_batch=True)

# Set by init_app when REDIS_URL is configured
redis_client: redis.Redis | None = None


def init_app(app: Flask) -> None:
    """Bind SQLAlchemy and Alembic to ``app`` and connect Redis if configured.

    Parameters
    ----------
    app: flask.Flask
        Application to bind. Importing :mod:`authsession.models` here
        registers the ``refresh_tokens`` table on the shared metadata.

    Raises
    ------
    RuntimeError
        If ``REDIS_URL`` is set but the server does not answer ``PING``.
    """
    db.init_app(app)

    from authsession import models as _models  # noqa: F401

    migrate.init_app(app, db)
    init_redis(app)


def init_redis(app: Flask) -> redis.Redis | None:
    """Create the blacklist's Redis client with the configured socket timeouts."""
    global redis_client

    url = app.config.get("REDIS_URL")
    if not url:
        redis_client = None
        app.extensions.pop("redis_client", None)
        return None

    timeout = float(app.config.get("STORE_TIMEOUT_SECONDS", 2))
    client = redis.Redis.from_url(url, socket_timeout=timeout, socket_connect_timeout=timeout)
    try:
        client.ping()
    except RedisError as exc:
        raise RuntimeError(f"Failed to connect to Redis at {url!r}") from exc

    redis_client = client
    app.extensions["redis_client"] = client
    log.info("Redis blacklist connected (timeout=%ss)", timeout)
    return client


def session_factory(app: Flask) -> sessionmaker[Session]:
    """Return a sessionmaker on ``app``'s engine, usable outside an app context.

    The refresh-token store and the cleanup thread open their own short
    transactions through it instead of the request-scoped ``db.session``.
    """
    with app.app_context():
        engine = db.engine
    return sessionmaker(bind=engine, expire_on_commit=False)
