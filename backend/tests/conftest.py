"""Pytest fixtures for the session manager.

Unit fixtures wire the manager against in-memory ports and a manual clock.
Database fixtures build the Flask app on an in-memory SQLite database and
recreate the schema for every test that asks for it.
"""

from __future__ import annotations

import os

import pytest
from authsession.core.config import SessionSettings, TestingConfig
from authsession.core.extensions import db as _db  # Flask-SQLAlchemy instance
from authsession.core.extensions import session_factory
from authsession.factory import create_app  # application factory under test
from authsession.infra.jwt.pyjwt_signer import PyJWTSigner
from authsession.infra.sqlalchemy.refresh_token_store import SQLAlchemyRefreshTokenStore
from authsession.services._shared.ports.blacklist import InMemoryBlacklist
from authsession.services._shared.ports.refresh_token_store import InMemoryRefreshTokenStore
from authsession.services.sessions.service import SessionManager
from authsession.services.tokens.issuer import TokenIssuer

from tests.helpers.clock import ManualClock

TEST_SECRET = "unit-test-secret-0123456789abcdefghij"


# -- Flask app + database ------------------------------------------------------


@pytest.fixture(scope="session")
def app():
    """Create a Flask application configured for testing.

    Returns
    -------
    flask.Flask
        Application instance with :class:`TestingConfig` applied and logging
        noise reduced.
    """
    # Ensure env-based config does not leak into tests
    os.environ.pop("DATABASE_URL", None)
    app = create_app(TestingConfig)
    app.logger.setLevel("WARNING")
    return app


@pytest.fixture
def db(app):
    """Create the schema for one test and drop it afterwards.

    Yields
    ------
    flask_sqlalchemy.SQLAlchemy
        Database extension bound to the testing application.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def session(db):
    """Yield the request-scoped session used by factories, rolled back afterwards."""
    yield db.session
    db.session.rollback()


@pytest.fixture
def sql_store(app, db):
    """SQL-backed refresh-token store using its own short-lived sessions."""
    return SQLAlchemyRefreshTokenStore(session_factory(app))


@pytest.fixture(scope="session")
def faker():
    """Provide a :class:`faker.Faker` instance seeded for deterministic tests."""
    from faker import Faker

    fk = Faker()
    Faker.seed(1337)
    return fk


# -- Session manager wiring (no Flask) ---------------------------------------


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def settings():
    return SessionSettings()


@pytest.fixture
def signer():
    return PyJWTSigner(secret=TEST_SECRET)


@pytest.fixture
def blacklist(clock):
    return InMemoryBlacklist(clock=clock)


@pytest.fixture
def store():
    return InMemoryRefreshTokenStore()


@pytest.fixture
def issuer(signer, blacklist, settings, clock):
    return TokenIssuer(signer=signer, blacklist=blacklist, settings=settings, clock=clock)


@pytest.fixture
def manager(store, issuer, blacklist, settings, clock):
    return SessionManager(
        store=store, issuer=issuer, blacklist=blacklist, settings=settings, clock=clock
    )


@pytest.fixture
def make_manager(store, signer, blacklist, clock):
    """Build a manager over the shared ports with overridden settings."""

    def _make(users=None, **overrides) -> SessionManager:
        tuned = SessionSettings(**overrides)
        tuned_issuer = TokenIssuer(signer=signer, blacklist=blacklist, settings=tuned, clock=clock)
        return SessionManager(
            store=store,
            issuer=tuned_issuer,
            blacklist=blacklist,
            settings=tuned,
            clock=clock,
            users=users,
        )

    return _make
