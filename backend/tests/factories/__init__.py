"""Factory Boy factories for session records and ``refresh_tokens`` rows."""

from __future__ import annotations

import factory
from authsession.core.extensions import db


class BaseFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Persist through the app-scoped ``db.session`` (needs the ``db`` fixture).

    Rows are flushed, not committed, so the ``session`` fixture can roll
    them back.
    """

    class Meta:
        abstract = True
        sqlalchemy_session = db.session
        sqlalchemy_session_persistence = "flush"
