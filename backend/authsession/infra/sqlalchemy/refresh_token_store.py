# comments in English; reST docstrings
from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from authsession.models.refresh_token import RefreshToken
from authsession.services._shared.errors import StorageUnavailableError
from authsession.services._shared.ports.refresh_token_store import (
    RefreshTokenRecord,
    RefreshTokenStore,
)

# Columns a conditional update may write; identity columns never change
MUTABLE_COLUMNS = (
    "expires_at",
    "revoked",
    "revoked_at",
    "revoked_by",
    "revoke_reason",
    "replaced_by",
    "last_used_at",
    "access_jti",
    "access_expires_at",
    "access_claims",
)


class SQLAlchemyRefreshTokenStore(RefreshTokenStore):
    """
    SQL-backed refresh token store.

    Every call runs in its own short transaction opened from
    ``session_factory`` so the store can be shared across request threads and
    the cleanup job without a Flask app context.

    :param session_factory: Callable returning a new :class:`Session`
        (typically a :class:`~sqlalchemy.orm.sessionmaker`).
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    # -------------------- helpers --------------------

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        try:
            with self._session_factory() as session, session.begin():
                yield session
        except IntegrityError as exc:
            raise ValueError("Refresh token record already exists.") from exc
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(
                backend="refresh_store", detail=exc.__class__.__name__
            ) from exc

    # -------------------- API ------------------------

    def create(self, record: RefreshTokenRecord) -> None:
        with self._transaction() as session:
            session.add(RefreshToken.from_record(record))

    def find_by_value(self, token_value: str) -> RefreshTokenRecord | None:
        with self._transaction() as session:
            row = session.execute(
                select(RefreshToken).where(RefreshToken.token_value == token_value)
            ).scalar_one_or_none()
            return row.to_record() if row is not None else None

    def find_by_id(self, record_id: str) -> RefreshTokenRecord | None:
        with self._transaction() as session:
            row = session.get(RefreshToken, record_id)
            return row.to_record() if row is not None else None

    def find_active_by_user(self, user_id: str, now: datetime) -> list[RefreshTokenRecord]:
        stmt = (
            select(RefreshToken)
            .where(
                RefreshToken.user_id == user_id,
                RefreshToken.revoked.is_(False),
                RefreshToken.replaced_by.is_(None),
                RefreshToken.expires_at > now,
            )
            .order_by(RefreshToken.issued_at, RefreshToken.id)
        )
        with self._transaction() as session:
            return [row.to_record() for row in session.execute(stmt).scalars()]

    def update(self, record: RefreshTokenRecord) -> bool:
        """
        Conditionally persist ``record``.

        The ``WHERE`` clause re-checks the terminal flags inside the same
        statement, so of two concurrent rotations only one matches a row.
        """
        stmt = (
            update(RefreshToken)
            .where(
                RefreshToken.id == record.id,
                RefreshToken.revoked.is_(False),
                RefreshToken.replaced_by.is_(None),
            )
            .values({name: getattr(record, name) for name in MUTABLE_COLUMNS})
            .execution_options(synchronize_session=False)
        )
        with self._transaction() as session:
            result = session.execute(stmt)
            return result.rowcount == 1

    def delete_expired_before(self, cutoff: datetime) -> int:
        stmt = (
            delete(RefreshToken)
            .where(RefreshToken.expires_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        with self._transaction() as session:
            result = session.execute(stmt)
            return int(result.rowcount or 0)
