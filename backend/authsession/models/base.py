"""Reusable SQLAlchemy mixins shared by persisted models (typed 2.0)."""

from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column


class HexPKMixin:
    """Expose a 32-char hex string primary key column named ``id``.

    Attributes
    ----------
    id:
        Application-generated identifier (``uuid4().hex``). Generated by the
        service rather than the database so that rotation can reference a
        successor before it is inserted.
    """

    id: Mapped[str] = mapped_column(String(32), primary_key=True)


class ReprMixin:
    """Provide a concise ``__repr__`` including the class name and id."""

    def __repr__(self) -> str:
        """Return a short and useful string representation.

        :returns: Debug-friendly ``<ClassName id=...>``.
        :rtype: str
        """
        cls = self.__class__.__name__
        key = getattr(self, "id", None)
        return f"<{cls} id={key}>"
