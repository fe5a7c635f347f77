"""Persisted models registered on the shared SQLAlchemy metadata."""

from .refresh_token import RefreshToken

__all__ = ["RefreshToken"]
