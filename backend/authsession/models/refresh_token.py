"""Refresh token persistence model."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Index, String, UniqueConstraint, false
from sqlalchemy.orm import Mapped, mapped_column

from authsession.core.clock import as_utc
from authsession.core.extensions import db
from authsession.services._shared.ports.refresh_token_store import RefreshTokenRecord

from .base import HexPKMixin, ReprMixin


def _aware(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


class RefreshToken(HexPKMixin, ReprMixin, db.Model):
    """
    One refresh token issued to one device of one user.

    Fields
    ------
    token_value : str
        Opaque bearer secret; exact-match lookups only.
    user_id : str
        Owner id from the user-management collaborator (no FK: external).
    device_id : str
        Explicit device id or fingerprint hash.
    issued_at / expires_at : datetime
        Lifetime bounds.
    revoked, revoked_at, revoked_by, revoke_reason
        Explicit revocation audit trail.
    replaced_by : str | None
        Successor id once rotated out.
    last_used_at : datetime | None
        Last successful refresh.
    ip_address / user_agent : str | None
        Client context at issuance.
    access_jti / access_expires_at
        Access token issued alongside, blacklisted on revocation.
    access_claims : dict | None
        Extra claims carried from login to every refreshed access token.
    """

    __tablename__ = "refresh_tokens"

    token_value: Mapped[str] = mapped_column(String(128), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    device_id: Mapped[str] = mapped_column(String(128), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    revoked: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    revoke_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    replaced_by: Mapped[str | None] = mapped_column(String(32), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    access_jti: Mapped[str | None] = mapped_column(String(64), nullable=True)
    access_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    access_claims: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Constraints & indexes
    __table_args__ = (
        UniqueConstraint("token_value", name="uq_refresh_tokens_token_value"),
        Index("ix_refresh_tokens_user_id_revoked", "user_id", "revoked"),
        Index("ix_refresh_tokens_expires_at", "expires_at"),
    )

    # -------------------- Record mapping --------------------

    @classmethod
    def from_record(cls, record: RefreshTokenRecord) -> RefreshToken:
        """Build a row from a service-level record."""
        return cls(
            id=record.id,
            token_value=record.token_value,
            user_id=record.user_id,
            device_id=record.device_id,
            issued_at=record.issued_at,
            expires_at=record.expires_at,
            revoked=record.revoked,
            revoked_at=record.revoked_at,
            revoked_by=record.revoked_by,
            revoke_reason=record.revoke_reason,
            replaced_by=record.replaced_by,
            last_used_at=record.last_used_at,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
            access_jti=record.access_jti,
            access_expires_at=record.access_expires_at,
            access_claims=record.access_claims,
        )

    def to_record(self) -> RefreshTokenRecord:
        """Return an immutable snapshot with timezone-aware datetimes."""
        return RefreshTokenRecord(
            id=self.id,
            token_value=self.token_value,
            user_id=self.user_id,
            device_id=self.device_id,
            issued_at=as_utc(self.issued_at),
            expires_at=as_utc(self.expires_at),
            revoked=bool(self.revoked),
            revoked_at=_aware(self.revoked_at),
            revoked_by=self.revoked_by,
            revoke_reason=self.revoke_reason,
            replaced_by=self.replaced_by,
            last_used_at=_aware(self.last_used_at),
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            access_jti=self.access_jti,
            access_expires_at=_aware(self.access_expires_at),
            access_claims=None if self.access_claims is None else dict(self.access_claims),
        )
