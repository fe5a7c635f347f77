# authsession/services/sessions/service.py
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime
from typing import Any

from authsession.core.clock import Clock, as_utc
from authsession.core.config import SessionSettings
from authsession.services._shared.base import BaseService
from authsession.services._shared.deadline import Deadline
from authsession.services._shared.errors import StorageUnavailableError
from authsession.services._shared.policies.common import (
    IP_ADDRESS_MAX_LENGTH,
    USER_AGENT_MAX_LENGTH,
    clip,
    device_fingerprint,
    normalize_device_id,
    obfuscate,
)
from authsession.services._shared.ports.blacklist import TokenBlacklist
from authsession.services._shared.ports.refresh_token_store import (
    RefreshTokenRecord,
    RefreshTokenStore,
    new_record_id,
    new_token_value,
)
from authsession.services._shared.ports.user_directory import UserDirectory, UserIdentity
from authsession.services.sessions.dto import (
    FailureReason,
    SessionFailure,
    SessionInfo,
    SessionResult,
    SessionTokens,
)
from authsession.services.tokens.dto import IssuedAccessToken, TokenError, TokenValidation
from authsession.services.tokens.issuer import TokenIssuer

log = logging.getLogger(__name__)

# Revoke reasons persisted for audit
REASON_DEVICE_LIMIT = "device limit exceeded"
REASON_REUSE = "token reuse detected"
REASON_ROTATION_CONFLICT = "rotation conflict"
REASON_ACCOUNT_UNAVAILABLE = "account unavailable"
REASON_LOGOUT = "logout"
REASON_LOGOUT_ALL = "logout all devices"

REFRESH_STORE = "refresh_store"
BLACKLIST = "blacklist"
USER_DIRECTORY = "user_directory"


class SessionManager(BaseService):
    """
    Session lifecycle orchestrator (issue / refresh / revoke / logout).

    One instance is shared by every request thread and the CLI. All state
    lives in the refresh-token store and the blacklist; the manager itself
    only sequences calls against them.

    Security
    --------
    - A refresh token rotates **exactly once**: the store's conditional
      update decides the winner of concurrent refreshes.
    - Presenting a consumed refresh token is treated as theft and, when
      enabled, revokes every session of the user.
    - Revocations blacklist the paired access token so it dies before its
      natural expiry.
    """

    def __init__(
        self,
        *,
        store: RefreshTokenStore,
        issuer: TokenIssuer,
        blacklist: TokenBlacklist,
        settings: SessionSettings | None = None,
        clock: Clock | None = None,
        users: UserDirectory | None = None,
    ) -> None:
        """
        Initialize the manager with its collaborators.

        :param store: Refresh-token persistence (atomic conditional update).
        :param issuer: Access-token issuer/validator.
        :param blacklist: Revoked access-token ``jti`` cache.
        :param settings: Lifetimes, device cap and feature toggles.
        :param clock: Time source; should be the issuer's clock.
        :param users: Optional directory re-checked on refresh.
        """
        super().__init__(clock=clock or issuer.clock)
        self.store = store
        self.issuer = issuer
        self.blacklist = blacklist
        self.settings = settings or issuer.settings
        self.users = users

        if not self.settings.rotation_enabled:
            log.warning(
                "Refresh token rotation is disabled; replay detection is off",
                extra={"event": "rotation_disabled"},
            )

    # ------------------------------------------------------------------ #
    # Issue
    # ------------------------------------------------------------------ #

    def issue_session(
        self,
        user: UserIdentity,
        ip_address: str | None = None,
        user_agent: str | None = None,
        device_id: str | None = None,
        *,
        extra_claims: Mapping[str, Any] | None = None,
        deadline: Deadline | None = None,
    ) -> SessionResult:
        """
        Start a session for an already authenticated user.

        :param user: Identity produced by the authentication check.
        :param ip_address: Client address (fingerprint input, audit).
        :param user_agent: Client user agent (fingerprint input, audit).
        :param device_id: Explicit device id; derived from ip/UA when omitted.
        :param extra_claims: Roles/permissions to embed in the access token.
        :param deadline: Fail closed once lapsed.
        :returns: A token pair, or ``account_unavailable``.
        :raises StorageUnavailableError: If a store call fails or times out.
        """
        now = self.now_utc()
        if not user.is_available(now):
            log.warning(
                "Session refused for unavailable account",
                extra={"user_id": user.user_id, "event": "account_unavailable"},
            )
            return SessionFailure(FailureReason.ACCOUNT_UNAVAILABLE, user_id=user.user_id)

        if device_id:
            device = normalize_device_id(device_id)
        else:
            device = device_fingerprint(ip_address, user_agent)

        # --- Free a slot FIRST, then persist the new lineage ---
        evicted = self._enforce_device_limit(user.user_id, now, deadline)

        access = self.issuer.issue_access_token(user, extra_claims)
        record = RefreshTokenRecord(
            id=new_record_id(),
            token_value=new_token_value(),
            user_id=user.user_id,
            device_id=device,
            issued_at=now,
            expires_at=now + self.settings.refresh_token_lifetime,
            ip_address=clip(ip_address, IP_ADDRESS_MAX_LENGTH),
            user_agent=clip(user_agent, USER_AGENT_MAX_LENGTH),
            access_jti=access.claims.jti,
            access_expires_at=access.claims.exp,
            access_claims=dict(access.claims.extra) or None,
        )
        self.guarded(REFRESH_STORE, deadline, self.store.create, record)

        log.info(
            "Session issued",
            extra={"user_id": user.user_id, "device_id": device, "event": "session_issued"},
        )
        return self._tokens(access, record, evicted=evicted)

    def _enforce_device_limit(
        self, user_id: str, now: datetime, deadline: Deadline | None
    ) -> int:
        active = self.guarded(REFRESH_STORE, deadline, self.store.find_active_by_user, user_id, now)
        overflow = len(active) - self.settings.max_active_devices + 1
        if overflow <= 0:
            return 0

        # oldest by issued_at, not by last use
        oldest = sorted(active, key=lambda r: (as_utc(r.issued_at), r.id))[:overflow]
        evicted = 0
        for record in oldest:
            if self._revoke_record(record, now, REASON_DEVICE_LIMIT, None, deadline):
                evicted += 1

        log.info(
            "Device limit reached, evicted oldest sessions",
            extra={"user_id": user_id, "event": "device_limit_exceeded", "count": evicted},
        )
        return evicted

    # ------------------------------------------------------------------ #
    # Refresh with rotation
    # ------------------------------------------------------------------ #

    def refresh(
        self,
        refresh_value: str,
        device_id: str | None = None,
        *,
        extra_claims: Mapping[str, Any] | None = None,
        deadline: Deadline | None = None,
    ) -> SessionResult:
        """
        Exchange a refresh token for a new token pair.

        Security
        --------
        - The presented value can never succeed twice while rotation is on.
        - A consumed value presented again is a replay signal.
        - On a store failure nothing is issued (fail closed).

        :param refresh_value: Opaque refresh secret from the client.
        :param device_id: Device the client claims to be, checked when given.
        :param extra_claims: Claims for the new access token; when omitted the
            claims granted at login are carried over.
        :param deadline: Fail closed once lapsed.
        :raises StorageUnavailableError: If a store call fails or times out.
        """
        now = self.now_utc()
        if not refresh_value:
            return SessionFailure(FailureReason.INVALID_TOKEN)

        # 1) Lookup
        record = self.guarded(REFRESH_STORE, deadline, self.store.find_by_value, refresh_value)
        if record is None:
            log.info(
                "Refresh rejected for unknown token %s",
                obfuscate(refresh_value),
                extra={"event": "invalid_token"},
            )
            return SessionFailure(FailureReason.INVALID_TOKEN)

        # 2) Natural expiry; cleanup reaps it later
        if record.is_expired(now):
            return SessionFailure(FailureReason.EXPIRED_TOKEN, user_id=record.user_id)

        # 3) Consumed token presented again
        if record.is_consumed:
            return self._handle_reuse(record, now, deadline)

        # 4) Device binding
        if device_id is not None and normalize_device_id(device_id) != record.device_id:
            log.warning(
                "Refresh rejected: device mismatch",
                extra={
                    "user_id": record.user_id,
                    "device_id": device_id,
                    "event": "device_mismatch",
                },
            )
            return SessionFailure(FailureReason.DEVICE_MISMATCH, user_id=record.user_id)

        # 5) Account may have been disabled since login
        user = self._current_user(record, now, deadline)
        if user is None:
            self._revoke_record(record, now, REASON_ACCOUNT_UNAVAILABLE, None, deadline)
            log.warning(
                "Refresh rejected for unavailable account",
                extra={"user_id": record.user_id, "event": "account_unavailable"},
            )
            return SessionFailure(FailureReason.ACCOUNT_UNAVAILABLE, user_id=record.user_id)

        # 6) Issue and persist
        claims = extra_claims if extra_claims is not None else record.access_claims
        access = self.issuer.issue_access_token(user, claims)
        if self.settings.rotation_enabled:
            return self._rotate(record, access, now, deadline)
        return self._extend(record, access, now, deadline)

    def _current_user(
        self, record: RefreshTokenRecord, now: datetime, deadline: Deadline | None
    ) -> UserIdentity | None:
        if self.users is None:
            return UserIdentity(user_id=record.user_id)
        user = self.guarded(USER_DIRECTORY, deadline, self.users.get, record.user_id)
        if user is None or not user.is_available(now):
            return None
        return user

    def _rotate(
        self,
        record: RefreshTokenRecord,
        access: IssuedAccessToken,
        now: datetime,
        deadline: Deadline | None,
    ) -> SessionResult:
        successor = RefreshTokenRecord(
            id=new_record_id(),
            token_value=new_token_value(),
            user_id=record.user_id,
            device_id=record.device_id,
            issued_at=now,
            expires_at=now + self.settings.refresh_token_lifetime,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
            access_jti=access.claims.jti,
            access_expires_at=access.claims.exp,
            access_claims=dict(access.claims.extra) or None,
        )
        self.guarded(REFRESH_STORE, deadline, self.store.create, successor)

        consumed = record.rotate_to(successor.id, now=now)
        try:
            applied = self.guarded(REFRESH_STORE, deadline, self.store.update, consumed)
        except StorageUnavailableError:
            self._discard_successor(successor, now)
            raise
        if not applied:
            # lost the race: someone consumed or revoked the same token first
            self.guarded(
                REFRESH_STORE,
                deadline,
                self.store.update,
                successor.revoke(now=now, reason=REASON_ROTATION_CONFLICT),
            )
            return self._handle_reuse(record, now, deadline)

        log.info(
            "Refresh token rotated",
            extra={
                "user_id": record.user_id,
                "device_id": record.device_id,
                "event": "token_rotated",
            },
        )
        return self._tokens(access, successor)

    def _discard_successor(self, successor: RefreshTokenRecord, now: datetime) -> None:
        """Revoke a successor whose predecessor could not be marked rotated out."""
        try:
            self.store.update(successor.revoke(now=now, reason=REASON_ROTATION_CONFLICT))
        except StorageUnavailableError:
            log.error(
                "Could not revoke undelivered successor %s",
                successor.id,
                exc_info=True,
                extra={"user_id": successor.user_id, "event": "rotation_cleanup_failed"},
            )

    def _extend(
        self,
        record: RefreshTokenRecord,
        access: IssuedAccessToken,
        now: datetime,
        deadline: Deadline | None,
    ) -> SessionResult:
        """
        Reduced-security refresh: push ``expires_at`` out on the same record.

        Only the newest access token is remembered on the record, so a later
        revocation blacklists that one; access tokens issued by earlier
        refreshes stay valid until their own (short) expiry.
        """
        extended = replace(
            record,
            expires_at=now + self.settings.refresh_token_lifetime,
            last_used_at=now,
            access_jti=access.claims.jti,
            access_expires_at=access.claims.exp,
            access_claims=dict(access.claims.extra) or None,
        )
        if not self.guarded(REFRESH_STORE, deadline, self.store.update, extended):
            return self._handle_reuse(record, now, deadline)

        log.info(
            "Refresh token extended in place",
            extra={
                "user_id": record.user_id,
                "device_id": record.device_id,
                "event": "token_extended",
            },
        )
        return self._tokens(access, extended)

    def _handle_reuse(
        self, record: RefreshTokenRecord, now: datetime, deadline: Deadline | None
    ) -> SessionFailure:
        level = logging.CRITICAL if record.is_rotated_out else logging.WARNING
        log.log(
            level,
            "Refresh token reuse detected (record %s)",
            record.id,
            extra={
                "user_id": record.user_id,
                "device_id": record.device_id,
                "event": "token_reuse_detected",
            },
        )
        if self.settings.cascade_revoke_on_reuse:
            count = self._revoke_all(record.user_id, now, REASON_REUSE, None, deadline)
            log.warning(
                "Revoked all sessions after token reuse",
                extra={"user_id": record.user_id, "event": "cascade_revoke", "count": count},
            )
        return SessionFailure(FailureReason.TOKEN_REUSE_DETECTED, user_id=record.user_id)

    # ------------------------------------------------------------------ #
    # Revocation
    # ------------------------------------------------------------------ #

    def revoke(
        self,
        refresh_value: str,
        reason: str | None = None,
        *,
        revoked_by: str | None = None,
        deadline: Deadline | None = None,
    ) -> bool:
        """
        Revoke a single refresh token (one device).

        :returns: ``False`` when the token is unknown or already terminal.
        :raises StorageUnavailableError: If a store call fails or times out.
        """
        if not refresh_value:
            return False
        now = self.now_utc()
        record = self.guarded(REFRESH_STORE, deadline, self.store.find_by_value, refresh_value)
        if record is None or record.is_terminal(now):
            return False

        revoked = self._revoke_record(record, now, reason or REASON_LOGOUT, revoked_by, deadline)
        if revoked:
            log.info(
                "Refresh token revoked",
                extra={
                    "user_id": record.user_id,
                    "device_id": record.device_id,
                    "event": "token_revoked",
                },
            )
        return revoked

    def revoke_all_for_user(
        self,
        user_id: str,
        reason: str | None = None,
        *,
        revoked_by: str | None = None,
        deadline: Deadline | None = None,
    ) -> int:
        """
        Revoke every active refresh token of ``user_id`` (logout everywhere).

        :returns: Number of records revoked; ``0`` is a no-op, not an error.
        :raises StorageUnavailableError: If a store call fails or times out.
        """
        now = self.now_utc()
        count = self._revoke_all(user_id, now, reason or REASON_LOGOUT_ALL, revoked_by, deadline)
        log.info(
            "Revoked all sessions for user",
            extra={"user_id": user_id, "event": "revoke_all", "count": count},
        )
        return count

    def _revoke_all(
        self,
        user_id: str,
        now: datetime,
        reason: str,
        revoked_by: str | None,
        deadline: Deadline | None,
    ) -> int:
        active = self.guarded(REFRESH_STORE, deadline, self.store.find_active_by_user, user_id, now)
        return sum(
            1
            for record in active
            if self._revoke_record(record, now, reason, revoked_by, deadline)
        )

    def _revoke_record(
        self,
        record: RefreshTokenRecord,
        now: datetime,
        reason: str,
        revoked_by: str | None,
        deadline: Deadline | None,
    ) -> bool:
        revoked = record.revoke(now=now, reason=reason, revoked_by=revoked_by)
        if not self.guarded(REFRESH_STORE, deadline, self.store.update, revoked):
            return False
        if record.access_jti and record.access_expires_at:
            self.blacklist_access_token(
                record.access_jti, record.access_expires_at, deadline=deadline
            )
        return True

    def blacklist_access_token(
        self,
        jti: str,
        access_token_expiry: datetime,
        *,
        deadline: Deadline | None = None,
    ) -> bool:
        """
        Blacklist an access token until its own expiry, never longer.

        :returns: ``False`` when disabled or the token has already expired.
        :raises StorageUnavailableError: If the cache fails or times out.
        """
        if not self.settings.blacklist_enabled:
            return False
        if as_utc(access_token_expiry) <= self.now_utc():
            return False
        self.guarded(
            BLACKLIST, deadline, self.blacklist.add, jti=jti, expires_at=as_utc(access_token_expiry)
        )
        return True

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def validate(self, access_token: str) -> TokenValidation:
        """Validate an access token (signature, expiry, blacklist)."""
        return self.issuer.validate(access_token)

    def list_active_sessions(
        self, user_id: str, *, deadline: Deadline | None = None
    ) -> list[SessionInfo]:
        """Active sessions of a user, most recently used first."""
        active = self.guarded(
            REFRESH_STORE, deadline, self.store.find_active_by_user, user_id, self.now_utc()
        )
        active.sort(key=lambda r: as_utc(r.last_used_at or r.issued_at), reverse=True)
        return [SessionInfo.from_record(r) for r in active]

    # ------------------------------------------------------------------ #
    # Logout
    # ------------------------------------------------------------------ #

    def logout(
        self,
        refresh_value: str,
        access_token: str | None = None,
        *,
        reason: str | None = None,
        deadline: Deadline | None = None,
    ) -> bool:
        """
        Revoke the refresh token and blacklist the presented access token.

        The access token is only blacklisted once its signature verifies, so
        forged tokens cannot be used to fill the cache.

        :returns: Whether the refresh token was revoked.
        """
        revoked = self.revoke(refresh_value, reason or REASON_LOGOUT, deadline=deadline)
        if access_token:
            result = self.issuer.validate(access_token)
            if result.claims is not None and result.error in (None, TokenError.REVOKED):
                self.blacklist_access_token(
                    result.claims.jti, result.claims.exp, deadline=deadline
                )
        return revoked

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _tokens(
        self, access: IssuedAccessToken, record: RefreshTokenRecord, *, evicted: int = 0
    ) -> SessionTokens:
        return SessionTokens(
            access_token=access.token,
            refresh_token=record.token_value,
            user_id=record.user_id,
            device_id=record.device_id,
            access_expires_at=access.claims.exp,
            refresh_expires_at=record.expires_at,
            expires_in=int(self.settings.access_token_lifetime.total_seconds()),
            evicted=evicted,
        )
