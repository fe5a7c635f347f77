# tests/unit/services/test_session_manager.py
"""
Unit tests for SessionManager over in-memory ports and a manual clock.

Covered flows:
- issue_session (availability, fingerprint, device cap)
- refresh (rotation, replay detection, cascade, device binding, expiry)
- revoke / revoke_all_for_user / logout and the access-token blacklist
- deadlines and storage failures (fail closed)
"""

from __future__ import annotations

import logging
import threading
from datetime import timedelta

import pytest
from authsession.services._shared.deadline import Deadline
from authsession.services._shared.errors import StorageUnavailableError
from authsession.services._shared.policies.common import device_fingerprint
from authsession.services._shared.ports.refresh_token_store import InMemoryRefreshTokenStore
from authsession.services._shared.ports.user_directory import InMemoryUserDirectory, UserIdentity
from authsession.services.sessions.dto import FailureReason, SessionTokens
from authsession.services.sessions.service import SessionManager
from authsession.services.tokens.dto import TokenError

from tests.factories.user import UserIdentityFactory
from tests.helpers.assertions import assert_denied

IP = "203.0.113.7"
UA = "Mozilla/5.0 (X11; Linux x86_64)"


def _login(manager: SessionManager, user: UserIdentity, device_id: str | None = None):
    result = manager.issue_session(user, IP, UA, device_id)
    assert isinstance(result, SessionTokens)
    return result


# --------------------------------------------------------------------------- #
# issue_session
# --------------------------------------------------------------------------- #


def test_issue_session_persists_record_and_valid_access_token(manager, store, clock):
    user = UserIdentityFactory()

    tokens = _login(manager, user)

    record = store.find_by_value(tokens.refresh_token)
    assert record is not None
    assert record.user_id == user.user_id
    assert record.is_active(clock.now())
    assert record.expires_at == clock.now() + timedelta(days=7)
    assert record.access_jti is not None
    assert tokens.expires_in == 15 * 60
    assert tokens.evicted == 0

    validation = manager.validate(tokens.access_token)
    assert validation.valid
    assert validation.claims.sub == user.user_id
    assert validation.claims.jti == record.access_jti


def test_issue_session_derives_device_fingerprint_when_absent(manager):
    tokens = _login(manager, UserIdentityFactory())

    assert tokens.device_id == device_fingerprint(IP, UA)
    assert tokens.device_id.startswith("fp:")


def test_issue_session_keeps_explicit_device_id(manager):
    tokens = _login(manager, UserIdentityFactory(), device_id="phone-1")

    assert tokens.device_id == "phone-1"


def test_oversized_client_values_fit_their_columns(manager, store):
    long_agent = "Mozilla/5.0 " + "x" * 2000
    long_device = "d" * 300

    tokens = manager.issue_session(UserIdentityFactory(), IP, long_agent, long_device)

    record = store.find_by_value(tokens.refresh_token)
    assert len(record.user_agent) == 512
    assert len(record.device_id) <= 128
    assert record.device_id.startswith("dh:")
    # the same oversized id still matches on refresh
    assert manager.refresh(tokens.refresh_token, device_id=long_device).ok


def test_refresh_values_are_long_and_unique(manager):
    user = UserIdentityFactory()

    values = {_login(manager, user, device_id=f"d{i}").refresh_token for i in range(4)}

    assert len(values) == 4
    assert all(len(v) >= 80 for v in values)


@pytest.mark.parametrize(
    "overrides",
    [{"active": False}, {"locked": True}],
    ids=["inactive", "locked-indefinitely"],
)
def test_issue_session_refuses_unavailable_user(manager, store, overrides):
    user = UserIdentityFactory(**overrides)

    result = manager.issue_session(user, IP, UA)

    assert_denied(result, FailureReason.ACCOUNT_UNAVAILABLE)
    assert store.find_active_by_user(user.user_id, manager.now_utc()) == []


def test_issue_session_allows_user_after_lockout_elapsed(manager, clock):
    user = UserIdentityFactory(locked=True, lockout_until=clock.now() - timedelta(minutes=1))

    result = manager.issue_session(user, IP, UA)

    assert result.ok


def test_device_limit_evicts_oldest_by_issue_time(make_manager, store, clock):
    manager = make_manager(max_active_devices=2)
    user = UserIdentityFactory()

    first = _login(manager, user, "laptop")
    clock.advance(minutes=1)
    _login(manager, user, "phone")
    clock.advance(minutes=1)

    third = _login(manager, user, "tablet")

    assert third.evicted == 1
    active = store.find_active_by_user(user.user_id, clock.now())
    assert {r.device_id for r in active} == {"phone", "tablet"}
    evicted = store.find_by_value(first.refresh_token)
    assert evicted.revoked
    assert evicted.revoke_reason == "device limit exceeded"
    # access token of the evicted session dies immediately
    assert manager.validate(first.access_token).error is TokenError.REVOKED


def test_device_limit_never_exceeded_sequentially(make_manager, store, clock):
    manager = make_manager(max_active_devices=3)
    user = UserIdentityFactory()

    for i in range(6):
        _login(manager, user, f"device-{i}")
        clock.advance(seconds=1)

    assert len(store.find_active_by_user(user.user_id, clock.now())) == 3


# --------------------------------------------------------------------------- #
# refresh
# --------------------------------------------------------------------------- #


def test_refresh_rotates_and_consumes_presented_token(manager, store, clock):
    user = UserIdentityFactory()
    login = _login(manager, user)
    clock.advance(minutes=5)

    rotated = manager.refresh(login.refresh_token)

    assert isinstance(rotated, SessionTokens)
    assert rotated.refresh_token != login.refresh_token
    assert rotated.device_id == login.device_id
    old = store.find_by_value(login.refresh_token)
    new = store.find_by_value(rotated.refresh_token)
    assert old.replaced_by == new.id
    assert old.revoked is False
    assert old.last_used_at == clock.now()
    assert new.issued_at == clock.now()
    assert new.expires_at == clock.now() + timedelta(days=7)


def test_refresh_replay_is_detected_and_cascades(manager, store, clock, caplog):
    user = UserIdentityFactory()
    login = _login(manager, user)
    other_device = _login(manager, user, "other-device")
    rotated = manager.refresh(login.refresh_token)
    assert rotated.ok

    with caplog.at_level(logging.WARNING, logger="authsession.services.sessions.service"):
        replay = manager.refresh(login.refresh_token)

    assert_denied(replay, FailureReason.TOKEN_REUSE_DETECTED)
    assert store.find_active_by_user(user.user_id, clock.now()) == []
    assert store.find_by_value(other_device.refresh_token).revoke_reason == "token reuse detected"
    assert manager.validate(rotated.access_token).error is TokenError.REVOKED
    critical = [r for r in caplog.records if r.levelno == logging.CRITICAL]
    assert critical and getattr(critical[0], "event") == "token_reuse_detected"


def test_refresh_replay_without_cascade_keeps_successor(make_manager):
    manager = make_manager(cascade_revoke_on_reuse=False)
    login = _login(manager, UserIdentityFactory())
    rotated = manager.refresh(login.refresh_token)

    replay = manager.refresh(login.refresh_token)

    assert replay.reason is FailureReason.TOKEN_REUSE_DETECTED
    assert manager.refresh(rotated.refresh_token).ok


def test_refresh_of_revoked_token_is_treated_as_reuse(manager, store, clock):
    user = UserIdentityFactory()
    login = _login(manager, user)
    survivor = _login(manager, user, "survivor")
    assert manager.revoke(login.refresh_token)

    result = manager.refresh(login.refresh_token)

    assert result.reason is FailureReason.TOKEN_REUSE_DETECTED
    assert store.find_by_value(survivor.refresh_token).revoked


@pytest.mark.parametrize("value", ["", "definitely-not-issued"])
def test_refresh_unknown_value_is_invalid(manager, value):
    result = manager.refresh(value)

    assert result.reason is FailureReason.INVALID_TOKEN
    assert result.user_id is None


def test_refresh_expired_token_fails_without_state_change(manager, store, clock):
    login = _login(manager, UserIdentityFactory())
    clock.advance(days=7, seconds=1)

    result = manager.refresh(login.refresh_token)

    assert_denied(result, FailureReason.EXPIRED_TOKEN)
    record = store.find_by_value(login.refresh_token)
    assert record.revoked is False and record.replaced_by is None


def test_refresh_device_mismatch_leaves_token_usable(manager):
    login = _login(manager, UserIdentityFactory(), device_id="phone")

    mismatch = manager.refresh(login.refresh_token, device_id="laptop")

    assert_denied(mismatch, FailureReason.DEVICE_MISMATCH)
    assert manager.refresh(login.refresh_token, device_id="phone").ok


def test_refresh_revokes_session_of_disabled_account(make_manager, store):
    user = UserIdentityFactory()
    directory = InMemoryUserDirectory([user])
    manager = make_manager(users=directory)
    login = _login(manager, user)
    directory.put(UserIdentity(user_id=user.user_id, active=False))

    result = manager.refresh(login.refresh_token)

    assert result.reason is FailureReason.ACCOUNT_UNAVAILABLE
    record = store.find_by_value(login.refresh_token)
    assert record.revoked and record.revoke_reason == "account unavailable"


def test_refresh_passes_extra_claims_to_new_access_token(manager):
    login = _login(manager, UserIdentityFactory())

    rotated = manager.refresh(login.refresh_token, extra_claims={"permissions": ["orders:read"]})

    assert manager.validate(rotated.access_token).claims.permissions == ["orders:read"]


def test_refresh_keeps_claims_granted_at_login(manager, store):
    login = manager.issue_session(
        UserIdentityFactory(), IP, UA, extra_claims={"permissions": ["orders:write"]}
    )

    first = manager.refresh(login.refresh_token)
    second = manager.refresh(first.refresh_token)

    assert manager.validate(second.access_token).claims.permissions == ["orders:write"]
    assert store.find_by_value(second.refresh_token).access_claims == {
        "permissions": ["orders:write"]
    }


def test_refresh_without_rotation_extends_in_place(make_manager, store, clock, caplog):
    with caplog.at_level(logging.WARNING, logger="authsession.services.sessions.service"):
        manager = make_manager(rotation_enabled=False)
    assert any(getattr(r, "event", None) == "rotation_disabled" for r in caplog.records)
    login = _login(manager, UserIdentityFactory())
    clock.advance(days=3)

    first = manager.refresh(login.refresh_token)
    second = manager.refresh(login.refresh_token)

    assert first.refresh_token == login.refresh_token
    assert second.ok
    record = store.find_by_value(login.refresh_token)
    assert record.replaced_by is None
    assert record.expires_at == clock.now() + timedelta(days=7)
    assert record.last_used_at == clock.now()


def test_revoke_after_extension_blacklists_latest_access_token(make_manager):
    manager = make_manager(rotation_enabled=False)
    login = _login(manager, UserIdentityFactory())
    first = manager.refresh(login.refresh_token)
    latest = manager.refresh(login.refresh_token)

    assert manager.revoke(login.refresh_token)

    assert manager.validate(latest.access_token).error is TokenError.REVOKED
    # superseded access tokens run out on their own expiry
    assert manager.validate(first.access_token).valid


def test_concurrent_refresh_of_same_token_succeeds_exactly_once(manager):
    login = _login(manager, UserIdentityFactory())
    workers = 8
    barrier = threading.Barrier(workers)
    results = []
    lock = threading.Lock()

    def _refresh():
        barrier.wait()
        outcome = manager.refresh(login.refresh_token)
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=_refresh) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert len(results) == workers
    successes = [r for r in results if r.ok]
    failures = [r for r in results if not r.ok]
    assert len(successes) == 1
    assert all(f.reason is FailureReason.TOKEN_REUSE_DETECTED for f in failures)


def test_lost_rotation_race_revokes_orphan_successor(manager, store, clock):
    user = UserIdentityFactory()
    login = _login(manager, user)
    stale = store.find_by_value(login.refresh_token)
    # another caller consumes the token between lookup and conditional write
    winner = manager.refresh(login.refresh_token)
    assert winner.ok

    result = manager._rotate(
        stale, manager.issuer.issue_access_token(user), clock.now(), None
    )

    assert result.reason is FailureReason.TOKEN_REUSE_DETECTED
    orphans = [
        r
        for r in store._by_id.values()
        if r.revoke_reason == "rotation conflict"
    ]
    assert len(orphans) == 1
    assert store.find_active_by_user(user.user_id, clock.now()) == []


# --------------------------------------------------------------------------- #
# revoke / revoke_all_for_user / logout
# --------------------------------------------------------------------------- #


def test_revoke_single_device_only(manager, store, clock):
    user = UserIdentityFactory()
    phone = _login(manager, user, "phone")
    laptop = _login(manager, user, "laptop")

    assert manager.revoke(phone.refresh_token, "lost phone", revoked_by="admin-1") is True

    record = store.find_by_value(phone.refresh_token)
    assert record.revoked and record.revoked_at == clock.now()
    assert record.revoke_reason == "lost phone"
    assert record.revoked_by == "admin-1"
    assert manager.validate(phone.access_token).error is TokenError.REVOKED
    assert manager.validate(laptop.access_token).valid
    assert manager.refresh(laptop.refresh_token).ok


def test_revoke_returns_false_for_unknown_or_terminal(manager, clock):
    login = _login(manager, UserIdentityFactory())

    assert manager.revoke("nope") is False
    assert manager.revoke(login.refresh_token) is True
    assert manager.revoke(login.refresh_token) is False

    expired = _login(manager, UserIdentityFactory())
    clock.advance(days=8)
    assert manager.revoke(expired.refresh_token) is False


def test_revoke_all_for_user_is_idempotent(manager, store, clock):
    user = UserIdentityFactory()
    sessions = [_login(manager, user, f"d{i}") for i in range(3)]
    bystander = _login(manager, UserIdentityFactory())

    assert manager.revoke_all_for_user(user.user_id, "password changed") == 3
    assert manager.revoke_all_for_user(user.user_id) == 0

    assert store.find_active_by_user(user.user_id, clock.now()) == []
    for s in sessions:
        assert manager.validate(s.access_token).error is TokenError.REVOKED
    assert manager.validate(bystander.access_token).valid


def test_blacklist_access_token_ttl_bounded_by_expiry(manager, blacklist, clock):
    exp = clock.now() + timedelta(minutes=10)

    assert manager.blacklist_access_token("jti-1", exp) is True
    assert blacklist.contains("jti-1")

    clock.advance(minutes=10)
    assert not blacklist.contains("jti-1")
    assert manager.blacklist_access_token("jti-2", clock.now() - timedelta(seconds=1)) is False
    assert not blacklist.contains("jti-2")


def test_blacklist_disabled_is_a_noop(make_manager, blacklist, clock):
    manager = make_manager(blacklist_enabled=False)
    login = _login(manager, UserIdentityFactory())

    assert manager.blacklist_access_token("jti-x", clock.now() + timedelta(minutes=5)) is False
    manager.revoke(login.refresh_token)

    assert len(blacklist) == 0
    assert manager.validate(login.access_token).valid


def test_logout_revokes_refresh_and_blacklists_access(manager):
    login = _login(manager, UserIdentityFactory())

    assert manager.logout(login.refresh_token, login.access_token) is True

    assert manager.validate(login.access_token).error is TokenError.REVOKED
    assert manager.refresh(login.refresh_token).reason is FailureReason.TOKEN_REUSE_DETECTED


def test_logout_ignores_forged_access_token(manager, blacklist):
    login = _login(manager, UserIdentityFactory())
    before = len(blacklist)

    manager.logout(login.refresh_token, "eyJhbGciOiJub25lIn0.eyJqdGkiOiJ4In0.")

    # only the refresh token's paired access jti was added
    assert len(blacklist) == before + 1


def test_list_active_sessions_most_recent_first(manager, clock):
    user = UserIdentityFactory()
    old = _login(manager, user, "old")
    clock.advance(minutes=1)
    _login(manager, user, "new")
    clock.advance(minutes=1)
    manager.refresh(old.refresh_token)

    sessions = manager.list_active_sessions(user.user_id)

    assert [s.device_id for s in sessions] == ["old", "new"]
    assert not hasattr(sessions[0], "token_value")


# --------------------------------------------------------------------------- #
# Deadlines and storage failures
# --------------------------------------------------------------------------- #


class _UnavailableStore(InMemoryRefreshTokenStore):
    def find_by_value(self, token_value):
        raise StorageUnavailableError(backend="refresh_store", detail="connection refused")


def test_lapsed_deadline_fails_closed(manager, store):
    user = UserIdentityFactory()

    with pytest.raises(StorageUnavailableError) as excinfo:
        manager.issue_session(user, IP, UA, deadline=Deadline(expires_at=0.0))

    assert excinfo.value.detail == "deadline exceeded"
    assert store.find_active_by_user(user.user_id, manager.now_utc()) == []


def test_refresh_propagates_store_outage(issuer, blacklist, settings, clock):
    manager = SessionManager(
        store=_UnavailableStore(), issuer=issuer, blacklist=blacklist, settings=settings, clock=clock
    )

    with pytest.raises(StorageUnavailableError):
        manager.refresh("anything")


def test_generous_deadline_does_not_interfere(manager):
    result = manager.issue_session(UserIdentityFactory(), IP, UA, deadline=Deadline.after(30))

    assert result.ok


class _LapsingDeadline:
    """Deadline that lets the first ``calls`` store operations through."""

    def __init__(self, calls: int) -> None:
        self.calls = calls

    def check(self, backend: str) -> None:
        if self.calls == 0:
            raise StorageUnavailableError(backend=backend, detail="deadline exceeded")
        self.calls -= 1


def test_rotation_interrupted_before_consuming_leaves_no_live_successor(manager, store):
    user = UserIdentityFactory()
    login = _login(manager, user)

    # lookup and successor insert pass, the conditional write does not
    with pytest.raises(StorageUnavailableError):
        manager.refresh(login.refresh_token, deadline=_LapsingDeadline(calls=2))

    active = store.find_active_by_user(user.user_id, manager.now_utc())
    assert [r.token_value for r in active] == [login.refresh_token]
    assert manager.refresh(login.refresh_token).ok


# --------------------------------------------------------------------------- #
# End-to-end lifecycle
# --------------------------------------------------------------------------- #


def test_login_refresh_replay_expiry_and_logout_all(manager, clock):
    user = UserIdentityFactory()
    t1 = _login(manager, user)
    assert t1.access_expires_at == clock.now() + timedelta(minutes=15)
    assert t1.refresh_expires_at == clock.now() + timedelta(days=7)

    clock.advance(minutes=5)
    second = manager.refresh(t1.refresh_token)
    assert second.ok

    assert manager.refresh(t1.refresh_token).reason is FailureReason.TOKEN_REUSE_DETECTED

    clock.advance(minutes=15)
    assert manager.validate(t1.access_token).error is TokenError.EXPIRED

    fresh = _login(manager, user)
    assert manager.validate(fresh.access_token).valid
    manager.revoke_all_for_user(user.user_id)
    assert manager.validate(fresh.access_token).error is TokenError.REVOKED
