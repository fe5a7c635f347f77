"""Unit tests for in-memory ports and record state transitions."""

from __future__ import annotations

from datetime import timedelta

import pytest
from authsession.services._shared.policies.common import device_fingerprint, obfuscate
from authsession.services._shared.ports.user_directory import InMemoryUserDirectory

from tests.factories.refresh_token import RefreshTokenRecordFactory
from tests.factories.user import UserIdentityFactory
from tests.helpers.clock import DEFAULT_START

NOW = DEFAULT_START


# -- Refresh-token records -----------------------------------------------------


def test_record_states():
    record = RefreshTokenRecordFactory()

    assert record.is_active(NOW)
    assert record.is_expired(record.expires_at)
    assert record.revoke(now=NOW).is_consumed
    rotated = record.rotate_to("next", now=NOW)
    assert rotated.is_rotated_out
    assert not rotated.revoked
    assert rotated.last_used_at == NOW


def test_store_rejects_duplicates(store):
    record = RefreshTokenRecordFactory()
    store.create(record)

    with pytest.raises(ValueError):
        store.create(record)


def test_store_conditional_update(store):
    record = RefreshTokenRecordFactory()
    store.create(record)

    assert store.update(record.rotate_to("next", now=NOW))
    assert not store.update(record.revoke(now=NOW))
    assert store.find_by_value(record.token_value).replaced_by == "next"


def test_store_active_by_user_sorted_oldest_first(store):
    later = RefreshTokenRecordFactory(user_id="u", issued_at=NOW + timedelta(minutes=1))
    earlier = RefreshTokenRecordFactory(user_id="u", issued_at=NOW)
    store.create(later)
    store.create(earlier)

    assert [r.id for r in store.find_active_by_user("u", NOW)] == [earlier.id, later.id]


def test_store_delete_expired_clears_indexes(store):
    record = RefreshTokenRecordFactory(user_id="u", expires_at=NOW - timedelta(days=9))
    store.create(record)

    assert store.delete_expired_before(NOW - timedelta(days=7)) == 1
    assert store.find_by_value(record.token_value) is None
    assert store.find_active_by_user("u", NOW) == []


# -- Blacklist -----------------------------------------------------------------


def test_blacklist_entry_expires_with_token(blacklist, clock):
    blacklist.add(jti="j", expires_at=clock.now() + timedelta(minutes=5))

    assert blacklist.contains("j")
    clock.advance(minutes=5)
    assert not blacklist.contains("j")


def test_blacklist_never_shortens_an_entry(blacklist, clock):
    blacklist.add(jti="j", expires_at=clock.now() + timedelta(minutes=10))
    blacklist.add(jti="j", expires_at=clock.now() + timedelta(minutes=1))

    clock.advance(minutes=5)

    assert blacklist.contains("j")


def test_blacklist_purge(blacklist, clock):
    blacklist.add(jti="a", expires_at=clock.now() + timedelta(minutes=1))
    blacklist.add(jti="b", expires_at=clock.now() + timedelta(hours=1))
    clock.advance(minutes=2)

    assert blacklist.purge_expired() == 1
    assert len(blacklist) == 1


# -- Users ---------------------------------------------------------------------


def test_user_availability():
    assert UserIdentityFactory().is_available(NOW)
    assert not UserIdentityFactory(active=False).is_available(NOW)
    assert not UserIdentityFactory(locked=True).is_available(NOW)


def test_temporary_lockout_ends():
    user = UserIdentityFactory(locked=True, lockout_until=NOW + timedelta(minutes=30))

    assert user.is_locked(NOW)
    assert not user.is_locked(NOW + timedelta(minutes=30))


def test_directory_lookup():
    user = UserIdentityFactory()
    directory = InMemoryUserDirectory([user])

    assert directory.get(user.user_id) == user
    assert directory.get("missing") is None


# -- Policies ------------------------------------------------------------------


def test_device_fingerprint_is_stable_and_distinct():
    first = device_fingerprint("10.0.0.1", "Firefox")

    assert first == device_fingerprint(" 10.0.0.1 ", "Firefox")
    assert first != device_fingerprint("10.0.0.2", "Firefox")
    assert first.startswith("fp:")


def test_obfuscate_hides_secret():
    assert obfuscate("abcdefghijkl") == "abcdef***"
    assert obfuscate("abc") == "***"
    assert obfuscate(None) == "<empty>"
