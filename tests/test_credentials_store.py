"""Unit tests for auth/credentials.py -- CredentialStore.

Covers:
- register() normalizes email and enforces uniqueness case-insensitively
- concurrent duplicate registrations: exactly one wins
- record_failed_attempt(): counts below the threshold, locks exactly at it
- concurrent failures at threshold-1: no lost increments, exactly one "locked"
- record_success() resets counter and lock
- update_profile(): shallow preference merge, unspecified fields untouched
- unlock(), delete(), NotFound on vanished rows
"""

import threading
from datetime import timedelta

import pytest

from auth.credentials import CredentialStore
from auth.db import Database, to_iso
from auth.errors import EmailAlreadyExists, NotFound
from auth.models import DEFAULT_PREFERENCES
from auth.tokens import hash_password

DIGEST = hash_password("Abcdef1!")


@pytest.fixture
def user_id(credentials: CredentialStore) -> int:
    return credentials.register("a@b.com", DIGEST)


class TestRegister:
    def test_register_and_find(self, credentials: CredentialStore, clock) -> None:
        uid = credentials.register("  Alice@Example.com ", DIGEST)
        user = credentials.find_by_email("alice@example.com")
        assert user is not None
        assert user.id == uid
        assert user.email == "alice@example.com"
        assert user.preferences == DEFAULT_PREFERENCES
        assert user.email_verified is False
        assert user.failed_attempts == 0
        assert user.locked_until is None
        assert user.created_at == to_iso(clock())

    def test_find_is_case_insensitive(self, credentials: CredentialStore, user_id: int) -> None:
        assert credentials.find_by_email("A@B.COM").id == user_id

    def test_duplicate_any_case(self, credentials: CredentialStore, user_id: int) -> None:
        with pytest.raises(EmailAlreadyExists):
            credentials.register("A@B.com", DIGEST)

    def test_find_missing(self, credentials: CredentialStore) -> None:
        assert credentials.find_by_email("nobody@b.com") is None
        assert credentials.get(999) is None

    def test_verify_secret(self, credentials: CredentialStore, user_id: int) -> None:
        user = credentials.get(user_id)
        assert credentials.verify_secret(user, "Abcdef1!") is True
        assert credentials.verify_secret(user, "abcdef1!") is False


class TestLockout:
    def test_below_threshold_not_locked(self, credentials: CredentialStore, user_id: int) -> None:
        for n in range(1, 5):
            attempt = credentials.record_failed_attempt(user_id)
            assert attempt.attempts == n
            assert attempt.locked is False
            assert attempt.locked_until is None
        user = credentials.get(user_id)
        assert user.failed_attempts == 4
        assert user.locked_until is None

    def test_locks_at_threshold(self, credentials: CredentialStore, user_id: int, clock) -> None:
        for _ in range(4):
            credentials.record_failed_attempt(user_id)
        attempt = credentials.record_failed_attempt(user_id)
        assert attempt.attempts == 5
        assert attempt.locked is True
        assert attempt.locked_until == to_iso(clock() + timedelta(minutes=30))

    def test_failure_while_locked_does_not_relock(self, credentials: CredentialStore, user_id: int, clock) -> None:
        for _ in range(5):
            credentials.record_failed_attempt(user_id)
        first_lock = credentials.get(user_id).locked_until
        clock.advance(minutes=5)
        attempt = credentials.record_failed_attempt(user_id)
        assert attempt.locked is False
        assert attempt.attempts == 6
        assert attempt.locked_until == first_lock

    def test_success_resets(self, credentials: CredentialStore, user_id: int, clock) -> None:
        for _ in range(3):
            credentials.record_failed_attempt(user_id)
        assert credentials.record_success(user_id) is True
        user = credentials.get(user_id)
        assert user.failed_attempts == 0
        assert user.locked_until is None
        assert user.last_login == to_iso(clock())

    def test_success_after_lock_expiry_resets(self, credentials: CredentialStore, user_id: int, clock) -> None:
        for _ in range(5):
            credentials.record_failed_attempt(user_id)
        clock.advance(minutes=30)
        assert credentials.record_success(user_id) is True
        user = credentials.get(user_id)
        assert user.failed_attempts == 0
        assert user.locked_until is None

    def test_success_refused_while_locked(self, credentials: CredentialStore, user_id: int) -> None:
        for _ in range(5):
            credentials.record_failed_attempt(user_id)
        locked_until = credentials.get(user_id).locked_until

        assert credentials.record_success(user_id) is False

        user = credentials.get(user_id)
        assert user.failed_attempts == 5
        assert user.locked_until == locked_until
        assert user.last_login is None

    def test_unlock(self, credentials: CredentialStore, user_id: int) -> None:
        for _ in range(5):
            credentials.record_failed_attempt(user_id)
        assert credentials.unlock("A@B.com") is True
        user = credentials.get(user_id)
        assert user.failed_attempts == 0
        assert user.locked_until is None
        assert credentials.unlock("nobody@b.com") is False

    def test_missing_user(self, credentials: CredentialStore) -> None:
        with pytest.raises(NotFound):
            credentials.record_failed_attempt(999)
        with pytest.raises(NotFound):
            credentials.record_success(999)


class TestUpdateProfile:
    def test_preferences_shallow_merge(self, credentials: CredentialStore, user_id: int) -> None:
        credentials.update_profile(user_id, preferences={"theme": "dark"})
        user = credentials.get(user_id)
        assert user.preferences == {"notifications": True, "theme": "dark"}

        credentials.update_profile(user_id, preferences={"notifications": False})
        assert credentials.get(user_id).preferences == {"notifications": False, "theme": "dark"}

    def test_name_only_leaves_rest(self, credentials: CredentialStore, user_id: int) -> None:
        before = credentials.get(user_id)
        credentials.update_profile(user_id, name="Alice")
        after = credentials.get(user_id)
        assert after.name == "Alice"
        assert after.password_hash == before.password_hash
        assert after.preferences == before.preferences

    def test_password_hash(self, credentials: CredentialStore, user_id: int) -> None:
        credentials.update_profile(user_id, password_hash=hash_password("Zyxwvu9$"))
        user = credentials.get(user_id)
        assert credentials.verify_secret(user, "Zyxwvu9$") is True
        assert credentials.verify_secret(user, "Abcdef1!") is False

    def test_missing_user(self, credentials: CredentialStore) -> None:
        with pytest.raises(NotFound):
            credentials.update_profile(999, name="Ghost")
        with pytest.raises(NotFound):
            credentials.update_profile(999, preferences={"theme": "dark"})


class TestDelete:
    def test_delete(self, credentials: CredentialStore, user_id: int) -> None:
        assert credentials.delete(user_id) is True
        assert credentials.find_by_email("a@b.com") is None
        assert credentials.delete(user_id) is False


# ---------------------------------------------------------------------------
# Concurrency -- file-backed DB so each thread gets its own connection
# ---------------------------------------------------------------------------


@pytest.fixture
def file_store(tmp_path, clock):
    db = Database(f"sqlite:///{tmp_path / 'auth.db'}", timeout=10.0, clock=clock)
    yield CredentialStore(db, max_attempts=5, lockout=timedelta(minutes=30))
    db.close()


def _run_concurrently(count: int, target) -> list:
    barrier = threading.Barrier(count)
    results: list = [None] * count

    def worker(i: int) -> None:
        barrier.wait()
        try:
            results[i] = target()
        except Exception as exc:  # collected for assertions
            results[i] = exc

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


class TestConcurrency:
    def test_concurrent_failures_exactly_one_locks(self, file_store: CredentialStore) -> None:
        uid = file_store.register("race@b.com", DIGEST)
        for _ in range(4):
            file_store.record_failed_attempt(uid)

        results = _run_concurrently(8, lambda: file_store.record_failed_attempt(uid))

        assert not [r for r in results if isinstance(r, Exception)], results
        assert sum(1 for r in results if r.locked) == 1
        assert sorted(r.attempts for r in results) == list(range(5, 13))
        assert file_store.get(uid).failed_attempts == 12

    def test_concurrent_duplicate_registration(self, file_store: CredentialStore) -> None:
        results = _run_concurrently(6, lambda: file_store.register("Dup@B.com", DIGEST))

        winners = [r for r in results if isinstance(r, int)]
        losers = [r for r in results if isinstance(r, EmailAlreadyExists)]
        assert len(winners) == 1
        assert len(losers) == 5
