"""
auth/credentials.py -- Repository for user records and per-account lockout state.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_user is the mapper. Service code never touches SQL directly.

Concurrency:
  Lockout counters are mutated with single conditional UPDATE statements
  (failed_attempts = failed_attempts + 1), never read-then-write from Python.
  Two concurrent failures against the same account therefore both count, and
  only the one whose UPDATE crossed the threshold sets locked_until.

  Preference merges use compare-and-set on the stored JSON: the UPDATE only
  applies if the row still holds the value the merge was computed from, and is
  retried otherwise.

  Email uniqueness is enforced by the UNIQUE index. register() pre-checks for a
  friendlier fast path, but the IntegrityError from a racing insert is what
  guarantees EmailAlreadyExists under concurrent duplicate registrations.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta

from sqlalchemy import and_, or_, select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from auth.db import Database, to_iso, users
from auth.errors import EmailAlreadyExists, NotFound, StoreUnavailable
from auth.models import DEFAULT_PREFERENCES, FailedAttempt, User
from auth.tokens import verify_password
from auth.validation import normalize_email

logger = logging.getLogger("gatehouse.auth")

_MERGE_RETRIES = 5


class CredentialStore:
    """Repository for User entities.

    Usage:
        store = CredentialStore(db, max_attempts=5, lockout=timedelta(minutes=30))
        user_id = store.register("a@b.com", hash_password("Abcdef1!"))
        user = store.find_by_email("A@B.com")
    """

    def __init__(self, db: Database, max_attempts: int = 5, lockout: timedelta = timedelta(minutes=30)) -> None:
        self.db = db
        self.max_attempts = max_attempts
        self.lockout = lockout

    # ------------------------------------------------------------------
    # Creation and lookup
    # ------------------------------------------------------------------

    def register(self, email: str, password_hash: str, conn: Connection | None = None) -> int:
        """Insert a new user and return its ID.

        Raises EmailAlreadyExists if the normalized email is taken, including
        when a concurrent registration wins the race between check and insert.
        """
        email = normalize_email(email)
        now = self.db.now_iso()
        with self.db.connection(conn) as c:
            if c.execute(select(users.c.id).where(users.c.email == email)).first() is not None:
                raise EmailAlreadyExists()
            try:
                result = c.execute(
                    users.insert().values(
                        email=email,
                        password_hash=password_hash,
                        name=None,
                        preferences=json.dumps(DEFAULT_PREFERENCES),
                        email_verified=False,
                        created_at=now,
                        updated_at=now,
                        last_login=None,
                        failed_attempts=0,
                        locked_until=None,
                    )
                )
            except IntegrityError as exc:
                raise EmailAlreadyExists() from exc
            return result.inserted_primary_key[0]

    def find_by_email(self, email: str, conn: Connection | None = None) -> User | None:
        """Look up a user by email (normalized before matching). Returns None if not found."""
        with self.db.connection(conn) as c:
            row = c.execute(users.select().where(users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get(self, user_id: int, conn: Connection | None = None) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.db.connection(conn) as c:
            row = c.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Lockout state
    # ------------------------------------------------------------------

    def record_failed_attempt(self, user_id: int, conn: Connection | None = None) -> FailedAttempt:
        """Atomically count one failed verification and lock at the threshold.

        Two statements in one transaction, both conditional on the database's
        current values rather than on anything read into Python:
          1. failed_attempts = failed_attempts + 1
          2. locked_until = now + lockout, only WHERE the count has reached
             max_attempts AND the account is not already locked.
        The rowcount of (2) is the observation: of several concurrent failures
        only the one whose statement wrote the lock reports `locked`.
        """
        now = self.db.now()
        now_iso = to_iso(now)
        lock_until = to_iso(now + self.lockout)
        with self.db.connection(conn) as c:
            counted = c.execute(
                users.update()
                .where(users.c.id == user_id)
                .values(failed_attempts=users.c.failed_attempts + 1, updated_at=now_iso)
            )
            if counted.rowcount == 0:
                raise NotFound()
            locking = c.execute(
                users.update()
                .where(
                    and_(
                        users.c.id == user_id,
                        users.c.failed_attempts >= self.max_attempts,
                        or_(users.c.locked_until.is_(None), users.c.locked_until <= now_iso),
                    )
                )
                .values(locked_until=lock_until)
            )
            row = c.execute(
                select(users.c.failed_attempts, users.c.locked_until).where(users.c.id == user_id)
            ).one()
        locked = locking.rowcount > 0
        if locked:
            logger.warning(
                "Account locked: user_id=%s after %d failed attempts at %s", user_id, row.failed_attempts, now_iso
            )
        return FailedAttempt(attempts=row.failed_attempts, locked=locked, locked_until=row.locked_until)

    def record_success(self, user_id: int, conn: Connection | None = None) -> bool:
        """Stamp last_login and clear the lockout state in one conditional UPDATE.

        The UPDATE only applies while the account is not locked. A lock written
        by a concurrent failure after the caller's lock check therefore wins:
        the method returns False and nothing is cleared. Raises NotFound if the
        user row is gone.
        """
        now = self.db.now_iso()
        with self.db.connection(conn) as c:
            result = c.execute(
                users.update()
                .where(
                    and_(
                        users.c.id == user_id,
                        or_(users.c.locked_until.is_(None), users.c.locked_until <= now),
                    )
                )
                .values(last_login=now, updated_at=now, failed_attempts=0, locked_until=None)
            )
            if result.rowcount == 0:
                if c.execute(select(users.c.id).where(users.c.id == user_id)).first() is None:
                    raise NotFound()
                return False
        return True

    def unlock(self, email: str, conn: Connection | None = None) -> bool:
        """Clear lockout state for an account. Returns False if the email is unknown."""
        with self.db.connection(conn) as c:
            result = c.execute(
                users.update()
                .where(users.c.email == normalize_email(email))
                .values(failed_attempts=0, locked_until=None, updated_at=self.db.now_iso())
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def update_profile(
        self,
        user_id: int,
        name: str | None = None,
        preferences: dict | None = None,
        password_hash: str | None = None,
        conn: Connection | None = None,
    ) -> None:
        """Apply the supplied fields; unspecified fields are left untouched.

        preferences is a shallow merge over the stored object, not a replace.
        Raises NotFound if the user row no longer exists.
        """
        values: dict = {"updated_at": self.db.now_iso()}
        if name is not None:
            values["name"] = name
        if password_hash is not None:
            values["password_hash"] = password_hash

        with self.db.connection(conn) as c:
            if not preferences:
                result = c.execute(users.update().where(users.c.id == user_id).values(**values))
                if result.rowcount == 0:
                    raise NotFound()
                return
            for _ in range(_MERGE_RETRIES):
                stored = c.execute(select(users.c.preferences).where(users.c.id == user_id)).scalar()
                if stored is None:
                    raise NotFound()
                merged = {**_load_preferences(stored), **preferences}
                result = c.execute(
                    users.update()
                    .where((users.c.id == user_id) & (users.c.preferences == stored))
                    .values(preferences=json.dumps(merged), **values)
                )
                if result.rowcount > 0:
                    return
            raise StoreUnavailable("Profile was modified concurrently. Please try again.")

    def verify_secret(self, user: User, candidate: str) -> bool:
        """Check a candidate password against the user's stored digest."""
        return verify_password(candidate, user.password_hash)

    def delete(self, user_id: int, conn: Connection | None = None) -> bool:
        """Remove the user record. Returns True if a row was deleted.

        Account deletion calls this inside the same transaction as
        SessionManager.revoke_all_for_user(); see AuthService.delete_account().
        """
        with self.db.connection(conn) as c:
            result = c.execute(users.delete().where(users.c.id == user_id))
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _load_preferences(raw: str | None) -> dict:
    loaded = json.loads(raw) if raw else {}
    return {**DEFAULT_PREFERENCES, **loaded} if isinstance(loaded, dict) else dict(DEFAULT_PREFERENCES)


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        name=row.name,
        preferences=_load_preferences(row.preferences),
        email_verified=bool(row.email_verified),
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
        failed_attempts=row.failed_attempts or 0,
        locked_until=row.locked_until,
    )
