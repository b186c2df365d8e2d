"""
auth/service.py -- AuthService: the authentication state machine.

Each public method is an ordered pipeline. A step that fails raises an
AuthError and no later step runs:

  register       rate limit -> validate -> hash -> insert
  login          rate limit -> validate -> find -> lock check -> verify
                 -> (record failure | record success + issue session)
  logout         revoke (fail-soft)
  logout_all     resolve -> revoke every session of the owner
  get_profile    resolve -> load -> public view
  update_profile resolve -> validate -> load -> verify current password
                 -> one transaction: update user, revoke sibling sessions
  delete_account resolve -> load -> verify -> one transaction: delete
                 sessions, delete user

Store failures are translated at this boundary (see _guard): a lock wait or
pool checkout that times out becomes StoreUnavailable (503, retryable), any
other SQLAlchemy error becomes InternalError. Both are logged with the
operation, an identity (email, user id or token label) and a timestamp.
Passwords, digests and full tokens are never logged.

Rate limiting (per client) runs before anything touches the user store.
Lockout (per account) is checked before bcrypt runs, so a locked account
costs no hashing and its counter does not move.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from auth.credentials import CredentialStore
from auth.db import Database, from_iso
from auth.errors import (
    AccountLocked,
    EmailAlreadyExists,
    InternalError,
    InvalidCredentials,
    InvalidCurrentPassword,
    InvalidPassword,
    InvalidSession,
    NoActiveSession,
    NotAuthenticated,
    NotFound,
    StoreUnavailable,
)
from auth.models import (
    ClientContext,
    LoginResult,
    LogoutResult,
    PublicUser,
    RegistrationResult,
    Session,
    User,
)
from auth.password_policy import PolicyResult, evaluate
from auth.ratelimit import LOGIN, REGISTER, RateLimiter, client_identity, configured_policies
from auth.sessions import SessionManager
from auth.tokens import burn_verification, hash_password, token_label
from auth.validation import parse_login, parse_profile_patch, parse_registration, require_password_confirmation
from core.config import Settings, get_settings

logger = logging.getLogger("gatehouse.auth")

NEUTRAL_EXISTS_MESSAGE = "If an account with this email exists, you will receive a confirmation email."


def _label(token: str | None) -> str:
    return token_label(token) if token else "-"


def public_view(user: User) -> PublicUser:
    """Project a User onto the fields a client may see (no digest, no lockout state)."""
    return PublicUser(
        id=user.id,
        email=user.email,
        name=user.name,
        email_verified=user.email_verified,
        created_at=user.created_at,
        last_login=user.last_login,
        preferences=dict(user.preferences),
    )


class AuthService:
    """Orchestrates RateLimiter, CredentialStore and SessionManager.

    Usage:
        service = AuthService(db, CredentialStore(db), SessionManager(db), RateLimiter())
        service.register("a@b.com", "Abcdef1!", ClientContext(ip="10.0.0.1"))
        result = service.login("a@b.com", "Abcdef1!", client=ClientContext(ip="10.0.0.1"))
        service.get_profile(result.token)
    """

    def __init__(
        self,
        db: Database,
        credentials: CredentialStore,
        sessions: SessionManager,
        limiter: RateLimiter,
        settings: Settings | None = None,
    ) -> None:
        self.db = db
        self.credentials = credentials
        self.sessions = sessions
        self.limiter = limiter
        self.settings = settings or get_settings()
        self.policies = configured_policies(self.settings)

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def register(self, email, password, client: ClientContext | None = None) -> RegistrationResult:
        client = client or ClientContext()
        self.limiter.admit(self._identity(client), self.policies[REGISTER])
        record = parse_registration(email, password)
        digest = hash_password(record.password, self.settings.bcrypt_rounds)
        try:
            with self._guard("register", record.email):
                user_id = self.credentials.register(record.email, digest)
        except EmailAlreadyExists:
            logger.info("Registration refused, email taken: ip=%s at %s", client.ip, self.db.now_iso())
            if self.settings.reveals_existing_accounts:
                raise
            raise EmailAlreadyExists(NEUTRAL_EXISTS_MESSAGE) from None
        logger.info("User registered: user_id=%s email=%s ip=%s", user_id, record.email, client.ip)
        return RegistrationResult(user_id=user_id)

    def login(self, email, password, remember_me=False, client: ClientContext | None = None) -> LoginResult:
        client = client or ClientContext()
        self.limiter.admit(self._identity(client), self.policies[LOGIN])
        record = parse_login(email, password, remember_me)

        with self._guard("login", record.email):
            user = self.credentials.find_by_email(record.email)
        if user is None:
            # Same bcrypt cost as a real verification: response time must not
            # reveal whether the email is registered.
            burn_verification(record.password)
            raise InvalidCredentials()

        now = self.db.now()
        locked_until = from_iso(user.locked_until)
        if locked_until is not None and locked_until > now:
            raise AccountLocked(user.locked_until, (locked_until - now).total_seconds())

        if not self.credentials.verify_secret(user, record.password):
            with self._guard("login", record.email):
                attempt = self.credentials.record_failed_attempt(user.id)
            now = self.db.now()
            until = from_iso(attempt.locked_until)
            # Also covers a lock set by a concurrent request during verification.
            if until is not None and until > now:
                raise AccountLocked(attempt.locked_until, (until - now).total_seconds())
            logger.info("Login failed: user_id=%s attempts=%d ip=%s", user.id, attempt.attempts, client.ip)
            raise InvalidCredentials(attempts_remaining=max(0, self.credentials.max_attempts - attempt.attempts))

        ttl_seconds = self.settings.remember_me_ttl_seconds if record.remember_me else self.settings.session_ttl_seconds
        with self._guard("login", record.email):
            with self.db.transaction() as conn:
                if not self.credentials.record_success(user.id, conn=conn):
                    # Locked after the check above; no session is issued.
                    locked = self.credentials.get(user.id, conn=conn)
                    now = self.db.now()
                    raise AccountLocked(
                        locked.locked_until, (from_iso(locked.locked_until) - now).total_seconds()
                    )
                session = self.sessions.issue(
                    user.id, timedelta(seconds=ttl_seconds), client, remember_me=record.remember_me, conn=conn
                )
                fresh = self.credentials.get(user.id, conn=conn)
        logger.info(
            "Login succeeded: user_id=%s session=%s remember_me=%s ip=%s",
            user.id,
            token_label(session.token),
            record.remember_me,
            client.ip,
        )
        return LoginResult(
            token=session.token,
            ttl_seconds=ttl_seconds,
            expires_at=session.expires_at,
            user=public_view(fresh),
            remember_me=record.remember_me,
        )

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, token: str | None) -> LogoutResult:
        """Revoke one session. Never fails: an unreachable store degrades the result."""
        if not token:
            return LogoutResult(revoked=False)
        try:
            revoked = self.sessions.revoke(token)
        except SQLAlchemyError as exc:
            logger.error(
                "Logout could not reach the session store: session=%s at %s (%s)",
                token_label(token),
                self.db.now_iso(),
                exc.__class__.__name__,
            )
            return LogoutResult(revoked=False, degraded=True)
        return LogoutResult(revoked=revoked)

    def logout_all(self, token: str | None) -> int:
        """Revoke every session of the token's owner. Returns the number revoked."""
        if not token:
            raise NoActiveSession()
        with self._guard("logout_all", _label(token)):
            session = self.sessions.validate(token)
            if session is None:
                raise InvalidSession()
            revoked = self.sessions.revoke_all_for_user(session.user_id)
        logger.info("Logout everywhere: user_id=%s revoked=%d", session.user_id, revoked)
        return revoked

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def get_profile(self, token: str | None) -> PublicUser:
        with self._guard("get_profile", _label(token)):
            session = self._resolve(token)
            user = self.credentials.get(session.user_id)
        if user is None:
            raise NotFound()
        return public_view(user)

    def update_profile(self, token: str | None, data: dict) -> PublicUser:
        """Apply a profile patch for the token's owner.

        A password change and the revocation of every *other* session of the
        user commit together; the calling session survives.
        """
        with self._guard("update_profile", _label(token)):
            session = self._resolve(token)
        patch = parse_profile_patch(data)
        with self._guard("update_profile", _label(token)):
            user = self.credentials.get(session.user_id)
        if user is None:
            raise NotFound()

        password_hash = None
        if patch.new_password is not None:
            if not self.credentials.verify_secret(user, patch.current_password):
                raise InvalidCurrentPassword()
            password_hash = hash_password(patch.new_password, self.settings.bcrypt_rounds)

        revoked = 0
        with self._guard("update_profile", f"user_id={user.id}"):
            with self.db.transaction() as conn:
                self.credentials.update_profile(
                    user.id,
                    name=patch.name,
                    preferences=patch.preferences,
                    password_hash=password_hash,
                    conn=conn,
                )
                if password_hash is not None:
                    revoked = self.sessions.revoke_all_for_user(user.id, except_token=token, conn=conn)
                updated = self.credentials.get(user.id, conn=conn)
        if password_hash is not None:
            logger.info("Password changed: user_id=%s other_sessions_revoked=%d", user.id, revoked)
        return public_view(updated)

    def delete_account(self, token: str | None, password) -> int:
        """Delete the token owner's account and all of their sessions, atomically.

        Returns the number of sessions removed.
        """
        with self._guard("delete_account", _label(token)):
            session = self._resolve(token)
        password = require_password_confirmation(password)
        with self._guard("delete_account", _label(token)):
            user = self.credentials.get(session.user_id)
        if user is None:
            raise NotFound()
        if not self.credentials.verify_secret(user, password):
            raise InvalidPassword()

        with self._guard("delete_account", f"user_id={user.id}"):
            with self.db.transaction() as conn:
                revoked = self.sessions.revoke_all_for_user(user.id, conn=conn)
                if not self.credentials.delete(user.id, conn=conn):
                    raise NotFound()
        logger.info("Account deleted: user_id=%s sessions_revoked=%d", user.id, revoked)
        return revoked

    # ------------------------------------------------------------------
    # Password strength (stateless)
    # ------------------------------------------------------------------

    def evaluate_password(self, candidate) -> PolicyResult:
        return evaluate(candidate)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _identity(self, client: ClientContext) -> str:
        return client_identity(client.ip, client.user_agent, self.settings.rate_limit_fingerprint)

    def _resolve(self, token: str | None) -> Session:
        if not token:
            raise NotAuthenticated()
        session = self.sessions.validate(token)
        if session is None:
            raise InvalidSession()
        return session

    @contextmanager
    def _guard(self, operation: str, identity: str | None) -> Iterator[None]:
        """Translate store failures into InternalError / StoreUnavailable.

        AuthErrors raised inside the block pass through untouched.
        """
        try:
            yield
        except (OperationalError, PoolTimeoutError) as exc:
            logger.error(
                "Store unavailable: operation=%s identity=%s at %s (%s)",
                operation,
                identity,
                self.db.now_iso(),
                exc.__class__.__name__,
            )
            raise StoreUnavailable() from exc
        except SQLAlchemyError as exc:
            logger.error(
                "Store failure: operation=%s identity=%s at %s (%s)",
                operation,
                identity,
                self.db.now_iso(),
                exc.__class__.__name__,
            )
            raise InternalError() from exc
