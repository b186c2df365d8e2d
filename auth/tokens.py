"""
auth/tokens.py -- Password hashing, session tokens, client fingerprints, cookies.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). The cost factor comes
       from Settings.bcrypt_rounds (default 12) so tests can run at the minimum
       cost. The _DUMMY_HASH constant enables timing equalization in the login
       path so response time does not reveal whether an email is registered.

  bcrypt only reads the first 72 bytes of its input; newer bcrypt releases
       raise instead of truncating. _bcrypt_input() truncates explicitly so
       hashing and verification agree on every supported bcrypt version.
       Password policy caps length at 128 characters.

  Session tokens: secrets.token_urlsafe(32) gives 256 bits of entropy and is
       not derived from any account data. Tokens are opaque; the server-side
       sessions table is the only source of truth for validity.

  Fingerprints: HMAC-SHA256(SECRET_KEY, user_agent), truncated. Keyed so the
       rate-limit store never holds a raw or reversible User-Agent.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

import bcrypt

from core.config import get_settings

SESSION_COOKIE = "session"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

_BCRYPT_MAX_BYTES = 72


def _bcrypt_input(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a bcrypt digest of the plaintext password at the given cost."""
    salt = bcrypt.gensalt(rounds=rounds or _settings.bcrypt_rounds)
    return bcrypt.hashpw(_bcrypt_input(plain), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt digest.

    A malformed stored digest is a mismatch, not an error.
    """
    try:
        return bcrypt.checkpw(_bcrypt_input(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. The login path runs verify_password() against
# this digest when the email is unknown.
_DUMMY_HASH: str = hash_password("gatehouse_timing_dummy")


def burn_verification(plain: str) -> None:
    """Spend one bcrypt verification's worth of time and discard the result."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Session tokens and fingerprints
# ---------------------------------------------------------------------------


def generate_session_token() -> str:
    """Generate a new opaque session token (43 url-safe chars, 256 bits)."""
    return secrets.token_urlsafe(32)


def token_label(token: str) -> str:
    """Short, non-reversible label for logging a session without its secret."""
    return hashlib.sha256(token.encode()).hexdigest()[:12]


def fingerprint(user_agent: str) -> str:
    """Return a keyed, truncated hash of a User-Agent string."""
    return hmac.new(
        _settings.secret_key.encode(),
        user_agent.encode(),
        hashlib.sha256,
    ).hexdigest()[:16]


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, max_age: int) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation for most cases.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the session TTL so cookie and session expire together.
    """
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=max_age,
        path="/",
    )


def clear_session_cookie(response) -> None:
    """Expire the session cookie immediately (logout, logout-all, deletion)."""
    response.set_cookie(
        SESSION_COOKIE,
        value="",
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=0,
        path="/",
    )
