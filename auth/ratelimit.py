"""
auth/ratelimit.py -- Per-client admission control for login and registration.

Built on `limits`, the library slowapi wraps. One fixed-window counter per
(operation, client identity) lives in a `limits` storage backend. The first
hit opens a window of the policy's duration; the storage key expiring is the
window reset.

Every call is counted, including rejected ones. A client hammering a closed
window keeps its counter above the limit instead of resetting anything, so a
retry storm cannot buy itself extra attempts.

Atomicity comes from the storage backend: MemoryStorage increments under a
per-key lock, Redis uses INCR. Two concurrent requests can never both observe
"count == limit" and both be admitted.

Rate limiting is per client identity and is deliberately separate from the
per-account lockout in credentials.py: a shared office IP must not lock out
unrelated accounts, and an attack spread across many IPs must still lock the
targeted account.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import timedelta

from limits import RateLimitItemPerSecond
from limits.storage import Storage, storage_from_string

from auth.errors import RateLimitExceeded
from auth.tokens import fingerprint
from core.config import Settings

logger = logging.getLogger("gatehouse.auth")

# Shared bucket for callers whose address is unknown. Degraded but safe: all
# such callers compete for one allowance instead of each getting a fresh one.
UNKNOWN_CLIENT = "unknown"

LOGIN = "login"
REGISTER = "register"


@dataclass(frozen=True)
class RatePolicy:
    """A named limit: at most `limit` calls per `window` for one client identity."""

    operation: str
    limit: int
    window: timedelta

    @property
    def item(self) -> RateLimitItemPerSecond:
        return RateLimitItemPerSecond(self.limit, max(1, int(self.window.total_seconds())))


def configured_policies(settings: Settings) -> dict[str, RatePolicy]:
    """Build the LOGIN and REGISTER policies from configuration."""
    return {
        LOGIN: RatePolicy(LOGIN, settings.login_rate_limit, timedelta(seconds=settings.login_rate_window_seconds)),
        REGISTER: RatePolicy(
            REGISTER, settings.register_rate_limit, timedelta(seconds=settings.register_rate_window_seconds)
        ),
    }


def client_identity(ip: str | None, user_agent: str | None = None, use_fingerprint: bool = False) -> str:
    """Return the rate-limit key for a caller.

    The IP alone by default. With use_fingerprint, a keyed hash of the
    User-Agent is appended so clients sharing a NAT address get separate
    buckets.
    """
    base = ip or UNKNOWN_CLIENT
    if use_fingerprint and user_agent:
        return f"{base}_{fingerprint(user_agent)}"
    return base


class RateLimiter:
    """Fixed-window admission control keyed by (operation, identity).

    Usage:
        limiter = RateLimiter("memory://")
        remaining = limiter.admit("10.0.0.1", RatePolicy("login", 10, timedelta(minutes=15)))
    """

    def __init__(self, storage_uri: str = "memory://") -> None:
        self.storage: Storage = storage_from_string(storage_uri)

    def admit(self, identity: str, policy: RatePolicy) -> int:
        """Count one call and return how many remain in the current window.

        Raises RateLimitExceeded (with retry_after seconds) when this call
        pushes the count past the policy limit.
        """
        identity = identity or UNKNOWN_CLIENT
        item = policy.item
        key = item.key_for(policy.operation, identity)
        # One atomic increment is both the count and the admission decision.
        count = self.storage.incr(key, item.get_expiry())
        if count > policy.limit:
            retry_after = max(1, math.ceil(self.storage.get_expiry(key) - time.time()))
            logger.warning(
                "Rate limit exceeded: operation=%s identity=%s retry_after=%ds", policy.operation, identity, retry_after
            )
            raise RateLimitExceeded(retry_after=retry_after)
        return policy.limit - count

    def reset(self, identity: str, policy: RatePolicy) -> None:
        """Forget the current window for one identity (operator and test use)."""
        self.storage.clear(policy.item.key_for(policy.operation, identity or UNKNOWN_CLIENT))
