"""
auth/password_policy.py -- Password acceptance rules and strength scoring.

Two independent answers for one candidate string:

  accepted -- hard requirements. Registration and password changes refuse any
      candidate with at least one violation.
  score / strong -- 0..8 strength estimate shown to the user as feedback.
      A password can be accepted and still weak, or strong and still refused
      (e.g. it embeds "password").

evaluate() is pure and total: it never raises, whatever it is given.

Layer rule: no imports from api/. No I/O.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

MIN_LENGTH = 8
MAX_LENGTH = 128
STRONG_LENGTH = 12
STRONG_SCORE = 6
MAX_SCORE = 8

SPECIAL_CHARACTERS = "@$!%*?&"

# Rejected as substrings, case-insensitively.
COMMON_PASSWORDS: tuple[str, ...] = (
    "password",
    "12345678",
    "qwerty123",
    "admin123",
    "letmein",
    "welcome123",
)

_LOWER_RE = re.compile(r"[a-z]")
_UPPER_RE = re.compile(r"[A-Z]")
_DIGIT_RE = re.compile(r"[0-9]")
_SPECIAL_RE = re.compile(f"[{re.escape(SPECIAL_CHARACTERS)}]")
_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")
_REPEAT_RE = re.compile(r"(.)\1{2,}")

# Ascending runs only: 012..890 and abc..xyz.
_SEQUENCES = tuple("0123456789"[i : i + 3] for i in range(8)) + ("890",)
_SEQUENCES += tuple("abcdefghijklmnopqrstuvwxyz"[i : i + 3] for i in range(24))
_SEQUENCE_RE = re.compile("|".join(_SEQUENCES), re.IGNORECASE)


class PolicyViolation(str, Enum):
    too_short = "too_short"
    too_long = "too_long"
    missing_lowercase = "missing_lowercase"
    missing_uppercase = "missing_uppercase"
    missing_digit = "missing_digit"
    missing_special = "missing_special"
    common_password = "common_password"


VIOLATION_MESSAGES: dict[PolicyViolation, str] = {
    PolicyViolation.too_short: f"Password must be at least {MIN_LENGTH} characters",
    PolicyViolation.too_long: "Password too long",
    PolicyViolation.missing_lowercase: "Password must contain at least one lowercase letter",
    PolicyViolation.missing_uppercase: "Password must contain at least one uppercase letter",
    PolicyViolation.missing_digit: "Password must contain at least one number",
    PolicyViolation.missing_special: f"Password must contain at least one special character ({SPECIAL_CHARACTERS})",
    PolicyViolation.common_password: "Password contains common patterns and is not secure",
}


@dataclass(frozen=True)
class PolicyResult:
    accepted: bool
    violations: tuple[PolicyViolation, ...]
    score: int
    strong: bool
    feedback: tuple[str, ...] = ()

    @property
    def messages(self) -> list[str]:
        return [VIOLATION_MESSAGES[v] for v in self.violations]


def _violations(candidate: str) -> list[PolicyViolation]:
    found: list[PolicyViolation] = []
    if len(candidate) < MIN_LENGTH:
        found.append(PolicyViolation.too_short)
    if len(candidate) > MAX_LENGTH:
        found.append(PolicyViolation.too_long)
    if not _LOWER_RE.search(candidate):
        found.append(PolicyViolation.missing_lowercase)
    if not _UPPER_RE.search(candidate):
        found.append(PolicyViolation.missing_uppercase)
    if not _DIGIT_RE.search(candidate):
        found.append(PolicyViolation.missing_digit)
    if not _SPECIAL_RE.search(candidate):
        found.append(PolicyViolation.missing_special)
    lowered = candidate.lower()
    if any(common in lowered for common in COMMON_PASSWORDS):
        found.append(PolicyViolation.common_password)
    return found


def _strength(candidate: str) -> tuple[int, list[str]]:
    """Score the candidate on eight one-point criteria, collecting hints for misses."""
    checks = (
        (len(candidate) >= MIN_LENGTH, f"Use at least {MIN_LENGTH} characters"),
        (len(candidate) >= STRONG_LENGTH, f"Consider using {STRONG_LENGTH}+ characters for better security"),
        (bool(_LOWER_RE.search(candidate)), "Add lowercase letters"),
        (bool(_UPPER_RE.search(candidate)), "Add uppercase letters"),
        (bool(_DIGIT_RE.search(candidate)), "Add numbers"),
        (bool(_NON_ALNUM_RE.search(candidate)), "Add special characters"),
        (not _REPEAT_RE.search(candidate), "Avoid repeating characters"),
        (not _SEQUENCE_RE.search(candidate), "Avoid sequential characters"),
    )
    score = sum(1 for passed, _ in checks if passed)
    feedback = [hint for passed, hint in checks if not passed]
    return score, feedback


def evaluate(candidate: str) -> PolicyResult:
    """Check a candidate password against the policy and score its strength.

    Non-string input is coerced with str() so the function stays total for
    any value a transport layer might hand it.
    """
    if not isinstance(candidate, str):
        candidate = "" if candidate is None else str(candidate)
    violations = _violations(candidate)
    score, feedback = _strength(candidate)
    return PolicyResult(
        accepted=not violations,
        violations=tuple(violations),
        score=score,
        strong=score >= STRONG_SCORE,
        feedback=tuple(feedback),
    )
