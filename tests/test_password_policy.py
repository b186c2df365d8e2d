"""Unit tests for auth/password_policy.py -- acceptance rules and strength scoring.

Covers:
- each hard requirement produces its own violation, in check order
- the common-password denylist matches case-insensitively as a substring
- strength score criteria, including repeats and ascending runs
- acceptance agrees with an independent rule check over random strings
- evaluate() is total: odd input never raises
"""

import random
import string

import pytest

from auth.password_policy import (
    COMMON_PASSWORDS,
    MAX_SCORE,
    SPECIAL_CHARACTERS,
    PolicyViolation,
    evaluate,
)


class TestAcceptance:
    def test_valid_password_accepted(self) -> None:
        result = evaluate("Abcdef1!")
        assert result.accepted is True
        assert result.violations == ()
        assert result.messages == []

    def test_too_short(self) -> None:
        result = evaluate("Ab1!")
        assert result.accepted is False
        assert PolicyViolation.too_short in result.violations

    def test_too_long(self) -> None:
        result = evaluate("Aa1!" * 33)  # 132 chars
        assert PolicyViolation.too_long in result.violations
        assert PolicyViolation.too_short not in result.violations

    def test_exact_bounds_accepted(self) -> None:
        assert evaluate("Aa1!" + "x" * 4).accepted is True  # 8 chars
        assert evaluate("Aa1!" + "x" * 124).accepted is True  # 128 chars

    @pytest.mark.parametrize(
        ("candidate", "violation"),
        [
            ("ABCDEF1!", PolicyViolation.missing_lowercase),
            ("abcdef1!", PolicyViolation.missing_uppercase),
            ("Abcdefg!", PolicyViolation.missing_digit),
            ("Abcdefg1", PolicyViolation.missing_special),
        ],
    )
    def test_single_missing_class(self, candidate: str, violation: PolicyViolation) -> None:
        result = evaluate(candidate)
        assert result.violations == (violation,)

    def test_special_set_is_fixed(self) -> None:
        """A non-alphanumeric outside @$!%*?& does not satisfy the special rule."""
        result = evaluate("Abcdef1#")
        assert result.violations == (PolicyViolation.missing_special,)

    def test_every_violation_reported_in_order(self) -> None:
        result = evaluate("")
        assert result.violations == (
            PolicyViolation.too_short,
            PolicyViolation.missing_lowercase,
            PolicyViolation.missing_uppercase,
            PolicyViolation.missing_digit,
            PolicyViolation.missing_special,
        )
        assert len(result.messages) == len(result.violations)

    @pytest.mark.parametrize("candidate", ["MyPassword1!", "xQWERTY123!A", "Letmein99!x", "aWelcome123!"])
    def test_denylist_substring_case_insensitive(self, candidate: str) -> None:
        result = evaluate(candidate)
        assert PolicyViolation.common_password in result.violations
        assert result.accepted is False


class TestStrength:
    def test_max_score(self) -> None:
        result = evaluate("Vm7!qT2@zR9#")
        assert result.score == MAX_SCORE
        assert result.strong is True
        assert result.feedback == ()

    def test_repeated_characters_lose_a_point(self) -> None:
        base = evaluate("Vm7!qT2@zR9#")
        repeated = evaluate("Vm7!qqqT2@zR")
        assert repeated.score == base.score - 1
        assert "Avoid repeating characters" in repeated.feedback

    def test_ascending_run_loses_a_point(self) -> None:
        result = evaluate("Vm7!qT2@zXYZ")
        assert result.score == MAX_SCORE - 1
        assert "Avoid sequential characters" in result.feedback

    def test_numeric_run_detected(self) -> None:
        assert "Avoid sequential characters" in evaluate("Vm!qT@z890R#").feedback

    def test_descending_run_not_penalised(self) -> None:
        assert "Avoid sequential characters" not in evaluate("Vm7!qT2@zCBA").feedback

    def test_accepted_but_weak(self) -> None:
        """Short, with a repeat and a run: accepted, not strong."""
        result = evaluate("Abcd111!")
        assert result.accepted is True
        assert result.strong is False
        assert result.score == 5

    def test_strong_but_refused(self) -> None:
        result = evaluate("MyPassword#2024x")
        assert result.strong is True
        assert result.accepted is False


class TestTotality:
    @pytest.mark.parametrize("candidate", [None, 12345678, "", "\x00" * 200, "ünïcødé😀Aa1!"])
    def test_never_raises(self, candidate) -> None:
        result = evaluate(candidate)
        assert 0 <= result.score <= MAX_SCORE

    def test_deterministic(self) -> None:
        assert evaluate("Xy9!abcd") == evaluate("Xy9!abcd")


def _independently_acceptable(candidate: str) -> bool:
    lowered = candidate.lower()
    return (
        8 <= len(candidate) <= 128
        and any(c in string.ascii_lowercase for c in candidate)
        and any(c in string.ascii_uppercase for c in candidate)
        and any(c in string.digits for c in candidate)
        and any(c in SPECIAL_CHARACTERS for c in candidate)
        and not any(common in lowered for common in COMMON_PASSWORDS)
    )


def test_acceptance_matches_independent_rules() -> None:
    """Random strings drawn from every character class, cross-checked rule by rule."""
    rng = random.Random(20260115)
    alphabet = string.ascii_letters + string.digits + SPECIAL_CHARACTERS + "#^ -_"
    for _ in range(2000):
        length = rng.randint(0, 140)
        candidate = "".join(rng.choice(alphabet) for _ in range(length))
        assert evaluate(candidate).accepted == _independently_acceptable(candidate), candidate
