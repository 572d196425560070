"""Password complexity scoring."""

from __future__ import annotations

import asyncio
import math

import msgspec

MAX_SCORE = 4

# Lower bounds in bits of estimated entropy for scores 1..4.
SCORE_THRESHOLDS = (25.0, 40.0, 55.0, 70.0)

COMMON_PASSWORDS = frozenset(
    {
        "123456",
        "12345678",
        "123456789",
        "111111",
        "abc123",
        "admin",
        "dragon",
        "iloveyou",
        "letmein",
        "monkey",
        "password",
        "qwerty",
        "sunshine",
        "welcome",
    }
)

_SPECIAL = set("-=_+;:,.|/?@#$%^&*()[]{}~<> !'\"`\\")


class PasswordFeedback(msgspec.Struct, frozen=True):
    warning: str | None = None
    suggestions: tuple[str, ...] = ()


class PasswordComplexity(msgspec.Struct, frozen=True):
    score: int
    entropy_bits: float
    feedback: PasswordFeedback = PasswordFeedback()


def _charset_size(password: str) -> int:
    size = 0
    if any(c.islower() for c in password):
        size += 26
    if any(c.isupper() for c in password):
        size += 26
    if any(c.isdigit() for c in password):
        size += 10
    if any(c in _SPECIAL for c in password):
        size += 33
    if any(not c.isascii() for c in password):
        size += 100
    return size


def _repeated_chars(password: str) -> int:
    """Count characters that only extend a run of three or more."""

    redundant = 0
    run = 1
    for previous, current in zip(password, password[1:]):
        if current == previous:
            run += 1
            continue
        if run >= 3:
            redundant += run - 1
        run = 1
    if run >= 3:
        redundant += run - 1
    return redundant


def _sequential_chars(password: str) -> int:
    """Count characters that only extend ascending or descending runs such as ``abcd``."""

    redundant = 0
    run = 1
    step = 0
    for previous, current in zip(password, password[1:]):
        delta = ord(current) - ord(previous)
        if delta in (1, -1) and (run == 1 or delta == step):
            run += 1
            step = delta
            continue
        if run >= 4:
            redundant += run - 1
        run = 1
        step = 0
    if run >= 4:
        redundant += run - 1
    return redundant


def _score_for(bits: float) -> int:
    score = 0
    for threshold in SCORE_THRESHOLDS:
        if bits >= threshold:
            score += 1
    return score


def score_password(password: str) -> PasswordComplexity:
    """Estimate how guessable ``password`` is on a 0..4 scale."""

    if not password:
        return PasswordComplexity(score=0, entropy_bits=0.0)
    lowered = password.lower()
    if lowered in COMMON_PASSWORDS:
        return PasswordComplexity(
            score=0,
            entropy_bits=0.0,
            feedback=PasswordFeedback(
                warning="This is a very common password.",
                suggestions=("Add another word or two. Uncommon words are better.",),
            ),
        )

    warning: str | None = None
    effective_length = len(password)
    repeated = _repeated_chars(password)
    if repeated:
        effective_length -= repeated
        warning = 'Repeats like "aaa" are easy to guess.'
    sequential = _sequential_chars(password)
    if sequential:
        effective_length -= sequential
        warning = warning or "Sequences like abc or 6543 are easy to guess."
    for common in COMMON_PASSWORDS:
        if len(common) >= 5 and common in lowered:
            effective_length -= len(common) - 1
            warning = warning or "This is similar to a commonly used password."
            break

    charset = _charset_size(password)
    bits = max(effective_length, 1) * math.log2(charset) if charset else 0.0
    score = _score_for(bits)

    suggestions: list[str] = []
    if score < 3:
        suggestions.append("Add another word or two. Uncommon words are better.")
        if charset <= 36:
            suggestions.append("Mix in uppercase letters, digits or symbols.")
    return PasswordComplexity(
        score=score,
        entropy_bits=round(bits, 2),
        feedback=PasswordFeedback(warning=warning, suggestions=tuple(suggestions)),
    )


async def score_password_async(password: str) -> PasswordComplexity:
    """Score ``password`` off the event loop."""

    return await asyncio.to_thread(score_password, password)


__all__ = [
    "COMMON_PASSWORDS",
    "MAX_SCORE",
    "PasswordComplexity",
    "PasswordFeedback",
    "score_password",
    "score_password_async",
]
