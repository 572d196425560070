"""Engine configuration objects."""

from __future__ import annotations

import os
from typing import Mapping

from msgspec import Struct

from .observability import ObservabilityConfig

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _parse_score(name: str, raw: str) -> int:
    try:
        score = int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if not 0 <= score <= 4:
        raise ValueError(f"{name} must be between 0 and 4, got {score}")
    return score


class EngineConfig(Struct, frozen=True):
    """Typed configuration for a :class:`~authflow.session.SessionStateMachine`.

    ``allow_unsafe_passwords`` relaxes password-strength gating: the score is
    still computed and reported, but a low score no longer blocks submission.
    """

    password_min_score: int = 3
    allow_unsafe_passwords: bool = False
    device_display_name: str | None = None
    observability: ObservabilityConfig = ObservabilityConfig()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EngineConfig":
        """Build a configuration from ``AUTHFLOW_*`` environment variables."""

        env = os.environ if environ is None else environ
        defaults = cls()
        min_score = defaults.password_min_score
        raw_score = env.get("AUTHFLOW_PASSWORD_MIN_SCORE")
        if raw_score is not None:
            min_score = _parse_score("AUTHFLOW_PASSWORD_MIN_SCORE", raw_score)
        allow_unsafe = defaults.allow_unsafe_passwords
        raw_unsafe = env.get("AUTHFLOW_ALLOW_UNSAFE_PASSWORDS")
        if raw_unsafe is not None:
            allow_unsafe = _parse_bool("AUTHFLOW_ALLOW_UNSAFE_PASSWORDS", raw_unsafe)
        device_name = env.get("AUTHFLOW_DEVICE_DISPLAY_NAME") or defaults.device_display_name
        return cls(
            password_min_score=min_score,
            allow_unsafe_passwords=allow_unsafe,
            device_display_name=device_name,
        )


__all__ = ["EngineConfig"]
