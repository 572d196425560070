"""Ready-made forms for the password-based stages."""

from __future__ import annotations

from .config import EngineConfig
from .validation import (
    FieldSpec,
    FieldValidatedCallback,
    PasswordComplexityRule,
    ValidationOrchestrator,
    looks_like_email,
    matches,
    required,
)

FIELD_USERNAME = "username"
FIELD_EMAIL = "email"
FIELD_PASSWORD = "password"
FIELD_PASSWORD_CONFIRM = "password_confirm"


def login_form(
    config: EngineConfig | None = None,
    *,
    initial_username: str = "",
    on_field_validated: FieldValidatedCallback | None = None,
) -> ValidationOrchestrator:
    """Username and password, both required."""

    return ValidationOrchestrator(
        [
            FieldSpec(
                FIELD_USERNAME,
                [required("The email field must not be blank.")],
                initial=initial_username,
            ),
            FieldSpec(FIELD_PASSWORD, [required("The password field must not be blank.")]),
        ],
        on_field_validated=on_field_validated,
    )


def registration_form(
    config: EngineConfig | None = None,
    *,
    initial_email: str = "",
    on_field_validated: FieldValidatedCallback | None = None,
) -> ValidationOrchestrator:
    """Email, password with strength gating, and password confirmation."""

    settings = config or EngineConfig()
    return ValidationOrchestrator(
        [
            FieldSpec(
                FIELD_EMAIL,
                [
                    required("Enter email address"),
                    looks_like_email("Doesn't look like a valid email address"),
                ],
                initial=initial_email,
            ),
            FieldSpec(
                FIELD_PASSWORD,
                [
                    required("Enter password"),
                    PasswordComplexityRule(
                        min_score=settings.password_min_score,
                        allow_unsafe=settings.allow_unsafe_passwords,
                    ),
                ],
            ),
            FieldSpec(
                FIELD_PASSWORD_CONFIRM,
                [
                    required("Confirm password"),
                    matches(FIELD_PASSWORD, "Passwords don't match"),
                ],
            ),
        ],
        display_order=(FIELD_PASSWORD, FIELD_PASSWORD_CONFIRM, FIELD_EMAIL),
        on_field_validated=on_field_validated,
    )


__all__ = [
    "FIELD_EMAIL",
    "FIELD_PASSWORD",
    "FIELD_PASSWORD_CONFIRM",
    "FIELD_USERNAME",
    "login_form",
    "registration_form",
]
