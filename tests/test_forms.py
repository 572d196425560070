from __future__ import annotations

import pytest

from authflow import EngineConfig, ValidationError, login_form, registration_form
from authflow.forms import FIELD_EMAIL, FIELD_PASSWORD, FIELD_PASSWORD_CONFIRM, FIELD_USERNAME

STRONG = "correct-Horse-battery-Staple-42"


@pytest.mark.asyncio
async def test_login_form_requires_username_first() -> None:
    form = login_form()

    with pytest.raises(ValidationError) as excinfo:
        await form.require_valid()

    assert excinfo.value.field_id == FIELD_USERNAME
    assert excinfo.value.message == "The email field must not be blank."
    assert form.focused == FIELD_USERNAME


@pytest.mark.asyncio
async def test_login_form_uses_initial_username() -> None:
    form = login_form(initial_username="@alice:example.org")
    form.set_value(FIELD_PASSWORD, "hunter2")

    assert await form.require_valid() == {FIELD_USERNAME: "@alice:example.org", FIELD_PASSWORD: "hunter2"}


@pytest.mark.asyncio
async def test_registration_focuses_password_before_email() -> None:
    form = registration_form()

    assert form.display_order == (FIELD_PASSWORD, FIELD_PASSWORD_CONFIRM, FIELD_EMAIL)
    assert await form.verify_before_submit() is False
    assert form.focused == FIELD_PASSWORD
    assert form.state(FIELD_PASSWORD).error_message == "Enter password"
    assert form.state(FIELD_EMAIL).error_message == "Enter email address"


@pytest.mark.asyncio
async def test_registration_rejects_weak_password_with_feedback() -> None:
    form = registration_form()

    result = await form.on_change(FIELD_PASSWORD, "abc")

    assert result.valid is False
    assert result.message == "Add another word or two. Uncommon words are better."


@pytest.mark.asyncio
async def test_registration_reports_common_password_warning() -> None:
    form = registration_form()

    result = await form.on_change(FIELD_PASSWORD, "qwerty")

    assert result.message == "This is a very common password."


@pytest.mark.asyncio
async def test_registration_accepts_strong_password() -> None:
    form = registration_form()

    result = await form.on_change(FIELD_PASSWORD, STRONG)

    assert result.valid is True
    assert result.message == "Nice, strong password!"


@pytest.mark.asyncio
async def test_unsafe_passwords_allowed_when_configured() -> None:
    form = registration_form(EngineConfig(allow_unsafe_passwords=True))

    result = await form.on_change(FIELD_PASSWORD, "abc")

    assert result.valid is True
    assert result.message == "Password is allowed, but unsafe"


@pytest.mark.asyncio
async def test_min_score_comes_from_config() -> None:
    form = registration_form(EngineConfig(password_min_score=2))

    result = await form.on_change(FIELD_PASSWORD, "Tr0ub4dor")

    assert result.valid is True


@pytest.mark.asyncio
async def test_registration_reports_mismatched_confirmation() -> None:
    form = registration_form(initial_email="bob@example.org")
    form.set_value(FIELD_PASSWORD, STRONG)
    form.set_value(FIELD_PASSWORD_CONFIRM, STRONG + "!")

    with pytest.raises(ValidationError) as excinfo:
        await form.require_valid()

    assert excinfo.value.field_id == FIELD_PASSWORD_CONFIRM
    assert excinfo.value.message == "Passwords don't match"


@pytest.mark.asyncio
async def test_registration_rejects_malformed_email() -> None:
    form = registration_form(initial_email="bob at example")
    form.set_value(FIELD_PASSWORD, STRONG)
    form.set_value(FIELD_PASSWORD_CONFIRM, STRONG)

    with pytest.raises(ValidationError) as excinfo:
        await form.require_valid()

    assert excinfo.value.field_id == FIELD_EMAIL
    assert excinfo.value.message == "Doesn't look like a valid email address"


@pytest.mark.asyncio
async def test_complete_registration_form() -> None:
    form = registration_form(initial_email="bob@example.org")
    form.set_value(FIELD_PASSWORD, STRONG)
    form.set_value(FIELD_PASSWORD_CONFIRM, STRONG)

    values = await form.require_valid()

    assert values == {
        FIELD_EMAIL: "bob@example.org",
        FIELD_PASSWORD: STRONG,
        FIELD_PASSWORD_CONFIRM: STRONG,
    }
