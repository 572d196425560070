from __future__ import annotations

from typing import Any

import pytest

from authflow import (
    DummyStage,
    EmailIdentityStage,
    EngineConfig,
    FieldSpec,
    PasswordStage,
    Pending,
    ServerParams,
    Session,
    StageContext,
    StageCredential,
    StageExecutor,
    StagePhase,
    StageRegistry,
    TransportError,
    ValidationOrchestrator,
    default_registry,
)
from authflow.stages import DUMMY_STAGE, EMAIL_IDENTITY_STAGE, PASSWORD_STAGE
from authflow.testing import ScriptedTransport
from authflow.validation import required

SERVER = ServerParams(base_url="https://matrix.example.org")


def _context(
    transport: ScriptedTransport,
    *,
    session_id: str | None = None,
    stage_state: dict[str, Any] | None = None,
    inputs: dict[str, Any] | None = None,
    phases: list[StagePhase] | None = None,
    executor: Any = None,
) -> StageContext:
    session = Session(attempt_id="attempt", server=SERVER, session_id=session_id, stage_state=stage_state or {})
    config = EngineConfig()
    form = executor.create_form(config) if executor is not None else None
    return StageContext(
        session=session,
        server=SERVER,
        transport=transport,
        config=config,
        client_secret="secret",
        on_phase_change=(phases if phases is not None else []).append,
        form=form,
        inputs=inputs,
    )


def test_default_registry_supports_builtin_stages() -> None:
    registry = default_registry()

    assert registry.stage_types() == frozenset({PASSWORD_STAGE, EMAIL_IDENTITY_STAGE, DUMMY_STAGE})
    assert isinstance(registry.get(PASSWORD_STAGE), PasswordStage)
    assert PASSWORD_STAGE in registry
    assert isinstance(registry.get(DUMMY_STAGE), StageExecutor)


def test_registry_rejects_duplicates_and_unknown_types() -> None:
    registry = StageRegistry([DummyStage()])

    with pytest.raises(ValueError):
        registry.add(DummyStage())
    with pytest.raises(LookupError):
        registry.get("m.login.recaptcha")


def test_register_decorator_adds_executor() -> None:
    registry = StageRegistry()

    @registry.register("m.login.terms")
    def terms_stage() -> DummyStage:
        stage = DummyStage()
        stage.stage_type = "m.login.terms"
        return stage

    assert "m.login.terms" in registry
    with pytest.raises(ValueError):
        registry.register("m.login.other")(DummyStage)


@pytest.mark.asyncio
async def test_dummy_stage_carries_session() -> None:
    outcome = await DummyStage().collect(_context(ScriptedTransport(), session_id="S1"))

    assert outcome == StageCredential(auth={"type": DUMMY_STAGE, "session": "S1"})


@pytest.mark.asyncio
async def test_password_stage_builds_auth_from_inputs() -> None:
    stage = PasswordStage()
    context = _context(
        ScriptedTransport(),
        session_id="S1",
        inputs={"username": "@alice:example.org", "password": "hunter2"},
        executor=stage,
    )

    outcome = await stage.collect(context)

    assert isinstance(outcome, StageCredential)
    assert outcome.auth == {
        "type": PASSWORD_STAGE,
        "identifier": {"type": "m.id.user", "user": "@alice:example.org"},
        "password": "hunter2",
        "session": "S1",
    }


@pytest.mark.asyncio
async def test_password_stage_ignores_undeclared_inputs() -> None:
    stage = PasswordStage()
    context = _context(
        ScriptedTransport(),
        inputs={"username": "alice", "password": "hunter2", "email": "alice@example.org"},
        executor=stage,
    )

    outcome = await stage.collect(context)

    assert isinstance(outcome, StageCredential)
    assert outcome.auth["identifier"] == {"type": "m.id.user", "user": "alice"}


@pytest.mark.asyncio
async def test_password_stage_falls_back_to_email_field() -> None:
    def email_login_form(config: EngineConfig, **kwargs: Any) -> ValidationOrchestrator:
        return ValidationOrchestrator(
            [FieldSpec("email", [required("Enter email")]), FieldSpec("password", [required("Enter password")])],
            **kwargs,
        )

    stage = PasswordStage(form_factory=email_login_form)
    context = _context(
        ScriptedTransport(),
        inputs={"email": "alice@example.org", "password": "hunter2"},
        executor=stage,
    )

    outcome = await stage.collect(context)

    assert isinstance(outcome, StageCredential)
    assert outcome.auth["identifier"] == {"type": "m.id.thirdparty", "medium": "email", "address": "alice@example.org"}


@pytest.mark.asyncio
async def test_email_stage_requests_token_then_goes_pending() -> None:
    transport = ScriptedTransport().queue("request_token", {"sid": "sid-7"})
    phases: list[StagePhase] = []
    context = _context(
        transport,
        stage_state={"send_attempt": 2},
        inputs={"email": "bob@example.org"},
        phases=phases,
    )

    outcome = await EmailIdentityStage().collect(context)

    assert outcome == Pending(stage_state={"email_sid": "sid-7", "email_address": "bob@example.org", "send_attempt": 3})
    assert phases == [StagePhase.REQUESTING_TOKEN, StagePhase.AWAITING_CONFIRMATION]
    assert transport.calls_for("request_token")[0].arguments == {
        "server": SERVER,
        "email": "bob@example.org",
        "client_secret": "secret",
        "send_attempt": 3,
    }


@pytest.mark.asyncio
async def test_email_stage_rejects_malformed_token_response() -> None:
    transport = ScriptedTransport().queue("request_token", {"unexpected": "value"})
    context = _context(transport, inputs={"email": "bob@example.org"})

    with pytest.raises(TransportError) as excinfo:
        await EmailIdentityStage().collect(context)

    assert excinfo.value.errcode == "INVALID_RESPONSE"


@pytest.mark.asyncio
async def test_email_stage_submits_verified_sid() -> None:
    context = _context(ScriptedTransport(), session_id="S2", stage_state={"email_sid": "sid-7"})

    outcome = await EmailIdentityStage().collect(context)

    assert outcome == StageCredential(
        auth={
            "type": EMAIL_IDENTITY_STAGE,
            "threepid_creds": {"sid": "sid-7", "client_secret": "secret"},
            "session": "S2",
        }
    )
