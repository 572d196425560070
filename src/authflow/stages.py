"""Stage executors and the registry that maps stage types onto them."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Protocol, TypeVar, Union, runtime_checkable

import msgspec

from .config import EngineConfig
from .exceptions import InvalidTransitionError, TransportError, ValidationError
from .forms import FIELD_EMAIL, FIELD_PASSWORD, FIELD_USERNAME, login_form
from .models import ServerParams, Session, StagePhase, TokenResponse
from .serialization import PayloadError, decode_as
from .transport import AuthTransport
from .validation import FieldValidatedCallback, ValidationOrchestrator

logger = logging.getLogger(__name__)

PASSWORD_STAGE = "m.login.password"
EMAIL_IDENTITY_STAGE = "m.login.email.identity"
DUMMY_STAGE = "m.login.dummy"

ExecutorT = TypeVar("ExecutorT")
FormFactory = Callable[..., ValidationOrchestrator]


class StageCredential(msgspec.Struct, frozen=True):
    """Completed auth payload ready to be submitted."""

    auth: dict[str, Any]


class Pending(msgspec.Struct, frozen=True):
    """The stage is waiting on something outside the engine, such as an emailed link."""

    stage_state: dict[str, Any] = msgspec.field(default_factory=dict)


StageOutcome = Union[StageCredential, Pending]


@dataclass(slots=True, frozen=True)
class StageContext:
    """Everything a stage needs to collect its input."""

    session: Session
    server: ServerParams
    transport: AuthTransport
    config: EngineConfig
    client_secret: str
    on_phase_change: Callable[[StagePhase], None]
    form: ValidationOrchestrator | None = None
    inputs: Mapping[str, Any] | None = None

    @property
    def session_id(self) -> str | None:
        return self.session.session_id

    @property
    def stage_state(self) -> Mapping[str, Any]:
        return self.session.stage_state

    def input(self, key: str, default: Any = None) -> Any:
        if not self.inputs:
            return default
        return self.inputs.get(key, default)


@runtime_checkable
class StageExecutor(Protocol):
    stage_type: str

    def create_form(
        self,
        config: EngineConfig,
        on_field_validated: FieldValidatedCallback | None = None,
    ) -> ValidationOrchestrator | None: ...

    async def collect(self, context: StageContext) -> StageOutcome: ...


class PasswordStage:
    """Identifier plus password, validated through a form before anything is sent."""

    stage_type = PASSWORD_STAGE

    def __init__(self, form_factory: FormFactory = login_form) -> None:
        self.form_factory = form_factory

    def create_form(
        self,
        config: EngineConfig,
        on_field_validated: FieldValidatedCallback | None = None,
    ) -> ValidationOrchestrator:
        return self.form_factory(config, on_field_validated=on_field_validated)

    async def collect(self, context: StageContext) -> StageOutcome:
        form = context.form
        if form is None:
            raise InvalidTransitionError("Password stage has no form")
        for field_id, value in (context.inputs or {}).items():
            if not form.has_field(field_id):
                logger.debug("Ignoring input %r not declared by the password form", field_id)
                continue
            form.set_value(field_id, "" if value is None else str(value))
        values = await form.require_valid()
        user = (values.get(FIELD_USERNAME) or values.get(FIELD_EMAIL) or "").strip()
        auth: dict[str, Any] = {
            "type": self.stage_type,
            "identifier": _identifier(user),
            "password": values[FIELD_PASSWORD],
        }
        if context.config.device_display_name:
            auth["initial_device_display_name"] = context.config.device_display_name
        if context.session_id:
            auth["session"] = context.session_id
        return StageCredential(auth=auth)


def _identifier(user: str) -> dict[str, str]:
    if "@" in user and not user.startswith("@"):
        return {"type": "m.id.thirdparty", "medium": "email", "address": user}
    return {"type": "m.id.user", "user": user}


class EmailIdentityStage:
    """Proof of possession of an email address.

    The first collection requests a token and stays pending until the user
    follows the emailed link; the next collection submits the verification
    sid. The engine applies no timeout while pending.
    """

    stage_type = EMAIL_IDENTITY_STAGE

    def create_form(
        self,
        config: EngineConfig,
        on_field_validated: FieldValidatedCallback | None = None,
    ) -> None:
        return None

    async def collect(self, context: StageContext) -> StageOutcome:
        sid = context.stage_state.get("email_sid")
        if sid is not None:
            return StageCredential(
                auth={
                    "type": self.stage_type,
                    "threepid_creds": {"sid": sid, "client_secret": context.client_secret},
                    "session": context.session_id,
                }
            )
        email = context.input(FIELD_EMAIL) or context.stage_state.get("email_address")
        if not email:
            raise ValidationError(FIELD_EMAIL, "Enter email address")
        send_attempt = int(context.stage_state.get("send_attempt", 0)) + 1
        context.on_phase_change(StagePhase.REQUESTING_TOKEN)
        raw = await context.transport.request_token(context.server, email, context.client_secret, send_attempt)
        try:
            token = decode_as(raw, TokenResponse)
        except PayloadError as exc:
            raise TransportError(f"Invalid token response: {exc}", errcode="INVALID_RESPONSE") from exc
        logger.debug("Email token requested for attempt %s", context.session.attempt_id)
        context.on_phase_change(StagePhase.AWAITING_CONFIRMATION)
        return Pending(stage_state={"email_sid": token.sid, "email_address": email, "send_attempt": send_attempt})


class DummyStage:
    """Stage that completes without user input."""

    stage_type = DUMMY_STAGE

    def create_form(
        self,
        config: EngineConfig,
        on_field_validated: FieldValidatedCallback | None = None,
    ) -> None:
        return None

    async def collect(self, context: StageContext) -> StageOutcome:
        auth: dict[str, Any] = {"type": self.stage_type}
        if context.session_id:
            auth["session"] = context.session_id
        return StageCredential(auth=auth)


class StageRegistry:
    """Static mapping from stage type to executor, assembled at composition time."""

    def __init__(self, executors: Iterable[StageExecutor] = ()) -> None:
        self._executors: dict[str, StageExecutor] = {}
        for executor in executors:
            self.add(executor)

    def add(self, executor: StageExecutor) -> None:
        stage_type = executor.stage_type
        if stage_type in self._executors:
            raise ValueError(f"Stage type {stage_type!r} is already registered")
        self._executors[stage_type] = executor

    def register(self, stage_type: str) -> Callable[[Callable[[], ExecutorT]], Callable[[], ExecutorT]]:
        """Decorator registering the executor built by ``factory`` for ``stage_type``."""

        def decorator(factory: Callable[[], ExecutorT]) -> Callable[[], ExecutorT]:
            executor = factory()
            if getattr(executor, "stage_type", None) != stage_type:
                raise ValueError(f"Executor built by {factory!r} does not handle {stage_type!r}")
            self.add(executor)  # type: ignore[arg-type]
            return factory

        return decorator

    def get(self, stage_type: str) -> StageExecutor:
        try:
            return self._executors[stage_type]
        except KeyError as exc:
            raise LookupError(f"No executor registered for stage {stage_type!r}") from exc

    def stage_types(self) -> frozenset[str]:
        return frozenset(self._executors)

    def __contains__(self, stage_type: object) -> bool:
        return stage_type in self._executors


def default_registry() -> StageRegistry:
    return StageRegistry([PasswordStage(), EmailIdentityStage(), DummyStage()])


__all__ = [
    "DUMMY_STAGE",
    "EMAIL_IDENTITY_STAGE",
    "PASSWORD_STAGE",
    "DummyStage",
    "EmailIdentityStage",
    "PasswordStage",
    "Pending",
    "StageContext",
    "StageCredential",
    "StageExecutor",
    "StageOutcome",
    "StageRegistry",
    "default_registry",
]
