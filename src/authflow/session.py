"""Session state machine driving discovery, stage execution and submission."""

from __future__ import annotations

import logging
import secrets
import uuid
from typing import Any, Callable, Mapping

from msgspec import structs

from .config import EngineConfig
from .discovery import FlowDiscoverer
from .events import BusyChanged, EngineEvent, ErrorChanged, EventChannel, FieldValidated, LoggedIn, PhaseChanged
from .exceptions import (
    DEACTIVATED_MESSAGE,
    DISCOVERY_MESSAGES,
    INCORRECT_CREDENTIALS_MESSAGE,
    UNREACHABLE_MESSAGE,
    AuthFlowError,
    CredentialCategory,
    CredentialError,
    DiscoveryCause,
    DiscoveryError,
    InvalidTransitionError,
    NoUsableFlowError,
    ServerLivenessError,
    SessionInvalidError,
    TransportError,
    ValidationError,
    communication_error_text,
)
from .http import is_auth_failure
from .models import (
    AuthAttempt,
    FailureReason,
    FlowSet,
    ServerParams,
    Session,
    SessionStatus,
    StagePhase,
    StageResponse,
)
from .observability import Observability
from .selection import FlowSelector
from .serialization import PayloadError, decode_as
from .stages import Pending, StageContext, StageRegistry, default_registry
from .transport import AuthTransport
from .validation import ValidationOrchestrator, ValidationResult

logger = logging.getLogger(__name__)

DEACTIVATED_CODE = "USER_DEACTIVATED"
SESSION_INVALID_CODES = frozenset({"SESSION_INVALID", "UNKNOWN_SESSION", "FLOW_INVALID"})


def _normalize_code(code: str | None) -> str | None:
    if code and code.startswith("M_"):
        return code[2:]
    return code


def classify_rejection(error: TransportError) -> AuthFlowError:
    """Map a rejected submission onto the engine's error taxonomy.

    Returns a :class:`SessionInvalidError`, a :class:`CredentialError`, or
    ``error`` itself for generic communication failures.
    """

    code = _normalize_code(error.errcode)
    if code in SESSION_INVALID_CODES:
        return SessionInvalidError(error.errcode, http_status=error.http_status)
    if is_auth_failure(error.http_status):
        if code == DEACTIVATED_CODE:
            return CredentialError(CredentialCategory.DEACTIVATED, DEACTIVATED_MESSAGE, http_status=error.http_status)
        return CredentialError(
            CredentialCategory.INCORRECT, INCORRECT_CREDENTIALS_MESSAGE, http_status=error.http_status
        )
    return error


def rejection_text(error: TransportError) -> str:
    if error.unreachable:
        return UNREACHABLE_MESSAGE
    return communication_error_text(error.errcode, error.http_status)


def discovery_error_text(error: DiscoveryError) -> str:
    if error.cause is DiscoveryCause.INVALID_RESPONSE and (error.http_status or error.errcode):
        return communication_error_text(error.errcode, error.http_status)
    return DISCOVERY_MESSAGES[error.cause]


class SessionStateMachine:
    """Own one authentication attempt from discovery to completion.

    All status, busy and error fields live here; stages, forms and the
    discoverer only report outcomes. After :meth:`dispose` every coroutine
    that resumes returns without touching state or emitting events.
    """

    def __init__(
        self,
        transport: AuthTransport,
        *,
        registry: StageRegistry | None = None,
        channel: EventChannel | None = None,
        config: EngineConfig | None = None,
        observability: Observability | None = None,
        discoverer: FlowDiscoverer | None = None,
        selector: FlowSelector | None = None,
        client_secret: str | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.transport = transport
        self.registry = registry or default_registry()
        self._owns_channel = channel is None
        self.channel = channel or EventChannel()
        self.observability = observability or Observability(self.config.observability)
        self.discoverer = discoverer or FlowDiscoverer(transport, observability=self.observability)
        self.selector = selector or FlowSelector()
        self.client_secret = client_secret or secrets.token_urlsafe(24)
        self._session: Session | None = None
        self._flow_set: FlowSet | None = None
        self._attempt = AuthAttempt()
        self._error: str | None = None
        self._error_kind: str | None = None
        self._form: ValidationOrchestrator | None = None
        self._collecting = False
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def status(self) -> SessionStatus | None:
        return self._session.status if self._session is not None else None

    @property
    def flow_set(self) -> FlowSet | None:
        return self._flow_set

    @property
    def attempt(self) -> AuthAttempt:
        return self._attempt

    @property
    def busy(self) -> bool:
        return self._attempt.busy

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def error_kind(self) -> str | None:
        return self._error_kind

    @property
    def display_error(self) -> str | None:
        """Error text to show; a dead server overrides the regular error."""

        if not self._attempt.server_is_alive and self._attempt.server_dead_error:
            return self._attempt.server_dead_error
        return self._error

    @property
    def form(self) -> ValidationOrchestrator | None:
        return self._form

    def subscribe(self, listener: Callable[[EngineEvent], Any]) -> Callable[[], None]:
        return self.channel.subscribe(listener)

    async def start(self, server: ServerParams) -> Session:
        """Begin a new attempt against ``server`` by discovering its flows."""

        self._ensure_active()
        self._replace_form(None)
        self._set_session(Session(attempt_id=uuid.uuid4().hex, status=SessionStatus.DISCOVERING, server=server))
        return await self._discover(server)

    async def rediscover(self) -> Session:
        """Discover again for the current server, keeping the attempt id."""

        self._ensure_active()
        session = self._require_session()
        if session.server is None:
            raise InvalidTransitionError("No server to rediscover")
        if session.status is SessionStatus.SUBMITTING:
            raise InvalidTransitionError("Cannot rediscover while submitting")
        self._replace_form(None)
        self._set_session(Session(attempt_id=session.attempt_id, status=SessionStatus.DISCOVERING, server=session.server))
        return await self._discover(session.server)

    async def submit(self, inputs: Mapping[str, Any] | None = None) -> Session:
        """Collect input for the current stage and submit it.

        Raises :class:`ValidationError` when local validation fails; in that
        case nothing is sent and neither the status nor the error slot
        changes.
        """

        self._ensure_active()
        session = self._require_session()
        if session.status is not SessionStatus.AWAITING_STAGE:
            raise InvalidTransitionError(f"Cannot submit while {session.status.value}")
        if self._collecting:
            raise InvalidTransitionError("A submission is already being collected")
        stage_type = session.current_stage
        if stage_type is None or session.server is None:
            raise InvalidTransitionError("Session has no current stage")
        executor = self.registry.get(stage_type)
        self._reset_attempt()
        self._clear_error()
        context = StageContext(
            session=session,
            server=session.server,
            transport=self.transport,
            config=self.config,
            client_secret=self.client_secret,
            on_phase_change=self._phase_emitter(stage_type),
            form=self._form,
            inputs=inputs,
        )
        self._collecting = True
        try:
            outcome = await executor.collect(context)
        except ValidationError:
            if not self._active:
                return session
            raise
        except TransportError as error:
            if not self._is_current(session):
                return self._session or session
            return await self._reject(session, error)
        finally:
            self._collecting = False
        if not self._is_current(session):
            return self._session or session
        if isinstance(outcome, Pending):
            self._set_session(structs.replace(session, stage_state={**session.stage_state, **outcome.stage_state}))
            return self._require_session()
        return await self._send(session, stage_type, outcome.auth)

    async def on_field_change(self, field_id: str, value: str) -> ValidationResult:
        return await self._require_form().on_change(field_id, value)

    async def on_blur(self, field_id: str | None = None) -> ValidationResult | None:
        return await self._require_form().on_blur(field_id)

    def focus(self, field_id: str) -> None:
        self._require_form().focus(field_id)

    def report_liveness(self, error: ServerLivenessError | None) -> None:
        """Record the outcome of a server health probe without changing status."""

        if not self._active:
            return
        if error is None:
            if self._attempt.server_is_alive:
                return
            self._attempt = structs.replace(
                self._attempt, server_is_alive=True, server_error_is_fatal=False, server_dead_error=None
            )
        else:
            logger.warning("Server liveness check failed (fatal=%s): %s", error.fatal, error.message)
            self._attempt = structs.replace(
                self._attempt,
                server_is_alive=False,
                server_error_is_fatal=error.fatal,
                server_dead_error=error.message,
            )
        self._emit(ErrorChanged(message=self.display_error, kind="server_liveness"))

    async def probe_liveness(self) -> bool:
        self._ensure_active()
        session = self._require_session()
        if session.server is None:
            raise InvalidTransitionError("No server to probe")
        try:
            await self.transport.check_liveness(session.server)
        except TransportError as error:
            self.report_liveness(ServerLivenessError(rejection_text(error), fatal=error.unreachable))
            return False
        self.report_liveness(None)
        return True

    def cancel(self) -> None:
        """Abandon the attempt; later callbacks are suppressed."""

        if not self._active:
            return
        if self._session is not None and self._session.status is not SessionStatus.COMPLETED:
            self._session = structs.replace(
                self._session, status=SessionStatus.FAILED, failure=FailureReason.CANCELLED
            )
        self._active = False
        self._attempt = structs.replace(self._attempt, busy=False)
        self._replace_form(None)
        if self._owns_channel:
            self.channel.close()
        logger.debug("Authentication attempt cancelled")

    def dispose(self) -> None:
        self.cancel()

    async def _discover(self, server: ServerParams) -> Session:
        discovering = self._require_session()
        self._clear_error()
        self._set_busy(True)
        try:
            flow_set = await self.discoverer.discover(server)
        except DiscoveryError as error:
            if self._discarded(error.generation):
                return self._require_session()
            self.discoverer.mark_applied(error.generation)
            self._flow_set = None
            self._fail(FailureReason.DISCOVERY_ERROR, error.generation)
            self._set_error(discovery_error_text(error), kind=f"discovery:{error.cause.value}")
            self._set_busy(False)
            return self._require_session()
        except Exception:
            if self._is_current(discovering):
                self._flow_set = None
                self._fail(FailureReason.DISCOVERY_ERROR, discovering.generation)
                self._set_busy(False)
            raise
        if self._discarded(flow_set.generation):
            return self._require_session()
        self.discoverer.mark_applied(flow_set.generation)
        self._flow_set = flow_set
        try:
            selected = self.selector.select(flow_set, self.registry.stage_types())
        except NoUsableFlowError as error:
            self._fail(FailureReason.NO_USABLE_FLOW, flow_set.generation)
            self._set_error(str(error), kind="no_usable_flow")
            self._set_busy(False)
            return self._require_session()
        self._enter_stage(
            structs.replace(
                self._require_session(),
                generation=flow_set.generation,
                flow=selected.flow,
                flow_index=selected.index,
                stage_index=0,
                stage_state={},
                session_id=None,
                failure=None,
            )
        )
        self._set_busy(False)
        return self._require_session()

    def _discarded(self, generation: int) -> bool:
        if not self._active:
            return True
        latest = self.discoverer.generation
        if generation != latest or self.discoverer.is_stale(generation):
            self.observability.on_discovery_discarded(generation, latest)
            return True
        return False

    async def _send(self, session: Session, stage_type: str, auth: dict[str, Any]) -> Session:
        submitting = structs.replace(session, status=SessionStatus.SUBMITTING)
        self._set_session(submitting)
        self._set_busy(True)
        context = self.observability.on_submission_start(submitting, stage_type)
        try:
            raw = await self.transport.submit_stage(submitting.server, submitting.session_id, stage_type, auth)
            response = decode_as(raw, StageResponse)
        except TransportError as error:
            self.observability.on_submission_error(context, error)
            if not self._is_current(submitting):
                return self._session or submitting
            return await self._reject(submitting, error)
        except PayloadError as exc:
            error = TransportError(f"Invalid stage response: {exc}", errcode="INVALID_RESPONSE")
            self.observability.on_submission_error(context, error)
            if not self._is_current(submitting):
                return self._session or submitting
            return await self._reject(submitting, error)
        except Exception as exc:
            self.observability.on_submission_error(context, exc)
            if self._is_current(submitting):
                self._set_session(structs.replace(submitting, status=SessionStatus.AWAITING_STAGE))
                self._set_busy(False)
            raise
        if not response.success:
            payload = response.error
            error = TransportError(
                "Stage rejected",
                http_status=payload.http_status if payload else None,
                errcode=payload.code if payload else None,
            )
            self.observability.on_submission_error(context, error)
            if not self._is_current(submitting):
                return self._session or submitting
            return await self._reject(submitting, error)
        if not self._is_current(submitting):
            self.observability.on_submission_success(context, submitting)
            return self._session or submitting
        self._attempt = structs.replace(self._attempt, server_is_alive=True, server_error_is_fatal=False)
        accepted = structs.replace(submitting, session_id=response.session_id or submitting.session_id)
        if accepted.has_next_stage:
            self._enter_stage(structs.replace(accepted, stage_index=accepted.stage_index + 1, stage_state={}))
            self._set_busy(False)
        else:
            self._set_session(structs.replace(accepted, status=SessionStatus.COMPLETED))
            self._replace_form(None)
            self._set_busy(False)
            self._emit(LoggedIn(credential=dict(response.credential or {})))
        session_now = self._require_session()
        self.observability.on_submission_success(context, session_now)
        return session_now

    async def _reject(self, session: Session, error: TransportError) -> Session:
        classified = classify_rejection(error)
        if isinstance(classified, SessionInvalidError):
            logger.info("Server invalidated session %s; rediscovering", session.session_id)
            self._replace_form(None)
            self._set_session(
                Session(attempt_id=session.attempt_id, status=SessionStatus.DISCOVERING, server=session.server)
            )
            assert session.server is not None
            return await self._discover(session.server)
        self._set_session(structs.replace(session, status=SessionStatus.AWAITING_STAGE))
        if isinstance(classified, CredentialError):
            self._attempt = structs.replace(self._attempt, credential_error=classified.credentials_incorrect)
            self._set_error(classified.message, kind=classified.category.value)
        else:
            logger.warning("Stage submission failed: %s", error)
            self._set_error(rejection_text(error), kind="communication")
        self._set_busy(False)
        return self._require_session()

    def _enter_stage(self, session: Session) -> None:
        stage_type = session.current_stage
        if stage_type is None:
            raise InvalidTransitionError("Session has no current stage")
        executor = self.registry.get(stage_type)
        self._replace_form(executor.create_form(self.config, self._on_field_validated))
        self._set_session(structs.replace(session, status=SessionStatus.AWAITING_STAGE))
        self._emit(PhaseChanged(phase=StagePhase.DEFAULT, stage_type=stage_type))

    def _fail(self, reason: FailureReason, generation: int) -> None:
        self._replace_form(None)
        self._set_session(
            structs.replace(
                self._require_session(),
                status=SessionStatus.FAILED,
                failure=reason,
                generation=generation,
                flow=None,
                flow_index=None,
            )
        )

    def _phase_emitter(self, stage_type: str) -> Callable[[StagePhase], None]:
        def emit(phase: StagePhase) -> None:
            self._emit(PhaseChanged(phase=phase, stage_type=stage_type))

        return emit

    def _on_field_validated(self, field_id: str, valid: bool, message: str | None) -> None:
        self._emit(FieldValidated(field_id=field_id, valid=valid, message=message))

    def _emit(self, event: EngineEvent) -> None:
        if not self._active or self.channel.closed:
            return
        self.channel.emit(event)

    def _set_session(self, session: Session) -> None:
        self._session = session

    def _is_current(self, session: Session) -> bool:
        return self._active and self._session is session

    def _reset_attempt(self) -> None:
        busy = self._attempt.busy
        self._attempt = AuthAttempt(busy=busy)

    def _set_busy(self, busy: bool) -> None:
        if self._attempt.busy == busy:
            return
        self._attempt = structs.replace(self._attempt, busy=busy)
        self._emit(BusyChanged(busy=busy))

    def _set_error(self, message: str, *, kind: str) -> None:
        self._error = message
        self._error_kind = kind
        self._emit(ErrorChanged(message=message, kind=kind))

    def _clear_error(self) -> None:
        if self._error is None:
            return
        self._error = None
        self._error_kind = None
        self._emit(ErrorChanged(message=None))

    def _replace_form(self, form: ValidationOrchestrator | None) -> None:
        if self._form is not None and self._form is not form:
            self._form.dispose()
        self._form = form

    def _require_session(self) -> Session:
        if self._session is None:
            raise InvalidTransitionError("No authentication attempt has been started")
        return self._session

    def _require_form(self) -> ValidationOrchestrator:
        self._ensure_active()
        if self._form is None:
            raise InvalidTransitionError("The current stage has no form")
        return self._form

    def _ensure_active(self) -> None:
        if not self._active:
            raise InvalidTransitionError("Authentication engine has been disposed")


__all__ = [
    "DEACTIVATED_CODE",
    "SESSION_INVALID_CODES",
    "SessionStateMachine",
    "classify_rejection",
    "discovery_error_text",
    "rejection_text",
]
