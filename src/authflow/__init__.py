"""Interactive authentication flow engine."""

from .config import EngineConfig
from .discovery import FlowDiscoverer
from .events import (
    AuthCallbacks,
    BusyChanged,
    EngineEvent,
    ErrorChanged,
    EventChannel,
    FieldValidated,
    LoggedIn,
    PhaseChanged,
)
from .exceptions import (
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
)
from .forms import login_form, registration_form
from .models import (
    AuthAttempt,
    FailureReason,
    FieldState,
    FlowDescriptor,
    FlowSet,
    SelectedFlow,
    ServerParams,
    Session,
    SessionStatus,
    StagePhase,
)
from .observability import Observability, ObservabilityConfig
from .password import PasswordComplexity, score_password, score_password_async
from .selection import FlowSelector
from .session import SessionStateMachine
from .stages import (
    DummyStage,
    EmailIdentityStage,
    PasswordStage,
    Pending,
    StageContext,
    StageCredential,
    StageExecutor,
    StageRegistry,
    default_registry,
)
from .testing import ScriptedTransport
from .transport import AuthTransport
from .validation import FieldSpec, Rule, ValidationOrchestrator, ValidationResult, Verdict

__all__ = [
    "AuthAttempt",
    "AuthCallbacks",
    "AuthFlowError",
    "AuthTransport",
    "BusyChanged",
    "CredentialCategory",
    "CredentialError",
    "DiscoveryCause",
    "DiscoveryError",
    "DummyStage",
    "EmailIdentityStage",
    "EngineConfig",
    "EngineEvent",
    "ErrorChanged",
    "EventChannel",
    "FailureReason",
    "FieldSpec",
    "FieldState",
    "FieldValidated",
    "FlowDescriptor",
    "FlowDiscoverer",
    "FlowSelector",
    "FlowSet",
    "InvalidTransitionError",
    "LoggedIn",
    "NoUsableFlowError",
    "Observability",
    "ObservabilityConfig",
    "PasswordComplexity",
    "PasswordStage",
    "Pending",
    "PhaseChanged",
    "Rule",
    "ScriptedTransport",
    "SelectedFlow",
    "ServerLivenessError",
    "ServerParams",
    "Session",
    "SessionInvalidError",
    "SessionStateMachine",
    "SessionStatus",
    "StageContext",
    "StageCredential",
    "StageExecutor",
    "StagePhase",
    "StageRegistry",
    "TransportError",
    "ValidationError",
    "ValidationOrchestrator",
    "ValidationResult",
    "Verdict",
    "default_registry",
    "login_form",
    "registration_form",
    "score_password",
    "score_password_async",
]
