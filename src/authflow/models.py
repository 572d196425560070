"""Data model shared by the engine components.

Every record is a frozen :class:`msgspec.Struct`. State owners swap whole
values with :func:`msgspec.structs.replace` instead of editing fields in
place, so two coroutines resuming out of order can never interleave partial
updates.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

import msgspec


class ServerParams(msgspec.Struct, frozen=True):
    """Server an authentication attempt is performed against."""

    base_url: str
    identity_url: str | None = None


class FlowDescriptor(msgspec.Struct, frozen=True):
    """Ordered stage types that together complete one flow."""

    stages: tuple[str, ...]


class FlowSet(msgspec.Struct, frozen=True):
    """Flows offered by a server, tagged with the discovery generation."""

    generation: int
    flows: tuple[FlowDescriptor, ...]
    server: ServerParams


class SelectedFlow(msgspec.Struct, frozen=True):
    flow: FlowDescriptor
    index: int


class SessionStatus(str, Enum):
    DISCOVERING = "discovering"
    AWAITING_STAGE = "awaiting_stage"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.value


class FailureReason(str, Enum):
    NO_USABLE_FLOW = "no_usable_flow"
    DISCOVERY_ERROR = "discovery_error"
    CANCELLED = "cancelled"

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.value


class StagePhase(str, Enum):
    """Sub-phases reported by stages through ``on_phase_change``."""

    DEFAULT = "default"
    REQUESTING_TOKEN = "requesting_token"
    AWAITING_CONFIRMATION = "awaiting_confirmation"

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.value


class Session(msgspec.Struct, frozen=True):
    """One in-progress authentication attempt."""

    attempt_id: str
    status: SessionStatus = SessionStatus.DISCOVERING
    server: ServerParams | None = None
    generation: int = 0
    session_id: str | None = None
    flow: FlowDescriptor | None = None
    flow_index: int | None = None
    stage_index: int = 0
    stage_state: dict[str, Any] = msgspec.field(default_factory=dict)
    failure: FailureReason | None = None

    @property
    def current_stage(self) -> str | None:
        if self.flow is None or self.stage_index >= len(self.flow.stages):
            return None
        return self.flow.stages[self.stage_index]

    @property
    def has_next_stage(self) -> bool:
        return self.flow is not None and self.stage_index + 1 < len(self.flow.stages)


class FieldState(msgspec.Struct, frozen=True):
    """Validation state of a single form field.

    ``detail`` carries rule output from the applied validation, such as the
    password complexity behind a strength meter.
    """

    field_id: str
    value: str = ""
    last_validated_value: str | None = None
    valid: bool = False
    error_message: str | None = None
    validation_generation: int = 0
    focused: bool = False
    detail: Any = None


class AuthAttempt(msgspec.Struct, frozen=True):
    """Transient flags of the current submission."""

    busy: bool = False
    server_is_alive: bool = True
    server_error_is_fatal: bool = False
    server_dead_error: str | None = None
    credential_error: bool = False


# Wire payloads. Field names are camelCase on the wire.


class FlowPayload(msgspec.Struct):
    stages: list[str] | None = None
    type: str | None = None


class FlowsPayload(msgspec.Struct):
    flows: list[FlowPayload]


class ErrorPayload(msgspec.Struct, frozen=True, rename="camel"):
    code: str | None = None
    http_status: int | None = None


class StageResponse(msgspec.Struct, frozen=True, rename="camel"):
    success: bool
    session_id: str | None = None
    credential: dict[str, Any] | None = None
    error: ErrorPayload | None = None


class TokenResponse(msgspec.Struct, frozen=True):
    sid: str


__all__ = [
    "AuthAttempt",
    "ErrorPayload",
    "FailureReason",
    "FieldState",
    "FlowDescriptor",
    "FlowPayload",
    "FlowSet",
    "FlowsPayload",
    "SelectedFlow",
    "ServerParams",
    "Session",
    "SessionStatus",
    "StagePhase",
    "StageResponse",
    "TokenResponse",
]
