"""Explicit event channel between the engine and its UI glue."""

from __future__ import annotations

import logging
from typing import Any, Callable, Union

import msgspec

from .models import StagePhase

logger = logging.getLogger(__name__)


class PhaseChanged(msgspec.Struct, frozen=True, tag="phase_changed"):
    phase: StagePhase
    stage_type: str | None = None


class ErrorChanged(msgspec.Struct, frozen=True, tag="error_changed"):
    message: str | None
    kind: str | None = None


class LoggedIn(msgspec.Struct, frozen=True, tag="logged_in"):
    credential: dict[str, Any]


class BusyChanged(msgspec.Struct, frozen=True, tag="busy_changed"):
    busy: bool


class FieldValidated(msgspec.Struct, frozen=True, tag="field_validated"):
    field_id: str
    valid: bool
    message: str | None = None


EngineEvent = Union[PhaseChanged, ErrorChanged, LoggedIn, BusyChanged, FieldValidated]
Listener = Callable[[EngineEvent], None]


class EventChannel:
    """Fan engine events out to subscribed listeners in subscription order."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that removes it."""

        if self._closed:
            raise RuntimeError("EventChannel is closed")
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: EngineEvent) -> None:
        """Deliver ``event`` to every listener.

        A listener that raises is logged and skipped; emission happens in the
        middle of state transitions, which must still complete.
        """

        if self._closed:
            raise RuntimeError("EventChannel is closed")
        for listener in tuple(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed for %s", type(event).__name__)

    def close(self) -> None:
        self._closed = True
        self._listeners.clear()


class AuthCallbacks:
    """Adapt keyword callbacks onto an :class:`EventChannel` subscription."""

    def __init__(
        self,
        *,
        on_phase_change: Callable[[StagePhase], Any] | None = None,
        on_error: Callable[[str | None], Any] | None = None,
        on_logged_in: Callable[[dict[str, Any]], Any] | None = None,
        on_busy_change: Callable[[bool], Any] | None = None,
        on_field_validated: Callable[[str, bool, str | None], Any] | None = None,
    ) -> None:
        self.on_phase_change = on_phase_change
        self.on_error = on_error
        self.on_logged_in = on_logged_in
        self.on_busy_change = on_busy_change
        self.on_field_validated = on_field_validated

    def __call__(self, event: EngineEvent) -> None:
        if isinstance(event, PhaseChanged):
            if self.on_phase_change is not None:
                self.on_phase_change(event.phase)
        elif isinstance(event, ErrorChanged):
            if self.on_error is not None:
                self.on_error(event.message)
        elif isinstance(event, LoggedIn):
            if self.on_logged_in is not None:
                self.on_logged_in(event.credential)
        elif isinstance(event, BusyChanged):
            if self.on_busy_change is not None:
                self.on_busy_change(event.busy)
        elif isinstance(event, FieldValidated):
            if self.on_field_validated is not None:
                self.on_field_validated(event.field_id, event.valid, event.message)

    def attach(self, channel: EventChannel) -> Callable[[], None]:
        return channel.subscribe(self)


__all__ = [
    "AuthCallbacks",
    "BusyChanged",
    "EngineEvent",
    "ErrorChanged",
    "EventChannel",
    "FieldValidated",
    "Listener",
    "LoggedIn",
    "PhaseChanged",
]
