"""Engine exception types."""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterable


class AuthFlowError(Exception):
    """Base error type."""


class InvalidTransitionError(AuthFlowError):
    """Raised when an operation is not allowed in the current session status."""


class TransportError(AuthFlowError):
    """Failure reported by an :class:`~authflow.transport.AuthTransport`.

    ``http_status`` is ``None`` (or 0) when the request never produced a response.
    ``cors`` is ``"rejected"`` when a browser-style transport was blocked.
    """

    def __init__(
        self,
        message: str = "",
        *,
        http_status: int | None = None,
        errcode: str | None = None,
        cors: str | None = None,
        data: Any | None = None,
    ) -> None:
        super().__init__(message or errcode or f"HTTP {http_status}")
        self.http_status = http_status
        self.errcode = errcode
        self.cors = cors
        self.data = data

    @property
    def unreachable(self) -> bool:
        return self.cors == "rejected" or (not self.http_status and self.errcode is None)


class DiscoveryCause(str, Enum):
    """Machine-readable reasons a discovery failed."""

    INVALID_RESPONSE = "invalid_response"
    UNREACHABLE = "unreachable"
    INVALID_BASE_URL = "invalid_base_url"

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.value


class DiscoveryError(AuthFlowError):
    """Fetching the flows offered by a server failed."""

    def __init__(
        self,
        cause: DiscoveryCause,
        *,
        generation: int,
        http_status: int | None = None,
        errcode: str | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(detail or cause.value)
        self.cause = cause
        self.generation = generation
        self.http_status = http_status
        self.errcode = errcode


class NoUsableFlowError(AuthFlowError):
    """The server offers only flows this client cannot execute."""

    def __init__(self, offered: Iterable[tuple[str, ...]]) -> None:
        self.offered = tuple(offered)
        super().__init__(NO_USABLE_FLOW_MESSAGE)


class CredentialCategory(str, Enum):
    DEACTIVATED = "deactivated"
    INCORRECT = "incorrect"


class CredentialError(AuthFlowError):
    """The server rejected the submitted credentials."""

    def __init__(self, category: CredentialCategory, message: str, *, http_status: int | None = None) -> None:
        super().__init__(message)
        self.category = category
        self.message = message
        self.http_status = http_status

    @property
    def credentials_incorrect(self) -> bool:
        return self.category is CredentialCategory.INCORRECT


class SessionInvalidError(AuthFlowError):
    """The server no longer recognises the session or flow."""

    def __init__(self, errcode: str | None = None, *, http_status: int | None = None) -> None:
        super().__init__(errcode or "session invalid")
        self.errcode = errcode
        self.http_status = http_status


class ValidationError(AuthFlowError):
    """A form field failed local validation; nothing was sent."""

    def __init__(self, field_id: str, message: str | None) -> None:
        super().__init__(f"{field_id}: {message}" if message else field_id)
        self.field_id = field_id
        self.message = message


class ServerLivenessError(AuthFlowError):
    """The server failed a health probe."""

    def __init__(self, message: str, *, fatal: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.fatal = fatal


NO_USABLE_FLOW_MESSAGE = "This homeserver doesn't offer any login flows which are supported by this client."
DEACTIVATED_MESSAGE = "This account has been deactivated."
INCORRECT_CREDENTIALS_MESSAGE = "Incorrect username and/or password."
UNREACHABLE_MESSAGE = "Homeserver unreachable."
COMMUNICATION_ERROR_MESSAGE = "Error: Problem communicating with the given homeserver."

DISCOVERY_MESSAGES = {
    DiscoveryCause.INVALID_BASE_URL: "Invalid base_url for m.homeserver",
    DiscoveryCause.INVALID_RESPONSE: "Homeserver URL does not appear to be a valid Matrix homeserver",
    DiscoveryCause.UNREACHABLE: UNREACHABLE_MESSAGE,
}


def communication_error_text(errcode: str | None, http_status: int | None) -> str:
    """Return the generic error text, suffixed with the code when known."""

    code = errcode
    if not code and http_status:
        code = f"HTTP {http_status}"
    if code:
        return f"{COMMUNICATION_ERROR_MESSAGE} ({code})"
    return COMMUNICATION_ERROR_MESSAGE


__all__ = [
    "COMMUNICATION_ERROR_MESSAGE",
    "DEACTIVATED_MESSAGE",
    "DISCOVERY_MESSAGES",
    "INCORRECT_CREDENTIALS_MESSAGE",
    "NO_USABLE_FLOW_MESSAGE",
    "UNREACHABLE_MESSAGE",
    "AuthFlowError",
    "CredentialCategory",
    "CredentialError",
    "DiscoveryCause",
    "DiscoveryError",
    "InvalidTransitionError",
    "NoUsableFlowError",
    "ServerLivenessError",
    "SessionInvalidError",
    "TransportError",
    "ValidationError",
    "communication_error_text",
]
