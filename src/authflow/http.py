"""HTTP status helpers used when classifying server rejections."""

from __future__ import annotations

from enum import IntEnum
from http import HTTPStatus as _HTTPStatus


class Status(IntEnum):
    """HTTP status codes the engine reacts to."""

    OK = 200
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    TOO_MANY_REQUESTS = 429
    INTERNAL_SERVER_ERROR = 500
    BAD_GATEWAY = 502
    SERVICE_UNAVAILABLE = 503


def ensure_status(status: int | Status) -> int:
    """Normalize ``status`` to an ``int`` and ensure it is within the HTTP range."""

    code = int(status)
    if code < 100 or code > 599:
        raise ValueError(f"Invalid HTTP status code: {status}")
    return code


def reason_phrase(status: int | Status) -> str:
    """Return the HTTP reason phrase for ``status`` if known."""

    try:
        return _HTTPStatus(ensure_status(status)).phrase
    except ValueError:
        return "Unknown Status"


def is_auth_failure(status: int | Status | None) -> bool:
    """Return ``True`` for the statuses servers use to reject credentials.

    Both 401 and 403 count: several login APIs answer a wrong password with
    403 rather than 401.
    """

    return status in (Status.UNAUTHORIZED, Status.FORBIDDEN)


def is_client_error(status: int | Status) -> bool:
    """Return ``True`` if ``status`` is a 4xx code."""

    code = ensure_status(status)
    return 400 <= code < 500


def is_server_error(status: int | Status) -> bool:
    """Return ``True`` if ``status`` is a 5xx code."""

    code = ensure_status(status)
    return 500 <= code < 600


__all__ = [
    "Status",
    "ensure_status",
    "is_auth_failure",
    "is_client_error",
    "is_server_error",
    "reason_phrase",
]
