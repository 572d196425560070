from __future__ import annotations

import pytest

from authflow.exceptions import (
    COMMUNICATION_ERROR_MESSAGE,
    CredentialCategory,
    CredentialError,
    SessionInvalidError,
    TransportError,
    communication_error_text,
)
from authflow.http import Status, ensure_status, is_auth_failure, is_client_error, is_server_error, reason_phrase
from authflow.session import classify_rejection, rejection_text


def test_status_helpers() -> None:
    assert ensure_status(Status.FORBIDDEN) == 403
    assert reason_phrase(401) == "Unauthorized"
    assert reason_phrase(599) == "Unknown Status"
    assert is_client_error(429)
    assert is_server_error(Status.BAD_GATEWAY)
    with pytest.raises(ValueError):
        ensure_status(42)


@pytest.mark.parametrize(
    ("status", "expected"),
    [(401, True), (403, True), (400, False), (None, False), (0, False), (600, False)],
)
def test_is_auth_failure(status: int | None, expected: bool) -> None:
    assert is_auth_failure(status) is expected


def test_communication_error_text_prefers_errcode() -> None:
    assert communication_error_text("M_UNKNOWN", 500).endswith("(M_UNKNOWN)")
    assert communication_error_text(None, 502).endswith("(HTTP 502)")
    assert communication_error_text(None, None) == COMMUNICATION_ERROR_MESSAGE


def test_transport_error_unreachable() -> None:
    assert TransportError(cors="rejected", http_status=0).unreachable
    assert TransportError().unreachable
    assert not TransportError(http_status=500).unreachable
    assert not TransportError(errcode="INVALID_RESPONSE").unreachable


def test_classify_strips_error_code_prefix() -> None:
    deactivated = classify_rejection(TransportError(http_status=403, errcode="USER_DEACTIVATED"))
    invalid = classify_rejection(TransportError(http_status=401, errcode="M_SESSION_INVALID"))

    assert isinstance(deactivated, CredentialError)
    assert deactivated.category is CredentialCategory.DEACTIVATED
    assert not deactivated.credentials_incorrect
    assert isinstance(invalid, SessionInvalidError)


def test_deactivated_code_needs_auth_status() -> None:
    error = TransportError(http_status=400, errcode="M_USER_DEACTIVATED")

    assert classify_rejection(error) is error
    assert rejection_text(error).endswith("(M_USER_DEACTIVATED)")
