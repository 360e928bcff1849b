from __future__ import annotations

from google.auth.exceptions import RefreshError
from pydantic import ValidationError
import pytest
import requests

from helpers.fake_backend import make_api_error
from sheetcore.errors import SheetCoreError, classify_exception
from sheetcore.ops import GridRange


@pytest.mark.parametrize(
    ("status", "message", "code", "transient"),
    [
        (429, "Quota exceeded", "RATE_LIMIT_EXCEEDED", False),
        (413, "Request too big", "PAYLOAD_TOO_LARGE", False),
        (400, "Request payload too large", "PAYLOAD_TOO_LARGE", False),
        (400, "Invalid requests[0]", "VALIDATION", False),
        (404, "Requested entity was not found", "NOT_FOUND", False),
        (504, "Deadline exceeded", "TIMEOUT", True),
        (502, "Bad gateway", "INTERNAL", True),
        (418, "Teapot", "INTERNAL", False),
    ],
)
def test_api_errors_are_classified(
    status: int, message: str, code: str, transient: bool
) -> None:
    error = classify_exception(make_api_error(status, message))
    assert error.code == code
    assert error.transient is transient
    assert error.detail.details["status"] == status
    assert message in error.detail.message


def test_rate_limit_is_marked_retryable() -> None:
    error = classify_exception(make_api_error(429, "Quota exceeded"))
    assert error.detail.retryable


def test_transport_failures() -> None:
    assert classify_exception(requests.Timeout("read timed out")).code == "TIMEOUT"
    assert classify_exception(TimeoutError()).code == "TIMEOUT"
    connection = classify_exception(requests.ConnectionError("reset"))
    assert connection.code == "INTERNAL"
    assert connection.transient


def test_refresh_error_is_auth_expired() -> None:
    assert classify_exception(RefreshError("invalid_grant")).code == "AUTH_EXPIRED"


def test_validation_error_carries_field() -> None:
    with pytest.raises(ValidationError) as exc_info:
        GridRange(start_row=-1)
    error = classify_exception(exc_info.value)
    assert error.code == "VALIDATION"
    assert error.detail.field == "start_row"


def test_classified_errors_pass_through() -> None:
    original = SheetCoreError.of("CONFLICT", "changed", live_revision="abc")
    assert classify_exception(original) is original
    assert original.detail.live_revision == "abc"


def test_unknown_exceptions_are_internal() -> None:
    error = classify_exception(KeyError("boom"))
    assert error.code == "INTERNAL"
    assert not error.transient
