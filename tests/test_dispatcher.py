from __future__ import annotations

from typing import Any

import anyio
from google.auth.exceptions import RefreshError
import pytest
import requests

from helpers.fake_backend import FakeSheetsBackend, make_api_error
from sheetcore.dispatcher import Dispatcher
from sheetcore.errors import SheetCoreError
from sheetcore.ops import Batch, CompiledRequest

READ = {
    "call": "values_get",
    "range": "Sheet1!A1:B2",
    "params": {"valueRenderOption": "FORMULA"},
}


def _dispatcher(backend: FakeSheetsBackend, **kwargs: Any) -> Dispatcher:
    options: dict[str, Any] = {"base_delay": 0.0, "max_delay": 0.0, "jitter": 0.0}
    options.update(kwargs)
    return Dispatcher(backend, **options)


def _send(dispatcher: Dispatcher, request: dict[str, Any]) -> dict[str, Any]:
    async def main() -> dict[str, Any]:
        return await dispatcher.send_call("sheet-1", request)

    return anyio.run(main)


def test_rate_limit_is_retried(backend: FakeSheetsBackend) -> None:
    backend.inject("values_get", make_api_error(429, "Quota exceeded"), times=2)
    dispatcher = _dispatcher(backend)
    reply = _send(dispatcher, READ)
    assert reply["values"] == []
    assert backend.count("values_get") == 3
    assert dispatcher.retries == 2


def test_rate_limit_reason_on_403_is_retried(backend: FakeSheetsBackend) -> None:
    error = make_api_error(403, "Too many requests", reason="rateLimitExceeded")
    backend.inject("values_get", error)
    dispatcher = _dispatcher(backend)
    _send(dispatcher, READ)
    assert dispatcher.retries == 1


@pytest.mark.parametrize("status", [500, 503])
def test_server_errors_are_retried(backend: FakeSheetsBackend, status: int) -> None:
    backend.inject("values_get", make_api_error(status, "Backend error"))
    dispatcher = _dispatcher(backend)
    _send(dispatcher, READ)
    assert backend.count("values_get") == 2


def test_connection_errors_are_retried(backend: FakeSheetsBackend) -> None:
    backend.inject("values_get", requests.ConnectionError("reset by peer"))
    dispatcher = _dispatcher(backend)
    _send(dispatcher, READ)
    assert dispatcher.retries == 1


@pytest.mark.parametrize(
    ("status", "code"),
    [
        (400, "VALIDATION"),
        (401, "AUTH_EXPIRED"),
        (403, "PERMISSION_DENIED"),
        (404, "NOT_FOUND"),
    ],
)
def test_client_errors_are_not_retried(
    backend: FakeSheetsBackend, status: int, code: str
) -> None:
    backend.inject("values_get", make_api_error(status, "nope"))
    dispatcher = _dispatcher(backend)
    with pytest.raises(SheetCoreError) as exc_info:
        _send(dispatcher, READ)
    assert exc_info.value.code == code
    assert backend.count("values_get") == 1
    assert dispatcher.retries == 0
    assert dispatcher.failures[code] == 1


def test_retries_are_bounded(backend: FakeSheetsBackend) -> None:
    backend.inject("values_get", make_api_error(429, "Quota exceeded"), times=10)
    dispatcher = _dispatcher(backend, max_attempts=3)
    with pytest.raises(SheetCoreError) as exc_info:
        _send(dispatcher, READ)
    assert exc_info.value.code == "RATE_LIMIT_EXCEEDED"
    assert exc_info.value.detail.retryable
    assert backend.count("values_get") == 3


def test_slow_call_times_out(backend: FakeSheetsBackend) -> None:
    backend.delays["values_get"] = 0.5
    dispatcher = _dispatcher(backend, timeout_seconds=0.05)
    with pytest.raises(SheetCoreError) as exc_info:
        _send(dispatcher, READ)
    assert exc_info.value.code == "TIMEOUT"


def test_credential_refresh_failure_is_auth_expired(backend: FakeSheetsBackend) -> None:
    class ExpiredCredentials:
        def ensure_valid(self) -> None:
            raise RefreshError("invalid_grant")

    dispatcher = _dispatcher(backend, credentials=ExpiredCredentials())
    with pytest.raises(SheetCoreError) as exc_info:
        _send(dispatcher, READ)
    assert exc_info.value.code == "AUTH_EXPIRED"
    assert backend.count() == 0


def test_send_batch_forwards_body(backend: FakeSheetsBackend) -> None:
    batch = Batch(
        spreadsheet_id="sheet-1",
        requests=[
            CompiledRequest(
                operation_id="a",
                route="batch",
                request={
                    "updateSheetProperties": {
                        "properties": {"sheetId": 0, "title": "Renamed"},
                        "fields": "title",
                    }
                },
            )
        ],
    )
    dispatcher = _dispatcher(backend)

    async def main() -> dict[str, Any]:
        return await dispatcher.send_batch(batch)

    reply = anyio.run(main)
    assert reply == {"spreadsheetId": "sheet-1", "replies": [{}]}
    assert backend.sheet("sheet-1", "Renamed").sheet_id == 0


def test_unknown_values_call_is_rejected(backend: FakeSheetsBackend) -> None:
    with pytest.raises(SheetCoreError) as exc_info:
        _send(_dispatcher(backend), {"call": "values_explode"})
    assert exc_info.value.code == "UNSUPPORTED_ACTION"
