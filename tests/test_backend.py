from __future__ import annotations

from typing import Any

from google.auth.transport.requests import Request
import requests

from helpers.factories import SPREADSHEET_ID, op
from helpers.fake_backend import FakeSheetsBackend
from sheetcore.backend import (
    CredentialProvider,
    GoogleCredentialProvider,
    GspreadBackend,
    SheetsBackend,
)
from sheetcore.compiler import BatchCompiler, compile_operation
from sheetcore.ops import CompiledRequest, normalize_operation


class _RecordingHTTPClient:
    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []
        self.sent: list[requests.PreparedRequest] = []

    def request(
        self,
        method: str,
        endpoint: str,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        prepared = requests.Request(
            method.upper(), endpoint, data=data, headers=headers
        ).prepare()
        self.sent.append(prepared)
        response = requests.Response()
        response.status_code = 200
        response._content = b'{"spreadsheetId": "s", "replies": []}'
        return response

    def __getattr__(self, name: str) -> Any:
        def call(*args: Any, **kwargs: Any) -> dict[str, Any]:
            self.calls.append((name, args, kwargs))
            return {"called": name}

        return call


class _Credentials:
    def __init__(self, valid: bool) -> None:
        self.valid = valid
        self.refreshed_with: list[Any] = []

    def refresh(self, request: Any) -> None:
        self.refreshed_with.append(request)
        self.valid = True


def test_calls_map_to_http_client() -> None:
    client = _RecordingHTTPClient()
    backend = GspreadBackend(client)  # type: ignore[arg-type]
    body = {"values": [[1]]}

    backend.values_get("s", "A1", {"valueRenderOption": "FORMULA"})
    backend.values_batch_get("s", ["A1", "B1"], {})
    backend.values_update("s", "A1", {"valueInputOption": "RAW"}, body)
    backend.values_append("s", "A1", {"valueInputOption": "RAW"}, body)
    backend.values_clear("s", "A1")

    assert client.calls == [
        ("values_get", ("s", "A1"), {"params": {"valueRenderOption": "FORMULA"}}),
        ("values_batch_get", ("s", ["A1", "B1"]), {"params": {}}),
        (
            "values_update",
            ("s", "A1"),
            {"params": {"valueInputOption": "RAW"}, "body": body},
        ),
        ("values_append", ("s", "A1", {"valueInputOption": "RAW"}, body), {}),
        ("values_clear", ("s", "A1"), {}),
    ]


def test_get_spreadsheet_sends_grid_data_flag_as_text() -> None:
    client = _RecordingHTTPClient()
    backend = GspreadBackend(client)  # type: ignore[arg-type]
    params = {"includeGridData": True, "ranges": ["A1"]}
    assert backend.get_spreadsheet("s", params) == {"called": "fetch_sheet_metadata"}
    name, args, kwargs = client.calls[0]
    assert name == "fetch_sheet_metadata"
    assert args == ("s",)
    assert kwargs["params"]["includeGridData"] == "true"
    assert params["includeGridData"] is True


def test_credential_provider_refreshes_only_when_invalid() -> None:
    valid = _Credentials(valid=True)
    GoogleCredentialProvider(valid).ensure_valid()  # type: ignore[arg-type]
    assert valid.refreshed_with == []

    stale = _Credentials(valid=False)
    provider = GoogleCredentialProvider(stale)  # type: ignore[arg-type]
    provider.ensure_valid()
    assert len(stale.refreshed_with) == 1
    assert isinstance(stale.refreshed_with[0], Request)
    assert isinstance(provider, CredentialProvider)


def test_protocols_accept_implementations() -> None:
    assert isinstance(FakeSheetsBackend(), SheetsBackend)
    backend = GspreadBackend(_RecordingHTTPClient())  # type: ignore[arg-type]
    assert isinstance(backend, SheetsBackend)


def test_batch_update_posts_compact_utf8_json() -> None:
    client = _RecordingHTTPClient()
    backend = GspreadBackend(client)  # type: ignore[arg-type]
    reply = backend.batch_update("s", {"requests": [{"addSheet": {}}]})
    assert reply == {"spreadsheetId": "s", "replies": []}
    sent = client.sent[0]
    assert sent.method == "POST"
    assert sent.url is not None and sent.url.endswith("/s:batchUpdate")
    assert sent.body == b'{"requests":[{"addSheet":{}}]}'


def test_sent_batches_stay_within_the_byte_ceiling() -> None:
    requests_: list[CompiledRequest] = []
    for row in range(12):
        operation = normalize_operation(
            op("write_range", range=f"Sheet1!A{row + 1}", values=[["日本語" * 500]])
        )
        target = operation.params["range"].with_sheet(0, "Sheet1")
        resolved = operation.model_copy(
            update={"params": {**operation.params, "range": target}}
        )
        requests_.extend(compile_operation(resolved, transactional=True))
    plan = BatchCompiler(max_batch_bytes=20_000).compile(SPREADSHEET_ID, requests_)
    assert len(plan.batches) > 1

    client = _RecordingHTTPClient()
    backend = GspreadBackend(client)  # type: ignore[arg-type]
    for batch in plan.batches:
        backend.batch_update(SPREADSHEET_ID, batch.body())
    for batch, sent in zip(plan.batches, client.sent, strict=True):
        assert isinstance(sent.body, bytes)
        assert len(sent.body) == batch.size_bytes
        assert len(sent.body) <= 20_000
