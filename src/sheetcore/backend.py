from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from google.auth.credentials import Credentials
from google.auth.transport.requests import Request
import gspread
from gspread.http_client import HTTPClient
from gspread.urls import SPREADSHEET_BATCH_UPDATE_URL

from .ops.models import encode_request

logger = logging.getLogger(__name__)


@runtime_checkable
class SheetsBackend(Protocol):
    """Synchronous Google Sheets v4 calls used by the dispatcher."""

    def batch_update(self, spreadsheet_id: str, body: dict[str, Any]) -> dict[str, Any]: ...

    def values_get(
        self, spreadsheet_id: str, range_name: str, params: dict[str, Any]
    ) -> dict[str, Any]: ...

    def values_batch_get(
        self, spreadsheet_id: str, ranges: list[str], params: dict[str, Any]
    ) -> dict[str, Any]: ...

    def values_update(
        self,
        spreadsheet_id: str,
        range_name: str,
        params: dict[str, Any],
        body: dict[str, Any],
    ) -> dict[str, Any]: ...

    def values_append(
        self,
        spreadsheet_id: str,
        range_name: str,
        params: dict[str, Any],
        body: dict[str, Any],
    ) -> dict[str, Any]: ...

    def values_clear(self, spreadsheet_id: str, range_name: str) -> dict[str, Any]: ...

    def get_spreadsheet(
        self, spreadsheet_id: str, params: dict[str, Any]
    ) -> dict[str, Any]: ...


@runtime_checkable
class CredentialProvider(Protocol):
    """Supplies a valid bearer credential before each remote call.

    Implementations raise ``google.auth.exceptions.RefreshError`` (or
    ``SheetCoreError`` with ``AUTH_EXPIRED``) when the credential cannot be
    refreshed.
    """

    def ensure_valid(self) -> None: ...


class GoogleCredentialProvider:
    """CredentialProvider over a google-auth credentials object."""

    def __init__(self, credentials: Credentials) -> None:
        self.credentials = credentials

    def ensure_valid(self) -> None:
        if self.credentials.valid:
            return
        logger.info("Refreshing Google credentials.")
        self.credentials.refresh(Request())


class GspreadBackend:
    """SheetsBackend implemented on gspread's low-level HTTP client."""

    def __init__(self, http_client: HTTPClient) -> None:
        self.http_client = http_client

    @classmethod
    def from_client(cls, client: gspread.Client) -> GspreadBackend:
        """Wrap an authenticated ``gspread.Client``."""
        return cls(client.http_client)

    @classmethod
    def from_credentials(cls, credentials: Credentials) -> GspreadBackend:
        """Build a backend from google-auth credentials."""
        return cls(HTTPClient(auth=credentials))

    def batch_update(self, spreadsheet_id: str, body: dict[str, Any]) -> dict[str, Any]:
        """Post the body as compact UTF-8 JSON, the encoding batches are sized by."""
        response = self.http_client.request(
            "post",
            SPREADSHEET_BATCH_UPDATE_URL % spreadsheet_id,
            data=encode_request(body),
            headers={"Content-Type": "application/json; charset=utf-8"},
        )
        return response.json()

    def values_get(
        self, spreadsheet_id: str, range_name: str, params: dict[str, Any]
    ) -> dict[str, Any]:
        return self.http_client.values_get(spreadsheet_id, range_name, params=params)

    def values_batch_get(
        self, spreadsheet_id: str, ranges: list[str], params: dict[str, Any]
    ) -> dict[str, Any]:
        return self.http_client.values_batch_get(spreadsheet_id, ranges, params=params)

    def values_update(
        self,
        spreadsheet_id: str,
        range_name: str,
        params: dict[str, Any],
        body: dict[str, Any],
    ) -> dict[str, Any]:
        return self.http_client.values_update(
            spreadsheet_id, range_name, params=params, body=body
        )

    def values_append(
        self,
        spreadsheet_id: str,
        range_name: str,
        params: dict[str, Any],
        body: dict[str, Any],
    ) -> dict[str, Any]:
        return self.http_client.values_append(spreadsheet_id, range_name, params, body)

    def values_clear(self, spreadsheet_id: str, range_name: str) -> dict[str, Any]:
        return self.http_client.values_clear(spreadsheet_id, range_name)

    def get_spreadsheet(
        self, spreadsheet_id: str, params: dict[str, Any]
    ) -> dict[str, Any]:
        query = dict(params)
        if isinstance(query.get("includeGridData"), bool):
            query["includeGridData"] = str(query["includeGridData"]).lower()
        return self.http_client.fetch_sheet_metadata(spreadsheet_id, params=query)


__all__ = [
    "CredentialProvider",
    "GoogleCredentialProvider",
    "GspreadBackend",
    "SheetsBackend",
]
