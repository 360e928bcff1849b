from __future__ import annotations

import logging
from typing import Any, Final, Literal

from google.auth.exceptions import RefreshError
from gspread.exceptions import APIError
from pydantic import BaseModel, Field, ValidationError
import requests

logger = logging.getLogger(__name__)

ErrorCode = Literal[
    "VALIDATION",
    "UNSUPPORTED_ACTION",
    "NOT_FOUND",
    "PERMISSION_DENIED",
    "RATE_LIMIT_EXCEEDED",
    "PAYLOAD_TOO_LARGE",
    "CONFLICT",
    "TIMEOUT",
    "TRANSACTION_NOT_FOUND",
    "TRANSACTION_CLOSED",
    "TRANSACTION_EXPIRED",
    "AUTH_EXPIRED",
    "CANCELLED",
    "INTERNAL",
]

RETRYABLE_CODES: Final[frozenset[str]] = frozenset({"RATE_LIMIT_EXCEEDED"})

_RATE_LIMIT_REASONS: Final[frozenset[str]] = frozenset(
    {"rateLimitExceeded", "userRateLimitExceeded", "RATE_LIMIT_EXCEEDED"}
)


class ErrorDetail(BaseModel):
    """Structured, caller-visible failure description."""

    code: ErrorCode
    message: str
    retryable: bool = False
    field: str | None = None
    live_revision: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class SheetCoreError(Exception):
    """Error carrying a classified ErrorDetail."""

    def __init__(self, detail: ErrorDetail, *, transient: bool = False) -> None:
        super().__init__(detail.message)
        self.detail = detail
        self.transient = transient

    @property
    def code(self) -> ErrorCode:
        return self.detail.code

    @classmethod
    def of(
        cls,
        code: ErrorCode,
        message: str,
        *,
        field: str | None = None,
        live_revision: str | None = None,
        transient: bool = False,
        **details: Any,
    ) -> SheetCoreError:
        """Build an error from a code and message."""
        detail = ErrorDetail(
            code=code,
            message=message,
            retryable=transient or code in RETRYABLE_CODES,
            field=field,
            live_revision=live_revision,
            details=details,
        )
        return cls(detail, transient=transient)


def validation_error(message: str, *, field: str | None = None) -> SheetCoreError:
    """Shortcut for VALIDATION errors with an optional field path."""
    return SheetCoreError.of("VALIDATION", message, field=field)


def classify_exception(exc: BaseException) -> SheetCoreError:
    """Map a raised exception onto the error taxonomy.

    Args:
        exc: Exception raised by a collaborator or the remote API.

    Returns:
        Classified error. ``transient`` is set for failures the dispatcher
        may retry.
    """
    if isinstance(exc, SheetCoreError):
        return exc
    if isinstance(exc, APIError):
        return _classify_api_error(exc)
    if isinstance(exc, RefreshError):
        return SheetCoreError.of("AUTH_EXPIRED", f"Credential refresh failed: {exc}")
    if isinstance(exc, TimeoutError | requests.Timeout):
        return SheetCoreError.of("TIMEOUT", f"Remote call timed out: {exc}")
    if isinstance(exc, requests.ConnectionError):
        return SheetCoreError.of(
            "INTERNAL", f"Transport failure: {exc}", transient=True
        )
    if isinstance(exc, ValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        return SheetCoreError.of(
            "VALIDATION",
            f"Invalid parameters: {first.get('msg', str(exc))}",
            field=location or None,
        )
    logger.error("Unclassified failure: %r", exc)
    return SheetCoreError.of("INTERNAL", f"Unexpected failure: {exc}")


def _classify_api_error(exc: APIError) -> SheetCoreError:
    """Classify a gspread APIError by HTTP status and Google error reason."""
    status = _api_status(exc)
    message, reasons = _api_error_body(exc)
    text = f"Google Sheets API error {status}: {message}"
    if status == 429 or (status == 403 and reasons & _RATE_LIMIT_REASONS):
        return SheetCoreError.of("RATE_LIMIT_EXCEEDED", text, status=status)
    if status == 413 or (status == 400 and "too large" in message.lower()):
        return SheetCoreError.of("PAYLOAD_TOO_LARGE", text, status=status)
    if status == 400:
        return SheetCoreError.of("VALIDATION", text, status=status)
    if status == 401:
        return SheetCoreError.of("AUTH_EXPIRED", text, status=status)
    if status == 403:
        return SheetCoreError.of("PERMISSION_DENIED", text, status=status)
    if status == 404:
        return SheetCoreError.of("NOT_FOUND", text, status=status)
    if status in (408, 504):
        return SheetCoreError.of("TIMEOUT", text, status=status, transient=True)
    if status is not None and status >= 500:
        return SheetCoreError.of("INTERNAL", text, status=status, transient=True)
    return SheetCoreError.of("INTERNAL", text, status=status)


def _api_status(exc: APIError) -> int | None:
    """Return the HTTP status carried by an APIError."""
    code = getattr(exc, "code", None)
    if isinstance(code, int):
        return code
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def _api_error_body(exc: APIError) -> tuple[str, set[str]]:
    """Extract message and reason tokens from an APIError payload."""
    error = getattr(exc, "error", None)
    if not isinstance(error, dict):
        return str(exc), set()
    reasons: set[str] = set()
    status_token = error.get("status")
    if isinstance(status_token, str):
        reasons.add(status_token)
    for item in error.get("errors", []) or []:
        if isinstance(item, dict) and isinstance(item.get("reason"), str):
            reasons.add(item["reason"])
    message = error.get("message")
    return (message if isinstance(message, str) else str(exc)), reasons


__all__ = [
    "ErrorCode",
    "ErrorDetail",
    "RETRYABLE_CODES",
    "SheetCoreError",
    "classify_exception",
    "validation_error",
]
