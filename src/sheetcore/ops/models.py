from __future__ import annotations

import json
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..errors import ErrorDetail
from ..shared.a1 import (
    GridBounds,
    format_grid_bounds,
    parse_grid_bounds,
    quote_sheet_name,
    range_cell_count,
    split_sheet_qualifier,
)
from .specs import get_action_spec
from .types import (
    ActionName,
    ConflictResolution,
    OperationKind,
    Route,
    TransactionState,
)


def serialize_request(request: dict[str, Any]) -> str:
    """Serialize one native request to compact JSON text."""
    return json.dumps(request, separators=(",", ":"), ensure_ascii=False)


def encode_request(request: dict[str, Any]) -> bytes:
    """Return the exact bytes sent on the wire for a request body."""
    return serialize_request(request).encode("utf-8")


def request_size(request: dict[str, Any]) -> int:
    """Return the wire byte length of one serialized request."""
    return len(encode_request(request))


class GridRange(BaseModel):
    """Zero-based, end-exclusive rectangle on one sheet.

    ``None`` on a bound marks an open side, so ``A:C`` has no row bounds and
    ``2:5`` has no column bounds.
    """

    model_config = ConfigDict(frozen=True)

    sheet_id: int | None = Field(default=None, ge=0)
    sheet_name: str | None = None
    start_row: int | None = Field(default=None, ge=0)
    end_row: int | None = Field(default=None, ge=0)
    start_column: int | None = Field(default=None, ge=0)
    end_column: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _validate_order(self) -> GridRange:
        if (
            self.start_row is not None
            and self.end_row is not None
            and self.start_row >= self.end_row
        ):
            raise ValueError("start_row must be less than end_row.")
        if (
            self.start_column is not None
            and self.end_column is not None
            and self.start_column >= self.end_column
        ):
            raise ValueError("start_column must be less than end_column.")
        return self

    @classmethod
    def from_a1(cls, text: str) -> GridRange:
        """Parse ``Sheet!A1:B2`` style text.

        A bare name that is not a cell reference (``Data``) addresses the
        whole sheet of that title.

        Raises:
            ValueError: If the reference is malformed.
        """
        sheet, reference = split_sheet_qualifier(text)
        if sheet is None and not reference:
            raise ValueError(f"Invalid range reference: {text}")
        try:
            start_row, end_row, start_column, end_column = parse_grid_bounds(reference)
        except ValueError:
            if sheet is not None or ":" in reference or not reference.isidentifier():
                raise
            return cls(sheet_name=reference)
        return cls(
            sheet_name=sheet,
            start_row=start_row,
            end_row=end_row,
            start_column=start_column,
            end_column=end_column,
        )

    @property
    def bounds(self) -> GridBounds:
        return self.start_row, self.end_row, self.start_column, self.end_column

    @property
    def row_count(self) -> int | None:
        if self.start_row is None or self.end_row is None:
            return None
        return self.end_row - self.start_row

    @property
    def column_count(self) -> int | None:
        if self.start_column is None or self.end_column is None:
            return None
        return self.end_column - self.start_column

    def cell_count(self) -> int | None:
        """Return the number of addressed cells, or None when open."""
        return range_cell_count(self.bounds)

    def with_sheet(self, sheet_id: int, sheet_name: str) -> GridRange:
        """Return a copy bound to a resolved sheet."""
        return self.model_copy(update={"sheet_id": sheet_id, "sheet_name": sheet_name})

    def to_api(self) -> dict[str, int]:
        """Render the native GridRange object.

        Raises:
            ValueError: If the range has not been resolved to a sheetId.
        """
        if self.sheet_id is None:
            raise ValueError("GridRange has no sheet_id; resolve the sheet first.")
        payload: dict[str, int] = {"sheetId": self.sheet_id}
        if self.start_row is not None:
            payload["startRowIndex"] = self.start_row
        if self.end_row is not None:
            payload["endRowIndex"] = self.end_row
        if self.start_column is not None:
            payload["startColumnIndex"] = self.start_column
        if self.end_column is not None:
            payload["endColumnIndex"] = self.end_column
        return payload

    def to_a1(self) -> str:
        """Render A1 text, qualified with the sheet name when known."""
        reference = format_grid_bounds(self.bounds)
        if self.sheet_name is None:
            return reference
        sheet = quote_sheet_name(self.sheet_name)
        return f"{sheet}!{reference}" if reference else sheet

    def intersects(self, other: GridRange) -> bool:
        """Return whether two ranges on the same sheet overlap."""
        if self.sheet_id != other.sheet_id:
            return False
        return _spans_overlap(
            self.start_row, self.end_row, other.start_row, other.end_row
        ) and _spans_overlap(
            self.start_column, self.end_column, other.start_column, other.end_column
        )


def _spans_overlap(
    start_a: int | None, end_a: int | None, start_b: int | None, end_b: int | None
) -> bool:
    low_a = 0 if start_a is None else start_a
    low_b = 0 if start_b is None else start_b
    if end_a is not None and end_a <= low_b:
        return False
    if end_b is not None and end_b <= low_a:
        return False
    return True


class Operation(BaseModel):
    """One logical, caller-requested action against a spreadsheet."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex, min_length=1)
    spreadsheet_id: str = Field(min_length=1)
    action: str = Field(description="Action name from the action table.")
    kind: OperationKind | None = Field(
        default=None,
        description="Operation kind. Defaults from the action table.",
    )
    params: dict[str, Any] = Field(default_factory=dict)
    transaction_id: str | None = None
    baseline_revision: str | None = Field(
        default=None,
        description="Revision the caller last observed for the target range.",
    )
    conflict_resolution: ConflictResolution = "manual"

    @model_validator(mode="before")
    @classmethod
    def _default_kind(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        spec = get_action_spec(str(data.get("action", "")))
        if spec is None:
            return data
        kind = data.get("kind")
        if kind is None:
            return {**data, "kind": spec.kind}
        if kind != spec.kind:
            raise ValueError(
                f"kind '{kind}' does not match action '{spec.action}' ({spec.kind})."
            )
        return data

    @property
    def is_mutating(self) -> bool:
        return self.kind is not None and self.kind != "read"


class CompiledRequest(BaseModel):
    """One native request tagged with its originating operation id.

    ``facts`` carries request-derived numbers (cells written, rows appended)
    used to build a payload when the remote reply for the request is empty.
    """

    model_config = ConfigDict(frozen=True)

    operation_id: str
    route: Route
    request: dict[str, Any]
    facts: dict[str, Any] = Field(default_factory=dict)

    @property
    def size_bytes(self) -> int:
        return request_size(self.request)

    @property
    def reply_key(self) -> str:
        """Return the native request kind, e.g. ``updateCells``."""
        if self.route == "values":
            return str(self.request["call"])
        return next(iter(self.request))


class Batch(BaseModel):
    """Ordered, size-bounded group of batch-route requests for one spreadsheet."""

    spreadsheet_id: str
    requests: list[CompiledRequest] = Field(default_factory=list)
    size_bytes: int = 0

    @property
    def operation_ids(self) -> list[str]:
        """Return originating operation ids in first-seen order."""
        seen: dict[str, None] = {}
        for item in self.requests:
            seen.setdefault(item.operation_id, None)
        return list(seen)

    def body(self) -> dict[str, Any]:
        """Return the batchUpdate request body."""
        return {"requests": [item.request for item in self.requests]}


class OperationResult(BaseModel):
    """Outcome of one operation. Exactly one of payload/error is set."""

    operation_id: str
    success: bool
    payload: dict[str, Any] | None = None
    error: ErrorDetail | None = None

    @model_validator(mode="after")
    def _validate_outcome(self) -> OperationResult:
        if self.success and (self.payload is None or self.error is not None):
            raise ValueError("Successful results carry a payload and no error.")
        if not self.success and (self.error is None or self.payload is not None):
            raise ValueError("Failed results carry an error and no payload.")
        return self

    @classmethod
    def ok(cls, operation_id: str, payload: dict[str, Any]) -> OperationResult:
        return cls(operation_id=operation_id, success=True, payload=payload)

    @classmethod
    def failed(cls, operation_id: str, error: ErrorDetail) -> OperationResult:
        return cls(operation_id=operation_id, success=False, error=error)


class InverseStep(BaseModel):
    """Tagged inverse operation value captured before a write is dispatched."""

    model_config = ConfigDict(frozen=True)

    action: ActionName
    params: dict[str, Any] = Field(default_factory=dict)


class HistoryEntry(BaseModel):
    """Recorded committed mutating operation with its inverse."""

    entry_id: str = Field(default_factory=lambda: uuid4().hex)
    spreadsheet_id: str
    sequence: int
    forward: Operation
    inverse: list[InverseStep] | None = Field(
        default=None,
        description="Steps reversing the forward effect. None marks irreversible.",
    )
    transaction_id: str | None = None
    created_at: float

    @property
    def reversible(self) -> bool:
        return self.inverse is not None


class ConflictCheck(BaseModel):
    """Baseline versus live revision comparison for one write."""

    operation_id: str
    range: str
    baseline_revision: str | None
    live_revision: str
    conflicted: bool


class Transaction(BaseModel):
    """Queued operations committed as one atomic unit."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    spreadsheet_id: str
    state: TransactionState = "OPEN"
    operations: list[Operation] = Field(default_factory=list)
    created_at: float
    last_activity_at: float
    error: ErrorDetail | None = None
    results: list[OperationResult] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.state in ("COMMITTED", "ROLLED_BACK", "ABORTED")


__all__ = [
    "Batch",
    "CompiledRequest",
    "ConflictCheck",
    "GridRange",
    "HistoryEntry",
    "InverseStep",
    "Operation",
    "OperationResult",
    "Transaction",
    "encode_request",
    "request_size",
    "serialize_request",
]
