from __future__ import annotations

from typing import Any

import anyio
import pytest

from helpers.factories import SPREADSHEET_ID, op
from sheetcore.compiler import derive_id
from sheetcore.errors import SheetCoreError
from sheetcore.ops import GridRange, Operation, normalize_operation
from sheetcore.resolver import SheetResolver

METADATA: dict[str, Any] = {
    "sheets": [
        {
            "properties": {
                "sheetId": 7,
                "title": "Second",
                "index": 1,
                "gridProperties": {"rowCount": 50, "columnCount": 5},
            }
        },
        {
            "properties": {
                "sheetId": 0,
                "title": "First",
                "index": 0,
                "gridProperties": {"frozenRowCount": 2},
            }
        },
    ],
    "namedRanges": [{"namedRangeId": "nr1", "name": "Totals", "range": {"sheetId": 7}}],
}


def _resolver(calls: list[bool] | None = None) -> SheetResolver:
    async def fetch(spreadsheet_id: str, fresh: bool) -> dict[str, Any]:
        if calls is not None:
            calls.append(fresh)
        return METADATA

    return SheetResolver(fetch)


def _resolve_one(resolver: SheetResolver, operation: Operation) -> Operation:
    async def main() -> list[Any]:
        return await resolver.resolve_each(SPREADSHEET_ID, [operation])

    item = anyio.run(main)[0]
    if isinstance(item, SheetCoreError):
        raise item
    return item


def test_metadata_parses_sheet_properties() -> None:
    metadata = anyio.run(_resolver().metadata, SPREADSHEET_ID)
    second = metadata.by_title("Second")
    assert second is not None
    assert (second.sheet_id, second.row_count, second.column_count) == (7, 50, 5)
    first = metadata.by_id(0)
    assert first is not None
    assert first.frozen_rows == 2
    assert first.row_count == 1000
    assert metadata.named_range("nr1") == METADATA["namedRanges"][0]
    assert metadata.named_range("missing") is None


def test_ranges_bind_to_sheet_ids() -> None:
    operation = normalize_operation(op("write_range", range="Second!B2", values=[[1]]))
    resolved = _resolve_one(_resolver(), operation)
    target: GridRange = resolved.params["range"]
    assert (target.sheet_id, target.sheet_name) == (7, "Second")
    assert target.start_row == 1


def test_unqualified_range_uses_first_sheet_by_index() -> None:
    operation = normalize_operation(op("clear_range", range="A1:B2"))
    resolved = _resolve_one(_resolver(), operation)
    assert resolved.params["range"].sheet_id == 0
    assert resolved.params["range"].sheet_name == "First"


def test_sheet_param_resolves_to_id() -> None:
    operation = normalize_operation(op("freeze", sheet="Second", rows=1))
    resolved = _resolve_one(_resolver(), operation)
    assert resolved.params["sheet_id"] == 7
    assert resolved.params["sheet"] == "Second"


def test_unknown_sheet_is_not_found() -> None:
    operation = normalize_operation(op("write_range", range="Nope!A1", values=[[1]]))
    with pytest.raises(SheetCoreError) as exc_info:
        _resolve_one(_resolver(), operation)
    assert exc_info.value.code == "NOT_FOUND"
    assert exc_info.value.detail.field == "params.range"


def test_later_operations_see_earlier_sheet_changes() -> None:
    operations = [
        normalize_operation(op("add_sheet", title="New")),
        normalize_operation(op("write_range", range="New!A1", values=[[1]])),
        normalize_operation(op("rename_sheet", sheet="Second", title="Renamed")),
        normalize_operation(op("freeze", sheet="Renamed", rows=1)),
        normalize_operation(op("delete_sheet", sheet="First")),
    ]

    async def main() -> list[Any]:
        return await _resolver().resolve_many(SPREADSHEET_ID, operations)

    resolved = anyio.run(main)
    assert resolved[1].params["range"].sheet_id == derive_id(operations[0].id, "sheet")
    assert resolved[3].params["sheet_id"] == 7
    assert resolved[4].params["sheet_id"] == 0


def test_resolve_each_isolates_failures() -> None:
    operations = [
        normalize_operation(op("add_sheet", title="Made")),
        normalize_operation(op("freeze", sheet="Ghost", rows=1)),
        normalize_operation(op("freeze", sheet="Made", rows=1)),
    ]

    async def main() -> list[Any]:
        return await _resolver().resolve_each(SPREADSHEET_ID, operations)

    _, failed, third = anyio.run(main)
    assert isinstance(failed, SheetCoreError)
    assert not isinstance(third, SheetCoreError)
    assert third.params["sheet_id"] == derive_id(operations[0].id, "sheet")


def test_reads_skip_metadata_lookup() -> None:
    calls: list[bool] = []
    operation = normalize_operation(op("read_range", range="Second!A1"))
    resolved = _resolve_one(_resolver(calls), operation)
    assert calls == []
    assert resolved is operation
