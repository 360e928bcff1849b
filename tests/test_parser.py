from __future__ import annotations

import pytest

from sheetcore.errors import ErrorDetail, SheetCoreError
from sheetcore.ops import Batch, CompiledRequest
from sheetcore.parser import ResponseParser


def _batch(*items: tuple[str, dict], facts: dict | None = None) -> Batch:
    requests = [
        CompiledRequest(
            operation_id=op_id, route="batch", request=request, facts=facts or {}
        )
        for op_id, request in items
    ]
    return Batch(spreadsheet_id="s", requests=requests)


def test_empty_replies_map_to_applied_with_facts() -> None:
    batch = _batch(("a", {"mergeCells": {}}), facts={"note": 1})
    results = ResponseParser().parse_batch(batch, {"replies": [{}]})
    assert results[0].success
    assert results[0].payload == {"applied": True, "note": 1}


def test_replies_are_matched_positionally() -> None:
    batch = _batch(
        ("a", {"addSheet": {}}),
        ("b", {"findReplace": {}}),
    )
    reply = {
        "replies": [
            {
                "addSheet": {
                    "properties": {
                        "sheetId": 42,
                        "title": "New",
                        "index": 1,
                        "gridProperties": {"rowCount": 10, "columnCount": 3},
                    }
                }
            },
            {"findReplace": {"occurrencesChanged": 3, "valuesChanged": 2}},
        ]
    }
    a, b = ResponseParser().parse_batch(batch, reply)
    assert a.payload == {
        "applied": True,
        "sheetId": 42,
        "title": "New",
        "index": 1,
        "rowCount": 10,
        "columnCount": 3,
    }
    assert b.payload is not None
    assert b.payload["occurrencesChanged"] == 3
    assert b.payload["rowsChanged"] == 0


def test_multi_request_operation_yields_one_result() -> None:
    batch = _batch(
        ("a", {"repeatCell": {}}),
        ("a", {"updateSheetProperties": {}}),
        ("b", {"mergeCells": {}}),
    )
    results = ResponseParser().parse_batch(batch, {"replies": [{}, {}, {}]})
    assert [result.operation_id for result in results] == ["a", "b"]


def test_reply_count_mismatch_fails_whole_batch() -> None:
    batch = _batch(("a", {"mergeCells": {}}), ("b", {"mergeCells": {}}))
    with pytest.raises(SheetCoreError) as exc_info:
        ResponseParser().parse_batch(batch, {"replies": [{}]})
    assert exc_info.value.code == "INTERNAL"


def test_unknown_reply_shape_fails_closed() -> None:
    batch = _batch(("a", {"mergeCells": {}}), ("b", {"mergeCells": {}}))
    results = ResponseParser().parse_batch(
        batch, {"replies": [{"mysteryReply": {"x": 1}}, {}]}
    )
    assert not results[0].success
    assert results[0].error is not None
    assert results[0].error.details["reply_key"] == "mysteryReply"
    assert results[1].success


def test_values_call_payloads() -> None:
    parser = ResponseParser()
    update = CompiledRequest(
        operation_id="w",
        route="values",
        request={"call": "values_update"},
        facts={"updatedCells": 4},
    )
    result = parser.parse_call(
        update,
        {"updatedRange": "Sheet1!A1:B2", "updatedRows": 2, "updatedColumns": 2},
    )
    assert result.payload == {
        "updatedCells": 4,
        "updatedRange": "Sheet1!A1:B2",
        "updatedRows": 2,
        "updatedColumns": 2,
    }

    append = CompiledRequest(
        operation_id="p", route="values", request={"call": "values_append"}
    )
    appended = parser.parse_call(
        append,
        {
            "tableRange": "Sheet1!A1:B3",
            "updates": {"updatedRange": "Sheet1!A4:B4", "updatedRows": 1},
        },
    )
    assert appended.payload is not None
    assert appended.payload["appendedRows"] == 1
    assert appended.payload["tableRange"] == "Sheet1!A1:B3"


def test_unknown_values_call_fails_closed() -> None:
    request = CompiledRequest(operation_id="x", route="values", request={"call": "nope"})
    result = ResponseParser().parse_call(request, {})
    assert not result.success


def test_fail_all_shares_error() -> None:
    error = ErrorDetail(code="TIMEOUT", message="slow")
    results = ResponseParser().fail_all(["a", "b"], error)
    assert [result.error for result in results] == [error, error]
