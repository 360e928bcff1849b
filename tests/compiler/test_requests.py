from __future__ import annotations

from typing import Any

import pytest

from sheetcore.compiler import compile_operation, derive_id
from sheetcore.compiler.requests import (
    cell_data,
    entered_value,
    restored_cell,
    write_extent,
)
from sheetcore.errors import SheetCoreError
from sheetcore.ops import GridRange, Operation, normalize_operation


def _resolved(action: str, op_id: str = "op-1", **params: Any) -> Operation:
    """Normalize and bind every range and sheet field to Sheet1 (id 0)."""
    operation = normalize_operation(
        Operation(id=op_id, spreadsheet_id="s", action=action, params=params)
    )
    bound = dict(operation.params)
    for key, value in bound.items():
        if isinstance(value, GridRange):
            bound[key] = value.with_sheet(0, "Sheet1")
    if "sheet" in bound:
        bound["sheet_id"] = 0
    return operation.model_copy(update={"params": bound})


def test_write_range_compiles_to_single_values_update() -> None:
    requests = compile_operation(
        _resolved("write_range", range="Sheet1!A1:B2", values=[[1, 2], [3, 4]])
    )
    assert len(requests) == 1
    request = requests[0]
    assert request.route == "values"
    assert request.request == {
        "call": "values_update",
        "range": "Sheet1!A1:B2",
        "params": {"valueInputOption": "USER_ENTERED"},
        "body": {"majorDimension": "ROWS", "values": [[1, 2], [3, 4]]},
    }
    assert request.facts["updatedCells"] == 4


def test_write_range_transactional_uses_update_cells() -> None:
    request = compile_operation(
        _resolved("write_range", range="B2:C2", values=[["=A1", True]]),
        transactional=True,
    )[0]
    assert request.route == "batch"
    assert request.request == {
        "updateCells": {
            "range": {
                "sheetId": 0,
                "startRowIndex": 1,
                "endRowIndex": 2,
                "startColumnIndex": 1,
                "endColumnIndex": 3,
            },
            "rows": [
                {
                    "values": [
                        {"userEnteredValue": {"formulaValue": "=A1"}},
                        {"userEnteredValue": {"boolValue": True}},
                    ]
                }
            ],
            "fields": "userEnteredValue",
        }
    }


def test_raw_input_keeps_formula_text() -> None:
    assert cell_data("=A1", user_entered=False) == {
        "userEnteredValue": {"stringValue": "=A1"}
    }
    assert cell_data(None) == {}
    assert cell_data(2.5) == {"userEnteredValue": {"numberValue": 2.5}}


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("123", {"numberValue": 123}),
        ("-1,234.5", {"numberValue": -1234.5}),
        ("1e3", {"numberValue": 1000.0}),
        ("5%", {"numberValue": 0.05}),
        ("TRUE", {"boolValue": True}),
        ("false", {"boolValue": False}),
        ("'007", {"stringValue": "007"}),
        ("=SUM(A1:A3)", {"formulaValue": "=SUM(A1:A3)"}),
        ("2024-01-15", {"numberValue": 45306}),
        ("2024-02-30", {"stringValue": "2024-02-30"}),
        ("1,00", {"stringValue": "1,00"}),
        ("12 apples", {"stringValue": "12 apples"}),
    ],
)
def test_user_entered_text_is_parsed_like_typed_input(
    text: str, expected: dict[str, Any]
) -> None:
    assert entered_value(text) == expected
    assert cell_data(text) == {"userEnteredValue": expected}


def test_restored_cells_keep_captured_text() -> None:
    assert restored_cell("=A1") == {"userEnteredValue": {"formulaValue": "=A1"}}
    assert restored_cell("=A1", text=True) == {
        "userEnteredValue": {"stringValue": "=A1"}
    }
    assert restored_cell("123") == {"userEnteredValue": {"stringValue": "123"}}
    assert restored_cell(7) == {"userEnteredValue": {"numberValue": 7}}


def test_restore_values_marks_text_cells() -> None:
    request = compile_operation(
        _resolved(
            "restore_values",
            range="A1:B1",
            values=[["=x", "=A1"]],
            text_cells=[[0, 0]],
        )
    )[0].request
    assert request["updateCells"]["rows"] == [
        {
            "values": [
                {"userEnteredValue": {"stringValue": "=x"}},
                {"userEnteredValue": {"formulaValue": "=A1"}},
            ]
        }
    ]


def test_transactional_append_keeps_column_offset() -> None:
    requests = compile_operation(
        _resolved("append_rows", range="Sheet1!C1", values=[["a", 1]]),
        transactional=True,
    )
    kinds = [next(iter(r.request)) for r in requests]
    assert kinds == ["appendDimension", "appendCells"]
    assert requests[0].request["appendDimension"] == {
        "sheetId": 0,
        "dimension": "ROWS",
        "length": 1,
    }
    assert requests[1].request["appendCells"]["rows"] == [
        {
            "values": [
                {},
                {},
                {"userEnteredValue": {"stringValue": "a"}},
                {"userEnteredValue": {"numberValue": 1}},
            ]
        }
    ]


def test_transactional_overwrite_append_does_not_add_rows() -> None:
    requests = compile_operation(
        _resolved(
            "append_rows",
            range="Sheet1!A1",
            values=[[1]],
            insert_data_option="OVERWRITE",
        ),
        transactional=True,
    )
    assert [next(iter(r.request)) for r in requests] == ["appendCells"]


def test_write_extent_covers_widest_row() -> None:
    target = GridRange.from_a1("C3").with_sheet(0, "Sheet1")
    extent = write_extent(target, [[1], [1, 2, 3]])
    assert extent.to_a1() == "Sheet1!C3:E4"


def test_compilation_is_deterministic() -> None:
    operation = _resolved(
        "format_cells",
        range="A1:C1",
        format={"bold": True, "background_color": "#336699"},
    )
    first = compile_operation(operation)
    second = compile_operation(operation)
    assert first == second
    assert [r.size_bytes for r in first] == [r.size_bytes for r in second]


def test_enum_case_variants_compile_identically() -> None:
    lower = _resolved("merge_cells", range="A1:B2", merge_type="merge_columns")
    upper = _resolved("merge_cells", range="A1:B2", merge_type="MERGE_COLUMNS")
    assert compile_operation(lower)[0].request == compile_operation(upper)[0].request


def test_format_cells_field_mask() -> None:
    request = compile_operation(
        _resolved(
            "format_cells",
            range="A1",
            format={"bold": True, "horizontal_alignment": "right"},
        )
    )[0].request
    repeat = request["repeatCell"]
    assert repeat["cell"] == {
        "userEnteredFormat": {
            "textFormat": {"bold": True},
            "horizontalAlignment": "RIGHT",
        }
    }
    assert repeat["fields"] == (
        "userEnteredFormat.textFormat.bold,userEnteredFormat.horizontalAlignment"
    )


def test_format_cells_rejects_unknown_attribute() -> None:
    with pytest.raises(SheetCoreError) as exc_info:
        compile_operation(_resolved("format_cells", range="A1", format={"glow": 1}))
    assert exc_info.value.code == "VALIDATION"


def test_add_sheet_uses_derived_sheet_id() -> None:
    request = compile_operation(_resolved("add_sheet", op_id="abc", title="Report"))[0]
    sheet_id = derive_id("abc", "sheet")
    assert 0 <= sheet_id < 2**31
    assert request.request["addSheet"]["properties"]["sheetId"] == sheet_id
    assert request.facts == {"sheetId": sheet_id, "title": "Report"}


def test_derive_id_depends_on_salt() -> None:
    assert derive_id("x", "sheet") == derive_id("x", "sheet")
    assert derive_id("x", "sheet") != derive_id("x", "duplicate")


def test_header_preset_adds_freeze() -> None:
    requests = compile_operation(
        _resolved("apply_preset", range="A1:D1", preset="header_row")
    )
    kinds = [r.reply_key for r in requests]
    assert kinds == ["repeatCell", "updateSheetProperties"]
    freeze = requests[1].request["updateSheetProperties"]
    assert freeze["properties"]["gridProperties"] == {"frozenRowCount": 1}


def test_total_preset_adds_top_border() -> None:
    requests = compile_operation(
        _resolved("apply_preset", range="A10:D10", preset="TOTAL_ROW")
    )
    assert [r.reply_key for r in requests] == ["repeatCell", "updateBorders"]
    assert requests[1].request["updateBorders"]["top"] == {"style": "SOLID_MEDIUM"}


def test_find_replace_scope_selection() -> None:
    ranged = compile_operation(
        _resolved("find_replace", find="a", replacement="b", range="A1:A5")
    )[0].request["findReplace"]
    everywhere = compile_operation(
        _resolved("find_replace", find="a", replacement="b", all_sheets=True)
    )[0].request["findReplace"]
    assert ranged["range"]["endRowIndex"] == 5
    assert "allSheets" not in ranged
    assert everywhere["allSheets"] is True


def test_move_dimension_rejects_destination_inside_span() -> None:
    with pytest.raises(SheetCoreError, match="outside the moved span"):
        compile_operation(
            _resolved(
                "move_dimension",
                sheet="Sheet1",
                dimension="ROWS",
                start_index=2,
                end_index=5,
                destination_index=3,
            )
        )


def test_get_spreadsheet_modes() -> None:
    metadata = compile_operation(_resolved("get_spreadsheet"))[0].request
    full = compile_operation(
        _resolved("get_spreadsheet", diff_mode="FULL", ranges=["Sheet1!A1:B2"])
    )[0].request
    assert "fields" in metadata["params"]
    assert full["params"] == {"includeGridData": True, "ranges": ["Sheet1!A1:B2"]}


def test_unknown_action_is_unsupported() -> None:
    operation = Operation(spreadsheet_id="s", action="explode")
    with pytest.raises(SheetCoreError) as exc_info:
        compile_operation(operation)
    assert exc_info.value.code == "UNSUPPORTED_ACTION"
