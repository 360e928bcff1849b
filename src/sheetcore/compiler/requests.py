from __future__ import annotations

from collections.abc import Callable
from datetime import date
import hashlib
import re
from typing import Any, Final

from ..errors import SheetCoreError, validation_error
from ..ops.models import CompiledRequest, GridRange, Operation
from ..ops.specs import get_action_spec

Builder = Callable[[Operation, dict[str, Any], bool], list[CompiledRequest]]

METADATA_FIELDS: Final = "spreadsheetId,properties,sheets.properties,namedRanges"
FORMAT_CAPTURE_FIELDS: Final = (
    "sheets.data.startRow,sheets.data.startColumn,"
    "sheets.data.rowData.values.userEnteredFormat"
)
MERGE_CAPTURE_FIELDS: Final = "sheets.properties.sheetId,sheets.merges"

# format key -> (native path inside CellFormat, field mask)
_FORMAT_FIELDS: Final[dict[str, tuple[tuple[str, ...], str]]] = {
    "background_color": (("backgroundColor",), "backgroundColor"),
    "text_color": (("textFormat", "foregroundColor"), "textFormat.foregroundColor"),
    "bold": (("textFormat", "bold"), "textFormat.bold"),
    "italic": (("textFormat", "italic"), "textFormat.italic"),
    "underline": (("textFormat", "underline"), "textFormat.underline"),
    "strikethrough": (("textFormat", "strikethrough"), "textFormat.strikethrough"),
    "font_size": (("textFormat", "fontSize"), "textFormat.fontSize"),
    "font_family": (("textFormat", "fontFamily"), "textFormat.fontFamily"),
    "horizontal_alignment": (("horizontalAlignment",), "horizontalAlignment"),
    "vertical_alignment": (("verticalAlignment",), "verticalAlignment"),
    "wrap_strategy": (("wrapStrategy",), "wrapStrategy"),
}
_CONDITIONAL_FORMAT_KEYS: Final[frozenset[str]] = frozenset(
    {"background_color", "text_color", "bold", "italic", "underline", "strikethrough"}
)
_BORDER_SIDE_KEYS: Final[dict[str, str]] = {
    "TOP": "top",
    "BOTTOM": "bottom",
    "LEFT": "left",
    "RIGHT": "right",
    "INNER_HORIZONTAL": "innerHorizontal",
    "INNER_VERTICAL": "innerVertical",
}
_HEADER_BACKGROUND: Final[dict[str, float]] = {"red": 0.9, "green": 0.9, "blue": 0.9}
_NUMBER: Final = re.compile(
    r"(?P<sign>[+-]?)(?P<int>\d{1,3}(?:,\d{3})+|\d*)(?P<frac>\.\d*)?"
    r"(?P<exp>[eE][+-]?\d+)?(?P<pct>%?)"
)
_ISO_DATE: Final = re.compile(r"(\d{4})[-/](\d{1,2})[-/](\d{1,2})")
_SERIAL_EPOCH: Final = date(1899, 12, 30)


def derive_id(operation_id: str, salt: str) -> int:
    """Derive a stable non-negative int32 id from an operation id."""
    digest = hashlib.sha256(f"{operation_id}:{salt}".encode()).hexdigest()
    return int(digest[:8], 16) & 0x7FFFFFFF


def compile_operation(
    operation: Operation, *, transactional: bool = False
) -> list[CompiledRequest]:
    """Compile one normalized, resolved operation into native requests.

    Args:
        operation: Operation whose params went through the normalizer and the
            sheet resolver.
        transactional: Compile values writes as batch requests so they join
            an atomic batchUpdate.

    Returns:
        One or more requests sharing ``operation.id``.

    Raises:
        SheetCoreError: ``UNSUPPORTED_ACTION`` or ``VALIDATION``.
    """
    builder = _BUILDERS.get(operation.action)
    if builder is None or get_action_spec(operation.action) is None:
        raise SheetCoreError.of(
            "UNSUPPORTED_ACTION",
            f"Unsupported action: {operation.action}",
            field="action",
        )
    try:
        return builder(operation, operation.params, transactional)
    except ValueError as exc:
        raise validation_error(str(exc)) from exc


def cell_data(value: Any, *, user_entered: bool = True) -> dict[str, Any]:
    """Render one Python value as a native CellData with userEnteredValue.

    With ``user_entered`` text is read the way the Sheets editor reads typed
    input, matching a ``USER_ENTERED`` values write. Otherwise text is stored
    as-is, matching ``RAW``.
    """
    if value is None:
        return {}
    if isinstance(value, bool):
        return {"userEnteredValue": {"boolValue": value}}
    if isinstance(value, int | float):
        return {"userEnteredValue": {"numberValue": value}}
    text = str(value)
    if not user_entered:
        return {"userEnteredValue": {"stringValue": text}}
    return {"userEnteredValue": entered_value(text)}


def entered_value(text: str) -> dict[str, Any]:
    """Parse typed text into a native ExtendedValue.

    Formulas, a leading apostrophe, TRUE/FALSE, numbers with thousands
    separators or exponents, percentages and ISO dates are recognized.
    Dates become serial numbers; the date or percent display format the
    editor would also apply is not set.
    """
    if text.startswith("="):
        return {"formulaValue": text}
    if text.startswith("'"):
        return {"stringValue": text[1:]}
    stripped = text.strip()
    if stripped.upper() in ("TRUE", "FALSE"):
        return {"boolValue": stripped.upper() == "TRUE"}
    number = _parse_number(stripped)
    if number is not None:
        return {"numberValue": number}
    serial = _date_serial(stripped)
    if serial is not None:
        return {"numberValue": serial}
    return {"stringValue": text}


def restored_cell(value: Any, *, text: bool = False) -> dict[str, Any]:
    """Render a value captured with the FORMULA render option back verbatim.

    Strings starting with ``=`` are formulas unless ``text`` marks them as
    literal text.
    """
    if isinstance(value, str) and value.startswith("=") and not text:
        return {"userEnteredValue": {"formulaValue": value}}
    return cell_data(value, user_entered=False)


def write_extent(target: GridRange, values: list[list[Any]]) -> GridRange:
    """Return the rectangle a grid written at ``target``'s top-left covers."""
    start_row = target.start_row or 0
    start_column = target.start_column or 0
    width = max((len(row) for row in values), default=0)
    return GridRange(
        sheet_id=target.sheet_id,
        sheet_name=target.sheet_name,
        start_row=start_row,
        end_row=start_row + max(len(values), 1),
        start_column=start_column,
        end_column=start_column + max(width, 1),
    )


def build_cell_format(
    spec: dict[str, Any], *, allowed: frozenset[str] | None = None
) -> tuple[dict[str, Any], list[str]]:
    """Translate a flat format dict into a native CellFormat and field mask."""
    native: dict[str, Any] = {}
    fields: list[str] = []
    for key, value in spec.items():
        if key not in _FORMAT_FIELDS or (allowed is not None and key not in allowed):
            raise ValueError(f"Unsupported format attribute: {key}")
        path, mask = _FORMAT_FIELDS[key]
        node = native
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value
        fields.append(mask)
    return native, fields


def _batch(
    operation: Operation, request: dict[str, Any], **facts: Any
) -> CompiledRequest:
    return CompiledRequest(
        operation_id=operation.id, route="batch", request=request, facts=facts
    )


def _values(
    operation: Operation, request: dict[str, Any], **facts: Any
) -> CompiledRequest:
    return CompiledRequest(
        operation_id=operation.id, route="values", request=request, facts=facts
    )


def _sheet_id(params: dict[str, Any]) -> int:
    sheet_id = params.get("sheet_id")
    if sheet_id is None:
        raise ValueError("Sheet is not resolved to a sheetId.")
    return int(sheet_id)


def _dimension_range(params: dict[str, Any]) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "sheetId": _sheet_id(params),
        "dimension": params["dimension"],
    }
    if params.get("start_index") is not None:
        payload["startIndex"] = params["start_index"]
    if params.get("end_index") is not None:
        payload["endIndex"] = params["end_index"]
    return payload


def _write_facts(extent: GridRange, values: list[list[Any]]) -> dict[str, Any]:
    cells = sum(len(row) for row in values)
    return {
        "updatedRange": extent.to_a1(),
        "updatedRows": len(values),
        "updatedColumns": max((len(row) for row in values), default=0),
        "updatedCells": cells,
    }


def _rows(values: list[list[Any]], *, user_entered: bool) -> list[dict[str, Any]]:
    return [
        {"values": [cell_data(cell, user_entered=user_entered) for cell in row]}
        for row in values
    ]


def _restored_rows(
    values: list[list[Any]], text_cells: list[list[int]]
) -> list[dict[str, Any]]:
    text = {(r, c) for r, c in text_cells}
    return [
        {
            "values": [
                restored_cell(cell, text=(i, j) in text) for j, cell in enumerate(row)
            ]
        }
        for i, row in enumerate(values)
    ]


def _parse_number(text: str) -> int | float | None:
    match = _NUMBER.fullmatch(text)
    if match is None:
        return None
    mantissa = match["int"] + (match["frac"] or "")
    if not any(ch.isdigit() for ch in mantissa):
        return None
    literal = match["sign"] + match["int"].replace(",", "")
    literal += (match["frac"] or "") + (match["exp"] or "")
    if match["pct"]:
        return float(literal) / 100
    if match["frac"] is None and match["exp"] is None:
        return int(literal)
    return float(literal)


def _date_serial(text: str) -> int | None:
    match = _ISO_DATE.fullmatch(text)
    if match is None:
        return None
    try:
        day = date(int(match[1]), int(match[2]), int(match[3]))
    except ValueError:
        return None
    return (day - _SERIAL_EPOCH).days


def _build_read_range(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    request = {
        "call": "values_get",
        "range": params["range"],
        "params": {
            "valueRenderOption": params.get("value_render_option", "FORMATTED_VALUE"),
            "majorDimension": params.get("major_dimension", "ROWS"),
        },
    }
    return [_values(operation, request)]


def _build_batch_read(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    request = {
        "call": "values_batch_get",
        "ranges": list(params["ranges"]),
        "params": {
            "valueRenderOption": params.get("value_render_option", "FORMATTED_VALUE"),
            "majorDimension": params.get("major_dimension", "ROWS"),
        },
    }
    return [_values(operation, request)]


def _build_get_spreadsheet(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    mode = params.get("diff_mode", "metadata")
    query: dict[str, Any] = {}
    if mode == "metadata":
        query["fields"] = METADATA_FIELDS
    elif mode == "full":
        query["includeGridData"] = True
    if params.get("ranges"):
        query["ranges"] = list(params["ranges"])
    request = {"call": "get_spreadsheet", "params": query}
    return [_values(operation, request)]


def _build_write_range(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    values: list[list[Any]] = params["values"]
    extent = write_extent(params["range"], values)
    input_option = params.get("value_input_option", "USER_ENTERED")
    facts = _write_facts(extent, values)
    if transactional:
        request = {
            "updateCells": {
                "range": extent.to_api(),
                "rows": _rows(values, user_entered=input_option == "USER_ENTERED"),
                "fields": "userEnteredValue",
            }
        }
        return [_batch(operation, request, **facts)]
    request = {
        "call": "values_update",
        "range": extent.to_a1(),
        "params": {"valueInputOption": input_option},
        "body": {"majorDimension": "ROWS", "values": values},
    }
    return [_values(operation, request, **facts)]


def _build_append_rows(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    values: list[list[Any]] = params["values"]
    target: GridRange = params["range"]
    input_option = params.get("value_input_option", "USER_ENTERED")
    facts = {
        "appendedRows": len(values),
        "updatedCells": sum(len(row) for row in values),
    }
    if transactional:
        sheet_id = _sheet_id({"sheet_id": target.sheet_id})
        offset = target.start_column or 0
        rows = [
            {"values": [{} for _ in range(offset)] + row["values"]}
            for row in _rows(values, user_entered=input_option == "USER_ENTERED")
        ]
        append = {
            "appendCells": {"sheetId": sheet_id, "rows": rows, "fields": "userEnteredValue"}
        }
        requests = [_batch(operation, append, **facts)]
        if params.get("insert_data_option", "INSERT_ROWS") == "INSERT_ROWS":
            grow = {
                "appendDimension": {
                    "sheetId": sheet_id,
                    "dimension": "ROWS",
                    "length": len(values),
                }
            }
            requests.insert(0, _batch(operation, grow))
        return requests
    request = {
        "call": "values_append",
        "range": target.to_a1(),
        "params": {
            "valueInputOption": input_option,
            "insertDataOption": params.get("insert_data_option", "INSERT_ROWS"),
        },
        "body": {"majorDimension": "ROWS", "values": values},
    }
    return [_values(operation, request, **facts)]


def _build_clear_range(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    target: GridRange = params["range"]
    if transactional:
        request = {
            "updateCells": {"range": target.to_api(), "fields": "userEnteredValue"}
        }
        return [_batch(operation, request, clearedRange=target.to_a1())]
    request = {"call": "values_clear", "range": target.to_a1()}
    return [_values(operation, request, clearedRange=target.to_a1())]


def _build_restore_values(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    target: GridRange = params["range"]
    request: dict[str, Any] = {
        "updateCells": {
            "range": target.to_api(),
            "rows": _restored_rows(params["values"], params.get("text_cells", [])),
            "fields": "userEnteredValue",
        }
    }
    if not params["values"]:
        del request["updateCells"]["rows"]
    return [_batch(operation, request, restoredRange=target.to_a1())]


def _build_restore_formats(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    target: GridRange = params["range"]
    rows = [
        {"values": [{"userEnteredFormat": fmt} if fmt else {} for fmt in row]}
        for row in params["formats"]
    ]
    request: dict[str, Any] = {
        "updateCells": {
            "range": target.to_api(),
            "rows": rows,
            "fields": "userEnteredFormat",
        }
    }
    if not rows:
        del request["updateCells"]["rows"]
    return [_batch(operation, request, restoredRange=target.to_a1())]


def _build_add_sheet(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    sheet_id = params.get("sheet_id")
    if sheet_id is None:
        sheet_id = derive_id(operation.id, "sheet")
    properties: dict[str, Any] = {
        "sheetId": sheet_id,
        "title": params["title"],
        "gridProperties": {
            "rowCount": params.get("rows", 1000),
            "columnCount": params.get("columns", 26),
        },
    }
    if params.get("index") is not None:
        properties["index"] = params["index"]
    request = {"addSheet": {"properties": properties}}
    return [_batch(operation, request, sheetId=sheet_id, title=params["title"])]


def _build_delete_sheet(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    sheet_id = _sheet_id(params)
    return [_batch(operation, {"deleteSheet": {"sheetId": sheet_id}}, sheetId=sheet_id)]


def _build_duplicate_sheet(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    new_sheet_id = params.get("new_sheet_id")
    if new_sheet_id is None:
        new_sheet_id = derive_id(operation.id, "duplicate")
    body: dict[str, Any] = {
        "sourceSheetId": _sheet_id(params),
        "newSheetId": new_sheet_id,
    }
    if params.get("insert_index") is not None:
        body["insertSheetIndex"] = params["insert_index"]
    if params.get("new_title"):
        body["newSheetName"] = params["new_title"]
    return [_batch(operation, {"duplicateSheet": body}, sheetId=new_sheet_id)]


def _build_rename_sheet(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    request = {
        "updateSheetProperties": {
            "properties": {"sheetId": _sheet_id(params), "title": params["title"]},
            "fields": "title",
        }
    }
    return [_batch(operation, request, title=params["title"])]


def _build_freeze(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    return [
        _batch(
            operation,
            _freeze_request(_sheet_id(params), params.get("rows"), params.get("columns")),
        )
    ]


def _freeze_request(
    sheet_id: int, rows: int | None, columns: int | None
) -> dict[str, Any]:
    grid: dict[str, int] = {}
    fields: list[str] = []
    if rows is not None:
        grid["frozenRowCount"] = rows
        fields.append("gridProperties.frozenRowCount")
    if columns is not None:
        grid["frozenColumnCount"] = columns
        fields.append("gridProperties.frozenColumnCount")
    return {
        "updateSheetProperties": {
            "properties": {"sheetId": sheet_id, "gridProperties": grid},
            "fields": ",".join(fields),
        }
    }


def _build_insert_dimension(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    inherit = bool(params.get("inherit_from_before", False))
    if inherit and params["start_index"] == 0:
        raise ValueError("inherit_from_before requires start_index > 0.")
    request = {
        "insertDimension": {
            "range": _dimension_range(params),
            "inheritFromBefore": inherit,
        }
    }
    return [_batch(operation, request)]


def _build_delete_dimension(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    request = {"deleteDimension": {"range": _dimension_range(params)}}
    return [_batch(operation, request)]


def _build_move_dimension(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    start, end = params["start_index"], params["end_index"]
    destination = params["destination_index"]
    if start <= destination <= end:
        raise ValueError("destination_index must lie outside the moved span.")
    request = {
        "moveDimension": {
            "source": _dimension_range(params),
            "destinationIndex": destination,
        }
    }
    return [_batch(operation, request)]


def _build_auto_resize(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    request = {"autoResizeDimensions": {"dimensions": _dimension_range(params)}}
    return [_batch(operation, request)]


def _build_format_cells(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    target: GridRange = params["range"]
    native, fields = build_cell_format(params["format"])
    return [_batch(operation, _repeat_cell(target, native, fields))]


def _repeat_cell(
    target: GridRange, native: dict[str, Any], fields: list[str]
) -> dict[str, Any]:
    return {
        "repeatCell": {
            "range": target.to_api(),
            "cell": {"userEnteredFormat": native},
            "fields": ",".join(f"userEnteredFormat.{mask}" for mask in fields),
        }
    }


def _build_set_number_format(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    number_format: dict[str, Any] = {"type": params["type"]}
    if params.get("pattern"):
        number_format["pattern"] = params["pattern"]
    request = {
        "repeatCell": {
            "range": params["range"].to_api(),
            "cell": {"userEnteredFormat": {"numberFormat": number_format}},
            "fields": "userEnteredFormat.numberFormat",
        }
    }
    return [_batch(operation, request)]


def _build_set_borders(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    border: dict[str, Any] = {"style": params.get("style", "SOLID")}
    if params.get("color") is not None:
        border["color"] = params["color"]
    body: dict[str, Any] = {"range": params["range"].to_api()}
    for side in params.get("sides", ["TOP", "BOTTOM", "LEFT", "RIGHT"]):
        body[_BORDER_SIDE_KEYS[side]] = dict(border)
    return [_batch(operation, {"updateBorders": body})]


def _build_merge_cells(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    request = {
        "mergeCells": {
            "range": params["range"].to_api(),
            "mergeType": params.get("merge_type", "MERGE_ALL"),
        }
    }
    return [_batch(operation, request)]


def _build_unmerge_cells(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    request = {"unmergeCells": {"range": params["range"].to_api()}}
    return [_batch(operation, request)]


def _build_find_replace(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    body: dict[str, Any] = {
        "find": params["find"],
        "replacement": params["replacement"],
        "matchCase": bool(params.get("match_case", False)),
        "matchEntireCell": bool(params.get("match_entire_cell", False)),
        "searchByRegex": bool(params.get("search_by_regex", False)),
        "includeFormulas": bool(params.get("include_formulas", False)),
    }
    if params.get("range") is not None:
        body["range"] = params["range"].to_api()
    elif params.get("sheet_id") is not None:
        body["sheetId"] = params["sheet_id"]
    else:
        body["allSheets"] = True
    return [_batch(operation, {"findReplace": body})]


def _build_sort_range(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    request = {
        "sortRange": {
            "range": params["range"].to_api(),
            "sortSpecs": [
                {
                    "dimensionIndex": item["dimension_index"],
                    "sortOrder": item["sort_order"],
                }
                for item in params["sort_specs"]
            ],
        }
    }
    return [_batch(operation, request)]


def _build_add_named_range(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    named_range_id = params.get("named_range_id")
    if not named_range_id:
        named_range_id = f"nr_{derive_id(operation.id, 'named')}"
    request = {
        "addNamedRange": {
            "namedRange": {
                "namedRangeId": named_range_id,
                "name": params["name"],
                "range": params["range"].to_api(),
            }
        }
    }
    return [_batch(operation, request, namedRangeId=named_range_id)]


def _build_delete_named_range(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    request = {"deleteNamedRange": {"namedRangeId": params["named_range_id"]}}
    return [_batch(operation, request)]


def _build_add_conditional_format(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    native, _ = build_cell_format(
        params.get("format") or {"background_color": _HEADER_BACKGROUND},
        allowed=_CONDITIONAL_FORMAT_KEYS,
    )
    condition: dict[str, Any] = {"type": params["condition_type"]}
    if params.get("values"):
        condition["values"] = [{"userEnteredValue": str(v)} for v in params["values"]]
    request = {
        "addConditionalFormatRule": {
            "rule": {
                "ranges": [params["range"].to_api()],
                "booleanRule": {"condition": condition, "format": native},
            },
            "index": params.get("index", 0),
        }
    }
    return [_batch(operation, request)]


def _build_delete_conditional_format(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    request = {
        "deleteConditionalFormatRule": {
            "sheetId": _sheet_id(params),
            "index": params["index"],
        }
    }
    return [_batch(operation, request)]


def _build_apply_preset(
    operation: Operation, params: dict[str, Any], transactional: bool
) -> list[CompiledRequest]:
    target: GridRange = params["range"]
    preset = params["preset"]
    if preset == "HEADER_ROW":
        native, fields = build_cell_format(
            {
                "bold": True,
                "background_color": _HEADER_BACKGROUND,
                "horizontal_alignment": "CENTER",
            }
        )
        requests = [_batch(operation, _repeat_cell(target, native, fields))]
        if target.start_row in (None, 0) and target.end_row is not None:
            sheet_id = _sheet_id({"sheet_id": target.sheet_id})
            freeze = _freeze_request(sheet_id, target.end_row, None)
            requests.append(_batch(operation, freeze))
        return requests
    native, fields = build_cell_format({"bold": True})
    borders = {
        "updateBorders": {
            "range": target.to_api(),
            "top": {"style": "SOLID_MEDIUM"},
        }
    }
    return [
        _batch(operation, _repeat_cell(target, native, fields)),
        _batch(operation, borders),
    ]


_BUILDERS: Final[dict[str, Builder]] = {
    "read_range": _build_read_range,
    "batch_read": _build_batch_read,
    "get_spreadsheet": _build_get_spreadsheet,
    "write_range": _build_write_range,
    "append_rows": _build_append_rows,
    "clear_range": _build_clear_range,
    "add_sheet": _build_add_sheet,
    "delete_sheet": _build_delete_sheet,
    "duplicate_sheet": _build_duplicate_sheet,
    "rename_sheet": _build_rename_sheet,
    "freeze": _build_freeze,
    "insert_dimension": _build_insert_dimension,
    "delete_dimension": _build_delete_dimension,
    "move_dimension": _build_move_dimension,
    "auto_resize": _build_auto_resize,
    "format_cells": _build_format_cells,
    "set_number_format": _build_set_number_format,
    "set_borders": _build_set_borders,
    "merge_cells": _build_merge_cells,
    "unmerge_cells": _build_unmerge_cells,
    "find_replace": _build_find_replace,
    "sort_range": _build_sort_range,
    "add_named_range": _build_add_named_range,
    "delete_named_range": _build_delete_named_range,
    "add_conditional_format": _build_add_conditional_format,
    "delete_conditional_format": _build_delete_conditional_format,
    "apply_preset": _build_apply_preset,
    "restore_formats": _build_restore_formats,
    "restore_values": _build_restore_values,
}


__all__ = [
    "FORMAT_CAPTURE_FIELDS",
    "MERGE_CAPTURE_FIELDS",
    "METADATA_FIELDS",
    "build_cell_format",
    "cell_data",
    "compile_operation",
    "derive_id",
    "entered_value",
    "restored_cell",
    "write_extent",
]
