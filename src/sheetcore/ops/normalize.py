from __future__ import annotations

import re
from typing import Any, Final

from ..errors import SheetCoreError, validation_error
from .models import GridRange, Operation
from .specs import ActionSpec, get_action_spec

_HEX_COLOR_PATTERN: Final = re.compile(r"^#?(?P<hex>[0-9A-Fa-f]{6}|[0-9A-Fa-f]{8})$")
_COLOR_CHANNELS: Final[tuple[str, ...]] = ("red", "green", "blue", "alpha")
_DIFF_MODES: Final[frozenset[str]] = frozenset({"full", "values", "metadata"})
_INDEX_FIELDS: Final[tuple[str, ...]] = (
    "start_index",
    "end_index",
    "destination_index",
    "index",
    "rows",
    "columns",
    "insert_index",
    "sheet_id",
    "new_sheet_id",
)
_CELL_TYPES: Final = (str, int, float, bool, type(None))


def normalize_operation(operation: Operation) -> Operation:
    """Return a copy of ``operation`` with normalized parameters.

    Raises:
        SheetCoreError: ``UNSUPPORTED_ACTION`` for unknown actions and
            ``VALIDATION`` for malformed parameters.
    """
    params = normalize_params(operation.action, operation.params)
    return operation.model_copy(update={"params": params})


def normalize_params(action: str, params: dict[str, Any]) -> dict[str, Any]:
    """Normalize raw parameters for one action.

    Args:
        action: Action name.
        params: Raw parameters from the caller.

    Returns:
        New parameter dict with aliases resolved, ranges parsed into
        ``GridRange`` values, enum tokens uppercased and colors clamped.
    """
    spec = get_action_spec(action)
    if spec is None:
        raise SheetCoreError.of(
            "UNSUPPORTED_ACTION", f"Unsupported action: {action}", field="action"
        )
    normalized = dict(params)
    for alias, canonical in spec.aliases.items():
        alias_to_canonical_with_conflict_check(
            normalized, alias=alias, canonical=canonical, action=action
        )
    for name in spec.required:
        if name in spec.sheet_fields and normalized.get("sheet_id") is not None:
            continue
        if normalized.get(name) is None:
            raise validation_error(
                f"{action} requires '{name}'.", field=f"params.{name}"
            )
    _normalize_indices(normalized)
    for name in spec.range_fields:
        if normalized.get(name) is not None:
            normalized[name] = normalize_range(normalized[name], field=f"params.{name}")
    for name in spec.sheet_fields:
        _normalize_sheet_field(normalized, name)
    for path, tokens in spec.enum_fields.items():
        _apply_at_path(
            normalized,
            path,
            lambda value, field, tokens=tokens: normalize_enum(
                value, tokens, field=field
            ),
        )
    for path in spec.color_fields:
        _apply_at_path(
            normalized, path, lambda value, field: normalize_color(value, field=field)
        )
    _normalize_action_specific(spec, normalized)
    return normalized


def alias_to_canonical_with_conflict_check(
    params: dict[str, Any],
    *,
    alias: str,
    canonical: str,
    action: str,
) -> None:
    """Map alias field to canonical field, rejecting conflicting values."""
    if alias not in params:
        return
    alias_value = params[alias]
    if canonical in params:
        if params[canonical] != alias_value:
            raise validation_error(
                f"{action} has conflicting fields: '{canonical}' and alias '{alias}'.",
                field=f"params.{alias}",
            )
    else:
        params[canonical] = alias_value
    del params[alias]


def normalize_range(value: object, *, field: str) -> GridRange:
    """Parse A1 text or a GridRange-shaped dict into ``GridRange``."""
    if isinstance(value, GridRange):
        return value
    try:
        if isinstance(value, str):
            return GridRange.from_a1(value)
        if isinstance(value, dict):
            return GridRange.model_validate(value)
    except ValueError as exc:
        raise validation_error(f"Invalid range: {exc}", field=field) from exc
    raise validation_error(
        "Range must be A1 text like 'Sheet1!A1:B2'.", field=field
    )


def validate_a1(value: object, *, field: str) -> str:
    """Validate A1 text used verbatim by values calls."""
    if not isinstance(value, str) or not value.strip():
        raise validation_error("Range must be non-empty A1 text.", field=field)
    normalize_range(value, field=field)
    return value.strip()


def normalize_enum(value: object, tokens: frozenset[str], *, field: str) -> str:
    """Trim and uppercase an enum token and check it against ``tokens``."""
    if not isinstance(value, str):
        raise validation_error("Enum value must be a string.", field=field)
    token = value.strip().upper().replace("-", "_").replace(" ", "_")
    if token not in tokens:
        allowed = ", ".join(sorted(tokens))
        raise validation_error(
            f"Unknown value '{value}'. Use one of: {allowed}.", field=field
        )
    return token


def normalize_color(value: object, *, field: str) -> dict[str, float]:
    """Normalize a color to a native Color dict.

    Accepts ``{red, green, blue[, alpha]}`` dicts, ``[r, g, b]`` lists and
    ``#RRGGBB``/``#RRGGBBAA`` hex text. Channels are clamped to [0, 1] and
    rounded to 4 decimal places.
    """
    channels: list[float]
    if isinstance(value, str):
        match = _HEX_COLOR_PATTERN.match(value.strip())
        if match is None:
            raise validation_error(
                "Color must be '#RRGGBB' or '#RRGGBBAA'.", field=field
            )
        digits = match.group("hex")
        channels = [int(digits[i : i + 2], 16) / 255 for i in range(0, len(digits), 2)]
    elif isinstance(value, dict):
        unknown = set(value) - set(_COLOR_CHANNELS)
        if unknown:
            raise validation_error(
                f"Unknown color channel(s): {', '.join(sorted(unknown))}.", field=field
            )
        channels = [_channel(value.get(name, 0.0), field) for name in _COLOR_CHANNELS[:3]]
        if "alpha" in value:
            channels.append(_channel(value["alpha"], field))
    elif isinstance(value, list | tuple) and len(value) in (3, 4):
        channels = [_channel(item, field) for item in value]
    else:
        raise validation_error(
            "Color must be a dict, a 3/4 item list or hex text.", field=field
        )
    return {
        name: round(min(1.0, max(0.0, channel)), 4)
        for name, channel in zip(_COLOR_CHANNELS, channels, strict=False)
    }


def normalize_grid(value: object, *, field: str) -> list[list[Any]]:
    """Validate a 2D value grid; a flat list becomes a single row."""
    if not isinstance(value, list):
        raise validation_error("Values must be a list of rows.", field=field)
    if value and not any(isinstance(row, list) for row in value):
        value = [value]
    rows: list[list[Any]] = []
    for row_index, row in enumerate(value):
        if not isinstance(row, list):
            raise validation_error(
                "Every row must be a list.", field=f"{field}[{row_index}]"
            )
        for col_index, cell in enumerate(row):
            if not isinstance(cell, _CELL_TYPES):
                raise validation_error(
                    "Cell values must be text, numbers, booleans or null.",
                    field=f"{field}[{row_index}][{col_index}]",
                )
        rows.append(list(row))
    return rows


def _channel(value: object, field: str) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise validation_error("Color channels must be numbers.", field=field)
    return float(value)


def _normalize_indices(params: dict[str, Any]) -> None:
    for name in _INDEX_FIELDS:
        value = params.get(name)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise validation_error(
                f"'{name}' must be a non-negative integer.", field=f"params.{name}"
            )
    start, end = params.get("start_index"), params.get("end_index")
    if start is not None and end is not None and start >= end:
        raise validation_error(
            "start_index must be less than end_index.", field="params.end_index"
        )


def _normalize_sheet_field(params: dict[str, Any], name: str) -> None:
    value = params.get(name)
    if value is None:
        return
    if isinstance(value, int) and not isinstance(value, bool):
        params["sheet_id"] = value
        del params[name]
        return
    if not isinstance(value, str) or not value.strip():
        raise validation_error(
            "Sheet must be a title or a numeric sheet id.", field=f"params.{name}"
        )
    params[name] = value.strip()


def _apply_at_path(params: dict[str, Any], path: str, apply: Any) -> None:
    """Apply ``apply(value, field)`` to every value addressed by ``path``.

    Path segments are dot separated; a trailing ``[]`` walks list items.
    """
    _walk(params, path.split("."), "params", apply)


def _walk(node: Any, segments: list[str], prefix: str, apply: Any) -> None:
    if not isinstance(node, dict):
        return
    head, rest = segments[0], segments[1:]
    is_list = head.endswith("[]")
    key = head[:-2] if is_list else head
    if node.get(key) is None:
        return
    field = f"{prefix}.{key}"
    if is_list:
        items = node[key]
        if not isinstance(items, list):
            raise validation_error("Expected a list.", field=field)
        if rest:
            items = [dict(item) if isinstance(item, dict) else item for item in items]
            node[key] = items
            for index, item in enumerate(items):
                _walk(item, rest, f"{field}[{index}]", apply)
        else:
            node[key] = [
                apply(item, f"{field}[{index}]") for index, item in enumerate(items)
            ]
        return
    if rest:
        if isinstance(node[key], dict):
            node[key] = dict(node[key])
        _walk(node[key], rest, field, apply)
        return
    node[key] = apply(node[key], field)


def _normalize_action_specific(spec: ActionSpec, params: dict[str, Any]) -> None:
    action = spec.action
    if action == "read_range":
        params["range"] = validate_a1(params["range"], field="params.range")
    elif action == "batch_read":
        ranges = params["ranges"]
        if not isinstance(ranges, list) or not ranges:
            raise validation_error(
                "ranges must be a non-empty list.", field="params.ranges"
            )
        params["ranges"] = [
            validate_a1(item, field=f"params.ranges[{index}]")
            for index, item in enumerate(ranges)
        ]
    elif action == "get_spreadsheet":
        mode = str(params.get("diff_mode", "metadata")).strip().lower()
        if mode not in _DIFF_MODES:
            raise validation_error(
                f"Unknown diff_mode '{mode}'.", field="params.diff_mode"
            )
        params["diff_mode"] = mode
    elif action in ("write_range", "append_rows", "restore_values"):
        params["values"] = normalize_grid(params["values"], field="params.values")
        if action != "restore_values" and not any(params["values"]):
            raise validation_error(
                f"{action} requires at least one value.", field="params.values"
            )
        if action == "write_range":
            _check_grid_fits(params["range"], params["values"])
    elif action == "sort_range":
        _normalize_sort_specs(params)
    elif action == "set_borders":
        params.setdefault("style", "SOLID")
        params.setdefault("sides", ["TOP", "BOTTOM", "LEFT", "RIGHT"])
    elif action == "find_replace":
        if params.get("range") is not None and params.get("all_sheets"):
            raise validation_error(
                "find_replace accepts either 'range' or 'all_sheets'.",
                field="params.all_sheets",
            )
    elif action == "freeze":
        if params.get("rows") is None and params.get("columns") is None:
            raise validation_error(
                "freeze requires 'rows' or 'columns'.", field="params.rows"
            )
    elif action == "add_named_range":
        name = params["name"]
        if not isinstance(name, str) or not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_.]*", name):
            raise validation_error(
                "Named range names start with a letter or underscore.",
                field="params.name",
            )
    elif action == "format_cells":
        if not isinstance(params["format"], dict) or not params["format"]:
            raise validation_error(
                "format must be a non-empty object.", field="params.format"
            )


def _check_grid_fits(target: GridRange, values: list[list[Any]]) -> None:
    rows, columns = target.row_count, target.column_count
    width = max((len(row) for row in values), default=0)
    if rows is not None and len(values) > rows:
        raise validation_error(
            f"values has {len(values)} rows but the range spans {rows}.",
            field="params.values",
        )
    if columns is not None and width > columns:
        raise validation_error(
            f"values has {width} columns but the range spans {columns}.",
            field="params.values",
        )


def _normalize_sort_specs(params: dict[str, Any]) -> None:
    specs = params["sort_specs"]
    if not isinstance(specs, list) or not specs:
        raise validation_error(
            "sort_specs must be a non-empty list.", field="params.sort_specs"
        )
    normalized: list[dict[str, Any]] = []
    for index, item in enumerate(specs):
        field = f"params.sort_specs[{index}]"
        if not isinstance(item, dict):
            raise validation_error("Sort spec must be an object.", field=field)
        column = item.get("dimension_index", item.get("column"))
        if isinstance(column, bool) or not isinstance(column, int) or column < 0:
            raise validation_error(
                "dimension_index must be a non-negative integer.",
                field=f"{field}.dimension_index",
            )
        normalized.append(
            {"dimension_index": column, "sort_order": item.get("sort_order", "ASCENDING")}
        )
    params["sort_specs"] = normalized


__all__ = [
    "alias_to_canonical_with_conflict_check",
    "normalize_color",
    "normalize_enum",
    "normalize_grid",
    "normalize_operation",
    "normalize_params",
    "normalize_range",
    "validate_a1",
]
