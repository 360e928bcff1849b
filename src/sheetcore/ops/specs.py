from __future__ import annotations

from typing import Final, cast

from pydantic import BaseModel, ConfigDict, Field

from .types import (
    BORDER_STYLES,
    CONDITION_TYPES,
    DIMENSIONS,
    HORIZONTAL_ALIGNMENTS,
    INSERT_DATA_OPTIONS,
    MAJOR_DIMENSIONS,
    MERGE_TYPES,
    NUMBER_FORMAT_TYPES,
    PRESETS,
    SORT_ORDERS,
    VALUE_INPUT_OPTIONS,
    VALUE_RENDER_OPTIONS,
    VERTICAL_ALIGNMENTS,
    WRAP_STRATEGIES,
    ActionName,
    BucketName,
    OperationKind,
    Route,
)

BORDER_SIDES: Final[frozenset[str]] = frozenset(
    {"TOP", "BOTTOM", "LEFT", "RIGHT", "INNER_HORIZONTAL", "INNER_VERTICAL"}
)

_TEXT_FORMAT_ENUMS: Final[dict[str, frozenset[str]]] = {
    "format.horizontal_alignment": HORIZONTAL_ALIGNMENTS,
    "format.vertical_alignment": VERTICAL_ALIGNMENTS,
    "format.wrap_strategy": WRAP_STRATEGIES,
}
_TEXT_FORMAT_COLORS: Final[tuple[str, ...]] = (
    "format.background_color",
    "format.text_color",
)


class ActionSpec(BaseModel):
    """Static metadata for one action: routing, validation and history."""

    model_config = ConfigDict(frozen=True)

    action: ActionName
    kind: OperationKind
    route: Route = "batch"
    required: tuple[str, ...] = ()
    aliases: dict[str, str] = Field(default_factory=dict)
    range_fields: tuple[str, ...] = ()
    sheet_fields: tuple[str, ...] = ()
    enum_fields: dict[str, frozenset[str]] = Field(default_factory=dict)
    color_fields: tuple[str, ...] = ()
    target_field: str | None = None
    reversible: bool = True
    internal: bool = False

    @property
    def mutating(self) -> bool:
        """Return whether the action changes remote state."""
        return self.kind != "read"

    @property
    def bucket(self) -> BucketName:
        """Return the quota bucket charged for this action."""
        return "read" if self.kind == "read" else "write"


ACTION_SPECS: Final[dict[ActionName, ActionSpec]] = {
    "read_range": ActionSpec(
        action="read_range",
        kind="read",
        route="values",
        required=("range",),
        aliases={"a1": "range"},
        enum_fields={
            "value_render_option": VALUE_RENDER_OPTIONS,
            "major_dimension": MAJOR_DIMENSIONS,
        },
    ),
    "batch_read": ActionSpec(
        action="batch_read",
        kind="read",
        route="values",
        required=("ranges",),
        enum_fields={
            "value_render_option": VALUE_RENDER_OPTIONS,
            "major_dimension": MAJOR_DIMENSIONS,
        },
    ),
    "get_spreadsheet": ActionSpec(
        action="get_spreadsheet",
        kind="read",
        route="values",
    ),
    "write_range": ActionSpec(
        action="write_range",
        kind="write",
        route="values",
        required=("range", "values"),
        aliases={"a1": "range", "data": "values"},
        range_fields=("range",),
        enum_fields={"value_input_option": VALUE_INPUT_OPTIONS},
        target_field="range",
    ),
    "append_rows": ActionSpec(
        action="append_rows",
        kind="write",
        route="values",
        required=("range", "values"),
        aliases={"a1": "range", "data": "values", "rows": "values"},
        range_fields=("range",),
        enum_fields={
            "value_input_option": VALUE_INPUT_OPTIONS,
            "insert_data_option": INSERT_DATA_OPTIONS,
        },
        target_field="range",
    ),
    "clear_range": ActionSpec(
        action="clear_range",
        kind="write",
        route="values",
        required=("range",),
        aliases={"a1": "range"},
        range_fields=("range",),
        target_field="range",
    ),
    "add_sheet": ActionSpec(
        action="add_sheet",
        kind="structural",
        required=("title",),
        aliases={"name": "title"},
    ),
    "delete_sheet": ActionSpec(
        action="delete_sheet",
        kind="structural",
        required=("sheet",),
        aliases={"name": "sheet", "title": "sheet"},
        sheet_fields=("sheet",),
        target_field="sheet",
    ),
    "duplicate_sheet": ActionSpec(
        action="duplicate_sheet",
        kind="structural",
        required=("sheet",),
        aliases={"name": "new_title"},
        sheet_fields=("sheet",),
    ),
    "rename_sheet": ActionSpec(
        action="rename_sheet",
        kind="structural",
        required=("sheet", "title"),
        aliases={"new_title": "title", "name": "title"},
        sheet_fields=("sheet",),
        target_field="sheet",
    ),
    "freeze": ActionSpec(
        action="freeze",
        kind="structural",
        aliases={"frozen_rows": "rows", "frozen_columns": "columns"},
        sheet_fields=("sheet",),
    ),
    "insert_dimension": ActionSpec(
        action="insert_dimension",
        kind="structural",
        required=("dimension", "start_index", "end_index"),
        sheet_fields=("sheet",),
        enum_fields={"dimension": DIMENSIONS},
        target_field="sheet",
    ),
    "delete_dimension": ActionSpec(
        action="delete_dimension",
        kind="structural",
        required=("dimension", "start_index", "end_index"),
        sheet_fields=("sheet",),
        enum_fields={"dimension": DIMENSIONS},
        target_field="sheet",
    ),
    "move_dimension": ActionSpec(
        action="move_dimension",
        kind="structural",
        required=("dimension", "start_index", "end_index", "destination_index"),
        sheet_fields=("sheet",),
        enum_fields={"dimension": DIMENSIONS},
        target_field="sheet",
    ),
    "auto_resize": ActionSpec(
        action="auto_resize",
        kind="structural",
        required=("dimension",),
        sheet_fields=("sheet",),
        enum_fields={"dimension": DIMENSIONS},
        reversible=False,
    ),
    "format_cells": ActionSpec(
        action="format_cells",
        kind="structural",
        required=("range", "format"),
        aliases={"a1": "range", "style": "format"},
        range_fields=("range",),
        enum_fields=_TEXT_FORMAT_ENUMS,
        color_fields=_TEXT_FORMAT_COLORS,
        target_field="range",
    ),
    "set_number_format": ActionSpec(
        action="set_number_format",
        kind="structural",
        required=("range", "type"),
        aliases={"a1": "range", "format_type": "type"},
        range_fields=("range",),
        enum_fields={"type": NUMBER_FORMAT_TYPES},
        target_field="range",
    ),
    "set_borders": ActionSpec(
        action="set_borders",
        kind="structural",
        required=("range",),
        aliases={"a1": "range"},
        range_fields=("range",),
        enum_fields={"style": BORDER_STYLES, "sides[]": BORDER_SIDES},
        color_fields=("color",),
        target_field="range",
    ),
    "merge_cells": ActionSpec(
        action="merge_cells",
        kind="structural",
        required=("range",),
        aliases={"a1": "range"},
        range_fields=("range",),
        enum_fields={"merge_type": MERGE_TYPES},
        target_field="range",
    ),
    "unmerge_cells": ActionSpec(
        action="unmerge_cells",
        kind="structural",
        required=("range",),
        aliases={"a1": "range"},
        range_fields=("range",),
        target_field="range",
    ),
    "find_replace": ActionSpec(
        action="find_replace",
        kind="write",
        required=("find", "replacement"),
        aliases={"replace": "replacement", "search": "find"},
        range_fields=("range",),
        sheet_fields=("sheet",),
        target_field="range",
    ),
    "sort_range": ActionSpec(
        action="sort_range",
        kind="write",
        required=("range", "sort_specs"),
        aliases={"a1": "range", "specs": "sort_specs"},
        range_fields=("range",),
        enum_fields={"sort_specs[].sort_order": SORT_ORDERS},
        target_field="range",
    ),
    "add_named_range": ActionSpec(
        action="add_named_range",
        kind="structural",
        required=("name", "range"),
        aliases={"a1": "range"},
        range_fields=("range",),
    ),
    "delete_named_range": ActionSpec(
        action="delete_named_range",
        kind="structural",
        required=("named_range_id",),
        aliases={"id": "named_range_id"},
    ),
    "add_conditional_format": ActionSpec(
        action="add_conditional_format",
        kind="structural",
        required=("range", "condition_type"),
        aliases={"a1": "range", "condition": "condition_type"},
        range_fields=("range",),
        enum_fields={"condition_type": CONDITION_TYPES},
        color_fields=_TEXT_FORMAT_COLORS,
    ),
    "delete_conditional_format": ActionSpec(
        action="delete_conditional_format",
        kind="structural",
        required=("index",),
        sheet_fields=("sheet",),
        reversible=False,
    ),
    "apply_preset": ActionSpec(
        action="apply_preset",
        kind="structural",
        required=("preset", "range"),
        aliases={"a1": "range", "name": "preset"},
        range_fields=("range",),
        enum_fields={"preset": PRESETS},
        target_field="range",
    ),
    "restore_formats": ActionSpec(
        action="restore_formats",
        kind="structural",
        required=("range", "formats"),
        range_fields=("range",),
        reversible=False,
        internal=True,
    ),
    "restore_values": ActionSpec(
        action="restore_values",
        kind="write",
        required=("range", "values"),
        range_fields=("range",),
        reversible=False,
        internal=True,
    ),
}


def get_action_spec(action: str) -> ActionSpec | None:
    """Return the spec for one action name, or None when unknown."""
    if action not in ACTION_SPECS:
        return None
    return ACTION_SPECS[cast(ActionName, action)]


__all__ = [
    "ACTION_SPECS",
    "ActionSpec",
    "BORDER_SIDES",
    "get_action_spec",
]
