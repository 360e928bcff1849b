from __future__ import annotations

from typing import Final, Literal

ActionName = Literal[
    "read_range",
    "batch_read",
    "get_spreadsheet",
    "write_range",
    "append_rows",
    "clear_range",
    "add_sheet",
    "delete_sheet",
    "duplicate_sheet",
    "rename_sheet",
    "freeze",
    "insert_dimension",
    "delete_dimension",
    "move_dimension",
    "auto_resize",
    "format_cells",
    "set_number_format",
    "set_borders",
    "merge_cells",
    "unmerge_cells",
    "find_replace",
    "sort_range",
    "add_named_range",
    "delete_named_range",
    "add_conditional_format",
    "delete_conditional_format",
    "apply_preset",
    "restore_formats",
    "restore_values",
]
OperationKind = Literal["read", "write", "structural"]
Route = Literal["batch", "values"]
DiffMode = Literal["full", "values", "metadata"]
ConflictResolution = Literal["manual", "keep_local", "keep_remote"]
TransactionState = Literal["OPEN", "COMMITTING", "COMMITTED", "ROLLED_BACK", "ABORTED"]
QuotaPolicy = Literal["block", "fail_fast"]
BucketName = Literal["read", "write"]

# Enum token sets accepted by the normalizer (uppercase canonical form).
DIMENSIONS: Final[frozenset[str]] = frozenset({"ROWS", "COLUMNS"})
HORIZONTAL_ALIGNMENTS: Final[frozenset[str]] = frozenset({"LEFT", "CENTER", "RIGHT"})
VERTICAL_ALIGNMENTS: Final[frozenset[str]] = frozenset({"TOP", "MIDDLE", "BOTTOM"})
WRAP_STRATEGIES: Final[frozenset[str]] = frozenset(
    {"OVERFLOW_CELL", "LEGACY_WRAP", "CLIP", "WRAP"}
)
NUMBER_FORMAT_TYPES: Final[frozenset[str]] = frozenset(
    {
        "TEXT",
        "NUMBER",
        "PERCENT",
        "CURRENCY",
        "DATE",
        "TIME",
        "DATE_TIME",
        "SCIENTIFIC",
    }
)
BORDER_STYLES: Final[frozenset[str]] = frozenset(
    {
        "DOTTED",
        "DASHED",
        "SOLID",
        "SOLID_MEDIUM",
        "SOLID_THICK",
        "NONE",
        "DOUBLE",
    }
)
MERGE_TYPES: Final[frozenset[str]] = frozenset({"MERGE_ALL", "MERGE_COLUMNS", "MERGE_ROWS"})
SORT_ORDERS: Final[frozenset[str]] = frozenset({"ASCENDING", "DESCENDING"})
VALUE_INPUT_OPTIONS: Final[frozenset[str]] = frozenset({"RAW", "USER_ENTERED"})
VALUE_RENDER_OPTIONS: Final[frozenset[str]] = frozenset(
    {"FORMATTED_VALUE", "UNFORMATTED_VALUE", "FORMULA"}
)
MAJOR_DIMENSIONS: Final[frozenset[str]] = DIMENSIONS
INSERT_DATA_OPTIONS: Final[frozenset[str]] = frozenset({"OVERWRITE", "INSERT_ROWS"})
CONDITION_TYPES: Final[frozenset[str]] = frozenset(
    {
        "NUMBER_GREATER",
        "NUMBER_GREATER_THAN_EQ",
        "NUMBER_LESS",
        "NUMBER_LESS_THAN_EQ",
        "NUMBER_EQ",
        "NUMBER_NOT_EQ",
        "NUMBER_BETWEEN",
        "TEXT_CONTAINS",
        "TEXT_NOT_CONTAINS",
        "TEXT_STARTS_WITH",
        "TEXT_ENDS_WITH",
        "TEXT_EQ",
        "BLANK",
        "NOT_BLANK",
        "CUSTOM_FORMULA",
    }
)
PRESETS: Final[frozenset[str]] = frozenset({"HEADER_ROW", "TOTAL_ROW"})
