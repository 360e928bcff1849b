from __future__ import annotations

from .a1 import (
    GridBounds,
    column_index_to_label,
    column_label_to_index,
    format_grid_bounds,
    parse_grid_bounds,
    quote_sheet_name,
    range_cell_count,
    split_a1,
    split_sheet_qualifier,
)

__all__ = [
    "GridBounds",
    "column_index_to_label",
    "column_label_to_index",
    "format_grid_bounds",
    "parse_grid_bounds",
    "quote_sheet_name",
    "range_cell_count",
    "split_a1",
    "split_sheet_qualifier",
]
