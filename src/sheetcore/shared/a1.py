from __future__ import annotations

import re

_A1_PATTERN = re.compile(r"^[A-Za-z]{1,3}[1-9][0-9]*$")
_COLUMN_LABEL_PATTERN = re.compile(r"^[A-Za-z]{1,3}$")
_ENDPOINT_PATTERN = re.compile(r"^(?P<col>[A-Za-z]{1,3})?(?P<row>[1-9][0-9]*)?$")
_QUALIFIED_PATTERN = re.compile(r"^(?:(?P<sheet>'(?:[^']|'')+'|[^!']+)!)?(?P<ref>[^!]*)$")

GridBounds = tuple[int | None, int | None, int | None, int | None]


def split_a1(value: str) -> tuple[str, int]:
    """Split A1 notation into normalized (column_label, row_index)."""
    if not _A1_PATTERN.match(value):
        raise ValueError(f"Invalid cell reference: {value}")
    idx = 0
    for index, char in enumerate(value):
        if char.isdigit():
            idx = index
            break
    column = value[:idx].upper()
    row = int(value[idx:])
    return column, row


def column_label_to_index(label: str) -> int:
    """Convert spreadsheet column label (A/AA) to 1-based index."""
    normalized = label.strip().upper()
    if not _COLUMN_LABEL_PATTERN.match(normalized):
        raise ValueError(f"Invalid column label: {label}")
    index = 0
    for char in normalized:
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index


def column_index_to_label(index: int) -> str:
    """Convert 1-based column index to spreadsheet column label."""
    if index < 1:
        raise ValueError("Column index must be positive.")
    chunks: list[str] = []
    current = index
    while current > 0:
        current -= 1
        chunks.append(chr(ord("A") + (current % 26)))
        current //= 26
    return "".join(reversed(chunks))


def split_sheet_qualifier(value: str) -> tuple[str | None, str]:
    """Split ``Sheet!A1:B2`` into (sheet_name, reference).

    Quoted sheet names (``'My Sheet'!A1``) are unquoted and doubled quotes
    collapse to one. A bare sheet name without ``!`` is returned as reference.
    """
    candidate = value.strip()
    match = _QUALIFIED_PATTERN.match(candidate)
    if match is None:
        raise ValueError(f"Invalid range reference: {value}")
    sheet = match.group("sheet")
    if sheet is not None and sheet.startswith("'"):
        sheet = sheet[1:-1].replace("''", "'")
    return sheet, match.group("ref").strip()


def quote_sheet_name(name: str) -> str:
    """Quote a sheet title for use in A1 notation when needed."""
    if re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name) and not _A1_PATTERN.match(name):
        return name
    escaped = name.replace("'", "''")
    return f"'{escaped}'"


def parse_grid_bounds(reference: str) -> GridBounds:
    """Parse an unqualified A1 reference into zero-based end-exclusive bounds.

    Returns ``(start_row, end_row, start_column, end_column)``; ``None`` marks
    an open side (``A:C`` has no row bounds, ``2:5`` no column bounds). An
    empty reference addresses the whole sheet.
    """
    text = reference.strip()
    if not text:
        return None, None, None, None
    start_text, _, end_text = text.partition(":")
    if not end_text:
        end_text = start_text
    start = _ENDPOINT_PATTERN.match(start_text)
    end = _ENDPOINT_PATTERN.match(end_text)
    if start is None or end is None or not start_text or not end_text:
        raise ValueError(f"Invalid range reference: {reference}")
    start_col_label, start_row_text = start.group("col"), start.group("row")
    end_col_label, end_row_text = end.group("col"), end.group("row")
    if bool(start_col_label) != bool(end_col_label):
        if start_row_text is None or end_row_text is None:
            raise ValueError(f"Invalid range reference: {reference}")
    if bool(start_row_text) != bool(end_row_text):
        if start_col_label is None or end_col_label is None:
            raise ValueError(f"Invalid range reference: {reference}")

    start_row = end_row = start_col = end_col = None
    if start_row_text and end_row_text:
        low, high = sorted((int(start_row_text), int(end_row_text)))
        start_row, end_row = low - 1, high
    elif start_row_text:
        start_row = int(start_row_text) - 1
    elif end_row_text:
        end_row = int(end_row_text)
    if start_col_label and end_col_label:
        low, high = sorted(
            (column_label_to_index(start_col_label), column_label_to_index(end_col_label))
        )
        start_col, end_col = low - 1, high
    elif start_col_label:
        start_col = column_label_to_index(start_col_label) - 1
    elif end_col_label:
        end_col = column_label_to_index(end_col_label)
    return start_row, end_row, start_col, end_col


def format_grid_bounds(bounds: GridBounds) -> str:
    """Render zero-based end-exclusive bounds back to A1 text."""
    start_row, end_row, start_col, end_col = bounds
    if start_row is None and end_row is None and start_col is None and end_col is None:
        return ""
    start = _format_endpoint(start_col, None if start_row is None else start_row + 1)
    end = _format_endpoint(
        None if end_col is None else end_col - 1,
        end_row,
    )
    if start_row is None and end_row is None:
        start = column_index_to_label((start_col or 0) + 1)
        end = column_index_to_label(end_col) if end_col is not None else start
    elif start_col is None and end_col is None:
        start = str((start_row or 0) + 1)
        end = str(end_row) if end_row is not None else start
    if start == end:
        return start
    return f"{start}:{end}"


def range_cell_count(bounds: GridBounds) -> int | None:
    """Return the number of cells in closed bounds, or None when open."""
    start_row, end_row, start_col, end_col = bounds
    if start_row is None or end_row is None or start_col is None or end_col is None:
        return None
    return (end_row - start_row) * (end_col - start_col)


def _format_endpoint(col_zero_based: int | None, row_one_based: int | None) -> str:
    """Render one endpoint from a zero-based column and one-based row."""
    column = "" if col_zero_based is None else column_index_to_label(col_zero_based + 1)
    row = "" if row_one_based is None else str(row_one_based)
    return f"{column}{row}"
