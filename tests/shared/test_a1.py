from __future__ import annotations

import pytest

from sheetcore.shared.a1 import (
    column_index_to_label,
    column_label_to_index,
    format_grid_bounds,
    parse_grid_bounds,
    quote_sheet_name,
    range_cell_count,
    split_a1,
    split_sheet_qualifier,
)


def test_column_roundtrip() -> None:
    assert column_label_to_index("A") == 1
    assert column_label_to_index("AA") == 27
    assert column_label_to_index("zz") == 702
    assert column_index_to_label(1) == "A"
    assert column_index_to_label(27) == "AA"
    assert column_index_to_label(702) == "ZZ"


def test_split_a1() -> None:
    assert split_a1("b12") == ("B", 12)


def test_split_a1_rejects_invalid() -> None:
    with pytest.raises(ValueError, match="Invalid cell reference"):
        split_a1("1A")


def test_split_sheet_qualifier_unquotes_names() -> None:
    assert split_sheet_qualifier("Sheet1!A1:B2") == ("Sheet1", "A1:B2")
    assert split_sheet_qualifier("'My Sheet'!C3") == ("My Sheet", "C3")
    assert split_sheet_qualifier("'It''s'!A1") == ("It's", "A1")
    assert split_sheet_qualifier("A1:B2") == (None, "A1:B2")


def test_parse_grid_bounds_closed_range() -> None:
    assert parse_grid_bounds("A1:B2") == (0, 2, 0, 2)
    assert parse_grid_bounds("C3") == (2, 3, 2, 3)


def test_parse_grid_bounds_reversed_corners() -> None:
    assert parse_grid_bounds("D6:B4") == (3, 6, 1, 4)


def test_parse_grid_bounds_open_sides() -> None:
    assert parse_grid_bounds("A:C") == (None, None, 0, 3)
    assert parse_grid_bounds("2:5") == (1, 5, None, None)
    assert parse_grid_bounds("A2:C") == (1, None, 0, 3)
    assert parse_grid_bounds("") == (None, None, None, None)


def test_parse_grid_bounds_rejects_garbage() -> None:
    with pytest.raises(ValueError, match="Invalid range reference"):
        parse_grid_bounds("A1:?")


def test_format_grid_bounds_inverts_parse() -> None:
    for text in ("A1:B2", "C3", "A:C", "2:5"):
        assert format_grid_bounds(parse_grid_bounds(text)) == text


def test_range_cell_count() -> None:
    assert range_cell_count(parse_grid_bounds("A1:C3")) == 9
    assert range_cell_count(parse_grid_bounds("A:C")) is None


def test_quote_sheet_name() -> None:
    assert quote_sheet_name("Sheet1") == "Sheet1"
    assert quote_sheet_name("My Sheet") == "'My Sheet'"
    assert quote_sheet_name("A1") == "'A1'"
    assert quote_sheet_name("It's") == "'It''s'"
