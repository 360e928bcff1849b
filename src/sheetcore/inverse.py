from __future__ import annotations

import logging
from typing import Any

from .compiler.requests import (
    FORMAT_CAPTURE_FIELDS,
    MERGE_CAPTURE_FIELDS,
    derive_id,
    write_extent,
)
from .conflict import RemoteReader
from .errors import SheetCoreError
from .ops.models import GridRange, InverseStep, Operation
from .ops.specs import get_action_spec
from .resolver import SheetProperties, SheetResolver

logger = logging.getLogger(__name__)

_FORMAT_ACTIONS = frozenset(
    {"format_cells", "set_number_format", "set_borders", "apply_preset"}
)
_VALUE_RESTORE_ACTIONS = frozenset({"clear_range", "sort_range"})


class InverseCapture:
    """Capture the state needed to reverse an operation before it is sent.

    Every reversible action maps to a list of tagged ``InverseStep`` values.
    ``None`` marks an irreversible operation.
    """

    def __init__(self, reader: RemoteReader, resolver: SheetResolver) -> None:
        self._read = reader
        self._resolver = resolver

    async def capture(
        self,
        operation: Operation,
        *,
        created_sheets: frozenset[int] = frozenset(),
    ) -> list[InverseStep] | None:
        """Read prior state and build the inverse of a resolved operation.

        Args:
            operation: Normalized and sheet-resolved mutating operation.
            created_sheets: Sheet ids added earlier in the same commit. They
                do not exist remotely yet and are known to be empty.

        Returns:
            Inverse steps in application order, or None when irreversible.
        """
        spec = get_action_spec(operation.action)
        if spec is None or not spec.mutating or not spec.reversible:
            return None
        params = operation.params
        action = operation.action
        spreadsheet_id = operation.spreadsheet_id
        if _target_sheet(params) in created_sheets:
            return _empty_sheet_inverse(action, params)

        if action == "write_range":
            extent = write_extent(params["range"], params["values"])
            return [await self._snapshot(spreadsheet_id, extent)]
        if action in _VALUE_RESTORE_ACTIONS:
            return [await self._snapshot(spreadsheet_id, params["range"])]
        if action == "append_rows":
            return [await self._append_target(spreadsheet_id, params)]
        if action == "find_replace":
            return await self._find_replace(spreadsheet_id, params)
        if action == "add_sheet":
            sheet_id = params.get("sheet_id")
            if sheet_id is None:
                sheet_id = derive_id(operation.id, "sheet")
            return [InverseStep(action="delete_sheet", params={"sheet_id": sheet_id})]
        if action == "duplicate_sheet":
            new_id = params.get("new_sheet_id")
            if new_id is None:
                new_id = derive_id(operation.id, "duplicate")
            return [InverseStep(action="delete_sheet", params={"sheet_id": new_id})]
        if action == "delete_sheet":
            return await self._delete_sheet(spreadsheet_id, params["sheet_id"])
        if action == "rename_sheet":
            sheet = await self._sheet(spreadsheet_id, params["sheet_id"])
            return [
                InverseStep(
                    action="rename_sheet",
                    params={"sheet_id": sheet.sheet_id, "title": sheet.title},
                )
            ]
        if action == "freeze":
            return [await self._freeze(spreadsheet_id, params)]
        if action == "insert_dimension":
            return [InverseStep(action="delete_dimension", params=_dimension(params))]
        if action == "delete_dimension":
            return await self._delete_dimension(spreadsheet_id, params)
        if action == "move_dimension":
            return [_reverse_move(params)]
        if action in _FORMAT_ACTIONS:
            return await self._formats(spreadsheet_id, action, params)
        if action == "merge_cells":
            return [InverseStep(action="unmerge_cells", params={"range": params["range"]})]
        if action == "unmerge_cells":
            return await self._merges(spreadsheet_id, params["range"])
        if action == "add_named_range":
            named_range_id = params.get("named_range_id")
            if not named_range_id:
                named_range_id = f"nr_{derive_id(operation.id, 'named')}"
            return [
                InverseStep(
                    action="delete_named_range",
                    params={"named_range_id": named_range_id},
                )
            ]
        if action == "delete_named_range":
            return await self._named_range(spreadsheet_id, params["named_range_id"])
        if action == "add_conditional_format":
            target = params["range"]
            return [
                InverseStep(
                    action="delete_conditional_format",
                    params={"sheet_id": target.sheet_id, "index": params.get("index", 0)},
                )
            ]
        logger.debug("No inverse rule for %s; recording as irreversible.", action)
        return None

    def complete(
        self,
        operation: Operation,
        steps: list[InverseStep] | None,
        payload: dict[str, Any],
    ) -> list[InverseStep] | None:
        """Fill inverse details only known from the reply (appended range)."""
        if steps is None or operation.action != "append_rows":
            return steps
        updated = payload.get("updatedRange")
        if not isinstance(updated, str):
            return steps
        try:
            appended = GridRange.from_a1(updated)
        except ValueError:
            logger.warning("Unparseable appended range '%s'.", updated)
            return steps
        target: GridRange = operation.params["range"]
        if target.sheet_id is not None and target.sheet_name is not None:
            appended = appended.with_sheet(target.sheet_id, target.sheet_name)
        return [_append_inverse(appended, operation.params)]

    async def _values(
        self, spreadsheet_id: str, target: GridRange, render: str = "FORMULA"
    ) -> list[list[Any]]:
        reply = await self._read(
            spreadsheet_id,
            {
                "call": "values_get",
                "range": target.to_a1(),
                "params": {"valueRenderOption": render, "majorDimension": "ROWS"},
            },
        )
        return [list(row) for row in reply.get("values", [])]

    async def _snapshot(self, spreadsheet_id: str, target: GridRange) -> InverseStep:
        """Capture a range's values as a verbatim restore step.

        Text starting with ``=`` reads like a formula under FORMULA rendering.
        Those cells are told apart by a second UNFORMATTED_VALUE read, where
        a formula shows its result and text shows itself.
        """
        values = await self._values(spreadsheet_id, target)
        candidates = [
            (i, j)
            for i, row in enumerate(values)
            for j, value in enumerate(row)
            if isinstance(value, str) and value.startswith("=")
        ]
        text_cells: list[list[int]] = []
        if candidates:
            plain = await self._values(spreadsheet_id, target, "UNFORMATTED_VALUE")
            for i, j in candidates:
                if i < len(plain) and j < len(plain[i]) and plain[i][j] == values[i][j]:
                    text_cells.append([i, j])
        return _restore_values(target, values, text_cells)

    async def _sheet(self, spreadsheet_id: str, sheet_id: int) -> SheetProperties:
        metadata = await self._resolver.metadata(spreadsheet_id, fresh=True)
        sheet = metadata.by_id(sheet_id)
        if sheet is None:
            raise SheetCoreError.of("NOT_FOUND", f"Sheet id {sheet_id} does not exist.")
        return sheet

    async def _append_target(
        self, spreadsheet_id: str, params: dict[str, Any]
    ) -> InverseStep:
        target: GridRange = params["range"]
        sheet_range = GridRange(sheet_id=target.sheet_id, sheet_name=target.sheet_name)
        existing = await self._values(spreadsheet_id, sheet_range)
        values: list[list[Any]] = params["values"]
        width = max((len(row) for row in values), default=1)
        start_column = target.start_column or 0
        appended = GridRange(
            sheet_id=target.sheet_id,
            sheet_name=target.sheet_name,
            start_row=len(existing),
            end_row=len(existing) + len(values),
            start_column=start_column,
            end_column=start_column + width,
        )
        return _append_inverse(appended, params)

    async def _find_replace(
        self, spreadsheet_id: str, params: dict[str, Any]
    ) -> list[InverseStep] | None:
        target = params.get("range")
        if target is None and params.get("sheet_id") is not None:
            target = GridRange(sheet_id=params["sheet_id"], sheet_name=params["sheet"])
        if target is None:
            return None
        return [await self._snapshot(spreadsheet_id, target)]

    async def _delete_sheet(self, spreadsheet_id: str, sheet_id: int) -> list[InverseStep]:
        sheet = await self._sheet(spreadsheet_id, sheet_id)
        whole = GridRange(sheet_id=sheet.sheet_id, sheet_name=sheet.title)
        restore = await self._snapshot(spreadsheet_id, whole)
        steps = [
            InverseStep(
                action="add_sheet",
                params={
                    "title": sheet.title,
                    "sheet_id": sheet.sheet_id,
                    "index": sheet.index,
                    "rows": sheet.row_count,
                    "columns": sheet.column_count,
                },
            ),
            restore,
        ]
        if sheet.frozen_rows or sheet.frozen_columns:
            steps.append(
                InverseStep(
                    action="freeze",
                    params={
                        "sheet_id": sheet.sheet_id,
                        "rows": sheet.frozen_rows,
                        "columns": sheet.frozen_columns,
                    },
                )
            )
        return steps

    async def _freeze(self, spreadsheet_id: str, params: dict[str, Any]) -> InverseStep:
        sheet = await self._sheet(spreadsheet_id, params["sheet_id"])
        restored: dict[str, Any] = {"sheet_id": sheet.sheet_id}
        if params.get("rows") is not None:
            restored["rows"] = sheet.frozen_rows
        if params.get("columns") is not None:
            restored["columns"] = sheet.frozen_columns
        return InverseStep(action="freeze", params=restored)

    async def _delete_dimension(
        self, spreadsheet_id: str, params: dict[str, Any]
    ) -> list[InverseStep]:
        sheet_name = params.get("sheet")
        if params["dimension"] == "ROWS":
            band = GridRange(
                sheet_id=params["sheet_id"],
                sheet_name=sheet_name,
                start_row=params["start_index"],
                end_row=params["end_index"],
            )
        else:
            band = GridRange(
                sheet_id=params["sheet_id"],
                sheet_name=sheet_name,
                start_column=params["start_index"],
                end_column=params["end_index"],
            )
        return [
            InverseStep(action="insert_dimension", params=_dimension(params)),
            await self._snapshot(spreadsheet_id, band),
        ]

    async def _formats(
        self, spreadsheet_id: str, action: str, params: dict[str, Any]
    ) -> list[InverseStep]:
        target: GridRange = params["range"]
        steps = [await self._format_step(spreadsheet_id, target)]
        if action == "apply_preset" and params["preset"] == "HEADER_ROW":
            if target.start_row in (None, 0) and target.end_row is not None:
                sheet = await self._sheet(spreadsheet_id, target.sheet_id or 0)
                steps.append(
                    InverseStep(
                        action="freeze",
                        params={"sheet_id": sheet.sheet_id, "rows": sheet.frozen_rows},
                    )
                )
        return steps

    async def _format_step(self, spreadsheet_id: str, target: GridRange) -> InverseStep:
        reply = await self._read(
            spreadsheet_id,
            {
                "call": "get_spreadsheet",
                "params": {
                    "ranges": [target.to_a1()],
                    "includeGridData": True,
                    "fields": FORMAT_CAPTURE_FIELDS,
                },
            },
        )
        formats: list[list[dict[str, Any]]] = []
        for sheet in reply.get("sheets", []):
            for data in sheet.get("data", []):
                for row in data.get("rowData", []):
                    formats.append(
                        [cell.get("userEnteredFormat", {}) for cell in row.get("values", [])]
                    )
        return InverseStep(
            action="restore_formats", params={"range": target, "formats": formats}
        )

    async def _merges(self, spreadsheet_id: str, target: GridRange) -> list[InverseStep]:
        reply = await self._read(
            spreadsheet_id,
            {"call": "get_spreadsheet", "params": {"fields": MERGE_CAPTURE_FIELDS}},
        )
        steps: list[InverseStep] = []
        for sheet in reply.get("sheets", []):
            for merge in sheet.get("merges", []):
                merged = _grid_range_from_api(merge, target.sheet_name)
                if merged.sheet_id == target.sheet_id and merged.intersects(target):
                    steps.append(
                        InverseStep(
                            action="merge_cells",
                            params={"range": merged, "merge_type": "MERGE_ALL"},
                        )
                    )
        return steps

    async def _named_range(
        self, spreadsheet_id: str, named_range_id: str
    ) -> list[InverseStep]:
        metadata = await self._resolver.metadata(spreadsheet_id, fresh=True)
        named = metadata.named_range(named_range_id)
        if named is None:
            raise SheetCoreError.of(
                "NOT_FOUND",
                f"Named range '{named_range_id}' does not exist.",
                field="params.named_range_id",
            )
        api_range = named.get("range", {})
        sheet = metadata.by_id(api_range.get("sheetId", 0))
        restored = _grid_range_from_api(api_range, sheet.title if sheet else None)
        return [
            InverseStep(
                action="add_named_range",
                params={
                    "name": named.get("name"),
                    "range": restored,
                    "named_range_id": named_range_id,
                },
            )
        ]


def _restore_values(
    target: GridRange,
    values: list[list[Any]],
    text_cells: list[list[int]] | None = None,
) -> InverseStep:
    params: dict[str, Any] = {"range": target, "values": values}
    if text_cells:
        params["text_cells"] = text_cells
    return InverseStep(action="restore_values", params=params)


def _append_inverse(appended: GridRange, params: dict[str, Any]) -> InverseStep:
    """Delete the rows an append inserted, or clear the cells it overwrote."""
    if params.get("insert_data_option", "INSERT_ROWS") != "INSERT_ROWS":
        return _restore_values(appended, [])
    return InverseStep(
        action="delete_dimension",
        params={
            "sheet_id": appended.sheet_id,
            "dimension": "ROWS",
            "start_index": appended.start_row or 0,
            "end_index": appended.end_row,
        },
    )


def _target_sheet(params: dict[str, Any]) -> int | None:
    target = params.get("range")
    if isinstance(target, GridRange):
        return target.sheet_id
    sheet_id = params.get("sheet_id")
    return sheet_id if isinstance(sheet_id, int) else None


def _empty_sheet_inverse(action: str, params: dict[str, Any]) -> list[InverseStep]:
    """Inverse for an operation on a sheet that was empty before the commit."""
    target = params.get("range")
    if not isinstance(target, GridRange):
        return []
    if action in ("write_range", "append_rows", "clear_range", "sort_range", "find_replace"):
        if action == "write_range":
            target = write_extent(target, params["values"])
        return [_restore_values(target, [])]
    if action in _FORMAT_ACTIONS:
        return [InverseStep(action="restore_formats", params={"range": target, "formats": []})]
    return []


def _dimension(params: dict[str, Any]) -> dict[str, Any]:
    return {
        "sheet_id": params["sheet_id"],
        "dimension": params["dimension"],
        "start_index": params["start_index"],
        "end_index": params["end_index"],
    }


def _reverse_move(params: dict[str, Any]) -> InverseStep:
    start, end = params["start_index"], params["end_index"]
    destination = params["destination_index"]
    span = end - start
    if destination > end:
        moved_start, target = destination - span, start
    else:
        moved_start, target = destination, end
    return InverseStep(
        action="move_dimension",
        params={
            "sheet_id": params["sheet_id"],
            "dimension": params["dimension"],
            "start_index": moved_start,
            "end_index": moved_start + span,
            "destination_index": target,
        },
    )


def _grid_range_from_api(payload: dict[str, Any], sheet_name: str | None) -> GridRange:
    return GridRange(
        sheet_id=payload.get("sheetId", 0),
        sheet_name=sheet_name,
        start_row=payload.get("startRowIndex"),
        end_row=payload.get("endRowIndex"),
        start_column=payload.get("startColumnIndex"),
        end_column=payload.get("endColumnIndex"),
    )


__all__ = ["InverseCapture"]
