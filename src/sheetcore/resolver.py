from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
import logging
from typing import Any

from pydantic import BaseModel, Field

from .compiler.requests import derive_id
from .errors import SheetCoreError
from .ops.models import GridRange, Operation
from .ops.specs import get_action_spec

logger = logging.getLogger(__name__)

MetadataFetcher = Callable[[str, bool], Awaitable[dict[str, Any]]]


class SheetProperties(BaseModel):
    """Subset of native SheetProperties the core relies on."""

    sheet_id: int
    title: str
    index: int = 0
    row_count: int = 1000
    column_count: int = 26
    frozen_rows: int = 0
    frozen_columns: int = 0

    @classmethod
    def from_api(cls, properties: dict[str, Any]) -> SheetProperties:
        grid = properties.get("gridProperties", {})
        return cls(
            sheet_id=properties.get("sheetId", 0),
            title=properties.get("title", ""),
            index=properties.get("index", 0),
            row_count=grid.get("rowCount", 1000),
            column_count=grid.get("columnCount", 26),
            frozen_rows=grid.get("frozenRowCount", 0),
            frozen_columns=grid.get("frozenColumnCount", 0),
        )


class SpreadsheetMetadata(BaseModel):
    """Sheets and named ranges of one spreadsheet."""

    spreadsheet_id: str
    sheets: list[SheetProperties] = Field(default_factory=list)
    named_ranges: list[dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_api(cls, spreadsheet_id: str, reply: dict[str, Any]) -> SpreadsheetMetadata:
        return cls(
            spreadsheet_id=spreadsheet_id,
            sheets=[
                SheetProperties.from_api(sheet.get("properties", {}))
                for sheet in reply.get("sheets", [])
            ],
            named_ranges=list(reply.get("namedRanges", [])),
        )

    def by_title(self, title: str) -> SheetProperties | None:
        for sheet in self.sheets:
            if sheet.title == title:
                return sheet
        return None

    def by_id(self, sheet_id: int) -> SheetProperties | None:
        for sheet in self.sheets:
            if sheet.sheet_id == sheet_id:
                return sheet
        return None

    def named_range(self, named_range_id: str) -> dict[str, Any] | None:
        for item in self.named_ranges:
            if item.get("namedRangeId") == named_range_id:
                return item
        return None


class _SheetIndex:
    """Title/id lookup over metadata plus sheets created earlier in a batch."""

    def __init__(self, metadata: SpreadsheetMetadata) -> None:
        self.by_title: dict[str, int] = {s.title: s.sheet_id for s in metadata.sheets}
        self.by_id: dict[int, str] = {s.sheet_id: s.title for s in metadata.sheets}
        ordered = sorted(metadata.sheets, key=lambda s: s.index)
        self.first: tuple[int, str] | None = (
            (ordered[0].sheet_id, ordered[0].title) if ordered else None
        )

    def add(self, sheet_id: int, title: str) -> None:
        self.by_title[title] = sheet_id
        self.by_id[sheet_id] = title

    def remove(self, sheet_id: int) -> None:
        title = self.by_id.pop(sheet_id, None)
        if title is not None:
            self.by_title.pop(title, None)

    def rename(self, sheet_id: int, title: str) -> None:
        self.remove(sheet_id)
        self.add(sheet_id, title)


class SheetResolver:
    """Bind sheet titles in operation params to numeric sheetIds."""

    def __init__(self, fetch_metadata: MetadataFetcher) -> None:
        self._fetch = fetch_metadata

    async def metadata(
        self, spreadsheet_id: str, *, fresh: bool = False
    ) -> SpreadsheetMetadata:
        """Return spreadsheet metadata, served from the read cache unless ``fresh``."""
        reply = await self._fetch(spreadsheet_id, fresh)
        return SpreadsheetMetadata.from_api(spreadsheet_id, reply)

    async def resolve_many(
        self, spreadsheet_id: str, operations: Sequence[Operation]
    ) -> list[Operation]:
        """Resolve operations in order.

        Sheets added, duplicated, renamed or deleted by an earlier operation
        are visible to later ones, so a queued transaction can write to a
        sheet it creates.

        Raises:
            SheetCoreError: ``NOT_FOUND`` for unknown sheet titles or ids.
        """
        resolved: list[Operation] = []
        for item in await self.resolve_each(spreadsheet_id, operations):
            if isinstance(item, SheetCoreError):
                raise item
            resolved.append(item)
        return resolved

    async def resolve_each(
        self, spreadsheet_id: str, operations: Sequence[Operation]
    ) -> list[Operation | SheetCoreError]:
        """Resolve operations in order, returning per-operation failures.

        A failed operation does not update the sheet overlay, so later
        operations see the sheets as they would remotely.
        """
        if not any(_needs_sheets(op) for op in operations):
            return list(operations)
        index = _SheetIndex(await self.metadata(spreadsheet_id))
        resolved: list[Operation | SheetCoreError] = []
        for operation in operations:
            try:
                params = self._resolve_params(operation, index)
            except SheetCoreError as exc:
                resolved.append(exc)
                continue
            resolved.append(operation.model_copy(update={"params": params}))
            self._track(operation, params, index)
        return resolved

    def _resolve_params(
        self, operation: Operation, index: _SheetIndex
    ) -> dict[str, Any]:
        spec = get_action_spec(operation.action)
        if spec is None:
            return dict(operation.params)
        params = dict(operation.params)
        for name in spec.range_fields:
            value = params.get(name)
            if isinstance(value, GridRange):
                params[name] = self._bind_range(value, index, field=f"params.{name}")
        if spec.sheet_fields:
            optional = operation.action == "find_replace"
            sheet_title = params.pop("sheet", None)
            sheet_id = params.get("sheet_id")
            if sheet_title is None and sheet_id is None and optional:
                return params
            sheet_id, title = self._lookup(index, sheet_title, sheet_id, "params.sheet")
            params["sheet_id"] = sheet_id
            params["sheet"] = title
        return params

    def _bind_range(
        self, value: GridRange, index: _SheetIndex, *, field: str
    ) -> GridRange:
        sheet_id, title = self._lookup(index, value.sheet_name, value.sheet_id, field)
        return value.with_sheet(sheet_id, title)

    def _lookup(
        self,
        index: _SheetIndex,
        title: str | None,
        sheet_id: int | None,
        field: str,
    ) -> tuple[int, str]:
        if sheet_id is not None:
            found = index.by_id.get(sheet_id)
            if found is None:
                raise SheetCoreError.of(
                    "NOT_FOUND", f"Sheet id {sheet_id} does not exist.", field=field
                )
            return sheet_id, found
        if title is not None:
            found_id = index.by_title.get(title)
            if found_id is None:
                raise SheetCoreError.of(
                    "NOT_FOUND", f"Sheet '{title}' does not exist.", field=field
                )
            return found_id, title
        if index.first is None:
            raise SheetCoreError.of("NOT_FOUND", "Spreadsheet has no sheets.", field=field)
        return index.first

    def _track(
        self, operation: Operation, params: dict[str, Any], index: _SheetIndex
    ) -> None:
        action = operation.action
        if action == "add_sheet":
            sheet_id = params.get("sheet_id")
            if sheet_id is None:
                sheet_id = derive_id(operation.id, "sheet")
            index.add(sheet_id, params["title"])
        elif action == "duplicate_sheet":
            new_id = params.get("new_sheet_id")
            if new_id is None:
                new_id = derive_id(operation.id, "duplicate")
            title = params.get("new_title") or f"Copy of {params['sheet']}"
            index.add(new_id, title)
        elif action == "rename_sheet":
            index.rename(params["sheet_id"], params["title"])
        elif action == "delete_sheet":
            index.remove(params["sheet_id"])


def _needs_sheets(operation: Operation) -> bool:
    spec = get_action_spec(operation.action)
    if spec is None or spec.kind == "read":
        return False
    return bool(spec.range_fields or spec.sheet_fields)


__all__ = ["SheetProperties", "SheetResolver", "SpreadsheetMetadata"]
