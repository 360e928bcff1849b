from __future__ import annotations

from collections.abc import Callable, Sequence
import logging
from typing import Any, Final

from .errors import ErrorDetail, SheetCoreError
from .ops.models import Batch, CompiledRequest, OperationResult

logger = logging.getLogger(__name__)

Extractor = Callable[[dict[str, Any]], dict[str, Any]]


def _sheet_properties(reply: dict[str, Any]) -> dict[str, Any]:
    properties = reply.get("properties", {})
    grid = properties.get("gridProperties", {})
    return {
        "sheetId": properties.get("sheetId"),
        "title": properties.get("title"),
        "index": properties.get("index"),
        "rowCount": grid.get("rowCount", 0),
        "columnCount": grid.get("columnCount", 0),
    }


def _find_replace(reply: dict[str, Any]) -> dict[str, Any]:
    return {
        "occurrencesChanged": reply.get("occurrencesChanged", 0),
        "valuesChanged": reply.get("valuesChanged", 0),
        "formulasChanged": reply.get("formulasChanged", 0),
        "rowsChanged": reply.get("rowsChanged", 0),
        "sheetsChanged": reply.get("sheetsChanged", 0),
    }


def _named_range(reply: dict[str, Any]) -> dict[str, Any]:
    named = reply.get("namedRange", {})
    return {"namedRangeId": named.get("namedRangeId"), "name": named.get("name")}


def _conditional_rule(reply: dict[str, Any]) -> dict[str, Any]:
    return {
        "index": reply.get("newIndex", reply.get("oldIndex", 0)),
        "rule": reply.get("newRule") or reply.get("rule"),
    }


def _deleted_rule(reply: dict[str, Any]) -> dict[str, Any]:
    return {"rule": reply.get("rule")}


def _filter_view(reply: dict[str, Any]) -> dict[str, Any]:
    view = reply.get("filter", {})
    return {"filterViewId": view.get("filterViewId"), "title": view.get("title")}


def _chart(reply: dict[str, Any]) -> dict[str, Any]:
    chart = reply.get("chart", {})
    return {"chartId": chart.get("chartId")}


def _banding(reply: dict[str, Any]) -> dict[str, Any]:
    return {"bandedRangeId": reply.get("bandedRange", {}).get("bandedRangeId")}


def _protected_range(reply: dict[str, Any]) -> dict[str, Any]:
    protected = reply.get("protectedRange", {})
    return {"protectedRangeId": protected.get("protectedRangeId")}


def _trim_whitespace(reply: dict[str, Any]) -> dict[str, Any]:
    return {"cellsChanged": reply.get("cellsChangedCount", 0)}


def _delete_duplicates(reply: dict[str, Any]) -> dict[str, Any]:
    return {"duplicatesRemoved": reply.get("duplicatesRemovedCount", 0)}


def _dimension_groups(reply: dict[str, Any]) -> dict[str, Any]:
    return {"dimensionGroupDepth": len(reply.get("dimensionGroups", []))}


def _values_update(reply: dict[str, Any]) -> dict[str, Any]:
    return {
        "updatedRange": reply.get("updatedRange"),
        "updatedRows": reply.get("updatedRows"),
        "updatedColumns": reply.get("updatedColumns"),
        "updatedCells": reply.get("updatedCells"),
    }


def _values_append(reply: dict[str, Any]) -> dict[str, Any]:
    payload = _values_update(reply.get("updates", {}))
    payload["tableRange"] = reply.get("tableRange")
    payload["appendedRows"] = payload["updatedRows"]
    return payload


def _values_clear(reply: dict[str, Any]) -> dict[str, Any]:
    return {"clearedRange": reply.get("clearedRange")}


def _values_get(reply: dict[str, Any]) -> dict[str, Any]:
    return {
        "range": reply.get("range"),
        "majorDimension": reply.get("majorDimension", "ROWS"),
        "values": reply.get("values", []),
    }


def _values_batch_get(reply: dict[str, Any]) -> dict[str, Any]:
    return {"valueRanges": [_values_get(item) for item in reply.get("valueRanges", [])]}


def _spreadsheet(reply: dict[str, Any]) -> dict[str, Any]:
    return {
        "spreadsheetId": reply.get("spreadsheetId"),
        "properties": reply.get("properties", {}),
        "sheets": reply.get("sheets", []),
        "namedRanges": reply.get("namedRanges", []),
    }


BATCH_REPLY_EXTRACTORS: Final[dict[str, Extractor]] = {
    "addSheet": _sheet_properties,
    "duplicateSheet": _sheet_properties,
    "findReplace": _find_replace,
    "addNamedRange": _named_range,
    "addConditionalFormatRule": _conditional_rule,
    "updateConditionalFormatRule": _conditional_rule,
    "deleteConditionalFormatRule": _deleted_rule,
    "addFilterView": _filter_view,
    "duplicateFilterView": _filter_view,
    "addChart": _chart,
    "addBanding": _banding,
    "addProtectedRange": _protected_range,
    "trimWhitespace": _trim_whitespace,
    "deleteDuplicates": _delete_duplicates,
    "addDimensionGroup": _dimension_groups,
    "deleteDimensionGroup": _dimension_groups,
}

VALUES_REPLY_EXTRACTORS: Final[dict[str, Extractor]] = {
    "values_update": _values_update,
    "values_append": _values_append,
    "values_clear": _values_clear,
    "values_get": _values_get,
    "values_batch_get": _values_batch_get,
    "get_spreadsheet": _spreadsheet,
}


class ResponseParser:
    """Map remote replies back to one OperationResult per operation."""

    def parse_batch(self, batch: Batch, reply: dict[str, Any]) -> list[OperationResult]:
        """Parse a batchUpdate reply positionally against ``batch``.

        Raises:
            SheetCoreError: ``INTERNAL`` when the reply array length does not
                match the request list; the whole batch is then failed.
        """
        replies = reply.get("replies", [])
        if not isinstance(replies, list) or len(replies) != len(batch.requests):
            count = len(replies) if isinstance(replies, list) else 0
            logger.error(
                "Reply count %d does not match %d requests in batch.",
                count,
                len(batch.requests),
            )
            raise SheetCoreError.of(
                "INTERNAL",
                f"Batch reply has {count} entries for {len(batch.requests)} requests.",
            )
        return self._collect(list(zip(batch.requests, replies, strict=True)))

    def parse_call(
        self, request: CompiledRequest, reply: dict[str, Any]
    ) -> OperationResult:
        """Parse the reply of one standalone values-route call."""
        extractor = VALUES_REPLY_EXTRACTORS.get(request.reply_key)
        if extractor is None:
            return self._fail_closed(request.operation_id, request.reply_key)
        payload = {**request.facts, **_drop_none(extractor(reply))}
        return OperationResult.ok(request.operation_id, payload)

    def fail_all(
        self, operation_ids: Sequence[str], error: ErrorDetail
    ) -> list[OperationResult]:
        """Fail every operation with the same classified error."""
        return [OperationResult.failed(op_id, error) for op_id in operation_ids]

    def _collect(
        self, pairs: list[tuple[CompiledRequest, Any]]
    ) -> list[OperationResult]:
        payloads: dict[str, dict[str, Any]] = {}
        failures: dict[str, OperationResult] = {}
        for request, item in pairs:
            op_id = request.operation_id
            payloads.setdefault(op_id, {})
            if op_id in failures:
                continue
            extracted = self._extract(request, item if isinstance(item, dict) else {})
            if extracted is None:
                failures[op_id] = self._fail_closed(op_id, _reply_key(item))
                continue
            payloads[op_id].update(extracted)
        results: list[OperationResult] = []
        for op_id, payload in payloads.items():
            if op_id in failures:
                results.append(failures[op_id])
            else:
                results.append(OperationResult.ok(op_id, payload))
        return results

    def _extract(
        self, request: CompiledRequest, item: dict[str, Any]
    ) -> dict[str, Any] | None:
        if not item:
            return {"applied": True, **request.facts}
        key = _reply_key(item)
        extractor = BATCH_REPLY_EXTRACTORS.get(key)
        if extractor is None:
            return None
        body = item[key] if isinstance(item[key], dict) else {}
        return {"applied": True, **request.facts, **_drop_none(extractor(body))}

    def _fail_closed(self, operation_id: str, key: str) -> OperationResult:
        logger.error("Unrecognized reply shape '%s' for operation %s.", key, operation_id)
        error = SheetCoreError.of(
            "INTERNAL", f"Unrecognized reply shape: {key}", reply_key=key
        ).detail
        return OperationResult.failed(operation_id, error)


def _reply_key(item: Any) -> str:
    if isinstance(item, dict) and item:
        return next(iter(item))
    return "<empty>"


def _drop_none(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}


__all__ = [
    "BATCH_REPLY_EXTRACTORS",
    "ResponseParser",
    "VALUES_REPLY_EXTRACTORS",
]
