from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
import hashlib
import json
import logging
from typing import Any, Final

from pydantic import BaseModel, Field

from .ops.models import ConflictCheck, GridRange, Operation
from .ops.specs import get_action_spec

logger = logging.getLogger(__name__)

RemoteReader = Callable[[str, dict[str, Any]], Awaitable[dict[str, Any]]]

REVISION_FIELDS: Final = "sheets.properties,namedRanges"
METADATA_SCOPE: Final = "<metadata>"


def compute_revision(payload: Any) -> str:
    """Return the SHA-256 revision of a JSON-like payload."""
    text = json.dumps(payload, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class ConflictOutcome(BaseModel):
    """Result of checking a set of writes against live revisions."""

    checks: list[ConflictCheck] = Field(default_factory=list)
    skipped: list[str] = Field(
        default_factory=list,
        description="Operation ids dropped by the keep_remote strategy.",
    )

    @property
    def conflicts(self) -> list[ConflictCheck]:
        return [
            check
            for check in self.checks
            if check.conflicted and check.operation_id not in self.skipped
        ]


class ConflictDetector:
    """Compare caller baselines with live range revisions before writing.

    A revision is the SHA-256 of the range's values read with
    ``valueRenderOption=FORMULA``. Operations without a target range are
    compared on the spreadsheet metadata revision.
    """

    def __init__(self, reader: RemoteReader) -> None:
        self._read = reader

    async def live_revision(self, spreadsheet_id: str, range_name: str | None) -> str:
        """Read the current revision of a range, or of the metadata when None."""
        if range_name is None or range_name == METADATA_SCOPE:
            reply = await self._read(
                spreadsheet_id,
                {"call": "get_spreadsheet", "params": {"fields": REVISION_FIELDS}},
            )
            return compute_revision(
                {
                    "sheets": reply.get("sheets", []),
                    "namedRanges": reply.get("namedRanges", []),
                }
            )
        reply = await self._read(
            spreadsheet_id,
            {
                "call": "values_get",
                "range": range_name,
                "params": {"valueRenderOption": "FORMULA", "majorDimension": "ROWS"},
            },
        )
        return compute_revision(reply.get("values", []))

    async def evaluate(self, operations: Sequence[Operation]) -> ConflictOutcome:
        """Check every mutating operation that carries a baseline revision.

        ``keep_local`` bypasses the check. ``keep_remote`` drops the write
        when its baseline is stale. ``manual`` reports the mismatch.
        """
        outcome = ConflictOutcome()
        revisions: dict[tuple[str, str], str] = {}
        for operation in operations:
            if not operation.is_mutating or operation.baseline_revision is None:
                continue
            if operation.conflict_resolution == "keep_local":
                continue
            scope = target_scope(operation)
            cache_key = (operation.spreadsheet_id, scope)
            if cache_key not in revisions:
                revisions[cache_key] = await self.live_revision(
                    operation.spreadsheet_id, scope
                )
            live = revisions[cache_key]
            conflicted = live != operation.baseline_revision
            outcome.checks.append(
                ConflictCheck(
                    operation_id=operation.id,
                    range=scope,
                    baseline_revision=operation.baseline_revision,
                    live_revision=live,
                    conflicted=conflicted,
                )
            )
            if not conflicted:
                continue
            if operation.conflict_resolution == "keep_remote":
                outcome.skipped.append(operation.id)
                logger.info(
                    "Dropping operation %s on %s: remote changed (keep_remote).",
                    operation.id,
                    scope,
                )
            else:
                logger.warning(
                    "Conflict on %s for operation %s: baseline %s, live %s.",
                    scope,
                    operation.id,
                    operation.baseline_revision[:12],
                    live[:12],
                )
        return outcome


def target_scope(operation: Operation) -> str:
    """Return the A1 range an operation's revision is taken on."""
    spec = get_action_spec(operation.action)
    if spec is None or spec.target_field != "range":
        return METADATA_SCOPE
    target = operation.params.get("range")
    if isinstance(target, GridRange) and target.sheet_name is not None:
        return target.to_a1()
    return METADATA_SCOPE


__all__ = [
    "ConflictDetector",
    "ConflictOutcome",
    "METADATA_SCOPE",
    "compute_revision",
    "target_scope",
]
