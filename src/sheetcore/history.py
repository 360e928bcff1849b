from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import logging
import threading
import time
from typing import Literal

from .errors import SheetCoreError
from .ops.models import HistoryEntry, InverseStep, Operation

logger = logging.getLogger(__name__)

Direction = Literal["undo", "redo"]


@dataclass
class _Log:
    entries: list[HistoryEntry] = field(default_factory=list)
    cursor: int = 0
    next_sequence: int = 1


class HistoryEngine:
    """Per-spreadsheet linear history with a movable cursor.

    ``cursor`` counts applied entries. Entries at or past the cursor form the
    redo branch, which a new recording truncates. The log is a bounded ring:
    past ``capacity`` the oldest entries are dropped, which only reduces undo
    depth.
    """

    def __init__(
        self, *, capacity: int = 100, clock: Callable[[], float] = time.time
    ) -> None:
        if capacity < 1:
            raise ValueError("History capacity must be at least 1.")
        self.capacity = capacity
        self._clock = clock
        self._logs: dict[str, _Log] = {}
        self._lock = threading.Lock()

    def record(
        self,
        forward: Operation,
        inverse: list[InverseStep] | None,
        *,
        transaction_id: str | None = None,
    ) -> HistoryEntry:
        """Append an entry for a committed mutating operation."""
        with self._lock:
            log = self._logs.setdefault(forward.spreadsheet_id, _Log())
            if log.cursor < len(log.entries):
                dropped = len(log.entries) - log.cursor
                del log.entries[log.cursor :]
                logger.debug("Truncated %d redo entries.", dropped)
            entry = HistoryEntry(
                spreadsheet_id=forward.spreadsheet_id,
                sequence=log.next_sequence,
                forward=forward,
                inverse=inverse,
                transaction_id=transaction_id,
                created_at=self._clock(),
            )
            log.next_sequence += 1
            log.entries.append(entry)
            overflow = len(log.entries) - self.capacity
            if overflow > 0:
                del log.entries[:overflow]
            log.cursor = len(log.entries)
            return entry

    def next_undo(self, spreadsheet_id: str) -> HistoryEntry:
        """Return the entry an undo would reverse.

        Raises:
            SheetCoreError: ``NOT_FOUND`` when nothing is left to undo and
                ``VALIDATION`` when the entry is irreversible.
        """
        with self._lock:
            log = self._logs.get(spreadsheet_id)
            if log is None or log.cursor == 0:
                raise SheetCoreError.of(
                    "NOT_FOUND", f"Nothing to undo for spreadsheet {spreadsheet_id}."
                )
            entry = log.entries[log.cursor - 1]
        _require_reversible(entry)
        return entry

    def next_redo(self, spreadsheet_id: str) -> HistoryEntry:
        """Return the entry a redo would re-apply."""
        with self._lock:
            log = self._logs.get(spreadsheet_id)
            if log is None or log.cursor >= len(log.entries):
                raise SheetCoreError.of(
                    "NOT_FOUND", f"Nothing to redo for spreadsheet {spreadsheet_id}."
                )
            return log.entries[log.cursor]

    def plan_revert(
        self, spreadsheet_id: str, entry_id: str
    ) -> tuple[Direction, list[HistoryEntry]]:
        """Return the entries to undo or redo so ``entry_id`` is the last applied.

        Undo lists run newest first; redo lists run oldest first.
        """
        with self._lock:
            log = self._logs.get(spreadsheet_id)
            entries = log.entries if log is not None else []
            index = next(
                (i for i, item in enumerate(entries) if item.entry_id == entry_id),
                None,
            )
            if log is None or index is None:
                raise SheetCoreError.of(
                    "NOT_FOUND", f"History entry {entry_id} does not exist."
                )
            target_cursor = index + 1
            if target_cursor <= log.cursor:
                pending = list(reversed(entries[target_cursor : log.cursor]))
                direction: Direction = "undo"
            else:
                pending = list(entries[log.cursor : target_cursor])
                direction = "redo"
        if direction == "undo":
            for entry in pending:
                _require_reversible(entry)
        return direction, pending

    def move_cursor(self, spreadsheet_id: str, delta: int) -> int:
        """Shift the cursor after undo (negative) or redo (positive) succeeded."""
        with self._lock:
            log = self._logs.setdefault(spreadsheet_id, _Log())
            log.cursor = max(0, min(len(log.entries), log.cursor + delta))
            return log.cursor

    def cursor(self, spreadsheet_id: str) -> int:
        with self._lock:
            log = self._logs.get(spreadsheet_id)
            return 0 if log is None else log.cursor

    def list_entries(self, spreadsheet_id: str) -> list[HistoryEntry]:
        with self._lock:
            log = self._logs.get(spreadsheet_id)
            return list(log.entries) if log is not None else []

    def get_entry(self, spreadsheet_id: str, entry_id: str) -> HistoryEntry:
        for entry in self.list_entries(spreadsheet_id):
            if entry.entry_id == entry_id:
                return entry
        raise SheetCoreError.of("NOT_FOUND", f"History entry {entry_id} does not exist.")

    def clear(self, spreadsheet_id: str) -> None:
        with self._lock:
            self._logs.pop(spreadsheet_id, None)


def _require_reversible(entry: HistoryEntry) -> None:
    if entry.inverse is None:
        raise SheetCoreError.of(
            "VALIDATION",
            f"History entry {entry.entry_id} ({entry.forward.action}) is irreversible.",
            entry_id=entry.entry_id,
        )


__all__ = ["HistoryEngine"]
