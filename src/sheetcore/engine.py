from __future__ import annotations

from collections.abc import Iterable, Sequence
import logging
from typing import Any, Final

import anyio

from .backend import CredentialProvider, SheetsBackend
from .cache import CacheKey, ReadCache
from .compiler import BatchCompiler, compile_operation, derive_id
from .compiler.requests import METADATA_FIELDS
from .config import CoreConfig
from .conflict import ConflictDetector
from .dispatcher import Dispatcher
from .errors import SheetCoreError
from .history import HistoryEngine
from .inverse import InverseCapture
from .metrics import CoreSnapshot, DispatchStats, OutcomeRecorder
from .ops import get_action_spec, normalize_operation
from .ops.models import (
    Batch,
    CompiledRequest,
    ConflictCheck,
    HistoryEntry,
    InverseStep,
    Operation,
    OperationResult,
    Transaction,
    serialize_request,
)
from .ops.types import BucketName, DiffMode
from .parser import ResponseParser
from .quota import QuotaManager
from .resolver import SheetResolver
from .transactions import TransactionManager

logger = logging.getLogger(__name__)

InverseMap = dict[str, list[InverseStep] | None]
LAYOUT_ACTIONS: Final = frozenset(
    {"add_sheet", "delete_sheet", "duplicate_sheet", "rename_sheet"}
)


class SheetCore:
    """Execution core for logical spreadsheet operations.

    Owns one instance of every component. Nothing is shared between
    instances, so tests and servers construct as many as they need.
    """

    def __init__(
        self,
        backend: SheetsBackend,
        config: CoreConfig | None = None,
        *,
        credentials: CredentialProvider | None = None,
    ) -> None:
        self.config = config or CoreConfig()
        cfg = self.config
        self.quota = QuotaManager(**cfg.quota.model_dump())
        self.cache = ReadCache(**cfg.cache.model_dump())
        self.dispatcher = Dispatcher(
            backend, credentials=credentials, **cfg.dispatch.model_dump()
        )
        self.batch_compiler = BatchCompiler(**cfg.batch.model_dump())
        self.parser = ResponseParser()
        self.resolver = SheetResolver(self._fetch_metadata)
        self.conflicts = ConflictDetector(self._read_remote)
        self.inverses = InverseCapture(self._read_remote, self.resolver)
        self.history = HistoryEngine(capacity=cfg.history.capacity)
        self.transactions = TransactionManager(
            self._run_commit, **cfg.transactions.model_dump()
        )
        self.recorder = OutcomeRecorder()
        self._waiting: dict[str, anyio.CancelScope] = {}
        self._pending: set[str] = set()
        self._cancelled: set[str] = set()

    async def execute(self, operation: Operation) -> OperationResult:
        """Run one operation and return its result."""
        results = await self.submit([operation])
        return results[0]

    async def submit(self, operations: Sequence[Operation]) -> list[OperationResult]:
        """Run a logical submission.

        Reads are served per call through the cache. Consecutive mutating
        operations on one spreadsheet are compiled together so batch-route
        requests share batches. Spreadsheets are processed concurrently,
        each in submission order.

        Returns:
            One result per input operation, in input order.
        """
        results: dict[str, OperationResult] = {}
        groups: dict[str, list[Operation]] = {}
        seen: set[str] = set()
        for operation in operations:
            if operation.id in seen:
                raise SheetCoreError.of(
                    "VALIDATION",
                    f"Duplicate operation id {operation.id} in submission.",
                    field="id",
                )
            seen.add(operation.id)
            try:
                normalized = self._accept(operation)
            except SheetCoreError as exc:
                results[operation.id] = OperationResult.failed(operation.id, exc.detail)
                continue
            if normalized.transaction_id is not None:
                results[operation.id] = await self._queue_result(normalized)
                continue
            groups.setdefault(normalized.spreadsheet_id, []).append(normalized)

        self._pending.update(op.id for group in groups.values() for op in group)
        try:
            if len(groups) == 1:
                results.update(await self._run_spreadsheet(*next(iter(groups.items()))))
            elif groups:
                async with anyio.create_task_group() as tg:
                    for spreadsheet_id, group in groups.items():
                        tg.start_soon(self._run_into, results, spreadsheet_id, group)
        finally:
            for group in groups.values():
                for operation in group:
                    self._pending.discard(operation.id)
                    self._cancelled.discard(operation.id)

        ordered = [results[operation.id] for operation in operations]
        self.recorder.record_results(ordered)
        return ordered

    def cancel(self, operation_id: str) -> bool:
        """Cancel an operation that has not been admitted for dispatch yet.

        Returns:
            True when the operation was still waiting and will fail with
            ``CANCELLED``; False when it is unknown or already dispatched.
        """
        scope = self._waiting.get(operation_id)
        if scope is not None:
            self._cancelled.add(operation_id)
            scope.cancel()
            logger.info("Cancelled operation %s while waiting for quota.", operation_id)
            return True
        if operation_id in self._pending:
            self._cancelled.add(operation_id)
            logger.info("Cancelled pending operation %s.", operation_id)
            return True
        return False

    async def live_revision(
        self, spreadsheet_id: str, range_name: str | None = None
    ) -> str:
        """Return the current revision of a range, or of the metadata."""
        return await self.conflicts.live_revision(spreadsheet_id, range_name)

    def snapshot(self) -> CoreSnapshot:
        """Return a read-only view for an external metrics emitter."""
        return CoreSnapshot(
            quota=self.quota.snapshot(),
            cache=self.cache.stats(),
            dispatch=DispatchStats(
                calls=self.dispatcher.calls,
                retries=self.dispatcher.retries,
                failures=dict(self.dispatcher.failures),
            ),
            batch_sizes=self.recorder.batch_sizes(),
            outcomes=self.recorder.outcomes(),
            open_transactions=self.transactions.open_count(),
        )

    async def begin(self, spreadsheet_id: str) -> Transaction:
        return await self.transactions.begin(spreadsheet_id)

    async def queue(self, transaction_id: str, operation: Operation) -> Transaction:
        """Validate an operation and queue it into an OPEN transaction."""
        normalized = self._accept(operation)
        return await self.transactions.queue(transaction_id, normalized)

    async def commit(self, transaction_id: str) -> list[OperationResult]:
        results = await self.transactions.commit(transaction_id)
        self.recorder.record_results(results)
        return results

    async def rollback(self, transaction_id: str) -> Transaction:
        return await self.transactions.rollback(transaction_id)

    def transaction_status(self, transaction_id: str) -> Transaction:
        return self.transactions.status(transaction_id)

    async def undo(self, spreadsheet_id: str) -> HistoryEntry:
        """Reverse the entry at the cursor and move the cursor back."""
        entry = self.history.next_undo(spreadsheet_id)
        await self._replay(spreadsheet_id, _inverse_operations(spreadsheet_id, [entry]))
        self.history.move_cursor(spreadsheet_id, -1)
        logger.info("Undid %s (%s).", entry.entry_id, entry.forward.action)
        return entry

    async def redo(self, spreadsheet_id: str) -> HistoryEntry:
        """Re-apply the entry after the cursor and move the cursor forward."""
        entry = self.history.next_redo(spreadsheet_id)
        await self._replay(spreadsheet_id, [entry.forward])
        self.history.move_cursor(spreadsheet_id, 1)
        logger.info("Redid %s (%s).", entry.entry_id, entry.forward.action)
        return entry

    async def revert_to(self, spreadsheet_id: str, entry_id: str) -> list[HistoryEntry]:
        """Move the history to just after ``entry_id`` in one atomic replay.

        Returns:
            Entries undone (newest first) or redone (oldest first).
        """
        direction, entries = self.history.plan_revert(spreadsheet_id, entry_id)
        if not entries:
            return []
        if direction == "undo":
            await self._replay(spreadsheet_id, _inverse_operations(spreadsheet_id, entries))
            self.history.move_cursor(spreadsheet_id, -len(entries))
        else:
            await self._replay(spreadsheet_id, [entry.forward for entry in entries])
            self.history.move_cursor(spreadsheet_id, len(entries))
        logger.info(
            "Reverted %s to entry %s (%s %d entries).",
            spreadsheet_id,
            entry_id,
            direction,
            len(entries),
        )
        return entries

    def list_history(self, spreadsheet_id: str) -> list[HistoryEntry]:
        return self.history.list_entries(spreadsheet_id)

    def history_entry(self, spreadsheet_id: str, entry_id: str) -> HistoryEntry:
        return self.history.get_entry(spreadsheet_id, entry_id)

    def clear_history(self, spreadsheet_id: str) -> None:
        self.history.clear(spreadsheet_id)

    def _accept(self, operation: Operation) -> Operation:
        spec = get_action_spec(operation.action)
        if spec is not None and spec.internal:
            raise SheetCoreError.of(
                "UNSUPPORTED_ACTION",
                f"Action {operation.action} is reserved for history replay.",
                field="action",
            )
        return normalize_operation(operation)

    async def _queue_result(self, operation: Operation) -> OperationResult:
        transaction_id = operation.transaction_id or ""
        try:
            transaction = await self.transactions.queue(transaction_id, operation)
        except SheetCoreError as exc:
            return OperationResult.failed(operation.id, exc.detail)
        return OperationResult.ok(
            operation.id,
            {
                "queued": True,
                "transaction_id": transaction_id,
                "position": len(transaction.operations) - 1,
            },
        )

    async def _run_into(
        self,
        results: dict[str, OperationResult],
        spreadsheet_id: str,
        operations: list[Operation],
    ) -> None:
        results.update(await self._run_spreadsheet(spreadsheet_id, operations))

    async def _run_spreadsheet(
        self, spreadsheet_id: str, operations: list[Operation]
    ) -> dict[str, OperationResult]:
        results: dict[str, OperationResult] = {}
        for is_read, run in _kind_runs(operations):
            if is_read:
                for operation in run:
                    results[operation.id] = await self._read(operation)
            else:
                for unit in _layout_units(run):
                    results.update(await self._mutate(spreadsheet_id, unit))
        return results

    async def _read(self, operation: Operation) -> OperationResult:
        try:
            request = compile_operation(operation)[0]
            key = CacheKey(
                operation.spreadsheet_id,
                serialize_request(request.request),
                _diff_mode(operation),
            )

            async def fetch() -> dict[str, Any]:
                if not await self._admit([operation.id], "read"):
                    raise _cancelled_error(operation.id)
                return await self.dispatcher.send_call(
                    operation.spreadsheet_id, request.request
                )

            reply, _ = await self.cache.get_or_fetch(key, fetch)
        except SheetCoreError as exc:
            return OperationResult.failed(operation.id, exc.detail)
        return self.parser.parse_call(request, reply)

    async def _mutate(
        self, spreadsheet_id: str, operations: list[Operation]
    ) -> dict[str, OperationResult]:
        """Apply independent mutating operations; each fails on its own."""
        results: dict[str, OperationResult] = {}
        resolved: list[Operation] = []
        try:
            items = await self.resolver.resolve_each(spreadsheet_id, operations)
            for operation, item in zip(operations, items, strict=True):
                if isinstance(item, SheetCoreError):
                    results[operation.id] = OperationResult.failed(operation.id, item.detail)
                else:
                    resolved.append(item)
            outcome = await self.conflicts.evaluate(resolved)
        except SheetCoreError as exc:
            return {op.id: OperationResult.failed(op.id, exc.detail) for op in operations}
        conflicted = {check.operation_id: check for check in outcome.conflicts}

        inverses: InverseMap = {}
        compiled: list[CompiledRequest] = []
        applied: list[Operation] = []
        created: set[int] = set()
        for operation in resolved:
            if operation.id in outcome.skipped:
                results[operation.id] = _skipped_result(operation.id)
                continue
            if operation.id in conflicted:
                error = _conflict_error([conflicted[operation.id]])
                results[operation.id] = OperationResult.failed(operation.id, error.detail)
                continue
            try:
                requests = compile_operation(operation)
                inverses[operation.id] = await self.inverses.capture(
                    operation, created_sheets=frozenset(created)
                )
            except SheetCoreError as exc:
                results[operation.id] = OperationResult.failed(operation.id, exc.detail)
                continue
            created.update(_created_sheet_ids(operation))
            compiled.extend(requests)
            applied.append(operation)

        dispatched: dict[str, OperationResult] = {}
        try:
            for route, run in _route_runs(compiled):
                if route == "values":
                    for request in run:
                        _merge(dispatched, await self._send_call(spreadsheet_id, request))
                    continue
                plan = self.batch_compiler.compile(spreadsheet_id, run)
                for op_id, detail in plan.rejected.items():
                    _merge(dispatched, OperationResult.failed(op_id, detail))
                for result in await self._send_batches(plan.batches):
                    _merge(dispatched, result)
        finally:
            if any(result.success for result in dispatched.values()):
                self.cache.invalidate(spreadsheet_id)

        for operation in applied:
            result = dispatched[operation.id]
            results[operation.id] = result
            if result.success and result.payload is not None:
                self._record(operation, inverses.get(operation.id), result.payload)
        return results

    async def _send_call(
        self, spreadsheet_id: str, request: CompiledRequest
    ) -> OperationResult:
        op_id = request.operation_id
        try:
            if not await self._admit([op_id], "write"):
                raise _cancelled_error(op_id)
            reply = await self.dispatcher.send_call(spreadsheet_id, request.request)
        except SheetCoreError as exc:
            return OperationResult.failed(op_id, exc.detail)
        return self.parser.parse_call(request, reply)

    async def _send_batches(self, batches: Iterable[Batch]) -> list[OperationResult]:
        """Send independent batches in order; a failed batch fails its operations."""
        results: list[OperationResult] = []
        for batch in batches:
            cancelled = [op for op in batch.operation_ids if op in self._cancelled]
            if cancelled:
                error = _cancelled_error(", ".join(cancelled)).detail
                results.extend(self.parser.fail_all(cancelled, error))
                remaining = [r for r in batch.requests if r.operation_id not in cancelled]
                plan = self.batch_compiler.compile(batch.spreadsheet_id, remaining)
                results.extend(await self._send_batches(plan.batches))
                continue
            try:
                if not await self._admit(batch.operation_ids, "write"):
                    # the cancelled id is now recorded; retry without it
                    results.extend(await self._send_batches([batch]))
                    continue
                reply = await self.dispatcher.send_batch(batch)
                results.extend(self.parser.parse_batch(batch, reply))
                self.recorder.record_batch(batch.size_bytes)
            except SheetCoreError as exc:
                results.extend(self.parser.fail_all(batch.operation_ids, exc.detail))
        return results

    async def _run_commit(self, transaction: Transaction) -> list[OperationResult]:
        """Commit runner handed to the transaction manager."""
        spreadsheet_id = transaction.spreadsheet_id
        ids = [operation.id for operation in transaction.operations]
        self._pending.update(ids)
        try:
            resolved = await self.resolver.resolve_many(
                spreadsheet_id, transaction.operations
            )
            outcome = await self.conflicts.evaluate(resolved)
            if outcome.conflicts:
                raise _conflict_error(outcome.conflicts)
            live = [op for op in resolved if op.id not in outcome.skipped]
            inverses = await self._capture_all(live)
            applied = await self._apply_atomic(spreadsheet_id, live, inverses)
        finally:
            for op_id in ids:
                self._pending.discard(op_id)
                self._cancelled.discard(op_id)

        results: list[OperationResult] = []
        for operation in resolved:
            if operation.id in outcome.skipped:
                results.append(_skipped_result(operation.id))
                continue
            result = applied[operation.id]
            results.append(result)
            if result.payload is not None:
                self._record(
                    operation,
                    inverses.get(operation.id),
                    result.payload,
                    transaction_id=transaction.id,
                )
        return results

    async def _capture_all(self, operations: list[Operation]) -> InverseMap:
        inverses: InverseMap = {}
        created: set[int] = set()
        for operation in operations:
            inverses[operation.id] = await self.inverses.capture(
                operation, created_sheets=frozenset(created)
            )
            created.update(_created_sheet_ids(operation))
        return inverses

    async def _apply_atomic(
        self,
        spreadsheet_id: str,
        operations: list[Operation],
        inverses: InverseMap | None,
    ) -> dict[str, OperationResult]:
        """Dispatch operations as one unit in transactional mode.

        Batches go out sequentially. When a later batch fails, earlier
        batches are compensated with ``inverses`` before the error is raised.

        Raises:
            SheetCoreError: The first failure; nothing of the unit remains
                applied unless compensation itself failed.
        """
        if not operations:
            return {}
        requests: list[CompiledRequest] = []
        for operation in operations:
            requests.extend(compile_operation(operation, transactional=True))
        plan = self.batch_compiler.compile(spreadsheet_id, requests)
        if plan.rejected:
            raise SheetCoreError(next(iter(plan.rejected.values())))

        results: dict[str, OperationResult] = {}
        sent: list[Batch] = []
        try:
            for batch in plan.batches:
                if not await self._admit(batch.operation_ids, "write"):
                    raise _cancelled_error(", ".join(batch.operation_ids))
                reply = await self.dispatcher.send_batch(batch)
                sent.append(batch)
                self.recorder.record_batch(batch.size_bytes)
                for result in self.parser.parse_batch(batch, reply):
                    if result.error is not None:
                        raise SheetCoreError(result.error)
                    _merge(results, result)
        except SheetCoreError:
            if sent:
                await self._compensate(spreadsheet_id, sent, operations, inverses)
            raise
        finally:
            if sent:
                self.cache.invalidate(spreadsheet_id)
        return results

    async def _compensate(
        self,
        spreadsheet_id: str,
        sent: list[Batch],
        operations: list[Operation],
        inverses: InverseMap | None,
    ) -> None:
        sent_ids = {op_id for batch in sent for op_id in batch.operation_ids}
        applied = [op for op in operations if op.id in sent_ids]
        logger.warning(
            "Compensating %d applied operations on %s after a failed batch.",
            len(applied),
            spreadsheet_id,
        )
        if inverses is None:
            logger.error("No inverses available to compensate %s.", spreadsheet_id)
            return
        steps: list[InverseStep] = []
        for operation in reversed(applied):
            inverse = inverses.get(operation.id)
            if inverse is None:
                logger.error(
                    "Operation %s (%s) is irreversible and stays applied.",
                    operation.id,
                    operation.action,
                )
                continue
            steps.extend(inverse)
        compensation = [
            Operation(spreadsheet_id=spreadsheet_id, action=step.action, params=step.params)
            for step in steps
        ]
        try:
            normalized = [normalize_operation(op) for op in compensation]
            resolved = await self.resolver.resolve_many(spreadsheet_id, normalized)
            requests: list[CompiledRequest] = []
            for operation in resolved:
                requests.extend(compile_operation(operation, transactional=True))
            for batch in self.batch_compiler.compile(spreadsheet_id, requests).batches:
                await self.quota.acquire("write")
                await self.dispatcher.send_batch(batch)
        except SheetCoreError as exc:
            logger.error("Compensation failed on %s: %s", spreadsheet_id, exc)

    async def _replay(self, spreadsheet_id: str, operations: list[Operation]) -> None:
        """Apply history steps through the transactional pipeline."""
        normalized = [normalize_operation(op) for op in operations]
        resolved = await self.resolver.resolve_many(spreadsheet_id, normalized)
        await self._apply_atomic(spreadsheet_id, resolved, None)

    def _record(
        self,
        operation: Operation,
        inverse: list[InverseStep] | None,
        payload: dict[str, Any],
        *,
        transaction_id: str | None = None,
    ) -> None:
        completed = self.inverses.complete(operation, inverse, payload)
        self.history.record(operation, completed, transaction_id=transaction_id)

    async def _admit(self, operation_ids: list[str], bucket: BucketName) -> bool:
        """Wait for one quota token; False when an operation was cancelled."""
        if any(op_id in self._cancelled for op_id in operation_ids):
            return False
        with anyio.CancelScope() as scope:
            for op_id in operation_ids:
                self._waiting[op_id] = scope
            try:
                await self.quota.acquire(bucket)
            finally:
                for op_id in operation_ids:
                    self._waiting.pop(op_id, None)
        return not scope.cancelled_caught

    async def _read_remote(
        self, spreadsheet_id: str, request: dict[str, Any]
    ) -> dict[str, Any]:
        await self.quota.acquire("read")
        return await self.dispatcher.send_call(spreadsheet_id, request)

    async def _fetch_metadata(self, spreadsheet_id: str, fresh: bool) -> dict[str, Any]:
        request = {"call": "get_spreadsheet", "params": {"fields": METADATA_FIELDS}}
        if fresh:
            return await self._read_remote(spreadsheet_id, request)
        key = CacheKey(spreadsheet_id, serialize_request(request), "metadata")
        value, _ = await self.cache.get_or_fetch(
            key, lambda: self._read_remote(spreadsheet_id, request)
        )
        return value


def _kind_runs(operations: list[Operation]) -> list[tuple[bool, list[Operation]]]:
    runs: list[tuple[bool, list[Operation]]] = []
    for operation in operations:
        is_read = not operation.is_mutating
        if runs and runs[-1][0] == is_read:
            runs[-1][1].append(operation)
        else:
            runs.append((is_read, [operation]))
    return runs


def _layout_units(operations: list[Operation]) -> list[list[Operation]]:
    """Split a mutating run after every sheet add, copy, rename or delete.

    Later operations are then resolved against metadata read after that
    change was applied or rejected.
    """
    units: list[list[Operation]] = [[]]
    for operation in operations:
        units[-1].append(operation)
        if operation.action in LAYOUT_ACTIONS:
            units.append([])
    return [unit for unit in units if unit]


def _route_runs(
    requests: list[CompiledRequest],
) -> list[tuple[str, list[CompiledRequest]]]:
    runs: list[tuple[str, list[CompiledRequest]]] = []
    for request in requests:
        if runs and runs[-1][0] == request.route:
            runs[-1][1].append(request)
        else:
            runs.append((request.route, [request]))
    return runs


def _merge(results: dict[str, OperationResult], result: OperationResult) -> None:
    """Merge per-batch results of an operation; a failure wins."""
    existing = results.get(result.operation_id)
    if existing is None or not result.success:
        if existing is None or existing.success:
            results[result.operation_id] = result
        return
    if existing.success and existing.payload is not None and result.payload is not None:
        results[result.operation_id] = OperationResult.ok(
            result.operation_id, {**existing.payload, **result.payload}
        )


def _created_sheet_ids(operation: Operation) -> set[int]:
    params = operation.params
    if operation.action == "add_sheet":
        sheet_id = params.get("sheet_id")
        return {sheet_id if sheet_id is not None else derive_id(operation.id, "sheet")}
    if operation.action == "duplicate_sheet":
        new_id = params.get("new_sheet_id")
        return {new_id if new_id is not None else derive_id(operation.id, "duplicate")}
    return set()


def _inverse_operations(
    spreadsheet_id: str, entries: list[HistoryEntry]
) -> list[Operation]:
    operations: list[Operation] = []
    for entry in entries:
        for step in entry.inverse or []:
            operations.append(
                Operation(
                    spreadsheet_id=spreadsheet_id,
                    action=step.action,
                    params=dict(step.params),
                )
            )
    return operations


def _diff_mode(operation: Operation) -> DiffMode:
    if operation.action == "get_spreadsheet":
        mode: DiffMode = operation.params.get("diff_mode", "metadata")
        return mode
    return "values"


def _skipped_result(operation_id: str) -> OperationResult:
    return OperationResult.ok(operation_id, {"skipped": True, "reason": "keep_remote"})


def _conflict_error(checks: list[ConflictCheck]) -> SheetCoreError:
    first = checks[0]
    return SheetCoreError.of(
        "CONFLICT",
        f"Range {first.range} changed since baseline {first.baseline_revision}.",
        live_revision=first.live_revision,
        operation_ids=[check.operation_id for check in checks],
        ranges=[check.range for check in checks],
    )


def _cancelled_error(operation_id: str) -> SheetCoreError:
    return SheetCoreError.of(
        "CANCELLED", f"Operation {operation_id} was cancelled before dispatch."
    )


__all__ = ["SheetCore"]
