from __future__ import annotations

from collections.abc import Awaitable, Callable
import logging
import time

import anyio

from .errors import ErrorDetail, SheetCoreError
from .ops.models import Operation, OperationResult, Transaction

logger = logging.getLogger(__name__)

CommitRunner = Callable[[Transaction], Awaitable[list[OperationResult]]]


class TransactionManager:
    """Registry of client-side transactions with a per-id commit lock.

    The manager owns state transitions only. The mutation pipeline that
    actually applies a commit is injected as ``runner``; it must either
    return one result per queued operation or raise ``SheetCoreError``
    after leaving no remote effect.
    """

    def __init__(
        self,
        runner: CommitRunner,
        *,
        idle_ttl_seconds: float = 300.0,
        retention_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._runner = runner
        self.idle_ttl_seconds = idle_ttl_seconds
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._transactions: dict[str, Transaction] = {}
        self._locks: dict[str, anyio.Lock] = {}

    async def begin(self, spreadsheet_id: str) -> Transaction:
        """Create an OPEN transaction scoped to one spreadsheet."""
        self.expire_idle()
        now = self._clock()
        transaction = Transaction(
            spreadsheet_id=spreadsheet_id, created_at=now, last_activity_at=now
        )
        self._transactions[transaction.id] = transaction
        self._locks[transaction.id] = anyio.Lock()
        logger.debug("Opened transaction %s on %s.", transaction.id, spreadsheet_id)
        return transaction.model_copy()

    async def queue(self, transaction_id: str, operation: Operation) -> Transaction:
        """Append a mutating operation to an OPEN transaction.

        Raises:
            SheetCoreError: ``TRANSACTION_NOT_FOUND``, ``TRANSACTION_CLOSED``,
                ``TRANSACTION_EXPIRED``, or ``VALIDATION`` for reads and
                operations targeting another spreadsheet.
        """
        self.expire_idle()
        async with self._lock_for(transaction_id):
            transaction = self._require_open(transaction_id)
            if operation.spreadsheet_id != transaction.spreadsheet_id:
                raise SheetCoreError.of(
                    "VALIDATION",
                    (
                        f"Transaction {transaction_id} is scoped to "
                        f"{transaction.spreadsheet_id}, not {operation.spreadsheet_id}."
                    ),
                    field="spreadsheet_id",
                )
            if not operation.is_mutating:
                raise SheetCoreError.of(
                    "VALIDATION",
                    f"Transactions only accept mutating operations, got {operation.action}.",
                    field="action",
                )
            transaction.operations.append(
                operation.model_copy(update={"transaction_id": transaction_id})
            )
            transaction.last_activity_at = self._clock()
            return transaction.model_copy()

    async def commit(self, transaction_id: str) -> list[OperationResult]:
        """Apply every queued operation atomically.

        Returns:
            One result per queued operation in queue order. On failure every
            result carries the same error and the transaction is ABORTED.
        """
        self.expire_idle()
        async with self._lock_for(transaction_id):
            transaction = self._require_open(transaction_id)
            transaction.state = "COMMITTING"
            transaction.last_activity_at = self._clock()
            try:
                results = await self._runner(transaction)
            except SheetCoreError as exc:
                self._abort(transaction, exc.detail)
                logger.warning(
                    "Transaction %s aborted: %s %s",
                    transaction_id,
                    exc.code,
                    exc.detail.message,
                )
            except BaseException:
                self._abort(
                    transaction,
                    SheetCoreError.of("CANCELLED", "Commit was cancelled.").detail,
                )
                raise
            else:
                transaction.state = "COMMITTED"
                transaction.results = results
                logger.info(
                    "Committed transaction %s (%d operations).",
                    transaction_id,
                    len(transaction.operations),
                )
            finally:
                transaction.last_activity_at = self._clock()
            return list(transaction.results)

    async def rollback(self, transaction_id: str) -> Transaction:
        """Discard queued operations of an OPEN transaction."""
        self.expire_idle()
        async with self._lock_for(transaction_id):
            transaction = self._require_open(transaction_id)
            transaction.operations.clear()
            transaction.state = "ROLLED_BACK"
            transaction.last_activity_at = self._clock()
            logger.info("Rolled back transaction %s.", transaction_id)
            return transaction.model_copy()

    def status(self, transaction_id: str) -> Transaction:
        self.expire_idle()
        return self._get(transaction_id).model_copy()

    def open_count(self) -> int:
        return sum(1 for item in self._transactions.values() if item.state == "OPEN")

    def expire_idle(self) -> list[str]:
        """Abort idle OPEN transactions and forget old terminal ones.

        Returns:
            Ids of transactions aborted by this sweep.
        """
        now = self._clock()
        expired: list[str] = []
        for transaction_id, transaction in list(self._transactions.items()):
            idle = now - transaction.last_activity_at
            if transaction.state == "OPEN" and idle > self.idle_ttl_seconds:
                error = SheetCoreError.of(
                    "TRANSACTION_EXPIRED",
                    f"Transaction {transaction_id} expired after {idle:.0f}s idle.",
                ).detail
                self._abort(transaction, error)
                expired.append(transaction_id)
                logger.info("Expired idle transaction %s.", transaction_id)
            elif transaction.is_terminal and idle > self.retention_seconds:
                del self._transactions[transaction_id]
                self._locks.pop(transaction_id, None)
        return expired

    def _get(self, transaction_id: str) -> Transaction:
        transaction = self._transactions.get(transaction_id)
        if transaction is None:
            raise SheetCoreError.of(
                "TRANSACTION_NOT_FOUND", f"Transaction {transaction_id} does not exist."
            )
        return transaction

    def _lock_for(self, transaction_id: str) -> anyio.Lock:
        self._get(transaction_id)
        return self._locks[transaction_id]

    def _require_open(self, transaction_id: str) -> Transaction:
        transaction = self._get(transaction_id)
        if transaction.state == "OPEN":
            return transaction
        if transaction.error is not None and transaction.error.code == "TRANSACTION_EXPIRED":
            raise SheetCoreError.of(
                "TRANSACTION_EXPIRED", f"Transaction {transaction_id} has expired."
            )
        raise SheetCoreError.of(
            "TRANSACTION_CLOSED",
            f"Transaction {transaction_id} is {transaction.state}.",
            state=transaction.state,
        )

    def _abort(self, transaction: Transaction, error: ErrorDetail) -> None:
        transaction.state = "ABORTED"
        transaction.error = error
        transaction.results = [
            OperationResult.failed(operation.id, error)
            for operation in transaction.operations
        ]


__all__ = ["CommitRunner", "TransactionManager"]
