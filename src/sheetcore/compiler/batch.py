from __future__ import annotations

from collections.abc import Sequence
import logging
from typing import Final

from pydantic import BaseModel, Field

from ..errors import ErrorDetail, SheetCoreError
from ..ops.models import Batch, CompiledRequest

logger = logging.getLogger(__name__)

MAX_BATCH_BYTES: Final = 9_000_000
WARNING_BATCH_BYTES: Final = 7_000_000
MAX_BATCH_REQUESTS: Final = 1000
# len('{"requests":[]}')
ENVELOPE_BYTES: Final = 15


class BatchPlan(BaseModel):
    """Compiled dispatch plan for one spreadsheet."""

    spreadsheet_id: str
    batches: list[Batch] = Field(default_factory=list)
    standalone: list[CompiledRequest] = Field(default_factory=list)
    rejected: dict[str, ErrorDetail] = Field(default_factory=dict)

    @property
    def batch_sizes(self) -> list[int]:
        return [batch.size_bytes for batch in self.batches]


class BatchCompiler:
    """Pack batch-route requests into size-bounded batches without reordering."""

    def __init__(
        self,
        *,
        max_batch_bytes: int = MAX_BATCH_BYTES,
        max_batch_requests: int = MAX_BATCH_REQUESTS,
        warning_bytes: int = WARNING_BATCH_BYTES,
    ) -> None:
        if max_batch_bytes <= ENVELOPE_BYTES:
            raise ValueError("max_batch_bytes must exceed the envelope size.")
        self.max_batch_bytes = max_batch_bytes
        self.max_batch_requests = max_batch_requests
        self.warning_bytes = warning_bytes

    def compile(
        self, spreadsheet_id: str, requests: Sequence[CompiledRequest]
    ) -> BatchPlan:
        """Split an ordered request stream into batches.

        Args:
            spreadsheet_id: Spreadsheet every request targets.
            requests: Compiled requests in submission order.

        Returns:
            Plan with sealed batches in order, values-route calls kept as
            standalone calls, and operations rejected with
            ``PAYLOAD_TOO_LARGE``. Every request of a rejected operation is
            withheld so no partial operation is sent.
        """
        plan = BatchPlan(spreadsheet_id=spreadsheet_id)
        sizes: list[int] = []
        for item in requests:
            size = item.size_bytes
            sizes.append(size)
            if item.route == "batch" and size + ENVELOPE_BYTES > self.max_batch_bytes:
                if item.operation_id not in plan.rejected:
                    plan.rejected[item.operation_id] = SheetCoreError.of(
                        "PAYLOAD_TOO_LARGE",
                        (
                            f"Request of {size} bytes exceeds the "
                            f"{self.max_batch_bytes} byte batch ceiling."
                        ),
                        size_bytes=size,
                        limit_bytes=self.max_batch_bytes,
                    ).detail
                    logger.warning(
                        "Rejected oversized request for operation %s (%d bytes).",
                        item.operation_id,
                        size,
                    )

        current: list[CompiledRequest] = []
        current_size = ENVELOPE_BYTES
        for item, size in zip(requests, sizes, strict=True):
            if item.operation_id in plan.rejected:
                continue
            if item.route == "values":
                plan.standalone.append(item)
                continue
            extra = size + (1 if current else 0)
            if current and (
                current_size + extra > self.max_batch_bytes
                or len(current) >= self.max_batch_requests
            ):
                plan.batches.append(self._seal(spreadsheet_id, current, current_size))
                current, current_size = [], ENVELOPE_BYTES
                extra = size
            current.append(item)
            current_size += extra
        if current:
            plan.batches.append(self._seal(spreadsheet_id, current, current_size))
        return plan

    def _seal(
        self, spreadsheet_id: str, requests: list[CompiledRequest], size: int
    ) -> Batch:
        if size > self.warning_bytes:
            logger.warning(
                "Batch payload approaching limit: %d of %d bytes.",
                size,
                self.max_batch_bytes,
            )
        logger.debug("Sealed batch of %d requests (%d bytes).", len(requests), size)
        return Batch(spreadsheet_id=spreadsheet_id, requests=requests, size_bytes=size)


__all__ = [
    "BatchCompiler",
    "BatchPlan",
    "ENVELOPE_BYTES",
    "MAX_BATCH_BYTES",
    "MAX_BATCH_REQUESTS",
]
