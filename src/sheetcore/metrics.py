from __future__ import annotations

from collections import Counter, deque
import threading
from typing import Final

from pydantic import BaseModel, Field

from .cache import CacheStats
from .ops.models import OperationResult
from .quota import BucketSnapshot

RECENT_BATCHES: Final = 50


class DispatchStats(BaseModel):
    calls: int
    retries: int
    failures: dict[str, int] = Field(default_factory=dict)


class CoreSnapshot(BaseModel):
    """Read-only view of core state for an external metrics emitter."""

    quota: dict[str, BucketSnapshot]
    cache: CacheStats
    dispatch: DispatchStats
    batch_sizes: list[int] = Field(
        default_factory=list, description="Byte sizes of recently sent batches."
    )
    outcomes: dict[str, int] = Field(
        default_factory=dict,
        description="Operation counts by outcome: success or an error code.",
    )
    open_transactions: int = 0


class OutcomeRecorder:
    """Counts operation outcomes and remembers recent batch sizes."""

    def __init__(self, *, recent_batches: int = RECENT_BATCHES) -> None:
        self._outcomes: Counter[str] = Counter()
        self._batch_sizes: deque[int] = deque(maxlen=recent_batches)
        self._lock = threading.Lock()

    def record_results(self, results: list[OperationResult]) -> None:
        with self._lock:
            for result in results:
                if result.success:
                    self._outcomes["success"] += 1
                elif result.error is not None:
                    self._outcomes[result.error.code] += 1

    def record_batch(self, size_bytes: int) -> None:
        with self._lock:
            self._batch_sizes.append(size_bytes)

    def outcomes(self) -> dict[str, int]:
        with self._lock:
            return dict(self._outcomes)

    def batch_sizes(self) -> list[int]:
        with self._lock:
            return list(self._batch_sizes)


__all__ = ["CoreSnapshot", "DispatchStats", "OutcomeRecorder"]
