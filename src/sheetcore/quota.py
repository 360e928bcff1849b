from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import logging
import threading
import time

import anyio
from pydantic import BaseModel

from .errors import SheetCoreError
from .ops.types import BucketName, QuotaPolicy

logger = logging.getLogger(__name__)


@dataclass
class QuotaBucket:
    """Token bucket refilled lazily from elapsed time.

    Refill is ``capacity / window_seconds`` tokens per second, capped at
    ``capacity``. No background timer is involved.
    """

    name: BucketName
    capacity: int
    window_seconds: float
    tokens: float = field(init=False)
    last_refill: float = field(init=False)
    granted: int = field(default=0, init=False)
    rejected: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        if self.capacity <= 0 or self.window_seconds <= 0:
            raise ValueError("Bucket capacity and window must be positive.")
        self.tokens = float(self.capacity)
        self.last_refill = 0.0

    @property
    def rate(self) -> float:
        """Tokens refilled per second."""
        return self.capacity / self.window_seconds

    def refill(self, now: float) -> None:
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(float(self.capacity), self.tokens + elapsed * self.rate)
        self.last_refill = now

    def wait_time(self, cost: int) -> float:
        """Seconds until ``cost`` tokens are available."""
        return max(0.0, (cost - self.tokens) / self.rate)


class QuotaGrant(BaseModel):
    """Admission granted by the quota manager."""

    bucket: BucketName
    cost: int
    waited_seconds: float = 0.0
    remaining: float


class BucketSnapshot(BaseModel):
    """Read-only view of one bucket."""

    name: BucketName
    capacity: int
    tokens: float
    window_seconds: float
    granted: int
    rejected: int


class QuotaManager:
    """Admission control over separate read and write token buckets."""

    def __init__(
        self,
        *,
        read_capacity: int = 300,
        read_window_seconds: float = 60.0,
        write_capacity: int = 60,
        write_window_seconds: float = 60.0,
        policy: QuotaPolicy = "block",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy: QuotaPolicy = policy
        self._clock = clock
        self._lock = threading.Lock()
        now = clock()
        self._buckets: dict[BucketName, QuotaBucket] = {
            "read": QuotaBucket("read", read_capacity, read_window_seconds),
            "write": QuotaBucket("write", write_capacity, write_window_seconds),
        }
        for bucket in self._buckets.values():
            bucket.last_refill = now

    def try_acquire(self, bucket_name: BucketName, cost: int = 1) -> float:
        """Atomically take ``cost`` tokens.

        Returns:
            0.0 when granted, otherwise the seconds until enough tokens refill.

        Raises:
            SheetCoreError: ``RATE_LIMIT_EXCEEDED`` when ``cost`` exceeds the
                bucket capacity and can never be satisfied.
        """
        bucket = self._buckets[bucket_name]
        if cost > bucket.capacity:
            with self._lock:
                bucket.rejected += 1
            raise SheetCoreError.of(
                "RATE_LIMIT_EXCEEDED",
                f"Cost {cost} exceeds {bucket_name} bucket capacity {bucket.capacity}.",
                bucket=bucket_name,
                cost=cost,
            )
        with self._lock:
            bucket.refill(self._clock())
            if bucket.tokens >= cost:
                bucket.tokens -= cost
                bucket.granted += cost
                return 0.0
            return bucket.wait_time(cost)

    async def acquire(
        self,
        bucket_name: BucketName,
        cost: int = 1,
        *,
        policy: QuotaPolicy | None = None,
    ) -> QuotaGrant:
        """Acquire ``cost`` tokens from one bucket.

        Args:
            bucket_name: ``read`` or ``write``.
            cost: Tokens to take.
            policy: Overrides the manager policy for this call.

        Returns:
            Grant with the time spent waiting.

        Raises:
            SheetCoreError: ``RATE_LIMIT_EXCEEDED`` under the ``fail_fast``
                policy, with ``retry_after`` seconds in its details.
        """
        if cost <= 0:
            raise ValueError("cost must be positive.")
        effective = policy or self.policy
        waited = 0.0
        while True:
            wait = self.try_acquire(bucket_name, cost)
            if wait == 0.0:
                remaining = self._buckets[bucket_name].tokens
                return QuotaGrant(
                    bucket=bucket_name,
                    cost=cost,
                    waited_seconds=waited,
                    remaining=remaining,
                )
            if effective == "fail_fast":
                with self._lock:
                    self._buckets[bucket_name].rejected += 1
                raise SheetCoreError.of(
                    "RATE_LIMIT_EXCEEDED",
                    f"{bucket_name} quota exhausted; retry after {wait:.2f}s.",
                    bucket=bucket_name,
                    cost=cost,
                    retry_after=round(wait, 3),
                )
            logger.debug("Waiting %.3fs for %s quota (cost %d).", wait, bucket_name, cost)
            await anyio.sleep(wait)
            waited += wait

    def snapshot(self) -> dict[str, BucketSnapshot]:
        """Return a read-only view of every bucket."""
        with self._lock:
            now = self._clock()
            views: dict[str, BucketSnapshot] = {}
            for name, bucket in self._buckets.items():
                bucket.refill(now)
                views[name] = BucketSnapshot(
                    name=name,
                    capacity=bucket.capacity,
                    tokens=round(bucket.tokens, 3),
                    window_seconds=bucket.window_seconds,
                    granted=bucket.granted,
                    rejected=bucket.rejected,
                )
            return views


__all__ = ["BucketSnapshot", "QuotaBucket", "QuotaGrant", "QuotaManager"]
