from __future__ import annotations

import threading

import anyio
import pytest

from helpers.factories import FakeClock
from sheetcore.errors import SheetCoreError
from sheetcore.quota import QuotaManager


def test_concurrent_clients_never_exceed_capacity() -> None:
    clock = FakeClock()
    quota = QuotaManager(write_capacity=60, policy="fail_fast", clock=clock)
    outcomes: list[bool] = []

    async def client() -> None:
        for _ in range(20):
            try:
                await quota.acquire("write")
            except SheetCoreError as exc:
                assert exc.code == "RATE_LIMIT_EXCEEDED"
                outcomes.append(False)
            else:
                outcomes.append(True)

    async def main() -> None:
        async with anyio.create_task_group() as tg:
            for _ in range(5):
                tg.start_soon(client)

    anyio.run(main)
    assert outcomes.count(True) == 60
    assert outcomes.count(False) == 40
    snapshot = quota.snapshot()["write"]
    assert snapshot.granted == 60
    assert snapshot.rejected == 40
    assert snapshot.tokens == 0


def test_threaded_acquirers_never_exceed_capacity() -> None:
    clock = FakeClock()
    quota = QuotaManager(write_capacity=60, clock=clock)
    start = threading.Barrier(5)
    granted: list[int] = []

    def take_twenty() -> int:
        start.wait()
        return sum(1 for _ in range(20) if quota.try_acquire("write") == 0.0)

    async def worker() -> None:
        granted.append(await anyio.to_thread.run_sync(take_twenty))

    async def main() -> None:
        async with anyio.create_task_group() as tg:
            for _ in range(5):
                tg.start_soon(worker)

    anyio.run(main)
    assert len(granted) == 5
    assert sum(granted) == 60
    assert quota.snapshot()["write"].granted == 60


def test_tokens_refill_lazily_from_elapsed_time() -> None:
    clock = FakeClock()
    quota = QuotaManager(write_capacity=60, write_window_seconds=60, clock=clock)
    for _ in range(60):
        assert quota.try_acquire("write") == 0.0
    assert quota.try_acquire("write") == pytest.approx(1.0)
    clock.advance(2.0)
    assert quota.try_acquire("write") == 0.0
    assert quota.try_acquire("write") == 0.0
    assert quota.try_acquire("write") > 0.0


def test_refill_is_capped_at_capacity() -> None:
    clock = FakeClock()
    quota = QuotaManager(read_capacity=10, read_window_seconds=10, clock=clock)
    clock.advance(3600)
    assert quota.snapshot()["read"].tokens == 10


def test_fail_fast_reports_retry_after() -> None:
    clock = FakeClock()
    quota = QuotaManager(read_capacity=1, read_window_seconds=4, clock=clock)

    async def main() -> None:
        await quota.acquire("read")
        with pytest.raises(SheetCoreError) as exc_info:
            await quota.acquire("read", policy="fail_fast")
        assert exc_info.value.detail.details["retry_after"] == pytest.approx(4.0)
        assert exc_info.value.detail.retryable

    anyio.run(main)


def test_block_policy_waits_for_refill() -> None:
    quota = QuotaManager(write_capacity=1, write_window_seconds=0.05)

    async def main() -> float:
        await quota.acquire("write")
        grant = await quota.acquire("write")
        return grant.waited_seconds

    assert anyio.run(main) > 0.0


def test_cost_above_capacity_is_rejected() -> None:
    quota = QuotaManager(write_capacity=5)
    with pytest.raises(SheetCoreError, match="exceeds write bucket capacity"):
        quota.try_acquire("write", 6)


def test_buckets_are_independent() -> None:
    clock = FakeClock()
    quota = QuotaManager(read_capacity=1, write_capacity=1, clock=clock)
    assert quota.try_acquire("write") == 0.0
    assert quota.try_acquire("read") == 0.0
    assert quota.try_acquire("write") > 0.0
