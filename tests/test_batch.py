"""
Tests for bounded batch fan-out.
"""

import asyncio

import pytest

from nft_forge.core.exceptions import BatchAbortedError, ValidationError
from nft_forge.resilience import FailureMode, run_batch


class Worker:
    """Tracks concurrency and fails for the units in `failing`."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.active = 0
        self.max_active = 0
        self.started = []

    async def __call__(self, unit):
        self.started.append(unit)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0)
        self.active -= 1
        if unit in self.failing:
            raise RuntimeError(f"unit {unit} failed")
        return unit * 10


@pytest.mark.asyncio
async def test_all_units_succeed_in_order():
    worker = Worker()

    result = await run_batch(list(range(7)), worker, parallelism=3)

    assert result.values == [0, 10, 20, 30, 40, 50, 60]
    assert result.failed == []
    assert worker.max_active <= 3


@pytest.mark.asyncio
async def test_continue_mode_partitions_every_unit():
    worker = Worker(failing={1, 4})

    result = await run_batch(list(range(6)), worker, parallelism=2, mode=FailureMode.CONTINUE)

    assert [unit for unit, _ in result.succeeded] == [0, 2, 3, 5]
    assert [unit for unit, _ in result.failed] == [1, 4]
    assert result.skipped == []
    assert result.total == 6


@pytest.mark.asyncio
async def test_failing_unit_does_not_cancel_siblings():
    worker = Worker(failing={0})

    result = await run_batch([0, 1, 2], worker, parallelism=3)

    assert worker.started == [0, 1, 2]
    assert len(result.succeeded) == 2


@pytest.mark.asyncio
async def test_abort_mode_stops_after_failing_chunk():
    worker = Worker(failing={2})

    with pytest.raises(BatchAbortedError) as exc_info:
        await run_batch(list(range(7)), worker, parallelism=3, mode=FailureMode.ABORT)

    result = exc_info.value.result
    assert [unit for unit, _ in result.succeeded] == [0, 1]
    assert [unit for unit, _ in result.failed] == [2]
    assert result.skipped == [3, 4, 5, 6]
    assert result.total == 7
    assert worker.started == [0, 1, 2]


@pytest.mark.asyncio
async def test_chunk_hooks_run_around_each_chunk():
    events = []

    async def before(index, chunk):
        events.append(("before", index, list(chunk)))

    async def after(index, chunk):
        events.append(("after", index, list(chunk)))

    await run_batch([1, 2, 3], Worker(), parallelism=2, before_chunk=before, after_chunk=after)

    assert events == [
        ("before", 1, [1, 2]),
        ("after", 1, [1, 2]),
        ("before", 2, [3]),
        ("after", 2, [3]),
    ]


@pytest.mark.asyncio
async def test_empty_batch():
    result = await run_batch([], Worker())

    assert result.total == 0


@pytest.mark.asyncio
async def test_parallelism_must_be_positive():
    with pytest.raises(ValidationError):
        await run_batch([1], Worker(), parallelism=0)
