import asyncio

import pytest

from lexiroute.modules.errors import ProviderTimeoutError, TransientError
from lexiroute.modules.timeout import TimeoutGuard


@pytest.mark.asyncio
async def test_returns_result_within_deadline():
    guard = TimeoutGuard()

    async def fast():
        await asyncio.sleep(0.01)
        return "done"

    assert await guard.run(fast, 1.0) == "done"


@pytest.mark.asyncio
async def test_times_out_and_cancels_operation():
    guard = TimeoutGuard()
    cancelled = asyncio.Event()

    async def slow():
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    with pytest.raises(ProviderTimeoutError) as exc_info:
        await guard.run(slow, 0.05, label="slow-op")

    assert exc_info.value.timeout == 0.05
    assert "slow-op" in exc_info.value.message
    assert isinstance(exc_info.value, TransientError)
    await asyncio.wait_for(cancelled.wait(), timeout=1)


@pytest.mark.asyncio
async def test_late_result_is_never_delivered():
    guard = TimeoutGuard()
    delivered = []

    async def stubborn():
        # Ignores the first cancellation and finishes anyway
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            pass
        delivered.append("late")
        return "late"

    with pytest.raises(ProviderTimeoutError):
        await guard.run(stubborn, 0.02)

    await asyncio.sleep(0.02)
    assert delivered == ["late"]
    assert guard.late_results == 1


@pytest.mark.asyncio
async def test_zero_budget_fails_without_starting():
    guard = TimeoutGuard()
    started = []

    async def op():
        started.append(True)
        return "x"

    with pytest.raises(ProviderTimeoutError):
        await guard.run(op, 0)

    assert started == []


@pytest.mark.asyncio
async def test_default_timeout_applies():
    guard = TimeoutGuard(default_timeout=0.02)

    async def slow():
        await asyncio.sleep(10)

    with pytest.raises(ProviderTimeoutError):
        await guard.run(slow)


@pytest.mark.asyncio
async def test_operation_errors_propagate_unchanged():
    guard = TimeoutGuard()

    async def failing():
        raise TransientError("network")

    with pytest.raises(TransientError) as exc_info:
        await guard.run(failing, 1.0)

    assert not isinstance(exc_info.value, ProviderTimeoutError)


@pytest.mark.asyncio
async def test_caller_cancellation_propagates_to_operation():
    guard = TimeoutGuard()
    started = asyncio.Event()
    cancelled = asyncio.Event()

    async def slow():
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    task = asyncio.ensure_future(guard.run(slow, 5.0))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    await asyncio.wait_for(cancelled.wait(), timeout=1)
