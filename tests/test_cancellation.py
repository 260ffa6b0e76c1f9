import asyncio

import pytest

from hopperload.errors import OperationCancelled
from hopperload.utils import CancellationToken, now


@pytest.mark.asyncio
async def test_sleep_runs_full_delay_when_not_cancelled():
    token = CancellationToken()
    started = now()
    assert await token.sleep(0.05) is False
    assert now() - started >= 0.04


@pytest.mark.asyncio
async def test_sleep_wakes_on_cancel():
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.05, token.cancel)
    started = now()
    assert await token.sleep(5) is True
    assert now() - started < 1.0
    assert token.cancelled


@pytest.mark.asyncio
async def test_sleep_after_cancel_returns_immediately():
    token = CancellationToken()
    token.cancel()
    assert await token.sleep(5) is True


@pytest.mark.asyncio
async def test_guard_returns_result():
    async def compute():
        return 42

    assert await CancellationToken().guard(compute()) == 42


@pytest.mark.asyncio
async def test_guard_abandons_work_on_cancel():
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.05, token.cancel)
    with pytest.raises(OperationCancelled):
        await token.guard(asyncio.sleep(5))


@pytest.mark.asyncio
async def test_guard_propagates_errors():
    async def explode():
        raise ValueError("boom")

    with pytest.raises(ValueError):
        await CancellationToken().guard(explode())
