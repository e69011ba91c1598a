import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from paychannel.channels.worker import sweep_loop, worker_loop

pytestmark = pytest.mark.asyncio


async def test_sweep_loop_runs_until_stopped():
    stop = asyncio.Event()
    calls = []

    async def sweep():
        calls.append(1)
        if len(calls) == 3:
            stop.set()
        return []

    await asyncio.wait_for(sweep_loop(SimpleNamespace(sweep_expired=sweep), stop, interval=0.01), timeout=2)
    assert len(calls) == 3


async def test_sweep_loop_survives_errors():
    stop = asyncio.Event()
    channels = SimpleNamespace(sweep_expired=AsyncMock(side_effect=RuntimeError("db down")))
    task = asyncio.create_task(sweep_loop(channels, stop, interval=0.01))
    while channels.sweep_expired.await_count < 1:
        await asyncio.sleep(0.01)
    stop.set()
    await asyncio.wait_for(task, timeout=1)
    assert not task.exception()


async def test_worker_loop_closes_core():
    stop = asyncio.Event()
    stop.set()
    core = SimpleNamespace(
        channels=SimpleNamespace(sweep_expired=AsyncMock(return_value=[])),
        pricing=SimpleNamespace(run_scheduled=AsyncMock()),
        aclose=AsyncMock(),
    )
    await worker_loop(core, stop)
    core.pricing.run_scheduled.assert_awaited_once_with(stop)
    core.aclose.assert_awaited_once()
