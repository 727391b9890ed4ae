from __future__ import annotations

import asyncio

from diamond.common.scheduler import ScheduledLoop
from diamond.supervisor import SupervisedTask


async def test_scheduled_loop_runs_immediately_and_survives_errors(wait_until) -> None:
    ticks = 0

    async def callback() -> None:
        nonlocal ticks
        ticks += 1
        if ticks == 1:
            raise RuntimeError("first tick fails")

    loop = ScheduledLoop(0.02, callback, name="test", run_immediately=True)
    await loop.start()
    try:
        await wait_until(lambda: ticks >= 3)
    finally:
        await loop.aclose()

    stats = loop.get_stats()
    assert stats["error_count"] == 1
    assert stats["execution_count"] >= 2
    assert not loop.is_running


async def test_scheduled_loop_stops_firing_after_close() -> None:
    ticks = 0

    async def callback() -> None:
        nonlocal ticks
        ticks += 1

    loop = ScheduledLoop(0.01, callback, run_immediately=True)
    await loop.start()
    await asyncio.sleep(0.05)
    await loop.aclose()

    seen = ticks
    await asyncio.sleep(0.05)
    assert ticks == seen


async def test_supervised_task_restarts_after_crash(wait_until) -> None:
    runs = 0
    done = asyncio.Event()
    failures: list[BaseException] = []

    async def target() -> None:
        nonlocal runs
        runs += 1
        if runs < 3:
            raise ValueError(f"crash {runs}")
        done.set()

    task = SupervisedTask("test", target, restart_cooldown_s=0.01, on_failure=failures.append)
    task.start()
    await asyncio.wait_for(done.wait(), 2.0)
    await wait_until(lambda: not task.is_running())

    assert runs == 3
    assert task.restart_count == 2
    assert task.last_error == "crash 2"
    assert [str(e) for e in failures] == ["crash 1", "crash 2"]


async def test_supervised_task_gives_up_after_max_restarts(wait_until) -> None:
    runs = 0

    async def target() -> None:
        nonlocal runs
        runs += 1
        raise RuntimeError("always")

    task = SupervisedTask("test", target, restart_cooldown_s=0.0, max_restarts=2)
    task.start()
    await wait_until(lambda: not task.is_running())

    assert runs == 3
    assert task.to_dict()["restart_count"] == 3


async def test_supervised_task_stop_cancels() -> None:
    started = asyncio.Event()

    async def target() -> None:
        started.set()
        await asyncio.sleep(60)

    task = SupervisedTask("test", target)
    task.start()
    await asyncio.wait_for(started.wait(), 1.0)
    await task.stop()

    assert not task.is_running()


async def raise_cancelled() -> None:
    future = asyncio.get_running_loop().create_future()
    future.cancel()
    await future


async def test_scheduled_loop_survives_callback_cancellation(wait_until) -> None:
    ticks = 0

    async def callback() -> None:
        nonlocal ticks
        ticks += 1
        if ticks == 1:
            await raise_cancelled()

    loop = ScheduledLoop(0.02, callback, run_immediately=True)
    await loop.start()
    try:
        await wait_until(lambda: ticks >= 2)
        assert loop.is_running
    finally:
        await loop.aclose()

    assert loop.get_stats()["error_count"] == 1


async def test_unaligned_loop_waits_one_full_interval(wait_until) -> None:
    ticks = 0

    async def callback() -> None:
        nonlocal ticks
        ticks += 1

    loop = ScheduledLoop(0.5, callback, align_to_interval=False)
    await loop.start()
    try:
        await asyncio.sleep(0.3)
        assert ticks == 0
        await wait_until(lambda: ticks == 1, timeout=2.0)
    finally:
        await loop.aclose()


async def test_supervised_task_restarts_after_leaked_cancellation() -> None:
    runs = 0
    done = asyncio.Event()

    async def target() -> None:
        nonlocal runs
        runs += 1
        if runs == 1:
            await raise_cancelled()
        done.set()

    task = SupervisedTask("test", target, restart_cooldown_s=0.01)
    task.start()
    await asyncio.wait_for(done.wait(), 2.0)

    assert runs == 2
    assert task.restart_count == 1
    assert task.last_error == "CancelledError"
    await task.stop()


async def test_supervised_scheduled_loop_stops_cleanly() -> None:
    ticks = 0

    async def callback() -> None:
        nonlocal ticks
        ticks += 1

    loop = ScheduledLoop(0.01, callback, run_immediately=True)
    task = SupervisedTask("loop", loop.run, restart_cooldown_s=0.01)
    task.start()
    await asyncio.sleep(0.05)

    loop.stop()
    await task.stop()

    assert ticks >= 1
    assert task.restart_count == 0
    assert not task.is_running()
