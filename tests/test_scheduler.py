import asyncio

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from results_engine.core.scheduler import ManualTimers, SchedulerTimers


async def test_manual_timers_fire_in_due_order():
    timers = ManualTimers()
    fired = []

    async def record(name):
        fired.append((name, timers.now))

    timers.schedule("b", 2.0, record, "b")
    timers.schedule("a", 1.0, record, "a")

    assert await timers.advance(1.5) == 1
    assert await timers.advance(1.0) == 1
    assert fired == [("a", 1.0), ("b", 2.0)]
    assert timers.now == 2.5


async def test_manual_timers_rescheduling_replaces_pending():
    timers = ManualTimers()
    fired = []

    async def record():
        fired.append(timers.now)

    timers.schedule("save", 1.25, record)
    await timers.advance(1.0)
    timers.schedule("save", 1.25, record)
    await timers.advance(1.0)

    assert fired == []
    assert timers.is_pending("save")
    await timers.advance(0.25)
    assert fired == [2.25]


async def test_manual_timers_cancel():
    timers = ManualTimers()

    async def fail():
        raise AssertionError("cancelled timer fired")

    timers.schedule("save", 1.0, fail)
    timers.cancel("save")
    timers.cancel("save")

    assert await timers.advance(5) == 0


async def test_scheduler_timers_run_and_cancel():
    scheduler = AsyncIOScheduler()
    timers = SchedulerTimers(scheduler)
    done = asyncio.Event()
    calls = []

    async def record(value):
        calls.append(value)
        done.set()

    scheduler.start()
    try:
        timers.schedule("cancelled", 0.05, record, "cancelled")
        timers.cancel("cancelled")
        timers.schedule("kept", 0.05, record, "first")
        timers.schedule("kept", 0.05, record, "second")
        assert timers.is_pending("kept")

        await asyncio.wait_for(done.wait(), timeout=5)
    finally:
        scheduler.shutdown(wait=False)

    assert calls == ["second"]
    assert not timers.is_pending("cancelled")
