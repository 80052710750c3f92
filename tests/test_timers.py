import asyncio

from watchtower.player.timers import Scheduler


def test_rescheduling_a_key_replaces_the_callback():
    fired = []

    async def run():
        scheduler = Scheduler()
        scheduler.call_later(("s1", "seek"), 0.01, lambda: fired.append(1))
        scheduler.call_later(("s1", "seek"), 0.01, lambda: fired.append(2))
        await asyncio.sleep(0.05)
        assert not scheduler.pending(("s1", "seek"))

    asyncio.run(run())
    assert fired == [2]


def test_cancel_session_only_touches_that_session():
    fired = []

    async def run():
        scheduler = Scheduler()
        scheduler.call_later(("s1", "a"), 0.01, lambda: fired.append("s1a"))
        scheduler.call_every(("s1", "b"), 0.01, lambda: fired.append("s1b"))
        scheduler.call_later(("s2", "a"), 0.01, lambda: fired.append("s2a"))
        scheduler.cancel_session("s1")
        await asyncio.sleep(0.05)

    asyncio.run(run())
    assert fired == ["s2a"]


def test_repeating_timer_runs_until_cancelled():
    ticks = []

    async def run():
        scheduler = Scheduler()
        scheduler.call_every(("s1", "progress"), 0.01, lambda: ticks.append(1))
        await asyncio.sleep(0.055)
        assert scheduler.cancel(("s1", "progress"))
        count = len(ticks)
        await asyncio.sleep(0.03)
        return count

    count = asyncio.run(run())
    assert count >= 2
    assert len(ticks) == count
