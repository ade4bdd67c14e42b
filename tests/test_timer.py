import asyncio

from app.modules.battle.timer import Countdown


async def test_ticks_down_then_expires_once():
    ticks, expired = [], []
    countdown = Countdown(
        3, tick_seconds=0.001, on_tick=ticks.append, on_expire=lambda: expired.append(True)
    ).start()
    await asyncio.wait_for(countdown._task, 1)
    assert ticks == [2, 1, 0]
    assert expired == [True]
    assert countdown.expired and not countdown.running


async def test_cancel_prevents_expiry():
    expired = []
    countdown = Countdown(5, tick_seconds=0.05, on_expire=lambda: expired.append(True)).start()
    await asyncio.sleep(0.01)
    countdown.cancel()
    await asyncio.sleep(0.3)
    assert expired == []
    assert not countdown.expired
    assert countdown.remaining > 0


async def test_failing_callback_stops_quietly():
    async def boom(_remaining):
        raise RuntimeError("boom")

    countdown = Countdown(2, tick_seconds=0.001, on_tick=boom).start()
    await asyncio.wait_for(countdown._task, 1)
    assert not countdown.expired
