"""Timer registry tests."""

import asyncio

import pytest

from runpad.engine.errors import ScriptExit, ScriptInterrupt
from runpad.engine.timers import TimerRegistry

pytestmark = pytest.mark.asyncio


async def test_timeouts_fire_in_delay_order():
    timers = TimerRegistry()
    fired = []

    timers.set_timeout(fired.append, 20, "slow")
    timers.set_timeout(fired.append, 5, "fast")
    timers.set_timeout(fired.append, 0, "now")
    assert timers.pending == 3

    await timers.wait_idle()
    assert fired == ["now", "fast", "slow"]
    assert timers.pending == 0


async def test_cleared_timeout_never_fires():
    timers = TimerRegistry()
    fired = []

    timer_id = timers.set_timeout(fired.append, 10, "x")
    timers.clear_timeout(timer_id)
    timers.clear_timeout(9999)

    await timers.wait_idle()
    await asyncio.sleep(0.03)
    assert fired == []


async def test_interval_repeats_until_cleared():
    timers = TimerRegistry()
    ticks = []

    def tick():
        ticks.append(len(ticks) + 1)
        if len(ticks) == 3:
            timers.clear_interval(handle)

    handle = timers.set_interval(tick, 1)
    await asyncio.wait_for(timers.wait_idle(), timeout=2)
    assert ticks == [1, 2, 3]


async def test_coroutine_callbacks_are_awaited():
    timers = TimerRegistry()
    done = []

    async def later():
        await asyncio.sleep(0.01)
        done.append(True)

    timers.set_timeout(later, 0)
    await timers.wait_idle()
    assert done == [True]


async def test_failing_callback_cancels_the_rest():
    timers = TimerRegistry()
    fired = []

    def boom():
        raise ValueError("bad timer")

    timers.set_timeout(boom, 0)
    timers.set_timeout(fired.append, 50, "never")

    await timers.wait_idle()
    assert isinstance(timers.failure, ValueError)
    assert fired == []


async def test_system_exit_in_callback_becomes_script_exit():
    timers = TimerRegistry()

    def leave():
        raise SystemExit(2)

    timers.set_timeout(leave, 0)
    await timers.wait_idle()
    assert isinstance(timers.failure, ScriptExit)
    assert timers.failure.code == 2


async def test_keyboard_interrupt_in_callback_becomes_script_interrupt():
    timers = TimerRegistry()

    def stop():
        raise KeyboardInterrupt("now")

    timers.set_timeout(stop, 0)
    await timers.wait_idle()
    assert isinstance(timers.failure, ScriptInterrupt)
    assert timers.failure.exc_type == "KeyboardInterrupt"
    assert isinstance(timers.failure.__cause__, KeyboardInterrupt)


async def test_keyboard_interrupt_in_callback_coroutine_stays_in_the_run():
    timers = TimerRegistry()
    other = []

    async def stop():
        await asyncio.sleep(0)
        raise KeyboardInterrupt

    timers.set_timeout(stop, 0)
    timers.set_timeout(other.append, 50, "late")
    await asyncio.wait_for(timers.wait_idle(), timeout=2)

    assert isinstance(timers.failure, ScriptInterrupt)
    assert str(timers.failure) == "KeyboardInterrupt"
    assert other == []


async def test_closed_registry_refuses_new_timers():
    timers = TimerRegistry()
    timers.set_timeout(lambda: None, 100)
    timers.close()

    assert timers.pending == 0
    with pytest.raises(RuntimeError):
        timers.set_timeout(lambda: None, 0)


async def test_callback_must_be_callable():
    timers = TimerRegistry()
    with pytest.raises(TypeError):
        timers.set_timeout("not a function", 0)


async def test_sleep_returns_result():
    timers = TimerRegistry()
    assert await timers.sleep(0, "value") == "value"
