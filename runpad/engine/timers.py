"""Runpad - Script Timers

setTimeout/setInterval style primitives backed by the running asyncio loop.
Delays are in milliseconds. The registry tracks every pending timer and
every coroutine a callback started, so the executor can wait for the
script's deferred work to settle before producing a result.
"""

import asyncio
import inspect
import itertools
import logging
from typing import Any, Callable, Dict, Optional, Set

from runpad.engine.errors import script_failure

logger = logging.getLogger(__name__)


async def _guard(awaitable):
    # KeyboardInterrupt or SystemExit escaping a task would stop the event loop itself
    try:
        return await awaitable
    except (Exception, asyncio.CancelledError):
        raise
    except BaseException as e:
        raise script_failure(e) from e


class TimerRegistry:
    """Pending timers and callback tasks for one run"""

    def __init__(self, loop: asyncio.AbstractEventLoop = None):
        self._loop = loop or asyncio.get_running_loop()
        self._ids = itertools.count(1)
        self._handles: Dict[int, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False
        self.failure: Optional[BaseException] = None

    @property
    def pending(self) -> int:
        return len(self._handles) + len(self._tasks)

    def _refresh_idle(self):
        if self.pending:
            self._idle.clear()
        else:
            self._idle.set()

    # ----------------------------------------------------------------
    # Script-facing primitives
    # ----------------------------------------------------------------

    def set_timeout(self, callback: Callable, delay: float = 0, *args: Any) -> int:
        return self._schedule(callback, delay, args, repeat=False)

    def set_interval(self, callback: Callable, delay: float = 0, *args: Any) -> int:
        return self._schedule(callback, delay, args, repeat=True)

    def clear_timeout(self, timer_id: Optional[int] = None) -> None:
        handle = self._handles.pop(timer_id, None)
        if handle is not None:
            handle.cancel()
        self._refresh_idle()

    clear_interval = clear_timeout

    async def sleep(self, seconds: float = 0, result: Any = None) -> Any:
        await asyncio.sleep(max(0.0, float(seconds)))
        return result

    # ----------------------------------------------------------------
    # Scheduling
    # ----------------------------------------------------------------

    def _schedule(self, callback: Callable, delay: float, args: tuple, repeat: bool) -> int:
        if not callable(callback):
            raise TypeError("timer callback must be callable")
        if self._closed:
            raise RuntimeError("timers are no longer available for this run")
        timer_id = next(self._ids)
        seconds = max(0.0, float(delay or 0)) / 1000.0
        self._arm(timer_id, callback, seconds, args, repeat)
        return timer_id

    def _arm(self, timer_id: int, callback: Callable, seconds: float, args: tuple, repeat: bool):
        self._handles[timer_id] = self._loop.call_later(
            seconds, self._fire, timer_id, callback, seconds, args, repeat
        )
        self._refresh_idle()

    def _fire(self, timer_id: int, callback: Callable, seconds: float, args: tuple, repeat: bool):
        if self._handles.pop(timer_id, None) is None:
            return
        if repeat:
            # Re-arm first so the callback can clear its own interval
            self._arm(timer_id, callback, seconds, args, repeat)
        try:
            outcome = callback(*args)
            if inspect.isawaitable(outcome):
                self._track(outcome)
        except Exception as e:
            self._fail(e)
        except BaseException as e:
            self._fail(script_failure(e))
        finally:
            self._refresh_idle()

    def _track(self, awaitable):
        task = asyncio.ensure_future(_guard(awaitable))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        self._refresh_idle()

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled():
            exc = task.exception()
            if exc is not None:
                self._fail(exc)
        self._refresh_idle()

    def _fail(self, exc: BaseException):
        if self.failure is None:
            self.failure = exc
            logger.info(f"Timer callback failed: {type(exc).__name__}: {exc}")
        self.cancel_all()

    # ----------------------------------------------------------------
    # Executor-facing lifecycle
    # ----------------------------------------------------------------

    async def wait_idle(self) -> None:
        """Return once no timer or callback task is pending"""
        while self.pending:
            await self._idle.wait()

    def cancel_all(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._refresh_idle()

    def close(self) -> None:
        """Cancel everything and refuse new timers"""
        self._closed = True
        self.cancel_all()
