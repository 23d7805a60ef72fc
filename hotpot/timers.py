"""
Tracked asyncio timers.

Every timer started here is remembered by id, so `stop()` paths can cancel
it and tell whether it is still pending. Callbacks may be plain functions
or coroutine functions; a coroutine result is run as a task that is also
tracked until it finishes.
"""

from __future__ import annotations

from itertools import count
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union
import asyncio
import inspect
import logging

from .time_utils import now_ms

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Union[None, Awaitable[Any]]]

_TIMERS: Dict[str, asyncio.TimerHandle] = {}
_TASKS: Set["asyncio.Task[Any]"] = set()
_IDS = count(1)


def _spawn(result: Awaitable[Any], timer_id: str) -> None:
    task = asyncio.ensure_future(result)
    _TASKS.add(task)

    def _done(finished: "asyncio.Task[Any]") -> None:
        _TASKS.discard(finished)
        if finished.cancelled():
            return
        exc = finished.exception()
        if exc is not None:
            logger.error(
                "timer.task_failed id=%s error=%s",
                timer_id,
                exc,
                exc_info=exc,
            )

    task.add_done_callback(_done)


def start_timer(descr: str, fn: TimerCallback, delay_ms: float) -> str:
    """
    Run `fn` after `delay_ms` milliseconds. Returns an id for
    `cancel_timer`.
    """
    timer_id = f"{descr}:{next(_IDS)}"
    loop = asyncio.get_running_loop()
    delay_ms = max(delay_ms, 0)

    def _fire() -> None:
        _TIMERS.pop(timer_id, None)
        logger.debug("timer.fired id=%s", timer_id)
        result = fn()
        if inspect.isawaitable(result):
            _spawn(result, timer_id)

    _TIMERS[timer_id] = loop.call_later(delay_ms / 1000.0, _fire)
    logger.debug("timer.started id=%s delay_ms=%s", timer_id, delay_ms)
    return timer_id


def cancel_timer(timer_id: Optional[str]) -> None:
    if timer_id is None:
        return
    handle = _TIMERS.pop(timer_id, None)
    if handle is None:
        logger.debug("timer.already_cancelled id=%s", timer_id)
        return
    handle.cancel()
    logger.debug("timer.cancelled id=%s", timer_id)


def run_at(descr: str, fn: TimerCallback, epoch_ms: float) -> str:
    """Like `start_timer`, but fire at an absolute epoch-ms time."""
    return start_timer(descr, fn, epoch_ms - now_ms())


def is_pending(timer_id: Optional[str]) -> bool:
    return timer_id is not None and timer_id in _TIMERS
