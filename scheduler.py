#!/usr/bin/env python3

import asyncio
import logging


class PeriodicTask:
    """A repeating timer on an asyncio event loop.

    Fires at a fixed rate (deadlines advance by the interval, not by the
    time the action took). cancel() is synchronous: once it returns the
    action will not run again.
    """

    def __init__(self, loop, action, interval_ms, immediate=False, name=None):
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")
        self._loop = loop
        self._action = action
        self._interval_s = interval_ms / 1000.0
        self._name = name or getattr(action, "__name__", "task")
        self._cancelled = False
        self._deadline = loop.time() if immediate else loop.time() + self._interval_s
        self._handle = loop.call_at(self._deadline, self._fire)

    @property
    def active(self):
        return not self._cancelled

    def cancel(self):
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self):
        if self._cancelled:
            return
        self._deadline += self._interval_s
        # Skip deadlines missed while the loop was busy rather than bursting
        now = self._loop.time()
        if self._deadline < now:
            self._deadline = now + self._interval_s
        self._handle = self._loop.call_at(self._deadline, self._fire)
        try:
            self._action()
        except Exception as e:
            logging.error(f"Scheduled task '{self._name}' raised: {e}", exc_info=True)


class AsyncioScheduler:
    """schedule(action, every_ms) -> cancellable handle, on an asyncio loop.

    The loop is looked up lazily so a scheduler can be created before the
    loop starts running.
    """

    def __init__(self, loop=None):
        self._loop = loop

    def schedule(self, action, every_ms, immediate=False, name=None):
        loop = self._loop or asyncio.get_running_loop()
        return PeriodicTask(loop, action, every_ms, immediate=immediate, name=name)
