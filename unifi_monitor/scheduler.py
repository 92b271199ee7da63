"""Interval scheduler for the background loops.

Every repeating job (poll cycle, liveness sweep) is a :class:`ScheduledTask`
running on its own daemon thread.  The :class:`Scheduler` owns them all so
shutdown stops them as a unit.  A failing run is logged and the next run
still happens on schedule.  ``kick`` runs a task now instead of waiting
out its interval; the service uses it for the startup poll.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class ScheduledTask:
    def __init__(
        self,
        name: str,
        interval: float,
        func: Callable[[], Any],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.interval = interval
        self.func = func
        self.runs = 0
        self.failures = 0
        self._clock = clock
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def kick(self) -> None:
        """Run now instead of waiting for the rest of the interval."""
        self._wake.set()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def run_once(self) -> None:
        try:
            self.func()
        except Exception:
            self.failures += 1
            logger.exception("Scheduled task %s failed", self.name)
        finally:
            self.runs += 1

    def _loop(self) -> None:
        logger.info("Starting %s loop (interval=%ss)", self.name, self.interval)
        # first run waits a full interval unless kicked
        self._sleep(self.interval)
        while not self._stop.is_set():
            started = self._clock()
            self.run_once()
            elapsed = self._clock() - started
            self._sleep(max(0.0, self.interval - elapsed))
        logger.info("Stopped %s loop", self.name)

    def _sleep(self, seconds: float) -> None:
        self._wake.wait(seconds)
        self._wake.clear()


class Scheduler:
    def __init__(self) -> None:
        self._tasks: Dict[str, ScheduledTask] = {}
        self._started = False

    @property
    def tasks(self) -> List[ScheduledTask]:
        return list(self._tasks.values())

    def every(
        self,
        interval: float,
        func: Callable[[], Any],
        name: str,
    ) -> ScheduledTask:
        if name in self._tasks:
            raise ValueError(f"task {name!r} already scheduled")
        if interval <= 0:
            raise ValueError("interval must be positive")
        task = ScheduledTask(name, interval, func)
        self._tasks[name] = task
        if self._started:
            task.start()
        return task

    def kick(self, name: str) -> None:
        self._tasks[name].kick()

    def start(self) -> None:
        self._started = True
        for task in self._tasks.values():
            task.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._started = False
        for task in self._tasks.values():
            task.stop(timeout)


__all__ = ["ScheduledTask", "Scheduler"]
