"""
Single-shot deferred task scheduling.

The coordinator settles accepted transactions after a fixed delay. It
schedules that work through a scheduler so the clock can be swapped:

- ThreadingScheduler runs tasks on timer threads in real time
- ManualScheduler keeps a virtual clock that tests advance by hand

Scheduled tasks cannot be cancelled.
"""

import heapq
import itertools
import logging
import threading
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class SchedulerProtocol(Protocol):
    """What the coordinator needs from a scheduler."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> None:
        """Run callback once, after delay seconds."""
        ...


def _check_delay(delay: float) -> None:
    if delay < 0:
        raise ValueError(f"Invalid delay: {delay}. Cannot be negative")


class ThreadingScheduler:
    """
    Scheduler that runs each task on its own threading.Timer.

    Timers are daemon threads, so pending settlements do not keep the
    interpreter alive on exit.
    """

    def call_later(self, delay: float, callback: Callable[[], None]) -> None:
        _check_delay(delay)

        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        logger.debug(f"Scheduled task in {delay:.1f}s")


class ManualScheduler:
    """
    Scheduler with a virtual clock.

    Nothing runs until advance() moves the clock past a task's due
    time. Tasks due at the same time run in the order they were
    scheduled.

    Example:
        >>> scheduler = ManualScheduler()
        >>> fired = []
        >>> scheduler.call_later(5, lambda: fired.append(True))
        >>> scheduler.advance(4)
        0
        >>> scheduler.advance(1)
        1
        >>> fired
        [True]
    """

    def __init__(self):
        self.now = 0.0
        self._queue: list[tuple[float, int, Callable[[], None]]] = []
        self._sequence = itertools.count()

    @property
    def pending(self) -> int:
        return len(self._queue)

    def call_later(self, delay: float, callback: Callable[[], None]) -> None:
        _check_delay(delay)
        heapq.heappush(self._queue, (self.now + delay, next(self._sequence), callback))

    def advance(self, seconds: float) -> int:
        """
        Move the clock forward and run every task that became due.

        Tasks scheduled by a running task are run too if they fall due
        within the same advance.

        Returns:
            Number of tasks run
        """
        _check_delay(seconds)
        target = self.now + seconds
        ran = 0

        while self._queue and self._queue[0][0] <= target:
            due, _, callback = heapq.heappop(self._queue)
            self.now = due
            callback()
            ran += 1

        self.now = target
        return ran
