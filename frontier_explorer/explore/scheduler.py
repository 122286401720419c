# explore/scheduler.py
"""
Periodic re-triggering of the exploration engine.

A timer thread fires every `period_s` and posts a tick into a bounded
TickQueue; a single worker thread drains the queue and runs the handler.
Ticks therefore never run concurrently. A following episode can block the
worker for many periods, so the backlog is capped at `max_pending` ticks:

    "coalesce"    - a tick arriving at a full queue is dropped
    "drop_oldest" - the oldest pending tick is evicted to make room

Either way the handler sees at most `max_pending` stale ticks after a long
episode instead of an unbounded burst.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable, Optional

from frontier_explorer.errors import ConfigurationError

logger = logging.getLogger(__name__)

OVERFLOW_POLICIES = ("coalesce", "drop_oldest")


class CancellationToken:
    """Polled run flag. Cleared by cancel(), re-armed by reset()."""

    def __init__(self) -> None:
        self._cancelled = threading.Event()
        self._cancelled.set()  # not running until reset()

    def reset(self) -> None:
        self._cancelled.clear()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


class TickQueue:
    """FIFO of pending ticks with a fixed depth and an overflow policy."""

    def __init__(self, max_pending: int = 1, policy: str = "coalesce") -> None:
        if max_pending < 1:
            raise ConfigurationError(f"max_pending must be >= 1, got {max_pending}")
        if policy not in OVERFLOW_POLICIES:
            raise ConfigurationError(
                f"unknown overflow policy {policy!r}, expected one of {OVERFLOW_POLICIES}"
            )
        self.max_pending = max_pending
        self.policy = policy
        self.dropped = 0
        self._ticks: deque = deque()
        self._cond = threading.Condition()
        self._closed = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._ticks)

    def put(self, stamp: Optional[float] = None) -> bool:
        """Queue a tick. Returns False when a tick was dropped."""
        stamp = time.monotonic() if stamp is None else stamp
        with self._cond:
            accepted = True
            if len(self._ticks) >= self.max_pending:
                self.dropped += 1
                accepted = False
                if self.policy == "coalesce":
                    return False
                self._ticks.popleft()
            self._ticks.append(stamp)
            self._cond.notify()
            return accepted

    def get(self, timeout: Optional[float] = None) -> Optional[float]:
        """Pop the oldest tick, waiting up to `timeout`. None on timeout or close."""
        with self._cond:
            if not self._ticks and not self._closed:
                self._cond.wait(timeout)
            if self._ticks:
                return self._ticks.popleft()
            return None

    def clear(self) -> None:
        with self._cond:
            self._ticks.clear()

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()


class PeriodicTrigger:
    """
    Fixed-rate trigger with queued, non-concurrent re-entry.

    handler is called on the worker thread once per dequeued tick. Exceptions
    from the handler are logged and do not stop the trigger.
    """

    def __init__(
        self,
        handler: Callable[[], object],
        period_s: float = 1.0,
        max_pending: int = 1,
        policy: str = "coalesce",
        fire_immediately: bool = True,
    ) -> None:
        if period_s <= 0:
            raise ConfigurationError(f"trigger period must be positive, got {period_s}")
        self.handler = handler
        self.period_s = period_s
        self.fire_immediately = fire_immediately
        self.max_pending = max_pending
        self.policy = policy
        self.queue = TickQueue(max_pending=max_pending, policy=policy)
        self.handled = 0

        self._stop = threading.Event()
        self._timer_thread: Optional[threading.Thread] = None
        self._worker_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._timer_thread is not None and not self._stop.is_set()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            # fresh event and queue per run so a worker still finishing the
            # previous run cannot pick up new ticks
            self._stop = threading.Event()
            self.queue = TickQueue(max_pending=self.max_pending, policy=self.policy)
            args = (self._stop, self.queue)
            self._timer_thread = threading.Thread(
                target=self._timer_loop, args=args, name="exploration-timer", daemon=True
            )
            self._worker_thread = threading.Thread(
                target=self._worker_loop, args=args, name="exploration-worker", daemon=True
            )
            self._worker_thread.start()
            self._timer_thread.start()
            logger.info("[Trigger] started, period %.2fs", self.period_s)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """
        Stop firing and drop pending ticks. Safe to call from the handler
        itself; in that case the worker exits after the current tick.
        """
        with self._lock:
            if self._timer_thread is None:
                return
            self._stop.set()
            self.queue.clear()
            self.queue.close()
            timer, worker = self._timer_thread, self._worker_thread
            self._timer_thread = None
            self._worker_thread = None

        current = threading.current_thread()
        for thread in (timer, worker):
            if thread is not None and thread is not current:
                thread.join(timeout)
        logger.info("[Trigger] stopped (%d handled, %d dropped)", self.handled, self.queue.dropped)

    def _timer_loop(self, stop: threading.Event, queue: TickQueue) -> None:
        next_fire = time.monotonic() + (0.0 if self.fire_immediately else self.period_s)
        while not stop.is_set():
            delay = next_fire - time.monotonic()
            if delay > 0 and stop.wait(delay):
                break
            if not queue.put():
                logger.debug("[Trigger] backlog full, tick dropped (%d so far)", queue.dropped)
            next_fire += self.period_s

    def _worker_loop(self, stop: threading.Event, queue: TickQueue) -> None:
        while not stop.is_set():
            stamp = queue.get(timeout=self.period_s)
            if stamp is None or stop.is_set():
                continue
            try:
                self.handler()
            except Exception:
                logger.exception("[Trigger] tick handler failed")
            self.handled += 1
