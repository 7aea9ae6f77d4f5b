"""Clock abstraction and explicit tick/cancel timer used by assessment sessions."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

LOGGER = logging.getLogger(__name__)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """Deterministic clock for tests and replays; only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> datetime:
        self._now = self._now + timedelta(seconds=seconds)
        return self._now


class SessionTimer:
    """
    Counts whole seconds for one attempt.

    The owner calls ``tick`` once per second and ``cancel`` when the attempt
    leaves the active phase; ticks after cancellation change nothing.
    """

    def __init__(self, time_limit: int) -> None:
        self.time_limit = max(0, int(time_limit))
        self.elapsed = 0
        self.remaining = self.time_limit
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def expired(self) -> bool:
        return self.remaining == 0

    def tick(self) -> bool:
        if self._cancelled:
            return False
        self.elapsed += 1
        self.remaining = max(0, self.remaining - 1)
        return True

    def cancel(self) -> None:
        self._cancelled = True


class IntervalTicker:
    """Background thread that calls ``callback`` every ``interval`` seconds.

    The loop ends when ``stop`` is called or when the callback returns False
    (for a session: the attempt is no longer active).
    """

    def __init__(self, callback: Callable[[], bool], *, interval: float = 1.0, name: str = "twophase-ticker") -> None:
        self.callback = callback
        self.interval = interval
        self.name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "IntervalTicker":
        if self.running:
            return self
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        return self

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            if not self.callback():
                LOGGER.debug("%s: callback reported inactive; stopping", self.name)
                break

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def __enter__(self) -> "IntervalTicker":
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.stop()


__all__ = ["Clock", "IntervalTicker", "ManualClock", "SessionTimer", "SystemClock"]
