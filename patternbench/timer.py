"""A start/stop stopwatch that accumulates elapsed real time."""

from __future__ import annotations

import sys
import time
from typing import TextIO


class Timer:
    """Accumulating stopwatch.

    Real time is accumulated across start/stop pairs; user and system
    times are kept for reporting but are not measured and stay zero.
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        """Clear accumulated times and stop the timer."""
        self._real = 0.0
        self._user = 0.0
        self._system = 0.0
        self._running = False
        self._started_at = 0.0

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> bool:
        """Start timing; return False if the timer was already running."""
        if self._running:
            return False
        self._running = True
        self._started_at = time.perf_counter()
        return True

    def stop(self) -> bool:
        """Stop timing and accumulate; return False if it was not running."""
        if not self._running:
            return False
        self._running = False
        self._real += time.perf_counter() - self._started_at
        return True

    def elapsed_time_seconds(self) -> tuple[float, float, float]:
        """Return (system, user, real) seconds, keeping the timer's state."""
        was_running = self._running
        self.stop()
        result = (self._system, self._user, self._real)
        if was_running:
            self.start()
        return result

    def real_time(self) -> float:
        """Return accumulated real time, including a running interval."""
        if not self._running:
            return self._real
        return self._real + (time.perf_counter() - self._started_at)

    def report(self, label: str = "", file: TextIO | None = None) -> None:
        """Write a one-line summary of the elapsed times."""
        system, user, real = self.elapsed_time_seconds()
        out = sys.stderr if file is None else file
        print(f"Timer[{label}]: real={real:g} user={user:g} system={system:g}", file=out)