"""Second/microsecond time values and the arithmetic used by the timers."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass

USEC_PER_SEC = 1_000_000


@dataclass(frozen=True)
class Timeval:
    """A time value split into whole seconds and microseconds."""

    sec: int = 0
    usec: int = 0

    def __float__(self) -> float:
        return timeval_to_float(self)

    def __sub__(self, other: Timeval) -> Timeval:
        return subtract_timeval(self, other)

    def __add__(self, other: Timeval) -> Timeval:
        return add_timeval(self, other)


def timeval_to_float(tv: Timeval) -> float:
    """Return the time value in seconds as a float."""
    return float(tv.sec) + float(tv.usec) / float(USEC_PER_SEC)


def float_to_timeval(value: float) -> Timeval:
    """Split a number of seconds into whole seconds and microseconds."""
    whole = math.floor(value)
    return Timeval(int(whole), int((value - whole) * float(USEC_PER_SEC)))


def subtract_timeval(a: Timeval, b: Timeval) -> Timeval:
    """Return a - b, borrowing a second when the microseconds underflow."""
    sec = a.sec - b.sec
    if a.usec < b.usec:
        return Timeval(sec - 1, USEC_PER_SEC + a.usec - b.usec)
    return Timeval(sec, a.usec - b.usec)


def add_timeval(a: Timeval, b: Timeval) -> Timeval:
    """Return a + b, carrying a second when the microseconds exceed one second."""
    sec = a.sec + b.sec
    usec = a.usec + b.usec
    if usec > USEC_PER_SEC:
        sec += 1
        usec -= USEC_PER_SEC
    return Timeval(sec, usec)


def simple_compare(a: Timeval, b: Timeval) -> int:
    """Compare two time values by whole seconds: -1, 0 or 1."""
    if a.sec < b.sec:
        return -1
    if a.sec == b.sec:
        return 0
    return 1


def compare_timeval(a: Timeval, b: Timeval) -> int:
    """Compare two time values, reporting a factor-of-two difference.

    Returns 0 when equal; -1 or -2 when ``a`` is larger (-2 when the
    difference exceeds ``b``); 1 or 2 when ``a`` is smaller (2 when the
    difference exceeds ``a``).
    """
    r = simple_compare(a, b)
    if r == 0:
        return 0
    if r > 0:
        difference = subtract_timeval(a, b)
        return -2 if simple_compare(difference, b) > 0 else -1
    difference = subtract_timeval(b, a)
    return 2 if simple_compare(difference, a) > 0 else 1


def zero_timeval() -> Timeval:
    """Return a zero time value."""
    return Timeval(0, 0)


def format_timeval(lead_in: str, tv: Timeval) -> str:
    """Render a time value as 'lead_in: sec:usec --> seconds'."""
    return f"{lead_in}: {tv.sec}:{tv.usec} --> {timeval_to_float(tv):f}"


def get_time() -> Timeval:
    """Return the current wall-clock time."""
    ns = time.time_ns()
    return Timeval(ns // 1_000_000_000, (ns % 1_000_000_000) // 1_000)