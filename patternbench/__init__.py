"""Interleaved shared-file write benchmark with an in-process message-passing layer."""

__version__ = "0.1.0"
__all__ = ["timeval", "timer", "comm", "parallelio", "patternio", "cli"]