"""Shared async primitives for the REST and gateway halves."""

from .async_queue import AsyncQueue
from .timing import delay, now, sleep_until

__all__ = ["AsyncQueue", "delay", "now", "sleep_until"]
