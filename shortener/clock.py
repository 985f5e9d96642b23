"""Wall-clock helpers. Every persisted timestamp is integer epoch milliseconds."""

import time

__all__ = ["current_millis", "current_seconds"]


def current_millis() -> int:
    return time.time_ns() // 1_000_000


def current_seconds() -> int:
    return time.time_ns() // 1_000_000_000
