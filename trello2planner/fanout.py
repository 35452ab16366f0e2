"""Submit-all-then-collect request fan-out."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


def fan_out(fn: Callable[[T], R], items: Iterable[T], max_workers: int = 16) -> list[R]:
    """Run ``fn`` over ``items`` concurrently and return results in input order.

    Every call is submitted before any result is awaited; the futures are then
    collected in submission order. Throughput is bounded by the worker pool and
    by whatever rate limiter ``fn`` goes through. ``fn`` is expected to report
    failures through its return value, an exception propagates to the caller.

    Example:
        >>> fan_out(reader.fetch_board, ["b1", "b2"])
        [Board(id='b1', ...), None]
    """
    items = list(items)
    if not items:
        return []

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(items)))) as executor:
        futures = [executor.submit(fn, item) for item in items]
        return [future.result() for future in futures]
