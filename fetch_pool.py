"""Concurrency helpers for fetching chat logs from the server.

``async_pool`` runs many coroutines with a cap on how many are in flight;
``first_success`` tries alternatives one after another until one yields a
result.  Loaders nest pools (characters, then files per character) to keep
the total number of concurrent requests bounded.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ProgressCallback = Callable[[int, int], None]


async def async_pool(
    limit: int,
    items: Sequence[T],
    task: Callable[[T], Awaitable[R]],
    on_progress: ProgressCallback | None = None,
) -> list[R]:
    """Run *task* over *items* with at most *limit* tasks in flight.

    Results keep the input order whatever order tasks finish in.  When a
    task finishes, the next queued item is admitted immediately.  A task
    that raises does not stop its siblings; once every task has settled
    the first exception is re-raised.  Callers are expected to catch
    errors inside *task* and return a neutral value instead.

    Args:
        limit: Maximum number of concurrently running tasks (>= 1).
        items: Inputs, one task each.
        task: Coroutine function applied to each item.
        on_progress: Optional ``(completed, total)`` callback, invoked after
            every completed task with ``completed`` increasing from 1 to
            ``total``.

    Returns:
        List of task results, index-aligned with *items*.

    Raises:
        ValueError: If *limit* is less than 1.
    """
    if limit < 1:
        raise ValueError(f"limit must be at least 1, got {limit}")

    items = list(items)
    total = len(items)
    if not total:
        return []

    semaphore = asyncio.Semaphore(limit)
    completed = 0

    async def _run(item: T) -> R:
        nonlocal completed
        async with semaphore:
            try:
                return await task(item)
            finally:
                completed += 1
                if on_progress is not None:
                    on_progress(completed, total)

    results = await asyncio.gather(*(_run(item) for item in items), return_exceptions=True)

    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


async def first_success(
    attempts: Iterable[Callable[[], Awaitable[T | None]]],
) -> T | None:
    """Await *attempts* in order and return the first non-None result.

    An attempt that raises is logged and treated like one that returned
    None.  Attempts after the first success are never started.

    Args:
        attempts: Zero-argument coroutine factories, highest priority first.

    Returns:
        The first non-None result, or None when every attempt failed.
    """
    for index, attempt in enumerate(attempts):
        try:
            result: Any = await attempt()
        except Exception:
            logger.debug("Attempt %d failed", index + 1, exc_info=True)
            continue
        if result is not None:
            return result
    return None
