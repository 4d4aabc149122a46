"""Bounded-concurrency worklist runner.

``run_batch`` starts up to ``limit`` workers that share one cursor over the
items. Before each claim a worker asks ``should_stop``; once that turns true
no new item is claimed, while items already claimed run to completion. A
failing item is reported as ``ok=False`` and never disturbs its siblings.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNKNOWN_ERROR = "unknown error"

_EXHAUSTED = object()


@dataclass(frozen=True, slots=True)
class BatchItemResult:
    ok: bool
    message: str | None = None


def default_error_message(error: object) -> str:
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    if isinstance(error, str):
        return error
    return UNKNOWN_ERROR


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def run_batch(
    items: Sequence[T],
    limit: int,
    should_stop: Callable[[], bool | Awaitable[bool]],
    worker: Callable[[T], Awaitable[None]],
    on_item_done: Callable[[BatchItemResult], None | Awaitable[None]],
    get_error_message: Callable[[object], str] = default_error_message,
) -> None:
    """Run ``worker`` over ``items`` with at most ``limit`` in flight.

    Errors raised by ``worker`` become failed results. Errors raised by
    ``should_stop`` or ``on_item_done`` are systemic: the remaining workers
    are cancelled and the error propagates to the caller.
    """
    worker_count = max(1, min(limit, len(items) or 1))
    cursor = iter(items)

    async def drain() -> None:
        while True:
            if await _maybe_await(should_stop()):
                return
            item = next(cursor, _EXHAUSTED)
            if item is _EXHAUSTED:
                return
            try:
                await worker(item)
            except Exception as exc:
                result = BatchItemResult(ok=False, message=get_error_message(exc))
            else:
                result = BatchItemResult(ok=True)
            await _maybe_await(on_item_done(result))

    tasks = [asyncio.create_task(drain()) for _ in range(worker_count)]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    logger.debug("Batch of %d item(s) drained with %d worker(s)", len(items), worker_count)
