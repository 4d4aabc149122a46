"""In-process registry of batch jobs that have a live runner task.

Job rows live in the database but runner tasks live in this process, so a
row claiming ``running`` with no entry here was orphaned by a restart. One
registry exists per process; all access happens on the event loop thread.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class JobRegistry:
    __slots__ = ("_tasks",)

    def __init__(self) -> None:
        self._tasks: dict[int, asyncio.Task] = {}

    def is_running(self, job_id: int) -> bool:
        return job_id in self._tasks

    def task_for(self, job_id: int) -> asyncio.Task | None:
        return self._tasks.get(job_id)

    def active_job_ids(self) -> list[int]:
        return list(self._tasks)

    def spawn(self, job_id: int, coro: Coroutine[Any, Any, None]) -> asyncio.Task | None:
        """Schedule ``coro`` as the runner for ``job_id``.

        Returns None (and closes ``coro``) if the job already has a runner.
        The entry is dropped when the task ends, however it ends.
        """
        if job_id in self._tasks:
            coro.close()
            logger.warning("Batch job %s already has a runner attached", job_id)
            return None

        task = asyncio.create_task(coro, name=f"batch-job-{job_id}")
        self._tasks[job_id] = task

        def _forget(done: asyncio.Task) -> None:
            if self._tasks.get(job_id) is done:
                del self._tasks[job_id]
            logger.debug("Batch job %s runner detached", job_id)

        task.add_done_callback(_forget)
        return task

    async def wait(self, job_id: int) -> None:
        """Wait for the runner of ``job_id`` to finish, if there is one."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel every runner and wait for them to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d batch job runner(s)", len(tasks))
