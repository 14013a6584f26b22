"""
Fire-and-forget trigger for background payment polling
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from paywall.schemas.job import Job

logger = logging.getLogger(__name__)

NotifierTarget = Callable[[str, Optional[Job]], Awaitable[Any]]


class BackgroundNotifier:
    """
    Runs ``target(job_id, job)`` as a detached asyncio task.

    ``fire`` never blocks and never raises; outcomes are only logged. At most
    one task per job id is active in this process.
    """

    def __init__(self, target: NotifierTarget):
        self.target = target
        self._tasks: Dict[str, asyncio.Task] = {}

    def fire(self, job_id: str, job: Optional[Job] = None) -> bool:
        """
        Schedule polling for a job.

        Returns:
            True if a task was scheduled, False if skipped
        """
        try:
            if job_id in self._tasks:
                logger.info(f"Polling already active for job {job_id}, skipping trigger")
                return False

            loop = asyncio.get_running_loop()
            task = loop.create_task(self._run(job_id, job), name=f"poll-{job_id}")
            self._tasks[job_id] = task
            task.add_done_callback(lambda done: self._forget(job_id, done))
            logger.info(f"Triggered background polling for job {job_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to trigger background polling for job {job_id}: {e}", exc_info=True)
            return False

    async def _run(self, job_id: str, job: Optional[Job]) -> None:
        try:
            await self.target(job_id, job)
        except asyncio.CancelledError:
            logger.warning(f"Background polling for job {job_id} cancelled")
            raise
        except Exception as e:
            logger.error(f"Background polling for job {job_id} failed: {e}", exc_info=True)

    def _forget(self, job_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]

    def is_active(self, job_id: str) -> bool:
        return job_id in self._tasks

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for all outstanding tasks"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
