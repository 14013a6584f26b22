"""
Job store interface and in-memory implementation
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from paywall.core.errors import ConcurrentUpdateError
from paywall.schemas.job import Job

logger = logging.getLogger(__name__)


class JobStore(ABC):
    """
    Keyed persistence of jobs.

    ``put`` is a compare-and-set on ``Job.version``: inserting requires
    ``expected_version=None`` and an unused key, updating requires the stored
    version to equal ``expected_version``. Implementations return copies, so
    callers never share a Job instance with the store.
    """

    @abstractmethod
    async def get(self, job_id: str) -> Optional[Job]:
        """Load a copy of the job, or None"""

    @abstractmethod
    async def put(self, job: Job, expected_version: Optional[int] = None) -> Job:
        """
        Write a job and return the stored copy with its new version.

        Raises:
            ConcurrentUpdateError: If the stored version does not match
        """


class InMemoryJobStore(JobStore):
    """Process-local store: a dict behind an asyncio lock"""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._lock = asyncio.Lock()

    async def get(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def put(self, job: Job, expected_version: Optional[int] = None) -> Job:
        async with self._lock:
            current = self._jobs.get(job.job_id)
            if expected_version is None:
                if current is not None:
                    raise ConcurrentUpdateError(job.job_id, None)
                version = 1
            else:
                if current is None or current.version != expected_version:
                    raise ConcurrentUpdateError(job.job_id, expected_version)
                version = expected_version + 1

            stored = job.model_copy(update={"version": version}, deep=True)
            self._jobs[job.job_id] = stored
            logger.debug(f"Stored job {job.job_id} at version {version}")
            return stored.model_copy(deep=True)

    def __len__(self) -> int:
        return len(self._jobs)
