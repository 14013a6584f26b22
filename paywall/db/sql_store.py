"""
SQLAlchemy-backed job store
"""

import logging
from datetime import timezone
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from paywall.core.errors import ConcurrentUpdateError
from paywall.db.base import get_session_factory
from paywall.db.models.job import JobRecord
from paywall.db.store import JobStore
from paywall.schemas.job import Job, Payment

logger = logging.getLogger(__name__)


def _aware(value):
    # SQLite drops tzinfo; stored values are always UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def record_to_job(record: JobRecord) -> Job:
    payment = None
    if record.blockchain_identifier:
        payment = Payment(
            blockchain_identifier=record.blockchain_identifier,
            pay_by_time=record.pay_by_time,
            submit_result_time=record.submit_result_time,
            unlock_time=record.unlock_time,
            external_dispute_unlock_time=record.external_dispute_unlock_time,
            input_hash=record.input_hash,
        )
    return Job(
        job_id=record.job_id,
        purchaser_id=record.purchaser_id,
        input_data=record.input_data,
        status=record.status,
        payment=payment,
        result=record.result,
        error=record.error,
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
        version=record.version,
    )


def job_to_values(job: Job) -> Dict[str, Any]:
    payment = job.payment
    return {
        "job_id": job.job_id,
        "purchaser_id": job.purchaser_id,
        "input_data": job.input_data,
        "status": job.status.value,
        "blockchain_identifier": payment.blockchain_identifier if payment else None,
        "pay_by_time": payment.pay_by_time if payment else None,
        "submit_result_time": payment.submit_result_time if payment else None,
        "unlock_time": payment.unlock_time if payment else None,
        "external_dispute_unlock_time": payment.external_dispute_unlock_time if payment else None,
        "input_hash": payment.input_hash if payment else None,
        "result": job.result,
        "error": job.error,
        "created_at": job.created_at,
        "updated_at": job.updated_at,
    }


class SqlJobStore(JobStore):
    """Job store on the ``jobs`` table; updates are conditional on ``version``"""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self._session_factory = session_factory or get_session_factory()

    async def get(self, job_id: str) -> Optional[Job]:
        async with self._session_factory() as session:
            record = await session.get(JobRecord, job_id)
            return record_to_job(record) if record else None

    async def put(self, job: Job, expected_version: Optional[int] = None) -> Job:
        values = job_to_values(job)
        async with self._session_factory() as session:
            if expected_version is None:
                session.add(JobRecord(**values, version=1))
                try:
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    raise ConcurrentUpdateError(job.job_id, None) from e
                version = 1
            else:
                version = expected_version + 1
                values.pop("job_id")
                stmt = (
                    update(JobRecord)
                    .where(JobRecord.job_id == job.job_id, JobRecord.version == expected_version)
                    .values(**values, version=version)
                    .execution_options(synchronize_session=False)
                )
                result = await session.execute(stmt)
                if result.rowcount != 1:
                    await session.rollback()
                    raise ConcurrentUpdateError(job.job_id, expected_version)
                await session.commit()

        logger.debug(f"Stored job {job.job_id} at version {version}")
        return job.model_copy(update={"version": version}, deep=True)
