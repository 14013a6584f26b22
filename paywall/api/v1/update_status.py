"""
Status updates reported by the business logic
"""

import logging

from fastapi import APIRouter, HTTPException, Depends

from paywall.api.deps import get_job_service
from paywall.core.errors import ConcurrentUpdateError, JobNotFoundError, PaymentServiceError, ValidationError
from paywall.schemas.job import UpdateStatusRequest
from paywall.services.job_service import JobService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("")
async def update_status(
    data: UpdateStatusRequest,
    job_service: JobService = Depends(get_job_service)
):
    """
    Move a job to a new status.

    Completing a job submits the result hash on-chain first unless
    ``submit_on_chain`` is false.
    """
    config = job_service.payment_service.config if data.submit_on_chain else None
    try:
        job = await job_service.update_status(
            data.job_id, data.status, result=data.result, error=data.error, config=config
        )
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except ConcurrentUpdateError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except PaymentServiceError as e:
        logger.error(f"Result submission for job {data.job_id} failed: {e}")
        raise HTTPException(status_code=502, detail=e.message)

    return {"success": True, "job": job.model_dump(mode="json")}
