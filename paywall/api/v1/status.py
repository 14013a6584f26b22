"""
Job status endpoint
"""

from fastapi import APIRouter, HTTPException, Depends, Query

from paywall.api.deps import get_job_service
from paywall.core.errors import JobNotFoundError
from paywall.schemas.job import StatusResponse
from paywall.services.job_service import JobService

router = APIRouter()


@router.get("", response_model=StatusResponse)
async def get_status(
    job_id: str = Query(..., description="Job identifier"),
    job_service: JobService = Depends(get_job_service)
):
    """
    Get the status of a job (MIP-003 compliant).

    Jobs still awaiting payment get a single ledger check before answering.
    """
    try:
        return await job_service.get_status(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
