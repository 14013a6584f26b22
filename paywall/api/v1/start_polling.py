"""
Internal trigger for background payment polling
"""

from fastapi import APIRouter, Depends

from paywall.api.deps import get_job_service
from paywall.schemas.job import StartPollingRequest
from paywall.services.job_service import JobService

router = APIRouter()


@router.post("", status_code=202)
async def start_polling(
    data: StartPollingRequest,
    job_service: JobService = Depends(get_job_service)
):
    """Schedule confirmation polling for a job and return immediately"""
    scheduled = job_service.notifier.fire(data.job_id, data.job_data)
    return {"scheduled": scheduled, "job_id": data.job_id}
