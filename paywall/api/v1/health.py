"""
Health check endpoint
"""

from fastapi import APIRouter, Depends

from paywall.api.deps import get_job_service
from paywall.core.config import settings
from paywall.services.job_service import JobService

router = APIRouter()


@router.get("")
async def health(job_service: JobService = Depends(get_job_service)):
    """
    Health check endpoint.
    """
    payment_service = job_service.payment_service

    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "payment_service_configured": payment_service.is_configured(),
        "job_store": type(job_service.store).__name__,
        "active_pollers": job_service.notifier.pending_count,
        **payment_service.get_agent_info(),
    }
