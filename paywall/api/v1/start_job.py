"""
Start job endpoint (MIP-003: /start_job)
"""

import logging
from typing import Union

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from paywall.api.deps import get_job_service
from paywall.core.config import settings
from paywall.core.errors import EncodingError, JobCreationError, ValidationError
from paywall.schemas.job import Job, StartJobRequest, StartJobResponse
from paywall.services.job_service import JobService
from paywall.utils.hashing import purchaser_identifier

logger = logging.getLogger(__name__)
router = APIRouter()


def as_number(value: str) -> Union[int, str]:
    """Millisecond timestamps go back out as numbers; anything else verbatim"""
    return int(value) if value.isdigit() else value


def build_start_job_response(job: Job, job_service: JobService) -> StartJobResponse:
    payment = job.payment
    agent_info = job_service.payment_service.get_agent_info()

    amounts = []
    if settings.PAYMENT_AMOUNT:
        amounts = [{"amount": str(settings.PAYMENT_AMOUNT), "unit": settings.PAYMENT_UNIT}]

    return StartJobResponse(
        job_id=job.job_id,
        blockchainIdentifier=payment.blockchain_identifier,
        payByTime=as_number(payment.pay_by_time),
        submitResultTime=as_number(payment.submit_result_time),
        unlockTime=as_number(payment.unlock_time),
        externalDisputeUnlockTime=as_number(payment.external_dispute_unlock_time),
        agentIdentifier=agent_info["agent_identifier"],
        sellerVKey=agent_info["seller_vkey"],
        identifierFromPurchaser=job.purchaser_id,
        amounts=amounts,
        input_hash=payment.input_hash,
    )


@router.post("", response_model=StartJobResponse)
async def start_job(
    data: StartJobRequest,
    job_service: JobService = Depends(get_job_service)
):
    """ Initiates a job and creates a payment request """
    input_dict = data.input_dict()
    preview = str(input_dict)
    truncated_input = preview[:100] + "..." if len(preview) > 100 else preview
    logger.info(f"Received job request with input: '{truncated_input}'")

    purchaser_id = None
    if data.identifier_from_purchaser:
        purchaser_id = purchaser_identifier(data.identifier_from_purchaser)

    try:
        job = await job_service.create_job(purchaser_id, input_dict)
    except JobCreationError as e:
        logger.error(f"Error in start_job: {e}")
        return JSONResponse(
            status_code=400 if isinstance(e.cause, (ValidationError, EncodingError)) else 502,
            content={
                "error": "job_creation_failed",
                "message": e.message,
                "job_id": e.job_id,
                "identifierFromPurchaser": e.purchaser_id,
            },
        )

    return build_start_job_response(job, job_service)
