"""
Masumi MIP-003 compliant API router
Standard endpoints plus the internal job lifecycle hooks
"""

from fastapi import APIRouter
from paywall.api.v1 import start_job
from paywall.api.v1 import status
from paywall.api.v1 import availability
from paywall.api.v1 import input_schema
from paywall.api.v1 import health
from paywall.api.v1 import start_polling
from paywall.api.v1 import update_status

api_router = APIRouter()

# Masumi MIP-003 standard endpoints
api_router.include_router(start_job.router, prefix="/start_job", tags=["jobs"])
api_router.include_router(status.router, prefix="/status", tags=["jobs"])
api_router.include_router(availability.router, prefix="/availability", tags=["service"])
api_router.include_router(input_schema.router, prefix="/input_schema", tags=["service"])
api_router.include_router(health.router, prefix="/health", tags=["service"])

# Job lifecycle hooks
api_router.include_router(start_polling.router, prefix="/start_polling", tags=["internal"])
api_router.include_router(update_status.router, prefix="/update_status", tags=["internal"])
