"""
Shared route dependencies
"""

from fastapi import Request

from paywall.services.job_service import JobService


def get_job_service(request: Request) -> JobService:
    """Dependency to get the application's job service instance"""
    return request.app.state.job_service
