"""
Input schema endpoint (MIP-003: /input_schema)
Returns the expected input schema for the /start_job endpoint.
"""

from fastapi import APIRouter

router = APIRouter()


@router.get("")
async def input_schema():
    """
    Returns the expected input schema for the /start_job endpoint.
    Fulfills MIP-003 /input_schema endpoint.
    """
    return {
        "input_data": [
            {
                "id": "identifier_from_purchaser",
                "type": "string",
                "name": "Job Identifier",
                "data": {
                    "description": "Your custom identifier for tracking this job",
                    "placeholder": "my-job-123"
                }
            },
            {
                "id": "input_data",
                "type": "object",
                "name": "Input Data",
                "data": {
                    "description": "Data to be processed by the service"
                }
            }
        ]
    }
