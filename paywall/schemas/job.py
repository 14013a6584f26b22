"""
Job-related Pydantic schemas
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any, Union

from pydantic import BaseModel, Field

from paywall.schemas.payment import Invoice, verbatim


class JobStatus(str, Enum):
    """Job lifecycle states (MIP-003)"""
    PENDING = "pending"
    AWAITING_PAYMENT = "awaiting_payment"
    AWAITING_INPUT = "awaiting_input"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


VALID_JOB_STATUSES = [status.value for status in JobStatus]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Payment(BaseModel):
    """
    Escrow invoice attached to a job.

    Frozen: the timestamps and hash are covered by the ledger's signature and
    are never recomputed once stored.
    """
    blockchain_identifier: str
    pay_by_time: str
    submit_result_time: str
    unlock_time: str
    external_dispute_unlock_time: str
    input_hash: str

    class Config:
        frozen = True

    @classmethod
    def from_invoice(cls, invoice: Invoice, input_hash: str) -> "Payment":
        return cls(
            blockchain_identifier=invoice.blockchain_identifier,
            pay_by_time=verbatim(invoice.pay_by_time),
            submit_result_time=verbatim(invoice.submit_result_time),
            unlock_time=verbatim(invoice.unlock_time),
            external_dispute_unlock_time=verbatim(invoice.external_dispute_unlock_time),
            input_hash=input_hash,
        )


class Job(BaseModel):
    """A unit of work gated behind an escrow payment"""
    job_id: str
    purchaser_id: str
    input_data: Any = None
    status: JobStatus = JobStatus.PENDING
    payment: Optional[Payment] = None
    result: Any = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = Field(0, description="Optimistic concurrency token, bumped by the store on every write")


class InputDataItem(BaseModel):
    """Key-value pair for input data (MIP-003 format)"""
    key: str = Field(..., description="Input field id")
    value: Any = Field(None, description="Input value")


class StartJobRequest(BaseModel):
    """Request model for starting a job (MIP-003 compliant)"""
    identifier_from_purchaser: Optional[str] = Field(None, description="Identifier from purchaser")
    input_data: Union[List[InputDataItem], Dict[str, Any]] = Field(..., description="Array of key-value pairs or an object")

    def input_dict(self) -> Dict[str, Any]:
        """Input data as a mapping; items with blank keys are dropped"""
        if isinstance(self.input_data, dict):
            return dict(self.input_data)
        return {item.key: item.value for item in self.input_data if item.key and item.key.strip()}


class StartJobResponse(BaseModel):
    """Response model for job creation (MIP-003 compliant)"""
    status: str = Field(default="success", description="Status of job creation")
    job_id: str = Field(..., description="Unique job identifier")
    blockchainIdentifier: str = Field(..., description="Blockchain payment identifier")
    payByTime: Union[int, str] = Field(..., description="Time by which payment must be made")
    submitResultTime: Union[int, str] = Field(..., description="Time to submit result")
    unlockTime: Union[int, str] = Field(..., description="Time when payment unlocks")
    externalDisputeUnlockTime: Union[int, str] = Field(..., description="External dispute unlock time")
    agentIdentifier: Optional[str] = Field(None, description="Agent identifier")
    sellerVKey: Optional[str] = Field(None, description="Seller verification key")
    identifierFromPurchaser: str = Field(..., description="Identifier from purchaser")
    amounts: List[Dict[str, Any]] = Field(default_factory=list, description="Payment amounts")
    input_hash: str = Field(..., description="Hash of input data")


class StatusResponse(BaseModel):
    """Job status response (MIP-003 compliant)"""
    job_id: str = Field(..., description="Unique job identifier")
    status: str = Field(..., description="Current job status")
    result: Any = Field(None, description="Job result if completed")
    message: Optional[str] = Field(None, description="Human readable status or error message")
    payByTime: Optional[int] = Field(None, description="Payment deadline in seconds since epoch")


class UpdateStatusRequest(BaseModel):
    """Business logic reporting a job status"""
    job_id: str
    status: str
    result: Any = None
    error: Optional[str] = None
    submit_on_chain: bool = Field(True, description="Submit the result hash to the ledger on completion")


class StartPollingRequest(BaseModel):
    """Internal trigger for confirmation polling"""
    job_id: str
    job_data: Optional[Job] = None
