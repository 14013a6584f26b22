"""
Paywall error types
"""

from typing import Any, Optional


class PaywallError(Exception):
    """Base class for all paywall errors"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ValidationError(PaywallError):
    """A required field is missing or invalid. Never retried."""


class InvalidTransitionError(ValidationError):
    """Requested status change violates the job state machine"""
    def __init__(self, job_id: str, current: str, requested: str):
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(f"Job {job_id} cannot move from {current} to {requested}")


class EncodingError(PaywallError):
    """Value cannot be serialized for hashing (cycles, NaN, unsupported types)"""


class PaymentServiceError(PaywallError):
    """Base class for failures talking to the payment service"""


class NetworkError(PaymentServiceError):
    """Transport-level failure reaching the payment service"""


class UpstreamError(PaymentServiceError):
    """Payment service answered with a non-success status or an unreadable body"""
    def __init__(self, status_code: int, body: str, message: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"Payment service HTTP {status_code}: {body[:200]}")


class TerminalLedgerError(PaywallError):
    """Ledger reports a terminal error state for the escrow"""
    def __init__(self, state: str, payment: Any = None):
        self.state = state
        self.payment = payment
        super().__init__(f"payment failed: {state}")


class PaymentTimeoutError(PaywallError):
    """Polling budget exhausted before a terminal state was observed"""
    def __init__(self, timeout_minutes: float, last_state: Any = None):
        self.timeout_minutes = timeout_minutes
        self.last_state = last_state
        super().__init__(f"payment polling timeout after {timeout_minutes:g} minutes")


class JobNotFoundError(PaywallError):
    """No job is stored under the given identifier"""
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class ConcurrentUpdateError(PaywallError):
    """Stored job changed between load and write"""
    def __init__(self, job_id: str, expected_version: Optional[int] = None):
        self.job_id = job_id
        self.expected_version = expected_version
        super().__init__(f"Job {job_id} was modified concurrently (expected version {expected_version})")


class JobCreationError(PaywallError):
    """Invoice creation failed; carries identifiers for traceability"""
    def __init__(self, job_id: str, purchaser_id: str, cause: Exception):
        self.job_id = job_id
        self.purchaser_id = purchaser_id
        self.cause = cause
        super().__init__(f"Failed to create job: {cause}")
