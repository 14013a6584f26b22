"""
Payment service Pydantic schemas
"""

from enum import Enum
from typing import Optional, List, Dict, Any, Union

from pydantic import BaseModel, Field

from paywall.core.config import settings
from paywall.core.errors import PaywallError, TerminalLedgerError, PaymentTimeoutError

PAYMENT_TYPE = "Web3CardanoV1"

Timestamp = Union[int, str]


def verbatim(value: Timestamp) -> str:
    """String form of an invoice timestamp, exactly as the ledger signed it"""
    return value if isinstance(value, str) else str(value)


class PaymentServiceConfig(BaseModel):
    """Connection details for the Masumi payment service"""
    payment_service_url: str = Field(..., description="Base URL, e.g. https://payment.example/api/v1")
    api_key: str = Field(..., description="Value of the token header")
    agent_identifier: Optional[str] = None
    network: str = "Preprod"
    seller_vkey: Optional[str] = None
    timeout_seconds: float = 30.0

    @classmethod
    def from_settings(cls) -> Optional["PaymentServiceConfig"]:
        """Build from application settings, or None when the service is not configured"""
        if not (settings.PAYMENT_SERVICE_URL and settings.PAYMENT_API_KEY):
            return None
        return cls(
            payment_service_url=settings.PAYMENT_SERVICE_URL,
            api_key=settings.PAYMENT_API_KEY,
            agent_identifier=settings.AGENT_IDENTIFIER,
            network=settings.NETWORK,
            seller_vkey=settings.SELLER_VKEY,
            timeout_seconds=settings.HTTP_TIMEOUT_SECONDS,
        )

    @property
    def base_url(self) -> str:
        return self.payment_service_url.rstrip("/")


class Invoice(BaseModel):
    """Escrow invoice returned by POST /payment/"""
    blockchain_identifier: str = Field(..., alias="blockchainIdentifier")
    pay_by_time: Timestamp = Field(..., alias="payByTime")
    submit_result_time: Timestamp = Field(..., alias="submitResultTime")
    unlock_time: Timestamp = Field(..., alias="unlockTime")
    external_dispute_unlock_time: Timestamp = Field(..., alias="externalDisputeUnlockTime")
    input_hash: str = Field(..., alias="inputHash")
    on_chain_state: Optional[str] = Field(None, alias="onChainState")
    requested_funds: List[Dict[str, Any]] = Field(default_factory=list, alias="RequestedFunds")
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    class Config:
        populate_by_name = True

    @classmethod
    def from_data(cls, data: Dict[str, Any]) -> "Invoice":
        return cls.model_validate({**data, "raw": data})


class PaymentState(BaseModel):
    """One entry of the payment/purchase listing"""
    blockchain_identifier: str = Field(..., alias="blockchainIdentifier")
    on_chain_state: Optional[str] = Field(None, alias="onChainState")
    input_hash: Optional[str] = Field(None, alias="inputHash")
    next_action: Optional[Dict[str, Any]] = Field(None, alias="NextAction")
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    class Config:
        populate_by_name = True

    @classmethod
    def from_data(cls, data: Dict[str, Any]) -> "PaymentState":
        return cls.model_validate({**data, "raw": data})


class LockResult(BaseModel):
    """Confirmation returned by POST /purchase/"""
    blockchain_identifier: Optional[str] = Field(None, alias="blockchainIdentifier")
    on_chain_state: Optional[str] = Field(None, alias="onChainState")
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    class Config:
        populate_by_name = True

    @classmethod
    def from_data(cls, data: Dict[str, Any]) -> "LockResult":
        return cls.model_validate({**data, "raw": data})


class PaymentClassification(str, Enum):
    """How an on-chain state affects polling"""
    SUCCESS = "success"
    ERROR = "error"
    PENDING = "pending"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentClassification.PENDING


class PollOutcome(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMEOUT = "timeout"


class PollBudget(BaseModel):
    """Time budget for one confirmation-polling run"""
    timeout_minutes: float = Field(10, ge=0)
    interval_seconds: float = Field(10, ge=0)
    initial_delay_seconds: float = Field(2, ge=0)

    @classmethod
    def from_settings(cls) -> "PollBudget":
        return cls(
            timeout_minutes=settings.POLL_TIMEOUT_MINUTES,
            interval_seconds=settings.POLL_INTERVAL_SECONDS,
            initial_delay_seconds=settings.POLL_INITIAL_DELAY_SECONDS,
        )

    @classmethod
    def single_check(cls) -> "PollBudget":
        """Exactly one status query, no waiting"""
        return cls(timeout_minutes=0, interval_seconds=0, initial_delay_seconds=0)


class PollResult(BaseModel):
    """Outcome of a confirmation-polling run"""
    outcome: PollOutcome
    status: str = Field(..., description="On-chain state, or 'timeout'")
    payment: Optional[PaymentState] = Field(None, description="Last successfully observed payment state")
    message: str
    attempts: int = 0
    timeout_minutes: Optional[float] = None

    @property
    def success(self) -> bool:
        return self.outcome is PollOutcome.CONFIRMED

    @property
    def error(self) -> Optional[PaywallError]:
        """Typed error for failed or timed-out runs"""
        if self.outcome is PollOutcome.FAILED:
            return TerminalLedgerError(self.status, self.payment)
        if self.outcome is PollOutcome.TIMEOUT:
            last_state = self.payment.on_chain_state if self.payment else None
            return PaymentTimeoutError(self.timeout_minutes or 0, last_state)
        return None


class PaymentOutcome(BaseModel):
    """Result of the buyer-side pay-and-confirm flow"""
    success: bool
    is_payment_confirmed: bool
    payment_status: str
    blockchain_identifier: str
    identifier: str
    input_hash: str
    original_input: Any = None
