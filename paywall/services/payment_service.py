"""
Payment service client for the Masumi Payment Service HTTP API
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional, Callable, Sequence, Union

import httpx
from pydantic import ValidationError as PydanticValidationError

from paywall.core.config import settings
from paywall.core.errors import ValidationError, NetworkError, UpstreamError
from paywall.schemas.job import Payment, utcnow
from paywall.schemas.payment import (
    PAYMENT_TYPE,
    Invoice,
    LockResult,
    PaymentServiceConfig,
    PaymentState,
    verbatim,
)
from paywall.utils.hashing import input_hash, result_hash

logger = logging.getLogger(__name__)

# The service has used both casings across versions; first list found wins
PAYMENT_LIST_FIELDS = ("Payments", "payments")
PURCHASE_LIST_FIELDS = ("Purchases", "purchases")


def to_iso(moment: datetime) -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2025-01-01T00:00:00.000Z"""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def find_entry(
    response: Any,
    blockchain_identifier: str,
    candidates: Sequence[str] = PAYMENT_LIST_FIELDS,
) -> Optional[Dict[str, Any]]:
    """
    Locate the entry for a blockchain identifier in a listing response.

    Tries each candidate list field under ``data`` in order, then falls back
    to a response that is itself the entry.
    """
    if not isinstance(response, dict):
        return None

    body = response.get("data")
    if isinstance(body, dict):
        for field in candidates:
            items = body.get(field)
            if isinstance(items, list):
                for item in items:
                    if isinstance(item, dict) and item.get("blockchainIdentifier") == blockchain_identifier:
                        return item
                return None
        if body.get("blockchainIdentifier") == blockchain_identifier:
            return body

    if response.get("blockchainIdentifier") == blockchain_identifier:
        return response
    return None


class PaymentService:
    """Client for the escrow invoice, purchase, status and result endpoints"""

    def __init__(
        self,
        config: Optional[PaymentServiceConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            config: Default connection config (defaults to application settings)
            transport: Optional httpx transport, e.g. httpx.MockTransport in tests
            clock: Source of the current time for invoice deadlines
        """
        self.config = config if config is not None else PaymentServiceConfig.from_settings()
        self._transport = transport
        self._clock = clock

    def is_configured(self) -> bool:
        """Check if payment service is properly configured"""
        return bool(self.config and self.config.agent_identifier)

    def get_agent_info(self) -> dict:
        """Get agent information for Masumi Network"""
        return {
            "network": self.config.network if self.config else settings.NETWORK,
            "agent_identifier": self.config.agent_identifier if self.config else None,
            "seller_vkey": self.config.seller_vkey if self.config else None,
        }

    def _resolve(self, config: Optional[PaymentServiceConfig]) -> PaymentServiceConfig:
        resolved = config or self.config
        if resolved is None:
            raise ValidationError("Payment service not configured (PAYMENT_SERVICE_URL, PAYMENT_API_KEY)")
        return resolved

    async def _request(
        self,
        config: PaymentServiceConfig,
        method: str,
        path: str,
        *,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        headers = {"token": config.api_key, "accept": "application/json"}
        url = f"{config.base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=config.timeout_seconds, headers=headers, transport=self._transport
            ) as client:
                response = await client.request(method, url, json=body, params=params)
        except httpx.HTTPError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

        if not response.is_success:
            logger.error(f"{method} {path} returned {response.status_code}: {response.text[:200]}")
            raise UpstreamError(response.status_code, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(response.status_code, response.text, f"Invalid JSON from {method} {path}") from e

    async def create_invoice(
        self,
        purchaser_id: str,
        input_data: Any,
        result_window: Optional[timedelta] = None,
        config: Optional[PaymentServiceConfig] = None,
    ) -> Invoice:
        """
        Create an escrow invoice (POST /payment/).

        Args:
            purchaser_id: Identifier from purchaser
            input_data: Job input; hashed into the invoice
            result_window: Time allowed for result submission (default SUBMIT_RESULT_MINUTES)
            config: Override for the default connection config

        Returns:
            Parsed invoice with the signed timestamps

        Raises:
            ValidationError: If the agent identifier is not configured
            NetworkError: On transport failure
            UpstreamError: On a non-success status or malformed response
        """
        cfg = self._resolve(config)
        if not cfg.agent_identifier:
            raise ValidationError("agent_identifier is required to create an invoice")

        now = self._clock()
        pay_by_time = now + timedelta(minutes=settings.PAY_BY_MINUTES)
        submit_result_time = now + (result_window or timedelta(minutes=settings.SUBMIT_RESULT_MINUTES))
        hash_value = input_hash(purchaser_id, input_data)
        preview = json.dumps(input_data, ensure_ascii=False, default=str)[:100]

        request_body = {
            "agentIdentifier": cfg.agent_identifier,
            "network": cfg.network,
            "inputHash": hash_value,
            "payByTime": to_iso(pay_by_time),
            "metadata": f"payment request for: {preview}",
            "paymentType": PAYMENT_TYPE,
            "submitResultTime": to_iso(submit_result_time),
            "identifierFromPurchaser": purchaser_id,
        }

        logger.info(f"Creating payment request for purchaser {purchaser_id}")
        response = await self._request(cfg, "POST", "/payment/", body=request_body)

        data = response.get("data") if isinstance(response, dict) else None
        if not isinstance(data, dict):
            raise UpstreamError(200, str(response)[:200], "Payment response missing data")
        try:
            invoice = Invoice.from_data(data)
        except PydanticValidationError as e:
            raise UpstreamError(200, str(data)[:200], f"Malformed payment response: {e}") from e

        logger.info(f"Created payment request with ID: {invoice.blockchain_identifier[:50]}")
        return invoice

    async def lock_funds(
        self,
        invoice: Union[Invoice, Payment],
        purchaser_id: str,
        config: Optional[PaymentServiceConfig] = None,
    ) -> LockResult:
        """
        Lock the purchaser's funds against an invoice (POST /purchase/).

        Timestamps and the input hash are copied from the invoice as strings,
        unchanged; the ledger verifies a signature over these exact values.
        """
        cfg = self._resolve(config)
        if not (cfg.agent_identifier and cfg.seller_vkey):
            raise ValidationError("agent_identifier and seller_vkey are required to lock funds")

        request_body = {
            "identifierFromPurchaser": purchaser_id,
            "network": cfg.network,
            "sellerVkey": cfg.seller_vkey,
            "paymentType": PAYMENT_TYPE,
            "blockchainIdentifier": invoice.blockchain_identifier,
            "payByTime": verbatim(invoice.pay_by_time),
            "submitResultTime": verbatim(invoice.submit_result_time),
            "unlockTime": verbatim(invoice.unlock_time),
            "externalDisputeUnlockTime": verbatim(invoice.external_dispute_unlock_time),
            "agentIdentifier": cfg.agent_identifier,
            "inputHash": invoice.input_hash,
        }

        response = await self._request(cfg, "POST", "/purchase/", body=request_body)
        data = response.get("data", response) if isinstance(response, dict) else {}
        logger.info(f"Locked funds for {invoice.blockchain_identifier[:50]}")
        return LockResult.from_data(data if isinstance(data, dict) else {})

    async def query_status(
        self,
        blockchain_identifier: str,
        config: Optional[PaymentServiceConfig] = None,
        resource: str = "payment",
    ) -> Optional[PaymentState]:
        """
        Current on-chain state of an escrow (GET /payment/ or /purchase/).

        Returns:
            The matching entry, or None when the service does not list it yet
        """
        cfg = self._resolve(config)
        candidates = PURCHASE_LIST_FIELDS if resource == "purchase" else PAYMENT_LIST_FIELDS
        params = {"network": cfg.network, "blockchainIdentifier": blockchain_identifier}

        response = await self._request(cfg, "GET", f"/{resource}/", params=params)
        entry = find_entry(response, blockchain_identifier, candidates)
        if entry is None:
            return None
        return PaymentState.from_data(entry)

    async def submit_result(
        self,
        blockchain_identifier: str,
        purchaser_id: str,
        result: Any,
        config: Optional[PaymentServiceConfig] = None,
    ) -> Dict[str, Any]:
        """
        Submit the result hash for a finished job (POST /payment/submit-result).

        Raises:
            NetworkError: On transport failure
            UpstreamError: On a non-success status
        """
        cfg = self._resolve(config)
        request_body = {
            "network": cfg.network,
            "blockchainIdentifier": blockchain_identifier,
            "submitResultHash": result_hash(purchaser_id, result),
        }
        response = await self._request(cfg, "POST", "/payment/submit-result", body=request_body)
        logger.info(f"Result submitted on-chain for {blockchain_identifier[:20]}...")
        return response if isinstance(response, dict) else {"data": response}
