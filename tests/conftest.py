"""Shared fixtures: a scripted payment service behind httpx.MockTransport and a fake clock."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from paywall.schemas.payment import PaymentServiceConfig, PollBudget
from paywall.services.payment_service import PaymentService

BASE_URL = "http://payment.test/api/v1"

PAY_BY = "1767225900000"
SUBMIT_RESULT = "1767226800000"
UNLOCK = "1767248400000"
DISPUTE_UNLOCK = "1767270000000"


class FakeLedger:
    """In-process stand-in for the payment service HTTP API."""

    def __init__(self) -> None:
        self.states: Dict[str, Optional[str]] = {}
        self.requests: List[httpx.Request] = []
        self.bodies: List[Dict[str, Any]] = []
        self.list_field = "Payments"
        self.fail_with: Optional[int] = None
        self.fail_submit = False
        self.raise_transport = False
        self.return_hash: Optional[str] = None
        self.auto_lock = False
        self._counter = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = json.loads(request.content) if request.content else {}
        self.bodies.append(body)

        if self.raise_transport:
            raise httpx.ConnectError("connection refused", request=request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, text="upstream exploded")

        path = request.url.path
        if request.method == "POST" and path.endswith("/payment/submit-result"):
            if self.fail_submit:
                return httpx.Response(500, text="submit failed")
            self.states[body["blockchainIdentifier"]] = "ResultSubmitted"
            return httpx.Response(200, json={"status": "success", "data": {"onChainState": "ResultSubmitted"}})

        if request.method == "POST" and path.endswith("/payment/"):
            self._counter += 1
            bid = f"block_{self._counter:04d}"
            self.states[bid] = "FundsLocked" if self.auto_lock else None
            return httpx.Response(200, json={
                "status": "success",
                "data": {
                    "blockchainIdentifier": bid,
                    "payByTime": PAY_BY,
                    "submitResultTime": SUBMIT_RESULT,
                    "unlockTime": UNLOCK,
                    "externalDisputeUnlockTime": DISPUTE_UNLOCK,
                    "inputHash": self.return_hash or body["inputHash"],
                    "onChainState": None,
                },
            })

        if request.method == "POST" and path.endswith("/purchase/"):
            bid = body["blockchainIdentifier"]
            self.states[bid] = "FundsLocked"
            return httpx.Response(200, json={"status": "success", "data": {"blockchainIdentifier": bid}})

        if request.method == "GET" and (path.endswith("/payment/") or path.endswith("/purchase/")):
            bid = request.url.params["blockchainIdentifier"]
            entries = []
            if bid in self.states:
                entries.append({"blockchainIdentifier": bid, "onChainState": self.states[bid]})
            field = self.list_field if path.endswith("/payment/") else "Purchases"
            return httpx.Response(200, json={"status": "success", "data": {field: entries}})

        return httpx.Response(404, text=f"no route {request.method} {path}")

    def calls(self, method: str, suffix: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.endswith(suffix)]


class FakeClock:
    """Monotonic clock advanced only by the injected sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def payment_config() -> PaymentServiceConfig:
    return PaymentServiceConfig(
        payment_service_url=BASE_URL,
        api_key="test-token",
        agent_identifier="agent_0001",
        network="Preprod",
        seller_vkey="seller_vkey_0001",
        timeout_seconds=5,
    )


@pytest.fixture
def payment_service(ledger: FakeLedger, payment_config: PaymentServiceConfig) -> PaymentService:
    return PaymentService(config=payment_config, transport=httpx.MockTransport(ledger.handler))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def quick_budget() -> PollBudget:
    return PollBudget(timeout_minutes=1, interval_seconds=10, initial_delay_seconds=0)
