"""
Buyer-side payment flow: invoice, lock funds, wait for confirmation
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from paywall.schemas.payment import PaymentOutcome, PollBudget
from paywall.services.payment_service import PaymentService
from paywall.services.poller import poll_payment_status
from paywall.utils.hashing import input_hash, new_identifier

logger = logging.getLogger(__name__)


async def process_payment(
    payment_service: PaymentService,
    input_data: Any,
    purchaser_id: Optional[str] = None,
    budget: Optional[PollBudget] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> PaymentOutcome:
    """
    Pay for an input end to end.

    1. Create the invoice
    2. Lock funds, echoing the invoice's signed values unchanged
    3. Poll until the payment is confirmed, fails or times out

    Service errors from steps 1 and 2 propagate; polling outcomes are
    reported in the returned PaymentOutcome.
    """
    identifier = purchaser_id or new_identifier()
    hash_value = input_hash(identifier, input_data)

    invoice = await payment_service.create_invoice(identifier, input_data)
    await payment_service.lock_funds(invoice, identifier)

    poll = await poll_payment_status(
        lambda: payment_service.query_status(invoice.blockchain_identifier),
        budget or PollBudget.from_settings(),
        sleep=sleep,
        clock=clock,
    )
    logger.info(f"Payment {invoice.blockchain_identifier[:50]} finished polling: {poll.status}")

    return PaymentOutcome(
        success=True,
        is_payment_confirmed=poll.success,
        payment_status=poll.status,
        blockchain_identifier=invoice.blockchain_identifier,
        identifier=identifier,
        input_hash=hash_value,
        original_input=input_data,
    )
