"""
Payment confirmation polling

The poller knows nothing about HTTP or wall-clock time: callers inject the
status query, the sleep coroutine and the clock.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from paywall.core.errors import PaymentServiceError
from paywall.schemas.payment import (
    PaymentClassification,
    PaymentState,
    PollBudget,
    PollOutcome,
    PollResult,
)

logger = logging.getLogger(__name__)

CONFIRMED_STATES = frozenset({"FundsLocked"})
PROCESSED_STATES = frozenset({"ResultSubmitted", "Withdrawn"})
ERROR_STATES = frozenset({
    "FundsOrDatumInvalid",
    "RefundRequested",
    "Disputed",
    "RefundWithdrawn",
    "DisputedWithdrawn",
})

StatusQuery = Callable[[], Awaitable[Optional[PaymentState]]]


def classify_state(state: Optional[str]) -> PaymentClassification:
    """Classify an on-chain state string (case-sensitive)"""
    if state in CONFIRMED_STATES or state in PROCESSED_STATES:
        return PaymentClassification.SUCCESS
    if state in ERROR_STATES:
        return PaymentClassification.ERROR
    return PaymentClassification.PENDING


def describe_state(state: Optional[str]) -> str:
    if state in CONFIRMED_STATES:
        return "payment confirmed"
    if state in PROCESSED_STATES:
        return "payment already processed"
    if state in ERROR_STATES:
        return f"payment failed: {state}"
    return f"still processing: {state or 'pending'}"


async def poll_payment_status(
    query: StatusQuery,
    budget: Optional[PollBudget] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> PollResult:
    """
    Query payment state until a terminal state is seen or the budget runs out.

    The first query happens after ``budget.initial_delay_seconds``; the
    timeout is measured from that first query. A failing query is logged and
    retried on the next interval. At least one query is always made.

    Args:
        query: Coroutine function returning the current PaymentState or None
        budget: Timeout, interval and initial delay
        sleep: Injected sleep coroutine
        clock: Injected monotonic clock in seconds

    Returns:
        PollResult; on timeout it carries the last successfully observed state
    """
    budget = budget or PollBudget()
    timeout_seconds = budget.timeout_minutes * 60

    if budget.initial_delay_seconds > 0:
        await sleep(budget.initial_delay_seconds)

    start = clock()
    attempts = 0
    last_seen: Optional[PaymentState] = None

    while True:
        attempts += 1
        elapsed = clock() - start
        logger.info(f"Poll attempt #{attempts} ({elapsed:.0f}s elapsed)")

        try:
            payment = await query()
        except PaymentServiceError as e:
            logger.warning(f"Poll error on attempt #{attempts}: {e}")
        else:
            if payment is None:
                logger.info("Payment not found yet")
            else:
                last_seen = payment
                state = payment.on_chain_state
                classification = classify_state(state)
                if classification.is_terminal:
                    outcome = (
                        PollOutcome.CONFIRMED
                        if classification is PaymentClassification.SUCCESS
                        else PollOutcome.FAILED
                    )
                    logger.info(f"Terminal payment state {state}: {outcome.value}")
                    return PollResult(
                        outcome=outcome,
                        status=state,
                        payment=payment,
                        message=describe_state(state),
                        attempts=attempts,
                    )
                logger.info(f"Still waiting (state: {state or 'none'})")

        if clock() - start >= timeout_seconds:
            break
        await sleep(budget.interval_seconds)

    logger.info(f"Polling timeout reached after {budget.timeout_minutes:g} minutes")
    return PollResult(
        outcome=PollOutcome.TIMEOUT,
        status="timeout",
        payment=last_seen,
        message=f"payment polling timeout after {budget.timeout_minutes:g} minutes",
        attempts=attempts,
        timeout_minutes=budget.timeout_minutes,
    )
