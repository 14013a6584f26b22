"""
Job service: payment-gated job lifecycle
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel

from paywall.core.errors import (
    PaywallError,
    ValidationError,
    InvalidTransitionError,
    ConcurrentUpdateError,
    JobNotFoundError,
    JobCreationError,
)
from paywall.db.store import JobStore, InMemoryJobStore
from paywall.schemas.job import Job, JobStatus, Payment, StatusResponse, VALID_JOB_STATUSES, utcnow
from paywall.schemas.payment import PaymentServiceConfig, PollBudget, PollResult
from paywall.services.notifier import BackgroundNotifier
from paywall.services.payment_service import PaymentService
from paywall.services.poller import poll_payment_status
from paywall.utils.hashing import input_hash, new_identifier

logger = logging.getLogger(__name__)

# Business logic run once funds are locked; it reports back via update_status
PaymentConfirmedHandler = Callable[[Job], Awaitable[Any]]

MAX_WRITE_ATTEMPTS = 5

# Forward edges of the job state machine; failed is reachable from any
# non-terminal status and is handled separately
ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.AWAITING_PAYMENT},
    JobStatus.AWAITING_PAYMENT: {JobStatus.RUNNING},
    JobStatus.RUNNING: {JobStatus.AWAITING_INPUT, JobStatus.COMPLETED},
    JobStatus.AWAITING_INPUT: {JobStatus.RUNNING},
}

STATUS_MESSAGES = {
    JobStatus.AWAITING_PAYMENT: "Waiting for payment confirmation on blockchain",
    JobStatus.RUNNING: "Job is being processed",
    JobStatus.AWAITING_INPUT: "Waiting for additional input",
    JobStatus.COMPLETED: "Job completed successfully",
}


def check_transition(job: Job, new_status: JobStatus) -> None:
    """
    Enforce the job state machine.

    Only the edges in ``ALLOWED_TRANSITIONS`` are followed, so a job is
    completed only from running. ``failed`` is reachable from any
    non-terminal status, a non-terminal status may be re-applied, and
    terminal jobs never change.

    Raises:
        InvalidTransitionError: If the move is not allowed
    """
    current = job.status
    if current.is_terminal:
        raise InvalidTransitionError(job.job_id, current.value, new_status.value)
    if new_status is JobStatus.FAILED or new_status is current:
        return
    if new_status not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(job.job_id, current.value, new_status.value)


def epoch_seconds(value: Optional[str]) -> Optional[int]:
    """Seconds since epoch from a millisecond string or an ISO-8601 timestamp"""
    if not value:
        return None
    if value.isdigit():
        return int(value) // 1000
    try:
        return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp())
    except ValueError:
        return None


class PollAndAdvanceResult(BaseModel):
    """Job after a polling run, with the poll outcome when polling happened"""
    job: Job
    poll: Optional[PollResult] = None


class JobService:
    """Creates paywalled jobs, tracks their payment and reports results to the ledger"""

    def __init__(
        self,
        store: Optional[JobStore] = None,
        payment_service: Optional[PaymentService] = None,
        poll_budget: Optional[PollBudget] = None,
        on_payment_confirmed: Optional[PaymentConfirmedHandler] = None,
        result_window: Optional[timedelta] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            store: Job persistence (defaults to an in-memory store)
            payment_service: Payment service client (defaults to settings)
            poll_budget: Default budget for confirmation polling
            on_payment_confirmed: Business logic started when a job becomes running
            result_window: Time allowed for result submission on new invoices
            sleep: Sleep coroutine used while polling
            clock: Monotonic clock used while polling
        """
        self.store = store if store is not None else InMemoryJobStore()
        self.payment_service = payment_service if payment_service is not None else PaymentService()
        self.poll_budget = poll_budget or PollBudget.from_settings()
        self.on_payment_confirmed = on_payment_confirmed
        self.result_window = result_window
        self._sleep = sleep
        self._clock = clock

        self.notifier = BackgroundNotifier(self._poll_in_background)
        self._handler_runner = BackgroundNotifier(self._run_handler_in_background)

    async def create_job(self, purchaser_id: Optional[str], input_data: Any) -> Job:
        """
        Create an invoice and store a job awaiting payment.

        Background polling is triggered exactly once, whether or not creation
        succeeded, and is never awaited here.

        Args:
            purchaser_id: Identifier from purchaser; generated when missing
            input_data: Job input

        Returns:
            Stored job with status awaiting_payment

        Raises:
            JobCreationError: If the invoice could not be created or stored
        """
        job_id = new_identifier()
        purchaser_id = purchaser_id or new_identifier()
        logger.info(f"Starting job {job_id} for purchaser {purchaser_id}")

        stored: Optional[Job] = None
        failure: Optional[JobCreationError] = None
        try:
            expected_hash = input_hash(purchaser_id, input_data)
            invoice = await self.payment_service.create_invoice(
                purchaser_id, input_data, result_window=self.result_window
            )
            if invoice.input_hash != expected_hash:
                logger.warning(f"Payment service returned input hash {invoice.input_hash} for job {job_id}, expected {expected_hash}")

            now = utcnow()
            job = Job(
                job_id=job_id,
                purchaser_id=purchaser_id,
                input_data=input_data,
                status=JobStatus.AWAITING_PAYMENT,
                payment=Payment.from_invoice(invoice, expected_hash),
                created_at=now,
                updated_at=now,
            )
            stored = await self.store.put(job)
            logger.info(f"Created job {job_id} with blockchain_identifier {invoice.blockchain_identifier[:50]}")
        except PaywallError as e:
            logger.error(f"Failed to create job {job_id}: {e}")
            failure = JobCreationError(job_id, purchaser_id, e)

        self.notifier.fire(job_id, stored)

        if failure is not None:
            raise failure from failure.cause
        return stored

    async def get_job(self, job_id: str) -> Job:
        """
        Raises:
            JobNotFoundError: If the job does not exist
        """
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def _transition(
        self,
        job_id: str,
        apply: Callable[[Job], Optional[Job]],
        initial: Optional[Job] = None,
    ) -> Job:
        """
        Load, copy, mutate and compare-and-set a job.

        ``apply`` receives a copy and returns the updated job, or None for no
        change. It is re-run against a fresh copy after a concurrent write.
        """
        job = initial
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            if job is None:
                job = await self.get_job(job_id)
            updated = apply(job.model_copy(deep=True))
            if updated is None:
                return job
            if job.payment is not None and updated.payment != job.payment:
                raise ValidationError(f"Payment of job {job_id} is immutable")

            updated = updated.model_copy(update={"updated_at": utcnow()})
            try:
                return await self.store.put(updated, expected_version=job.version)
            except ConcurrentUpdateError:
                logger.info(f"Concurrent update on job {job_id} (attempt {attempt}), reloading")
                job = None
        raise ConcurrentUpdateError(job_id)

    async def poll_and_advance(
        self,
        job_id: str,
        budget: Optional[PollBudget] = None,
        job: Optional[Job] = None,
        run_handler: bool = True,
    ) -> PollAndAdvanceResult:
        """
        Poll the ledger for a job awaiting payment and move it to running once
        funds are confirmed.

        Jobs in any other status are returned unchanged. Ledger errors and
        timeouts leave the job awaiting payment; the poll result is returned.

        Args:
            job_id: Job identifier
            budget: Polling budget (defaults to the service budget)
            job: Job payload already in hand, saves the first store read; the
                write is always based on the stored job and only advances it
                when its payment matches the one polled
            run_handler: Run the confirmation handler inline rather than in the background

        Raises:
            JobNotFoundError: If the job does not exist
        """
        current = job if job is not None else await self.get_job(job_id)
        if current.status is not JobStatus.AWAITING_PAYMENT:
            logger.info(f"Job {job_id} is {current.status.value}, nothing to poll")
            return PollAndAdvanceResult(job=current)
        if current.payment is None:
            raise ValidationError(f"Job {job_id} has no payment to poll")

        blockchain_identifier = current.payment.blockchain_identifier
        logger.info(f"Starting payment status polling for job {job_id}")
        poll = await poll_payment_status(
            lambda: self.payment_service.query_status(blockchain_identifier),
            budget or self.poll_budget,
            sleep=self._sleep,
            clock=self._clock,
        )

        if not poll.success:
            logger.warning(f"Payment for job {job_id} not confirmed: {poll.message}")
            return PollAndAdvanceResult(job=await self.get_job(job_id), poll=poll)

        advanced = False
        mismatch = False

        def to_running(candidate: Job) -> Optional[Job]:
            nonlocal advanced, mismatch
            mismatch = candidate.payment != current.payment
            advanced = candidate.status is JobStatus.AWAITING_PAYMENT and not mismatch
            if not advanced:
                return None
            return candidate.model_copy(update={"status": JobStatus.RUNNING})

        # always written on top of the stored record, never the payload
        updated = await self._transition(job_id, to_running)
        if mismatch:
            logger.warning(f"Polled payment for job {job_id} does not match the stored payment, not advancing")
            return PollAndAdvanceResult(job=updated, poll=poll)
        if not advanced:
            logger.info(f"Job {job_id} was advanced by another poller ({updated.status.value})")
            return PollAndAdvanceResult(job=updated, poll=poll)

        logger.info(f"Job {job_id} status updated to running")
        if self.on_payment_confirmed is not None:
            if run_handler:
                updated = await self._run_handler(updated)
            else:
                self._handler_runner.fire(job_id, updated)
        return PollAndAdvanceResult(job=updated, poll=poll)

    async def _run_handler(self, job: Job) -> Job:
        try:
            await self.on_payment_confirmed(job)
        except Exception as e:
            logger.error(f"Error processing job {job.job_id} after payment confirmation: {e}")
            try:
                return await self.update_status(
                    job.job_id, JobStatus.FAILED, error=f"Error after payment confirmation: {e}"
                )
            except PaywallError as update_error:
                logger.error(f"Failed to update job status: {update_error}")
        latest = await self.store.get(job.job_id)
        return latest or job

    async def _run_handler_in_background(self, job_id: str, job: Optional[Job]) -> None:
        await self._run_handler(job or await self.get_job(job_id))

    async def _poll_in_background(self, job_id: str, job: Optional[Job]) -> None:
        try:
            outcome = await self.poll_and_advance(job_id, job=job)
        except JobNotFoundError:
            logger.warning(f"Job {job_id} is not stored, nothing to poll")
            return
        poll_message = outcome.poll.message if outcome.poll else "no polling needed"
        logger.info(f"Background polling for job {job_id} finished: {outcome.job.status.value} ({poll_message})")

    async def refresh_payment(self, job_id: str) -> Job:
        """
        Single payment check for a job awaiting payment, without delay.

        Confirmation handling, if any, continues in the background.
        """
        outcome = await self.poll_and_advance(job_id, PollBudget.single_check(), run_handler=False)
        return outcome.job

    async def update_status(
        self,
        job_id: str,
        status: Any,
        result: Any = None,
        error: Optional[str] = None,
        config: Optional[PaymentServiceConfig] = None,
    ) -> Job:
        """
        Apply a status reported by business logic.

        With a payment config, completing a job first submits the result hash
        to the ledger; if that fails the job is left untouched and the error
        propagates.

        Args:
            job_id: Job identifier
            status: New status (JobStatus or its string value)
            result: Required when completing
            error: Required when failing
            config: Payment service config for on-chain result submission

        Raises:
            JobNotFoundError: If the job does not exist (nothing is written)
            ValidationError: Unknown status, missing result/error or illegal transition
            PaymentServiceError: If result submission fails
        """
        job = await self.get_job(job_id)

        try:
            new_status = JobStatus(status)
        except ValueError:
            raise ValidationError(f"status must be one of: {', '.join(VALID_JOB_STATUSES)}") from None
        if new_status is JobStatus.COMPLETED and result is None:
            raise ValidationError("result is required when completing a job")
        if new_status is JobStatus.FAILED and not error:
            raise ValidationError("error is required when failing a job")
        check_transition(job, new_status)

        submitted = False
        if new_status is JobStatus.COMPLETED and config is not None and job.payment is not None:
            try:
                await self.payment_service.submit_result(
                    job.payment.blockchain_identifier, job.purchaser_id, result, config=config
                )
            except PaywallError as e:
                logger.error(f"Failed to submit result on-chain for job {job_id}: {e}")
                raise
            submitted = True
            logger.info(f"Result submitted on-chain for job {job_id}")

        def apply(candidate: Job) -> Job:
            check_transition(candidate, new_status)
            changes = {"status": new_status}
            if new_status is JobStatus.COMPLETED:
                changes["result"] = result
            if new_status is JobStatus.FAILED:
                changes["error"] = error
            return candidate.model_copy(update=changes)

        try:
            updated = await self._transition(job_id, apply, initial=job)
        except PaywallError as e:
            if submitted:
                logger.error(
                    f"Result for job {job_id} was submitted on-chain but the job could not be marked "
                    f"{new_status.value}: {e}"
                )
            raise
        logger.info(f"Job {job_id} status updated to {new_status.value}")
        return updated

    async def get_status(self, job_id: str, refresh: bool = True) -> StatusResponse:
        """
        MIP-003 status view of a job.

        Jobs awaiting payment get one status check first when ``refresh`` is
        set and the payment service is configured.
        """
        job = await self.get_job(job_id)

        if refresh and job.status is JobStatus.AWAITING_PAYMENT and self.payment_service.config:
            try:
                job = await self.refresh_payment(job_id)
            except PaywallError as e:
                logger.warning(f"Payment refresh for job {job_id} failed: {e}")

        message = job.error if job.status is JobStatus.FAILED else STATUS_MESSAGES.get(job.status)
        return StatusResponse(
            job_id=job.job_id,
            status=job.status.value,
            result=job.result,
            message=message,
            payByTime=epoch_seconds(job.payment.pay_by_time) if job.payment else None,
        )

    async def aclose(self) -> None:
        """Wait for background polling and handlers to finish"""
        await self.notifier.drain()
        await self._handler_runner.drain()
