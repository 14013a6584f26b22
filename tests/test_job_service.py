"""Tests for the payment-gated job lifecycle."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import List

import pytest

from paywall.core.errors import (
    ConcurrentUpdateError,
    EncodingError,
    InvalidTransitionError,
    JobCreationError,
    JobNotFoundError,
    UpstreamError,
    ValidationError,
)
from paywall.db.store import InMemoryJobStore
from paywall.schemas.job import Job, JobStatus, Payment
from paywall.schemas.payment import PollBudget, PollOutcome
from paywall.services.job_service import JobService, check_transition, epoch_seconds
from paywall.utils.hashing import input_hash, result_hash


class SpyStore(InMemoryJobStore):
    def __init__(self) -> None:
        super().__init__()
        self.puts = 0

    async def put(self, job, expected_version=None):
        self.puts += 1
        return await super().put(job, expected_version)


def _service(payment_service, clock, quick_budget, **kwargs) -> JobService:
    kwargs.setdefault("store", InMemoryJobStore())
    return JobService(
        payment_service=payment_service,
        poll_budget=quick_budget,
        sleep=clock.sleep,
        clock=clock,
        **kwargs,
    )


async def _seed(service: JobService, status: JobStatus = JobStatus.AWAITING_PAYMENT, bid: str = "block_0100") -> Job:
    job = Job(
        job_id="00112233445566",
        purchaser_id="purchaser01",
        input_data={"text": "hi"},
        status=status,
        payment=Payment(
            blockchain_identifier=bid,
            pay_by_time="1767225900000",
            submit_result_time="1767226800000",
            unlock_time="1767248400000",
            external_dispute_unlock_time="1767270000000",
            input_hash=input_hash("purchaser01", {"text": "hi"}),
        ),
    )
    return await service.store.put(job)


def test_job_lifecycle_end_to_end(payment_service, payment_config, ledger, clock, quick_budget) -> None:
    ledger.auto_lock = True
    handled: List[str] = []

    async def scenario() -> None:
        async def handler(job: Job) -> None:
            handled.append(job.job_id)
            await service.update_status(job.job_id, "completed", result="the summary", config=payment_config)

        service = _service(payment_service, clock, quick_budget, on_payment_confirmed=handler)
        job = await service.create_job("purchaser01", {"text": "hi"})

        assert job.status is JobStatus.AWAITING_PAYMENT
        assert job.payment.input_hash == input_hash("purchaser01", {"text": "hi"})
        assert job.payment.pay_by_time == "1767225900000"
        assert service.notifier.is_active(job.job_id)

        await service.aclose()

        final = await service.get_job(job.job_id)
        assert final.status is JobStatus.COMPLETED
        assert final.result == "the summary"
        assert handled == [job.job_id]

        bid = job.payment.blockchain_identifier
        assert ledger.states[bid] == "ResultSubmitted"
        submit = ledger.bodies[ledger.requests.index(ledger.calls("POST", "/payment/submit-result")[0])]
        assert submit["submitResultHash"] == result_hash("purchaser01", "the summary")

        status = await service.get_status(job.job_id)
        assert status.status == "completed"
        assert status.result == "the summary"
        assert status.message == "Job completed successfully"
        assert status.payByTime == 1767225900

    asyncio.run(scenario())


def test_create_job_generates_purchaser_id(payment_service, clock) -> None:
    async def scenario() -> None:
        service = _service(payment_service, clock, PollBudget.single_check())
        job = await service.create_job(None, {"text": "hi"})
        await service.aclose()

        assert re.fullmatch(r"[0-9a-f]{14}", job.purchaser_id)
        assert re.fullmatch(r"[0-9a-f]{14}", job.job_id)
        assert job.payment.input_hash == input_hash(job.purchaser_id, {"text": "hi"})

    asyncio.run(scenario())


def test_create_job_failure_still_triggers_polling_once(payment_service, ledger, clock, quick_budget) -> None:
    ledger.fail_with = 500
    fired: List[str] = []

    async def scenario() -> None:
        service = _service(payment_service, clock, quick_budget)
        service.notifier.fire = lambda job_id, job=None: fired.append(job_id) or True

        with pytest.raises(JobCreationError) as excinfo:
            await service.create_job("purchaser01", {"text": "hi"})

        error = excinfo.value
        assert isinstance(error.cause, UpstreamError)
        assert error.purchaser_id == "purchaser01"
        assert error.message.startswith("Failed to create job: ")
        assert fired == [error.job_id]
        assert len(service.store) == 0

    asyncio.run(scenario())


def test_background_poll_for_unknown_job_is_harmless(payment_service, clock, quick_budget) -> None:
    async def scenario() -> None:
        service = _service(payment_service, clock, quick_budget)
        assert service.notifier.fire("ffffffffffffff") is True
        await service.aclose()
        assert not service.notifier.is_active("ffffffffffffff")

    asyncio.run(scenario())


def test_update_status_on_missing_job_writes_nothing(payment_service, payment_config, ledger, clock, quick_budget) -> None:
    async def scenario() -> None:
        store = SpyStore()
        service = _service(payment_service, clock, quick_budget, store=store)
        with pytest.raises(JobNotFoundError):
            await service.update_status("nope0000000000", "completed", result="x", config=payment_config)
        assert store.puts == 0
        assert ledger.requests == []

    asyncio.run(scenario())


def test_failed_result_submission_leaves_job_running(payment_service, payment_config, ledger, clock, quick_budget) -> None:
    ledger.fail_submit = True

    async def scenario() -> None:
        service = _service(payment_service, clock, quick_budget)
        seeded = await _seed(service, JobStatus.RUNNING)

        with pytest.raises(UpstreamError):
            await service.update_status(seeded.job_id, JobStatus.COMPLETED, result="done", config=payment_config)

        job = await service.get_job(seeded.job_id)
        assert job.status is JobStatus.RUNNING
        assert job.result is None
        assert job.version == seeded.version

    asyncio.run(scenario())


def test_completion_without_config_skips_ledger(payment_service, ledger, clock, quick_budget) -> None:
    async def scenario() -> None:
        service = _service(payment_service, clock, quick_budget)
        seeded = await _seed(service, JobStatus.RUNNING)

        job = await service.update_status(seeded.job_id, "completed", result={"k": 1})

        assert job.status is JobStatus.COMPLETED
        assert job.result == {"k": 1}
        assert job.updated_at >= seeded.updated_at
        assert ledger.requests == []

    asyncio.run(scenario())


def test_update_status_validation(payment_service, clock, quick_budget) -> None:
    async def scenario() -> None:
        service = _service(payment_service, clock, quick_budget)
        seeded = await _seed(service, JobStatus.RUNNING)

        with pytest.raises(ValidationError, match="status must be one of"):
            await service.update_status(seeded.job_id, "exploded")
        with pytest.raises(ValidationError, match="result is required"):
            await service.update_status(seeded.job_id, "completed")
        with pytest.raises(ValidationError, match="error is required"):
            await service.update_status(seeded.job_id, "failed")
        with pytest.raises(InvalidTransitionError):
            await service.update_status(seeded.job_id, "awaiting_payment")

        waiting = await service.update_status(seeded.job_id, "awaiting_input")
        assert waiting.status is JobStatus.AWAITING_INPUT
        resumed = await service.update_status(seeded.job_id, "running")
        assert resumed.status is JobStatus.RUNNING

        failed = await service.update_status(seeded.job_id, "failed", error="model crashed")
        assert failed.status is JobStatus.FAILED
        assert failed.error == "model crashed"

        with pytest.raises(InvalidTransitionError):
            await service.update_status(seeded.job_id, "running")
        with pytest.raises(InvalidTransitionError):
            await service.update_status(seeded.job_id, "failed", error="again")

        status = await service.get_status(seeded.job_id)
        assert status.message == "model crashed"

    asyncio.run(scenario())


@pytest.mark.parametrize(
    "current, requested, allowed",
    [
        (JobStatus.PENDING, JobStatus.AWAITING_PAYMENT, True),
        (JobStatus.AWAITING_PAYMENT, JobStatus.RUNNING, True),
        (JobStatus.AWAITING_PAYMENT, JobStatus.FAILED, True),
        (JobStatus.RUNNING, JobStatus.AWAITING_INPUT, True),
        (JobStatus.AWAITING_INPUT, JobStatus.RUNNING, True),
        (JobStatus.RUNNING, JobStatus.COMPLETED, True),
        (JobStatus.RUNNING, JobStatus.RUNNING, True),
        (JobStatus.AWAITING_INPUT, JobStatus.FAILED, True),
        (JobStatus.AWAITING_PAYMENT, JobStatus.COMPLETED, False),
        (JobStatus.AWAITING_PAYMENT, JobStatus.AWAITING_INPUT, False),
        (JobStatus.PENDING, JobStatus.RUNNING, False),
        (JobStatus.PENDING, JobStatus.COMPLETED, False),
        (JobStatus.AWAITING_INPUT, JobStatus.COMPLETED, False),
        (JobStatus.RUNNING, JobStatus.AWAITING_PAYMENT, False),
        (JobStatus.RUNNING, JobStatus.PENDING, False),
        (JobStatus.COMPLETED, JobStatus.FAILED, False),
        (JobStatus.FAILED, JobStatus.COMPLETED, False),
    ],
)
def test_check_transition(current, requested, allowed) -> None:
    job = Job(job_id="00112233445566", purchaser_id="p", status=current)
    if allowed:
        check_transition(job, requested)
    else:
        with pytest.raises(InvalidTransitionError):
            check_transition(job, requested)


def test_poll_and_advance_confirms_payment(payment_service, ledger, clock, quick_budget) -> None:
    async def scenario() -> None:
        service = _service(payment_service, clock, quick_budget)
        seeded = await _seed(service)
        ledger.states["block_0100"] = "FundsLocked"

        outcome = await service.poll_and_advance(seeded.job_id)

        assert outcome.poll.outcome is PollOutcome.CONFIRMED
        assert outcome.job.status is JobStatus.RUNNING
        assert outcome.job.payment == seeded.payment

    asyncio.run(scenario())


def test_poll_failure_leaves_job_awaiting_payment(payment_service, ledger, clock, quick_budget) -> None:
    async def scenario() -> None:
        service = _service(payment_service, clock, quick_budget)
        seeded = await _seed(service)
        ledger.states["block_0100"] = "Disputed"

        outcome = await service.poll_and_advance(seeded.job_id)

        assert outcome.poll.outcome is PollOutcome.FAILED
        assert outcome.poll.message == "payment failed: Disputed"
        assert outcome.job.status is JobStatus.AWAITING_PAYMENT

    asyncio.run(scenario())


def test_poll_timeout_leaves_job_awaiting_payment(payment_service, ledger, clock, quick_budget) -> None:
    async def scenario() -> None:
        service = _service(payment_service, clock, quick_budget)
        seeded = await _seed(service)

        outcome = await service.poll_and_advance(seeded.job_id)

        assert outcome.poll.outcome is PollOutcome.TIMEOUT
        assert outcome.job.status is JobStatus.AWAITING_PAYMENT
        assert len(ledger.calls("GET", "/payment/")) == 7

    asyncio.run(scenario())


def test_poll_and_advance_ignores_jobs_past_payment(payment_service, ledger, clock, quick_budget) -> None:
    async def scenario() -> None:
        service = _service(payment_service, clock, quick_budget)
        seeded = await _seed(service, JobStatus.RUNNING)

        outcome = await service.poll_and_advance(seeded.job_id)

        assert outcome.poll is None
        assert outcome.job == seeded
        assert ledger.requests == []

    asyncio.run(scenario())


def test_concurrent_pollers_advance_once(payment_service, ledger, clock, quick_budget) -> None:
    calls: List[str] = []

    async def handler(job: Job) -> None:
        calls.append(job.job_id)

    async def scenario() -> None:
        service = _service(payment_service, clock, quick_budget, on_payment_confirmed=handler)
        seeded = await _seed(service)
        ledger.states["block_0100"] = "FundsLocked"

        first, second = await asyncio.gather(
            service.poll_and_advance(seeded.job_id, job=seeded),
            service.poll_and_advance(seeded.job_id, job=seeded),
        )

        assert first.job.status is JobStatus.RUNNING
        assert second.job.status is JobStatus.RUNNING
        assert calls == [seeded.job_id]
        stored = await service.get_job(seeded.job_id)
        assert stored.version == seeded.version + 1

    asyncio.run(scenario())


def test_handler_failure_marks_job_failed(payment_service, ledger, clock, quick_budget) -> None:
    async def handler(job: Job) -> None:
        raise RuntimeError("model unavailable")

    async def scenario() -> None:
        service = _service(payment_service, clock, quick_budget, on_payment_confirmed=handler)
        seeded = await _seed(service)
        ledger.states["block_0100"] = "FundsLocked"

        outcome = await service.poll_and_advance(seeded.job_id)

        assert outcome.job.status is JobStatus.FAILED
        assert outcome.job.error == "Error after payment confirmation: model unavailable"

    asyncio.run(scenario())


def test_get_status_refreshes_awaiting_payment(payment_service, ledger, clock, quick_budget) -> None:
    async def scenario() -> None:
        service = _service(payment_service, clock, quick_budget)
        seeded = await _seed(service)

        pending = await service.get_status(seeded.job_id)
        assert pending.status == "awaiting_payment"
        assert pending.message == "Waiting for payment confirmation on blockchain"
        assert clock.sleeps == []

        ledger.states["block_0100"] = "FundsLocked"
        running = await service.get_status(seeded.job_id)
        assert running.status == "running"

        with pytest.raises(JobNotFoundError):
            await service.get_status("missing0000000")

    asyncio.run(scenario())


def test_payment_is_immutable(payment_service, clock, quick_budget) -> None:
    async def scenario() -> None:
        service = _service(payment_service, clock, quick_budget)
        seeded = await _seed(service)

        def swap_payment(job: Job) -> Job:
            payment = job.payment.model_copy(update={"pay_by_time": "0"})
            return job.model_copy(update={"payment": payment})

        with pytest.raises(ValidationError):
            await service._transition(seeded.job_id, swap_payment)

    asyncio.run(scenario())


def test_epoch_seconds() -> None:
    assert epoch_seconds("1767225900000") == 1767225900
    assert epoch_seconds("2026-01-01T00:05:00.000Z") == 1767225900
    assert epoch_seconds(None) is None
    assert epoch_seconds("not a time") is None


def test_poll_with_foreign_payload_keeps_stored_job(payment_service, ledger, clock, quick_budget) -> None:
    async def scenario() -> None:
        service = _service(payment_service, clock, quick_budget)
        seeded = await _seed(service)
        ledger.states["block_9999"] = "FundsLocked"

        foreign_payment = seeded.payment.model_copy(update={"blockchain_identifier": "block_9999"})
        payload = seeded.model_copy(update={"payment": foreign_payment, "input_data": {"text": "forged"}})

        outcome = await service.poll_and_advance(seeded.job_id, job=payload)

        stored = await service.get_job(seeded.job_id)
        assert stored.status is JobStatus.AWAITING_PAYMENT
        assert stored.payment.blockchain_identifier == "block_0100"
        assert stored.input_data == {"text": "hi"}
        assert stored.version == seeded.version
        assert outcome.job == stored

    asyncio.run(scenario())


def test_poll_with_stale_payload_writes_stored_fields(payment_service, ledger, clock, quick_budget) -> None:
    async def scenario() -> None:
        service = _service(payment_service, clock, quick_budget)
        seeded = await _seed(service)
        ledger.states["block_0100"] = "FundsLocked"

        payload = seeded.model_copy(update={"input_data": {"text": "edited"}})
        outcome = await service.poll_and_advance(seeded.job_id, job=payload)

        assert outcome.job.status is JobStatus.RUNNING
        assert outcome.job.input_data == {"text": "hi"}
        assert (await service.get_job(seeded.job_id)).input_data == {"text": "hi"}

    asyncio.run(scenario())


def test_create_job_with_unencodable_input(payment_service, ledger, clock, quick_budget) -> None:
    fired: List[str] = []

    async def scenario() -> None:
        service = _service(payment_service, clock, quick_budget)
        service.notifier.fire = lambda job_id, job=None: fired.append(job_id) or True

        with pytest.raises(JobCreationError) as excinfo:
            await service.create_job("purchaser01", json.loads('{"text": "\\ud800"}'))

        assert isinstance(excinfo.value.cause, EncodingError)
        assert fired == [excinfo.value.job_id]
        assert ledger.requests == []
        assert len(service.store) == 0

    asyncio.run(scenario())


def test_completion_cannot_skip_payment(payment_service, payment_config, ledger, clock, quick_budget) -> None:
    async def scenario() -> None:
        service = _service(payment_service, clock, quick_budget)
        seeded = await _seed(service)

        with pytest.raises(InvalidTransitionError):
            await service.update_status(seeded.job_id, "completed", result="done", config=payment_config)

        assert ledger.calls("POST", "/payment/submit-result") == []
        assert (await service.get_job(seeded.job_id)).status is JobStatus.AWAITING_PAYMENT

    asyncio.run(scenario())


class ContendedStore(InMemoryJobStore):
    """Every update loses the compare-and-set."""

    async def put(self, job, expected_version=None):
        if expected_version is not None:
            raise ConcurrentUpdateError(job.job_id, expected_version)
        return await super().put(job, expected_version)


def test_submitted_result_with_failed_write_is_logged(payment_service, payment_config, ledger, clock, quick_budget, caplog) -> None:
    async def scenario() -> None:
        service = _service(payment_service, clock, quick_budget, store=ContendedStore())
        seeded = await _seed(service, JobStatus.RUNNING)

        with caplog.at_level(logging.ERROR, logger="paywall.services.job_service"):
            with pytest.raises(ConcurrentUpdateError):
                await service.update_status(seeded.job_id, "completed", result="done", config=payment_config)

        assert len(ledger.calls("POST", "/payment/submit-result")) == 1
        assert (await service.get_job(seeded.job_id)).status is JobStatus.RUNNING
        assert any("was submitted on-chain but the job could not be marked completed" in r.getMessage() for r in caplog.records)

    asyncio.run(scenario())
