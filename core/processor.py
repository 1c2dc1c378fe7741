"""
Order Message Processor — the queue handler that turns an order event into a
WhatsApp notification.

State machine per attempt:

  RECEIVED → RENDERING → CHECKING_READINESS ─┬─ not found  → SKIPPED
                                             ├─ not ready  → WAITING_FOR_INSTANCE (delayed re-run)
                                             └─ ready      → SENDING ─┬─ ok          → COMPLETED
                                                                      ├─ not found   → SKIPPED
                                                                      ├─ transient   → RETRYING (raise)
                                                                      └─ terminal    → FAILED (raise)

Only transient failures consume a queue retry attempt. A missing instance
needs reconfiguration upstream, so it ends the attempt quietly; an instance
that is still reconnecting is re-run after a randomized 60–120 s delay so
many orders do not hammer the gateway in lockstep.
"""
from __future__ import annotations

import random
import time
import structlog
from enum import Enum
from typing import Callable, Optional

from pydantic import ValidationError

from channels.base import (
    GatewayClient, GatewayError,
    TerminalDeliveryError, TransientDeliveryError,
)
from channels.classifier import FailureKind, classify
from core.renderer import render
from job_queue.message_queue import JobResult, QueueJob, UnrecoverableJobError
from models.schemas import DeliveryJob

logger = structlog.get_logger()

NOT_READY_DELAY_MIN_MS = 60_000
NOT_READY_DELAY_MAX_MS = 120_000


class ProcessingState(str, Enum):
    RECEIVED = "received"
    RENDERING = "rendering"
    CHECKING_READINESS = "checking_readiness"
    WAITING_FOR_INSTANCE = "waiting_for_instance"
    SENDING = "sending"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    RETRYING = "retrying"
    FAILED = "failed"


class InvalidJobError(UnrecoverableJobError):
    """The job payload cannot be parsed into a DeliveryJob."""


def random_not_ready_delay_ms() -> int:
    """Uniform delay in [60000, 120000) ms."""
    return random.randrange(NOT_READY_DELAY_MIN_MS, NOT_READY_DELAY_MAX_MS)


class OrderMessageProcessor:
    """
    Queue handler for order notification jobs.

    Usage:
        processor = OrderMessageProcessor(EvolutionClient(url, key))
        await queue.consume(processor)
    """

    def __init__(
        self,
        gateway: GatewayClient,
        delay_source: Callable[[], int] = random_not_ready_delay_ms,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gateway = gateway
        self.delay_source = delay_source
        self.clock = clock

    async def __call__(self, job: QueueJob) -> JobResult:
        return await self.process(job)

    async def process(self, job: QueueJob) -> JobResult:
        started = self.clock()
        log = logger.bind(job_id=job.job_id, attempt=job.attempt)

        try:
            delivery = DeliveryJob.model_validate(job.data)
        except ValidationError as e:
            log.error("job_payload_invalid", errors=e.error_count())
            self._transition(log, ProcessingState.FAILED)
            raise InvalidJobError(f"Invalid job payload: {e.error_count()} validation errors") from e

        order = delivery.order
        instance = delivery.gateway_instance
        log = log.bind(order_code=order.code,
                       event_type=delivery.event_type.value,
                       sequence=delivery.sequence,
                       instance=instance)
        self._transition(log, ProcessingState.RECEIVED)
        job.log(
            f"Starting processing for order {order.code} of type "
            f"{delivery.event_type.value} and sequence {delivery.sequence}"
        )

        self._transition(log, ProcessingState.RENDERING)
        message = render(order, delivery.event_type)
        if not message:
            # TODO: confirm with product whether empty notifications should be suppressed
            log.warning("empty_message_rendered", status=order.status)

        self._transition(log, ProcessingState.CHECKING_READINESS)
        try:
            state = await self.gateway.get_instance_state(instance)
        except GatewayError as e:
            if classify(e) != FailureKind.NOT_FOUND:
                self._raise_classified(log, job, e, instance, stage="readiness")
            job.log(f"Gateway instance {instance} not found, skipping job (order {order.code}).")
            self._transition(log, ProcessingState.SKIPPED, reason="instance_not_found")
            return JobResult.skipped("instance_not_found")

        if not state.ready:
            delay_ms = self.delay_source()
            job.log(
                f"Gateway instance {instance} not ready (state={state.state or 'unknown'}), "
                f"delaying job {delay_ms}ms (order {order.code})."
            )
            self._transition(log, ProcessingState.WAITING_FOR_INSTANCE,
                             instance_state=state.state, delay_ms=delay_ms)
            return JobResult.delayed(delay_ms, reason="instance_not_ready")

        self._transition(log, ProcessingState.SENDING)
        try:
            await self.gateway.send_text(instance, order.customer_phone, message)
        except GatewayError as e:
            if classify(e) == FailureKind.NOT_FOUND:
                job.log(
                    f"Gateway instance {instance} not found during message send, "
                    f"skipping job (order {order.code})."
                )
                self._transition(log, ProcessingState.SKIPPED, reason="instance_not_found")
                return JobResult.skipped("instance_not_found")
            self._raise_classified(log, job, e, instance, stage="send")

        job.log(f"Message sent successfully for order {order.code}")
        self._transition(log, ProcessingState.COMPLETED,
                         elapsed_ms=round((self.clock() - started) * 1000, 1))
        return JobResult.completed()

    def _raise_classified(self, log, job: QueueJob, error: GatewayError,
                          instance: str, stage: str):
        kind = classify(error)
        job.log(f"Delivery {stage} failed ({kind.value}): {error}")
        if kind == FailureKind.TRANSIENT:
            self._transition(log, ProcessingState.RETRYING, stage=stage,
                             status=error.status, code=error.code, error=str(error))
            raise TransientDeliveryError(
                str(error), instance=instance, status=error.status, code=error.code,
            ) from error
        self._transition(log, ProcessingState.FAILED, stage=stage, classification=kind.value,
                         status=error.status, code=error.code, error=str(error))
        raise TerminalDeliveryError(
            str(error), instance=instance, status=error.status, code=error.code,
        ) from error

    @staticmethod
    def _transition(log, state: ProcessingState, reason: Optional[str] = None, **fields):
        if reason:
            fields["reason"] = reason
        if state in (ProcessingState.FAILED, ProcessingState.RETRYING):
            log.warning("job_state", state=state.value, **fields)
        else:
            log.info("job_state", state=state.value, **fields)
