"""
Queue Consumer — Pulls notification jobs from the queue and drives the processor.

Exactly one job is in flight per worker, so notifications about the same order
(created, then status updates) reach the gateway in dispatch order. Ordering
only holds within one worker: run one consumer per gateway instance.

Topology:
  ┌──────────────┐        ┌─────────────────┐        ┌────────────┐
  │  Order API   │──pub──▶│ wait stream     │───────▶│  Consumer  │
  │  (upstream)  │        │ (Redis Stream)  │        │  (1 job)   │
  └──────────────┘        └─────────────────┘        └─────┬──────┘
                                   ▲                       │
                          ┌────────┴────────┐              │
                          │ delayed (sorted │◀── retry ────┤
                          │ set / promoter) │◀── not ready ┤
                          └─────────────────┘              │
                          ┌─────────────────┐              │
                          │  DLQ            │◀── terminal ─┘
                          └─────────────────┘
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Optional

from job_queue.message_queue import (
    JobHandler, MessageQueue, get_message_queue,
)

logger = structlog.get_logger()


class NotificationConsumer:
    """
    Consumes jobs from the wait queue and invokes the processor.

    Usage:
        consumer = NotificationConsumer(processor, queue)
        await consumer.start()             # blocks until stop()
        await consumer.start_background()  # returns immediately, runs as task
        await consumer.stop()              # drains the in-flight job
    """

    def __init__(
        self,
        processor: JobHandler,
        queue: MessageQueue = None,
        consumer_group: str = "notification-workers",
        consumer_name: str = "",
        shutdown_timeout: float = 30.0,
    ):
        self.processor = processor
        self.queue = queue or get_message_queue()
        self.consumer_group = consumer_group
        self.consumer_name = consumer_name
        self.shutdown_timeout = shutdown_timeout
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start consuming — blocks until stop() is called."""
        self._running = True
        logger.info("notification_consumer_starting",
                    group=self.consumer_group,
                    consumer=self.consumer_name or "auto")
        try:
            await self.queue.consume(
                handler=self.processor,
                consumer_group=self.consumer_group,
                consumer_name=self.consumer_name,
            )
        finally:
            self._running = False

    async def start_background(self) -> asyncio.Task:
        """Start consuming in a background task. Returns the task handle."""
        self._task = asyncio.create_task(self.start())
        return self._task

    async def stop(self):
        """
        Stop fetching new jobs and let the in-flight job finish.
        The task is cancelled only if it outlives shutdown_timeout.
        """
        self.queue.stop_consuming()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=self.shutdown_timeout)
        except asyncio.TimeoutError:
            logger.warning("notification_consumer_forced_stop",
                           timeout=self.shutdown_timeout)
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        except Exception as e:
            logger.error("notification_consumer_crashed", error=str(e))
        finally:
            self._task = None
        logger.info("notification_consumer_stopped")


# ──────────────────────────────────────────────────────────────
#  Background maintenance loops
# ──────────────────────────────────────────────────────────────

class _PeriodicTask:
    name = "periodic"

    def __init__(self, interval_seconds: float):
        self.interval = interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def start_background(self) -> asyncio.Task:
        self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def tick(self):
        raise NotImplementedError

    async def _run(self):
        logger.info(f"{self.name}_started", interval=self.interval)
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"{self.name}_error", error=str(e))
            await asyncio.sleep(self.interval)


class DelayedJobPromoter(_PeriodicTask):
    """
    Periodically moves delayed / retry jobs whose scheduled_at has arrived
    into the wait queue.
    """
    name = "delayed_promoter"

    def __init__(self, queue: MessageQueue = None, interval_seconds: float = 5):
        super().__init__(interval_seconds)
        self.queue = queue or get_message_queue()

    async def tick(self):
        await self.queue.promote_delayed()


class StalledJobReclaimer(_PeriodicTask):
    """
    Periodically recovers jobs whose worker stopped renewing its lease
    (crash or hang), so they are redelivered instead of abandoned.
    """
    name = "stalled_reclaimer"

    def __init__(
        self,
        queue: MessageQueue = None,
        consumer_group: str = "notification-workers",
        interval_seconds: float = 30,
    ):
        super().__init__(interval_seconds)
        self.queue = queue or get_message_queue()
        self.consumer_group = consumer_group

    async def tick(self):
        recovered = await self.queue.reclaim_stalled(self.consumer_group)
        if recovered:
            logger.warning("stalled_jobs_reclaimed", count=recovered)
