"""
Message Queue — Abstract interface with Redis Streams and in-memory backends.

Queue Topology (``{name}`` defaults to ``message-processing``):
  {name}:wait       — Jobs ready for immediate processing (stream + consumer group)
  {name}:delayed    — Jobs with a future execution time (sorted set in Redis)
  {name}:completed  — Recently finished jobs, trimmed to a bounded length
  {name}:dlq        — Dead-letter queue for permanently failed jobs
  {name}:logs:{id}  — Per-job audit log lines

Result routing (shared by both backends):
  handler returns JobResult.completed / skipped  → ack, record as completed
  handler returns JobResult.delayed(ms)          → re-run later, attempt NOT consumed
  handler raises UnrecoverableJobError           → dead-letter immediately
  handler raises anything else                   → retry with exponential backoff,
                                                   dead-letter after max_attempts

Message Schema:
  {
      "job_id":       unique job identifier (stable across retries),
      "name":         job name,
      "data":         JSON-encoded job payload,
      "attempt":      current attempt number (for retries),
      "max_attempts": ceiling before DLQ,
      "scheduled_at": ISO timestamp when the job should execute,
      "created_at":   ISO timestamp when the job was enqueued,
      "metadata":     JSON-encoded extra data (retry / delay / stall bookkeeping),
  }
"""
from __future__ import annotations

import asyncio
import json
import uuid
import structlog
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from tenacity import retry, stop_after_attempt, wait_exponential

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────
#  Job Model
# ──────────────────────────────────────────────────────────────

@dataclass
class QueueJob:
    """A unit of work on the queue."""
    data: dict[str, Any]
    name: str = "order-message"
    attempt: int = 0
    max_attempts: int = 5
    scheduled_at: str = ""
    created_at: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    job_id: str = ""
    logs: list[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.job_id:
            self.job_id = f"job_{uuid.uuid4().hex[:12]}"
        if not self.created_at:
            self.created_at = _utcnow().isoformat()
        if not self.scheduled_at:
            self.scheduled_at = self.created_at

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d.pop("logs")
        d["data"] = json.dumps(d["data"])
        d["metadata"] = json.dumps(d["metadata"])
        d["attempt"] = str(d["attempt"])
        d["max_attempts"] = str(d["max_attempts"])
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueJob:
        data = dict(data)  # copy
        if isinstance(data.get("data"), str):
            data["data"] = json.loads(data["data"])
        if isinstance(data.get("metadata"), str):
            data["metadata"] = json.loads(data["metadata"])
        data["attempt"] = int(data.get("attempt", 0))
        data["max_attempts"] = int(data.get("max_attempts", 5))
        data.pop("logs", None)
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def log(self, line: str):
        """Append an audit line; persisted by the queue once the attempt settles."""
        self.logs.append(line)

    @property
    def scheduled_timestamp(self) -> float:
        target = datetime.fromisoformat(self.scheduled_at)
        if target.tzinfo is None:
            target = target.replace(tzinfo=timezone.utc)
        return target.timestamp()

    def _copy(self, scheduled_at: datetime, attempt: int, metadata: dict[str, Any]) -> QueueJob:
        return QueueJob(
            data=self.data,
            name=self.name,
            attempt=attempt,
            max_attempts=self.max_attempts,
            scheduled_at=scheduled_at.isoformat(),
            created_at=self.created_at,
            metadata=metadata,
            job_id=self.job_id,  # same job_id across re-runs for tracing
        )

    def next_retry_job(self, backoff_seconds: int = 5) -> QueueJob:
        """Create a copy with incremented attempt and backoff delay."""
        now = _utcnow()
        retry_at = now + timedelta(
            seconds=backoff_seconds * (2 ** self.attempt)  # exponential backoff
        )
        return self._copy(
            retry_at,
            self.attempt + 1,
            {**self.metadata, "last_failure_at": now.isoformat()},
        )

    def delayed_copy(self, delay_ms: int) -> QueueJob:
        """Create a copy scheduled ``delay_ms`` from now; the attempt is not consumed."""
        run_at = _utcnow() + timedelta(milliseconds=delay_ms)
        return self._copy(
            run_at,
            self.attempt,
            {**self.metadata, "delayed_count": int(self.metadata.get("delayed_count", 0)) + 1},
        )


# ──────────────────────────────────────────────────────────────
#  Handler results & directives
# ──────────────────────────────────────────────────────────────

class JobOutcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    DELAYED = "delayed"


@dataclass(frozen=True)
class JobResult:
    outcome: JobOutcome
    delay_ms: int = 0
    reason: str = ""

    @classmethod
    def completed(cls, reason: str = "") -> JobResult:
        return cls(JobOutcome.COMPLETED, reason=reason)

    @classmethod
    def skipped(cls, reason: str) -> JobResult:
        return cls(JobOutcome.SKIPPED, reason=reason)

    @classmethod
    def delayed(cls, delay_ms: int, reason: str = "") -> JobResult:
        return cls(JobOutcome.DELAYED, delay_ms=delay_ms, reason=reason)


class UnrecoverableJobError(Exception):
    """Raised by a handler when the job must fail without further attempts."""


JobHandler = Callable[[QueueJob], Awaitable[Optional[JobResult]]]


# ──────────────────────────────────────────────────────────────
#  Queue Names
# ──────────────────────────────────────────────────────────────

class Queues:
    DEFAULT = "message-processing"

    def __init__(self, name: str = DEFAULT):
        self.name = name
        self.WAIT = f"{name}:wait"
        self.DELAYED = f"{name}:delayed"
        self.COMPLETED = f"{name}:completed"
        self.DLQ = f"{name}:dlq"

    def logs(self, job_id: str) -> str:
        return f"{self.name}:logs:{job_id}"


# ──────────────────────────────────────────────────────────────
#  Abstract Interface
# ──────────────────────────────────────────────────────────────

class MessageQueue(ABC):
    """Abstract message queue interface."""

    def __init__(
        self,
        queue_name: str = Queues.DEFAULT,
        retry_backoff_base: int = 5,
        completed_retention: int = 1000,
    ):
        self.queues = Queues(queue_name)
        self.retry_backoff_base = retry_backoff_base
        self.completed_retention = completed_retention
        self._running = False

    @abstractmethod
    async def connect(self):
        """Establish connection to the queue backend."""
        ...

    @abstractmethod
    async def close(self):
        """Gracefully shut down."""
        ...

    @abstractmethod
    async def publish(self, job: QueueJob):
        """Publish a job for immediate processing."""
        ...

    @abstractmethod
    async def publish_delayed(self, job: QueueJob):
        """Publish a job that should execute at job.scheduled_at."""
        ...

    @abstractmethod
    async def consume(
        self,
        handler: JobHandler,
        consumer_group: str = "default",
        consumer_name: str = "",
    ):
        """
        Start consuming. Blocks and calls handler for one job at a time until
        stop_consuming() is called; the in-flight job always settles first.
        """
        ...

    @abstractmethod
    async def dead_letter(self, job: QueueJob, reason: str):
        """Move a job to the DLQ; no further attempts."""
        ...

    @abstractmethod
    async def complete(self, job: QueueJob, result: Optional[JobResult]):
        """Record a finished job."""
        ...

    @abstractmethod
    async def save_logs(self, job: QueueJob):
        """Persist the audit lines collected during the attempt."""
        ...

    @abstractmethod
    async def queue_length(self) -> int:
        """Return the number of jobs waiting for immediate processing."""
        ...

    @abstractmethod
    async def dlq_length(self) -> int:
        """Return the number of dead-lettered jobs."""
        ...

    @abstractmethod
    async def peek(self, count: int = 10) -> list[QueueJob]:
        """Peek at waiting jobs without consuming them."""
        ...

    @abstractmethod
    async def promote_delayed(self) -> int:
        """Move delayed jobs whose scheduled_at has arrived to the wait queue."""
        ...

    async def reclaim_stalled(self, consumer_group: str = "default", consumer_name: str = "") -> int:
        """Recover jobs whose worker stopped renewing its lease. Returns the count."""
        return 0

    def stop_consuming(self):
        self._running = False

    async def nack(self, job: QueueJob, error: Optional[BaseException] = None):
        """Negative-acknowledge — route to retry or DLQ."""
        if job.attempt + 1 >= job.max_attempts:
            await self.dead_letter(job, f"Exceeded {job.max_attempts} attempts: {error}")
        else:
            retry_job = job.next_retry_job(self.retry_backoff_base)
            await self.publish_delayed(retry_job)
            logger.info("job_scheduled_for_retry",
                        job_id=job.job_id,
                        attempt=retry_job.attempt,
                        scheduled_at=retry_job.scheduled_at)

    async def _settle(self, job: QueueJob, handler: JobHandler):
        """Run the handler once and route its outcome."""
        try:
            result = await handler(job)
        except UnrecoverableJobError as e:
            logger.error("job_failed_unrecoverable", job_id=job.job_id, error=str(e))
            await self.dead_letter(job, str(e))
        except Exception as e:
            logger.error("job_handler_error",
                         job_id=job.job_id,
                         attempt=job.attempt,
                         error=str(e))
            await self.nack(job, e)
        else:
            if result is not None and result.outcome == JobOutcome.DELAYED:
                delayed = job.delayed_copy(result.delay_ms)
                await self.publish_delayed(delayed)
                logger.info("job_delayed",
                            job_id=job.job_id,
                            delay_ms=result.delay_ms,
                            scheduled_at=delayed.scheduled_at)
            else:
                await self.complete(job, result)
        finally:
            await self.save_logs(job)


# ──────────────────────────────────────────────────────────────
#  Redis Streams Implementation
# ──────────────────────────────────────────────────────────────

class RedisMessageQueue(MessageQueue):
    """
    Production queue backed by Redis Streams + Sorted Sets.

    - The wait queue is a Redis Stream read through a consumer group
    - The delayed queue is a Redis Sorted Set (ZRANGEBYSCORE for promotion)
    - The DLQ and completed log are capped Redis Streams for inspection
    - The in-flight entry's idle time is reset every lock_duration/2 (lease);
      entries idle longer than lock_duration are reclaimed as stalled
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        queue_name: str = Queues.DEFAULT,
        lock_duration_ms: int = 60000,
        max_stalled_count: int = 2,
        retry_backoff_base: int = 5,
        completed_retention: int = 1000,
        block_ms: int = 2000,
    ):
        super().__init__(queue_name, retry_backoff_base, completed_retention)
        self._redis_url = redis_url
        self._redis = None
        self.lock_duration_ms = lock_duration_ms
        self.max_stalled_count = max_stalled_count
        self.block_ms = block_ms

    @retry(stop=stop_after_attempt(5), wait=wait_exponential(multiplier=1, max=10), reraise=True)
    async def connect(self):
        import redis.asyncio as aioredis
        self._redis = aioredis.from_url(
            self._redis_url,
            decode_responses=True,
            health_check_interval=30,
            socket_keepalive=True,
        )
        await self._redis.ping()
        logger.info("redis_queue_connected", queue=self.queues.name)

    async def close(self):
        self._running = False
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def _ensure_group(self, group: str):
        """Create consumer group if it doesn't exist."""
        from redis.exceptions import ResponseError
        try:
            await self._redis.xgroup_create(self.queues.WAIT, group, id="0", mkstream=True)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    async def publish(self, job: QueueJob):
        await self._redis.xadd(self.queues.WAIT, job.to_dict())
        logger.info("job_published",
                    queue=self.queues.WAIT,
                    job_id=job.job_id,
                    attempt=job.attempt)

    async def publish_delayed(self, job: QueueJob):
        payload = json.dumps(job.to_dict())
        await self._redis.zadd(self.queues.DELAYED, {payload: job.scheduled_timestamp})
        logger.info("delayed_job_published",
                    job_id=job.job_id,
                    scheduled_at=job.scheduled_at)

    async def consume(
        self,
        handler: JobHandler,
        consumer_group: str = "default",
        consumer_name: str = "",
    ):
        if not consumer_name:
            consumer_name = f"worker_{uuid.uuid4().hex[:8]}"

        await self._ensure_group(consumer_group)
        self._running = True
        logger.info("consumer_started",
                    queue=self.queues.WAIT,
                    group=consumer_group,
                    consumer=consumer_name)

        while self._running:
            try:
                # One entry at a time keeps per-worker dispatch order
                messages = await self._redis.xreadgroup(
                    groupname=consumer_group,
                    consumername=consumer_name,
                    streams={self.queues.WAIT: ">"},
                    count=1,
                    block=self.block_ms,
                )
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("consumer_error", queue=self.queues.WAIT, error=str(e))
                await asyncio.sleep(1)
                continue

            for _stream, stream_messages in messages or []:
                for message_id, fields in stream_messages:
                    await self._process_entry(handler, consumer_group, consumer_name,
                                              message_id, fields)

        logger.info("consumer_stopped", queue=self.queues.WAIT, consumer=consumer_name)

    async def _process_entry(self, handler: JobHandler, group: str, consumer: str,
                             message_id: str, fields: dict[str, Any]):
        job = await self._decode_entry(group, message_id, fields)
        if job is None:
            return
        lease = asyncio.create_task(self._keep_lease(group, consumer, message_id))
        try:
            await self._settle(job, handler)
        finally:
            lease.cancel()
            try:
                await lease
            except asyncio.CancelledError:
                pass
        await self._redis.xack(self.queues.WAIT, group, message_id)
        await self._redis.xdel(self.queues.WAIT, message_id)
        logger.debug("job_acked", job_id=job.job_id, message_id=message_id)

    async def _decode_entry(self, group: str, message_id: str,
                            fields: dict[str, Any]) -> Optional[QueueJob]:
        """Decode a stream entry; undecodable entries are dead-lettered and acked."""
        try:
            return QueueJob.from_dict(fields)
        except (ValueError, TypeError) as e:
            await self._dead_letter_raw(fields, f"undecodable entry: {e}")
            await self._redis.xack(self.queues.WAIT, group, message_id)
            await self._redis.xdel(self.queues.WAIT, message_id)
            return None

    async def _dead_letter_raw(self, fields: dict[str, Any], reason: str):
        await self._redis.xadd(self.queues.DLQ, {
            **{k: str(v) for k, v in fields.items()},
            "dlq_reason": reason,
            "failed_at": _utcnow().isoformat(),
        })
        logger.error("malformed_job_dead_lettered", reason=reason)

    async def _keep_lease(self, group: str, consumer: str, message_id: str):
        """Reset the entry's idle time so it is not reclaimed as stalled."""
        interval = max(self.lock_duration_ms / 2000, 0.5)
        while True:
            await asyncio.sleep(interval)
            try:
                await self._redis.xclaim(
                    self.queues.WAIT, group, consumer,
                    min_idle_time=0, message_ids=[message_id], justid=True,
                )
            except Exception as e:
                logger.warning("lease_renew_failed", message_id=message_id, error=str(e))

    async def reclaim_stalled(self, consumer_group: str = "default", consumer_name: str = "") -> int:
        """
        Claim entries idle longer than lock_duration (their worker died or hung)
        and either re-publish them or, past max_stalled_count, dead-letter them.
        """
        consumer_name = consumer_name or "stalled-checker"
        result = await self._redis.xautoclaim(
            self.queues.WAIT, consumer_group, consumer_name,
            min_idle_time=self.lock_duration_ms, start_id="0-0", count=100,
        )
        claimed = result[1] if result and len(result) > 1 else []

        recovered = 0
        for message_id, fields in claimed:
            if not fields:
                continue
            recovered += 1
            job = await self._decode_entry(consumer_group, message_id, fields)
            if job is None:
                continue
            stalled = int(job.metadata.get("stalled_count", 0)) + 1
            job.metadata["stalled_count"] = stalled
            if stalled > self.max_stalled_count:
                await self.dead_letter(job, "job stalled more than allowable limit")
            else:
                await self.publish(job)
                logger.warning("stalled_job_recovered",
                               job_id=job.job_id, stalled_count=stalled)
            await self._redis.xack(self.queues.WAIT, consumer_group, message_id)
            await self._redis.xdel(self.queues.WAIT, message_id)
        return recovered

    async def dead_letter(self, job: QueueJob, reason: str):
        job.metadata["dlq_reason"] = reason
        job.metadata["failed_at"] = _utcnow().isoformat()
        await self._redis.xadd(self.queues.DLQ, job.to_dict())
        logger.warning("job_moved_to_dlq",
                       job_id=job.job_id,
                       attempts=job.attempt + 1,
                       reason=reason)

    async def complete(self, job: QueueJob, result: Optional[JobResult]):
        job.metadata["outcome"] = result.outcome.value if result else JobOutcome.COMPLETED.value
        job.metadata["finished_at"] = _utcnow().isoformat()
        await self._redis.xadd(
            self.queues.COMPLETED, job.to_dict(),
            maxlen=self.completed_retention, approximate=True,
        )

    async def save_logs(self, job: QueueJob):
        if not job.logs:
            return
        key = self.queues.logs(job.job_id)
        await self._redis.rpush(key, *job.logs)
        await self._redis.expire(key, 7 * 24 * 3600)
        job.logs.clear()

    async def queue_length(self) -> int:
        return await self._redis.xlen(self.queues.WAIT)

    async def dlq_length(self) -> int:
        return await self._redis.xlen(self.queues.DLQ)

    async def peek(self, count: int = 10) -> list[QueueJob]:
        messages = await self._redis.xrange(self.queues.WAIT, count=count)
        return [QueueJob.from_dict(fields) for _, fields in messages]

    async def promote_delayed(self) -> int:
        """Move jobs whose scheduled_at <= now from sorted set to the wait stream."""
        now = _utcnow().timestamp()
        ready = await self._redis.zrangebyscore(self.queues.DELAYED, "-inf", now)

        if not ready:
            return 0

        promoted = 0
        for payload in ready:
            # ZREM is the claim: only the worker that removed the payload publishes it
            if not await self._redis.zrem(self.queues.DELAYED, payload):
                continue
            try:
                job = QueueJob.from_dict(json.loads(payload))
            except (ValueError, TypeError) as e:
                await self._dead_letter_raw({"payload": payload}, f"undecodable delayed job: {e}")
                continue
            await self._redis.xadd(self.queues.WAIT, job.to_dict())
            promoted += 1

        if promoted:
            logger.info("delayed_jobs_promoted", count=promoted)
        return promoted


# ──────────────────────────────────────────────────────────────
#  In-Memory Implementation (Development)
# ──────────────────────────────────────────────────────────────

class InMemoryMessageQueue(MessageQueue):
    """
    Development/test queue backed by asyncio primitives.
    Single-process only — no consumer groups, leases or persistence.
    Delayed jobs are promoted by DelayedJobPromoter, as with Redis.
    """

    def __init__(
        self,
        queue_name: str = Queues.DEFAULT,
        retry_backoff_base: int = 5,
        completed_retention: int = 1000,
        poll_timeout: float = 2.0,
    ):
        super().__init__(queue_name, retry_backoff_base, completed_retention)
        self._wait: asyncio.Queue = asyncio.Queue()
        self._delayed: list[tuple[float, QueueJob]] = []  # (timestamp, job)
        self.dlq: list[QueueJob] = []
        self.completed: list[QueueJob] = []
        self.job_logs: dict[str, list[str]] = {}
        self.poll_timeout = poll_timeout

    @property
    def delayed_jobs(self) -> list[QueueJob]:
        return [job for _, job in self._delayed]

    async def connect(self):
        self._running = True
        logger.info("inmemory_queue_connected", queue=self.queues.name)

    async def close(self):
        self._running = False

    async def publish(self, job: QueueJob):
        await self._wait.put(job)
        logger.info("job_published",
                    queue=self.queues.WAIT,
                    job_id=job.job_id,
                    attempt=job.attempt)

    async def publish_delayed(self, job: QueueJob):
        self._delayed.append((job.scheduled_timestamp, job))
        self._delayed.sort(key=lambda x: x[0])
        logger.info("delayed_job_published",
                    job_id=job.job_id,
                    scheduled_at=job.scheduled_at)

    async def consume(
        self,
        handler: JobHandler,
        consumer_group: str = "default",
        consumer_name: str = "",
    ):
        self._running = True
        logger.info("consumer_started", queue=self.queues.WAIT)

        while self._running:
            try:
                job = await asyncio.wait_for(self._wait.get(), timeout=self.poll_timeout)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            await self._settle(job, handler)

        logger.info("consumer_stopped", queue=self.queues.WAIT)

    async def dead_letter(self, job: QueueJob, reason: str):
        job.metadata["dlq_reason"] = reason
        job.metadata["failed_at"] = _utcnow().isoformat()
        self.dlq.append(job)
        logger.warning("job_moved_to_dlq",
                       job_id=job.job_id,
                       attempts=job.attempt + 1,
                       reason=reason)

    async def complete(self, job: QueueJob, result: Optional[JobResult]):
        job.metadata["outcome"] = result.outcome.value if result else JobOutcome.COMPLETED.value
        job.metadata["finished_at"] = _utcnow().isoformat()
        self.completed.append(job)
        if len(self.completed) > self.completed_retention:
            del self.completed[: len(self.completed) - self.completed_retention]

    async def save_logs(self, job: QueueJob):
        if job.logs:
            self.job_logs.setdefault(job.job_id, []).extend(job.logs)
            job.logs.clear()

    async def queue_length(self) -> int:
        return self._wait.qsize()

    async def dlq_length(self) -> int:
        return len(self.dlq)

    async def peek(self, count: int = 10) -> list[QueueJob]:
        items = []
        # asyncio.Queue doesn't support peek natively — drain and re-add
        while not self._wait.empty():
            items.append(self._wait.get_nowait())
        for item in items:
            self._wait.put_nowait(item)
        return items[:count]

    async def promote_delayed(self) -> int:
        now = _utcnow().timestamp()
        ready = [(ts, job) for ts, job in self._delayed if ts <= now]
        self._delayed = [(ts, job) for ts, job in self._delayed if ts > now]

        for _, job in ready:
            await self.publish(job)

        if ready:
            logger.info("delayed_jobs_promoted", count=len(ready))
        return len(ready)


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

_instance: Optional[MessageQueue] = None


def create_message_queue(queue_config: dict[str, Any] = None) -> MessageQueue:
    """Factory: create the appropriate queue backend."""
    global _instance
    if _instance:
        return _instance

    config = queue_config or {}
    backend = config.get("backend", "memory")
    common = {
        "queue_name": config.get("queue_name", Queues.DEFAULT),
        "retry_backoff_base": config.get("retry_backoff_base", 5),
        "completed_retention": config.get("completed_retention", 1000),
    }

    if backend == "redis":
        _instance = RedisMessageQueue(
            redis_url=config.get("redis_url", "redis://localhost:6379"),
            lock_duration_ms=config.get("lock_duration_ms", 60000),
            max_stalled_count=config.get("max_stalled_count", 2),
            **common,
        )
    else:
        _instance = InMemoryMessageQueue(**common)

    return _instance


def get_message_queue() -> MessageQueue:
    """Return the singleton queue instance."""
    global _instance
    if _instance is None:
        _instance = create_message_queue()
    return _instance


def reset_message_queue():
    """Forget the singleton (tests and re-configuration)."""
    global _instance
    _instance = None
