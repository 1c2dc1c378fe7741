"""Tests for worker wiring, graceful shutdown and logging setup."""
import asyncio
import json

import pytest
import structlog

from config.logging import bind_worker_context, setup_logging
from config.settings import LoggingConfig, QueueConfig, Settings
from job_queue.message_queue import InMemoryMessageQueue, QueueJob, reset_message_queue
from worker import Worker
from conftest import FakeGateway, make_job_payload


@pytest.fixture
def settings():
    reset_message_queue()
    yield Settings(queue=QueueConfig(backend="memory", delayed_promote_interval=1,
                                     stalled_interval_ms=1000, shutdown_timeout=1.0))
    reset_message_queue()


class TestWorker:
    @pytest.mark.asyncio
    async def test_wiring(self, settings):
        worker = Worker(settings)
        assert isinstance(worker.queue, InMemoryMessageQueue)
        assert worker.consumer.queue is worker.queue
        assert worker.consumer.consumer_group == "notification-workers"
        assert worker.reclaimer.interval == 1.0
        assert worker.processor.gateway is worker.gateway

    @pytest.mark.asyncio
    async def test_processes_then_stops_on_request(self, settings):
        worker = Worker(settings)
        gateway = FakeGateway()
        worker.processor.gateway = gateway
        worker.queue.poll_timeout = 0.05
        await worker.queue.publish(QueueJob(data=make_job_payload()))

        run_task = asyncio.create_task(worker.run())

        async def _poll():
            while not worker.queue.completed:
                await asyncio.sleep(0.01)
        await asyncio.wait_for(_poll(), timeout=2.0)

        worker.request_stop("SIGTERM")
        await asyncio.wait_for(run_task, timeout=3.0)

        assert len(gateway.sent) == 1
        assert not worker.consumer.running


class TestLogging:
    def teardown_method(self):
        structlog.contextvars.clear_contextvars()
        structlog.reset_defaults()

    def test_json_lines_carry_worker_context(self, capsys):
        setup_logging(LoggingConfig(level="INFO", json=True))
        bind_worker_context(worker_id="host-1")
        structlog.get_logger().info("job_state", state="completed", order_code=42)

        line = capsys.readouterr().out.strip().splitlines()[-1]
        event = json.loads(line)
        assert event["event"] == "job_state"
        assert event["worker_id"] == "host-1"
        assert event["order_code"] == 42
        assert event["level"] == "info"
        assert "timestamp" in event

    def test_level_filters_debug(self, capsys):
        setup_logging(LoggingConfig(level="WARNING", json=True))
        structlog.get_logger().info("quiet_event")
        assert "quiet_event" not in capsys.readouterr().out
