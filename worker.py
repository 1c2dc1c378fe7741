"""
Worker process — wires the queue, the Evolution gateway client and the order
message processor, then consumes until SIGINT / SIGTERM.

Shutdown drains: no new job is fetched, the in-flight readiness check / send
finishes or fails on its own, then the queue connection and HTTP pool close.
A second signal during the drain forces the exit.

Usage:
    python worker.py
    order-notifier                     # console script
"""
from __future__ import annotations

import asyncio
import os
import signal
import socket
import sys
import structlog

# Load .env before any config is read
from dotenv import load_dotenv

from config.logging import bind_worker_context, setup_logging
from config.settings import Settings, load_settings
from channels.evolution_client import EvolutionClient
from core.processor import OrderMessageProcessor
from job_queue.consumer import DelayedJobPromoter, NotificationConsumer, StalledJobReclaimer
from job_queue.message_queue import create_message_queue

logger = structlog.get_logger()


class Worker:
    """Owns every long-lived component of the process."""

    def __init__(self, settings: Settings):
        self.settings = settings
        q = settings.queue
        self.worker_id = f"{socket.gethostname()}-{os.getpid()}"
        self.queue = create_message_queue({
            "backend": q.backend,
            "redis_url": q.redis_url,
            "queue_name": q.queue_name,
            "lock_duration_ms": q.lock_duration_ms,
            "max_stalled_count": q.max_stalled_count,
            "retry_backoff_base": q.retry_backoff_base,
            "completed_retention": q.completed_retention,
        })
        self.gateway = EvolutionClient(
            base_url=settings.gateway.base_url,
            api_key=settings.gateway.api_key,
            timeout=settings.gateway.timeout_seconds,
            connect_timeout=settings.gateway.connect_timeout_seconds,
        )
        self.processor = OrderMessageProcessor(self.gateway)
        self.consumer = NotificationConsumer(
            self.processor, self.queue,
            consumer_group=q.consumer_group,
            consumer_name=self.worker_id,
            shutdown_timeout=q.shutdown_timeout,
        )
        self.promoter = DelayedJobPromoter(self.queue, interval_seconds=q.delayed_promote_interval)
        self.reclaimer = StalledJobReclaimer(
            self.queue,
            consumer_group=q.consumer_group,
            interval_seconds=q.stalled_interval_ms / 1000,
        )
        self._stop_requested = asyncio.Event()
        self._signals_received = 0

    def request_stop(self, signame: str = ""):
        self._signals_received += 1
        if self._signals_received > 1:
            logger.warning("worker_forced_exit", signal=signame)
            os._exit(1)
        logger.info("worker_shutdown_requested", signal=signame)
        self._stop_requested.set()

    def install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop, sig.name)
            except NotImplementedError:  # Windows event loops
                signal.signal(sig, lambda *_: loop.call_soon_threadsafe(self.request_stop, "signal"))

    async def run(self):
        bind_worker_context(worker_id=self.worker_id, queue=self.settings.queue.queue_name)
        await self.queue.connect()
        consumer_task = await self.consumer.start_background()
        await self.promoter.start_background()
        await self.reclaimer.start_background()
        logger.info("worker_started",
                    queue_backend=type(self.queue).__name__,
                    gateway=self.settings.gateway.base_url,
                    lock_duration_ms=self.settings.queue.lock_duration_ms)

        stop_waiter = asyncio.create_task(self._stop_requested.wait())
        done, _ = await asyncio.wait(
            {consumer_task, stop_waiter}, return_when=asyncio.FIRST_COMPLETED,
        )
        stop_waiter.cancel()
        await self.shutdown()
        if consumer_task in done and consumer_task.exception():
            raise consumer_task.exception()

    async def shutdown(self):
        await self.consumer.stop()
        await self.reclaimer.stop()
        await self.promoter.stop()
        await self.queue.close()
        await self.gateway.close()
        logger.info("worker_stopped")


async def main(config_path: str = None) -> int:
    load_dotenv()
    settings = load_settings(config_path)
    setup_logging(settings.logging, debug=settings.debug)

    worker = Worker(settings)
    worker.install_signal_handlers()
    logger.info("worker_starting", app=settings.app_name)
    try:
        await worker.run()
    except Exception as e:
        logger.error("worker_fatal_error", error=str(e), exc_info=True)
        return 1
    return 0


def run():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
