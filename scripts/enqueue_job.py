#!/usr/bin/env python3
"""
Enqueue an order notification job — development helper standing in for the
upstream order API.

Usage:
    # Publish a job payload file (camelCase, as the order API emits it):
    python scripts/enqueue_job.py payload.json

    # Validate and render only, nothing is published:
    python scripts/enqueue_job.py payload.json --dry-run

    # Inspect the queue:
    python scripts/enqueue_job.py --stats
"""
import asyncio
import json
import os
import sys
import argparse

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def enqueue(path: str, dry_run: bool = False, max_attempts: int = None):
    from dotenv import load_dotenv
    load_dotenv()

    from config.settings import load_settings
    from core.renderer import render
    from job_queue.message_queue import QueueJob, create_message_queue
    from models.schemas import DeliveryJob

    settings = load_settings()

    with open(path, encoding="utf-8") as f:
        payload = json.load(f)

    delivery = DeliveryJob.model_validate(payload)
    print(f"Order n° {delivery.order.code} → {delivery.gateway_instance} "
          f"({delivery.event_type.value}, sequence {delivery.sequence})")
    print("─" * 60)
    print(render(delivery.order, delivery.event_type) or "(empty message)")
    print("─" * 60)

    if dry_run:
        return

    queue = create_message_queue({
        "backend": settings.queue.backend,
        "redis_url": settings.queue.redis_url,
        "queue_name": settings.queue.queue_name,
    })
    await queue.connect()
    try:
        job = QueueJob(
            data=delivery.to_payload(),
            max_attempts=max_attempts or settings.queue.max_attempts,
        )
        await queue.publish(job)
        print(f"Published {job.job_id} to {queue.queues.WAIT}. ✓")
    finally:
        await queue.close()


async def stats():
    from dotenv import load_dotenv
    load_dotenv()

    from config.settings import load_settings
    from job_queue.message_queue import create_message_queue

    settings = load_settings()
    queue = create_message_queue({
        "backend": settings.queue.backend,
        "redis_url": settings.queue.redis_url,
        "queue_name": settings.queue.queue_name,
    })
    await queue.connect()
    try:
        print(f"Queue:   {queue.queues.name} ({type(queue).__name__})")
        print(f"Waiting: {await queue.queue_length()}")
        print(f"Failed:  {await queue.dlq_length()}")
        for job in await queue.peek(5):
            order = job.data.get("order", {})
            print(f"  {job.job_id}  order={order.get('code')}  attempt={job.attempt}")
    finally:
        await queue.close()


def main():
    parser = argparse.ArgumentParser(description="Enqueue an order notification job")
    parser.add_argument("payload", nargs="?", help="Path to a JSON job payload")
    parser.add_argument("--dry-run", action="store_true", help="Render only, do not publish")
    parser.add_argument("--max-attempts", type=int, default=None, help="Retry ceiling for the job")
    parser.add_argument("--stats", action="store_true", help="Show queue length and head")
    args = parser.parse_args()

    if args.stats:
        asyncio.run(stats())
    elif args.payload:
        asyncio.run(enqueue(args.payload, dry_run=args.dry_run, max_attempts=args.max_attempts))
    else:
        parser.error("a payload file or --stats is required")


if __name__ == "__main__":
    main()
