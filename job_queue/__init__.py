"""
Message Queue — Decouples order events from WhatsApp dispatch.

- The order API PUBLISHES notification jobs to a queue
- The worker CONSUMES jobs one at a time and hands them to the processor
- Supports Redis Streams (production) and in-memory asyncio.Queue (dev)
"""
