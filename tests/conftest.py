"""Shared test fixtures for the order notifier."""
import pytest
import pytest_asyncio
from typing import Any, Optional

from channels.base import GatewayClient, GatewayError, InstanceState
from core.processor import OrderMessageProcessor
from job_queue.consumer import DelayedJobPromoter
from job_queue.message_queue import InMemoryMessageQueue, QueueJob
from models.schemas import DeliveryJob, OrderSnapshot


class FakeGateway(GatewayClient):
    """Scriptable in-process gateway; records every call."""

    def __init__(self, state: str = "open",
                 state_error: Optional[Exception] = None,
                 send_error: Optional[Exception] = None):
        self.state = state
        self.state_error = state_error
        self.send_error = send_error
        self.state_calls: list[str] = []
        self.sent: list[dict[str, Any]] = []

    async def get_instance_state(self, instance: str) -> InstanceState:
        self.state_calls.append(instance)
        if self.state_error:
            raise self.state_error
        return InstanceState(instance=instance, state=self.state)

    async def send_text(self, instance: str, number: str, text: str) -> dict[str, Any]:
        if self.send_error:
            raise self.send_error
        self.sent.append({"instance": instance, "number": number, "text": text})
        return {"status": "sent", "channel_message_id": f"msg-{len(self.sent)}"}


def make_order_payload(**overrides) -> dict[str, Any]:
    """A realistic backend-shaped order (orderItem* field names)."""
    payload = {
        "code": 42,
        "customerName": "Maria Souza",
        "customerPhone": "5511987654321",
        "notes": None,
        "paymentMethod": "cash",
        "change": 500,
        "status": "pending",
        "updatedAt": "2025-03-01T18:30:00.000Z",
        "deliveryMethodCode": "delivery",
        "items": [
            {
                "quantity": 1,
                "name": "Pizza",
                "price": 0,
                "notes": None,
                "orderItemPizzaFlavors": [
                    {"name": "Calabresa", "price": 1000},
                    {"name": "Portuguesa", "price": 1400},
                ],
                "pizzaPricingType": "average",
                "orderItemComplements": [],
            },
        ],
    }
    payload.update(overrides)
    return payload


def make_job_payload(event_type: str = "ORDER_CREATED", instance: str = "shop1",
                     sequence: int = 1, **order_overrides) -> dict[str, Any]:
    return {
        "type": event_type,
        "order": make_order_payload(**order_overrides),
        "sequence": sequence,
        "evolutionInstance": instance,
    }


def make_queue_job(event_type: str = "ORDER_CREATED", **kwargs) -> QueueJob:
    max_attempts = kwargs.pop("max_attempts", 3)
    return QueueJob(data=make_job_payload(event_type, **kwargs), max_attempts=max_attempts)


@pytest.fixture
def order_payload() -> dict[str, Any]:
    return make_order_payload()


@pytest.fixture
def order(order_payload) -> OrderSnapshot:
    return OrderSnapshot.model_validate(order_payload)


@pytest.fixture
def delivery_job() -> DeliveryJob:
    return DeliveryJob.model_validate(make_job_payload())


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def fixed_delay() -> int:
    return 90_000


@pytest.fixture
def processor(gateway, fixed_delay) -> OrderMessageProcessor:
    return OrderMessageProcessor(gateway, delay_source=lambda: fixed_delay)


@pytest.fixture
def memory_queue() -> InMemoryMessageQueue:
    return InMemoryMessageQueue(retry_backoff_base=1, poll_timeout=0.05)


@pytest.fixture
def transient_error() -> GatewayError:
    return GatewayError("Failed to send message: read ECONNRESET", instance="shop1", code="ECONNRESET")


@pytest_asyncio.fixture
async def promoted_queue(memory_queue):
    """In-memory queue with a fast delayed-job promoter running."""
    promoter = DelayedJobPromoter(memory_queue, interval_seconds=0.01)
    await promoter.start_background()
    yield memory_queue
    await promoter.stop()
