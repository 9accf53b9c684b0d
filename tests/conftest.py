"""Shared fixtures: sqlite-backed store, recording publisher, fake deliveries."""

import json
import os
from uuid import uuid4

os.environ.setdefault("STORE_CONNECTION_STRING", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("STORE_CREATE_SCHEMA", "false")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from payflow.common.db import init_models


CORRELATION_ID = "99999999-9999-9999-9999-999999999999"


class RecordingPublisher:
    """Stands in for `EventPublisher`; keeps every (routing_key, envelope) pair."""

    def __init__(self, error: Exception | None = None) -> None:
        self.published = []
        self.error = error

    async def publish(self, routing_key, envelope) -> None:
        if self.error is not None:
            raise self.error
        self.published.append((routing_key, envelope))


class FakeMessage:
    """Minimal incoming delivery exposing the ack/nack surface the consumer uses."""

    def __init__(self, body: bytes, delivery_tag: int = 1) -> None:
        self.body = body
        self.delivery_tag = delivery_tag
        self.acked = False
        self.nacked = False
        self.requeue = None

    async def ack(self) -> None:
        self.acked = True

    async def nack(self, requeue: bool = True) -> None:
        self.nacked = True
        self.requeue = requeue


def order_created_body(order_id: str, total_amount, currency: str = "DKK", **overrides) -> bytes:
    envelope = {
        "eventName": "OrderCreated",
        "eventVersion": 1,
        "eventId": str(uuid4()),
        "correlationId": CORRELATION_ID,
        "producer": "order-service",
        "partitionKey": order_id,
        "occurredAt": "2026-01-15T10:00:00+00:00",
        "payload": {
            "orderId": order_id,
            "userId": "22222222-2222-2222-2222-222222222222",
            "totalAmount": total_amount,
            "currency": currency,
        },
    }
    envelope.update(overrides)
    return json.dumps(envelope).encode("utf-8")


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """File-backed sqlite so the unique index is enforced across connections."""

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}")
    await init_models(engine)
    yield async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def make_body():
    return order_created_body
