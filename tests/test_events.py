"""Envelope codec and RabbitMQ helper tests."""

import asyncio
import json
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import aio_pika
import pytest

from payflow.common.errors import BadEnvelope, PublishFailed
from payflow.common.envelope import build_envelope, decode_envelope, encode_envelope
from payflow.common.events import EventPublisher, consume_forever
from payflow.services.payment.schemas import OrderCreated, PaymentFailed

ORDER_ID = "11111111-1111-1111-1111-111111111111"


def _order_created(amount: str = "100.00") -> OrderCreated:
    return OrderCreated(
        order_id=UUID(ORDER_ID),
        user_id=UUID("22222222-2222-2222-2222-222222222222"),
        total_amount=Decimal(amount),
        currency="DKK",
    )


def test_decode_encode_preserves_envelope():
    envelope = build_envelope(
        "OrderCreated",
        _order_created(),
        "payment-service",
        correlation_id=UUID("99999999-9999-9999-9999-999999999999"),
        partition_key=ORDER_ID,
    )

    assert decode_envelope(encode_envelope(envelope), OrderCreated) == envelope


def test_encode_uses_camel_case_and_omits_absent_optionals():
    envelope = build_envelope("OrderCreated", _order_created(), "payment-service")
    wire = json.loads(encode_envelope(envelope))

    assert set(wire) == {"eventName", "eventVersion", "eventId", "producer", "occurredAt", "payload"}
    assert wire["eventName"] == "OrderCreated"
    assert wire["eventVersion"] == 1
    assert wire["producer"] == "payment-service"
    assert wire["payload"] == {
        "orderId": ORDER_ID,
        "userId": "22222222-2222-2222-2222-222222222222",
        "totalAmount": 100.0,
        "currency": "DKK",
    }


def test_encode_writes_amount_as_json_number_without_rounding():
    envelope = build_envelope("OrderCreated", _order_created("999999999999.99"), "payment-service")

    body = encode_envelope(envelope).decode("utf-8")

    assert '"totalAmount": 999999999999.99' in body
    decoded = decode_envelope(body.encode("utf-8"), OrderCreated)
    assert decoded.payload.total_amount == Decimal("999999999999.99")


@pytest.mark.parametrize(
    "amount",
    ["123456789012.123456", "4999.123456789012345678", "0.10000000000000000001"],
)
def test_round_trip_keeps_every_digit_of_the_amount(amount):
    envelope = build_envelope("OrderCreated", _order_created(amount), "payment-service")

    body = encode_envelope(envelope)

    assert f'"totalAmount": {amount}' in body.decode("utf-8")
    assert str(decode_envelope(body, OrderCreated).payload.total_amount) == amount


def test_decode_reads_all_optional_fields():
    body = json.dumps(
        {
            "eventName": "OrderCreated",
            "eventVersion": 1,
            "eventId": "aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa",
            "correlationId": "bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb",
            "producer": "order-service",
            "partitionKey": ORDER_ID,
            "sequence": 42,
            "occurredAt": "2026-01-15T12:00:00+02:00",
            "schema": "OrderCreated.v1.json",
            "payload": {
                "orderId": ORDER_ID,
                "userId": "22222222-2222-2222-2222-222222222222",
                "totalAmount": 12.5,
                "currency": "EUR",
            },
        }
    ).encode()

    envelope = decode_envelope(body, OrderCreated)

    assert envelope.correlation_id == UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")
    assert envelope.sequence == 42
    assert envelope.schema_id == "OrderCreated.v1.json"
    assert envelope.occurred_at == datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)
    assert envelope.routing_key == "OrderCreated.v1"
    assert envelope.payload.total_amount == Decimal("12.5")


def test_decode_ignores_unknown_fields(make_body):
    body = json.loads(make_body(ORDER_ID, 100.00))
    body["causationId"] = "whatever"
    body["payload"]["items"] = [{"sku": "A-1", "qty": 2}]

    envelope = decode_envelope(json.dumps(body).encode(), OrderCreated)

    assert envelope.payload.order_id == UUID(ORDER_ID)


@pytest.mark.parametrize("field", ["eventName", "eventVersion", "eventId", "producer", "occurredAt", "payload"])
def test_decode_rejects_missing_required_field(make_body, field):
    body = json.loads(make_body(ORDER_ID, 100.00))
    del body[field]

    with pytest.raises(BadEnvelope):
        decode_envelope(json.dumps(body).encode(), OrderCreated)


def test_decode_rejects_missing_payload_field(make_body):
    body = json.loads(make_body(ORDER_ID, 100.00))
    del body["payload"]["totalAmount"]

    with pytest.raises(BadEnvelope):
        decode_envelope(json.dumps(body).encode(), OrderCreated)


def test_decode_rejects_timestamp_without_offset(make_body):
    body = make_body(ORDER_ID, 100.00, occurredAt="2026-01-15T10:00:00")

    with pytest.raises(BadEnvelope):
        decode_envelope(body, OrderCreated)


@pytest.mark.parametrize("raw", [b"not json {", b"null", b"[1, 2]", b"\xff\xfe"])
def test_decode_rejects_non_envelope_bodies(raw):
    with pytest.raises(BadEnvelope):
        decode_envelope(raw, OrderCreated)


def _mock_connection():
    exchange = AsyncMock()
    channel = AsyncMock()
    channel.declare_exchange.return_value = exchange
    connection = MagicMock()
    connection.channel.return_value.__aenter__.return_value = channel
    return connection, channel, exchange


@pytest.mark.asyncio
async def test_publisher_declares_durable_topic_exchange_and_publishes_persistent_json():
    connection, channel, exchange = _mock_connection()
    envelope = build_envelope(
        "PaymentFailed",
        PaymentFailed(order_id=UUID(ORDER_ID), payment_id=UUID(int=7), reason="Amount must be > 0"),
        "payment-service",
        correlation_id=UUID("99999999-9999-9999-9999-999999999999"),
        partition_key=ORDER_ID,
    )

    await EventPublisher(connection, "domain-events").publish("PaymentFailed.v1", envelope)

    channel.declare_exchange.assert_awaited_once_with("domain-events", aio_pika.ExchangeType.TOPIC, durable=True)
    message = exchange.publish.await_args.args[0]
    assert exchange.publish.await_args.kwargs == {"routing_key": "PaymentFailed.v1", "mandatory": False}
    assert message.content_type == "application/json"
    assert message.delivery_mode == aio_pika.DeliveryMode.PERSISTENT
    assert message.message_id == str(envelope.event_id)
    assert message.correlation_id == "99999999-9999-9999-9999-999999999999"
    assert json.loads(message.body)["payload"]["reason"] == "Amount must be > 0"
    connection.channel.return_value.__aexit__.assert_awaited_once()


@pytest.mark.asyncio
async def test_publisher_wraps_broker_errors():
    connection, _, exchange = _mock_connection()
    exchange.publish.side_effect = ConnectionError("connection reset")
    envelope = build_envelope(
        "PaymentFailed",
        PaymentFailed(order_id=UUID(ORDER_ID), payment_id=UUID(int=7), reason="x"),
        "payment-service",
    )

    with pytest.raises(PublishFailed) as exc_info:
        await EventPublisher(connection, "domain-events").publish("PaymentFailed.v1", envelope)

    assert exc_info.value.routing_key == "PaymentFailed.v1"


@pytest.mark.asyncio
async def test_consume_forever_declares_topology_and_cleans_up_on_cancel():
    queue = AsyncMock()
    queue.consume.return_value = "ctag-1"
    channel = AsyncMock()
    channel.is_closed = False
    channel.declare_queue.return_value = queue
    connection = MagicMock()
    connection.channel = AsyncMock(return_value=channel)
    handler = AsyncMock()

    task = asyncio.create_task(
        consume_forever(connection, "domain-events", "payment-service", "OrderCreated.v1", handler, prefetch_count=10)
    )
    for _ in range(100):
        if queue.consume.await_count:
            break
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    channel.set_qos.assert_awaited_once_with(prefetch_count=10)
    channel.declare_exchange.assert_awaited_once_with("domain-events", aio_pika.ExchangeType.TOPIC, durable=True)
    channel.declare_queue.assert_awaited_once_with(
        "payment-service", durable=True, exclusive=False, auto_delete=False
    )
    queue.bind.assert_awaited_once_with(channel.declare_exchange.return_value, routing_key="OrderCreated.v1")
    queue.consume.assert_awaited_once_with(handler, no_ack=False)
    queue.cancel.assert_awaited_once_with("ctag-1")
    channel.close.assert_awaited_once()
