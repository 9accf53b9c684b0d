"""RabbitMQ publisher/consumer helpers for the topic-exchange topology.

Envelopes are encoded by `payflow.common.envelope`; this module adds broker
metadata, metrics and the consume loop.
"""

import asyncio
from typing import Awaitable, Callable

import aio_pika
from aio_pika.abc import AbstractIncomingMessage, AbstractRobustConnection

from payflow.common.config import settings
from payflow.common.envelope import Envelope, encode_envelope
from payflow.common.errors import PublishFailed
from payflow.common.logging import logger
from payflow.common.metrics import events_published_total, publish_failures_total


class EventPublisher:
    """Publishes envelopes to the durable topic exchange.

    Channels are opened per publish on the shared connection and never reused
    across tasks.
    """

    def __init__(self, connection: AbstractRobustConnection, exchange_name: str) -> None:
        self.connection = connection
        self.exchange_name = exchange_name

    async def publish(self, routing_key: str, envelope: Envelope) -> None:
        message = aio_pika.Message(
            encode_envelope(envelope),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            message_id=str(envelope.event_id),
            correlation_id=str(envelope.correlation_id) if envelope.correlation_id else None,
            timestamp=envelope.occurred_at,
            type=envelope.event_name,
        )
        try:
            async with self.connection.channel() as channel:
                exchange = await channel.declare_exchange(
                    self.exchange_name,
                    aio_pika.ExchangeType.TOPIC,
                    durable=True,
                )
                await exchange.publish(message, routing_key=routing_key, mandatory=False)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            publish_failures_total.labels(service=settings.service_name, routing_key=routing_key).inc()
            raise PublishFailed(routing_key, exc) from exc
        events_published_total.labels(service=settings.service_name, routing_key=routing_key).inc()
        logger.info(
            "event_published exchange=%s routing_key=%s event_id=%s",
            self.exchange_name,
            routing_key,
            envelope.event_id,
        )


async def connect(url: str | None = None) -> AbstractRobustConnection:
    """Open the process-wide robust broker connection."""

    return await aio_pika.connect_robust(url or settings.bus_url)


async def consume_forever(
    connection: AbstractRobustConnection,
    exchange_name: str,
    queue_name: str,
    routing_key: str,
    handler: Callable[[AbstractIncomingMessage], Awaitable[None]],
    prefetch_count: int = 10,
) -> None:
    """Declare topology, register `handler` with manual acks, and wait for cancellation.

    The handler owns ack/nack of every delivery. Cancelling the task stops new
    deliveries; in-flight handlers finish on their own or fail with the
    connection.
    """

    while True:
        channel = None
        queue = None
        consumer_tag = None
        try:
            channel = await connection.channel()
            await channel.set_qos(prefetch_count=prefetch_count)
            exchange = await channel.declare_exchange(exchange_name, aio_pika.ExchangeType.TOPIC, durable=True)
            queue = await channel.declare_queue(queue_name, durable=True, exclusive=False, auto_delete=False)
            await queue.bind(exchange, routing_key=routing_key)
            consumer_tag = await queue.consume(handler, no_ack=False)
            logger.info(
                "consumer_started exchange=%s queue=%s routing_key=%s prefetch=%s",
                exchange_name,
                queue_name,
                routing_key,
                prefetch_count,
            )
            # Robust channels restore the consumer after reconnects; only setup errors loop.
            await asyncio.Future()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("consumer_setup_error queue=%s error=%s", queue_name, exc)
            await asyncio.sleep(2)
        finally:
            if channel is not None and not channel.is_closed:
                if consumer_tag is not None:
                    await queue.cancel(consumer_tag)
                await channel.close()
            logger.info("consumer_stopped queue=%s", queue_name)
