"""OrderCreated consumer: dedupe, authorize, persist, emit the terminal event.

Idempotency under at-least-once delivery rests on the store: a delivery whose
order already has a payment (found by lookup, or by losing the insert race on
the unique index) is acked without side effects. Terminal events are published
only after the terminal status is committed; the publish is not transactional
with the store, so a crash between the two loses the event.
"""

import enum
from datetime import datetime, timezone
from time import perf_counter

from aio_pika.abc import AbstractIncomingMessage
from opentelemetry import trace

from payflow.common.config import settings
from payflow.common.errors import BadEnvelope, DuplicateOrder
from payflow.common.envelope import Envelope, build_envelope, decode_envelope
from payflow.common.events import consume_forever
from payflow.common.logging import correlation_id_ctx, event_id_ctx, logger, order_id_ctx
from payflow.common.metrics import (
    duplicate_events_skipped_total,
    event_queue_delay_seconds,
    handler_failures_total,
    order_created_received_total,
    payment_handler_seconds,
    payments_processed_total,
    poison_messages_total,
)
from payflow.common.state_machine import FAILED, PENDING, SUCCEEDED
from payflow.services.payment.models import MOCK_PROVIDER, Payment
from payflow.services.payment.schemas import OrderCreated, PaymentFailed, PaymentSucceeded
from payflow.services.payment.simulator import simulate
from payflow.services.payment.store import PaymentStore

tracer = trace.get_tracer(__name__)


class Outcome(str, enum.Enum):
    """How one OrderCreated delivery was resolved before it was acked."""

    PROCESSED = "processed"
    ALREADY_EXISTS = "already_exists"
    LOST_INSERT_RACE = "lost_insert_race"


class PaymentService:
    """Consumes `OrderCreated.v1` and emits `PaymentSucceeded.v1` / `PaymentFailed.v1`."""

    def __init__(self, session_factory, publisher, service_name: str | None = None) -> None:
        self.session_factory = session_factory
        self.publisher = publisher
        self.service_name = service_name or settings.service_name

    def _skip_duplicate(self, reason: Outcome) -> Outcome:
        logger.info("duplicate delivery skipped reason=%s", reason.value)
        duplicate_events_skipped_total.labels(service=self.service_name, reason=reason.value).inc()
        return reason

    def _observe_queue_delay(self, envelope: Envelope) -> None:
        delay_seconds = max(0.0, (datetime.now(timezone.utc) - envelope.occurred_at).total_seconds())
        event_queue_delay_seconds.labels(
            service=self.service_name,
            routing_key=settings.bus_routing_key_order_created,
        ).observe(delay_seconds)

    def _terminal_envelope(self, payment: Payment, source: Envelope[OrderCreated]) -> Envelope:
        if payment.status == SUCCEEDED:
            payload = PaymentSucceeded(
                order_id=payment.order_id,
                payment_id=payment.payment_id,
                amount=payment.amount,
                currency=payment.currency,
                provider=payment.provider,
            )
            event_name = "PaymentSucceeded"
        else:
            payload = PaymentFailed(
                order_id=payment.order_id,
                payment_id=payment.payment_id,
                reason=payment.failure_reason or "Unknown",
            )
            event_name = "PaymentFailed"
        return build_envelope(
            event_name,
            payload,
            self.service_name,
            correlation_id=source.correlation_id,
            partition_key=str(payment.order_id),
        )

    async def handle_order_created(self, envelope: Envelope[OrderCreated]) -> Outcome:
        """Run the per-delivery procedure; any raised error means nack without requeue."""

        order = envelope.payload
        async with self.session_factory() as session:
            store = PaymentStore(session)
            if await store.find_by_order(order.order_id) is not None:
                return self._skip_duplicate(Outcome.ALREADY_EXISTS)

            payment = Payment(
                order_id=order.order_id,
                user_id=order.user_id,
                amount=order.total_amount,
                currency=order.currency,
                status=PENDING,
                provider=MOCK_PROVIDER,
            )
            try:
                await store.insert(payment)
            except DuplicateOrder:
                return self._skip_duplicate(Outcome.LOST_INSERT_RACE)

            ok, reason = simulate(payment.amount)
            payment.status = SUCCEEDED if ok else FAILED
            payment.failure_reason = None if ok else reason
            await store.update(payment)

        payments_processed_total.labels(service=self.service_name, status=payment.status).inc()
        logger.info(
            "payment_terminal payment_id=%s status=%s amount=%s currency=%s reason=%s",
            payment.payment_id,
            payment.status,
            payment.amount,
            payment.currency,
            payment.failure_reason,
        )
        follow_up = self._terminal_envelope(payment, envelope)
        await self.publisher.publish(follow_up.routing_key, follow_up)
        return Outcome.PROCESSED

    async def on_message(self, message: AbstractIncomingMessage) -> None:
        """Broker callback: every delivery ends in exactly one ack or nack(requeue=False)."""

        order_created_received_total.labels(service=self.service_name).inc()
        try:
            envelope = decode_envelope(message.body, OrderCreated)
        except BadEnvelope as exc:
            poison_messages_total.labels(service=self.service_name).inc()
            logger.warning(
                "poison message dropped delivery_tag=%s error=%s",
                message.delivery_tag,
                exc,
            )
            await message.ack()
            return

        correlation_token = correlation_id_ctx.set(str(envelope.correlation_id or ""))
        event_token = event_id_ctx.set(str(envelope.event_id))
        order_token = order_id_ctx.set(str(envelope.payload.order_id))
        start = perf_counter()
        try:
            self._observe_queue_delay(envelope)
            logger.info(
                "event_received routing_key=%s event_id=%s producer=%s",
                envelope.routing_key,
                envelope.event_id,
                envelope.producer,
            )
            try:
                with tracer.start_as_current_span("OrderCreated process"):
                    await self.handle_order_created(envelope)
            except Exception as exc:
                handler_failures_total.labels(
                    service=self.service_name,
                    error_type=type(exc).__name__,
                ).inc()
                logger.exception("handler_error delivery_tag=%s error=%s", message.delivery_tag, exc)
                await message.nack(requeue=False)
                return
            await message.ack()
        finally:
            payment_handler_seconds.labels(service=self.service_name).observe(perf_counter() - start)
            correlation_id_ctx.reset(correlation_token)
            event_id_ctx.reset(event_token)
            order_id_ctx.reset(order_token)

    async def start_consumers(self, connection) -> None:
        """Consume `OrderCreated.v1` from the configured queue until cancelled."""

        await consume_forever(
            connection,
            settings.bus_exchange,
            settings.bus_queue,
            settings.bus_routing_key_order_created,
            self.on_message,
            prefetch_count=settings.bus_prefetch_count,
        )
