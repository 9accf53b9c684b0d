"""Error kinds raised along the OrderCreated -> payment pipeline."""


class PaymentServiceError(Exception):
    """Base class for service errors that decide a delivery's outcome."""


class BadEnvelope(PaymentServiceError):
    """Body is not valid JSON or lacks required envelope/payload fields."""


class DuplicateOrder(PaymentServiceError):
    """A payment for this order id already exists (unique index violation)."""

    def __init__(self, order_id) -> None:
        super().__init__(f"payment already exists for order_id={order_id}")
        self.order_id = order_id


class StoreUnavailable(PaymentServiceError):
    """The durable layer failed for a reason other than a uniqueness violation."""


class PublishFailed(PaymentServiceError):
    """A follow-up event could not be handed to the broker."""

    def __init__(self, routing_key: str, cause: Exception) -> None:
        super().__init__(f"publish failed routing_key={routing_key} error={cause}")
        self.routing_key = routing_key


class InvalidTransition(ValueError):
    """Requested payment status change is not allowed by the state machine."""
