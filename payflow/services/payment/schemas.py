"""Event payloads and API response schemas for the payment service."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import ConfigDict, Field

from payflow.common.envelope import CamelModel


class OrderCreated(CamelModel):
    """`OrderCreated.v1` payload consumed from the order service."""

    order_id: UUID
    user_id: UUID
    total_amount: Decimal
    currency: str = Field(min_length=3, max_length=3)


class PaymentSucceeded(CamelModel):
    """`PaymentSucceeded.v1` payload."""

    order_id: UUID
    payment_id: UUID
    amount: Decimal
    currency: str
    provider: str


class PaymentFailed(CamelModel):
    """`PaymentFailed.v1` payload."""

    order_id: UUID
    payment_id: UUID
    reason: str


class PaymentResponse(CamelModel):
    """Payment record returned by the read API."""

    model_config = ConfigDict(from_attributes=True)

    payment_id: UUID
    order_id: UUID
    user_id: UUID
    amount: Decimal
    currency: str
    status: str
    provider: str
    failure_reason: str | None
    created_at: datetime
