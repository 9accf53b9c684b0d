"""Payment service database models.

This DB is the source of truth for payment state and for idempotency under
redelivery: the unique index on `order_id` is what stops a second payment.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Index, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from payflow.common.db import Base
from payflow.common.state_machine import PENDING


MOCK_PROVIDER = "MockProvider"


class Payment(Base):
    """One payment per order; moves once from Pending to a terminal status."""

    __tablename__ = "payments"
    __table_args__ = (Index("ux_payments_order_id", "order_id", unique=True),)

    payment_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    order_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(asdecimal=True), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default=PENDING)
    provider: Mapped[str] = mapped_column(String, nullable=False, default=MOCK_PROVIDER)
    failure_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
