"""Payment persistence scoped to one unit of work (one `AsyncSession`)."""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payflow.common.errors import DuplicateOrder, InvalidTransition, StoreUnavailable
from payflow.common.state_machine import FAILED, PENDING, validate_transition
from payflow.services.payment.models import Payment


class PaymentStore:
    """Durable OrderId -> Payment mapping.

    Uniqueness per order is enforced by the `ux_payments_order_id` index, so a
    concurrent insert from another worker surfaces here as `DuplicateOrder`.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_order(self, order_id: UUID) -> Payment | None:
        try:
            result = await self.session.execute(select(Payment).where(Payment.order_id == order_id))
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"payment lookup failed: {exc}") from exc
        return result.scalar_one_or_none()

    async def insert(self, payment: Payment) -> Payment:
        """Persist a new payment; raise `DuplicateOrder` if its order already has one.

        Any other constraint violation is a store failure, not a duplicate.
        """

        order_id = payment.order_id
        self.session.add(payment)
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            # Only the unique order index makes this an idempotent duplicate.
            if await self.find_by_order(order_id) is not None:
                raise DuplicateOrder(order_id) from exc
            raise StoreUnavailable(f"payment insert rejected: {exc}") from exc
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StoreUnavailable(f"payment insert failed: {exc}") from exc
        # Detach so later status changes only reach the DB through `update`.
        self.session.expunge(payment)
        return payment

    async def update(self, payment: Payment) -> Payment:
        """Persist the payment's status transition out of `Pending`.

        The write is guarded by `status = 'Pending'`; a row already in a
        terminal state is never touched and the call raises
        `InvalidTransition`.
        """

        validate_transition(PENDING, payment.status)
        if (payment.failure_reason is not None) != (payment.status == FAILED):
            raise InvalidTransition(
                f"failure_reason must be set exactly when status is {FAILED}: "
                f"status={payment.status} failure_reason={payment.failure_reason!r}"
            )
        try:
            result = await self.session.execute(
                update(Payment)
                .where(Payment.payment_id == payment.payment_id, Payment.status == PENDING)
                .values(status=payment.status, failure_reason=payment.failure_reason)
            )
            if result.rowcount != 1:
                await self.session.rollback()
                raise InvalidTransition(
                    f"payment {payment.payment_id} is not {PENDING}; refusing -> {payment.status}"
                )
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StoreUnavailable(f"payment update failed: {exc}") from exc
        return payment
