"""
Payments Repository

Status changes go through `transition_status`, a single conditional
UPDATE, so concurrent callbacks for one order cannot both win.
"""

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ACTIVE_PAYMENT_STATUSES, PaymentOrder, PaymentStatus


async def create(
    db: AsyncSession,
    *,
    order_id: str,
    applicant_id: UUID,
    amount: Decimal,
    currency: str,
    payment_type: str,
    checkout_url: str | None,
    retry_of: str | None = None,
) -> PaymentOrder:
    order = PaymentOrder(
        order_id=order_id,
        applicant_id=applicant_id,
        amount=amount,
        currency=currency,
        payment_type=payment_type,
        status=PaymentStatus.CREATED,
        checkout_url=checkout_url,
        retry_of=retry_of,
    )
    db.add(order)
    await db.flush()
    await db.refresh(order)
    return order


async def get_by_order_id(db: AsyncSession, order_id: str) -> PaymentOrder | None:
    result = await db.execute(
        select(PaymentOrder)
        .where(PaymentOrder.order_id == order_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def order_id_exists(db: AsyncSession, order_id: str) -> bool:
    result = await db.execute(select(PaymentOrder.id).where(PaymentOrder.order_id == order_id))
    return result.scalar_one_or_none() is not None


async def list_for_applicant(db: AsyncSession, applicant_id: UUID) -> list[PaymentOrder]:
    """Newest first."""
    result = await db.execute(
        select(PaymentOrder)
        .where(PaymentOrder.applicant_id == applicant_id)
        .order_by(PaymentOrder.created_at.desc())
    )
    return list(result.scalars().all())


async def get_active_order(
    db: AsyncSession, applicant_id: UUID, payment_type: str
) -> PaymentOrder | None:
    result = await db.execute(
        select(PaymentOrder).where(
            PaymentOrder.applicant_id == applicant_id,
            PaymentOrder.payment_type == payment_type,
            PaymentOrder.status.in_(ACTIVE_PAYMENT_STATUSES),
        )
    )
    return result.scalars().first()


async def get_successful_order(
    db: AsyncSession, applicant_id: UUID, payment_type: str
) -> PaymentOrder | None:
    result = await db.execute(
        select(PaymentOrder).where(
            PaymentOrder.applicant_id == applicant_id,
            PaymentOrder.payment_type == payment_type,
            PaymentOrder.status == PaymentStatus.SUCCESS,
        )
    )
    return result.scalars().first()


async def transition_status(
    db: AsyncSession,
    order_id: str,
    *,
    sources: Iterable[PaymentStatus],
    target: PaymentStatus,
    tracking_id: str | None = None,
    failure_message: str | None = None,
) -> PaymentOrder | None:
    """
    Move an order to `target` if it is currently in one of `sources`.

    Returns:
        The updated order, or None if the order was not in an allowed status
    """
    values: dict = {"status": target}
    if tracking_id:
        values["gateway_tracking_id"] = tracking_id
    if failure_message:
        values["failure_message"] = failure_message

    result = await db.execute(
        update(PaymentOrder)
        .where(PaymentOrder.order_id == order_id, PaymentOrder.status.in_(list(sources)))
        .values(**values)
        .returning(PaymentOrder)
        .execution_options(synchronize_session=False, populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_stale_active_orders(
    db: AsyncSession, created_before: datetime, limit: int = 100
) -> list[PaymentOrder]:
    """Created/pending orders older than `created_before`, oldest first."""
    result = await db.execute(
        select(PaymentOrder)
        .where(
            PaymentOrder.status.in_(ACTIVE_PAYMENT_STATUSES),
            PaymentOrder.created_at < created_before,
        )
        .order_by(PaymentOrder.created_at.asc())
        .limit(limit)
    )
    return list(result.scalars().all())
