"""
Payments Service Layer

The payment ledger.

- create_order: ask the gateway for a checkout, then persist the order
- reconcile_callback: apply a gateway status report, forward-only
- retry: replace a failed or cancelled order with a new one
- sync_order_status: poll the gateway and reconcile

Status changes are compare-and-set updates. Only the transaction that
wins the move to `success` settles the applicant's stage, so a payment is
credited exactly once per order however often the gateway calls back.
"""

import logging
import secrets
import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from admissions.core.config import settings
from admissions.core.email import send_confirmation_code, send_payment_receipt
from admissions.core.errors import ConflictError, InputError, NotFoundError, ServiceError
from admissions.modules.applicants.models import Applicant, ApplicantStatus, StageStatus
from admissions.modules.applicants.service import get_applicant
from admissions.modules.payments import repository
from admissions.modules.payments.gateway import (
    CheckoutRequest,
    GatewayStatusReport,
    PaymentGatewayClient,
    gateway_client,
)
from admissions.modules.payments.models import (
    RETRYABLE_PAYMENT_STATUSES,
    PaymentOrder,
    PaymentStatus,
    allowed_sources,
)
from admissions.modules.stages import pipeline
from admissions.modules.stages import service as stages_service

logger = logging.getLogger(__name__)

ORDER_ID_PREFIX = "HKT"
ORDER_ID_ATTEMPTS = 5

# Gateway spellings -> ledger status
GATEWAY_STATUS_MAP: dict[str, PaymentStatus] = {
    "success": PaymentStatus.SUCCESS,
    "successful": PaymentStatus.SUCCESS,
    "shipped": PaymentStatus.SUCCESS,
    "failure": PaymentStatus.FAILED,
    "failed": PaymentStatus.FAILED,
    "aborted": PaymentStatus.FAILED,
    "invalid": PaymentStatus.FAILED,
    "timeout": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.CANCELLED,
    "canceled": PaymentStatus.CANCELLED,
    "initiated": PaymentStatus.PENDING,
    "pending": PaymentStatus.PENDING,
    "awaited": PaymentStatus.PENDING,
}


# =============================================================================
# Errors
# =============================================================================


class UnknownOrderError(NotFoundError):
    def __init__(self, order_id: str):
        super().__init__(f"Payment order {order_id} not found", "UNKNOWN_ORDER")


class DuplicateActiveOrderError(ConflictError):
    def __init__(self, order_id: str | None = None):
        message = "A payment for this fee is already in progress."
        if order_id:
            message = f"{message} Continue with order {order_id} or wait for it to finish."
        super().__init__(message, "DUPLICATE_ACTIVE_ORDER")
        self.order_id = order_id


class PaymentAlreadyCompletedError(ConflictError):
    def __init__(self):
        super().__init__("This fee has already been paid.", "PAYMENT_ALREADY_COMPLETED")


class InvalidTransitionError(ConflictError):
    def __init__(self, order_id: str, current: PaymentStatus, target: PaymentStatus):
        super().__init__(
            f"Order {order_id} cannot move from {current.value} to {target.value}.",
            "INVALID_TRANSITION",
        )


class InvalidGatewayStatusError(InputError):
    def __init__(self, gateway_status: str):
        super().__init__(f"Unrecognized gateway status '{gateway_status}'.", "INVALID_GATEWAY_STATUS")


class UnknownPaymentTypeError(InputError):
    def __init__(self, payment_type: str):
        super().__init__(f"Unknown payment type '{payment_type}'.", "UNKNOWN_PAYMENT_TYPE")


class PaymentNotDueError(ConflictError):
    def __init__(self, payment_type: str):
        super().__init__(
            f"The '{payment_type}' fee is not due at your current stage.",
            "PAYMENT_NOT_DUE",
        )


@dataclass
class ReconcileResult:
    order: PaymentOrder
    changed: bool


# =============================================================================
# Helpers
# =============================================================================


def normalize_gateway_status(gateway_status: str) -> PaymentStatus:
    """
    Map a gateway status string to a ledger status.

    Raises:
        InvalidGatewayStatusError: For unrecognized spellings
    """
    status = GATEWAY_STATUS_MAP.get(gateway_status.strip().lower())
    if status is None:
        raise InvalidGatewayStatusError(gateway_status)
    return status


def _generate_order_id() -> str:
    """HKT<epoch ms><3 digits>."""
    return f"{ORDER_ID_PREFIX}{int(time.time() * 1000)}{secrets.randbelow(1000):03d}"


async def _allocate_order_id(db: AsyncSession) -> str:
    for _ in range(ORDER_ID_ATTEMPTS):
        candidate = _generate_order_id()
        if not await repository.order_id_exists(db, candidate):
            return candidate
    raise ConflictError("Could not allocate an order ID. Please try again.", "ORDER_ID_EXHAUSTED")


def _require_payment_due(applicant: Applicant, payment_type: str) -> None:
    """The fee must gate the stage the applicant is waiting to enter."""
    stage = pipeline.get_stage(applicant.current_stage)
    if (
        applicant.status != ApplicantStatus.ACTIVE
        or applicant.stage_status != StageStatus.AWAITING_PAYMENT
        or stage is None
        or stage.payment_type != payment_type
    ):
        raise PaymentNotDueError(payment_type)


async def _open_order(
    db: AsyncSession,
    applicant: Applicant,
    payment_type: str,
    amount: Decimal,
    retry_of: str | None,
    gateway: PaymentGatewayClient,
) -> PaymentOrder:
    """Obtain a checkout URL, then insert and commit the order."""
    order_id = await _allocate_order_id(db)

    checkout_url = await gateway.create_checkout(
        CheckoutRequest(
            order_id=order_id,
            amount=amount,
            currency=settings.payment_currency,
            payment_type=payment_type,
            customer_name=applicant.name,
            customer_email=applicant.email,
            customer_phone=applicant.phone,
        )
    )

    try:
        order = await repository.create(
            db,
            order_id=order_id,
            applicant_id=applicant.id,
            amount=amount,
            currency=settings.payment_currency,
            payment_type=payment_type,
            checkout_url=checkout_url,
            retry_of=retry_of,
        )
        await db.commit()
    except IntegrityError as e:
        # Partial unique index on active orders per (applicant, type)
        await db.rollback()
        logger.warning(f"Order for applicant {applicant.id} rejected by unique constraint: {e.orig}")
        raise DuplicateActiveOrderError() from e

    logger.info(
        f"Created order {order.order_id} for applicant {applicant.id}: "
        f"{payment_type} {amount} {settings.payment_currency}"
        + (f" (retry of {retry_of})" if retry_of else "")
    )
    return order


# =============================================================================
# Orders
# =============================================================================


async def create_order(
    db: AsyncSession,
    applicant_id: UUID,
    payment_type: str,
    gateway: PaymentGatewayClient | None = None,
) -> PaymentOrder:
    """
    Open a payment order and return it with its checkout URL.

    The amount is always the configured fee for the payment type, and the
    fee must gate the stage the applicant is waiting to enter.

    Raises:
        UnknownApplicantError: No such applicant
        UnknownPaymentTypeError: payment_type is not a fee in the pipeline
        PaymentAlreadyCompletedError: This fee was already paid
        PaymentNotDueError: The applicant is not awaiting this fee
        DuplicateActiveOrderError: Another order for this fee is in progress
        GatewayUnavailableError: The gateway did not respond; nothing is stored
    """
    fee = pipeline.default_fee(payment_type)
    if fee is None:
        raise UnknownPaymentTypeError(payment_type)

    applicant = await get_applicant(db, applicant_id)

    if await repository.get_successful_order(db, applicant_id, payment_type):
        raise PaymentAlreadyCompletedError()

    _require_payment_due(applicant, payment_type)

    active = await repository.get_active_order(db, applicant_id, payment_type)
    if active:
        raise DuplicateActiveOrderError(active.order_id)

    return await _open_order(
        db,
        applicant,
        payment_type,
        fee,
        retry_of=None,
        gateway=gateway or gateway_client,
    )


async def get_order(db: AsyncSession, order_id: str) -> PaymentOrder:
    """
    Raises:
        UnknownOrderError: If the order doesn't exist
    """
    order = await repository.get_by_order_id(db, order_id)
    if not order:
        raise UnknownOrderError(order_id)
    return order


async def list_orders_for_applicant(db: AsyncSession, applicant_id: UUID) -> list[PaymentOrder]:
    return await repository.list_for_applicant(db, applicant_id)


async def retry(
    db: AsyncSession,
    order_id: str,
    gateway: PaymentGatewayClient | None = None,
) -> PaymentOrder:
    """
    Replace a failed or cancelled order with a new one for the same fee.

    The original order is left untouched.

    Raises:
        UnknownOrderError: No such order
        InvalidTransitionError: The order is not failed or cancelled
        PaymentAlreadyCompletedError: The fee was paid through another order
        PaymentNotDueError: The applicant is no longer awaiting this fee
        DuplicateActiveOrderError: Another order for this fee is in progress
        GatewayUnavailableError: The gateway did not respond
    """
    original = await get_order(db, order_id)

    if original.status not in RETRYABLE_PAYMENT_STATUSES:
        raise InvalidTransitionError(order_id, original.status, PaymentStatus.CREATED)

    if await repository.get_successful_order(db, original.applicant_id, original.payment_type):
        raise PaymentAlreadyCompletedError()

    applicant = await get_applicant(db, original.applicant_id)
    _require_payment_due(applicant, original.payment_type)

    active = await repository.get_active_order(db, original.applicant_id, original.payment_type)
    if active:
        raise DuplicateActiveOrderError(active.order_id)

    return await _open_order(
        db,
        applicant,
        original.payment_type,
        pipeline.default_fee(original.payment_type),
        retry_of=original.order_id,
        gateway=gateway or gateway_client,
    )


# =============================================================================
# Reconciliation
# =============================================================================


async def reconcile_callback(
    db: AsyncSession,
    order_id: str,
    gateway_status: str,
    tracking_id: str | None = None,
    failure_message: str | None = None,
) -> ReconcileResult:
    """
    Apply a gateway status report to an order.

    Redelivery of the order's current status is a no-op (changed=False).

    Raises:
        InvalidGatewayStatusError: Unrecognized gateway status
        UnknownOrderError: No such order
        InvalidTransitionError: The move would go backwards or leave a terminal state
    """
    target = normalize_gateway_status(gateway_status)

    updated = await repository.transition_status(
        db,
        order_id,
        sources=allowed_sources(target),
        target=target,
        tracking_id=tracking_id,
        failure_message=failure_message if target != PaymentStatus.SUCCESS else None,
    )

    if updated is None:
        await db.rollback()
        current = await repository.get_by_order_id(db, order_id)
        if current is None:
            raise UnknownOrderError(order_id)
        if current.status == target:
            logger.info(f"Duplicate '{target.value}' report for order {order_id}; ignoring")
            return ReconcileResult(order=current, changed=False)
        logger.warning(
            f"Discarding gateway report for order {order_id}: "
            f"{current.status.value} -> {target.value} is not allowed"
        )
        raise InvalidTransitionError(order_id, current.status, target)

    settlement = None
    if target == PaymentStatus.SUCCESS:
        try:
            settlement = await stages_service.settle_payment(
                db, updated.applicant_id, updated.payment_type
            )
        except ServiceError:
            # Order stays unpaid; a redelivered callback settles it
            await db.rollback()
            raise

    await db.commit()
    logger.info(f"Order {order_id} is now {target.value}")

    if target == PaymentStatus.SUCCESS:
        await _notify_success(db, updated, settlement)

    return ReconcileResult(order=updated, changed=True)


async def _notify_success(
    db: AsyncSession,
    order: PaymentOrder,
    settlement: stages_service.SettlementResult | None,
) -> None:
    """Best-effort receipt (and confirmation code, if one was issued)."""
    try:
        applicant = await get_applicant(db, order.applicant_id)
        if not applicant.email:
            return
        await send_payment_receipt(
            to_email=applicant.email,
            applicant_name=applicant.name,
            order_id=order.order_id,
            amount=f"{order.amount:.2f}",
            currency=order.currency,
        )
        if settlement and settlement.confirmation_code:
            await send_confirmation_code(
                to_email=applicant.email,
                applicant_name=applicant.name,
                code=settlement.confirmation_code,
                ttl_hours=settings.confirmation_code_ttl_hours,
            )
    except Exception as e:
        logger.error(f"Exception sending payment receipt for {order.order_id}: {e}")


async def sync_order_status(
    db: AsyncSession,
    order_id: str,
    gateway: PaymentGatewayClient | None = None,
) -> ReconcileResult:
    """
    Poll the gateway for an order and reconcile the answer.

    Terminal orders are returned as they are without calling the gateway.

    Raises:
        UnknownOrderError: No such order
        GatewayUnavailableError: The gateway could not be reached
    """
    order = await get_order(db, order_id)
    if order.is_terminal:
        return ReconcileResult(order=order, changed=False)

    report: GatewayStatusReport = await (gateway or gateway_client).fetch_status(order_id)
    if normalize_gateway_status(report.gateway_status) == order.status:
        return ReconcileResult(order=order, changed=False)

    return await reconcile_callback(
        db,
        order_id,
        report.gateway_status,
        tracking_id=report.tracking_id,
        failure_message=report.failure_message,
    )


async def poll_stale_orders(
    db: AsyncSession,
    gateway: PaymentGatewayClient | None = None,
) -> dict:
    """
    Reconcile created/pending orders older than payment_poll_min_age_minutes.

    One order failing never stops the sweep.
    """
    cutoff = datetime.now(UTC) - timedelta(minutes=settings.payment_poll_min_age_minutes)
    orders = await repository.list_stale_active_orders(db, cutoff)
    order_ids = [order.order_id for order in orders]

    changed = 0
    errors = 0
    for order_id in order_ids:
        try:
            result = await sync_order_status(db, order_id, gateway=gateway)
            if result.changed:
                changed += 1
        except Exception as e:
            await db.rollback()
            errors += 1
            logger.warning(f"Could not sync order {order_id}: {e}")

    return {"checked": len(order_ids), "changed": changed, "errors": errors}
