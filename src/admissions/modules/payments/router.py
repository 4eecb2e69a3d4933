"""
Payments Router

Applicant endpoints (applicant session):
- POST /payments/orders - Start a payment
- GET /payments/orders - List my orders
- GET /payments/orders/{order_id} - Get one of my orders
- POST /payments/orders/{order_id}/retry - Retry a failed or cancelled order
- POST /payments/orders/{order_id}/sync - Ask the gateway for the latest status

Gateway endpoint:
- POST /payments/callback - Status notification (X-Gateway-Secret when configured)
"""

import logging
import secrets

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from admissions.core.config import settings
from admissions.core.database import get_db
from admissions.core.errors import ServiceError, handle_service_error, internal_error
from admissions.modules.applicants.models import Applicant
from admissions.modules.payments import service
from admissions.modules.payments.models import PaymentOrder
from admissions.modules.payments.schemas import (
    CreateOrderRequest,
    GatewayCallback,
    PaymentOrderResponse,
    ReconcileResponse,
)
from admissions.modules.sessions.dependencies import get_current_applicant

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_own_order(db: AsyncSession, order_id: str, applicant: Applicant) -> PaymentOrder:
    """Another applicant's order is reported as not found."""
    order = await service.get_order(db, order_id)
    if order.applicant_id != applicant.id:
        raise service.UnknownOrderError(order_id)
    return order


@router.post(
    "/orders",
    response_model=PaymentOrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a payment",
    responses={
        409: {"description": "Already paid, not due at this stage, or already in progress"},
        503: {"description": "Payment gateway unavailable"},
    },
)
async def create_order(
    data: CreateOrderRequest,
    applicant: Applicant = Depends(get_current_applicant),
    db: AsyncSession = Depends(get_db),
) -> PaymentOrderResponse:
    """Create an order and return it with the gateway checkout URL."""
    try:
        order = await service.create_order(db, applicant.id, data.payment_type)
        return PaymentOrderResponse.model_validate(order)
    except ServiceError as e:
        raise handle_service_error(e) from e
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error(e, "creating payment order") from e


@router.get(
    "/orders",
    response_model=list[PaymentOrderResponse],
    summary="List my payment orders",
)
async def list_orders(
    applicant: Applicant = Depends(get_current_applicant),
    db: AsyncSession = Depends(get_db),
) -> list[PaymentOrderResponse]:
    try:
        orders = await service.list_orders_for_applicant(db, applicant.id)
        return [PaymentOrderResponse.model_validate(o) for o in orders]
    except Exception as e:
        raise internal_error(e, "listing payment orders") from e


@router.get(
    "/orders/{order_id}",
    response_model=PaymentOrderResponse,
    summary="Get a payment order",
)
async def get_order(
    order_id: str,
    applicant: Applicant = Depends(get_current_applicant),
    db: AsyncSession = Depends(get_db),
) -> PaymentOrderResponse:
    try:
        order = await _get_own_order(db, order_id, applicant)
        return PaymentOrderResponse.model_validate(order)
    except ServiceError as e:
        raise handle_service_error(e) from e
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error(e, "fetching payment order") from e


@router.post(
    "/orders/{order_id}/retry",
    response_model=PaymentOrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Retry a payment",
    responses={409: {"description": "Order is not failed or cancelled"}},
)
async def retry_order(
    order_id: str,
    applicant: Applicant = Depends(get_current_applicant),
    db: AsyncSession = Depends(get_db),
) -> PaymentOrderResponse:
    """Open a new order replacing a failed or cancelled one."""
    try:
        await _get_own_order(db, order_id, applicant)
        order = await service.retry(db, order_id)
        return PaymentOrderResponse.model_validate(order)
    except ServiceError as e:
        raise handle_service_error(e) from e
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error(e, "retrying payment order") from e


@router.post(
    "/orders/{order_id}/sync",
    response_model=ReconcileResponse,
    summary="Refresh payment status from the gateway",
)
async def sync_order(
    order_id: str,
    applicant: Applicant = Depends(get_current_applicant),
    db: AsyncSession = Depends(get_db),
) -> ReconcileResponse:
    """Used by the payment return page when the callback has not arrived yet."""
    try:
        await _get_own_order(db, order_id, applicant)
        result = await service.sync_order_status(db, order_id)
        return ReconcileResponse(
            order=PaymentOrderResponse.model_validate(result.order),
            changed=result.changed,
        )
    except ServiceError as e:
        raise handle_service_error(e) from e
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error(e, "syncing payment order") from e


def _verify_gateway_secret(x_gateway_secret: str | None = Header(None)) -> None:
    expected = settings.payment_callback_secret
    if not expected:
        return
    if not x_gateway_secret or not secrets.compare_digest(x_gateway_secret, expected):
        logger.warning("Rejected payment callback with missing or wrong gateway secret")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "INVALID_GATEWAY_SECRET", "message": "Invalid gateway secret."},
        )


@router.post(
    "/callback",
    response_model=ReconcileResponse,
    summary="Gateway status callback",
    responses={
        400: {"description": "Unrecognized gateway status"},
        404: {"description": "Unknown order"},
        409: {"description": "Transition not allowed; report discarded"},
    },
)
async def gateway_callback(
    data: GatewayCallback,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(_verify_gateway_secret),
) -> ReconcileResponse:
    """
    Apply a status report from the gateway.

    Redelivered reports return 200 with `changed: false`.
    """
    try:
        result = await service.reconcile_callback(
            db,
            data.order_id,
            data.order_status,
            tracking_id=data.tracking_id,
            failure_message=data.failure_message,
        )
        return ReconcileResponse(
            order=PaymentOrderResponse.model_validate(result.order),
            changed=result.changed,
        )
    except ServiceError as e:
        raise handle_service_error(e) from e
    except HTTPException:
        raise
    except Exception as e:
        raise internal_error(e, "reconciling payment callback") from e
