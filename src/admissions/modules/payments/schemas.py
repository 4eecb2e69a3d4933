"""
Payments Schemas
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from admissions.modules.payments.models import PaymentStatus


class CreateOrderRequest(BaseModel):
    """
    Request body for POST /payments/orders.

    The amount is not client controlled: the configured fee is charged.
    """

    payment_type: str = Field(..., min_length=1, max_length=50)


class PaymentOrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: str
    applicant_id: UUID
    amount: Decimal
    currency: str
    payment_type: str
    status: PaymentStatus
    gateway_tracking_id: str | None = None
    failure_message: str | None = None
    checkout_url: str | None = None
    retry_of: str | None = None
    created_at: datetime
    updated_at: datetime


class GatewayCallback(BaseModel):
    """Status notification posted by the gateway."""

    order_id: str = Field(..., min_length=1, max_length=40)
    order_status: str = Field(..., min_length=1, max_length=50)
    tracking_id: str | None = Field(None, max_length=100)
    failure_message: str | None = Field(None, max_length=1000)


class ReconcileResponse(BaseModel):
    order: PaymentOrderResponse
    changed: bool = Field(..., description="False when the callback was a redelivery")
