"""
Payments Module

Fee collection through a hosted-checkout gateway, reconciled from gateway
callbacks and periodic polling.

API Endpoints:
- POST /payments/orders - Start a payment
- GET /payments/orders/{order_id} - Order status
- POST /payments/orders/{order_id}/retry - Retry after failure or cancellation
- POST /payments/orders/{order_id}/sync - Poll the gateway
- POST /payments/callback - Gateway notification

Order status only moves forward (created -> pending -> success | failed |
cancelled). A successful payment releases the applicant from
awaiting_payment exactly once.
"""
