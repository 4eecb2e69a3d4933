"""
Payments Background Jobs

- payments_poll_stale_orders: every 15 minutes, ask the gateway about
  created/pending orders whose callback never arrived
"""

import logging

from apscheduler.triggers.interval import IntervalTrigger

from admissions.core.database import async_session_maker
from admissions.core.scheduler import register_job
from admissions.modules.payments.gateway import gateway_client
from admissions.modules.payments.service import poll_stale_orders

logger = logging.getLogger(__name__)

JOB_ID_POLL_STALE = "payments_poll_stale_orders"


async def poll_stale_payment_orders() -> dict:
    """Reconcile stale orders against the gateway."""
    if not gateway_client.is_configured:
        logger.debug("Payment gateway not configured; skipping stale order poll")
        return {"checked": 0, "changed": 0, "errors": 0}

    async with async_session_maker() as db:
        result = await poll_stale_orders(db)

    if result["checked"]:
        logger.info(
            f"Stale order poll: {result['changed']} changed, {result['errors']} errors "
            f"of {result['checked']}"
        )
    return result


def register_payment_jobs() -> None:
    register_job(
        job_id=JOB_ID_POLL_STALE,
        func=poll_stale_payment_orders,
        trigger=IntervalTrigger(minutes=15),
    )
