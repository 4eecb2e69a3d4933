"""
Notifier

Best-effort outbound delivery of codes and notifications to an applicant
identifier. Email identifiers go through Resend; phone identifiers are
logged, since no SMS transport is configured.

Delivery never raises: callers get False on failure or timeout.
"""

import asyncio
import logging

from admissions.core.config import settings
from admissions.core.email import send_email

logger = logging.getLogger(__name__)


def is_email_identifier(identifier: str) -> bool:
    return "@" in identifier


def mask_identifier(identifier: str) -> str:
    """Mask an identifier for logs, e.g. j***@example.com or ******1234."""
    if is_email_identifier(identifier):
        local, domain = identifier.split("@", 1)
        return f"{local[:1]}***@{domain}"
    return f"{'*' * max(len(identifier) - 4, 0)}{identifier[-4:]}"


async def _deliver(identifier: str, subject: str, html_content: str) -> bool:
    if is_email_identifier(identifier):
        return await send_email(to_email=identifier, subject=subject, html_content=html_content)

    logger.info(f"SMS TO: {mask_identifier(identifier)} | SUBJECT: {subject} (no SMS transport)")
    return True


async def send(identifier: str, subject: str, html_content: str) -> bool:
    """
    Deliver a message to an email address or phone number.

    Bounded by notifier_timeout_seconds.

    Returns:
        True if the transport accepted the message
    """
    try:
        return await asyncio.wait_for(
            _deliver(identifier, subject, html_content),
            timeout=settings.notifier_timeout_seconds,
        )
    except TimeoutError:
        logger.error(f"Notifier timed out sending to {mask_identifier(identifier)}")
        return False
    except Exception as e:
        logger.error(f"Notifier failed sending to {mask_identifier(identifier)}: {e}")
        return False
