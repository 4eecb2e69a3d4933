"""
Email Service using Resend

Transactional emails for applicants: login codes, registration receipts,
stage results, payment receipts and participation confirmation codes.
"""

import asyncio
import logging
from html import escape

import resend

from admissions.core.config import settings

logger = logging.getLogger(__name__)

resend.api_key = settings.resend_api_key

_STYLE = """
    body { font-family: system-ui, -apple-system, sans-serif; line-height: 1.6; color: #1f2937; }
    .container { max-width: 600px; margin: 0 auto; padding: 40px 20px; }
    .header { color: #1a365d; margin-bottom: 24px; }
    .code { font-size: 32px; letter-spacing: 8px; font-weight: bold; color: #1a365d; margin: 24px 0; }
    .button { display: inline-block; background-color: #1a365d; color: white; padding: 14px 28px; text-decoration: none; border-radius: 8px; margin: 24px 0; }
    .footer { margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 14px; }
"""


def _render(title: str, body: str) -> str:
    """Wrap body HTML in the shared layout. `body` must already be escaped."""
    return f"""
    <!DOCTYPE html>
    <html>
    <head><style>{_STYLE}</style></head>
    <body>
        <div class="container">
            <h1 class="header">{escape(title)}</h1>
            {body}
            <div class="footer">
                <p>{escape(settings.app_name)}</p>
            </div>
        </div>
    </body>
    </html>
    """


async def send_email(
    to_email: str,
    subject: str,
    html_content: str,
) -> bool:
    """
    Send an email using Resend.

    Without RESEND_API_KEY the email is logged instead of sent.

    Returns:
        True if the email was accepted for delivery
    """
    if not resend.api_key:
        logger.warning("RESEND_API_KEY not set - logging email instead of sending")
        logger.info(f"EMAIL TO: {to_email} | SUBJECT: {subject}")
        return True

    try:
        params: resend.Emails.SendParams = {
            "from": settings.email_from,
            "to": [to_email],
            "subject": subject,
            "html": html_content,
        }
        # Resend's client is synchronous
        email = await asyncio.to_thread(resend.Emails.send, params)
        logger.info(f"Email sent to {to_email}, id: {email['id']}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {to_email}: {e}")
        return False


def render_otp_email(code: str, ttl_minutes: int) -> tuple[str, str]:
    """Subject and HTML for a login code."""
    body = f"""
            <p>Use the code below to sign in to your applicant dashboard.</p>
            <p class="code">{escape(code)}</p>
            <p><strong>This code expires in {ttl_minutes} minutes.</strong></p>
            <p>If you didn't request this code, you can safely ignore this email.</p>
    """
    return "Your login code", _render("Your Login Code", body)


async def send_registration_received(
    to_email: str,
    applicant_name: str,
    registration_id: str,
) -> bool:
    """Send the registration receipt with the applicant's registration ID."""
    login_url = f"{settings.frontend_url}/applicant/login"
    body = f"""
            <p>Hello {escape(applicant_name)},</p>
            <p>Your registration has been received. Your registration ID is
            <strong>{escape(registration_id)}</strong>.</p>
            <p>You can sign in with your email or phone number at any time to follow your progress.</p>
            <a href="{login_url}" class="button">Go to Dashboard</a>
    """
    return await send_email(
        to_email=to_email,
        subject=f"Registration received ({registration_id})",
        html_content=_render("Registration Received", body),
    )


async def send_stage_result(
    to_email: str,
    applicant_name: str,
    stage_name: str,
    selected: bool,
    payment_required: bool = False,
) -> bool:
    """Notify an applicant of a selection decision."""
    safe_name = escape(applicant_name)
    safe_stage = escape(stage_name)

    if selected:
        title = "Congratulations!"
        detail = f"<p>You have been selected for <strong>{safe_stage}</strong>.</p>"
        if payment_required:
            detail += "<p>Please sign in to complete the participation fee payment for this stage.</p>"
    else:
        title = "Selection Update"
        detail = (
            f"<p>Thank you for taking part. Unfortunately you have not been selected "
            f"to continue beyond <strong>{safe_stage}</strong>.</p>"
        )

    body = f"<p>Hello {safe_name},</p>{detail}"
    return await send_email(
        to_email=to_email,
        subject=f"Selection result: {safe_stage}",
        html_content=_render(title, body),
    )


async def send_payment_receipt(
    to_email: str,
    applicant_name: str,
    order_id: str,
    amount: str,
    currency: str,
) -> bool:
    """Confirm a successful payment."""
    body = f"""
            <p>Hello {escape(applicant_name)},</p>
            <p>We have received your payment of <strong>{escape(currency)} {escape(amount)}</strong>.</p>
            <p>Order reference: <strong>{escape(order_id)}</strong></p>
    """
    return await send_email(
        to_email=to_email,
        subject=f"Payment received ({order_id})",
        html_content=_render("Payment Received", body),
    )


async def send_confirmation_code(
    to_email: str,
    applicant_name: str,
    code: str,
    ttl_hours: int,
) -> bool:
    """Send the participation confirmation link issued after final selection."""
    confirm_url = f"{settings.frontend_url}/confirm-participation?code={code}"
    body = f"""
            <p>Hello {escape(applicant_name)},</p>
            <p>You have been selected for the final round. Please confirm your participation:</p>
            <a href="{confirm_url}" class="button">Confirm Participation</a>
            <p>Or use this confirmation code: <strong>{escape(code)}</strong></p>
            <p><strong>This link expires in {ttl_hours} hours.</strong></p>
    """
    return await send_email(
        to_email=to_email,
        subject="Confirm your participation in the final round",
        html_content=_render("Final Round Selection", body),
    )
