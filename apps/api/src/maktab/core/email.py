"""
Email Service using Resend

Handles sending guardian-facing emails for the maktab registration flow.
"""

import asyncio
import logging
from html import escape

import resend

from maktab.core.config import settings

logger = logging.getLogger(__name__)

# Initialize Resend with API key
resend.api_key = settings.resend_api_key

MAKTAB_LABELS = {
    "boys": "Boys Maktab",
    "girls": "Girls Maktab",
}

_BASE_STYLES = """
            body { font-family: system-ui, -apple-system, sans-serif; line-height: 1.6; color: #1f2937; }
            .container { max-width: 600px; margin: 0 auto; padding: 40px 20px; }
            .header { color: #2d5a87; margin-bottom: 24px; }
            .button { display: inline-block; background-color: #2d5a87; color: white; padding: 14px 28px; text-decoration: none; border-radius: 8px; margin: 24px 0; }
            .info-box { background-color: #f3f4f6; padding: 16px; border-radius: 8px; margin: 16px 0; }
            .warning { background-color: #fef3c7; border: 1px solid #f59e0b; padding: 16px; border-radius: 8px; margin: 16px 0; }
            .footer { margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 14px; }
"""


def _render(title: str, body: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <style>{_BASE_STYLES}</style>
    </head>
    <body>
        <div class="container">
            <h1 class="header">{title}</h1>
            {body}
            <div class="footer">
                <p>Masjid Irshad Maktab</p>
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

    Args:
        to_email: Recipient email address
        subject: Email subject line
        html_content: HTML content of the email

    Returns:
        True if email was sent successfully
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

        # Run sync Resend call in thread pool to avoid blocking event loop
        email = await asyncio.to_thread(resend.Emails.send, params)
        logger.info(f"Email sent successfully to {to_email}, id: {email['id']}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {to_email}: {e}")
        return False


async def send_payment_link(
    to_email: str,
    guardian_name: str,
    student_names: list[str],
    maktab: str,
    checkout_url: str,
    discount_applied: bool,
    has_other_maktab: bool,
) -> bool:
    """Send the checkout link covering every child in one billing group."""
    safe_guardian_name = escape(guardian_name)
    safe_names = [escape(name) for name in student_names]
    maktab_label = MAKTAB_LABELS.get(maktab, maktab)
    other_label = MAKTAB_LABELS["girls" if maktab == "boys" else "boys"]
    count = len(safe_names)
    discount_note = " - £20/month discount applied per child" if discount_applied else ""

    if count > 1:
        intro = (
            f"<p>Thank you for registering your children at the {maktab_label}.</p>"
            "<p>The following children are included in this registration:</p>"
            "<ul>" + "".join(f"<li><strong>{name}</strong></li>" for name in safe_names) + "</ul>"
        )
    else:
        intro = f"<p>Thank you for registering {safe_names[0]} at the {maktab_label}.</p>"

    other_notice = ""
    if has_other_maktab:
        other_notice = (
            '<div class="warning"><strong>Please note:</strong> You will receive a separate '
            f"payment email for your child(ren) registered in the {other_label}.</div>"
        )

    body = f"""
            <p>Dear {safe_guardian_name},</p>
            {intro}
            <div class="info-box">
                <ul>
                    <li><strong>{count}x Admission Fee</strong> (one-time)</li>
                    <li><strong>{count}x Monthly Classes</strong> (subscription){discount_note}</li>
                </ul>
            </div>
            <a href="{checkout_url}" class="button">Complete Payment</a>
            {other_notice}
            <p><strong>This link will expire in 24 hours.</strong></p>
    """

    if count > 1:
        subject = f"Complete Payment - {maktab_label} ({count} children)"
    else:
        subject = f"Complete Payment - {maktab_label} - {student_names[0]}"
    if discount_applied:
        subject += " (Sibling Discount Applied)"

    return await send_email(
        to_email=to_email,
        subject=subject,
        html_content=_render("Complete Your Registration", body),
    )


async def send_registration_confirmation(
    to_email: str,
    guardian_name: str,
    student_names: list[str],
    maktab: str | None,
) -> bool:
    """Send confirmation that a registration is active."""
    safe_guardian_name = escape(guardian_name)
    safe_names = ", ".join(escape(name) for name in student_names)
    maktab_label = MAKTAB_LABELS.get(maktab or "", "Masjid Irshad Maktab")

    body = f"""
            <p>Dear {safe_guardian_name},</p>
            <p>We are pleased to confirm the registration of <strong>{safe_names}</strong> at the {maktab_label}.</p>
            <div class="info-box">
                <p>You can follow attendance and progress through the parent portal.</p>
            </div>
            <a href="{settings.portal_url}" class="button">Open Parent Portal</a>
    """
    return await send_email(
        to_email=to_email,
        subject=f"Registration Confirmation - {student_names[0]} - Masjid Irshad",
        html_content=_render("Registration Confirmation", body),
    )


async def send_registration_rejection(
    to_email: str,
    guardian_name: str,
    student_name: str,
    reason: str,
) -> bool:
    """Send the outcome of a declined application."""
    safe_guardian_name = escape(guardian_name)
    safe_student_name = escape(student_name)
    safe_reason = escape(reason)

    body = f"""
            <p>Dear {safe_guardian_name},</p>
            <p>Thank you for your interest in registering <strong>{safe_student_name}</strong> at Masjid Irshad Maktab.</p>
            <p>Unfortunately we are unable to accept the registration at this time.</p>
            <div class="info-box">
                <p><strong>Reason:</strong> {safe_reason}</p>
            </div>
            <p>If you have any questions, please contact the Masjid office.</p>
    """
    return await send_email(
        to_email=to_email,
        subject=f"Registration Update - {student_name} - Masjid Irshad",
        html_content=_render("Registration Update", body),
    )
