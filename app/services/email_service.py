"""Email channel for tenant notifications (Resend).

To send to any recipient, verify a domain at resend.com/domains and set
EMAIL_FROM to an address at that domain. A company's sender_email overrides
EMAIL_FROM only when it belongs to a verified domain.
"""

import asyncio
import logging

import resend

from app.config import settings
from app.services.channels import DeliveryResult, Recipient, RenderedMessage

logger = logging.getLogger(__name__)


def _should_skip_email(to_email: str) -> bool:
    """Skip sending in test env or to test domains (Resend sandbox restricts recipients)."""
    if settings.ENVIRONMENT == "test":
        return True
    test_domains = ("@test.com", "@test.example.com", "@resend.dev")
    return any(to_email.lower().endswith(d) for d in test_domains)


def _from_address(message: RenderedMessage) -> str:
    if message.sender_email:
        name = message.sender_name or settings.APP_NAME
        return f"{name} <{message.sender_email}>"
    return settings.EMAIL_FROM


async def send_email(recipient: Recipient, message: RenderedMessage) -> DeliveryResult:
    """
    Send one rendered notification by email.
    Never raises: failures come back as an unsuccessful DeliveryResult.
    """
    if not recipient.email:
        return DeliveryResult(success=False, error="Recipient has no email address", retryable=False)

    if not settings.RESEND_API_KEY:
        logger.info(
            "Email skipped (RESEND_API_KEY not set): '%s' to %s",
            message.subject,
            recipient.email,
        )
        return DeliveryResult(success=False, error="Email service not configured", retryable=False)

    if _should_skip_email(recipient.email):
        logger.info(
            "Email skipped (test env or test domain): '%s' to %s",
            message.subject,
            recipient.email,
        )
        return DeliveryResult(success=True)

    params = {
        "from": _from_address(message),
        "to": [recipient.email],
        "subject": message.subject or settings.APP_NAME,
        "text": message.text,
    }
    if message.html:
        params["html"] = message.html

    try:
        resend.api_key = settings.RESEND_API_KEY
        # The Resend SDK is synchronous
        response = await asyncio.to_thread(resend.Emails.send, params)
        message_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
        logger.info("Notification email sent to %s", recipient.email, extra={"message_id": message_id})
        return DeliveryResult(success=True, message_id=message_id)
    except Exception as e:
        logger.exception("Failed to send notification email to %s: %s", recipient.email, e)
        return DeliveryResult(success=False, error=str(e) or e.__class__.__name__)
