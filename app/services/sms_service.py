"""SMS channel: JSON POST to a configurable HTTP gateway."""

import logging
import re

import httpx

from app.config import settings
from app.services.channels import DeliveryResult, Recipient, RenderedMessage

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r"^\+?[\d\s\-()]{8,15}$")
SMS_RECOMMENDED_LENGTH = 70


def is_valid_phone(phone: str) -> bool:
    return bool(phone) and bool(PHONE_PATTERN.match(phone.strip()))


def format_phone_number(phone: str) -> str:
    """Strip separators and make sure the number carries a country code."""
    formatted = re.sub(r"[\s\-()]", "", phone)
    if formatted.startswith("+"):
        return formatted
    code = settings.SMS_DEFAULT_COUNTRY_CODE
    if formatted.startswith(code):
        return f"+{formatted}"
    return f"+{code}{formatted}"


async def send_sms(
    recipient: Recipient,
    message: RenderedMessage,
    client: httpx.AsyncClient = None,
) -> DeliveryResult:
    """
    Send one rendered notification by SMS.
    Never raises: gateway errors and timeouts come back as a retryable failure.
    """
    if not settings.SMS_API_URL or not settings.SMS_API_KEY:
        logger.warning("SMS service not configured (SMS_API_URL or SMS_API_KEY missing)")
        return DeliveryResult(success=False, error="SMS service not configured", retryable=False)

    if not recipient.phone or not is_valid_phone(recipient.phone):
        return DeliveryResult(success=False, error="Invalid or missing phone number", retryable=False)

    if len(message.text) > SMS_RECOMMENDED_LENGTH:
        logger.info("SMS message is %d characters (recommended max %d)", len(message.text), SMS_RECOMMENDED_LENGTH)

    payload = {
        "to": format_phone_number(recipient.phone),
        "from": settings.SMS_SENDER_ID,
        "message": message.text,
    }
    headers = {"Authorization": f"Bearer {settings.SMS_API_KEY}"}

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=settings.SMS_TIMEOUT_SECONDS)
    try:
        response = await client.post(settings.SMS_API_URL, json=payload, headers=headers)
        if response.status_code >= 400:
            logger.error("SMS API error: %s %s", response.status_code, response.text[:200])
            # 4xx other than rate limiting will not succeed on retry
            retryable = response.status_code >= 500 or response.status_code == 429
            return DeliveryResult(
                success=False,
                error=f"SMS API error: {response.status_code}",
                retryable=retryable,
            )
        try:
            data = response.json()
        except ValueError:
            data = {}
        message_id = (data.get("id") or data.get("message_id")) if isinstance(data, dict) else None
        logger.info("Notification SMS sent to %s", payload["to"], extra={"message_id": message_id})
        return DeliveryResult(success=True, message_id=message_id)
    except httpx.HTTPError as e:
        logger.error("SMS send error: %s", e)
        return DeliveryResult(success=False, error=str(e) or e.__class__.__name__)
    finally:
        if owns_client:
            await client.aclose()
