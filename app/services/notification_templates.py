"""
Email and SMS templates for tenant notifications.

Each notification type renders to a subject, a plain-text body and an HTML
body for email, and to a short single-line message for SMS.
"""

from html import escape
from typing import Callable, Dict, List, Optional, Tuple

from app.config import settings
from app.models.enums import NotificationChannel, NotificationType
from app.schemas.notification import (
    BillingIssuedData,
    LeaseExpiringData,
    OverdueNoticeData,
    PaymentConfirmedData,
    PaymentReminderData,
    TemplateData,
)
from app.services.channels import RenderedMessage


class TemplateError(Exception):
    """Payload cannot be rendered for the requested channel."""


def format_amount(amount: int) -> str:
    return f"{settings.CURRENCY_SYMBOL}{amount:,}"


def _email_html(
    title: str,
    color: str,
    greeting: str,
    intro: str,
    rows: List[Tuple[str, str]],
    footer: str,
    callout: Optional[str] = None,
    link: Optional[Tuple[str, str]] = None,
) -> str:
    rows_html = "".join(
        f'<tr><td style="color: #6b7280; padding: 8px 0;">{escape(label)}</td>'
        f'<td style="font-weight: 600; text-align: right; padding: 8px 0;">{escape(value)}</td></tr>'
        for label, value in rows
    )
    callout_html = ""
    if callout:
        callout_html = (
            f'<p style="border: 1px solid {color}; border-radius: 6px; padding: 12px; '
            f'text-align: center; font-weight: 600;">{escape(callout)}</p>'
        )
    link_html = ""
    if link:
        url, label = link
        link_html = (
            f'<p style="margin: 24px 0;"><a href="{escape(url)}" style="background: {color}; color: white; '
            f'padding: 12px 24px; text-decoration: none; border-radius: 6px; display: inline-block;">'
            f"{escape(label)}</a></p>"
        )

    return f"""
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{escape(title)}</title></head>
<body style="font-family: sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2 style="color: {color};">{escape(title)}</h2>
  <p>{escape(greeting)}</p>
  <p>{escape(intro)}</p>
  <table style="width: 100%; border-collapse: collapse; margin: 20px 0;">{rows_html}</table>
  {callout_html}
  {link_html}
  <hr style="border: none; border-top: 1px solid #e2e8f0; margin: 24px 0;">
  <p style="color: #94a3b8; font-size: 12px;">{escape(footer)}</p>
</body>
</html>
"""


def _email_text(greeting: str, intro: str, rows: List[Tuple[str, str]], closing: str, footer: str) -> str:
    lines = [greeting, "", intro, ""]
    lines.extend(f"{label}: {value}" for label, value in rows)
    lines.extend(["", closing, "", "--", footer])
    return "\n".join(lines)


def _company_footer(company_name: str, phone: str = "") -> str:
    return f"{company_name} | Phone: {phone}" if phone else company_name


# --- Email ---

def billing_issued_email(data: BillingIssuedData) -> RenderedMessage:
    greeting = f"Dear {data.tenant_name},"
    intro = f"Your billing for {data.billing_month} has been issued."
    rows = [
        ("Billing number", data.billing_number),
        ("Billing month", data.billing_month),
        ("Total amount", format_amount(data.total_amount)),
        ("Due date", data.due_date.isoformat()),
    ]
    closing = f"See the details in the tenant portal: {data.portal_url}"
    return RenderedMessage(
        subject=f"[{data.company_name}] Billing for {data.billing_month}",
        text=_email_text(greeting, intro, rows, closing, data.company_name),
        html=_email_html(
            "Billing issued", "#2563eb", greeting, intro, rows, data.company_name,
            link=(data.portal_url, "Open portal"),
        ),
    )


def payment_reminder_email(data: PaymentReminderData) -> RenderedMessage:
    greeting = f"Dear {data.tenant_name},"
    intro = "The payment due date for the following billing is approaching."
    rows = [
        ("Billing number", data.billing_number),
        ("Amount due", format_amount(data.total_amount)),
        ("Due date", f"{data.due_date.isoformat()} ({data.days_left} days left)"),
    ]
    return RenderedMessage(
        subject="[Reminder] Payment due soon",
        text=_email_text(greeting, intro, rows, "Please make sure to pay on time.", data.company_name),
        html=_email_html(
            "Payment reminder", "#f59e0b", greeting, intro, rows, data.company_name,
            callout=f"{data.days_left} days left",
        ),
    )


def overdue_notice_email(data: OverdueNoticeData) -> RenderedMessage:
    greeting = f"Dear {data.tenant_name},"
    intro = "The following billing has not been paid. Please pay as soon as possible."
    rows = [
        ("Billing number", data.billing_number),
        ("Total amount", format_amount(data.total_amount)),
        ("Outstanding", format_amount(data.outstanding_amount)),
        ("Due date", f"{data.due_date.isoformat()} ({data.days_overdue} days overdue)"),
    ]
    footer = _company_footer(data.company_name, data.company_phone)
    return RenderedMessage(
        subject="[Urgent] Payment overdue",
        text=_email_text(
            greeting, intro, rows,
            "If you have any questions, please contact the management company.", footer,
        ),
        html=_email_html(
            "Payment overdue", "#dc2626", greeting, intro, rows, footer,
            callout=f"{data.days_overdue} days overdue",
        ),
    )


def payment_confirmed_email(data: PaymentConfirmedData) -> RenderedMessage:
    greeting = f"Dear {data.tenant_name},"
    intro = "We have confirmed the following payment. Thank you."
    rows = [
        ("Billing number", data.billing_number),
        ("Amount paid", format_amount(data.paid_amount)),
        ("Payment date", data.payment_date.isoformat()),
    ]
    if data.remaining_amount > 0:
        closing = f"Remaining balance: {format_amount(data.remaining_amount)}."
    else:
        closing = "This billing is now fully paid."
    return RenderedMessage(
        subject=f"[{data.company_name}] Payment confirmed",
        text=_email_text(greeting, intro, rows, closing, data.company_name),
        html=_email_html(
            "Payment confirmed", "#16a34a", greeting, intro, rows, data.company_name, callout=closing,
        ),
    )


def lease_expiring_email(data: LeaseExpiringData) -> RenderedMessage:
    greeting = f"Dear {data.tenant_name},"
    intro = "Your lease is approaching its end date."
    rows = [
        ("Unit", f"{data.property_name} {data.unit_number}"),
        ("Lease end date", f"{data.end_date.isoformat()} ({data.days_left} days left)"),
    ]
    footer = _company_footer(data.company_name, data.company_phone)
    return RenderedMessage(
        subject="[Notice] Lease renewal",
        text=_email_text(
            greeting, intro, rows,
            "If you wish to renew, please contact the management company.", footer,
        ),
        html=_email_html(
            "Lease expiring", "#7c3aed", greeting, intro, rows, footer,
            callout=f"{data.days_left} days left",
        ),
    )


# --- SMS ---

def billing_issued_sms(data: BillingIssuedData) -> RenderedMessage:
    return RenderedMessage(
        text=f"[{data.company_name}] {data.billing_month} billing {format_amount(data.total_amount)} "
             f"due {data.due_date.isoformat()}. {data.portal_url}"
    )


def payment_reminder_sms(data: PaymentReminderData) -> RenderedMessage:
    return RenderedMessage(
        text=f"[{data.company_name}] {data.billing_month} payment {format_amount(data.total_amount)} "
             f"is due {data.due_date.isoformat()}."
    )


def overdue_notice_sms(data: OverdueNoticeData) -> RenderedMessage:
    text = f"[Urgent] {data.billing_month} payment {format_amount(data.outstanding_amount)} is overdue. Please pay now."
    if data.company_phone:
        text += f" Tel: {data.company_phone}"
    return RenderedMessage(text=text)


def payment_confirmed_sms(data: PaymentConfirmedData) -> RenderedMessage:
    return RenderedMessage(
        text=f"[{data.company_name}] Payment {format_amount(data.paid_amount)} for "
             f"{data.billing_number} received. Thank you."
    )


def lease_expiring_sms(data: LeaseExpiringData) -> RenderedMessage:
    return RenderedMessage(
        text=f"[{data.company_name}] Your lease for {data.unit_number} ends "
             f"{data.end_date.isoformat()} ({data.days_left} days)."
    )


_RENDERERS: Dict[Tuple[NotificationChannel, NotificationType], Callable[..., RenderedMessage]] = {
    (NotificationChannel.EMAIL, NotificationType.BILLING_ISSUED): billing_issued_email,
    (NotificationChannel.EMAIL, NotificationType.PAYMENT_REMINDER): payment_reminder_email,
    (NotificationChannel.EMAIL, NotificationType.OVERDUE_NOTICE): overdue_notice_email,
    (NotificationChannel.EMAIL, NotificationType.PAYMENT_CONFIRMED): payment_confirmed_email,
    (NotificationChannel.EMAIL, NotificationType.LEASE_EXPIRING): lease_expiring_email,
    (NotificationChannel.SMS, NotificationType.BILLING_ISSUED): billing_issued_sms,
    (NotificationChannel.SMS, NotificationType.PAYMENT_REMINDER): payment_reminder_sms,
    (NotificationChannel.SMS, NotificationType.OVERDUE_NOTICE): overdue_notice_sms,
    (NotificationChannel.SMS, NotificationType.PAYMENT_CONFIRMED): payment_confirmed_sms,
    (NotificationChannel.SMS, NotificationType.LEASE_EXPIRING): lease_expiring_sms,
}


def render(channel: NotificationChannel, data: TemplateData) -> RenderedMessage:
    """Render a typed payload for one channel."""
    key = (NotificationChannel(channel), NotificationType(data.notification_type))
    renderer = _RENDERERS.get(key)
    if renderer is None:
        raise TemplateError(f"No {key[0].value} template for {key[1].value}")
    return renderer(data)
