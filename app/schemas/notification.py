"""
Notification payloads, settings and queue schemas.

Template payloads form a tagged union keyed by ``notification_type`` so a
producer that forgets a field fails when the payload is built, not when the
delivery worker renders it.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from uuid import UUID
from datetime import datetime, date

from app.models.enums import (
    NotificationChannel,
    NotificationQueueStatus,
    NotificationType,
    RecipientType,
)

DEFAULT_PAYMENT_REMINDER_DAYS: Tuple[int, ...] = (7, 3)
DEFAULT_LEASE_EXPIRY_DAYS: Tuple[int, ...] = (30, 14, 7)


# --- Template payloads ---

class _TemplateBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tenant_name: str
    company_name: str


class BillingIssuedData(_TemplateBase):
    notification_type: Literal["billing_issued"] = "billing_issued"
    billing_number: str
    billing_month: str
    total_amount: int
    due_date: date
    portal_url: str


class PaymentReminderData(_TemplateBase):
    notification_type: Literal["payment_reminder"] = "payment_reminder"
    billing_number: str
    billing_month: str
    total_amount: int
    due_date: date
    days_left: int


class OverdueNoticeData(_TemplateBase):
    notification_type: Literal["overdue_notice"] = "overdue_notice"
    billing_number: str
    billing_month: str
    total_amount: int
    outstanding_amount: int
    due_date: date
    days_overdue: int
    company_phone: str = ""


class PaymentConfirmedData(_TemplateBase):
    notification_type: Literal["payment_confirmed"] = "payment_confirmed"
    billing_number: str
    paid_amount: int
    payment_date: date
    remaining_amount: int


class LeaseExpiringData(_TemplateBase):
    notification_type: Literal["lease_expiring"] = "lease_expiring"
    property_name: str
    unit_number: str
    end_date: date
    days_left: int
    company_phone: str = ""


TemplateData = Annotated[
    Union[
        BillingIssuedData,
        PaymentReminderData,
        OverdueNoticeData,
        PaymentConfirmedData,
        LeaseExpiringData,
    ],
    Field(discriminator="notification_type"),
]

template_data_adapter: TypeAdapter = TypeAdapter(TemplateData)


def parse_template_data(raw: Dict[str, Any]) -> TemplateData:
    """Validate a stored JSON payload back into its typed model."""
    return template_data_adapter.validate_python(raw)


# --- Settings ---

class NotificationSettingsSnapshot(BaseModel):
    """
    Immutable view of a company's notification settings.

    Loaded once per trigger run and passed to every enqueue call so the whole
    run sees one consistent configuration.
    """
    model_config = ConfigDict(frozen=True, from_attributes=True)

    company_id: UUID
    email_enabled: bool = True
    sms_enabled: bool = False

    email_billing_issued: bool = True
    email_payment_reminder: bool = True
    email_overdue_notice: bool = True
    email_payment_confirmed: bool = True
    email_lease_expiring: bool = True

    sms_billing_issued: bool = False
    sms_payment_reminder: bool = True
    sms_overdue_notice: bool = True
    sms_payment_confirmed: bool = False
    sms_lease_expiring: bool = False

    sender_email: Optional[str] = None
    sender_name: Optional[str] = None

    payment_reminder_days: Tuple[int, ...] = DEFAULT_PAYMENT_REMINDER_DAYS
    lease_expiry_days: Tuple[int, ...] = DEFAULT_LEASE_EXPIRY_DAYS

    @field_validator("payment_reminder_days", mode="before")
    @classmethod
    def default_reminder_days(cls, v):
        return tuple(v) if v else DEFAULT_PAYMENT_REMINDER_DAYS

    @field_validator("lease_expiry_days", mode="before")
    @classmethod
    def default_expiry_days(cls, v):
        return tuple(v) if v else DEFAULT_LEASE_EXPIRY_DAYS

    def is_enabled(self, channel: NotificationChannel, notification_type: NotificationType) -> bool:
        """Both the channel master switch and the (channel, type) toggle must be on."""
        channel = NotificationChannel(channel)
        notification_type = NotificationType(notification_type)
        if not getattr(self, f"{channel.value}_enabled"):
            return False
        return bool(getattr(self, f"{channel.value}_{notification_type.value}"))

    def enabled_channels(self, notification_type: NotificationType) -> List[NotificationChannel]:
        return [c for c in NotificationChannel if self.is_enabled(c, notification_type)]


class NotificationSettingsUpdate(BaseModel):
    email_enabled: Optional[bool] = None
    sms_enabled: Optional[bool] = None

    email_billing_issued: Optional[bool] = None
    email_payment_reminder: Optional[bool] = None
    email_overdue_notice: Optional[bool] = None
    email_payment_confirmed: Optional[bool] = None
    email_lease_expiring: Optional[bool] = None

    sms_billing_issued: Optional[bool] = None
    sms_payment_reminder: Optional[bool] = None
    sms_overdue_notice: Optional[bool] = None
    sms_payment_confirmed: Optional[bool] = None
    sms_lease_expiring: Optional[bool] = None

    sender_email: Optional[str] = Field(None, max_length=255)
    sender_name: Optional[str] = Field(None, max_length=255)

    payment_reminder_days: Optional[List[int]] = None
    lease_expiry_days: Optional[List[int]] = None

    @field_validator("payment_reminder_days", "lease_expiry_days")
    @classmethod
    def days_in_range(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        if v is None:
            return v
        if not v:
            raise ValueError("at least one lead time is required")
        if any(d < 1 or d > 365 for d in v):
            raise ValueError("lead times must be between 1 and 365 days")
        return sorted(set(v), reverse=True)


# --- Queue & manual send ---

class NotificationSendRequest(BaseModel):
    """
    Staff-initiated send to one or more tenants.
    tenant_name and company_name are filled in per recipient.
    """
    notification_type: NotificationType
    channels: List[NotificationChannel] = Field(..., min_length=1)
    tenant_ids: List[UUID] = Field(..., min_length=1, max_length=500)
    template_data: Dict[str, Any] = Field(default_factory=dict)
    skip_duplicate_check: bool = False


class EnqueueSummary(BaseModel):
    queued: int = 0
    skipped: int = 0
    errors: int = 0


class NotificationQueueResponse(BaseModel):
    id: UUID
    recipient_type: RecipientType
    recipient_id: UUID
    notification_type: NotificationType
    channel: NotificationChannel
    template_data: Dict[str, Any]
    status: NotificationQueueStatus
    attempts: int
    last_error: Optional[str] = None
    scheduled_at: datetime
    sent_at: Optional[datetime] = None
    dedupe_key: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DrainSummary(BaseModel):
    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    retried: int = 0
    reclaimed: int = 0


class InAppNotificationResponse(BaseModel):
    id: UUID
    title: str
    message: str
    related_type: Optional[str] = None
    related_id: Optional[UUID] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
