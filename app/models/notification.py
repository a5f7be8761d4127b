"""Domain 5: Notification queue, per-company settings and in-app records"""

from sqlalchemy import (
    Column, String, Text, Boolean, DateTime, Integer, Index, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB, ARRAY
from sqlalchemy.orm import relationship

from app.models.base import BaseModel, CompanyScopedMixin, pg_enum
from app.models.enums import (
    NotificationType,
    NotificationChannel,
    NotificationQueueStatus,
    RecipientType,
)
from app.utils.time import get_utc_now


class NotificationQueueItem(BaseModel, CompanyScopedMixin):
    """
    Durable unit of outbound notification work.
    Only the delivery worker mutates it after creation; SENT, SKIPPED and
    FAILED are terminal.
    """
    __tablename__ = "notifications_queue"
    __table_args__ = (
        UniqueConstraint("company_id", "dedupe_key", name="uq_notifications_queue_dedupe_key"),
        Index("ix_notifications_queue_status_scheduled", "status", "scheduled_at"),
        Index(
            "ix_notifications_queue_recipient_type_channel",
            "company_id", "recipient_id", "notification_type", "channel",
        ),
    )

    recipient_type = Column(pg_enum(RecipientType, "recipient_type"), nullable=False)
    recipient_id = Column(UUID(as_uuid=True), nullable=False)
    notification_type = Column(pg_enum(NotificationType, "notification_type"), nullable=False)
    channel = Column(pg_enum(NotificationChannel, "notification_channel"), nullable=False)
    template_data = Column(JSONB, nullable=False)

    status = Column(
        pg_enum(NotificationQueueStatus, "notification_queue_status"),
        default=NotificationQueueStatus.PENDING,
        nullable=False,
    )
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    scheduled_at = Column(DateTime, default=get_utc_now, nullable=False)
    claimed_at = Column(DateTime, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    dedupe_key = Column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<NotificationQueueItem {self.notification_type}/{self.channel} - {self.status}>"


class NotificationSettings(BaseModel, CompanyScopedMixin):
    """
    Per-company channel and notification-type toggles.
    Producers read it once per run as a NotificationSettingsSnapshot.
    """
    __tablename__ = "company_notification_settings"
    __table_args__ = (
        UniqueConstraint("company_id", name="uq_company_notification_settings_company"),
    )

    email_enabled = Column(Boolean, default=True, nullable=False)
    sms_enabled = Column(Boolean, default=False, nullable=False)

    email_billing_issued = Column(Boolean, default=True, nullable=False)
    email_payment_reminder = Column(Boolean, default=True, nullable=False)
    email_overdue_notice = Column(Boolean, default=True, nullable=False)
    email_payment_confirmed = Column(Boolean, default=True, nullable=False)
    email_lease_expiring = Column(Boolean, default=True, nullable=False)

    sms_billing_issued = Column(Boolean, default=False, nullable=False)
    sms_payment_reminder = Column(Boolean, default=True, nullable=False)
    sms_overdue_notice = Column(Boolean, default=True, nullable=False)
    sms_payment_confirmed = Column(Boolean, default=False, nullable=False)
    sms_lease_expiring = Column(Boolean, default=False, nullable=False)

    sender_email = Column(String(255), nullable=True)
    sender_name = Column(String(255), nullable=True)

    payment_reminder_days = Column(ARRAY(Integer), nullable=True)
    lease_expiry_days = Column(ARRAY(Integer), nullable=True)

    company = relationship("Company", back_populates="notification_settings")

    def __repr__(self) -> str:
        return f"<NotificationSettings company={self.company_id}>"


class InAppNotification(BaseModel, CompanyScopedMixin):
    """Staff-facing in-app notification (tenant submissions, payment claims)."""
    __tablename__ = "notifications"

    recipient_type = Column(pg_enum(RecipientType, "recipient_type"), nullable=False)
    recipient_id = Column(UUID(as_uuid=True), nullable=True)  # NULL = every staff member of the company
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    related_type = Column(String(50), nullable=True)
    related_id = Column(UUID(as_uuid=True), nullable=True)
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    read_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<InAppNotification {self.title}>"
