"""Centralized Enum Definitions"""

import enum


# Domain 1: Identity
class UserRole(str, enum.Enum):
    """Roles carried by authenticated identities"""
    COMPANY_ADMIN = "company_admin"
    COMPANY_STAFF = "company_staff"
    TENANT = "tenant"


# Domain 2: Leasing
class LeaseStatus(str, enum.Enum):
    """Lease lifecycle"""
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    TERMINATED = "terminated"


# Domain 3: Fees & Metering
class FeeCalculationType(str, enum.Enum):
    """How a fee type turns into a line-item amount"""
    FIXED = "fixed"
    PER_SQM = "per_sqm"
    METERED = "metered"
    CUSTOM = "custom"


class SubmissionStatus(str, enum.Enum):
    """Tenant meter submission status"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# Domain 4: Billing
class BillingStatus(str, enum.Enum):
    """Billing payment status"""
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    """Completed payments count toward the billing; pending ones are tenant claims"""
    COMPLETED = "completed"
    PENDING = "pending"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"
    OTHER = "other"


# Domain 5: Notifications
class NotificationType(str, enum.Enum):
    """Outbound notification kinds"""
    BILLING_ISSUED = "billing_issued"
    PAYMENT_REMINDER = "payment_reminder"
    OVERDUE_NOTICE = "overdue_notice"
    PAYMENT_CONFIRMED = "payment_confirmed"
    LEASE_EXPIRING = "lease_expiring"


class NotificationChannel(str, enum.Enum):
    """Notification delivery channels"""
    EMAIL = "email"
    SMS = "sms"


class NotificationQueueStatus(str, enum.Enum):
    """Queue item status; PROCESSING marks an item claimed by a drain worker"""
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class RecipientType(str, enum.Enum):
    TENANT = "tenant"
    COMPANY_USER = "company_user"
