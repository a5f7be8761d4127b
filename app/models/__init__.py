"""Models Package - Export all models for easy imports"""

from app.models.base import BaseModel, CompanyScopedMixin, StatusMixin
from app.models.enums import *
from app.models.company import Company, User
from app.models.property import Property, Unit, Tenant, Lease
from app.models.fee import FeeType, UnitFeeOverride
from app.models.meter import MeterReading, TenantMeterSubmission
from app.models.billing import Billing, BillingItem, Payment
from app.models.notification import NotificationQueueItem, NotificationSettings, InAppNotification


__all__ = [
    # Base classes
    "BaseModel",
    "CompanyScopedMixin",
    "StatusMixin",

    # Identity
    "Company",
    "User",

    # Leasing
    "Property",
    "Unit",
    "Tenant",
    "Lease",

    # Fees & metering
    "FeeType",
    "UnitFeeOverride",
    "MeterReading",
    "TenantMeterSubmission",

    # Billing
    "Billing",
    "BillingItem",
    "Payment",

    # Notifications
    "NotificationQueueItem",
    "NotificationSettings",
    "InAppNotification",
]
