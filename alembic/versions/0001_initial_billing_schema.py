"""initial billing and notification schema

Revision ID: 0001a2b3c4d5
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001a2b3c4d5"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "user_role": ("company_admin", "company_staff", "tenant"),
    "lease_status": ("pending", "active", "expired", "terminated"),
    "fee_calculation_type": ("fixed", "per_sqm", "metered", "custom"),
    "submission_status": ("pending", "approved", "rejected"),
    "billing_status": ("pending", "partial", "paid", "overdue", "cancelled"),
    "payment_status": ("completed", "pending"),
    "payment_method": ("cash", "bank_transfer", "card", "other"),
    "notification_type": (
        "billing_issued", "payment_reminder", "overdue_notice", "payment_confirmed", "lease_expiring",
    ),
    "notification_channel": ("email", "sms"),
    "notification_queue_status": ("pending", "processing", "sent", "failed", "skipped"),
    "recipient_type": ("tenant", "company_user"),
}


def _enum(name):
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _base_columns():
    return [
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _company_fk():
    return sa.Column("company_id", sa.UUID(), nullable=False)


def _index(table, *columns, unique=False):
    op.create_index(op.f(f"ix_{table}_{columns[0]}"), table, list(columns), unique=unique)


def upgrade() -> None:
    for name, values in ENUMS.items():
        quoted = ", ".join(f"'{v}'" for v in values)
        op.execute(f"CREATE TYPE {name} AS ENUM ({quoted})")

    op.create_table(
        "companies",
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_base_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    _index("companies", "id")
    _index("companies", "is_active")

    op.create_table(
        "users",
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("role", _enum("user_role"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_base_columns(),
        _company_fk(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    _index("users", "id")
    _index("users", "email", unique=True)
    _index("users", "role")
    _index("users", "is_active")
    _index("users", "company_id")

    op.create_table(
        "properties",
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("address", sa.String(500), nullable=True),
        *_base_columns(),
        _company_fk(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    _index("properties", "id")
    _index("properties", "company_id")

    op.create_table(
        "units",
        sa.Column("property_id", sa.UUID(), nullable=False),
        sa.Column("unit_number", sa.String(50), nullable=False),
        sa.Column("area_sqm", sa.Numeric(10, 2), nullable=True),
        *_base_columns(),
        _company_fk(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["property_id"], ["properties.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    _index("units", "id")
    _index("units", "property_id")
    _index("units", "company_id")

    op.create_table(
        "tenants",
        sa.Column("user_id", sa.UUID(), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        *_base_columns(),
        _company_fk(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )
    _index("tenants", "id")
    _index("tenants", "company_id")

    op.create_table(
        "leases",
        sa.Column("tenant_id", sa.UUID(), nullable=False),
        sa.Column("unit_id", sa.UUID(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("monthly_rent", sa.BigInteger(), nullable=False),
        sa.Column("status", _enum("lease_status"), nullable=False),
        *_base_columns(),
        _company_fk(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["unit_id"], ["units.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("id", "tenant_id", "unit_id", "end_date", "status", "company_id"):
        _index("leases", column)

    op.create_table(
        "fee_types",
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("calculation_type", _enum("fee_calculation_type"), nullable=False),
        sa.Column("default_amount", sa.BigInteger(), nullable=True),
        sa.Column("default_unit_price", sa.BigInteger(), nullable=True),
        sa.Column("unit_label", sa.String(20), nullable=True),
        sa.Column("display_order", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_base_columns(),
        _company_fk(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    _index("fee_types", "id")
    _index("fee_types", "is_active")
    _index("fee_types", "company_id")

    op.create_table(
        "unit_fees",
        sa.Column("unit_id", sa.UUID(), nullable=False),
        sa.Column("fee_type_id", sa.UUID(), nullable=False),
        sa.Column("custom_amount", sa.BigInteger(), nullable=True),
        sa.Column("custom_unit_price", sa.BigInteger(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_base_columns(),
        sa.ForeignKeyConstraint(["unit_id"], ["units.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["fee_type_id"], ["fee_types.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("unit_id", "fee_type_id", name="uq_unit_fees_unit_fee_type"),
    )
    for column in ("id", "unit_id", "fee_type_id", "is_active"):
        _index("unit_fees", column)

    op.create_table(
        "meter_readings",
        sa.Column("unit_id", sa.UUID(), nullable=False),
        sa.Column("fee_type_id", sa.UUID(), nullable=False),
        sa.Column("reading_date", sa.Date(), nullable=False),
        sa.Column("previous_reading", sa.Numeric(14, 2), nullable=False),
        sa.Column("current_reading", sa.Numeric(14, 2), nullable=False),
        sa.Column("unit_price", sa.BigInteger(), nullable=False),
        sa.Column("recorded_by", sa.UUID(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_base_columns(),
        _company_fk(),
        sa.CheckConstraint("current_reading >= previous_reading", name="ck_meter_readings_monotonic"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["unit_id"], ["units.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["fee_type_id"], ["fee_types.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["recorded_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("id", "unit_id", "fee_type_id", "company_id"):
        _index("meter_readings", column)
    op.create_index(
        "ix_meter_readings_unit_fee_date", "meter_readings",
        ["unit_id", "fee_type_id", "reading_date"], unique=False,
    )

    op.create_table(
        "tenant_meter_submissions",
        sa.Column("tenant_id", sa.UUID(), nullable=False),
        sa.Column("unit_id", sa.UUID(), nullable=False),
        sa.Column("fee_type_id", sa.UUID(), nullable=False),
        sa.Column("submitted_reading", sa.Numeric(14, 2), nullable=False),
        sa.Column("photo_url", sa.String(500), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", _enum("submission_status"), nullable=False),
        sa.Column("submitted_at", sa.DateTime(), nullable=False),
        sa.Column("reviewed_by", sa.UUID(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("meter_reading_id", sa.UUID(), nullable=True),
        *_base_columns(),
        _company_fk(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["unit_id"], ["units.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["fee_type_id"], ["fee_types.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["reviewed_by"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["meter_reading_id"], ["meter_readings.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("id", "tenant_id", "unit_id", "status", "company_id"):
        _index("tenant_meter_submissions", column)
    op.create_index(
        "uq_tenant_meter_submissions_pending", "tenant_meter_submissions",
        ["tenant_id", "fee_type_id"], unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "billings",
        sa.Column("lease_id", sa.UUID(), nullable=True),
        sa.Column("tenant_id", sa.UUID(), nullable=False),
        sa.Column("unit_id", sa.UUID(), nullable=False),
        sa.Column("billing_number", sa.String(30), nullable=False),
        sa.Column("billing_month", sa.Date(), nullable=False),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("subtotal", sa.BigInteger(), nullable=False),
        sa.Column("tax_amount", sa.BigInteger(), nullable=False),
        sa.Column("total_amount", sa.BigInteger(), nullable=False),
        sa.Column("paid_amount", sa.BigInteger(), nullable=False),
        sa.Column("status", _enum("billing_status"), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("overdue_notified_at", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_base_columns(),
        _company_fk(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["lease_id"], ["leases.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["unit_id"], ["units.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("id", "lease_id", "tenant_id", "unit_id", "billing_number", "status", "company_id"):
        _index("billings", column)
    op.create_index("ix_billings_status_due_date", "billings", ["status", "due_date"], unique=False)
    op.create_index(
        "uq_billings_unit_month_active", "billings",
        ["unit_id", "billing_month"], unique=True,
        postgresql_where=sa.text("status <> 'cancelled'"),
    )

    op.create_table(
        "billing_items",
        sa.Column("billing_id", sa.UUID(), nullable=False),
        sa.Column("fee_type_id", sa.UUID(), nullable=True),
        sa.Column("meter_reading_id", sa.UUID(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("fee_name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("quantity", sa.Numeric(14, 2), nullable=False),
        sa.Column("unit_price", sa.BigInteger(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        *_base_columns(),
        sa.ForeignKeyConstraint(["billing_id"], ["billings.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["fee_type_id"], ["fee_types.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["meter_reading_id"], ["meter_readings.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    _index("billing_items", "id")
    _index("billing_items", "billing_id")

    op.create_table(
        "payments",
        sa.Column("billing_id", sa.UUID(), nullable=False),
        sa.Column("lease_id", sa.UUID(), nullable=True),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("payment_method", _enum("payment_method"), nullable=False),
        sa.Column("reference_number", sa.String(100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", _enum("payment_status"), nullable=False),
        sa.Column("recorded_by", sa.UUID(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(), nullable=True),
        *_base_columns(),
        _company_fk(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["billing_id"], ["billings.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["lease_id"], ["leases.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["recorded_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("id", "billing_id", "status", "company_id"):
        _index("payments", column)

    op.create_table(
        "notifications_queue",
        sa.Column("recipient_type", _enum("recipient_type"), nullable=False),
        sa.Column("recipient_id", sa.UUID(), nullable=False),
        sa.Column("notification_type", _enum("notification_type"), nullable=False),
        sa.Column("channel", _enum("notification_channel"), nullable=False),
        sa.Column("template_data", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", _enum("notification_queue_status"), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(), nullable=False),
        sa.Column("claimed_at", sa.DateTime(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("dedupe_key", sa.String(255), nullable=True),
        *_base_columns(),
        _company_fk(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("company_id", "dedupe_key", name="uq_notifications_queue_dedupe_key"),
    )
    _index("notifications_queue", "id")
    _index("notifications_queue", "company_id")
    op.create_index(
        "ix_notifications_queue_status_scheduled", "notifications_queue",
        ["status", "scheduled_at"], unique=False,
    )
    op.create_index(
        "ix_notifications_queue_recipient_type_channel", "notifications_queue",
        ["company_id", "recipient_id", "notification_type", "channel"], unique=False,
    )

    op.create_table(
        "company_notification_settings",
        sa.Column("email_enabled", sa.Boolean(), nullable=False),
        sa.Column("sms_enabled", sa.Boolean(), nullable=False),
        sa.Column("email_billing_issued", sa.Boolean(), nullable=False),
        sa.Column("email_payment_reminder", sa.Boolean(), nullable=False),
        sa.Column("email_overdue_notice", sa.Boolean(), nullable=False),
        sa.Column("email_payment_confirmed", sa.Boolean(), nullable=False),
        sa.Column("email_lease_expiring", sa.Boolean(), nullable=False),
        sa.Column("sms_billing_issued", sa.Boolean(), nullable=False),
        sa.Column("sms_payment_reminder", sa.Boolean(), nullable=False),
        sa.Column("sms_overdue_notice", sa.Boolean(), nullable=False),
        sa.Column("sms_payment_confirmed", sa.Boolean(), nullable=False),
        sa.Column("sms_lease_expiring", sa.Boolean(), nullable=False),
        sa.Column("sender_email", sa.String(255), nullable=True),
        sa.Column("sender_name", sa.String(255), nullable=True),
        sa.Column("payment_reminder_days", postgresql.ARRAY(sa.Integer()), nullable=True),
        sa.Column("lease_expiry_days", postgresql.ARRAY(sa.Integer()), nullable=True),
        *_base_columns(),
        _company_fk(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("company_id", name="uq_company_notification_settings_company"),
    )
    _index("company_notification_settings", "id")
    _index("company_notification_settings", "company_id")

    op.create_table(
        "notifications",
        sa.Column("recipient_type", _enum("recipient_type"), nullable=False),
        sa.Column("recipient_id", sa.UUID(), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("related_type", sa.String(50), nullable=True),
        sa.Column("related_id", sa.UUID(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        sa.Column("read_at", sa.DateTime(), nullable=True),
        *_base_columns(),
        _company_fk(),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    _index("notifications", "id")
    _index("notifications", "is_read")
    _index("notifications", "company_id")


def downgrade() -> None:
    for table in (
        "notifications",
        "company_notification_settings",
        "notifications_queue",
        "payments",
        "billing_items",
        "billings",
        "tenant_meter_submissions",
        "meter_readings",
        "unit_fees",
        "fee_types",
        "leases",
        "tenants",
        "units",
        "properties",
        "users",
        "companies",
    ):
        op.drop_table(table)
    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
