"""Base Models and Mixins"""

import uuid
from sqlalchemy import Column, DateTime, Boolean, ForeignKey
from sqlalchemy.dialects.postgresql import UUID, ENUM
from sqlalchemy.orm import declared_attr

from app.database import Base
from app.utils.time import get_utc_now


class BaseModel(Base):
    """
    Base model class with common fields for all models.

    Provides:
    - UUID primary key
    - created_at timestamp
    - updated_at timestamp
    """
    __abstract__ = True

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    created_at = Column(DateTime, default=get_utc_now, nullable=False)
    updated_at = Column(DateTime, default=get_utc_now, onupdate=get_utc_now, nullable=False)


class CompanyScopedMixin:
    """
    Mixin for multi-tenant models scoped to a management company.

    Provides:
    - company_id foreign key
    """

    @declared_attr
    def company_id(cls):
        return Column(
            UUID(as_uuid=True),
            ForeignKey("companies.id", ondelete="CASCADE"),
            nullable=False,
            index=True
        )


class StatusMixin:
    """
    Mixin for records that are soft-deactivated rather than deleted.

    Provides:
    - is_active boolean flag
    """
    is_active = Column(Boolean, default=True, nullable=False, index=True)


def pg_enum(enum_cls, name: str) -> ENUM:
    """PostgreSQL ENUM persisting the enum *values* (lowercase strings), not member names."""
    return ENUM(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )
