"""Domain 1: Companies and authenticated identities"""

from sqlalchemy import Column, String, Boolean
from sqlalchemy.orm import relationship

from app.models.base import BaseModel, CompanyScopedMixin, StatusMixin, pg_enum
from app.models.enums import UserRole


class Company(BaseModel, StatusMixin):
    """
    A property-management company (the SaaS tenant).
    Every billing-pipeline record is scoped to exactly one company.
    """
    __tablename__ = "companies"

    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)

    notification_settings = relationship(
        "NotificationSettings", back_populates="company", uselist=False
    )

    def __repr__(self) -> str:
        return f"<Company {self.name}>"


class User(BaseModel, CompanyScopedMixin):
    """
    Identity issued by the external auth service.
    Staff act for their company; tenant users are linked from Tenant.user_id.
    """
    __tablename__ = "users"

    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    role = Column(pg_enum(UserRole, "user_role"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    @property
    def is_company_staff(self) -> bool:
        return self.role in (UserRole.COMPANY_ADMIN, UserRole.COMPANY_STAFF)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"
