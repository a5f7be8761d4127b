"""Domain 2: Properties, units, tenants and leases (read by the pipeline)"""

from sqlalchemy import Column, String, Date, Numeric, BigInteger, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.models.base import BaseModel, CompanyScopedMixin, pg_enum
from app.models.enums import LeaseStatus


class Property(BaseModel, CompanyScopedMixin):
    __tablename__ = "properties"

    name = Column(String(255), nullable=False)
    address = Column(String(500), nullable=True)

    units = relationship("Unit", back_populates="property")

    def __repr__(self) -> str:
        return f"<Property {self.name}>"


class Unit(BaseModel, CompanyScopedMixin):
    """A rentable unit. ``area_sqm`` drives per-square-metre fees."""
    __tablename__ = "units"

    property_id = Column(UUID(as_uuid=True), ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)
    unit_number = Column(String(50), nullable=False)
    area_sqm = Column(Numeric(10, 2), nullable=True)

    property = relationship("Property", back_populates="units")

    def __repr__(self) -> str:
        return f"<Unit {self.unit_number}>"


class Tenant(BaseModel, CompanyScopedMixin):
    """
    Tenant directory entry. Contact details decide which channels
    can reach the tenant: email is optional, SMS needs a phone.
    """
    __tablename__ = "tenants"

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, unique=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)

    def __repr__(self) -> str:
        return f"<Tenant {self.name}>"


class Lease(BaseModel, CompanyScopedMixin):
    __tablename__ = "leases"

    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    unit_id = Column(UUID(as_uuid=True), ForeignKey("units.id", ondelete="CASCADE"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False, index=True)
    monthly_rent = Column(BigInteger, nullable=False, default=0)
    status = Column(pg_enum(LeaseStatus, "lease_status"), default=LeaseStatus.ACTIVE, nullable=False, index=True)

    tenant = relationship("Tenant")
    unit = relationship("Unit")

    def __repr__(self) -> str:
        return f"<Lease {self.start_date}..{self.end_date} - {self.status}>"
