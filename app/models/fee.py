"""Domain 3: Fee definitions"""

from sqlalchemy import Column, String, Integer, BigInteger, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.models.base import BaseModel, CompanyScopedMixin, StatusMixin, pg_enum
from app.models.enums import FeeCalculationType


class FeeType(BaseModel, CompanyScopedMixin, StatusMixin):
    """
    A billable category owned by a company.
    Deactivated (is_active=False) instead of deleted once a billing references it.
    """
    __tablename__ = "fee_types"

    name = Column(String(255), nullable=False)
    calculation_type = Column(pg_enum(FeeCalculationType, "fee_calculation_type"), nullable=False)
    default_amount = Column(BigInteger, nullable=True)
    default_unit_price = Column(BigInteger, nullable=True)
    unit_label = Column(String(20), nullable=True)  # kWh, m³, m²
    display_order = Column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<FeeType {self.name} ({self.calculation_type})>"


class UnitFeeOverride(BaseModel, StatusMixin):
    """Per-unit amount or unit price replacing the fee type defaults while active."""
    __tablename__ = "unit_fees"
    __table_args__ = (
        UniqueConstraint("unit_id", "fee_type_id", name="uq_unit_fees_unit_fee_type"),
    )

    unit_id = Column(UUID(as_uuid=True), ForeignKey("units.id", ondelete="CASCADE"), nullable=False, index=True)
    fee_type_id = Column(UUID(as_uuid=True), ForeignKey("fee_types.id", ondelete="CASCADE"), nullable=False, index=True)
    custom_amount = Column(BigInteger, nullable=True)
    custom_unit_price = Column(BigInteger, nullable=True)

    fee_type = relationship("FeeType")

    def __repr__(self) -> str:
        return f"<UnitFeeOverride unit={self.unit_id} fee_type={self.fee_type_id}>"
