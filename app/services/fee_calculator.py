"""
Fee calculation.

Pure functions that turn a fee definition plus its unit context into an
integer amount in the base currency unit. Nothing here touches the database.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Union

from app.config import settings
from app.core.exceptions import ValidationError
from app.models.enums import FeeCalculationType

Number = Union[int, Decimal]


@dataclass(frozen=True)
class MeterUsage:
    """Consumption and the unit price frozen on the reading."""
    consumption: Decimal
    unit_price: int


@dataclass(frozen=True)
class FeeContext:
    area_sqm: Optional[Decimal] = None
    meter: Optional[MeterUsage] = None
    # Only populated when the unit's override row is active
    override_amount: Optional[int] = None
    override_unit_price: Optional[int] = None


@dataclass(frozen=True)
class LineItem:
    fee_name: str
    quantity: Decimal
    unit_price: int
    amount: int
    description: Optional[str] = None


def round_amount(value: Number) -> int:
    """Round half-up to the smallest currency unit."""
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def context_from_override(override, area_sqm=None, meter: Optional[MeterUsage] = None) -> FeeContext:
    """Build a FeeContext, ignoring an override that is missing or inactive."""
    active = override is not None and override.is_active
    return FeeContext(
        area_sqm=Decimal(area_sqm) if area_sqm is not None else None,
        meter=meter,
        override_amount=override.custom_amount if active else None,
        override_unit_price=override.custom_unit_price if active else None,
    )


def resolve_unit_price(fee_type, context: FeeContext) -> int:
    if context.override_unit_price is not None:
        return int(context.override_unit_price)
    if fee_type.default_unit_price is not None:
        return int(fee_type.default_unit_price)
    return 0


def compute_amount(fee_type, context: FeeContext) -> int:
    """
    Amount charged for one fee type.

    fixed    -> override amount, else default amount, else 0
    per_sqm  -> area x unit price; 0 when the area is unknown
    metered  -> consumption x the reading's frozen unit price; 0 without a reading
    custom   -> override amount or 0
    """
    calc = FeeCalculationType(fee_type.calculation_type)

    if calc == FeeCalculationType.FIXED:
        if context.override_amount is not None:
            return int(context.override_amount)
        return int(fee_type.default_amount or 0)

    if calc == FeeCalculationType.PER_SQM:
        if not context.area_sqm:
            return 0
        return round_amount(Decimal(context.area_sqm) * resolve_unit_price(fee_type, context))

    if calc == FeeCalculationType.METERED:
        if context.meter is None:
            return 0
        return round_amount(Decimal(context.meter.consumption) * context.meter.unit_price)

    if calc == FeeCalculationType.CUSTOM:
        return int(context.override_amount or 0)

    return 0


def build_line_item(fee_type, context: FeeContext) -> LineItem:
    """Quantity, unit price and amount as they are shown on the billing."""
    calc = FeeCalculationType(fee_type.calculation_type)
    amount = compute_amount(fee_type, context)
    label = fee_type.unit_label or ""

    if calc == FeeCalculationType.PER_SQM and context.area_sqm:
        unit_price = resolve_unit_price(fee_type, context)
        return LineItem(
            fee_name=fee_type.name,
            quantity=Decimal(context.area_sqm),
            unit_price=unit_price,
            amount=amount,
            description=f"{context.area_sqm} {label or 'm²'} x {unit_price}",
        )

    if calc == FeeCalculationType.METERED and context.meter is not None:
        return LineItem(
            fee_name=fee_type.name,
            quantity=Decimal(context.meter.consumption),
            unit_price=context.meter.unit_price,
            amount=amount,
            description=f"{context.meter.consumption} {label or 'units'} x {context.meter.unit_price}",
        )

    return LineItem(fee_name=fee_type.name, quantity=Decimal("1"), unit_price=amount, amount=amount)


def calculate_subtotal(amounts: Iterable[int]) -> int:
    return sum(int(a) for a in amounts)


def calculate_tax(subtotal: int, rate: Optional[Decimal] = None) -> int:
    rate = settings.BILLING_TAX_RATE if rate is None else rate
    return round_amount(Decimal(subtotal) * Decimal(rate))


def calculate_billing_total(amounts: Iterable[int], tax_amount: int = 0) -> int:
    """Sum of item amounts plus tax."""
    return calculate_subtotal(amounts) + int(tax_amount)


def calculate_outstanding(total_amount: int, paid_amount: int) -> int:
    """Remaining balance for display; overpayment shows as 0."""
    return max(0, total_amount - paid_amount)


def calculate_meter_consumption(current_reading: Number, previous_reading: Number) -> Decimal:
    current = Decimal(current_reading)
    previous = Decimal(previous_reading)
    if current < previous:
        raise ValidationError(
            "Current reading cannot be less than previous reading",
            details={"current_reading": str(current), "previous_reading": str(previous)},
        )
    return current - previous
