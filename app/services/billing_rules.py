"""
Billing status machine.

    pending --pay--> partial | paid | overdue
    partial --pay--> paid | overdue
    overdue --pay--> paid
    {pending, partial} --sweep--> overdue
    {pending, partial, overdue} --cancel--> cancelled
    paid --remove payment--> pending | partial | overdue

cancelled is terminal. The due date is re-evaluated on every mutation, so a
partial payment on a past-due billing lands in overdue rather than partial.
"""

from dataclasses import dataclass
from datetime import date
from typing import Dict, FrozenSet

from app.core.exceptions import ConflictError, ValidationError
from app.models.enums import BillingStatus

ALLOWED_TRANSITIONS: Dict[BillingStatus, FrozenSet[BillingStatus]] = {
    BillingStatus.PENDING: frozenset({
        BillingStatus.PARTIAL, BillingStatus.PAID, BillingStatus.OVERDUE, BillingStatus.CANCELLED,
    }),
    BillingStatus.PARTIAL: frozenset({
        BillingStatus.PENDING, BillingStatus.PAID, BillingStatus.OVERDUE, BillingStatus.CANCELLED,
    }),
    BillingStatus.OVERDUE: frozenset({
        BillingStatus.PAID, BillingStatus.CANCELLED,
    }),
    BillingStatus.PAID: frozenset({
        BillingStatus.PENDING, BillingStatus.PARTIAL, BillingStatus.OVERDUE,
    }),
    BillingStatus.CANCELLED: frozenset(),
}

PAYABLE_STATUSES = frozenset({BillingStatus.PENDING, BillingStatus.PARTIAL, BillingStatus.OVERDUE})
OVERDUE_SWEEP_STATUSES = frozenset({BillingStatus.PENDING, BillingStatus.PARTIAL})


@dataclass(frozen=True)
class PaymentOutcome:
    paid_amount: int
    status: BillingStatus
    overpaid_by: int = 0


def allowed_transitions(status: BillingStatus) -> FrozenSet[BillingStatus]:
    return ALLOWED_TRANSITIONS[BillingStatus(status)]


def _conflict(message: str, status: BillingStatus) -> ConflictError:
    status = BillingStatus(status)
    return ConflictError(
        message,
        current_status=status.value,
        allowed_transitions=[s.value for s in ALLOWED_TRANSITIONS[status]],
    )


def derive_status(total_amount: int, paid_amount: int, due_date: date, today: date) -> BillingStatus:
    if paid_amount >= total_amount:
        return BillingStatus.PAID
    past_due = due_date < today
    if paid_amount > 0:
        return BillingStatus.OVERDUE if past_due else BillingStatus.PARTIAL
    return BillingStatus.OVERDUE if past_due else BillingStatus.PENDING


def ensure_accepts_payment(status: BillingStatus) -> None:
    status = BillingStatus(status)
    if status == BillingStatus.CANCELLED:
        raise _conflict("Cannot record a payment on a cancelled billing", status)
    if status == BillingStatus.PAID:
        raise _conflict("Billing is already fully paid", status)


def ensure_can_cancel(status: BillingStatus) -> None:
    status = BillingStatus(status)
    if status == BillingStatus.PAID:
        raise _conflict("Cannot cancel a fully paid billing", status)
    if status == BillingStatus.CANCELLED:
        raise _conflict("Billing is already cancelled", status)


def status_after_payment(
    status: BillingStatus,
    total_amount: int,
    paid_amount: int,
    amount: int,
    due_date: date,
    today: date,
) -> PaymentOutcome:
    """Apply a completed payment. Overpayment is accepted and reported."""
    if amount <= 0:
        raise ValidationError("Payment amount must be positive", details={"amount": amount})
    ensure_accepts_payment(status)

    new_paid = paid_amount + amount
    return PaymentOutcome(
        paid_amount=new_paid,
        status=derive_status(total_amount, new_paid, due_date, today),
        overpaid_by=max(0, new_paid - total_amount),
    )


def status_after_payment_removal(
    status: BillingStatus,
    total_amount: int,
    paid_amount: int,
    amount: int,
    due_date: date,
    today: date,
) -> PaymentOutcome:
    """Reverse a completed payment; paid_amount never drops below zero."""
    status = BillingStatus(status)
    if status == BillingStatus.CANCELLED:
        raise _conflict("Cannot remove a payment from a cancelled billing", status)

    new_paid = max(0, paid_amount - amount)
    return PaymentOutcome(
        paid_amount=new_paid,
        status=derive_status(total_amount, new_paid, due_date, today),
    )


def is_overdue_candidate(status: BillingStatus, due_date: date, today: date) -> bool:
    return BillingStatus(status) in OVERDUE_SWEEP_STATUSES and due_date < today
