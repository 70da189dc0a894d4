"""Calendar arithmetic for payment and payout schedules, and the overdue rules.

Every place that needs to know whether a payment is overdue (fines, reports,
the defaulters list, member dashboards) goes through ``is_payment_overdue`` or
its SQL twin ``overdue_payment_filter``.
"""
from datetime import date, datetime, timezone
from typing import Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import and_

from esusu.models.cycle import ContributionCycle
from esusu.models.transaction import Payment, PaymentStatus, Payout, PayoutStatus


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC; offset-aware input is converted."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def months_between(start: date, end: date) -> int:
    """Whole calendar months from ``start`` to ``end``, ignoring the day."""
    return (end.year - start.year) * 12 + (end.month - start.month)


def cycle_duration(cycle: ContributionCycle) -> int:
    """Number of monthly payments a participant owes in the cycle."""
    return min(cycle.total_slots, months_between(cycle.start_date, cycle.end_date) + 1)


def payment_due_date(cycle: ContributionCycle, month_number: int) -> date:
    # relativedelta clamps day=31 to the last day of shorter months
    return cycle.start_date + relativedelta(months=month_number - 1, day=cycle.payment_deadline_day)


def payout_scheduled_date(cycle: ContributionCycle, picked_number: int) -> date:
    return cycle.start_date + relativedelta(months=picked_number - 1)


def current_cycle_month(cycle: ContributionCycle, today: Optional[date] = None) -> int:
    """1-based month of the cycle that ``today`` falls in, clamped to the slot range."""
    today = today or date.today()
    month = months_between(cycle.start_date, today) + 1
    return max(1, min(month, cycle.total_slots))


def is_payment_overdue(payment: Payment, today: Optional[date] = None) -> bool:
    today = today or date.today()
    return payment.status == PaymentStatus.PENDING and today > payment.due_date


def overdue_payment_filter(today: Optional[date] = None):
    today = today or date.today()
    return and_(Payment.status == PaymentStatus.PENDING, Payment.due_date < today)


def is_payout_overdue(payout: Payout, today: Optional[date] = None) -> bool:
    today = today or date.today()
    return payout.status == PayoutStatus.PENDING and payout.scheduled_date < today


def overdue_payout_filter(today: Optional[date] = None):
    today = today or date.today()
    return and_(Payout.status == PayoutStatus.PENDING, Payout.scheduled_date < today)


def fine_for(payment: Payment, today: Optional[date] = None) -> int:
    """Fine owed if the payment were settled on ``today``."""
    if not is_payment_overdue(payment, today):
        return 0
    return payment.participation.fine_amount
