"""Read-only aggregates for the admin dashboard, reports and member dashboard.

Every function here degrades to an empty or zeroed result when the store
fails, so a broken report never takes a page down.
"""
import logging
from datetime import datetime, date
from typing import Optional
from uuid import UUID

from dateutil.relativedelta import relativedelta
from sqlalchemy import func
from sqlalchemy.orm import Session

from esusu.models.cycle import ContributionCycle, CycleStatus, Participation
from esusu.models.transaction import Payment, PaymentStatus, Payout, PayoutStatus, OptOutRequest, OptOutStatus
from esusu.models.user import User, UserStatus
from esusu.services.actions import read_action
from esusu.services.schedule import (
    cycle_duration,
    is_payment_overdue,
    overdue_payment_filter,
    overdue_payout_filter,
)

logger = logging.getLogger(__name__)


def _count(db: Session, column, *criteria) -> int:
    return db.query(func.count(column)).filter(*criteria).scalar() or 0


def _sum(db: Session, column, *criteria) -> int:
    return int(db.query(func.sum(column)).filter(*criteria).scalar() or 0)


def _empty_dashboard_stats() -> dict:
    return {
        "users": {"total": 0, "active": 0, "suspended": 0},
        "cycles": {"total": 0, "active": 0, "upcoming": 0},
        "participations": {"total": 0, "active": 0},
        "payments": {"pending": 0, "overdue": 0, "unverified": 0},
        "payouts": {"pending": 0, "overdue": 0},
        "opt_outs": {"pending": 0},
        "financial": {"total_collected": 0, "fines_collected": 0, "pending_payouts": 0},
    }


@read_action(_empty_dashboard_stats)
def get_admin_dashboard_stats(db: Session) -> dict:
    today = date.today()
    return {
        "users": {
            "total": _count(db, User.id),
            "active": _count(db, User.id, User.status == UserStatus.ACTIVE),
            "suspended": _count(db, User.id, User.status == UserStatus.SUSPENDED),
        },
        "cycles": {
            "total": _count(db, ContributionCycle.id),
            "active": _count(db, ContributionCycle.id, ContributionCycle.status == CycleStatus.ACTIVE),
            "upcoming": _count(db, ContributionCycle.id, ContributionCycle.status == CycleStatus.UPCOMING),
        },
        "participations": {
            "total": _count(db, Participation.id),
            "active": _count(db, Participation.id, Participation.has_opted_out == False),
        },
        "payments": {
            "pending": _count(db, Payment.id, Payment.status == PaymentStatus.PENDING),
            "overdue": _count(db, Payment.id, overdue_payment_filter(today)),
            "unverified": _count(
                db, Payment.id,
                Payment.status == PaymentStatus.PENDING,
                Payment.proof_of_payment.isnot(None)
            ),
        },
        "payouts": {
            "pending": _count(db, Payout.id, Payout.status == PayoutStatus.PENDING),
            "overdue": _count(db, Payout.id, overdue_payout_filter(today)),
        },
        "opt_outs": {
            "pending": _count(db, OptOutRequest.id, OptOutRequest.status == OptOutStatus.PENDING_APPROVAL),
        },
        "financial": {
            "total_collected": _sum(db, Payment.paid_amount, Payment.status == PaymentStatus.PAID),
            "fines_collected": _sum(
                db, Payment.fine_amount,
                Payment.status == PaymentStatus.PAID,
                Payment.has_fine == True
            ),
            "pending_payouts": _sum(db, Payout.amount, Payout.status == PayoutStatus.PENDING),
        },
    }


@read_action(lambda: {"recent_payments": [], "recent_registrations": []})
def get_recent_activities(db: Session, limit: int = 5) -> dict:
    payments = db.query(Payment).filter(
        Payment.status == PaymentStatus.PAID
    ).order_by(Payment.paid_at.desc()).limit(limit).all()
    registrations = db.query(Participation).order_by(Participation.registered_at.desc()).limit(limit).all()

    return {
        "recent_payments": [
            {
                "id": str(p.id),
                "user_name": p.user.full_name,
                "amount": p.paid_amount or p.amount,
                "month_number": p.month_number,
                "paid_at": p.paid_at.isoformat() if p.paid_at else None,
            }
            for p in payments
        ],
        "recent_registrations": [
            {
                "id": str(r.id),
                "user_name": r.user.full_name,
                "cycle_name": r.cycle.name,
                "contribution_mode": r.contribution_mode.value,
                "registered_at": r.registered_at.isoformat() if r.registered_at else None,
            }
            for r in registrations
        ],
    }


def _empty_financial_summary() -> dict:
    return {
        "collections": {"total": 0, "fines": 0, "pending": 0, "overdue": 0},
        "payouts": {"completed": {"amount": 0, "count": 0}, "pending": {"amount": 0, "count": 0}},
        "net_balance": 0,
    }


@read_action(_empty_financial_summary)
def get_financial_summary(db: Session, cycle_id: Optional[UUID] = None) -> dict:
    today = date.today()
    payment_scope = [Payment.cycle_id == cycle_id] if cycle_id else []
    payout_scope = [Payout.cycle_id == cycle_id] if cycle_id else []

    paid = db.query(Payment).filter(Payment.status == PaymentStatus.PAID, *payment_scope).all()
    pending = db.query(Payment).filter(Payment.status == PaymentStatus.PENDING, *payment_scope).all()

    total_collected = sum(p.paid_amount or 0 for p in paid)
    overdue_amount = sum(
        p.amount + p.participation.fine_amount
        for p in pending if is_payment_overdue(p, today)
    )
    completed_amount = _sum(db, Payout.amount, Payout.status == PayoutStatus.PAID, *payout_scope)

    return {
        "collections": {
            "total": total_collected,
            "fines": sum(p.fine_amount for p in paid if p.has_fine),
            "pending": sum(p.amount for p in pending),
            "overdue": overdue_amount,
        },
        "payouts": {
            "completed": {
                "amount": completed_amount,
                "count": _count(db, Payout.id, Payout.status == PayoutStatus.PAID, *payout_scope),
            },
            "pending": {
                "amount": _sum(db, Payout.amount, Payout.status == PayoutStatus.PENDING, *payout_scope),
                "count": _count(db, Payout.id, Payout.status == PayoutStatus.PENDING, *payout_scope),
            },
        },
        "net_balance": total_collected - completed_amount,
    }


@read_action(list)
def get_defaulters_report(db: Session, cycle_id: Optional[UUID] = None) -> list:
    """Overdue payments grouped by member, largest amount owed first."""
    today = date.today()
    query = db.query(Payment).filter(overdue_payment_filter(today))
    if cycle_id:
        query = query.filter(Payment.cycle_id == cycle_id)

    defaulters = {}
    for payment in query.order_by(Payment.due_date).all():
        entry = defaulters.get(payment.user_id)
        if entry is None:
            entry = defaulters[payment.user_id] = {
                "user_id": str(payment.user_id),
                "full_name": payment.user.full_name,
                "phone": payment.user.phone,
                "email": payment.user.email,
                "overdue_payments": [],
                "total_overdue": 0,
                "total_fines": 0,
            }

        fine = payment.participation.fine_amount
        entry["overdue_payments"].append({
            "id": str(payment.id),
            "cycle_name": payment.cycle.name,
            "month_number": payment.month_number,
            "amount": payment.amount,
            "due_date": payment.due_date.isoformat(),
            "fine_amount": fine,
            "days_past_due": (today - payment.due_date).days,
        })
        entry["total_overdue"] += payment.amount + fine
        entry["total_fines"] += fine

    return sorted(defaulters.values(), key=lambda d: d["total_overdue"], reverse=True)


@read_action(list)
def get_cycle_performance(db: Session) -> list:
    today = date.today()
    result = []
    for cycle in db.query(ContributionCycle).order_by(ContributionCycle.start_date.desc()).all():
        participations = cycle.participations
        payments = cycle.payments
        pending = [p for p in payments if p.status == PaymentStatus.PENDING]
        collected = sum(p.paid_amount or 0 for p in payments if p.status == PaymentStatus.PAID)

        duration = cycle_duration(cycle)
        expected = sum(p.monthly_amount * duration for p in participations if not p.has_opted_out)

        result.append({
            "id": str(cycle.id),
            "name": cycle.name,
            "status": cycle.status.value,
            "start_date": cycle.start_date.isoformat(),
            "end_date": cycle.end_date.isoformat(),
            "participants": {
                "total": len(participations),
                "capacity": cycle.total_slots,
                "occupancy_rate": round(len(participations) / cycle.total_slots * 100),
            },
            "payments": {
                "pending": len(pending),
                "overdue": sum(1 for p in pending if is_payment_overdue(p, today)),
            },
            "collections": {
                "total": collected,
                "expected": expected,
                "collection_rate": round(collected / expected * 100) if expected else 0,
            },
            "payouts": {
                "completed": sum(1 for p in cycle.payouts if p.status == PayoutStatus.PAID),
                "pending": sum(1 for p in cycle.payouts if p.status == PayoutStatus.PENDING),
            },
        })
    return result


def _empty_reconciliation(month: int = None, year: int = None) -> dict:
    return {
        "month": month,
        "year": year,
        "payments": {"count": 0, "total": 0, "fines": 0, "details": []},
        "payouts": {"count": 0, "total": 0, "details": []},
        "summary": {"total_received": 0, "total_paid_out": 0, "net_cash_flow": 0, "fines_collected": 0},
    }


@read_action(_empty_reconciliation)
def get_monthly_reconciliation(db: Session, month: int, year: int) -> dict:
    """Money in and out during one calendar month, by settlement time."""
    if not 1 <= month <= 12:
        return _empty_reconciliation(month, year)

    period_start = datetime(year, month, 1)
    period_end = period_start + relativedelta(months=1)

    payments = db.query(Payment).filter(
        Payment.status == PaymentStatus.PAID,
        Payment.paid_at >= period_start,
        Payment.paid_at < period_end
    ).order_by(Payment.paid_at).all()
    payouts = db.query(Payout).filter(
        Payout.status == PayoutStatus.PAID,
        Payout.paid_at >= period_start,
        Payout.paid_at < period_end
    ).order_by(Payout.paid_at).all()

    total_received = sum(p.paid_amount or 0 for p in payments)
    fines = sum(p.fine_amount for p in payments if p.has_fine)
    total_paid_out = sum(p.amount for p in payouts)

    return {
        "month": month,
        "year": year,
        "period": {"start": period_start.isoformat(), "end": period_end.isoformat()},
        "payments": {
            "count": len(payments),
            "total": total_received,
            "fines": fines,
            "details": [
                {
                    "id": str(p.id),
                    "user_name": p.user.full_name,
                    "cycle_name": p.cycle.name,
                    "amount": p.paid_amount,
                    "paid_at": p.paid_at.isoformat(),
                    "has_fine": p.has_fine,
                    "fine_amount": p.fine_amount,
                }
                for p in payments
            ],
        },
        "payouts": {
            "count": len(payouts),
            "total": total_paid_out,
            "details": [
                {
                    "id": str(p.id),
                    "user_name": p.user.full_name,
                    "cycle_name": p.cycle.name,
                    "amount": p.amount,
                    "paid_at": p.paid_at.isoformat(),
                    "transfer_reference": p.transfer_reference,
                }
                for p in payouts
            ],
        },
        "summary": {
            "total_received": total_received,
            "total_paid_out": total_paid_out,
            "net_cash_flow": total_received - total_paid_out,
            "fines_collected": fines,
        },
    }


@read_action(list)
def get_payment_trends(db: Session, months: int = 12) -> list:
    """Collected amount and payment count per calendar month, oldest first."""
    this_month = datetime.utcnow().replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    trends = []
    for offset in range(months - 1, -1, -1):
        start = this_month - relativedelta(months=offset)
        end = start + relativedelta(months=1)
        amount, count = db.query(func.sum(Payment.paid_amount), func.count(Payment.id)).filter(
            Payment.status == PaymentStatus.PAID,
            Payment.paid_at >= start,
            Payment.paid_at < end
        ).first()
        trends.append({"month": start.strftime("%b %Y"), "amount": int(amount or 0), "count": count or 0})
    return trends


@read_action(lambda: None)
def get_member_dashboard(db: Session, user_id: UUID) -> Optional[dict]:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        return None

    today = date.today()
    active = next(
        (p for p in user.participations if p.cycle.status == CycleStatus.ACTIVE and not p.has_opted_out),
        None
    )
    all_payments = [pay for p in user.participations for pay in p.payments]
    active_pending = [p for p in active.payments if p.status == PaymentStatus.PENDING] if active else []
    payout = next((po for po in active.payouts if po.status != PayoutStatus.WAIVED), None) if active else None

    return {
        "user": {
            "full_name": user.full_name,
            "phone": user.phone,
            "email": user.email,
            "occupation": user.occupation,
            "address": user.address,
            "status": user.status.value,
        },
        "active_participation": {
            "id": str(active.id),
            "cycle_name": active.cycle.name,
            "contribution_mode": active.contribution_mode.value,
            "picked_number": active.picked_number,
            "monthly_amount": active.monthly_amount,
            "total_payout": active.total_payout,
            "registered_at": active.registered_at.isoformat() if active.registered_at else None,
            "payout_scheduled": payout.scheduled_date.isoformat() if payout else None,
            "payout_status": payout.status.value if payout else None,
        } if active else None,
        "stats": {
            "total_contributed": sum(p.paid_amount or 0 for p in all_payments if p.status == PaymentStatus.PAID),
            "pending_payments": len(active_pending),
            "overdue_payments": sum(1 for p in active_pending if is_payment_overdue(p, today)),
            "total_fines": sum(p.fine_amount for p in all_payments if p.has_fine),
            "expected_payout": active.total_payout if active else 0,
        },
        "recent_payments": [
            {
                "id": str(p.id),
                "month_number": p.month_number,
                "amount": p.amount,
                "due_date": p.due_date.isoformat(),
                "paid_at": p.paid_at.isoformat() if p.paid_at else None,
                "status": p.status.value,
                "is_overdue": is_payment_overdue(p, today),
                "has_fine": p.has_fine,
                "fine_amount": p.fine_amount,
            }
            for p in (active.payments[:5] if active else [])
        ],
        "all_participations": [
            {
                "id": str(p.id),
                "cycle_name": p.cycle.name,
                "status": p.cycle.status.value,
                "contribution_mode": p.contribution_mode.value,
                "has_opted_out": p.has_opted_out,
            }
            for p in user.participations
        ],
    }
