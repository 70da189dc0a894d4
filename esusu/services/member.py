import logging
import math
from datetime import datetime, date
from typing import Optional
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from esusu.core.errors import NotFound, Conflict, PreconditionFailed
from esusu.models.cycle import CycleStatus
from esusu.models.transaction import Payment, PaymentStatus, PayoutStatus
from esusu.models.user import User, UserStatus
from esusu.services.actions import action, read_action
from esusu.services.rbac import require_admin, audit_admin_action
from esusu.services.schedule import is_payment_overdue, overdue_payment_filter
from esusu.services.serializers import (
    serialize_user,
    serialize_payment,
    serialize_payout,
    serialize_opt_out,
    serialize_bank_details,
)

logger = logging.getLogger(__name__)


def _load_target(db: Session, user_id: UUID) -> User:
    user = db.query(User).filter(User.id == user_id).with_for_update().first()
    if not user:
        raise NotFound("User not found")
    return user


@action
def suspend_user(db: Session, user_id: UUID, admin_id: UUID, reason: Optional[str] = None) -> dict:
    admin = require_admin(db, admin_id)
    user = _load_target(db, user_id)

    if user.is_admin:
        raise PreconditionFailed("Cannot suspend admin users")
    if user.status == UserStatus.SUSPENDED:
        raise Conflict("User is already suspended")

    user.status = UserStatus.SUSPENDED
    db.commit()

    audit_admin_action(admin, "suspend_user", f"{user.full_name} ({user.phone}) reason={reason or '-'}")
    return {"message": "User suspended successfully"}


@action
def activate_user(db: Session, user_id: UUID, admin_id: UUID) -> dict:
    admin = require_admin(db, admin_id)
    user = _load_target(db, user_id)

    if user.status == UserStatus.ACTIVE:
        raise Conflict("User is already active")

    user.status = UserStatus.ACTIVE
    db.commit()

    audit_admin_action(admin, "activate_user", f"{user.full_name} ({user.phone})")
    return {"message": "User activated successfully"}


@action
def make_user_admin(db: Session, user_id: UUID, admin_id: UUID) -> dict:
    admin = require_admin(db, admin_id)
    user = _load_target(db, user_id)

    if user.is_admin:
        raise Conflict("User is already an admin")
    if user.status != UserStatus.ACTIVE:
        raise PreconditionFailed("Only active users can be made admins")

    user.is_admin = True
    db.commit()

    audit_admin_action(admin, "make_user_admin", f"{user.full_name} ({user.phone})")
    return {"message": "User is now an admin"}


@action
def remove_admin_privileges(db: Session, user_id: UUID, admin_id: UUID) -> dict:
    admin = require_admin(db, admin_id)
    user = _load_target(db, user_id)

    if not user.is_admin:
        raise Conflict("User is not an admin")
    if user.id == admin.id:
        raise PreconditionFailed("You cannot remove your own admin privileges")

    user.is_admin = False
    db.commit()

    audit_admin_action(admin, "remove_admin_privileges", f"{user.full_name} ({user.phone})")
    return {"message": "Admin privileges removed"}


@action
def delete_user(db: Session, user_id: UUID, admin_id: UUID, reason: Optional[str] = None) -> dict:
    """Soft-delete an account.

    Participations in upcoming or active cycles are removed together with
    their bank details, payments and payouts, freeing the slot and number.
    History in completed or cancelled cycles is kept. One commit.
    """
    admin = require_admin(db, admin_id)
    user = _load_target(db, user_id)

    if user.is_admin:
        raise PreconditionFailed("Cannot delete admin users")
    if user.status == UserStatus.DELETED:
        raise Conflict("User has already been deleted")

    removed = 0
    for participation in list(user.participations):
        if participation.cycle.status in (CycleStatus.UPCOMING, CycleStatus.ACTIVE):
            db.delete(participation)
            removed += 1

    user.status = UserStatus.DELETED
    db.commit()

    logger.info("User %s deleted, %s participation(s) removed", user_id, removed)
    audit_admin_action(admin, "delete_user", f"{user.full_name} ({user.phone}) reason={reason or '-'}")
    return {"message": "User account deleted successfully", "removed_participations": removed}


def _empty_user_page(page: int = 1, limit: int = 20) -> dict:
    return {"users": [], "pagination": {"page": page, "limit": limit, "total": 0, "total_pages": 0}}


@read_action(_empty_user_page)
def get_all_users(
    db: Session,
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    status: Optional[str] = None
) -> dict:
    """Paginated user list with contribution and overdue rollups."""
    page = max(page, 1)
    limit = max(min(limit, 100), 1)

    query = db.query(User)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(or_(
            User.full_name.ilike(term),
            User.phone.ilike(term),
            User.email.ilike(term)
        ))
    if status and status != "all":
        query = query.filter(User.status == UserStatus(status.lower()))

    total = query.count()
    users = query.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit).all()

    today = date.today()
    rows = []
    for user in users:
        total_contributed = db.query(func.sum(Payment.paid_amount)).filter(
            Payment.user_id == user.id,
            Payment.status == PaymentStatus.PAID
        ).scalar() or 0
        overdue = db.query(func.count(Payment.id)).filter(
            Payment.user_id == user.id,
            overdue_payment_filter(today)
        ).scalar() or 0

        data = serialize_user(user)
        data.update({
            "participation_count": len(user.participations),
            "active_participations": sum(
                1 for p in user.participations
                if p.cycle.status == CycleStatus.ACTIVE and not p.has_opted_out
            ),
            "total_contributed": int(total_contributed),
            "overdue_payments": overdue,
        })
        rows.append(data)

    return {
        "users": rows,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit),
        },
    }


@read_action(lambda: None)
def get_user_details(db: Session, user_id: UUID) -> Optional[dict]:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        return None

    today = date.today()
    paid_payments = [p for p in user.payments if p.status == PaymentStatus.PAID]
    paid_payouts = [p for p in user.payouts if p.status == PayoutStatus.PAID]

    participations = []
    for p in user.participations:
        payout = next((po for po in p.payouts if po.status != PayoutStatus.WAIVED), None)
        participations.append({
            "id": str(p.id),
            "cycle_name": p.cycle.name,
            "cycle_status": p.cycle.status.value,
            "contribution_mode": p.contribution_mode.value,
            "picked_number": p.picked_number,
            "monthly_amount": p.monthly_amount,
            "total_payout": p.total_payout,
            "has_opted_out": p.has_opted_out,
            "registered_at": p.registered_at.isoformat() if p.registered_at else None,
            "bank_details": serialize_bank_details(p.bank_details),
            "paid_payments": sum(1 for pay in p.payments if pay.status == PaymentStatus.PAID),
            "total_payments": len(p.payments),
            "payout": serialize_payout(payout, today) if payout else None,
        })

    recent = sorted(paid_payments, key=lambda p: p.paid_at or datetime.min, reverse=True)[:5]
    return {
        "user": serialize_user(user),
        "statistics": {
            "total_contributed": sum(p.paid_amount or 0 for p in paid_payments),
            "total_fines": sum(p.fine_amount for p in user.payments if p.has_fine),
            "overdue_payments": sum(1 for p in user.payments if is_payment_overdue(p, today)),
            "completed_payouts": len(paid_payouts),
            "total_payouts_received": sum(p.amount for p in paid_payouts),
            "participation_count": len(user.participations),
            "active_participations": sum(
                1 for p in user.participations
                if p.cycle.status == CycleStatus.ACTIVE and not p.has_opted_out
            ),
        },
        "participations": participations,
        "recent_payments": [serialize_payment(p, today) for p in recent],
        "opt_out_requests": [serialize_opt_out(r) for r in user.opt_out_requests],
    }


@read_action(lambda: {"total_users": 0, "active_users": 0, "suspended_users": 0, "admin_users": 0, "new_this_month": 0})
def get_user_management_stats(db: Session) -> dict:
    month_start = datetime.utcnow().replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    def count(*criteria):
        return db.query(func.count(User.id)).filter(*criteria).scalar() or 0

    return {
        "total_users": count(),
        "active_users": count(User.status == UserStatus.ACTIVE),
        "suspended_users": count(User.status == UserStatus.SUSPENDED),
        "admin_users": count(User.is_admin == True),
        "new_this_month": count(User.created_at >= month_start),
    }
