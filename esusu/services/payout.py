import logging
from datetime import datetime, date, timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from esusu.core.errors import (
    ServiceError,
    NotFound,
    ValidationFailed,
    MissingBankDetails,
    NotPending,
)
from esusu.models.cycle import Participation
from esusu.models.transaction import Payout, PayoutStatus
from esusu.models.user import User
from esusu.services.actions import action, read_action
from esusu.services.participation import get_current_participation
from esusu.services.rbac import require_admin, audit_admin_action, get_admin
from esusu.services.schedule import (
    is_payout_overdue,
    overdue_payout_filter,
    current_cycle_month,
    payout_scheduled_date,
)
from esusu.services.serializers import (
    serialize_payout,
    serialize_cycle,
    serialize_participation,
    serialize_bank_details,
)

logger = logging.getLogger(__name__)

PAYOUT_FILTERS = ("all", "pending", "completed", "overdue")


def _settle_payout(
    db: Session,
    admin: User,
    payout_id: UUID,
    transfer_reference: str,
    notes: Optional[str] = None
) -> Payout:
    """Record an out-of-band transfer against a pending payout and commit."""
    payout = db.query(Payout).filter(Payout.id == payout_id).with_for_update().first()
    if not payout:
        raise NotFound("Payout not found")
    if payout.status != PayoutStatus.PENDING:
        raise NotPending()
    if payout.participation.bank_details is None:
        raise MissingBankDetails()

    transfer_reference = (transfer_reference or "").strip()
    if not transfer_reference:
        raise ValidationFailed("Transfer reference is required")

    payout.status = PayoutStatus.PAID
    payout.paid_at = datetime.utcnow()
    payout.processed_by = admin.id
    payout.transfer_reference = transfer_reference
    payout.notes = notes
    db.commit()
    db.refresh(payout)
    return payout


@action
def process_payout(
    db: Session,
    payout_id: UUID,
    admin_id: UUID,
    transfer_reference: str,
    notes: Optional[str] = None
) -> dict:
    admin = require_admin(db, admin_id)
    payout = _settle_payout(db, admin, payout_id, transfer_reference, notes)

    logger.info("Payout %s processed with reference %s", payout.id, payout.transfer_reference)
    audit_admin_action(admin, "process_payout", f"payout={payout.id} ref={payout.transfer_reference} amount={payout.amount}")
    return {"message": "Payout processed successfully", "payout": serialize_payout(payout)}


@action
def batch_process_payouts(
    db: Session,
    payout_ids: List[UUID],
    admin_id: UUID,
    base_reference: str,
    notes: Optional[str] = None
) -> dict:
    """Process each payout on its own; one failure does not undo the others.

    Payout ``n`` (1-based, in the given order) gets reference ``<base>-<n>``.
    """
    admin = require_admin(db, admin_id)
    admin_name = admin.full_name

    base_reference = (base_reference or "").strip()
    if not base_reference:
        raise ValidationFailed("Transfer reference is required")
    if not payout_ids:
        raise ValidationFailed("No payouts selected")

    results = []
    successful = 0
    for index, payout_id in enumerate(payout_ids):
        reference = f"{base_reference}-{index + 1}"
        try:
            payout = _settle_payout(db, admin, payout_id, reference, notes)
        except ServiceError as e:
            db.rollback()
            results.append({"payout_id": str(payout_id), "success": False, "error": e.message, "code": e.code})
        else:
            successful += 1
            results.append({"payout_id": str(payout.id), "success": True, "transfer_reference": reference})

    failed = len(payout_ids) - successful
    logger.info("Batch payout by %s: %s successful, %s failed", admin_name, successful, failed)
    audit_admin_action(admin, "batch_process_payouts", f"ref={base_reference} successful={successful} failed={failed}")
    return {
        "message": f"Processed {successful} payout(s), {failed} failed",
        "successful": successful,
        "failed": failed,
        "results": results,
    }


def _with_member(payout: Payout, today: date) -> dict:
    data = serialize_payout(payout, today)
    data["full_name"] = payout.user.full_name
    data["phone"] = payout.user.phone
    data["cycle_name"] = payout.cycle.name
    data["bank_details"] = serialize_bank_details(payout.participation.bank_details)
    return data


@read_action(list)
def get_all_payouts(db: Session, status_filter: str = "all") -> list:
    """Admin payout queue. Overdue payouts come first, then by scheduled date."""
    today = date.today()
    query = db.query(Payout)
    if status_filter == "pending":
        query = query.filter(Payout.status == PayoutStatus.PENDING)
    elif status_filter == "completed":
        query = query.filter(Payout.status == PayoutStatus.PAID)
    elif status_filter == "overdue":
        query = query.filter(overdue_payout_filter(today))

    payouts = query.order_by(Payout.scheduled_date).all()
    payouts.sort(key=lambda p: (not is_payout_overdue(p, today), p.scheduled_date))
    return [_with_member(p, today) for p in payouts]


def _empty_payout_stats() -> dict:
    return {
        "total_payouts": 0,
        "pending_count": 0,
        "pending_amount": 0,
        "completed_count": 0,
        "completed_amount": 0,
        "overdue_count": 0,
        "overdue_amount": 0,
        "waived_count": 0,
        "due_this_month": 0,
    }


@read_action(_empty_payout_stats)
def get_payout_stats(db: Session) -> dict:
    today = date.today()
    payouts = db.query(Payout).all()
    pending = [p for p in payouts if p.status == PayoutStatus.PENDING]
    completed = [p for p in payouts if p.status == PayoutStatus.PAID]
    overdue = [p for p in pending if is_payout_overdue(p, today)]
    return {
        "total_payouts": len(payouts),
        "pending_count": len(pending),
        "pending_amount": sum(p.amount for p in pending),
        "completed_count": len(completed),
        "completed_amount": sum(p.amount for p in completed),
        "overdue_count": len(overdue),
        "overdue_amount": sum(p.amount for p in overdue),
        "waived_count": sum(1 for p in payouts if p.status == PayoutStatus.WAIVED),
        "due_this_month": sum(
            1 for p in pending
            if p.scheduled_date.year == today.year and p.scheduled_date.month == today.month
        ),
    }


@read_action(list)
def get_upcoming_payouts(db: Session, days: int = 30) -> list:
    today = date.today()
    payouts = db.query(Payout).filter(
        Payout.status == PayoutStatus.PENDING,
        Payout.scheduled_date >= today,
        Payout.scheduled_date <= today + timedelta(days=days)
    ).order_by(Payout.scheduled_date).all()
    return [_with_member(p, today) for p in payouts]


def _live_payout(participation: Participation) -> Optional[Payout]:
    for payout in participation.payouts:
        if payout.status != PayoutStatus.WAIVED:
            return payout
    return None


def _empty_payout_info() -> dict:
    return {
        "participation": None,
        "cycle": None,
        "payout": None,
        "bank_details": None,
        "has_picked": False,
        "days_until_payout": None,
    }


@read_action(_empty_payout_info)
def get_user_payout_info(db: Session, user_id: UUID) -> dict:
    participation = get_current_participation(db, user_id)
    if not participation:
        return _empty_payout_info()

    today = date.today()
    payout = _live_payout(participation)
    days_until = None
    if payout and payout.status == PayoutStatus.PENDING:
        days_until = (payout.scheduled_date - today).days

    return {
        "participation": serialize_participation(participation),
        "cycle": serialize_cycle(participation.cycle),
        "payout": serialize_payout(payout, today) if payout else None,
        "bank_details": serialize_bank_details(participation.bank_details),
        "has_picked": participation.picked_number is not None,
        "days_until_payout": days_until,
    }


@read_action(lambda: {"cycle": None, "current_month": None, "timeline": []})
def get_payout_timeline(db: Session, user_id: UUID) -> dict:
    """Month-by-month view of the user's cycle: whose payout falls where."""
    participation = get_current_participation(db, user_id)
    if not participation:
        return {"cycle": None, "current_month": None, "timeline": []}

    cycle = participation.cycle
    payouts = {
        p.scheduled_month: p
        for p in db.query(Payout).filter(
            Payout.cycle_id == cycle.id,
            Payout.status != PayoutStatus.WAIVED
        ).all()
    }
    current_month = current_cycle_month(cycle)

    timeline = []
    for month in range(1, cycle.total_slots + 1):
        payout = payouts.get(month)
        timeline.append({
            "month": month,
            "date": payout_scheduled_date(cycle, month).isoformat(),
            "is_taken": payout is not None,
            "is_user_slot": participation.picked_number == month,
            "status": payout.status.value if payout else None,
            "is_current": month == current_month,
            "is_past": month < current_month,
        })

    return {"cycle": serialize_cycle(cycle), "current_month": current_month, "timeline": timeline}


@read_action(lambda: None)
def get_payout_details(db: Session, payout_id: UUID, user_id: UUID) -> Optional[dict]:
    """Visible to the payout's owner and to admins; anyone else gets None."""
    payout = db.query(Payout).filter(Payout.id == payout_id).first()
    if not payout:
        return None
    if payout.user_id != user_id and get_admin(db, user_id) is None:
        return None

    data = _with_member(payout, date.today())
    data["cycle"] = serialize_cycle(payout.cycle)
    return data
