"""Payout sequence numbers.

Within a cycle each participant picks exactly one number in
``[1, total_slots]``; the number is the month their payout falls due. The
legacy pool game further down is a standalone draw with one pick per user
across the whole system.
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from esusu.core.config import settings
from esusu.core.errors import (
    NotFound,
    Unauthorized,
    ValidationFailed,
    PreconditionFailed,
    AlreadyPicked,
    NumberTaken,
    OutOfRange,
    PickingNotOpen,
    SlotsBelowPicked,
)
from esusu.models.cycle import ContributionCycle, CycleStatus, Participation
from esusu.models.system import NumberSettings, NumberPick
from esusu.models.transaction import Payout, PayoutStatus
from esusu.models.user import User
from esusu.services.actions import action, read_action
from esusu.services.rbac import require_admin, audit_admin_action
from esusu.services.schedule import payout_scheduled_date
from esusu.services.serializers import serialize_participation, serialize_payout

logger = logging.getLogger(__name__)

MIN_POOL_SIZE = 10
MAX_POOL_SIZE = 100


def _picking_open(cycle: ContributionCycle, now: datetime = None) -> bool:
    now = now or datetime.utcnow()
    if cycle.status not in (CycleStatus.UPCOMING, CycleStatus.ACTIVE):
        return False
    return cycle.number_picking_start_date is None or now >= cycle.number_picking_start_date


@action
def pick_number(db: Session, participation_id: UUID, user_id: UUID, number: int) -> dict:
    """Claim a payout number and schedule the matching payout."""
    participation = db.query(Participation).filter(Participation.id == participation_id).with_for_update().first()
    if not participation:
        raise NotFound("Participation not found")
    if participation.user_id != user_id:
        raise Unauthorized("You can only pick a number for your own participation")
    if participation.has_opted_out:
        raise PreconditionFailed("You have opted out of this cycle")

    cycle = participation.cycle
    if cycle.status not in (CycleStatus.UPCOMING, CycleStatus.ACTIVE):
        raise PreconditionFailed("Number picking is closed for this cycle")
    if not _picking_open(cycle):
        raise PickingNotOpen(
            f"Number picking starts on {cycle.number_picking_start_date.strftime('%Y-%m-%d %H:%M')}"
        )

    if participation.picked_number is not None:
        raise AlreadyPicked()

    if number is None or not 1 <= number <= cycle.total_slots:
        raise OutOfRange(f"Please pick a number between 1 and {cycle.total_slots}")

    taken = db.query(Participation).filter(
        Participation.cycle_id == cycle.id,
        Participation.picked_number == number
    ).first()
    if taken:
        raise NumberTaken()

    participation.picked_number = number
    try:
        db.flush()
    except IntegrityError:
        raise NumberTaken()

    payout = Payout(
        participation_id=participation.id,
        user_id=participation.user_id,
        cycle_id=cycle.id,
        scheduled_month=number,
        scheduled_date=payout_scheduled_date(cycle, number),
        amount=participation.total_payout,
        status=PayoutStatus.PENDING,
    )
    db.add(payout)
    try:
        db.flush()
    except IntegrityError:
        raise AlreadyPicked()

    db.commit()
    db.refresh(participation)
    db.refresh(payout)

    logger.info("User %s picked number %s in cycle %s", user_id, number, cycle.id)
    return {
        "message": f"You picked number {number}. Your payout is scheduled for {payout.scheduled_date.strftime('%B %Y')}",
        "participation": serialize_participation(participation),
        "payout": serialize_payout(payout),
    }


@read_action(list)
def get_taken_numbers(db: Session, cycle_id: UUID) -> list:
    rows = db.query(Participation.picked_number).filter(
        Participation.cycle_id == cycle_id,
        Participation.picked_number.isnot(None)
    ).order_by(Participation.picked_number).all()
    return [row[0] for row in rows]


@read_action(lambda: None)
def get_user_pick(db: Session, user_id: UUID, cycle_id: UUID) -> Optional[int]:
    participation = db.query(Participation).filter(
        Participation.user_id == user_id,
        Participation.cycle_id == cycle_id
    ).first()
    return participation.picked_number if participation else None


@read_action(lambda: {"can_pick_numbers": False})
def get_picking_status(db: Session, cycle_id: UUID) -> dict:
    cycle = db.query(ContributionCycle).filter(ContributionCycle.id == cycle_id).first()
    if not cycle:
        return {"can_pick_numbers": False}

    taken_count = db.query(func.count(Participation.id)).filter(
        Participation.cycle_id == cycle_id,
        Participation.picked_number.isnot(None)
    ).scalar() or 0

    start = cycle.number_picking_start_date
    return {
        "can_pick_numbers": _picking_open(cycle),
        "number_picking_start_date": start.isoformat() if start else None,
        "total_slots": cycle.total_slots,
        "taken_count": taken_count,
        "available_count": cycle.total_slots - taken_count,
    }


# Legacy pool game

def _load_number_settings(db: Session) -> NumberSettings:
    row = db.query(NumberSettings).filter(NumberSettings.is_active == True).first()
    if row is None:
        row = NumberSettings(total_numbers=settings.DEFAULT_TOTAL_NUMBERS, is_active=True)
        db.add(row)
        db.flush()
    return row


@read_action(lambda: {"total_numbers": settings.DEFAULT_TOTAL_NUMBERS})
def get_pool_settings(db: Session) -> dict:
    row = _load_number_settings(db)
    db.commit()
    return {"total_numbers": row.total_numbers}


@action
def pick_pool_number(db: Session, user_id: UUID, number: int) -> dict:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound("User not found")

    if db.query(NumberPick).filter(NumberPick.user_id == user_id).first():
        raise AlreadyPicked()

    total_numbers = _load_number_settings(db).total_numbers
    if number is None or not 1 <= number <= total_numbers:
        raise OutOfRange(f"Please pick a number between 1 and {total_numbers}")

    if db.query(NumberPick).filter(NumberPick.number == number).first():
        raise NumberTaken()

    pick = NumberPick(user_id=user_id, number=number)
    db.add(pick)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        if db.query(NumberPick).filter(NumberPick.user_id == user_id).first():
            raise AlreadyPicked()
        raise NumberTaken()

    db.commit()
    db.refresh(pick)
    return {"message": f"You picked number {number}", "number": pick.number}


@read_action(lambda: {"total_numbers": settings.DEFAULT_TOTAL_NUMBERS, "picked_count": 0, "available_count": settings.DEFAULT_TOTAL_NUMBERS, "taken_numbers": []})
def get_pool_stats(db: Session) -> dict:
    total_numbers = _load_number_settings(db).total_numbers
    db.commit()
    taken = [row[0] for row in db.query(NumberPick.number).order_by(NumberPick.number).all()]
    return {
        "total_numbers": total_numbers,
        "picked_count": len(taken),
        "available_count": max(total_numbers - len(taken), 0),
        "taken_numbers": taken,
    }


@read_action(list)
def get_all_pool_picks(db: Session) -> list:
    picks = db.query(NumberPick).order_by(NumberPick.number).all()
    return [
        {
            "id": str(pick.id),
            "number": pick.number,
            "user_id": str(pick.user_id),
            "full_name": pick.user.full_name if pick.user else None,
            "phone": pick.user.phone if pick.user else None,
            "created_at": pick.created_at.isoformat() if pick.created_at else None,
        }
        for pick in picks
    ]


@action
def update_total_numbers(db: Session, admin_id: UUID, total_numbers: int) -> dict:
    admin = require_admin(db, admin_id)

    if total_numbers is None or not MIN_POOL_SIZE <= total_numbers <= MAX_POOL_SIZE:
        raise ValidationFailed(f"Total numbers must be between {MIN_POOL_SIZE} and {MAX_POOL_SIZE}")

    highest = db.query(func.max(NumberPick.number)).scalar()
    if highest is not None and total_numbers < highest:
        raise SlotsBelowPicked(
            f"Cannot reduce total numbers below {highest} as some users have already picked higher numbers"
        )

    row = _load_number_settings(db)
    row.total_numbers = total_numbers
    row.updated_at = datetime.utcnow()
    db.commit()

    audit_admin_action(admin, "update_total_numbers", f"total_numbers={total_numbers}")
    return {"message": f"Total numbers updated to {total_numbers}", "total_numbers": total_numbers}


@action
def reset_game(db: Session, admin_id: UUID) -> dict:
    admin = require_admin(db, admin_id)
    deleted = db.query(NumberPick).delete(synchronize_session=False)
    db.commit()

    logger.info("Number pool reset, %s picks cleared", deleted)
    audit_admin_action(admin, "reset_game", f"{deleted} picks cleared")
    return {"message": "Game has been reset", "cleared": deleted}
