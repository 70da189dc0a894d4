import logging
import re
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from esusu.core.errors import (
    NotFound,
    Unauthorized,
    ValidationFailed,
    PreconditionFailed,
    AlreadyRegistered,
    CycleClosed,
    CycleFull,
)
from esusu.core.packages import get_package
from esusu.models.cycle import ContributionCycle, CycleStatus, ContributionMode, Participation, BankDetails
from esusu.models.user import User, UserStatus
from esusu.services.actions import action, read_action
from esusu.services.serializers import serialize_cycle, serialize_participation, serialize_bank_details

logger = logging.getLogger(__name__)

ACCOUNT_NUMBER_RE = re.compile(r"^\d{10}$")
OPEN_STATUSES = (CycleStatus.UPCOMING, CycleStatus.ACTIVE)


def validate_bank_details(details: Optional[dict]) -> dict:
    """Normalise submitted bank details or raise ValidationFailed."""
    details = details or {}
    bank_name = (details.get("bank_name") or "").strip()
    account_number = (details.get("account_number") or "").strip()
    account_name = (details.get("account_name") or "").strip()

    if not bank_name or not account_name:
        raise ValidationFailed("Bank name and account name are required")
    if not ACCOUNT_NUMBER_RE.match(account_number):
        raise ValidationFailed("Account number must be exactly 10 digits")

    return {"bank_name": bank_name, "account_number": account_number, "account_name": account_name}


def count_participants(db: Session, cycle_id: UUID) -> int:
    return db.query(func.count(Participation.id)).filter(Participation.cycle_id == cycle_id).scalar() or 0


def get_current_participation(db: Session, user_id: UUID) -> Optional[Participation]:
    """The user's participation in an active cycle, falling back to an upcoming one."""
    for cycle_status in (CycleStatus.ACTIVE, CycleStatus.UPCOMING):
        participation = db.query(Participation).join(ContributionCycle).filter(
            Participation.user_id == user_id,
            ContributionCycle.status == cycle_status,
        ).order_by(Participation.has_opted_out, Participation.registered_at.desc()).first()
        if participation:
            return participation
    return None


@action
def join_cycle(
    db: Session,
    user_id: UUID,
    cycle_id: UUID,
    contribution_mode: str,
    bank_details: dict
) -> dict:
    """Register a user in a cycle with a package and payout bank details."""
    user = db.query(User).filter(User.id == user_id).first()
    if not user or user.status != UserStatus.ACTIVE:
        raise PreconditionFailed("Your account is not active")

    # Locked for the capacity check
    cycle = db.query(ContributionCycle).filter(ContributionCycle.id == cycle_id).with_for_update().first()
    if not cycle:
        raise NotFound("Cycle not found")

    if datetime.utcnow() > cycle.registration_deadline:
        raise CycleClosed("Registration deadline has passed")
    if cycle.status not in OPEN_STATUSES:
        raise CycleClosed("This cycle is not accepting registrations")

    existing = db.query(Participation).filter(
        Participation.user_id == user_id,
        Participation.cycle_id == cycle_id
    ).first()
    if existing:
        raise AlreadyRegistered()

    if count_participants(db, cycle_id) >= cycle.total_slots:
        raise CycleFull()

    package = get_package(contribution_mode)
    if package is None:
        raise ValidationFailed("Invalid contribution mode")
    details = validate_bank_details(bank_details)

    participation = Participation(
        user_id=user_id,
        cycle_id=cycle_id,
        contribution_mode=ContributionMode(contribution_mode),
        monthly_amount=package.monthly_amount,
        total_payout=package.total_payout,
        fine_amount=package.fine_amount,
    )
    db.add(participation)
    try:
        db.flush()
    except IntegrityError:
        raise AlreadyRegistered()

    db.add(BankDetails(participation_id=participation.id, **details))
    db.commit()
    db.refresh(participation)

    logger.info("User %s joined cycle %s with %s", user_id, cycle_id, participation.contribution_mode.value)
    return {
        "message": f"Successfully joined {cycle.name}",
        "participation": serialize_participation(participation),
        "bank_details": serialize_bank_details(participation.bank_details),
    }


@action
def update_bank_details(db: Session, participation_id: UUID, user_id: UUID, bank_details: dict) -> dict:
    participation = db.query(Participation).filter(Participation.id == participation_id).first()
    if not participation:
        raise NotFound("Participation not found")
    if participation.user_id != user_id:
        raise Unauthorized("You can only update your own bank details")

    details = validate_bank_details(bank_details)

    record = participation.bank_details
    if record is None:
        record = BankDetails(participation_id=participation.id, **details)
        db.add(record)
    else:
        record.bank_name = details["bank_name"]
        record.account_number = details["account_number"]
        record.account_name = details["account_name"]
        record.updated_at = datetime.utcnow()

    db.commit()
    db.refresh(record)
    return {"message": "Bank details updated successfully", "bank_details": serialize_bank_details(record)}


@read_action(list)
def get_available_cycles(db: Session, user_id: Optional[UUID] = None) -> list:
    """Cycles still open for registration, with slot availability."""
    now = datetime.utcnow()
    cycles = db.query(ContributionCycle).filter(
        ContributionCycle.status.in_(OPEN_STATUSES),
        ContributionCycle.registration_deadline >= now
    ).order_by(ContributionCycle.start_date).all()

    registered = set()
    if user_id:
        registered = {
            row[0] for row in db.query(Participation.cycle_id).filter(Participation.user_id == user_id).all()
        }

    result = []
    for cycle in cycles:
        participant_count = count_participants(db, cycle.id)
        data = serialize_cycle(cycle)
        data.update({
            "participant_count": participant_count,
            "available_slots": max(cycle.total_slots - participant_count, 0),
            "is_full": participant_count >= cycle.total_slots,
            "is_registered": cycle.id in registered,
        })
        result.append(data)
    return result


@read_action(lambda: None)
def get_cycle_summary(db: Session, cycle_id: UUID) -> Optional[dict]:
    cycle = db.query(ContributionCycle).filter(ContributionCycle.id == cycle_id).first()
    if not cycle:
        return None

    participations = db.query(Participation).filter(Participation.cycle_id == cycle_id).all()
    active = [p for p in participations if not p.has_opted_out]

    by_mode = {}
    for p in active:
        mode = p.contribution_mode.value
        by_mode[mode] = by_mode.get(mode, 0) + 1

    data = serialize_cycle(cycle)
    data.update({
        "participant_count": len(participations),
        "active_participants": len(active),
        "available_slots": max(cycle.total_slots - len(participations), 0),
        "numbers_picked": sum(1 for p in participations if p.picked_number is not None),
        "participants_by_mode": by_mode,
        "monthly_collection": sum(p.monthly_amount for p in active),
    })
    return data


@read_action(lambda: {"is_participating": False, "participation": None, "bank_details": None})
def check_user_participation(db: Session, user_id: UUID, cycle_id: UUID) -> dict:
    participation = db.query(Participation).filter(
        Participation.user_id == user_id,
        Participation.cycle_id == cycle_id
    ).first()
    if not participation:
        return {"is_participating": False, "participation": None, "bank_details": None}
    return {
        "is_participating": True,
        "participation": serialize_participation(participation),
        "bank_details": serialize_bank_details(participation.bank_details),
    }
