import logging
from datetime import datetime, date, time
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from esusu.core.errors import (
    NotFound,
    ValidationFailed,
    PreconditionFailed,
    SlotsBelowPicked,
    OutstandingObligations,
    HasParticipants,
)
from esusu.models.cycle import ContributionCycle, CycleStatus, Participation
from esusu.models.transaction import Payment, PaymentStatus, Payout, PayoutStatus
from esusu.services.actions import action, read_action
from esusu.services.participation import count_participants
from esusu.services.rbac import require_admin, audit_admin_action
from esusu.services.schedule import cycle_duration, is_payment_overdue, to_naive_utc
from esusu.services.serializers import serialize_cycle, serialize_bank_details

logger = logging.getLogger(__name__)

MIN_SLOTS = 10
MAX_SLOTS = 100
EDITABLE_FIELDS = (
    "name",
    "start_date",
    "end_date",
    "registration_deadline",
    "number_picking_start_date",
    "total_slots",
    "payment_deadline_day",
)
NULLABLE_FIELDS = ("number_picking_start_date",)


def validate_cycle_values(values: dict):
    """Check the cycle invariants on a full set of field values."""
    if not (values.get("name") or "").strip():
        raise ValidationFailed("Cycle name is required")

    start_date = values.get("start_date")
    end_date = values.get("end_date")
    deadline = values.get("registration_deadline")
    if not start_date or not end_date or not deadline:
        raise ValidationFailed("Start date, end date and registration deadline are required")
    if end_date <= start_date:
        raise ValidationFailed("End date must be after start date")
    if deadline >= datetime.combine(start_date, time.min):
        raise ValidationFailed("Registration deadline must be before the start date")

    total_slots = values.get("total_slots")
    if total_slots is None or not MIN_SLOTS <= total_slots <= MAX_SLOTS:
        raise ValidationFailed(f"Total slots must be between {MIN_SLOTS} and {MAX_SLOTS}")

    deadline_day = values.get("payment_deadline_day")
    if deadline_day is None or not 1 <= deadline_day <= 31:
        raise ValidationFailed("Payment deadline day must be between 1 and 31")


def _load_cycle(db: Session, cycle_id: UUID, for_update: bool = False) -> ContributionCycle:
    query = db.query(ContributionCycle).filter(ContributionCycle.id == cycle_id)
    if for_update:
        query = query.with_for_update()
    cycle = query.first()
    if not cycle:
        raise NotFound("Cycle not found")
    return cycle


def _highest_picked_number(db: Session, cycle_id: UUID) -> Optional[int]:
    return db.query(func.max(Participation.picked_number)).filter(Participation.cycle_id == cycle_id).scalar()


@action
def create_cycle(db: Session, admin_id: UUID, data: dict) -> dict:
    admin = require_admin(db, admin_id)

    values = {
        "name": (data.get("name") or "").strip(),
        "start_date": data.get("start_date"),
        "end_date": data.get("end_date"),
        "registration_deadline": to_naive_utc(data.get("registration_deadline")),
        "number_picking_start_date": to_naive_utc(data.get("number_picking_start_date")),
        "total_slots": data.get("total_slots", 20),
        "payment_deadline_day": data.get("payment_deadline_day", 28),
    }
    validate_cycle_values(values)

    cycle = ContributionCycle(status=CycleStatus.UPCOMING, created_by=admin.id, **values)
    db.add(cycle)
    db.commit()
    db.refresh(cycle)

    logger.info("Cycle %s created by %s", cycle.name, admin.id)
    audit_admin_action(admin, "create_cycle", f"{cycle.name} ({cycle.start_date} to {cycle.end_date})")
    return {"message": "Cycle created successfully", "cycle": serialize_cycle(cycle)}


@action
def update_cycle(db: Session, cycle_id: UUID, admin_id: UUID, data: dict) -> dict:
    """Partial update. Invariants are re-checked on the merged values."""
    admin = require_admin(db, admin_id)
    cycle = _load_cycle(db, cycle_id, for_update=True)

    if cycle.status in (CycleStatus.COMPLETED, CycleStatus.CANCELLED):
        raise PreconditionFailed("Closed cycles cannot be edited")

    changes = {
        key: data[key] for key in EDITABLE_FIELDS
        if key in data and (data[key] is not None or key in NULLABLE_FIELDS)
    }
    if "name" in changes:
        changes["name"] = changes["name"].strip()
    for key in ("registration_deadline", "number_picking_start_date"):
        if key in changes:
            changes[key] = to_naive_utc(changes[key])

    # Runs ahead of range validation
    shrinking = "total_slots" in changes and changes["total_slots"] < cycle.total_slots
    if shrinking:
        highest = _highest_picked_number(db, cycle.id)
        if highest is not None and changes["total_slots"] < highest:
            raise SlotsBelowPicked(
                f"Cannot reduce total slots below {highest} as some users have already picked higher numbers"
            )

    merged = {key: getattr(cycle, key) for key in EDITABLE_FIELDS}
    merged.update(changes)
    validate_cycle_values(merged)

    if shrinking:
        participants = count_participants(db, cycle.id)
        if changes["total_slots"] < participants:
            raise PreconditionFailed(
                f"Cannot reduce total slots below the current number of participants ({participants})"
            )

    for key, value in changes.items():
        setattr(cycle, key, value)
    db.commit()
    db.refresh(cycle)

    audit_admin_action(admin, "update_cycle", f"{cycle.name}: {', '.join(sorted(changes)) or 'no changes'}")
    return {"message": "Cycle updated successfully", "cycle": serialize_cycle(cycle)}


@action
def activate_cycle(db: Session, cycle_id: UUID, admin_id: UUID) -> dict:
    admin = require_admin(db, admin_id)
    cycle = _load_cycle(db, cycle_id, for_update=True)

    if cycle.status != CycleStatus.UPCOMING:
        raise PreconditionFailed("Only upcoming cycles can be activated")

    cycle.status = CycleStatus.ACTIVE
    db.commit()
    db.refresh(cycle)

    audit_admin_action(admin, "activate_cycle", cycle.name)
    return {"message": f"{cycle.name} is now active", "cycle": serialize_cycle(cycle)}


@action
def cancel_cycle(db: Session, cycle_id: UUID, admin_id: UUID) -> dict:
    admin = require_admin(db, admin_id)
    cycle = _load_cycle(db, cycle_id, for_update=True)

    if cycle.status not in (CycleStatus.UPCOMING, CycleStatus.ACTIVE):
        raise PreconditionFailed("Only upcoming or active cycles can be cancelled")

    paid_payments = db.query(func.count(Payment.id)).filter(
        Payment.cycle_id == cycle.id,
        Payment.status == PaymentStatus.PAID
    ).scalar()
    paid_payouts = db.query(func.count(Payout.id)).filter(
        Payout.cycle_id == cycle.id,
        Payout.status == PayoutStatus.PAID
    ).scalar()
    if paid_payments or paid_payouts:
        raise PreconditionFailed("Cannot cancel a cycle that already has completed payments or payouts")

    cycle.status = CycleStatus.CANCELLED
    db.commit()
    db.refresh(cycle)

    audit_admin_action(admin, "cancel_cycle", cycle.name)
    return {"message": f"{cycle.name} has been cancelled", "cycle": serialize_cycle(cycle)}


@action
def close_cycle(db: Session, cycle_id: UUID, admin_id: UUID) -> dict:
    """Mark a cycle COMPLETED once nothing is owed in either direction."""
    admin = require_admin(db, admin_id)
    cycle = _load_cycle(db, cycle_id, for_update=True)

    if cycle.status not in (CycleStatus.UPCOMING, CycleStatus.ACTIVE):
        raise PreconditionFailed("This cycle is already closed")

    pending_payments = db.query(func.count(Payment.id)).filter(
        Payment.cycle_id == cycle.id,
        Payment.status == PaymentStatus.PENDING
    ).scalar() or 0
    pending_payouts = db.query(func.count(Payout.id)).filter(
        Payout.cycle_id == cycle.id,
        Payout.status == PayoutStatus.PENDING
    ).scalar() or 0

    if pending_payments or pending_payouts:
        raise OutstandingObligations(
            f"Cannot close cycle: {pending_payments} pending payment(s) and "
            f"{pending_payouts} pending payout(s) remaining",
            pending_payments=pending_payments,
            pending_payouts=pending_payouts,
        )

    cycle.status = CycleStatus.COMPLETED
    db.commit()
    db.refresh(cycle)

    logger.info("Cycle %s closed", cycle.id)
    audit_admin_action(admin, "close_cycle", cycle.name)
    return {"message": f"{cycle.name} has been closed", "cycle": serialize_cycle(cycle)}


@action
def delete_cycle(db: Session, cycle_id: UUID, admin_id: UUID) -> dict:
    admin = require_admin(db, admin_id)
    cycle = _load_cycle(db, cycle_id, for_update=True)

    if count_participants(db, cycle.id) > 0:
        raise HasParticipants()

    name = cycle.name
    db.delete(cycle)
    db.commit()

    audit_admin_action(admin, "delete_cycle", name)
    return {"message": f"{name} has been deleted"}


def _cycle_rollup(db: Session, cycle: ContributionCycle) -> dict:
    participations = cycle.participations
    payments = cycle.payments
    payouts = cycle.payouts
    paid_payments = [p for p in payments if p.status == PaymentStatus.PAID]

    data = serialize_cycle(cycle)
    data.update({
        "cycle_duration": cycle_duration(cycle),
        "participant_count": len(participations),
        "active_participants": sum(1 for p in participations if not p.has_opted_out),
        "available_slots": max(cycle.total_slots - len(participations), 0),
        "numbers_picked": sum(1 for p in participations if p.picked_number is not None),
        "has_payments": bool(payments),
        "total_payments": len(payments),
        "paid_payments": len(paid_payments),
        "pending_payments": sum(1 for p in payments if p.status == PaymentStatus.PENDING),
        "total_collected": sum(p.paid_amount or 0 for p in paid_payments),
        "payouts_completed": sum(1 for p in payouts if p.status == PayoutStatus.PAID),
        "payouts_pending": sum(1 for p in payouts if p.status == PayoutStatus.PENDING),
    })
    return data


@read_action(list)
def get_all_cycles_with_details(db: Session) -> list:
    cycles = db.query(ContributionCycle).order_by(ContributionCycle.start_date.desc()).all()
    return [_cycle_rollup(db, cycle) for cycle in cycles]


@read_action(lambda: None)
def get_cycle_details(db: Session, cycle_id: UUID) -> Optional[dict]:
    cycle = db.query(ContributionCycle).filter(ContributionCycle.id == cycle_id).first()
    if not cycle:
        return None

    today = date.today()
    participants = []
    for participation in sorted(cycle.participations, key=lambda p: (p.picked_number is None, p.picked_number or 0)):
        payments = participation.payments
        participants.append({
            "participation_id": str(participation.id),
            "user_id": str(participation.user_id),
            "full_name": participation.user.full_name,
            "phone": participation.user.phone,
            "contribution_mode": participation.contribution_mode.value,
            "monthly_amount": participation.monthly_amount,
            "picked_number": participation.picked_number,
            "has_opted_out": participation.has_opted_out,
            "bank_details": serialize_bank_details(participation.bank_details),
            "payments_made": sum(1 for p in payments if p.status == PaymentStatus.PAID),
            "overdue_payments": sum(1 for p in payments if is_payment_overdue(p, today)),
        })

    data = _cycle_rollup(db, cycle)
    data["participants"] = participants
    return data


@read_action(lambda: None)
def get_active_cycle(db: Session) -> Optional[dict]:
    cycle = db.query(ContributionCycle).filter(
        ContributionCycle.status == CycleStatus.ACTIVE
    ).order_by(ContributionCycle.start_date.desc()).first()
    return _cycle_rollup(db, cycle) if cycle else None
