import logging
from datetime import datetime, date
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from esusu.core.errors import (
    NotFound,
    Unauthorized,
    Conflict,
    ValidationFailed,
    PreconditionFailed,
    AlreadyGenerated,
)
from esusu.models.cycle import ContributionCycle, CycleStatus, Participation
from esusu.models.transaction import Payment, PaymentStatus
from esusu.services.actions import action, read_action
from esusu.services.participation import get_current_participation
from esusu.services.rbac import require_admin, audit_admin_action
from esusu.services.schedule import (
    cycle_duration,
    payment_due_date,
    fine_for,
    is_payment_overdue,
    overdue_payment_filter,
)
from esusu.services.serializers import serialize_payment, serialize_participation, serialize_cycle

logger = logging.getLogger(__name__)

REJECTION_NOTE = "Payment proof rejected by admin"


def _load_payment(db: Session, payment_id: UUID) -> Payment:
    payment = db.query(Payment).filter(Payment.id == payment_id).with_for_update().first()
    if not payment:
        raise NotFound("Payment not found")
    return payment


@action
def generate_cycle_payments(db: Session, cycle_id: UUID, admin_id: UUID) -> dict:
    """Create the monthly payment schedule for every active participant."""
    admin = require_admin(db, admin_id)

    cycle = db.query(ContributionCycle).filter(ContributionCycle.id == cycle_id).with_for_update().first()
    if not cycle:
        raise NotFound("Cycle not found")
    if cycle.status not in (CycleStatus.UPCOMING, CycleStatus.ACTIVE):
        raise PreconditionFailed("Payments can only be generated for upcoming or active cycles")

    if db.query(Payment).filter(Payment.cycle_id == cycle_id).first():
        raise AlreadyGenerated()

    participations = db.query(Participation).filter(
        Participation.cycle_id == cycle_id,
        Participation.has_opted_out == False
    ).all()
    if not participations:
        raise PreconditionFailed("No participants found for this cycle")

    duration = cycle_duration(cycle)
    for participation in participations:
        for month_number in range(1, duration + 1):
            db.add(Payment(
                participation_id=participation.id,
                user_id=participation.user_id,
                cycle_id=cycle.id,
                month_number=month_number,
                amount=participation.monthly_amount,
                due_date=payment_due_date(cycle, month_number),
                status=PaymentStatus.PENDING,
            ))

    try:
        db.flush()
    except IntegrityError:
        raise AlreadyGenerated()
    db.commit()

    count = len(participations) * duration
    logger.info("Generated %s payments over %s months for cycle %s", count, duration, cycle_id)
    audit_admin_action(admin, "generate_cycle_payments", f"{cycle.name}: {count} payments")
    return {
        "message": f"Generated {count} payments for {len(participations)} participants",
        "count": count,
        "cycle_duration": duration,
    }


@action
def mark_payment_as_paid(db: Session, payment_id: UUID, user_id: UUID) -> dict:
    payment = _load_payment(db, payment_id)
    if payment.user_id != user_id:
        raise Unauthorized("You can only update your own payments")
    if payment.status == PaymentStatus.PAID:
        raise Conflict("This payment has already been marked as paid")
    if payment.status == PaymentStatus.WAIVED:
        raise PreconditionFailed("This payment has been waived")

    fine = fine_for(payment)
    payment.status = PaymentStatus.PAID
    payment.paid_at = datetime.utcnow()
    payment.has_fine = fine > 0
    payment.fine_amount = fine
    payment.fine_paid = fine > 0
    payment.paid_amount = payment.amount + fine
    db.commit()
    db.refresh(payment)

    message = "Payment marked as paid"
    if fine:
        message += f" (including a late fine of ₦{fine:,})"
    return {"message": message, "payment": serialize_payment(payment)}


@action
def upload_payment_proof(db: Session, payment_id: UUID, user_id: UUID, proof_uri: str) -> dict:
    """Attach a receipt reference for admin review. The payment stays pending."""
    payment = _load_payment(db, payment_id)
    if payment.user_id != user_id:
        raise Unauthorized("You can only upload proof for your own payments")
    if payment.status == PaymentStatus.PAID:
        raise Conflict("This payment has already been verified")
    if payment.status == PaymentStatus.WAIVED:
        raise PreconditionFailed("This payment has been waived")

    proof_uri = (proof_uri or "").strip()
    if not proof_uri:
        raise ValidationFailed("Proof of payment is required")

    fine = fine_for(payment)
    payment.proof_of_payment = proof_uri
    payment.proof_uploaded_at = datetime.utcnow()
    payment.has_fine = fine > 0
    payment.fine_amount = fine
    payment.fine_paid = False
    payment.verified_by = None
    payment.verified_at = None
    payment.notes = None
    db.commit()
    db.refresh(payment)

    return {"message": "Payment proof uploaded. Awaiting verification.", "payment": serialize_payment(payment)}


@action
def verify_payment(
    db: Session,
    payment_id: UUID,
    admin_id: UUID,
    approved: bool,
    notes: Optional[str] = None
) -> dict:
    admin = require_admin(db, admin_id)

    payment = _load_payment(db, payment_id)
    if payment.status == PaymentStatus.PAID:
        raise Conflict("This payment has already been verified")
    if payment.status == PaymentStatus.WAIVED:
        raise PreconditionFailed("This payment has been waived")
    if not payment.proof_of_payment:
        raise PreconditionFailed("No proof of payment has been uploaded")

    now = datetime.utcnow()
    if approved:
        payment.status = PaymentStatus.PAID
        payment.paid_at = now
        payment.verified_by = admin.id
        payment.verified_at = now
        payment.paid_amount = payment.amount + (payment.fine_amount or 0)
        payment.fine_paid = payment.has_fine
        payment.notes = notes
        message = "Payment verified successfully"
    else:
        payment.proof_of_payment = None
        payment.proof_uploaded_at = None
        payment.has_fine = False
        payment.fine_amount = 0
        payment.fine_paid = False
        payment.verified_by = None
        payment.verified_at = None
        payment.notes = notes or REJECTION_NOTE
        message = "Payment proof rejected"

    db.commit()
    db.refresh(payment)

    audit_admin_action(
        admin,
        "verify_payment" if approved else "reject_payment",
        f"payment={payment.id} month={payment.month_number}"
    )
    return {"message": message, "payment": serialize_payment(payment)}


def _empty_user_payments() -> dict:
    return {
        "participation": None,
        "cycle": None,
        "payments": [],
        "next_payment": None,
        "stats": {
            "total_payments": 0,
            "paid_count": 0,
            "pending_count": 0,
            "overdue_count": 0,
            "awaiting_verification": 0,
            "total_paid": 0,
            "total_outstanding": 0,
            "total_fines": 0,
        },
    }


@read_action(_empty_user_payments)
def get_user_payments(db: Session, user_id: UUID) -> dict:
    """Payment schedule and totals for the user's current participation."""
    participation = get_current_participation(db, user_id)
    if not participation:
        return _empty_user_payments()

    today = date.today()
    payments = participation.payments
    paid = [p for p in payments if p.status == PaymentStatus.PAID]
    pending = [p for p in payments if p.status == PaymentStatus.PENDING]
    next_payment = pending[0] if pending else None

    return {
        "participation": serialize_participation(participation),
        "cycle": serialize_cycle(participation.cycle),
        "payments": [serialize_payment(p, today) for p in payments],
        "next_payment": serialize_payment(next_payment, today) if next_payment else None,
        "stats": {
            "total_payments": len(payments),
            "paid_count": len(paid),
            "pending_count": len(pending),
            "overdue_count": sum(1 for p in pending if is_payment_overdue(p, today)),
            "awaiting_verification": sum(1 for p in pending if p.proof_of_payment),
            "total_paid": sum(p.paid_amount or 0 for p in paid),
            "total_outstanding": sum(p.amount for p in pending),
            "total_fines": sum(p.fine_amount for p in paid if p.has_fine),
        },
    }


def _with_member(payment: Payment, today: date) -> dict:
    data = serialize_payment(payment, today)
    data["full_name"] = payment.user.full_name
    data["phone"] = payment.user.phone
    data["cycle_name"] = payment.cycle.name
    return data


@read_action(list)
def get_payments_needing_verification(db: Session) -> list:
    today = date.today()
    payments = db.query(Payment).filter(
        Payment.status == PaymentStatus.PENDING,
        Payment.proof_of_payment.isnot(None)
    ).order_by(Payment.proof_uploaded_at).all()
    return [_with_member(p, today) for p in payments]


@read_action(list)
def get_cycle_payments(db: Session, cycle_id: Optional[UUID] = None, status: str = "all") -> list:
    """Admin listing; ``status`` is all, pending, paid, waived or overdue."""
    today = date.today()
    query = db.query(Payment)
    if cycle_id:
        query = query.filter(Payment.cycle_id == cycle_id)
    if status == "overdue":
        query = query.filter(overdue_payment_filter(today))
    elif status and status != "all":
        query = query.filter(Payment.status == PaymentStatus(status))
    payments = query.order_by(Payment.due_date, Payment.month_number).all()
    return [_with_member(p, today) for p in payments]
