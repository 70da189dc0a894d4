"""Leaving a cycle early.

A member in an active cycle may ask to opt out until their payout has been
paid. The penalty is a percentage of everything they have paid in, read from
the system settings, and the refund is the remainder. Both figures are frozen
on the request when it is submitted.
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from esusu.core.errors import (
    ServiceError,
    NotFound,
    Unauthorized,
    Conflict,
    NotEligible,
    ReasonTooShort,
)
from esusu.models.cycle import ContributionCycle, CycleStatus, Participation
from esusu.models.transaction import (
    Payment,
    PaymentStatus,
    Payout,
    PayoutStatus,
    OptOutRequest,
    OptOutStatus,
)
from esusu.models.user import User, UserStatus
from esusu.services.actions import action, read_action
from esusu.services.rbac import require_admin, audit_admin_action
from esusu.services.serializers import (
    serialize_opt_out,
    serialize_participation,
    serialize_cycle,
    serialize_bank_details,
)
from esusu.services.settings import get_opt_out_penalty_percent

logger = logging.getLogger(__name__)

MIN_REASON_LENGTH = 10
PENDING_REQUEST_MESSAGE = "You already have a pending opt-out request for this cycle"
WAIVED_PAYOUT_NOTE = "Cancelled due to opt-out"
WAIVED_PAYMENT_NOTE = "Waived due to opt-out"


def calculate_refund(total_paid: int, penalty_percent: int) -> dict:
    """Split what a member has paid into penalty and refund.

    The penalty is floored to whole Naira so refund + penalty == total_paid.
    """
    penalty = total_paid * penalty_percent // 100
    return {
        "total_paid": total_paid,
        "penalty_percent": penalty_percent,
        "penalty_amount": penalty,
        "refund_amount": total_paid - penalty,
    }


def _total_paid(db: Session, participation_id: UUID) -> int:
    total = db.query(func.sum(Payment.paid_amount)).filter(
        Payment.participation_id == participation_id,
        Payment.status == PaymentStatus.PAID
    ).scalar()
    return int(total or 0)


def _eligible_participation(db: Session, user_id: UUID, cycle_id: Optional[UUID] = None) -> Participation:
    """Return the participation the user may opt out of, or raise with the reason."""
    query = db.query(Participation).join(ContributionCycle).filter(
        Participation.user_id == user_id,
        ContributionCycle.status == CycleStatus.ACTIVE
    )
    if cycle_id:
        query = query.filter(Participation.cycle_id == cycle_id)
    participation = query.order_by(Participation.registered_at.desc()).first()

    if not participation:
        raise NotEligible("You are not participating in any active cycle")
    if participation.has_opted_out:
        raise NotEligible("You have already opted out of this cycle")

    paid_payout = db.query(Payout).filter(
        Payout.participation_id == participation.id,
        Payout.status == PayoutStatus.PAID
    ).first()
    if paid_payout:
        raise NotEligible("You cannot opt out after receiving your payout")

    pending = db.query(OptOutRequest).filter(
        OptOutRequest.user_id == user_id,
        OptOutRequest.cycle_id == participation.cycle_id,
        OptOutRequest.status == OptOutStatus.PENDING_APPROVAL
    ).first()
    if pending:
        raise Conflict(PENDING_REQUEST_MESSAGE)

    return participation


@read_action(lambda: {"eligible": False, "reason": "Unable to check opt-out eligibility", "participation": None})
def get_opt_out_info(db: Session, user_id: UUID, cycle_id: Optional[UUID] = None) -> dict:
    try:
        participation = _eligible_participation(db, user_id, cycle_id)
    except ServiceError as e:
        return {"eligible": False, "reason": e.message, "participation": None}

    calculations = calculate_refund(_total_paid(db, participation.id), get_opt_out_penalty_percent(db))
    db.commit()
    return {
        "eligible": True,
        "reason": None,
        "participation": serialize_participation(participation),
        "cycle": serialize_cycle(participation.cycle),
        "bank_details": serialize_bank_details(participation.bank_details),
        "calculations": calculations,
    }


@action
def submit_opt_out_request(db: Session, user_id: UUID, cycle_id: UUID, reason: str) -> dict:
    reason = (reason or "").strip()
    if len(reason) < MIN_REASON_LENGTH:
        raise ReasonTooShort()

    participation = _eligible_participation(db, user_id, cycle_id)
    calculations = calculate_refund(_total_paid(db, participation.id), get_opt_out_penalty_percent(db))

    request = OptOutRequest(
        user_id=user_id,
        cycle_id=participation.cycle_id,
        reason=reason,
        total_paid=calculations["total_paid"],
        penalty_amount=calculations["penalty_amount"],
        refund_amount=calculations["refund_amount"],
        status=OptOutStatus.PENDING_APPROVAL,
    )
    db.add(request)
    try:
        db.flush()
    except IntegrityError:
        raise Conflict(PENDING_REQUEST_MESSAGE)

    db.commit()
    db.refresh(request)

    logger.info("Opt-out requested by %s for cycle %s", user_id, participation.cycle_id)
    return {
        "message": "Opt-out request submitted. An admin will review it shortly.",
        "request": serialize_opt_out(request),
    }


@action
def cancel_opt_out_request(db: Session, request_id: UUID, user_id: UUID) -> dict:
    request = db.query(OptOutRequest).filter(OptOutRequest.id == request_id).with_for_update().first()
    if not request:
        raise NotFound("Opt-out request not found")
    if request.user_id != user_id:
        raise Unauthorized("You can only cancel your own requests")
    if request.status != OptOutStatus.PENDING_APPROVAL:
        raise Conflict("Only pending requests can be cancelled")

    db.delete(request)
    db.commit()
    return {"message": "Opt-out request cancelled"}


@action
def review_opt_out_request(
    db: Session,
    request_id: UUID,
    admin_id: UUID,
    approved: bool,
    notes: Optional[str] = None
) -> dict:
    """Approve or reject a pending request. Approval is applied in one commit."""
    admin = require_admin(db, admin_id)

    request = db.query(OptOutRequest).filter(OptOutRequest.id == request_id).with_for_update().first()
    if not request:
        raise NotFound("Opt-out request not found")
    if request.status != OptOutStatus.PENDING_APPROVAL:
        raise Conflict("Request has already been reviewed")

    request.status = OptOutStatus.APPROVED if approved else OptOutStatus.REJECTED
    request.reviewed_at = datetime.utcnow()
    request.reviewed_by = admin.id
    request.review_notes = notes or None

    if approved:
        participation = db.query(Participation).filter(
            Participation.user_id == request.user_id,
            Participation.cycle_id == request.cycle_id
        ).first()
        if participation:
            participation.has_opted_out = True
            db.query(Payment).filter(
                Payment.participation_id == participation.id,
                Payment.status == PaymentStatus.PENDING
            ).update({Payment.status: PaymentStatus.WAIVED, Payment.notes: WAIVED_PAYMENT_NOTE}, synchronize_session=False)

        user = db.query(User).filter(User.id == request.user_id).first()
        user.status = UserStatus.OPTED_OUT

        db.query(Payout).filter(
            Payout.user_id == request.user_id,
            Payout.cycle_id == request.cycle_id,
            Payout.status == PayoutStatus.PENDING
        ).update({Payout.status: PayoutStatus.WAIVED, Payout.notes: WAIVED_PAYOUT_NOTE}, synchronize_session=False)

    db.commit()
    db.refresh(request)

    audit_admin_action(
        admin,
        "approve_opt_out" if approved else "reject_opt_out",
        f"request={request.id} refund={request.refund_amount} penalty={request.penalty_amount}"
    )
    message = (
        "Opt-out request approved. User has been removed from the cycle."
        if approved else "Opt-out request rejected."
    )
    return {"message": message, "request": serialize_opt_out(request)}


@read_action(list)
def get_user_opt_out_requests(db: Session, user_id: UUID) -> list:
    requests = db.query(OptOutRequest).filter(
        OptOutRequest.user_id == user_id
    ).order_by(OptOutRequest.requested_at.desc()).all()
    result = []
    for request in requests:
        data = serialize_opt_out(request)
        data["cycle_name"] = request.cycle.name
        result.append(data)
    return result


@read_action(list)
def get_pending_opt_out_requests(db: Session) -> list:
    requests = db.query(OptOutRequest).filter(
        OptOutRequest.status == OptOutStatus.PENDING_APPROVAL
    ).order_by(OptOutRequest.requested_at).all()
    result = []
    for request in requests:
        participation = db.query(Participation).filter(
            Participation.user_id == request.user_id,
            Participation.cycle_id == request.cycle_id
        ).first()
        data = serialize_opt_out(request)
        data.update({
            "full_name": request.user.full_name,
            "phone": request.user.phone,
            "cycle_name": request.cycle.name,
            "participation": serialize_participation(participation) if participation else None,
            "bank_details": serialize_bank_details(participation.bank_details) if participation else None,
        })
        result.append(data)
    return result


@read_action(lambda: {"pending": 0, "approved": 0, "rejected": 0, "total_refunded": 0, "total_penalties": 0})
def get_opt_out_stats(db: Session) -> dict:
    def count(status):
        return db.query(func.count(OptOutRequest.id)).filter(OptOutRequest.status == status).scalar() or 0

    totals = db.query(
        func.sum(OptOutRequest.refund_amount),
        func.sum(OptOutRequest.penalty_amount)
    ).filter(OptOutRequest.status == OptOutStatus.APPROVED).first()

    return {
        "pending": count(OptOutStatus.PENDING_APPROVAL),
        "approved": count(OptOutStatus.APPROVED),
        "rejected": count(OptOutStatus.REJECTED),
        "total_refunded": int(totals[0] or 0),
        "total_penalties": int(totals[1] or 0),
    }
