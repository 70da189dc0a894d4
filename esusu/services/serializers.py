"""Plain-dict views of the ORM rows returned inside operation results."""
from datetime import date, datetime
from typing import Optional

from esusu.models.cycle import ContributionCycle, Participation, BankDetails
from esusu.models.transaction import Payment, Payout, OptOutRequest
from esusu.models.user import User
from esusu.services.schedule import is_payment_overdue, is_payout_overdue


def _iso(value) -> Optional[str]:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return None


def _id(value) -> Optional[str]:
    return str(value) if value is not None else None


def serialize_user(user: User) -> dict:
    return {
        "id": _id(user.id),
        "full_name": user.full_name,
        "phone": user.phone,
        "email": user.email,
        "occupation": user.occupation,
        "address": user.address,
        "is_admin": user.is_admin,
        "status": user.status.value,
        "created_at": _iso(user.created_at),
    }


def serialize_cycle(cycle: ContributionCycle) -> dict:
    return {
        "id": _id(cycle.id),
        "name": cycle.name,
        "start_date": _iso(cycle.start_date),
        "end_date": _iso(cycle.end_date),
        "registration_deadline": _iso(cycle.registration_deadline),
        "number_picking_start_date": _iso(cycle.number_picking_start_date),
        "status": cycle.status.value,
        "total_slots": cycle.total_slots,
        "payment_deadline_day": cycle.payment_deadline_day,
        "created_at": _iso(cycle.created_at),
    }


def serialize_bank_details(details: Optional[BankDetails]) -> Optional[dict]:
    if details is None:
        return None
    return {
        "bank_name": details.bank_name,
        "account_number": details.account_number,
        "account_name": details.account_name,
        "updated_at": _iso(details.updated_at or details.created_at),
    }


def serialize_participation(participation: Participation) -> dict:
    return {
        "id": _id(participation.id),
        "user_id": _id(participation.user_id),
        "cycle_id": _id(participation.cycle_id),
        "contribution_mode": participation.contribution_mode.value,
        "monthly_amount": participation.monthly_amount,
        "total_payout": participation.total_payout,
        "fine_amount": participation.fine_amount,
        "picked_number": participation.picked_number,
        "has_opted_out": participation.has_opted_out,
        "registered_at": _iso(participation.registered_at),
    }


def serialize_payment(payment: Payment, today: Optional[date] = None) -> dict:
    return {
        "id": _id(payment.id),
        "participation_id": _id(payment.participation_id),
        "user_id": _id(payment.user_id),
        "cycle_id": _id(payment.cycle_id),
        "month_number": payment.month_number,
        "amount": payment.amount,
        "due_date": _iso(payment.due_date),
        "status": payment.status.value,
        "is_overdue": is_payment_overdue(payment, today),
        "paid_amount": payment.paid_amount,
        "paid_at": _iso(payment.paid_at),
        "has_fine": payment.has_fine,
        "fine_amount": payment.fine_amount,
        "fine_paid": payment.fine_paid,
        "proof_of_payment": payment.proof_of_payment,
        "proof_uploaded_at": _iso(payment.proof_uploaded_at),
        "verified_by": _id(payment.verified_by),
        "verified_at": _iso(payment.verified_at),
        "notes": payment.notes,
    }


def serialize_payout(payout: Payout, today: Optional[date] = None) -> dict:
    return {
        "id": _id(payout.id),
        "participation_id": _id(payout.participation_id),
        "user_id": _id(payout.user_id),
        "cycle_id": _id(payout.cycle_id),
        "scheduled_month": payout.scheduled_month,
        "scheduled_date": _iso(payout.scheduled_date),
        "amount": payout.amount,
        "status": payout.status.value,
        "is_overdue": is_payout_overdue(payout, today),
        "paid_at": _iso(payout.paid_at),
        "transfer_reference": payout.transfer_reference,
        "processed_by": _id(payout.processed_by),
        "notes": payout.notes,
    }


def serialize_opt_out(request: OptOutRequest) -> dict:
    return {
        "id": _id(request.id),
        "user_id": _id(request.user_id),
        "cycle_id": _id(request.cycle_id),
        "reason": request.reason,
        "total_paid": request.total_paid,
        "penalty_amount": request.penalty_amount,
        "refund_amount": request.refund_amount,
        "status": request.status.value,
        "requested_at": _iso(request.requested_at),
        "reviewed_at": _iso(request.reviewed_at),
        "reviewed_by": _id(request.reviewed_by),
        "review_notes": request.review_notes,
    }
