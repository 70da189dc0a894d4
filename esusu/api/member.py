from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID
from esusu.db.base import get_db
from esusu.core.dependencies import get_current_active_user
from esusu.core.packages import list_packages
from esusu.models.user import User
from esusu.schemas.member import BankDetailsIn, JoinCycle, PickNumber, PaymentProof, OptOutSubmit
from esusu.services.participation import (
    join_cycle,
    update_bank_details,
    get_available_cycles,
    get_cycle_summary,
    check_user_participation,
)
from esusu.services.numbers import (
    pick_number,
    get_taken_numbers,
    get_user_pick,
    get_picking_status,
    pick_pool_number,
    get_pool_settings,
    get_pool_stats,
)
from esusu.services.payment import get_user_payments, mark_payment_as_paid, upload_payment_proof
from esusu.services.payout import get_user_payout_info, get_payout_timeline, get_payout_details
from esusu.services.opt_out import (
    get_opt_out_info,
    submit_opt_out_request,
    cancel_opt_out_request,
    get_user_opt_out_requests,
)
from esusu.services.report import get_member_dashboard
from esusu.api.responses import respond, found_or_404

router = APIRouter(prefix="/api/member", tags=["member"])


@router.get("/dashboard")
def dashboard(current_user: User = Depends(get_current_active_user), db: Session = Depends(get_db)):
    return found_or_404(get_member_dashboard(db, current_user.id), "User not found")


@router.get("/packages")
def packages():
    return list_packages()


# Cycles and participation

@router.get("/cycles")
def available_cycles(current_user: User = Depends(get_current_active_user), db: Session = Depends(get_db)):
    return get_available_cycles(db, current_user.id)


@router.get("/cycles/{cycle_id}")
def cycle_summary(
    cycle_id: UUID,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    summary = found_or_404(get_cycle_summary(db, cycle_id), "Cycle not found")
    summary["my_participation"] = check_user_participation(db, current_user.id, cycle_id)
    return summary


@router.post("/cycles/{cycle_id}/join")
def join(
    cycle_id: UUID,
    data: JoinCycle,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    result = join_cycle(db, current_user.id, cycle_id, data.contribution_mode, data.bank_details.model_dump())
    return respond(result, success_status=201)


@router.put("/participations/{participation_id}/bank-details")
def edit_bank_details(
    participation_id: UUID,
    data: BankDetailsIn,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    return respond(update_bank_details(db, participation_id, current_user.id, data.model_dump()))


# Number picking

@router.get("/cycles/{cycle_id}/numbers")
def cycle_numbers(
    cycle_id: UUID,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    status = get_picking_status(db, cycle_id)
    status["taken_numbers"] = get_taken_numbers(db, cycle_id)
    status["my_number"] = get_user_pick(db, current_user.id, cycle_id)
    return status


@router.post("/participations/{participation_id}/pick")
def pick(
    participation_id: UUID,
    data: PickNumber,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    return respond(pick_number(db, participation_id, current_user.id, data.number))


@router.get("/pool")
def pool(current_user: User = Depends(get_current_active_user), db: Session = Depends(get_db)):
    data = get_pool_stats(db)
    data.update(get_pool_settings(db))
    return data


@router.post("/pool/pick")
def pool_pick(
    data: PickNumber,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    return respond(pick_pool_number(db, current_user.id, data.number))


# Payments

@router.get("/payments")
def my_payments(current_user: User = Depends(get_current_active_user), db: Session = Depends(get_db)):
    return get_user_payments(db, current_user.id)


@router.post("/payments/{payment_id}/paid")
def mark_paid(
    payment_id: UUID,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    return respond(mark_payment_as_paid(db, payment_id, current_user.id))


@router.post("/payments/{payment_id}/proof")
def submit_proof(
    payment_id: UUID,
    data: PaymentProof,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    return respond(upload_payment_proof(db, payment_id, current_user.id, data.proof_uri))


# Payouts

@router.get("/payout")
def my_payout(current_user: User = Depends(get_current_active_user), db: Session = Depends(get_db)):
    return get_user_payout_info(db, current_user.id)


@router.get("/payout/timeline")
def my_payout_timeline(current_user: User = Depends(get_current_active_user), db: Session = Depends(get_db)):
    return get_payout_timeline(db, current_user.id)


@router.get("/payouts/{payout_id}")
def payout_details(
    payout_id: UUID,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    return found_or_404(get_payout_details(db, payout_id, current_user.id), "Payout not found")


# Opt-out

@router.get("/opt-out")
def opt_out_info(
    cycle_id: Optional[UUID] = None,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    info = get_opt_out_info(db, current_user.id, cycle_id)
    info["requests"] = get_user_opt_out_requests(db, current_user.id)
    return info


@router.post("/opt-out")
def opt_out(
    data: OptOutSubmit,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    return respond(submit_opt_out_request(db, current_user.id, data.cycle_id, data.reason), success_status=201)


@router.delete("/opt-out/{request_id}")
def cancel_opt_out(
    request_id: UUID,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    return respond(cancel_opt_out_request(db, request_id, current_user.id))
