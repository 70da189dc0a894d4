from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID
from esusu.db.base import get_db
from esusu.core.dependencies import get_current_admin
from esusu.models.user import User
from esusu.schemas.cycle import (
    CycleCreate,
    CycleUpdate,
    PaymentVerification,
    PayoutProcess,
    BatchPayoutProcess,
    OptOutReview,
    SystemSettingsUpdate,
    PoolSizeUpdate,
    UserAction,
)
from esusu.services import cycle as cycle_service
from esusu.services import member as member_service
from esusu.services import numbers as number_service
from esusu.services import opt_out as opt_out_service
from esusu.services import payment as payment_service
from esusu.services import payout as payout_service
from esusu.services import report as report_service
from esusu.services.settings import get_system_settings, update_system_settings
from esusu.api.responses import respond, found_or_404

router = APIRouter(prefix="/api/admin", tags=["admin"])


# Dashboard and reports

@router.get("/dashboard")
def dashboard(current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    stats = report_service.get_admin_dashboard_stats(db)
    stats["recent_activities"] = report_service.get_recent_activities(db)
    return stats


@router.get("/reports/financial-summary")
def financial_summary(
    cycle_id: Optional[UUID] = None,
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return report_service.get_financial_summary(db, cycle_id)


@router.get("/reports/defaulters")
def defaulters(
    cycle_id: Optional[UUID] = None,
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return report_service.get_defaulters_report(db, cycle_id)


@router.get("/reports/cycle-performance")
def cycle_performance(current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return report_service.get_cycle_performance(db)


@router.get("/reports/reconciliation")
def reconciliation(
    month: int,
    year: int,
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return report_service.get_monthly_reconciliation(db, month, year)


@router.get("/reports/trends")
def trends(
    months: int = 12,
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return report_service.get_payment_trends(db, months)


# Cycles

@router.get("/cycles")
def list_cycles(current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return cycle_service.get_all_cycles_with_details(db)


@router.get("/cycles/active")
def active_cycle(current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return cycle_service.get_active_cycle(db)


@router.get("/cycles/{cycle_id}")
def cycle_details(cycle_id: UUID, current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return found_or_404(cycle_service.get_cycle_details(db, cycle_id), "Cycle not found")


@router.post("/cycles")
def create_cycle(data: CycleCreate, current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return respond(cycle_service.create_cycle(db, current_user.id, data.model_dump()), success_status=201)


@router.patch("/cycles/{cycle_id}")
def update_cycle(
    cycle_id: UUID,
    data: CycleUpdate,
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return respond(cycle_service.update_cycle(db, cycle_id, current_user.id, data.model_dump(exclude_unset=True)))


@router.post("/cycles/{cycle_id}/activate")
def activate_cycle(cycle_id: UUID, current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return respond(cycle_service.activate_cycle(db, cycle_id, current_user.id))


@router.post("/cycles/{cycle_id}/cancel")
def cancel_cycle(cycle_id: UUID, current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return respond(cycle_service.cancel_cycle(db, cycle_id, current_user.id))


@router.post("/cycles/{cycle_id}/close")
def close_cycle(cycle_id: UUID, current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return respond(cycle_service.close_cycle(db, cycle_id, current_user.id))


@router.delete("/cycles/{cycle_id}")
def delete_cycle(cycle_id: UUID, current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return respond(cycle_service.delete_cycle(db, cycle_id, current_user.id))


# Payments

@router.post("/cycles/{cycle_id}/payments/generate")
def generate_payments(cycle_id: UUID, current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return respond(payment_service.generate_cycle_payments(db, cycle_id, current_user.id), success_status=201)


@router.get("/payments")
def list_payments(
    cycle_id: Optional[UUID] = None,
    status: str = "all",
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return payment_service.get_cycle_payments(db, cycle_id, status)


@router.get("/payments/verification")
def payments_needing_verification(current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return payment_service.get_payments_needing_verification(db)


@router.post("/payments/{payment_id}/verify")
def verify_payment(
    payment_id: UUID,
    data: PaymentVerification,
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return respond(payment_service.verify_payment(db, payment_id, current_user.id, data.approved, data.notes))


# Payouts

@router.get("/payouts")
def list_payouts(
    status: str = "all",
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return {
        "payouts": payout_service.get_all_payouts(db, status),
        "stats": payout_service.get_payout_stats(db),
    }


@router.get("/payouts/upcoming")
def upcoming_payouts(
    days: int = 30,
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return payout_service.get_upcoming_payouts(db, days)


@router.post("/payouts/batch")
def batch_payouts(data: BatchPayoutProcess, current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return respond(payout_service.batch_process_payouts(
        db, data.payout_ids, current_user.id, data.base_reference, data.notes
    ))


@router.get("/payouts/{payout_id}")
def payout_details(payout_id: UUID, current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return found_or_404(payout_service.get_payout_details(db, payout_id, current_user.id), "Payout not found")


@router.post("/payouts/{payout_id}/process")
def process_payout(
    payout_id: UUID,
    data: PayoutProcess,
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return respond(payout_service.process_payout(db, payout_id, current_user.id, data.transfer_reference, data.notes))


# Opt-outs

@router.get("/opt-outs")
def pending_opt_outs(current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return {
        "requests": opt_out_service.get_pending_opt_out_requests(db),
        "stats": opt_out_service.get_opt_out_stats(db),
    }


@router.post("/opt-outs/{request_id}/review")
def review_opt_out(
    request_id: UUID,
    data: OptOutReview,
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return respond(opt_out_service.review_opt_out_request(db, request_id, current_user.id, data.approved, data.notes))


# Users

@router.get("/users")
def list_users(
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    status: Optional[str] = None,
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    data = member_service.get_all_users(db, page, limit, search, status)
    data["stats"] = member_service.get_user_management_stats(db)
    return data


@router.get("/users/{user_id}")
def user_details(user_id: UUID, current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return found_or_404(member_service.get_user_details(db, user_id), "User not found")


@router.post("/users/{user_id}/suspend")
def suspend_user(
    user_id: UUID,
    data: Optional[UserAction] = None,
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return respond(member_service.suspend_user(db, user_id, current_user.id, data.reason if data else None))


@router.post("/users/{user_id}/activate")
def activate_user(user_id: UUID, current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return respond(member_service.activate_user(db, user_id, current_user.id))


@router.post("/users/{user_id}/make-admin")
def make_admin(user_id: UUID, current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return respond(member_service.make_user_admin(db, user_id, current_user.id))


@router.post("/users/{user_id}/remove-admin")
def remove_admin(user_id: UUID, current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return respond(member_service.remove_admin_privileges(db, user_id, current_user.id))


@router.delete("/users/{user_id}")
def delete_user(
    user_id: UUID,
    reason: Optional[str] = None,
    current_user: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    return respond(member_service.delete_user(db, user_id, current_user.id, reason))


# Settings and number pool

@router.get("/settings")
def read_settings(current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return get_system_settings(db)


@router.put("/settings")
def write_settings(data: SystemSettingsUpdate, current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return respond(update_system_settings(db, current_user.id, data.opt_out_penalty_percent))


@router.get("/pool")
def pool(current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    data = number_service.get_pool_stats(db)
    data["picks"] = number_service.get_all_pool_picks(db)
    return data


@router.put("/pool")
def resize_pool(data: PoolSizeUpdate, current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return respond(number_service.update_total_numbers(db, current_user.id, data.total_numbers))


@router.post("/pool/reset")
def reset_pool(current_user: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    return respond(number_service.reset_game(db, current_user.id))
