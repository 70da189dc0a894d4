from datetime import date, datetime, time, timedelta, timezone

import pytest
from dateutil.relativedelta import relativedelta

from esusu.models import ContributionCycle, CycleStatus, Payment, PaymentStatus, Payout, PayoutStatus
from esusu.services.cycle import (
    create_cycle,
    update_cycle,
    activate_cycle,
    cancel_cycle,
    close_cycle,
    delete_cycle,
    get_all_cycles_with_details,
    get_cycle_details,
    get_active_cycle,
)
from esusu.services.numbers import pick_number
from esusu.services.payment import generate_cycle_payments
from esusu.services.schedule import (
    months_between,
    cycle_duration,
    payment_due_date,
    payout_scheduled_date,
    current_cycle_month,
)


def _cycle_data(**overrides):
    start = date.today().replace(day=1) + relativedelta(months=1)
    data = {
        "name": "January Cycle",
        "start_date": start,
        "end_date": start + relativedelta(months=9),
        "registration_deadline": datetime.combine(start, datetime.min.time()) - timedelta(days=3),
        "total_slots": 20,
        "payment_deadline_day": 28,
    }
    data.update(overrides)
    return data


def _running_cycle(make_cycle, **overrides):
    """Active cycle whose registration closed the day before it started."""
    start = date.today().replace(day=1) - relativedelta(months=2)
    overrides.setdefault("registration_deadline", datetime.combine(start, datetime.min.time()) - timedelta(days=1))
    return make_cycle(start_date=start, end_date=start + relativedelta(months=11), **overrides)


class TestSchedule:
    def test_months_between(self):
        assert months_between(date(2025, 1, 31), date(2025, 2, 1)) == 1
        assert months_between(date(2025, 1, 1), date(2025, 12, 31)) == 11

    def test_duration_is_capped_by_slots(self):
        cycle = ContributionCycle(start_date=date(2025, 1, 1), end_date=date(2025, 10, 1), total_slots=20)
        assert cycle_duration(cycle) == 10

        cycle.total_slots = 10
        cycle.end_date = date(2026, 6, 1)
        assert cycle_duration(cycle) == 10

    def test_due_date_clamps_to_month_end(self):
        cycle = ContributionCycle(start_date=date(2025, 1, 1), payment_deadline_day=31)

        assert payment_due_date(cycle, 1) == date(2025, 1, 31)
        assert payment_due_date(cycle, 2) == date(2025, 2, 28)
        assert payment_due_date(cycle, 4) == date(2025, 4, 30)

    def test_payout_date(self):
        cycle = ContributionCycle(start_date=date(2025, 3, 1))

        assert payout_scheduled_date(cycle, 1) == date(2025, 3, 1)
        assert payout_scheduled_date(cycle, 12) == date(2026, 2, 1)

    def test_current_month_is_clamped(self):
        cycle = ContributionCycle(start_date=date(2025, 1, 1), total_slots=10)

        assert current_cycle_month(cycle, date(2024, 6, 1)) == 1
        assert current_cycle_month(cycle, date(2025, 3, 15)) == 3
        assert current_cycle_month(cycle, date(2027, 1, 1)) == 10


class TestCreateCycle:
    def test_created_as_upcoming(self, db, admin):
        result = create_cycle(db, admin.id, _cycle_data())

        assert result["success"] is True
        assert result["cycle"]["status"] == "upcoming"
        assert result["cycle"]["total_slots"] == 20
        assert db.query(ContributionCycle).one().created_by == admin.id

    @pytest.mark.parametrize("overrides, message", [
        ({"name": "  "}, "Cycle name is required"),
        ({"total_slots": 5}, "Total slots must be between 10 and 100"),
        ({"total_slots": 101}, "Total slots must be between 10 and 100"),
        ({"payment_deadline_day": 32}, "Payment deadline day must be between 1 and 31"),
    ])
    def test_invalid_values(self, db, admin, overrides, message):
        result = create_cycle(db, admin.id, _cycle_data(**overrides))

        assert result["kind"] == "Validation"
        assert result["error"] == message
        assert db.query(ContributionCycle).count() == 0

    def test_end_before_start(self, db, admin):
        data = _cycle_data()
        data["end_date"] = data["start_date"] - timedelta(days=1)

        assert create_cycle(db, admin.id, data)["error"] == "End date must be after start date"

    def test_deadline_after_start(self, db, admin):
        data = _cycle_data()
        data["registration_deadline"] = datetime.combine(data["start_date"], datetime.min.time()) + timedelta(days=1)

        assert create_cycle(db, admin.id, data)["error"] == "Registration deadline must be before the start date"

    def test_offset_deadline_is_stored_as_utc(self, db, admin):
        data = _cycle_data()
        # 00:30 at +01:00 on the start date is 23:30 UTC the day before
        local_midnight = datetime.combine(data["start_date"], time(0, 30), tzinfo=timezone(timedelta(hours=1)))
        data["registration_deadline"] = local_midnight
        data["number_picking_start_date"] = local_midnight

        result = create_cycle(db, admin.id, data)

        assert result["success"] is True
        cycle = db.query(ContributionCycle).one()
        expected = datetime.combine(data["start_date"], time.min) - timedelta(minutes=30)
        assert cycle.registration_deadline == expected
        assert cycle.number_picking_start_date == expected

    def test_requires_admin(self, db, member):
        result = create_cycle(db, member.id, _cycle_data())

        assert result["kind"] == "Unauthorized"
        assert db.query(ContributionCycle).count() == 0


class TestUpdateCycle:
    def test_partial_update(self, db, admin):
        cycle_id = create_cycle(db, admin.id, _cycle_data())["cycle"]["id"]
        cycle = db.query(ContributionCycle).one()

        result = update_cycle(db, cycle.id, admin.id, {"name": "Renamed", "total_slots": 30})

        assert result["success"] is True
        assert result["cycle"]["id"] == cycle_id
        assert result["cycle"]["name"] == "Renamed"
        assert result["cycle"]["total_slots"] == 30

    def test_shrink_below_picked_number(self, db, admin, member, make_cycle, make_participation):
        cycle = _running_cycle(make_cycle, total_slots=20)
        participation = make_participation(member, cycle)
        assert generate_cycle_payments(db, cycle.id, admin.id)["success"] is True
        assert pick_number(db, participation.id, member.id, 15)["success"] is True

        result = update_cycle(db, cycle.id, admin.id, {"total_slots": 5})

        assert result["code"] == "SlotsBelowPicked"
        db.refresh(cycle)
        assert cycle.total_slots == 20

    def test_shrink_to_highest_pick(self, db, admin, member, make_cycle, make_participation):
        cycle = _running_cycle(make_cycle, total_slots=20)
        participation = make_participation(member, cycle)
        pick_number(db, participation.id, member.id, 15)

        assert update_cycle(db, cycle.id, admin.id, {"total_slots": 14})["code"] == "SlotsBelowPicked"
        assert update_cycle(db, cycle.id, admin.id, {"total_slots": 15})["success"] is True

    def test_shrink_below_participants(self, db, admin, make_user, make_cycle, make_participation):
        cycle = _running_cycle(make_cycle, total_slots=20)
        for i in range(12):
            make_participation(make_user(full_name=f"Member {i}"), cycle)

        result = update_cycle(db, cycle.id, admin.id, {"total_slots": 10})

        assert result["kind"] == "PreconditionFailed"

    def test_clear_picking_start_date(self, db, admin, make_cycle):
        cycle = _running_cycle(make_cycle, number_picking_start_date=datetime.utcnow() + timedelta(days=5))

        result = update_cycle(db, cycle.id, admin.id, {"number_picking_start_date": None})

        assert result["success"] is True
        assert result["cycle"]["number_picking_start_date"] is None
        db.refresh(cycle)
        assert cycle.number_picking_start_date is None

    def test_none_leaves_required_fields_alone(self, db, admin, make_cycle):
        cycle = _running_cycle(make_cycle, name="Kept")

        assert update_cycle(db, cycle.id, admin.id, {"name": None, "total_slots": 25})["success"] is True
        db.refresh(cycle)
        assert cycle.name == "Kept"
        assert cycle.total_slots == 25

    def test_closed_cycle_cannot_be_edited(self, db, admin, make_cycle):
        cycle = make_cycle(status=CycleStatus.COMPLETED)

        assert update_cycle(db, cycle.id, admin.id, {"name": "Again"})["kind"] == "PreconditionFailed"


class TestCycleLifecycle:
    def test_activate(self, db, admin, make_cycle):
        cycle = make_cycle(status=CycleStatus.UPCOMING)

        assert activate_cycle(db, cycle.id, admin.id)["success"] is True
        db.refresh(cycle)
        assert cycle.status == CycleStatus.ACTIVE
        assert activate_cycle(db, cycle.id, admin.id)["kind"] == "PreconditionFailed"

    def test_cancel_without_money_moved(self, db, admin, member, make_cycle, make_participation):
        cycle = make_cycle()
        make_participation(member, cycle)

        assert cancel_cycle(db, cycle.id, admin.id)["success"] is True
        db.refresh(cycle)
        assert cycle.status == CycleStatus.CANCELLED

    def test_cancel_refused_after_payment(self, db, admin, member, make_cycle, make_participation):
        cycle = make_cycle()
        participation = make_participation(member, cycle)
        generate_cycle_payments(db, cycle.id, admin.id)
        first = participation.payments[0]
        first.status = PaymentStatus.PAID
        first.paid_amount = first.amount
        db.commit()

        assert cancel_cycle(db, cycle.id, admin.id)["kind"] == "PreconditionFailed"

    def test_close_only_when_nothing_pending(self, db, admin, member, make_cycle, make_participation):
        cycle = make_cycle()
        participation = make_participation(member, cycle)
        generate_cycle_payments(db, cycle.id, admin.id)
        pick_number(db, participation.id, member.id, 1)

        result = close_cycle(db, cycle.id, admin.id)

        assert result["code"] == "OutstandingObligations"
        assert result["pending_payments"] == 12
        assert result["pending_payouts"] == 1
        assert result["error"] == "Cannot close cycle: 12 pending payment(s) and 1 pending payout(s) remaining"

        for payment in db.query(Payment).all():
            payment.status = PaymentStatus.PAID
            payment.paid_amount = payment.amount
        db.query(Payout).one().status = PayoutStatus.PAID
        db.commit()

        assert close_cycle(db, cycle.id, admin.id)["success"] is True
        db.refresh(cycle)
        assert cycle.status == CycleStatus.COMPLETED
        assert close_cycle(db, cycle.id, admin.id)["kind"] == "PreconditionFailed"

    def test_close_counts_waived_as_settled(self, db, admin, member, make_cycle, make_participation):
        cycle = make_cycle()
        make_participation(member, cycle)
        generate_cycle_payments(db, cycle.id, admin.id)
        for payment in db.query(Payment).all():
            payment.status = PaymentStatus.WAIVED
        db.commit()

        assert close_cycle(db, cycle.id, admin.id)["success"] is True

    def test_delete_empty_cycle(self, db, admin, make_cycle):
        cycle = make_cycle(status=CycleStatus.UPCOMING)

        assert delete_cycle(db, cycle.id, admin.id)["success"] is True
        assert db.query(ContributionCycle).count() == 0

    def test_delete_with_participants(self, db, admin, member, make_cycle, make_participation):
        cycle = make_cycle()
        make_participation(member, cycle)

        assert delete_cycle(db, cycle.id, admin.id)["code"] == "HasParticipants"
        assert db.query(ContributionCycle).count() == 1

    def test_lifecycle_requires_admin(self, db, member, make_cycle):
        cycle = make_cycle()

        assert close_cycle(db, cycle.id, member.id)["kind"] == "Unauthorized"
        assert cancel_cycle(db, cycle.id, member.id)["kind"] == "Unauthorized"
        db.refresh(cycle)
        assert cycle.status == CycleStatus.ACTIVE


class TestCycleQueries:
    def test_details_and_rollups(self, db, admin, member, make_user, make_cycle, make_participation):
        cycle = make_cycle()
        participation = make_participation(member, cycle)
        make_participation(make_user(full_name="Second"), cycle)
        generate_cycle_payments(db, cycle.id, admin.id)
        pick_number(db, participation.id, member.id, 2)

        details = get_cycle_details(db, cycle.id)

        assert details["participant_count"] == 2
        assert details["available_slots"] == 18
        assert details["numbers_picked"] == 1
        assert details["total_payments"] == 24
        assert details["cycle_duration"] == 12
        assert details["participants"][0]["picked_number"] == 2
        assert details["participants"][0]["overdue_payments"] >= 2

        assert [c["id"] for c in get_all_cycles_with_details(db)] == [str(cycle.id)]
        assert get_active_cycle(db)["id"] == str(cycle.id)

    def test_unknown_cycle(self, db):
        import uuid

        assert get_cycle_details(db, uuid.uuid4()) is None
