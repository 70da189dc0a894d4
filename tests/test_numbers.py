from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from esusu.models import Payout, PayoutStatus, NumberPick, CycleStatus
from esusu.services.numbers import (
    pick_number,
    get_taken_numbers,
    get_user_pick,
    get_picking_status,
    pick_pool_number,
    get_pool_stats,
    get_pool_settings,
    get_all_pool_picks,
    update_total_numbers,
    reset_game,
)


class TestPickNumber:
    def test_pick_schedules_payout(self, db, member, make_cycle, make_participation):
        cycle = make_cycle()
        participation = make_participation(member, cycle)

        result = pick_number(db, participation.id, member.id, 5)

        assert result["success"] is True
        assert result["participation"]["picked_number"] == 5
        payout = db.query(Payout).filter(Payout.participation_id == participation.id).one()
        assert payout.scheduled_month == 5
        assert payout.scheduled_date == cycle.start_date + relativedelta(months=4)
        assert payout.amount == 500000
        assert payout.status == PayoutStatus.PENDING

    def test_same_number_twice_is_taken(self, db, make_user, make_cycle, make_participation):
        cycle = make_cycle()
        first = make_user(full_name="First")
        second = make_user(full_name="Second")
        p1 = make_participation(first, cycle)
        p2 = make_participation(second, cycle)

        assert pick_number(db, p1.id, first.id, 5)["success"] is True
        result = pick_number(db, p2.id, second.id, 5)

        assert result["success"] is False
        assert result["code"] == "NumberTaken"
        db.refresh(p2)
        assert p2.picked_number is None
        assert db.query(Payout).count() == 1

    def test_already_picked(self, db, member, make_cycle, make_participation):
        participation = make_participation(member, make_cycle())
        pick_number(db, participation.id, member.id, 3)

        result = pick_number(db, participation.id, member.id, 4)

        assert result["code"] == "AlreadyPicked"
        db.refresh(participation)
        assert participation.picked_number == 3

    def test_out_of_range(self, db, member, make_cycle, make_participation):
        participation = make_participation(member, make_cycle(total_slots=10))

        result = pick_number(db, participation.id, member.id, 11)

        assert result["code"] == "OutOfRange"
        assert result["kind"] == "Validation"
        assert result["error"] == "Please pick a number between 1 and 10"

    def test_zero_is_out_of_range(self, db, member, make_cycle, make_participation):
        participation = make_participation(member, make_cycle())

        assert pick_number(db, participation.id, member.id, 0)["code"] == "OutOfRange"

    def test_picking_not_open(self, db, member, make_cycle, make_participation):
        cycle = make_cycle(number_picking_start_date=datetime.utcnow() + timedelta(days=2))
        participation = make_participation(member, cycle)

        result = pick_number(db, participation.id, member.id, 1)

        assert result["code"] == "PickingNotOpen"

    def test_other_users_participation(self, db, member, make_user, make_cycle, make_participation):
        participation = make_participation(member, make_cycle())
        intruder = make_user(full_name="Intruder")

        result = pick_number(db, participation.id, intruder.id, 1)

        assert result["kind"] == "Unauthorized"

    def test_opted_out_member_cannot_pick(self, db, member, make_cycle, make_participation):
        participation = make_participation(member, make_cycle())
        participation.has_opted_out = True
        db.commit()

        result = pick_number(db, participation.id, member.id, 1)

        assert result["kind"] == "PreconditionFailed"

    def test_cancelled_cycle(self, db, member, make_cycle, make_participation):
        participation = make_participation(member, make_cycle(status=CycleStatus.CANCELLED))

        result = pick_number(db, participation.id, member.id, 1)

        assert result["kind"] == "PreconditionFailed"


class TestPickingQueries:
    def test_taken_numbers_and_status(self, db, make_user, make_cycle, make_participation):
        cycle = make_cycle()
        user = make_user()
        make_participation(user, cycle, picked_number=7)
        make_participation(make_user(), cycle, picked_number=2)
        make_participation(make_user(), cycle)

        assert get_taken_numbers(db, cycle.id) == [2, 7]
        assert get_user_pick(db, user.id, cycle.id) == 7

        status = get_picking_status(db, cycle.id)
        assert status["can_pick_numbers"] is True
        assert status["taken_count"] == 2
        assert status["available_count"] == 18

    def test_status_before_window(self, db, make_cycle):
        cycle = make_cycle(number_picking_start_date=datetime.utcnow() + timedelta(hours=1))

        assert get_picking_status(db, cycle.id)["can_pick_numbers"] is False


class TestNumberPool:
    def test_pick_and_stats(self, db, member):
        result = pick_pool_number(db, member.id, 4)

        assert result["success"] is True
        stats = get_pool_stats(db)
        assert stats["total_numbers"] == 20
        assert stats["picked_count"] == 1
        assert stats["available_count"] == 19
        assert stats["taken_numbers"] == [4]
        assert get_all_pool_picks(db)[0]["full_name"] == member.full_name

    def test_one_pick_per_user(self, db, member):
        pick_pool_number(db, member.id, 4)

        assert pick_pool_number(db, member.id, 5)["code"] == "AlreadyPicked"

    def test_number_taken(self, db, member, make_user):
        pick_pool_number(db, member.id, 4)
        other = make_user(full_name="Other")

        assert pick_pool_number(db, other.id, 4)["code"] == "NumberTaken"

    def test_out_of_range(self, db, member):
        assert pick_pool_number(db, member.id, 21)["code"] == "OutOfRange"
        assert db.query(NumberPick).count() == 0

    def test_resize_bounds(self, db, admin):
        assert update_total_numbers(db, admin.id, 5)["kind"] == "Validation"
        assert update_total_numbers(db, admin.id, 101)["kind"] == "Validation"

        result = update_total_numbers(db, admin.id, 30)

        assert result["success"] is True
        assert get_pool_settings(db)["total_numbers"] == 30

    def test_resize_below_highest_pick(self, db, admin, member):
        pick_pool_number(db, member.id, 15)

        result = update_total_numbers(db, admin.id, 12)

        assert result["code"] == "SlotsBelowPicked"
        assert get_pool_settings(db)["total_numbers"] == 20

    def test_resize_requires_admin(self, db, member):
        assert update_total_numbers(db, member.id, 30)["kind"] == "Unauthorized"

    def test_reset_clears_picks(self, db, admin, member, make_user):
        pick_pool_number(db, member.id, 1)
        pick_pool_number(db, make_user().id, 2)

        result = reset_game(db, admin.id)

        assert result["cleared"] == 2
        assert db.query(NumberPick).count() == 0

    def test_reset_requires_admin(self, db, member):
        pick_pool_number(db, member.id, 1)

        assert reset_game(db, member.id)["kind"] == "Unauthorized"
        assert db.query(NumberPick).count() == 1
