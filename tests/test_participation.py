from datetime import datetime, timedelta

from esusu.models import BankDetails, Participation, CycleStatus, UserStatus
from esusu.services.participation import (
    join_cycle,
    update_bank_details,
    get_available_cycles,
    get_cycle_summary,
    check_user_participation,
    get_current_participation,
)


class TestJoinCycle:
    def test_join_freezes_package_amounts(self, db, member, make_cycle, bank_details):
        cycle = make_cycle()

        result = join_cycle(db, member.id, cycle.id, "PACK_50K", bank_details)

        assert result["success"] is True
        participation = result["participation"]
        assert participation["monthly_amount"] == 50000
        assert participation["total_payout"] == 500000
        assert participation["fine_amount"] == 2500
        assert participation["picked_number"] is None
        assert result["bank_details"]["account_number"] == "0123456789"

    def test_second_join_is_already_registered(self, db, member, make_cycle, bank_details):
        cycle = make_cycle()
        join_cycle(db, member.id, cycle.id, "PACK_50K", bank_details)

        result = join_cycle(db, member.id, cycle.id, "PACK_20K", bank_details)

        assert result["success"] is False
        assert result["code"] == "AlreadyRegistered"
        assert result["kind"] == "Conflict"
        assert db.query(Participation).filter(Participation.cycle_id == cycle.id).count() == 1

    def test_deadline_passed(self, db, member, make_cycle, bank_details):
        cycle = make_cycle(registration_deadline=datetime.utcnow() - timedelta(days=1))

        result = join_cycle(db, member.id, cycle.id, "PACK_20K", bank_details)

        assert result["code"] == "CycleClosed"
        assert result["error"] == "Registration deadline has passed"

    def test_completed_cycle_is_closed(self, db, member, make_cycle, bank_details):
        cycle = make_cycle(status=CycleStatus.COMPLETED)

        result = join_cycle(db, member.id, cycle.id, "PACK_20K", bank_details)

        assert result["code"] == "CycleClosed"
        assert result["kind"] == "PreconditionFailed"

    def test_full_cycle(self, db, member, make_user, make_cycle, make_participation, bank_details):
        cycle = make_cycle(total_slots=10)
        for i in range(10):
            make_participation(make_user(full_name=f"Member {i}"), cycle)

        result = join_cycle(db, member.id, cycle.id, "PACK_20K", bank_details)

        assert result["code"] == "CycleFull"

    def test_unknown_package(self, db, member, make_cycle, bank_details):
        cycle = make_cycle()

        result = join_cycle(db, member.id, cycle.id, "PACK_1K", bank_details)

        assert result["kind"] == "Validation"
        assert result["error"] == "Invalid contribution mode"

    def test_bad_account_number(self, db, member, make_cycle, bank_details):
        cycle = make_cycle()
        bank_details["account_number"] = "12345"

        result = join_cycle(db, member.id, cycle.id, "PACK_20K", bank_details)

        assert result["kind"] == "Validation"
        assert db.query(Participation).count() == 0

    def test_unknown_cycle(self, db, member, bank_details):
        import uuid

        result = join_cycle(db, member.id, uuid.uuid4(), "PACK_20K", bank_details)

        assert result["kind"] == "NotFound"

    def test_suspended_user_cannot_join(self, db, make_user, make_cycle, bank_details):
        user = make_user(status=UserStatus.SUSPENDED)
        cycle = make_cycle()

        result = join_cycle(db, user.id, cycle.id, "PACK_20K", bank_details)

        assert result["kind"] == "PreconditionFailed"


class TestBankDetails:
    def test_owner_updates_details(self, db, member, make_cycle, make_participation):
        participation = make_participation(member, make_cycle())

        result = update_bank_details(db, participation.id, member.id, {
            "bank_name": "Access Bank",
            "account_number": "9876543210",
            "account_name": "Ada M.",
        })

        assert result["success"] is True
        record = db.query(BankDetails).filter(BankDetails.participation_id == participation.id).one()
        assert record.bank_name == "Access Bank"

    def test_missing_details_are_created(self, db, member, make_cycle, make_participation, bank_details):
        participation = make_participation(member, make_cycle(), with_bank=False)

        result = update_bank_details(db, participation.id, member.id, bank_details)

        assert result["success"] is True
        assert db.query(BankDetails).count() == 1

    def test_other_user_is_refused(self, db, member, make_user, make_cycle, make_participation, bank_details):
        participation = make_participation(member, make_cycle())
        other = make_user(full_name="Someone Else")

        result = update_bank_details(db, participation.id, other.id, bank_details)

        assert result["kind"] == "Unauthorized"


class TestCycleQueries:
    def test_available_cycles_marks_registration(self, db, member, make_cycle, make_participation):
        joined = make_cycle(name="Joined")
        make_cycle(name="Open")
        make_cycle(name="Past deadline", registration_deadline=datetime.utcnow() - timedelta(days=1))
        make_participation(member, joined)

        cycles = get_available_cycles(db, member.id)

        by_name = {c["name"]: c for c in cycles}
        assert set(by_name) == {"Joined", "Open"}
        assert by_name["Joined"]["is_registered"] is True
        assert by_name["Joined"]["available_slots"] == 19
        assert by_name["Open"]["is_registered"] is False

    def test_cycle_summary_counts(self, db, make_user, make_cycle, make_participation):
        from esusu.models import ContributionMode

        cycle = make_cycle()
        make_participation(make_user(), cycle, mode=ContributionMode.PACK_20K, picked_number=3)
        make_participation(make_user(), cycle, mode=ContributionMode.PACK_100K)

        summary = get_cycle_summary(db, cycle.id)

        assert summary["participant_count"] == 2
        assert summary["numbers_picked"] == 1
        assert summary["monthly_collection"] == 120000
        assert summary["participants_by_mode"] == {"PACK_20K": 1, "PACK_100K": 1}

    def test_check_participation(self, db, member, make_cycle, make_participation):
        cycle = make_cycle()
        assert check_user_participation(db, member.id, cycle.id)["is_participating"] is False

        make_participation(member, cycle)

        status = check_user_participation(db, member.id, cycle.id)
        assert status["is_participating"] is True
        assert status["bank_details"]["bank_name"] == "First Bank"

    def test_current_participation_prefers_active(self, db, member, make_cycle, make_participation):
        upcoming = make_cycle(name="Next", status=CycleStatus.UPCOMING)
        active = make_cycle(name="Now")
        make_participation(member, upcoming)
        make_participation(member, active)

        current = get_current_participation(db, member.id)

        assert current.cycle_id == active.id
