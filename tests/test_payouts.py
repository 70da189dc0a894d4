import uuid

from esusu.models import Payout, PayoutStatus
from esusu.services.numbers import pick_number
from esusu.services.payout import (
    process_payout,
    batch_process_payouts,
    get_all_payouts,
    get_payout_stats,
    get_upcoming_payouts,
    get_user_payout_info,
    get_payout_timeline,
    get_payout_details,
)


def _picked(db, user, participation, number):
    result = pick_number(db, participation.id, user.id, number)
    assert result["success"] is True
    return db.query(Payout).filter(Payout.participation_id == participation.id).one()


class TestProcessPayout:
    def test_records_transfer(self, db, admin, member, make_cycle, make_participation):
        participation = make_participation(member, make_cycle())
        payout = _picked(db, member, participation, 1)

        result = process_payout(db, payout.id, admin.id, "TRF-001", "Sent via GTBank")

        assert result["success"] is True
        db.refresh(payout)
        assert payout.status == PayoutStatus.PAID
        assert payout.transfer_reference == "TRF-001"
        assert payout.processed_by == admin.id
        assert payout.paid_at is not None

    def test_missing_bank_details(self, db, admin, member, make_cycle, make_participation):
        participation = make_participation(member, make_cycle(), with_bank=False)
        payout = _picked(db, member, participation, 2)

        result = process_payout(db, payout.id, admin.id, "TRF-002")

        assert result["success"] is False
        assert result["code"] == "MissingBankDetails"
        db.refresh(payout)
        assert payout.status == PayoutStatus.PENDING

    def test_processed_twice(self, db, admin, member, make_cycle, make_participation):
        participation = make_participation(member, make_cycle())
        payout = _picked(db, member, participation, 1)
        process_payout(db, payout.id, admin.id, "TRF-001")

        result = process_payout(db, payout.id, admin.id, "TRF-009")

        assert result["code"] == "NotPending"
        db.refresh(payout)
        assert payout.transfer_reference == "TRF-001"

    def test_reference_required(self, db, admin, member, make_cycle, make_participation):
        participation = make_participation(member, make_cycle())
        payout = _picked(db, member, participation, 1)

        assert process_payout(db, payout.id, admin.id, "   ")["kind"] == "Validation"

    def test_unknown_payout(self, db, admin):
        assert process_payout(db, uuid.uuid4(), admin.id, "TRF")["kind"] == "NotFound"

    def test_requires_admin(self, db, member, make_cycle, make_participation):
        participation = make_participation(member, make_cycle())
        payout = _picked(db, member, participation, 1)

        assert process_payout(db, payout.id, member.id, "TRF")["kind"] == "Unauthorized"


class TestBatchPayouts:
    def test_failures_do_not_undo_successes(self, db, admin, make_user, make_cycle, make_participation):
        cycle = make_cycle()
        good_user = make_user(full_name="Good")
        bad_user = make_user(full_name="No Bank")
        good = _picked(db, good_user, make_participation(good_user, cycle), 1)
        bad = _picked(db, bad_user, make_participation(bad_user, cycle, with_bank=False), 2)

        result = batch_process_payouts(db, [bad.id, good.id], admin.id, "BATCH")

        assert result["success"] is True
        assert result["successful"] == 1
        assert result["failed"] == 1
        assert result["results"][0]["code"] == "MissingBankDetails"
        assert result["results"][1]["transfer_reference"] == "BATCH-2"
        db.refresh(good)
        db.refresh(bad)
        assert good.status == PayoutStatus.PAID
        assert good.transfer_reference == "BATCH-2"
        assert bad.status == PayoutStatus.PENDING

    def test_empty_selection(self, db, admin):
        assert batch_process_payouts(db, [], admin.id, "BATCH")["kind"] == "Validation"


class TestPayoutQueries:
    def test_overdue_first_and_stats(self, db, admin, make_user, make_cycle, make_participation):
        cycle = make_cycle()
        later_user = make_user(full_name="Later")
        early_user = make_user(full_name="Early")
        _picked(db, later_user, make_participation(later_user, cycle), 10)
        _picked(db, early_user, make_participation(early_user, cycle), 1)

        payouts = get_all_payouts(db)

        assert [p["scheduled_month"] for p in payouts] == [1, 10]
        assert payouts[0]["is_overdue"] is True
        assert payouts[1]["is_overdue"] is False
        assert payouts[0]["bank_details"]["bank_name"] == "First Bank"
        assert len(get_all_payouts(db, "overdue")) == 1

        stats = get_payout_stats(db)
        assert stats["pending_count"] == 2
        assert stats["overdue_count"] == 1
        assert stats["pending_amount"] == 1000000

    def test_upcoming_window(self, db, make_user, make_cycle, make_participation):
        cycle = make_cycle()
        user = make_user()
        _picked(db, user, make_participation(user, cycle), 12)

        assert get_upcoming_payouts(db, 30) == []
        assert len(get_upcoming_payouts(db, 400)) == 1

    def test_user_payout_info(self, db, member, make_cycle, make_participation):
        participation = make_participation(member, make_cycle())
        assert get_user_payout_info(db, member.id)["has_picked"] is False

        _picked(db, member, participation, 10)

        info = get_user_payout_info(db, member.id)
        assert info["has_picked"] is True
        assert info["payout"]["scheduled_month"] == 10
        assert info["days_until_payout"] > 0

    def test_timeline_marks_slots(self, db, member, make_user, make_cycle, make_participation):
        cycle = make_cycle()
        other = make_user(full_name="Other")
        _picked(db, member, make_participation(member, cycle), 4)
        _picked(db, other, make_participation(other, cycle), 9)

        data = get_payout_timeline(db, member.id)

        timeline = data["timeline"]
        assert len(timeline) == 20
        assert data["current_month"] == 3
        assert timeline[3]["is_user_slot"] is True
        assert timeline[8]["is_taken"] is True
        assert timeline[8]["is_user_slot"] is False
        assert timeline[2]["is_current"] is True
        assert timeline[0]["is_past"] is True
        assert timeline[5]["is_taken"] is False

    def test_details_visibility(self, db, admin, member, make_user, make_cycle, make_participation):
        payout = _picked(db, member, make_participation(member, make_cycle()), 1)
        stranger = make_user(full_name="Stranger")

        assert get_payout_details(db, payout.id, member.id)["id"] == str(payout.id)
        assert get_payout_details(db, payout.id, admin.id) is not None
        assert get_payout_details(db, payout.id, stranger.id) is None
