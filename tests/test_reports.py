from datetime import date, datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from esusu.core.errors import NotFound
from esusu.models import Payment, PaymentStatus, ContributionMode
from esusu.services.actions import action, read_action, GENERIC_ERROR
from esusu.services.numbers import pick_number
from esusu.services.payment import generate_cycle_payments, mark_payment_as_paid
from esusu.services.payout import process_payout, get_payout_stats
from esusu.services.report import (
    get_admin_dashboard_stats,
    get_recent_activities,
    get_financial_summary,
    get_defaulters_report,
    get_cycle_performance,
    get_monthly_reconciliation,
    get_payment_trends,
    get_member_dashboard,
)


def _first_payment(db, participation):
    return db.query(Payment).filter(
        Payment.participation_id == participation.id,
        Payment.month_number == 1
    ).one()


class TestResultContract:
    def test_service_error_becomes_failure(self, db):
        @action
        def lookup(db):
            raise NotFound("Thing not found", thing_id="abc")

        assert lookup(db) == {
            "success": False,
            "error": "Thing not found",
            "kind": "NotFound",
            "code": "NotFound",
            "thing_id": "abc",
        }

    def test_integrity_error_becomes_conflict(self, db):
        @action
        def racing(db):
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

        result = racing(db)

        assert result["kind"] == "Conflict"
        assert result["success"] is False

    def test_unexpected_error_is_generic(self, db, monkeypatch):
        rolled_back = []
        monkeypatch.setattr(db, "rollback", lambda: rolled_back.append(True))

        @action
        def broken(db):
            raise RuntimeError("connection reset")

        result = broken(db)

        assert result == {"success": False, "error": GENERIC_ERROR, "kind": "Unexpected", "code": "Unexpected"}
        assert rolled_back == [True]

    def test_success_payload(self, db):
        @action
        def ok(db: Session):
            return {"message": "done", "value": 1}

        assert ok(db) == {"success": True, "message": "done", "value": 1}

    def test_read_degrades_to_default(self, db, monkeypatch):
        def fail(*args, **kwargs):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(db, "query", fail)

        assert get_payout_stats(db)["total_payouts"] == 0
        assert get_defaulters_report(db) == []
        assert get_admin_dashboard_stats(db)["users"]["total"] == 0

    def test_read_default_factory(self, db):
        @read_action(lambda: {"items": []})
        def listing(db):
            raise ValueError("bad row")

        assert listing(db) == {"items": []}


class TestAdminReports:
    def test_dashboard_and_financial_summary(self, db, admin, member, make_cycle, make_participation):
        cycle = make_cycle()
        participation = make_participation(member, cycle)
        generate_cycle_payments(db, cycle.id, admin.id)
        mark_payment_as_paid(db, _first_payment(db, participation).id, member.id)
        pick_number(db, participation.id, member.id, 1)
        payout_id = participation.payouts[0].id
        process_payout(db, payout_id, admin.id, "TRF-1")

        stats = get_admin_dashboard_stats(db)
        assert stats["users"]["total"] == 2
        assert stats["cycles"]["active"] == 1
        assert stats["payments"]["pending"] == 11
        assert stats["financial"]["total_collected"] == 52500
        assert stats["financial"]["fines_collected"] == 2500

        summary = get_financial_summary(db, cycle.id)
        assert summary["collections"]["total"] == 52500
        assert summary["collections"]["fines"] == 2500
        assert summary["collections"]["pending"] == 11 * 50000
        assert summary["payouts"]["completed"] == {"amount": 500000, "count": 1}
        assert summary["net_balance"] == 52500 - 500000

        activity = get_recent_activities(db)
        assert activity["recent_payments"][0]["amount"] == 52500
        assert activity["recent_registrations"][0]["user_name"] == member.full_name

    def test_defaulters_sorted_by_amount_owed(self, db, admin, make_user, make_cycle, make_participation):
        cycle = make_cycle()
        small = make_user(full_name="Small Debtor")
        large = make_user(full_name="Large Debtor")
        make_participation(small, cycle, mode=ContributionMode.PACK_20K)
        make_participation(large, cycle, mode=ContributionMode.PACK_100K)
        generate_cycle_payments(db, cycle.id, admin.id)

        report = get_defaulters_report(db)

        assert [d["full_name"] for d in report] == ["Large Debtor", "Small Debtor"]
        months = len(report[0]["overdue_payments"])
        assert months >= 2
        assert report[0]["total_overdue"] == months * (100000 + 5000)
        assert report[0]["total_fines"] == months * 5000
        assert report[1]["overdue_payments"][0]["fine_amount"] == 2000

    def test_cycle_performance(self, db, admin, member, make_user, make_cycle, make_participation):
        cycle = make_cycle()
        participation = make_participation(member, cycle)
        gone = make_participation(make_user(), cycle, mode=ContributionMode.PACK_20K)
        gone.has_opted_out = True
        db.commit()
        generate_cycle_payments(db, cycle.id, admin.id)
        payment = _first_payment(db, participation)
        payment.status = PaymentStatus.PAID
        payment.paid_amount = 60000
        db.commit()

        [row] = get_cycle_performance(db)

        assert row["participants"]["total"] == 2
        assert row["participants"]["occupancy_rate"] == 10
        assert row["collections"]["expected"] == 50000 * 12
        assert row["collections"]["total"] == 60000
        assert row["collections"]["collection_rate"] == 10

    def test_monthly_reconciliation(self, db, admin, member, make_cycle, make_participation):
        cycle = make_cycle()
        participation = make_participation(member, cycle)
        generate_cycle_payments(db, cycle.id, admin.id)
        mark_payment_as_paid(db, _first_payment(db, participation).id, member.id)
        now = datetime.utcnow()

        report = get_monthly_reconciliation(db, now.month, now.year)

        assert report["payments"]["count"] == 1
        assert report["summary"]["total_received"] == 52500
        assert report["summary"]["fines_collected"] == 2500
        assert report["summary"]["net_cash_flow"] == 52500

        assert get_monthly_reconciliation(db, 13, now.year)["payments"]["count"] == 0

    def test_payment_trends(self, db, admin, member, make_cycle, make_participation):
        cycle = make_cycle()
        participation = make_participation(member, cycle)
        generate_cycle_payments(db, cycle.id, admin.id)
        mark_payment_as_paid(db, _first_payment(db, participation).id, member.id)

        trends = get_payment_trends(db, 3)

        assert len(trends) == 3
        assert trends[-1]["amount"] == 52500
        assert trends[-1]["count"] == 1
        assert trends[0]["amount"] == 0


class TestMemberDashboard:
    def test_active_member(self, db, admin, member, make_cycle, make_participation):
        cycle = make_cycle()
        participation = make_participation(member, cycle)
        generate_cycle_payments(db, cycle.id, admin.id)
        pick_number(db, participation.id, member.id, 4)

        dashboard = get_member_dashboard(db, member.id)

        active = dashboard["active_participation"]
        assert active["picked_number"] == 4
        assert active["payout_status"] == "pending"
        assert dashboard["stats"]["pending_payments"] == 12
        assert dashboard["stats"]["overdue_payments"] >= 2
        assert dashboard["stats"]["expected_payout"] == 500000
        assert dashboard["recent_payments"][0]["due_date"] < date.today().isoformat()

    def test_member_without_cycle(self, db, member):
        dashboard = get_member_dashboard(db, member.id)

        assert dashboard["active_participation"] is None
        assert dashboard["stats"]["expected_payout"] == 0
