"""
Seed initial data: system settings, number pool settings and a first cycle.
"""
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from datetime import date, datetime, timedelta

from dateutil.relativedelta import relativedelta

from esusu.core.config import settings
from esusu.db.base import SessionLocal
from esusu.models.cycle import ContributionCycle, CycleStatus
from esusu.models.system import SystemSettings, NumberSettings


def seed_system_settings(db):
    print("Seeding system settings...")
    if not db.query(SystemSettings).first():
        db.add(SystemSettings(opt_out_penalty_percent=settings.DEFAULT_OPT_OUT_PENALTY_PERCENT))
    if not db.query(NumberSettings).filter(NumberSettings.is_active == True).first():
        db.add(NumberSettings(total_numbers=settings.DEFAULT_TOTAL_NUMBERS, is_active=True))
    db.commit()
    print("System settings seeded")


def seed_cycle(db, total_slots: int = 20):
    """Create an upcoming cycle starting on the first day of next month."""
    print("Seeding contribution cycle...")
    start = date.today().replace(day=1) + relativedelta(months=1)
    name = f"{start.strftime('%B %Y')} Cycle"

    if db.query(ContributionCycle).filter(ContributionCycle.name == name).first():
        print(f"Cycle '{name}' already exists")
        return

    cycle = ContributionCycle(
        name=name,
        start_date=start,
        end_date=start + relativedelta(months=total_slots) - timedelta(days=1),
        registration_deadline=datetime.combine(start, datetime.min.time()) - timedelta(days=3),
        number_picking_start_date=datetime.combine(start, datetime.min.time()) - timedelta(days=10),
        status=CycleStatus.UPCOMING,
        total_slots=total_slots,
        payment_deadline_day=28,
    )
    db.add(cycle)
    db.commit()
    print(f"Cycle '{name}' seeded ({total_slots} slots)")


if __name__ == "__main__":
    db = SessionLocal()
    try:
        seed_system_settings(db)
        seed_cycle(db)
        print("\nSeed data complete!")
    except Exception as e:
        db.rollback()
        print(f"Error seeding data: {e}")
        raise
    finally:
        db.close()
