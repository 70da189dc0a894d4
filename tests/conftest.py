import os
import tempfile
from datetime import date, datetime, timedelta
from itertools import count

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("AUDIT_LOG_DIR", tempfile.mkdtemp(prefix="esusu-audit-"))

import pytest
from dateutil.relativedelta import relativedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from esusu.core.packages import get_package
from esusu.core.security import get_password_hash
from esusu.db.base import Base
from esusu.models import (
    User,
    UserStatus,
    ContributionCycle,
    CycleStatus,
    ContributionMode,
    Participation,
    BankDetails,
)

PASSWORD = "secret123"
PASSWORD_HASH = get_password_hash(PASSWORD)

_phones = count(1)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    def _make_user(full_name="Ada Member", is_admin=False, status=UserStatus.ACTIVE, email=None):
        user = User(
            full_name=full_name,
            phone=f"0803{next(_phones):07d}",
            email=email,
            password_hash=PASSWORD_HASH,
            is_admin=is_admin,
            status=status,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def admin(make_user):
    return make_user(full_name="Chief Admin", is_admin=True)


@pytest.fixture
def member(make_user):
    return make_user(full_name="Ada Member")


@pytest.fixture
def make_cycle(db):
    """Active cycle that started two months ago, still open for registration."""
    def _make_cycle(**overrides):
        start = date.today().replace(day=1) - relativedelta(months=2)
        values = {
            "name": "Cycle A",
            "start_date": start,
            "end_date": start + relativedelta(months=11),
            "registration_deadline": datetime.utcnow() + timedelta(days=30),
            "number_picking_start_date": None,
            "status": CycleStatus.ACTIVE,
            "total_slots": 20,
            "payment_deadline_day": 28,
        }
        values.update(overrides)
        cycle = ContributionCycle(**values)
        db.add(cycle)
        db.commit()
        db.refresh(cycle)
        return cycle

    return _make_cycle


@pytest.fixture
def make_participation(db):
    def _make_participation(user, cycle, mode=ContributionMode.PACK_50K, picked_number=None, with_bank=True):
        package = get_package(mode)
        participation = Participation(
            user_id=user.id,
            cycle_id=cycle.id,
            contribution_mode=mode,
            monthly_amount=package.monthly_amount,
            total_payout=package.total_payout,
            fine_amount=package.fine_amount,
            picked_number=picked_number,
        )
        db.add(participation)
        db.flush()
        if with_bank:
            db.add(BankDetails(
                participation_id=participation.id,
                bank_name="First Bank",
                account_number="0123456789",
                account_name=user.full_name,
            ))
        db.commit()
        db.refresh(participation)
        return participation

    return _make_participation


@pytest.fixture
def bank_details():
    return {"bank_name": "GTBank", "account_number": "0123456789", "account_name": "Ada Member"}


@pytest.fixture
def client(db):
    from fastapi.testclient import TestClient
    from esusu.db.base import get_db
    from esusu.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    from esusu.services.auth import create_access_token_for_user

    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token_for_user(user)}"}

    return _headers


@pytest.fixture
def password():
    return PASSWORD
