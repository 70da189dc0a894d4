from esusu.db.base import Base

# Import all models so Alembic can detect them
from esusu.models.user import User, UserStatus
from esusu.models.cycle import (
    ContributionCycle,
    CycleStatus,
    ContributionMode,
    Participation,
    BankDetails,
)
from esusu.models.transaction import (
    Payment,
    PaymentStatus,
    Payout,
    PayoutStatus,
    OptOutRequest,
    OptOutStatus,
)
from esusu.models.system import SystemSettings, NumberSettings, NumberPick

__all__ = [
    "Base",
    "User",
    "UserStatus",
    "ContributionCycle",
    "CycleStatus",
    "ContributionMode",
    "Participation",
    "BankDetails",
    "Payment",
    "PaymentStatus",
    "Payout",
    "PayoutStatus",
    "OptOutRequest",
    "OptOutStatus",
    "SystemSettings",
    "NumberSettings",
    "NumberPick",
]
