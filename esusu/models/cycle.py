from sqlalchemy import Column, String, ForeignKey, DateTime, Date, Enum as SQLEnum, Boolean, UniqueConstraint, Integer, CheckConstraint, Uuid, text, func
from sqlalchemy.orm import relationship
import uuid
from esusu.db.base import Base
import enum


class CycleStatus(str, enum.Enum):
    """Contribution cycle status."""
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ContributionMode(str, enum.Enum):
    """Package tier chosen when joining a cycle."""
    PACK_20K = "PACK_20K"
    PACK_50K = "PACK_50K"
    PACK_100K = "PACK_100K"


class ContributionCycle(Base):
    """Fixed-duration contribution round with a slot capacity."""
    __tablename__ = "contribution_cycle"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    registration_deadline = Column(DateTime, nullable=False)
    number_picking_start_date = Column(DateTime, nullable=True)
    status = Column(SQLEnum(CycleStatus, native_enum=False, values_callable=lambda obj: [e.value for e in obj]), default=CycleStatus.UPCOMING, nullable=False, index=True)
    total_slots = Column(Integer, nullable=False, default=20)
    payment_deadline_day = Column(Integer, nullable=False, default=28)
    created_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    created_by = Column(Uuid(as_uuid=True), ForeignKey("user.id"), nullable=True)

    # Relationships
    participations = relationship("Participation", back_populates="cycle")
    payments = relationship("Payment", back_populates="cycle")
    payouts = relationship("Payout", back_populates="cycle")

    __table_args__ = (
        CheckConstraint("total_slots BETWEEN 10 AND 100", name="ck_cycle_total_slots"),
        CheckConstraint("payment_deadline_day BETWEEN 1 AND 31", name="ck_cycle_payment_deadline_day"),
    )


class Participation(Base):
    """A user's enrollment in one cycle, with package amounts frozen at join time."""
    __tablename__ = "participation"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("user.id"), nullable=False, index=True)
    cycle_id = Column(Uuid(as_uuid=True), ForeignKey("contribution_cycle.id"), nullable=False, index=True)
    contribution_mode = Column(SQLEnum(ContributionMode, native_enum=False, values_callable=lambda obj: [e.value for e in obj]), nullable=False)
    monthly_amount = Column(Integer, nullable=False)
    total_payout = Column(Integer, nullable=False)
    fine_amount = Column(Integer, nullable=False)
    picked_number = Column(Integer, nullable=True)
    has_opted_out = Column(Boolean, default=False, nullable=False)
    registered_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))

    # Relationships
    user = relationship("User", back_populates="participations")
    cycle = relationship("ContributionCycle", back_populates="participations")
    bank_details = relationship("BankDetails", back_populates="participation", uselist=False, cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="participation", order_by="Payment.month_number", cascade="all, delete-orphan")
    payouts = relationship("Payout", back_populates="participation", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("user_id", "cycle_id", name="uq_participation_user_cycle"),
        # NULLs are distinct, so only picked numbers collide
        UniqueConstraint("cycle_id", "picked_number", name="uq_participation_cycle_number"),
    )


class BankDetails(Base):
    """Account a payout is transferred to."""
    __tablename__ = "bank_details"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    participation_id = Column(Uuid(as_uuid=True), ForeignKey("participation.id"), nullable=False, unique=True, index=True)
    bank_name = Column(String(100), nullable=False)
    account_number = Column(String(10), nullable=False)
    account_name = Column(String(150), nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

    participation = relationship("Participation", back_populates="bank_details")
