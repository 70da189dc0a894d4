from sqlalchemy import Column, String, ForeignKey, DateTime, Date, Integer, Boolean, Enum as SQLEnum, Text, UniqueConstraint, Index, Uuid, text, func
from sqlalchemy.orm import relationship
import uuid
from esusu.db.base import Base
import enum


class PaymentStatus(str, enum.Enum):
    """Monthly contribution status. "Overdue" is derived, never stored."""
    PENDING = "pending"
    PAID = "paid"
    WAIVED = "waived"


class PayoutStatus(str, enum.Enum):
    """Payout status."""
    PENDING = "pending"
    PAID = "paid"
    WAIVED = "waived"


class OptOutStatus(str, enum.Enum):
    """Opt-out request status."""
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"


class Payment(Base):
    """One scheduled monthly contribution of a participation."""
    __tablename__ = "payment"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    participation_id = Column(Uuid(as_uuid=True), ForeignKey("participation.id"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("user.id"), nullable=False, index=True)
    cycle_id = Column(Uuid(as_uuid=True), ForeignKey("contribution_cycle.id"), nullable=False, index=True)
    month_number = Column(Integer, nullable=False)
    amount = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    status = Column(SQLEnum(PaymentStatus, native_enum=False, values_callable=lambda obj: [e.value for e in obj]), default=PaymentStatus.PENDING, nullable=False, index=True)
    paid_amount = Column(Integer, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    has_fine = Column(Boolean, default=False, nullable=False)
    fine_amount = Column(Integer, default=0, nullable=False)
    fine_paid = Column(Boolean, default=False, nullable=False)
    proof_of_payment = Column(String(500), nullable=True)  # Opaque URI, never inspected
    proof_uploaded_at = Column(DateTime, nullable=True)
    verified_by = Column(Uuid(as_uuid=True), ForeignKey("user.id"), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

    # Relationships
    participation = relationship("Participation", back_populates="payments")
    user = relationship("User", back_populates="payments", foreign_keys=[user_id])
    cycle = relationship("ContributionCycle", back_populates="payments")

    __table_args__ = (
        UniqueConstraint("participation_id", "month_number", name="uq_payment_participation_month"),
    )


class Payout(Base):
    """Lump-sum disbursement owed to a participant in their picked month."""
    __tablename__ = "payout"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    participation_id = Column(Uuid(as_uuid=True), ForeignKey("participation.id"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("user.id"), nullable=False, index=True)
    cycle_id = Column(Uuid(as_uuid=True), ForeignKey("contribution_cycle.id"), nullable=False, index=True)
    scheduled_month = Column(Integer, nullable=False)
    scheduled_date = Column(Date, nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    status = Column(SQLEnum(PayoutStatus, native_enum=False, values_callable=lambda obj: [e.value for e in obj]), default=PayoutStatus.PENDING, nullable=False, index=True)
    paid_at = Column(DateTime, nullable=True)
    transfer_reference = Column(String(100), nullable=True)
    processed_by = Column(Uuid(as_uuid=True), ForeignKey("user.id"), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))

    # Relationships
    participation = relationship("Participation", back_populates="payouts")
    user = relationship("User", back_populates="payouts", foreign_keys=[user_id])
    cycle = relationship("ContributionCycle", back_populates="payouts")

    __table_args__ = (
        # At most one live (non-waived) payout per participation
        Index(
            "uq_payout_live_participation",
            "participation_id",
            unique=True,
            postgresql_where=text("status <> 'waived'"),
            sqlite_where=text("status <> 'waived'"),
        ),
    )


class OptOutRequest(Base):
    """Member request to leave a cycle early. Figures are frozen at submission."""
    __tablename__ = "opt_out_request"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("user.id"), nullable=False, index=True)
    cycle_id = Column(Uuid(as_uuid=True), ForeignKey("contribution_cycle.id"), nullable=False, index=True)
    reason = Column(Text, nullable=False)
    total_paid = Column(Integer, nullable=False, default=0)
    penalty_amount = Column(Integer, nullable=False, default=0)
    refund_amount = Column(Integer, nullable=False, default=0)
    status = Column(SQLEnum(OptOutStatus, native_enum=False, values_callable=lambda obj: [e.value for e in obj]), default=OptOutStatus.PENDING_APPROVAL, nullable=False, index=True)
    requested_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    reviewed_at = Column(DateTime, nullable=True)
    reviewed_by = Column(Uuid(as_uuid=True), ForeignKey("user.id"), nullable=True)
    review_notes = Column(Text, nullable=True)

    # Relationships
    user = relationship("User", back_populates="opt_out_requests", foreign_keys=[user_id])
    cycle = relationship("ContributionCycle")

    __table_args__ = (
        Index(
            "uq_opt_out_pending_user_cycle",
            "user_id",
            "cycle_id",
            unique=True,
            postgresql_where=text("status = 'pending_approval'"),
            sqlite_where=text("status = 'pending_approval'"),
        ),
    )
