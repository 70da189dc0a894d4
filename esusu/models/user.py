from sqlalchemy import Column, String, Boolean, Text, DateTime, Enum as SQLEnum, Uuid, text
from sqlalchemy.orm import relationship
import uuid
from esusu.db.base import Base
import enum


class UserStatus(str, enum.Enum):
    """Account status. Accounts are never hard-deleted."""
    ACTIVE = "active"
    SUSPENDED = "suspended"
    OPTED_OUT = "opted_out"
    DELETED = "deleted"


class User(Base):
    """Registered member or administrator."""
    __tablename__ = "user"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    full_name = Column(String(150), nullable=False)
    phone = Column(String(20), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=True, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    occupation = Column(String(100), nullable=True)
    address = Column(Text, nullable=True)
    is_admin = Column(Boolean, default=False, nullable=False)
    status = Column(SQLEnum(UserStatus, native_enum=False, values_callable=lambda obj: [e.value for e in obj]), default=UserStatus.ACTIVE, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))

    # Relationships
    participations = relationship("Participation", back_populates="user", order_by="desc(Participation.registered_at)")
    payments = relationship("Payment", back_populates="user", foreign_keys="[Payment.user_id]")
    payouts = relationship("Payout", back_populates="user", foreign_keys="[Payout.user_id]")
    opt_out_requests = relationship("OptOutRequest", back_populates="user", foreign_keys="[OptOutRequest.user_id]", order_by="desc(OptOutRequest.requested_at)")
