from sqlalchemy import Column, ForeignKey, DateTime, Integer, Boolean, Uuid, text, func
from sqlalchemy.orm import relationship
import uuid
from esusu.db.base import Base


class SystemSettings(Base):
    """Single-row system configuration, read fresh by every operation that needs it."""
    __tablename__ = "system_settings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    opt_out_penalty_percent = Column(Integer, nullable=False, default=10)
    updated_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"), onupdate=func.now())
    updated_by = Column(Uuid(as_uuid=True), ForeignKey("user.id"), nullable=True)


class NumberSettings(Base):
    """Pool size of the standalone number-picking game."""
    __tablename__ = "number_settings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    total_numbers = Column(Integer, nullable=False, default=20)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())


class NumberPick(Base):
    """Pick in the standalone pool: one per user, one user per number."""
    __tablename__ = "number_pick"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("user.id"), nullable=False, unique=True, index=True)
    number = Column(Integer, nullable=False, unique=True, index=True)
    created_at = Column(DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP"))

    user = relationship("User")
