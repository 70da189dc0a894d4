from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from uuid import UUID
from datetime import date, datetime

from esusu.services.schedule import to_naive_utc


class CycleCreate(BaseModel):
    """Schema for creating a contribution cycle."""
    name: str = Field(..., min_length=1, max_length=100)
    start_date: date
    end_date: date
    registration_deadline: datetime = Field(..., description="Must fall before start_date")
    number_picking_start_date: Optional[datetime] = None
    total_slots: int = Field(20, description="Between 10 and 100")
    payment_deadline_day: int = Field(28, description="Day of month payments fall due (1-31)")

    @field_validator("registration_deadline", "number_picking_start_date")
    @classmethod
    def to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)


class CycleUpdate(BaseModel):
    """Partial update. Omitted fields keep their current value."""
    name: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    registration_deadline: Optional[datetime] = None
    number_picking_start_date: Optional[datetime] = None
    total_slots: Optional[int] = None
    payment_deadline_day: Optional[int] = None

    @field_validator("registration_deadline", "number_picking_start_date")
    @classmethod
    def to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)


class PaymentVerification(BaseModel):
    approved: bool
    notes: Optional[str] = None


class PayoutProcess(BaseModel):
    transfer_reference: str
    notes: Optional[str] = None


class BatchPayoutProcess(BaseModel):
    payout_ids: List[UUID] = Field(..., min_length=1)
    base_reference: str
    notes: Optional[str] = None


class OptOutReview(BaseModel):
    approved: bool
    notes: Optional[str] = None


class SystemSettingsUpdate(BaseModel):
    opt_out_penalty_percent: int


class PoolSizeUpdate(BaseModel):
    total_numbers: int


class UserAction(BaseModel):
    reason: Optional[str] = None
