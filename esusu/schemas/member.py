from pydantic import BaseModel, Field
from uuid import UUID


class BankDetailsIn(BaseModel):
    bank_name: str
    account_number: str = Field(..., description="Exactly 10 digits")
    account_name: str


class JoinCycle(BaseModel):
    contribution_mode: str = Field(..., description="PACK_20K, PACK_50K or PACK_100K")
    bank_details: BankDetailsIn


class PickNumber(BaseModel):
    number: int


class PaymentProof(BaseModel):
    proof_uri: str = Field(..., description="Reference to the uploaded receipt")


class OptOutSubmit(BaseModel):
    cycle_id: UUID
    reason: str
