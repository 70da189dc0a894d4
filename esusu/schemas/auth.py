from pydantic import BaseModel, Field
from typing import Optional


class UserRegister(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=150)
    phone: str = Field(..., description="Nigerian phone number, e.g. 08012345678 or +2348012345678")
    password: str = Field(..., description="At least 6 characters")
    email: Optional[str] = None
    occupation: Optional[str] = None
    address: Optional[str] = None


class UserLogin(BaseModel):
    phone: str
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ProfileUpdate(BaseModel):
    full_name: str
    email: Optional[str] = None
    occupation: Optional[str] = None
    address: Optional[str] = None


class PasswordChange(BaseModel):
    current_password: str
    new_password: str
