import logging
import re
from datetime import timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from esusu.core.config import settings
from esusu.core.errors import NotFound, Conflict, ValidationFailed
from esusu.core.security import verify_password, get_password_hash, create_access_token
from esusu.models.cycle import CycleStatus
from esusu.models.user import User, UserStatus
from esusu.services.actions import action, read_action
from esusu.services.serializers import serialize_user, serialize_bank_details

logger = logging.getLogger(__name__)

PHONE_RE = re.compile(r"^(\+234|0)[789][01]\d{8}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6
BLOCKED_STATUSES = (UserStatus.SUSPENDED, UserStatus.DELETED)


def _clean(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def _validate_email(db: Session, email: Optional[str], user_id: Optional[UUID] = None):
    if not email:
        return
    if not EMAIL_RE.match(email):
        raise ValidationFailed("Please enter a valid email address")
    query = db.query(User).filter(User.email == email)
    if user_id:
        query = query.filter(User.id != user_id)
    if query.first():
        raise Conflict("Email is already registered to another account")


@action
def register_user(
    db: Session,
    full_name: str,
    phone: str,
    password: str,
    email: Optional[str] = None,
    occupation: Optional[str] = None,
    address: Optional[str] = None
) -> dict:
    full_name = _clean(full_name)
    phone = _clean(phone)
    email = _clean(email)

    if not full_name:
        raise ValidationFailed("Full name is required")
    if not phone or not PHONE_RE.match(phone):
        raise ValidationFailed("Please enter a valid Nigerian phone number")
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    if db.query(User).filter(User.phone == phone).first():
        logger.warning("Registration attempt with existing phone: %s", phone)
        raise Conflict("Phone number is already registered")
    _validate_email(db, email)

    user = User(
        full_name=full_name,
        phone=phone,
        email=email,
        password_hash=get_password_hash(password),
        occupation=_clean(occupation),
        address=_clean(address),
        status=UserStatus.ACTIVE,
    )
    db.add(user)
    try:
        db.flush()
    except IntegrityError:
        raise Conflict("Phone number or email is already registered")

    db.commit()
    db.refresh(user)

    logger.info("User registered: %s", user.id)
    return {"message": "Registration successful", "user": serialize_user(user)}


def authenticate_user(db: Session, phone: str, password: str) -> Optional[User]:
    """Return the user for valid credentials. Suspended and deleted accounts cannot log in."""
    user = db.query(User).filter(User.phone == (phone or "").strip()).first()
    if not user:
        logger.debug("User not found: %s", phone)
        return None

    if not verify_password(password, user.password_hash):
        logger.debug("Password verification failed for user: %s", phone)
        return None

    if user.status in BLOCKED_STATUSES:
        logger.info("Login refused for %s account: %s", user.status.value, phone)
        return None

    return user


def create_access_token_for_user(user: User) -> str:
    access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return create_access_token(
        data={"sub": str(user.id)},
        expires_delta=access_token_expires
    )


@action
def change_password(db: Session, user_id: UUID, current_password: str, new_password: str) -> dict:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound("User not found")
    if not verify_password(current_password, user.password_hash):
        raise ValidationFailed("Current password is incorrect")
    if not new_password or len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    user.password_hash = get_password_hash(new_password)
    db.commit()
    return {"message": "Password changed successfully"}


@action
def update_profile(
    db: Session,
    user_id: UUID,
    full_name: str,
    email: Optional[str] = None,
    occupation: Optional[str] = None,
    address: Optional[str] = None
) -> dict:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound("User not found")

    full_name = _clean(full_name)
    email = _clean(email)
    if not full_name:
        raise ValidationFailed("Full name is required")
    _validate_email(db, email, user_id=user.id)

    user.full_name = full_name
    user.email = email
    user.occupation = _clean(occupation)
    user.address = _clean(address)
    db.commit()
    db.refresh(user)
    return {"message": "Profile updated successfully", "user": serialize_user(user)}


@read_action(lambda: None)
def get_user_profile(db: Session, user_id: UUID) -> Optional[dict]:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        return None

    active = next(
        (p for p in user.participations if p.cycle.status == CycleStatus.ACTIVE and not p.has_opted_out),
        None
    )
    return {
        "user": serialize_user(user),
        "active_participation": {
            "id": str(active.id),
            "cycle_id": str(active.cycle_id),
            "cycle_name": active.cycle.name,
            "contribution_mode": active.contribution_mode.value,
            "picked_number": active.picked_number,
            "bank_details": serialize_bank_details(active.bank_details),
        } if active else None,
        "participation_history": [
            {
                "id": str(p.id),
                "cycle_name": p.cycle.name,
                "cycle_status": p.cycle.status.value,
                "contribution_mode": p.contribution_mode.value,
                "has_opted_out": p.has_opted_out,
                "registered_at": p.registered_at.isoformat() if p.registered_at else None,
            }
            for p in user.participations
        ],
    }
