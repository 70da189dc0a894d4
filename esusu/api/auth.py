from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from esusu.db.base import get_db
from esusu.schemas.auth import UserRegister, UserLogin, Token, ProfileUpdate, PasswordChange
from esusu.services.auth import (
    register_user,
    authenticate_user,
    create_access_token_for_user,
    change_password,
    update_profile,
    get_user_profile,
)
from esusu.services.serializers import serialize_user
from esusu.core.audit import write_audit_log
from esusu.core.dependencies import get_current_user, get_current_active_user
from esusu.api.responses import respond, found_or_404
from esusu.models.user import User

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _role(user: User) -> str:
    return "admin" if user.is_admin else "member"


@router.post("/register")
def register(user_data: UserRegister, db: Session = Depends(get_db)):
    """Register a new member account."""
    result = register_user(
        db,
        full_name=user_data.full_name,
        phone=user_data.phone,
        password=user_data.password,
        email=user_data.email,
        occupation=user_data.occupation,
        address=user_data.address,
    )
    return respond(result, success_status=status.HTTP_201_CREATED)


@router.post("/login", response_model=Token)
def login(credentials: UserLogin, db: Session = Depends(get_db)):
    """Login and get JWT token."""
    user = authenticate_user(db, credentials.phone, credentials.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect phone number or password"
        )

    access_token = create_access_token_for_user(user)
    write_audit_log(user.full_name, _role(user), "Login", details=f"phone={user.phone}")
    return {"access_token": access_token, "token_type": "bearer"}


@router.post("/logout")
def logout(current_user: User = Depends(get_current_user)):
    """Record logout in audit log (token invalidation is handled client-side)."""
    write_audit_log(current_user.full_name, _role(current_user), "Logout", details=f"phone={current_user.phone}")
    return {"message": "Logged out"}


@router.get("/me")
def me(current_user: User = Depends(get_current_user)):
    return serialize_user(current_user)


@router.get("/profile")
def profile(
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    return found_or_404(get_user_profile(db, current_user.id), "Profile not found")


@router.put("/profile")
def edit_profile(
    profile_data: ProfileUpdate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    return respond(update_profile(
        db,
        current_user.id,
        full_name=profile_data.full_name,
        email=profile_data.email,
        occupation=profile_data.occupation,
        address=profile_data.address,
    ))


@router.post("/change-password")
def edit_password(
    data: PasswordChange,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    return respond(change_password(db, current_user.id, data.current_password, data.new_password))
