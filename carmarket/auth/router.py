import uuid
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import Profile, Dealership
from ..schemas.auth import (
    SignupRequest,
    LoginRequest,
    TokenResponse,
    RefreshRequest,
    MeResponse,
    ProfileUpdate,
    ChangePasswordRequest,
)
from .security import (
    get_password_hash,
    verify_password,
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_user,
)


router = APIRouter(prefix="/auth", tags=["auth"])
log = structlog.get_logger(__name__)


def _tokens_for(user: Profile) -> TokenResponse:
    access = create_access_token(str(user.id), role=user.role)
    refresh = create_refresh_token(str(user.id))
    return TokenResponse(access_token=access, refresh_token=refresh)


@router.post("/signup", response_model=TokenResponse)
def signup(req: SignupRequest, db: Session = Depends(get_db)):
    email = req.email.lower()
    if db.query(Profile).filter(Profile.email == email).first():
        raise HTTPException(status_code=409, detail="Email already registered")
    user = Profile(
        email=email,
        password_hash=get_password_hash(req.password),
        full_name=req.full_name,
        phone_number=req.phone_number,
        country_id=req.country_id,
        city_id=req.city_id,
        role="normal_user",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    log.info("user_signed_up", user_id=str(user.id))
    return _tokens_for(user)


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(Profile).filter(Profile.email == req.email.lower()).first()
    if not user or not verify_password(req.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account disabled")
    user.last_login_at = datetime.now(timezone.utc)
    db.commit()
    return _tokens_for(user)


@router.post("/refresh", response_model=TokenResponse)
def refresh(req: RefreshRequest, db: Session = Depends(get_db)):
    payload = decode_token(req.refresh_token)
    if payload.get("type") != "refresh":
        raise HTTPException(status_code=400, detail="Invalid refresh token")
    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid refresh token")
    user = db.query(Profile).filter(Profile.id == user_id).first()
    if user is None or not user.is_active:
        raise HTTPException(status_code=401, detail="User not active")
    return _tokens_for(user)


def _me(db: Session, user: Profile) -> MeResponse:
    latest = (
        db.query(Dealership)
        .filter(Dealership.user_id == user.id)
        .order_by(Dealership.created_at.desc(), Dealership.id.desc())
        .first()
    )
    return MeResponse(
        id=str(user.id),
        email=user.email,
        full_name=user.full_name,
        phone_number=user.phone_number,
        role=user.role,
        country_id=user.country_id,
        city_id=user.city_id,
        has_dealership=latest is not None,
        dealership_status=latest.status if latest else None,
    )


@router.get("/me", response_model=MeResponse)
def me(user: Profile = Depends(get_current_user), db: Session = Depends(get_db)):
    return _me(db, user)


@router.put("/me", response_model=MeResponse)
def update_me(payload: ProfileUpdate, user: Profile = Depends(get_current_user), db: Session = Depends(get_db)):
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(user, field, value)
    db.commit()
    db.refresh(user)
    return _me(db, user)


@router.post("/change-password")
def change_password(payload: ChangePasswordRequest, user: Profile = Depends(get_current_user), db: Session = Depends(get_db)):
    if not verify_password(payload.current_password, user.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    user.password_hash = get_password_hash(payload.new_password)
    db.commit()
    return {"status": "ok"}
