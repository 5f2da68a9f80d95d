"""Account endpoints: registration, login, password recovery, profile."""

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, Request, UploadFile
from sqlmodel import Session

from .. import models
from ..auth import get_current_user
from ..config import settings
from ..database import get_session
from ..schemas import (ChangePasswordIn, ForgotPasswordIn, LoginIn, ProfileUpdateIn, RegisterIn,
                       ResetPasswordIn)
from ..services.auth import MAX_AVATAR_BYTES, AuthService, ProfileService
from ..services.common import serialize_user
from ..utils import uploads
from ..utils.rate_limit import enforce_rate_limit

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", status_code=201)
def register(payload: RegisterIn, tasks: BackgroundTasks, db: Session = Depends(get_session)):
    """Create an account and its empty role profile."""
    user = AuthService(db, tasks).register(payload.email, payload.password, payload.name, payload.role)
    return {"message": "User created successfully", "user": serialize_user(user)}


@router.post("/login")
def login(payload: LoginIn, request: Request, db: Session = Depends(get_session)):
    """Authenticate a user and return a signed JWT.

    The token carries `user_id`, `email` and `role`.
    """
    enforce_rate_limit(request, settings.LOGIN_RATE_LIMIT_PER_MIN)
    result = AuthService(db).authenticate(payload.email, payload.password)
    if result is None:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    token, user = result
    return {"access_token": token, "token_type": "bearer", "user": serialize_user(user)}


@router.post("/logout")
def logout():
    return {"message": "Logged out successfully"}


@router.get("/me")
def me(user: models.User = Depends(get_current_user)):
    return serialize_user(user)


@router.get("/profile")
def get_profile(user: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return ProfileService(db).get(user.id)


@router.put("/profile")
def update_profile(payload: ProfileUpdateIn, user: models.User = Depends(get_current_user),
                   db: Session = Depends(get_session)):
    return ProfileService(db).update(
        user,
        name=payload.name,
        bio=payload.bio,
        teacher_profile=payload.teacher_profile.model_dump(exclude_unset=True) if payload.teacher_profile else None,
        student_profile=payload.student_profile.model_dump(exclude_unset=True) if payload.student_profile else None,
    )


@router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordIn, request: Request, tasks: BackgroundTasks,
                    db: Session = Depends(get_session)):
    enforce_rate_limit(request, settings.LOGIN_RATE_LIMIT_PER_MIN)
    return {"message": AuthService(db, tasks).request_password_reset(payload.email)}


@router.post("/reset-password")
def reset_password(payload: ResetPasswordIn, db: Session = Depends(get_session)):
    AuthService(db).reset_password(payload.token, payload.password)
    return {"message": "Password has been reset successfully"}


@router.post("/change-password")
def change_password(payload: ChangePasswordIn, user: models.User = Depends(get_current_user),
                    db: Session = Depends(get_session)):
    AuthService(db).change_password(user, payload.current_password, payload.new_password)
    return {"message": "Password changed successfully"}


@router.post("/profile-image")
def upload_profile_image(file: UploadFile = File(...), user: models.User = Depends(get_current_user),
                         db: Session = Depends(get_session)):
    """Store a verified image (max 5 MB) as the user's avatar."""
    payload = uploads.read_upload(file, MAX_AVATAR_BYTES)
    return {"image_url": ProfileService(db).set_avatar(user, file.filename or "", payload)}
