"""Account services: registration, login tokens, password reset and
profile management."""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import BackgroundTasks
from passlib.context import CryptContext
from sqlmodel import Session

from .. import models, repositories
from ..config import settings
from ..errors import NotFoundError, PermissionDenied
from ..utils import uploads
from .common import queue_email, serialize_user

logger = logging.getLogger("classora.auth")

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
RESET_TOKEN_TTL = timedelta(hours=1)
MAX_AVATAR_BYTES = 5 * 1024 * 1024
FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, a password reset link has been sent."

TEACHER_FIELDS = ("university", "college", "department", "phone", "address", "website", "linkedin",
                  "research_interests", "qualifications", "experience")
STUDENT_FIELDS = ("university", "college", "department", "semester", "class_name", "registration_no",
                  "roll_no", "phone", "address")


def hash_password(password: str) -> str:
    return PWD_CTX.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return PWD_CTX.verify(password, password_hash)


def create_access_token(user: models.User) -> str:
    expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
    payload = {"user_id": user.id, "email": user.email, "role": user.role, "exp": int(expire.timestamp())}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def serialize_profile(profile, fields) -> Optional[dict]:
    if profile is None:
        return None
    return {f: getattr(profile, f) for f in fields}


class AuthService:
    """Registration, authentication and password recovery."""
    def __init__(self, session: Session, tasks: Optional[BackgroundTasks] = None):
        self.session = session
        self.tasks = tasks
        self.user_repo = repositories.UserRepository(session)

    def register(self, email: str, password: str, name: str, role: str) -> models.User:
        """Create a user with a hashed password and an empty role profile."""
        if not repositories.SettingsRepository(self.session).system().registration_enabled:
            raise PermissionDenied("Registration is currently disabled")
        if self.user_repo.get_by_email(email):
            raise ValueError("User with this email already exists")
        user = models.User(email=email.strip().lower(), name=name.strip(), password_hash=hash_password(password), role=role)
        if role == models.Role.PROFESSOR:
            user.teacher_profile = models.TeacherProfile()
        elif role == models.Role.STUDENT:
            user.student_profile = models.StudentProfile()
        user = self.user_repo.create(user)
        logger.info("user_registered id=%s role=%s", user.id, user.role)
        queue_email(self.tasks, user.email, "welcome", {"name": user.name, "role": user.role})
        return user

    def authenticate(self, email: str, password: str):
        """Verify credentials and return `(token, user)`.

        Returns `None` if the credentials do not match; raises
        PermissionDenied for accounts that are not active.
        """
        user = self.user_repo.get_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            return None
        if user.status != models.UserStatus.ACTIVE:
            raise PermissionDenied(f"Account is {user.status}")
        user.last_login_at = models.utcnow()
        self.user_repo.save(user)
        return create_access_token(user), user

    def request_password_reset(self, email: str) -> str:
        """Issue a reset token for known users; the reply never reveals which."""
        user = self.user_repo.get_by_email(email)
        if user is not None:
            user.reset_token = secrets.token_hex(32)
            user.reset_token_expiry = models.utcnow() + RESET_TOKEN_TTL
            self.user_repo.save(user)
            reset_url = f"{settings.APP_URL}/auth/reset-password?token={user.reset_token}"
            queue_email(self.tasks, user.email, "password_reset", {"name": user.name, "reset_url": reset_url})
        return FORGOT_PASSWORD_MESSAGE

    def reset_password(self, token: str, password: str) -> models.User:
        user = self.user_repo.get_by_reset_token(token)
        if user is None or user.reset_token_expiry is None or user.reset_token_expiry < models.utcnow():
            raise ValueError("Invalid or expired reset token")
        user.password_hash = hash_password(password)
        user.reset_token = None
        user.reset_token_expiry = None
        user.updated_at = models.utcnow()
        return self.user_repo.save(user)

    def change_password(self, user: models.User, current_password: str, new_password: str) -> None:
        if not verify_password(current_password, user.password_hash):
            raise ValueError("Current password is incorrect")
        user.password_hash = hash_password(new_password)
        user.updated_at = models.utcnow()
        self.user_repo.save(user)


class ProfileService:
    """Read and update the user's own profile."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def get(self, user_id: int) -> dict:
        user = self.user_repo.get(user_id)
        if user is None:
            raise NotFoundError("User not found")
        out = serialize_user(user)
        out["teacher_profile"] = serialize_profile(user.teacher_profile, TEACHER_FIELDS)
        out["student_profile"] = serialize_profile(user.student_profile, STUDENT_FIELDS)
        return out

    def update(self, user: models.User, name: Optional[str] = None, bio: Optional[str] = None,
               teacher_profile: Optional[dict] = None, student_profile: Optional[dict] = None) -> dict:
        """Update name/bio and upsert the profile that matches the user's role."""
        if name is not None:
            user.name = name.strip()
        if bio is not None:
            user.bio = bio
        if teacher_profile is not None and user.role == models.Role.PROFESSOR:
            profile = user.teacher_profile or models.TeacherProfile(user_id=user.id)
            for key, value in teacher_profile.items():
                if key in TEACHER_FIELDS:
                    setattr(profile, key, value)
            user.teacher_profile = profile
        if student_profile is not None and user.role == models.Role.STUDENT:
            profile = user.student_profile or models.StudentProfile(user_id=user.id)
            for key, value in student_profile.items():
                if key in STUDENT_FIELDS:
                    setattr(profile, key, value)
            user.student_profile = profile
        user.updated_at = models.utcnow()
        self.user_repo.save(user)
        return self.get(user.id)

    def set_avatar(self, user: models.User, filename: str, payload: bytes) -> str:
        """Store a verified image as the user's avatar and return its URL."""
        uploads.validate_upload_filename(filename)
        uploads.check_size(payload, MAX_AVATAR_BYTES)
        if uploads.extension_of(filename) not in uploads.IMAGE_EXTENSIONS:
            raise ValueError("Only image files are allowed")
        uploads.verify_image(payload)
        previous = user.avatar
        url = uploads.store_upload(payload, filename, "avatars")
        user.avatar = url
        user.updated_at = models.utcnow()
        try:
            self.user_repo.save(user)
        except Exception:
            self.session.rollback()
            uploads.remove_upload(url)
            raise
        if previous:
            uploads.remove_upload(previous)
        return url
