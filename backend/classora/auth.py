"""Authentication helpers and FastAPI security dependencies.

`get_current_user` validates the bearer token and returns the `User`
bound to the request's database session. When
`settings.TRUST_USER_ID_HEADER` is enabled the `x-user-id` header is
accepted as an identity as well, which is how the browser client and
local tooling address the API in development.

Token verification raises HTTPExceptions so the helpers can be used
directly inside route dependencies.
"""

from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .database import get_session

bearer_scheme = HTTPBearer(auto_error=False)


def decode_token(token: str):
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail='invalid token')


def _resolve_user_id(credentials: Optional[HTTPAuthorizationCredentials], x_user_id: Optional[str]) -> Optional[int]:
    if credentials is not None:
        payload = decode_token(credentials.credentials)
        user_id = payload.get('user_id')
        if not user_id:
            raise HTTPException(status_code=401, detail='invalid token payload')
        return int(user_id)
    if x_user_id and settings.TRUST_USER_ID_HEADER:
        try:
            return int(x_user_id)
        except ValueError:
            raise HTTPException(status_code=401, detail='invalid user id header')
    return None


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    x_user_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_session),
) -> models.User:
    """FastAPI dependency that returns the authenticated, active user."""
    user_id = _resolve_user_id(credentials, x_user_id)
    if user_id is None:
        raise HTTPException(status_code=401, detail='Authentication required')
    user = repositories.UserRepository(db).get(user_id)
    if not user:
        raise HTTPException(status_code=401, detail='user not found')
    if user.status != models.UserStatus.ACTIVE:
        raise HTTPException(status_code=403, detail=f'account is {user.status}')
    return user


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    x_user_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_session),
) -> Optional[models.User]:
    """Like `get_current_user` but returns None for anonymous requests."""
    try:
        user_id = _resolve_user_id(credentials, x_user_id)
    except HTTPException:
        return None
    if user_id is None:
        return None
    return repositories.UserRepository(db).get(user_id)


def _require_role(role: str, label: str):
    def dependency(user: models.User = Depends(get_current_user)) -> models.User:
        if user.role != role:
            raise HTTPException(status_code=403, detail=f'Access denied. {label} role required.')
        return user
    return dependency


require_professor = _require_role(models.Role.PROFESSOR, 'Professor')
require_student = _require_role(models.Role.STUDENT, 'Student')
require_admin = _require_role(models.Role.ADMIN, 'Admin')
