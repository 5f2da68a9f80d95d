from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from .. import models
from ..auth import require_professor
from ..database import get_session
from ..schemas import TeacherProfileIn
from ..services.auth import ProfileService
from ..services.directory import TeacherService

router = APIRouter(prefix="/teachers", tags=["teachers"])


@router.get("")
def list_teachers(query: Optional[str] = None, limit: int = Query(20, ge=1, le=50), offset: int = Query(0, ge=0),
                  db: Session = Depends(get_session)):
    return TeacherService(db).list(query, limit, offset)


@router.get("/search")
def search_teachers(query: Optional[str] = None, university: Optional[str] = None,
                    department: Optional[str] = None, limit: int = Query(20, ge=1, le=50),
                    offset: int = Query(0, ge=0), db: Session = Depends(get_session)):
    """Search by name, email, bio and research interests."""
    return TeacherService(db).list(query, limit, offset, university, department, deep=True)


@router.get("/profile")
def own_profile(user: models.User = Depends(require_professor), db: Session = Depends(get_session)):
    return ProfileService(db).get(user.id)


@router.put("/profile")
def update_own_profile(payload: TeacherProfileIn, user: models.User = Depends(require_professor),
                       db: Session = Depends(get_session)):
    return ProfileService(db).update(user, teacher_profile=payload.model_dump(exclude_unset=True))


@router.get("/{teacher_id}")
def teacher_detail(teacher_id: int, db: Session = Depends(get_session)):
    return TeacherService(db).detail(teacher_id)
