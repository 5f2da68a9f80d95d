"""Class management, rosters and invitations."""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, require_professor
from ..database import get_session
from ..schemas import ArchiveIn, ClassCreateIn, ClassUpdateIn, InviteEmailsIn, InviteExistingIn
from ..services.classes import ClassService

router = APIRouter(prefix="/classes", tags=["classes"])


@router.post("", status_code=201)
def create_class(payload: ClassCreateIn, user: models.User = Depends(require_professor),
                 db: Session = Depends(get_session)):
    return ClassService(db).create(user, payload.model_dump())


@router.get("")
def list_classes(
    query: Optional[str] = None,
    professor_id: Optional[int] = None,
    university: Optional[str] = None,
    include_archived: bool = False,
    include_private: bool = True,
    limit: int = Query(20, ge=1, le=50),
    offset: int = Query(0, ge=0),
    _: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    """Search classes; `query` also matches the professor's name."""
    return ClassService(db).list(query, professor_id, university, include_archived, include_private, limit, offset)


@router.get("/{class_id}")
def get_class(class_id: int, _: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return ClassService(db).detail(class_id)


@router.put("/{class_id}")
def update_class(class_id: int, payload: ClassUpdateIn, user: models.User = Depends(require_professor),
                 db: Session = Depends(get_session)):
    return ClassService(db).update(user, class_id, payload.model_dump(exclude_unset=True))


@router.delete("/{class_id}")
def delete_class(class_id: int, user: models.User = Depends(require_professor),
                 db: Session = Depends(get_session)):
    ClassService(db).delete(user, class_id)
    return {"message": "Class deleted successfully"}


@router.put("/{class_id}/archive")
def archive_class(class_id: int, payload: ArchiveIn, user: models.User = Depends(require_professor),
                  db: Session = Depends(get_session)):
    return ClassService(db).set_archived(user, class_id, payload.is_archived)


@router.get("/{class_id}/enrollments")
def class_enrollments(class_id: int, user: models.User = Depends(get_current_user),
                      db: Session = Depends(get_session)):
    return ClassService(db).enrollments_for(user, class_id)


@router.delete("/{class_id}/enrollments/{student_id}")
def remove_student(class_id: int, student_id: int, user: models.User = Depends(require_professor),
                   db: Session = Depends(get_session)):
    ClassService(db).remove_student(user, class_id, student_id)
    return {"message": "Student removed from class"}


@router.get("/{class_id}/available-students")
def available_students(class_id: int, user: models.User = Depends(require_professor),
                       db: Session = Depends(get_session)):
    return {"students": ClassService(db).available_students(user, class_id)}


@router.post("/{class_id}/invite-existing")
def invite_existing(class_id: int, payload: InviteExistingIn, user: models.User = Depends(require_professor),
                    db: Session = Depends(get_session)):
    return ClassService(db).invite_existing(user, class_id, payload.student_ids)


@router.post("/{class_id}/invite")
def invite_by_email(class_id: int, payload: InviteEmailsIn, tasks: BackgroundTasks,
                    user: models.User = Depends(require_professor), db: Session = Depends(get_session)):
    """Email invitation links to addresses without an account."""
    return ClassService(db, tasks).invite_emails(user, class_id, payload.emails)
