from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, require_student
from ..database import get_session
from ..schemas import EnrollIn
from ..services.classes import EnrollmentService

router = APIRouter(prefix="/enrollments", tags=["enrollments"])


@router.post("", status_code=201)
def enroll(payload: EnrollIn, user: models.User = Depends(require_student), db: Session = Depends(get_session)):
    return EnrollmentService(db).enroll(user, payload.class_id)


@router.get("")
def list_enrollments(student_id: Optional[int] = None, class_id: Optional[int] = None,
                     user: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return {"enrollments": EnrollmentService(db).list(user, student_id, class_id)}


@router.delete("/{class_id}")
def leave_class(class_id: int, user: models.User = Depends(require_student), db: Session = Depends(get_session)):
    EnrollmentService(db).leave(user, class_id)
    return {"message": "Left class successfully"}
