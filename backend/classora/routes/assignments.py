"""Assignment CRUD, file submissions and grading."""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, require_professor, require_student
from ..config import settings
from ..database import get_session
from ..schemas import AssignmentCreateIn, AssignmentUpdateIn, GradeIn
from ..services.assignments import AssignmentService
from ..utils import uploads

router = APIRouter(prefix="/assignments", tags=["assignments"])


@router.post("", status_code=201)
def create_assignment(payload: AssignmentCreateIn, tasks: BackgroundTasks,
                      user: models.User = Depends(require_professor), db: Session = Depends(get_session)):
    return AssignmentService(db, tasks).create(user, payload.model_dump())


@router.get("")
def list_assignments(
    class_id: Optional[int] = None,
    status: Optional[str] = None,
    limit: int = Query(20, ge=1, le=50),
    offset: int = Query(0, ge=0),
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    """Professors see their own assignments; students see published ones."""
    return AssignmentService(db).list(user, class_id, status, limit, offset)


@router.post("/submit")
def submit_assignment(
    tasks: BackgroundTasks,
    assignment_id: int = Form(...),
    feedback: Optional[str] = Form(None),
    file: UploadFile = File(...),
    user: models.User = Depends(require_student),
    db: Session = Depends(get_session),
):
    """Upload a submission file (max 50 MB). Resubmitting replaces the file."""
    payload = uploads.read_upload(file, settings.MAX_UPLOAD_BYTES)
    return AssignmentService(db, tasks).submit(user, assignment_id, file.filename or "", payload, feedback)


@router.put("/submissions/{submission_id}/grade")
def grade_submission(submission_id: int, payload: GradeIn, tasks: BackgroundTasks,
                     user: models.User = Depends(require_professor), db: Session = Depends(get_session)):
    return AssignmentService(db, tasks).grade(user, submission_id, payload.grade, payload.feedback)


@router.get("/{assignment_id}")
def get_assignment(assignment_id: int, user: models.User = Depends(get_current_user),
                   db: Session = Depends(get_session)):
    return AssignmentService(db).get(user, assignment_id)


@router.put("/{assignment_id}")
def update_assignment(assignment_id: int, payload: AssignmentUpdateIn, tasks: BackgroundTasks,
                      user: models.User = Depends(require_professor), db: Session = Depends(get_session)):
    return AssignmentService(db, tasks).update(user, assignment_id, payload.model_dump(exclude_unset=True))


@router.delete("/{assignment_id}")
def delete_assignment(assignment_id: int, user: models.User = Depends(require_professor),
                      db: Session = Depends(get_session)):
    AssignmentService(db).delete(user, assignment_id)
    return {"message": "Assignment deleted successfully"}


@router.get("/{assignment_id}/submissions")
def list_submissions(assignment_id: int, user: models.User = Depends(require_professor),
                     db: Session = Depends(get_session)):
    return AssignmentService(db).list_submissions(user, assignment_id)


@router.get("/{assignment_id}/submission")
def own_submission(assignment_id: int, user: models.User = Depends(require_student),
                   db: Session = Depends(get_session)):
    return {"submission": AssignmentService(db).own_submission(user, assignment_id)}


@router.post("/{assignment_id}/view")
def view_assignment(assignment_id: int, user: models.User = Depends(require_student),
                    db: Session = Depends(get_session)):
    return AssignmentService(db).record_view(user, assignment_id)
