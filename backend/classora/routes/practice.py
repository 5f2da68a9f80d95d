"""Practice question bank, attempts and practice files."""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, require_professor, require_student
from ..config import settings
from ..database import get_session
from ..schemas import PracticeAttemptIn, PracticeQuestionIn, PracticeQuestionUpdateIn
from ..services.practice import PracticeService
from ..utils import uploads

router = APIRouter(prefix="/practice", tags=["practice"])


@router.post("/questions", status_code=201)
def create_question(payload: PracticeQuestionIn, user: models.User = Depends(require_professor),
                    db: Session = Depends(get_session)):
    return PracticeService(db).create_question(user, payload.model_dump())


@router.get("/questions")
def list_questions(
    class_id: Optional[int] = None,
    subject: Optional[str] = None,
    difficulty: Optional[str] = None,
    limit: int = Query(20, ge=1, le=50),
    offset: int = Query(0, ge=0),
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    return PracticeService(db).list_questions(user, class_id, subject, difficulty, limit, offset)


@router.get("/questions/{question_id}")
def get_question(question_id: int, user: models.User = Depends(get_current_user),
                 db: Session = Depends(get_session)):
    return PracticeService(db).get_question(user, question_id)


@router.put("/questions/{question_id}")
def update_question(question_id: int, payload: PracticeQuestionUpdateIn,
                    user: models.User = Depends(require_professor), db: Session = Depends(get_session)):
    return PracticeService(db).update_question(user, question_id, payload.model_dump(exclude_unset=True))


@router.delete("/questions/{question_id}")
def delete_question(question_id: int, user: models.User = Depends(require_professor),
                    db: Session = Depends(get_session)):
    PracticeService(db).delete_question(user, question_id)
    return {"message": "Question deleted successfully"}


@router.post("/attempts")
def attempt_question(payload: PracticeAttemptIn, user: models.User = Depends(require_student),
                     db: Session = Depends(get_session)):
    return PracticeService(db).attempt(user, payload.question_id, payload.selected_answers, payload.time_spent)


@router.get("/stats")
def practice_stats(user: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return PracticeService(db).stats(user)


@router.get("/classes")
def practice_classes(user: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return {"classes": PracticeService(db).classes(user)}


@router.post("/files", status_code=201)
def upload_practice_file(
    title: str = Form(...),
    class_id: int = Form(...),
    description: Optional[str] = Form(None),
    import_questions: bool = Form(False),
    file: UploadFile = File(...),
    user: models.User = Depends(require_professor),
    db: Session = Depends(get_session),
):
    """Store a practice file; json/csv/txt/pdf/docx files can seed questions."""
    payload = uploads.read_upload(file, settings.MAX_UPLOAD_BYTES)
    return PracticeService(db).upload_file(user, class_id, title, description, file.filename or "", payload,
                                           settings.MAX_UPLOAD_BYTES, import_questions)


@router.get("/files")
def list_practice_files(class_id: int, user: models.User = Depends(get_current_user),
                        db: Session = Depends(get_session)):
    return {"files": PracticeService(db).list_files(user, class_id)}


@router.delete("/files/{file_id}")
def delete_practice_file(file_id: int, user: models.User = Depends(require_professor),
                         db: Session = Depends(get_session)):
    PracticeService(db).delete_file(user, file_id)
    return {"message": "File deleted successfully"}
