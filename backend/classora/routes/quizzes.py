from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, require_professor, require_student
from ..database import get_session
from ..schemas import QuizCreateIn, QuizSubmissionIn, QuizUpdateIn
from ..services.quizzes import QuizService

router = APIRouter(prefix="/quizzes", tags=["quizzes"])


@router.post("", status_code=201)
def create_quiz(payload: QuizCreateIn, tasks: BackgroundTasks, user: models.User = Depends(require_professor),
                db: Session = Depends(get_session)):
    return QuizService(db, tasks).create(user, payload.model_dump())


@router.get("")
def list_quizzes(
    class_id: Optional[int] = None,
    status: Optional[str] = None,
    limit: int = Query(20, ge=1, le=50),
    offset: int = Query(0, ge=0),
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    return QuizService(db).list(user, class_id, status, limit, offset)


@router.post("/submit")
def submit_quiz(payload: QuizSubmissionIn, user: models.User = Depends(require_student),
                db: Session = Depends(get_session)):
    """Score a quiz attempt and store the answers."""
    answers = [a.model_dump() for a in payload.answers]
    return QuizService(db).submit(user, payload.quiz_id, answers, payload.start_time)


@router.get("/{quiz_id}")
def get_quiz(quiz_id: int, user: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    """Students receive questions without the correct answers."""
    return QuizService(db).get(user, quiz_id)


@router.put("/{quiz_id}")
def update_quiz(quiz_id: int, payload: QuizUpdateIn, tasks: BackgroundTasks,
                user: models.User = Depends(require_professor), db: Session = Depends(get_session)):
    return QuizService(db, tasks).update(user, quiz_id, payload.model_dump(exclude_unset=True))


@router.delete("/{quiz_id}")
def delete_quiz(quiz_id: int, user: models.User = Depends(require_professor), db: Session = Depends(get_session)):
    QuizService(db).delete(user, quiz_id)
    return {"message": "Quiz deleted successfully"}


@router.get("/{quiz_id}/attempts")
def quiz_attempts(quiz_id: int, user: models.User = Depends(require_student), db: Session = Depends(get_session)):
    return {"attempts": QuizService(db).attempts(user, quiz_id)}


@router.get("/{quiz_id}/stats")
def quiz_stats(quiz_id: int, user: models.User = Depends(require_professor), db: Session = Depends(get_session)):
    return QuizService(db).stats(user, quiz_id)


@router.post("/{quiz_id}/view")
def view_quiz(quiz_id: int, user: models.User = Depends(require_student), db: Session = Depends(get_session)):
    return QuizService(db).record_view(user, quiz_id)
