"""Dashboard views for professors and students."""

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, require_professor, require_student
from ..database import get_session
from ..schemas import AnalyticsEmailIn
from ..services.calendar import CalendarService
from ..services.dashboard import DashboardService

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/professor/stats")
def professor_stats(user: models.User = Depends(require_professor), db: Session = Depends(get_session)):
    return DashboardService(db).professor_stats(user)


@router.get("/student/stats")
def student_stats(user: models.User = Depends(require_student), db: Session = Depends(get_session)):
    return DashboardService(db).student_stats(user)


@router.get("/student/unread-counts")
def unread_counts(user: models.User = Depends(require_student), db: Session = Depends(get_session)):
    return DashboardService(db).unread_counts(user)


@router.post("/student/mark-all-viewed")
def mark_all_viewed(user: models.User = Depends(require_student), db: Session = Depends(get_session)):
    return DashboardService(db).mark_all_viewed(user)


@router.get("/student/quiz-performance")
def quiz_performance(user: models.User = Depends(require_student), db: Session = Depends(get_session)):
    return {"quizzes": DashboardService(db).quiz_performance(user)}


@router.get("/student/assignments")
def student_assignments(user: models.User = Depends(require_student), db: Session = Depends(get_session)):
    return {"assignments": DashboardService(db).student_assignments(user)}


@router.get("/students")
def list_students(user: models.User = Depends(require_professor), db: Session = Depends(get_session)):
    return {"students": DashboardService(db).students(user)}


@router.get("/students/{student_id}")
def student_detail(student_id: int, user: models.User = Depends(require_professor),
                   db: Session = Depends(get_session)):
    return DashboardService(db).student_detail(user, student_id)


@router.get("/students/{student_id}/analytics")
def student_analytics(student_id: int, user: models.User = Depends(require_professor),
                      db: Session = Depends(get_session)):
    return DashboardService(db).student_analytics(user, student_id)


@router.get("/calendar")
def calendar(user: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return CalendarService(db).dashboard(user)


@router.get("/analytics")
def analytics(user: models.User = Depends(require_professor), db: Session = Depends(get_session)):
    return DashboardService(db).analytics(user)


@router.get("/analytics/export")
def export_analytics(user: models.User = Depends(require_professor), db: Session = Depends(get_session)):
    body = DashboardService(db).analytics_csv(user)
    return Response(content=body, media_type="text/csv",
                    headers={"Content-Disposition": 'attachment; filename="class-analytics.csv"'})


@router.post("/analytics/email")
def email_analytics(payload: AnalyticsEmailIn, user: models.User = Depends(require_professor),
                    db: Session = Depends(get_session)):
    """Send the analytics report by email; delivery failures return 400."""
    return DashboardService(db).email_analytics(user, payload.email, payload.professor_name)
