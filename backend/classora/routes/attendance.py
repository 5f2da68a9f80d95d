"""Attendance sessions, marking and reports."""

from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, require_professor
from ..database import get_session
from ..schemas import AttendanceBatchIn, AttendanceMarkIn, AttendanceSessionIn
from ..services.attendance import AttendanceService

router = APIRouter(prefix="/attendance", tags=["attendance"])


@router.post("/sessions", status_code=201)
def create_session(payload: AttendanceSessionIn, user: models.User = Depends(require_professor),
                   db: Session = Depends(get_session)):
    return AttendanceService(db).create_session(user, payload.class_id, payload.date, payload.title,
                                                payload.description)


@router.get("/sessions")
def list_sessions(session_id: Optional[int] = None, class_id: Optional[int] = None,
                  user: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return AttendanceService(db).list_sessions(user, session_id, class_id)


@router.delete("/sessions/{session_id}")
def delete_session(session_id: int, user: models.User = Depends(require_professor),
                   db: Session = Depends(get_session)):
    AttendanceService(db).delete_session(user, session_id)
    return {"message": "Attendance session deleted successfully"}


@router.post("/mark")
def mark_attendance(payload: AttendanceMarkIn, user: models.User = Depends(require_professor),
                    db: Session = Depends(get_session)):
    return AttendanceService(db).mark(user, payload.session_id, payload.student_id, payload.status, payload.notes)


@router.put("/mark")
def mark_attendance_batch(payload: AttendanceBatchIn, user: models.User = Depends(require_professor),
                          db: Session = Depends(get_session)):
    """Upsert many records at once; students not enrolled are skipped."""
    records = [r.model_dump() for r in payload.records]
    return AttendanceService(db).mark_batch(user, payload.session_id, records)


@router.get("/reports")
def attendance_report(
    class_id: int,
    period: Literal["daily", "weekly", "monthly", "custom"] = "monthly",
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    include_not_marked: bool = False,
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    return AttendanceService(db).report(user, class_id, period, start_date, end_date, include_not_marked)


@router.get("/analytics")
def attendance_analytics(
    class_id: int,
    student_id: Optional[int] = None,
    period: int = Query(30, ge=1, le=365),
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    return AttendanceService(db).analytics(user, class_id, student_id, period)
