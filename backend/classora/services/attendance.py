"""Attendance sessions, marking, reports and analytics.

Attendance rates are weighted: PRESENT counts fully, EXCUSED 0.75, LATE
0.5 and ABSENT 0. The rate is the weighted sum divided by the number of
marked sessions, or by all sessions when unmarked sessions are included.
"""

from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from sqlmodel import Session

from .. import models, repositories
from ..errors import NotFoundError, PermissionDenied
from .common import get_class, iso, owned_class, user_summary

AS = models.AttendanceStatus
STATUS_WEIGHTS = {AS.PRESENT: 1.0, AS.LATE: 0.5, AS.EXCUSED: 0.75, AS.ABSENT: 0.0}
NOT_MARKED = "NOT_MARKED"


def attendance_rate(statuses: Iterable[str], total_sessions: Optional[int] = None) -> float:
    """Weighted attendance percentage.

    `total_sessions` overrides the denominator so unmarked sessions count
    as absences.
    """
    statuses = [s for s in statuses if s in STATUS_WEIGHTS]
    denominator = total_sessions if total_sessions is not None else len(statuses)
    if not denominator:
        return 0.0
    return sum(STATUS_WEIGHTS[s] for s in statuses) / denominator * 100


def count_statuses(statuses: Iterable[str]) -> Dict[str, int]:
    counts = {"present": 0, "absent": 0, "late": 0, "excused": 0}
    for s in statuses:
        key = s.lower()
        if key in counts:
            counts[key] += 1
    return counts


def period_range(period: str, start_date: Optional[date] = None, end_date: Optional[date] = None,
                 today: Optional[date] = None) -> Tuple[datetime, datetime]:
    """Resolve a report period to an inclusive datetime range."""
    today = today or models.utcnow().date()
    if period == "daily":
        start, end = today, today
    elif period == "weekly":
        start, end = today - timedelta(days=7), today
    elif period == "monthly":
        start, end = today.replace(day=1), today
    elif period == "custom":
        if start_date is None or end_date is None:
            raise ValueError("start_date and end_date are required for a custom period")
        if start_date > end_date:
            raise ValueError("start_date must be before end_date")
        start, end = start_date, end_date
    else:
        raise ValueError("period must be one of daily, weekly, monthly, custom")
    return datetime.combine(start, time.min), datetime.combine(end, time.max)


def serialize_session(s: models.AttendanceSession) -> dict:
    return {
        "id": s.id,
        "class_id": s.class_id,
        "date": iso(s.date),
        "title": s.title,
        "description": s.description,
        "created_at": iso(s.created_at),
    }


def serialize_record(r: models.AttendanceRecord, student: Optional[models.User] = None) -> dict:
    out = {
        "id": r.id,
        "session_id": r.session_id,
        "student_id": r.student_id,
        "status": r.status,
        "notes": r.notes,
        "marked_at": iso(r.marked_at),
    }
    if student is not None:
        out["student"] = user_summary(student)
    return out


class AttendanceService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.AttendanceRepository(session)
        self.enrollments = repositories.EnrollmentRepository(session)
        self.users = repositories.UserRepository(session)

    def _owned_session(self, professor: models.User, session_id: int) -> models.AttendanceSession:
        s = self.repo.get(session_id)
        if s is None:
            raise NotFoundError("Attendance session not found")
        owned_class(self.session, s.class_id, professor)
        return s

    def create_session(self, professor: models.User, class_id: int, when: datetime,
                       title: Optional[str] = None, description: Optional[str] = None) -> dict:
        cls = owned_class(self.session, class_id, professor)
        s = self.repo.save(models.AttendanceSession(class_id=cls.id, professor_id=professor.id,
                                                    date=models.as_naive_utc(when), title=title,
                                                    description=description))
        return serialize_session(s)

    def delete_session(self, professor: models.User, session_id: int) -> None:
        self.repo.delete(self._owned_session(professor, session_id))

    def _professor_view(self, s: models.AttendanceSession) -> dict:
        out = serialize_session(s)
        students = {u.id: u for u in self.users.list_by_ids(r.student_id for r in s.records)}
        out["records"] = [serialize_record(r, students.get(r.student_id)) for r in s.records]
        out["counts"] = count_statuses(r.status for r in s.records)
        out["enrolled"] = len(self.enrollments.list_for_class(s.class_id))
        return out

    def _student_view(self, s: models.AttendanceSession, student_id: int) -> dict:
        out = serialize_session(s)
        mine = next((r for r in s.records if r.student_id == student_id), None)
        out["record"] = serialize_record(mine) if mine else None
        out["status"] = mine.status if mine else NOT_MARKED
        return out

    def list_sessions(self, user: models.User, session_id: Optional[int] = None,
                      class_id: Optional[int] = None) -> dict:
        if session_id is not None:
            s = self.repo.get(session_id)
            if s is None:
                raise NotFoundError("Attendance session not found")
            sessions, class_id = [s], s.class_id
        elif class_id is not None:
            sessions = self.repo.sessions_for_class(class_id)
        else:
            raise ValueError("session_id or class_id is required")
        cls = get_class(self.session, class_id)
        if user.role == models.Role.STUDENT:
            if not self.enrollments.is_enrolled(cls.id, user.id):
                raise PermissionDenied("You are not enrolled in this class")
            return {"sessions": [self._student_view(s, user.id) for s in sessions]}
        if cls.professor_id != user.id and user.role != models.Role.ADMIN:
            raise PermissionDenied("Access denied to this class")
        return {"sessions": [self._professor_view(s) for s in sessions]}

    def _upsert(self, s: models.AttendanceSession, marker: models.User, student_id: int, status: str,
                notes: Optional[str]) -> models.AttendanceRecord:
        record = self.repo.find_record(s.id, student_id)
        if record is None:
            record = models.AttendanceRecord(session_id=s.id, student_id=student_id, status=status)
        record.status = status
        record.notes = notes
        record.marked_by = marker.id
        record.marked_at = models.utcnow()
        self.session.add(record)
        return record

    def mark(self, professor: models.User, session_id: int, student_id: int, status: str,
             notes: Optional[str] = None) -> dict:
        s = self._owned_session(professor, session_id)
        if not self.enrollments.is_enrolled(s.class_id, student_id):
            raise ValueError("Student is not enrolled in this class")
        record = self._upsert(s, professor, student_id, status, notes)
        self.session.commit()
        self.session.refresh(record)
        return serialize_record(record, self.users.get(student_id))

    def mark_batch(self, professor: models.User, session_id: int, records: List[dict]) -> dict:
        """Upsert many records; students not enrolled in the class are skipped."""
        s = self._owned_session(professor, session_id)
        enrolled = set(self.enrollments.student_ids_for_classes([s.class_id]))
        updated = skipped = 0
        for item in records:
            if item["student_id"] not in enrolled:
                skipped += 1
                continue
            self._upsert(s, professor, item["student_id"], item["status"], item.get("notes"))
            updated += 1
        self.session.commit()
        return {"updated": updated, "skipped": skipped}

    def report(self, user: models.User, class_id: int, period: str = "monthly",
               start_date: Optional[date] = None, end_date: Optional[date] = None,
               include_not_marked: bool = False) -> dict:
        cls = get_class(self.session, class_id)
        if cls.professor_id != user.id and user.role != models.Role.ADMIN:
            raise PermissionDenied("Access denied to this class")
        start, end = period_range(period, start_date, end_date)
        sessions = sorted(self.repo.sessions_for_class(cls.id, start, end), key=lambda s: s.date)
        students = self.users.list_by_ids(self.enrollments.student_ids_for_classes([cls.id]))
        rows = []
        for student in students:
            details = []
            statuses = []
            for s in sessions:
                record = next((r for r in s.records if r.student_id == student.id), None)
                status = record.status if record else NOT_MARKED
                if record:
                    statuses.append(record.status)
                details.append({"session_id": s.id, "date": iso(s.date), "title": s.title, "status": status,
                                "notes": record.notes if record else None})
            not_marked = len(sessions) - len(statuses)
            rate = attendance_rate(statuses, len(sessions) if include_not_marked else None)
            row = {"student": user_summary(student), "total_sessions": len(sessions), "not_marked": not_marked,
                   "attendance_rate": round(rate, 1), "sessions": details}
            row.update(count_statuses(statuses))
            rows.append(row)
        rows.sort(key=lambda r: r["attendance_rate"], reverse=True)
        average = sum(r["attendance_rate"] for r in rows) / len(rows) if rows else 0.0
        return {
            "class": {"id": cls.id, "name": cls.name, "code": cls.code},
            "students": rows,
            "summary": {
                "total_students": len(rows),
                "total_sessions": len(sessions),
                "average_rate": round(average, 1),
                "period": period,
                "date_range": {"start": iso(start), "end": iso(end)},
            },
        }

    def analytics(self, user: models.User, class_id: int, student_id: Optional[int] = None,
                  days: int = 30) -> dict:
        cls = get_class(self.session, class_id)
        if user.role == models.Role.STUDENT:
            if not self.enrollments.is_enrolled(cls.id, user.id):
                raise PermissionDenied("You are not enrolled in this class")
            student_id = user.id
        elif cls.professor_id != user.id and user.role != models.Role.ADMIN:
            raise PermissionDenied("Access denied to this class")
        elif student_id is not None and not self.enrollments.is_enrolled(cls.id, student_id):
            raise NotFoundError("Student not found in this class")
        since = models.utcnow() - timedelta(days=days)
        sessions = sorted(self.repo.sessions_for_class(cls.id, start=since), key=lambda s: s.date)
        if student_id is not None:
            return self._student_analytics(cls, sessions, student_id, days)
        return self._class_analytics(cls, sessions, days)

    def _student_analytics(self, cls, sessions, student_id: int, days: int) -> dict:
        entries = []
        statuses = []
        for s in sessions:
            record = next((r for r in s.records if r.student_id == student_id), None)
            if record:
                statuses.append(record.status)
            entries.append({"session_id": s.id, "date": iso(s.date), "title": s.title,
                            "status": record.status if record else NOT_MARKED})
        out = {
            "class_id": cls.id,
            "student": user_summary(self.users.get(student_id)),
            "period_days": days,
            "total_sessions": len(sessions),
            "not_marked": len(sessions) - len(statuses),
            "attendance_rate": round(attendance_rate(statuses), 1),
            "sessions": entries,
        }
        out.update(count_statuses(statuses))
        return out

    def _class_analytics(self, cls, sessions, days: int) -> dict:
        students = self.users.list_by_ids(self.enrollments.student_ids_for_classes([cls.id]))
        per_student = []
        for student in students:
            statuses = [r.status for s in sessions for r in s.records if r.student_id == student.id]
            row = {"student": user_summary(student), "marked_sessions": len(statuses),
                   "attendance_rate": round(attendance_rate(statuses), 1)}
            row.update(count_statuses(statuses))
            per_student.append(row)
        per_student.sort(key=lambda r: r["attendance_rate"], reverse=True)
        all_statuses = [r.status for s in sessions for r in s.records]
        session_rows = []
        for s in sessions:
            row = serialize_session(s)
            row["counts"] = count_statuses(r.status for r in s.records)
            row["attendance_rate"] = round(attendance_rate(r.status for r in s.records), 1)
            session_rows.append(row)
        return {
            "class_id": cls.id,
            "period_days": days,
            "total_sessions": len(sessions),
            "total_students": len(students),
            "overall_rate": round(attendance_rate(all_statuses), 1),
            "students": per_student,
            "sessions": session_rows,
        }
