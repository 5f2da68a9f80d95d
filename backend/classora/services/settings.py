"""User preferences, public site settings and personal data export."""

import copy
from typing import Optional

from sqlmodel import Session, select

from .. import models, repositories
from .common import iso, serialize_user

DEFAULT_USER_SETTINGS = {
    "notifications": {"email": True, "push": True, "assignments": True, "quizzes": True, "announcements": True},
    "privacy": {"profile_visibility": "public", "show_email": False, "show_phone": False},
    "appearance": {"theme": "light", "font_size": "medium"},
}

PUBLIC_FIELDS = ("site_name", "site_description", "registration_enabled", "maintenance_mode", "max_file_size",
                 "allowed_file_types", "company_name", "company_email", "company_phone", "address_line1",
                 "address_line2", "city", "state", "postal_code", "country", "website")


def _merged(stored: Optional[models.UserSettings]) -> dict:
    out = copy.deepcopy(DEFAULT_USER_SETTINGS)
    if stored is not None:
        for section in out:
            out[section].update(getattr(stored, section) or {})
    return out


class SettingsService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.SettingsRepository(session)

    def get(self, user: models.User) -> dict:
        return _merged(self.repo.for_user(user.id))

    def update(self, user: models.User, changes: dict) -> dict:
        """Merge the given sections into the stored settings."""
        row = self.repo.for_user(user.id) or models.UserSettings(user_id=user.id)
        merged = _merged(row if row.id else None)
        for section, values in changes.items():
            if section in merged and values:
                merged[section].update({k: v for k, v in values.items() if v is not None})
        # reassign so the JSON columns are flagged dirty
        row.notifications = merged["notifications"]
        row.privacy = merged["privacy"]
        row.appearance = merged["appearance"]
        row.updated_at = models.utcnow()
        self.session.add(row)
        self.session.commit()
        return merged

    def public(self) -> dict:
        system = self.repo.system()
        return {field: getattr(system, field) for field in PUBLIC_FIELDS}

    def export(self, user: models.User) -> dict:
        """Collect everything stored about `user` into one document."""
        def rows(model, column, value):
            return list(self.session.exec(select(model).where(column == value)).all())

        out = {
            "exported_at": iso(models.utcnow()),
            "user": serialize_user(user),
            "settings": self.get(user),
        }
        if user.teacher_profile is not None:
            out["teacher_profile"] = user.teacher_profile.model_dump(exclude={"id", "user_id"})
        if user.student_profile is not None:
            out["student_profile"] = user.student_profile.model_dump(exclude={"id", "user_id"})
        out["classes"] = [
            {"id": c.id, "name": c.name, "code": c.code, "created_at": iso(c.created_at)}
            for c in rows(models.Classroom, models.Classroom.professor_id, user.id)
        ]
        out["enrollments"] = [
            {"class_id": e.class_id, "enrolled_at": iso(e.enrolled_at)}
            for e in rows(models.Enrollment, models.Enrollment.student_id, user.id)
        ]
        out["quiz_attempts"] = [
            {"quiz_id": a.quiz_id, "score": a.score, "total_points": a.total_points, "percentage": a.percentage,
             "completed_at": iso(a.completed_at)}
            for a in rows(models.QuizAttempt, models.QuizAttempt.student_id, user.id)
        ]
        out["submissions"] = [
            {"assignment_id": s.assignment_id, "file_url": s.file_url, "grade": s.grade,
             "submitted_at": iso(s.submitted_at)}
            for s in rows(models.AssignmentSubmission, models.AssignmentSubmission.student_id, user.id)
        ]
        out["practice_attempts"] = [
            {"question_id": p.question_id, "is_correct": p.is_correct, "score": p.score,
             "started_at": iso(p.started_at)}
            for p in rows(models.PracticeAttempt, models.PracticeAttempt.student_id, user.id)
        ]
        out["calendar_events"] = [
            {"id": ev.id, "title": ev.title, "type": ev.type, "date": iso(ev.date)}
            for ev in rows(models.CalendarEvent, models.CalendarEvent.professor_id, user.id)
        ]
        return out
