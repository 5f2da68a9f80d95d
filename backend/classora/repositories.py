"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate. Repositories
return SQLModel objects and perform commits/refreshes where appropriate;
cross-aggregate rules belong to the services.
"""

from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import func, or_
from sqlmodel import Session, select

from . import models


class _Repository:
    model = None

    def __init__(self, session: Session):
        self.session = session

    def get(self, obj_id: int):
        """Fetch a row by primary key."""
        return self.session.get(self.model, obj_id)

    def save(self, obj):
        """Add or update `obj`, commit and refresh it."""
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj

    def delete(self, obj) -> None:
        self.session.delete(obj)
        self.session.commit()


class UserRepository(_Repository):
    """CRUD operations for `User` objects."""
    model = models.User

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        return self.save(user)

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by (case-insensitive) email or `None`."""
        stmt = select(models.User).where(func.lower(models.User.email) == email.strip().lower())
        return self.session.exec(stmt).first()

    def get_by_reset_token(self, token: str) -> Optional[models.User]:
        stmt = select(models.User).where(models.User.reset_token == token)
        return self.session.exec(stmt).first()

    def list_by_ids(self, ids: Iterable[int]) -> List[models.User]:
        ids = list(set(ids))
        if not ids:
            return []
        return list(self.session.exec(select(models.User).where(models.User.id.in_(ids))).all())

    def emails_registered(self, emails: Sequence[str]) -> set:
        if not emails:
            return set()
        lowered = [e.lower() for e in emails]
        stmt = select(models.User.email).where(func.lower(models.User.email).in_(lowered))
        return {e.lower() for e in self.session.exec(stmt).all()}

    def search(self, query: Optional[str] = None, role: Optional[str] = None, status: Optional[str] = None,
               limit: int = 20, offset: int = 0):
        """Return `(users, total)` filtered by text, role and status."""
        stmt = select(models.User)
        count_stmt = select(func.count()).select_from(models.User)
        conditions = []
        if query:
            like = f"%{query.lower()}%"
            conditions.append(or_(func.lower(models.User.name).like(like), func.lower(models.User.email).like(like)))
        if role:
            conditions.append(models.User.role == role)
        if status:
            conditions.append(models.User.status == status)
        for cond in conditions:
            stmt = stmt.where(cond)
            count_stmt = count_stmt.where(cond)
        total = self.session.exec(count_stmt).one()
        rows = self.session.exec(stmt.order_by(models.User.created_at.desc()).offset(offset).limit(limit)).all()
        return list(rows), total

    def count(self, role: Optional[str] = None, active_since: Optional[datetime] = None) -> int:
        stmt = select(func.count()).select_from(models.User)
        if role:
            stmt = stmt.where(models.User.role == role)
        if active_since:
            stmt = stmt.where(models.User.last_login_at >= active_since)
        return self.session.exec(stmt).one()


class ClassRepository(_Repository):
    model = models.Classroom

    def get_by_code(self, code: str) -> Optional[models.Classroom]:
        stmt = select(models.Classroom).where(func.lower(models.Classroom.code) == code.strip().lower())
        return self.session.exec(stmt).first()

    def get_owned(self, class_id: int, professor_id: int) -> Optional[models.Classroom]:
        cls = self.get(class_id)
        if cls is None or cls.professor_id != professor_id:
            return None
        return cls

    def list_for_professor(self, professor_id: int, include_archived: bool = True) -> List[models.Classroom]:
        stmt = select(models.Classroom).where(models.Classroom.professor_id == professor_id)
        if not include_archived:
            stmt = stmt.where(models.Classroom.is_archived == False)  # noqa: E712
        return list(self.session.exec(stmt.order_by(models.Classroom.created_at.desc())).all())

    def list_by_ids(self, ids: Iterable[int]) -> List[models.Classroom]:
        ids = list(set(ids))
        if not ids:
            return []
        stmt = select(models.Classroom).where(models.Classroom.id.in_(ids)).order_by(models.Classroom.created_at.desc())
        return list(self.session.exec(stmt).all())

    def count_related(self, class_id: int) -> dict:
        """Return enrollment/note/quiz/assignment counts for one class."""
        out = {}
        for key, model in (
            ("enrollments", models.Enrollment),
            ("notes", models.Note),
            ("quizzes", models.Quiz),
            ("assignments", models.Assignment),
        ):
            stmt = select(func.count()).select_from(model).where(model.class_id == class_id)
            out[key] = self.session.exec(stmt).one()
        return out


class EnrollmentRepository(_Repository):
    model = models.Enrollment

    def find(self, class_id: int, student_id: int) -> Optional[models.Enrollment]:
        stmt = select(models.Enrollment).where(
            models.Enrollment.class_id == class_id,
            models.Enrollment.student_id == student_id,
        )
        return self.session.exec(stmt).first()

    def is_enrolled(self, class_id: int, student_id: int) -> bool:
        return self.find(class_id, student_id) is not None

    def list_for_class(self, class_id: int) -> List[models.Enrollment]:
        stmt = select(models.Enrollment).where(models.Enrollment.class_id == class_id)
        return list(self.session.exec(stmt).all())

    def list_for_student(self, student_id: int) -> List[models.Enrollment]:
        stmt = (
            select(models.Enrollment)
            .where(models.Enrollment.student_id == student_id)
            .order_by(models.Enrollment.enrolled_at.desc())
        )
        return list(self.session.exec(stmt).all())

    def class_ids_for_student(self, student_id: int) -> List[int]:
        stmt = select(models.Enrollment.class_id).where(models.Enrollment.student_id == student_id)
        return list(self.session.exec(stmt).all())

    def student_ids_for_classes(self, class_ids: Iterable[int]) -> List[int]:
        class_ids = list(class_ids)
        if not class_ids:
            return []
        stmt = select(models.Enrollment.student_id).where(models.Enrollment.class_id.in_(class_ids))
        return list(self.session.exec(stmt).all())


class InvitationRepository(_Repository):
    model = models.ClassInvitation

    def get_by_token(self, token: str) -> Optional[models.ClassInvitation]:
        stmt = select(models.ClassInvitation).where(models.ClassInvitation.token == token)
        return self.session.exec(stmt).first()

    def find(self, class_id: int, email: str) -> Optional[models.ClassInvitation]:
        stmt = select(models.ClassInvitation).where(
            models.ClassInvitation.class_id == class_id,
            func.lower(models.ClassInvitation.email) == email.lower(),
        )
        return self.session.exec(stmt).first()


class NoteRepository(_Repository):
    model = models.Note


class AssignmentRepository(_Repository):
    model = models.Assignment


class SubmissionRepository(_Repository):
    model = models.AssignmentSubmission

    def find(self, assignment_id: int, student_id: int) -> Optional[models.AssignmentSubmission]:
        stmt = select(models.AssignmentSubmission).where(
            models.AssignmentSubmission.assignment_id == assignment_id,
            models.AssignmentSubmission.student_id == student_id,
        )
        return self.session.exec(stmt).first()

    def list_for_assignment(self, assignment_id: int) -> List[models.AssignmentSubmission]:
        stmt = (
            select(models.AssignmentSubmission)
            .where(models.AssignmentSubmission.assignment_id == assignment_id)
            .order_by(models.AssignmentSubmission.submitted_at.desc())
        )
        return list(self.session.exec(stmt).all())

    def list_for_assignments(self, assignment_ids: Iterable[int]) -> List[models.AssignmentSubmission]:
        assignment_ids = list(assignment_ids)
        if not assignment_ids:
            return []
        stmt = select(models.AssignmentSubmission).where(
            models.AssignmentSubmission.assignment_id.in_(assignment_ids)
        )
        return list(self.session.exec(stmt).all())

    def list_for_student(self, student_id: int) -> List[models.AssignmentSubmission]:
        stmt = select(models.AssignmentSubmission).where(models.AssignmentSubmission.student_id == student_id)
        return list(self.session.exec(stmt).all())


class QuizRepository(_Repository):
    model = models.Quiz

    def attempts_for(self, quiz_id: int, student_id: Optional[int] = None) -> List[models.QuizAttempt]:
        stmt = select(models.QuizAttempt).where(models.QuizAttempt.quiz_id == quiz_id)
        if student_id is not None:
            stmt = stmt.where(models.QuizAttempt.student_id == student_id)
        return list(self.session.exec(stmt.order_by(models.QuizAttempt.started_at.desc())).all())

    def attempts_for_quizzes(self, quiz_ids: Iterable[int]) -> List[models.QuizAttempt]:
        quiz_ids = list(quiz_ids)
        if not quiz_ids:
            return []
        stmt = select(models.QuizAttempt).where(models.QuizAttempt.quiz_id.in_(quiz_ids))
        return list(self.session.exec(stmt).all())

    def attempts_for_student(self, student_id: int) -> List[models.QuizAttempt]:
        stmt = (
            select(models.QuizAttempt)
            .where(models.QuizAttempt.student_id == student_id)
            .order_by(models.QuizAttempt.started_at.desc())
        )
        return list(self.session.exec(stmt).all())

    def count_attempts(self, quiz_id: int, student_id: int) -> int:
        stmt = select(func.count()).select_from(models.QuizAttempt).where(
            models.QuizAttempt.quiz_id == quiz_id,
            models.QuizAttempt.student_id == student_id,
        )
        return self.session.exec(stmt).one()


class ViewRepository:
    """Tracks which published items a student has opened."""
    def __init__(self, session: Session):
        self.session = session

    def viewed_ids(self, student_id: int, content_type: str) -> set:
        stmt = select(models.ContentView.content_id).where(
            models.ContentView.student_id == student_id,
            models.ContentView.content_type == content_type,
        )
        return set(self.session.exec(stmt).all())

    def mark(self, student_id: int, content_type: str, content_id: int, commit: bool = True) -> models.ContentView:
        """Upsert a view row; re-viewing refreshes `viewed_at`."""
        stmt = select(models.ContentView).where(
            models.ContentView.student_id == student_id,
            models.ContentView.content_type == content_type,
            models.ContentView.content_id == content_id,
        )
        view = self.session.exec(stmt).first()
        if view is None:
            view = models.ContentView(student_id=student_id, content_type=content_type, content_id=content_id)
        else:
            view.viewed_at = models.utcnow()
        self.session.add(view)
        if commit:
            self.session.commit()
            self.session.refresh(view)
        return view


class AttendanceRepository(_Repository):
    model = models.AttendanceSession

    def sessions_for_class(self, class_id: int, start: Optional[datetime] = None,
                           end: Optional[datetime] = None) -> List[models.AttendanceSession]:
        stmt = select(models.AttendanceSession).where(models.AttendanceSession.class_id == class_id)
        if start is not None:
            stmt = stmt.where(models.AttendanceSession.date >= start)
        if end is not None:
            stmt = stmt.where(models.AttendanceSession.date <= end)
        return list(self.session.exec(stmt.order_by(models.AttendanceSession.date.desc())).all())

    def find_record(self, session_id: int, student_id: int) -> Optional[models.AttendanceRecord]:
        stmt = select(models.AttendanceRecord).where(
            models.AttendanceRecord.session_id == session_id,
            models.AttendanceRecord.student_id == student_id,
        )
        return self.session.exec(stmt).first()


class PracticeRepository(_Repository):
    model = models.PracticeQuestion

    def attempts_for_student(self, student_id: int) -> List[models.PracticeAttempt]:
        stmt = select(models.PracticeAttempt).where(models.PracticeAttempt.student_id == student_id)
        return list(self.session.exec(stmt).all())

    def attempts_for_questions(self, question_ids: Iterable[int]) -> List[models.PracticeAttempt]:
        question_ids = list(question_ids)
        if not question_ids:
            return []
        stmt = select(models.PracticeAttempt).where(models.PracticeAttempt.question_id.in_(question_ids))
        return list(self.session.exec(stmt).all())


class NotificationRepository(_Repository):
    model = models.Notification

    def list_for_user(self, user_id: int, limit: int = 10, unread_only: bool = False) -> List[models.Notification]:
        stmt = select(models.Notification).where(models.Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(models.Notification.is_read == False)  # noqa: E712
        stmt = stmt.order_by(models.Notification.created_at.desc(), models.Notification.id.desc()).limit(limit)
        return list(self.session.exec(stmt).all())

    def unread_count(self, user_id: int) -> int:
        stmt = select(func.count()).select_from(models.Notification).where(
            models.Notification.user_id == user_id,
            models.Notification.is_read == False,  # noqa: E712
        )
        return self.session.exec(stmt).one()

    def add_many(self, notifications: List[models.Notification]) -> None:
        for n in notifications:
            self.session.add(n)
        self.session.commit()


class SettingsRepository:
    """Per-user settings and the system settings singleton."""
    def __init__(self, session: Session):
        self.session = session

    def for_user(self, user_id: int) -> Optional[models.UserSettings]:
        stmt = select(models.UserSettings).where(models.UserSettings.user_id == user_id)
        return self.session.exec(stmt).first()

    def system(self) -> models.SystemSettings:
        """Return the system settings row, creating it with defaults."""
        row = self.session.exec(select(models.SystemSettings).order_by(models.SystemSettings.id)).first()
        if row is None:
            row = models.SystemSettings()
            self.session.add(row)
            self.session.commit()
            self.session.refresh(row)
        return row


class ContactRepository(_Repository):
    model = models.ContactMessage

    def list(self, unread_only: bool = False) -> List[models.ContactMessage]:
        stmt = select(models.ContactMessage)
        if unread_only:
            stmt = stmt.where(models.ContactMessage.read == False)  # noqa: E712
        return list(self.session.exec(stmt.order_by(models.ContactMessage.created_at.desc())).all())

    def unread_count(self) -> int:
        stmt = select(func.count()).select_from(models.ContactMessage).where(
            models.ContactMessage.read == False  # noqa: E712
        )
        return self.session.exec(stmt).one()


class BackupRepository(_Repository):
    model = models.Backup

    def list(self) -> List[models.Backup]:
        stmt = select(models.Backup).order_by(models.Backup.created_at.desc(), models.Backup.id.desc())
        return list(self.session.exec(stmt).all())

    def latest(self) -> Optional[models.Backup]:
        return self.session.exec(
            select(models.Backup).order_by(models.Backup.created_at.desc(), models.Backup.id.desc())
        ).first()

    def older_than(self, cutoff: datetime) -> List[models.Backup]:
        stmt = select(models.Backup).where(models.Backup.created_at < cutoff)
        return list(self.session.exec(stmt).all())


class CrashRepository(_Repository):
    model = models.CrashReport

    def search(self, type: Optional[str] = None, severity: Optional[str] = None,
               resolved: Optional[bool] = None, limit: int = 50, offset: int = 0):
        stmt = select(models.CrashReport)
        count_stmt = select(func.count()).select_from(models.CrashReport)
        conditions = []
        if type:
            conditions.append(models.CrashReport.type == type)
        if severity:
            conditions.append(models.CrashReport.severity == severity)
        if resolved is not None:
            conditions.append(models.CrashReport.resolved == resolved)
        for cond in conditions:
            stmt = stmt.where(cond)
            count_stmt = count_stmt.where(cond)
        total = self.session.exec(count_stmt).one()
        stmt = stmt.order_by(models.CrashReport.created_at.desc(), models.CrashReport.id.desc())
        return list(self.session.exec(stmt.offset(offset).limit(limit)).all()), total


class CalendarRepository(_Repository):
    model = models.CalendarEvent

    def for_professor(self, professor_id: int) -> List[models.CalendarEvent]:
        stmt = (
            select(models.CalendarEvent)
            .where(models.CalendarEvent.professor_id == professor_id)
            .order_by(models.CalendarEvent.date)
        )
        return list(self.session.exec(stmt).all())

    def for_classes(self, class_ids: Iterable[int]) -> List[models.CalendarEvent]:
        class_ids = list(class_ids)
        if not class_ids:
            return []
        stmt = (
            select(models.CalendarEvent)
            .where(models.CalendarEvent.class_id.in_(class_ids))
            .order_by(models.CalendarEvent.date)
        )
        return list(self.session.exec(stmt).all())
