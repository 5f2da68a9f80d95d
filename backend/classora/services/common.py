"""Helpers shared by the service modules: serializers, access checks,
pagination and human-friendly date text."""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from fastapi import BackgroundTasks
from sqlmodel import Session

from .. import mailer, models, repositories
from ..errors import NotFoundError, PermissionDenied


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def paginate(total: int, limit: int, offset: int) -> dict:
    return {"total": total, "limit": limit, "offset": offset, "has_more": offset + limit < total}


def time_ago(value: datetime, now: Optional[datetime] = None) -> str:
    """Render a past timestamp as 'Just now', '5 minutes ago', '2 days ago'."""
    now = now or models.utcnow()
    seconds = int((now - value).total_seconds())
    if seconds < 60:
        return "Just now"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    days = hours // 24
    return f"{days} day{'s' if days != 1 else ''} ago"


def due_label(due: datetime, now: Optional[datetime] = None) -> str:
    """Describe a deadline relative to today: Overdue, Today, Tomorrow, ..."""
    now = now or models.utcnow()
    if due < now:
        return "Overdue"
    days = (due.date() - now.date()).days
    if days == 0:
        return "Today"
    if days == 1:
        return "Tomorrow"
    if days < 7:
        return f"In {days} days"
    return "Next week"


def user_summary(user: Optional[models.User]) -> Optional[dict]:
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "email": user.email, "role": user.role, "avatar": user.avatar}


def serialize_user(user: models.User) -> dict:
    out = user_summary(user)
    out.update({
        "status": user.status,
        "bio": user.bio,
        "created_at": iso(user.created_at),
        "updated_at": iso(user.updated_at),
        "last_login_at": iso(user.last_login_at),
    })
    return out


def serialize_class(cls: models.Classroom, professor: Optional[models.User] = None,
                    counts: Optional[dict] = None) -> dict:
    out = {
        "id": cls.id,
        "name": cls.name,
        "code": cls.code,
        "description": cls.description,
        "is_private": cls.is_private,
        "is_archived": cls.is_archived,
        "archived_at": iso(cls.archived_at),
        "gradient_color": cls.gradient_color,
        "image_url": cls.image_url,
        "professor_id": cls.professor_id,
        "created_at": iso(cls.created_at),
        "updated_at": iso(cls.updated_at),
    }
    if professor is not None:
        out["professor"] = user_summary(professor)
    if counts is not None:
        out["counts"] = counts
    return out


def class_label(cls: models.Classroom) -> str:
    return f"{cls.code} - {cls.name}"


def get_class(session: Session, class_id: int) -> models.Classroom:
    cls = repositories.ClassRepository(session).get(class_id)
    if cls is None:
        raise NotFoundError("Class not found")
    return cls


def owned_class(session: Session, class_id: int, professor: models.User) -> models.Classroom:
    """Return the class when `professor` owns it, else raise 404."""
    cls = repositories.ClassRepository(session).get_owned(class_id, professor.id)
    if cls is None:
        raise NotFoundError("Class not found or access denied")
    return cls


def require_class_access(session: Session, class_id: int, user: models.User) -> models.Classroom:
    """Owning professor, enrolled student or admin may read class content."""
    cls = get_class(session, class_id)
    if user.role == models.Role.ADMIN or cls.professor_id == user.id:
        return cls
    if user.role == models.Role.STUDENT and repositories.EnrollmentRepository(session).is_enrolled(cls.id, user.id):
        return cls
    raise PermissionDenied("Access denied to this class")


def require_role(user: models.User, role: str, label: str) -> None:
    if user.role != role:
        raise PermissionDenied(f"Access denied. {label} role required.")


def queue_email(tasks: Optional[BackgroundTasks], to: str, template: str, data: dict) -> None:
    """Send an email after the response when `tasks` is given, else now."""
    if tasks is not None:
        tasks.add_task(mailer.send_email, to, template, data)
    else:
        mailer.send_email(to, template, data)


def notify_users(session: Session, user_ids: Iterable[int], title: str, message: str,
                 type: str, link: Optional[str] = None) -> int:
    rows: List[models.Notification] = [
        models.Notification(user_id=uid, title=title, message=message, type=type, link=link)
        for uid in set(user_ids)
    ]
    repositories.NotificationRepository(session).add_many(rows)
    return len(rows)


def announce_to_class(session: Session, tasks: Optional[BackgroundTasks], cls: models.Classroom,
                      professor: models.User, template: str, notification_type: str,
                      title: str, link: str, due_date: Optional[datetime] = None) -> int:
    """Notify and email every student enrolled in `cls` about new content."""
    student_ids = [e.student_id for e in repositories.EnrollmentRepository(session).list_for_class(cls.id)]
    if not student_ids:
        return 0
    kind = template.replace("new_", "")
    notify_users(session, student_ids, f"New {kind}: {title}", f"{professor.name} published \"{title}\" in {cls.name}",
                 notification_type, link)
    for student in repositories.UserRepository(session).list_by_ids(student_ids):
        queue_email(tasks, student.email, template, {
            "student_name": student.name,
            "professor_name": professor.name,
            "class_name": cls.name,
            "title": title,
            "due_date": iso(due_date),
        })
    return len(student_ids)


def window_start(days: int) -> datetime:
    return models.utcnow() - timedelta(days=days)
