"""Calendar events and the merged dashboard calendar."""

from datetime import timedelta
from typing import List, Optional

from sqlmodel import Session, select

from .. import models, repositories
from ..errors import NotFoundError
from .common import iso, owned_class, require_role


def serialize_event(e: models.CalendarEvent, cls: Optional[models.Classroom] = None) -> dict:
    return {
        "id": e.id,
        "title": e.title,
        "description": e.description,
        "type": e.type,
        "date": iso(e.date),
        "category": e.category,
        "priority": e.priority,
        "class_id": e.class_id,
        "class_name": cls.name if cls else "General",
        "professor_id": e.professor_id,
        "created_at": iso(e.created_at),
    }


class CalendarService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.CalendarRepository(session)
        self.classes = repositories.ClassRepository(session)

    def create(self, professor: models.User, data: dict) -> dict:
        require_role(professor, models.Role.PROFESSOR, "Professor")
        cls = None
        if data.get("class_id") is not None:
            cls = owned_class(self.session, data["class_id"], professor)
        data["date"] = models.as_naive_utc(data["date"])
        event = self.repo.save(models.CalendarEvent(professor_id=professor.id, **data))
        return serialize_event(event, cls)

    def list(self, user: models.User) -> List[dict]:
        if user.role == models.Role.STUDENT:
            class_ids = repositories.EnrollmentRepository(self.session).class_ids_for_student(user.id)
            events = self.repo.for_classes(class_ids)
        else:
            events = self.repo.for_professor(user.id)
        classes = {c.id: c for c in self.classes.list_by_ids(e.class_id for e in events if e.class_id)}
        return [serialize_event(e, classes.get(e.class_id)) for e in events]

    def delete(self, professor: models.User, event_id: int) -> None:
        event = self.repo.get(event_id)
        if event is None or event.professor_id != professor.id:
            raise NotFoundError("Event not found or access denied")
        self.repo.delete(event)

    def dashboard(self, user: models.User) -> dict:
        """Merge deadlines, quizzes, published notes and events into one feed."""
        is_student = user.role == models.Role.STUDENT
        if is_student:
            classes = self.classes.list_by_ids(
                repositories.EnrollmentRepository(self.session).class_ids_for_student(user.id))
        else:
            classes = self.classes.list_for_professor(user.id)
        by_id = {c.id: c for c in classes}
        class_ids = list(by_id)
        events = []

        def item(kind, obj, when, description=None, **extra):
            cls = by_id.get(obj.class_id)
            entry = {"id": obj.id, "title": obj.title, "type": kind, "date": iso(when), "class_id": obj.class_id,
                     "class_name": cls.name if cls else "General", "description": description, "_at": when}
            entry.update(extra)
            return entry

        if class_ids:
            for a in self.session.exec(select(models.Assignment).where(models.Assignment.class_id.in_(class_ids))).all():
                if a.due_date and (not is_student or a.status == models.ContentStatus.PUBLISHED):
                    events.append(item("assignment", a, a.due_date, a.description, status=a.status))
            for q in self.session.exec(select(models.Quiz).where(models.Quiz.class_id.in_(class_ids))).all():
                if not is_student or q.status == models.ContentStatus.PUBLISHED:
                    events.append(item("quiz", q, q.created_at, q.description, status=q.status))
            for n in self.session.exec(select(models.Note).where(
                    models.Note.class_id.in_(class_ids),
                    models.Note.status == models.ContentStatus.PUBLISHED)).all():
                events.append(item("note", n, n.updated_at, "Note published"))
        calendar_events = self.repo.for_classes(class_ids) if is_student else self.repo.for_professor(user.id)
        for e in calendar_events:
            events.append(item(e.type, e, e.date, e.description, category=e.category, priority=e.priority))
        events.sort(key=lambda e: e["_at"])

        now = models.utcnow()
        week_start = (now - timedelta(days=(now.weekday() + 1) % 7)).replace(hour=0, minute=0, second=0, microsecond=0)
        week_end = week_start + timedelta(days=7)
        weekly = [e for e in events if week_start <= e["_at"] < week_end]
        upcoming = [e for e in events if now <= e["_at"] <= now + timedelta(days=7)][:10]
        for e in events:
            del e["_at"]
        return {
            "events": events,
            "upcoming_events": upcoming,
            "weekly_stats": {
                "assignments": sum(1 for e in weekly if e["type"] == "assignment"),
                "quizzes": sum(1 for e in weekly if e["type"] == "quiz"),
                "notes": sum(1 for e in weekly if e["type"] == "note"),
                "holidays": sum(1 for e in weekly if e["type"] == "holiday"),
                "academic": sum(1 for e in weekly if e["type"] == "academic"),
                "todos": sum(1 for e in weekly if e["type"] == "todo"),
            },
        }
