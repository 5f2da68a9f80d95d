"""Class notes: authoring, publishing and student view tracking."""

from typing import Optional

from fastapi import BackgroundTasks
from sqlalchemy import func, or_
from sqlmodel import Session, select

from .. import models, repositories
from ..errors import NotFoundError, PermissionDenied
from .common import announce_to_class, get_class, iso, owned_class, paginate, require_class_access, user_summary


def serialize_note(note: models.Note, cls: Optional[models.Classroom] = None,
                   professor: Optional[models.User] = None) -> dict:
    out = {
        "id": note.id,
        "title": note.title,
        "content": note.content,
        "status": note.status,
        "class_id": note.class_id,
        "professor_id": note.professor_id,
        "created_at": iso(note.created_at),
        "updated_at": iso(note.updated_at),
    }
    if cls is not None:
        out["class"] = {"id": cls.id, "name": cls.name, "code": cls.code}
    if professor is not None:
        out["professor"] = user_summary(professor)
    return out


class NoteService:
    def __init__(self, session: Session, tasks: Optional[BackgroundTasks] = None):
        self.session = session
        self.tasks = tasks
        self.repo = repositories.NoteRepository(session)

    def _owned(self, professor: models.User, note_id: int) -> models.Note:
        note = self.repo.get(note_id)
        if note is None or note.professor_id != professor.id:
            raise NotFoundError("Note not found or access denied")
        return note

    def _announce(self, note: models.Note, professor: models.User) -> None:
        cls = get_class(self.session, note.class_id)
        announce_to_class(self.session, self.tasks, cls, professor, "new_note", "new_note",
                          note.title, f"/dashboard/notes/{note.id}")

    def create(self, professor: models.User, data: dict) -> dict:
        cls = owned_class(self.session, data["class_id"], professor)
        note = self.repo.save(models.Note(professor_id=professor.id, **data))
        if note.status == models.ContentStatus.PUBLISHED:
            self._announce(note, professor)
        return serialize_note(note, cls, professor)

    def list(self, user: models.User, query: Optional[str] = None, class_id: Optional[int] = None,
             professor_id: Optional[int] = None, status: Optional[str] = None,
             limit: int = 20, offset: int = 0) -> dict:
        stmt = select(models.Note)
        if user.role == models.Role.STUDENT:
            class_ids = repositories.EnrollmentRepository(self.session).class_ids_for_student(user.id)
            stmt = stmt.where(models.Note.class_id.in_(class_ids),
                              models.Note.status == models.ContentStatus.PUBLISHED)
        elif user.role == models.Role.PROFESSOR:
            stmt = stmt.where(models.Note.professor_id == user.id)
        if query:
            like = f"%{query.lower()}%"
            stmt = stmt.where(or_(func.lower(models.Note.title).like(like), func.lower(models.Note.content).like(like)))
        if class_id is not None:
            stmt = stmt.where(models.Note.class_id == class_id)
        if professor_id is not None:
            stmt = stmt.where(models.Note.professor_id == professor_id)
        if status and user.role != models.Role.STUDENT:
            stmt = stmt.where(models.Note.status == status)
        total = self.session.exec(select(func.count()).select_from(stmt.subquery())).one()
        rows = self.session.exec(
            stmt.order_by(models.Note.created_at.desc(), models.Note.id.desc()).offset(offset).limit(limit)
        ).all()
        classes = {c.id: c for c in repositories.ClassRepository(self.session).list_by_ids(n.class_id for n in rows)}
        professors = {u.id: u for u in repositories.UserRepository(self.session).list_by_ids(n.professor_id for n in rows)}
        notes = [serialize_note(n, classes.get(n.class_id), professors.get(n.professor_id)) for n in rows]
        return {"notes": notes, "pagination": paginate(total, limit, offset)}

    def get(self, user: models.User, note_id: int) -> dict:
        note = self.repo.get(note_id)
        if note is None:
            raise NotFoundError("Note not found")
        cls = require_class_access(self.session, note.class_id, user)
        if user.role == models.Role.STUDENT and note.status != models.ContentStatus.PUBLISHED:
            raise NotFoundError("Note not found")
        return serialize_note(note, cls, repositories.UserRepository(self.session).get(note.professor_id))

    def update(self, professor: models.User, note_id: int, data: dict) -> dict:
        note = self._owned(professor, note_id)
        was_published = note.status == models.ContentStatus.PUBLISHED
        for key, value in data.items():
            setattr(note, key, value)
        note.updated_at = models.utcnow()
        note = self.repo.save(note)
        if not was_published and note.status == models.ContentStatus.PUBLISHED:
            self._announce(note, professor)
        return serialize_note(note)

    def delete(self, professor: models.User, note_id: int) -> None:
        self.repo.delete(self._owned(professor, note_id))

    def record_view(self, student: models.User, note_id: int) -> dict:
        note = self.repo.get(note_id)
        if note is None:
            raise NotFoundError("Note not found")
        if student.role != models.Role.STUDENT:
            raise PermissionDenied("Only students can record views")
        if not repositories.EnrollmentRepository(self.session).is_enrolled(note.class_id, student.id):
            raise PermissionDenied("You are not enrolled in this class")
        if note.status != models.ContentStatus.PUBLISHED:
            raise ValueError("Note is not published")
        view = repositories.ViewRepository(self.session).mark(student.id, "note", note.id)
        return {"success": True, "viewed_at": iso(view.viewed_at)}
