"""Assignments, file submissions and grading."""

import logging
from typing import Optional

from fastapi import BackgroundTasks
from sqlalchemy import func
from sqlmodel import Session, select

from .. import models, repositories
from ..config import settings
from ..errors import NotFoundError, PermissionDenied
from ..utils import uploads
from .common import (announce_to_class, class_label, get_class, iso, notify_users, owned_class,
                     queue_email, require_class_access, require_role, user_summary)

logger = logging.getLogger("classora.assignments")

SUBMISSION_EXTENSIONS = {"pdf", "doc", "docx", "txt", "jpg", "jpeg", "png", "gif"}


def serialize_assignment(a: models.Assignment, cls: Optional[models.Classroom] = None) -> dict:
    out = {
        "id": a.id,
        "title": a.title,
        "description": a.description,
        "category": a.category,
        "file_url": a.file_url,
        "due_date": iso(a.due_date),
        "status": a.status,
        "class_id": a.class_id,
        "note_id": a.note_id,
        "professor_id": a.professor_id,
        "created_at": iso(a.created_at),
        "updated_at": iso(a.updated_at),
    }
    if cls is not None:
        out["class_name"] = class_label(cls)
    return out


def serialize_submission(s: models.AssignmentSubmission, student: Optional[models.User] = None) -> dict:
    out = {
        "id": s.id,
        "assignment_id": s.assignment_id,
        "student_id": s.student_id,
        "file_url": s.file_url,
        "file_name": s.file_name,
        "file_size": s.file_size,
        "comment": s.comment,
        "grade": s.grade,
        "feedback": s.feedback,
        "graded_at": iso(s.graded_at),
        "graded_by": s.graded_by,
        "submitted_at": iso(s.submitted_at),
    }
    if student is not None:
        out["student"] = user_summary(student)
    return out


class AssignmentService:
    def __init__(self, session: Session, tasks: Optional[BackgroundTasks] = None):
        self.session = session
        self.tasks = tasks
        self.repo = repositories.AssignmentRepository(session)
        self.submissions = repositories.SubmissionRepository(session)

    def _owned(self, professor: models.User, assignment_id: int) -> models.Assignment:
        a = self.repo.get(assignment_id)
        if a is None or a.professor_id != professor.id:
            raise NotFoundError("Assignment not found or access denied")
        return a

    def _check_note(self, professor: models.User, note_id: Optional[int]) -> None:
        if note_id is None:
            return
        note = repositories.NoteRepository(self.session).get(note_id)
        if note is None or note.professor_id != professor.id:
            raise ValueError("Note not found or access denied")

    def _announce(self, a: models.Assignment, professor: models.User) -> None:
        cls = get_class(self.session, a.class_id)
        announce_to_class(self.session, self.tasks, cls, professor, "new_assignment", "assignment",
                          a.title, f"/dashboard/assignments/{a.id}", due_date=a.due_date)

    def create(self, professor: models.User, data: dict) -> dict:
        cls = owned_class(self.session, data["class_id"], professor)
        self._check_note(professor, data.get("note_id"))
        data["due_date"] = models.as_naive_utc(data.get("due_date"))
        a = self.repo.save(models.Assignment(professor_id=professor.id, **data))
        if a.status == models.ContentStatus.PUBLISHED:
            self._announce(a, professor)
        return serialize_assignment(a, cls)

    def list(self, user: models.User, class_id: Optional[int] = None, status: Optional[str] = None,
             limit: int = 20, offset: int = 0) -> dict:
        """Role-scoped listing with submission info."""
        stmt = select(models.Assignment)
        if user.role == models.Role.STUDENT:
            class_ids = repositories.EnrollmentRepository(self.session).class_ids_for_student(user.id)
            if not class_ids:
                return {"assignments": [], "total": 0, "limit": limit, "offset": offset}
            stmt = stmt.where(models.Assignment.class_id.in_(class_ids),
                              models.Assignment.status == models.ContentStatus.PUBLISHED)
        elif user.role == models.Role.PROFESSOR:
            stmt = stmt.where(models.Assignment.professor_id == user.id)
            if status:
                stmt = stmt.where(models.Assignment.status == status)
        if class_id is not None:
            stmt = stmt.where(models.Assignment.class_id == class_id)
        total = self.session.exec(select(func.count()).select_from(stmt.subquery())).one()
        rows = self.session.exec(
            stmt.order_by(models.Assignment.created_at.desc(), models.Assignment.id.desc()).offset(offset).limit(limit)
        ).all()
        classes = {c.id: c for c in repositories.ClassRepository(self.session).list_by_ids(a.class_id for a in rows)}
        subs = self.submissions.list_for_assignments(a.id for a in rows)
        out = []
        for a in rows:
            item = serialize_assignment(a, classes.get(a.class_id))
            mine = [s for s in subs if s.assignment_id == a.id]
            if user.role == models.Role.STUDENT:
                own = next((s for s in mine if s.student_id == user.id), None)
                item.update({
                    "submitted": own is not None,
                    "graded": own is not None and own.grade is not None,
                    "grade": own.grade if own else None,
                    "submitted_at": iso(own.submitted_at) if own else None,
                })
            else:
                item["submission_count"] = len(mine)
            out.append(item)
        return {"assignments": out, "total": total, "limit": limit, "offset": offset}

    def get(self, user: models.User, assignment_id: int) -> dict:
        a = self.repo.get(assignment_id)
        if a is None:
            raise NotFoundError("Assignment not found")
        cls = require_class_access(self.session, a.class_id, user)
        if user.role == models.Role.STUDENT and a.status != models.ContentStatus.PUBLISHED:
            raise NotFoundError("Assignment not found")
        out = serialize_assignment(a, cls)
        if user.role == models.Role.STUDENT:
            own = self.submissions.find(a.id, user.id)
            out["submission"] = serialize_submission(own) if own else None
        else:
            out["submission_count"] = len(self.submissions.list_for_assignment(a.id))
        return out

    def update(self, professor: models.User, assignment_id: int, data: dict) -> dict:
        a = self._owned(professor, assignment_id)
        if "note_id" in data:
            self._check_note(professor, data["note_id"])
        if "due_date" in data:
            data["due_date"] = models.as_naive_utc(data["due_date"])
        was_published = a.status == models.ContentStatus.PUBLISHED
        for key, value in data.items():
            setattr(a, key, value)
        a.updated_at = models.utcnow()
        a = self.repo.save(a)
        if not was_published and a.status == models.ContentStatus.PUBLISHED:
            self._announce(a, professor)
        return serialize_assignment(a, get_class(self.session, a.class_id))

    def delete(self, professor: models.User, assignment_id: int) -> None:
        a = self._owned(professor, assignment_id)
        for s in self.submissions.list_for_assignment(a.id):
            uploads.remove_upload(s.file_url)
        self.repo.delete(a)

    def submit(self, student: models.User, assignment_id: int, filename: str, payload: bytes,
               comment: Optional[str] = None) -> dict:
        """Store a submission file; a resubmission replaces the previous one."""
        require_role(student, models.Role.STUDENT, "Student")
        uploads.validate_upload_filename(filename)
        uploads.check_size(payload, settings.MAX_UPLOAD_BYTES)
        ext = uploads.extension_of(filename)
        if ext not in SUBMISSION_EXTENSIONS:
            raise ValueError("File type not allowed. Allowed: " + ", ".join(sorted(SUBMISSION_EXTENSIONS)))
        if not uploads.sniff_matches_extension(payload, ext):
            raise ValueError("File content does not match its extension")
        a = self.repo.get(assignment_id)
        if a is None:
            raise NotFoundError("Assignment not found")
        if a.status != models.ContentStatus.PUBLISHED:
            raise ValueError("Assignment is not accepting submissions")
        if not repositories.EnrollmentRepository(self.session).is_enrolled(a.class_id, student.id):
            raise PermissionDenied("You are not enrolled in this class")
        if a.due_date is not None and a.due_date < models.utcnow():
            raise ValueError("Assignment due date has passed")

        file_url = uploads.store_upload(payload, filename, "assignments")
        existing = self.submissions.find(a.id, student.id)
        is_resubmission = existing is not None
        previous_url = existing.file_url if existing is not None else None
        if existing is not None:
            submission = existing
            submission.grade = None
            submission.graded_at = None
            submission.graded_by = None
            submission.feedback = None
        else:
            submission = models.AssignmentSubmission(assignment_id=a.id, student_id=student.id,
                                                     file_url=file_url, file_name=filename)
        submission.file_url = file_url
        submission.file_name = filename
        submission.file_size = len(payload)
        submission.comment = comment
        submission.submitted_at = models.utcnow()
        try:
            submission = self.submissions.save(submission)
        except Exception:
            # the row still references the previous file; drop the new one
            self.session.rollback()
            uploads.remove_upload(file_url)
            raise
        if previous_url and previous_url != file_url:
            uploads.remove_upload(previous_url)

        cls = get_class(self.session, a.class_id)
        professor = repositories.UserRepository(self.session).get(a.professor_id)
        verb = "resubmitted" if is_resubmission else "submitted"
        notify_users(self.session, [a.professor_id], "New assignment submission",
                     f"{student.name} {verb} \"{a.title}\"", "assignment", f"/dashboard/assignments/{a.id}")
        if professor is not None:
            queue_email(self.tasks, professor.email, "assignment_submission", {
                "student_name": student.name,
                "assignment_title": a.title,
                "class_name": cls.name,
                "submitted_at": iso(submission.submitted_at),
            })
        logger.info("assignment_submitted assignment=%s student=%s resubmission=%s", a.id, student.id, is_resubmission)
        return {
            "success": True,
            "submission_id": submission.id,
            "file_url": submission.file_url,
            "submitted_at": iso(submission.submitted_at),
            "is_resubmission": is_resubmission,
        }

    def list_submissions(self, professor: models.User, assignment_id: int) -> dict:
        a = self._owned(professor, assignment_id)
        subs = self.submissions.list_for_assignment(a.id)
        students = {u.id: u for u in repositories.UserRepository(self.session).list_by_ids(s.student_id for s in subs)}
        return {
            "assignment": serialize_assignment(a),
            "submissions": [serialize_submission(s, students.get(s.student_id)) for s in subs],
        }

    def own_submission(self, student: models.User, assignment_id: int) -> Optional[dict]:
        if self.repo.get(assignment_id) is None:
            raise NotFoundError("Assignment not found")
        s = self.submissions.find(assignment_id, student.id)
        return serialize_submission(s) if s else None

    def grade(self, professor: models.User, submission_id: int, grade: float, feedback: Optional[str]) -> dict:
        submission = self.submissions.get(submission_id)
        if submission is None:
            raise NotFoundError("Submission not found")
        a = self.repo.get(submission.assignment_id)
        if a is None or a.professor_id != professor.id:
            raise PermissionDenied("You can only grade submissions for your own assignments")
        submission.grade = grade
        submission.feedback = feedback
        submission.graded_at = models.utcnow()
        submission.graded_by = professor.id
        submission = self.submissions.save(submission)
        grade_text = f"{grade:g}"
        notify_users(self.session, [submission.student_id], "Assignment graded",
                     f"Your assignment \"{a.title}\" has been graded: {grade_text}%",
                     "assignment_graded", f"/dashboard/assignments/{a.id}")
        student = repositories.UserRepository(self.session).get(submission.student_id)
        if student is not None:
            cls = get_class(self.session, a.class_id)
            queue_email(self.tasks, student.email, "assignment_graded", {
                "student_name": student.name,
                "assignment_title": a.title,
                "class_name": cls.name,
                "grade": grade_text,
                "feedback": feedback,
            })
        return serialize_submission(submission, student)

    def record_view(self, student: models.User, assignment_id: int) -> dict:
        a = self.repo.get(assignment_id)
        if a is None:
            raise NotFoundError("Assignment not found")
        if student.role != models.Role.STUDENT or not repositories.EnrollmentRepository(self.session).is_enrolled(
                a.class_id, student.id):
            raise PermissionDenied("You are not enrolled in this class")
        if a.status != models.ContentStatus.PUBLISHED:
            raise ValueError("Assignment is not published")
        view = repositories.ViewRepository(self.session).mark(student.id, "assignment", a.id)
        return {"success": True, "viewed_at": iso(view.viewed_at)}
