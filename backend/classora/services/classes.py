"""Class management: CRUD, archiving, rosters, enrollments and email
invitations."""

import logging
import re
import secrets
from datetime import timedelta
from typing import List, Optional

from fastapi import BackgroundTasks
from sqlalchemy import func, or_
from sqlmodel import Session, select

from .. import mailer, models, repositories
from ..config import settings
from ..errors import NotFoundError, PermissionDenied
from .common import (get_class, iso, owned_class, paginate, require_role, serialize_class,
                     user_summary)

logger = logging.getLogger("classora.classes")

INVITATION_TTL = timedelta(days=7)
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class ClassService:
    def __init__(self, session: Session, tasks: Optional[BackgroundTasks] = None):
        self.session = session
        self.tasks = tasks
        self.repo = repositories.ClassRepository(session)
        self.enrollments = repositories.EnrollmentRepository(session)
        self.users = repositories.UserRepository(session)

    def _payload(self, cls: models.Classroom) -> dict:
        return serialize_class(cls, self.users.get(cls.professor_id), self.repo.count_related(cls.id))

    def create(self, professor: models.User, data: dict) -> dict:
        require_role(professor, models.Role.PROFESSOR, "Professor")
        if self.repo.get_by_code(data["code"]):
            raise ValueError("Class code already exists")
        cls = models.Classroom(professor_id=professor.id, **data)
        cls.code = cls.code.strip()
        cls = self.repo.save(cls)
        logger.info("class_created id=%s code=%s professor=%s", cls.id, cls.code, professor.id)
        return self._payload(cls)

    def list(self, query: Optional[str] = None, professor_id: Optional[int] = None,
             university: Optional[str] = None, include_archived: bool = False,
             include_private: bool = True, limit: int = 20, offset: int = 0) -> dict:
        """Search classes, newest first, with related counts."""
        stmt = (
            select(models.Classroom)
            .join(models.User, models.User.id == models.Classroom.professor_id)
            .outerjoin(models.TeacherProfile, models.TeacherProfile.user_id == models.User.id)
        )
        if query:
            like = f"%{query.lower()}%"
            stmt = stmt.where(or_(
                func.lower(models.Classroom.name).like(like),
                func.lower(models.Classroom.code).like(like),
                func.lower(func.coalesce(models.Classroom.description, "")).like(like),
                func.lower(models.User.name).like(like),
            ))
        if professor_id is not None:
            stmt = stmt.where(models.Classroom.professor_id == professor_id)
        if university:
            like = f"%{university.lower()}%"
            stmt = stmt.where(or_(
                func.lower(func.coalesce(models.TeacherProfile.university, "")).like(like),
                func.lower(func.coalesce(models.TeacherProfile.college, "")).like(like),
            ))
        if not include_archived:
            stmt = stmt.where(models.Classroom.is_archived == False)  # noqa: E712
        if not include_private:
            stmt = stmt.where(models.Classroom.is_private == False)  # noqa: E712
        total = self.session.exec(select(func.count()).select_from(stmt.subquery())).one()
        rows = self.session.exec(
            stmt.order_by(models.Classroom.created_at.desc(), models.Classroom.id.desc()).offset(offset).limit(limit)
        ).all()
        return {"classes": [self._payload(c) for c in rows], "pagination": paginate(total, limit, offset)}

    def detail(self, class_id: int) -> dict:
        cls = get_class(self.session, class_id)
        out = self._payload(cls)
        for key, model in (("notes", models.Note), ("quizzes", models.Quiz), ("assignments", models.Assignment)):
            stmt = (
                select(model)
                .where(model.class_id == cls.id, model.status == models.ContentStatus.PUBLISHED)
                .order_by(model.created_at.desc())
                .limit(5)
            )
            out[key] = [{"id": r.id, "title": r.title, "status": r.status, "created_at": iso(r.created_at)}
                        for r in self.session.exec(stmt).all()]
        out["enrollments"] = self.roster(cls)
        return out

    def update(self, professor: models.User, class_id: int, data: dict) -> dict:
        cls = owned_class(self.session, class_id, professor)
        code = data.get("code")
        if code and code.strip().lower() != cls.code.lower():
            if self.repo.get_by_code(code):
                raise ValueError("Class code already exists")
        for key, value in data.items():
            setattr(cls, key, value.strip() if key == "code" else value)
        cls.updated_at = models.utcnow()
        return self._payload(self.repo.save(cls))

    def delete(self, professor: models.User, class_id: int) -> None:
        cls = owned_class(self.session, class_id, professor)
        self.repo.delete(cls)
        logger.info("class_deleted id=%s professor=%s", class_id, professor.id)

    def set_archived(self, professor: models.User, class_id: int, is_archived: bool) -> dict:
        cls = get_class(self.session, class_id)
        if cls.professor_id != professor.id:
            raise PermissionDenied("Only the class owner can archive this class")
        cls.is_archived = is_archived
        cls.archived_at = models.utcnow() if is_archived else None
        cls.updated_at = models.utcnow()
        self.repo.save(cls)
        verb = "archived" if is_archived else "unarchived"
        return {"message": f'Class "{cls.name}" {verb} successfully', "class": self._payload(cls)}

    def roster(self, cls: models.Classroom) -> List[dict]:
        rows = self.enrollments.list_for_class(cls.id)
        students = {u.id: u for u in self.users.list_by_ids(r.student_id for r in rows)}
        out = [
            {"id": r.id, "enrolled_at": iso(r.enrolled_at), "student": user_summary(students.get(r.student_id))}
            for r in rows
        ]
        return sorted(out, key=lambda e: (e["student"] or {}).get("name", "").lower())

    def enrollments_for(self, user: models.User, class_id: int) -> dict:
        """Roster visible to the owning professor or an enrolled student."""
        cls = get_class(self.session, class_id)
        allowed = cls.professor_id == user.id or user.role == models.Role.ADMIN or (
            user.role == models.Role.STUDENT and self.enrollments.is_enrolled(cls.id, user.id)
        )
        if not allowed:
            raise PermissionDenied("Access denied to this class")
        return {"class": serialize_class(cls), "enrollments": self.roster(cls)}

    def remove_student(self, professor: models.User, class_id: int, student_id: int) -> None:
        cls = owned_class(self.session, class_id, professor)
        enrollment = self.enrollments.find(cls.id, student_id)
        if enrollment is None:
            raise NotFoundError("Student is not enrolled in this class")
        self.enrollments.delete(enrollment)

    def available_students(self, professor: models.User, class_id: int) -> List[dict]:
        """Students from the professor's other classes who are not in this one."""
        cls = owned_class(self.session, class_id, professor)
        other_ids = [c.id for c in self.repo.list_for_professor(professor.id) if c.id != cls.id]
        current = set(self.enrollments.student_ids_for_classes([cls.id]))
        candidates = set(self.enrollments.student_ids_for_classes(other_ids)) - current
        users = sorted(self.users.list_by_ids(candidates), key=lambda u: u.name.lower())
        return [user_summary(u) for u in users]

    def invite_existing(self, professor: models.User, class_id: int, student_ids: List[int]) -> dict:
        cls = owned_class(self.session, class_id, professor)
        students = self.users.list_by_ids(student_ids)
        if len(students) != len(set(student_ids)) or any(s.role != models.Role.STUDENT for s in students):
            raise ValueError("Some users are not valid students")
        invited = 0
        for student in students:
            if self.enrollments.is_enrolled(cls.id, student.id):
                continue
            self.session.add(models.Enrollment(class_id=cls.id, student_id=student.id))
            invited += 1
        self.session.commit()
        return {"message": f"{invited} student(s) added to {cls.name}", "invited_count": invited}

    def invite_emails(self, professor: models.User, class_id: int, emails: List[str]) -> dict:
        """Email invitation links to addresses that have no account yet."""
        cls = owned_class(self.session, class_id, professor)
        cleaned = []
        for email in emails:
            email = email.strip().lower()
            if EMAIL_RE.match(email) and email not in cleaned:
                cleaned.append(email)
        registered = self.users.emails_registered(cleaned)
        candidates = [e for e in cleaned if e not in registered]
        if not candidates:
            raise ValueError("No valid new email addresses to invite")
        invitations = repositories.InvitationRepository(self.session)
        now = models.utcnow()
        results = []
        sent = failed = 0
        for email in candidates:
            existing = invitations.find(cls.id, email)
            if existing is not None and existing.status == models.InvitationStatus.PENDING and existing.expires_at > now:
                results.append({"email": email, "status": "already_invited", "message": "Invitation already sent"})
                continue
            if existing is not None and existing.status == models.InvitationStatus.ACCEPTED:
                results.append({"email": email, "status": "already_invited", "message": "Invitation already accepted"})
                continue
            invitation = existing or models.ClassInvitation(class_id=cls.id, email=email, invited_by=professor.id,
                                                            token="", expires_at=now)
            invitation.token = secrets.token_hex(32)
            invitation.expires_at = now + INVITATION_TTL
            invitation.status = models.InvitationStatus.PENDING
            invitations.save(invitation)
            outcome = self._send_invitation(cls, professor, invitation)
            if outcome["success"]:
                sent += 1
                results.append({"email": email, "status": "invited", "message": "Invitation sent"})
            else:
                failed += 1
                results.append({"email": email, "status": "error", "message": outcome.get("error", "send failed")})
        return {"message": f"Invitations processed: {sent} sent, {failed} failed", "sent": sent,
                "failed": failed, "results": results}

    def _send_invitation(self, cls, professor, invitation) -> dict:
        return mailer.send_email(invitation.email, "class_invitation", {
            "class_name": cls.name,
            "class_code": cls.code,
            "professor_name": professor.name,
            "invite_url": f"{settings.APP_URL}/invite/{invitation.token}",
        })


class InvitationService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.InvitationRepository(session)

    def _valid(self, token: str) -> models.ClassInvitation:
        invitation = self.repo.get_by_token(token)
        if invitation is None:
            raise NotFoundError("Invalid invitation")
        if invitation.status != models.InvitationStatus.ACCEPTED and invitation.expires_at < models.utcnow():
            if invitation.status != models.InvitationStatus.EXPIRED:
                invitation.status = models.InvitationStatus.EXPIRED
                self.repo.save(invitation)
            raise ValueError("Invitation has expired")
        return invitation

    def describe(self, token: str) -> dict:
        invitation = self._valid(token)
        cls = get_class(self.session, invitation.class_id)
        professor = repositories.UserRepository(self.session).get(cls.professor_id)
        return {
            "email": invitation.email,
            "status": invitation.status,
            "expires_at": iso(invitation.expires_at),
            "class": serialize_class(cls, professor),
        }

    def accept(self, user: models.User, token: str) -> dict:
        invitation = self._valid(token)
        if invitation.status == models.InvitationStatus.ACCEPTED:
            raise ValueError("Invitation has already been accepted")
        require_role(user, models.Role.STUDENT, "Student")
        enrollments = repositories.EnrollmentRepository(self.session)
        if enrollments.is_enrolled(invitation.class_id, user.id):
            raise ValueError("You are already enrolled in this class")
        enrollment = models.Enrollment(class_id=invitation.class_id, student_id=user.id)
        self.session.add(enrollment)
        invitation.status = models.InvitationStatus.ACCEPTED
        invitation.accepted_at = models.utcnow()
        self.session.add(invitation)
        self.session.commit()
        self.session.refresh(enrollment)
        cls = get_class(self.session, invitation.class_id)
        return {"message": f"Successfully joined {cls.name}", "enrollment_id": enrollment.id,
                "class": serialize_class(cls)}


class EnrollmentService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.EnrollmentRepository(session)

    def enroll(self, student: models.User, class_id: int) -> dict:
        require_role(student, models.Role.STUDENT, "Student")
        cls = get_class(self.session, class_id)
        if cls.is_archived:
            raise ValueError("Cannot enroll in an archived class")
        if self.repo.is_enrolled(cls.id, student.id):
            raise ValueError("Already enrolled in this class")
        enrollment = self.repo.save(models.Enrollment(class_id=cls.id, student_id=student.id))
        return self._serialize(enrollment, cls)

    def leave(self, student: models.User, class_id: int) -> None:
        enrollment = self.repo.find(class_id, student.id)
        if enrollment is None:
            raise NotFoundError("Enrollment not found")
        self.repo.delete(enrollment)

    def list(self, user: models.User, student_id: Optional[int] = None, class_id: Optional[int] = None) -> List[dict]:
        stmt = select(models.Enrollment)
        if user.role == models.Role.STUDENT:
            if student_id is not None and student_id != user.id:
                raise PermissionDenied("Students can only view their own enrollments")
            stmt = stmt.where(models.Enrollment.student_id == user.id)
        elif user.role == models.Role.PROFESSOR:
            own = [c.id for c in repositories.ClassRepository(self.session).list_for_professor(user.id)]
            if class_id is not None and class_id not in own:
                raise PermissionDenied("Access denied to this class")
            stmt = stmt.where(models.Enrollment.class_id.in_(own))
            if student_id is not None:
                stmt = stmt.where(models.Enrollment.student_id == student_id)
        elif student_id is not None:
            stmt = stmt.where(models.Enrollment.student_id == student_id)
        if class_id is not None:
            stmt = stmt.where(models.Enrollment.class_id == class_id)
        rows = self.session.exec(stmt.order_by(models.Enrollment.enrolled_at.desc())).all()
        classes = {c.id: c for c in repositories.ClassRepository(self.session).list_by_ids(r.class_id for r in rows)}
        students = {u.id: u for u in repositories.UserRepository(self.session).list_by_ids(r.student_id for r in rows)}
        return [self._serialize(r, classes.get(r.class_id), students.get(r.student_id)) for r in rows]

    @staticmethod
    def _serialize(enrollment: models.Enrollment, cls: Optional[models.Classroom],
                   student: Optional[models.User] = None) -> dict:
        out = {
            "id": enrollment.id,
            "class_id": enrollment.class_id,
            "student_id": enrollment.student_id,
            "enrolled_at": iso(enrollment.enrolled_at),
        }
        if cls is not None:
            out["class"] = serialize_class(cls)
        if student is not None:
            out["student"] = user_summary(student)
        return out
