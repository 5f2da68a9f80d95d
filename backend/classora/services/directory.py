"""Teacher directory and global search."""

from typing import Optional

from sqlalchemy import func, or_
from sqlmodel import Session, select

from .. import models, repositories
from ..errors import NotFoundError
from .auth import TEACHER_FIELDS, serialize_profile
from .common import iso, paginate, serialize_class, user_summary

SEARCH_LIMIT = 5


class TeacherService:
    def __init__(self, session: Session):
        self.session = session
        self.classes = repositories.ClassRepository(session)

    def _teacher_payload(self, user: models.User, include_classes: bool = True, public_only: bool = False) -> dict:
        profile = user.teacher_profile
        out = user_summary(user)
        out.update({
            "bio": user.bio,
            "created_at": iso(user.created_at),
            "university": (profile.university if profile else None) or "Not specified",
            "department": (profile.department if profile else None) or "Not specified",
            "profile": serialize_profile(profile, TEACHER_FIELDS),
        })
        classes = self.classes.list_for_professor(user.id, include_archived=False)
        if public_only:
            classes = [c for c in classes if not c.is_private]
        out["total_classes"] = len(classes)
        if include_classes:
            out["classes"] = [serialize_class(c, counts=self.classes.count_related(c.id)) for c in classes]
        return out

    def _query(self, query: Optional[str], university: Optional[str] = None, department: Optional[str] = None,
               deep: bool = False):
        stmt = (
            select(models.User)
            .outerjoin(models.TeacherProfile, models.TeacherProfile.user_id == models.User.id)
            .where(models.User.role == models.Role.PROFESSOR, models.User.status == models.UserStatus.ACTIVE)
        )
        if query:
            like = f"%{query.lower()}%"
            fields = [models.User.name, models.User.email, models.TeacherProfile.university,
                      models.TeacherProfile.department]
            if deep:
                fields += [models.User.bio, models.TeacherProfile.research_interests]
            stmt = stmt.where(or_(*[func.lower(func.coalesce(f, "")).like(like) for f in fields]))
        if university:
            stmt = stmt.where(func.lower(func.coalesce(models.TeacherProfile.university, "")).like(f"%{university.lower()}%"))
        if department:
            stmt = stmt.where(func.lower(func.coalesce(models.TeacherProfile.department, "")).like(f"%{department.lower()}%"))
        return stmt

    def list(self, query: Optional[str] = None, limit: int = 20, offset: int = 0,
             university: Optional[str] = None, department: Optional[str] = None, deep: bool = False) -> dict:
        stmt = self._query(query, university, department, deep)
        total = self.session.exec(select(func.count()).select_from(stmt.subquery())).one()
        rows = self.session.exec(stmt.order_by(models.User.name).offset(offset).limit(limit)).all()
        return {"professors": [self._teacher_payload(u, include_classes=not deep, public_only=True) for u in rows],
                "pagination": paginate(total, limit, offset)}

    def detail(self, teacher_id: int) -> dict:
        user = repositories.UserRepository(self.session).get(teacher_id)
        if user is None or user.role != models.Role.PROFESSOR:
            raise NotFoundError("Teacher not found")
        return self._teacher_payload(user, public_only=True)


class SearchService:
    """Role-scoped search across classes, notes, quizzes, assignments and students."""
    def __init__(self, session: Session):
        self.session = session

    def search(self, user: models.User, q: str) -> dict:
        q = (q or "").strip()
        if len(q) < 2:
            raise ValueError("Search query must be at least 2 characters")
        like = f"%{q.lower()}%"
        enrollments = repositories.EnrollmentRepository(self.session)
        if user.role == models.Role.STUDENT:
            class_ids = enrollments.class_ids_for_student(user.id)
        elif user.role == models.Role.PROFESSOR:
            class_ids = [c.id for c in repositories.ClassRepository(self.session).list_for_professor(user.id)]
        else:
            class_ids = None

        def scoped(stmt, model):
            if class_ids is not None:
                stmt = stmt.where(model.class_id.in_(class_ids))
            if user.role == models.Role.STUDENT:
                stmt = stmt.where(model.status == models.ContentStatus.PUBLISHED)
            return stmt.limit(SEARCH_LIMIT)

        cls_stmt = select(models.Classroom).where(or_(
            func.lower(models.Classroom.name).like(like),
            func.lower(models.Classroom.code).like(like),
            func.lower(func.coalesce(models.Classroom.description, "")).like(like),
        ))
        if class_ids is not None:
            cls_stmt = cls_stmt.where(models.Classroom.id.in_(class_ids))
        classes = self.session.exec(cls_stmt.limit(SEARCH_LIMIT)).all()
        notes = self.session.exec(scoped(select(models.Note).where(or_(
            func.lower(models.Note.title).like(like), func.lower(models.Note.content).like(like))), models.Note)).all()
        quizzes = self.session.exec(scoped(select(models.Quiz).where(
            func.lower(models.Quiz.title).like(like)), models.Quiz)).all()
        assignments = self.session.exec(scoped(select(models.Assignment).where(
            func.lower(models.Assignment.title).like(like)), models.Assignment)).all()
        students = []
        if user.role != models.Role.STUDENT:
            stu_stmt = select(models.User).where(models.User.role == models.Role.STUDENT, or_(
                func.lower(models.User.name).like(like), func.lower(models.User.email).like(like)))
            if class_ids is not None:
                stu_stmt = stu_stmt.where(models.User.id.in_(
                    select(models.Enrollment.student_id).where(models.Enrollment.class_id.in_(class_ids))))
            students = self.session.exec(stu_stmt.limit(SEARCH_LIMIT)).all()

        def brief(row, kind):
            return {"id": row.id, "title": row.title, "type": kind, "class_id": row.class_id, "status": row.status}

        results = {
            "classes": [{"id": c.id, "name": c.name, "code": c.code, "type": "class"} for c in classes],
            "notes": [brief(n, "note") for n in notes],
            "quizzes": [brief(x, "quiz") for x in quizzes],
            "assignments": [brief(a, "assignment") for a in assignments],
            "students": [user_summary(s) for s in students],
        }
        results["total"] = sum(len(v) for v in results.values())
        return {"query": q, "results": results}
