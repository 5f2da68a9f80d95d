"""Practice question bank, self-graded attempts and practice files."""

import logging
from collections import defaultdict
from typing import List, Optional

from sqlalchemy import func, or_
from sqlmodel import Session, select

from .. import models, repositories
from ..errors import NotFoundError, PermissionDenied
from ..utils import uploads
from ..utils.parsers import SUPPORTED_EXTENSIONS, parse_file_to_questions
from .common import get_class, iso, owned_class, paginate, require_class_access, require_role

logger = logging.getLogger("classora.practice")

PRACTICE_FILE_EXTENSIONS = {"pdf", "doc", "docx", "txt", "csv", "json", "ppt", "pptx", "jpg", "jpeg", "png"}


def serialize_practice_question(q: models.PracticeQuestion, reveal: bool) -> dict:
    options = []
    for o in q.options:
        item = {"id": o.id, "text": o.text, "order": o.order}
        if reveal:
            item["is_correct"] = o.is_correct
            item["explanation"] = o.explanation
        options.append(item)
    return {
        "id": q.id,
        "title": q.title,
        "content": q.content,
        "type": q.type,
        "subject": q.subject,
        "difficulty": q.difficulty,
        "points": q.points,
        "time_limit": q.time_limit,
        "class_id": q.class_id,
        "created_by": q.created_by,
        "created_at": iso(q.created_at),
        "options": options,
    }


def grade_practice(question: models.PracticeQuestion, selected: List[int]) -> bool:
    """Multiple selection needs the exact set; other types one correct id."""
    correct = {o.id for o in question.options if o.is_correct}
    if not correct:
        return False
    if question.type == models.QuestionType.MULTIPLE_SELECTION:
        return set(selected) == correct
    return len(selected) == 1 and selected[0] in correct


def _validate_options(qtype: str, options: List[dict]) -> None:
    if qtype == models.QuestionType.SHORT_ANSWER:
        return
    if len(options) < 2:
        raise ValueError("At least two options are required")
    correct = sum(1 for o in options if o.get("is_correct"))
    if correct == 0:
        raise ValueError("At least one option must be correct")
    if qtype != models.QuestionType.MULTIPLE_SELECTION and correct > 1:
        raise ValueError("Only one option can be correct for this question type")


def _build_options(options: List[dict]) -> List[models.PracticeOption]:
    return [
        models.PracticeOption(text=o["text"], is_correct=bool(o.get("is_correct")),
                              explanation=o.get("explanation"), order=i + 1)
        for i, o in enumerate(options)
    ]


class PracticeService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.PracticeRepository(session)

    def _owned(self, professor: models.User, question_id: int) -> models.PracticeQuestion:
        q = self.repo.get(question_id)
        if q is None or q.created_by != professor.id:
            raise NotFoundError("Practice question not found or access denied")
        return q

    def create_question(self, professor: models.User, data: dict) -> dict:
        require_role(professor, models.Role.PROFESSOR, "Professor")
        if data.get("class_id") is not None:
            cls = owned_class(self.session, data["class_id"], professor)
            data["subject"] = data.get("subject") or cls.name
        options = data.pop("options", [])
        _validate_options(data.get("type", models.QuestionType.MULTIPLE_CHOICE), options)
        q = models.PracticeQuestion(created_by=professor.id, **data)
        q.options = _build_options(options)
        return serialize_practice_question(self.repo.save(q), reveal=True)

    def list_questions(self, user: models.User, class_id: Optional[int] = None, subject: Optional[str] = None,
                       difficulty: Optional[str] = None, limit: int = 20, offset: int = 0) -> dict:
        stmt = select(models.PracticeQuestion)
        if class_id is not None:
            cls = require_class_access(self.session, class_id, user)
            stmt = stmt.where(or_(models.PracticeQuestion.class_id == cls.id,
                                  models.PracticeQuestion.subject == cls.name))
        elif user.role == models.Role.PROFESSOR:
            stmt = stmt.where(models.PracticeQuestion.created_by == user.id)
        elif user.role == models.Role.STUDENT:
            classes = repositories.ClassRepository(self.session).list_by_ids(
                repositories.EnrollmentRepository(self.session).class_ids_for_student(user.id))
            stmt = stmt.where(or_(models.PracticeQuestion.class_id.in_([c.id for c in classes]),
                                  models.PracticeQuestion.subject.in_([c.name for c in classes])))
        if subject:
            stmt = stmt.where(func.lower(models.PracticeQuestion.subject) == subject.lower())
        if difficulty:
            stmt = stmt.where(models.PracticeQuestion.difficulty == difficulty.upper())
        total = self.session.exec(select(func.count()).select_from(stmt.subquery())).one()
        rows = self.session.exec(
            stmt.order_by(models.PracticeQuestion.created_at.desc(), models.PracticeQuestion.id.desc())
            .offset(offset).limit(limit)
        ).all()
        reveal = user.role != models.Role.STUDENT
        return {"questions": [serialize_practice_question(q, reveal) for q in rows],
                "pagination": paginate(total, limit, offset)}

    def get_question(self, user: models.User, question_id: int) -> dict:
        q = self.repo.get(question_id)
        if q is None:
            raise NotFoundError("Practice question not found")
        if q.class_id is not None:
            require_class_access(self.session, q.class_id, user)
        return serialize_practice_question(q, reveal=user.role != models.Role.STUDENT)

    def update_question(self, professor: models.User, question_id: int, data: dict) -> dict:
        q = self._owned(professor, question_id)
        options = data.pop("options", None)
        if options is not None:
            _validate_options(q.type, options)
            q.options = _build_options(options)
        for key, value in data.items():
            setattr(q, key, value)
        return serialize_practice_question(self.repo.save(q), reveal=True)

    def delete_question(self, professor: models.User, question_id: int) -> None:
        self.repo.delete(self._owned(professor, question_id))

    def attempt(self, student: models.User, question_id: int, selected: List[int], time_spent: int) -> dict:
        require_role(student, models.Role.STUDENT, "Student")
        q = self.repo.get(question_id)
        if q is None:
            raise NotFoundError("Practice question not found")
        if q.class_id is not None:
            require_class_access(self.session, q.class_id, student)
        option_ids = {o.id for o in q.options}
        if any(s not in option_ids for s in selected):
            raise ValueError("Selected answers do not belong to this question")
        correct = grade_practice(q, selected)
        score = q.points if correct else 0
        attempt = models.PracticeAttempt(question_id=q.id, student_id=student.id, selected_answers=list(selected),
                                         is_correct=correct, score=score, time_spent=time_spent)
        self.session.add(attempt)
        self.session.commit()
        self.session.refresh(attempt)
        return {
            "attempt_id": attempt.id,
            "is_correct": correct,
            "score": score,
            "correct_answers": [o.id for o in q.options if o.is_correct],
            "explanations": {o.id: o.explanation for o in q.options if o.explanation},
        }

    def stats(self, user: models.User) -> dict:
        if user.role == models.Role.STUDENT:
            attempts = self.repo.attempts_for_student(user.id)
            questions = {q.id: q for q in self.session.exec(
                select(models.PracticeQuestion).where(
                    models.PracticeQuestion.id.in_(list({a.question_id for a in attempts})))).all()} if attempts else {}
            by_difficulty = defaultdict(lambda: {"attempts": 0, "correct": 0})
            for a in attempts:
                q = questions.get(a.question_id)
                bucket = by_difficulty[q.difficulty if q else "UNKNOWN"]
                bucket["attempts"] += 1
                bucket["correct"] += int(a.is_correct)
            correct = sum(1 for a in attempts if a.is_correct)
            return {
                "total_attempts": len(attempts),
                "correct_attempts": correct,
                "accuracy": round(correct / len(attempts) * 100, 1) if attempts else 0.0,
                "total_score": sum(a.score for a in attempts),
                "questions_attempted": len({a.question_id for a in attempts}),
                "average_time_spent": round(sum(a.time_spent for a in attempts) / len(attempts)) if attempts else 0,
                "by_difficulty": dict(by_difficulty),
            }
        questions = list(self.session.exec(
            select(models.PracticeQuestion).where(models.PracticeQuestion.created_by == user.id)).all())
        attempts = self.repo.attempts_for_questions(q.id for q in questions)
        rows = []
        for q in questions:
            mine = [a for a in attempts if a.question_id == q.id]
            correct = sum(1 for a in mine if a.is_correct)
            rows.append({"question_id": q.id, "title": q.title, "attempts": len(mine),
                         "unique_students": len({a.student_id for a in mine}),
                         "success_rate": round(correct / len(mine) * 100, 1) if mine else 0.0})
        return {"total_questions": len(questions), "total_attempts": len(attempts), "questions": rows}

    def classes(self, user: models.User) -> List[dict]:
        """Classes the user can practise in, with question counts."""
        class_repo = repositories.ClassRepository(self.session)
        if user.role == models.Role.PROFESSOR:
            classes = class_repo.list_for_professor(user.id, include_archived=False)
        else:
            classes = class_repo.list_by_ids(
                repositories.EnrollmentRepository(self.session).class_ids_for_student(user.id))
        out = []
        for cls in classes:
            count = self.session.exec(select(func.count()).select_from(models.PracticeQuestion).where(
                or_(models.PracticeQuestion.class_id == cls.id, models.PracticeQuestion.subject == cls.name))).one()
            files = self.session.exec(select(func.count()).select_from(models.PracticeFile).where(
                models.PracticeFile.class_id == cls.id)).one()
            out.append({"id": cls.id, "name": cls.name, "code": cls.code,
                        "question_count": count, "file_count": files})
        return out

    def upload_file(self, professor: models.User, class_id: int, title: str, description: Optional[str],
                    filename: str, payload: bytes, max_bytes: int, import_questions: bool = False) -> dict:
        """Store a practice file and optionally import questions from it."""
        cls = owned_class(self.session, class_id, professor)
        uploads.validate_upload_filename(filename)
        uploads.check_size(payload, max_bytes)
        ext = uploads.extension_of(filename)
        if ext not in PRACTICE_FILE_EXTENSIONS:
            raise ValueError("File type not allowed")
        file_url = uploads.store_upload(payload, filename, "practice")
        record = models.PracticeFile(title=title, description=description, file_url=file_url, file_name=filename,
                                     class_id=cls.id, uploaded_by=professor.id)
        self.session.add(record)
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            uploads.remove_upload(file_url)
            raise
        self.session.refresh(record)
        result = {"file": self._serialize_file(record), "imported": 0, "errors": []}
        if import_questions and filename.lower().endswith(SUPPORTED_EXTENSIONS):
            result.update(self._import(professor, cls, payload, filename))
        return result

    def _import(self, professor: models.User, cls: models.Classroom, payload: bytes, filename: str) -> dict:
        try:
            parsed = parse_file_to_questions(payload, filename)
        except (ValueError, UnicodeDecodeError) as exc:
            return {"imported": 0, "errors": [{"index": None, "error": f"could not parse file: {exc}"}]}
        imported = 0
        errors = []
        for idx, item in enumerate(parsed):
            try:
                if not item["content"]:
                    raise ValueError("missing question content")
                _validate_options(item["type"], item["options"])
            except ValueError as exc:
                errors.append({"index": idx, "error": str(exc)})
                continue
            q = models.PracticeQuestion(title=item["title"], content=item["content"], type=item["type"],
                                        subject=cls.name, difficulty=item["difficulty"], points=item["points"],
                                        class_id=cls.id, created_by=professor.id)
            options = item["options"]
            if item.get("explanation"):
                for o in options:
                    if o["is_correct"] and not o.get("explanation"):
                        o["explanation"] = item["explanation"]
            q.options = _build_options(options)
            self.session.add(q)
            imported += 1
        self.session.commit()
        logger.info("practice_import class=%s imported=%s errors=%s", cls.id, imported, len(errors))
        return {"imported": imported, "errors": errors}

    def list_files(self, user: models.User, class_id: int) -> List[dict]:
        cls = require_class_access(self.session, class_id, user)
        rows = self.session.exec(select(models.PracticeFile).where(models.PracticeFile.class_id == cls.id)
                                 .order_by(models.PracticeFile.created_at.desc())).all()
        return [self._serialize_file(r) for r in rows]

    def delete_file(self, professor: models.User, file_id: int) -> None:
        record = self.session.get(models.PracticeFile, file_id)
        if record is None:
            raise NotFoundError("Practice file not found")
        cls = get_class(self.session, record.class_id)
        if cls.professor_id != professor.id:
            raise PermissionDenied("Only the class owner can delete practice files")
        uploads.remove_upload(record.file_url)
        self.session.delete(record)
        self.session.commit()

    @staticmethod
    def _serialize_file(f: models.PracticeFile) -> dict:
        return {"id": f.id, "title": f.title, "description": f.description, "file_url": f.file_url,
                "file_name": f.file_name, "class_id": f.class_id, "uploaded_by": f.uploaded_by,
                "created_at": iso(f.created_at)}
