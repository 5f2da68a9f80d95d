"""Quizzes: authoring, submission scoring and per-quiz statistics.

Scoring rules:

* MULTIPLE_CHOICE / TRUE_FALSE: the first selected option must equal the
  correct option text (TRUE_FALSE compares case-insensitively).
* MULTIPLE_SELECTION: the selections must match the correct options
  exactly, with no repeats.
* SHORT_ANSWER: case-insensitive match against `correct_answer` when one
  is configured; otherwise the answer is left for manual review and
  scores 0.
"""

from datetime import datetime
from typing import Iterable, List, Optional

from fastapi import BackgroundTasks
from sqlalchemy import func
from sqlmodel import Session, select

from .. import models, repositories
from ..errors import NotFoundError, PermissionDenied
from .common import (announce_to_class, class_label, get_class, iso, owned_class, require_class_access,
                     require_role, user_summary)

QT = models.QuestionType


def build_question(index: int, data: dict) -> models.QuizQuestion:
    """Create a question with options flagged from the correct answer(s)."""
    qtype = data.get("type") or QT.MULTIPLE_CHOICE
    options = [o.strip() for o in data.get("options") or [] if o and o.strip()]
    correct_answer = (data.get("correct_answer") or "").strip() or None
    correct_answers = [c.strip() for c in data.get("correct_answers") or [] if c and c.strip()]
    text = data["text"].strip()

    if qtype == QT.TRUE_FALSE:
        options = options or ["True", "False"]
        if correct_answer is None or correct_answer.lower() not in {o.lower() for o in options}:
            raise ValueError(f"Question {index + 1}: correct answer must be one of the options")
        flags = [o.lower() == correct_answer.lower() for o in options]
    elif qtype == QT.MULTIPLE_CHOICE:
        if len(options) < 2:
            raise ValueError(f"Question {index + 1}: at least two options are required")
        if correct_answer not in options:
            raise ValueError(f"Question {index + 1}: correct answer must be one of the options")
        flags = [o == correct_answer for o in options]
    elif qtype == QT.MULTIPLE_SELECTION:
        if len(options) < 2:
            raise ValueError(f"Question {index + 1}: at least two options are required")
        if not correct_answers or any(c not in options for c in correct_answers):
            raise ValueError(f"Question {index + 1}: correct answers must be chosen from the options")
        flags = [o in correct_answers for o in options]
    else:
        options, flags = [], []

    question = models.QuizQuestion(
        text=text,
        type=qtype,
        points=data.get("points") or 1,
        order=index + 1,
        correct_answer=correct_answer,
        correct_answers=correct_answers if qtype == QT.MULTIPLE_SELECTION else [],
    )
    question.options = [
        models.QuizOption(text=o, is_correct=flag, order=i + 1) for i, (o, flag) in enumerate(zip(options, flags))
    ]
    return question


def is_answer_correct(question: models.QuizQuestion, selected: List[str], text_answer: Optional[str]) -> bool:
    correct = [o.text for o in question.options if o.is_correct]
    if question.type == QT.MULTIPLE_SELECTION:
        return bool(correct) and sorted(selected) == sorted(correct)
    if question.type == QT.SHORT_ANSWER:
        expected = (question.correct_answer or "").strip().lower()
        return bool(expected) and (text_answer or "").strip().lower() == expected
    if not selected or not correct:
        return False
    if question.type == QT.TRUE_FALSE:
        return selected[0].strip().lower() == correct[0].lower()
    return selected[0] == correct[0]


def serialize_question(q: models.QuizQuestion, reveal: bool) -> dict:
    out = {
        "id": q.id,
        "text": q.text,
        "type": q.type,
        "points": q.points,
        "order": q.order,
        "options": [{"id": o.id, "text": o.text, "order": o.order} for o in q.options],
    }
    if reveal:
        for item, option in zip(out["options"], q.options):
            item["is_correct"] = option.is_correct
        out["correct_answer"] = q.correct_answer
        out["correct_answers"] = list(q.correct_answers or [])
    return out


def serialize_quiz(quiz: models.Quiz, cls: Optional[models.Classroom] = None) -> dict:
    out = {
        "id": quiz.id,
        "title": quiz.title,
        "description": quiz.description,
        "time_limit": quiz.time_limit,
        "max_attempts": quiz.max_attempts,
        "status": quiz.status,
        "class_id": quiz.class_id,
        "professor_id": quiz.professor_id,
        "total_questions": len(quiz.questions),
        "total_points": sum(q.points for q in quiz.questions),
        "created_at": iso(quiz.created_at),
        "updated_at": iso(quiz.updated_at),
    }
    if cls is not None:
        out["class_name"] = class_label(cls)
    return out


def serialize_attempt(a: models.QuizAttempt) -> dict:
    return {
        "id": a.id,
        "quiz_id": a.quiz_id,
        "student_id": a.student_id,
        "score": a.score,
        "total_points": a.total_points,
        "percentage": a.percentage,
        "time_spent": a.time_spent,
        "started_at": iso(a.started_at),
        "completed_at": iso(a.completed_at),
    }


def correct_ratio(attempt: models.QuizAttempt, total_questions: int) -> float:
    """Percentage of questions answered correctly in one attempt."""
    if not total_questions:
        return 0.0
    return sum(1 for a in attempt.answers if a.is_correct) / total_questions * 100


class QuizService:
    def __init__(self, session: Session, tasks: Optional[BackgroundTasks] = None):
        self.session = session
        self.tasks = tasks
        self.repo = repositories.QuizRepository(session)

    def _get(self, quiz_id: int) -> models.Quiz:
        quiz = self.repo.get(quiz_id)
        if quiz is None:
            raise NotFoundError("Quiz not found")
        return quiz

    def _owned(self, professor: models.User, quiz_id: int) -> models.Quiz:
        quiz = self.repo.get(quiz_id)
        if quiz is None or quiz.professor_id != professor.id:
            raise NotFoundError("Quiz not found or access denied")
        return quiz

    def _announce(self, quiz: models.Quiz, professor: models.User) -> None:
        cls = get_class(self.session, quiz.class_id)
        announce_to_class(self.session, self.tasks, cls, professor, "new_quiz", "quiz",
                          quiz.title, f"/dashboard/quizzes/{quiz.id}")

    def create(self, professor: models.User, data: dict) -> dict:
        cls = owned_class(self.session, data["class_id"], professor)
        questions = [build_question(i, q) for i, q in enumerate(data.pop("questions"))]
        quiz = models.Quiz(professor_id=professor.id, **data)
        quiz.questions = questions
        quiz = self.repo.save(quiz)
        if quiz.status == models.ContentStatus.PUBLISHED:
            self._announce(quiz, professor)
        out = serialize_quiz(quiz, cls)
        out["questions"] = [serialize_question(q, reveal=True) for q in quiz.questions]
        return out

    def list(self, user: models.User, class_id: Optional[int] = None, status: Optional[str] = None,
             limit: int = 20, offset: int = 0) -> dict:
        stmt = select(models.Quiz)
        if user.role == models.Role.STUDENT:
            class_ids = repositories.EnrollmentRepository(self.session).class_ids_for_student(user.id)
            if not class_ids:
                return {"quizzes": [], "total": 0, "limit": limit, "offset": offset}
            stmt = stmt.where(models.Quiz.class_id.in_(class_ids), models.Quiz.status == models.ContentStatus.PUBLISHED)
        elif user.role == models.Role.PROFESSOR:
            stmt = stmt.where(models.Quiz.professor_id == user.id)
            if status:
                stmt = stmt.where(models.Quiz.status == status)
        if class_id is not None:
            stmt = stmt.where(models.Quiz.class_id == class_id)
        total = self.session.exec(select(func.count()).select_from(stmt.subquery())).one()
        rows = self.session.exec(
            stmt.order_by(models.Quiz.created_at.desc(), models.Quiz.id.desc()).offset(offset).limit(limit)
        ).all()
        classes = {c.id: c for c in repositories.ClassRepository(self.session).list_by_ids(q.class_id for q in rows)}
        attempts = self.repo.attempts_for_quizzes(q.id for q in rows)
        out = []
        for quiz in rows:
            item = serialize_quiz(quiz, classes.get(quiz.class_id))
            quiz_attempts = [a for a in attempts if a.quiz_id == quiz.id]
            if user.role == models.Role.STUDENT:
                own = [a for a in quiz_attempts if a.student_id == user.id]
                item["attempts_used"] = len(own)
                item["best_score"] = max((a.percentage for a in own), default=None)
                item["attempts"] = [serialize_attempt(a) for a in own]
            else:
                item["attempt_count"] = len(quiz_attempts)
            out.append(item)
        return {"quizzes": out, "total": total, "limit": limit, "offset": offset}

    def get(self, user: models.User, quiz_id: int) -> dict:
        quiz = self._get(quiz_id)
        cls = require_class_access(self.session, quiz.class_id, user)
        is_student = user.role == models.Role.STUDENT
        if is_student and quiz.status != models.ContentStatus.PUBLISHED:
            raise NotFoundError("Quiz not found")
        out = serialize_quiz(quiz, cls)
        out["questions"] = [serialize_question(q, reveal=not is_student) for q in quiz.questions]
        if is_student:
            out["attempts_used"] = self.repo.count_attempts(quiz.id, user.id)
        return out

    def update(self, professor: models.User, quiz_id: int, data: dict) -> dict:
        quiz = self._owned(professor, quiz_id)
        was_published = quiz.status == models.ContentStatus.PUBLISHED
        questions = data.pop("questions", None)
        if questions is not None:
            if self.repo.attempts_for(quiz.id):
                raise ValueError("Questions cannot be changed after students have attempted the quiz")
            quiz.questions = [build_question(i, q) for i, q in enumerate(questions)]
        for key, value in data.items():
            setattr(quiz, key, value)
        quiz.updated_at = models.utcnow()
        quiz = self.repo.save(quiz)
        if not was_published and quiz.status == models.ContentStatus.PUBLISHED:
            self._announce(quiz, professor)
        out = serialize_quiz(quiz)
        out["questions"] = [serialize_question(q, reveal=True) for q in quiz.questions]
        return out

    def delete(self, professor: models.User, quiz_id: int) -> None:
        self.repo.delete(self._owned(professor, quiz_id))

    def submit(self, student: models.User, quiz_id: int, answers: Iterable[dict],
               start_time: Optional[datetime] = None) -> dict:
        """Score a submission and persist the attempt."""
        require_role(student, models.Role.STUDENT, "Student")
        quiz = self._get(quiz_id)
        if quiz.status != models.ContentStatus.PUBLISHED:
            raise ValueError("Quiz is not available")
        if not repositories.EnrollmentRepository(self.session).is_enrolled(quiz.class_id, student.id):
            raise PermissionDenied("You are not enrolled in this class")
        if self.repo.count_attempts(quiz.id, student.id) >= quiz.max_attempts:
            raise ValueError("Maximum attempts reached for this quiz")

        by_question = {a["question_id"]: a for a in answers}
        unknown = set(by_question) - {q.id for q in quiz.questions}
        if unknown:
            raise ValueError(f"Unknown question ids: {sorted(unknown)}")
        now = models.utcnow()
        started = models.as_naive_utc(start_time) or now
        attempt = models.QuizAttempt(quiz_id=quiz.id, student_id=student.id, started_at=started, completed_at=now,
                                     time_spent=max(0, int((now - started).total_seconds())))
        score = 0
        total_points = 0
        for question in quiz.questions:
            total_points += question.points
            given = by_question.get(question.id, {})
            selected = list(given.get("selected_options") or [])
            text_answer = given.get("text_answer")
            correct = is_answer_correct(question, selected, text_answer)
            earned = question.points if correct else 0
            score += earned
            attempt.answers.append(models.QuizAnswer(question_id=question.id, selected_options=selected,
                                                     text_answer=text_answer, is_correct=correct,
                                                     points_earned=earned))
        attempt.score = score
        attempt.total_points = total_points
        attempt.percentage = round(score / total_points * 100, 2) if total_points else 0.0
        attempt = self.repo.save(attempt)
        return {
            "success": True,
            "attempt_id": attempt.id,
            "score": attempt.score,
            "total_points": attempt.total_points,
            "percentage": attempt.percentage,
            "completed_at": iso(attempt.completed_at),
        }

    def attempts(self, student: models.User, quiz_id: int) -> List[dict]:
        self._get(quiz_id)
        return [serialize_attempt(a) for a in self.repo.attempts_for(quiz_id, student.id)]

    def stats(self, professor: models.User, quiz_id: int) -> dict:
        quiz = self._owned(professor, quiz_id)
        attempts = self.repo.attempts_for(quiz.id)
        total_questions = len(quiz.questions)
        enrolled = len(repositories.EnrollmentRepository(self.session).list_for_class(quiz.class_id))
        scores = [correct_ratio(a, total_questions) for a in attempts]
        unique_students = {a.student_id for a in attempts}
        question_stats = []
        for q in quiz.questions:
            answered = [ans for a in attempts for ans in a.answers if ans.question_id == q.id]
            correct = sum(1 for ans in answered if ans.is_correct)
            question_stats.append({
                "question_id": q.id,
                "text": q.text,
                "type": q.type,
                "total_answers": len(answered),
                "correct_answers": correct,
                "success_rate": round(correct / len(answered) * 100, 1) if answered else 0.0,
            })
        students = {u.id: u for u in repositories.UserRepository(self.session).list_by_ids(unique_students)}
        recent = []
        for a in attempts[:10]:
            item = serialize_attempt(a)
            item["student"] = user_summary(students.get(a.student_id))
            recent.append(item)
        return {
            "quiz": serialize_quiz(quiz),
            "total_attempts": len(attempts),
            "unique_students": len(unique_students),
            "average_score": round(sum(scores) / len(scores), 1) if scores else 0.0,
            "highest_score": round(max(scores), 1) if scores else 0.0,
            "lowest_score": round(min(scores), 1) if scores else 0.0,
            "completion_rate": round(len(unique_students) / enrolled * 100, 1) if enrolled else 0.0,
            "average_time_spent": round(sum(a.time_spent for a in attempts) / len(attempts)) if attempts else 0,
            "question_stats": question_stats,
            "recent_attempts": recent,
        }

    def record_view(self, student: models.User, quiz_id: int) -> dict:
        quiz = self._get(quiz_id)
        if student.role != models.Role.STUDENT or not repositories.EnrollmentRepository(self.session).is_enrolled(
                quiz.class_id, student.id):
            raise PermissionDenied("You are not enrolled in this class")
        if quiz.status != models.ContentStatus.PUBLISHED:
            raise ValueError("Quiz is not published")
        view = repositories.ViewRepository(self.session).mark(student.id, "quiz", quiz.id)
        return {"success": True, "viewed_at": iso(view.viewed_at)}
