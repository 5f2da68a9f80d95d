"""Dashboard aggregates for professors and students.

Average scores use each student's best attempt per quiz so retakes do not
drag a class average down.
"""

import csv
import io
import logging
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from sqlmodel import Session, select

from .. import mailer, models, repositories
from ..errors import NotFoundError
from .attendance import attendance_rate, count_statuses
from .common import class_label, due_label, iso, time_ago, user_summary

logger = logging.getLogger("classora.dashboard")

PUBLISHED = models.ContentStatus.PUBLISHED


def best_scores(attempts: Iterable[models.QuizAttempt]) -> Dict[Tuple[int, int], float]:
    """Best percentage per (quiz, student)."""
    best: Dict[Tuple[int, int], float] = {}
    for a in attempts:
        key = (a.quiz_id, a.student_id)
        if key not in best or a.percentage > best[key]:
            best[key] = a.percentage
    return best


def _average(values: List[float], digits: int = 1) -> float:
    return round(sum(values) / len(values), digits) if values else 0.0


class DashboardService:
    def __init__(self, session: Session):
        self.session = session
        self.classes = repositories.ClassRepository(session)
        self.enrollments = repositories.EnrollmentRepository(session)
        self.users = repositories.UserRepository(session)
        self.quizzes = repositories.QuizRepository(session)
        self.submissions = repositories.SubmissionRepository(session)

    def _content(self, model, class_ids: List[int], published_only: bool = False) -> list:
        if not class_ids:
            return []
        stmt = select(model).where(model.class_id.in_(class_ids))
        if published_only:
            stmt = stmt.where(model.status == PUBLISHED)
        return list(self.session.exec(stmt).all())

    # --- professor ---------------------------------------------------------

    def professor_stats(self, professor: models.User) -> dict:
        classes = self.classes.list_for_professor(professor.id)
        class_ids = [c.id for c in classes]
        by_id = {c.id: c for c in classes}
        quizzes = self._content(models.Quiz, class_ids)
        assignments = self._content(models.Assignment, class_ids)
        notes = self._content(models.Note, class_ids)
        attempts = self.quizzes.attempts_for_quizzes(q.id for q in quizzes)
        subs = self.submissions.list_for_assignments(a.id for a in assignments)
        enrollments = [e for cid in class_ids for e in self.enrollments.list_for_class(cid)]
        users = {u.id: u for u in self.users.list_by_ids(
            [a.student_id for a in attempts] + [s.student_id for s in subs] + [e.student_id for e in enrollments])}
        quiz_by_id = {q.id: q for q in quizzes}
        assignment_by_id = {a.id: a for a in assignments}

        activity = []
        for s in subs:
            a = assignment_by_id[s.assignment_id]
            activity.append((s.submitted_at, {"type": "submission", "student": user_summary(users.get(s.student_id)),
                                              "title": a.title, "class_name": by_id[a.class_id].name}))
        for at in attempts:
            q = quiz_by_id[at.quiz_id]
            activity.append((at.completed_at or at.started_at, {
                "type": "quiz_attempt", "student": user_summary(users.get(at.student_id)), "title": q.title,
                "class_name": by_id[q.class_id].name, "score": at.percentage}))
        for e in enrollments:
            activity.append((e.enrolled_at, {"type": "enrollment", "student": user_summary(users.get(e.student_id)),
                                             "title": by_id[e.class_id].name, "class_name": by_id[e.class_id].name}))
        activity.sort(key=lambda pair: pair[0], reverse=True)
        recent = []
        for when, entry in activity[:10]:
            entry["timestamp"] = iso(when)
            entry["time_ago"] = time_ago(when)
            recent.append(entry)
        return {
            "total_classes": len(classes),
            "active_classes": sum(1 for c in classes if not c.is_archived),
            "total_students": len({e.student_id for e in enrollments}),
            "total_notes": len(notes),
            "total_quizzes": len(quizzes),
            "total_assignments": len(assignments),
            "average_score": _average(list(best_scores(attempts).values())),
            "pending_submissions": sum(1 for s in subs if s.grade is None),
            "recent_activity": recent,
        }

    def _professor_students(self, professor: models.User):
        classes = self.classes.list_for_professor(professor.id)
        by_student: Dict[int, List[models.Classroom]] = {}
        for c in classes:
            for e in self.enrollments.list_for_class(c.id):
                by_student.setdefault(e.student_id, []).append(c)
        return classes, by_student

    def students(self, professor: models.User) -> List[dict]:
        classes, by_student = self._professor_students(professor)
        class_ids = [c.id for c in classes]
        quizzes = self._content(models.Quiz, class_ids)
        assignments = self._content(models.Assignment, class_ids)
        attempts = self.quizzes.attempts_for_quizzes(q.id for q in quizzes)
        subs = self.submissions.list_for_assignments(a.id for a in assignments)
        best = best_scores(attempts)
        out = []
        for student in sorted(self.users.list_by_ids(by_student), key=lambda u: u.name.lower()):
            scores = [v for (qid, sid), v in best.items() if sid == student.id]
            mine = [s for s in subs if s.student_id == student.id]
            row = user_summary(student)
            row.update({
                "classes": [{"id": c.id, "name": c.name, "code": c.code} for c in by_student[student.id]],
                "average_quiz_score": _average(scores),
                "quizzes_taken": len(scores),
                "submissions": len(mine),
                "graded_submissions": sum(1 for s in mine if s.grade is not None),
            })
            out.append(row)
        return out

    def student_detail(self, professor: models.User, student_id: int) -> dict:
        classes, by_student = self._professor_students(professor)
        if student_id not in by_student:
            raise NotFoundError("Student not found in your classes")
        student = self.users.get(student_id)
        class_ids = [c.id for c in by_student[student_id]]
        quizzes = self._content(models.Quiz, class_ids)
        assignments = self._content(models.Assignment, class_ids)
        attempts = [a for a in self.quizzes.attempts_for_quizzes(q.id for q in quizzes) if a.student_id == student_id]
        subs = {s.assignment_id: s for s in self.submissions.list_for_assignments(a.id for a in assignments)
                if s.student_id == student_id}
        attendance = []
        for cid in class_ids:
            statuses = [r.status for s in repositories.AttendanceRepository(self.session).sessions_for_class(cid)
                        for r in s.records if r.student_id == student_id]
            attendance.append({"class_id": cid, "marked_sessions": len(statuses),
                               "attendance_rate": round(attendance_rate(statuses), 1)})
        quiz_titles = {q.id: q.title for q in quizzes}
        out = user_summary(student)
        out.update({
            "classes": [{"id": c.id, "name": c.name, "code": c.code} for c in by_student[student_id]],
            "quiz_attempts": [{"quiz_id": a.quiz_id, "quiz_title": quiz_titles.get(a.quiz_id),
                               "percentage": a.percentage, "completed_at": iso(a.completed_at)} for a in attempts],
            "assignments": [{"assignment_id": a.id, "title": a.title, "due_date": iso(a.due_date),
                             "submitted": a.id in subs,
                             "grade": subs[a.id].grade if a.id in subs else None} for a in assignments],
            "attendance": attendance,
            "average_quiz_score": _average(list(best_scores(attempts).values())),
        })
        return out

    def student_analytics(self, professor: models.User, student_id: int) -> dict:
        """Per-class quiz and attendance breakdown for one student in the professor's classes."""
        _, by_student = self._professor_students(professor)
        if student_id not in by_student:
            raise NotFoundError("Student not found in your classes")
        student = self.users.get(student_id)
        classes = by_student[student_id]
        class_ids = [c.id for c in classes]
        by_id = {c.id: c for c in classes}
        quizzes = self._content(models.Quiz, class_ids, published_only=True)
        assignments = self._content(models.Assignment, class_ids, published_only=True)
        quiz_by_id = {q.id: q for q in quizzes}
        attempts = [a for a in self.quizzes.attempts_for_quizzes(quiz_by_id) if a.student_id == student_id]
        assignment_by_id = {a.id: a for a in assignments}
        subs = [s for s in self.submissions.list_for_assignments(assignment_by_id) if s.student_id == student_id]

        quiz_performance = {}
        for at in attempts:
            quiz = quiz_by_id[at.quiz_id]
            row = quiz_performance.setdefault(quiz.id, {
                "quiz_id": quiz.id, "quiz_title": quiz.title, "class_id": quiz.class_id,
                "class_name": by_id[quiz.class_id].name, "best_percentage": 0.0, "attempts": 0,
                "last_attempt_at": None,
            })
            row["attempts"] += 1
            row["best_percentage"] = max(row["best_percentage"], at.percentage)
            if row["last_attempt_at"] is None or at.started_at > row["last_attempt_at"]:
                row["last_attempt_at"] = at.started_at
        for row in quiz_performance.values():
            row["last_attempt_at"] = iso(row["last_attempt_at"])

        records = []
        for cid in class_ids:
            for s in repositories.AttendanceRepository(self.session).sessions_for_class(cid):
                records.extend((cid, s, r) for r in s.records if r.student_id == student_id)

        subject_quiz_stats = []
        subject_attendance_stats = []
        for c in classes:
            best = [row["best_percentage"] for row in quiz_performance.values() if row["class_id"] == c.id]
            subject_quiz_stats.append({
                "class_id": c.id, "class_name": c.name, "class_code": c.code,
                "total_quizzes": len(best),
                "total_attempts": sum(row["attempts"] for row in quiz_performance.values()
                                      if row["class_id"] == c.id),
                "average_percentage": _average(best, 2),
            })
            statuses = [r.status for cid, _, r in records if cid == c.id]
            stats = {"class_id": c.id, "class_name": c.name, "class_code": c.code, "total": len(statuses),
                     "attendance_rate": round(attendance_rate(statuses), 1)}
            stats.update(count_statuses(statuses))
            subject_attendance_stats.append(stats)

        graded = [s.grade for s in subs if s.grade is not None]
        assigned = len(quizzes) + len(assignments)
        completed = len(quiz_performance) + len({s.assignment_id for s in subs})
        attempted_subjects = [row["average_percentage"] for row in subject_quiz_stats if row["total_quizzes"]]
        records.sort(key=lambda item: item[1].date, reverse=True)
        return {
            "student": user_summary(student),
            "classes": [{"id": c.id, "name": c.name, "code": c.code} for c in classes],
            "quiz_performance": list(quiz_performance.values()),
            "assignment_submissions": [{
                "assignment_id": s.assignment_id,
                "assignment_title": assignment_by_id[s.assignment_id].title,
                "class_name": by_id[assignment_by_id[s.assignment_id].class_id].name,
                "grade": s.grade,
                "submitted_at": iso(s.submitted_at),
                "status": "graded" if s.grade is not None else "submitted",
            } for s in sorted(subs, key=lambda s: s.submitted_at, reverse=True)],
            "attendance_records": [{"date": iso(s.date), "status": r.status, "class_name": by_id[cid].name,
                                    "notes": r.notes} for cid, s, r in records],
            "subject_quiz_stats": subject_quiz_stats,
            "subject_attendance_stats": subject_attendance_stats,
            "overall_stats": {
                "total_classes": len(classes),
                "total_quizzes": len(quiz_performance),
                "total_assignments": len({s.assignment_id for s in subs}),
                "total_attendance_sessions": len(records),
                "average_quiz_score": _average(attempted_subjects, 2),
                "average_assignment_grade": _average(graded, 2),
                "attendance_rate": round(attendance_rate(r.status for _, _, r in records), 1),
                "completion_rate": round(completed / assigned * 100, 1) if assigned else 0.0,
            },
        }

    def analytics(self, professor: models.User) -> dict:
        classes = self.classes.list_for_professor(professor.id)
        class_ids = [c.id for c in classes]
        quizzes = self._content(models.Quiz, class_ids)
        assignments = self._content(models.Assignment, class_ids)
        notes = self._content(models.Note, class_ids)
        attempts = self.quizzes.attempts_for_quizzes(q.id for q in quizzes)
        subs = self.submissions.list_for_assignments(a.id for a in assignments)
        enrollments = [e for cid in class_ids for e in self.enrollments.list_for_class(cid)]
        student_ids = {e.student_id for e in enrollments}
        total_students = len(student_ids)
        best = list(best_scores(attempts).values())
        grades = best + [s.grade for s in subs if s.grade]
        since = models.utcnow() - timedelta(days=30)
        active = {a.student_id for a in attempts if a.started_at >= since} | {
            s.student_id for s in subs if s.submitted_at >= since}
        total_content = len(notes) + len(quizzes) + len(assignments)

        now = models.utcnow()
        monthly = []
        for back in range(5, -1, -1):
            year, month = now.year, now.month - back
            while month <= 0:
                month += 12
                year -= 1
            in_month = lambda dt: dt.year == year and dt.month == month  # noqa: E731
            monthly.append({
                "month": f"{year}-{month:02d}",
                "students": sum(1 for e in enrollments if in_month(e.enrolled_at)),
                "assignments": sum(1 for a in assignments if in_month(a.created_at)),
                "quizzes": sum(1 for q in quizzes if in_month(q.created_at)),
            })
        return {
            "total_students": total_students,
            "total_classes": len(classes),
            "total_notes": len(notes),
            "total_quizzes": len(quizzes),
            "total_assignments": len(assignments),
            "average_grade": _average(grades, 2),
            "completion_rate": round(len({s.student_id for s in subs}) / total_students * 100) if total_students else 0,
            "active_students": len(active),
            "student_engagement": round(len(active) / total_students * 100) if total_students else 0,
            "quiz_performance": round(sum(1 for b in best if b >= 70) / len(best) * 100) if best else 0,
            "content_consumption": round(total_content / total_students) if total_students else 0,
            "monthly_stats": monthly,
            "class_analytics": [self._class_analytics(c, quizzes, attempts, assignments, subs) for c in classes],
        }

    def _class_analytics(self, cls, quizzes, attempts, assignments, subs) -> dict:
        sessions = repositories.AttendanceRepository(self.session).sessions_for_class(cls.id)
        records = [r for s in sessions for r in s.records]
        per_student: Dict[int, List[str]] = {}
        for r in records:
            per_student.setdefault(r.student_id, []).append(r.status)
        quiz_ids = {q.id for q in quizzes if q.class_id == cls.id}
        class_attempts = [a for a in attempts if a.quiz_id in quiz_ids]
        scores_by_student: Dict[int, List[float]] = {}
        for a in class_attempts:
            scores_by_student.setdefault(a.student_id, []).append(a.percentage)
        users = {u.id: u for u in self.users.list_by_ids(list(per_student) + list(scores_by_student))}
        top_attendees = sorted(
            ({"student": user_summary(users.get(sid)), "attendance_rate": round(attendance_rate(st), 1),
              "present_sessions": st.count(models.AttendanceStatus.PRESENT)} for sid, st in per_student.items()),
            key=lambda r: r["attendance_rate"], reverse=True)[:5]
        top_performers = sorted(
            ({"student": user_summary(users.get(sid)), "average_score": _average(sc), "attempts": len(sc)}
             for sid, sc in scores_by_student.items()),
            key=lambda r: r["average_score"], reverse=True)[:5]
        assignment_ids = {a.id for a in assignments if a.class_id == cls.id}
        return {
            "class_id": cls.id,
            "class_name": cls.name,
            "code": cls.code,
            "students": len(self.enrollments.list_for_class(cls.id)),
            "total_sessions": len(sessions),
            "average_attendance": round(attendance_rate(r.status for r in records), 1),
            "quiz_attempts": len(class_attempts),
            "average_quiz_score": _average([a.percentage for a in class_attempts]),
            "submissions": sum(1 for s in subs if s.assignment_id in assignment_ids),
            "top_attendees": top_attendees,
            "top_quiz_performers": top_performers,
        }

    def analytics_csv(self, professor: models.User) -> str:
        data = self.analytics(professor)
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow(["class_code", "class_name", "students", "sessions", "average_attendance",
                         "quiz_attempts", "average_quiz_score", "submissions"])
        for row in data["class_analytics"]:
            writer.writerow([row["code"], row["class_name"], row["students"], row["total_sessions"],
                             row["average_attendance"], row["quiz_attempts"], row["average_quiz_score"],
                             row["submissions"]])
        return buf.getvalue()

    def email_analytics(self, professor: models.User, to: Optional[str] = None,
                        professor_name: Optional[str] = None) -> dict:
        """Email the analytics summary with the full HTML report attached."""
        to = to or professor.email
        today = models.utcnow().date().isoformat()
        data = self.analytics(professor)
        data.update({"professor_name": professor_name or professor.name, "generated_on": today})
        report = mailer.analytics_report_html(data).encode("utf-8")
        result = mailer.send_email(to, "analytics_report", data,
                                   attachments=[(f"analytics-report-{today}.html", report)])
        if not result["success"]:
            raise ValueError(f"Failed to send analytics report: {result['error']}")
        logger.info("analytics_report_sent professor=%s to=%s", professor.id, to)
        return {"success": True, "message": f"Analytics report sent to {to}"}

    # --- student -----------------------------------------------------------

    def student_stats(self, student: models.User) -> dict:
        class_ids = self.enrollments.class_ids_for_student(student.id)
        classes = {c.id: c for c in self.classes.list_by_ids(class_ids)}
        quizzes = self._content(models.Quiz, class_ids, published_only=True)
        assignments = self._content(models.Assignment, class_ids, published_only=True)
        attempts = self.quizzes.attempts_for_student(student.id)
        best = best_scores(a for a in attempts if a.quiz_id in {q.id for q in quizzes})
        subs = {s.assignment_id: s for s in self.submissions.list_for_student(student.id)}
        now = models.utcnow()
        deadlines = []
        for a in assignments:
            if a.due_date and a.id not in subs and a.due_date <= now + timedelta(days=7):
                deadlines.append((a.due_date, {"id": a.id, "title": a.title, "type": "assignment",
                                               "class_name": class_label(classes[a.class_id]),
                                               "due_date": iso(a.due_date), "due_label": due_label(a.due_date, now)}))
        attempted = {qid for qid, _ in best}
        for q in quizzes:
            if q.id not in attempted:
                deadlines.append((q.created_at + timedelta(days=7), {
                    "id": q.id, "title": q.title, "type": "quiz", "class_name": class_label(classes[q.class_id]),
                    "due_date": None, "due_label": "Open"}))
        deadlines.sort(key=lambda pair: pair[0])
        return {
            "enrolled_classes": len(class_ids),
            "total_quizzes": len(quizzes),
            "completed_quizzes": len(attempted),
            "average_score": _average(list(best.values())),
            "total_assignments": len(assignments),
            "submitted_assignments": sum(1 for a in assignments if a.id in subs),
            "pending_assignments": sum(1 for a in assignments if a.id not in subs),
            "graded_assignments": sum(1 for a in assignments if a.id in subs and subs[a.id].grade is not None),
            "upcoming_deadlines": sum(1 for _, d in deadlines if d["type"] == "assignment"),
            "upcoming_deadlines_list": [d for _, d in deadlines[:10]],
        }

    def _unviewed(self, student: models.User) -> Dict[str, list]:
        class_ids = self.enrollments.class_ids_for_student(student.id)
        views = repositories.ViewRepository(self.session)
        out = {}
        for kind, model in (("assignment", models.Assignment), ("quiz", models.Quiz), ("note", models.Note)):
            seen = views.viewed_ids(student.id, kind)
            out[kind] = [row.id for row in self._content(model, class_ids, published_only=True) if row.id not in seen]
        return out

    def unread_counts(self, student: models.User) -> dict:
        unviewed = self._unviewed(student)
        counts = {
            "unread_assignments": len(unviewed["assignment"]),
            "unread_quizzes": len(unviewed["quiz"]),
            "unread_notes": len(unviewed["note"]),
        }
        counts["total_unread"] = sum(counts.values())
        return counts

    def mark_all_viewed(self, student: models.User) -> dict:
        views = repositories.ViewRepository(self.session)
        unviewed = self._unviewed(student)
        for kind, ids in unviewed.items():
            for content_id in ids:
                views.mark(student.id, kind, content_id, commit=False)
        self.session.commit()
        return {
            "success": True,
            "marked": {"assignments": len(unviewed["assignment"]), "quizzes": len(unviewed["quiz"]),
                       "notes": len(unviewed["note"])},
        }

    def quiz_performance(self, student: models.User) -> List[dict]:
        attempts = self.quizzes.attempts_for_student(student.id)
        quizzes = {q.id: q for q in self._content(models.Quiz, self.enrollments.class_ids_for_student(student.id))}
        grouped: Dict[int, List[models.QuizAttempt]] = {}
        for a in attempts:
            grouped.setdefault(a.quiz_id, []).append(a)
        out = []
        for quiz_id, rows in grouped.items():
            quiz = quizzes.get(quiz_id)
            if quiz is None:
                continue
            latest = max(rows, key=lambda a: a.started_at)
            out.append({
                "quiz_id": quiz_id,
                "title": quiz.title,
                "class_id": quiz.class_id,
                "attempts": len(rows),
                "max_attempts": quiz.max_attempts,
                "best_score": max(a.percentage for a in rows),
                "latest_score": latest.percentage,
                "average_score": _average([a.percentage for a in rows]),
                "last_attempt_at": iso(latest.completed_at or latest.started_at),
            })
        out.sort(key=lambda r: r["last_attempt_at"] or "", reverse=True)
        return out

    def student_assignments(self, student: models.User) -> List[dict]:
        class_ids = self.enrollments.class_ids_for_student(student.id)
        classes = {c.id: c for c in self.classes.list_by_ids(class_ids)}
        subs = {s.assignment_id: s for s in self.submissions.list_for_student(student.id)}
        now = models.utcnow()
        out = []
        for a in sorted(self._content(models.Assignment, class_ids, published_only=True),
                        key=lambda x: (x.due_date is None, x.due_date or now)):
            s = subs.get(a.id)
            if s is not None:
                status = "graded" if s.grade is not None else "submitted"
            elif a.due_date and a.due_date < now:
                status = "overdue"
            else:
                status = "pending"
            out.append({
                "id": a.id,
                "title": a.title,
                "class_name": class_label(classes[a.class_id]),
                "due_date": iso(a.due_date),
                "due_label": due_label(a.due_date, now) if a.due_date else None,
                "status": status,
                "grade": s.grade if s else None,
                "feedback": s.feedback if s else None,
                "submitted_at": iso(s.submitted_at) if s else None,
            })
        return out

