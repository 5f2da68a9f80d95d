import uuid
from datetime import datetime, timedelta, timezone

from classora.services.common import due_label, time_ago
from classora.services.dashboard import best_scores


NOW = datetime(2024, 5, 15, 12, 0)


def test_time_ago():
    assert time_ago(NOW - timedelta(seconds=30), NOW) == "Just now"
    assert time_ago(NOW - timedelta(minutes=1), NOW) == "1 minute ago"
    assert time_ago(NOW - timedelta(hours=5), NOW) == "5 hours ago"
    assert time_ago(NOW - timedelta(days=3), NOW) == "3 days ago"


def test_due_label():
    assert due_label(NOW - timedelta(minutes=1), NOW) == "Overdue"
    assert due_label(NOW + timedelta(hours=2), NOW) == "Today"
    assert due_label(NOW + timedelta(days=1), NOW) == "Tomorrow"
    assert due_label(NOW + timedelta(days=4), NOW) == "In 4 days"
    assert due_label(NOW + timedelta(days=9), NOW) == "Next week"


class _Attempt:
    def __init__(self, quiz_id, student_id, percentage):
        self.quiz_id, self.student_id, self.percentage = quiz_id, student_id, percentage


def test_best_scores_keeps_highest_attempt():
    attempts = [_Attempt(1, 7, 40.0), _Attempt(1, 7, 90.0), _Attempt(1, 8, 50.0), _Attempt(2, 7, 10.0)]
    assert best_scores(attempts) == {(1, 7): 90.0, (1, 8): 50.0, (2, 7): 10.0}


def test_notifications_crud(client, make_user):
    user, headers = make_user("STUDENT")
    other, _ = make_user("STUDENT")
    r = client.post("/api/notifications", headers=headers, json={"title": "Reminder", "message": "Study"})
    assert r.status_code == 201
    note_id = r.json()["id"]
    r = client.post("/api/notifications", headers=headers,
                    json={"title": "Hi", "message": "there", "user_id": other["id"]})
    assert r.status_code == 403

    assert client.put("/api/notifications", headers=headers, json={}).status_code == 400
    marked = client.put("/api/notifications", headers=headers, json={"notification_ids": [note_id]}).json()
    assert marked == {"updated": 1, "unread_count": 0}
    listed = client.get("/api/notifications", headers=headers).json()
    assert listed["notifications"][0]["is_read"] is True
    assert client.delete(f"/api/notifications/{note_id}", headers=headers).status_code == 200
    assert client.delete(f"/api/notifications/{note_id}", headers=headers).status_code == 404


def _seed_content(client, classroom):
    cid = classroom["class"]["id"]
    prof = classroom["prof_headers"]
    due = (datetime.now(timezone.utc) + timedelta(days=2)).isoformat()
    assignment = client.post("/api/assignments", headers=prof, json={
        "title": "Homework 1", "class_id": cid, "status": "PUBLISHED", "due_date": due}).json()
    quiz = client.post("/api/quizzes", headers=prof, json={
        "title": "Quiz 1", "class_id": cid, "status": "PUBLISHED", "max_attempts": 3,
        "questions": [{"text": "1+1", "options": ["1", "2"], "correct_answer": "2"}]}).json()
    note = client.post("/api/notes", headers=prof, json={
        "title": "Lecture 1", "content": "Intro", "class_id": cid, "status": "PUBLISHED"}).json()
    return assignment, quiz, note


def test_student_dashboard(client, classroom):
    assignment, quiz, note = _seed_content(client, classroom)
    headers = classroom["student_headers"]
    question_id = client.get(f"/api/quizzes/{quiz['id']}", headers=headers).json()["questions"][0]["id"]
    for selected in (["1"], ["2"]):
        client.post("/api/quizzes/submit", headers=headers, json={
            "quiz_id": quiz["id"], "answers": [{"question_id": question_id, "selected_options": selected}]})

    stats = client.get("/api/dashboard/student/stats", headers=headers).json()
    assert stats["enrolled_classes"] == 1
    assert stats["completed_quizzes"] == 1
    assert stats["average_score"] == 100.0
    assert stats["pending_assignments"] == 1
    assert stats["upcoming_deadlines_list"][0]["due_label"] in ("Tomorrow", "In 2 days")

    performance = client.get("/api/dashboard/student/quiz-performance", headers=headers).json()["quizzes"]
    assert performance[0]["attempts"] == 2
    assert performance[0]["best_score"] == 100.0
    assert performance[0]["average_score"] == 50.0

    work = client.get("/api/dashboard/student/assignments", headers=headers).json()["assignments"]
    assert work[0]["status"] == "pending"

    unread = client.get("/api/dashboard/student/unread-counts", headers=headers).json()
    assert unread == {"unread_assignments": 1, "unread_quizzes": 1, "unread_notes": 1, "total_unread": 3}
    client.post(f"/api/notes/{note['id']}/view", headers=headers)
    marked = client.post("/api/dashboard/student/mark-all-viewed", headers=headers).json()
    assert marked["marked"] == {"assignments": 1, "quizzes": 1, "notes": 0}
    assert client.get("/api/dashboard/student/unread-counts", headers=headers).json()["total_unread"] == 0

    assert client.get("/api/dashboard/professor/stats", headers=headers).status_code == 403


def test_professor_dashboard(client, classroom):
    assignment, quiz, _ = _seed_content(client, classroom)
    client.post("/api/assignments/submit", headers=classroom["student_headers"],
                data={"assignment_id": str(assignment["id"])}, files={"file": ("hw.txt", b"done", "text/plain")})
    prof = classroom["prof_headers"]

    stats = client.get("/api/dashboard/professor/stats", headers=prof).json()
    assert stats["total_students"] == 1
    assert stats["pending_submissions"] == 1
    assert stats["recent_activity"][0]["type"] == "submission"

    students = client.get("/api/dashboard/students", headers=prof).json()["students"]
    assert students[0]["name"] == "Grace Hopper"
    assert students[0]["submissions"] == 1
    detail = client.get(f"/api/dashboard/students/{classroom['student']['id']}", headers=prof).json()
    assert detail["assignments"][0]["submitted"] is True
    assert client.get("/api/dashboard/students/999999", headers=prof).status_code == 404

    analytics = client.get("/api/dashboard/analytics", headers=prof).json()
    assert analytics["total_classes"] == 1
    assert len(analytics["monthly_stats"]) == 6
    assert analytics["class_analytics"][0]["submissions"] == 1

    export = client.get("/api/dashboard/analytics/export", headers=prof)
    assert export.headers["content-type"].startswith("text/csv")
    assert export.text.splitlines()[0].startswith("class_code,class_name")


def test_student_analytics_breakdown(client, make_user, classroom):
    assignment, quiz, _ = _seed_content(client, classroom)
    prof = classroom["prof_headers"]
    student_headers = classroom["student_headers"]
    question_id = quiz["questions"][0]["id"]
    for choice in ("1", "2"):
        r = client.post("/api/quizzes/submit", headers=student_headers, json={
            "quiz_id": quiz["id"], "answers": [{"question_id": question_id, "selected_options": [choice]}]})
        assert r.status_code == 200, r.text
    client.post("/api/assignments/submit", headers=student_headers,
                data={"assignment_id": str(assignment["id"])}, files={"file": ("hw.txt", b"done", "text/plain")})
    for minutes, status in ((10, "PRESENT"), (5, "ABSENT")):
        when = (datetime.now(timezone.utc) - timedelta(minutes=minutes)).isoformat()
        session = client.post("/api/attendance/sessions", headers=prof, json={
            "class_id": classroom["class"]["id"], "date": when, "title": f"Lecture {minutes}"}).json()
        client.post("/api/attendance/mark", headers=prof, json={
            "session_id": session["id"], "student_id": classroom["student"]["id"], "status": status})

    r = client.get(f"/api/dashboard/students/{classroom['student']['id']}/analytics", headers=prof)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["student"]["id"] == classroom["student"]["id"]
    assert body["quiz_performance"][0]["best_percentage"] == 100.0
    assert body["quiz_performance"][0]["attempts"] == 2
    subject = body["subject_quiz_stats"][0]
    assert (subject["total_quizzes"], subject["total_attempts"], subject["average_percentage"]) == (1, 2, 100.0)
    attendance = body["subject_attendance_stats"][0]
    assert (attendance["present"], attendance["absent"], attendance["total"]) == (1, 1, 2)
    assert attendance["attendance_rate"] == 50.0
    assert body["assignment_submissions"][0]["status"] == "submitted"
    assert [rec["status"] for rec in body["attendance_records"]] == ["ABSENT", "PRESENT"]
    overall = body["overall_stats"]
    assert overall["completion_rate"] == 100.0
    assert overall["average_quiz_score"] == 100.0
    assert overall["total_attendance_sessions"] == 2

    outsider, _ = make_user("STUDENT")
    assert client.get(f"/api/dashboard/students/{outsider['id']}/analytics", headers=prof).status_code == 404
    r = client.get(f"/api/dashboard/students/{classroom['student']['id']}/analytics", headers=student_headers)
    assert r.status_code == 403


def test_email_analytics_report(client, classroom, outbox, monkeypatch):
    from classora import mailer

    _seed_content(client, classroom)
    prof = classroom["prof_headers"]
    r = client.post("/api/dashboard/analytics/email", headers=prof, json={})
    assert r.status_code == 200, r.text
    assert r.json()["success"] is True
    sent = [m for m in outbox if m["To"] == classroom["professor"]["email"]
            and m["Subject"].startswith("Analytics Report - Ada Lovelace")]
    assert len(sent) == 1
    attachment = next(sent[0].iter_attachments())
    assert attachment.get_filename().startswith("analytics-report-")
    assert attachment.get_filename().endswith(".html")
    assert "Algorithms" in attachment.get_payload(decode=True).decode("utf-8")

    r = client.post("/api/dashboard/analytics/email", headers=prof,
                    json={"email": "dean@example.com", "professor_name": "Prof. Lovelace"})
    assert r.status_code == 200
    assert any(m["To"] == "dean@example.com" and "Prof. Lovelace" in m["Subject"] for m in outbox)

    assert client.post("/api/dashboard/analytics/email", headers=prof,
                       json={"email": "not-an-email"}).status_code == 422
    assert client.post("/api/dashboard/analytics/email", headers=classroom["student_headers"],
                       json={}).status_code == 403

    def refuse(message):
        raise OSError("connection refused")

    monkeypatch.setattr(mailer, "deliver_email", refuse)
    failed = client.post("/api/dashboard/analytics/email", headers=prof, json={})
    assert failed.status_code == 400
    assert failed.json()["detail"].startswith("Failed to send analytics report")


def test_calendar(client, classroom):
    _seed_content(client, classroom)
    prof = classroom["prof_headers"]
    when = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
    r = client.post("/api/calendar-events", headers=prof, json={
        "title": "Holiday", "type": "holiday", "date": when, "class_id": classroom["class"]["id"]})
    assert r.status_code == 201
    event_id = r.json()["id"]
    assert r.json()["class_name"] == "Algorithms"
    bad = client.post("/api/calendar-events", headers=prof, json={"title": "X", "type": "party", "date": when})
    assert bad.status_code == 422

    events = client.get("/api/calendar-events", headers=classroom["student_headers"]).json()["events"]
    assert [e["id"] for e in events] == [event_id]

    feed = client.get("/api/dashboard/calendar", headers=classroom["student_headers"]).json()
    kinds = {e["type"] for e in feed["events"]}
    assert {"assignment", "quiz", "note", "holiday"} <= kinds
    assert all("_at" not in e for e in feed["events"])

    assert client.delete(f"/api/calendar-events/{event_id}", headers=prof).status_code == 200


def test_search(client, classroom):
    _seed_content(client, classroom)
    assert client.get("/api/search", headers=classroom["student_headers"], params={"q": "a"}).status_code == 400
    draft_title = f"Hidden {uuid.uuid4().hex[:6]}"
    client.post("/api/notes", headers=classroom["prof_headers"], json={
        "title": draft_title, "content": "x", "class_id": classroom["class"]["id"]})

    student = client.get("/api/search", headers=classroom["student_headers"], params={"q": "1"}).json()
    assert {r["title"] for r in student["results"]["assignments"]} == {"Homework 1"}
    assert student["results"]["students"] == []
    hidden = client.get("/api/search", headers=classroom["student_headers"], params={"q": draft_title}).json()
    assert hidden["results"]["total"] == 0

    prof = client.get("/api/search", headers=classroom["prof_headers"], params={"q": "grace"}).json()
    assert [s["id"] for s in prof["results"]["students"]] == [classroom["student"]["id"]]


def test_teacher_directory(client, classroom):
    university = f"Univ {uuid.uuid4().hex[:6]}"
    r = client.put("/api/teachers/profile", headers=classroom["prof_headers"],
                   json={"university": university, "research_interests": "graph theory"})
    assert r.status_code == 200
    assert r.json()["teacher_profile"]["university"] == university

    listed = client.get("/api/teachers", params={"query": university}).json()
    assert [p["id"] for p in listed["professors"]] == [classroom["professor"]["id"]]
    assert listed["professors"][0]["total_classes"] == 1

    searched = client.get("/api/teachers/search", params={"university": university, "query": "graph"}).json()
    assert searched["pagination"]["total"] == 1

    detail = client.get(f"/api/teachers/{classroom['professor']['id']}").json()
    assert detail["classes"][0]["name"] == "Algorithms"
    assert client.get(f"/api/teachers/{classroom['student']['id']}").status_code == 404
