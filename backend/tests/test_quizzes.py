from datetime import datetime, timedelta, timezone

import pytest

from classora.services.quizzes import build_question, is_answer_correct


def test_multiple_selection_requires_exact_selection():
    question = build_question(0, {"text": "Primes", "type": "MULTIPLE_SELECTION",
                                  "options": ["2", "3", "4"], "correct_answers": ["2", "3"]})
    assert is_answer_correct(question, ["3", "2"], None)
    assert not is_answer_correct(question, ["2", "3", "3"], None)
    assert not is_answer_correct(question, ["2"], None)
    assert not is_answer_correct(question, ["2", "3", "4"], None)


def _questions():
    return [
        {"text": "2 + 2?", "type": "MULTIPLE_CHOICE", "options": ["3", "4", "5"], "correct_answer": "4", "points": 2},
        {"text": "The sky is blue", "type": "TRUE_FALSE", "correct_answer": "True"},
        {"text": "Primes", "type": "MULTIPLE_SELECTION", "options": ["2", "3", "4"], "correct_answers": ["2", "3"]},
        {"text": "Capital of France", "type": "SHORT_ANSWER", "correct_answer": "Paris"},
    ]


@pytest.fixture
def quiz(client, classroom):
    r = client.post("/api/quizzes", headers=classroom["prof_headers"], json={
        "title": "Warm-up", "class_id": classroom["class"]["id"], "status": "PUBLISHED",
        "max_attempts": 2, "questions": _questions(),
    })
    assert r.status_code == 201, r.text
    return r.json()


def _answers(quiz, overrides=None):
    by_text = {q["text"]: q["id"] for q in quiz["questions"]}
    chosen = {
        "2 + 2?": {"selected_options": ["4"]},
        "The sky is blue": {"selected_options": ["true"]},
        "Primes": {"selected_options": ["3", "2"]},
        "Capital of France": {"text_answer": " paris "},
    }
    chosen.update(overrides or {})
    return [dict(question_id=by_text[text], **answer) for text, answer in chosen.items()]


def test_create_reveals_answers_to_professor(quiz):
    assert quiz["total_questions"] == 4
    assert quiz["total_points"] == 5
    mc = quiz["questions"][0]
    assert [o["is_correct"] for o in mc["options"]] == [False, True, False]
    assert [o["text"] for o in quiz["questions"][1]["options"]] == ["True", "False"]


def test_student_view_hides_correct_answers(client, classroom, quiz, outbox):
    r = client.get(f"/api/quizzes/{quiz['id']}", headers=classroom["student_headers"])
    assert r.status_code == 200
    body = r.json()
    assert body["attempts_used"] == 0
    for question in body["questions"]:
        assert "correct_answer" not in question
        assert all("is_correct" not in o for o in question["options"])
    assert any("quiz" in m["Subject"] for m in outbox)


def test_invalid_question_rejected(client, classroom):
    r = client.post("/api/quizzes", headers=classroom["prof_headers"], json={
        "title": "Broken", "class_id": classroom["class"]["id"],
        "questions": [{"text": "Pick", "options": ["a", "b"], "correct_answer": "c"}],
    })
    assert r.status_code == 400
    assert "Question 1" in r.json()["detail"]


def test_submit_scores_attempt(client, classroom, quiz):
    start = (datetime.now(timezone.utc) - timedelta(minutes=2)).isoformat()
    r = client.post("/api/quizzes/submit", headers=classroom["student_headers"],
                    json={"quiz_id": quiz["id"], "start_time": start, "answers": _answers(quiz)})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["score"] == 5
    assert body["percentage"] == 100.0

    partial = client.post("/api/quizzes/submit", headers=classroom["student_headers"], json={
        "quiz_id": quiz["id"],
        "answers": _answers(quiz, {"Primes": {"selected_options": ["2"]}, "2 + 2?": {"selected_options": ["5"]}}),
    }).json()
    assert partial["score"] == 2
    assert partial["percentage"] == 40.0

    attempts = client.get(f"/api/quizzes/{quiz['id']}/attempts", headers=classroom["student_headers"]).json()
    assert len(attempts["attempts"]) == 2
    assert attempts["attempts"][0]["time_spent"] >= 0

    third = client.post("/api/quizzes/submit", headers=classroom["student_headers"],
                        json={"quiz_id": quiz["id"], "answers": _answers(quiz)})
    assert third.status_code == 400
    assert third.json()["detail"] == "Maximum attempts reached for this quiz"


def test_submit_rules(client, classroom, quiz, make_user):
    _, outsider = make_user("STUDENT")
    r = client.post("/api/quizzes/submit", headers=outsider, json={"quiz_id": quiz["id"], "answers": []})
    assert r.status_code == 403
    r = client.post("/api/quizzes/submit", headers=classroom["student_headers"],
                    json={"quiz_id": quiz["id"], "answers": [{"question_id": 999999}]})
    assert r.status_code == 400
    r = client.post("/api/quizzes/submit", headers=classroom["prof_headers"], json={"quiz_id": quiz["id"]})
    assert r.status_code == 403

    draft = client.post("/api/quizzes", headers=classroom["prof_headers"], json={
        "title": "Later", "class_id": classroom["class"]["id"], "questions": _questions(),
    }).json()
    r = client.post("/api/quizzes/submit", headers=classroom["student_headers"], json={"quiz_id": draft["id"]})
    assert r.status_code == 400
    assert client.get(f"/api/quizzes/{draft['id']}", headers=classroom["student_headers"]).status_code == 404


def test_stats_and_question_lock(client, classroom, quiz):
    client.post("/api/quizzes/submit", headers=classroom["student_headers"], json={
        "quiz_id": quiz["id"], "answers": _answers(quiz, {"Capital of France": {"text_answer": "Lyon"}}),
    })
    stats = client.get(f"/api/quizzes/{quiz['id']}/stats", headers=classroom["prof_headers"]).json()
    assert stats["total_attempts"] == 1
    assert stats["unique_students"] == 1
    assert stats["average_score"] == 75.0
    assert stats["completion_rate"] == 100.0
    short = next(q for q in stats["question_stats"] if q["type"] == "SHORT_ANSWER")
    assert short["success_rate"] == 0.0
    assert stats["recent_attempts"][0]["student"]["name"] == "Grace Hopper"

    r = client.put(f"/api/quizzes/{quiz['id']}", headers=classroom["prof_headers"],
                   json={"questions": _questions()[:1]})
    assert r.status_code == 400
    r = client.put(f"/api/quizzes/{quiz['id']}", headers=classroom["prof_headers"], json={"title": "Renamed"})
    assert r.json()["title"] == "Renamed"


def test_listing_by_role(client, classroom, quiz):
    student = client.get("/api/quizzes", headers=classroom["student_headers"]).json()
    assert student["quizzes"][0]["attempts_used"] == 0
    assert student["quizzes"][0]["best_score"] is None
    prof = client.get("/api/quizzes", headers=classroom["prof_headers"]).json()
    assert prof["quizzes"][0]["attempt_count"] == 0
    view = client.post(f"/api/quizzes/{quiz['id']}/view", headers=classroom["student_headers"])
    assert view.json()["success"] is True
