import json

import pytest

from classora.utils.parsers import parse_csv, parse_file_to_questions, parse_json, parse_txt


def test_parse_txt_markers():
    text = b"What is 2+2?\n3\n*4\n5\n\nCapital of Italy|Paris|Rome (correct)\n\nTrue or false: water is wet\nTrue\nFalse"
    questions = parse_txt(text)
    assert len(questions) == 3
    assert [o["is_correct"] for o in questions[0]["options"]] == [False, True, False]
    assert questions[0]["options"][1]["text"] == "4"
    assert questions[1]["options"][1] == {"text": "Rome", "is_correct": True}
    assert questions[2]["type"] == "TRUE_FALSE"
    assert questions[2]["options"][0]["is_correct"] is True


def test_parse_json_aliases():
    payload = json.dumps({"questions": [
        {"question": "Pick primes", "answers": ["*2", "*3", "4"], "difficulty": "hard", "points": "5"},
        {"question_text": "Largest planet", "possible_answers": [{"answer_text": "Jupiter", "isCorrect": True},
                                                                 {"answer_text": "Mars"}]},
    ]}).encode()
    questions = parse_json(payload)
    assert questions[0]["type"] == "MULTIPLE_SELECTION"
    assert questions[0]["difficulty"] == "HARD"
    assert questions[0]["points"] == 5
    assert questions[1]["options"][0]["is_correct"] is True
    assert questions[1]["points"] == 10


def test_parse_csv_correct_column():
    payload = b"question,answers,correct,explanation\nColour of the sky,Green|Blue,Blue,Rayleigh scattering\n"
    (q,) = parse_csv(payload)
    assert [o["is_correct"] for o in q["options"]] == [False, True]
    assert q["explanation"] == "Rayleigh scattering"


def test_parse_unsupported_extension():
    with pytest.raises(ValueError):
        parse_file_to_questions(b"x", "slides.pptx")


def _question(class_id=None, **overrides):
    body = {
        "title": "Binary search", "content": "Complexity of binary search?", "difficulty": "EASY",
        "options": [{"text": "O(n)"}, {"text": "O(log n)", "is_correct": True, "explanation": "Halves each step"}],
    }
    if class_id is not None:
        body["class_id"] = class_id
    body.update(overrides)
    return body


def test_question_crud_and_attempt(client, classroom):
    cid = classroom["class"]["id"]
    r = client.post("/api/practice/questions", headers=classroom["prof_headers"], json=_question(cid))
    assert r.status_code == 201, r.text
    question = r.json()
    assert question["subject"] == "Algorithms"
    correct_id = question["options"][1]["id"]
    wrong_id = question["options"][0]["id"]

    student_view = client.get(f"/api/practice/questions/{question['id']}", headers=classroom["student_headers"]).json()
    assert all("is_correct" not in o for o in student_view["options"])
    listed = client.get("/api/practice/questions", headers=classroom["student_headers"],
                        params={"class_id": cid}).json()
    assert question["id"] in [q["id"] for q in listed["questions"]]

    wrong = client.post("/api/practice/attempts", headers=classroom["student_headers"],
                        json={"question_id": question["id"], "selected_answers": [wrong_id], "time_spent": 4})
    assert wrong.json()["is_correct"] is False
    assert wrong.json()["correct_answers"] == [correct_id]
    right = client.post("/api/practice/attempts", headers=classroom["student_headers"],
                        json={"question_id": question["id"], "selected_answers": [correct_id], "time_spent": 8})
    assert right.json()["score"] == 10
    assert right.json()["explanations"] == {str(correct_id): "Halves each step"}

    bogus = client.post("/api/practice/attempts", headers=classroom["student_headers"],
                        json={"question_id": question["id"], "selected_answers": [999999]})
    assert bogus.status_code == 400

    stats = client.get("/api/practice/stats", headers=classroom["student_headers"]).json()
    assert stats["total_attempts"] == 2
    assert stats["accuracy"] == 50.0
    assert stats["by_difficulty"]["EASY"] == {"attempts": 2, "correct": 1}
    assert stats["average_time_spent"] == 6

    prof_stats = client.get("/api/practice/stats", headers=classroom["prof_headers"]).json()
    assert prof_stats["questions"][0]["unique_students"] == 1

    updated = client.put(f"/api/practice/questions/{question['id']}", headers=classroom["prof_headers"],
                         json={"difficulty": "HARD"})
    assert updated.json()["difficulty"] == "HARD"
    assert client.delete(f"/api/practice/questions/{question['id']}",
                         headers=classroom["prof_headers"]).status_code == 200


def test_question_validation(client, classroom):
    prof = classroom["prof_headers"]
    r = client.post("/api/practice/questions", headers=prof, json=_question(options=[{"text": "only"}]))
    assert r.status_code == 400
    r = client.post("/api/practice/questions", headers=prof,
                    json=_question(options=[{"text": "a"}, {"text": "b"}]))
    assert r.status_code == 400
    r = client.post("/api/practice/questions", headers=prof, json=_question(options=[
        {"text": "a", "is_correct": True}, {"text": "b", "is_correct": True}]))
    assert r.status_code == 400
    r = client.post("/api/practice/questions", headers=prof, json=_question(type="MULTIPLE_SELECTION", options=[
        {"text": "a", "is_correct": True}, {"text": "b", "is_correct": True}]))
    assert r.status_code == 201
    r = client.post("/api/practice/questions", headers=classroom["student_headers"], json=_question())
    assert r.status_code == 403


def test_file_upload_imports_questions(client, classroom):
    cid = classroom["class"]["id"]
    content = b"Which sort is stable?\nQuick sort\n*Merge sort\n\nLonely question\nonly answer"
    r = client.post("/api/practice/files", headers=classroom["prof_headers"],
                    data={"title": "Sorting", "class_id": str(cid), "import_questions": "true"},
                    files={"file": ("sorting.txt", content, "text/plain")})
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["imported"] == 1
    assert body["errors"][0]["index"] == 1
    assert body["file"]["file_url"].startswith("/uploads/practice/")

    files = client.get("/api/practice/files", headers=classroom["student_headers"], params={"class_id": cid}).json()
    assert [f["title"] for f in files["files"]] == ["Sorting"]
    classes = client.get("/api/practice/classes", headers=classroom["student_headers"]).json()["classes"]
    mine = next(c for c in classes if c["id"] == cid)
    assert mine["file_count"] == 1
    assert mine["question_count"] >= 1

    assert client.delete(f"/api/practice/files/{body['file']['id']}",
                         headers=classroom["student_headers"]).status_code == 403
    assert client.delete(f"/api/practice/files/{body['file']['id']}",
                         headers=classroom["prof_headers"]).status_code == 200

    r = client.post("/api/practice/files", headers=classroom["prof_headers"],
                    data={"title": "Bad", "class_id": str(cid)},
                    files={"file": ("tool.exe", b"MZ", "application/octet-stream")})
    assert r.status_code == 400


def test_practice_file_over_upload_limit(client, classroom, monkeypatch):
    from classora.config import settings

    monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 32)
    cid = classroom["class"]["id"]
    r = client.post("/api/practice/files", headers=classroom["prof_headers"],
                    data={"title": "Huge", "class_id": str(cid)},
                    files={"file": ("notes.txt", b"q" * 33, "text/plain")})
    assert r.status_code == 400
    ok = client.post("/api/practice/files", headers=classroom["prof_headers"],
                     data={"title": "Fits", "class_id": str(cid)},
                     files={"file": ("notes.txt", b"q" * 32, "text/plain")})
    assert ok.status_code == 201
