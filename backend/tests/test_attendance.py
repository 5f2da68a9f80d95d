from datetime import date, datetime, timedelta, timezone

import pytest

from classora.services.attendance import attendance_rate, count_statuses, period_range


def test_attendance_rate_is_weighted():
    assert attendance_rate(["PRESENT", "LATE"]) == 75.0
    assert attendance_rate(["EXCUSED", "ABSENT", "PRESENT", "PRESENT"]) == pytest.approx(68.75)
    assert attendance_rate([]) == 0.0
    assert attendance_rate(["PRESENT"], total_sessions=4) == 25.0


def test_count_statuses_ignores_unknown():
    assert count_statuses(["PRESENT", "late", "NOT_MARKED"]) == {"present": 1, "absent": 0, "late": 1, "excused": 0}


def test_period_range():
    wednesday = date(2024, 5, 15)
    start, end = period_range("weekly", today=wednesday)
    assert start == datetime(2024, 5, 8)
    assert end.date() == wednesday
    # weekly is a rolling window, not the calendar week
    monday = date(2026, 10, 19)
    start, end = period_range("weekly", today=monday)
    assert start == datetime(2026, 10, 12)
    assert (end - start).days == 7
    start, _ = period_range("monthly", today=wednesday)
    assert start == datetime(2024, 5, 1)
    start, end = period_range("custom", date(2024, 1, 1), date(2024, 1, 31))
    assert (start.date(), end.date()) == (date(2024, 1, 1), date(2024, 1, 31))
    with pytest.raises(ValueError):
        period_range("custom", date(2024, 2, 1), date(2024, 1, 1))
    with pytest.raises(ValueError):
        period_range("custom")
    with pytest.raises(ValueError):
        period_range("yearly")


def _session(client, classroom, minutes_ago=0, title="Lecture"):
    when = (datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)).isoformat()
    r = client.post("/api/attendance/sessions", headers=classroom["prof_headers"],
                    json={"class_id": classroom["class"]["id"], "date": when, "title": title})
    assert r.status_code == 201, r.text
    return r.json()


def test_mark_and_view_sessions(client, classroom):
    s = _session(client, classroom)
    student_id = classroom["student"]["id"]
    r = client.post("/api/attendance/mark", headers=classroom["prof_headers"],
                    json={"session_id": s["id"], "student_id": student_id, "status": "LATE", "notes": "bus"})
    assert r.status_code == 200
    assert r.json()["status"] == "LATE"

    again = client.post("/api/attendance/mark", headers=classroom["prof_headers"],
                        json={"session_id": s["id"], "student_id": student_id, "status": "PRESENT"})
    assert again.json()["id"] == r.json()["id"]

    prof_view = client.get("/api/attendance/sessions", headers=classroom["prof_headers"],
                           params={"class_id": classroom["class"]["id"]}).json()
    assert prof_view["sessions"][0]["counts"]["present"] == 1
    assert prof_view["sessions"][0]["enrolled"] == 1

    student_view = client.get("/api/attendance/sessions", headers=classroom["student_headers"],
                              params={"session_id": s["id"]}).json()
    assert student_view["sessions"][0]["status"] == "PRESENT"


def test_mark_requires_enrollment(client, classroom, make_user):
    s = _session(client, classroom)
    outsider, outsider_headers = make_user("STUDENT")
    r = client.post("/api/attendance/mark", headers=classroom["prof_headers"],
                    json={"session_id": s["id"], "student_id": outsider["id"], "status": "PRESENT"})
    assert r.status_code == 400
    r = client.put("/api/attendance/mark", headers=classroom["prof_headers"], json={
        "session_id": s["id"],
        "records": [
            {"student_id": classroom["student"]["id"], "status": "ABSENT"},
            {"student_id": outsider["id"], "status": "PRESENT"},
        ],
    })
    assert r.json() == {"updated": 1, "skipped": 1}
    r = client.get("/api/attendance/sessions", headers=outsider_headers, params={"class_id": classroom["class"]["id"]})
    assert r.status_code == 403
    assert client.get("/api/attendance/sessions", headers=classroom["prof_headers"]).status_code == 400


def test_report_and_analytics(client, classroom):
    first = _session(client, classroom, minutes_ago=5, title="One")
    second = _session(client, classroom, minutes_ago=1, title="Two")
    _session(client, classroom, title="Unmarked")
    student_id = classroom["student"]["id"]
    for s, status in ((first, "PRESENT"), (second, "LATE")):
        client.post("/api/attendance/mark", headers=classroom["prof_headers"],
                    json={"session_id": s["id"], "student_id": student_id, "status": status})

    report = client.get("/api/attendance/reports", headers=classroom["prof_headers"],
                        params={"class_id": classroom["class"]["id"], "period": "daily"}).json()
    row = report["students"][0]
    assert row["total_sessions"] == 3
    assert row["not_marked"] == 1
    assert row["attendance_rate"] == 75.0
    assert report["summary"]["total_students"] == 1

    strict = client.get("/api/attendance/reports", headers=classroom["prof_headers"], params={
        "class_id": classroom["class"]["id"], "period": "daily", "include_not_marked": True,
    }).json()
    assert strict["students"][0]["attendance_rate"] == 50.0

    r = client.get("/api/attendance/reports", headers=classroom["prof_headers"],
                   params={"class_id": classroom["class"]["id"], "period": "custom"})
    assert r.status_code == 400
    r = client.get("/api/attendance/reports", headers=classroom["student_headers"],
                   params={"class_id": classroom["class"]["id"]})
    assert r.status_code == 403

    mine = client.get("/api/attendance/analytics", headers=classroom["student_headers"],
                      params={"class_id": classroom["class"]["id"]}).json()
    assert mine["student"]["id"] == student_id
    assert mine["present"] == 1 and mine["late"] == 1
    overall = client.get("/api/attendance/analytics", headers=classroom["prof_headers"],
                         params={"class_id": classroom["class"]["id"]}).json()
    assert overall["total_sessions"] == 3
    assert overall["overall_rate"] == 75.0

    one = client.get("/api/attendance/analytics", headers=classroom["prof_headers"],
                     params={"class_id": classroom["class"]["id"], "student_id": student_id}).json()
    assert one["attendance_rate"] == 75.0


def test_analytics_for_student_outside_class(client, make_user, classroom):
    outsider, _ = make_user("STUDENT")
    r = client.get("/api/attendance/analytics", headers=classroom["prof_headers"],
                   params={"class_id": classroom["class"]["id"], "student_id": outsider["id"]})
    assert r.status_code == 404
    assert r.json()["detail"] == "Student not found in this class"


def test_delete_session(client, classroom):
    s = _session(client, classroom)
    r = client.delete(f"/api/attendance/sessions/{s['id']}", headers=classroom["prof_headers"])
    assert r.status_code == 200
    r = client.get("/api/attendance/sessions", headers=classroom["prof_headers"], params={"session_id": s["id"]})
    assert r.status_code == 404
