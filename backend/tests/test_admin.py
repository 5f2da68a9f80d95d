import json

from fastapi.testclient import TestClient

from classora import mailer
from classora.main import app
from classora.services.settings import SettingsService


def test_admin_routes_require_admin(client, make_user):
    _, headers = make_user("PROFESSOR")
    assert client.get("/api/admin/users", headers=headers).status_code == 403
    assert client.get("/api/admin/users").status_code == 401


def test_user_management(client, admin, make_user):
    admin_user, headers = admin
    student, student_headers = make_user("STUDENT", name="Managed Student")

    listed = client.get("/api/admin/users", headers=headers, params={"query": student["email"]}).json()
    assert [u["id"] for u in listed["users"]] == [student["id"]]
    assert listed["users"][0]["profile_complete"] is False

    r = client.put(f"/api/admin/users/{student['id']}", headers=headers, json={"name": "Renamed", "role": "PROFESSOR"})
    assert r.status_code == 200
    assert r.json()["role"] == "PROFESSOR"
    taken = client.put(f"/api/admin/users/{student['id']}", headers=headers, json={"email": admin_user["email"]})
    assert taken.status_code == 400
    own_role = client.put(f"/api/admin/users/{admin_user['id']}", headers=headers, json={"role": "STUDENT"})
    assert own_role.status_code == 403

    r = client.put(f"/api/admin/users/{student['id']}/status", headers=headers, json={"status": "suspended"})
    assert r.json()["status"] == "suspended"
    assert client.get("/api/auth/me", headers=student_headers).status_code == 403
    assert client.put(f"/api/admin/users/{admin_user['id']}/status", headers=headers,
                      json={"status": "inactive"}).status_code == 400

    assert client.delete(f"/api/admin/users/{admin_user['id']}", headers=headers).status_code == 400
    assert client.delete(f"/api/admin/users/{student['id']}", headers=headers).status_code == 200
    assert client.get(f"/api/admin/users/{student['id']}", headers=headers).status_code == 404


def _contact(client, subject="Question"):
    r = client.post("/api/contact", json={"name": "Visitor", "email": "visitor@example.com",
                                          "subject": subject, "message": "Is there a mobile app?"})
    return r.json()["id"]


def test_contact_inbox(client, admin, outbox, monkeypatch):
    _, headers = admin
    message_id = _contact(client)
    inbox = client.get("/api/admin/messages", headers=headers, params={"unread_only": True}).json()
    assert message_id in [m["id"] for m in inbox["messages"]]
    assert inbox["unread_count"] >= 1

    def refuse(message):
        raise OSError("relay down")

    monkeypatch.setattr(mailer, "deliver_email", refuse)
    failed = client.post(f"/api/admin/messages/{message_id}/reply", headers=headers,
                         json={"reply_message": "Not yet"})
    assert failed.status_code == 400
    monkeypatch.setattr(mailer, "deliver_email", lambda message: outbox.append(message))

    replied = client.post(f"/api/admin/messages/{message_id}/reply", headers=headers,
                          json={"reply_message": "Coming soon", "admin_name": "Support"})
    assert replied.status_code == 200
    assert replied.json()["read"] is True
    assert replied.json()["reply_message"] == "Coming soon"
    assert outbox[-1]["To"] == "visitor@example.com"
    assert outbox[-1]["Subject"] == "Re: Question"

    other = _contact(client, "Another")
    assert client.put(f"/api/admin/messages/{other}/read", headers=headers).json()["read"] is True
    assert client.delete(f"/api/admin/messages/{other}", headers=headers).status_code == 200
    assert client.put(f"/api/admin/messages/{other}/read", headers=headers).status_code == 404


def test_system_settings(client, admin):
    _, headers = admin
    original = client.get("/api/admin/settings", headers=headers).json()
    try:
        r = client.put("/api/admin/settings", headers=headers,
                       json={"site_name": "Test Campus", "allowed_file_types": "PDF, .txt"})
        assert r.status_code == 200
        assert r.json()["allowed_file_types"] == ["pdf", "txt"]
        assert client.get("/api/settings/public").json()["site_name"] == "Test Campus"

        backup = client.put("/api/admin/backup/settings", headers=headers,
                            json={"backup_frequency": "weekly", "backup_time": "03:30"}).json()
        assert backup["backup_frequency"] == "weekly"
        assert client.get("/api/admin/backup/settings", headers=headers).json()["backup_time"] == "03:30"
        assert client.put("/api/admin/backup/settings", headers=headers,
                          json={"backup_time": "3pm"}).status_code == 422
    finally:
        client.put("/api/admin/settings", headers=headers, json={
            "site_name": original["site_name"], "allowed_file_types": original["allowed_file_types"],
            "backup_frequency": original["backup_frequency"], "backup_time": original["backup_time"],
        })


def test_backup_lifecycle(client, admin, outbox):
    admin_user, headers = admin
    r = client.post("/api/admin/backup", headers=headers, json={"name": "Nightly", "description": "before upgrade"})
    assert r.status_code == 201, r.text
    backup = r.json()
    assert backup["size"] > 0
    assert backup["created_by"] == admin_user["id"]
    assert backup["pruned"] == 0
    mail = outbox[-1]
    assert mail["To"] == admin_user["email"]
    assert any(part.get_filename() for part in mail.iter_attachments())

    listed = client.get("/api/admin/backup", headers=headers).json()["backups"]
    assert backup["id"] in [b["id"] for b in listed]

    download = client.get(f"/api/admin/backup/{backup['id']}/download", headers=headers)
    assert download.status_code == 200
    assert download.content[:15] == b"SQLite format 3"

    assert client.delete(f"/api/admin/backup/{backup['id']}", headers=headers).status_code == 200
    assert client.get(f"/api/admin/backup/{backup['id']}/download", headers=headers).status_code == 404


def test_restore_backup(client, admin):
    _, headers = admin
    backup = client.post("/api/admin/backup", headers=headers, json={}).json()
    later = _contact(client, "After backup")

    r = client.post(f"/api/admin/backup/{backup['id']}/restore", headers=headers)
    assert r.status_code == 200
    assert r.json()["success"] is True

    messages = client.get("/api/admin/messages", headers=headers).json()["messages"]
    assert later not in [m["id"] for m in messages]
    assert backup["id"] in [b["id"] for b in client.get("/api/admin/backup", headers=headers).json()["backups"]]


def test_unhandled_errors_become_crash_reports(client, admin, monkeypatch):
    _, headers = admin

    def explode(self):
        raise RuntimeError("settings table on fire")

    monkeypatch.setattr(SettingsService, "public", explode)
    raw = TestClient(app, raise_server_exceptions=False)
    r = raw.get("/api/settings/public", headers={"X-Request-ID": "req-crash-1"})
    assert r.status_code == 500
    assert r.json() == {"detail": "Internal server error", "error_id": "req-crash-1"}

    crashes = client.get("/api/admin/crashes", headers=headers, params={"resolved": False}).json()["crashes"]
    crash = next(c for c in crashes if c["request_id"] == "req-crash-1")
    assert crash["message"] == "RuntimeError: settings table on fire"
    assert crash["url"] == "/api/settings/public"
    assert "Traceback" in crash["stack_trace"]

    resolved = client.put(f"/api/admin/crashes/{crash['id']}", headers=headers, json={"resolved": True}).json()
    assert resolved["resolved"] is True
    assert resolved["resolved_at"] is not None
    assert client.get(f"/api/admin/crashes/{crash['id']}", headers=headers).json()["resolved"] is True

    export = client.get("/api/admin/crashes/export", headers=headers)
    assert "attachment" in export.headers["content-disposition"]
    assert json.loads(export.content)["total"] >= 1

    assert client.delete(f"/api/admin/crashes/{crash['id']}", headers=headers).status_code == 200
    assert client.get(f"/api/admin/crashes/{crash['id']}", headers=headers).status_code == 404

    perf = client.get("/api/admin/performance", headers=headers).json()
    assert perf["metrics"]["total_requests"] >= 1
    assert perf["metrics"]["error_rate"] > 0
    assert perf["health"]["status"] in ("healthy", "warning", "critical")


def test_dashboard_stats_and_test_email(client, admin, outbox):
    admin_user, headers = admin
    stats = client.get("/api/admin/dashboard-stats", headers=headers).json()
    assert stats["total_admins"] >= 1
    assert stats["active_users"] >= 1
    assert isinstance(stats["last_backup"], str)

    r = client.post("/api/admin/test-email", headers=headers, json={"to": admin_user["email"]})
    assert r.status_code == 200
    assert outbox[-1]["Subject"] == "Classora test email"
    assert client.post("/api/admin/test-email", headers=headers, json={"to": "nope"}).status_code == 422


def test_request_ids_and_metrics(client):
    r = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert r.headers["X-Request-ID"] == "abc123"
    assert client.get("/api/settings/public").headers["X-Request-ID"]
