import re
import uuid
from datetime import timedelta

from sqlmodel import Session, select

from classora import models
from classora.database import engine


def _code() -> str:
    return f"C{uuid.uuid4().hex[:7].upper()}"


def _plain(message) -> str:
    return message.get_body(preferencelist=("plain",)).get_content()


def test_create_and_list_classes(client, make_user):
    professor, headers = make_user("PROFESSOR", name="Edsger Dijkstra")
    code = _code()
    r = client.post("/api/classes", headers=headers, json={"name": "Graph Theory", "code": code,
                                                           "description": "Shortest paths"})
    assert r.status_code == 201
    created = r.json()
    assert created["professor"]["id"] == professor["id"]
    assert created["counts"] == {"enrollments": 0, "notes": 0, "quizzes": 0, "assignments": 0}

    dup = client.post("/api/classes", headers=headers, json={"name": "Again", "code": code})
    assert dup.status_code == 400
    assert dup.json()["detail"] == "Class code already exists"

    listed = client.get("/api/classes", headers=headers, params={"query": "dijkstra"}).json()
    assert any(c["id"] == created["id"] for c in listed["classes"])
    assert listed["pagination"]["limit"] == 20

    by_code = client.get("/api/classes", headers=headers, params={"query": code.lower()}).json()
    assert by_code["pagination"]["total"] == 1


def test_students_cannot_create_classes(client, make_user):
    _, headers = make_user("STUDENT")
    r = client.post("/api/classes", headers=headers, json={"name": "Nope", "code": _code()})
    assert r.status_code == 403
    assert r.json()["detail"] == "Access denied. Professor role required."


def test_only_owner_can_modify(client, make_user, classroom):
    _, other_headers = make_user("PROFESSOR")
    cid = classroom["class"]["id"]
    r = client.put(f"/api/classes/{cid}", headers=other_headers, json={"name": "Hijacked"})
    assert r.status_code == 404
    assert r.json()["detail"] == "Class not found or access denied"
    assert client.put(f"/api/classes/{cid}/archive", headers=other_headers,
                      json={"is_archived": True}).status_code == 403

    ok = client.put(f"/api/classes/{cid}", headers=classroom["prof_headers"], json={"description": "Updated"})
    assert ok.status_code == 200
    assert ok.json()["description"] == "Updated"


def test_archive_hides_class_and_blocks_enrollment(client, make_user, classroom):
    cid = classroom["class"]["id"]
    r = client.put(f"/api/classes/{cid}/archive", headers=classroom["prof_headers"], json={"is_archived": True})
    assert r.status_code == 200
    assert r.json()["message"] == 'Class "Algorithms" archived successfully'
    assert r.json()["class"]["archived_at"] is not None

    listed = client.get("/api/classes", headers=classroom["prof_headers"],
                        params={"professor_id": classroom["professor"]["id"]}).json()
    assert all(c["id"] != cid for c in listed["classes"])
    with_archived = client.get("/api/classes", headers=classroom["prof_headers"],
                               params={"professor_id": classroom["professor"]["id"], "include_archived": True}).json()
    assert any(c["id"] == cid for c in with_archived["classes"])

    _, late_headers = make_user("STUDENT")
    blocked = client.post("/api/enrollments", headers=late_headers, json={"class_id": cid})
    assert blocked.status_code == 400

    restored = client.put(f"/api/classes/{cid}/archive", headers=classroom["prof_headers"],
                          json={"is_archived": False})
    assert restored.json()["class"]["archived_at"] is None


def test_enrollment_rules(client, classroom):
    cid = classroom["class"]["id"]
    again = client.post("/api/enrollments", headers=classroom["student_headers"], json={"class_id": cid})
    assert again.status_code == 400
    missing = client.post("/api/enrollments", headers=classroom["student_headers"], json={"class_id": 999999})
    assert missing.status_code == 404

    mine = client.get("/api/enrollments", headers=classroom["student_headers"]).json()["enrollments"]
    assert [e["class_id"] for e in mine] == [cid]

    roster = client.get(f"/api/classes/{cid}/enrollments", headers=classroom["student_headers"])
    assert roster.status_code == 200
    assert roster.json()["enrollments"][0]["student"]["id"] == classroom["student"]["id"]

    detail = client.get(f"/api/classes/{cid}", headers=classroom["prof_headers"]).json()
    assert detail["counts"]["enrollments"] == 1

    left = client.delete(f"/api/enrollments/{cid}", headers=classroom["student_headers"])
    assert left.status_code == 200
    assert client.get("/api/enrollments", headers=classroom["student_headers"]).json()["enrollments"] == []


def test_professor_cannot_query_other_class_enrollments(client, make_user, classroom):
    _, other_headers = make_user("PROFESSOR")
    r = client.get("/api/enrollments", headers=other_headers, params={"class_id": classroom["class"]["id"]})
    assert r.status_code == 403


def test_available_students_and_invite_existing(client, make_user, classroom):
    headers = classroom["prof_headers"]
    second = client.post("/api/classes", headers=headers, json={"name": "Compilers", "code": _code()}).json()
    available = client.get(f"/api/classes/{second['id']}/available-students", headers=headers).json()["students"]
    assert [s["id"] for s in available] == [classroom["student"]["id"]]

    other_prof, _ = make_user("PROFESSOR")
    bad = client.post(f"/api/classes/{second['id']}/invite-existing", headers=headers,
                      json={"student_ids": [other_prof["id"]]})
    assert bad.status_code == 400

    r = client.post(f"/api/classes/{second['id']}/invite-existing", headers=headers,
                    json={"student_ids": [classroom["student"]["id"]]})
    assert r.json()["invited_count"] == 1
    again = client.post(f"/api/classes/{second['id']}/invite-existing", headers=headers,
                        json={"student_ids": [classroom["student"]["id"]]})
    assert again.json()["invited_count"] == 0

    removed = client.delete(f"/api/classes/{second['id']}/enrollments/{classroom['student']['id']}", headers=headers)
    assert removed.status_code == 200


def test_email_invitation_flow(client, make_user, classroom, outbox):
    cid = classroom["class"]["id"]
    headers = classroom["prof_headers"]
    only_registered = client.post(f"/api/classes/{cid}/invite", headers=headers,
                                  json={"emails": [classroom["student"]["email"], "not-an-email"]})
    assert only_registered.status_code == 400

    invitee = f"invitee-{uuid.uuid4().hex[:6]}@example.com"
    r = client.post(f"/api/classes/{cid}/invite", headers=headers, json={"emails": [invitee]})
    assert r.status_code == 200
    assert r.json()["sent"] == 1
    assert r.json()["results"][0]["status"] == "invited"

    repeat = client.post(f"/api/classes/{cid}/invite", headers=headers, json={"emails": [invitee]}).json()
    assert repeat["results"][0]["status"] == "already_invited"

    mail = [m for m in outbox if m["To"] == invitee]
    assert len(mail) == 1
    token = re.search(r"/invite/([0-9a-f]{64})", _plain(mail[0])).group(1)

    info = client.get(f"/api/invitations/{token}")
    assert info.status_code == 200
    assert info.json()["class"]["id"] == cid
    assert client.get("/api/invitations/unknown-token").status_code == 404

    client.post("/api/auth/register", json={"email": invitee, "password": "password123", "name": "Invited"})
    login = client.post("/api/auth/login", json={"email": invitee, "password": "password123"}).json()
    invitee_headers = {"Authorization": f"Bearer {login['access_token']}"}
    accepted = client.post("/api/invitations/accept", headers=invitee_headers, json={"token": token})
    assert accepted.status_code == 200
    assert accepted.json()["class"]["id"] == cid
    twice = client.post("/api/invitations/accept", headers=invitee_headers, json={"token": token})
    assert twice.status_code == 400


def test_expired_invitation(client, classroom):
    cid = classroom["class"]["id"]
    invitee = f"late-{uuid.uuid4().hex[:6]}@example.com"
    client.post(f"/api/classes/{cid}/invite", headers=classroom["prof_headers"], json={"emails": [invitee]})
    with Session(engine) as session:
        invitation = session.exec(select(models.ClassInvitation).where(models.ClassInvitation.email == invitee)).one()
        invitation.expires_at = models.utcnow() - timedelta(days=1)
        session.add(invitation)
        session.commit()
        token = invitation.token
    r = client.get(f"/api/invitations/{token}")
    assert r.status_code == 400
    with Session(engine) as session:
        invitation = session.exec(select(models.ClassInvitation).where(models.ClassInvitation.token == token)).one()
        assert invitation.status == models.InvitationStatus.EXPIRED

    reissued = client.post(f"/api/classes/{cid}/invite", headers=classroom["prof_headers"],
                           json={"emails": [invitee]}).json()
    assert reissued["results"][0]["status"] == "invited"


def test_delete_class_cascades(client, classroom):
    cid = classroom["class"]["id"]
    client.post("/api/notes", headers=classroom["prof_headers"],
                json={"title": "Intro", "content": "Welcome", "class_id": cid})
    r = client.delete(f"/api/classes/{cid}", headers=classroom["prof_headers"])
    assert r.status_code == 200
    assert client.get(f"/api/classes/{cid}", headers=classroom["prof_headers"]).status_code == 404
    with Session(engine) as session:
        assert session.exec(select(models.Note).where(models.Note.class_id == cid)).all() == []
