import io
import re

from PIL import Image


def _plain(message) -> str:
    return message.get_body(preferencelist=("plain",)).get_content()


def test_register_login_and_me(client, outbox):
    r = client.post("/api/auth/register", json={
        "email": "Alice@Example.com", "password": "password123", "name": "Alice", "role": "STUDENT",
    })
    assert r.status_code == 201
    user = r.json()["user"]
    assert user["email"] == "alice@example.com"
    assert user["role"] == "STUDENT"
    assert any(m["To"] == "alice@example.com" and m["Subject"] == "Welcome to Classora" for m in outbox)

    dup = client.post("/api/auth/register", json={
        "email": "alice@example.com", "password": "password123", "name": "Alice", "role": "STUDENT",
    })
    assert dup.status_code == 400

    bad = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "wrong-password"})
    assert bad.status_code == 401

    login = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "password123"})
    assert login.status_code == 200
    token = login.json()["access_token"]
    assert login.json()["token_type"] == "bearer"

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["id"] == user["id"]
    assert me.json()["last_login_at"] is not None


def test_register_validation(client):
    r = client.post("/api/auth/register", json={"email": "not-an-email", "password": "password123", "name": "X"})
    assert r.status_code == 422
    r = client.post("/api/auth/register", json={"email": "short@example.com", "password": "short", "name": "Bob"})
    assert r.status_code == 422


def test_missing_and_invalid_credentials(client):
    assert client.get("/api/auth/me").status_code == 401
    r = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401
    assert r.json()["detail"] == "invalid token"


def test_user_id_header_identity(client, make_user):
    user, _ = make_user("STUDENT")
    r = client.get("/api/auth/me", headers={"x-user-id": str(user["id"])})
    assert r.status_code == 200
    assert r.json()["email"] == user["email"]


def test_profile_update_matches_role(client, make_user):
    professor, headers = make_user("PROFESSOR")
    r = client.put("/api/auth/profile", headers=headers, json={
        "name": "Dr. Turing",
        "bio": "Computability",
        "teacher_profile": {"university": "Cambridge", "department": "Mathematics"},
        "student_profile": {"roll_no": "42"},
    })
    assert r.status_code == 200
    body = r.json()
    assert body["name"] == "Dr. Turing"
    assert body["teacher_profile"]["university"] == "Cambridge"
    assert body["student_profile"] is None

    again = client.get("/api/auth/profile", headers=headers).json()
    assert again["teacher_profile"]["department"] == "Mathematics"


def test_password_reset_flow(client, make_user, outbox):
    user, _ = make_user("STUDENT")
    r = client.post("/api/auth/forgot-password", json={"email": user["email"]})
    assert r.status_code == 200
    unknown = client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})
    assert unknown.json()["message"] == r.json()["message"]

    reset_mail = [m for m in outbox if m["To"] == user["email"] and "Reset" in m["Subject"]]
    assert len(reset_mail) == 1
    token = re.search(r"token=([0-9a-f]{64})", _plain(reset_mail[0])).group(1)

    assert client.post("/api/auth/reset-password", json={"token": "bogus", "password": "newpassword1"}).status_code == 400
    ok = client.post("/api/auth/reset-password", json={"token": token, "password": "newpassword1"})
    assert ok.status_code == 200
    # tokens are single use
    assert client.post("/api/auth/reset-password", json={"token": token, "password": "another-pass"}).status_code == 400

    login = client.post("/api/auth/login", json={"email": user["email"], "password": "newpassword1"})
    assert login.status_code == 200


def test_change_password(client, make_user):
    user, headers = make_user("STUDENT")
    wrong = client.post("/api/auth/change-password", headers=headers,
                        json={"current_password": "nope-nope", "new_password": "brandnew123"})
    assert wrong.status_code == 400
    ok = client.post("/api/auth/change-password", headers=headers,
                     json={"current_password": "password123", "new_password": "brandnew123"})
    assert ok.status_code == 200
    login = client.post("/api/auth/login", json={"email": user["email"], "password": "brandnew123"})
    assert login.status_code == 200


def test_profile_image_upload(client, make_user):
    _, headers = make_user("STUDENT")
    buf = io.BytesIO()
    Image.new("RGB", (16, 16), "blue").save(buf, format="PNG")
    r = client.post("/api/auth/profile-image", headers=headers,
                    files={"file": ("me.png", buf.getvalue(), "image/png")})
    assert r.status_code == 200
    url = r.json()["image_url"]
    assert url.startswith("/uploads/avatars/")
    assert client.get(url).status_code == 200

    fake = client.post("/api/auth/profile-image", headers=headers,
                       files={"file": ("me.png", b"definitely not a png", "image/png")})
    assert fake.status_code == 400


def test_suspended_user_is_rejected(client, make_user, admin):
    user, headers = make_user("STUDENT")
    _, admin_headers = admin
    r = client.put(f"/api/admin/users/{user['id']}/status", headers=admin_headers, json={"status": "suspended"})
    assert r.status_code == 200
    assert client.get("/api/auth/me", headers=headers).status_code == 403
    login = client.post("/api/auth/login", json={"email": user["email"], "password": "password123"})
    assert login.status_code == 403


def test_registration_can_be_disabled(client, admin):
    _, admin_headers = admin
    client.put("/api/admin/settings", headers=admin_headers, json={"registration_enabled": False})
    try:
        r = client.post("/api/auth/register", json={
            "email": "late@example.com", "password": "password123", "name": "Late Comer",
        })
        assert r.status_code == 403
    finally:
        client.put("/api/admin/settings", headers=admin_headers, json={"registration_enabled": True})


def test_login_rate_limit(client, monkeypatch):
    from classora.config import settings

    monkeypatch.setattr(settings, "LOGIN_RATE_LIMIT_PER_MIN", 2)
    payload = {"email": "nobody@example.com", "password": "whatever1"}
    assert client.post("/api/auth/login", json=payload).status_code == 401
    assert client.post("/api/auth/login", json=payload).status_code == 401
    limited = client.post("/api/auth/login", json=payload)
    assert limited.status_code == 429
    assert "Retry-After" in limited.headers


def test_profile_image_size_limit(client, make_user):
    from classora.services.auth import MAX_AVATAR_BYTES

    _, headers = make_user("STUDENT")
    r = client.post("/api/auth/profile-image", headers=headers,
                    files={"file": ("big.png", b"\x89PNG" + b"\0" * (MAX_AVATAR_BYTES - 3), "image/png")})
    assert r.status_code == 400
    assert "too large" in r.json()["detail"]
