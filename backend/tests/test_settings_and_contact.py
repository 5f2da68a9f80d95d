import json

from classora.config import settings
from classora.utils.rate_limit import InMemoryRateLimiter


def test_rate_limiter_window():
    limiter = InMemoryRateLimiter()
    assert limiter.allow("k", 2, 60) == (True, 0)
    assert limiter.allow("k", 2, 60) == (True, 0)
    allowed, retry_after = limiter.allow("k", 2, 60)
    assert allowed is False
    assert 1 <= retry_after <= 60
    assert limiter.allow("other", 2, 60)[0] is True
    limiter.reset()
    assert limiter.allow("k", 2, 60)[0] is True


def test_rate_limiter_drops_idle_keys():
    now = [0.0]
    limiter = InMemoryRateLimiter(clock=lambda: now[0])
    for host in ("10.0.0.1", "10.0.0.2", "10.0.0.3"):
        limiter.allow(host, 5, 60)
    assert len(limiter) == 3
    now[0] = 50.0
    limiter.allow("10.0.0.1", 5, 60)
    assert len(limiter) == 3
    now[0] = 100.0
    limiter.allow("10.0.0.4", 5, 60)
    # only the key seen within the last window and the new one remain
    assert len(limiter) == 2
    now[0] = 200.0
    limiter.allow("10.0.0.4", 5, 60)
    assert len(limiter) == 1


def test_user_settings_merge(client, make_user):
    _, headers = make_user("STUDENT")
    defaults = client.get("/api/settings", headers=headers).json()
    assert defaults["appearance"] == {"theme": "light", "font_size": "medium"}

    r = client.put("/api/settings", headers=headers, json={"appearance": {"theme": "dark"},
                                                            "notifications": {"email": False}})
    assert r.status_code == 200
    stored = client.get("/api/settings", headers=headers).json()
    assert stored["appearance"] == {"theme": "dark", "font_size": "medium"}
    assert stored["notifications"]["email"] is False
    assert stored["notifications"]["push"] is True

    bad = client.put("/api/settings", headers=headers, json={"appearance": {"theme": "neon"}})
    assert bad.status_code == 422


def test_public_settings_need_no_login(client):
    body = client.get("/api/settings/public").json()
    assert "site_name" in body
    assert "email_host" not in body


def test_data_export(client, classroom):
    r = client.get("/api/settings/export", headers=classroom["student_headers"])
    assert r.status_code == 200
    assert "attachment" in r.headers["content-disposition"]
    data = json.loads(r.content)
    assert data["user"]["id"] == classroom["student"]["id"]
    assert [e["class_id"] for e in data["enrollments"]] == [classroom["class"]["id"]]
    assert data["settings"]["privacy"]["profile_visibility"] == "public"

    prof = json.loads(client.get("/api/settings/export", headers=classroom["prof_headers"]).content)
    assert [c["name"] for c in prof["classes"]] == ["Algorithms"]


def test_contact_form(client, outbox):
    r = client.post("/api/contact", json={"name": "Visitor", "email": "visitor@example.com",
                                          "subject": "Pricing", "message": "How much does it cost?"})
    assert r.status_code == 201
    assert isinstance(r.json()["id"], int)
    assert outbox[-1]["To"] == settings.SUPPORT_EMAIL
    assert "Pricing" in outbox[-1]["Subject"]

    short = client.post("/api/contact", json={"name": "V", "email": "bad", "subject": "x", "message": "short"})
    assert short.status_code == 422


def test_contact_rate_limit(client, monkeypatch):
    monkeypatch.setattr(settings, "CONTACT_RATE_LIMIT_PER_MIN", 1)
    body = {"name": "Visitor", "email": "visitor@example.com", "subject": "Hello", "message": "Just saying hello"}
    assert client.post("/api/contact", json=body).status_code == 201
    blocked = client.post("/api/contact", json=body)
    assert blocked.status_code == 429
    assert "Retry-After" in blocked.headers
