import os
import tempfile
import uuid
from pathlib import Path

_TMP = Path(tempfile.mkdtemp(prefix="classora-tests-"))
os.environ["ENV"] = "dev"
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["UPLOAD_DIR"] = str(_TMP / "uploads")
os.environ["BACKUP_DIR"] = str(_TMP / "backups")
os.environ["SMTP_HOST"] = "localhost"
os.environ["LOGIN_RATE_LIMIT_PER_MIN"] = "1000"
os.environ["CONTACT_RATE_LIMIT_PER_MIN"] = "1000"

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from classora import mailer, models
from classora.database import engine
from classora.main import app
from classora.services.auth import hash_password
from classora.utils import metrics
from classora.utils.rate_limit import limiter


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    """Capture outgoing email instead of talking to an SMTP server."""
    sent = []
    monkeypatch.setattr(mailer, "deliver_email", lambda message: sent.append(message))
    limiter.reset()
    yield sent
    metrics.reset()


@pytest.fixture
def client():
    return TestClient(app)


def _email(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}@example.com"


@pytest.fixture
def make_user(client):
    """Register and log in a user; returns `(user, headers)`."""
    def factory(role: str = "STUDENT", name: str = None, password: str = "password123"):
        email = _email(role.lower())
        r = client.post("/api/auth/register", json={
            "email": email, "password": password, "name": name or f"{role.title()} User", "role": role,
        })
        assert r.status_code == 201, r.text
        login = client.post("/api/auth/login", json={"email": email, "password": password})
        assert login.status_code == 200, login.text
        body = login.json()
        return body["user"], {"Authorization": f"Bearer {body['access_token']}"}
    return factory


@pytest.fixture
def admin(client):
    """An ADMIN account created directly in the database."""
    with Session(engine) as session:
        user = models.User(email=_email("admin"), name="Site Admin", password_hash=hash_password("password123"),
                           role=models.Role.ADMIN)
        session.add(user)
        session.commit()
        session.refresh(user)
        email = user.email
    r = client.post("/api/auth/login", json={"email": email, "password": "password123"})
    assert r.status_code == 200, r.text
    return r.json()["user"], {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def classroom(client, make_user):
    """A professor, a class they own and one enrolled student."""
    professor, prof_headers = make_user("PROFESSOR", name="Ada Lovelace")
    code = f"CS{uuid.uuid4().hex[:6].upper()}"
    r = client.post("/api/classes", headers=prof_headers, json={"name": "Algorithms", "code": code})
    assert r.status_code == 201, r.text
    cls = r.json()
    student, student_headers = make_user("STUDENT", name="Grace Hopper")
    r = client.post("/api/enrollments", headers=student_headers, json={"class_id": cls["id"]})
    assert r.status_code == 201, r.text
    return {
        "class": cls,
        "professor": professor,
        "prof_headers": prof_headers,
        "student": student,
        "student_headers": student_headers,
    }
