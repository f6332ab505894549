import os
import tempfile
import uuid
from pathlib import Path

import pytest

# Point the app at a throwaway SQLite file before `careerbot` is imported.
_DB_DIR = Path(tempfile.mkdtemp(prefix="careerbot-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"
os.environ.setdefault("ENV", "test")
os.environ.setdefault("JWT_SECRET", "test-secret")

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session  # noqa: E402

from careerbot.database import create_db_and_tables, engine, make_engine  # noqa: E402
from careerbot.main import app  # noqa: E402
from careerbot import services  # noqa: E402


@pytest.fixture(scope="session")
def client():
    return TestClient(app)


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@example.com"


@pytest.fixture
def signup(client):
    """Factory: register a fresh user and return `(headers, user_json)`."""
    def _signup(prefix: str = "user", password: str = "secret123"):
        r = client.post("/api/auth/signup", json={"email": unique_email(prefix), "password": password})
        assert r.status_code == 201, r.text
        data = r.json()["data"]
        return {"Authorization": f"Bearer {data['token']}"}, data["user"]
    return _signup


@pytest.fixture
def admin_headers(client):
    email = unique_email("admin")
    with Session(engine) as session:
        services.AuthService(session).ensure_admin(email, "admin123")
    r = client.post("/api/auth/login", json={"email": email, "password": "admin123"})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['data']['token']}"}


@pytest.fixture
def session():
    """A session on a private in-memory database for service-level tests."""
    mem = make_engine("sqlite://", poolclass=StaticPool)
    create_db_and_tables(bind=mem)
    with Session(mem) as s:
        yield s
