"""Shared fixtures and utilities for tests."""

import os

# Settings are read at import time, so the environment goes first
os.environ.setdefault("ACCESS_SECRET", "test-access-secret-min-32-chars-long-xxxx")
os.environ.setdefault("REFRESH_SECRET", "test-refresh-secret-min-32-chars-long-xxx")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("EMAIL_SUPPRESS_SEND", "true")
os.environ.setdefault("MONGODB_DB", "jobboard_test")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import mongomock
import pytest
from fastapi.testclient import TestClient

from app.core.auth import create_access_token, hash_password
from app.core.middleware import reset_rate_limits
from app.db import mongodb
from app.main import app
from app.services.mongo_service import utcnow

DEFAULT_PASSWORD = "Password123!"


@pytest.fixture(autouse=True)
def fresh_rate_limits():
    """Every test starts with an empty rate limit budget."""
    reset_rate_limits()
    yield
    reset_rate_limits()


@pytest.fixture
def db(monkeypatch):
    """Fresh in-memory MongoDB per test, with the production indexes."""
    client = mongomock.MongoClient()
    database = client["jobboard_test"]
    monkeypatch.setattr(mongodb, "_client", client)
    monkeypatch.setattr(mongodb, "_db", database)
    mongodb.init_mongo_indexes()
    return database


@pytest.fixture
def client(db):
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def outbox(monkeypatch):
    """Captures OTP emails instead of sending them: list of (kind, email, otp)."""
    sent = []

    def capture(kind):
        def _send(email, otp):
            sent.append((kind, email, otp))
            return True
        return _send

    monkeypatch.setattr("app.api.routes.user_routes.send_verification_otp", capture("verify"))
    monkeypatch.setattr("app.api.routes.user_routes.send_password_reset_otp", capture("reset"))
    return sent


@pytest.fixture
def cloud(monkeypatch):
    """Fake Cloudinary: records uploads and deletions."""
    state = {"uploads": [], "deleted": [], "fail": False}

    def fake_upload(file, **options):
        if state["fail"]:
            from cloudinary.exceptions import Error
            raise Error("upload rejected")
        n = len(state["uploads"]) + 1
        public_id = f"{options.get('folder')}/file{n}"
        state["uploads"].append((public_id, options))
        return {
            "secure_url": f"https://res.cloudinary.test/{public_id}",
            "public_id": public_id,
        }

    def fake_destroy(public_id, **options):
        state["deleted"].append(public_id)
        return {"result": "ok"}

    monkeypatch.setattr("cloudinary.uploader.upload", fake_upload)
    monkeypatch.setattr("cloudinary.uploader.destroy", fake_destroy)
    return state


def make_user(db, role="jobseeker", email=None, name="Test User", verified=True, **extra):
    """Insert a user directly and return the stored document."""
    now = utcnow()
    doc = {
        "name": name,
        "email": email or f"{role}-{db.users.count_documents({})}@example.com",
        "password": hash_password(DEFAULT_PASSWORD),
        "role": role,
        "avatar_url": None,
        "avatar_public_id": None,
        "resume_url": None,
        "resume_public_id": None,
        "company": None,
        "bio": None,
        "location": {"city": None, "state": None, "country": None},
        "skills": [],
        "email_verified": verified,
        "refresh_token_hash": None,
        "created_at": now,
        "updated_at": now,
    }
    doc.update(extra)
    db.users.insert_one(doc)
    return doc


def auth_headers(user: dict) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user['_id'])}"}


@pytest.fixture
def jobseeker(db):
    return make_user(db, "jobseeker", email="seeker@example.com", name="Sam Seeker")


@pytest.fixture
def employer(db):
    return make_user(db, "employer", email="boss@example.com", name="Erin Employer")


@pytest.fixture
def admin(db):
    return make_user(db, "admin", email="admin@example.com", name="Ada Admin")


@pytest.fixture
def company(client, employer, cloud):
    resp = client.post(
        "/api/companies",
        data={"name": "Acme Corp", "industry": "Software", "location.city": "Pune"},
        headers=auth_headers(employer),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["company"]


@pytest.fixture
def job(client, employer, company):
    resp = client.post(
        "/api/jobs",
        json={
            "title": "Senior Python Developer",
            "description": "Build APIs with FastAPI and MongoDB",
            "company": company["_id"],
            "skills": "python, fastapi, mongodb",
            "salary": {"min": 100000, "max": 200000},
            "location": {"city": "Pune", "country": "India", "remote": True},
        },
        headers=auth_headers(employer),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["job"]
