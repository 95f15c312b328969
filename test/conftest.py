"""
FixIt Hostel - Test Configuration and Fixtures
"""
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator, Optional, Tuple

import pytest
from faker import Faker
from fastapi.testclient import TestClient

# Set testing environment before the app reads config
_TEST_ROOT = Path(tempfile.mkdtemp(prefix="fixit-test-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_ROOT / 'test.db'}"
os.environ["USERS_DB_FILE"] = str(_TEST_ROOT / "users.db.json")
os.environ["UPLOADS_DIR"] = str(_TEST_ROOT / "uploads")
os.environ["LOGS_DIR"] = str(_TEST_ROOT / "logs")
os.environ["LOG_TO_FILE"] = "false"
os.environ["USE_S3"] = "false"
os.environ["SMTP_USER"] = ""
os.environ["SMTP_PASSWORD"] = ""
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["PUBLIC_BASE_URL"] = "http://testserver"
os.environ["RATE_LIMIT_PER_MINUTE"] = "100000"
os.environ["RATE_LIMIT_PER_HOUR"] = "1000000"
os.environ["SELF_REGISTRATION_ROLES"] = "student,caretaker,management"

import config
from app import app

fake = Faker()

PASSWORD = "hostel-pass-123"


@pytest.fixture
def client(tmp_path, monkeypatch) -> Generator[TestClient, None, None]:
    """App with a fresh database, credential file and uploads directory per test."""
    monkeypatch.setattr(config, "DATABASE_URL", f"sqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setattr(config, "USERS_DB_FILE", tmp_path / "users.db.json")
    monkeypatch.setattr(config, "UPLOADS_DIR", tmp_path / "uploads")
    with TestClient(app) as test_client:
        yield test_client


def pending_otp(client: TestClient, email: str) -> str:
    challenge = client.app.state.otp_store.pending(email.strip().lower())
    assert challenge is not None
    return challenge.code


def register(
    client: TestClient,
    role: str = "student",
    email: Optional[str] = None,
    **profile: Any,
) -> Tuple[Dict[str, Any], str]:
    """Run send-otp + register; returns (user, token)."""
    email = email or fake.unique.email()
    response = client.post("/api/auth/send-otp", json={"email": email})
    assert response.status_code == 200, response.text
    payload = {
        "email": email,
        "password": PASSWORD,
        "name": fake.name(),
        "role": role,
        "otp": pending_otp(client, email),
    }
    payload.update(profile)
    response = client.post("/api/auth/register", json=payload)
    assert response.status_code == 201, response.text
    data = response.json()
    return data["user"], data["token"]


def auth(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def student(client) -> Tuple[Dict[str, Any], str]:
    return register(client, "student", hostel="Block A Hostel")


@pytest.fixture
def other_student(client) -> Tuple[Dict[str, Any], str]:
    return register(client, "student")


@pytest.fixture
def manager(client) -> Tuple[Dict[str, Any], str]:
    return register(client, "management")


@pytest.fixture
def caretaker(client) -> Tuple[Dict[str, Any], str]:
    return register(client, "caretaker")
