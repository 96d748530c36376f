import os
os.environ["TESTING"] = "1"
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import sys
from pathlib import Path

import uuid

import bcrypt

sys.path.append(str(Path(__file__).resolve().parents[2]))

from research_os.main import app
from research_os.database import Base, get_db
from research_os import auth, models

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)

# low cost factor keeps fixture users fast; real hashes come from auth.get_password_hash
TEST_PASSWORD = "secret-pass"
TEST_PASSWORD_HASH = bcrypt.hashpw(TEST_PASSWORD.encode(), bcrypt.gensalt(rounds=4)).decode()


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


def create_user(role: str = "Collaborator", *, email: str | None = None, full_name: str | None = None) -> models.User:
    """Insert a user directly, bypassing the first-user bootstrap of /register."""

    session = TestingSessionLocal()
    try:
        user = models.User(
            email=email or f"{role.lower()}-{uuid.uuid4()}@example.com",
            hashed_password=TEST_PASSWORD_HASH,
            full_name=full_name or f"{role} {uuid.uuid4().hex[:6]}",
            global_role=role,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        session.expunge(user)
        return user
    finally:
        session.close()


def auth_headers(user: models.User) -> dict[str, str]:
    token = auth.create_access_token({"sub": user.email})
    return {"Authorization": f"Bearer {token}"}


def user_with_headers(role: str = "Collaborator", **kwargs):
    user = create_user(role, **kwargs)
    return user, auth_headers(user)


def create_project(client, headers, title: str = "Project") -> dict:
    resp = client.post("/api/projects", json={"title": title}, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()


def add_member(client, headers, project_id: str, user_id, role: str = "Collaborator") -> dict:
    resp = client.post(
        f"/api/projects/{project_id}/members",
        json={"user_id": str(user_id), "role": role},
        headers=headers,
    )
    assert resp.status_code == 200, resp.text
    return resp.json()
