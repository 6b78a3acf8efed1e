"""
Test configuration and fixtures for AdminBase backend tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Column, DateTime, Integer, String, Table, Text, func
from sqlalchemy.pool import StaticPool

from main import app
from adminbase.core.audit_context import AuditContext
from adminbase.core.security import hash_password
from adminbase.db.base import metadata
from adminbase.db.database import Database
from adminbase.db.models import User, UserRole
from adminbase.db.record import Record
from adminbase.db.session import build_engine, get_db


# Use in-memory SQLite for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = build_engine(SQLALCHEMY_DATABASE_URL, poolclass=StaticPool)


notes_table = Table(
    "notes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(200), nullable=False),
    Column("status", String(20), nullable=True),
    Column("body", Text, nullable=True),
    Column("api_token", String(64), nullable=True),
    Column("payload", Text, nullable=True),
    Column("owner_id", Integer, nullable=True),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
    Column("updated_at", DateTime, nullable=False, server_default=func.current_timestamp()),
)


class Note(Record):
    """Plain audited record used to exercise the persistence layer."""

    __table__ = notes_table
    fillable = frozenset({"title", "status", "body", "api_token", "payload", "owner_id"})
    hidden = frozenset({"api_token"})
    json_fields = frozenset({"payload"})


class FixedClock:
    """Controllable UTC clock for token lifetime tests."""

    def __init__(self, now: datetime = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(scope="function")
def db() -> Generator[Database, None, None]:
    """Create a fresh database for each test."""
    metadata.create_all(bind=engine)
    database = Database(
        engine.connect(),
        AuditContext(ignored_resource_types=frozenset({"auth_logs"})),
    )
    try:
        yield database
    finally:
        database.close()
        metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db: Database) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    app.dependency_overrides[get_db] = lambda: db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


def make_user(db: Database, username: str, password: str, role: str = UserRole.CLIENT.value, **overrides) -> User:
    attributes = {
        "username": username,
        "display_name": username.title(),
        "email": f"{username}@example.com",
        "password_hash": hash_password(password),
        "role": role,
        "is_active": True,
        "is_approved": True,
    }
    attributes.update(overrides)
    user = User.create(db, attributes)
    db.commit()
    return user


@pytest.fixture
def test_user(db: Database) -> User:
    """Create a test client user."""
    return make_user(db, "alice", "testpass123")


@pytest.fixture
def test_admin(db: Database) -> User:
    """Create a test admin user."""
    return make_user(db, "root", "adminpass123", role=UserRole.ADMIN.value)


@pytest.fixture
def user_headers(client: TestClient, test_user) -> dict:
    """Authorization headers for the test user."""
    response = client.post("/auth/login", json={"identifier": "alice", "password": "testpass123"})
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def admin_headers(client: TestClient, test_admin) -> dict:
    """Authorization headers for the test admin."""
    response = client.post("/auth/login", json={"identifier": "root", "password": "adminpass123"})
    return {"Authorization": f"Bearer {response.json()['access_token']}"}
