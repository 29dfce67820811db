import base64
import os
import tempfile
from pathlib import Path

import jwt
import pytest

# Configure the app before it is imported by any test module.
_TMP = Path(tempfile.mkdtemp(prefix="wingsed-tests-"))
os.environ["ENV"] = "dev"
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["CLERK_WEBHOOK_SECRET"] = "whsec_" + base64.b64encode(b"wingsed-test-webhook-secret").decode()
os.environ["THROTTLE_LIMIT"] = "100000"
os.environ["WHATSAPP_PHONE_NUMBER"] = "918658805653"

from sqlmodel import Session, SQLModel  # noqa: E402

from wingsed import models  # noqa: E402
from wingsed.auth import ClerkUser, get_clerk_client  # noqa: E402
from wingsed.database import engine  # noqa: E402
from wingsed.main import app, rate_limiter  # noqa: E402


class FakeClerk:
    """Stand-in for the Clerk client: the bearer token is the Clerk user id."""

    def __init__(self):
        self.users = {}

    def add(self, clerk_id, email, first_name="Test", last_name="Student"):
        self.users[clerk_id] = ClerkUser(id=clerk_id, email=email, first_name=first_name, last_name=last_name)

    def verify_token(self, token):
        if token not in self.users:
            raise jwt.InvalidTokenError("unknown token")
        return {"sub": token}

    def get_user(self, user_id):
        return self.users[user_id]


FAKE_CLERK = FakeClerk()
app.dependency_overrides[get_clerk_client] = lambda: FAKE_CLERK


@pytest.fixture(autouse=True)
def clean_state():
    """Empty every table and reset in-memory state before each test."""
    with engine.begin() as conn:
        for table in reversed(SQLModel.metadata.sorted_tables):
            conn.execute(table.delete())
    FAKE_CLERK.users.clear()
    rate_limiter.reset()
    yield


@pytest.fixture
def db():
    with Session(engine) as session:
        yield session


@pytest.fixture
def login():
    """Register a Clerk identity and return its Authorization header."""
    def _login(clerk_id="user_1", email=None, first_name="Test", last_name="Student"):
        FAKE_CLERK.add(clerk_id, email or f"{clerk_id}@example.com", first_name, last_name)
        return {"Authorization": f"Bearer {clerk_id}"}
    return _login


@pytest.fixture
def student(login, db):
    """A signed-in student with a local user row."""
    headers = login("student_1", "student@example.com", "Asha", "Rao")
    db.add(models.User(clerk_id="student_1", email="student@example.com"))
    db.commit()
    return headers


@pytest.fixture
def admin(login, db):
    headers = login("admin_1", "admin@example.com", "Ada", "Admin")
    db.add(models.User(clerk_id="admin_1", email="admin@example.com", role=models.Role.ADMIN))
    db.commit()
    return headers


@pytest.fixture
def make_university(db):
    def _make(name="Test University", country="Canada", city="Toronto", tuition_fee=20000, public_private="Public", **extra):
        university = models.University(
            name=name, country=country, city=city, tuition_fee=tuition_fee,
            public_private=public_private, **extra,
        )
        db.add(university)
        db.commit()
        db.refresh(university)
        return university.id
    return _make
