# tests/conftest.py
import os
import tempfile
from datetime import datetime

# Settings are read at import time, so point them at a scratch database first
_DB_DIR = tempfile.mkdtemp(prefix="circulation-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ["COLLABORATOR_TIMEOUT_SECONDS"] = "30"
os.environ["TIMEZONE"] = "UTC"

import pytest
import pytz

from circulation.database import Base, SessionLocal, engine
from circulation.models import Book, BookCopy, User
from circulation.services.auth import create_access_token

DAY0 = datetime(2025, 3, 1, 9, 0, tzinfo=pytz.utc)


@pytest.fixture(autouse=True)
def fresh_database():
    """Every test starts from empty tables"""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def make_user(db, role="member", email=None, membership_status="active", password_hash="not-a-real-hash"):
    count = db.query(User).count() + 1
    user = User(
        user_fname=role.capitalize(),
        user_lname=str(count),
        user_email=email or f"{role}{count}@example.com",
        user_password_hash=password_hash,
        user_role=role,
        membership_status=membership_status,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_copy(db, title="Dune", copies=1):
    book = Book(title=title, author="Frank Herbert", isbn=None, category="sci-fi")
    db.add(book)
    db.flush()
    created = []
    for number in range(1, copies + 1):
        book_copy = BookCopy(book_id=book.book_id, copy_number=number, status="available")
        db.add(book_copy)
        created.append(book_copy)
    db.commit()
    for book_copy in created:
        db.refresh(book_copy)
    return created[0] if copies == 1 else created


def auth_headers(user):
    token = create_access_token(data={"sub": str(user.user_id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def member(db):
    return make_user(db, "member", email="m1@example.com")


@pytest.fixture
def other_member(db):
    return make_user(db, "member", email="m2@example.com")


@pytest.fixture
def librarian(db):
    return make_user(db, "librarian", email="librarian@example.com")


@pytest.fixture
def admin(db):
    return make_user(db, "admin", email="admin@example.com")


@pytest.fixture
def book_copy(db):
    return make_copy(db)
