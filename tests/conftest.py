"""
Shared fixtures: an in-memory MongoDB per test, document factories and an
API client wired to that database.
"""

from datetime import datetime, timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import create_document, ensure_indexes, get_database, to_object_id
from main import app
from schemas import Lesson, Quest, Session, User, UserProgress

NOW = datetime(2025, 3, 10, 12, 0, 0)


@pytest.fixture
def db():
    database = mongomock.MongoClient()["lingo_quests_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def make_user(db):
    def _make(clerk_id="user_1", **fields):
        user_id = create_document(db, "user", User(clerk_id=clerk_id, **fields))
        return db["user"].find_one({"_id": to_object_id(user_id)})

    return _make


@pytest.fixture
def make_quest(db):
    def _make(
        conditions=(("complete_lessons", 5),),
        rewards=({"type": "xp", "value": 50},),
        created_at=None,
        **fields,
    ):
        fields.setdefault("title", "Lesson sprint")
        fields.setdefault("description", "Finish a few lessons today")
        fields.setdefault("status", "active")
        fields.setdefault("start_date", NOW - timedelta(days=1))
        fields.setdefault("end_date", NOW + timedelta(days=2, hours=3))
        quest = Quest(
            conditions=[{"type": kind, "target": target} for kind, target in conditions],
            rewards=list(rewards),
            **fields,
        )
        data = quest.model_dump()
        if created_at is not None:
            data["created_at"] = created_at
        quest_id = create_document(db, "quest", data)
        return db["quest"].find_one({"_id": to_object_id(quest_id)})

    return _make


@pytest.fixture
def make_session(db):
    def _make(clerk_id="user_1", token=None, expires_at=None):
        token = token or f"token-{clerk_id}"
        create_document(db, "session", Session(token=token, user_id=clerk_id, expires_at=expires_at))
        return {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def client(db):
    app.dependency_overrides[get_database] = lambda: db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(make_session):
    return make_session("user_1")


@pytest.fixture
def make_lesson_progress(db):
    """Seed a lesson and, optionally, the caller's progress for its language."""
    def _make(clerk_id="user_1", language_id="lang_es", with_progress=True, **balances):
        lesson_id = create_document(db, "lesson", Lesson(title="Greetings", language_id=language_id))
        if with_progress:
            create_document(db, "user_progress", UserProgress(user_id=clerk_id, language_id=language_id, **balances))
        return lesson_id

    return _make
