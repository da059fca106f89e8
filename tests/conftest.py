"""Shared fixtures for the preference service test suite.

Runs every test against a fresh in-memory SQLite database created from the
ORM metadata, so the unique constraints and partial index are real.
"""

import os

# Settings are read at import time by preference_engine.database
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ANTHROPIC_API_KEY", "")

import json

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from preference_engine.config import Settings
from preference_engine.database import session_scope
from preference_engine.lifecycle import PreferenceManager
from preference_engine.models import Base, Location, LocationType


USER = "user-1"
OTHER_USER = "user-2"


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    """Transactional scope bound to the test database."""
    return session_scope(session_factory)


@pytest.fixture
def manager(db_session):
    return PreferenceManager(db_session)


# =============================================================================
# LOCATION FIXTURES
# =============================================================================

@pytest.fixture
def home(db_session):
    """A HOME location owned by USER."""
    with db_session() as db:
        location = Location(user_id=USER, type=LocationType.HOME, label="Home", address="1 Main St")
        db.add(location)
    return location


@pytest.fixture
def foreign_location(db_session):
    """A location owned by OTHER_USER."""
    with db_session() as db:
        location = Location(user_id=OTHER_USER, type=LocationType.WORK, label="Office", address="9 Elm St")
        db.add(location)
    return location


# =============================================================================
# AI FIXTURES
# =============================================================================

@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", anthropic_api_key="test-key")


class FakeGenerator:
    """AiTextGenerator that returns a canned reply and records its calls."""

    def __init__(self, reply="", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def generate_text(self, prompt):
        return self.generate_text_with_file(prompt, None)

    def generate_text_with_file(self, prompt, file):
        self.calls.append((prompt, file))
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def fake_generator():
    return FakeGenerator()


def ai_reply(suggestions, summary="A short document."):
    """Serialize an AI reply in the documented response shape."""
    return json.dumps({"suggestions": suggestions, "documentSummary": summary})
