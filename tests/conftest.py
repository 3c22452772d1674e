import uuid

import pytest
from sqlmodel import Session, SQLModel

import ember.models  # noqa: F401
from ember import db
from ember.db import make_engine
from ember.ingest.extraction import CandidateMemory
from ember.models.core import Profile, User

CONVERSATION = (
    "User: I finally handed in my notice at the agency, I start at the climbing gym next month.\n"
    "Assistant: That is a big change! How are you feeling about it?\n"
    "User: Nervous, honestly. My sister Ana thinks I'm crazy but my partner Sam is really supportive.\n"
    "Assistant: It sounds like Sam has your back.\n"
    "User: Yeah. Also please stop suggesting podcasts, I never listen to them. I prefer short written summaries.\n"
)


@pytest.fixture(name="engine")
def engine_fixture(tmp_path, monkeypatch):
    engine = make_engine(f"sqlite:///{tmp_path / 'ember.db'}")
    SQLModel.metadata.create_all(engine)
    monkeypatch.setattr(db, "engine", engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="profiles")
def profiles_fixture(engine):
    """Two profiles, A and B, owned by different users."""
    with Session(engine) as session:
        ids = []
        for name in ("a", "b"):
            user = User(external_id=f"user_{name}", email=f"{name}@example.com")
            session.add(user)
            session.flush()
            profile = Profile(user_id=user.id, name=f"Profile {name.upper()}", is_default=True)
            session.add(profile)
            session.flush()
            ids.append(profile.id)
        session.commit()
    return ids


@pytest.fixture
def profile_a(profiles) -> uuid.UUID:
    return profiles[0]


@pytest.fixture
def profile_b(profiles) -> uuid.UUID:
    return profiles[1]


@pytest.fixture
def candidate():
    def make(content: str, category: str = "work", importance: int = 3, significance=None) -> CandidateMemory:
        return CandidateMemory(
            factual_content=content,
            emotional_significance=significance,
            category=category,
            importance=importance,
            verbatim_text=f"User: {content}",
        )
    return make


@pytest.fixture
def conversation() -> str:
    return CONVERSATION
