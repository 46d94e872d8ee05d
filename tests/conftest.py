from __future__ import annotations

import json
from datetime import datetime, timedelta, UTC
from types import SimpleNamespace

import pytest

from omnitruth.analysis_client import AnalysisClient
from omnitruth.database import create_session_factory, get_engine
from omnitruth.models import (
    AnalysisResult, CommunityRole, Post, Verdict, Vote, VoteVerdict,
)
from omnitruth.store import PostStore


BASE_TIME = datetime(2025, 6, 15, 12, 0, 0, tzinfo=UTC)


# =============================================================================
# Fake OpenAI client
# =============================================================================


class _FakeMessage:
    def __init__(self, content):
        self.content = content


class _FakeCompletion:
    def __init__(self, content):
        self.choices = [SimpleNamespace(message=_FakeMessage(content))]


class _FakeCompletions:
    def __init__(self, replies):
        self._replies = list(replies)
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if not self._replies:
            raise AssertionError("Fake client received more calls than expected")
        reply = self._replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if not isinstance(reply, str):
            reply = json.dumps(reply)
        return _FakeCompletion(reply)


class FakeOpenAI:
    """Matches the slice of ``AsyncOpenAI`` the analysis client uses."""

    def __init__(self, replies):
        self.chat = SimpleNamespace(completions=_FakeCompletions(replies))

    @property
    def calls(self) -> list[dict]:
        return self.chat.completions.calls


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def session_factory():
    """A session factory over a private in-memory database."""
    engine = get_engine("sqlite://")
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory) -> PostStore:
    """An empty store with no ingestion collaborator."""
    return PostStore(session_factory)


@pytest.fixture
def make_client():
    """Build an AnalysisClient answering with the given raw replies in order."""
    def _make(*replies) -> AnalysisClient:
        return AnalysisClient(api_key="test-key", client=FakeOpenAI(replies), timeout=5)
    return _make


@pytest.fixture
def make_post():
    """Build a Post with sensible defaults; keyword arguments override fields."""
    counter = {"n": 0}

    def _make(**overrides) -> Post:
        counter["n"] += 1
        fields = {
            "id": f"post-{counter['n']}",
            "author": "Reuters",
            "author_role": "Journalist",
            "content": "World leaders gather to discuss sanctions at the UN summit.",
            "timestamp": BASE_TIME + timedelta(minutes=counter["n"]),
            "trust_score": 50,
            "crowd_score": 50,
            "verdict": Verdict.UNVERIFIED,
        }
        fields.update(overrides)
        return Post(**fields)
    return _make


@pytest.fixture
def make_vote():
    def _make(verdict=VoteVerdict.REAL, credibility=100, **overrides) -> Vote:
        fields = {
            "user_id": "archivist_zero",
            "user_credibility": credibility,
            "role": CommunityRole.CITIZEN,
            "verdict": verdict,
            "reason": "",
            "timestamp": BASE_TIME,
        }
        fields.update(overrides)
        return Vote(**fields)
    return _make


@pytest.fixture
def sample_analysis() -> AnalysisResult:
    """A fully-populated analysis result."""
    return AnalysisResult.model_validate({
        "trustScore": 82,
        "verdict": "MOSTLY_TRUE",
        "summary": "The summit took place; attendance figures are inflated.",
        "claims": [
            {
                "id": "1",
                "text": "World leaders met at the UN.",
                "status": "SUPPORTED",
                "confidence": 0.9,
                "reasoning": "Confirmed by several wire services.",
            },
        ],
        "manipulationFlags": [
            {"type": "Exaggeration", "severity": "LOW", "description": "Attendance overstated."},
        ],
        "intent": {
            "primaryMotive": "Inform",
            "emotionalState": "Neutral",
            "hiddenMeaning": "None",
            "powerDynamics": "Balanced",
        },
        "sources": ["https://apnews.com/a", "https://apnews.com/a", "https://bbc.com/b"],
        "realityGraphSummary": "Largely accurate report.",
    })
