"""Shared test fixtures for backend tests."""

import asyncio
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel

from sparsh.core.config import settings
from sparsh.core.database import get_session, make_engine
from sparsh.services.llm.base import BaseInterventionAgent, BaseResponder, GatewayReply
from sparsh.services.store import StoreAdapter

# In-memory SQLite with StaticPool so all connections (including threads) share one DB
test_engine = make_engine("sqlite://", poolclass=StaticPool, echo=False)


def get_test_session():
    with Session(test_engine) as session:
        yield session


@pytest.fixture(autouse=True)
def setup_test_db():
    """Create all tables before each test, drop after."""
    import sparsh.models  # noqa: F401 - register models
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


class FakeResponder(BaseResponder):
    """Replays queued replies (or raises queued exceptions), then echoes."""

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls: list[dict] = []

    async def send(self, history, new_text, context_flag=True, force_fallback=False):
        self.calls.append({
            "history": history,
            "text": new_text,
            "context_flag": context_flag,
            "force_fallback": force_fallback,
        })
        if self.replies:
            reply = self.replies.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply
        return GatewayReply(text=f"echo: {new_text}", detected_mood="calm")


class FakeAgent(BaseInterventionAgent):
    """Returns queued results in order; blocks on `gate` when one is given."""

    def __init__(self, results=None, gate: asyncio.Event | None = None):
        self.results = list(results or [])
        self.gate = gate
        self.snapshots: list[list] = []

    async def analyze(self, user_id, user_key, conversation):
        self.snapshots.append(list(conversation))
        if self.gate is not None:
            await self.gate.wait()
        if not self.results:
            return None
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def store():
    return StoreAdapter(test_engine)


@pytest.fixture
def responder():
    return FakeResponder()


@pytest.fixture
def client(responder):
    """FastAPI TestClient with all external deps patched."""
    with (
        patch("sparsh.core.database.engine", test_engine),
        patch("sparsh.api.chat.get_responder", return_value=responder),
        patch("sparsh.api.chat.get_intervention_agent", return_value=None),
        patch.object(settings, "sync_interval_seconds", 3600.0),
        patch.object(settings, "avatar_idle_delay_seconds", 0.0),
    ):
        from sparsh.main import app

        # Use FastAPI's dependency override for get_session
        app.dependency_overrides[get_session] = get_test_session

        with TestClient(app) as c:
            yield c

        app.dependency_overrides.clear()
