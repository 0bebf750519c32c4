import os

import pytest
import pytest_asyncio
import httpx
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite:///./data/test.db")
os.environ.setdefault("ENABLE_SCHEDULER", "false")

from intentmatch.config import EngineConfig
from intentmatch.db import get_db
from intentmatch.main import app
from intentmatch.models import Base
from intentmatch.services.intents import IntentService
from intentmatch.services.reputation import ReputationService


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def make_agent(db, config):
    def _make(agent_id: str, reputation: float | None = None, **components):
        agent = ReputationService(db, config).register_agent(agent_id, agent_id.title())
        for name, value in components.items():
            setattr(agent, name, value)
        if reputation is not None:
            agent.reputation_score = reputation
        db.commit()
        return agent

    return _make


@pytest.fixture
def make_intent(db):
    def _make(kind: str, owner: str, **overrides):
        fields = {
            "title": f"{kind} from {owner}",
            "description": "",
            "skills": ["python"],
            "embedding": [1.0, 0.0, 0.0],
        }
        fields.update(overrides)
        return IntentService(db).create_intent(kind=kind, owner_agent_id=owner, **fields)

    return _make


@pytest_asyncio.fixture
async def async_client(session_factory):
    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
