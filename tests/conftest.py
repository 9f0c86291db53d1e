"""
Pytest configuration for tests.

Sets up SQLite mode for all tests BEFORE any models are imported, and
points the data directory at a throwaway location so a developer's
~/.forvm/config.json never leaks into a run.
"""
import hashlib
import os
import tempfile
import uuid
from unittest.mock import patch

# Force SQLite mode - MUST be before any forvm imports
os.environ["FORVM_DATABASE_URL"] = "sqlite:///:memory:"
os.environ.setdefault("FORVM_DATA_DIR", tempfile.mkdtemp(prefix="forvm-test-"))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import forvm.database as db_module
from forvm.config import clear_config_cache
from forvm.database import init_db
from forvm.models import Agent, Post, STATUS_PENDING
from forvm.services.stats_service import clear_stats_cache


# ── Helpers ──────────────────────────────────────────────────────────

_VOCAB = ("python", "sqlalchemy", "sqlite", "postgres", "async", "retry", "cache", "docker")


def fake_embedding(text: str):
    """Deterministic bag-of-words vector over a tiny vocabulary."""
    lowered = text.lower()
    vector = [float(lowered.count(word)) for word in _VOCAB]
    # Constant component keeps every vector non-zero
    vector.append(0.1)
    return vector


def make_agent(session, name=None, score=0, verified=True, email=None) -> str:
    """Insert an agent directly and return its id."""
    name = name or f"agent-{uuid.uuid4().hex[:8]}"
    agent = Agent(
        name=name,
        platform="custom",
        email=email or f"{name}@example.com",
        email_verified=verified,
        api_key_hash=hashlib.sha256(name.encode("utf-8")).hexdigest(),
        contribution_score=score,
    )
    session.add(agent)
    session.commit()
    return agent.id


def make_post(session, author_id, status=STATUS_PENDING, title="Retry with backoff",
              content="Use exponential backoff for python retry loops.",
              post_type="pattern", tags=None, embedding=None, **fields) -> str:
    """Insert a post directly (bypassing create_post) and return its id."""
    post = Post(
        author_agent_id=author_id,
        post_type=post_type,
        title=title,
        content=content,
        tags=list(tags or []),
        embedding=embedding,
        status=status,
        review_count=fields.pop("review_count", 0),
        accept_count=fields.pop("accept_count", 0),
        reject_count=fields.pop("reject_count", 0),
        **fields,
    )
    session.add(post)
    session.commit()
    return post.id


def get_post_row(session, post_id) -> Post:
    """Re-read a post, bypassing the identity map."""
    return session.query(Post).filter(Post.id == post_id).populate_existing().one()


def get_score(session, agent_id) -> int:
    return session.query(Agent).filter(Agent.id == agent_id).populate_existing().one().contribution_score


# ── Fixtures ─────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def forvm_db():
    """Set up an in-memory SQLite database for each test."""
    db_module.reset_engine()
    clear_config_cache()
    clear_stats_cache()

    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    db_module._engine = engine
    db_module._SessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=engine
    )

    init_db(engine)

    yield engine

    db_module.reset_engine()
    clear_config_cache()
    clear_stats_cache()


@pytest.fixture
def db_session():
    """Get a database session for direct DB manipulation in tests."""
    session = db_module.get_session()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def mock_embeddings():
    """Replace the embedding provider with fake_embedding wherever it is used."""
    with patch("forvm.services.post_service.get_embedding", side_effect=fake_embedding) as post_embed, \
            patch("forvm.services.search_service.get_embedding", side_effect=fake_embedding):
        yield post_embed


@pytest.fixture
def admission_config():
    """Override admission settings for one test: admission_config(min_reviews=1, ...)."""
    from forvm.config import load_config

    def _apply(**overrides):
        load_config()["admission"].update(overrides)

    return _apply
