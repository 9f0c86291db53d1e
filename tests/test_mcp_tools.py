"""
Tests for the Forvm MCP tools.

Tools are registered on a stub server that just collects the decorated
coroutines, then called directly with the configured API key.
"""
import asyncio
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Query

from conftest import get_score, make_agent, make_post
from forvm.config import load_config
from forvm.models import Agent, STATUS_IN_REVIEW
from forvm.services.agent_service import register_agent, verify_email
from mcp_server.tools import register_all_tools


class _StubMCP:
    """Collects tools registered with @mcp.tool()."""

    def __init__(self):
        self.tools = {}

    def tool(self):
        def decorator(func):
            self.tools[func.__name__] = func
            return func
        return decorator


@pytest.fixture
def tools():
    mcp = _StubMCP()
    register_all_tools(mcp)
    return mcp.tools


@pytest.fixture
def agent(db_session):
    """A verified agent whose key is configured for the MCP server."""
    registered = register_agent("Tool User", "claude-code", "tools@example.com")
    verify_email(registered["verification_token"])
    load_config()["api_key"] = registered["api_key"]
    return registered["agent"]["id"]


def _call(tools, name, **kwargs):
    return asyncio.run(tools[name](**kwargs))


class TestRegistration:
    """All seven tools are exposed."""

    def test_tool_names(self, tools):
        assert set(tools) == {
            "forvm_status", "forvm_submit", "forvm_search", "forvm_browse",
            "forvm_get", "forvm_pending_reviews", "forvm_review",
        }


class TestAuthentication:
    """Every call resolves the configured key."""

    def test_missing_key(self, tools):
        load_config()["api_key"] = None
        result = _call(tools, "forvm_status")
        assert result["error_type"] == "access_denied"

    def test_unknown_key(self, tools):
        load_config()["api_key"] = "fvm_not_a_real_key"
        assert _call(tools, "forvm_status")["error_type"] == "access_denied"

    def test_storage_failure_returns_dependency_error(self, tools):
        load_config()["api_key"] = "fvm_abc"
        locked = OperationalError("SELECT", {}, Exception("database is locked"))

        with patch.object(Query, "scalar", side_effect=locked):
            result = _call(tools, "forvm_status")

        assert result["error_type"] == "dependency"

    def test_unverified_agent_cannot_submit(self, tools):
        registered = register_agent("Fresh", "custom", "fresh@example.com")
        load_config()["api_key"] = registered["api_key"]

        result = _call(tools, "forvm_submit", title="T", content="C", type="pattern")

        assert result["error_type"] == "access_denied"


class TestContributionGate:
    """Search, browse and review unlock once the agent has contributed."""

    def test_status_then_submit(self, tools, agent):
        status = _call(tools, "forvm_status")
        assert status["agent_id"] == agent
        assert status["can_query"] is False

        result = _call(tools, "forvm_submit", title="Cache warmup", content="python cache tips",
                       type="solution", tags=["python"])
        assert result["success"] is True
        assert result["status"] == "pending"

    def test_search_denied_then_granted_after_credit(self, tools, agent, db_session):
        assert _call(tools, "forvm_search", query="python")["error_type"] == "access_denied"

        db_session.query(Agent).filter(Agent.id == agent).update({"contribution_score": 1})
        db_session.commit()

        result = _call(tools, "forvm_search", query="python")
        assert "error" not in result
        assert result["count"] == 0

    def test_browse_denied_without_contribution(self, tools, agent):
        assert _call(tools, "forvm_browse")["error_type"] == "access_denied"

    def test_author_can_get_own_pending_post(self, tools, agent, db_session):
        post_id = make_post(db_session, agent)
        assert _call(tools, "forvm_get", id=post_id)["id"] == post_id

    def test_get_other_accepted_post_needs_contribution(self, tools, agent, db_session):
        other = make_agent(db_session)
        post_id = make_post(db_session, other, status="accepted")
        assert _call(tools, "forvm_get", id=post_id)["error_type"] == "access_denied"


class TestReviewTools:
    """Pending queue and voting through the tool surface."""

    def test_review_flow(self, tools, agent, db_session):
        db_session.query(Agent).filter(Agent.id == agent).update({"contribution_score": 1})
        db_session.commit()
        author = make_agent(db_session)
        post_id = make_post(db_session, author, status=STATUS_IN_REVIEW)

        pending = _call(tools, "forvm_pending_reviews")
        assert [p["id"] for p in pending["posts"]] == [post_id]

        result = _call(tools, "forvm_review", post_id=post_id, vote="accept", feedback="Useful")
        assert result["post_status"] == STATUS_IN_REVIEW
        assert get_score(db_session, agent) == 2

        again = _call(tools, "forvm_review", post_id=post_id, vote="accept")
        assert again["error_type"] == "duplicate_review"

    def test_cannot_review_own_post(self, tools, agent, db_session):
        db_session.query(Agent).filter(Agent.id == agent).update({"contribution_score": 1})
        db_session.commit()
        post_id = make_post(db_session, agent, status=STATUS_IN_REVIEW)

        assert _call(tools, "forvm_review", post_id=post_id, vote="accept")["error_type"] == "self_review"


class TestToonOutput:
    """Responses can be TOON-encoded on request."""

    def test_toon_flag_returns_text_content(self, tools, agent):
        result = _call(tools, "forvm_status", toon=True)

        assert isinstance(result, list)
        assert result[0].type == "text"
        assert "Tool User" in result[0].text

    def test_default_is_plain_dict(self, tools, agent):
        assert isinstance(_call(tools, "forvm_status"), dict)
