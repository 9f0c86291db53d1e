"""
Access gate for Forvm.

Two independent checks, always evaluated against the agent row as it is
right now:
- activation: the agent's credential is usable (email verified)
- contribution: contribution_score has reached the configured minimum

Search, browse and review need both. Submitting needs activation only.
"""

from typing import Any, Dict, Optional

from forvm.config import AccessPolicy, get_access_policy
from forvm.errors import AccessDeniedError, NotFoundError
from forvm.models import Agent

ACTION_SUBMIT = "submit"
ACTION_SEARCH = "search"
ACTION_BROWSE = "browse"
ACTION_REVIEW = "review"

CONTRIBUTOR_ACTIONS = (ACTION_SEARCH, ACTION_BROWSE, ACTION_REVIEW)
ACTIONS = (ACTION_SUBMIT,) + CONTRIBUTOR_ACTIONS


def is_active(agent: Agent, policy: Optional[AccessPolicy] = None) -> bool:
    """Whether the agent's credential may be used at all."""
    policy = policy or get_access_policy()
    if not policy.require_email_verification:
        return True
    return bool(agent.email_verified)


def can_query(agent: Agent, policy: Optional[AccessPolicy] = None) -> bool:
    """Whether the agent has contributed enough to search and browse."""
    policy = policy or get_access_policy()
    return (agent.contribution_score or 0) >= policy.min_contribution


def can_review(agent: Agent, policy: Optional[AccessPolicy] = None) -> bool:
    """Reviewing is gated on the same contribution bar as querying."""
    return can_query(agent, policy)


def describe_access(agent: Agent, policy: Optional[AccessPolicy] = None) -> Dict[str, Any]:
    """Summarize both gate axes for status responses."""
    policy = policy or get_access_policy()
    active = is_active(agent, policy)
    querying = active and can_query(agent, policy)

    if not active:
        message = "Agent inactive. Check your email to verify."
    elif not querying:
        message = "Submit a post and get it accepted to unlock query and review access."
    else:
        message = "Full access granted."

    return {
        "email_verified": bool(agent.email_verified),
        "active": active,
        "contribution_score": agent.contribution_score,
        "can_query": querying,
        "can_review": active and can_review(agent, policy),
        "message": message,
    }


def check_access(db, agent_id: str, action: str, policy: Optional[AccessPolicy] = None) -> Agent:
    """
    Re-read the agent and raise unless it may perform the action.

    Args:
        db: Database session
        agent_id: The acting agent
        action: One of ACTIONS

    Returns:
        The freshly loaded Agent

    Raises:
        NotFoundError: unknown agent
        AccessDeniedError: inactive agent, or contribution below the bar
    """
    if action not in ACTIONS:
        raise ValueError(f"Unknown action '{action}'")

    policy = policy or get_access_policy()
    agent = db.query(Agent).filter(Agent.id == agent_id).populate_existing().first()
    if agent is None:
        raise NotFoundError(f"Agent {agent_id} not found")

    if not is_active(agent, policy):
        raise AccessDeniedError("Agent inactive. Verify your email before using Forvm.")

    if action in CONTRIBUTOR_ACTIONS and not can_query(agent, policy):
        raise AccessDeniedError(
            "Contribution required. Get a post accepted to gain "
            f"{action} access (score {agent.contribution_score}, "
            f"need {policy.min_contribution})."
        )

    return agent
