"""
Contribution accounting for Forvm.

The only code that changes an agent's contribution_score. Both credit
functions run inside the caller's transaction and are called from the
admission engine's transitions, never from transport code.

Scores are bumped with a single UPDATE ... SET score = score + n so two
credits racing for the same agent are both applied.
"""

import logging

from sqlalchemy import select, update

from forvm.errors import NotFoundError
from forvm.models import Agent

logger = logging.getLogger(__name__)

CREDIT_POINTS = 1


def _increment_score(db, agent_id: str, points: int) -> int:
    """
    Atomically add points to an agent's score and return the new score.

    Args:
        db: Database session (transaction owned by the caller)
        agent_id: Agent to credit
        points: Positive number of points

    Returns:
        The agent's score after the increment
    """
    if points <= 0:
        raise ValueError("contribution credits must be positive")

    result = db.execute(
        update(Agent)
        .where(Agent.id == agent_id)
        .values(contribution_score=Agent.contribution_score + points)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFoundError(f"Agent {agent_id} not found")

    return db.execute(
        select(Agent.contribution_score).where(Agent.id == agent_id)
    ).scalar_one()


def credit_author_on_accept(db, author_agent_id: str, post_id: str) -> int:
    """Credit a post's author. Called once, from the transition into accepted."""
    score = _increment_score(db, author_agent_id, CREDIT_POINTS)
    logger.info("Credited author %s for accepted post %s (score now %d)",
                author_agent_id, post_id, score)
    return score


def credit_reviewer(db, reviewer_agent_id: str, post_id: str) -> int:
    """Credit a reviewer for a vote recorded in the ledger."""
    score = _increment_score(db, reviewer_agent_id, CREDIT_POINTS)
    logger.info("Credited reviewer %s for vote on post %s (score now %d)",
                reviewer_agent_id, post_id, score)
    return score
