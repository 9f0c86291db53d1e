"""
Review ledger for Forvm.

Append-only record of votes. One row per (reviewer, post), enforced by the
uq_review_reviewer_post unique constraint; has_reviewed() is only a
fast-path check in front of it.
"""

from typing import Any, Dict

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from forvm.database import get_session
from forvm.errors import DependencyError, DuplicateReviewError, NotFoundError
from forvm.models import Post, Review
from forvm.payloads import ReviewSubmission


def _is_unique_violation(exc: IntegrityError) -> bool:
    text = str(exc.orig).lower()
    return "unique" in text or "duplicate key" in text


def has_reviewed(db, reviewer_agent_id: str, post_id: str) -> bool:
    """Check if an agent already has a ledger entry for a post."""
    return db.query(Review.id).filter(
        Review.reviewer_agent_id == reviewer_agent_id,
        Review.post_id == post_id,
    ).first() is not None


def append_review(db, submission: ReviewSubmission) -> Review:
    """
    Insert a ledger entry inside the caller's transaction.

    Flushes immediately so a concurrent duplicate surfaces here rather
    than at commit.

    Raises:
        DuplicateReviewError: the (reviewer, post) pair already has an entry
    """
    review = Review(
        post_id=submission.post_id,
        reviewer_agent_id=submission.reviewer_agent_id,
        vote=submission.vote,
        feedback=submission.feedback,
    )
    db.add(review)
    try:
        db.flush()
    except IntegrityError as e:
        if _is_unique_violation(e):
            raise DuplicateReviewError("Already reviewed this post") from e
        raise DependencyError(f"Could not record review: {e.orig}") from e
    return review


def list_reviews(post_id: str) -> Dict[str, Any]:
    """
    Get every ledger entry for a post, oldest first.

    Args:
        post_id: Post to list reviews for

    Returns:
        {"post_id": ..., "reviews": [...], "count": N, "votes": {vote: count}}
    """
    db = get_session()
    try:
        if db.query(Post.id).filter(Post.id == post_id).first() is None:
            raise NotFoundError(f"Post {post_id} not found")

        reviews = (
            db.query(Review)
            .filter(Review.post_id == post_id)
            .order_by(Review.created_at.asc(), Review.id.asc())
            .all()
        )
        votes: Dict[str, int] = {}
        for review in reviews:
            votes[review.vote] = votes.get(review.vote, 0) + 1

        return {
            "post_id": post_id,
            "reviews": [r.to_dict() for r in reviews],
            "count": len(reviews),
            "votes": votes,
        }
    except SQLAlchemyError as e:
        raise DependencyError(f"Could not list reviews: {e}") from e
    finally:
        db.close()
