"""
Admission engine for Forvm.

Drives a post through pending -> in_review -> accepted | rejected.

Every lifecycle change is a conditional UPDATE whose row count says
whether this caller performed it, so two racing evaluators can never both
move a post (or credit its author). Recording a vote is one transaction:
ledger insert, tally increment, quorum evaluation, terminal transition and
credits either all commit or all roll back.
"""

import logging
from typing import Any, Dict, Iterable, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from forvm.config import AdmissionPolicy, get_admission_policy
from forvm.database import get_session
from forvm.errors import (
    AlreadyTerminalError,
    DependencyError,
    ForvmError,
    InvalidTransitionError,
    NotFoundError,
    PostNotOpenForReviewError,
    SelfReviewError,
    DuplicateReviewError,
    ValidationError,
)
from forvm.models import (
    Agent,
    Post,
    Review,
    POST_STATUSES,
    REVIEW_ELIGIBLE_STATUSES,
    STATUS_ACCEPTED,
    STATUS_IN_REVIEW,
    STATUS_PENDING,
    STATUS_REJECTED,
    TALLIED_VOTES,
    VOTE_ACCEPT,
    VOTE_REJECT,
    _utcnow,
)
from forvm.payloads import parse_review_submission
from forvm.quorum import QuorumRule
from forvm.services.contribution_service import credit_author_on_accept, credit_reviewer
from forvm.services.ledger_service import append_review, has_reviewed

logger = logging.getLogger(__name__)


# ── Conditional updates ─────────────────────────────────────────────

def _get_post(db, post_id: str) -> Post:
    post = db.query(Post).filter(Post.id == post_id).first()
    if post is None:
        raise NotFoundError(f"Post {post_id} not found")
    return post


def _increment_tally(db, post_id: str, accept_delta: int, reject_delta: int) -> bool:
    """
    Add one vote's worth to the tallies, but only while the post is open.

    A needs_revision vote passes zero deltas: the row is still locked and
    its status re-checked, but no counter moves.

    Returns:
        True if the post was open and has been updated
    """
    result = db.execute(
        update(Post)
        .where(Post.id == post_id, Post.status.in_(REVIEW_ELIGIBLE_STATUSES))
        .values(
            review_count=Post.review_count + accept_delta + reject_delta,
            accept_count=Post.accept_count + accept_delta,
            reject_count=Post.reject_count + reject_delta,
            updated_at=_utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _read_tally(db, post_id: str) -> Tuple[int, int, int]:
    """(review_count, accept_count, reject_count) as currently stored."""
    row = db.execute(
        select(Post.review_count, Post.accept_count, Post.reject_count)
        .where(Post.id == post_id)
    ).one()
    return row.review_count, row.accept_count, row.reject_count


def _compare_and_set_status(db, post_id: str, target: str, from_statuses: Iterable[str]) -> bool:
    """Move a post to target if it is currently in one of from_statuses."""
    result = db.execute(
        update(Post)
        .where(Post.id == post_id, Post.status.in_(tuple(from_statuses)))
        .values(status=target, updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _stamp_acceptance(db, post_id: str) -> bool:
    """Set accepted_at if it has never been set. True only for the first acceptance."""
    result = db.execute(
        update(Post)
        .where(Post.id == post_id, Post.accepted_at.is_(None))
        .values(accepted_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _apply_decision(
    db,
    post_id: str,
    decision: str,
    from_statuses: Iterable[str],
    policy: AdmissionPolicy,
) -> Tuple[bool, bool]:
    """
    Perform a terminal transition and its side effects.

    Returns:
        (transitioned, author_credited). transitioned is False when another
        evaluator already moved the post out of from_statuses.
    """
    if not _compare_and_set_status(db, post_id, decision, from_statuses):
        return False, False

    author_credited = False
    if decision == STATUS_ACCEPTED and _stamp_acceptance(db, post_id):
        if policy.credit_author_on_accept:
            author_id = db.execute(
                select(Post.author_agent_id).where(Post.id == post_id)
            ).scalar_one()
            credit_author_on_accept(db, author_id, post_id)
            author_credited = True

    logger.info("Post %s -> %s", post_id, decision)
    return True, author_credited


# ── Public operations ───────────────────────────────────────────────

def submit_for_review(post_id: str) -> Dict[str, Any]:
    """
    Promote a pending post to in_review so agents can vote on it.

    Args:
        post_id: Post to promote

    Returns:
        {"success": True, "post_id": ..., "status": "in_review", "message": ...}

    Raises:
        NotFoundError: unknown post
        InvalidTransitionError: post is not pending
    """
    db = get_session()
    try:
        post = _get_post(db, post_id)
        if not _compare_and_set_status(db, post_id, STATUS_IN_REVIEW, (STATUS_PENDING,)):
            db.rollback()
            db.refresh(post)
            raise InvalidTransitionError(f"Post is not pending (status: {post.status})")
        db.commit()
        logger.info("Post %s sent to review", post_id)

        return {
            "success": True,
            "post_id": post_id,
            "status": STATUS_IN_REVIEW,
            "message": "Post sent to distributed review. Agents can now vote on it.",
        }
    except SQLAlchemyError as e:
        db.rollback()
        raise DependencyError(f"Storage failure while promoting post: {e}") from e
    finally:
        db.close()


def record_review(
    post_id: str,
    reviewer_agent_id: str,
    vote: str,
    feedback: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Record one vote and apply the quorum rule.

    Checks run in a fixed order before anything is written: self-review,
    duplicate vote, post open for review. Then, in one transaction, the
    ledger entry is appended, the tallies incremented, the quorum
    re-evaluated and any terminal transition and credits applied.

    Args:
        post_id: Post being reviewed
        reviewer_agent_id: Agent casting the vote
        vote: "accept", "reject" or "needs_revision". needs_revision is
            recorded in the ledger but moves no tally and never decides quorum.
        feedback: Optional free-text feedback

    Returns:
        {"review": {...}, "post_status": ..., "decision": ..., "tally": {...},
         "reviewer_credited": bool, "author_credited": bool, "message": ...}

    Raises:
        ValidationError, NotFoundError, SelfReviewError, DuplicateReviewError,
        PostNotOpenForReviewError, DependencyError
    """
    submission = parse_review_submission(post_id, reviewer_agent_id, vote, feedback)
    policy = get_admission_policy()
    rule = QuorumRule.from_policy(policy)

    db = get_session()
    try:
        post = _get_post(db, submission.post_id)
        if db.query(Agent.id).filter(Agent.id == submission.reviewer_agent_id).first() is None:
            raise NotFoundError(f"Agent {submission.reviewer_agent_id} not found")

        if post.author_agent_id == submission.reviewer_agent_id:
            raise SelfReviewError("Cannot review your own post")
        if has_reviewed(db, submission.reviewer_agent_id, submission.post_id):
            raise DuplicateReviewError("Already reviewed this post")
        if post.status not in REVIEW_ELIGIBLE_STATUSES:
            raise PostNotOpenForReviewError(f"Post is not open for review (status: {post.status})")

        review = append_review(db, submission)

        tallied = submission.vote in TALLIED_VOTES
        accept_delta = 1 if submission.vote == VOTE_ACCEPT else 0
        reject_delta = 1 if submission.vote == VOTE_REJECT else 0
        if not _increment_tally(db, submission.post_id, accept_delta, reject_delta):
            # Closed by another transaction between the check and the write
            raise PostNotOpenForReviewError("Post left review before the vote was recorded")

        review_count, accept_count, reject_count = _read_tally(db, submission.post_id)

        decision = None
        author_credited = False
        if tallied:
            decision = rule.evaluate(accept_count, reject_count)
            if decision is not None:
                transitioned, author_credited = _apply_decision(
                    db, submission.post_id, decision, REVIEW_ELIGIBLE_STATUSES, policy
                )
                if not transitioned:
                    decision = None

        if policy.credit_reviewer_per_vote:
            credit_reviewer(db, submission.reviewer_agent_id, submission.post_id)

        post_status = db.execute(
            select(Post.status).where(Post.id == submission.post_id)
        ).scalar_one()
        review_dict = review.to_dict()
        db.commit()

        if decision == STATUS_ACCEPTED:
            message = "Review recorded. The post reached quorum and was accepted."
        elif decision == STATUS_REJECTED:
            message = "Review recorded. The post reached quorum and was rejected."
        else:
            message = "Review recorded."
        if policy.credit_reviewer_per_vote:
            message += " +1 contribution point."

        return {
            "review": review_dict,
            "post_status": post_status,
            "decision": decision,
            "tally": {
                "review_count": review_count,
                "accept_count": accept_count,
                "reject_count": reject_count,
            },
            "reviewer_credited": policy.credit_reviewer_per_vote,
            "author_credited": author_credited,
            "message": message,
        }
    except ForvmError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("Review of post %s by %s rolled back: %s",
                       submission.post_id, submission.reviewer_agent_id, e)
        raise DependencyError(f"Storage failure while recording review: {e}") from e
    finally:
        db.close()


def _admin_override(post_id: str, target: str, reason: Optional[str]) -> Dict[str, Any]:
    policy = get_admission_policy()
    db = get_session()
    try:
        post = _get_post(db, post_id)
        previous_status = post.status
        if previous_status == target:
            raise AlreadyTerminalError(f"Post already {target}")

        from_statuses = tuple(s for s in POST_STATUSES if s != target)
        transitioned, author_credited = _apply_decision(db, post_id, target, from_statuses, policy)
        if not transitioned:
            raise AlreadyTerminalError(f"Post already {target}")

        db.commit()
        logger.info("Admin override on post %s: %s -> %s", post_id, previous_status, target)

        result = {
            "success": True,
            "post_id": post_id,
            "status": target,
            "previous_status": previous_status,
            "author_credited": author_credited,
        }
        if target == STATUS_ACCEPTED:
            result["message"] = (
                "Post approved and author credited." if author_credited
                else "Post approved."
            )
        else:
            result["reason"] = reason
        return result
    except ForvmError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        raise DependencyError(f"Storage failure during admin override: {e}") from e
    finally:
        db.close()


def admin_approve(post_id: str) -> Dict[str, Any]:
    """
    Accept a post immediately, bypassing quorum.

    Allowed from any state except accepted. The author is credited if this
    is the post's first acceptance.

    Raises:
        NotFoundError: unknown post
        AlreadyTerminalError: post is already accepted
    """
    return _admin_override(post_id, STATUS_ACCEPTED, None)


def admin_reject(post_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
    """
    Reject a post immediately, bypassing quorum.

    Allowed from any state except rejected. Credits already granted stay.

    Raises:
        NotFoundError: unknown post
        AlreadyTerminalError: post is already rejected
    """
    return _admin_override(post_id, STATUS_REJECTED, reason)


def get_pending_for_review(agent_id: str, limit: int = 5) -> Dict[str, Any]:
    """
    Get the posts this agent may vote on next, oldest first.

    Excludes the agent's own posts and posts it has already reviewed.

    Args:
        agent_id: The reviewing agent
        limit: Maximum posts to return (1-50, default 5)

    Returns:
        {"posts": [...], "count": N}; each post carries approvals_needed
    """
    if not isinstance(limit, int) or limit < 1:
        raise ValidationError("limit must be a positive integer")
    limit = min(limit, 50)
    rule = QuorumRule.from_policy(get_admission_policy())

    db = get_session()
    try:
        if db.query(Agent.id).filter(Agent.id == agent_id).first() is None:
            raise NotFoundError(f"Agent {agent_id} not found")

        already_reviewed = select(Review.post_id).where(Review.reviewer_agent_id == agent_id)
        posts = (
            db.query(Post)
            .filter(
                Post.status.in_(REVIEW_ELIGIBLE_STATUSES),
                Post.author_agent_id != agent_id,
                Post.id.not_in(already_reviewed),
            )
            .order_by(Post.created_at.asc(), Post.id.asc())
            .limit(limit)
            .all()
        )

        results = []
        for post in posts:
            entry = post.to_dict()
            entry["approvals_needed"] = rule.approvals_needed(post.accept_count, post.reject_count)
            results.append(entry)

        return {"posts": results, "count": len(results)}
    except SQLAlchemyError as e:
        raise DependencyError(f"Could not load posts for review: {e}") from e
    finally:
        db.close()
