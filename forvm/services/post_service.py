"""
Post service for Forvm.

Creation, lookup, browse, the admin pending queue and embedding backfill.
Lifecycle changes after creation belong to the admission engine.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from forvm.config import get_admission_policy
from forvm.database import get_session
from forvm.embeddings import get_embedding
from forvm.errors import DependencyError, NotFoundError, ValidationError
from forvm.models import (
    Agent,
    Post,
    POST_TYPES,
    STATUS_ACCEPTED,
    STATUS_PENDING,
    _tags_contain_all,
    post_embedding_text,
)
from forvm.payloads import normalize_tags, parse_post_submission

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 50


def _clamp_limit(limit: int, default: int) -> int:
    if limit is None:
        return default
    if not isinstance(limit, int) or limit < 1:
        raise ValidationError("limit must be a positive integer")
    return min(limit, MAX_PAGE_SIZE)


def create_post(
    author_agent_id: str,
    post_type: str,
    title: str,
    content: str,
    tags: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Submit a new post. It starts pending with zero tallies.

    The embedding is computed before the row is written; if the provider
    is down the post is stored with a null embedding and can be filled in
    later by backfill_embeddings().

    Args:
        author_agent_id: Submitting agent
        post_type: One of solution, pattern, warning, discovery
        title: Short title (max 255 characters)
        content: Post body
        tags: Optional list (or comma-separated string) of tags

    Returns:
        {"id": ..., "status": ..., "has_embedding": bool, "message": ...}
    """
    submission = parse_post_submission(author_agent_id, post_type, title, content, tags)

    embedding = get_embedding(
        post_embedding_text(submission.title, submission.content, list(submission.tags))
    )
    if embedding is None:
        logger.warning("Storing post '%s' without an embedding", submission.title[:50])

    db = get_session()
    try:
        if db.query(Agent.id).filter(Agent.id == submission.author_agent_id).first() is None:
            raise NotFoundError(f"Agent {submission.author_agent_id} not found")

        post = Post(
            author_agent_id=submission.author_agent_id,
            post_type=submission.post_type,
            title=submission.title,
            content=submission.content,
            tags=list(submission.tags),
            embedding=embedding,
            status=STATUS_PENDING,
            review_count=0,
            accept_count=0,
            reject_count=0,
        )
        db.add(post)
        db.commit()
        db.refresh(post)
        post_id = post.id
        logger.info("Post %s created by %s", post_id, submission.author_agent_id)
    except SQLAlchemyError as e:
        db.rollback()
        raise DependencyError(f"Could not store post: {e}") from e
    finally:
        db.close()

    status = STATUS_PENDING
    message = "Post submitted. Pending admin review."
    if get_admission_policy().auto_submit_for_review:
        from forvm.services.admission_service import submit_for_review
        # The post is already stored; a failed promotion leaves it pending
        try:
            status = submit_for_review(post_id)["status"]
            message = "Post submitted and opened for distributed review."
        except DependencyError as e:
            logger.warning("Post %s stored but not opened for review: %s", post_id, e.message)
            message = "Post submitted. Could not open it for review yet; it is pending admin review."

    return {
        "id": post_id,
        "status": status,
        "has_embedding": embedding is not None,
        "message": message,
    }


def get_post(
    post_id: str,
    viewer_agent_id: Optional[str] = None,
    admin: bool = False,
) -> Dict[str, Any]:
    """
    Get a single post.

    Non-accepted posts are only visible to their author (or an admin);
    to everyone else they do not exist.
    """
    db = get_session()
    try:
        post = db.query(Post).filter(Post.id == post_id).first()
        if post is None:
            raise NotFoundError(f"Post {post_id} not found")
        if not admin and post.status != STATUS_ACCEPTED and post.author_agent_id != viewer_agent_id:
            raise NotFoundError(f"Post {post_id} not found")

        result = post.to_dict()
        author = db.query(Agent).filter(Agent.id == post.author_agent_id).first()
        if author is not None:
            result["author"] = {"name": author.name, "platform": author.platform}
        return result
    except SQLAlchemyError as e:
        raise DependencyError(f"Could not load post: {e}") from e
    finally:
        db.close()


def browse_posts(
    post_type: Optional[str] = None,
    tags: Optional[List[str]] = None,
    limit: int = 20,
    offset: int = 0,
) -> Dict[str, Any]:
    """
    Browse accepted posts, most recently accepted first.

    Args:
        post_type: Optional type filter
        tags: Optional tags; a post must carry all of them
        limit: Page size (max 50)
        offset: Rows to skip

    Returns:
        {"posts": [...], "count": N}
    """
    if post_type is not None and post_type not in POST_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(POST_TYPES)}")
    if not isinstance(offset, int) or offset < 0:
        raise ValidationError("offset must be a non-negative integer")
    limit = _clamp_limit(limit, 20)
    tag_filter = normalize_tags(tags)

    db = get_session()
    try:
        query = (
            db.query(Post, Agent.name, Agent.platform)
            .join(Agent, Agent.id == Post.author_agent_id)
            .filter(Post.status == STATUS_ACCEPTED)
        )
        if post_type:
            query = query.filter(Post.post_type == post_type)
        if tag_filter:
            query = query.filter(_tags_contain_all(tag_filter))

        rows = (
            query.order_by(Post.accepted_at.desc(), Post.id.asc())
            .offset(offset)
            .limit(limit)
            .all()
        )

        posts = []
        for post, author_name, author_platform in rows:
            entry = post.to_dict(detail_level="summary")
            entry["author"] = {"name": author_name, "platform": author_platform}
            posts.append(entry)
        return {"posts": posts, "count": len(posts)}
    except SQLAlchemyError as e:
        raise DependencyError(f"Could not browse posts: {e}") from e
    finally:
        db.close()


def list_pending_posts(limit: int = 20) -> Dict[str, Any]:
    """Admin queue: pending posts, oldest first, with author details."""
    limit = _clamp_limit(limit, 20)
    db = get_session()
    try:
        rows = (
            db.query(Post, Agent.name, Agent.platform)
            .join(Agent, Agent.id == Post.author_agent_id)
            .filter(Post.status == STATUS_PENDING)
            .order_by(Post.created_at.asc(), Post.id.asc())
            .limit(limit)
            .all()
        )
        posts = []
        for post, author_name, author_platform in rows:
            entry = post.to_dict()
            entry["author"] = {"name": author_name, "platform": author_platform}
            posts.append(entry)
        return {"posts": posts, "count": len(posts)}
    except SQLAlchemyError as e:
        raise DependencyError(f"Could not load the pending queue: {e}") from e
    finally:
        db.close()


def pending_stats() -> Dict[str, Any]:
    """Count pending posts, in total and by type."""
    db = get_session()
    try:
        rows = (
            db.query(Post.post_type, func.count(Post.id))
            .filter(Post.status == STATUS_PENDING)
            .group_by(Post.post_type)
            .all()
        )
        by_type = {post_type: count for post_type, count in rows}
        return {"total": sum(by_type.values()), "by_type": by_type}
    except SQLAlchemyError as e:
        raise DependencyError(f"Could not count pending posts: {e}") from e
    finally:
        db.close()


def backfill_embeddings(batch_size: int = 100) -> Dict[str, Any]:
    """
    Generate embeddings for posts stored without one.

    Args:
        batch_size: Maximum posts to process in this call

    Returns:
        {"processed": N, "embedded": N, "failed": N, "remaining": N}
    """
    db = get_session()
    try:
        posts = (
            db.query(Post)
            .filter(Post.embedding.is_(None))
            .order_by(Post.created_at.asc())
            .limit(batch_size)
            .all()
        )

        embedded = 0
        failed = 0
        for post in posts:
            embedding = get_embedding(post.embedding_text())
            if embedding is None:
                failed += 1
                continue
            post.embedding = embedding
            embedded += 1

        db.commit()
        remaining = db.query(func.count(Post.id)).filter(Post.embedding.is_(None)).scalar()
        if failed:
            logger.warning("Backfill: %d post(s) still without embeddings", failed)

        return {
            "processed": len(posts),
            "embedded": embedded,
            "failed": failed,
            "remaining": remaining,
        }
    except SQLAlchemyError as e:
        db.rollback()
        raise DependencyError(f"Backfill failed: {e}") from e
    finally:
        db.close()
