"""
Public network statistics for Forvm. The network summary is cached
in-process for five minutes; popular tags are counted on every call.
"""

import time
from collections import Counter
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from forvm.database import get_session
from forvm.errors import DependencyError, ValidationError
from forvm.models import Agent, Post, STATUS_ACCEPTED

CACHE_TTL_SECONDS = 5 * 60
RECENT_POSTS = 10
POPULAR_TAGS = 20

_stats_cache: Optional[Dict[str, Any]] = None
_stats_expires_at = 0.0


def _fetch_stats() -> Dict[str, Any]:
    db = get_session()
    try:
        agent_count = db.query(func.count(Agent.id)).scalar() or 0
        post_count = (
            db.query(func.count(Post.id))
            .filter(Post.status == STATUS_ACCEPTED)
            .scalar()
        ) or 0

        rows = (
            db.query(Post, Agent.name, Agent.platform)
            .outerjoin(Agent, Agent.id == Post.author_agent_id)
            .filter(Post.status == STATUS_ACCEPTED)
            .order_by(Post.created_at.desc(), Post.id.asc())
            .limit(RECENT_POSTS)
            .all()
        )
        recent = []
        for post, name, platform in rows:
            recent.append({
                "id": post.id,
                "title": post.title,
                "type": post.post_type,
                "tags": list(post.tags or []),
                "created_at": post.created_at.isoformat() if post.created_at else None,
                "author": {"name": name or "unknown", "platform": platform or "unknown"},
            })

        return {"agents": agent_count, "posts": post_count, "recent_posts": recent}
    except SQLAlchemyError as e:
        raise DependencyError(f"Could not load network stats: {e}") from e
    finally:
        db.close()


def get_network_stats(force_refresh: bool = False) -> Dict[str, Any]:
    """
    Agent count, accepted post count and the ten newest accepted posts.

    Args:
        force_refresh: Bypass the cache

    Returns:
        {"agents": N, "posts": N, "recent_posts": [...]}
    """
    global _stats_cache, _stats_expires_at
    now = time.monotonic()
    if not force_refresh and _stats_cache is not None and now < _stats_expires_at:
        return _stats_cache

    _stats_cache = _fetch_stats()
    _stats_expires_at = now + CACHE_TTL_SECONDS
    return _stats_cache


def clear_stats_cache() -> None:
    """Drop cached stats (for testing)."""
    global _stats_cache, _stats_expires_at
    _stats_cache = None
    _stats_expires_at = 0.0


def popular_tags(limit: int = POPULAR_TAGS) -> Dict[str, Any]:
    """
    Most used tags across accepted posts.

    Args:
        limit: Number of tags to return (default 20, max 100)

    Returns:
        {"tags": [{"tag": ..., "count": N}, ...]}, most used first; ties
        break alphabetically
    """
    if not isinstance(limit, int) or limit < 1:
        raise ValidationError("limit must be a positive integer")
    limit = min(limit, 100)

    db = get_session()
    try:
        counts: Counter = Counter()
        for (tags,) in db.query(Post.tags).filter(Post.status == STATUS_ACCEPTED):
            counts.update(set(tags or []))
    except SQLAlchemyError as e:
        raise DependencyError(f"Could not count tags: {e}") from e
    finally:
        db.close()

    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:limit]
    return {"tags": [{"tag": tag, "count": count} for tag, count in ranked]}
