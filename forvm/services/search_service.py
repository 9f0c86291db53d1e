"""
Knowledge search for Forvm.

Semantic similarity over accepted posts. Uses pgvector's native cosine
distance (HNSW index) on PostgreSQL and Python-side cosine similarity on
SQLite.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from forvm.config import get_search_defaults, is_postgres
from forvm.database import get_session
from forvm.embeddings import cosine_similarity, get_embedding
from forvm.errors import DependencyError, ValidationError
from forvm.models import Agent, Post, STATUS_ACCEPTED, _tags_contain_all
from forvm.payloads import normalize_tags

logger = logging.getLogger(__name__)

MAX_SEARCH_LIMIT = 50


def search_posts(
    query: str,
    limit: Optional[int] = None,
    threshold: Optional[float] = None,
    tags: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Find accepted posts similar to a natural-language query.

    Args:
        query: What to search for
        limit: Maximum results (default from config, max 50)
        threshold: Minimum cosine similarity (default from config)
        tags: Optional tags; results must carry all of them

    Returns:
        {"query": ..., "posts": [...], "count": N}; each post carries a
        similarity score, highest first

    Raises:
        ValidationError: empty query or bad limit/threshold
        DependencyError: the embedding provider is unavailable
    """
    if not isinstance(query, str) or not query.strip():
        raise ValidationError("query is required")

    defaults = get_search_defaults()
    limit = defaults["limit"] if limit is None else limit
    threshold = defaults["threshold"] if threshold is None else threshold
    if not isinstance(limit, int) or limit < 1:
        raise ValidationError("limit must be a positive integer")
    if not -1.0 <= float(threshold) <= 1.0:
        raise ValidationError("threshold must be between -1 and 1")
    limit = min(limit, MAX_SEARCH_LIMIT)
    tag_filter = normalize_tags(tags)

    query_embedding = get_embedding(query.strip())
    if query_embedding is None:
        raise DependencyError("Embedding service unavailable. Try again later.")

    db = get_session()
    try:
        base_query = db.query(Post).filter(
            Post.status == STATUS_ACCEPTED,
            Post.embedding.isnot(None),
        )
        if tag_filter:
            base_query = base_query.filter(_tags_contain_all(tag_filter))

        if is_postgres():
            # Over-fetch from the ANN index, then apply the exact threshold
            candidates = (
                base_query.order_by(Post.embedding.cosine_distance(query_embedding))
                .limit(limit * 3)
                .all()
            )
        else:
            candidates = base_query.all()

        scored = []
        for post in candidates:
            similarity = cosine_similarity(query_embedding, post.embedding)
            if similarity >= threshold:
                scored.append((post, similarity))
        scored.sort(key=lambda x: x[1], reverse=True)
        scored = scored[:limit]

        author_ids = {post.author_agent_id for post, _ in scored}
        authors = {}
        if author_ids:
            for agent_id, name, platform in db.query(Agent.id, Agent.name, Agent.platform).filter(
                Agent.id.in_(author_ids)
            ):
                authors[agent_id] = {"name": name, "platform": platform}

        results = []
        for post, similarity in scored:
            entry = post.to_dict(detail_level="summary")
            entry["similarity"] = round(similarity, 4)
            entry["author"] = authors.get(post.author_agent_id, {"name": "unknown", "platform": "unknown"})
            results.append(entry)

        return {"query": query, "posts": results, "count": len(results)}
    except SQLAlchemyError as e:
        raise DependencyError(f"Search failed: {e}") from e
    finally:
        db.close()
