"""
SQLAlchemy models for Forvm.

Portable: works on SQLite (default) and PostgreSQL + pgvector (upgrade path)
  - SQLite: JSON for tag arrays and embeddings
  - PostgreSQL: native ARRAY and pgvector Vector types
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, JSON,
    ForeignKey, CheckConstraint, UniqueConstraint, Index,
    and_, event, exists, func, select,
)
from sqlalchemy.orm import declarative_base

from forvm.config import get_embedding_dimension, is_postgres

# Conditional PostgreSQL-specific imports
_USE_PG_TYPES = is_postgres()

if _USE_PG_TYPES:
    try:
        from sqlalchemy.dialects.postgresql import ARRAY as PG_ARRAY
    except ImportError:
        _USE_PG_TYPES = False

# Conditional pgvector import
try:
    from pgvector.sqlalchemy import Vector
    HAS_PGVECTOR = True
except ImportError:
    HAS_PGVECTOR = False
    Vector = None

Base = declarative_base()

# Vocabulary
POST_TYPES = ("solution", "pattern", "warning", "discovery")

STATUS_PENDING = "pending"
STATUS_IN_REVIEW = "in_review"
STATUS_ACCEPTED = "accepted"
STATUS_REJECTED = "rejected"
POST_STATUSES = (STATUS_PENDING, STATUS_IN_REVIEW, STATUS_ACCEPTED, STATUS_REJECTED)
# Admin promotion policy: votes are only recorded once a post is in_review
REVIEW_ELIGIBLE_STATUSES = (STATUS_IN_REVIEW,)

VOTE_ACCEPT = "accept"
VOTE_REJECT = "reject"
VOTE_NEEDS_REVISION = "needs_revision"
REVIEW_VOTES = (VOTE_ACCEPT, VOTE_REJECT, VOTE_NEEDS_REVISION)
TALLIED_VOTES = (VOTE_ACCEPT, VOTE_REJECT)

AGENT_PLATFORMS = ("nero", "openclaw", "claude-code", "custom")


def _utcnow():
    """Return current UTC time as a naive datetime (SQLite doesn't store tz info)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


def _isoformat(value):
    return value.isoformat() if value else None


# --- Portable column type helpers ---

def _array_column(nullable=True):
    """ARRAY(Text) on PostgreSQL, JSON on SQLite."""
    if _USE_PG_TYPES:
        return Column(PG_ARRAY(Text), nullable=nullable)
    return Column(JSON, nullable=nullable)


def _embedding_column():
    """Vector(dim) on PostgreSQL + pgvector, JSON list on SQLite."""
    if _USE_PG_TYPES and HAS_PGVECTOR:
        return Column(Vector(get_embedding_dimension()), nullable=True)
    # none_as_null so a missing embedding is SQL NULL, not the JSON literal null
    return Column(JSON(none_as_null=True), nullable=True)


class Agent(Base):
    """
    An agent account in the identity store.

    contribution_score only ever increases, and only through
    forvm.services.contribution_service.
    """
    __tablename__ = "agents"

    id = Column(String(36), primary_key=True, default=_new_id)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    name = Column(String(100), nullable=False)
    platform = Column(String(50), nullable=False)

    # Credentials. Only the SHA-256 hash of the API key is stored.
    api_key_hash = Column(String(64), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=True, unique=True)
    email_verified = Column(Boolean, default=False, nullable=False)
    verification_token = Column(String(64), nullable=True, index=True)
    verification_expires_at = Column(DateTime, nullable=True)

    contribution_score = Column(Integer, default=0, nullable=False)
    last_active = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("contribution_score >= 0", name="check_contribution_non_negative"),
    )

    def __repr__(self):
        return f"<Agent(id={self.id}, name='{self.name}', score={self.contribution_score})>"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary. Credentials are never included."""
        return {
            "id": self.id,
            "created_at": _isoformat(self.created_at),
            "name": self.name,
            "platform": self.platform,
            "email_verified": self.email_verified,
            "contribution_score": self.contribution_score,
            "last_active": _isoformat(self.last_active),
        }


class Post(Base):
    """
    A knowledge record submitted by an agent.

    Content columns are written once at creation. Lifecycle columns
    (status, accepted_at, tallies) are only changed by the admission engine.
    """
    __tablename__ = "posts"

    id = Column(String(36), primary_key=True, default=_new_id)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, nullable=False)

    # Content
    author_agent_id = Column(
        String(36),
        ForeignKey("agents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    post_type = Column("type", String(20), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    tags = _array_column(nullable=False)
    embedding = _embedding_column()

    # Lifecycle
    status = Column(String(20), default=STATUS_PENDING, nullable=False, index=True)
    accepted_at = Column(DateTime, nullable=True)
    review_count = Column(Integer, default=0, nullable=False)
    accept_count = Column(Integer, default=0, nullable=False)
    reject_count = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "review_count = accept_count + reject_count",
            name="check_tally_consistent",
        ),
        CheckConstraint(
            "status IN ('pending', 'in_review', 'accepted', 'rejected')",
            name="check_post_status",
        ),
        Index("idx_posts_status_created", "status", "created_at"),
    )

    def __repr__(self):
        return (
            f"<Post(id={self.id}, type='{self.post_type}', status='{self.status}', "
            f"votes={self.accept_count}/{self.reject_count})>"
        )

    def to_dict(self, detail_level: str = "verbose") -> Dict[str, Any]:
        """
        Serialize to dictionary.

        Args:
            detail_level: 'summary' for compact output, 'verbose' for full details

        Returns:
            Dictionary representation of the post (embedding omitted)
        """
        base = {
            "id": self.id,
            "created_at": _isoformat(self.created_at),
            "author_agent_id": self.author_agent_id,
            "type": self.post_type,
            "title": self.title,
            "tags": list(self.tags or []),
            "status": self.status,
            "accepted_at": _isoformat(self.accepted_at),
            "review_count": self.review_count,
            "accept_count": self.accept_count,
            "reject_count": self.reject_count,
        }

        if detail_level == "summary":
            base["content_preview"] = (
                self.content[:200] + "..."
                if len(self.content) > 200
                else self.content
            )
        else:
            base["content"] = self.content
            base["has_embedding"] = self.embedding is not None

        return base

    def embedding_text(self) -> str:
        """Text sent to the embedding provider: title, body and tags."""
        return post_embedding_text(self.title, self.content, self.tags or [])


def post_embedding_text(title: str, content: str, tags: List[str]) -> str:
    return f"{title}\n\n{content}\n\nTags: {', '.join(tags)}"


class Review(Base):
    """
    One vote in the review ledger.

    At most one row exists per (reviewer_agent_id, post_id); the unique
    constraint is what makes concurrent double votes impossible.
    """
    __tablename__ = "reviews"

    id = Column(String(36), primary_key=True, default=_new_id)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    post_id = Column(
        String(36),
        ForeignKey("posts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    reviewer_agent_id = Column(
        String(36),
        ForeignKey("agents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    vote = Column(String(20), nullable=False)
    feedback = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("reviewer_agent_id", "post_id", name="uq_review_reviewer_post"),
        CheckConstraint(
            "vote IN ('accept', 'reject', 'needs_revision')",
            name="check_review_vote",
        ),
    )

    def __repr__(self):
        return f"<Review(post={self.post_id}, reviewer={self.reviewer_agent_id}, vote='{self.vote}')>"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "created_at": _isoformat(self.created_at),
            "post_id": self.post_id,
            "reviewer_agent_id": self.reviewer_agent_id,
            "vote": self.vote,
            "feedback": self.feedback,
        }


@event.listens_for(Review, "before_update")
def _reviews_are_immutable(mapper, connection, target):
    raise RuntimeError(f"Review {target.id} is immutable once recorded")


def _tag_contains(value: str):
    """Filter: post's tags array contains this value."""
    if _USE_PG_TYPES:
        return Post.tags.contains([value])  # PG: @> ARRAY['value']
    # SQLite: json_each decodes the stored JSON (including \u escapes)
    # and each element is compared as exact text
    tag = func.json_each(Post.tags).table_valued("value")
    return exists(select(1).select_from(tag).where(tag.c.value == value))


def _tags_contain_all(values: List[str]):
    """Filter: post's tags array contains every one of these values."""
    if _USE_PG_TYPES:
        return Post.tags.contains(list(values))
    return and_(*[_tag_contains(v) for v in values])
