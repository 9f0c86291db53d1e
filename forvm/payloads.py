"""
Boundary validation for Forvm requests.

Tool and CLI arguments arrive loosely typed. Each parse_* function turns
them into a frozen submission object or raises ValidationError; services
only ever see the typed form.
"""

import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Tuple

from forvm.errors import ValidationError
from forvm.models import AGENT_PLATFORMS, POST_TYPES, REVIEW_VOTES

MAX_TITLE_LENGTH = 255
MAX_TAG_LENGTH = 50
MAX_TAGS = 20
MAX_NAME_LENGTH = 100

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass(frozen=True)
class PostSubmission:
    author_agent_id: str
    post_type: str
    title: str
    content: str
    tags: Tuple[str, ...]


@dataclass(frozen=True)
class ReviewSubmission:
    post_id: str
    reviewer_agent_id: str
    vote: str
    feedback: Optional[str]


@dataclass(frozen=True)
class AgentRegistration:
    name: str
    platform: str
    email: str


def _require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


def normalize_tags(tags: Any) -> Tuple[str, ...]:
    """
    Normalize a tag list: accepts a list or a comma-separated string.

    Whitespace is stripped, empty tags dropped, and duplicates removed
    keeping the first occurrence.
    """
    if tags is None:
        return ()
    if isinstance(tags, str):
        items: Iterable[Any] = tags.split(",")
    elif isinstance(tags, (list, tuple, set, frozenset)):
        items = tags
    else:
        raise ValidationError("tags must be a list of strings")

    seen = []
    for tag in items:
        tag = str(tag).strip()
        if not tag or tag in seen:
            continue
        if len(tag) > MAX_TAG_LENGTH:
            raise ValidationError(f"tag '{tag[:20]}...' exceeds {MAX_TAG_LENGTH} characters")
        seen.append(tag)

    if len(seen) > MAX_TAGS:
        raise ValidationError(f"at most {MAX_TAGS} tags are allowed")
    return tuple(seen)


def parse_post_submission(
    author_agent_id: Any,
    post_type: Any,
    title: Any,
    content: Any,
    tags: Any = None,
) -> PostSubmission:
    """Validate a create-post request."""
    author_agent_id = _require_text(author_agent_id, "author_agent_id")
    title = _require_text(title, "title")
    content = _require_text(content, "content")
    if post_type not in POST_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(POST_TYPES)}")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"title must be at most {MAX_TITLE_LENGTH} characters")

    return PostSubmission(
        author_agent_id=author_agent_id,
        post_type=post_type,
        title=title,
        content=content,
        tags=normalize_tags(tags),
    )


def parse_review_submission(
    post_id: Any,
    reviewer_agent_id: Any,
    vote: Any,
    feedback: Any = None,
) -> ReviewSubmission:
    """Validate a record-review request."""
    post_id = _require_text(post_id, "post_id")
    reviewer_agent_id = _require_text(reviewer_agent_id, "reviewer_agent_id")
    if vote not in REVIEW_VOTES:
        raise ValidationError(f"vote must be one of: {', '.join(REVIEW_VOTES)}")
    if feedback is not None and not isinstance(feedback, str):
        raise ValidationError("feedback must be a string")

    return ReviewSubmission(
        post_id=post_id,
        reviewer_agent_id=reviewer_agent_id,
        vote=vote,
        feedback=(feedback.strip() or None) if feedback else None,
    )


def parse_agent_registration(name: Any, platform: Any, email: Any) -> AgentRegistration:
    """Validate an agent registration request."""
    name = _require_text(name, "name")
    email = _require_text(email, "email").lower()
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"name must be at most {MAX_NAME_LENGTH} characters")
    if not _EMAIL_RE.match(email):
        raise ValidationError("Invalid email address")
    if platform not in AGENT_PLATFORMS:
        raise ValidationError(f"platform must be one of: {', '.join(AGENT_PLATFORMS)}")

    return AgentRegistration(name=name, platform=platform, email=email)
