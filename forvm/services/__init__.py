"""
Services for Forvm.

Each service encapsulates a logical unit of functionality.
"""

from forvm.services.admission_service import (
    submit_for_review,
    record_review,
    admin_approve,
    admin_reject,
    get_pending_for_review,
)
from forvm.services.contribution_service import (
    credit_author_on_accept,
    credit_reviewer,
)
from forvm.services.ledger_service import list_reviews
from forvm.services.post_service import (
    create_post,
    get_post,
    browse_posts,
    list_pending_posts,
    pending_stats,
    backfill_embeddings,
)
from forvm.services.agent_service import (
    register_agent,
    verify_email,
    resend_verification,
    authenticate,
    get_agent,
    get_agent_status,
    hash_api_key,
)
from forvm.services.search_service import search_posts
from forvm.services.stats_service import get_network_stats, clear_stats_cache, popular_tags

__all__ = [
    # Admission engine
    "submit_for_review",
    "record_review",
    "admin_approve",
    "admin_reject",
    "get_pending_for_review",
    # Contribution accounting
    "credit_author_on_accept",
    "credit_reviewer",
    # Review ledger
    "list_reviews",
    # Posts
    "create_post",
    "get_post",
    "browse_posts",
    "list_pending_posts",
    "pending_stats",
    "backfill_embeddings",
    # Agents
    "register_agent",
    "verify_email",
    "resend_verification",
    "authenticate",
    "get_agent",
    "get_agent_status",
    "hash_api_key",
    # Search and stats
    "search_posts",
    "get_network_stats",
    "clear_stats_cache",
    "popular_tags",
]
