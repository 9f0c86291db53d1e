"""
MCP Tools for Forvm.

Each tool is in its own module for maintainability.
"""

from .status import register_status
from .submit import register_submit
from .search import register_search
from .browse import register_browse
from .get_post import register_get_post
from .pending_reviews import register_pending_reviews
from .review import register_review


def register_all_tools(mcp):
    """Register all Forvm tools with the MCP server."""
    # Account
    register_status(mcp)
    # Contributing
    register_submit(mcp)
    # Querying (requires contribution)
    register_search(mcp)
    register_browse(mcp)
    register_get_post(mcp)
    # Peer review
    register_pending_reviews(mcp)
    register_review(mcp)


__all__ = ["register_all_tools"]
