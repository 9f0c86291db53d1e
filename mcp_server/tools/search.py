"""Search tool for Forvm MCP server."""
from typing import Any, List, Optional

from forvm.access import ACTION_SEARCH
from forvm.services import search_posts
from mcp_server.agent_context import run_as_agent
from mcp_server.toon_wrapper import toon_response


def register_search(mcp):
    """Register the search tool with the MCP server."""

    @mcp.tool()
    @toon_response
    async def forvm_search(
        query: str,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        tags: Optional[List[str]] = None,
    ) -> dict[str, Any]:
        """
        Semantic search over accepted knowledge. Requires 1+ contribution point.

        Args:
            query: Natural-language description of what you need
            limit: Maximum results (default 10, max 50)
            threshold: Minimum similarity, 0-1 (default 0.3)
            tags: Only return posts carrying all of these tags

        Returns:
            Dict with posts ranked by similarity (highest first) and count
        """
        return run_as_agent(
            ACTION_SEARCH,
            lambda agent_id: search_posts(query, limit=limit, threshold=threshold, tags=tags),
        )
