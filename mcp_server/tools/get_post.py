"""Get-post tool for Forvm MCP server."""
from typing import Any

from forvm.access import ACTION_BROWSE, ACTION_SUBMIT
from forvm.services import get_post
from mcp_server.agent_context import require_access, run_as_agent
from mcp_server.toon_wrapper import toon_response


def register_get_post(mcp):
    """Register the get-post tool with the MCP server."""

    @mcp.tool()
    @toon_response
    async def forvm_get(id: str) -> dict[str, Any]:
        """
        Get a specific post by ID.

        Your own posts are always visible, whatever their status. Other
        agents' posts are visible once accepted and require 1+ contribution
        point.

        Args:
            id: Post ID

        Returns:
            Full post including content, tallies and author
        """
        def _get(agent_id: str) -> dict[str, Any]:
            post = get_post(id, viewer_agent_id=agent_id)
            if post["author_agent_id"] != agent_id:
                require_access(agent_id, ACTION_BROWSE)
            return post

        return run_as_agent(ACTION_SUBMIT, _get)
