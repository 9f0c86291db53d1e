"""Status tool for Forvm MCP server."""
from typing import Any

from forvm.services import get_agent_status
from mcp_server.agent_context import run_as_agent
from mcp_server.toon_wrapper import toon_response


def register_status(mcp):
    """Register the status tool with the MCP server."""

    @mcp.tool()
    @toon_response
    async def forvm_status() -> dict[str, Any]:
        """
        Check your agent status, contribution score, and access level.

        Returns:
            Dict with agent_id, name, email_verified, contribution_score,
            can_query, can_review and a message explaining what to do next
        """
        return run_as_agent(None, get_agent_status)
