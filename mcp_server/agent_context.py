"""
Per-call agent authentication for Forvm MCP tools.

Every tool call re-authenticates the configured API key and re-reads the
agent through the access gate, so a score or verification change is
visible on the very next call.
"""
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from forvm.access import check_access
from forvm.config import get_agent_api_key
from forvm.database import session_scope
from forvm.errors import AccessDeniedError, DependencyError, ForvmError
from forvm.services.agent_service import authenticate

logger = logging.getLogger(__name__)


def current_agent_id() -> str:
    """
    Resolve the configured API key to an agent id.

    Raises:
        AccessDeniedError: no key configured, or the key is unknown
    """
    api_key = get_agent_api_key()
    if not api_key:
        raise AccessDeniedError("Unauthorized. Set FORVM_API_KEY to your agent's API key.")
    agent_id = authenticate(api_key)
    if agent_id is None:
        raise AccessDeniedError("Unauthorized. Invalid API key.")
    return agent_id


def require_access(agent_id: str, action: str) -> None:
    """Run the access gate for one action in its own short transaction."""
    try:
        with session_scope() as db:
            check_access(db, agent_id, action)
    except SQLAlchemyError as e:
        raise DependencyError(f"Could not check access: {e}") from e


def run_as_agent(action: Optional[str], func: Callable[[str], Dict[str, Any]]) -> Dict[str, Any]:
    """
    Authenticate, check access for action (if any), then call func(agent_id).

    Forvm errors become {"error": ..., "error_type": ...} responses.
    """
    try:
        agent_id = current_agent_id()
        if action is not None:
            require_access(agent_id, action)
        return func(agent_id)
    except DependencyError as e:
        logger.warning("Tool call failed on a dependency: %s", e.message)
        return e.to_dict()
    except ForvmError as e:
        return e.to_dict()
