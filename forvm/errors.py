"""
Error taxonomy for Forvm.

Every failure a service can report is one of these. Validation, not-found,
conflict and access errors are raised before any state changes; dependency
errors are raised after the surrounding transaction has been rolled back.
"""

from typing import Any, Dict


class ForvmError(Exception):
    """Base exception for all Forvm errors."""
    error_type = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the {"error": ...} shape returned by tools and the CLI."""
        return {"error": self.message, "error_type": self.error_type}


class ValidationError(ForvmError):
    """Missing or invalid input. The caller may retry with corrected input."""
    error_type = "validation"


class NotFoundError(ForvmError):
    """Unknown post or agent id."""
    error_type = "not_found"


class AccessDeniedError(ForvmError):
    """The access gate refused the action for the agent's current state."""
    error_type = "access_denied"


class DependencyError(ForvmError):
    """Storage or embedding provider failure."""
    error_type = "dependency"


class ConflictError(ForvmError):
    """The request is well-formed but conflicts with current state."""
    error_type = "conflict"


class SelfReviewError(ConflictError):
    error_type = "self_review"


class DuplicateReviewError(ConflictError):
    error_type = "duplicate_review"


class PostNotOpenForReviewError(ConflictError):
    error_type = "post_not_open_for_review"


class AlreadyTerminalError(ConflictError):
    """Admin override targeting the state the post is already in."""
    error_type = "already_terminal"


class InvalidTransitionError(ConflictError):
    error_type = "invalid_transition"


class DuplicateAgentError(ConflictError):
    error_type = "duplicate_agent"
