"""
Error taxonomy for the agent core.

Every error raised across a component boundary derives from ``CompassError``
and carries a machine code, an HTTP status and a short user-facing message.
Details stay in ``message``/``context`` and only ever reach the logs.
"""

from typing import Any, Dict, Optional


GENERIC_USER_MESSAGE = "An error occurred. Please try again."


class CompassError(Exception):
    """Base class for typed agent errors"""

    code = "internal_error"
    status_code = 500
    user_message = GENERIC_USER_MESSAGE

    def __init__(
        self,
        message: str = "",
        context: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message or self.user_message)
        self.message = message or self.user_message
        self.context = context or {}
        self.headers = headers or {}

    def to_response(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.user_message}


class IdentityError(CompassError):
    """Caller identity could not be established or does not match"""

    code = "identity_error"
    status_code = 403
    user_message = "You do not have access to this conversation."


class NoIdentity(IdentityError):
    code = "no_identity"
    status_code = 401
    user_message = "Please select a persona or sign in to start chatting."


class PersonaNotFound(IdentityError):
    code = "persona_not_found"
    status_code = 404
    user_message = "The selected persona could not be found."


class AmbiguousPersona(IdentityError):
    code = "ambiguous_persona"
    status_code = 409
    user_message = "Select either a customer or an advisor persona, not both."


class IdentityMismatch(IdentityError):
    code = "identity_mismatch"
    user_message = "The selected persona does not match your identity."


class SessionOwnershipMismatch(IdentityError):
    code = "session_ownership_mismatch"
    user_message = "This conversation belongs to a different persona."


class IdentityBackendUnavailable(CompassError):
    """Identity could not be checked because a backing store is unreachable"""

    code = "identity_backend_unavailable"
    status_code = 503
    user_message = "The service is temporarily unavailable. Please try again."


class SessionStoreUnavailable(CompassError):
    code = "session_store_unavailable"
    status_code = 503
    user_message = "The service is temporarily unavailable. Please try again."


class ToolExecutionError(CompassError):
    code = "tool_execution_error"


class CompletionError(CompassError):
    code = "completion_error"
    status_code = 502
    user_message = "Failed to generate response. Please try again."


class InvalidRequest(CompassError):
    code = "invalid_request"
    status_code = 400
    user_message = "The request is invalid."

    def __init__(self, message: str = "", **kwargs: Any):
        super().__init__(message, **kwargs)
        if message:
            self.user_message = message


class RateLimitExceeded(CompassError):
    code = "rate_limit_exceeded"
    status_code = 429
    user_message = "Too many requests. Please try again later."
