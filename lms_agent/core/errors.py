"""
Application errors for clean API error handling.

Every error carries a user-facing message and the HTTP status the API maps it
to. Messages never include stack detail; raise them where the cause is known
and let the API layer render them.
"""


class AgentServiceError(Exception):
    """Base class for errors surfaced to callers as a structured {error} body."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class UnknownAgentError(AgentServiceError):
    status_code = 400
    code = "unknown_agent"


class InvalidArgumentsError(AgentServiceError):
    """Raised when caller- or model-supplied arguments fail validation."""

    status_code = 400
    code = "invalid_arguments"

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class ForbiddenError(AgentServiceError):
    """Raised when the caller's role does not grant access to a tool or resource."""

    status_code = 403
    code = "forbidden"


class NotFoundError(AgentServiceError):
    """Absent or inaccessible; the two are deliberately not distinguished."""

    status_code = 404
    code = "not_found"


class UnknownToolError(AgentServiceError):
    status_code = 404
    code = "unknown_tool"


class ConversationBusyError(AgentServiceError):
    """Raised when a turn is already in flight for the same conversation."""

    status_code = 409
    code = "conversation_busy"


class InvalidToolOutputError(AgentServiceError):
    """Raised when a model-backed tool gets a response that does not match its output shape."""

    status_code = 502
    code = "invalid_tool_output"


class ModelUnavailableError(AgentServiceError):
    """Raised when the chat model is unreachable, times out, or returns an error."""

    status_code = 503
    code = "model_unavailable"


class NotConfiguredError(ModelUnavailableError):
    """Raised before any network call when no chat model credential is configured."""

    code = "model_not_configured"


class UnauthenticatedError(AgentServiceError):
    """Raised when the upstream auth layer did not supply a usable identity."""

    status_code = 401
    code = "unauthenticated"
