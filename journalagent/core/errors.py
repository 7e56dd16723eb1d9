"""Project error hierarchy."""


class JournalAgentError(Exception):
    """Base error."""

    code = "journalagent_error"
    status_code = 500


class ConfigurationError(JournalAgentError):
    """Raised when required configuration (e.g. completion credential) is missing."""

    code = "missing_llm_credential"
    status_code = 400


class RequestValidationError(JournalAgentError):
    """Raised when the inbound request body is malformed."""

    code = "invalid_request"
    status_code = 400


class UpstreamLLMError(JournalAgentError):
    """Raised when the completion service call fails."""

    code = "upstream_llm_error"
    status_code = 502


class GatewayError(JournalAgentError):
    """Raised when the remote tool gateway cannot be reached or answers badly."""

    code = "gateway_error"
    status_code = 502


class StaleSessionError(GatewayError):
    """Raised when the gateway rejects a call because its session id expired."""

    code = "gateway_session_stale"


class DuplicateToolError(JournalAgentError):
    """Raised when a remote tool schema reuses the name of a local tool."""

    code = "duplicate_tool_name"


class IdentityLeakError(JournalAgentError):
    """Raised when a response mentions an identity other than the caller's."""

    code = "security_violation"
    status_code = 403


class StoreError(JournalAgentError):
    """Raised when the entity store rejects or cannot serve a query."""

    code = "store_error"
