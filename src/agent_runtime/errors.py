"""
Error types raised by the runtime.

Tool failures are not exceptions: they come back as ToolResult(is_error=True)
and are fed to the model like any other result.
"""


class AgentRuntimeError(Exception):
    """Base class for runtime errors."""


class ProviderError(AgentRuntimeError):
    """A model provider call failed (network, HTTP status, API error)."""

    def __init__(self, message: str, provider: str = "", status_code: int | None = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class RateLimitedError(ProviderError):
    """The provider rejected the call for rate limiting; retry after backoff."""


class SessionDecodeError(AgentRuntimeError):
    """A persisted session could not be decoded."""


class CompactionError(AgentRuntimeError):
    """Summarization of older turns failed."""
