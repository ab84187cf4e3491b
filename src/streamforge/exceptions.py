"""Custom exception hierarchy for the streamforge pipeline."""

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from streamforge.chat.models import FieldError


class StreamForgeError(Exception):
    """Base exception for streamforge errors."""
    pass


class ConfigurationError(StreamForgeError):
    """Configuration errors."""
    pass


class RequestValidationError(StreamForgeError):
    """Raised when a chat request fails transport or payload validation."""

    def __init__(self, errors: List["FieldError"]):
        self.errors = errors
        details = ", ".join(error.message for error in errors) or "unknown validation failure"
        super().__init__(f"Invalid request: {details}")


class ProviderError(StreamForgeError):
    """Errors reported by an upstream model provider."""

    def __init__(self, message: str, provider: str = "unknown", status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class ProviderStreamError(ProviderError):
    """An error event received in the middle of a provider stream."""
    pass


class ContextBuildError(StreamForgeError):
    """Summary or file selection failed."""
    pass


class MalformedResponseError(StreamForgeError):
    """A provider returned a response that does not follow the expected format."""
    pass


class SegmentCapExceededError(StreamForgeError):
    """The reply was truncated more often than the segment cap allows."""
    pass


class StreamTimeoutError(StreamForgeError):
    """The provider stream stalled and the retry budget is spent."""
    pass


class ToolExecutionError(StreamForgeError):
    """A tool invocation failed."""
    pass

