"""Structured logging helpers for request analytics."""

import contextvars
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from streamforge.config.settings import settings
from streamforge.utils.logger import logger

# Context variable for correlation ID
_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "correlation_id", default=None
)


def generate_correlation_id() -> str:
    """
    Generate a unique correlation ID for request tracking.

    Returns:
        Unique correlation ID string (e.g., "req-abc123")
    """
    return f"req-{uuid.uuid4().hex[:8]}"


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID from context."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID in the current context."""
    _correlation_id.set(correlation_id)


class CorrelationContext:
    """Context manager for correlation ID tracking."""

    def __init__(self, correlation_id: Optional[str] = None):
        """
        Initialize correlation context.

        Args:
            correlation_id: Optional correlation ID. If None, generates a new one.
        """
        self.correlation_id = correlation_id or generate_correlation_id()
        self._token = None

    def __enter__(self):
        self._token = _correlation_id.set(self.correlation_id)
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token:
            try:
                _correlation_id.reset(self._token)
            except ValueError:
                # Token belongs to another context (the streaming body runs in its own task)
                pass


def _log_structured_event(
    event_type: str,
    level: str = "INFO",
    message: Optional[str] = None,
    **kwargs: Any
) -> None:
    """
    Log a structured event with consistent format.

    Args:
        event_type: Type of event (e.g., "chat_request", "segment")
        level: Log level (INFO, DEBUG, WARNING, ERROR)
        message: Optional message to log
        **kwargs: Additional fields to include in the log
    """
    correlation_id = get_correlation_id()

    now = datetime.now()
    log_data = {
        "event_type": event_type,
        "timestamp_iso": now.isoformat(),
        "timestamp_unix": now.timestamp(),
        "date": now.strftime("%Y-%m-%d"),
        "hour": now.strftime("%H"),
        **kwargs
    }

    if correlation_id and settings.ENABLE_CORRELATION_IDS:
        log_data["correlation_id"] = correlation_id

    bound_logger = logger.bind(**log_data)
    log_func = getattr(bound_logger, level.lower())
    log_func(message or f"{event_type} event")


def log_chat_request(
    chat_mode: str,
    message_count: int,
    file_count: int,
    context_optimization: bool,
    **kwargs: Any
) -> str:
    """
    Log an incoming chat request.

    Returns:
        Correlation ID for this request
    """
    correlation_id = get_correlation_id() or generate_correlation_id()
    if not get_correlation_id():
        set_correlation_id(correlation_id)

    _log_structured_event(
        event_type="chat_request",
        chat_mode=chat_mode,
        message_count=message_count,
        file_count=file_count,
        context_optimization=context_optimization,
        **kwargs
    )
    return correlation_id


def log_chat_response(
    latency_ms: int,
    prompt_tokens: int,
    completion_tokens: int,
    total_tokens: int,
    segments: int,
    success: bool = True,
    error_kind: Optional[str] = None,
    **kwargs: Any
) -> None:
    """Log the outcome of a chat request with aggregate usage."""
    _log_structured_event(
        event_type="chat_response",
        level="INFO" if success else "WARNING",
        latency_ms=latency_ms,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total_tokens,
        segments=segments,
        success=success,
        error_kind=error_kind,
        **kwargs
    )


def log_llm_call(
    purpose: str,
    provider: str,
    prompt_tokens: int,
    completion_tokens: int,
    total_tokens: int,
    latency_ms: int,
    **kwargs: Any
) -> None:
    """
    Log a single non-streaming provider call.

    Args:
        purpose: What the call was for ("summary", "context")
        provider: Provider name
        prompt_tokens: Number of prompt tokens
        completion_tokens: Number of completion tokens
        total_tokens: Total tokens used
        latency_ms: Latency in milliseconds
        **kwargs: Additional fields to include
    """
    _log_structured_event(
        event_type="llm_call",
        purpose=purpose,
        provider=provider,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total_tokens,
        latency_ms=latency_ms,
        **kwargs
    )


def log_segment(
    index: int,
    finish_reason: Optional[str],
    text_length: int,
    steps: int,
    prompt_tokens: int,
    completion_tokens: int,
    total_tokens: int,
    **kwargs: Any
) -> None:
    """Log a completed streaming segment."""
    _log_structured_event(
        event_type="segment",
        index=index,
        finish_reason=finish_reason,
        text_length=text_length,
        steps=steps,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total_tokens,
        **kwargs
    )


def log_tool_call(
    tool_name: str,
    tool_call_id: str,
    success: bool,
    execution_time_ms: int,
    error_message: Optional[str] = None,
    **kwargs: Any
) -> None:
    """Log a tool invocation made on behalf of the model."""
    _log_structured_event(
        event_type="tool_call",
        level="INFO" if success else "WARNING",
        tool_name=tool_name,
        tool_call_id=tool_call_id,
        success=success,
        execution_time_ms=execution_time_ms,
        error_message=error_message,
        **kwargs
    )


def log_stream_stall(
    attempt: int,
    max_retries: int,
    idle_seconds: float,
    exhausted: bool,
    **kwargs: Any
) -> None:
    """Log a stall reported by the stream watchdog."""
    _log_structured_event(
        event_type="stream_stall",
        level="WARNING",
        attempt=attempt,
        max_retries=max_retries,
        idle_seconds=round(idle_seconds, 3),
        exhausted=exhausted,
        **kwargs
    )


def log_context_selection(
    available_files: int,
    selected_files: List[str],
    summary_length: int,
    **kwargs: Any
) -> None:
    """Log the outcome of context optimization."""
    _log_structured_event(
        event_type="context_selection",
        available_files=available_files,
        selected_files=selected_files,
        selected_count=len(selected_files),
        summary_length=summary_length,
        **kwargs
    )


def log_error(
    error_type: str,
    error_message: str,
    context: Optional[Dict[str, Any]] = None,
    **kwargs: Any
) -> None:
    """
    Log a structured error event.

    Args:
        error_type: Classified error kind (e.g., "rate-limited", "timeout")
        error_message: Error message
        context: Additional context about the error
        **kwargs: Additional fields to include
    """
    _log_structured_event(
        event_type="error",
        level="ERROR",
        error_type=error_type,
        error_message=error_message,
        context=context,
        **kwargs
    )
