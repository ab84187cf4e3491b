"""Map heterogeneous failures onto a stable error taxonomy.

Upstream providers report failures in many shapes (SDK exceptions, HTTP
errors, in-stream error events), so classification is a best-effort table
of type and substring rules. New provider error strings are added to
``CLASSIFICATION_RULES`` without touching any control flow.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type

from streamforge.exceptions import (
    MalformedResponseError,
    RequestValidationError,
    SegmentCapExceededError,
    StreamTimeoutError,
)


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    AUTH = "auth"
    PAYMENT_REQUIRED = "payment-required"
    RATE_LIMITED = "rate-limited"
    TIMEOUT = "timeout"
    NETWORK = "network"
    MALFORMED_RESPONSE = "malformed-response"
    SEGMENT_CAP_EXCEEDED = "segment-cap-exceeded"
    UNKNOWN = "unknown"


# kind -> (http status, retryable, user-facing message)
ERROR_TAXONOMY: Dict[ErrorKind, Tuple[int, bool, str]] = {
    ErrorKind.VALIDATION: (400, False, "Invalid request"),
    ErrorKind.AUTH: (401, False, "Invalid or missing API key. Please check your API key configuration."),
    ErrorKind.PAYMENT_REQUIRED: (
        402,
        False,
        "Payment Required: Your account has insufficient credits or billing issues. "
        "Please check your provider account.",
    ),
    ErrorKind.RATE_LIMITED: (429, True, "API rate limit exceeded. Please try again later."),
    ErrorKind.TIMEOUT: (408, True, "Request timed out. Please try again."),
    ErrorKind.NETWORK: (503, True, "Network error. Please check your connection and try again."),
    ErrorKind.MALFORMED_RESPONSE: (
        400,
        False,
        "The AI service returned an invalid response. This may be due to an invalid model name, "
        "API rate limiting, or server issues.",
    ),
    ErrorKind.SEGMENT_CAP_EXCEEDED: (500, False, "Cannot continue message: Maximum segments reached"),
    ErrorKind.UNKNOWN: (500, True, "An unexpected error occurred"),
}

_STATUS_KINDS: Dict[int, ErrorKind] = {
    400: ErrorKind.MALFORMED_RESPONSE,
    401: ErrorKind.AUTH,
    403: ErrorKind.AUTH,
    402: ErrorKind.PAYMENT_REQUIRED,
    408: ErrorKind.TIMEOUT,
    429: ErrorKind.RATE_LIMITED,
    502: ErrorKind.NETWORK,
    503: ErrorKind.NETWORK,
    504: ErrorKind.TIMEOUT,
}


@dataclass(frozen=True)
class ClassificationRule:
    """Matches an error by exception type or by a case-insensitive substring."""
    kind: ErrorKind
    types: Tuple[Type[BaseException], ...] = ()
    patterns: Tuple[str, ...] = ()

    def matches(self, error: BaseException, message: str) -> bool:
        if self.types and isinstance(error, self.types):
            return True
        return any(pattern in message for pattern in self.patterns)


# Order matters: the first matching rule wins
CLASSIFICATION_RULES: Tuple[ClassificationRule, ...] = (
    ClassificationRule(ErrorKind.VALIDATION, types=(RequestValidationError,)),
    ClassificationRule(ErrorKind.SEGMENT_CAP_EXCEEDED, types=(SegmentCapExceededError,)),
    ClassificationRule(ErrorKind.TIMEOUT, types=(StreamTimeoutError, asyncio.TimeoutError)),
    ClassificationRule(ErrorKind.MALFORMED_RESPONSE, types=(MalformedResponseError,)),
    ClassificationRule(ErrorKind.AUTH, patterns=("api key", "unauthorized", "authentication")),
    ClassificationRule(
        ErrorKind.PAYMENT_REQUIRED,
        patterns=("payment required", "402", "insufficient funds", "billing", "quota exceeded"),
    ),
    ClassificationRule(ErrorKind.RATE_LIMITED, patterns=("rate limit", "429", "too many requests")),
    ClassificationRule(ErrorKind.TIMEOUT, patterns=("timeout", "timed out")),
    ClassificationRule(ErrorKind.NETWORK, patterns=("network", "fetch", "connection error", "econnrefused")),
    ClassificationRule(ErrorKind.MALFORMED_RESPONSE, patterns=("invalid json", "parse", "malformed")),
)


@dataclass(frozen=True)
class ClassifiedError:
    """A normalized failure: what kind, which status, and whether to retry."""
    kind: ErrorKind
    http_status: int
    message: str
    retryable: bool
    provider: str = "unknown"
    detail: str = ""
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_response_body(self) -> Dict[str, Any]:
        return {
            "error": True,
            "kind": self.kind.value,
            "message": self.message,
            "statusCode": self.http_status,
            "isRetryable": self.retryable,
            "provider": self.provider,
            "timestamp": self.timestamp,
        }

    def to_annotation(self) -> Dict[str, Any]:
        return {
            "type": "error",
            "kind": self.kind.value,
            "message": self.message,
            "statusCode": self.http_status,
            "isRetryable": self.retryable,
            "provider": self.provider,
        }


def _status_code_of(error: BaseException) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def _user_message(kind: ErrorKind, error: BaseException, raw_message: str) -> str:
    lowered = raw_message.lower()
    if kind == ErrorKind.VALIDATION:
        return raw_message
    if kind == ErrorKind.UNKNOWN:
        if "model" in lowered and "not found" in lowered:
            return "Invalid model selected. Please check that the model name is correct and available."
        if "token" in lowered and "limit" in lowered:
            return (
                "Token limit exceeded. The conversation is too long for the selected model. "
                "Try using a model with larger context window or start a new conversation."
            )
        return raw_message or ERROR_TAXONOMY[kind][2]
    return ERROR_TAXONOMY[kind][2]


def classify(error: BaseException) -> ClassifiedError:
    """
    Classify a failure into the stable taxonomy.

    Args:
        error: Any exception raised or reported while handling a request

    Returns:
        Immutable ClassifiedError with kind, status, message and retryability
    """
    raw_message = str(error)
    lowered = raw_message.lower()

    kind = next(
        (rule.kind for rule in CLASSIFICATION_RULES if rule.matches(error, lowered)),
        None,
    )
    if kind is None:
        status = _status_code_of(error)
        kind = _STATUS_KINDS.get(status, ErrorKind.UNKNOWN) if status else ErrorKind.UNKNOWN

    http_status, retryable, _ = ERROR_TAXONOMY[kind]
    return ClassifiedError(
        kind=kind,
        http_status=http_status,
        message=_user_message(kind, error, raw_message),
        retryable=retryable,
        provider=getattr(error, "provider", None) or "unknown",
        detail=raw_message,
    )
