"""Table-driven tests for the error classifier."""

import asyncio

import pytest

from streamforge.chat.error_classifier import ERROR_TAXONOMY, ErrorKind, classify
from streamforge.chat.models import FieldError
from streamforge.exceptions import (
    MalformedResponseError,
    ProviderError,
    RequestValidationError,
    SegmentCapExceededError,
    StreamTimeoutError,
)


class StatusError(Exception):
    """Stand-in for an SDK error carrying only an HTTP status."""

    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


class ResponseError(Exception):
    """Stand-in for an SDK error whose status lives on .response."""

    def __init__(self, message, status_code):
        super().__init__(message)
        self.response = type("Response", (), {"status_code": status_code})()


CASES = [
    # (error, kind, status, retryable)
    (RequestValidationError([FieldError("chatMode", "bad mode")]), ErrorKind.VALIDATION, 400, False),
    (SegmentCapExceededError("Cannot continue message: Maximum segments reached"),
     ErrorKind.SEGMENT_CAP_EXCEEDED, 500, False),
    (StreamTimeoutError("stalled"), ErrorKind.TIMEOUT, 408, True),
    (asyncio.TimeoutError(), ErrorKind.TIMEOUT, 408, True),
    (MalformedResponseError("missing block"), ErrorKind.MALFORMED_RESPONSE, 400, False),
    (Exception("Invalid API key provided"), ErrorKind.AUTH, 401, False),
    (Exception("401 Unauthorized"), ErrorKind.AUTH, 401, False),
    (Exception("Authentication failed"), ErrorKind.AUTH, 401, False),
    (Exception("Payment Required"), ErrorKind.PAYMENT_REQUIRED, 402, False),
    (Exception("Error code: 402"), ErrorKind.PAYMENT_REQUIRED, 402, False),
    (Exception("insufficient funds on account"), ErrorKind.PAYMENT_REQUIRED, 402, False),
    (Exception("Billing hard limit reached"), ErrorKind.PAYMENT_REQUIRED, 402, False),
    (Exception("You exceeded your current quota exceeded"), ErrorKind.PAYMENT_REQUIRED, 402, False),
    (Exception("Rate limit reached for requests"), ErrorKind.RATE_LIMITED, 429, True),
    (Exception("Error code: 429"), ErrorKind.RATE_LIMITED, 429, True),
    (Exception("Request timeout"), ErrorKind.TIMEOUT, 408, True),
    (Exception("Network is unreachable"), ErrorKind.NETWORK, 503, True),
    (Exception("fetch failed"), ErrorKind.NETWORK, 503, True),
    (Exception("Invalid JSON response"), ErrorKind.MALFORMED_RESPONSE, 400, False),
    (Exception("Could not parse response"), ErrorKind.MALFORMED_RESPONSE, 400, False),
    (StatusError("denied", 403), ErrorKind.AUTH, 401, False),
    (StatusError("busy", 429), ErrorKind.RATE_LIMITED, 429, True),
    (StatusError("bad gateway", 502), ErrorKind.NETWORK, 503, True),
    (ResponseError("gateway", 504), ErrorKind.TIMEOUT, 408, True),
    (StatusError("teapot", 418), ErrorKind.UNKNOWN, 500, True),
    (Exception("something odd"), ErrorKind.UNKNOWN, 500, True),
    (ValueError(""), ErrorKind.UNKNOWN, 500, True),
]


class TestClassify:
    """Tests for classify()."""

    @pytest.mark.parametrize("error,kind,status,retryable", CASES)
    def test_classification_table(self, error, kind, status, retryable):
        classified = classify(error)

        assert classified.kind == kind
        assert classified.http_status == status
        assert classified.retryable is retryable

    @pytest.mark.parametrize("kind", list(ErrorKind))
    def test_taxonomy_covers_every_kind(self, kind):
        assert kind in ERROR_TAXONOMY

    def test_matching_is_case_insensitive(self):
        assert classify(Exception("RATE LIMIT")).kind == ErrorKind.RATE_LIMITED

    def test_validation_message_keeps_details(self):
        classified = classify(RequestValidationError([FieldError("messages", "messages must be a non-empty array")]))

        assert classified.message == "Invalid request: messages must be a non-empty array"

    def test_unknown_message_passes_through(self):
        assert classify(Exception("something odd")).message == "something odd"

    def test_friendly_message_for_missing_model(self):
        classified = classify(Exception("The model `gpt-9` does not exist or was not found"))

        assert classified.kind == ErrorKind.UNKNOWN
        assert classified.message.startswith("Invalid model selected")

    def test_provider_is_reported(self):
        classified = classify(ProviderError("Invalid API key", provider="OpenAI"))

        assert classified.provider == "OpenAI"
        assert classify(Exception("x")).provider == "unknown"

    def test_response_body_shape(self):
        body = classify(Exception("Rate limit")).to_response_body()

        assert set(body) == {"error", "kind", "message", "statusCode", "isRetryable", "provider", "timestamp"}
        assert body["error"] is True
        assert body["kind"] == "rate-limited"
        assert body["statusCode"] == 429
        assert body["isRetryable"] is True

    def test_classified_error_is_immutable(self):
        classified = classify(Exception("x"))

        with pytest.raises(AttributeError):
            classified.kind = ErrorKind.AUTH
