"""Transport and payload validation for chat requests."""

import json
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from streamforge.chat.models import (
    ChatMode,
    ChatRequest,
    FieldError,
    Message,
    MessageRole,
    ValidationResult,
)
from streamforge.config.settings import settings
from streamforge.utils.logger import logger

STATE_CHANGING_METHODS = ("POST", "PUT", "PATCH")

MESSAGES_ERROR = "messages must be a non-empty array"
CHAT_MODE_ERROR = 'chatMode must be "discuss" or "build"'
INVALID_JSON_ERROR = "Invalid JSON in request body"


class MessagePayload(BaseModel):
    """A message as sent by the client."""

    model_config = ConfigDict(extra="ignore")

    role: Literal["user", "assistant", "system", "tool"]
    content: Union[str, List[Dict[str, Any]]] = ""
    id: Optional[str] = None

    @field_validator("content")
    @classmethod
    def join_content_parts(cls, value):
        """Multi-part content is flattened to its text parts."""
        if isinstance(value, list):
            return "".join(part.get("text", "") for part in value if part.get("type") == "text")
        return value


class ChatRequestPayload(BaseModel):
    """Body of POST /chat."""

    model_config = ConfigDict(extra="ignore")

    messages: List[MessagePayload] = Field(..., min_length=1)
    files: Dict[str, Any] = Field(default_factory=dict)
    chatMode: Literal["discuss", "build"]
    contextOptimization: bool = False
    maxLLMSteps: int = Field(default_factory=lambda: settings.DEFAULT_MAX_LLM_STEPS, ge=1)
    maxSegments: Optional[int] = Field(default=None, ge=1)
    promptId: Optional[str] = None
    designScheme: Optional[Dict[str, Any]] = None

    @field_validator("files", mode="before")
    @classmethod
    def default_files(cls, value):
        return value if value is not None else {}


def normalize_files(files: Mapping[str, Any]) -> Dict[str, str]:
    """
    Flatten a client file map to path -> text content.

    Values may be plain strings or `{type: "file", content, isBinary}`
    objects; folders and binary files are dropped.
    """
    normalized: Dict[str, str] = {}
    for path, entry in files.items():
        if isinstance(entry, str):
            normalized[path] = entry
        elif isinstance(entry, dict) and entry.get("type") == "file" and not entry.get("isBinary"):
            normalized[path] = entry.get("content") or ""
    return normalized


def parse_json_body(raw: Union[bytes, str]) -> Tuple[Any, Optional[FieldError]]:
    """
    Parse a raw request body.

    Returns:
        (body, None) on success, (None, FieldError) when the body is not JSON
    """
    if not raw:
        return None, FieldError("body", INVALID_JSON_ERROR)
    try:
        return json.loads(raw), None
    except (ValueError, UnicodeDecodeError) as e:
        logger.debug(f"Request body is not valid JSON: {e}")
        return None, FieldError("body", INVALID_JSON_ERROR)


def _field_errors(error: ValidationError) -> List[FieldError]:
    errors: List[FieldError] = []
    seen = set()
    for item in error.errors():
        loc = item.get("loc") or ("body",)
        field = str(loc[0])
        if field == "messages":
            message = MESSAGES_ERROR
        elif field == "chatMode":
            message = CHAT_MODE_ERROR
        else:
            message = f"{'.'.join(str(part) for part in loc)}: {item.get('msg')}"
        if (field, message) in seen:
            continue
        seen.add((field, message))
        errors.append(FieldError(field, message))
    return errors


class RequestValidator:
    """
    Check a chat request before any expensive work starts.

    validate() never raises and makes no provider calls; every problem
    comes back as a FieldError.
    """

    def __init__(self, client_header: str = None):
        self.client_header = client_header or settings.CLIENT_HEADER

    def validate(
        self,
        method: str,
        headers: Mapping[str, str],
        body: Any,
        parse_error: Optional[FieldError] = None,
    ) -> ValidationResult:
        """
        Validate transport headers and the parsed body.

        Args:
            method: HTTP method
            headers: Request headers (looked up case-insensitively)
            body: Parsed JSON body
            parse_error: Set when the raw body could not be parsed

        Returns:
            ValidationResult carrying either field errors or a ChatRequest
        """
        lowered = {str(key).lower(): value for key, value in headers.items()}
        errors: List[FieldError] = []

        if method.upper() in STATE_CHANGING_METHODS:
            content_type = lowered.get("content-type", "")
            if "application/json" not in content_type.lower():
                errors.append(FieldError("content-type", "Content-Type must be application/json"))

        client_value = lowered.get(self.client_header.lower(), "")
        if not client_value or not client_value.strip():
            errors.append(FieldError(self.client_header.lower(), f"{self.client_header} header is required"))

        if parse_error is not None:
            errors.append(parse_error)
            return self._result(errors)

        if not isinstance(body, dict):
            errors.append(FieldError("body", "Request body must be a JSON object"))
            return self._result(errors)

        try:
            payload = ChatRequestPayload.model_validate(body)
        except ValidationError as e:
            errors.extend(_field_errors(e))
            return self._result(errors)

        if errors:
            return self._result(errors)

        request = ChatRequest(
            messages=[
                Message(role=MessageRole(message.role), content=message.content, id=message.id)
                for message in payload.messages
            ],
            files=normalize_files(payload.files),
            chat_mode=ChatMode(payload.chatMode),
            context_optimization=payload.contextOptimization,
            max_llm_steps=payload.maxLLMSteps,
            max_segments=payload.maxSegments,
            prompt_id=payload.promptId,
            design_scheme=payload.designScheme,
        )
        return ValidationResult(request=request)

    def _result(self, errors: List[FieldError]) -> ValidationResult:
        logger.warning(f"Request validation failed: {[error.message for error in errors]}")
        return ValidationResult(errors=errors)
