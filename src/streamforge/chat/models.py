"""Data models for the chat streaming pipeline."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ChatMode(str, Enum):
    """How the assistant should behave for a request."""
    DISCUSS = "discuss"
    BUILD = "build"

    def __str__(self) -> str:
        return self.value


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class FinishReason(str, Enum):
    """Why a provider call stopped producing output."""
    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool-calls"
    ERROR = "error"

    @classmethod
    def from_provider(cls, value: Optional[str]) -> "FinishReason":
        """
        Normalize a provider-native finish reason.

        Providers disagree on naming ("length" vs "max_tokens", "tool_calls"
        vs "tool_use"). Anything unrecognised counts as a natural stop.
        """
        if value is None:
            return cls.STOP
        normalized = str(value).lower().replace("-", "_")
        if normalized in ("length", "max_tokens", "max_output_tokens"):
            return cls.LENGTH
        if normalized in ("tool_calls", "tool_use", "function_call"):
            return cls.TOOL_CALLS
        if normalized == "error":
            return cls.ERROR
        return cls.STOP


class ProgressStatus(str, Enum):
    IN_PROGRESS = "in-progress"
    COMPLETE = "complete"


@dataclass
class ToolCall:
    """A structured tool invocation issued by the model."""
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_annotation(self) -> Dict[str, Any]:
        return {
            "type": "toolCall",
            "toolCallId": self.id,
            "toolName": self.name,
            "args": self.arguments,
        }


@dataclass
class ToolResult:
    """The outcome of a tool invocation, paired with its call by id."""
    tool_call_id: str
    result: Any
    tool_name: str = ""
    is_error: bool = False

    def to_annotation(self) -> Dict[str, Any]:
        return {
            "type": "toolResult",
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "result": self.result,
            "isError": self.is_error,
        }


@dataclass
class Message:
    """
    A single conversation message.

    Attributes:
        role: Who authored the message
        content: Textual content
        id: Optional client-supplied identifier (tool messages carry the tool call id)
        tool_calls: Tool calls issued in an assistant message
    """
    role: MessageRole
    content: str
    id: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)


@dataclass
class ChatRequest:
    """A validated chat request."""
    messages: List[Message]
    files: Dict[str, str] = field(default_factory=dict)
    chat_mode: ChatMode = ChatMode.BUILD
    context_optimization: bool = False
    max_llm_steps: int = 10
    max_segments: Optional[int] = None
    prompt_id: Optional[str] = None
    design_scheme: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class UsageTotals:
    """Token counters reported by a provider (or summed across calls)."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "UsageTotals") -> "UsageTotals":
        return UsageTotals(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    def to_wire(self) -> Dict[str, int]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass
class StreamSegment:
    """One provider call's worth of output (possibly spanning several tool steps)."""
    index: int
    text: str = ""
    finish_reason: Optional[FinishReason] = None
    usage: UsageTotals = field(default_factory=UsageTotals)
    steps: int = 0
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_results: List[ToolResult] = field(default_factory=list)

    @property
    def is_resolved(self) -> bool:
        """Every tool call has exactly one matching result."""
        result_ids = [result.tool_call_id for result in self.tool_results]
        return sorted(result_ids) == sorted(call.id for call in self.tool_calls)


@dataclass(frozen=True)
class ProgressEvent:
    """Narrates a pipeline phase to the client."""
    label: str
    status: ProgressStatus
    order: int
    message: str

    def to_annotation(self) -> Dict[str, Any]:
        return {
            "type": "progress",
            "label": self.label,
            "status": self.status.value,
            "order": self.order,
            "message": self.message,
        }


@dataclass
class ContextAnnotation:
    """Files selected for the prompt and, when summarization ran, the summary."""
    files: List[str] = field(default_factory=list)
    summary: Optional[str] = None
    chat_id: Optional[str] = None

    def to_annotation(self) -> Dict[str, Any]:
        annotation: Dict[str, Any] = {"type": "codeContext", "files": self.files}
        if self.summary is not None:
            annotation["summary"] = self.summary
            annotation["chatId"] = self.chat_id
        return annotation


@dataclass
class ContextResult:
    """Output of context building; empty when optimization was skipped."""
    filtered_files: Optional[Dict[str, str]] = None
    summary: Optional[str] = None


@dataclass(frozen=True)
class FieldError:
    """A single field-level validation failure."""
    field: str
    message: str


@dataclass
class ValidationResult:
    """Outcome of request validation; never raised, always returned."""
    errors: List[FieldError] = field(default_factory=list)
    request: Optional[ChatRequest] = None

    @property
    def is_valid(self) -> bool:
        return not self.errors


class ProviderEventType(str, Enum):
    TEXT = "text"
    REASONING = "reasoning"
    TOOL_CALL = "tool-call"
    FINISH = "finish"
    ERROR = "error"


@dataclass
class ProviderEvent:
    """One event pulled from a provider stream."""
    type: ProviderEventType
    text: str = ""
    tool_call: Optional[ToolCall] = None
    finish_reason: Optional[FinishReason] = None
    usage: Optional[UsageTotals] = None
    error: Optional[BaseException] = None

    @classmethod
    def text_delta(cls, text: str) -> "ProviderEvent":
        return cls(type=ProviderEventType.TEXT, text=text)

    @classmethod
    def reasoning_delta(cls, text: str) -> "ProviderEvent":
        return cls(type=ProviderEventType.REASONING, text=text)

    @classmethod
    def tool(cls, call: ToolCall) -> "ProviderEvent":
        return cls(type=ProviderEventType.TOOL_CALL, tool_call=call)

    @classmethod
    def finish(cls, reason: FinishReason, usage: Optional[UsageTotals] = None) -> "ProviderEvent":
        return cls(type=ProviderEventType.FINISH, finish_reason=reason, usage=usage)

    @classmethod
    def failure(cls, error: BaseException) -> "ProviderEvent":
        return cls(type=ProviderEventType.ERROR, error=error)


@dataclass
class Credentials:
    """Per-request provider credentials parsed from cookies."""
    api_keys: Dict[str, str] = field(default_factory=dict)
    provider_settings: Dict[str, Dict[str, Any]] = field(default_factory=dict)
