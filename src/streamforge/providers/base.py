"""Provider protocol the pipeline drives."""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from streamforge.chat.models import FinishReason, Message, ProviderEvent, UsageTotals


@dataclass
class StreamOptions:
    """Per-call options for a streaming provider call."""
    system_prompt: str = ""
    tools: List[Dict[str, Any]] = field(default_factory=list)
    tool_choice: str = "auto"
    model: Optional[str] = None
    provider: Optional[str] = None


@dataclass
class CompletionResult:
    """Result of a single non-streaming call."""
    text: str
    usage: UsageTotals = field(default_factory=UsageTotals)
    finish_reason: FinishReason = FinishReason.STOP


class ChatProvider(Protocol):
    """
    An opaque model backend.

    stream() yields ProviderEvents and must end with exactly one FINISH
    or ERROR event. Closing the iterator early cancels the call.
    """

    name: str

    def stream(self, messages: List[Message], options: StreamOptions) -> AsyncIterator[ProviderEvent]:
        ...

    async def complete(self, messages: List[Message], system_prompt: str = "") -> CompletionResult:
        ...
