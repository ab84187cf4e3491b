"""LangChain chat-model adapter producing ProviderEvents."""

import uuid
from typing import Any, AsyncIterator, Dict, List, Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    AIMessageChunk,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from streamforge.chat.models import (
    FinishReason,
    Message,
    MessageRole,
    ProviderEvent,
    ToolCall,
    UsageTotals,
)
from streamforge.chat.prompts import strip_model_tags
from streamforge.exceptions import ProviderError, ProviderStreamError
from streamforge.providers.base import CompletionResult, StreamOptions
from streamforge.telemetry.usage import UsageAccumulator
from streamforge.utils.logger import logger


def _content_text(content: Any) -> str:
    """Text of a message chunk; content may be a string or a list of blocks."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return ""


def _usage_of(message: BaseMessage) -> UsageTotals:
    return UsageAccumulator.extract_usage_from_response_metadata(
        {**(message.response_metadata or {}), "usage_metadata": getattr(message, "usage_metadata", None)}
    )


def to_langchain_messages(messages: List[Message], system_prompt: str = "") -> List[BaseMessage]:
    """
    Convert pipeline messages to LangChain messages.

    Model/provider tags are stripped from user messages; tool messages
    carry their tool call id in Message.id.
    """
    converted: List[BaseMessage] = []
    if system_prompt:
        converted.append(SystemMessage(content=system_prompt))

    for message in messages:
        if message.role == MessageRole.USER:
            converted.append(HumanMessage(content=strip_model_tags(message.content)))
        elif message.role == MessageRole.ASSISTANT:
            tool_calls = [
                {"name": call.name, "args": call.arguments, "id": call.id}
                for call in message.tool_calls
            ]
            converted.append(AIMessage(content=message.content, tool_calls=tool_calls))
        elif message.role == MessageRole.TOOL:
            converted.append(ToolMessage(content=message.content, tool_call_id=message.id or ""))
        else:
            converted.append(SystemMessage(content=message.content))
    return converted


class LangChainProvider:
    """Drives any LangChain BaseChatModel as a ChatProvider."""

    def __init__(self, model: BaseChatModel, name: str = "unknown"):
        self.model = model
        self.name = name

    async def stream(self, messages: List[Message], options: StreamOptions) -> AsyncIterator[ProviderEvent]:
        """
        Stream one provider call.

        Text and reasoning deltas are yielded as they arrive; tool calls
        are yielded once their arguments are complete, followed by a single
        FINISH event. Provider exceptions become an ERROR event.
        """
        runnable = self.model
        if options.tools:
            runnable = self.model.bind_tools(options.tools, tool_choice=options.tool_choice)

        lc_messages = to_langchain_messages(messages, options.system_prompt)
        logger.debug(f"Streaming from {self.name} with {len(lc_messages)} messages, {len(options.tools)} tools")

        aggregate: Optional[AIMessageChunk] = None
        finish_reason: Optional[str] = None
        try:
            async for chunk in runnable.astream(lc_messages):
                aggregate = chunk if aggregate is None else aggregate + chunk

                reasoning = (chunk.additional_kwargs or {}).get("reasoning_content")
                if reasoning:
                    yield ProviderEvent.reasoning_delta(reasoning)

                text = _content_text(chunk.content)
                if text:
                    yield ProviderEvent.text_delta(text)

                reason = (chunk.response_metadata or {}).get("finish_reason")
                if reason:
                    finish_reason = reason
        except Exception as e:
            logger.error(f"Provider stream from {self.name} failed: {e}")
            yield ProviderEvent.failure(
                ProviderStreamError(str(e), provider=self.name, status_code=getattr(e, "status_code", None))
            )
            return

        tool_calls = aggregate.tool_calls if aggregate is not None else []
        for call in tool_calls:
            yield ProviderEvent.tool(
                ToolCall(
                    id=call.get("id") or f"call_{uuid.uuid4().hex[:12]}",
                    name=call["name"],
                    arguments=call.get("args") or {},
                )
            )

        reason = FinishReason.from_provider(finish_reason)
        if tool_calls and finish_reason is None:
            reason = FinishReason.TOOL_CALLS
        usage = _usage_of(aggregate) if aggregate is not None else UsageTotals()
        yield ProviderEvent.finish(reason, usage)

    async def complete(self, messages: List[Message], system_prompt: str = "") -> CompletionResult:
        """Single non-streaming call."""
        lc_messages = to_langchain_messages(messages, system_prompt)
        try:
            response = await self.model.ainvoke(lc_messages)
        except Exception as e:
            logger.error(f"Provider call to {self.name} failed: {e}")
            raise ProviderError(str(e), provider=self.name, status_code=getattr(e, "status_code", None)) from e

        metadata: Dict[str, Any] = response.response_metadata or {}
        return CompletionResult(
            text=_content_text(response.content),
            usage=_usage_of(response),
            finish_reason=FinishReason.from_provider(metadata.get("finish_reason")),
        )
