"""Shared pytest fixtures for all tests."""

import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from streamforge.chat.models import (
    ChatMode,
    ChatRequest,
    FinishReason,
    Message,
    MessageRole,
    ProviderEvent,
    UsageTotals,
)
from streamforge.chat.stream_parts import ANNOTATION_TAG, DataStreamPart
from streamforge.config.settings import Settings
from streamforge.providers.base import CompletionResult


class FastSettings(Settings):
    """Settings with short timeouts so tests never wait long."""

    MAX_RESPONSE_SEGMENTS = 3
    DEFAULT_MAX_LLM_STEPS = 5
    STREAM_STALL_TIMEOUT_SECONDS = 5.0
    STREAM_STALL_MAX_RETRIES = 2
    TOOL_TIMEOUT_SECONDS = 1.0
    CONTEXT_MAX_FILES = 5
    CONTEXT_RECENT_MESSAGES = 3
    WORK_DIR = "/home/project"
    CLIENT_HEADER = "User-Agent"


class ScriptedProvider:
    """
    Provider stub that replays scripted event lists and records every call.

    Each stream() call replays the next script; once the scripts run out the
    last one is replayed again. A number inside a script means "sleep this
    many seconds" before the next event.
    """

    def __init__(
        self,
        scripts: Optional[List[List[Any]]] = None,
        completions: Optional[List[Any]] = None,
        name: str = "stub",
    ):
        self.scripts = scripts or [[ProviderEvent.finish(FinishReason.STOP)]]
        self.completions = list(completions or [])
        self.name = name
        self.stream_calls: List[Any] = []
        self.complete_calls: List[Any] = []

    async def stream(self, messages, options):
        self.stream_calls.append((list(messages), options))
        script = self.scripts[min(len(self.stream_calls), len(self.scripts)) - 1]
        for item in script:
            if isinstance(item, (int, float)):
                await asyncio.sleep(item)
                continue
            await asyncio.sleep(0)
            yield item

    async def complete(self, messages, system_prompt=""):
        self.complete_calls.append((list(messages), system_prompt))
        result = self.completions.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


@pytest.fixture
def test_settings():
    """Settings instance with fast timeouts."""
    return FastSettings()


@pytest.fixture
def make_provider():
    """Factory for scripted providers."""
    return ScriptedProvider


@pytest.fixture
def usage_of():
    """Build a UsageTotals from three ints."""
    return lambda p, c, t: UsageTotals(prompt_tokens=p, completion_tokens=c, total_tokens=t)


@pytest.fixture
def completion():
    """Build a CompletionResult with usage."""
    def _completion(text: str, prompt_tokens: int = 0, completion_tokens: int = 0) -> CompletionResult:
        return CompletionResult(
            text=text,
            usage=UsageTotals(prompt_tokens, completion_tokens, prompt_tokens + completion_tokens),
        )
    return _completion


@pytest.fixture
def make_request():
    """Factory for validated chat requests."""
    def _make_request(
        content: str = "Build a todo app",
        files: Optional[Dict[str, str]] = None,
        optimize: bool = False,
        history: Optional[List[Message]] = None,
        **kwargs: Any,
    ) -> ChatRequest:
        messages = list(history or []) + [Message(role=MessageRole.USER, content=content)]
        return ChatRequest(
            messages=messages,
            files=files or {},
            chat_mode=kwargs.pop("chat_mode", ChatMode.BUILD),
            context_optimization=optimize,
            **kwargs,
        )
    return _make_request


@pytest.fixture
def collect():
    """Drain an orchestrator run into a list of parts."""
    async def _collect(orchestrator, request) -> List[DataStreamPart]:
        return [part async for part in orchestrator.run(request)]
    return _collect


@pytest.fixture
def annotations():
    """Decode the annotation parts of a part list."""
    def _annotations(parts: List[DataStreamPart], kind: Optional[str] = None) -> List[Dict[str, Any]]:
        decoded = [json.loads(part.payload)[0] for part in parts if part.tag == ANNOTATION_TAG]
        if kind is not None:
            decoded = [item for item in decoded if item.get("type") == kind]
        return decoded
    return _annotations


@pytest.fixture
def chat_body():
    """Valid POST /chat body."""
    return {
        "messages": [{"role": "user", "content": "[Model: gpt-4o]\n\n[Provider: OpenAI]\n\nHello"}],
        "files": {},
        "chatMode": "build",
    }


@pytest.fixture
def chat_headers():
    """Headers every valid chat request carries."""
    return {"Content-Type": "application/json", "User-Agent": "pytest-client/1.0"}
