"""Unit tests for prompt helpers."""

import pytest

from streamforge.chat.models import ChatMode, Message, MessageRole
from streamforge.chat.prompts import (
    CONTINUE_PROMPT,
    PROMPT_VARIANTS,
    build_continuation_message,
    extract_model_and_provider,
    get_system_prompt,
    last_user_model_and_provider,
    strip_model_tags,
)

TAGGED = "[Model: gpt-4o-mini]\n\n[Provider: OpenAI]\n\nMake it blue"


class TestModelTags:
    """Tests for [Model]/[Provider] tags."""

    def test_extract(self):
        assert extract_model_and_provider(TAGGED) == ("gpt-4o-mini", "OpenAI")
        assert extract_model_and_provider("plain") == (None, None)

    def test_strip(self):
        assert strip_model_tags(TAGGED) == "Make it blue"
        assert strip_model_tags("plain") == "plain"

    def test_last_user_message_wins(self):
        messages = [
            Message(role=MessageRole.USER, content="[Model: old]\n\nhi"),
            Message(role=MessageRole.ASSISTANT, content="[Model: not-user]\n\nhello"),
            Message(role=MessageRole.USER, content="[Model: new]\n\n[Provider: AzureOpenAI]\n\nagain"),
        ]

        assert last_user_model_and_provider(messages) == ("new", "AzureOpenAI")

    def test_continuation_message(self):
        message = build_continuation_message("gpt-4o", "OpenAI")

        assert message.role == MessageRole.USER
        assert extract_model_and_provider(message.content) == ("gpt-4o", "OpenAI")
        assert strip_model_tags(message.content) == CONTINUE_PROMPT

    def test_continuation_without_tags(self):
        assert build_continuation_message(None, None).content == CONTINUE_PROMPT


class TestSystemPrompt:
    """Tests for system prompt assembly."""

    @pytest.mark.parametrize("prompt_id", [None, "default", "no-such-prompt"])
    def test_default_variant_adds_nothing(self, prompt_id):
        assert get_system_prompt(ChatMode.BUILD, prompt_id=prompt_id) == get_system_prompt(ChatMode.BUILD)

    def test_optimized_variant_adds_guidance(self):
        prompt = get_system_prompt(ChatMode.BUILD, prompt_id="optimized")

        assert PROMPT_VARIANTS["optimized"] in prompt
        assert prompt.startswith(get_system_prompt(ChatMode.BUILD))

    def test_modes_differ(self):
        assert get_system_prompt(ChatMode.BUILD) != get_system_prompt(ChatMode.DISCUSS)

    def test_includes_summary_files_and_design(self):
        prompt = get_system_prompt(
            ChatMode.BUILD,
            files={"src/app.py": "print('x')"},
            summary="Todo app in progress",
            design_scheme={"palette": "dark"},
        )

        assert '<file path="src/app.py">' in prompt
        assert "Todo app in progress" in prompt
        assert "palette: dark" in prompt
