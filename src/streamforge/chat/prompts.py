"""Prompt templates and model/provider tag helpers."""

import re
from typing import Any, Dict, Iterable, Optional, Tuple

from streamforge.chat.models import ChatMode, Message, MessageRole
from streamforge.utils.logger import logger

MODEL_REGEX = re.compile(r"^\[Model: (.*?)\]\n\n")
PROVIDER_REGEX = re.compile(r"\[Provider: (.*?)\]\n\n")

CONTINUE_PROMPT = (
    "Continue your prior response. IMPORTANT: Immediately begin from where you left off "
    "without any interruptions. Do not repeat any content, including artifact and action tags."
)

SUMMARY_PROMPT = """You are a software engineer summarizing a conversation between a user and an AI coding assistant.

Write a concise summary of the conversation so far. Cover:
- what the user is building and the current state of the project
- decisions that were made and constraints that were stated
- the user's most recent request and anything still unresolved

Respond with the summary only, no preamble."""

SELECTION_PROMPT = """You are selecting which project files an AI coding assistant needs to answer the next request.

Conversation summary:
---
{summary}
---

Available files:
{file_paths}

Pick at most {max_files} files that are relevant to the user's latest request.
Respond ONLY with this block, one includeFile tag per selected file:

<updateContextBuffer>
    <includeFile path="path/to/file"/>
</updateContextBuffer>"""

_MODE_INSTRUCTIONS = {
    ChatMode.BUILD: (
        "You are an expert AI assistant and senior software developer. "
        "You build and modify the user's project. Produce complete, working code "
        "and describe the file changes you make."
    ),
    ChatMode.DISCUSS: (
        "You are an expert technical advisor. Discuss the user's project, answer questions "
        "and propose plans. Do not write or modify project files in this mode."
    ),
}

DEFAULT_PROMPT_ID = "default"

# Extra guidance per client-selected prompt variant (promptId)
PROMPT_VARIANTS: Dict[str, str] = {
    DEFAULT_PROMPT_ID: "",
    "optimized": (
        "Keep responses compact: skip restating the request, show only the files you change "
        "and keep explanations to a few sentences."
    ),
}


def extract_model_and_provider(content: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Read the `[Model: x]` / `[Provider: y]` tags from a user message.

    Returns:
        (model, provider); either is None when the tag is missing
    """
    model_match = MODEL_REGEX.search(content)
    provider_match = PROVIDER_REGEX.search(content)
    model = model_match.group(1) if model_match else None
    provider = provider_match.group(1) if provider_match else None
    return model, provider


def strip_model_tags(content: str) -> str:
    content = MODEL_REGEX.sub("", content, count=1)
    return PROVIDER_REGEX.sub("", content, count=1)


def last_user_model_and_provider(messages: Iterable[Message]) -> Tuple[Optional[str], Optional[str]]:
    for message in reversed(list(messages)):
        if message.role == MessageRole.USER:
            return extract_model_and_provider(message.content)
    return None, None


def tag_with_model(text: str, model: Optional[str], provider: Optional[str]) -> str:
    prefix = ""
    if model:
        prefix += f"[Model: {model}]\n\n"
    if provider:
        prefix += f"[Provider: {provider}]\n\n"
    return prefix + text


def build_continuation_message(model: Optional[str], provider: Optional[str]) -> Message:
    """Synthetic user message asking the model to resume a truncated reply on the same backend."""
    return Message(role=MessageRole.USER, content=tag_with_model(CONTINUE_PROMPT, model, provider))


def format_files(files: Dict[str, str]) -> str:
    blocks = [f'<file path="{path}">\n{content}\n</file>' for path, content in files.items()]
    return "\n\n".join(blocks)


def get_system_prompt(
    chat_mode: ChatMode,
    files: Optional[Dict[str, str]] = None,
    summary: Optional[str] = None,
    design_scheme: Optional[Dict[str, Any]] = None,
    prompt_id: Optional[str] = None,
) -> str:
    """
    Assemble the system prompt for the response call.

    Args:
        chat_mode: discuss or build
        files: Files to embed (the filtered subset when context optimization ran)
        summary: Conversation summary replacing older history
        design_scheme: Optional design/theme hints from the client
        prompt_id: Client-selected prompt variant; unknown ids fall back to the default
    """
    sections = [_MODE_INSTRUCTIONS[chat_mode]]

    variant = PROMPT_VARIANTS.get(prompt_id or DEFAULT_PROMPT_ID)
    if variant is None:
        logger.warning(f"Unknown promptId '{prompt_id}'; using the default prompt")
        variant = PROMPT_VARIANTS[DEFAULT_PROMPT_ID]
    if variant:
        sections.append(variant)

    if design_scheme:
        hints = "\n".join(f"- {key}: {value}" for key, value in design_scheme.items())
        sections.append(f"Follow these design preferences:\n{hints}")

    if summary:
        sections.append(f"Summary of the conversation so far:\n---\n{summary}\n---")

    if files:
        sections.append(f"Project files currently in context:\n{format_files(files)}")

    return "\n\n".join(sections)
