"""Conversation summary and relevant-file selection."""

import posixpath
import re
import time
import uuid
from typing import Dict, List, Optional

from streamforge.chat.models import (
    ContextAnnotation,
    ContextResult,
    Message,
    MessageRole,
)
from streamforge.chat.progress import ProgressTracker
from streamforge.chat.prompts import SELECTION_PROMPT, SUMMARY_PROMPT, strip_model_tags
from streamforge.chat.stream_parts import StreamWriter
from streamforge.config.settings import Settings, settings as default_settings
from streamforge.exceptions import ContextBuildError, MalformedResponseError, ProviderError
from streamforge.providers.base import ChatProvider, CompletionResult
from streamforge.telemetry.usage import UsageAccumulator
from streamforge.utils.logger import logger
from streamforge.utils.structured_logging import log_context_selection, log_llm_call

CONTEXT_BUFFER_REGEX = re.compile(r"<updateContextBuffer>(.*?)</updateContextBuffer>", re.DOTALL)
INCLUDE_FILE_REGEX = re.compile(r'<includeFile\s+path="([^"]+)"\s*/?>')


def relative_path(path: str, work_dir: str) -> str:
    """Path relative to the work dir; paths outside it are returned unchanged."""
    prefix = work_dir.rstrip("/") + "/"
    if path.startswith(prefix):
        return path[len(prefix):]
    return path


def absolute_path(path: str, work_dir: str) -> str:
    if path.startswith("/"):
        return path
    return posixpath.join(work_dir, path)


class ContextBuilder:
    """
    Optional prompt-size reduction for one request.

    With optimization on and at least one file present, two sequential,
    non-streaming provider calls run: a conversation summary, then a file
    selection that depends on that summary. Failures surface to the caller.
    """

    def __init__(self, provider: ChatProvider, config: Settings = None):
        self.provider = provider
        self.settings = config or default_settings

    async def build(
        self,
        messages: List[Message],
        files: Dict[str, str],
        optimize: bool,
        usage: UsageAccumulator,
        progress: ProgressTracker,
        writer: StreamWriter,
    ) -> ContextResult:
        """
        Build the prompt context.

        Args:
            messages: Conversation history
            files: Normalized path -> content map
            optimize: Whether context optimization was requested
            usage: Request usage accumulator; both calls add to it
            progress: Request progress tracker
            writer: Stream to narrate progress and the context annotation into

        Returns:
            ContextResult; empty when optimization was skipped

        Raises:
            ContextBuildError: If a provider call fails
            MalformedResponseError: If the selection response cannot be parsed
        """
        if not optimize or not files:
            logger.debug(f"Context optimization skipped (optimize={optimize}, files={len(files)})")
            return ContextResult()

        writer.write_annotation(progress.start("summary", "Analysing Request").to_annotation())
        summary_result = await self._call("summary", messages, SUMMARY_PROMPT)
        usage.add(summary_result.usage)
        summary = summary_result.text.strip()
        writer.write_annotation(progress.complete("summary", "Analysis Complete").to_annotation())

        writer.write_annotation(progress.start("context", "Determining Files to Read").to_annotation())
        file_paths = [relative_path(path, self.settings.WORK_DIR) for path in files]
        selection_prompt = SELECTION_PROMPT.format(
            summary=summary,
            file_paths="\n".join(f"- {path}" for path in file_paths),
            max_files=self.settings.CONTEXT_MAX_FILES,
        )
        last_user = self._last_user_message(messages)
        selection_result = await self._call("context", last_user, selection_prompt)
        usage.add(selection_result.usage)

        filtered_files = self.select_files(selection_result.text, files)
        selected_paths = [relative_path(path, self.settings.WORK_DIR) for path in filtered_files]

        annotation = ContextAnnotation(
            files=selected_paths,
            summary=summary,
            chat_id=self._chat_id(messages),
        )
        writer.write_annotation(annotation.to_annotation())
        writer.write_annotation(
            progress.complete("context", f"Code Files Selected ({len(selected_paths)})").to_annotation()
        )

        log_context_selection(
            available_files=len(files),
            selected_files=selected_paths,
            summary_length=len(summary),
        )
        return ContextResult(filtered_files=filtered_files, summary=summary)

    def select_files(self, response_text: str, files: Dict[str, str]) -> Dict[str, str]:
        """
        Parse the `<updateContextBuffer>` block of a selection response.

        Paths may be relative to the work dir or absolute; unknown paths are
        ignored and at most CONTEXT_MAX_FILES files are kept.

        Raises:
            MalformedResponseError: If the response has no updateContextBuffer block
        """
        match = CONTEXT_BUFFER_REGEX.search(response_text)
        if not match:
            raise MalformedResponseError("Invalid context selection response: missing updateContextBuffer")

        selected: Dict[str, str] = {}
        for path in INCLUDE_FILE_REGEX.findall(match.group(1)):
            if len(selected) >= self.settings.CONTEXT_MAX_FILES:
                break
            key = self._match_path(path.strip(), files)
            if key is None:
                logger.warning(f"Context selection referenced unknown file: {path}")
                continue
            selected[key] = files[key]
        return selected

    def _match_path(self, path: str, files: Dict[str, str]) -> Optional[str]:
        if path in files:
            return path
        absolute = absolute_path(path, self.settings.WORK_DIR)
        if absolute in files:
            return absolute
        relative = relative_path(path, self.settings.WORK_DIR)
        return relative if relative in files else None

    async def _call(self, purpose: str, messages: List[Message], system_prompt: str) -> CompletionResult:
        start_time = time.time()
        try:
            result = await self.provider.complete(messages, system_prompt=system_prompt)
        except ProviderError:
            raise
        except Exception as e:
            raise ContextBuildError(f"Context {purpose} call failed: {e}") from e

        log_llm_call(
            purpose=purpose,
            provider=getattr(self.provider, "name", "unknown"),
            prompt_tokens=result.usage.prompt_tokens,
            completion_tokens=result.usage.completion_tokens,
            total_tokens=result.usage.total_tokens,
            latency_ms=int((time.time() - start_time) * 1000),
        )
        return result

    @staticmethod
    def _last_user_message(messages: List[Message]) -> List[Message]:
        for message in reversed(messages):
            if message.role == MessageRole.USER:
                return [Message(role=MessageRole.USER, content=strip_model_tags(message.content))]
        return messages[-1:]

    @staticmethod
    def _chat_id(messages: List[Message]) -> str:
        for message in reversed(messages):
            if message.id:
                return message.id
        return uuid.uuid4().hex[:12]
