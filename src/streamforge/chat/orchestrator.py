"""Segmented streaming state machine."""

import asyncio
import contextlib
import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import AsyncIterator, Callable, List, Optional

from streamforge.chat.context_builder import ContextBuilder
from streamforge.chat.error_classifier import ClassifiedError, classify
from streamforge.chat.models import (
    ChatRequest,
    ContextResult,
    FinishReason,
    Message,
    MessageRole,
    ProviderEvent,
    ProviderEventType,
    StreamSegment,
    ToolCall,
    ToolResult,
)
from streamforge.chat.progress import ProgressTracker
from streamforge.chat.prompts import (
    build_continuation_message,
    get_system_prompt,
    last_user_model_and_provider,
)
from streamforge.chat.stream_parts import DataStreamPart, StreamWriter
from streamforge.chat.watchdog import StallNotice, StreamRecoveryWatchdog
from streamforge.config.settings import Settings, settings as default_settings
from streamforge.exceptions import ProviderStreamError, SegmentCapExceededError, StreamTimeoutError
from streamforge.providers.base import ChatProvider, StreamOptions
from streamforge.telemetry.monitoring import HealthMonitor, NullMonitor
from streamforge.telemetry.usage import UsageAccumulator
from streamforge.tools.interceptor import ToolCallInterceptor
from streamforge.tools.registry import ToolRegistry
from streamforge.utils.logger import logger
from streamforge.utils.structured_logging import log_error, log_segment

_END = object()
_STALLED = object()


class PipelineState(str, Enum):
    VALIDATING = "validating"
    BUILDING_CONTEXT = "building-context"
    STREAMING = "streaming"
    CONTINUING = "continuing"
    FINISHED = "finished"
    FAILED = "failed"


@dataclass
class _StepOutput:
    text: str = ""
    finish_reason: Optional[FinishReason] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_results: List[ToolResult] = field(default_factory=list)
    stalled: bool = False


class SegmentOrchestrator:
    """
    Drives provider calls until one logical reply is complete.

    Segments run strictly one after another. A segment truncated by the
    provider (finish reason ``length``) is followed by a continuation
    segment until the segment cap is hit; a stall reported by the watchdog
    restarts the segment as a continuation while the retry budget lasts.
    Within a segment, tool-call steps are repeated up to ``max_llm_steps``.

    All output goes through a StreamWriter; run() yields the written parts.
    """

    def __init__(
        self,
        provider: ChatProvider,
        interceptor: Optional[ToolCallInterceptor] = None,
        context_builder: Optional[ContextBuilder] = None,
        config: Settings = None,
        usage: Optional[UsageAccumulator] = None,
        progress: Optional[ProgressTracker] = None,
        watchdog_factory: Optional[Callable[[], StreamRecoveryWatchdog]] = None,
        monitor: Optional[HealthMonitor] = None,
    ):
        self.provider = provider
        self.settings = config or default_settings
        self.interceptor = interceptor or ToolCallInterceptor(ToolRegistry())
        self.context_builder = context_builder or ContextBuilder(provider, self.settings)
        self.usage = usage or UsageAccumulator()
        self.progress = progress or ProgressTracker()
        self.watchdog_factory = watchdog_factory or self._default_watchdog
        self.monitor = monitor or NullMonitor()

        self.writer = StreamWriter()
        self.state = PipelineState.VALIDATING
        self.segments: List[StreamSegment] = []
        self.continuations = 0
        self.stall_restarts = 0
        self.finish_reason: Optional[FinishReason] = None
        self.error: Optional[ClassifiedError] = None
        self.failed_before_output = False
        self.watchdog: Optional[StreamRecoveryWatchdog] = None

        self._stall_event = asyncio.Event()
        self._last_stall: Optional[StallNotice] = None

    @property
    def text(self) -> str:
        """Client-visible reply text across all segments."""
        return "".join(segment.text for segment in self.segments)

    @property
    def segment_count(self) -> int:
        return len(self.segments)

    async def run(self, request: ChatRequest) -> AsyncIterator[DataStreamPart]:
        """
        Run the pipeline for a validated request.

        Yields native stream parts in write order. Closing the iterator
        early (client disconnect) cancels the pipeline.
        """
        task = asyncio.create_task(self._execute(request))
        try:
            async for part in self.writer:
                yield part
        finally:
            if not task.done():
                task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _execute(self, request: ChatRequest) -> None:
        self.usage.start_timer()
        self.watchdog = self.watchdog_factory()
        try:
            self.state = PipelineState.BUILDING_CONTEXT
            context = await self.context_builder.build(
                request.messages,
                request.files,
                request.context_optimization,
                self.usage,
                self.progress,
                self.writer,
            )
            options = self._stream_options(request, context)
            history = self._prepare_history(request.messages, context)

            self.writer.write_annotation(self.progress.start("response", "Generating Response").to_annotation())
            self.state = PipelineState.STREAMING
            self.watchdog.start(self._on_stall)
            await self._stream_segments(history, options, request)

            self.writer.write_annotation(self.usage.to_annotation())
            self.writer.write_annotation(self.progress.complete("response", "Response Generated").to_annotation())
            self.writer.write_finish(self.finish_reason, self.usage.totals)
            self.state = PipelineState.FINISHED
            logger.info(
                f"Reply finished after {self.segment_count} segment(s), "
                f"{self.continuations} continuation(s), {self.stall_restarts} stall restart(s)"
            )
        except asyncio.CancelledError:
            self.state = PipelineState.FAILED
            logger.info("Pipeline cancelled (client disconnected)")
            raise
        except Exception as e:
            self._fail(e)
        finally:
            self.watchdog.stop()
            self.usage.stop_timer()
            self.writer.close()

    def _default_watchdog(self) -> StreamRecoveryWatchdog:
        return StreamRecoveryWatchdog(
            timeout=self.settings.STREAM_STALL_TIMEOUT_SECONDS,
            max_retries=self.settings.STREAM_STALL_MAX_RETRIES,
        )

    def _stream_options(self, request: ChatRequest, context: ContextResult) -> StreamOptions:
        files = context.filtered_files if context.filtered_files is not None else request.files
        model, provider_name = last_user_model_and_provider(request.messages)
        return StreamOptions(
            system_prompt=get_system_prompt(
                request.chat_mode,
                files=files,
                summary=context.summary,
                design_scheme=request.design_scheme,
                prompt_id=request.prompt_id,
            ),
            tools=self.interceptor.registry.descriptors(),
            model=model,
            provider=provider_name,
        )

    def _prepare_history(self, messages: List[Message], context: ContextResult) -> List[Message]:
        """Copy of the history; only the most recent messages when a summary replaces the rest."""
        recent = self.settings.CONTEXT_RECENT_MESSAGES
        if context.summary and len(messages) > recent:
            logger.debug(f"Summary present; sending only the last {recent} of {len(messages)} messages")
            return list(messages[-recent:])
        return list(messages)

    async def _stream_segments(self, messages: List[Message], options: StreamOptions, request: ChatRequest) -> None:
        segment_cap = self.settings.get_segment_cap(request.max_segments)

        while True:
            segment = StreamSegment(index=len(self.segments))
            self.segments.append(segment)
            stalled, tail_text = await self._run_segment(segment, messages, options, request.max_llm_steps)

            log_segment(
                index=segment.index,
                finish_reason=segment.finish_reason.value if segment.finish_reason else None,
                text_length=len(segment.text),
                steps=segment.steps,
                prompt_tokens=segment.usage.prompt_tokens,
                completion_tokens=segment.usage.completion_tokens,
                total_tokens=segment.usage.total_tokens,
                stalled=stalled,
            )

            if stalled:
                self.stall_restarts += 1
                logger.warning(f"Segment {segment.index} stalled; restarting as a continuation")
                self._append_continuation(messages, tail_text, options)
                continue

            if segment.finish_reason == FinishReason.LENGTH:
                provider_segments = len(self.segments) - self.stall_restarts
                if provider_segments >= segment_cap:
                    raise SegmentCapExceededError("Cannot continue message: Maximum segments reached")
                self.continuations += 1
                logger.info(
                    f"Segment {segment.index} truncated; continuing "
                    f"({provider_segments}/{segment_cap} segments used)"
                )
                self._append_continuation(messages, tail_text, options)
                continue

            self.finish_reason = segment.finish_reason or FinishReason.STOP
            return

    def _append_continuation(self, messages: List[Message], partial_text: str, options: StreamOptions) -> None:
        self.state = PipelineState.CONTINUING
        messages.append(Message(role=MessageRole.ASSISTANT, content=partial_text))
        messages.append(build_continuation_message(options.model, options.provider))

    async def _run_segment(
        self,
        segment: StreamSegment,
        messages: List[Message],
        options: StreamOptions,
        max_steps: int,
    ):
        """
        Run tool-call steps for one segment.

        Returns:
            (stalled, text of the last step)
        """
        self.state = PipelineState.STREAMING
        while True:
            segment.steps += 1
            step = await self._run_step(segment, messages, options)
            segment.finish_reason = step.finish_reason

            if step.stalled:
                return True, step.text

            if step.finish_reason == FinishReason.TOOL_CALLS and step.tool_calls and segment.steps < max_steps:
                # Results are already on the client stream; now feed them to the next step
                messages.append(Message(role=MessageRole.ASSISTANT, content=step.text, tool_calls=step.tool_calls))
                for result in step.tool_results:
                    content = result.result if isinstance(result.result, str) else json.dumps(result.result, default=str)
                    messages.append(Message(role=MessageRole.TOOL, content=content, id=result.tool_call_id))
                continue

            return False, step.text

    async def _run_step(self, segment: StreamSegment, messages: List[Message], options: StreamOptions) -> _StepOutput:
        step = _StepOutput()
        queue: asyncio.Queue = asyncio.Queue()
        tool_tasks: List[asyncio.Task] = []
        # A stall reported between steps belongs to no open stream
        self._stall_event.clear()
        self._last_stall = None
        pump = asyncio.create_task(self._pump(self.provider.stream(list(messages), options), queue))
        self.watchdog.touch()

        try:
            while True:
                event = await self._next_event(queue)
                if event is _STALLED:
                    notice = self._last_stall
                    self._stall_event.clear()
                    if notice is None or notice.exhausted:
                        idle = notice.idle_seconds if notice else 0.0
                        raise StreamTimeoutError(
                            f"Provider stream stalled for {idle:.1f}s and the retry budget is exhausted"
                        )
                    step.stalled = True
                    break
                if event is _END:
                    logger.warning("Provider stream ended without a finish event; treating as stop")
                    step.finish_reason = FinishReason.STOP
                    break

                self.watchdog.touch()
                if event.type == ProviderEventType.TEXT:
                    step.text += event.text
                    segment.text += event.text
                    self.writer.write_text(event.text)
                elif event.type == ProviderEventType.REASONING:
                    self.writer.write_reasoning(event.text)
                elif event.type == ProviderEventType.TOOL_CALL:
                    call = event.tool_call
                    step.tool_calls.append(call)
                    segment.tool_calls.append(call)
                    self.writer.write_annotation(call.to_annotation())
                    tool_tasks.append(asyncio.create_task(self._resolve_tool(call, segment, step)))
                elif event.type == ProviderEventType.FINISH:
                    step.finish_reason = event.finish_reason or FinishReason.STOP
                    if event.usage is not None:
                        self.usage.add(event.usage)
                        segment.usage = segment.usage + event.usage
                    break
                elif event.type == ProviderEventType.ERROR:
                    error = event.error or ProviderStreamError("Provider stream error", provider=self.provider.name)
                    raise error

            if tool_tasks:
                # Every call gets its result on the stream before the step is done.
                # Tools are bounded by their own timeout, not the stall window.
                self.watchdog.pause()
                try:
                    await asyncio.gather(*tool_tasks)
                finally:
                    self.watchdog.resume()
        except BaseException:
            for task in tool_tasks:
                task.cancel()
            raise
        finally:
            await self._stop_pump(pump)

        return step

    async def _pump(self, stream: AsyncIterator[ProviderEvent], queue: asyncio.Queue) -> None:
        """Owns the provider stream for one step; forwards events to the queue."""
        try:
            async for event in stream:
                await queue.put(event)
        except Exception as e:
            await queue.put(ProviderEvent.failure(e))
            return
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
        await queue.put(_END)

    @staticmethod
    async def _stop_pump(pump: asyncio.Task) -> None:
        if not pump.done():
            pump.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await pump

    async def _next_event(self, queue: asyncio.Queue):
        """Next provider event, or _STALLED if the watchdog fired first."""
        get_task = asyncio.ensure_future(queue.get())
        stall_task = asyncio.ensure_future(self._stall_event.wait())
        try:
            done, _ = await asyncio.wait({get_task, stall_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (get_task, stall_task):
                if not task.done():
                    task.cancel()
        if get_task in done:
            return get_task.result()
        return _STALLED

    async def _resolve_tool(self, call: ToolCall, segment: StreamSegment, step: _StepOutput) -> ToolResult:
        result = await self.interceptor.on_tool_call(call)
        self.writer.write_annotation(result.to_annotation())
        segment.tool_results.append(result)
        step.tool_results.append(result)
        self.watchdog.touch()
        return result

    def _on_stall(self, notice: StallNotice) -> None:
        self._last_stall = notice
        self._stall_event.set()

    def _fail(self, error: BaseException) -> None:
        self.state = PipelineState.FAILED
        self.failed_before_output = self.writer.parts_written == 0
        self.error = classify(error)
        if self.error.provider == "unknown":
            self.error = replace(self.error, provider=getattr(self.provider, "name", "unknown"))

        logger.error(f"Pipeline failed ({self.error.kind.value}): {self.error.detail}")
        log_error(
            error_type=self.error.kind.value,
            error_message=self.error.detail,
            context={
                "segments": self.segment_count,
                "continuations": self.continuations,
                "stall_restarts": self.stall_restarts,
            },
        )
        self.monitor.record_error(error, {"kind": self.error.kind.value, "segments": self.segment_count})

        self.writer.write_error(self.error.message)
        self.writer.write_annotation(self.error.to_annotation())
