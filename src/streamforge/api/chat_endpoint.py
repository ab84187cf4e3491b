"""The POST /chat request/response contract."""

from typing import AsyncIterator, Callable, List, Optional

from fastapi import Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from streamforge.api.cookies import parse_credentials
from streamforge.chat.chunk_transformer import ChunkTransformer
from streamforge.chat.context_builder import ContextBuilder
from streamforge.chat.error_classifier import ClassifiedError, classify
from streamforge.chat.models import ChatRequest, Credentials
from streamforge.chat.orchestrator import SegmentOrchestrator
from streamforge.chat.prompts import last_user_model_and_provider
from streamforge.chat.request_validator import RequestValidator, parse_json_body
from streamforge.chat.stream_parts import DataStreamPart
from streamforge.config.settings import Settings, settings as default_settings
from streamforge.exceptions import RequestValidationError
from streamforge.providers.base import ChatProvider
from streamforge.providers.factory import create_provider
from streamforge.telemetry.monitoring import HealthMonitor, NullMonitor
from streamforge.tools.interceptor import ToolCallInterceptor
from streamforge.tools.registry import ToolRegistry
from streamforge.utils.logger import logger
from streamforge.utils.structured_logging import (
    CorrelationContext,
    log_chat_request,
    log_chat_response,
    log_error,
)

STREAM_HEADERS = {
    "Connection": "keep-alive",
    "Cache-Control": "no-cache",
}
STREAM_MEDIA_TYPE = "text/event-stream; charset=utf-8"

ProviderFactory = Callable[[Credentials, Optional[str], Optional[str]], ChatProvider]


class ChatEndpoint:
    """
    Composes validation, context building, orchestration and wire
    transformation into the HTTP contract.

    Failures before the first stream part are answered with a JSON error
    body and the classified status; once streaming starts, failures are
    reported in-band by the orchestrator.
    """

    def __init__(
        self,
        provider_factory: ProviderFactory = None,
        tool_registry: Optional[ToolRegistry] = None,
        monitor: Optional[HealthMonitor] = None,
        config: Settings = None,
    ):
        self.provider_factory = provider_factory or create_provider
        self.tool_registry = tool_registry or ToolRegistry()
        self.monitor = monitor or NullMonitor()
        self.settings = config or default_settings
        self.validator = RequestValidator(self.settings.CLIENT_HEADER)
        logger.info(f"Chat endpoint ready: {len(self.tool_registry)} tool(s) registered")

    async def handle(self, request: Request) -> Response:
        with CorrelationContext() as correlation_id:
            raw_body = await request.body()
            body, parse_error = parse_json_body(raw_body)
            result = self.validator.validate(request.method, request.headers, body, parse_error)
            if not result.is_valid:
                return self._error_response(classify(RequestValidationError(result.errors)))

            chat_request = result.request
            log_chat_request(
                chat_mode=chat_request.chat_mode.value,
                message_count=len(chat_request.messages),
                file_count=len(chat_request.files),
                context_optimization=chat_request.context_optimization,
                prompt_id=chat_request.prompt_id,
            )

            credentials = parse_credentials(request.headers.get("cookie"))
            model, provider_name = last_user_model_and_provider(chat_request.messages)
            try:
                provider = self.provider_factory(credentials, model, provider_name)
            except Exception as e:
                logger.error(f"Failed to create provider: {e}")
                self.monitor.record_error(e, {"phase": "provider"})
                return self._error_response(classify(e))

            orchestrator = self._create_orchestrator(provider)
            return await self._respond(orchestrator, chat_request, correlation_id)

    def _create_orchestrator(self, provider: ChatProvider) -> SegmentOrchestrator:
        return SegmentOrchestrator(
            provider=provider,
            interceptor=ToolCallInterceptor(self.tool_registry, self.settings.TOOL_TIMEOUT_SECONDS),
            context_builder=ContextBuilder(provider, self.settings),
            config=self.settings,
            monitor=self.monitor,
        )

    async def _respond(
        self,
        orchestrator: SegmentOrchestrator,
        chat_request: ChatRequest,
        correlation_id: Optional[str] = None,
    ) -> Response:
        parts = orchestrator.run(chat_request)
        primed: List[DataStreamPart] = []
        try:
            primed.append(await parts.__anext__())
        except StopAsyncIteration:
            pass

        if orchestrator.error is not None and orchestrator.failed_before_output:
            await parts.aclose()
            self._log_outcome(orchestrator)
            return self._error_response(orchestrator.error, record=False)

        return StreamingResponse(
            self._encode(orchestrator, primed, parts, correlation_id),
            media_type=STREAM_MEDIA_TYPE,
            headers=STREAM_HEADERS,
        )

    async def _encode(
        self,
        orchestrator: SegmentOrchestrator,
        primed: List[DataStreamPart],
        parts: AsyncIterator[DataStreamPart],
        correlation_id: Optional[str] = None,
    ) -> AsyncIterator[str]:
        transformer = ChunkTransformer()
        # The body is sent after handle() returns, outside its correlation scope
        with CorrelationContext(correlation_id):
            try:
                for part in primed:
                    for line in transformer.feed(part.encode()):
                        yield line
                async for part in parts:
                    for line in transformer.feed(part.encode()):
                        yield line
                for line in transformer.flush():
                    yield line
            finally:
                await parts.aclose()
                self._log_outcome(orchestrator)

    def _log_outcome(self, orchestrator: SegmentOrchestrator) -> None:
        log_chat_response(
            **orchestrator.usage.to_dict(),
            segments=orchestrator.segment_count,
            success=orchestrator.error is None,
            error_kind=orchestrator.error.kind.value if orchestrator.error else None,
        )

    def _error_response(self, error: ClassifiedError, record: bool = True) -> JSONResponse:
        if record:
            log_error(error_type=error.kind.value, error_message=error.detail)
        return JSONResponse(status_code=error.http_status, content=error.to_response_body())
