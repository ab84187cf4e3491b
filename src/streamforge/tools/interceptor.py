"""Execute model-issued tool calls and turn the outcome into ToolResults."""

import asyncio
import time
from typing import Any

from streamforge.chat.models import ToolCall, ToolResult
from streamforge.config.settings import settings
from streamforge.exceptions import ToolExecutionError
from streamforge.tools.registry import ToolRegistry
from streamforge.utils.logger import logger
from streamforge.utils.structured_logging import log_tool_call


def _serializable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool, list, dict)):
        return value
    # ToolMessage / pydantic outputs
    content = getattr(value, "content", None)
    if content is not None:
        return content
    return str(value)


class ToolCallInterceptor:
    """
    Runs tool calls against the registry with a bounded timeout.

    on_tool_call() never raises for tool-level problems: unknown tools,
    timeouts and tool exceptions all come back as error ToolResults so the
    conversation can recover.
    """

    def __init__(self, registry: ToolRegistry, timeout: float = None):
        self.registry = registry
        self.timeout = timeout if timeout is not None else settings.TOOL_TIMEOUT_SECONDS

    async def on_tool_call(self, call: ToolCall) -> ToolResult:
        """
        Execute one tool call.

        Args:
            call: The tool call intercepted from the provider stream

        Returns:
            ToolResult keyed by the call id
        """
        start_time = time.time()
        logger.info(f"Executing tool '{call.name}' (call id: {call.id})")

        try:
            result = await self._execute(call)
        except ToolExecutionError as e:
            return self._failed(call, str(e), start_time)
        except asyncio.TimeoutError:
            return self._failed(call, f"Tool '{call.name}' timed out after {self.timeout}s", start_time)
        except Exception as e:
            logger.exception(f"Tool '{call.name}' raised an exception")
            return self._failed(call, f"Tool '{call.name}' failed: {e}", start_time)

        execution_time_ms = int((time.time() - start_time) * 1000)
        log_tool_call(
            tool_name=call.name,
            tool_call_id=call.id,
            success=True,
            execution_time_ms=execution_time_ms,
        )
        return ToolResult(tool_call_id=call.id, tool_name=call.name, result=_serializable(result))

    async def _execute(self, call: ToolCall) -> Any:
        if call.name not in self.registry:
            logger.warning(f"Model requested unregistered tool '{call.name}'; registered: {self.registry.names}")
            raise ToolExecutionError(f"Unknown tool: {call.name}")
        tool = self.registry.get(call.name)
        return await asyncio.wait_for(tool.ainvoke(call.arguments), timeout=self.timeout)

    def _failed(self, call: ToolCall, message: str, start_time: float) -> ToolResult:
        execution_time_ms = int((time.time() - start_time) * 1000)
        logger.warning(f"Tool call {call.id} failed: {message}")
        log_tool_call(
            tool_name=call.name,
            tool_call_id=call.id,
            success=False,
            execution_time_ms=execution_time_ms,
            error_message=message,
        )
        return ToolResult(
            tool_call_id=call.id,
            tool_name=call.name,
            result={"error": message},
            is_error=True,
        )
