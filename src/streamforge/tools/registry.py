"""Registry of externally supplied tools the model may call."""

from typing import Any, Dict, Iterable, List, Optional

from langchain_core.tools import BaseTool
from langchain_core.utils.function_calling import convert_to_openai_tool

from streamforge.utils.logger import logger


class ToolRegistry:
    """Tools keyed by name; the model only ever sees their descriptors."""

    def __init__(self, tools: Optional[Iterable[BaseTool]] = None):
        self._tools: Dict[str, BaseTool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: BaseTool) -> None:
        if tool.name in self._tools:
            logger.warning(f"Tool '{tool.name}' registered twice; keeping the latest")
        self._tools[tool.name] = tool
        logger.debug(f"Registered tool: {tool.name}")

    def get(self, name: str) -> Optional[BaseTool]:
        return self._tools.get(name)

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def descriptors(self) -> List[Dict[str, Any]]:
        """
        OpenAI-style function descriptors for every registered tool.

        Descriptors carry name, description and argument schema only;
        execution always happens locally through the interceptor.
        """
        return [convert_to_openai_tool(tool) for tool in self._tools.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
