"""Native stream parts and the per-request writer the pipeline emits into."""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional

from streamforge.chat.models import FinishReason, UsageTotals

TEXT_TAG = "0"
ERROR_TAG = "3"
ANNOTATION_TAG = "8"
FINISH_TAG = "d"
REASONING_TAG = "g"


@dataclass(frozen=True)
class DataStreamPart:
    """One `<tag>:<payload>` line of the native data stream."""
    tag: str
    payload: str

    def encode(self) -> str:
        return f"{self.tag}:{self.payload}\n"

    @classmethod
    def text(cls, text: str) -> "DataStreamPart":
        return cls(TEXT_TAG, json.dumps(text))

    @classmethod
    def reasoning(cls, text: str) -> "DataStreamPart":
        return cls(REASONING_TAG, json.dumps(text))

    @classmethod
    def annotation(cls, value: Dict[str, Any]) -> "DataStreamPart":
        return cls(ANNOTATION_TAG, json.dumps([value], default=str))

    @classmethod
    def error(cls, message: str) -> "DataStreamPart":
        return cls(ERROR_TAG, json.dumps(message))

    @classmethod
    def finish(cls, reason: FinishReason, usage: UsageTotals) -> "DataStreamPart":
        return cls(FINISH_TAG, json.dumps({"finishReason": reason.value, "usage": usage.to_wire()}))


_CLOSED = object()


class StreamWriter:
    """
    Queue-backed sink shared by the orchestrator and concurrent tool tasks.

    Parts come out in exactly the order they were written. Writes after
    close() are dropped.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self.parts_written = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, part: DataStreamPart) -> None:
        if self._closed:
            return
        self.parts_written += 1
        self._queue.put_nowait(part)

    def write_text(self, text: str) -> None:
        self.write(DataStreamPart.text(text))

    def write_reasoning(self, text: str) -> None:
        self.write(DataStreamPart.reasoning(text))

    def write_annotation(self, value: Dict[str, Any]) -> None:
        self.write(DataStreamPart.annotation(value))

    def write_error(self, message: str) -> None:
        self.write(DataStreamPart.error(message))

    def write_finish(self, reason: FinishReason, usage: UsageTotals) -> None:
        self.write(DataStreamPart.finish(reason, usage))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def get(self) -> Optional[DataStreamPart]:
        """Next part, or None once the writer is closed and drained."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep the sentinel so repeated reads keep returning None
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    async def __aiter__(self) -> AsyncIterator[DataStreamPart]:
        while True:
            part = await self.get()
            if part is None:
                return
            yield part
