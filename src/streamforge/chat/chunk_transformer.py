"""Rewrite native stream parts into the public line protocol."""

import json
from typing import List

from streamforge.chat.stream_parts import REASONING_TAG, TEXT_TAG

THOUGHT_OPEN = '<div class="__thought__">'
THOUGHT_CLOSE = "</div>\n"


class ChunkTransformer:
    """
    Per-request transform from native `<tag>:<payload>` chunks to public lines.

    Reasoning chunks are re-tagged as text and every contiguous run of them
    is wrapped in exactly one open and one close delimiter line. The tag is
    compared as an opaque value; chunk content is never inspected.
    """

    def __init__(self, reasoning_tag: str = REASONING_TAG, text_tag: str = TEXT_TAG):
        self.reasoning_tag = reasoning_tag
        self.text_tag = text_tag
        self.inside_reasoning_run = False

    def _line(self, tag: str, payload: str) -> str:
        return f"{tag}:{payload}\n"

    def _delimiter(self, marker: str) -> str:
        return self._line(self.text_tag, json.dumps(marker))

    def feed(self, chunk: str) -> List[str]:
        """
        Transform one native chunk.

        Args:
            chunk: A native line, `<tag>:<payload>` with an optional trailing newline

        Returns:
            Zero or more public lines, in output order
        """
        tag, separator, payload = chunk.partition(":")
        if not separator:
            # Not framed; pass through untouched
            return [chunk]
        if payload.endswith("\n"):
            payload = payload[:-1]

        output: List[str] = []
        if tag == self.reasoning_tag:
            if not self.inside_reasoning_run:
                output.append(self._delimiter(THOUGHT_OPEN))
                self.inside_reasoning_run = True
            output.append(self._line(self.text_tag, payload))
            return output

        if self.inside_reasoning_run:
            output.append(self._delimiter(THOUGHT_CLOSE))
            self.inside_reasoning_run = False
        output.append(self._line(tag, payload))
        return output

    def flush(self) -> List[str]:
        """Close a reasoning run left open at end of stream."""
        if self.inside_reasoning_run:
            self.inside_reasoning_run = False
            return [self._delimiter(THOUGHT_CLOSE)]
        return []
