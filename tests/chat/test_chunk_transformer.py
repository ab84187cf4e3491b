"""Unit tests for ChunkTransformer."""

import json

import pytest

from streamforge.chat.chunk_transformer import THOUGHT_CLOSE, THOUGHT_OPEN, ChunkTransformer
from streamforge.chat.stream_parts import DataStreamPart

OPEN_LINE = f"0:{json.dumps(THOUGHT_OPEN)}\n"
CLOSE_LINE = f"0:{json.dumps(THOUGHT_CLOSE)}\n"


def transform(chunks):
    transformer = ChunkTransformer()
    output = []
    for chunk in chunks:
        output.extend(transformer.feed(chunk))
    output.extend(transformer.flush())
    return output


class TestChunkTransformer:
    """Tests for reasoning delimiters and line framing."""

    @pytest.mark.parametrize("run_length", [1, 5])
    def test_reasoning_run_wrapped_once(self, run_length):
        """K reasoning chunks get exactly one open and one close delimiter."""
        chunks = [DataStreamPart.reasoning(f"step {i}").encode() for i in range(run_length)]
        chunks.append(DataStreamPart.text("answer").encode())

        output = transform(chunks)

        assert output.count(OPEN_LINE) == 1
        assert output.count(CLOSE_LINE) == 1
        assert output[0] == OPEN_LINE
        assert output[run_length + 1] == CLOSE_LINE
        assert output[-1] == '0:"answer"\n'
        assert output[1:run_length + 1] == [f'0:"step {i}"\n' for i in range(run_length)]

    def test_separate_runs_each_wrapped(self):
        """Two reasoning runs split by text get two delimiter pairs."""
        chunks = [
            DataStreamPart.reasoning("a").encode(),
            DataStreamPart.text("b").encode(),
            DataStreamPart.reasoning("c").encode(),
            DataStreamPart.reasoning("d").encode(),
            DataStreamPart.text("e").encode(),
        ]

        output = transform(chunks)

        assert output == [
            OPEN_LINE, '0:"a"\n', CLOSE_LINE,
            '0:"b"\n',
            OPEN_LINE, '0:"c"\n', '0:"d"\n', CLOSE_LINE,
            '0:"e"\n',
        ]

    def test_flush_closes_open_run(self):
        """A stream ending inside a reasoning run is closed on flush."""
        transformer = ChunkTransformer()
        transformer.feed(DataStreamPart.reasoning("thinking").encode())

        assert transformer.inside_reasoning_run is True
        assert transformer.flush() == [CLOSE_LINE]
        assert transformer.inside_reasoning_run is False
        assert transformer.flush() == []

    def test_non_reasoning_parts_unchanged(self):
        """Text and annotation payloads keep their bytes; one trailing newline is re-added."""
        annotation = DataStreamPart.annotation({"type": "usage", "value": {"totalTokens": 3}}).encode()

        assert transform([annotation]) == [annotation]
        assert transform(['0:"no newline"']) == ['0:"no newline"\n']

    def test_only_one_trailing_newline_stripped(self):
        """Payload newlines other than the final one survive."""
        assert transform(["0:abc\n\n"]) == ["0:abc\n\n"]

    def test_reasoning_tag_is_opaque(self):
        """Content that looks like a thought is not treated as reasoning."""
        output = transform([DataStreamPart.text("g:not reasoning").encode()])

        assert OPEN_LINE not in output

    def test_custom_reasoning_tag(self):
        """The discriminator is configurable."""
        transformer = ChunkTransformer(reasoning_tag="r")

        output = transformer.feed('r:"x"\n') + transformer.feed('g:"y"\n') + transformer.flush()

        assert output == [OPEN_LINE, '0:"x"\n', CLOSE_LINE, 'g:"y"\n']

    def test_unframed_chunk_passes_through(self):
        assert transform(["plain"]) == ["plain"]
