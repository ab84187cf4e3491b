"""Unit tests for ContextBuilder."""

import pytest

from streamforge.chat.context_builder import ContextBuilder, absolute_path, relative_path
from streamforge.chat.models import Message, MessageRole, UsageTotals
from streamforge.chat.progress import ProgressTracker
from streamforge.chat.stream_parts import StreamWriter
from streamforge.exceptions import ContextBuildError, MalformedResponseError, ProviderError
from streamforge.telemetry.usage import UsageAccumulator

FILES = {
    "/home/project/src/app.py": "app",
    "/home/project/src/db.py": "db",
    "/home/project/README.md": "readme",
}

SELECTION = """<updateContextBuffer>
    <includeFile path="src/app.py"/>
    <includeFile path="/home/project/README.md"/>
    <includeFile path="src/missing.py"/>
</updateContextBuffer>"""


async def drain(writer: StreamWriter):
    writer.close()
    return [part async for part in writer]


@pytest.fixture
def messages():
    return [
        Message(role=MessageRole.USER, content="[Model: gpt-4o]\n\nAdd a login page", id="msg-1"),
    ]


class TestContextBuilder:
    """Tests for summary and file selection."""

    @pytest.mark.asyncio
    async def test_skipped_without_optimization(self, make_provider, messages, test_settings):
        provider = make_provider()
        builder = ContextBuilder(provider, test_settings)
        writer = StreamWriter()

        result = await builder.build(messages, FILES, False, UsageAccumulator(), ProgressTracker(), writer)

        assert result.filtered_files is None
        assert result.summary is None
        assert provider.complete_calls == []
        assert writer.parts_written == 0

    @pytest.mark.asyncio
    async def test_skipped_without_files(self, make_provider, messages, test_settings):
        provider = make_provider()
        builder = ContextBuilder(provider, test_settings)

        result = await builder.build(messages, {}, True, UsageAccumulator(), ProgressTracker(), StreamWriter())

        assert result.filtered_files is None
        assert provider.complete_calls == []

    @pytest.mark.asyncio
    async def test_summary_then_selection(self, make_provider, completion, messages, annotations, test_settings):
        """Two sequential calls; the selection prompt embeds the summary."""
        provider = make_provider(completions=[completion("  login work  ", 10, 4), completion(SELECTION, 20, 6)])
        builder = ContextBuilder(provider, test_settings)
        usage = UsageAccumulator()
        writer = StreamWriter()

        result = await builder.build(messages, FILES, True, usage, ProgressTracker(), writer)

        assert result.summary == "login work"
        assert result.filtered_files == {
            "/home/project/src/app.py": "app",
            "/home/project/README.md": "readme",
        }
        assert usage.totals == UsageTotals(30, 10, 40)
        assert len(provider.complete_calls) == 2

        selection_messages, selection_prompt = provider.complete_calls[1]
        assert "login work" in selection_prompt
        assert "- src/db.py" in selection_prompt
        assert selection_messages[-1].content == "Add a login page"

        parts = await drain(writer)
        context = annotations(parts, "codeContext")
        assert context == [{
            "type": "codeContext",
            "files": ["src/app.py", "README.md"],
            "summary": "login work",
            "chatId": "msg-1",
        }]
        progress = annotations(parts, "progress")
        assert [(item["label"], item["status"]) for item in progress] == [
            ("summary", "in-progress"),
            ("summary", "complete"),
            ("context", "in-progress"),
            ("context", "complete"),
        ]

    @pytest.mark.asyncio
    async def test_selection_bounded_by_max_files(self, make_provider, completion, messages, test_settings):
        test_settings.CONTEXT_MAX_FILES = 1
        provider = make_provider(completions=[completion("s"), completion(SELECTION)])
        builder = ContextBuilder(provider, test_settings)

        result = await builder.build(messages, FILES, True, UsageAccumulator(), ProgressTracker(), StreamWriter())

        assert list(result.filtered_files) == ["/home/project/src/app.py"]

    @pytest.mark.asyncio
    async def test_malformed_selection_raises(self, make_provider, completion, messages, test_settings):
        provider = make_provider(completions=[completion("s"), completion("I think app.py matters")])
        builder = ContextBuilder(provider, test_settings)

        with pytest.raises(MalformedResponseError):
            await builder.build(messages, FILES, True, UsageAccumulator(), ProgressTracker(), StreamWriter())

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self, make_provider, messages, test_settings):
        provider = make_provider(completions=[ProviderError("Invalid API key", provider="OpenAI")])
        builder = ContextBuilder(provider, test_settings)

        with pytest.raises(ProviderError):
            await builder.build(messages, FILES, True, UsageAccumulator(), ProgressTracker(), StreamWriter())

    @pytest.mark.asyncio
    async def test_other_failures_wrapped(self, make_provider, messages, test_settings):
        provider = make_provider(completions=[RuntimeError("boom")])
        builder = ContextBuilder(provider, test_settings)

        with pytest.raises(ContextBuildError, match="summary"):
            await builder.build(messages, FILES, True, UsageAccumulator(), ProgressTracker(), StreamWriter())


class TestPaths:
    """Tests for work-dir path helpers."""

    @pytest.mark.parametrize("path,expected", [
        ("/home/project/src/app.py", "src/app.py"),
        ("src/app.py", "src/app.py"),
        ("/etc/hosts", "/etc/hosts"),
    ])
    def test_relative_path(self, path, expected):
        assert relative_path(path, "/home/project") == expected

    def test_absolute_path(self):
        assert absolute_path("src/app.py", "/home/project") == "/home/project/src/app.py"
        assert absolute_path("/tmp/x", "/home/project") == "/tmp/x"
