"""
Tests for model backend implementations.

Tests ClaudeCLIBackend and AnthropicAPIBackend implementing the ModelBackend interface.
"""

import subprocess

import pytest
from anthropic import AnthropicError
from unittest.mock import AsyncMock, MagicMock, patch

from agent_orchestrator.backends.base import Completion, Message, ModelBackend
from agent_orchestrator.backends.llm import (
    AnthropicAPIBackend,
    ClaudeCLIBackend,
    ModelBackendError,
    estimate_tokens,
)


class TestEstimateTokens:
    """Tests for the character-based token estimate."""

    @pytest.mark.parametrize("text,tokens", [("", 0), ("abc", 1), ("abcd", 1), ("abcde", 2)])
    def test_rounds_up(self, text, tokens):
        """Four characters make one token, rounded up."""
        assert estimate_tokens(text) == tokens


class TestClaudeCLIBackend:
    """Tests for ClaudeCLIBackend."""

    def test_implements_model_backend(self):
        """ClaudeCLIBackend implements ModelBackend interface."""
        assert isinstance(ClaudeCLIBackend(), ModelBackend)

    def test_defaults(self):
        """Default timeout is 120 seconds and the tool is claude."""
        backend = ClaudeCLIBackend()
        assert backend.timeout == 120
        assert backend.cli_tool == "claude"

    @pytest.mark.asyncio
    @patch("agent_orchestrator.backends.llm.subprocess.run")
    async def test_complete_calls_cli(self, mock_run):
        """complete() calls the CLI with prompt, system prompt and timeout."""
        mock_run.return_value = MagicMock(returncode=0, stdout="done", stderr="")

        backend = ClaudeCLIBackend(timeout=30)
        completion = await backend.complete("You are a coder", [Message("user", "Add a button")])

        cmd = mock_run.call_args[0][0]
        assert cmd[0] == "claude"
        assert cmd[cmd.index("-p") + 1] == "Add a button"
        assert cmd[cmd.index("--append-system-prompt") + 1] == "You are a coder"
        assert mock_run.call_args[1]["timeout"] == 30
        assert isinstance(completion, Completion)
        assert completion.text == "done"
        assert completion.output_tokens == 1
        assert completion.model == "claude"

    @pytest.mark.asyncio
    @patch("agent_orchestrator.backends.llm.subprocess.run")
    async def test_multi_turn_prompt(self, mock_run):
        """Several messages are flattened with role headers."""
        mock_run.return_value = MagicMock(returncode=0, stdout="ok", stderr="")

        await ClaudeCLIBackend().complete("", [Message("user", "one"), Message("assistant", "two")])

        cmd = mock_run.call_args[0][0]
        assert cmd[cmd.index("-p") + 1] == "USER:\none\n\nASSISTANT:\ntwo"
        assert "--append-system-prompt" not in cmd

    @pytest.mark.asyncio
    @patch("agent_orchestrator.backends.llm.subprocess.run")
    async def test_raises_on_cli_not_found(self, mock_run):
        """complete() raises ModelBackendError when CLI not found."""
        mock_run.side_effect = FileNotFoundError()

        with pytest.raises(ModelBackendError, match="CLI not found"):
            await ClaudeCLIBackend().complete("", [Message("user", "test")])

    @pytest.mark.asyncio
    @patch("agent_orchestrator.backends.llm.subprocess.run")
    async def test_raises_on_timeout(self, mock_run):
        """complete() raises ModelBackendError on timeout."""
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="claude", timeout=120)

        with pytest.raises(ModelBackendError, match="timed out"):
            await ClaudeCLIBackend().complete("", [Message("user", "test")])

    @pytest.mark.asyncio
    @patch("agent_orchestrator.backends.llm.subprocess.run")
    async def test_raises_on_nonzero_exit(self, mock_run):
        """A failing CLI surfaces its stderr."""
        mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="auth expired")

        with pytest.raises(ModelBackendError, match="auth expired"):
            await ClaudeCLIBackend().complete("", [Message("user", "test")])

    @pytest.mark.asyncio
    @patch("agent_orchestrator.backends.llm.subprocess.run")
    async def test_default_stream_yields_completion(self, mock_run):
        """The base stream() yields the whole completion once."""
        mock_run.return_value = MagicMock(returncode=0, stdout="all at once", stderr="")

        chunks = [c async for c in ClaudeCLIBackend().stream("", [Message("user", "x")])]

        assert chunks == ["all at once"]


class FakeStream:
    """Async context manager mimicking the SDK's message stream."""

    def __init__(self, chunks):
        self.chunks = chunks

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    @property
    async def text_stream(self):
        for chunk in self.chunks:
            yield chunk


class TestAnthropicAPIBackend:
    """Tests for AnthropicAPIBackend."""

    def make_backend(self, client):
        backend = AnthropicAPIBackend(model="claude-test", max_tokens=100)
        backend._client = client
        return backend

    def test_implements_model_backend(self):
        """AnthropicAPIBackend implements ModelBackend interface."""
        assert isinstance(AnthropicAPIBackend(), ModelBackend)

    def test_client_is_lazy(self):
        """No client is built until the first call."""
        assert AnthropicAPIBackend()._client is None

    @patch("agent_orchestrator.backends.llm.AsyncAnthropic")
    def test_missing_key(self, mock_client_cls):
        """Client construction errors become ModelBackendError."""
        mock_client_cls.side_effect = AnthropicError("no key")

        with pytest.raises(ModelBackendError, match="API key"):
            AnthropicAPIBackend()._get_client()

    @pytest.mark.asyncio
    async def test_complete(self):
        """complete() joins text blocks and reports usage."""
        client = MagicMock()
        client.messages.create = AsyncMock(return_value=MagicMock(
            content=[
                MagicMock(type="text", text="Hello "),
                MagicMock(type="tool_use"),
                MagicMock(type="text", text="world"),
            ],
            usage=MagicMock(input_tokens=12, output_tokens=3),
            model="claude-test",
        ))
        backend = self.make_backend(client)

        completion = await backend.complete("system", [Message("user", "hi")])

        assert completion.text == "Hello world"
        assert completion.total_tokens == 15
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert kwargs["max_tokens"] == 100
        assert kwargs["system"] == "system"
        assert kwargs["messages"] == [{"role": "user", "content": "hi"}]

    @pytest.mark.asyncio
    async def test_complete_wraps_errors(self):
        """SDK errors become ModelBackendError."""
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=AnthropicError("overloaded"))

        with pytest.raises(ModelBackendError, match="overloaded"):
            await self.make_backend(client).complete("", [Message("user", "hi")])

    @pytest.mark.asyncio
    async def test_stream(self):
        """stream() yields the SDK's text chunks in order."""
        client = MagicMock()
        client.messages.stream = MagicMock(return_value=FakeStream(["a", "b", "c"]))

        chunks = [c async for c in self.make_backend(client).stream("", [Message("user", "hi")])]

        assert chunks == ["a", "b", "c"]
