"""
Model backend implementations for agent execution.

Provides ClaudeCLIBackend (using claude CLI) and AnthropicAPIBackend (using API).
"""

import asyncio
import logging
import subprocess
from collections.abc import AsyncIterator

from anthropic import AnthropicError, AsyncAnthropic

from .base import Completion, Message, ModelBackend


logger = logging.getLogger(__name__)

# Rough characters-per-token ratio for backends without usage accounting
CHARS_PER_TOKEN = 4


class ModelBackendError(Exception):
    """Raised when a model backend operation fails."""


def estimate_tokens(text: str) -> int:
    return (len(text) + CHARS_PER_TOKEN - 1) // CHARS_PER_TOKEN


class ClaudeCLIBackend(ModelBackend):
    """
    Model backend using the claude CLI in print mode.

    Uses your existing Claude Code authentication (Max/Pro subscription).
    No API key needed. The CLI reports no usage, so token counts are estimated.
    """

    def __init__(self, timeout: int = 120, cli_tool: str = "claude"):
        """
        Initialize the CLI backend.

        Args:
            timeout: Timeout in seconds for CLI calls (default: 120)
            cli_tool: CLI executable to use (default: "claude")
        """
        self.timeout = timeout
        self.cli_tool = cli_tool

    async def complete(self, system_prompt: str, messages: list[Message]) -> Completion:
        prompt = self._build_prompt(messages)
        text = await asyncio.to_thread(self._call_cli, system_prompt, prompt)
        return Completion(
            text=text,
            input_tokens=estimate_tokens(system_prompt + prompt),
            output_tokens=estimate_tokens(text),
            model=self.cli_tool,
        )

    def _build_prompt(self, messages: list[Message]) -> str:
        if len(messages) == 1:
            return messages[0].content
        return "\n\n".join(f"{m.role.upper()}:\n{m.content}" for m in messages)

    def _build_command(self, system_prompt: str, prompt: str) -> list[str]:
        cmd = [self.cli_tool, "-p", prompt, "--output-format", "text"]
        if system_prompt:
            cmd += ["--append-system-prompt", system_prompt]
        return cmd

    def _call_cli(self, system_prompt: str, prompt: str) -> str:
        cmd = self._build_command(system_prompt, prompt)
        logger.debug("Calling %s CLI with %d-char prompt", self.cli_tool, len(prompt))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
            if result.returncode != 0:
                raise ModelBackendError(
                    f"{self.cli_tool} CLI failed: {result.stderr or 'Unknown error'}"
                )
            return result.stdout
        except FileNotFoundError:
            raise ModelBackendError(
                f"{self.cli_tool} CLI not found. Install the required CLI tool."
            )
        except subprocess.TimeoutExpired:
            raise ModelBackendError(f"{self.cli_tool} CLI timed out after {self.timeout} seconds")


class AnthropicAPIBackend(ModelBackend):
    """
    Model backend using the Anthropic API directly.

    Requires ANTHROPIC_API_KEY environment variable.
    """

    def __init__(self, model: str = "claude-sonnet-4-20250514", max_tokens: int = 4096):
        """
        Initialize the API backend.

        Args:
            model: Model to use (default: claude-sonnet-4-20250514)
            max_tokens: Response token limit (default: 4096)
        """
        self.model = model
        self.max_tokens = max_tokens
        self._client = None

    def _get_client(self) -> AsyncAnthropic:
        if self._client is None:
            try:
                self._client = AsyncAnthropic()
            except AnthropicError as e:
                raise ModelBackendError(f"Anthropic API key missing or invalid: {e}")
        return self._client

    async def complete(self, system_prompt: str, messages: list[Message]) -> Completion:
        client = self._get_client()
        try:
            response = await client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system_prompt,
                messages=[m.to_dict() for m in messages],
            )
        except AnthropicError as e:
            raise ModelBackendError(f"Anthropic API call failed: {e}")

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        return Completion(
            text=text,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=response.model,
        )

    async def stream(self, system_prompt: str, messages: list[Message]) -> AsyncIterator[str]:
        client = self._get_client()
        try:
            async with client.messages.stream(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system_prompt,
                messages=[m.to_dict() for m in messages],
            ) as stream:
                async for text in stream.text_stream:
                    yield text
        except AnthropicError as e:
            raise ModelBackendError(f"Anthropic API stream failed: {e}")
