"""
Abstract base classes for pluggable backends.

Defines contracts for:
- ModelBackend: Language model invocation (complete, stream)
- PersistenceBackend: Append-only record log (store, query)
"""

import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Message:
    """A single chat turn sent to a model."""

    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class Completion:
    """
    Backend-agnostic model response.

    Carries the generated text plus usage accounting.
    """

    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    model: str | None = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class LogEntry:
    """
    Opaque persisted record.

    The only schema imposed is id, timestamp and payload.
    """

    payload: dict[str, Any]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "timestamp": self.timestamp, "payload": self.payload}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LogEntry":
        return cls(id=data["id"], timestamp=data["timestamp"], payload=data.get("payload", {}))


@dataclass
class EntryFilter:
    """
    Query filter over persisted records.

    Attributes:
        since: Inclusive lower timestamp bound
        until: Exclusive upper timestamp bound
        payload_match: Key/value pairs the payload must contain
        limit: Return at most this many of the newest matches
    """

    since: float | None = None
    until: float | None = None
    payload_match: dict[str, Any] = field(default_factory=dict)
    limit: int | None = None

    def matches(self, entry: LogEntry) -> bool:
        if self.since is not None and entry.timestamp < self.since:
            return False
        if self.until is not None and entry.timestamp >= self.until:
            return False
        return all(entry.payload.get(k) == v for k, v in self.payload_match.items())

    def apply(self, entries: list[LogEntry]) -> list[LogEntry]:
        """Filter entries, keeping insertion order and honoring limit."""
        matched = [e for e in entries if self.matches(e)]
        if self.limit is not None:
            matched = matched[-self.limit:] if self.limit > 0 else []
        return matched


class ModelBackend(ABC):
    """
    Abstract interface for language model invocation.

    The orchestration core depends only on this contract, never on a
    specific provider.

    Example implementations:
    - ClaudeCLIBackend: claude CLI in print mode
    - AnthropicAPIBackend: Anthropic Messages API
    """

    @abstractmethod
    async def complete(self, system_prompt: str, messages: list[Message]) -> Completion:
        """
        Generate a full response.

        Args:
            system_prompt: Role instructions for the model
            messages: Conversation so far

        Returns:
            Completion with text and token usage

        Raises:
            ModelBackendError: If the call fails
        """
        pass

    async def stream(self, system_prompt: str, messages: list[Message]) -> AsyncIterator[str]:
        """
        Generate a response as text chunks.

        The default implementation yields the full completion as one chunk.

        Args:
            system_prompt: Role instructions for the model
            messages: Conversation so far

        Yields:
            Text chunks in order
        """
        completion = await self.complete(system_prompt, messages)
        yield completion.text


class PersistenceBackend(ABC):
    """
    Abstract interface for the append-only record log.

    Records are never updated or deleted by the orchestration core.
    """

    @abstractmethod
    def store(self, entry: LogEntry) -> None:
        """
        Append a record.

        Args:
            entry: Record to persist
        """
        pass

    @abstractmethod
    def query(self, entry_filter: EntryFilter | None = None) -> list[LogEntry]:
        """
        Read records in insertion order.

        Args:
            entry_filter: Optional filter (default: all records)

        Returns:
            Matching records
        """
        pass
