"""
Backend interfaces for agent-orchestrator.

This package defines abstract base classes for pluggable backends:
- ModelBackend: Language model invocation
- PersistenceBackend: Append-only record log

Concrete implementations:
- ClaudeCLIBackend / AnthropicAPIBackend: model invocation
- MemoryStore / JsonlStore: persistence
"""

from .base import (
    ModelBackend,
    PersistenceBackend,
    Message,
    Completion,
    LogEntry,
    EntryFilter,
)
from .llm import (
    ClaudeCLIBackend,
    AnthropicAPIBackend,
    ModelBackendError,
)
from .store import MemoryStore, JsonlStore

__all__ = [
    # Abstract interfaces
    "ModelBackend",
    "PersistenceBackend",
    # Data models
    "Message",
    "Completion",
    "LogEntry",
    "EntryFilter",
    # Model implementations
    "ClaudeCLIBackend",
    "AnthropicAPIBackend",
    "ModelBackendError",
    # Stores
    "MemoryStore",
    "JsonlStore",
]
