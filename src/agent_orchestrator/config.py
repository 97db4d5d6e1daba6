"""
Configuration system for agent-orchestrator.

Provides the OrchestrationConfig dataclass and load_config/save_config for
reading and writing .swarm/orchestration.json.
"""

import json
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from .errors import ConfigurationError


DEFAULT_CONFIG_PATH = Path(".swarm") / "orchestration.json"

# Backend registry: centralized definitions with descriptions for help text
BACKENDS = {
    "model": {
        "claude-cli": "Uses the Claude Code CLI (claude -p) for agent model calls (default)",
        "anthropic-api": "Uses the Anthropic API directly - requires ANTHROPIC_API_KEY env var",
    },
    "store": {
        "memory": "Keeps orchestration records in process memory (default)",
        "jsonl": "Appends orchestration records to .swarm/records.jsonl",
    },
}

# Fields the host application may change at runtime through update_config()
HOST_FIELDS = (
    "enabled",
    "complexity_threshold",
    "max_concurrent_agents",
    "max_memory_usage",
    "timeout_minutes",
    "fallback_to_single_agent",
)


def get_backend_choices(backend_type: str) -> list[str]:
    """Get list of valid choices for a backend type."""
    return list(BACKENDS.get(backend_type, {}).keys())


def format_backend_help(backend_type: str, intro: str = "") -> str:
    """Format help text for a backend type with all options described."""
    options = BACKENDS.get(backend_type, {})
    if not options:
        return intro
    lines = [intro] if intro else []
    for name, desc in options.items():
        lines.append(f"  {name}: {desc}")
    return "\n".join(lines)


@dataclass
class OrchestrationConfig:
    """
    Configuration for the orchestration engine.

    Attributes:
        enabled: Master switch; when False every task falls back to one agent
        complexity_threshold: Minimum complexity (exclusive) to orchestrate (default: 0.4)
        max_concurrent_agents: Upper bound on concurrently running agents per task (default: 5)
        max_concurrent_tasks: Active orchestrations admitted at once (default: 3)
        max_memory_usage: Memory budget in MB across active orchestrations (default: 8192)
        timeout_minutes: Wall-clock limit per orchestration (default: 30)
        fallback_to_single_agent: Whether callers should fall back on failure (default: True)
        max_agents: Agents a swarm coordinator accepts (default: 10)
        step_retries: Retries per strategy step (default: 1)
        quorum_fraction: Fraction of weighted agent success needed by Parallel/Swarm (default: 0.5)
        model_backend: "claude-cli" or "anthropic-api"
        store_backend: "memory" or "jsonl"
        llm_model: Model for the anthropic-api backend
        llm_timeout: Timeout for a single model call in seconds (default: 120)
        heartbeat_interval: Seconds between agent heartbeats, 0 disables (default: 5.0)
    """

    enabled: bool = True
    complexity_threshold: float = 0.4
    max_concurrent_agents: int = 5
    max_concurrent_tasks: int = 3
    max_memory_usage: int = 8192
    timeout_minutes: float = 30.0
    fallback_to_single_agent: bool = True
    max_agents: int = 10
    step_retries: int = 1
    quorum_fraction: float = 0.5
    model_backend: str = "claude-cli"
    store_backend: str = "memory"
    llm_model: str = "claude-sonnet-4-20250514"
    llm_timeout: int = 120
    heartbeat_interval: float = 5.0

    def __post_init__(self):
        """Validate configuration values."""
        valid_model = set(get_backend_choices("model"))
        valid_store = set(get_backend_choices("store"))

        if self.model_backend not in valid_model:
            raise ValueError(
                f"Invalid model_backend: {self.model_backend}. "
                f"Valid options: {valid_model}"
            )
        if self.store_backend not in valid_store:
            raise ValueError(
                f"Invalid store_backend: {self.store_backend}. "
                f"Valid options: {valid_store}"
            )
        if not (0.0 <= self.complexity_threshold <= 1.0):
            raise ValueError(
                f"Invalid complexity_threshold: {self.complexity_threshold}. "
                f"Must be between 0.0 and 1.0"
            )
        if not (0.0 < self.quorum_fraction <= 1.0):
            raise ValueError(
                f"Invalid quorum_fraction: {self.quorum_fraction}. "
                f"Must be greater than 0.0 and at most 1.0"
            )
        for name in ("max_concurrent_agents", "max_concurrent_tasks", "max_memory_usage", "max_agents"):
            if getattr(self, name) < 1:
                raise ValueError(f"Invalid {name}: {getattr(self, name)}. Must be at least 1")
        if self.timeout_minutes <= 0:
            raise ValueError(f"Invalid timeout_minutes: {self.timeout_minutes}. Must be positive")
        if self.step_retries < 0:
            raise ValueError(f"Invalid step_retries: {self.step_retries}. Must be non-negative")
        if self.heartbeat_interval < 0:
            raise ValueError(
                f"Invalid heartbeat_interval: {self.heartbeat_interval}. Must be non-negative"
            )

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_minutes * 60

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrchestrationConfig":
        """Create OrchestrationConfig from a dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def host_view(self) -> dict[str, Any]:
        """The subset of settings owned by the host application."""
        return {name: getattr(self, name) for name in HOST_FIELDS}

    def apply_updates(self, updates: dict[str, Any]) -> "OrchestrationConfig":
        """
        Return a new config with host-owned fields updated.

        Args:
            updates: Partial mapping restricted to HOST_FIELDS

        Returns:
            A validated copy of this config

        Raises:
            ConfigurationError: On an unknown key or an invalid value
        """
        unknown = set(updates) - set(HOST_FIELDS)
        if unknown:
            raise ConfigurationError(
                f"Unknown config keys: {sorted(unknown)}. Valid keys: {list(HOST_FIELDS)}"
            )
        try:
            return replace(self, **updates)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(str(e)) from e


def load_config(config_path: str | Path | None = None) -> OrchestrationConfig:
    """
    Load configuration from file or return defaults.

    Args:
        config_path: Path to config file. If None, looks for .swarm/orchestration.json

    Returns:
        OrchestrationConfig with loaded or default values
    """
    config_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH

    if not config_path.exists():
        return OrchestrationConfig()

    try:
        data = json.loads(config_path.read_text())
        return OrchestrationConfig.from_dict(data)
    except (json.JSONDecodeError, TypeError, AttributeError) as e:
        raise ValueError(f"Invalid config file {config_path}: {e}")


def save_config(config: OrchestrationConfig, config_path: str | Path | None = None) -> None:
    """
    Save configuration to file.

    Args:
        config: OrchestrationConfig to save
        config_path: Path to config file. If None, saves to .swarm/orchestration.json
    """
    config_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(config.to_dict(), indent=2))
