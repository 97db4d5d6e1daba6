"""
Error taxonomy for the orchestration engine.

Every error raised inside the engine derives from OrchestrationError, so the
orchestrator boundary can convert any of them into a failed result.
"""


class OrchestrationError(Exception):
    """Base class for orchestration failures."""


class ConfigurationError(OrchestrationError):
    """Raised for an unknown agent/strategy type or an invalid setting."""


class InvalidTransitionError(ConfigurationError):
    """Raised when an agent status change leaves the allowed state machine."""


class ResourceExhaustedError(OrchestrationError):
    """Raised when concurrency, memory or agent-count limits are saturated."""


class AgentExecutionError(OrchestrationError):
    """Raised when a model call fails or returns unusable output."""

    def __init__(self, message: str, agent_id: str | None = None):
        super().__init__(message)
        self.agent_id = agent_id


class OrchestrationTimeoutError(OrchestrationError, TimeoutError):
    """Raised when an orchestration exceeds its wall-clock budget."""


class CancellationError(OrchestrationError):
    """Raised when the caller requested an abort."""
