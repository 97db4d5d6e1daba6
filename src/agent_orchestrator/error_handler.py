"""
Failure classification and recovery advice.

Every error that reaches the orchestrator boundary is recorded here with a
category and severity. The first recovery strategy that matches decides the
advice returned to the caller (retry, switch strategy, fall back). History is
bounded and feeds error statistics and a coarse system health verdict.
"""

import asyncio
import itertools
import logging
import time
import traceback
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import (
    AgentExecutionError,
    CancellationError,
    ConfigurationError,
    OrchestrationTimeoutError,
    ResourceExhaustedError,
)


logger = logging.getLogger(__name__)

MAX_HISTORY = 1000
HEALTH_WINDOW_SECONDS = 300
HEALTH_SAMPLE = 20


class ErrorSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    INITIALIZATION = "initialization"
    AGENT_COMMUNICATION = "agent_communication"
    COORDINATION = "coordination"
    RESOURCE = "resource"
    TIMEOUT = "timeout"
    VALIDATION = "validation"
    EXTERNAL_API = "external_api"
    MEMORY = "memory"
    UNKNOWN = "unknown"


@dataclass
class ErrorRecord:
    id: str
    message: str
    category: ErrorCategory
    severity: ErrorSeverity
    timestamp: float = field(default_factory=time.time)
    task_id: str | None = None
    agent_id: str | None = None
    strategy: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    stack_trace: str | None = None
    resolved: bool = False
    retry_count: int = 0
    recovery_action: str | None = None
    resolution_ms: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp,
            "task_id": self.task_id,
            "agent_id": self.agent_id,
            "strategy": self.strategy,
            "resolved": self.resolved,
            "retry_count": self.retry_count,
            "recovery_action": self.recovery_action,
        }


@dataclass
class RecoveryResult:
    """Advice for the caller after an error."""

    success: bool
    message: str
    should_retry: bool = False
    new_strategy: str | None = None
    fallback_action: str | None = None


@dataclass
class RecoveryStrategy:
    """
    A bounded recovery policy for matching errors.

    Attributes:
        name: Strategy name for logs
        matches: Predicate selecting the errors it handles
        max_retries: Attempts before giving up
        backoff_seconds: Base delay, doubled per prior attempt
        result: Advice returned when the strategy applies
    """

    name: str
    matches: Callable[[ErrorRecord], bool]
    max_retries: int
    backoff_seconds: float
    result: RecoveryResult


def _category(*categories: ErrorCategory) -> Callable[[ErrorRecord], bool]:
    return lambda record: record.category in categories


DEFAULT_RECOVERY_STRATEGIES = [
    RecoveryStrategy(
        name="initialization",
        matches=_category(ErrorCategory.INITIALIZATION),
        max_retries=3,
        backoff_seconds=1.0,
        result=RecoveryResult(True, "Re-initialization triggered", fallback_action="disable_orchestration"),
    ),
    RecoveryStrategy(
        name="agent_communication",
        matches=_category(ErrorCategory.AGENT_COMMUNICATION, ErrorCategory.EXTERNAL_API),
        max_retries=2,
        backoff_seconds=2.0,
        result=RecoveryResult(True, "Agent reconnection attempted", fallback_action="reduce_agent_count"),
    ),
    RecoveryStrategy(
        name="resource_exhaustion",
        matches=_category(ErrorCategory.RESOURCE, ErrorCategory.MEMORY),
        max_retries=1,
        backoff_seconds=5.0,
        result=RecoveryResult(True, "Resource cleanup requested", fallback_action="single_agent_mode"),
    ),
    RecoveryStrategy(
        name="timeout",
        matches=_category(ErrorCategory.TIMEOUT),
        max_retries=2,
        backoff_seconds=1.0,
        result=RecoveryResult(True, "Retry with extended timeout", should_retry=True, fallback_action="increase_timeout"),
    ),
    RecoveryStrategy(
        name="coordination",
        matches=_category(ErrorCategory.COORDINATION),
        max_retries=1,
        backoff_seconds=3.0,
        result=RecoveryResult(True, "Switch to sequential coordination", new_strategy="sequential"),
    ),
    RecoveryStrategy(
        name="graceful_degradation",
        matches=lambda record: True,
        max_retries=1,
        backoff_seconds=1.0,
        result=RecoveryResult(False, "Falling back to single agent execution", fallback_action="single_agent_mode"),
    ),
]


def classify(error: BaseException) -> tuple[ErrorCategory, ErrorSeverity]:
    """Map an exception onto a category and severity."""
    if isinstance(error, OrchestrationTimeoutError | asyncio.TimeoutError | TimeoutError):
        return ErrorCategory.TIMEOUT, ErrorSeverity.MEDIUM
    if isinstance(error, ResourceExhaustedError):
        return ErrorCategory.RESOURCE, ErrorSeverity.HIGH
    if isinstance(error, MemoryError):
        return ErrorCategory.MEMORY, ErrorSeverity.CRITICAL
    if isinstance(error, AgentExecutionError):
        return ErrorCategory.AGENT_COMMUNICATION, ErrorSeverity.MEDIUM
    if isinstance(error, ConfigurationError | ValueError):
        return ErrorCategory.VALIDATION, ErrorSeverity.MEDIUM
    if isinstance(error, CancellationError):
        return ErrorCategory.COORDINATION, ErrorSeverity.LOW
    return ErrorCategory.UNKNOWN, ErrorSeverity.HIGH


class ErrorHandler:
    """Records errors, applies recovery policies and reports on error health."""

    def __init__(self, strategies: list[RecoveryStrategy] | None = None, max_history: int = MAX_HISTORY):
        self.strategies = list(strategies or DEFAULT_RECOVERY_STRATEGIES)
        self.max_history = max_history
        self._history: list[ErrorRecord] = []
        self._counter = itertools.count(1)

    async def handle_error(
        self,
        error: BaseException | str,
        category: ErrorCategory,
        severity: ErrorSeverity,
        retry_count: int = 0,
        **context: Any,
    ) -> RecoveryResult:
        """
        Record an error and apply the first matching recovery strategy.

        Args:
            error: Exception or message
            category: Error category
            severity: Error severity
            retry_count: Attempts already made for this operation
            **context: task_id, agent_id, strategy and any extra details

        Returns:
            RecoveryResult describing what the caller should do next
        """
        record = self._record(error, category, severity, retry_count, context)
        log = logger.error if severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL) else logger.warning
        log("%s %s error: %s", severity.value.upper(), category.value, record.message)

        result = await self._recover(record)
        record.resolved = result.success
        record.recovery_action = result.message
        if result.success:
            record.resolution_ms = (time.time() - record.timestamp) * 1000
        return result

    def _record(self, error, category, severity, retry_count, context) -> ErrorRecord:
        if isinstance(error, BaseException):
            message = str(error) or type(error).__name__
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        else:
            message, stack = error, None

        record = ErrorRecord(
            id=f"error_{next(self._counter)}_{int(time.time() * 1000)}",
            message=message,
            category=category,
            severity=severity,
            task_id=context.pop("task_id", None),
            agent_id=context.pop("agent_id", None),
            strategy=context.pop("strategy", None),
            details=context,
            stack_trace=stack,
            retry_count=retry_count,
        )
        self._history.append(record)
        if len(self._history) > self.max_history:
            self._history = self._history[-self.max_history:]
        return record

    async def _recover(self, record: ErrorRecord) -> RecoveryResult:
        strategy = next((s for s in self.strategies if s.matches(record)), None)
        if strategy is None:
            return RecoveryResult(False, "No recovery strategy available", fallback_action="graceful_degradation")

        if record.retry_count >= strategy.max_retries:
            return RecoveryResult(
                False,
                f"Maximum retries ({strategy.max_retries}) exceeded for {strategy.name}",
                fallback_action="graceful_degradation",
            )

        if record.retry_count > 0:
            await asyncio.sleep(strategy.backoff_seconds * 2 ** (record.retry_count - 1))
        logger.info("Recovering with %s (attempt %d)", strategy.name, record.retry_count + 1)
        template = strategy.result
        return RecoveryResult(
            success=template.success,
            message=template.message,
            should_retry=template.should_retry,
            new_strategy=template.new_strategy,
            fallback_action=template.fallback_action,
        )

    async def handle_orchestration_error(
        self, error: BaseException | str, task_id: str, strategy: str | None = None
    ) -> RecoveryResult:
        if isinstance(error, BaseException):
            category, severity = classify(error)
            if category == ErrorCategory.UNKNOWN:
                category = ErrorCategory.COORDINATION
        else:
            category, severity = ErrorCategory.COORDINATION, ErrorSeverity.HIGH
        return await self.handle_error(error, category, severity, task_id=task_id, strategy=strategy)

    async def handle_agent_error(
        self, error: BaseException | str, agent_id: str, task_id: str | None = None
    ) -> RecoveryResult:
        return await self.handle_error(
            error, ErrorCategory.AGENT_COMMUNICATION, ErrorSeverity.MEDIUM, agent_id=agent_id, task_id=task_id
        )

    async def handle_resource_error(
        self, error: BaseException | str, resource_type: str, current_usage: float, limit: float
    ) -> RecoveryResult:
        return await self.handle_error(
            error,
            ErrorCategory.RESOURCE,
            ErrorSeverity.HIGH,
            resource_type=resource_type,
            current_usage=current_usage,
            limit=limit,
            utilization_percent=(current_usage / limit) * 100 if limit else 0.0,
        )

    async def handle_timeout_error(
        self, operation: str, timeout_ms: float, task_id: str | None = None
    ) -> RecoveryResult:
        message = f"Operation '{operation}' timed out after {timeout_ms:.0f}ms"
        return await self.handle_error(
            message, ErrorCategory.TIMEOUT, ErrorSeverity.MEDIUM, task_id=task_id, operation=operation
        )

    def get_error_statistics(self) -> dict[str, Any]:
        resolved = [r for r in self._history if r.resolved and r.resolution_ms is not None]
        total = len(self._history)
        return {
            "total_errors": total,
            "errors_by_category": {
                c.value: sum(1 for r in self._history if r.category == c) for c in ErrorCategory
            },
            "errors_by_severity": {
                s.value: sum(1 for r in self._history if r.severity == s) for s in ErrorSeverity
            },
            "resolved_errors": len(resolved),
            "resolution_rate": len(resolved) / total if total else 0.0,
            "average_resolution_ms": sum(r.resolution_ms for r in resolved) / len(resolved) if resolved else 0.0,
            "recent_errors": [r.to_dict() for r in self._history[-10:]],
        }

    def get_system_health(self) -> dict[str, Any]:
        """Healthy, degraded or critical, judged on the most recent errors."""
        recent = self._history[-HEALTH_SAMPLE:]
        now = time.time()
        in_window = [r for r in recent if now - r.timestamp < HEALTH_WINDOW_SECONDS]
        critical = [r for r in in_window if r.severity == ErrorSeverity.CRITICAL]
        high = [r for r in in_window if r.severity == ErrorSeverity.HIGH]

        status = "healthy"
        issues = []
        recommendations = []
        if critical:
            status = "critical"
            issues.append(f"{len(critical)} critical errors in the last 5 minutes")
            recommendations.append("Check system resources and model backend availability")
        elif len(high) > 3:
            status = "degraded"
            issues.append(f"{len(high)} high-severity errors in the last 5 minutes")
            recommendations.append("Scale back concurrent orchestrations")
        elif len(recent) > 10:
            status = "degraded"
            issues.append("High error frequency detected")
            recommendations.append("Review error patterns")

        if sum(1 for r in recent if r.category == ErrorCategory.COORDINATION) > 5:
            issues.append("Coordination system experiencing frequent errors")
            recommendations.append("Review coordination strategy selection")
        if sum(1 for r in recent if r.category == ErrorCategory.RESOURCE) > 3:
            issues.append("Resource exhaustion errors detected")
            recommendations.append("Raise resource limits or lower max_concurrent_tasks")

        return {"status": status, "issues": issues, "recommendations": recommendations}

    def get_history(self) -> list[ErrorRecord]:
        return list(self._history)

    def clear_error_history(self) -> None:
        self._history.clear()
        logger.info("Error history cleared")
