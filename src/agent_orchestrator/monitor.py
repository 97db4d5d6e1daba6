"""
Performance telemetry for orchestrations.

Tracks per-task timings and resource readings, keeps a history of finished
tasks and derives health, limits and optimization hints from it. Process
memory and CPU are read with psutil.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any

import psutil


logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024

LONG_TASK_MS = 300000
MANY_AGENTS = 4
MAX_HISTORY = 1000


@dataclass(frozen=True)
class ResourceLimits:
    max_memory_mb: int = 8192
    max_concurrent_agents: int = 5
    max_execution_time_ms: int = 30 * 60 * 1000
    cpu_throttle_threshold: float = 80.0


@dataclass
class TaskPerformance:
    """Timing and resource readings for one task."""

    task_id: str
    strategy: str
    complexity: float
    agents_used: int
    start_time: float
    memory_mb: float
    cpu_percent: float
    end_time: float | None = None
    success: bool = False
    error_count: int = 0
    suggestions: list[str] = field(default_factory=list)

    @property
    def duration_ms(self) -> float:
        end = self.end_time if self.end_time is not None else time.time()
        return (end - self.start_time) * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "strategy": self.strategy,
            "complexity": self.complexity,
            "agents_used": self.agents_used,
            "duration_ms": round(self.duration_ms, 1),
            "memory_mb": round(self.memory_mb, 1),
            "cpu_percent": self.cpu_percent,
            "success": self.success,
            "error_count": self.error_count,
            "suggestions": list(self.suggestions),
        }


def current_memory_mb() -> float:
    """Resident memory of this process in MB."""
    return psutil.Process().memory_info().rss / BYTES_PER_MB


def current_cpu_percent() -> float:
    """System CPU utilisation since the previous call (non-blocking)."""
    return psutil.cpu_percent(interval=None)


class PerformanceMonitor:
    """
    Records task performance and reports on resource pressure.

    Args:
        limits: Thresholds used for health and limit checks
        performance_threshold: Success rate below which strategy advice is given
    """

    def __init__(self, limits: ResourceLimits | None = None, performance_threshold: float = 0.8):
        self.limits = limits or ResourceLimits()
        self.performance_threshold = performance_threshold
        self._active: dict[str, TaskPerformance] = {}
        self._history: list[TaskPerformance] = []
        self._started_at = time.time()

    def start_task(self, task_id: str, strategy: str, complexity: float, agents_used: int) -> None:
        self._active[task_id] = TaskPerformance(
            task_id=task_id,
            strategy=strategy,
            complexity=complexity,
            agents_used=agents_used,
            start_time=time.time(),
            memory_mb=current_memory_mb(),
            cpu_percent=current_cpu_percent(),
        )

    def complete_task(self, task_id: str, success: bool, error_count: int = 0) -> TaskPerformance | None:
        """Finish monitoring a task. Returns None for an unknown task id."""
        record = self._active.pop(task_id, None)
        if record is None:
            return None
        record.end_time = time.time()
        record.success = success
        record.error_count = error_count
        record.suggestions = self._suggestions_for(record)

        self._history.append(record)
        if len(self._history) > MAX_HISTORY:
            self._history = self._history[-MAX_HISTORY:]
        if record.suggestions:
            logger.info("Task %s: %s", task_id, "; ".join(record.suggestions))
        return replace(record, suggestions=list(record.suggestions))

    def _suggestions_for(self, record: TaskPerformance) -> list[str]:
        suggestions = []
        if record.duration_ms > LONG_TASK_MS:
            suggestions.append("Consider breaking down this task into smaller subtasks")
        if record.memory_mb > self.limits.max_memory_mb * 0.8:
            suggestions.append("High memory usage detected - consider reducing agent count")
        if record.agents_used > MANY_AGENTS:
            suggestions.append("Large number of agents used - verify coordination efficiency")
        if record.complexity > 0.8 and not record.success:
            suggestions.append("High complexity task failed - consider hierarchical coordination")
        if record.error_count > 2:
            suggestions.append("Multiple errors detected - review error handling and retry logic")
        return suggestions

    def _active_agents(self) -> int:
        return sum(r.agents_used for r in self._active.values())

    def check_resource_limits(self) -> dict[str, Any]:
        violations = []
        recommendations = []

        memory = current_memory_mb()
        if memory > self.limits.max_memory_mb:
            violations.append(f"Memory usage ({memory:.0f}MB) exceeds limit ({self.limits.max_memory_mb}MB)")
            recommendations.append("Reduce concurrent agents")

        agents = self._active_agents()
        if agents > self.limits.max_concurrent_agents:
            violations.append(
                f"Concurrent agents ({agents}) exceeds limit ({self.limits.max_concurrent_agents})"
            )
            recommendations.append("Lower max_concurrent_tasks or raise max_concurrent_agents")

        longest = max((r.duration_ms for r in self._active.values()), default=0.0)
        if longest > self.limits.max_execution_time_ms:
            violations.append("Task execution time exceeds limit")
            recommendations.append("Break down complex tasks or increase timeout_minutes")

        return {
            "within_limits": not violations,
            "violations": violations,
            "recommendations": recommendations,
        }

    def get_performance_summary(self) -> dict[str, Any]:
        history = self._history
        if not history:
            return {
                "total_tasks": 0,
                "success_rate": 0.0,
                "average_duration_ms": 0.0,
                "average_memory_mb": 0.0,
                "average_agents_used": 0.0,
                "top_performing_strategy": "none",
            }

        count = len(history)
        by_strategy: dict[str, list[TaskPerformance]] = {}
        for record in history:
            by_strategy.setdefault(record.strategy, []).append(record)

        top, best = "none", 0.0
        for strategy, records in by_strategy.items():
            success_rate = sum(r.success for r in records) / len(records)
            avg_duration = sum(r.duration_ms for r in records) / len(records)
            score = success_rate * (10000 / (avg_duration + 1000))
            if score > best:
                top, best = strategy, score

        return {
            "total_tasks": count,
            "success_rate": sum(r.success for r in history) / count,
            "average_duration_ms": sum(r.duration_ms for r in history) / count,
            "average_memory_mb": sum(r.memory_mb for r in history) / count,
            "average_agents_used": sum(r.agents_used for r in history) / count,
            "top_performing_strategy": top,
        }

    def get_real_time_status(self) -> dict[str, Any]:
        memory = current_memory_mb()
        cpu = current_cpu_percent()
        agents = self._active_agents()
        limits = self.limits

        if (
            memory > limits.max_memory_mb * 0.9
            or agents > limits.max_concurrent_agents * 0.9
            or cpu > limits.cpu_throttle_threshold
        ):
            health = "critical"
        elif (
            memory > limits.max_memory_mb * 0.7
            or agents > limits.max_concurrent_agents * 0.7
            or cpu > limits.cpu_throttle_threshold * 0.8
        ):
            health = "warning"
        else:
            health = "healthy"

        return {
            "active_tasks": len(self._active),
            "memory_mb": round(memory, 1),
            "cpu_percent": cpu,
            "active_agents": agents,
            "system_health": health,
            "uptime_seconds": round(time.time() - self._started_at, 3),
        }

    def optimize_performance(self) -> dict[str, Any]:
        """Recommendations derived from the history."""
        summary = self.get_performance_summary()
        recommendations = []
        if summary["average_memory_mb"] > self.limits.max_memory_mb * 0.8:
            recommendations.append("Reduce memory per orchestration by lowering concurrent agents")
        if summary["average_agents_used"] > self.limits.max_concurrent_agents * 0.8:
            recommendations.append("Scale agent counts down for low-complexity tasks")
        if summary["total_tasks"] and summary["success_rate"] < self.performance_threshold:
            recommendations.append(
                f"Consider using the {summary['top_performing_strategy']} strategy more frequently"
            )
        return {"recommendations": recommendations, "summary": summary}

    def get_history(self) -> list[dict[str, Any]]:
        return [r.to_dict() for r in self._history]

    def reset_history(self) -> None:
        self._history.clear()
