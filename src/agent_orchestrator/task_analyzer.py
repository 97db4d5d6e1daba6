"""
Task analysis: complexity scoring, categorization and strategy selection.

Everything here is deterministic and side-effect free. The analyzer never
raises; malformed input degrades to the minimal, single-coder, Sequential
analysis so callers always receive something usable.
"""

import logging
import math
import re
from abc import ABC, abstractmethod

from .models import (
    AgentType,
    ResourceEstimate,
    RiskLevel,
    StrategyKind,
    StrategyRecommendation,
    TaskAnalysis,
    TaskCategory,
    TaskContext,
)


logger = logging.getLogger(__name__)


BASE_COMPLEXITY = 0.1

# Domain keywords that signal a task benefits from decomposition
HIGH_COMPLEXITY_KEYWORDS = [
    "architecture", "design pattern", "microservices", "distributed",
    "algorithm", "optimization", "performance", "security", "database",
    "machine learning", "ai", "refactor", "multiple files", "system",
]
MEDIUM_COMPLEXITY_KEYWORDS = [
    "test", "integration", "api", "interface", "framework", "library",
    "configuration", "deployment", "component",
]
HIGH_KEYWORD_WEIGHT = 0.2
MEDIUM_KEYWORD_WEIGHT = 0.15

CONJUNCTION_WORDS = ["and", "also", "then"]
MULTIPLICITY_WORDS = ["multiple", "several", "many"]

# Substring signals per category, checked in order
CATEGORY_SIGNALS = [
    (TaskCategory.CODE_GENERATION, ["create", "generate", "implement"]),
    (TaskCategory.CODE_REFACTORING, ["refactor", "restructure", "reorganize"]),
    (TaskCategory.BUG_FIXING, ["fix", "bug", "error", "debug"]),
    (TaskCategory.TESTING, ["test"]),
    (TaskCategory.DOCUMENTATION, ["document", "readme", "comment"]),
    (TaskCategory.RESEARCH, ["research", "analyze", "investigate"]),
    (TaskCategory.ARCHITECTURE, ["architect", "design", "structure"]),
    (TaskCategory.DEPLOYMENT, ["deploy", "release", "publish"]),
]

CATEGORY_AGENTS = {
    TaskCategory.TESTING: AgentType.TESTER,
    TaskCategory.DOCUMENTATION: AgentType.DOCUMENTATION,
    TaskCategory.RESEARCH: AgentType.RESEARCHER,
    TaskCategory.BUG_FIXING: AgentType.DEBUGGER,
    TaskCategory.ARCHITECTURE: AgentType.ARCHITECT,
}

CATEGORY_STRATEGY_SCORES = {
    TaskCategory.CODE_GENERATION: {
        StrategyKind.SEQUENTIAL: 0.3, StrategyKind.PARALLEL: 0.4, StrategyKind.PIPELINE: 0.5,
    },
    TaskCategory.CODE_REFACTORING: {
        StrategyKind.SEQUENTIAL: 0.4, StrategyKind.HIERARCHICAL: 0.3,
    },
    TaskCategory.BUG_FIXING: {
        StrategyKind.SEQUENTIAL: 0.5, StrategyKind.PARALLEL: 0.2,
    },
    TaskCategory.TESTING: {
        StrategyKind.PARALLEL: 0.6, StrategyKind.PIPELINE: 0.4,
    },
    TaskCategory.DOCUMENTATION: {
        StrategyKind.SEQUENTIAL: 0.4, StrategyKind.PIPELINE: 0.3,
    },
    TaskCategory.RESEARCH: {
        StrategyKind.PARALLEL: 0.5, StrategyKind.SWARM: 0.4,
    },
    TaskCategory.ARCHITECTURE: {
        StrategyKind.HIERARCHICAL: 0.6, StrategyKind.SWARM: 0.3,
    },
    TaskCategory.DEPLOYMENT: {
        StrategyKind.SEQUENTIAL: 0.5, StrategyKind.HIERARCHICAL: 0.4,
    },
    TaskCategory.MAINTENANCE: {
        StrategyKind.SEQUENTIAL: 0.3, StrategyKind.PARALLEL: 0.2,
    },
}

# Tie-break order: cheapest strategy first
STRATEGY_PREFERENCE = list(StrategyKind)


def _keyword_pattern(keyword: str) -> re.Pattern:
    # Short keywords ("ai", "api") must be whole words
    suffix = r"s?\b" if len(keyword) <= 3 else ""
    return re.compile(r"\b" + re.escape(keyword) + suffix)


_HIGH_PATTERNS = [_keyword_pattern(k) for k in HIGH_COMPLEXITY_KEYWORDS]
_MEDIUM_PATTERNS = [_keyword_pattern(k) for k in MEDIUM_COMPLEXITY_KEYWORDS]
_CONJUNCTION_PATTERN = re.compile(r"\b(?:" + "|".join(CONJUNCTION_WORDS) + r")\b")
_MULTIPLICITY_PATTERN = re.compile(r"\b(?:" + "|".join(MULTIPLICITY_WORDS) + r")\b")


class ComplexityScorer(ABC):
    """Replaceable complexity model returning a score in [0, 1]."""

    @abstractmethod
    def score(self, description: str, context: TaskContext | None = None) -> float:
        """
        Score how much a task benefits from multi-agent decomposition.

        Args:
            description: Task description
            context: Optional information about affected code

        Returns:
            Complexity in [0, 1]
        """


class KeywordComplexityScorer(ComplexityScorer):
    """Keyword-weighted heuristic scorer."""

    def score(self, description: str, context: TaskContext | None = None) -> float:
        text = description.lower()
        complexity = BASE_COMPLEXITY

        complexity += HIGH_KEYWORD_WEIGHT * sum(1 for p in _HIGH_PATTERNS if p.search(text))
        complexity += MEDIUM_KEYWORD_WEIGHT * sum(1 for p in _MEDIUM_PATTERNS if p.search(text))

        if len(description) > 500:
            complexity += 0.2
        if len(description) > 1000:
            complexity += 0.2

        if _CONJUNCTION_PATTERN.search(text):
            complexity += 0.2
        if _MULTIPLICITY_PATTERN.search(text):
            complexity += 0.15

        return clamp_complexity(complexity)


def clamp_complexity(value: float) -> float:
    """Clamp to [0, 1], rounding away float noise from repeated additions."""
    return round(min(max(value, 0.0), 1.0), 6)


class TaskAnalyzer:
    """
    Analyzes task descriptions into a TaskAnalysis.

    Args:
        scorer: Complexity model (default: KeywordComplexityScorer)
    """

    def __init__(self, scorer: ComplexityScorer | None = None):
        self.scorer = scorer or KeywordComplexityScorer()

    def analyze_task(self, description: str, context: TaskContext | None = None) -> TaskAnalysis:
        """
        Analyze a task. Never raises.

        Args:
            description: Task description
            context: Optional affected files/imports

        Returns:
            TaskAnalysis for the task, or the minimal analysis on bad input
        """
        if not isinstance(description, str) or not description.strip():
            return self.minimal_analysis()

        try:
            complexity = self.calculate_complexity(description, context)
            categories = identify_categories(description)
            agents = determine_required_agents(categories, complexity)
            scores = calculate_strategy_scores(complexity, len(agents), categories, context)
            strategy = select_strategy(scores, complexity, len(agents))
        except Exception:
            logger.exception("Task analysis failed; using minimal analysis")
            return self.minimal_analysis()

        analysis = TaskAnalysis(
            complexity=complexity,
            categories=tuple(categories),
            strategy=strategy,
            required_agents=tuple(agents),
            risk_level=assess_risk(complexity, categories),
            estimated_duration_minutes=estimate_duration(complexity, len(agents), categories),
            resources=estimate_resources(complexity, len(agents)),
            strategy_scores=scores,
        )
        logger.debug(
            "Analyzed task: complexity=%.2f strategy=%s agents=%d",
            complexity, strategy.value, len(agents),
        )
        return analysis

    def calculate_complexity(self, description: str, context: TaskContext | None = None) -> float:
        """Score complexity with the configured scorer, degrading to the minimum on failure."""
        try:
            return clamp_complexity(float(self.scorer.score(description, context)))
        except Exception:
            logger.exception("Complexity scorer failed")
            return BASE_COMPLEXITY

    def get_strategy_recommendation(
        self, description: str, context: TaskContext | None = None
    ) -> StrategyRecommendation:
        """Recommend a strategy with an explanation and the two best alternatives."""
        analysis = self.analyze_task(description, context)
        scores = analysis.strategy_scores
        alternatives = sorted(
            (kind for kind in scores if kind != analysis.strategy),
            key=lambda kind: (-scores[kind], STRATEGY_PREFERENCE.index(kind)),
        )
        return StrategyRecommendation(
            strategy=analysis.strategy,
            confidence=max(scores.values()) if scores else 1.0,
            explanation=explain_strategy(analysis),
            alternatives=tuple(alternatives[:2]),
            scores=dict(scores),
        )

    @staticmethod
    def minimal_analysis() -> TaskAnalysis:
        """The safe default analysis: one coder, Sequential."""
        categories = [TaskCategory.CODE_GENERATION]
        return TaskAnalysis(
            complexity=BASE_COMPLEXITY,
            categories=tuple(categories),
            strategy=StrategyKind.SEQUENTIAL,
            required_agents=(AgentType.CODER,),
            risk_level=assess_risk(BASE_COMPLEXITY, categories),
            estimated_duration_minutes=estimate_duration(BASE_COMPLEXITY, 1, categories),
            resources=estimate_resources(BASE_COMPLEXITY, 1),
            strategy_scores={kind: 0.0 for kind in StrategyKind} | {StrategyKind.SEQUENTIAL: 1.0},
        )


def identify_categories(description: str) -> list[TaskCategory]:
    """Classify the task into categories, defaulting to code generation."""
    text = description.lower()
    categories = [
        category for category, signals in CATEGORY_SIGNALS
        if any(signal in text for signal in signals)
    ]
    return categories or [TaskCategory.CODE_GENERATION]


def determine_required_agents(categories: list[TaskCategory], complexity: float) -> list[AgentType]:
    """Ordered, de-duplicated agent roles the task needs."""
    agents = [AgentType.CODER]

    def add(agent_type: AgentType) -> None:
        if agent_type not in agents:
            agents.append(agent_type)

    for category in categories:
        if category in CATEGORY_AGENTS:
            add(CATEGORY_AGENTS[category])

    if complexity > 0.5 or len(categories) > 2:
        add(AgentType.PLANNER)
    if complexity > 0.6:
        add(AgentType.REVIEWER)
    if complexity > 0.8:
        add(AgentType.RESEARCHER)

    return agents


def calculate_strategy_scores(
    complexity: float,
    agent_count: int,
    categories: list[TaskCategory] | None = None,
    context: TaskContext | None = None,
) -> dict[StrategyKind, float]:
    """
    Per-strategy suitability scores normalized to a maximum of 1.0.

    Args:
        complexity: Task complexity in [0, 1]
        agent_count: Number of required agents
        categories: Task categories
        context: Optional affected files/imports

    Returns:
        Mapping of StrategyKind to score
    """
    scores = {kind: 0.0 for kind in StrategyKind}

    scores[StrategyKind.SEQUENTIAL] = (1 - complexity) * 0.8 + (0.5 if agent_count <= 3 else 0.2)
    scores[StrategyKind.PARALLEL] = (0.8 if 0.2 < complexity < 0.7 else 0.3) + (
        0.4 if 2 <= agent_count <= 5 else 0.1
    )
    scores[StrategyKind.PIPELINE] = (0.7 if 0.3 < complexity < 0.8 else 0.2) + (
        0.5 if 3 <= agent_count <= 6 else 0.2
    )
    scores[StrategyKind.HIERARCHICAL] = (0.8 if complexity > 0.5 else 0.3) + (
        0.6 if agent_count >= 4 else 0.2
    )
    scores[StrategyKind.SWARM] = (1.0 if complexity > 0.7 else complexity * 0.5) + (
        0.7 if agent_count >= 5 else agent_count * 0.1
    )

    for category in categories or []:
        for kind, bonus in CATEGORY_STRATEGY_SCORES.get(category, {}).items():
            scores[kind] += bonus

    if context is not None:
        file_count = len(context.affected_files)
        if file_count > 5:
            scores[StrategyKind.HIERARCHICAL] += 0.3
            scores[StrategyKind.SWARM] += 0.2
        if context.imports and file_count > 3:
            scores[StrategyKind.PIPELINE] += 0.4
            scores[StrategyKind.HIERARCHICAL] += 0.3
        if complexity > 0.6 and file_count > 7:
            scores[StrategyKind.SWARM] += 0.5
        if file_count <= 5 and complexity < 0.5:
            scores[StrategyKind.PARALLEL] += 0.3

    max_score = max(scores.values())
    if max_score > 0:
        scores = {kind: round(score / max_score, 6) for kind, score in scores.items()}
    return scores


def select_strategy(
    scores: dict[StrategyKind, float], complexity: float, agent_count: int
) -> StrategyKind:
    """
    Pick the best-scoring strategy.

    Ties go to the cheaper strategy at low complexity (<= 0.5) and to the
    more capable one above it. A single agent always runs Sequential.
    """
    if agent_count <= 1:
        return StrategyKind.SEQUENTIAL

    preference = STRATEGY_PREFERENCE if complexity <= 0.5 else list(reversed(STRATEGY_PREFERENCE))
    best = preference[0]
    for kind in preference[1:]:
        if scores[kind] > scores[best]:
            best = kind
    return best


def assess_risk(complexity: float, categories: list[TaskCategory]) -> RiskLevel:
    risk = complexity
    if TaskCategory.ARCHITECTURE in categories:
        risk += 0.2
    if TaskCategory.DEPLOYMENT in categories:
        risk += 0.3
    if TaskCategory.CODE_REFACTORING in categories:
        risk += 0.1

    if risk < 0.3:
        return RiskLevel.LOW
    if risk < 0.6:
        return RiskLevel.MEDIUM
    if risk < 0.8:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def estimate_duration(complexity: float, agent_count: int, categories: list[TaskCategory]) -> int:
    """Estimated minutes; more agents help with diminishing returns."""
    base = 10 * (1 + complexity * 5) * (len(categories) * 0.5)
    efficiency = math.log(agent_count) + 1 if agent_count > 1 else 1
    return math.ceil(base / efficiency)


def estimate_resources(complexity: float, agent_count: int) -> ResourceEstimate:
    multiplier = 1 + complexity * 2
    agent_factor = math.sqrt(max(agent_count, 1))
    return ResourceEstimate(
        memory_mb=math.ceil(100 * multiplier * agent_factor),
        cpu_cores=math.ceil(multiplier),
        network_bandwidth=math.ceil(multiplier),
        api_calls_estimate=math.ceil(10 * multiplier * max(agent_count, 1)),
        timeout_minutes=math.ceil(5 * multiplier * agent_factor),
    )


def explain_strategy(analysis: TaskAnalysis) -> str:
    """Human-readable reason for the selected strategy."""
    c = analysis.complexity
    level = "low" if c < 0.3 else "medium" if c < 0.7 else "high"
    categories = ", ".join(cat.value for cat in analysis.categories)
    count = len(analysis.required_agents)
    details = {
        StrategyKind.SEQUENTIAL: "Tasks will be executed in order with dependencies.",
        StrategyKind.PARALLEL: "Independent tasks will be executed simultaneously.",
        StrategyKind.PIPELINE: "Data will flow through processing stages.",
        StrategyKind.HIERARCHICAL: "Coordinator-worker delegation will manage complexity.",
        StrategyKind.SWARM: "Distributed coordination with quorum voting will handle adaptive requirements.",
    }
    return (
        f"{analysis.strategy.value.capitalize()} strategy selected for {level} complexity task "
        f"({categories}) with {count} agent{'s' if count != 1 else ''}. "
        f"{details[analysis.strategy]}"
    )
