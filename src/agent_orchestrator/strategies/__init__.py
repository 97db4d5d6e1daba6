"""
Coordination strategies and their tag-keyed registry.
"""

from ..errors import ConfigurationError
from ..models import StrategyKind
from .base import (
    CoordinationPlan,
    CoordinationStep,
    CoordinationStrategy,
    PlanStatus,
    ResourceRequirements,
    StepStatus,
)
from .hierarchical import HierarchicalStrategy
from .parallel import ParallelStrategy
from .pipeline import PipelineStrategy
from .sequential import SequentialStrategy
from .swarm import SwarmStrategy

STRATEGIES: dict[StrategyKind, type[CoordinationStrategy]] = {
    StrategyKind.SEQUENTIAL: SequentialStrategy,
    StrategyKind.PARALLEL: ParallelStrategy,
    StrategyKind.PIPELINE: PipelineStrategy,
    StrategyKind.HIERARCHICAL: HierarchicalStrategy,
    StrategyKind.SWARM: SwarmStrategy,
}


def create_strategy(kind: StrategyKind | str, **kwargs) -> CoordinationStrategy:
    """
    Instantiate a strategy by kind.

    Args:
        kind: StrategyKind or its string value
        **kwargs: Passed to the strategy constructor

    Raises:
        ConfigurationError: For an unknown strategy kind
    """
    if not isinstance(kind, StrategyKind):
        try:
            kind = StrategyKind(kind)
        except ValueError:
            valid = [k.value for k in StrategyKind]
            raise ConfigurationError(f"Unknown strategy: {kind!r}. Valid strategies: {valid}")
    return STRATEGIES[kind](**kwargs)


__all__ = [
    "STRATEGIES",
    "create_strategy",
    "CoordinationPlan",
    "CoordinationStep",
    "CoordinationStrategy",
    "PlanStatus",
    "ResourceRequirements",
    "StepStatus",
    "SequentialStrategy",
    "ParallelStrategy",
    "PipelineStrategy",
    "HierarchicalStrategy",
    "SwarmStrategy",
]
