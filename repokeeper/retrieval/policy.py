# FILE: repokeeper/retrieval/policy.py
"""
Retrieval strategy policy: suitability, cost order and capacity ceilings.

Ceilings and cost ranks come from config.strategy_ceilings; this module
combines them with per-strategy resource support into declarations and
computes the initial ranking for a request.

RANKING RULES:
1. Only strategies whose suitability predicate matches the request.
2. Ascending cost (structured_api -> lightweight_query -> delegated_analysis).
3. A strategy whose ceiling is below the request's size hint is skipped up
   front - the attempt would be doomed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Mapping, Optional

from config.strategy_ceilings import format_ceiling, get_capacity_ceiling, get_cost_rank
from repokeeper.retrieval.schemas import (
    REPO_RESOURCES,
    ResourceKind,
    RetrievalRequest,
    StrategyKind,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StrategyDeclaration:
    """Declared properties of one retrieval strategy."""
    kind: StrategyKind
    cost_rank: int
    capacity_ceiling: float
    resources: FrozenSet[ResourceKind]

    def is_suitable(self, request: RetrievalRequest) -> bool:
        return request.resource in self.resources

    def fits(self, size: Optional[float]) -> bool:
        """True if a response of `size` is within the ceiling."""
        return size is None or size <= self.capacity_ceiling

    def to_dict(self) -> dict:
        return {
            "strategy": self.kind.value,
            "cost_rank": self.cost_rank,
            "capacity_ceiling": format_ceiling(self.capacity_ceiling),
            "resources": sorted(r.value for r in self.resources),
        }


# Which resources each strategy can serve at all.
STRATEGY_RESOURCES: Dict[StrategyKind, FrozenSet[ResourceKind]] = {
    # REST: structured JSON for repo data and tracker issues; diffs go via CLI
    StrategyKind.STRUCTURED_API: frozenset({
        ResourceKind.PR_FILES,
        ResourceKind.PR_METADATA,
        ResourceKind.COMMIT_HISTORY,
        ResourceKind.ISSUE,
    }),
    # gh CLI: repository data only
    StrategyKind.LIGHTWEIGHT_QUERY: frozenset(REPO_RESOURCES),
    # Delegation can analyse anything
    StrategyKind.DELEGATED_ANALYSIS: frozenset(ResourceKind),
}


def default_declarations(
    ceilings: Optional[Mapping[StrategyKind, float]] = None,
) -> List[StrategyDeclaration]:
    """
    Build declarations from config, optionally overriding ceilings.

    Returned in ascending cost order.
    """
    overrides = dict(ceilings or {})
    declarations = [
        StrategyDeclaration(
            kind=kind,
            cost_rank=get_cost_rank(kind.value),
            capacity_ceiling=overrides.get(kind, get_capacity_ceiling(kind.value)),
            resources=STRATEGY_RESOURCES[kind],
        )
        for kind in StrategyKind
    ]
    return sorted(declarations, key=lambda d: d.cost_rank)


def suitable_strategies(
    request: RetrievalRequest,
    declarations: List[StrategyDeclaration],
    is_available: Optional[Callable[[StrategyKind], bool]] = None,
) -> List[StrategyDeclaration]:
    """Strategies that can serve the request at all, cheapest first."""
    suitable = [
        d for d in declarations
        if d.is_suitable(request) and (is_available is None or is_available(d.kind))
    ]
    return sorted(suitable, key=lambda d: d.cost_rank)


def rank_strategies(
    request: RetrievalRequest,
    declarations: List[StrategyDeclaration],
    is_available: Optional[Callable[[StrategyKind], bool]] = None,
) -> List[StrategyDeclaration]:
    """
    Compute the initial ranking for a request.

    Args:
        request: The retrieval request
        declarations: Candidate strategies
        is_available: Optional check that a strategy's probe can run here

    Returns:
        Suitable strategies, cheapest first, minus those the size hint rules out
    """
    ranked = []
    suitable = suitable_strategies(request, declarations, is_available)
    for d in suitable:
        if not d.fits(request.size_hint):
            logger.info(
                f"[retrieval] skipping {d.kind.value}: size hint {request.size_hint} "
                f"exceeds ceiling {d.capacity_ceiling}"
            )
            continue
        ranked.append(d)
    return ranked


__all__ = [
    "StrategyDeclaration",
    "STRATEGY_RESOURCES",
    "default_declarations",
    "suitable_strategies",
    "rank_strategies",
]
