# FILE: config/strategy_ceilings.py
"""Retrieval strategy cost ranks and capacity ceilings - Single source of truth.

Sizes are estimated tokens (serialised payload length // 4), the same unit
used for request size hints.

Cost order (cheapest first):
  - structured_api (1): authenticated REST, structured JSON
  - lightweight_query (2): local CLI invocation
  - delegated_analysis (3): sub-task delegation, most expensive

Rule: a strategy's ceiling is the largest response it is trusted to return
intact. Responses above it are reported as SizeExceeded, never truncated.
Ceilings are overridable per environment; "inf", "none" or an empty value
means unbounded.
"""

from __future__ import annotations

import math
import os
from typing import Dict, Optional

UNBOUNDED = math.inf


def _read_ceiling(env_var: str, default: float) -> float:
    raw = os.getenv(env_var)
    if raw is None:
        return default
    raw = raw.strip().lower()
    if raw in ("", "inf", "none", "unbounded"):
        return UNBOUNDED
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{env_var} must be a number or 'inf', got {raw!r}")
    if value <= 0:
        raise ValueError(f"{env_var} must be positive, got {raw!r}")
    return value


# =============================================================================
# Cost Ranks (Authoritative Source)
# =============================================================================

STRATEGY_COST_RANKS: Dict[str, int] = {
    "structured_api": 1,
    "lightweight_query": 2,
    "delegated_analysis": 3,
}


# =============================================================================
# Capacity Ceilings
# =============================================================================

# The REST path returns whole JSON documents; large PRs (roughly 25k tokens
# of file listings or patches) exceed what callers can consume in one piece.
STRATEGY_CAPACITY_CEILINGS: Dict[str, float] = {
    "structured_api": _read_ceiling("REPOKEEPER_CEILING_STRUCTURED_API", 25_000),
    "lightweight_query": _read_ceiling("REPOKEEPER_CEILING_LIGHTWEIGHT_QUERY", UNBOUNDED),
    "delegated_analysis": _read_ceiling("REPOKEEPER_CEILING_DELEGATED_ANALYSIS", UNBOUNDED),
}


def get_cost_rank(strategy: str) -> int:
    """Returns cost rank (1-3) or 0 if unknown."""
    return STRATEGY_COST_RANKS.get(strategy, 0)


def get_capacity_ceiling(strategy: str) -> float:
    """Get the declared capacity ceiling for a strategy.

    Raises:
        ValueError: If strategy not found
    """
    if strategy not in STRATEGY_CAPACITY_CEILINGS:
        raise ValueError(f"Unknown strategy: {strategy}")
    return STRATEGY_CAPACITY_CEILINGS[strategy]


def format_ceiling(ceiling: float) -> Optional[int]:
    """JSON-friendly ceiling: None for unbounded."""
    return None if math.isinf(ceiling) else int(ceiling)


__all__ = [
    "UNBOUNDED",
    "STRATEGY_COST_RANKS",
    "STRATEGY_CAPACITY_CEILINGS",
    "get_cost_rank",
    "get_capacity_ceiling",
    "format_ceiling",
]
