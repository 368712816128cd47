# FILE: config/__init__.py
"""Configuration package for repokeeper.

Contains:
- strategy_ceilings.py: Retrieval strategy cost ranks and capacity ceilings
"""

from config.strategy_ceilings import (
    UNBOUNDED,
    STRATEGY_COST_RANKS,
    STRATEGY_CAPACITY_CEILINGS,
    get_cost_rank,
    get_capacity_ceiling,
    format_ceiling,
)

__all__ = [
    "UNBOUNDED",
    "STRATEGY_COST_RANKS",
    "STRATEGY_CAPACITY_CEILINGS",
    "get_cost_rank",
    "get_capacity_ceiling",
    "format_ceiling",
]
