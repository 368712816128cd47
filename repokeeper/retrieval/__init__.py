# FILE: repokeeper/retrieval/__init__.py
"""
Query orchestration: ranked retrieval strategies with deterministic fallback.
"""
from repokeeper.retrieval.schemas import (
    AttemptEvent,
    FetchReport,
    FetchState,
    OutcomeTag,
    PermissionDenied,
    ResourceKind,
    RetrievalOutcome,
    RetrievalRequest,
    SizeExceeded,
    StrategyKind,
    Success,
    TransientFailure,
    estimate_size,
)
from repokeeper.retrieval.policy import (
    StrategyDeclaration,
    default_declarations,
    rank_strategies,
)
from repokeeper.retrieval.probes import (
    CapabilityProbe,
    DelegatedAnalysisProbe,
    LightweightQueryProbe,
    PayloadTooLarge,
    StructuredAPIProbe,
    default_probes,
)
from repokeeper.retrieval.orchestrator import (
    NoSuitableStrategy,
    QueryOrchestrator,
    configure_orchestrator,
    fetch,
    get_orchestrator,
)

__all__ = [
    "AttemptEvent",
    "FetchReport",
    "FetchState",
    "OutcomeTag",
    "PermissionDenied",
    "ResourceKind",
    "RetrievalOutcome",
    "RetrievalRequest",
    "SizeExceeded",
    "StrategyKind",
    "Success",
    "TransientFailure",
    "estimate_size",
    "StrategyDeclaration",
    "default_declarations",
    "rank_strategies",
    "CapabilityProbe",
    "DelegatedAnalysisProbe",
    "LightweightQueryProbe",
    "PayloadTooLarge",
    "StructuredAPIProbe",
    "default_probes",
    "NoSuitableStrategy",
    "QueryOrchestrator",
    "configure_orchestrator",
    "fetch",
    "get_orchestrator",
]
