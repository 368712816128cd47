# FILE: repokeeper/retrieval/orchestrator.py
"""
Query Orchestrator: ranked retrieval with deterministic fallback.

Picks the cheapest suitable strategy, runs it through its capability probe,
and reacts to each failure tag differently:

OUTCOME -> ACTION:
1. Success           -> return immediately
2. SizeExceeded(n)   -> prune every strategy with ceiling <= n (the failing
                        one included), continue with the next; none left ->
                        return the SizeExceeded
3. TransientFailure  -> back off and retry the same strategy once; a second
                        consecutive transient demotes to the next strategy;
                        none left -> return the last TransientFailure
4. PermissionDenied  -> abort, no further attempts under any strategy

STATE MACHINE (per fetch call):
    Ranking -> Attempting -> Success            (terminal)
                          -> Pruning  -> Attempting
                          -> Demoting -> Attempting
                          -> Aborted            (terminal)
                          -> Exhausted          (terminal)

Attempts within one call are strictly sequential and bounded by
2 x number_of_strategies probe invocations. No state is shared between
calls; cancelling a call discards its ranking.

Usage:
    orchestrator = QueryOrchestrator(probes=default_probes(delegate))
    outcome = await orchestrator.fetch(
        RetrievalRequest(resource="pr_files", key="org/repo#42", size_hint=30000)
    )
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Mapping, Optional

from repokeeper.retrieval.policy import (
    StrategyDeclaration,
    default_declarations,
    rank_strategies,
    suitable_strategies,
)
from repokeeper.retrieval.probes import CapabilityProbe, Delegate, default_probes
from repokeeper.retrieval.schemas import (
    AttemptEvent,
    FetchReport,
    FetchState,
    PermissionDenied,
    RetrievalOutcome,
    RetrievalRequest,
    SizeExceeded,
    StrategyKind,
    Success,
    TransientFailure,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

# Same-strategy attempts before demotion (first try + one retry)
MAX_ATTEMPTS_PER_STRATEGY = 2

# Per-attempt probe timeout when the request carries none
PROBE_TIMEOUT_S = float(os.getenv("REPOKEEPER_PROBE_TIMEOUT_S") or "30")

# Base delay before retrying a strategy after a transient failure
RETRY_BACKOFF_S = float(os.getenv("REPOKEEPER_RETRY_BACKOFF_S") or "1.0")


class NoSuitableStrategy(RuntimeError):
    """No configured strategy can serve the request at all."""


# =============================================================================
# ACTIONS
# =============================================================================

class RetrievalAction(str, Enum):
    """What the orchestrator does after an attempt."""
    RETURN = "return"
    PRUNE = "prune"
    RETRY_SAME = "retry_same"
    DEMOTE = "demote"
    ABORT = "abort"


def decide_action(outcome: RetrievalOutcome, transient_streak: int) -> RetrievalAction:
    """
    Pure transition rule for one attempt.

    Args:
        outcome: Result of the attempt just made
        transient_streak: Consecutive transient failures on the current
            strategy, including this one
    """
    if isinstance(outcome, Success):
        return RetrievalAction.RETURN
    if isinstance(outcome, PermissionDenied):
        return RetrievalAction.ABORT
    if isinstance(outcome, SizeExceeded):
        return RetrievalAction.PRUNE
    if transient_streak < MAX_ATTEMPTS_PER_STRATEGY:
        return RetrievalAction.RETRY_SAME
    return RetrievalAction.DEMOTE


def prune_by_capacity(
    remaining: List[StrategyDeclaration],
    estimated_size: float,
) -> List[StrategyDeclaration]:
    """Drop the head strategy and every later one whose ceiling <= estimated_size."""
    return [d for d in remaining[1:] if d.capacity_ceiling > estimated_size]


async def exponential_backoff(retry_number: int) -> None:
    """Default backoff: RETRY_BACKOFF_S, doubling per retry."""
    delay = RETRY_BACKOFF_S * (2 ** max(0, retry_number - 1))
    if delay > 0:
        await asyncio.sleep(delay)


Backoff = Callable[[int], Awaitable[None]]


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class QueryOrchestrator:
    """
    Executes retrieval requests across ranked strategies.

    Holds only configuration (probes, declarations, backoff, timeout), so a
    single instance is safe to share between concurrent fetch calls.
    """

    def __init__(
        self,
        probes: Optional[Mapping[StrategyKind, CapabilityProbe]] = None,
        declarations: Optional[List[StrategyDeclaration]] = None,
        backoff: Optional[Backoff] = None,
        probe_timeout_s: Optional[float] = None,
    ):
        self.probes: Dict[StrategyKind, CapabilityProbe] = dict(probes if probes is not None else default_probes())
        self.declarations = declarations if declarations is not None else default_declarations()
        self.backoff = backoff or exponential_backoff
        self.probe_timeout_s = probe_timeout_s or PROBE_TIMEOUT_S

        # Declarations own the ceilings; probes measure against the same values
        for d in self.declarations:
            probe = self.probes.get(d.kind)
            if probe is not None:
                probe.capacity_ceiling = d.capacity_ceiling

    def describe_strategies(self) -> List[dict]:
        """Declared strategies in cost order, with probe presence."""
        described = []
        for d in sorted(self.declarations, key=lambda d: d.cost_rank):
            entry = d.to_dict()
            entry["configured"] = d.kind in self.probes
            described.append(entry)
        return described

    async def fetch(self, request: RetrievalRequest) -> RetrievalOutcome:
        """Retrieve data for the request; returns the final outcome."""
        report = await self.fetch_with_report(request)
        return report.outcome

    async def fetch_with_report(self, request: RetrievalRequest) -> FetchReport:
        """
        Retrieve data for the request, keeping the attempt trail.

        Raises:
            NoSuitableStrategy: if no configured strategy can serve the request
            asyncio.CancelledError: if the caller cancels; nothing is resumed
        """
        # --- Ranking ---
        def available(kind: StrategyKind) -> bool:
            probe = self.probes.get(kind)
            return probe is not None and probe.supports(request)

        suitable = suitable_strategies(request, self.declarations, available)
        if not suitable:
            raise NoSuitableStrategy(
                f"No strategy can serve {request.resource.value} for '{request.key}'"
            )

        ranking = rank_strategies(request, suitable)

        report = FetchReport(
            outcome=SizeExceeded(estimated_size=request.size_hint or 0),
            state=FetchState.EXHAUSTED,
            ranking=[d.kind for d in ranking],
        )
        if not ranking:
            logger.error(f"[retrieval] {request.key}: size hint {request.size_hint} exceeds every ceiling")
            return report

        remaining = list(ranking)
        max_attempts = MAX_ATTEMPTS_PER_STRATEGY * len(ranking)
        transient_streak = 0

        # --- Attempting ---
        while remaining and len(report.attempts) < max_attempts:
            current = remaining[0]
            started = time.perf_counter()
            outcome = await self._attempt(current.kind, request)
            elapsed_ms = int((time.perf_counter() - started) * 1000)

            if isinstance(outcome, TransientFailure):
                transient_streak += 1
            else:
                transient_streak = 0
            action = decide_action(outcome, transient_streak)

            report.outcome = outcome
            report.attempts.append(AttemptEvent(
                attempt=len(report.attempts) + 1,
                strategy=current.kind,
                outcome=outcome.tag,
                detail=_describe(outcome),
                elapsed_ms=elapsed_ms,
            ))

            if action == RetrievalAction.RETURN:
                report.state = FetchState.SUCCESS
                logger.debug(f"[retrieval] {request.key}: success via {current.kind.value}")
                return report

            if action == RetrievalAction.ABORT:
                report.state = FetchState.ABORTED
                logger.warning(
                    f"[retrieval] {request.key}: permission denied on {current.kind.value}, aborting"
                )
                return report

            if action == RetrievalAction.PRUNE:
                remaining = prune_by_capacity(remaining, outcome.estimated_size)
                logger.info(
                    f"[retrieval] {request.key}: {current.kind.value} size exceeded "
                    f"(~{outcome.estimated_size}), {len(remaining)} strategies left"
                )
                continue

            if action == RetrievalAction.RETRY_SAME:
                logger.warning(
                    f"[retrieval] {request.key}: transient failure on {current.kind.value} "
                    f"({outcome.cause}), retrying"
                )
                await self.backoff(transient_streak)
                continue

            # DEMOTE
            remaining = remaining[1:]
            transient_streak = 0
            logger.warning(
                f"[retrieval] {request.key}: {current.kind.value} failed twice ({outcome.cause}), demoting"
            )

        # --- Exhausted ---
        report.state = FetchState.EXHAUSTED
        logger.error(
            f"[retrieval] {request.key}: exhausted after {report.attempt_count} attempts "
            f"({report.outcome.tag.value})"
        )
        return report

    async def _attempt(self, kind: StrategyKind, request: RetrievalRequest) -> RetrievalOutcome:
        probe = self.probes[kind]
        timeout = request.timeout_s or self.probe_timeout_s
        try:
            return await asyncio.wait_for(probe.invoke(request), timeout=timeout)
        except asyncio.TimeoutError:
            return TransientFailure(cause=f"timeout after {timeout}s")
        except Exception as e:
            logger.exception(f"[retrieval] probe {kind.value} raised: {e}")
            return TransientFailure(cause=f"probe error: {e}")


def _describe(outcome: RetrievalOutcome) -> str:
    if isinstance(outcome, Success):
        return f"~{outcome.size} tokens"
    if isinstance(outcome, SizeExceeded):
        return f"~{outcome.estimated_size} tokens"
    if isinstance(outcome, TransientFailure):
        return outcome.cause
    return outcome.reason


# =============================================================================
# DEFAULT INSTANCE
# =============================================================================

_orchestrator: Optional[QueryOrchestrator] = None


def get_orchestrator() -> QueryOrchestrator:
    """Process-wide orchestrator configured from the environment."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = QueryOrchestrator()
    return _orchestrator


def configure_orchestrator(delegate: Optional[Delegate] = None, **kwargs) -> QueryOrchestrator:
    """Replace the process-wide orchestrator, e.g. to plug in a delegate."""
    global _orchestrator
    kwargs.setdefault("probes", default_probes(delegate))
    _orchestrator = QueryOrchestrator(**kwargs)
    return _orchestrator


async def fetch(request: RetrievalRequest) -> RetrievalOutcome:
    """Fetch through the process-wide orchestrator."""
    return await get_orchestrator().fetch(request)


__all__ = [
    "MAX_ATTEMPTS_PER_STRATEGY",
    "PROBE_TIMEOUT_S",
    "RETRY_BACKOFF_S",
    "NoSuitableStrategy",
    "RetrievalAction",
    "decide_action",
    "prune_by_capacity",
    "exponential_backoff",
    "QueryOrchestrator",
    "get_orchestrator",
    "configure_orchestrator",
    "fetch",
]
