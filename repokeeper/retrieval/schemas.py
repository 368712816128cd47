# FILE: repokeeper/retrieval/schemas.py
"""
Retrieval schemas: requests, strategies and tagged outcomes.

OUTCOME TAGS:
- Success(payload)               retrieval done, stop
- SizeExceeded(estimated_size)   too big for this strategy, prune by capacity
- TransientFailure(cause)        infrastructure hiccup, retry once then demote
- PermissionDenied(reason)       authorization gap, abort

A tag never implies a retry by itself; the orchestrator owns retry policy.

Sizes are estimated tokens (see estimate_size).
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# ENUMS
# =============================================================================

class ResourceKind(str, Enum):
    """What the caller wants retrieved."""
    PR_FILES = "pr_files"
    PR_METADATA = "pr_metadata"
    PR_DIFF = "pr_diff"
    COMMIT_HISTORY = "commit_history"
    ISSUE = "issue"


PR_RESOURCES = frozenset({ResourceKind.PR_FILES, ResourceKind.PR_METADATA, ResourceKind.PR_DIFF})
REPO_RESOURCES = PR_RESOURCES | {ResourceKind.COMMIT_HISTORY}


class StrategyKind(str, Enum):
    """
    Retrieval strategies, declared in ascending cost order.

    Enum order is the default ranking order.
    """
    STRUCTURED_API = "structured_api"
    LIGHTWEIGHT_QUERY = "lightweight_query"
    DELEGATED_ANALYSIS = "delegated_analysis"


class OutcomeTag(str, Enum):
    SUCCESS = "success"
    SIZE_EXCEEDED = "size_exceeded"
    TRANSIENT_FAILURE = "transient_failure"
    PERMISSION_DENIED = "permission_denied"


class FetchState(str, Enum):
    """Terminal states of a single fetch call."""
    SUCCESS = "success"
    ABORTED = "aborted"
    EXHAUSTED = "exhausted"


# =============================================================================
# KEYS
# =============================================================================

_REPO_KEY_RE = re.compile(r"^(?P<owner>[A-Za-z0-9_.-]+)/(?P<repo>[A-Za-z0-9_.-]+)(?:#(?P<number>[0-9]+))?$")
_ISSUE_KEY_RE = re.compile(r"^[A-Za-z]+-[0-9]+$")


@dataclass(frozen=True)
class RepoRef:
    """owner/repo, optionally with a change-set number."""
    owner: str
    repo: str
    number: Optional[int] = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


def parse_repo_key(key: str) -> RepoRef:
    """
    Parse "owner/repo" or "owner/repo#42".

    Raises:
        ValueError: if the key is not a repository key
    """
    match = _REPO_KEY_RE.match((key or "").strip())
    if not match:
        raise ValueError(f"Invalid repository key: '{key}'. Expected owner/repo or owner/repo#N")
    number = match.group("number")
    return RepoRef(
        owner=match.group("owner"),
        repo=match.group("repo"),
        number=int(number) if number else None,
    )


# =============================================================================
# REQUEST
# =============================================================================

class RetrievalRequest(BaseModel):
    """A unit of retrieval work."""
    model_config = ConfigDict(frozen=True)

    resource: ResourceKind
    key: str = Field(..., min_length=1, description="owner/repo#N, owner/repo, or ABC-123")
    size_hint: Optional[int] = Field(default=None, ge=0, description="Expected size in estimated tokens")
    timeout_s: Optional[float] = Field(default=None, gt=0, description="Per-attempt probe timeout")

    @field_validator("key", mode="before")
    @classmethod
    def strip_key(cls, v):
        return v.strip() if isinstance(v, str) else v

    @model_validator(mode="after")
    def check_key_matches_resource(self):
        if self.resource == ResourceKind.ISSUE:
            if not _ISSUE_KEY_RE.match(self.key):
                raise ValueError(f"Issue key must look like ABC-123, got '{self.key}'")
            return self
        ref = parse_repo_key(self.key)
        if self.resource in PR_RESOURCES and ref.number is None:
            raise ValueError(f"{self.resource.value} needs a key like owner/repo#N, got '{self.key}'")
        return self

    @property
    def repo_ref(self) -> RepoRef:
        return parse_repo_key(self.key)

    @property
    def issue_key(self) -> str:
        return self.key.upper()


# =============================================================================
# OUTCOMES
# =============================================================================

@dataclass(frozen=True)
class Success:
    payload: Any
    size: int = 0
    tag = OutcomeTag.SUCCESS


@dataclass(frozen=True)
class SizeExceeded:
    estimated_size: float
    tag = OutcomeTag.SIZE_EXCEEDED


@dataclass(frozen=True)
class TransientFailure:
    cause: str
    tag = OutcomeTag.TRANSIENT_FAILURE


@dataclass(frozen=True)
class PermissionDenied:
    reason: str = ""
    tag = OutcomeTag.PERMISSION_DENIED


RetrievalOutcome = Union[Success, SizeExceeded, TransientFailure, PermissionDenied]


def outcome_to_dict(outcome: RetrievalOutcome) -> Dict[str, Any]:
    data: Dict[str, Any] = {"outcome": outcome.tag.value}
    if isinstance(outcome, Success):
        data["payload"] = outcome.payload
        data["size"] = outcome.size
    elif isinstance(outcome, SizeExceeded):
        data["estimated_size"] = outcome.estimated_size
    elif isinstance(outcome, TransientFailure):
        data["cause"] = outcome.cause
    elif isinstance(outcome, PermissionDenied):
        data["reason"] = outcome.reason
    return data


def estimate_size(payload: Any) -> int:
    """
    Estimate payload size in tokens.

    Uses rough heuristic: ~4 characters per token of the serialised form.
    """
    if payload is None:
        return 0
    if isinstance(payload, (bytes, bytearray)):
        text = payload.decode("utf-8", errors="replace")
    elif isinstance(payload, str):
        text = payload
    else:
        text = json.dumps(payload, default=str)
    return len(text) // 4


# =============================================================================
# ATTEMPT TRAIL
# =============================================================================

@dataclass
class AttemptEvent:
    """Record of one probe invocation."""
    attempt: int
    strategy: StrategyKind
    outcome: OutcomeTag
    detail: str = ""
    elapsed_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt": self.attempt,
            "strategy": self.strategy.value,
            "outcome": self.outcome.value,
            "detail": self.detail,
            "elapsed_ms": self.elapsed_ms,
        }


@dataclass
class FetchReport:
    """Outcome of a fetch plus how it got there."""
    outcome: RetrievalOutcome
    state: FetchState
    ranking: List[StrategyKind] = field(default_factory=list)
    attempts: List[AttemptEvent] = field(default_factory=list)

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    def to_dict(self) -> Dict[str, Any]:
        data = outcome_to_dict(self.outcome)
        data["state"] = self.state.value
        data["ranking"] = [s.value for s in self.ranking]
        data["attempts"] = [a.to_dict() for a in self.attempts]
        return data


__all__ = [
    "ResourceKind",
    "PR_RESOURCES",
    "REPO_RESOURCES",
    "StrategyKind",
    "OutcomeTag",
    "FetchState",
    "RepoRef",
    "parse_repo_key",
    "RetrievalRequest",
    "Success",
    "SizeExceeded",
    "TransientFailure",
    "PermissionDenied",
    "RetrievalOutcome",
    "outcome_to_dict",
    "estimate_size",
    "AttemptEvent",
    "FetchReport",
]
