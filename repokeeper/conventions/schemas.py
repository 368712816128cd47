# FILE: repokeeper/conventions/schemas.py
"""
Validated identifier types for the convention engine.

All identifiers are immutable once built. They are only ever produced by the
validators in repokeeper.conventions.validators, so holding one means the
underlying string met the grammar.

Ticket-bearing identifiers always hold the normalised (uppercase) key.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class CommitType(str, Enum):
    """Allowed commit subject types."""
    FEAT = "feat"
    FIX = "fix"
    DOCS = "docs"
    STYLE = "style"
    REFACTOR = "refactor"
    PERF = "perf"
    TEST = "test"
    BUILD = "build"
    CI = "ci"
    CHORE = "chore"
    REVERT = "revert"


class TicketRef(BaseModel):
    """Issue-tracker key, e.g. TITAN-149."""
    model_config = ConfigDict(frozen=True)

    project: str
    number: str

    @property
    def key(self) -> str:
        return f"{self.project}-{self.number}"

    def __str__(self) -> str:
        return self.key


class BranchName(BaseModel):
    """<initials>/<TICKET>-<kebab-description>"""
    model_config = ConfigDict(frozen=True)

    initials: str
    ticket: TicketRef
    description: str

    @property
    def words(self) -> list[str]:
        return self.description.split("-")

    def __str__(self) -> str:
        return f"{self.initials}/{self.ticket.key}-{self.description}"


class CommitSubject(BaseModel):
    """<type>(<scope>)?: <subject>"""
    model_config = ConfigDict(frozen=True)

    type: CommitType
    scope: Optional[str] = None
    subject: str
    breaking: bool = False

    def __str__(self) -> str:
        scope = f"({self.scope})" if self.scope else ""
        bang = "!" if self.breaking else ""
        return f"{self.type.value}{scope}{bang}: {self.subject}"


class PRTitle(BaseModel):
    """<TICKET>: <summary>"""
    model_config = ConfigDict(frozen=True)

    ticket: TicketRef
    summary: str

    def __str__(self) -> str:
        return f"{self.ticket.key}: {self.summary}"


@dataclass
class LintFinding:
    """Result of linting one commit subject in a batch."""
    index: int
    raw: str
    ok: bool
    error: Optional[str] = None
    rule: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "raw": self.raw,
            "ok": self.ok,
            "error": self.error,
            "rule": self.rule,
            "message": self.message,
        }


__all__ = [
    "CommitType",
    "TicketRef",
    "BranchName",
    "CommitSubject",
    "PRTitle",
    "LintFinding",
]
