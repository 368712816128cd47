# FILE: repokeeper/conventions/router.py
"""
FastAPI router for the convention engine.

All endpoints are POST with a JSON body and return the validated identifier.
Convention violations map to HTTP 422 with a structured body:

    {"error": "INVALID_FORMAT" | "LINE_TOO_LONG", "rule": ..., "message": ...}
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from repokeeper.conventions.errors import ConventionError
from repokeeper.conventions.validators import (
    build_branch_name,
    build_pr_title,
    extract_ticket_reference,
    format_commit_subject,
    lint_commit_subjects,
    validate_branch_name,
    validate_commit_subject,
    validate_pr_title,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conventions", tags=["conventions"])


class RawInput(BaseModel):
    """Request body carrying one raw string."""
    raw: str = Field(..., description="Caller-supplied text to validate")


class BranchBuildRequest(BaseModel):
    initials: str = Field(..., description="1-4 lowercase letters")
    ticket: str = Field(..., description="Ticket key, any case")
    description: List[str] = Field(..., description="Description words")


class CommitFormatRequest(BaseModel):
    type: str
    subject: str
    scope: Optional[str] = None
    breaking: bool = False


class CommitLintRequest(BaseModel):
    subjects: List[str] = Field(default_factory=list)


class PRTitleBuildRequest(BaseModel):
    ticket: str
    summary: str


class IdentifierResponse(BaseModel):
    """A validated identifier: its rendered value plus its parts."""
    value: str
    parts: Dict[str, Any]


def _respond(identifier) -> IdentifierResponse:
    return IdentifierResponse(value=str(identifier), parts=identifier.model_dump(mode="json"))


def _reject(e: ConventionError) -> HTTPException:
    logger.info(f"[conventions] rejected: {e}")
    return HTTPException(status_code=422, detail=e.to_dict())


@router.post("/branch/validate", response_model=IdentifierResponse)
def branch_validate(body: RawInput) -> IdentifierResponse:
    try:
        return _respond(validate_branch_name(body.raw))
    except ConventionError as e:
        raise _reject(e)


@router.post("/branch/build", response_model=IdentifierResponse)
def branch_build(body: BranchBuildRequest) -> IdentifierResponse:
    try:
        return _respond(build_branch_name(body.initials, body.ticket, body.description))
    except ConventionError as e:
        raise _reject(e)


@router.post("/commit/validate", response_model=IdentifierResponse)
def commit_validate(body: RawInput) -> IdentifierResponse:
    try:
        return _respond(validate_commit_subject(body.raw))
    except ConventionError as e:
        raise _reject(e)


@router.post("/commit/format", response_model=IdentifierResponse)
def commit_format(body: CommitFormatRequest) -> IdentifierResponse:
    try:
        return _respond(format_commit_subject(body.type, body.subject, body.scope, body.breaking))
    except ConventionError as e:
        raise _reject(e)


@router.post("/commit/lint")
def commit_lint(body: CommitLintRequest) -> Dict[str, Any]:
    """Lint a batch; always 200, per-subject findings in the body."""
    findings = lint_commit_subjects(body.subjects)
    return {
        "ok": all(f.ok for f in findings),
        "findings": [f.to_dict() for f in findings],
    }


@router.post("/ticket/extract")
def ticket_extract(body: RawInput) -> Dict[str, Optional[str]]:
    """Ticket-less text is not an error: returns {"ticket": null}."""
    ticket = extract_ticket_reference(body.raw)
    return {"ticket": ticket.key if ticket else None}


@router.post("/pr-title/build", response_model=IdentifierResponse)
def pr_title_build(body: PRTitleBuildRequest) -> IdentifierResponse:
    try:
        return _respond(build_pr_title(body.ticket, body.summary))
    except ConventionError as e:
        raise _reject(e)


@router.post("/pr-title/validate", response_model=IdentifierResponse)
def pr_title_validate(body: RawInput) -> IdentifierResponse:
    try:
        return _respond(validate_pr_title(body.raw))
    except ConventionError as e:
        raise _reject(e)
