# FILE: repokeeper/conventions/__init__.py
"""
Convention engine: branch names, commit subjects, PR titles, ticket keys.

Leaf package - pure functions over immutable identifier types.
"""
from repokeeper.conventions.errors import (
    ConventionError,
    ConventionErrorType,
    InvalidFormat,
    LineTooLong,
)
from repokeeper.conventions.schemas import (
    BranchName,
    CommitSubject,
    CommitType,
    LintFinding,
    PRTitle,
    TicketRef,
)
from repokeeper.conventions.validators import (
    COMMIT_TYPES,
    MAX_LINE_LENGTH,
    build_branch_name,
    build_pr_title,
    extract_ticket_reference,
    format_commit_subject,
    lint_commit_subjects,
    validate_branch_name,
    validate_commit_subject,
    validate_pr_title,
)

__all__ = [
    "ConventionError",
    "ConventionErrorType",
    "InvalidFormat",
    "LineTooLong",
    "BranchName",
    "CommitSubject",
    "CommitType",
    "LintFinding",
    "PRTitle",
    "TicketRef",
    "COMMIT_TYPES",
    "MAX_LINE_LENGTH",
    "build_branch_name",
    "build_pr_title",
    "extract_ticket_reference",
    "format_commit_subject",
    "lint_commit_subjects",
    "validate_branch_name",
    "validate_commit_subject",
    "validate_pr_title",
]
