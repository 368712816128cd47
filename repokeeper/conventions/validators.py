# FILE: repokeeper/conventions/validators.py
"""
Convention engine: validation and structured generation of identifiers.

GRAMMARS:
- Branch name:    <initials>/<TICKET>-<kebab-description>
                  initials 1-4 lowercase letters, description 2-6 kebab words
- Commit subject: <type>(<scope>)?: <subject>   (optional "!" before the colon)
                  subject must not end with ".", line <= 72 characters
- PR title:       <TICKET>: <summary>           line <= 72 characters
- Ticket:         [A-Z]+-[0-9]+                 detected case-insensitively,
                                                always returned uppercase

RULES:
1. Every function is pure: no I/O, no state, same input -> same output.
2. Raw input is stripped of surrounding whitespace before validation.
3. Ticket detection is case-insensitive; description and subject casing are
   validated case-sensitively.
4. Errors name the FIRST violated rule. Nothing is coerced into shape.
5. Length is checked last, so a grammatical but over-long commit subject
   always reports LineTooLong.
"""
from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Sequence, Union

from repokeeper.conventions.errors import ConventionError, InvalidFormat, LineTooLong
from repokeeper.conventions.schemas import (
    BranchName,
    CommitSubject,
    CommitType,
    LintFinding,
    PRTitle,
    TicketRef,
)

logger = logging.getLogger(__name__)


# =============================================================================
# GRAMMAR CONSTANTS
# =============================================================================

MAX_LINE_LENGTH = 72

MIN_INITIALS = 1
MAX_INITIALS = 4

MIN_DESCRIPTION_WORDS = 2
MAX_DESCRIPTION_WORDS = 6

COMMIT_TYPES = frozenset(t.value for t in CommitType)

# Ticket anywhere in free text: not glued to other letters/digits on either side.
_TICKET_SCAN_RE = re.compile(r"(?<![A-Za-z0-9])([A-Za-z]+)-([0-9]+)(?![A-Za-z0-9])")
_TICKET_FULL_RE = re.compile(r"^([A-Za-z]+)-([0-9]+)$")

_INITIALS_RE = re.compile(r"^[a-z]{%d,%d}$" % (MIN_INITIALS, MAX_INITIALS))
_BRANCH_TAIL_RE = re.compile(r"^([A-Za-z]+)-([0-9]+)(?P<rest>.*)$")
_KEBAB_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

_COMMIT_RE = re.compile(
    r"^(?P<type>[A-Za-z]+)"
    r"(?:\((?P<scope>[^()\s]+)\))?"
    r"(?P<breaking>!)?"
    r": (?P<subject>\S.*)$"
)
_PR_TITLE_RE = re.compile(r"^(?P<ticket>[A-Za-z]+-[0-9]+): (?P<summary>.*)$")

_WORD_SPLIT_RE = re.compile(r"[^A-Za-z0-9]+")


def _ticket_from_match(match: "re.Match[str]") -> TicketRef:
    return TicketRef(project=match.group(1).upper(), number=match.group(2))


def _coerce_ticket(ticket: Union[str, TicketRef]) -> TicketRef:
    if isinstance(ticket, TicketRef):
        return ticket
    match = _TICKET_FULL_RE.match((ticket or "").strip())
    if not match:
        raise InvalidFormat("ticket", f"'{ticket}' is not a ticket key like ABC-123")
    return _ticket_from_match(match)


# =============================================================================
# TICKET REFERENCES
# =============================================================================

def extract_ticket_reference(text: Optional[str]) -> Optional[TicketRef]:
    """
    Find the first ticket key in free text.

    Detection is case-insensitive; the result is normalised to uppercase.
    Returns None when the text carries no ticket - that is a valid answer,
    not an error.
    """
    if not text:
        return None
    match = _TICKET_SCAN_RE.search(text)
    if not match:
        return None
    return _ticket_from_match(match)


# =============================================================================
# BRANCH NAMES
# =============================================================================

def validate_branch_name(raw: str) -> BranchName:
    """
    Validate a branch name of the form <initials>/<TICKET>-<description>.

    Raises:
        InvalidFormat: naming the first violated rule
            (structure, initials, ticket, description, description_length)
    """
    value = (raw or "").strip()

    initials, sep, tail = value.partition("/")
    if not sep or not initials or not tail:
        raise InvalidFormat("structure", "expected <initials>/<TICKET>-<description>")

    if not _INITIALS_RE.match(initials):
        raise InvalidFormat(
            "initials",
            f"initials must be {MIN_INITIALS}-{MAX_INITIALS} lowercase letters, got '{initials}'",
        )

    match = _BRANCH_TAIL_RE.match(tail)
    if not match:
        raise InvalidFormat("ticket", f"'{tail}' does not start with a ticket key like ABC-123")
    ticket = _ticket_from_match(match)
    rest = match.group("rest")
    if not rest.startswith("-"):
        raise InvalidFormat(
            "description",
            f"ticket {ticket.key} must be followed by '-<description>', got '{rest}'",
        )
    description = rest[1:]

    if not _KEBAB_RE.match(description):
        raise InvalidFormat(
            "description",
            f"description must be lowercase kebab-case, got '{description}'",
        )

    word_count = len(description.split("-"))
    if not MIN_DESCRIPTION_WORDS <= word_count <= MAX_DESCRIPTION_WORDS:
        raise InvalidFormat(
            "description_length",
            f"description must have {MIN_DESCRIPTION_WORDS}-{MAX_DESCRIPTION_WORDS} words, got {word_count}",
        )

    return BranchName(initials=initials, ticket=ticket, description=description)


def build_branch_name(
    initials: str,
    ticket: Union[str, TicketRef],
    description: Union[str, Sequence[str]],
) -> BranchName:
    """
    Assemble a branch name from parts and validate the result.

    The description is split on any non-alphanumeric run and lowercased;
    word count and initials are NOT adjusted - if they break the grammar,
    validation fails like it would for a hand-written name.
    """
    ticket_ref = _coerce_ticket(ticket)
    if isinstance(description, str):
        words = _WORD_SPLIT_RE.split(description)
    else:
        words = [w for part in description for w in _WORD_SPLIT_RE.split(part)]
    slug = "-".join(w.lower() for w in words if w)
    return validate_branch_name(f"{(initials or '').strip()}/{ticket_ref.key}-{slug}")


# =============================================================================
# COMMIT SUBJECTS
# =============================================================================

def validate_commit_subject(raw: str) -> CommitSubject:
    """
    Validate a commit subject line.

    Raises:
        InvalidFormat: grammar violated (single_line, grammar, type,
            subject_case, trailing_period)
        LineTooLong: grammar satisfied but line exceeds MAX_LINE_LENGTH
    """
    value = (raw or "").strip()

    if "\n" in value or "\r" in value:
        raise InvalidFormat("single_line", "commit subject must be a single line")

    match = _COMMIT_RE.match(value)
    if not match:
        raise InvalidFormat("grammar", "expected <type>(<scope>): <subject>")

    type_value = match.group("type")
    if type_value not in COMMIT_TYPES:
        raise InvalidFormat(
            "type",
            f"unknown type '{type_value}', expected one of: {', '.join(t.value for t in CommitType)}",
        )

    subject = match.group("subject").rstrip()
    if subject[0].isupper():
        raise InvalidFormat("subject_case", "subject must start with a lowercase letter")
    if subject.endswith("."):
        raise InvalidFormat("trailing_period", "subject must not end with '.'")

    if len(value) > MAX_LINE_LENGTH:
        raise LineTooLong(len(value), MAX_LINE_LENGTH)

    return CommitSubject(
        type=CommitType(type_value),
        scope=match.group("scope"),
        subject=subject,
        breaking=bool(match.group("breaking")),
    )


def format_commit_subject(
    type: Union[str, CommitType],
    subject: str,
    scope: Optional[str] = None,
    breaking: bool = False,
) -> CommitSubject:
    """Assemble a commit subject header from parts and validate it."""
    type_value = type.value if isinstance(type, CommitType) else (type or "").strip()
    scope_part = f"({scope.strip()})" if scope and scope.strip() else ""
    bang = "!" if breaking else ""
    return validate_commit_subject(f"{type_value}{scope_part}{bang}: {(subject or '').strip()}")


def lint_commit_subjects(subjects: Iterable[str]) -> List[LintFinding]:
    """Validate a batch of commit subjects, reporting every violation."""
    findings: List[LintFinding] = []
    for index, raw in enumerate(subjects):
        try:
            validate_commit_subject(raw)
            findings.append(LintFinding(index=index, raw=raw, ok=True))
        except ConventionError as e:
            findings.append(LintFinding(
                index=index,
                raw=raw,
                ok=False,
                error=e.error_type.value,
                rule=e.rule,
                message=e.message,
            ))

    failed = sum(1 for f in findings if not f.ok)
    if failed:
        logger.debug(f"[conventions] lint: {failed}/{len(findings)} commit subjects failed")
    return findings


# =============================================================================
# PR TITLES
# =============================================================================

def build_pr_title(ticket: Union[str, TicketRef], summary: str) -> PRTitle:
    """
    Build "<TICKET>: <summary>".

    Raises:
        InvalidFormat: ticket malformed or summary empty
        LineTooLong: resulting title exceeds MAX_LINE_LENGTH
    """
    ticket_ref = _coerce_ticket(ticket)
    summary_value = (summary or "").strip()
    if not summary_value:
        raise InvalidFormat("summary", "summary must not be empty")
    if "\n" in summary_value or "\r" in summary_value:
        raise InvalidFormat("single_line", "PR title must be a single line")

    title = PRTitle(ticket=ticket_ref, summary=summary_value)
    length = len(str(title))
    if length > MAX_LINE_LENGTH:
        raise LineTooLong(length, MAX_LINE_LENGTH)
    return title


def validate_pr_title(raw: str) -> PRTitle:
    """Parse and validate an existing PR title of the form <TICKET>: <summary>."""
    value = (raw or "").strip()
    match = _PR_TITLE_RE.match(value)
    if not match:
        raise InvalidFormat("grammar", "expected <TICKET>: <summary>")
    return build_pr_title(match.group("ticket"), match.group("summary"))


__all__ = [
    "MAX_LINE_LENGTH",
    "COMMIT_TYPES",
    "extract_ticket_reference",
    "validate_branch_name",
    "build_branch_name",
    "validate_commit_subject",
    "format_commit_subject",
    "lint_commit_subjects",
    "build_pr_title",
    "validate_pr_title",
]
