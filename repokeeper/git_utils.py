# FILE: repokeeper/git_utils.py
"""
Git utilities for repokeeper.

Reads local repository state so the convention engine can check what is
actually checked out: the current branch name and recent commit subjects.

INVARIANT: All operations are READ-ONLY. No pushes, pulls, resets, or mutations.
"""
from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from repokeeper.conventions.errors import ConventionError
from repokeeper.conventions.schemas import BranchName, LintFinding
from repokeeper.conventions.validators import lint_commit_subjects, validate_branch_name

logger = logging.getLogger(__name__)

GIT_TIMEOUT_S = 10


class GitError(Enum):
    """Git operation error types."""
    NO_GIT_REPO = "NO_GIT_REPO"
    DETACHED_HEAD = "DETACHED_HEAD"
    COMMAND_FAILED = "COMMAND_FAILED"
    GIT_NOT_INSTALLED = "GIT_NOT_INSTALLED"


@dataclass
class GitResult:
    """Result of a git operation."""
    success: bool
    value: Optional[str] = None
    lines: List[str] = field(default_factory=list)
    error: Optional[GitError] = None
    error_message: Optional[str] = None


def find_repo_root(repo_path: Optional[str] = None) -> Optional[Path]:
    """Walk up from repo_path (or cwd) to the directory holding .git."""
    current = Path(repo_path) if repo_path else Path.cwd()
    while True:
        if (current / ".git").exists():
            return current
        if current == current.parent:
            return None
        current = current.parent


def _run_git(args: List[str], repo_path: Optional[str]) -> GitResult:
    root = find_repo_root(repo_path)
    if root is None:
        return GitResult(
            success=False,
            error=GitError.NO_GIT_REPO,
            error_message=f"No .git directory found in {repo_path or Path.cwd()} or its parents",
        )

    try:
        result = subprocess.run(
            ["git", *args],
            cwd=str(root),
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT_S,
        )
    except FileNotFoundError:
        return GitResult(
            success=False,
            error=GitError.GIT_NOT_INSTALLED,
            error_message="git command not found - is git installed?",
        )
    except subprocess.TimeoutExpired:
        return GitResult(
            success=False,
            error=GitError.COMMAND_FAILED,
            error_message=f"git {args[0]} timed out after {GIT_TIMEOUT_S} seconds",
        )

    if result.returncode != 0:
        return GitResult(
            success=False,
            error=GitError.COMMAND_FAILED,
            error_message=f"git {args[0]} failed: {result.stderr.strip()}",
        )

    output = result.stdout.strip()
    return GitResult(success=True, value=output, lines=[l for l in output.splitlines() if l.strip()])


def get_current_branch(repo_path: Optional[str] = None) -> GitResult:
    """
    Get the current branch name.

    Detached HEAD is reported as an error: there is no branch name to check.
    """
    result = _run_git(["branch", "--show-current"], repo_path)
    if result.success and not result.value:
        return GitResult(
            success=False,
            error=GitError.DETACHED_HEAD,
            error_message="HEAD is detached",
        )
    return result


def get_commit_subjects(
    repo_path: Optional[str] = None,
    base: Optional[str] = None,
    limit: int = 50,
) -> GitResult:
    """
    Get commit subject lines, newest first.

    Args:
        repo_path: Repository path (default cwd)
        base: If given, only commits not on base (e.g. "origin/main")
        limit: Maximum number of subjects
    """
    args = ["log", f"--max-count={limit}", "--format=%s"]
    if base:
        args.append(f"{base}..HEAD")
    return _run_git(args, repo_path)


def check_current_branch(repo_path: Optional[str] = None) -> BranchName:
    """
    Validate the checked-out branch against the branch-name convention.

    Raises:
        RuntimeError: if the branch name cannot be read
        InvalidFormat: if the branch name breaks the convention
    """
    result = get_current_branch(repo_path)
    if not result.success:
        raise RuntimeError(result.error_message)
    try:
        return validate_branch_name(result.value or "")
    except ConventionError as e:
        logger.info(f"[conventions] branch '{result.value}' rejected: {e}")
        raise


def lint_branch_commits(
    repo_path: Optional[str] = None,
    base: Optional[str] = None,
    limit: int = 50,
) -> List[LintFinding]:
    """
    Lint the subjects of commits on the current branch.

    Raises:
        RuntimeError: if the log cannot be read
    """
    result = get_commit_subjects(repo_path, base=base, limit=limit)
    if not result.success:
        raise RuntimeError(result.error_message)
    return lint_commit_subjects(result.lines)
