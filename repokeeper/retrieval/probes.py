# FILE: repokeeper/retrieval/probes.py
"""
Capability probes: the only place retrieval touches the outside world.

One probe per strategy:
- StructuredAPIProbe     authenticated REST (GitHub, Jira) via httpx
- LightweightQueryProbe  `gh` command-line invocation
- DelegatedAnalysisProbe caller-supplied async sub-task delegate

Every probe returns a RetrievalOutcome and never raises for retrieval
failures. Cancellation (asyncio.CancelledError) is the one exception that
always propagates; a probe that owns a subprocess kills it first.

Payloads are measured against the probe's own capacity ceiling and reported
as SizeExceeded when too big. Nothing is ever truncated.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from config.strategy_ceilings import get_capacity_ceiling
from repokeeper.retrieval.schemas import (
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

logger = logging.getLogger(__name__)

_GITHUB_API_URL = (os.getenv("REPOKEEPER_GITHUB_API_URL") or "https://api.github.com").rstrip("/")
_GITHUB_TOKEN = os.getenv("GITHUB_TOKEN") or os.getenv("GH_TOKEN") or ""
_JIRA_URL = (os.getenv("REPOKEEPER_JIRA_URL") or "").rstrip("/")
_JIRA_EMAIL = os.getenv("REPOKEEPER_JIRA_EMAIL") or ""
_JIRA_TOKEN = os.getenv("REPOKEEPER_JIRA_TOKEN") or ""
_GH_BIN = os.getenv("REPOKEEPER_GH_BIN") or "gh"

_HTTP_TIMEOUT_S = float(os.getenv("REPOKEEPER_HTTP_TIMEOUT_S") or "20")
_PAGE_SIZE = 100
_MAX_PAGES = 30  # GitHub stops listing PR files at 3000


class PayloadTooLarge(Exception):
    """Raised by a delegate to report that its result would exceed capacity."""

    def __init__(self, estimated_size: float, message: str = ""):
        self.estimated_size = estimated_size
        super().__init__(message or f"payload too large: ~{estimated_size} tokens")


class CapabilityProbe(ABC):
    """Executes one retrieval strategy against an external collaborator."""

    kind: StrategyKind

    def __init__(self, capacity_ceiling: Optional[float] = None):
        self.capacity_ceiling = (
            capacity_ceiling if capacity_ceiling is not None
            else get_capacity_ceiling(self.kind.value)
        )

    def supports(self, request: RetrievalRequest) -> bool:
        """Whether this probe can run for the request in this environment."""
        return True

    @abstractmethod
    async def invoke(self, request: RetrievalRequest) -> RetrievalOutcome:
        ...

    def _measured(self, payload: Any) -> RetrievalOutcome:
        size = estimate_size(payload)
        if size > self.capacity_ceiling:
            logger.debug(f"[probe:{self.kind.value}] payload ~{size} tokens exceeds ceiling {self.capacity_ceiling}")
            return SizeExceeded(estimated_size=size)
        return Success(payload=payload, size=size)


# =============================================================================
# STRUCTURED API (httpx)
# =============================================================================

def _rate_limited(resp: httpx.Response) -> bool:
    if resp.status_code == 429:
        return True
    if resp.status_code != 403:
        return False
    # Primary limit: quota exhausted. Secondary limit: retry-after or a body saying so.
    if resp.headers.get("x-ratelimit-remaining") == "0" or "retry-after" in resp.headers:
        return True
    return "rate limit" in resp.text.lower()


def classify_http_response(resp: httpx.Response) -> Optional[RetrievalOutcome]:
    """
    Map a non-success HTTP response to an outcome tag.

    Returns None for 2xx responses.
    """
    status = resp.status_code
    if 200 <= status < 300:
        return None
    if _rate_limited(resp):
        return TransientFailure(cause=f"rate limited (HTTP {status})")
    if status in (401, 403):
        return PermissionDenied(reason=f"HTTP {status}")
    if status == 404:
        # GitHub answers 404 for private resources the token cannot see
        return PermissionDenied(reason="HTTP 404 (not found or not visible to this token)")
    # 406: diff too large to render; 422 "too_large": listing past the API limit
    if status == 406 or (status == 422 and "too_large" in resp.text.lower()):
        return SizeExceeded(estimated_size=0)
    if status >= 500:
        return TransientFailure(cause=f"HTTP {status}")
    return TransientFailure(cause=f"unexpected HTTP {status}")


class StructuredAPIProbe(CapabilityProbe):
    """GitHub REST for repository resources, Jira REST for issues."""

    kind = StrategyKind.STRUCTURED_API

    def __init__(
        self,
        github_token: Optional[str] = None,
        github_api_url: Optional[str] = None,
        jira_url: Optional[str] = None,
        jira_email: Optional[str] = None,
        jira_token: Optional[str] = None,
        capacity_ceiling: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(capacity_ceiling)
        self.github_token = _GITHUB_TOKEN if github_token is None else github_token
        self.github_api_url = (github_api_url or _GITHUB_API_URL).rstrip("/")
        self.jira_url = (_JIRA_URL if jira_url is None else jira_url).rstrip("/")
        self.jira_email = _JIRA_EMAIL if jira_email is None else jira_email
        self.jira_token = _JIRA_TOKEN if jira_token is None else jira_token
        self.transport = transport

    def supports(self, request: RetrievalRequest) -> bool:
        if request.resource == ResourceKind.ISSUE:
            return bool(self.jira_url)
        return True

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(_HTTP_TIMEOUT_S),
            follow_redirects=True,
            transport=self.transport,
        )

    def _github_headers(self) -> Dict[str, str]:
        hdrs = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "repokeeper",
        }
        if self.github_token:
            hdrs["Authorization"] = f"Bearer {self.github_token}"
        return hdrs

    async def invoke(self, request: RetrievalRequest) -> RetrievalOutcome:
        try:
            async with self._client() as client:
                if request.resource == ResourceKind.ISSUE:
                    return await self._fetch_issue(client, request)
                return await self._fetch_repo_resource(client, request)
        except httpx.TimeoutException as e:
            return TransientFailure(cause=f"timeout: {e}")
        except httpx.HTTPError as e:
            return TransientFailure(cause=f"transport error: {e}")
        except ValueError as e:
            return TransientFailure(cause=f"malformed response: {e}")

    async def _fetch_repo_resource(self, client: httpx.AsyncClient, request: RetrievalRequest) -> RetrievalOutcome:
        ref = request.repo_ref
        base = f"{self.github_api_url}/repos/{ref.owner}/{ref.repo}"

        if request.resource == ResourceKind.PR_METADATA:
            resp = await client.get(f"{base}/pulls/{ref.number}", headers=self._github_headers())
            failed = classify_http_response(resp)
            if failed:
                return failed
            return self._measured(resp.json())

        if request.resource == ResourceKind.PR_FILES:
            return await self._paginate(client, f"{base}/pulls/{ref.number}/files")

        if request.resource == ResourceKind.COMMIT_HISTORY:
            if ref.number is not None:
                return await self._paginate(client, f"{base}/pulls/{ref.number}/commits")
            # Repository history is a window: the latest _PAGE_SIZE commits
            return await self._paginate(client, f"{base}/commits", max_pages=1, window=True)

        return TransientFailure(cause=f"unsupported resource {request.resource.value}")

    async def _paginate(
        self,
        client: httpx.AsyncClient,
        url: str,
        max_pages: int = _MAX_PAGES,
        window: bool = False,
    ) -> RetrievalOutcome:
        """
        Follow Link rel=next, stopping early once the ceiling is passed.

        Running out of pages while a next link remains is SizeExceeded,
        unless the caller asked for a fixed window of the newest items.
        """
        items: List[Any] = []
        next_url: Optional[str] = url
        params: Optional[Dict[str, Any]] = {"per_page": _PAGE_SIZE}
        pages = 0

        while next_url and pages < max_pages:
            resp = await client.get(next_url, headers=self._github_headers(), params=params)
            failed = classify_http_response(resp)
            if failed:
                return failed
            page = resp.json()
            if not isinstance(page, list):
                raise ValueError(f"expected a JSON list from {next_url}")
            items.extend(page)
            pages += 1

            size = estimate_size(items)
            if size > self.capacity_ceiling:
                # Lower bound only: remaining pages were not fetched
                return SizeExceeded(estimated_size=size)

            next_url = resp.links.get("next", {}).get("url")
            params = None  # next links already carry the query

        if next_url and not window:
            size = estimate_size(items)
            logger.info(f"[probe:{self.kind.value}] {url}: more than {pages} pages, reporting size exceeded")
            return SizeExceeded(estimated_size=size)

        logger.debug(f"[probe:{self.kind.value}] {url}: {len(items)} items in {pages} page(s)")
        return self._measured(items)

    async def _fetch_issue(self, client: httpx.AsyncClient, request: RetrievalRequest) -> RetrievalOutcome:
        if not self.jira_url:
            return PermissionDenied(reason="issue tracker not configured")
        auth = (self.jira_email, self.jira_token) if self.jira_email and self.jira_token else None
        resp = await client.get(
            f"{self.jira_url}/rest/api/2/issue/{request.issue_key}",
            headers={"Accept": "application/json"},
            auth=auth,
        )
        failed = classify_http_response(resp)
        if failed:
            return failed
        return self._measured(resp.json())


# =============================================================================
# LIGHTWEIGHT QUERY (gh CLI)
# =============================================================================

_PR_VIEW_FIELDS = "number,title,state,author,baseRefName,headRefName,body,additions,deletions,changedFiles,url"

_PERMISSION_MARKERS = ("http 401", "http 403", "http 404", "gh auth login", "authentication", "could not resolve to a")
_SIZE_MARKERS = ("too_large", "too large", "diff exceeded", "http 406", "exceeded the maximum")


def classify_cli_failure(stderr: str, returncode: int) -> RetrievalOutcome:
    """Map a failed gh invocation to an outcome tag from its stderr."""
    text = (stderr or "").strip().lower()
    if "rate limit" in text:
        return TransientFailure(cause=f"gh rate limited (exit {returncode})")
    if any(m in text for m in _SIZE_MARKERS):
        return SizeExceeded(estimated_size=0)
    if any(m in text for m in _PERMISSION_MARKERS):
        return PermissionDenied(reason=(stderr or "").strip()[:200])
    tail = (stderr or "").strip()[-200:]
    return TransientFailure(cause=f"gh exited {returncode}: {tail}")


class LightweightQueryProbe(CapabilityProbe):
    """Runs `gh` locally and parses its JSON or text output."""

    kind = StrategyKind.LIGHTWEIGHT_QUERY

    def __init__(self, gh_bin: Optional[str] = None, capacity_ceiling: Optional[float] = None):
        super().__init__(capacity_ceiling)
        self.gh_bin = gh_bin or _GH_BIN

    def supports(self, request: RetrievalRequest) -> bool:
        return shutil.which(self.gh_bin) is not None

    def build_command(self, request: RetrievalRequest) -> List[str]:
        ref = request.repo_ref
        repo = ref.full_name
        if request.resource == ResourceKind.PR_METADATA:
            return [self.gh_bin, "pr", "view", str(ref.number), "--repo", repo, "--json", _PR_VIEW_FIELDS]
        # `gh pr view --json files|commits` stops at the first 100 entries,
        # so list endpoints go through `gh api --paginate`.
        if request.resource == ResourceKind.PR_FILES:
            return [self.gh_bin, "api", "--paginate", f"repos/{repo}/pulls/{ref.number}/files?per_page={_PAGE_SIZE}"]
        if request.resource == ResourceKind.PR_DIFF:
            return [self.gh_bin, "pr", "diff", str(ref.number), "--repo", repo]
        if request.resource == ResourceKind.COMMIT_HISTORY:
            if ref.number is not None:
                return [self.gh_bin, "api", "--paginate", f"repos/{repo}/pulls/{ref.number}/commits?per_page={_PAGE_SIZE}"]
            # Latest _PAGE_SIZE commits, same window as the structured API
            return [self.gh_bin, "api", f"repos/{repo}/commits?per_page={_PAGE_SIZE}"]
        raise ValueError(f"gh cannot serve {request.resource.value}")

    async def _run(self, cmd: List[str]) -> tuple[int, str, str]:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            out, err = await proc.communicate()
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise
        return (
            proc.returncode if proc.returncode is not None else -1,
            out.decode("utf-8", errors="replace"),
            err.decode("utf-8", errors="replace"),
        )

    async def invoke(self, request: RetrievalRequest) -> RetrievalOutcome:
        try:
            cmd = self.build_command(request)
        except ValueError as e:
            return TransientFailure(cause=str(e))

        logger.debug(f"[probe:{self.kind.value}] running: {' '.join(cmd)}")
        try:
            returncode, stdout, stderr = await self._run(cmd)
        except FileNotFoundError:
            return TransientFailure(cause=f"{self.gh_bin} not found")
        except OSError as e:
            return TransientFailure(cause=f"could not start {self.gh_bin}: {e}")

        if returncode != 0:
            return classify_cli_failure(stderr, returncode)

        if request.resource == ResourceKind.PR_DIFF:
            return self._measured(stdout)

        try:
            data = parse_paginated_json(stdout)
        except ValueError as e:
            return TransientFailure(cause=f"gh returned invalid JSON: {e}")
        return self._measured(data)


def parse_paginated_json(text: str) -> Any:
    """
    Parse `gh api --paginate` output.

    Depending on the gh version, pages arrive as one merged array or as
    several arrays back to back. Arrays are concatenated; a single
    non-array document is returned as is.

    Raises:
        ValueError: if the text is not a sequence of JSON documents
    """
    decoder = json.JSONDecoder()
    documents: List[Any] = []
    pos = 0
    text = text.strip()
    while pos < len(text):
        doc, pos = decoder.raw_decode(text, pos)
        documents.append(doc)
        while pos < len(text) and text[pos].isspace():
            pos += 1
    if not documents:
        raise ValueError("empty output")
    if len(documents) == 1:
        return documents[0]
    if not all(isinstance(d, list) for d in documents):
        raise ValueError("expected a sequence of JSON arrays")
    return [item for doc in documents for item in doc]


# =============================================================================
# DELEGATED ANALYSIS
# =============================================================================

Delegate = Callable[[RetrievalRequest], Awaitable[Any]]


class DelegatedAnalysisProbe(CapabilityProbe):
    """
    Hands the request to a sub-task mechanism supplied by the caller.

    The delegate returns the payload, or raises:
      - PermissionError   -> PermissionDenied
      - PayloadTooLarge   -> SizeExceeded
      - anything else     -> TransientFailure
    """

    kind = StrategyKind.DELEGATED_ANALYSIS

    def __init__(self, delegate: Optional[Delegate] = None, capacity_ceiling: Optional[float] = None):
        super().__init__(capacity_ceiling)
        self.delegate = delegate

    def supports(self, request: RetrievalRequest) -> bool:
        return self.delegate is not None

    async def invoke(self, request: RetrievalRequest) -> RetrievalOutcome:
        if self.delegate is None:
            return TransientFailure(cause="no delegate configured")
        try:
            payload = await self.delegate(request)
        except PermissionError as e:
            return PermissionDenied(reason=str(e))
        except PayloadTooLarge as e:
            return SizeExceeded(estimated_size=e.estimated_size)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[probe:{self.kind.value}] delegate failed: {e}")
            return TransientFailure(cause=str(e) or type(e).__name__)
        return self._measured(payload)


def default_probes(delegate: Optional[Delegate] = None) -> Dict[StrategyKind, CapabilityProbe]:
    """Probes configured from the environment."""
    return {
        StrategyKind.STRUCTURED_API: StructuredAPIProbe(),
        StrategyKind.LIGHTWEIGHT_QUERY: LightweightQueryProbe(),
        StrategyKind.DELEGATED_ANALYSIS: DelegatedAnalysisProbe(delegate),
    }


__all__ = [
    "PayloadTooLarge",
    "CapabilityProbe",
    "classify_http_response",
    "classify_cli_failure",
    "parse_paginated_json",
    "StructuredAPIProbe",
    "LightweightQueryProbe",
    "DelegatedAnalysisProbe",
    "Delegate",
    "default_probes",
]
