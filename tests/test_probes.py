# FILE: tests/test_probes.py
"""
Tests for capability probes.

Network and subprocess collaborators are faked:
- StructuredAPIProbe runs against httpx.MockTransport
- LightweightQueryProbe has its _run coroutine patched
- DelegatedAnalysisProbe gets plain async delegates
"""
import asyncio
import json
import math
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from repokeeper.retrieval.probes import (
    DelegatedAnalysisProbe,
    LightweightQueryProbe,
    PayloadTooLarge,
    StructuredAPIProbe,
    classify_cli_failure,
    classify_http_response,
    default_probes,
    parse_paginated_json,
)
from repokeeper.retrieval.schemas import (
    PermissionDenied,
    RetrievalRequest,
    SizeExceeded,
    StrategyKind,
    Success,
    TransientFailure,
)

API = "https://api.github.test"


def _request(resource="pr_files", key="org/repo#42"):
    return RetrievalRequest(resource=resource, key=key)


def _api_probe(handler, **kwargs):
    kwargs.setdefault("github_token", "ghp_test")
    kwargs.setdefault("jira_url", "")
    return StructuredAPIProbe(
        github_api_url=API,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


# =============================================================================
# HTTP classification
# =============================================================================

class TestClassifyHttpResponse:
    def _resp(self, status, text="", headers=None):
        return httpx.Response(status, text=text, headers=headers or {})

    def test_success_is_none(self):
        assert classify_http_response(self._resp(200)) is None

    def test_401_is_permission(self):
        assert isinstance(classify_http_response(self._resp(401)), PermissionDenied)

    def test_403_is_permission(self):
        assert isinstance(classify_http_response(self._resp(403)), PermissionDenied)

    def test_403_with_exhausted_quota_is_transient(self):
        resp = self._resp(403, headers={"x-ratelimit-remaining": "0"})
        assert isinstance(classify_http_response(resp), TransientFailure)

    def test_403_secondary_rate_limit_retry_after_is_transient(self):
        resp = self._resp(403, headers={"retry-after": "60"})
        assert isinstance(classify_http_response(resp), TransientFailure)

    def test_403_secondary_rate_limit_body_is_transient(self):
        resp = self._resp(403, text='{"message": "You have exceeded a secondary rate limit."}')
        assert isinstance(classify_http_response(resp), TransientFailure)

    def test_429_is_transient(self):
        assert isinstance(classify_http_response(self._resp(429)), TransientFailure)

    def test_404_is_permission(self):
        outcome = classify_http_response(self._resp(404))
        assert isinstance(outcome, PermissionDenied)
        assert "404" in outcome.reason

    def test_406_is_size(self):
        assert isinstance(classify_http_response(self._resp(406)), SizeExceeded)

    def test_422_too_large_is_size(self):
        resp = self._resp(422, text='{"errors":[{"code":"too_large"}]}')
        assert isinstance(classify_http_response(resp), SizeExceeded)

    def test_422_other_is_transient(self):
        assert isinstance(classify_http_response(self._resp(422, text="bad")), TransientFailure)

    def test_5xx_is_transient(self):
        assert classify_http_response(self._resp(502)) == TransientFailure(cause="HTTP 502")


# =============================================================================
# Structured API probe
# =============================================================================

class TestStructuredAPIProbe:
    @pytest.mark.asyncio
    async def test_pr_metadata(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"number": 42, "title": "fix: thing"})

        outcome = await _api_probe(handler).invoke(_request("pr_metadata"))

        assert isinstance(outcome, Success)
        assert outcome.payload["number"] == 42
        assert outcome.size > 0
        assert seen["url"] == f"{API}/repos/org/repo/pulls/42"
        assert seen["auth"] == "Bearer ghp_test"

    @pytest.mark.asyncio
    async def test_no_token_sends_no_auth_header(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={})

        await _api_probe(handler, github_token="").invoke(_request("pr_metadata"))
        assert seen["auth"] is None

    @pytest.mark.asyncio
    async def test_pr_files_follows_link_pagination(self):
        page2 = f"{API}/repos/org/repo/pulls/42/files?per_page=100&page=2"
        calls = []

        def handler(request: httpx.Request):
            calls.append(str(request.url))
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json=[{"filename": "b.py"}])
            return httpx.Response(
                200,
                json=[{"filename": "a.py"}],
                headers={"Link": f'<{page2}>; rel="next"'},
            )

        outcome = await _api_probe(handler).invoke(_request("pr_files"))

        assert isinstance(outcome, Success)
        assert [f["filename"] for f in outcome.payload] == ["a.py", "b.py"]
        assert len(calls) == 2
        assert "per_page=100" in calls[0]

    @pytest.mark.asyncio
    async def test_pagination_stops_at_ceiling(self):
        next_url = f"{API}/repos/org/repo/pulls/42/files?page=2"
        calls = []

        def handler(request: httpx.Request):
            calls.append(str(request.url))
            return httpx.Response(
                200,
                json=[{"patch": "x" * 400}],
                headers={"Link": f'<{next_url}>; rel="next"'},
            )

        outcome = await _api_probe(handler, capacity_ceiling=50).invoke(_request("pr_files"))

        assert isinstance(outcome, SizeExceeded)
        assert outcome.estimated_size > 50
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_oversized_single_response(self):
        def handler(request):
            return httpx.Response(200, json={"body": "y" * 1000})

        outcome = await _api_probe(handler, capacity_ceiling=10).invoke(_request("pr_metadata"))
        assert isinstance(outcome, SizeExceeded)

    @pytest.mark.asyncio
    async def test_repo_commit_history_single_page(self):
        calls = []

        def handler(request):
            calls.append(str(request.url))
            return httpx.Response(
                200,
                json=[{"sha": "abc"}],
                headers={"Link": f'<{API}/repos/org/repo/commits?page=2>; rel="next"'},
            )

        outcome = await _api_probe(handler).invoke(_request("commit_history", "org/repo"))
        assert isinstance(outcome, Success)
        assert len(calls) == 1
        assert calls[0].startswith(f"{API}/repos/org/repo/commits")

    @pytest.mark.asyncio
    async def test_page_cap_with_more_pages_is_size_exceeded(self):
        """An unbounded ceiling still never turns a capped listing into Success."""
        calls = []

        def handler(request: httpx.Request):
            calls.append(str(request.url))
            page = len(calls) + 1
            return httpx.Response(
                200,
                json=[{"filename": f"f{len(calls)}.py"}],
                headers={"Link": f'<{API}/repos/org/repo/pulls/42/files?page={page}>; rel="next"'},
            )

        outcome = await _api_probe(handler, capacity_ceiling=math.inf).invoke(_request("pr_files"))

        assert isinstance(outcome, SizeExceeded)
        assert outcome.estimated_size > 0
        assert len(calls) == 30

    @pytest.mark.asyncio
    async def test_404_is_permission_denied(self):
        outcome = await _api_probe(lambda r: httpx.Response(404)).invoke(_request("pr_files"))
        assert isinstance(outcome, PermissionDenied)

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        outcome = await _api_probe(lambda r: httpx.Response(503)).invoke(_request("pr_files"))
        assert isinstance(outcome, TransientFailure)

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        outcome = await _api_probe(handler).invoke(_request("pr_files"))
        assert isinstance(outcome, TransientFailure)
        assert "timeout" in outcome.cause

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        outcome = await _api_probe(handler).invoke(_request("pr_files"))
        assert isinstance(outcome, TransientFailure)

    @pytest.mark.asyncio
    async def test_non_list_page_is_transient(self):
        outcome = await _api_probe(lambda r: httpx.Response(200, json={"oops": 1})).invoke(_request("pr_files"))
        assert isinstance(outcome, TransientFailure)
        assert "malformed" in outcome.cause

    @pytest.mark.asyncio
    async def test_jira_issue(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization", "")
            return httpx.Response(200, json={"key": "TITAN-149", "fields": {"summary": "PII"}})

        probe = _api_probe(
            handler,
            jira_url="https://jira.test/",
            jira_email="dev@example.com",
            jira_token="secret",
        )
        outcome = await probe.invoke(_request("issue", "titan-149"))

        assert isinstance(outcome, Success)
        assert seen["url"] == "https://jira.test/rest/api/2/issue/TITAN-149"
        assert seen["auth"].startswith("Basic ")

    def test_issue_unsupported_without_jira(self):
        probe = _api_probe(lambda r: httpx.Response(200))
        assert probe.supports(_request("issue", "TITAN-149")) is False
        assert probe.supports(_request("pr_files")) is True


# =============================================================================
# gh CLI probe
# =============================================================================

class TestClassifyCliFailure:
    def test_rate_limit(self):
        assert isinstance(classify_cli_failure("API rate limit exceeded", 1), TransientFailure)

    def test_auth(self):
        outcome = classify_cli_failure("To get started with GitHub CLI, please run:  gh auth login", 4)
        assert isinstance(outcome, PermissionDenied)

    def test_not_visible(self):
        stderr = "GraphQL: Could not resolve to a Repository with the name 'org/secret'."
        assert isinstance(classify_cli_failure(stderr, 1), PermissionDenied)

    def test_diff_too_large(self):
        stderr = "could not find pull request diff: HTTP 406: Sorry, the diff exceeded the maximum number of lines"
        assert isinstance(classify_cli_failure(stderr, 1), SizeExceeded)

    def test_unknown_is_transient(self):
        outcome = classify_cli_failure("connection reset by peer", 1)
        assert isinstance(outcome, TransientFailure)
        assert "connection reset" in outcome.cause


class TestLightweightQueryProbe:
    def test_build_commands(self):
        probe = LightweightQueryProbe(gh_bin="gh")
        assert probe.build_command(_request("pr_diff")) == ["gh", "pr", "diff", "42", "--repo", "org/repo"]
        assert probe.build_command(_request("pr_files")) == [
            "gh", "api", "--paginate", "repos/org/repo/pulls/42/files?per_page=100",
        ]
        assert probe.build_command(_request("commit_history")) == [
            "gh", "api", "--paginate", "repos/org/repo/pulls/42/commits?per_page=100",
        ]
        assert probe.build_command(_request("commit_history", "org/repo")) == [
            "gh", "api", "repos/org/repo/commits?per_page=100",
        ]

    def test_supports_requires_binary(self):
        probe = LightweightQueryProbe(gh_bin="gh")
        with patch("repokeeper.retrieval.probes.shutil.which", return_value=None):
            assert probe.supports(_request()) is False
        with patch("repokeeper.retrieval.probes.shutil.which", return_value="/usr/bin/gh"):
            assert probe.supports(_request()) is True

    @pytest.mark.asyncio
    async def test_pr_files_merges_paginated_arrays(self):
        """gh prints one array per page; every page ends up in the payload."""
        probe = LightweightQueryProbe(gh_bin="gh")
        pages = [
            [{"filename": f"f{i}.py"} for i in range(100)],
            [{"filename": f"f{i}.py"} for i in range(100, 200)],
            [{"filename": f"f{i}.py"} for i in range(200, 250)],
        ]
        stdout = "\n".join(json.dumps(p) for p in pages)
        with patch.object(probe, "_run", AsyncMock(return_value=(0, stdout, ""))) as run:
            outcome = await probe.invoke(_request("pr_files"))

        assert isinstance(outcome, Success)
        assert len(outcome.payload) == 250
        assert outcome.payload[-1] == {"filename": "f249.py"}
        run.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_pr_files_single_merged_array(self):
        probe = LightweightQueryProbe(gh_bin="gh")
        stdout = json.dumps([{"filename": "a.py", "additions": 3}])
        with patch.object(probe, "_run", AsyncMock(return_value=(0, stdout, ""))):
            outcome = await probe.invoke(_request("pr_files"))
        assert outcome.payload == [{"filename": "a.py", "additions": 3}]

    @pytest.mark.asyncio
    async def test_diff_is_text(self):
        probe = LightweightQueryProbe(gh_bin="gh")
        diff = "diff --git a/a.py b/a.py\n+print('hi')\n"
        with patch.object(probe, "_run", AsyncMock(return_value=(0, diff, ""))):
            outcome = await probe.invoke(_request("pr_diff"))
        assert outcome == Success(payload=diff, size=len(diff) // 4)

    @pytest.mark.asyncio
    async def test_oversized_output(self):
        probe = LightweightQueryProbe(gh_bin="gh", capacity_ceiling=5)
        with patch.object(probe, "_run", AsyncMock(return_value=(0, "+" * 100, ""))):
            outcome = await probe.invoke(_request("pr_diff"))
        assert outcome == SizeExceeded(estimated_size=25)

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_classified(self):
        probe = LightweightQueryProbe(gh_bin="gh")
        with patch.object(probe, "_run", AsyncMock(return_value=(1, "", "HTTP 403: Forbidden"))):
            outcome = await probe.invoke(_request("pr_files"))
        assert isinstance(outcome, PermissionDenied)

    @pytest.mark.asyncio
    async def test_invalid_json_is_transient(self):
        probe = LightweightQueryProbe(gh_bin="gh")
        with patch.object(probe, "_run", AsyncMock(return_value=(0, "not json", ""))):
            outcome = await probe.invoke(_request("pr_metadata"))
        assert isinstance(outcome, TransientFailure)

    @pytest.mark.asyncio
    async def test_missing_binary_is_transient(self):
        probe = LightweightQueryProbe(gh_bin="gh")
        with patch.object(probe, "_run", AsyncMock(side_effect=FileNotFoundError())):
            outcome = await probe.invoke(_request("pr_files"))
        assert outcome == TransientFailure(cause="gh not found")

    @pytest.mark.asyncio
    async def test_issue_is_not_servable(self):
        probe = LightweightQueryProbe(gh_bin="gh")
        outcome = await probe.invoke(_request("issue", "TITAN-149"))
        assert isinstance(outcome, TransientFailure)


# =============================================================================
# Delegated analysis probe
# =============================================================================

class TestDelegatedAnalysisProbe:
    @pytest.mark.asyncio
    async def test_success(self):
        async def delegate(request):
            return {"summary": f"{request.resource.value} for {request.key}"}

        outcome = await DelegatedAnalysisProbe(delegate).invoke(_request())
        assert isinstance(outcome, Success)
        assert outcome.payload == {"summary": "pr_files for org/repo#42"}

    @pytest.mark.asyncio
    async def test_permission_error(self):
        async def delegate(request):
            raise PermissionError("no access to org/repo")

        outcome = await DelegatedAnalysisProbe(delegate).invoke(_request())
        assert outcome == PermissionDenied(reason="no access to org/repo")

    @pytest.mark.asyncio
    async def test_payload_too_large(self):
        async def delegate(request):
            raise PayloadTooLarge(120_000)

        outcome = await DelegatedAnalysisProbe(delegate).invoke(_request())
        assert outcome == SizeExceeded(estimated_size=120_000)

    @pytest.mark.asyncio
    async def test_other_errors_are_transient(self):
        async def delegate(request):
            raise RuntimeError("worker crashed")

        outcome = await DelegatedAnalysisProbe(delegate).invoke(_request())
        assert outcome == TransientFailure(cause="worker crashed")

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        async def delegate(request):
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await DelegatedAnalysisProbe(delegate).invoke(_request())

    def test_supports_needs_delegate(self):
        assert DelegatedAnalysisProbe(None).supports(_request()) is False


def test_default_probes_cover_every_strategy():
    probes = default_probes()
    assert set(probes) == set(StrategyKind)
    assert all(p.kind == k for k, p in probes.items())


class TestParsePaginatedJson:
    def test_concatenated_arrays(self):
        assert parse_paginated_json('[1, 2][3]\n[4]') == [1, 2, 3, 4]

    def test_single_object(self):
        assert parse_paginated_json('{"number": 42}\n') == {"number": 42}

    def test_mixed_documents_rejected(self):
        with pytest.raises(ValueError):
            parse_paginated_json('[1]{"a": 2}')

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            parse_paginated_json("  ")
