"""Tests for the GitHub contribution verifier."""

from __future__ import annotations

import httpx
import pytest

from shardledger.connectors.github import (
    parse_contribution_url,
    verify_commit,
    verify_contribution_url,
    verify_pull_request,
)
from shardledger.connectors.verification import VerificationStatus
from shardledger.errors import VerificationFailed, VerificationUnavailable
from tests.helpers import http_response

SHA = "a" * 40


def _route(routes: dict[str, tuple[int, object]], calls: list | None = None):
    """Fake httpx.get answering by URL suffix."""

    def fake_get(url, headers=None, timeout=None, **kwargs):
        if calls is not None:
            calls.append((url, headers))
        for suffix, (status, body) in routes.items():
            if url.endswith(suffix):
                return http_response(status, body, url)
        return http_response(404, {"message": "Not Found"}, url)

    return fake_get


def _pr(merged=True, login="alice"):
    return {
        "title": "Fix vault math",
        "user": {"login": login},
        "merged": merged,
        "merged_at": "2026-01-05T10:00:00Z" if merged else None,
        "state": "closed" if merged else "open",
    }


class TestParseUrl:
    def test_pull(self):
        ref = parse_contribution_url("https://github.com/Illuvium/Vaults/pull/42")
        assert ref.kind == "pull"
        assert ref.ident == "42"
        assert ref.reference == "github.com/illuvium/vaults/pull/42"

    def test_commit(self):
        ref = parse_contribution_url(f"https://github.com/o/r/commit/{SHA}")
        assert ref.kind == "commit"
        assert ref.ident == SHA

    def test_other_url(self):
        assert parse_contribution_url("https://github.com/o/r/issues/3") is None
        assert parse_contribution_url("https://gitlab.com/o/r/pull/3") is None


class TestVerifyPullRequest:
    def test_merged(self, monkeypatch):
        monkeypatch.setattr(
            "shardledger.connectors.github.httpx.get", _route({"/repos/o/r/pulls/1": (200, _pr())})
        )
        result = verify_pull_request("o", "r", 1)
        assert result.verified
        assert result.details["author"] == "alice"

    def test_unmerged_rejected(self, monkeypatch):
        monkeypatch.setattr(
            "shardledger.connectors.github.httpx.get",
            _route({"/repos/o/r/pulls/1": (200, _pr(merged=False))}),
        )
        result = verify_pull_request("o", "r", 1)
        assert result.status == VerificationStatus.REJECTED
        with pytest.raises(VerificationFailed):
            result.raise_for_status()

    def test_author_mismatch(self, monkeypatch):
        monkeypatch.setattr(
            "shardledger.connectors.github.httpx.get", _route({"/repos/o/r/pulls/1": (200, _pr())})
        )
        assert verify_pull_request("o", "r", 1, expected_author="ALICE").verified
        assert not verify_pull_request("o", "r", 1, expected_author="bob").verified

    def test_missing_pr_rejected(self, monkeypatch):
        monkeypatch.setattr("shardledger.connectors.github.httpx.get", _route({}))
        assert verify_pull_request("o", "r", 1).status == VerificationStatus.REJECTED

    def test_server_error_unavailable(self, monkeypatch):
        monkeypatch.setattr(
            "shardledger.connectors.github.httpx.get", _route({"/repos/o/r/pulls/1": (503, {})})
        )
        result = verify_pull_request("o", "r", 1)
        assert result.status == VerificationStatus.UNAVAILABLE
        with pytest.raises(VerificationUnavailable):
            result.raise_for_status()

    def test_rate_limited_unavailable(self, monkeypatch):
        monkeypatch.setattr(
            "shardledger.connectors.github.httpx.get", _route({"/repos/o/r/pulls/1": (403, {})})
        )
        assert verify_pull_request("o", "r", 1).status == VerificationStatus.UNAVAILABLE

    def test_timeout_unavailable(self, monkeypatch):
        def boom(*args, **kwargs):
            raise httpx.ReadTimeout("timed out")

        monkeypatch.setattr("shardledger.connectors.github.httpx.get", boom)
        result = verify_pull_request("o", "r", 1)
        assert result.status == VerificationStatus.UNAVAILABLE
        assert result.reason == "timeout"

    def test_token_sent(self, monkeypatch):
        calls: list = []
        monkeypatch.setattr("shardledger.connectors.github.settings.github_api_token", "tok")
        monkeypatch.setattr(
            "shardledger.connectors.github.httpx.get",
            _route({"/repos/o/r/pulls/1": (200, _pr())}, calls),
        )
        verify_pull_request("o", "r", 1)
        assert calls[0][1]["Authorization"] == "Bearer tok"


class TestVerifyCommit:
    def _commit(self):
        return {"author": {"login": "alice"}, "commit": {"message": "Fix rounding\n\nlong body"}}

    def test_on_main(self, monkeypatch):
        monkeypatch.setattr(
            "shardledger.connectors.github.httpx.get",
            _route({
                f"/repos/o/r/commits/{SHA}": (200, self._commit()),
                f"/repos/o/r/compare/main...{SHA}": (200, {"status": "behind"}),
            }),
        )
        result = verify_commit("o", "r", SHA)
        assert result.verified
        assert result.details["branch"] == "main"
        assert result.details["message"] == "Fix rounding"

    def test_master_when_main_missing(self, monkeypatch):
        monkeypatch.setattr(
            "shardledger.connectors.github.httpx.get",
            _route({
                f"/repos/o/r/commits/{SHA}": (200, self._commit()),
                f"/repos/o/r/compare/master...{SHA}": (200, {"status": "identical"}),
            }),
        )
        assert verify_commit("o", "r", SHA).details["branch"] == "master"

    def test_feature_branch_only_rejected(self, monkeypatch):
        monkeypatch.setattr(
            "shardledger.connectors.github.httpx.get",
            _route({
                f"/repos/o/r/commits/{SHA}": (200, self._commit()),
                f"/repos/o/r/compare/main...{SHA}": (200, {"status": "diverged"}),
                f"/repos/o/r/compare/master...{SHA}": (200, {"status": "ahead"}),
            }),
        )
        result = verify_commit("o", "r", SHA)
        assert result.status == VerificationStatus.REJECTED
        assert "protected branch" in result.reason

    def test_compare_outage_unavailable(self, monkeypatch):
        monkeypatch.setattr(
            "shardledger.connectors.github.httpx.get",
            _route({
                f"/repos/o/r/commits/{SHA}": (200, self._commit()),
                f"/repos/o/r/compare/main...{SHA}": (502, {}),
            }),
        )
        assert verify_commit("o", "r", SHA).status == VerificationStatus.UNAVAILABLE


class TestVerifyContributionUrl:
    def test_dispatch_to_pull(self, monkeypatch):
        monkeypatch.setattr(
            "shardledger.connectors.github.httpx.get", _route({"/repos/o/r/pulls/9": (200, _pr())})
        )
        assert verify_contribution_url("https://github.com/o/r/pull/9").verified

    def test_bad_url(self):
        result = verify_contribution_url("https://example.com/whatever")
        assert result.status == VerificationStatus.REJECTED
