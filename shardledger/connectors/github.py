"""GitHub REST connector for developer contribution verification."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

import httpx

from shardledger.config import settings
from shardledger.connectors.verification import (
    VerificationResult,
    rejected,
    result_from_http_error,
    verified,
)

logger = logging.getLogger(__name__)

PROVIDER = "github"

PULL_URL_RE = re.compile(r"github\.com/([^/]+)/([^/]+)/pull/(\d+)")
COMMIT_URL_RE = re.compile(r"github\.com/([^/]+)/([^/]+)/commit/([a-f0-9]{40})")

# compare API statuses meaning the commit is contained in the base branch
_CONTAINED = {"identical", "behind"}


@dataclass
class ContributionRef:
    kind: str  # "pull" | "commit"
    owner: str
    repo: str
    ident: str  # PR number or commit sha

    @property
    def reference(self) -> str:
        sep = "pull" if self.kind == "pull" else "commit"
        return f"github.com/{self.owner}/{self.repo}/{sep}/{self.ident}".lower()


def parse_contribution_url(url: str) -> ContributionRef | None:
    m = PULL_URL_RE.search(url)
    if m:
        return ContributionRef("pull", m.group(1), m.group(2), m.group(3))
    m = COMMIT_URL_RE.search(url)
    if m:
        return ContributionRef("commit", m.group(1), m.group(2), m.group(3))
    return None


def _headers() -> dict[str, str]:
    headers = {"Accept": "application/vnd.github.v3+json"}
    if settings.github_api_token:
        headers["Authorization"] = f"Bearer {settings.github_api_token}"
    return headers


def _get(path: str) -> dict | list:
    resp = httpx.get(
        f"{settings.github_api_url}{path}",
        headers=_headers(),
        timeout=settings.verifier_timeout_sec,
    )
    resp.raise_for_status()
    return resp.json()


def _author_matches(login: str | None, expected_author: str | None) -> bool:
    if not expected_author:
        return True
    return (login or "").lower() == expected_author.lower()


def verify_pull_request(
    owner: str,
    repo: str,
    number: int | str,
    expected_author: str | None = None,
) -> VerificationResult:
    """Verified only when the PR exists, is merged, and (optionally) was opened by expected_author."""
    try:
        pr = _get(f"/repos/{owner}/{repo}/pulls/{number}")
    except httpx.HTTPError as e:
        return result_from_http_error(PROVIDER, e)

    author = (pr.get("user") or {}).get("login")
    details = {
        "title": pr.get("title", ""),
        "author": author,
        "merged_at": pr.get("merged_at"),
        "state": pr.get("state"),
    }
    if not pr.get("merged"):
        return rejected(PROVIDER, f"PR {owner}/{repo}#{number} is not merged", **details)
    if not _author_matches(author, expected_author):
        return rejected(PROVIDER, f"PR author {author} does not match {expected_author}", **details)
    logger.info("Verified merged PR %s/%s#%s by %s", owner, repo, number, author)
    return verified(PROVIDER, **details)


def _on_protected_branch(owner: str, repo: str, sha: str) -> str | None:
    """Name of the first protected branch containing sha, or None."""
    for branch in settings.github_protected_branches:
        try:
            cmp = _get(f"/repos/{owner}/{repo}/compare/{branch}...{sha}")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                # ブランチが存在しない (main/master どちらか)
                continue
            raise
        if cmp.get("status") in _CONTAINED:
            return branch
    return None


def verify_commit(
    owner: str,
    repo: str,
    sha: str,
    expected_author: str | None = None,
) -> VerificationResult:
    """Verified when the commit exists and is contained in a protected branch."""
    try:
        commit = _get(f"/repos/{owner}/{repo}/commits/{sha}")
        branch = _on_protected_branch(owner, repo, sha)
    except httpx.HTTPError as e:
        return result_from_http_error(PROVIDER, e)

    author = (commit.get("author") or {}).get("login")
    details = {
        "author": author,
        "message": (commit.get("commit") or {}).get("message", "").split("\n", 1)[0],
        "branch": branch,
    }
    if branch is None:
        return rejected(PROVIDER, f"commit {sha[:7]} is not on a protected branch", **details)
    if not _author_matches(author, expected_author):
        return rejected(PROVIDER, f"commit author {author} does not match {expected_author}", **details)
    logger.info("Verified commit %s on %s/%s@%s", sha[:7], owner, repo, branch)
    return verified(PROVIDER, **details)


def verify_contribution_url(url: str, expected_author: str | None = None) -> VerificationResult:
    ref = parse_contribution_url(url)
    if ref is None:
        return rejected(PROVIDER, f"not a GitHub PR or commit URL: {url}")
    if ref.kind == "pull":
        return verify_pull_request(ref.owner, ref.repo, ref.ident, expected_author)
    return verify_commit(ref.owner, ref.repo, ref.ident, expected_author)
