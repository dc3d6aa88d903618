"""GitHub REST API connector implementation."""

from __future__ import annotations

import base64
from typing import Any
from urllib.parse import quote

import requests

from allocator_bot.control_plane.github.github_auth import GitHubAuth
from allocator_bot.control_plane.github.github_connector import (
    BranchAlreadyExistsError,
    FileChange,
    GitHubAPIError,
    MergeResult,
    PullRequest,
    PullRequestComment,
    RetryableGitHubError,
)

MERGE_METHOD = "squash"


class GitHubAPIConnector:
    def __init__(
        self,
        auth: GitHubAuth | None = None,
        base_url: str = "https://api.github.com",
        session: requests.Session | None = None,
        timeout_s: float = 15.0,
    ) -> None:
        self.auth = auth or GitHubAuth()
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout_s = timeout_s

    def create_branch(self, owner: str, repo: str, name: str, base: str) -> None:
        base_ref = self._request(
            "GET",
            f"/repos/{owner}/{repo}/git/ref/heads/{quote(base, safe='/')}",
            write=False,
        )
        sha = ""
        if isinstance(base_ref, dict):
            sha = str((base_ref.get("object") or {}).get("sha", ""))
        if not sha:
            raise GitHubAPIError(f"Base branch has no commit sha: {base}", status_code=404)
        try:
            self._request(
                "POST",
                f"/repos/{owner}/{repo}/git/refs",
                write=True,
                json={"ref": f"refs/heads/{name}", "sha": sha},
            )
        except GitHubAPIError as exc:
            if exc.status_code == 422 and "reference already exists" in str(exc).lower():
                raise BranchAlreadyExistsError(name) from exc
            raise

    def delete_branch(self, owner: str, repo: str, name: str) -> None:
        try:
            self._request(
                "DELETE",
                f"/repos/{owner}/{repo}/git/refs/heads/{quote(name, safe='/')}",
                write=True,
            )
        except GitHubAPIError as exc:
            # Already gone.
            if exc.status_code in {404, 422}:
                return
            raise

    def create_pull_request(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        head: str,
        base: str,
        files: list[FileChange],
    ) -> PullRequest:
        for change in files:
            self._put_file(owner, repo, head, change, message=title)
        response = self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            write=True,
            json={"title": title, "body": body, "head": head, "base": base},
        )
        return PullRequest(number=int(response["number"]), url=str(response.get("html_url", "")))

    def find_open_pull_request(self, owner: str, repo: str, head: str) -> PullRequest | None:
        response = self._request(
            "GET",
            f"/repos/{owner}/{repo}/pulls",
            write=False,
            params={"head": f"{owner}:{head}", "state": "open"},
        )
        if not isinstance(response, list) or not response:
            return None
        pull = response[0]
        return PullRequest(number=int(pull["number"]), url=str(pull.get("html_url", "")))

    def close_pull_request(self, owner: str, repo: str, pr_number: int) -> None:
        self._request(
            "PATCH",
            f"/repos/{owner}/{repo}/pulls/{pr_number}",
            write=True,
            json={"state": "closed"},
        )

    def create_pull_request_comment(
        self, owner: str, repo: str, pr_number: int, body: str
    ) -> PullRequestComment:
        response = self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{pr_number}/comments",
            write=True,
            json={"body": body},
        )
        return PullRequestComment(id=int(response["id"]))

    def update_pull_request_comment(
        self, owner: str, repo: str, pr_number: int, comment_id: int, body: str
    ) -> None:
        del pr_number
        self._request(
            "PATCH",
            f"/repos/{owner}/{repo}/issues/comments/{comment_id}",
            write=True,
            json={"body": body},
        )

    def update_pull_request_reviewers(
        self, owner: str, repo: str, pr_number: int, reviewers: list[str]
    ) -> None:
        if not reviewers:
            return
        self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls/{pr_number}/requested_reviewers",
            write=True,
            json={"reviewers": list(reviewers)},
        )

    def merge_pull_request(
        self, owner: str, repo: str, pr_number: int, message: str
    ) -> MergeResult:
        pull = self._request(
            "GET", f"/repos/{owner}/{repo}/pulls/{pr_number}", write=False
        )
        if isinstance(pull, dict) and pull.get("merged"):
            return MergeResult(
                merged=False, already_merged=True, sha=str(pull.get("merge_commit_sha") or "")
            )
        try:
            response = self._request(
                "PUT",
                f"/repos/{owner}/{repo}/pulls/{pr_number}/merge",
                write=True,
                json={"commit_title": message, "merge_method": MERGE_METHOD},
            )
        except GitHubAPIError as exc:
            if exc.status_code == 405 and "already merged" in str(exc).lower():
                return MergeResult(merged=False, already_merged=True)
            raise
        return MergeResult(
            merged=bool(response.get("merged", True)), sha=str(response.get("sha", ""))
        )

    def _put_file(
        self, owner: str, repo: str, branch: str, change: FileChange, message: str
    ) -> None:
        path = quote(change.path.lstrip("/"), safe="/")
        payload: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(change.content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        try:
            existing = self._request(
                "GET",
                f"/repos/{owner}/{repo}/contents/{path}",
                write=False,
                params={"ref": branch},
            )
        except GitHubAPIError as exc:
            if exc.status_code != 404:
                raise
            existing = None
        if isinstance(existing, dict) and existing.get("sha"):
            payload["sha"] = str(existing["sha"])
        self._request(
            "PUT",
            f"/repos/{owner}/{repo}/contents/{path}",
            write=True,
            json=payload,
        )

    def _request(
        self,
        method: str,
        path: str,
        write: bool,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            **self.auth.bearer_headers(write=write),
        }

        try:
            response = self.session.request(
                method=method,
                url=f"{self.base_url}{path}",
                headers=headers,
                json=json,
                params=params,
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            raise RetryableGitHubError(
                f"GitHub API transport failure: {exc}", reason_code="github_transport"
            ) from exc

        if response.status_code in {429, 500, 502, 503, 504, 403} and _looks_like_rate_limit(
            response
        ):
            raise RetryableGitHubError(
                "GitHub API retryable failure",
                reason_code=_reason_code_for_status(response.status_code),
                retry_after_s=_parse_retry_after((response.headers or {}).get("Retry-After")),
            )
        if response.status_code in {500, 502, 503, 504}:
            raise RetryableGitHubError(
                "GitHub API 5xx response",
                reason_code=_reason_code_for_status(response.status_code),
            )
        if response.status_code >= 400:
            raise GitHubAPIError(
                f"GitHub API {method} {path} failed with {response.status_code}: "
                f"{_error_message(response)}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        return response.json()


def _looks_like_rate_limit(response: requests.Response) -> bool:
    if response.status_code == 429:
        return True
    if response.status_code != 403:
        return False
    return "rate limit" in _error_message(response).lower()


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return ""
    if not isinstance(payload, dict):
        return ""
    return str(payload.get("message", ""))


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        parsed = float(value)
    except ValueError:
        return None
    return parsed if parsed >= 0 else None


def _reason_code_for_status(status: int) -> str:
    if status in {429, 403}:
        return "github_rate_limited"
    return f"github_{status}"
