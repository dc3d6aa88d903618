"""In-memory pull-request connector for deterministic tests."""

from __future__ import annotations

import threading
from typing import Any

from allocator_bot.control_plane.github.github_connector import (
    BranchAlreadyExistsError,
    FileChange,
    GitHubAPIError,
    MergeResult,
    PullRequest,
    PullRequestComment,
)


class InMemoryGitHubConnector:
    """In-memory connector mirroring the GitHub semantics the lifecycle relies on."""

    def __init__(self, base_url: str = "https://github.com") -> None:
        self.base_url = base_url.rstrip("/")
        self.branches: set[tuple[str, str, str]] = set()
        self.pull_requests: dict[tuple[str, str, int], dict[str, Any]] = {}
        self.comments: dict[int, dict[str, Any]] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._injected_failures: dict[str, list[Exception]] = {}
        self._next_pr_number = 1
        self._next_comment_id = 1000
        self._lock = threading.Lock()

    def inject_failure(self, operation: str, error: Exception, times: int = 1) -> None:
        """Queue ``error`` to be raised by the next ``times`` calls to ``operation``."""

        with self._lock:
            self._injected_failures.setdefault(operation, []).extend([error] * times)

    def seed_branch(self, owner: str, repo: str, name: str) -> None:
        with self._lock:
            self.branches.add((owner, repo, name))

    def operations(self, operation: str | None = None) -> list[str]:
        return [name for name, _ in self.calls if operation is None or name == operation]

    def create_branch(self, owner: str, repo: str, name: str, base: str) -> None:
        with self._lock:
            self._record("create_branch", owner=owner, repo=repo, name=name, base=base)
            if (owner, repo, name) in self.branches:
                raise BranchAlreadyExistsError(name)
            self.branches.add((owner, repo, name))

    def delete_branch(self, owner: str, repo: str, name: str) -> None:
        with self._lock:
            self._record("delete_branch", owner=owner, repo=repo, name=name)
            self.branches.discard((owner, repo, name))
            # GitHub closes open pull requests whose head branch is deleted.
            for pull in self._open_pulls(owner, repo, name):
                pull["state"] = "closed"

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
        with self._lock:
            self._record("create_pull_request", owner=owner, repo=repo, title=title, head=head)
            if (owner, repo, head) not in self.branches:
                raise GitHubAPIError(f"Unknown head branch: {head}", status_code=422)
            if self._open_pulls(owner, repo, head):
                raise GitHubAPIError(
                    f"A pull request already exists for {owner}:{head}", status_code=422
                )
            number = self._next_pr_number
            self._next_pr_number += 1
            url = f"{self.base_url}/{owner}/{repo}/pull/{number}"
            self.pull_requests[(owner, repo, number)] = {
                "number": number,
                "url": url,
                "title": title,
                "body": body,
                "head": head,
                "base": base,
                "files": {change.path: change.content for change in files},
                "reviewers": [],
                "state": "open",
                "merged": False,
                "merge_message": "",
            }
            return PullRequest(number=number, url=url)

    def find_open_pull_request(self, owner: str, repo: str, head: str) -> PullRequest | None:
        with self._lock:
            self._record("find_open_pull_request", owner=owner, repo=repo, head=head)
            pulls = self._open_pulls(owner, repo, head)
            if not pulls:
                return None
            return PullRequest(number=pulls[0]["number"], url=pulls[0]["url"])

    def close_pull_request(self, owner: str, repo: str, pr_number: int) -> None:
        with self._lock:
            self._record("close_pull_request", owner=owner, repo=repo, pr_number=pr_number)
            pull = self._pull_request(owner, repo, pr_number)
            if not pull["merged"]:
                pull["state"] = "closed"

    def open_pull_requests(self, head: str | None = None) -> list[int]:
        return sorted(
            pull["number"]
            for pull in self.pull_requests.values()
            if pull["state"] == "open" and (head is None or pull["head"] == head)
        )

    def create_pull_request_comment(
        self, owner: str, repo: str, pr_number: int, body: str
    ) -> PullRequestComment:
        with self._lock:
            self._record("create_pull_request_comment", owner=owner, repo=repo, pr_number=pr_number)
            self._pull_request(owner, repo, pr_number)
            comment_id = self._next_comment_id
            self._next_comment_id += 1
            self.comments[comment_id] = {"pr_number": pr_number, "body": body, "edits": 0}
            return PullRequestComment(id=comment_id)

    def update_pull_request_comment(
        self, owner: str, repo: str, pr_number: int, comment_id: int, body: str
    ) -> None:
        with self._lock:
            self._record(
                "update_pull_request_comment",
                owner=owner,
                repo=repo,
                pr_number=pr_number,
                comment_id=comment_id,
            )
            comment = self.comments.get(comment_id)
            if comment is None or comment["pr_number"] != pr_number:
                raise GitHubAPIError(f"Unknown comment: {comment_id}", status_code=404)
            comment["body"] = body
            comment["edits"] += 1

    def update_pull_request_reviewers(
        self, owner: str, repo: str, pr_number: int, reviewers: list[str]
    ) -> None:
        with self._lock:
            self._record(
                "update_pull_request_reviewers",
                owner=owner,
                repo=repo,
                pr_number=pr_number,
                reviewers=list(reviewers),
            )
            pull = self._pull_request(owner, repo, pr_number)
            for reviewer in reviewers:
                if reviewer not in pull["reviewers"]:
                    pull["reviewers"].append(reviewer)

    def merge_pull_request(
        self, owner: str, repo: str, pr_number: int, message: str
    ) -> MergeResult:
        with self._lock:
            self._record("merge_pull_request", owner=owner, repo=repo, pr_number=pr_number)
            pull = self._pull_request(owner, repo, pr_number)
            if pull["merged"]:
                return MergeResult(merged=False, already_merged=True)
            if pull["state"] != "open":
                raise GitHubAPIError("Pull Request is not mergeable", status_code=405)
            pull["merged"] = True
            pull["state"] = "closed"
            pull["merge_message"] = message
            return MergeResult(merged=True, sha=f"merge-{pr_number}")

    def merge_count(self) -> int:
        return sum(1 for pull in self.pull_requests.values() if pull["merged"])

    def _record(self, operation: str, **kwargs: Any) -> None:
        self.calls.append((operation, kwargs))
        queued = self._injected_failures.get(operation)
        if queued:
            raise queued.pop(0)

    def _open_pulls(self, owner: str, repo: str, head: str) -> list[dict[str, Any]]:
        return [
            pull
            for (pull_owner, pull_repo, _), pull in sorted(self.pull_requests.items())
            if (pull_owner, pull_repo) == (owner, repo)
            and pull["head"] == head
            and pull["state"] == "open"
        ]

    def _pull_request(self, owner: str, repo: str, pr_number: int) -> dict[str, Any]:
        pull = self.pull_requests.get((owner, repo, pr_number))
        if pull is None:
            raise GitHubAPIError(f"Unknown pull request: {pr_number}", status_code=404)
        return pull
