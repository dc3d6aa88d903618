"""Pull-request connector contract, adapter errors, and factory helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Protocol

import structlog

from allocator_bot.control_plane.github.github_auth import GitHubAuth, load_github_auth_from_env
from allocator_bot.domain.errors import ExternalAdapterError

logger = structlog.get_logger()


@dataclass(frozen=True)
class FileChange:
    path: str
    content: str


@dataclass(frozen=True)
class PullRequest:
    number: int
    url: str


@dataclass(frozen=True)
class PullRequestComment:
    id: int


@dataclass(frozen=True)
class MergeResult:
    merged: bool
    already_merged: bool = False
    sha: str = ""


class RetryableGitHubError(ExternalAdapterError):
    def __init__(self, message: str, reason_code: str, retry_after_s: float | None = None) -> None:
        super().__init__(message, reason_code=reason_code)
        self.retry_after_s = retry_after_s


class GitHubAPIError(ExternalAdapterError):
    """Non-retryable GitHub response."""

    def __init__(self, message: str, status_code: int, reason_code: str = "") -> None:
        super().__init__(message, reason_code=reason_code or f"github_{status_code}")
        self.status_code = status_code


class BranchAlreadyExistsError(ExternalAdapterError):
    def __init__(self, branch: str) -> None:
        super().__init__(f"Reference already exists: {branch}", reason_code="branch_exists")
        self.branch = branch


class PullRequestConnector(Protocol):
    """Collaboration operations consumed by the allocator lifecycle."""

    def create_branch(self, owner: str, repo: str, name: str, base: str) -> None: ...

    def delete_branch(self, owner: str, repo: str, name: str) -> None: ...

    def create_pull_request(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        head: str,
        base: str,
        files: list[FileChange],
    ) -> PullRequest: ...

    def find_open_pull_request(self, owner: str, repo: str, head: str) -> PullRequest | None: ...

    def close_pull_request(self, owner: str, repo: str, pr_number: int) -> None: ...

    def create_pull_request_comment(
        self, owner: str, repo: str, pr_number: int, body: str
    ) -> PullRequestComment: ...

    def update_pull_request_comment(
        self, owner: str, repo: str, pr_number: int, comment_id: int, body: str
    ) -> None: ...

    def update_pull_request_reviewers(
        self, owner: str, repo: str, pr_number: int, reviewers: list[str]
    ) -> None: ...

    def merge_pull_request(
        self, owner: str, repo: str, pr_number: int, message: str
    ) -> MergeResult: ...


def build_connector_from_env(
    env: dict[str, str] | None = None,
    *,
    timeout_s: float = 15.0,
) -> PullRequestConnector:
    env_map = os.environ if env is None else env
    connector_type = (env_map.get("ALLOCATOR_BOT_GITHUB_CONNECTOR") or "in_memory").strip().lower()

    if connector_type == "api":
        from allocator_bot.control_plane.github.github_connector_api import GitHubAPIConnector

        auth = load_github_auth_from_env(env_map)
        if not auth.can_write:
            logger.warning("github_write_token_missing", connector="api")
        return GitHubAPIConnector(auth=auth, timeout_s=timeout_s)

    from allocator_bot.control_plane.github.github_connector_inmemory import (
        InMemoryGitHubConnector,
    )

    return InMemoryGitHubConnector()


__all__ = [
    "BranchAlreadyExistsError",
    "FileChange",
    "GitHubAPIError",
    "GitHubAuth",
    "MergeResult",
    "PullRequest",
    "PullRequestComment",
    "PullRequestConnector",
    "RetryableGitHubError",
    "build_connector_from_env",
]
