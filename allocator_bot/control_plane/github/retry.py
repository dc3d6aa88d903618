"""Bounded exponential backoff for idempotent pull-request operations."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

from allocator_bot.control_plane.github.github_connector import (
    FileChange,
    MergeResult,
    PullRequest,
    PullRequestComment,
    PullRequestConnector,
    RetryableGitHubError,
)

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_s: float = 0.5
    max_delay_s: float = 8.0

    def delay_for(self, attempt: int, retry_after_s: float | None = None) -> float:
        if retry_after_s is not None:
            return min(self.max_delay_s, retry_after_s)
        return min(self.max_delay_s, self.base_delay_s * (2 ** (attempt - 1)))


class RetryingPullRequestConnector:
    """Wraps a connector, retrying idempotent calls on ``RetryableGitHubError``.

    Creation calls (branch, pull request, comment) are not idempotent and pass
    straight through so a failure surfaces to the caller.
    """

    def __init__(
        self,
        inner: PullRequestConnector,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.inner = inner
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    def create_branch(self, owner: str, repo: str, name: str, base: str) -> None:
        self.inner.create_branch(owner, repo, name, base)

    def delete_branch(self, owner: str, repo: str, name: str) -> None:
        self._call("delete_branch", lambda: self.inner.delete_branch(owner, repo, name))

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
        return self.inner.create_pull_request(owner, repo, title, body, head, base, files)

    def find_open_pull_request(self, owner: str, repo: str, head: str) -> PullRequest | None:
        return self._call(
            "find_open_pull_request",
            lambda: self.inner.find_open_pull_request(owner, repo, head),
        )

    def close_pull_request(self, owner: str, repo: str, pr_number: int) -> None:
        self._call(
            "close_pull_request", lambda: self.inner.close_pull_request(owner, repo, pr_number)
        )

    def create_pull_request_comment(
        self, owner: str, repo: str, pr_number: int, body: str
    ) -> PullRequestComment:
        return self.inner.create_pull_request_comment(owner, repo, pr_number, body)

    def update_pull_request_comment(
        self, owner: str, repo: str, pr_number: int, comment_id: int, body: str
    ) -> None:
        self._call(
            "update_pull_request_comment",
            lambda: self.inner.update_pull_request_comment(
                owner, repo, pr_number, comment_id, body
            ),
        )

    def update_pull_request_reviewers(
        self, owner: str, repo: str, pr_number: int, reviewers: list[str]
    ) -> None:
        self._call(
            "update_pull_request_reviewers",
            lambda: self.inner.update_pull_request_reviewers(owner, repo, pr_number, reviewers),
        )

    def merge_pull_request(
        self, owner: str, repo: str, pr_number: int, message: str
    ) -> MergeResult:
        return self._call(
            "merge_pull_request",
            lambda: self.inner.merge_pull_request(owner, repo, pr_number, message),
        )

    def _call(self, operation: str, fn: Callable[[], T]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn()
            except RetryableGitHubError as exc:
                if attempt >= self.policy.max_attempts:
                    logger.error(
                        "adapter_retry_budget_exhausted",
                        operation=operation,
                        attempts=attempt,
                        reason_code=exc.reason_code,
                    )
                    raise
                delay = self.policy.delay_for(attempt, exc.retry_after_s)
                logger.warning(
                    "adapter_retry_scheduled",
                    operation=operation,
                    attempt=attempt,
                    delay_s=delay,
                    reason_code=exc.reason_code,
                )
                self._sleep(delay)
