"""Keeps an application's pull request and status comment in line with its state."""

from __future__ import annotations

from collections.abc import Callable, Sequence

import structlog

from allocator_bot.control_plane.github.application_record import (
    application_file,
    branch_name,
    pull_request_title,
    render_pull_request_body,
)
from allocator_bot.control_plane.github.github_connector import (
    BranchAlreadyExistsError,
    PullRequest,
    PullRequestConnector,
)
from allocator_bot.control_plane.status_messages import render_status_comment
from allocator_bot.domain.allocator import (
    AllocatorApplication,
    ArtifactRef,
    Phase,
    PhaseStatus,
)
from allocator_bot.shared.settings import GitHubTarget

logger = structlog.get_logger()

MERGE_MESSAGE = "Automatically merged after RKH approval"
MERGED_PHASES = {Phase.DATACAP_ALLOCATION, Phase.COMPLETE}


class PullRequestSynchronizer:
    """Derives every pull-request side effect from the aggregate's current state."""

    def __init__(
        self,
        *,
        connector: PullRequestConnector,
        target: GitHubTarget,
        governance_reviewers: Sequence[str] = (),
    ) -> None:
        self.connector = connector
        self.target = target
        self.governance_reviewers = list(governance_reviewers)

    def open_pull_request(
        self,
        application: AllocatorApplication,
        phase: Phase,
        status: PhaseStatus,
        *,
        bound_elsewhere: Callable[[], bool] = lambda: False,
    ) -> ArtifactRef:
        """Create branch, pull request, and status comment rendered for ``phase/status``.

        An existing branch that already carries an open pull request is reused;
        otherwise it is deleted and recreated. ``bound_elsewhere`` is checked
        first: once another delivery has bound the application, the branch is
        left alone and ``BranchAlreadyExistsError`` propagates.
        """

        log = logger.bind(application_id=application.id)
        owner, repo = self.target.owner, self.target.repo
        branch = branch_name(application, self.target.branch_prefix)

        pull = self._prepare_branch(branch, bound_elsewhere, log)
        if pull is None:
            pull = self.connector.create_pull_request(
                owner,
                repo,
                pull_request_title(application),
                render_pull_request_body(application),
                branch,
                self.target.base_branch,
                [application_file(application)],
            )
            log.info("pull_request_created", pr_number=pull.number, url=pull.url)

        comment = self.connector.create_pull_request_comment(
            owner, repo, pull.number, render_status_comment(phase, status)
        )
        log.info("status_comment_created", pr_number=pull.number, comment_id=comment.id)
        return ArtifactRef(reference_id=pull.number, url=pull.url, thread_id=comment.id)

    def close_pull_request(self, application: AllocatorApplication, ref: ArtifactRef) -> None:
        self.connector.close_pull_request(self.target.owner, self.target.repo, ref.reference_id)
        logger.info(
            "pull_request_closed", application_id=application.id, pr_number=ref.reference_id
        )

    def sync(self, application: AllocatorApplication) -> None:
        ref = application.artifact_ref
        log = logger.bind(application_id=application.id)
        if ref is None:
            log.warning("pull_request_sync_skipped", reason="artifact_not_bound")
            return
        owner, repo = self.target.owner, self.target.repo

        self.connector.update_pull_request_comment(
            owner,
            repo,
            ref.reference_id,
            ref.thread_id,
            render_status_comment(application.phase, application.phase_status),
        )
        log.info(
            "status_comment_updated",
            pr_number=ref.reference_id,
            phase=application.phase.value,
            phase_status=application.phase_status.value,
        )

        if (
            application.state == (Phase.GOVERNANCE_REVIEW, PhaseStatus.IN_PROGRESS)
            and self.governance_reviewers
        ):
            self.connector.update_pull_request_reviewers(
                owner, repo, ref.reference_id, self.governance_reviewers
            )
            log.info("reviewers_requested", pr_number=ref.reference_id)

        if application.phase in MERGED_PHASES:
            result = self.connector.merge_pull_request(
                owner, repo, ref.reference_id, MERGE_MESSAGE
            )
            log.info(
                "pull_request_merge_checked",
                pr_number=ref.reference_id,
                merged=result.merged,
                already_merged=result.already_merged,
            )

    def _prepare_branch(
        self,
        branch: str,
        bound_elsewhere: Callable[[], bool],
        log: structlog.stdlib.BoundLogger,
    ) -> PullRequest | None:
        owner, repo, base = self.target.owner, self.target.repo, self.target.base_branch
        try:
            self.connector.create_branch(owner, repo, branch, base)
        except BranchAlreadyExistsError:
            if bound_elsewhere():
                log.info("branch_kept_for_bound_application", branch=branch)
                raise
            # Deleting the branch would close a pull request another delivery opened.
            existing = self.connector.find_open_pull_request(owner, repo, branch)
            if existing is not None:
                log.info("pull_request_reused", branch=branch, pr_number=existing.number)
                return existing
            log.info("branch_recreated", branch=branch)
            self.connector.delete_branch(owner, repo, branch)
            self.connector.create_branch(owner, repo, branch, base)
        else:
            log.info("branch_created", branch=branch)
        return None
