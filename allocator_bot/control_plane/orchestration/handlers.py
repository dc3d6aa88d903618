"""Command handlers: one per lifecycle trigger.

Each handler runs the same read-apply-write cycle:

1. load the aggregate (``NotFoundError`` if absent),
2. if the aggregate already reflects the trigger, resync the pull request and
   stop (redelivered or out-of-order event),
3. apply the transition (``InvalidTransitionError`` leaves state untouched),
4. save with the version read in step 1, reloading on ``ConcurrencyConflictError``,
5. synchronize the pull request from the committed state.

A synchronization failure after step 4 propagates without undoing the commit.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

import structlog

from allocator_bot.control_plane.db.db import AllocatorRepository
from allocator_bot.control_plane.github.github_connector import BranchAlreadyExistsError
from allocator_bot.control_plane.models.events import (
    APPLICATION_FINALIZE,
    APPLICATION_SUBMITTED,
    DATACAP_ALLOCATED,
    GOVERNANCE_REVIEW_DECIDED,
    GOVERNANCE_REVIEW_STARTED,
    KYC_COMPLETED,
    KYC_STARTED,
    PULL_REQUEST_SYNC,
    RKH_DECISION_RECORDED,
    ApplicationSubmittedV1,
    EventV1,
    FinalizeApplicationV1,
)
from allocator_bot.control_plane.orchestration.pull_request_sync import PullRequestSynchronizer
from allocator_bot.domain.allocator import (
    TRIGGER_TARGETS,
    AllocatorApplication,
    ApplicantProfile,
    ArtifactRef,
    Phase,
    PhaseStatus,
    RequestedTerms,
    Trigger,
)
from allocator_bot.domain.errors import (
    ConcurrencyConflictError,
    ExternalAdapterError,
    NotFoundError,
)

logger = structlog.get_logger()

OUTCOME_APPLIED = "applied"
OUTCOME_SUPERSEDED = "superseded"
OUTCOME_SYNCED = "synced"


@dataclass(frozen=True)
class HandlerResult:
    application_id: str
    outcome: str
    phase: str
    phase_status: str
    version: int
    follow_ups: tuple[EventV1, ...] = ()


def _result(
    application: AllocatorApplication, outcome: str, follow_ups: tuple[EventV1, ...] = ()
) -> HandlerResult:
    return HandlerResult(
        application_id=application.id,
        outcome=outcome,
        phase=application.phase.value,
        phase_status=application.phase_status.value,
        version=application.version,
        follow_ups=follow_ups,
    )


class EventHandler:
    event_types: ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        *,
        repository: AllocatorRepository,
        synchronizer: PullRequestSynchronizer,
        conflict_retries: int = 3,
    ) -> None:
        self.repository = repository
        self.synchronizer = synchronizer
        self.conflict_retries = max(0, conflict_retries)

    def handle(self, event: Any) -> HandlerResult:
        raise NotImplementedError

    def _sync_committed(self, application: AllocatorApplication, log: Any) -> None:
        try:
            self.synchronizer.sync(application)
        except ExternalAdapterError as exc:
            log.error(
                "artifact_sync_failed",
                committed_version=application.version,
                phase=application.phase.value,
                phase_status=application.phase_status.value,
                reason_code=exc.reason_code,
                error=str(exc),
            )
            raise

    def _resync(
        self, application: AllocatorApplication, log: Any, trigger: Trigger | None = None
    ) -> None:
        """Resync for a delivery that changes nothing.

        A FAILED application is resynced only by a redelivery of the event that
        failed it, which finishes that transition's own sync.
        """
        if application.phase_status is PhaseStatus.FAILED and (
            trigger is None or application.state not in TRIGGER_TARGETS[trigger]
        ):
            log.info(
                "pull_request_sync_skipped",
                reason="application_failed",
                phase=application.phase.value,
                version=application.version,
            )
            return
        self._sync_committed(application, log)


class TransitionHandler(EventHandler):
    """Template for handlers that move an existing aggregate through one trigger."""

    def trigger_for(self, event: Any) -> Trigger:
        raise NotImplementedError

    def apply(self, application: AllocatorApplication, event: Any) -> None:
        raise NotImplementedError

    def follow_ups(self, application: AllocatorApplication, event: Any) -> tuple[EventV1, ...]:
        return ()

    def handle(self, event: Any) -> HandlerResult:
        trigger = self.trigger_for(event)
        log = logger.bind(
            application_id=event.application_id,
            event_type=event.event_type,
            event_id=event.event_id,
            trigger=trigger.value,
        )
        attempts = self.conflict_retries + 1
        expected_version = 0
        for attempt in range(1, attempts + 1):
            application = self.repository.require(event.application_id)
            if application.has_moved_past(trigger):
                log.info(
                    "transition_superseded",
                    phase=application.phase.value,
                    phase_status=application.phase_status.value,
                    version=application.version,
                )
                self._resync(application, log, trigger)
                return _result(
                    application, OUTCOME_SUPERSEDED, self.follow_ups(application, event)
                )

            expected_version = application.version
            self.apply(application, event)
            try:
                self.repository.save(application, expected_version=expected_version)
            except ConcurrencyConflictError as exc:
                log.warning(
                    "save_conflict",
                    attempt=attempt,
                    expected_version=exc.expected_version,
                    stored_version=exc.actual_version,
                )
                continue

            log.info(
                "transition_applied",
                phase=application.phase.value,
                phase_status=application.phase_status.value,
                version=application.version,
            )
            self._sync_committed(application, log)
            return _result(application, OUTCOME_APPLIED, self.follow_ups(application, event))

        log.error("conflict_retry_budget_exhausted", attempts=attempts)
        raise ConcurrencyConflictError(event.application_id, expected_version, None)


class SubmitApplicationHandler(EventHandler):
    """Creates the aggregate, opens its pull request, and binds the reference.

    The pull request must exist before the binding transition can be saved, so
    this is the one handler whose external side effect precedes the commit.
    """

    event_types = (APPLICATION_SUBMITTED,)

    def handle(self, event: ApplicationSubmittedV1) -> HandlerResult:
        log = logger.bind(
            application_id=event.application_id,
            event_type=event.event_type,
            event_id=event.event_id,
            trigger=Trigger.SUBMISSION_BOUND.value,
        )
        attempts = self.conflict_retries + 1
        for attempt in range(1, attempts + 1):
            application = self.repository.get_by_id(event.application_id)
            if application is not None and application.has_moved_past(Trigger.SUBMISSION_BOUND):
                log.info("submission_superseded", version=application.version)
                self._resync(application, log, Trigger.SUBMISSION_BOUND)
                return _result(application, OUTCOME_SUPERSEDED)
            if application is None:
                application = _new_application(event)

            phase, status = application.next_state(Trigger.SUBMISSION_BOUND)
            try:
                ref = self.synchronizer.open_pull_request(
                    application,
                    phase,
                    status,
                    bound_elsewhere=lambda: self._is_bound(event.application_id),
                )
            except BranchAlreadyExistsError:
                log.info("submission_bound_elsewhere", attempt=attempt)
                continue
            expected_version = application.version
            application.bind_artifact(ref)
            try:
                self.repository.save(application, expected_version=expected_version)
            except ConcurrencyConflictError:
                self._discard_losing_pull_request(application, ref, log, attempt)
                continue

            log.info(
                "application_submitted",
                pr_number=ref.reference_id,
                phase=application.phase.value,
                phase_status=application.phase_status.value,
                version=application.version,
            )
            return _result(application, OUTCOME_APPLIED)

        log.error("conflict_retry_budget_exhausted", attempts=attempts)
        raise ConcurrencyConflictError(event.application_id, 0, None)

    def _is_bound(self, application_id: str) -> bool:
        stored = self.repository.get_by_id(application_id)
        return stored is not None and stored.has_moved_past(Trigger.SUBMISSION_BOUND)

    def _discard_losing_pull_request(
        self, application: AllocatorApplication, ref: ArtifactRef, log: Any, attempt: int
    ) -> None:
        """Close the pull request opened by a delivery whose insert lost the race.

        When both deliveries ended up on the same pull request it stays open.
        """
        stored = self.repository.get_by_id(application.id)
        winner = stored.artifact_ref if stored is not None else None
        if winner is not None and winner.reference_id == ref.reference_id:
            log.warning(
                "submission_conflict_shared_pull_request",
                attempt=attempt,
                pr_number=ref.reference_id,
            )
            return
        log.warning(
            "submission_conflict_closing_pull_request",
            attempt=attempt,
            pr_number=ref.reference_id,
            bound_pr_number=winner.reference_id if winner is not None else None,
        )
        self.synchronizer.close_pull_request(application, ref)


class StartKycHandler(TransitionHandler):
    event_types = (KYC_STARTED,)

    def trigger_for(self, event: Any) -> Trigger:
        return Trigger.KYC_STARTED

    def apply(self, application: AllocatorApplication, event: Any) -> None:
        application.start_kyc()


class KycResultHandler(TransitionHandler):
    event_types = (KYC_COMPLETED,)

    def trigger_for(self, event: Any) -> Trigger:
        return Trigger.KYC_PASSED if event.passed else Trigger.KYC_FAILED

    def apply(self, application: AllocatorApplication, event: Any) -> None:
        application.record_kyc_result(passed=event.passed)


class GovernanceDecisionHandler(TransitionHandler):
    event_types = (GOVERNANCE_REVIEW_DECIDED,)

    def trigger_for(self, event: Any) -> Trigger:
        return Trigger.REVIEW_APPROVED if event.approved else Trigger.REVIEW_REJECTED

    def apply(self, application: AllocatorApplication, event: Any) -> None:
        application.record_governance_decision(approved=event.approved)


class RkhDecisionHandler(TransitionHandler):
    event_types = (RKH_DECISION_RECORDED,)

    def trigger_for(self, event: Any) -> Trigger:
        return Trigger.RKH_APPROVED if event.approved else Trigger.RKH_REJECTED

    def apply(self, application: AllocatorApplication, event: Any) -> None:
        application.record_rkh_decision(approved=event.approved)

    def follow_ups(self, application: AllocatorApplication, event: Any) -> tuple[EventV1, ...]:
        # Derived from state so a redelivered approval can still finalize.
        if application.state != (Phase.RKH_APPROVAL, PhaseStatus.COMPLETED):
            return ()
        return (FinalizeApplicationV1(application_id=application.id),)


class FinalizeApplicationHandler(TransitionHandler):
    """Moves an approved application to datacap allocation; the sync merges the PR."""

    event_types = (APPLICATION_FINALIZE,)

    def trigger_for(self, event: Any) -> Trigger:
        return Trigger.FINALIZE

    def apply(self, application: AllocatorApplication, event: Any) -> None:
        application.finalize()


class DatacapAllocatedHandler(TransitionHandler):
    event_types = (DATACAP_ALLOCATED,)

    def trigger_for(self, event: Any) -> Trigger:
        return Trigger.DATACAP_ALLOCATED

    def apply(self, application: AllocatorApplication, event: Any) -> None:
        application.record_datacap_allocation()


class SyncPullRequestHandler(EventHandler):
    """Re-derives the pull request from stored state without any transition."""

    event_types = (PULL_REQUEST_SYNC, GOVERNANCE_REVIEW_STARTED)

    def handle(self, event: Any) -> HandlerResult:
        log = logger.bind(
            application_id=event.application_id,
            event_type=event.event_type,
            event_id=event.event_id,
        )
        application = self.repository.get_by_id(event.application_id)
        if application is None:
            raise NotFoundError(event.application_id)
        self._resync(application, log)
        log.info(
            "pull_request_synced",
            phase=application.phase.value,
            phase_status=application.phase_status.value,
            version=application.version,
        )
        return _result(application, OUTCOME_SYNCED)


def _new_application(event: ApplicationSubmittedV1) -> AllocatorApplication:
    return AllocatorApplication(
        application_id=event.application_id,
        applicant=ApplicantProfile(
            name=event.name,
            organization=event.organization,
            country=event.country,
            region=event.region,
            github_handle=event.github_handle,
            address=event.address,
            application_number=event.application_number,
            allocator_type=event.allocator_type,
            slack_handle=event.slack_handle,
        ),
        terms=RequestedTerms(
            target_clients=list(event.target_clients),
            required_operators=event.required_operators,
            required_replicas=event.required_replicas,
            data_types=list(event.data_types),
            standardized_allocations=list(event.standardized_allocations),
            twelve_month_request=event.twelve_month_request,
            allocation_bookkeeping=event.allocation_bookkeeping,
        ),
    )


def default_handlers(
    *,
    repository: AllocatorRepository,
    synchronizer: PullRequestSynchronizer,
    conflict_retries: int = 3,
) -> list[EventHandler]:
    handler_types: list[type[EventHandler]] = [
        SubmitApplicationHandler,
        StartKycHandler,
        KycResultHandler,
        GovernanceDecisionHandler,
        RkhDecisionHandler,
        FinalizeApplicationHandler,
        DatacapAllocatedHandler,
        SyncPullRequestHandler,
    ]
    return [
        handler_type(
            repository=repository,
            synchronizer=synchronizer,
            conflict_retries=conflict_retries,
        )
        for handler_type in handler_types
    ]
