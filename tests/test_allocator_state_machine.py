from __future__ import annotations

from collections.abc import Callable
from itertools import product

import pytest

from allocator_bot.control_plane.db.db import InMemoryAllocatorRepository
from allocator_bot.domain.allocator import (
    TRANSITIONS,
    AllocatorApplication,
    ApplicantProfile,
    ArtifactRef,
    Phase,
    PhaseStatus,
    RequestedTerms,
    Trigger,
)
from allocator_bot.domain.errors import InvalidTransitionError


def _application(
    phase: Phase = Phase.SUBMITTED,
    status: PhaseStatus = PhaseStatus.NOT_STARTED,
    ref: ArtifactRef | None = None,
) -> AllocatorApplication:
    return AllocatorApplication(
        application_id="app-1",
        applicant=ApplicantProfile(
            name="Jane Allocator",
            organization="Acme Storage",
            country="PT",
            region="Europe",
            github_handle="jane",
            address="f1abc",
            application_number="1042",
        ),
        terms=RequestedTerms(target_clients=["Enterprise"], required_replicas="3"),
        phase=phase,
        phase_status=status,
        artifact_ref=ref,
    )


BOUND_REF = ArtifactRef(reference_id=1, url="https://github.com/o/r/pull/1", thread_id=1000)

MUTATORS: dict[Trigger, Callable[[AllocatorApplication], None]] = {
    Trigger.SUBMISSION_BOUND: lambda application: application.bind_artifact(BOUND_REF),
    Trigger.KYC_STARTED: lambda application: application.start_kyc(),
    Trigger.KYC_PASSED: lambda application: application.record_kyc_result(passed=True),
    Trigger.KYC_FAILED: lambda application: application.record_kyc_result(passed=False),
    Trigger.REVIEW_APPROVED: lambda application: application.record_governance_decision(
        approved=True
    ),
    Trigger.REVIEW_REJECTED: lambda application: application.record_governance_decision(
        approved=False
    ),
    Trigger.RKH_APPROVED: lambda application: application.record_rkh_decision(approved=True),
    Trigger.RKH_REJECTED: lambda application: application.record_rkh_decision(approved=False),
    Trigger.FINALIZE: lambda application: application.finalize(),
    Trigger.DATACAP_ALLOCATED: lambda application: application.record_datacap_allocation(),
}


def _stored(
    repository: InMemoryAllocatorRepository, phase: Phase, status: PhaseStatus
) -> AllocatorApplication:
    ref = None if phase is Phase.SUBMITTED else BOUND_REF
    repository.save(_application(phase, status, ref), expected_version=0)
    return repository.require("app-1")


def test_every_trigger_has_a_public_mutator() -> None:
    assert set(MUTATORS) == set(Trigger)


@pytest.mark.parametrize(
    ("phase", "status", "trigger"),
    list(TRANSITIONS),
    ids=[f"{p.value}-{s.value}-{t.value}" for p, s, t in TRANSITIONS],
)
def test_each_transition_commits_exactly_one_version(
    phase: Phase, status: PhaseStatus, trigger: Trigger
) -> None:
    repository = InMemoryAllocatorRepository()
    application = _stored(repository, phase, status)
    before = application.version

    MUTATORS[trigger](application)
    assert application.version == before
    repository.save(application, expected_version=before)

    stored = repository.require("app-1")
    assert application.version == before + 1
    assert stored.version == before + 1
    assert stored.state == TRANSITIONS[(phase, status, trigger)]


def test_rejected_mutations_leave_state_and_version_untouched() -> None:
    for phase, status, trigger in product(Phase, PhaseStatus, Trigger):
        if (phase, status, trigger) in TRANSITIONS:
            continue
        repository = InMemoryAllocatorRepository()
        application = _stored(repository, phase, status)
        before = application.version

        with pytest.raises(InvalidTransitionError):
            MUTATORS[trigger](application)

        assert application.state == (phase, status)
        assert application.version == before
        assert repository.require("app-1").version == before


@pytest.mark.parametrize(
    ("trigger", "start", "expected"),
    [
        (
            Trigger.KYC_STARTED,
            (Phase.KYC, PhaseStatus.NOT_STARTED),
            (Phase.KYC, PhaseStatus.IN_PROGRESS),
        ),
        (
            Trigger.KYC_PASSED,
            (Phase.KYC, PhaseStatus.NOT_STARTED),
            (Phase.GOVERNANCE_REVIEW, PhaseStatus.IN_PROGRESS),
        ),
        (
            Trigger.KYC_PASSED,
            (Phase.KYC, PhaseStatus.IN_PROGRESS),
            (Phase.GOVERNANCE_REVIEW, PhaseStatus.IN_PROGRESS),
        ),
        (
            Trigger.KYC_FAILED,
            (Phase.KYC, PhaseStatus.IN_PROGRESS),
            (Phase.KYC, PhaseStatus.FAILED),
        ),
        (
            Trigger.REVIEW_APPROVED,
            (Phase.GOVERNANCE_REVIEW, PhaseStatus.IN_PROGRESS),
            (Phase.RKH_APPROVAL, PhaseStatus.IN_PROGRESS),
        ),
        (
            Trigger.REVIEW_REJECTED,
            (Phase.GOVERNANCE_REVIEW, PhaseStatus.IN_PROGRESS),
            (Phase.GOVERNANCE_REVIEW, PhaseStatus.FAILED),
        ),
        (
            Trigger.RKH_APPROVED,
            (Phase.RKH_APPROVAL, PhaseStatus.IN_PROGRESS),
            (Phase.RKH_APPROVAL, PhaseStatus.COMPLETED),
        ),
        (
            Trigger.RKH_REJECTED,
            (Phase.RKH_APPROVAL, PhaseStatus.IN_PROGRESS),
            (Phase.RKH_APPROVAL, PhaseStatus.FAILED),
        ),
        (
            Trigger.FINALIZE,
            (Phase.RKH_APPROVAL, PhaseStatus.COMPLETED),
            (Phase.DATACAP_ALLOCATION, PhaseStatus.IN_PROGRESS),
        ),
        (
            Trigger.DATACAP_ALLOCATED,
            (Phase.DATACAP_ALLOCATION, PhaseStatus.IN_PROGRESS),
            (Phase.COMPLETE, PhaseStatus.COMPLETED),
        ),
    ],
)
def test_allowed_transitions_move_to_expected_state(
    trigger: Trigger,
    start: tuple[Phase, PhaseStatus],
    expected: tuple[Phase, PhaseStatus],
) -> None:
    application = _application(*start)
    assert application.next_state(trigger) == expected
    MUTATORS[trigger](application)
    assert application.state == expected


def test_every_unlisted_combination_is_rejected_without_mutation() -> None:
    for phase, status, trigger in product(Phase, PhaseStatus, Trigger):
        if (phase, status, trigger) in TRANSITIONS:
            continue
        application = _application(phase, status)
        with pytest.raises(InvalidTransitionError):
            application.next_state(trigger)
        assert application.state == (phase, status)


def test_failed_status_is_terminal() -> None:
    for phase, trigger in product(Phase, Trigger):
        assert (phase, PhaseStatus.FAILED, trigger) not in TRANSITIONS
    assert _application(Phase.KYC, PhaseStatus.FAILED).is_terminal
    assert _application(Phase.COMPLETE, PhaseStatus.COMPLETED).is_terminal
    assert not _application(Phase.KYC, PhaseStatus.IN_PROGRESS).is_terminal


def test_rejected_mutation_leaves_application_untouched() -> None:
    application = _application(Phase.KYC, PhaseStatus.FAILED)
    with pytest.raises(InvalidTransitionError) as excinfo:
        application.record_kyc_result(passed=True)
    assert excinfo.value.reason_code == "invalid_transition"
    assert excinfo.value.trigger == "kyc_passed"
    assert application.state == (Phase.KYC, PhaseStatus.FAILED)
    assert application.version == 0


def test_bind_artifact_moves_to_kyc_and_cannot_be_rebound() -> None:
    application = _application()
    ref = ArtifactRef(reference_id=7, url="https://github.com/o/r/pull/7", thread_id=1000)

    application.bind_artifact(ref)

    assert application.state == (Phase.KYC, PhaseStatus.NOT_STARTED)
    assert application.artifact_ref == ref
    with pytest.raises(InvalidTransitionError):
        application.bind_artifact(ArtifactRef(reference_id=8, url="", thread_id=1001))
    assert application.artifact_ref == ref


def test_artifact_ref_has_no_setter() -> None:
    application = _application()
    ref = ArtifactRef(reference_id=1, url="", thread_id=1)
    with pytest.raises(AttributeError):
        application.artifact_ref = ref  # type: ignore[misc]


@pytest.mark.parametrize(
    ("state", "trigger", "expected"),
    [
        ((Phase.GOVERNANCE_REVIEW, PhaseStatus.IN_PROGRESS), Trigger.KYC_PASSED, True),
        ((Phase.GOVERNANCE_REVIEW, PhaseStatus.FAILED), Trigger.KYC_PASSED, True),
        ((Phase.KYC, PhaseStatus.IN_PROGRESS), Trigger.KYC_STARTED, True),
        ((Phase.KYC, PhaseStatus.IN_PROGRESS), Trigger.KYC_PASSED, False),
        ((Phase.KYC, PhaseStatus.FAILED), Trigger.KYC_PASSED, False),
        ((Phase.KYC, PhaseStatus.FAILED), Trigger.KYC_FAILED, True),
        ((Phase.RKH_APPROVAL, PhaseStatus.COMPLETED), Trigger.RKH_APPROVED, True),
        ((Phase.RKH_APPROVAL, PhaseStatus.COMPLETED), Trigger.FINALIZE, False),
        ((Phase.DATACAP_ALLOCATION, PhaseStatus.IN_PROGRESS), Trigger.FINALIZE, True),
        ((Phase.SUBMITTED, PhaseStatus.NOT_STARTED), Trigger.SUBMISSION_BOUND, False),
        ((Phase.KYC, PhaseStatus.NOT_STARTED), Trigger.SUBMISSION_BOUND, True),
    ],
)
def test_has_moved_past_detects_redelivered_triggers(
    state: tuple[Phase, PhaseStatus], trigger: Trigger, expected: bool
) -> None:
    assert _application(*state).has_moved_past(trigger) is expected


def test_record_round_trip_preserves_fields() -> None:
    ref = ArtifactRef(reference_id=3, url="https://github.com/o/r/pull/3", thread_id=1002)
    application = _application(Phase.RKH_APPROVAL, PhaseStatus.IN_PROGRESS, ref)
    application.version = 4

    restored = AllocatorApplication.from_record(application.to_record())

    assert restored.state == application.state
    assert restored.artifact_ref == ref
    assert restored.version == 4
    assert restored.applicant == application.applicant
    assert restored.terms == application.terms


def test_blank_application_id_is_rejected() -> None:
    with pytest.raises(ValueError, match="missing_application_id"):
        AllocatorApplication(
            application_id=" ",
            applicant=_application().applicant,
            terms=RequestedTerms(),
        )
