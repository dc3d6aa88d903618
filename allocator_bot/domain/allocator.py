"""Allocator application aggregate and its phase transition table."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from allocator_bot.domain.errors import InvalidTransitionError


class Phase(str, Enum):
    SUBMITTED = "SUBMITTED"
    KYC = "KYC"
    GOVERNANCE_REVIEW = "GOVERNANCE_REVIEW"
    RKH_APPROVAL = "RKH_APPROVAL"
    DATACAP_ALLOCATION = "DATACAP_ALLOCATION"
    COMPLETE = "COMPLETE"


class PhaseStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Trigger(str, Enum):
    SUBMISSION_BOUND = "submission_bound"
    KYC_STARTED = "kyc_started"
    KYC_PASSED = "kyc_passed"
    KYC_FAILED = "kyc_failed"
    REVIEW_APPROVED = "review_approved"
    REVIEW_REJECTED = "review_rejected"
    RKH_APPROVED = "rkh_approved"
    RKH_REJECTED = "rkh_rejected"
    FINALIZE = "finalize"
    DATACAP_ALLOCATED = "datacap_allocated"


PHASE_ORDER: dict[Phase, int] = {phase: index for index, phase in enumerate(Phase)}

State = tuple[Phase, PhaseStatus]

TRANSITIONS: dict[tuple[Phase, PhaseStatus, Trigger], State] = {
    (Phase.SUBMITTED, PhaseStatus.NOT_STARTED, Trigger.SUBMISSION_BOUND): (
        Phase.KYC,
        PhaseStatus.NOT_STARTED,
    ),
    (Phase.KYC, PhaseStatus.NOT_STARTED, Trigger.KYC_STARTED): (
        Phase.KYC,
        PhaseStatus.IN_PROGRESS,
    ),
    (Phase.KYC, PhaseStatus.NOT_STARTED, Trigger.KYC_PASSED): (
        Phase.GOVERNANCE_REVIEW,
        PhaseStatus.IN_PROGRESS,
    ),
    (Phase.KYC, PhaseStatus.IN_PROGRESS, Trigger.KYC_PASSED): (
        Phase.GOVERNANCE_REVIEW,
        PhaseStatus.IN_PROGRESS,
    ),
    (Phase.KYC, PhaseStatus.NOT_STARTED, Trigger.KYC_FAILED): (Phase.KYC, PhaseStatus.FAILED),
    (Phase.KYC, PhaseStatus.IN_PROGRESS, Trigger.KYC_FAILED): (Phase.KYC, PhaseStatus.FAILED),
    (Phase.GOVERNANCE_REVIEW, PhaseStatus.IN_PROGRESS, Trigger.REVIEW_APPROVED): (
        Phase.RKH_APPROVAL,
        PhaseStatus.IN_PROGRESS,
    ),
    (Phase.GOVERNANCE_REVIEW, PhaseStatus.IN_PROGRESS, Trigger.REVIEW_REJECTED): (
        Phase.GOVERNANCE_REVIEW,
        PhaseStatus.FAILED,
    ),
    (Phase.RKH_APPROVAL, PhaseStatus.IN_PROGRESS, Trigger.RKH_APPROVED): (
        Phase.RKH_APPROVAL,
        PhaseStatus.COMPLETED,
    ),
    (Phase.RKH_APPROVAL, PhaseStatus.IN_PROGRESS, Trigger.RKH_REJECTED): (
        Phase.RKH_APPROVAL,
        PhaseStatus.FAILED,
    ),
    (Phase.RKH_APPROVAL, PhaseStatus.COMPLETED, Trigger.FINALIZE): (
        Phase.DATACAP_ALLOCATION,
        PhaseStatus.IN_PROGRESS,
    ),
    (Phase.DATACAP_ALLOCATION, PhaseStatus.IN_PROGRESS, Trigger.DATACAP_ALLOCATED): (
        Phase.COMPLETE,
        PhaseStatus.COMPLETED,
    ),
}

TRIGGER_SOURCE_PHASE: dict[Trigger, Phase] = {
    trigger: phase for (phase, _status, trigger) in TRANSITIONS
}

TRIGGER_TARGETS: dict[Trigger, frozenset[State]] = {
    trigger: frozenset(
        target for (_phase, _status, key_trigger), target in TRANSITIONS.items()
        if key_trigger == trigger
    )
    for trigger in Trigger
}


def _check_transition_table() -> None:
    for (phase, status, trigger), (next_phase, _next_status) in TRANSITIONS.items():
        if status is PhaseStatus.FAILED:
            raise RuntimeError(f"FAILED must be terminal: {phase.value}/{trigger.value}")
        if PHASE_ORDER[next_phase] < PHASE_ORDER[phase]:
            raise RuntimeError(f"Backward transition: {phase.value} -> {next_phase.value}")
    sources: dict[Trigger, set[Phase]] = {}
    for phase, _status, trigger in TRANSITIONS:
        sources.setdefault(trigger, set()).add(phase)
    for trigger in Trigger:
        if len(sources.get(trigger, set())) != 1:
            raise RuntimeError(f"Trigger {trigger.value} needs exactly one source phase")


_check_transition_table()


@dataclass(frozen=True)
class ArtifactRef:
    """Identity of the pull request and status comment mirroring an application."""

    reference_id: int
    url: str
    thread_id: int


@dataclass(frozen=True)
class ApplicantProfile:
    name: str
    organization: str
    country: str
    region: str
    github_handle: str
    address: str
    application_number: str
    allocator_type: str = "Automatic"
    slack_handle: str = ""


@dataclass(frozen=True)
class RequestedTerms:
    target_clients: list[str] = field(default_factory=list)
    required_operators: str = ""
    required_replicas: str = ""
    data_types: list[str] = field(default_factory=list)
    standardized_allocations: list[str] = field(default_factory=list)
    twelve_month_request: int = 10
    allocation_bookkeeping: str = ""


class AllocatorApplication:
    """Aggregate root for one allocator application.

    Mutations validate (phase, phase_status) against ``TRANSITIONS`` and leave
    the aggregate untouched when rejected. ``version`` is owned by the
    repository and only changes when a save commits.
    """

    def __init__(
        self,
        *,
        application_id: str,
        applicant: ApplicantProfile,
        terms: RequestedTerms,
        phase: Phase = Phase.SUBMITTED,
        phase_status: PhaseStatus = PhaseStatus.NOT_STARTED,
        artifact_ref: ArtifactRef | None = None,
        version: int = 0,
    ) -> None:
        if not application_id.strip():
            raise ValueError("missing_application_id")
        self.id = application_id
        self.applicant = applicant
        self.terms = terms
        self.phase = phase
        self.phase_status = phase_status
        self.version = version
        self._artifact_ref = artifact_ref

    @property
    def artifact_ref(self) -> ArtifactRef | None:
        return self._artifact_ref

    @property
    def state(self) -> State:
        return (self.phase, self.phase_status)

    @property
    def is_terminal(self) -> bool:
        return self.phase is Phase.COMPLETE or self.phase_status is PhaseStatus.FAILED

    def next_state(self, trigger: Trigger) -> State:
        target = TRANSITIONS.get((self.phase, self.phase_status, trigger))
        if target is None:
            raise InvalidTransitionError(
                self.id, trigger.value, self.phase.value, self.phase_status.value
            )
        return target

    def has_moved_past(self, trigger: Trigger) -> bool:
        """True when ``trigger`` is a redelivery the aggregate already reflects."""

        if PHASE_ORDER[self.phase] > PHASE_ORDER[TRIGGER_SOURCE_PHASE[trigger]]:
            return True
        return self.state in TRIGGER_TARGETS[trigger]

    def bind_artifact(self, ref: ArtifactRef) -> None:
        if self._artifact_ref is not None:
            raise InvalidTransitionError(
                self.id,
                Trigger.SUBMISSION_BOUND.value,
                self.phase.value,
                self.phase_status.value,
            )
        self._apply(Trigger.SUBMISSION_BOUND)
        self._artifact_ref = ref

    def start_kyc(self) -> None:
        self._apply(Trigger.KYC_STARTED)

    def record_kyc_result(self, passed: bool) -> None:
        self._apply(Trigger.KYC_PASSED if passed else Trigger.KYC_FAILED)

    def record_governance_decision(self, approved: bool) -> None:
        self._apply(Trigger.REVIEW_APPROVED if approved else Trigger.REVIEW_REJECTED)

    def record_rkh_decision(self, approved: bool) -> None:
        self._apply(Trigger.RKH_APPROVED if approved else Trigger.RKH_REJECTED)

    def finalize(self) -> None:
        self._apply(Trigger.FINALIZE)

    def record_datacap_allocation(self) -> None:
        self._apply(Trigger.DATACAP_ALLOCATED)

    def _apply(self, trigger: Trigger) -> None:
        self.phase, self.phase_status = self.next_state(trigger)

    def to_record(self) -> dict[str, Any]:
        ref = self._artifact_ref
        return {
            "id": self.id,
            "version": self.version,
            "phase": self.phase.value,
            "phase_status": self.phase_status.value,
            "applicant": asdict(self.applicant),
            "terms": asdict(self.terms),
            "artifact_ref": asdict(ref) if ref is not None else None,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "AllocatorApplication":
        ref = record.get("artifact_ref")
        return cls(
            application_id=str(record["id"]),
            applicant=ApplicantProfile(**record["applicant"]),
            terms=RequestedTerms(**record["terms"]),
            phase=Phase(record["phase"]),
            phase_status=PhaseStatus(record["phase_status"]),
            artifact_ref=ArtifactRef(**ref) if ref else None,
            version=int(record.get("version", 0)),
        )

    def __repr__(self) -> str:
        return (
            f"AllocatorApplication(id={self.id!r}, phase={self.phase.value}, "
            f"phase_status={self.phase_status.value}, version={self.version})"
        )
