"""Pydantic contracts for inbound allocator lifecycle events."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

APPLICATION_SUBMITTED = "application.submitted"
KYC_STARTED = "kyc.started"
KYC_COMPLETED = "kyc.completed"
GOVERNANCE_REVIEW_STARTED = "governance.review_started"
GOVERNANCE_REVIEW_DECIDED = "governance.review_decided"
RKH_DECISION_RECORDED = "rkh.decision_recorded"
APPLICATION_FINALIZE = "application.finalize"
DATACAP_ALLOCATED = "datacap.allocated"
PULL_REQUEST_SYNC = "pull_request.sync"


def _new_event_id() -> str:
    return uuid4().hex


class EventV1(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    event_id: str = Field(default_factory=_new_event_id, min_length=1)
    application_id: str = Field(min_length=1)
    occurred_at: str = ""


class ApplicationSubmittedV1(EventV1):
    """First event for an application; carries everything the artifact needs."""

    event_type: Literal["application.submitted"] = APPLICATION_SUBMITTED
    application_number: str = Field(min_length=1)
    name: str = Field(min_length=1)
    organization: str = ""
    country: str = ""
    region: str = ""
    github_handle: str = Field(min_length=1)
    address: str = Field(min_length=1)
    allocator_type: str = "Automatic"
    slack_handle: str = ""
    target_clients: list[str] = Field(default_factory=list)
    required_operators: str = ""
    required_replicas: str = ""
    data_types: list[str] = Field(default_factory=list)
    standardized_allocations: list[str] = Field(default_factory=list)
    twelve_month_request: int = Field(default=10, ge=0)
    allocation_bookkeeping: str = ""


class KycStartedV1(EventV1):
    event_type: Literal["kyc.started"] = KYC_STARTED


class KycCompletedV1(EventV1):
    event_type: Literal["kyc.completed"] = KYC_COMPLETED
    passed: bool
    reason: str = ""


class GovernanceReviewStartedV1(EventV1):
    event_type: Literal["governance.review_started"] = GOVERNANCE_REVIEW_STARTED


class GovernanceReviewDecidedV1(EventV1):
    event_type: Literal["governance.review_decided"] = GOVERNANCE_REVIEW_DECIDED
    approved: bool
    reviewer: str = ""


class RkhDecisionRecordedV1(EventV1):
    event_type: Literal["rkh.decision_recorded"] = RKH_DECISION_RECORDED
    approved: bool
    message_cid: str = ""


class FinalizeApplicationV1(EventV1):
    event_type: Literal["application.finalize"] = APPLICATION_FINALIZE


class DatacapAllocatedV1(EventV1):
    event_type: Literal["datacap.allocated"] = DATACAP_ALLOCATED
    allocation_cid: str = ""


class PullRequestSyncV1(EventV1):
    event_type: Literal["pull_request.sync"] = PULL_REQUEST_SYNC


AllocatorEvent = Annotated[
    Union[
        ApplicationSubmittedV1,
        KycStartedV1,
        KycCompletedV1,
        GovernanceReviewStartedV1,
        GovernanceReviewDecidedV1,
        RkhDecisionRecordedV1,
        FinalizeApplicationV1,
        DatacapAllocatedV1,
        PullRequestSyncV1,
    ],
    Field(discriminator="event_type"),
]

_EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(AllocatorEvent)


def parse_event(payload: dict[str, Any]) -> EventV1:
    """Validate a raw transport payload into its typed event.

    Raises ``pydantic.ValidationError`` for unknown event types or bad fields.
    """

    return _EVENT_ADAPTER.validate_python(payload)
