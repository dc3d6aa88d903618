from __future__ import annotations

import threading
from typing import Any

import pytest
import structlog
from conftest import Harness, build_harness, submission

from allocator_bot.control_plane.github.github_connector import PullRequest, RetryableGitHubError
from allocator_bot.control_plane.github.github_connector_inmemory import InMemoryGitHubConnector
from allocator_bot.control_plane.models.events import (
    KycCompletedV1,
    PullRequestSyncV1,
    RkhDecisionRecordedV1,
)
from allocator_bot.control_plane.orchestration.dispatcher import (
    STATUS_ACKED,
    STATUS_FAILED,
    DispatcherClosedError,
    EventDispatcher,
    build_dispatch_table,
)
from allocator_bot.control_plane.orchestration.handlers import EventHandler, HandlerResult
from allocator_bot.domain.allocator import Phase


class CrashingHandler(EventHandler):
    event_types = ("pull_request.sync",)

    def __init__(self) -> None:
        pass

    def handle(self, event: Any) -> HandlerResult:
        raise KeyError("unexpected")


def test_dispatch_table_is_read_only(harness: Harness) -> None:
    with pytest.raises(TypeError):
        harness.dispatcher.table["kyc.completed"] = None  # type: ignore[index]
    assert set(harness.dispatcher.table) == {
        "application.finalize",
        "application.submitted",
        "datacap.allocated",
        "governance.review_decided",
        "governance.review_started",
        "kyc.completed",
        "kyc.started",
        "pull_request.sync",
        "rkh.decision_recorded",
    }


def test_duplicate_bindings_are_rejected(harness: Harness) -> None:
    handlers = list(harness.dispatcher.table.values())
    with pytest.raises(ValueError, match="Duplicate handler binding"):
        build_dispatch_table([*handlers, handlers[0]])


def test_unknown_event_type_is_acked() -> None:
    dispatcher = EventDispatcher(build_dispatch_table([]), max_workers=1)
    outcome = dispatcher.dispatch_payload({"event_type": "app.renamed", "application_id": "a"})
    dispatcher.shutdown()

    assert outcome.status == STATUS_ACKED
    assert outcome.reason_code == "unhandled_event_type"


def test_invalid_payload_is_acked(harness: Harness) -> None:
    outcome = harness.dispatcher.dispatch_payload(
        {"event_type": "kyc.completed", "application_id": "app-1", "passed": "maybe"}
    )
    assert outcome.status == STATUS_ACKED
    assert outcome.reason_code == "invalid_payload"
    assert harness.connector.calls == []


def test_not_found_is_acked(harness: Harness) -> None:
    outcome = harness.dispatcher.dispatch(KycCompletedV1(application_id="ghost", passed=True))
    assert outcome.status == STATUS_ACKED
    assert outcome.reason_code == "not_found"


def test_invalid_transition_is_acked(harness: Harness) -> None:
    harness.dispatcher.dispatch(submission())
    outcome = harness.dispatcher.dispatch(
        RkhDecisionRecordedV1(application_id="app-1", approved=True)
    )
    assert outcome.status == STATUS_ACKED
    assert outcome.reason_code == "invalid_transition"
    assert harness.repository.require("app-1").phase is Phase.KYC


def test_adapter_failure_is_failed_with_reason(harness: Harness) -> None:
    harness.dispatcher.dispatch(submission())
    harness.connector.inject_failure(
        "update_pull_request_comment",
        RetryableGitHubError("rate limited", reason_code="github_rate_limited"),
    )

    outcome = harness.dispatcher.dispatch(KycCompletedV1(application_id="app-1", passed=True))

    assert outcome.status == STATUS_FAILED
    assert outcome.reason_code == "github_rate_limited"
    assert not outcome.acked


def test_payload_round_trip_through_dispatcher(harness: Harness) -> None:
    outcome = harness.dispatcher.dispatch_payload(
        {
            "event_type": "application.submitted",
            "event_id": "evt-1",
            "application_id": "app-7",
            "application_number": "2001",
            "name": "Bob",
            "github_handle": "bob",
            "address": "f1bob",
            "unknown_field": "ignored",
        }
    )

    assert outcome.acked
    data = outcome.as_dict()
    assert data["event_id"] == "evt-1"
    assert data["outcome"] == "applied"
    assert data["phase"] == "KYC"
    assert data["phase_status"] == "NOT_STARTED"
    assert data["version"] == 1


def test_unexpected_exceptions_propagate() -> None:
    dispatcher = EventDispatcher(build_dispatch_table([CrashingHandler()]), max_workers=1)
    with pytest.raises(KeyError):
        dispatcher.dispatch(PullRequestSyncV1(application_id="app-1"))
    dispatcher.shutdown()


def test_submit_runs_events_on_worker_pool(harness: Harness) -> None:
    futures = [
        harness.dispatcher.submit(submission(application_id=f"app-{n}", number=str(n)))
        for n in range(1, 7)
    ]
    outcomes = [future.result(timeout=10) for future in futures]

    assert all(outcome.acked for outcome in outcomes)
    assert harness.repository.list_ids() == [f"app-{n}" for n in range(1, 7)]
    assert len(harness.connector.pull_requests) == 6


def test_concurrent_duplicate_deliveries_apply_once(harness: Harness) -> None:
    harness.dispatcher.dispatch(submission())
    event = KycCompletedV1(application_id="app-1", passed=True)

    futures = [harness.dispatcher.submit(event) for _ in range(5)]
    outcomes = [future.result(timeout=10) for future in futures]

    assert all(outcome.acked for outcome in outcomes)
    applied = [outcome for outcome in outcomes if outcome.reason_code == "applied"]
    assert len(applied) == 1
    assert harness.repository.require("app-1").version == 2


def test_shutdown_rejects_new_events(harness: Harness) -> None:
    harness.dispatcher.shutdown(wait=True)
    with pytest.raises(DispatcherClosedError):
        harness.dispatcher.submit(PullRequestSyncV1(application_id="app-1"))
    with pytest.raises(DispatcherClosedError):
        harness.dispatcher.submit_payload({"event_type": "pull_request.sync"})


class HeldPullRequestConnector(InMemoryGitHubConnector):
    """Holds the first pull-request creation until the branch has been recreated."""

    def __init__(self) -> None:
        super().__init__()
        self.branch_recreated = threading.Event()
        self._guard = threading.Lock()
        self._branch_calls = 0
        self._held_one = False

    def create_branch(self, owner: str, repo: str, name: str, base: str) -> None:
        super().create_branch(owner, repo, name, base)
        with self._guard:
            self._branch_calls += 1
            if self._branch_calls == 2:
                self.branch_recreated.set()

    def create_pull_request(self, *args: Any, **kwargs: Any) -> PullRequest:
        with self._guard:
            hold, self._held_one = not self._held_one, True
        if hold:
            self.branch_recreated.wait(timeout=5)
        return super().create_pull_request(*args, **kwargs)


def test_concurrent_duplicate_submissions_bind_the_only_open_pull_request() -> None:
    connector = HeldPullRequestConnector()
    harness = build_harness(connector=connector)

    futures = [harness.dispatcher.submit(submission()) for _ in range(2)]
    outcomes = [future.result(timeout=10) for future in futures]

    assert connector.operations("delete_branch") == ["delete_branch"]
    assert sorted(outcome.reason_code for outcome in outcomes) == ["applied", "github_422"]
    failed = next(outcome for outcome in outcomes if not outcome.acked)
    assert failed.status == STATUS_FAILED

    redelivered = harness.dispatcher.dispatch(submission())

    assert redelivered.acked
    assert redelivered.reason_code == "superseded"
    application = harness.repository.require("app-1")
    assert application.version == 1
    assert application.artifact_ref is not None
    assert connector.open_pull_requests("app/1042") == [application.artifact_ref.reference_id]
    assert len(connector.pull_requests) == 1
    harness.dispatcher.shutdown()


class ContextRecordingHandler(EventHandler):
    event_types = ("pull_request.sync",)

    def __init__(self) -> None:
        self.seen: list[dict[str, Any]] = []

    def handle(self, event: Any) -> HandlerResult:
        self.seen.append(structlog.contextvars.get_contextvars())
        return HandlerResult(
            application_id=event.application_id,
            outcome="synced",
            phase="KYC",
            phase_status="NOT_STARTED",
            version=1,
        )


def test_worker_logs_carry_event_context() -> None:
    handler = ContextRecordingHandler()
    dispatcher = EventDispatcher(build_dispatch_table([handler]), max_workers=2)
    event = PullRequestSyncV1(application_id="app-1")

    outcome = dispatcher.submit(event).result(timeout=10)
    dispatcher.shutdown()

    assert outcome.acked
    assert handler.seen == [
        {
            "application_id": "app-1",
            "event_type": "pull_request.sync",
            "event_id": event.event_id,
        }
    ]
    assert structlog.contextvars.get_contextvars() == {}
