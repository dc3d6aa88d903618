from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest

from allocator_bot.control_plane.db.db import InMemoryAllocatorRepository
from allocator_bot.control_plane.github.github_connector_inmemory import InMemoryGitHubConnector
from allocator_bot.control_plane.models.events import ApplicationSubmittedV1
from allocator_bot.control_plane.orchestration.dispatcher import (
    EventDispatcher,
    build_dispatch_table,
)
from allocator_bot.control_plane.orchestration.handlers import default_handlers
from allocator_bot.control_plane.orchestration.pull_request_sync import PullRequestSynchronizer
from allocator_bot.shared.settings import GitHubTarget

OWNER = "filecoin-project"
REPO = "Allocator-Registry"


@dataclass
class Harness:
    repository: InMemoryAllocatorRepository
    connector: InMemoryGitHubConnector
    synchronizer: PullRequestSynchronizer
    dispatcher: EventDispatcher

    def pull_request(self, number: int = 1) -> dict[str, Any]:
        return self.connector.pull_requests[(OWNER, REPO, number)]

    def status_comment(self, application_id: str = "app-1") -> dict[str, Any]:
        ref = self.repository.require(application_id).artifact_ref
        assert ref is not None
        return self.connector.comments[ref.thread_id]


def submission(application_id: str = "app-1", number: str = "1042", **overrides: Any):
    payload: dict[str, Any] = {
        "application_id": application_id,
        "application_number": number,
        "name": "Jane Allocator",
        "organization": "Acme Storage",
        "country": "Portugal",
        "region": "Europe",
        "github_handle": "jane",
        "address": "f2multisig",
        "target_clients": ["Enterprise"],
        "data_types": ["Public Open Dataset"],
    }
    payload.update(overrides)
    return ApplicationSubmittedV1(**payload)


def build_harness(
    repository: InMemoryAllocatorRepository | None = None,
    *,
    reviewers: tuple[str, ...] = ("gov-reviewer",),
    conflict_retries: int = 3,
    connector: InMemoryGitHubConnector | None = None,
) -> Harness:
    repo = repository or InMemoryAllocatorRepository()
    connector = connector or InMemoryGitHubConnector()
    synchronizer = PullRequestSynchronizer(
        connector=connector,
        target=GitHubTarget(owner=OWNER, repo=REPO),
        governance_reviewers=reviewers,
    )
    table = build_dispatch_table(
        default_handlers(
            repository=repo, synchronizer=synchronizer, conflict_retries=conflict_retries
        )
    )
    return Harness(
        repository=repo,
        connector=connector,
        synchronizer=synchronizer,
        dispatcher=EventDispatcher(table, max_workers=4),
    )


@pytest.fixture
def harness():
    bot = build_harness()
    yield bot
    bot.dispatcher.shutdown(wait=True)
