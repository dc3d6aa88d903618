"""Composition root: wires repository, connector, handlers, and dispatcher."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from allocator_bot.control_plane.db.db import (
    AllocatorRepository,
    InMemoryAllocatorRepository,
    SQLiteAllocatorRepository,
)
from allocator_bot.control_plane.github.github_connector import (
    PullRequestConnector,
    build_connector_from_env,
)
from allocator_bot.control_plane.github.retry import RetryingPullRequestConnector, RetryPolicy
from allocator_bot.control_plane.orchestration.dispatcher import (
    EventDispatcher,
    build_dispatch_table,
)
from allocator_bot.control_plane.orchestration.handlers import EventHandler, default_handlers
from allocator_bot.control_plane.orchestration.pull_request_sync import PullRequestSynchronizer
from allocator_bot.shared.settings import BotSettings, get_settings


@dataclass
class AllocatorBotApp:
    settings: BotSettings
    repository: AllocatorRepository
    connector: PullRequestConnector
    synchronizer: PullRequestSynchronizer
    table: Mapping[str, EventHandler]
    dispatcher: EventDispatcher

    def close(self) -> None:
        self.dispatcher.shutdown(wait=True)
        close = getattr(self.repository, "close", None)
        if callable(close):
            close()


def build_repository(settings: BotSettings) -> AllocatorRepository:
    if settings.repository_backend == "in_memory":
        return InMemoryAllocatorRepository()
    if settings.repository_backend == "sqlite":
        return SQLiteAllocatorRepository(settings.sqlite_path)
    raise ValueError(f"Unknown repository backend: {settings.repository_backend}")


def build_app(
    settings: BotSettings | None = None,
    *,
    connector: PullRequestConnector | None = None,
    repository: AllocatorRepository | None = None,
    env: dict[str, str] | None = None,
) -> AllocatorBotApp:
    env_map = os.environ if env is None else env
    resolved = settings or get_settings(dict(env_map))
    raw_connector = connector or build_connector_from_env(
        dict(env_map), timeout_s=resolved.http_timeout_s
    )
    retrying = RetryingPullRequestConnector(
        raw_connector,
        RetryPolicy(
            max_attempts=resolved.adapter_max_attempts,
            base_delay_s=resolved.adapter_base_delay_s,
            max_delay_s=resolved.adapter_max_delay_s,
        ),
    )
    store = repository or build_repository(resolved)
    synchronizer = PullRequestSynchronizer(
        connector=retrying,
        target=resolved.github,
        governance_reviewers=resolved.governance_reviewers,
    )
    table = build_dispatch_table(
        default_handlers(
            repository=store,
            synchronizer=synchronizer,
            conflict_retries=resolved.conflict_retries,
        )
    )
    dispatcher = EventDispatcher(table, max_workers=resolved.worker_count)
    return AllocatorBotApp(
        settings=resolved,
        repository=store,
        connector=raw_connector,
        synchronizer=synchronizer,
        table=table,
        dispatcher=dispatcher,
    )
