"""Runtime settings loaded from ``ALLOCATOR_BOT_*`` environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class GitHubTarget:
    """Repository that receives allocator pull requests."""

    owner: str
    repo: str
    base_branch: str = "main"
    branch_prefix: str = "app"

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass(frozen=True)
class BotSettings:
    github: GitHubTarget
    governance_reviewers: tuple[str, ...]
    repository_backend: str
    data_dir: Path
    sqlite_path: Path
    worker_count: int
    conflict_retries: int
    adapter_max_attempts: int
    adapter_base_delay_s: float
    adapter_max_delay_s: float
    http_timeout_s: float
    log_level: str
    log_json: bool

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "BotSettings":
        source = os.environ if env is None else env
        data_dir = Path(source.get("ALLOCATOR_BOT_DATA_DIR", "./data"))
        sqlite_path = Path(
            source.get("ALLOCATOR_BOT_SQLITE_PATH", str(data_dir / "allocator_bot.sqlite"))
        )
        return cls(
            github=GitHubTarget(
                owner=source.get("ALLOCATOR_BOT_GITHUB_OWNER", "filecoin-project").strip(),
                repo=source.get("ALLOCATOR_BOT_GITHUB_REPO", "Allocator-Registry").strip(),
                base_branch=source.get("ALLOCATOR_BOT_BASE_BRANCH", "main").strip() or "main",
                branch_prefix=(
                    source.get("ALLOCATOR_BOT_BRANCH_PREFIX", "app").strip().strip("/") or "app"
                ),
            ),
            governance_reviewers=_parse_csv(source.get("ALLOCATOR_BOT_GOVERNANCE_REVIEWERS", "")),
            repository_backend=(
                source.get("ALLOCATOR_BOT_REPOSITORY", "sqlite").strip().lower() or "sqlite"
            ),
            data_dir=data_dir,
            sqlite_path=sqlite_path,
            worker_count=max(1, _int(source, "ALLOCATOR_BOT_WORKERS", 4)),
            conflict_retries=max(0, _int(source, "ALLOCATOR_BOT_CONFLICT_RETRIES", 3)),
            adapter_max_attempts=max(1, _int(source, "ALLOCATOR_BOT_ADAPTER_MAX_ATTEMPTS", 3)),
            adapter_base_delay_s=max(0.0, _float(source, "ALLOCATOR_BOT_ADAPTER_BACKOFF_S", 0.5)),
            adapter_max_delay_s=max(
                0.0, _float(source, "ALLOCATOR_BOT_ADAPTER_MAX_BACKOFF_S", 8.0)
            ),
            http_timeout_s=max(1.0, _float(source, "ALLOCATOR_BOT_HTTP_TIMEOUT_S", 15.0)),
            log_level=source.get("ALLOCATOR_BOT_LOG_LEVEL", "INFO").strip().upper() or "INFO",
            log_json=source.get("ALLOCATOR_BOT_LOG_JSON", "").strip().lower() in TRUTHY,
        )

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)


def get_settings(env: dict[str, str] | None = None) -> BotSettings:
    """Build settings from the environment and create local data directories."""

    settings = BotSettings.from_env(env)
    if settings.repository_backend == "sqlite":
        settings.ensure_directories()
    return settings


def _parse_csv(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _int(source: dict[str, str], key: str, default: int) -> int:
    raw = (source.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from exc


def _float(source: dict[str, str], key: str, default: float) -> float:
    raw = (source.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be a number, got {raw!r}") from exc
