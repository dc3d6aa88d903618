"""GitHub tokens for the registry bot: reads and writes may use different tokens."""

from __future__ import annotations

import os
from dataclasses import dataclass

TOKEN_ENV = "ALLOCATOR_BOT_GITHUB_TOKEN"
READ_TOKEN_ENV = "ALLOCATOR_BOT_GITHUB_READ_TOKEN"
WRITE_TOKEN_ENV = "ALLOCATOR_BOT_GITHUB_WRITE_TOKEN"


@dataclass(frozen=True)
class GitHubAuth:
    read_token: str | None = None
    write_token: str | None = None

    @property
    def can_write(self) -> bool:
        return self.write_token is not None

    def bearer_headers(self, *, write: bool) -> dict[str, str]:
        token = self.write_token if write else self.read_token
        if token is None:
            return {}
        return {"Authorization": f"Bearer {token}"}

    def redacted(self) -> dict[str, str]:
        return {
            "read_token": _redact_token(self.read_token),
            "write_token": _redact_token(self.write_token),
        }


def load_github_auth_from_env(env: dict[str, str] | None = None) -> GitHubAuth:
    """Per-direction tokens fall back to ``ALLOCATOR_BOT_GITHUB_TOKEN``, then ``GITHUB_TOKEN``."""

    source = os.environ if env is None else env
    fallback = _clean(source.get(TOKEN_ENV)) or _clean(source.get("GITHUB_TOKEN"))
    return GitHubAuth(
        read_token=_clean(source.get(READ_TOKEN_ENV)) or fallback,
        write_token=_clean(source.get(WRITE_TOKEN_ENV)) or fallback,
    )


def _clean(token: str | None) -> str | None:
    value = (token or "").strip()
    return value or None


def _redact_token(token: str | None) -> str:
    if token is None:
        return "unset"
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-4:]}"
