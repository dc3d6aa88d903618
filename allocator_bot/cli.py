"""allocator-bot CLI."""

from __future__ import annotations

import json
from pathlib import Path

import typer

from allocator_bot import __version__
from allocator_bot.control_plane.app import build_app, build_repository
from allocator_bot.control_plane.github.github_auth import load_github_auth_from_env
from allocator_bot.control_plane.orchestration.dispatcher import DispatchOutcome
from allocator_bot.control_plane.status_messages import STATUS_MESSAGES, status_message
from allocator_bot.shared.logging import configure_logging
from allocator_bot.shared.settings import BotSettings, get_settings

app = typer.Typer(add_completion=False, help="allocator-bot: allocator onboarding orchestrator")


def _load_settings() -> BotSettings:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_output=settings.log_json)
    return settings


def _read_payloads(file: Path) -> list[dict]:
    payloads: list[dict] = []
    for line_no, line in enumerate(file.read_text().splitlines(), start=1):
        if not line.strip():
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as exc:
            raise typer.BadParameter(f"{file.name}:{line_no}: invalid JSON ({exc.msg})") from exc
        if not isinstance(payload, dict):
            raise typer.BadParameter(f"{file.name}:{line_no}: expected a JSON object")
        payloads.append(payload)
    return payloads


@app.command()
def status() -> None:
    """Print effective settings with tokens redacted."""
    settings = _load_settings()
    auth = load_github_auth_from_env()
    typer.echo(
        json.dumps(
            {
                "version": __version__,
                "github_repo": settings.github.full_name,
                "base_branch": settings.github.base_branch,
                "branch_prefix": settings.github.branch_prefix,
                "governance_reviewers": list(settings.governance_reviewers),
                "repository": settings.repository_backend,
                "sqlite_path": str(settings.sqlite_path),
                "workers": settings.worker_count,
                "conflict_retries": settings.conflict_retries,
                "adapter_max_attempts": settings.adapter_max_attempts,
                "auth": auth.redacted(),
                "can_write": auth.can_write,
            },
            indent=2,
        )
    )


@app.command()
def messages() -> None:
    """Print the status message table."""
    for phase, phase_status in STATUS_MESSAGES:
        title = next(
            (
                line.lstrip("# ").strip()
                for line in status_message(phase, phase_status).splitlines()
                if line.startswith("###")
            ),
            "",
        )
        typer.echo(f"{phase.value:<20} {phase_status.value:<12} {title}")


@app.command()
def dispatch(
    file: Path = typer.Option(..., "--file", exists=True, dir_okay=False, readable=True),
    concurrent: bool = typer.Option(False, "--concurrent"),
) -> None:
    """Run a JSON-lines file of events through the dispatcher and print outcomes.

    Events run in file order unless ``--concurrent`` is given, in which case
    they are submitted to the worker pool together.
    """
    _load_settings()
    payloads = _read_payloads(file)
    bot = build_app()
    outcomes: list[DispatchOutcome] = []
    try:
        if concurrent:
            futures = [bot.dispatcher.submit_payload(payload) for payload in payloads]
            outcomes = [future.result() for future in futures]
        else:
            outcomes = [bot.dispatcher.dispatch_payload(payload) for payload in payloads]
    finally:
        bot.close()

    for outcome in outcomes:
        typer.echo(json.dumps(outcome.as_dict(), sort_keys=True))
    if any(not outcome.acked for outcome in outcomes):
        raise typer.Exit(code=1)


@app.command()
def show(application_id: str) -> None:
    """Print the stored application aggregate."""
    settings = _load_settings()
    repository = build_repository(settings)
    try:
        application = repository.get_by_id(application_id)
    finally:
        close = getattr(repository, "close", None)
        if callable(close):
            close()
    if application is None:
        typer.echo(f"Application not found: {application_id}", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(application.to_record(), indent=2, sort_keys=True))


if __name__ == "__main__":
    app()
