"""Error taxonomy shared by the aggregate, repositories, and adapters."""

from __future__ import annotations


class AllocatorBotError(RuntimeError):
    """Base class for every error raised by allocator-bot."""

    reason_code = "allocator_bot_error"


class NotFoundError(AllocatorBotError):
    reason_code = "not_found"

    def __init__(self, application_id: str) -> None:
        super().__init__(f"Allocator application not found: {application_id}")
        self.application_id = application_id


class InvalidTransitionError(AllocatorBotError):
    reason_code = "invalid_transition"

    def __init__(self, application_id: str, trigger: str, phase: str, phase_status: str) -> None:
        super().__init__(
            f"Trigger {trigger} is not allowed for application {application_id} "
            f"in {phase}/{phase_status}"
        )
        self.application_id = application_id
        self.trigger = trigger
        self.phase = phase
        self.phase_status = phase_status


class ConcurrencyConflictError(AllocatorBotError):
    reason_code = "concurrency_conflict"

    def __init__(
        self, application_id: str, expected_version: int, actual_version: int | None
    ) -> None:
        super().__init__(
            f"Stale write for application {application_id}: expected version "
            f"{expected_version}, stored version {actual_version}"
        )
        self.application_id = application_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class ExternalAdapterError(AllocatorBotError):
    """A collaboration-system call failed."""

    def __init__(self, message: str, reason_code: str = "external_adapter_error") -> None:
        super().__init__(message)
        self.reason_code = reason_code


__all__ = [
    "AllocatorBotError",
    "ConcurrencyConflictError",
    "ExternalAdapterError",
    "InvalidTransitionError",
    "NotFoundError",
]
