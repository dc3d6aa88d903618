"""Routes inbound events to handlers and maps the error taxonomy to outcomes."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

import structlog
from pydantic import ValidationError

from allocator_bot.control_plane.models.events import EventV1, parse_event
from allocator_bot.control_plane.orchestration.handlers import EventHandler, HandlerResult
from allocator_bot.domain.errors import (
    ConcurrencyConflictError,
    ExternalAdapterError,
    InvalidTransitionError,
    NotFoundError,
)
from allocator_bot.shared.logging import event_context

logger = structlog.get_logger()

STATUS_ACKED = "acked"
STATUS_FAILED = "failed"


class DispatcherClosedError(RuntimeError):
    pass


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of one delivery: ``acked`` events are done, ``failed`` ones should be redelivered."""

    event_id: str
    event_type: str
    application_id: str
    status: str
    reason_code: str = ""
    result: HandlerResult | None = None
    error: str = ""
    follow_ups: tuple["DispatchOutcome", ...] = ()

    @property
    def acked(self) -> bool:
        return self.status == STATUS_ACKED

    def as_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "application_id": self.application_id,
            "status": self.status,
            "reason_code": self.reason_code,
            "outcome": self.result.outcome if self.result else "",
            "phase": self.result.phase if self.result else "",
            "phase_status": self.result.phase_status if self.result else "",
            "version": self.result.version if self.result else None,
            "error": self.error,
            "follow_ups": [item.as_dict() for item in self.follow_ups],
        }


def build_dispatch_table(handlers: Iterable[EventHandler]) -> Mapping[str, EventHandler]:
    table: dict[str, EventHandler] = {}
    for handler in handlers:
        for event_type in handler.event_types:
            if event_type in table:
                raise ValueError(f"Duplicate handler binding for event type: {event_type}")
            table[event_type] = handler
    return MappingProxyType(dict(sorted(table.items())))


class EventDispatcher:
    """Runs events through their handlers on a bounded worker pool.

    Events for different applications run in parallel; events for the same
    application may too, with version-checked saves deciding the winner.
    """

    def __init__(self, table: Mapping[str, EventHandler], *, max_workers: int = 4) -> None:
        self.table = table
        self.max_workers = max(1, int(max_workers))
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="allocator-bot"
        )
        self._closed = False
        self._lock = threading.Lock()

    def submit(self, event: EventV1) -> Future[DispatchOutcome]:
        with self._lock:
            if self._closed:
                raise DispatcherClosedError("Dispatcher is shut down")
            return self._executor.submit(self.dispatch, event)

    def submit_payload(self, payload: dict[str, Any]) -> Future[DispatchOutcome]:
        with self._lock:
            if self._closed:
                raise DispatcherClosedError("Dispatcher is shut down")
            return self._executor.submit(self.dispatch_payload, payload)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting events; with ``wait`` block until in-flight handlers finish."""

        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)
        logger.info("dispatcher_stopped", drained=wait)

    def __enter__(self) -> "EventDispatcher":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown(wait=True)

    def dispatch_payload(self, payload: dict[str, Any]) -> DispatchOutcome:
        event_type = str(payload.get("event_type", ""))
        application_id = str(payload.get("application_id", ""))
        event_id = str(payload.get("event_id", ""))
        if event_type not in self.table:
            return self._unhandled(event_id, event_type, application_id)
        try:
            event = parse_event(payload)
        except ValidationError as exc:
            logger.error(
                "event_payload_invalid",
                application_id=application_id,
                event_type=event_type,
                event_id=event_id,
                errors=exc.error_count(),
            )
            return DispatchOutcome(
                event_id=event_id,
                event_type=event_type,
                application_id=application_id,
                status=STATUS_ACKED,
                reason_code="invalid_payload",
                error=str(exc),
            )
        return self.dispatch(event)

    def dispatch(self, event: Any) -> DispatchOutcome:
        event_type = str(getattr(event, "event_type", ""))
        handler = self.table.get(event_type)
        if handler is None:
            return self._unhandled(event.event_id, event_type, event.application_id)
        with event_context(
            application_id=event.application_id, event_type=event_type, event_id=event.event_id
        ):
            return self._run(handler, event, event_type)

    def _run(self, handler: EventHandler, event: Any, event_type: str) -> DispatchOutcome:
        def outcome(status: str, reason_code: str, error: str = "") -> DispatchOutcome:
            return DispatchOutcome(
                event_id=event.event_id,
                event_type=event_type,
                application_id=event.application_id,
                status=status,
                reason_code=reason_code,
                error=error,
            )

        try:
            result = handler.handle(event)
        except NotFoundError as exc:
            logger.error("application_not_found", error=str(exc))
            return outcome(STATUS_ACKED, exc.reason_code, str(exc))
        except InvalidTransitionError as exc:
            logger.warning(
                "transition_rejected",
                trigger=exc.trigger,
                phase=exc.phase,
                phase_status=exc.phase_status,
            )
            return outcome(STATUS_ACKED, exc.reason_code, str(exc))
        except ConcurrencyConflictError as exc:
            logger.error("event_failed", reason_code=exc.reason_code, error=str(exc))
            return outcome(STATUS_FAILED, exc.reason_code, str(exc))
        except ExternalAdapterError as exc:
            logger.error("event_failed", reason_code=exc.reason_code, error=str(exc))
            return outcome(STATUS_FAILED, exc.reason_code, str(exc))
        except Exception:
            logger.exception("event_handler_crashed")
            raise

        follow_ups = tuple(self.dispatch(follow_up) for follow_up in result.follow_ups)
        logger.info("event_handled", outcome=result.outcome, version=result.version)
        if any(not item.acked for item in follow_ups):
            # Redelivery of this event re-emits the follow-up from stored state.
            logger.error("follow_up_failed", follow_up_count=len(follow_ups))
            return DispatchOutcome(
                event_id=event.event_id,
                event_type=event_type,
                application_id=event.application_id,
                status=STATUS_FAILED,
                reason_code="follow_up_failed",
                result=result,
                follow_ups=follow_ups,
            )
        return DispatchOutcome(
            event_id=event.event_id,
            event_type=event_type,
            application_id=event.application_id,
            status=STATUS_ACKED,
            reason_code=result.outcome,
            result=result,
            follow_ups=follow_ups,
        )

    def _unhandled(self, event_id: str, event_type: str, application_id: str) -> DispatchOutcome:
        logger.warning(
            "event_type_unhandled",
            application_id=application_id,
            event_type=event_type,
            event_id=event_id,
        )
        return DispatchOutcome(
            event_id=event_id,
            event_type=event_type,
            application_id=application_id,
            status=STATUS_ACKED,
            reason_code="unhandled_event_type",
        )
