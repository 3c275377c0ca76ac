"""
Structured run events.

The engine reports what it is doing through an :class:`EventEmitter`
rather than printing. Callers subscribe listeners to drive progress UIs,
audit trails or metrics; the run itself never depends on a listener.

Example:
    >>> emitter = EventEmitter()
    >>> unsubscribe = emitter.subscribe(
    ...     lambda event: print(event.kind.value, event.payload),
    ...     kinds={EventKind.BATCH_COMPLETED},
    ... )
    >>> orchestrator = BackfillOrchestrator(store, events=emitter)
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class EventKind(Enum):
    """Kinds of events emitted during a run."""

    RUN_STARTED = "run_started"
    ELIGIBILITY_CHECKED = "eligibility_checked"
    CANDIDATE_REJECTED = "candidate_rejected"
    CANDIDATE_SELECTED = "candidate_selected"
    NO_ELIGIBLE_WORK = "no_eligible_work"
    PAGE_LOADED = "page_loaded"
    RECORD_SKIPPED = "record_skipped"
    BATCH_WRITTEN = "batch_written"
    BATCH_FAILED = "batch_failed"
    BATCH_COMPLETED = "batch_completed"
    OWNER_COMPLETED = "owner_completed"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"
    RUN_RESET = "run_reset"


@dataclass(frozen=True)
class BackfillEvent:
    """
    One event emitted by the engine.

    Attributes:
        kind: What happened
        run_id: Run the event belongs to, if any
        payload: Event-specific details (counts, ids, reasons)
        timestamp: When the event was emitted
    """

    kind: EventKind
    run_id: str | None = None
    payload: Mapping[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


EventListener = Callable[[BackfillEvent], Awaitable[None] | None]


@dataclass
class _Subscription:
    listener: EventListener
    kinds: frozenset[EventKind] | None

    def wants(self, kind: EventKind) -> bool:
        return self.kinds is None or kind in self.kinds

    @property
    def name(self) -> str:
        return getattr(self.listener, "__qualname__", repr(self.listener))


class EventEmitter:
    """
    Dispatches BackfillEvents to subscribed listeners.

    Listeners may be plain functions or coroutine functions. They run one
    after another in subscription order, so a listener sees events in the
    order they happened. A listener that raises is logged and skipped; the
    remaining listeners and the run carry on.
    """

    def __init__(self) -> None:
        self._subscriptions: list[_Subscription] = []
        self._stats = {
            "events_emitted": 0,
            "listener_errors": 0,
        }

    def subscribe(
        self,
        listener: EventListener,
        kinds: Iterable[EventKind] | None = None,
    ) -> Callable[[], None]:
        """
        Register a listener.

        Args:
            listener: Called with every matching event
            kinds: Event kinds to receive (None = all kinds)

        Returns:
            A callable that removes this subscription
        """
        subscription = _Subscription(
            listener=listener,
            kinds=frozenset(kinds) if kinds is not None else None,
        )
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    async def emit(self, kind: EventKind, run_id: str | None = None, **payload: Any) -> None:
        """Build an event and deliver it to every interested listener."""
        event = BackfillEvent(kind=kind, run_id=run_id, payload=payload)
        self._stats["events_emitted"] += 1

        for subscription in list(self._subscriptions):
            if not subscription.wants(kind):
                continue
            try:
                result = subscription.listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._stats["listener_errors"] += 1
                logger.error(
                    "Event listener %s failed on %s: %s",
                    subscription.name,
                    kind.value,
                    e,
                    exc_info=True,
                    extra={"event_kind": kind.value, "run_id": run_id},
                )

    @property
    def listener_count(self) -> int:
        return len(self._subscriptions)

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)


class RecordingListener:
    """
    Listener that keeps every event it receives.

    Useful in tests and for collecting a run's audit trail in memory.
    """

    def __init__(self) -> None:
        self.events: list[BackfillEvent] = []

    def __call__(self, event: BackfillEvent) -> None:
        self.events.append(event)

    @property
    def kinds(self) -> list[EventKind]:
        return [event.kind for event in self.events]

    def of_kind(self, kind: EventKind) -> list[BackfillEvent]:
        return [event for event in self.events if event.kind == kind]

    def clear(self) -> None:
        self.events.clear()


__all__ = [
    "EventKind",
    "BackfillEvent",
    "EventListener",
    "EventEmitter",
    "RecordingListener",
]
