"""
Run history repository.

Keeps a record of every migration run: when it started, how it ended and
how far it got. The orchestrator writes to a repository only when one is
injected; the in-memory implementation is meant for tests and for single
process tools that report on their own runs.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from backfill.observability import Tracer, create_tracer, traced


class HistoryStatus(Enum):
    """Status of a recorded run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    NO_ELIGIBLE_WORK = "no_eligible_work"

    @property
    def is_terminal(self) -> bool:
        return self != HistoryStatus.RUNNING


@dataclass(frozen=True)
class MigrationHistoryEntry:
    """
    One recorded run.

    Attributes:
        run_id: Run identifier
        migration_type: Kind of migration (the selection strategy name)
        status: Current status
        started_at: When the run started
        completed_at: When the run reached a terminal status
        progress: Latest progress snapshot (totals, batch index, owner)
        error: Last error message, if any
    """

    run_id: str
    migration_type: str
    status: HistoryStatus = HistoryStatus.RUNNING
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    progress: Mapping[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def duration(self) -> timedelta | None:
        if self.completed_at is None:
            return None
        return self.completed_at - self.started_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "migration_type": self.migration_type,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "progress": dict(self.progress),
            "error": self.error,
        }


@dataclass(frozen=True)
class HistorySummary:
    """
    Aggregate over all recorded runs.

    Totals are summed from each entry's ``progress`` snapshot.
    """

    total_runs: int = 0
    by_status: Mapping[str, int] = field(default_factory=dict)
    total_updated: int = 0
    total_skipped: int = 0
    total_errors: int = 0
    last_started_at: datetime | None = None


@runtime_checkable
class MigrationHistoryRepository(Protocol):
    """
    Protocol for run history repositories.

    Implementations must keep at most one entry per run_id.
    """

    async def start(
        self,
        run_id: str,
        migration_type: str,
        started_at: datetime | None = None,
    ) -> MigrationHistoryEntry:
        """
        Record a new running entry.

        Raises:
            ValueError: If an entry for run_id already exists
        """
        ...

    async def update_progress(self, run_id: str, progress: Mapping[str, Any]) -> None:
        """
        Replace the progress snapshot of a running entry.

        Raises:
            KeyError: If no entry exists for run_id
        """
        ...

    async def complete(
        self,
        run_id: str,
        status: HistoryStatus,
        progress: Mapping[str, Any] | None = None,
        error: str | None = None,
    ) -> MigrationHistoryEntry:
        """
        Move an entry to a terminal status.

        Raises:
            KeyError: If no entry exists for run_id
            ValueError: If status is RUNNING
        """
        ...

    async def get(self, run_id: str) -> MigrationHistoryEntry | None: ...

    async def list_entries(
        self,
        limit: int | None = None,
        migration_type: str | None = None,
    ) -> list[MigrationHistoryEntry]:
        """List entries, most recently started first."""
        ...

    async def summarize(self) -> HistorySummary: ...


class InMemoryMigrationHistoryRepository:
    """
    In-memory implementation of the run history repository.

    All data is lost when the process terminates.

    Example:
        >>> history = InMemoryMigrationHistoryRepository()
        >>> orchestrator = BackfillOrchestrator(store, history=history)
        >>> await orchestrator.initialize()
        >>> entries = await history.list_entries(limit=5)
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._entries: dict[str, MigrationHistoryEntry] = {}
        self._lock: asyncio.Lock = asyncio.Lock()

    @traced("backfill.history.start")
    async def start(
        self,
        run_id: str,
        migration_type: str,
        started_at: datetime | None = None,
    ) -> MigrationHistoryEntry:
        async with self._lock:
            if run_id in self._entries:
                raise ValueError(f"History entry for run {run_id} already exists")
            entry = MigrationHistoryEntry(
                run_id=run_id,
                migration_type=migration_type,
                started_at=started_at or datetime.now(UTC),
            )
            self._entries[run_id] = entry
            return entry

    @traced("backfill.history.update_progress")
    async def update_progress(self, run_id: str, progress: Mapping[str, Any]) -> None:
        async with self._lock:
            entry = self._require(run_id)
            self._entries[run_id] = replace(entry, progress=dict(progress))

    @traced("backfill.history.complete")
    async def complete(
        self,
        run_id: str,
        status: HistoryStatus,
        progress: Mapping[str, Any] | None = None,
        error: str | None = None,
    ) -> MigrationHistoryEntry:
        if not status.is_terminal:
            raise ValueError(f"complete() needs a terminal status, got {status.value}")
        async with self._lock:
            entry = self._require(run_id)
            updated = replace(
                entry,
                status=status,
                completed_at=datetime.now(UTC),
                progress=dict(progress) if progress is not None else entry.progress,
                error=error if error is not None else entry.error,
            )
            self._entries[run_id] = updated
            return updated

    async def get(self, run_id: str) -> MigrationHistoryEntry | None:
        async with self._lock:
            return self._entries.get(run_id)

    async def list_entries(
        self,
        limit: int | None = None,
        migration_type: str | None = None,
    ) -> list[MigrationHistoryEntry]:
        async with self._lock:
            entries = [
                entry
                for entry in self._entries.values()
                if migration_type is None or entry.migration_type == migration_type
            ]
        entries.sort(key=lambda entry: entry.started_at, reverse=True)
        if limit is not None:
            entries = entries[:limit]
        return entries

    async def summarize(self) -> HistorySummary:
        async with self._lock:
            entries = list(self._entries.values())
        if not entries:
            return HistorySummary()

        statuses = Counter(entry.status.value for entry in entries)
        return HistorySummary(
            total_runs=len(entries),
            by_status=dict(statuses),
            total_updated=sum(int(e.progress.get("total_updated", 0)) for e in entries),
            total_skipped=sum(int(e.progress.get("total_skipped", 0)) for e in entries),
            total_errors=sum(int(e.progress.get("total_errors", 0)) for e in entries),
            last_started_at=max(entry.started_at for entry in entries),
        )

    async def clear(self) -> None:
        """Remove every entry."""
        async with self._lock:
            self._entries.clear()

    def _require(self, run_id: str) -> MigrationHistoryEntry:
        entry = self._entries.get(run_id)
        if entry is None:
            raise KeyError(f"No history entry for run {run_id}")
        return entry


__all__ = [
    "HistoryStatus",
    "MigrationHistoryEntry",
    "HistorySummary",
    "MigrationHistoryRepository",
    "InMemoryMigrationHistoryRepository",
]
