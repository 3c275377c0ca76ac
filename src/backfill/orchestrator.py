"""
BackfillOrchestrator - drives a migration run from selection to completion.

The orchestrator owns the run's state machine and wires the other
components together:

    initialize()            scan -> select -> bind owner -> load page 1
    process_current_batch() write the current page
    load_next_batch()       read the following page
    process_all_batches()   write every remaining page of the bound owner
    process_next_owner()    select another owner and process it
    process_all_owners()    keep going until nothing is left to select

Usage:
    >>> from backfill import BackfillOrchestrator, InMemoryDocumentStore
    >>>
    >>> orchestrator = BackfillOrchestrator(store)
    >>> run = await orchestrator.initialize()
    >>> if run.is_bound:
    ...     run = await orchestrator.process_all_batches(
    ...         on_batch_complete=lambda p: print(p.range_label, p.total_updated)
    ...     )

Failures inside a batch never abort the run; they are counted on the batch
result and the run moves on. A page that cannot be read is raised to the
caller and leaves the run bound, so ``load_next_batch()`` can be retried.
"""

from __future__ import annotations

import inspect
import logging
import random
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from backfill.cache import OwnerCache
from backfill.config import BackfillConfig, SelectionStrategy
from backfill.events import EventEmitter, EventKind
from backfill.exceptions import (
    BatchAlreadyProcessedError,
    InvalidPhaseTransitionError,
    LeaseNotHeldError,
    NoMoreBatchesError,
    PaginationError,
    RunNotInitializedError,
    RunStateError,
)
from backfill.history import HistoryStatus, MigrationHistoryRepository
from backfill.locks import OwnerLeaseManager
from backfill.models import (
    BatchProgress,
    BatchUpdateResult,
    Candidate,
    MigrationRun,
    RunPhase,
)
from backfill.observability import Tracer, create_tracer
from backfill.observability.attributes import (
    ATTR_BATCH_INDEX,
    ATTR_OWNER_ID,
    ATTR_RECORDS_SKIPPED,
    ATTR_RECORDS_UPDATED,
    ATTR_RUN_ID,
    ATTR_RUN_PHASE,
    ATTR_SELECTION_STRATEGY,
)
from backfill.paginator import BatchPaginator
from backfill.scanner import EligibilityScanner
from backfill.selection import CandidateSelector, SelectionPolicy, create_selection_policy
from backfill.stores.interface import DocumentStore
from backfill.writer import BatchWriter

logger = logging.getLogger(__name__)

BatchCallback = Callable[[BatchProgress], Awaitable[None] | None]
OwnerCallback = Callable[[MigrationRun], Awaitable[None] | None]


class BackfillOrchestrator:
    """
    Runs one migration at a time over a document store.

    Every collaborator is injected; anything not given is built from
    ``config``. A ``policy`` takes precedence over ``strategy``, which in turn
    defaults to ``config.strategy``.

    The orchestrator is not safe for concurrent use: callers must await one
    operation before starting the next. Independent orchestrators may run
    side by side; inject a shared lease manager to keep them off each other's
    owners.

    Example:
        >>> orchestrator = BackfillOrchestrator(
        ...     store,
        ...     strategy=SelectionStrategy.RANDOM,
        ...     history=InMemoryMigrationHistoryRepository(),
        ... )
        >>> run = await orchestrator.process_all_owners(max_owners=5)
        >>> print(run.owners_processed, run.total_updated)
    """

    def __init__(
        self,
        store: DocumentStore,
        cache: OwnerCache | None = None,
        config: BackfillConfig | None = None,
        policy: SelectionPolicy | None = None,
        strategy: SelectionStrategy | None = None,
        events: EventEmitter | None = None,
        history: MigrationHistoryRepository | None = None,
        lease_manager: OwnerLeaseManager | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
        rng: random.Random | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            store: Store holding the product and owner collections
            cache: Owner cache (one is built over ``store`` if omitted)
            config: Engine configuration (defaults if omitted)
            policy: Selection policy to use
            strategy: Built-in policy to use when ``policy`` is not given
            events: Emitter that receives run events
            history: Repository that records each run
            lease_manager: Lease manager guarding owners across runs
            tracer: Optional tracer for tracing (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
            rng: Random source for the built-in policies
        """
        self._store = store
        self._config = config or BackfillConfig()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._cache = cache or OwnerCache(store, self._config, tracer=self._tracer)
        self._events = events or EventEmitter()
        self._history = history
        self._lease_manager = lease_manager

        self._policy = policy or create_selection_policy(
            strategy or self._config.strategy,
            store,
            self._cache,
            self._config,
            rng,
        )
        self._scanner = EligibilityScanner(store, self._cache, self._config, tracer=self._tracer)
        self._selector = CandidateSelector(
            self._policy, self._cache, self._config, self._events, tracer=self._tracer
        )
        self._paginator = BatchPaginator(store, self._config, tracer=self._tracer)
        self._writer = BatchWriter(
            store, self._cache, self._config, self._events, tracer=self._tracer
        )

        self._run: MigrationRun | None = None
        self._held_leases: set[str] = set()

    @property
    def config(self) -> BackfillConfig:
        return self._config

    @property
    def policy(self) -> SelectionPolicy:
        return self._policy

    @property
    def cache(self) -> OwnerCache:
        return self._cache

    @property
    def events(self) -> EventEmitter:
        return self._events

    def get_run_state(self) -> MigrationRun | None:
        """Return the current run, or None before initialize() and after reset()."""
        return self._run

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> MigrationRun:
        """
        Start a new run.

        Scans a sample of products for eligible work, selects a candidate
        and loads the first page of its owner's products. An unfinished run
        is reset first.

        Returns:
            The new run, either BOUND to an owner or in NO_ELIGIBLE_WORK

        Raises:
            PaginationError: If the first page cannot be read (the run stays
                BOUND and load_next_batch() retries it)
        """
        if self._run is not None and not self._run.phase.is_terminal:
            logger.warning(
                "Run %s is still %s; resetting it before starting a new run",
                self._run.run_id,
                self._run.phase.value,
            )
            await self.reset()

        run = MigrationRun(
            run_id=f"{self._policy.name}-{uuid4().hex[:12]}",
            strategy=self._policy.name,
            batch_size=self._paginator.batch_size,
        )
        self._run = run

        with self._tracer.span(
            "backfill.orchestrator.initialize",
            {
                ATTR_RUN_ID: run.run_id,
                ATTR_SELECTION_STRATEGY: run.strategy,
            },
        ) as span:
            self._transition(run, RunPhase.SELECTING)
            if self._history is not None:
                await self._history.start(run.run_id, run.strategy, run.started_at)

            logger.info(
                "Starting run %s with strategy %s (batch size %d)",
                run.run_id,
                run.strategy,
                run.batch_size,
            )
            await self._events.emit(
                EventKind.RUN_STARTED,
                run.run_id,
                strategy=run.strategy,
                batch_size=run.batch_size,
            )

            try:
                report = await self._scanner.scan()
            except Exception as e:
                await self._fail(run, e)
                raise
            run.eligibility = report
            await self._events.emit(
                EventKind.ELIGIBILITY_CHECKED,
                run.run_id,
                sample_limit=report.sample_limit,
                **report.stats.to_dict(),
            )

            if not report.has_eligible_work:
                await self._finish_without_work(run, "no eligible products in sample")
            else:
                candidate = await self._select(run)
                if candidate is None:
                    await self._finish_without_work(run, "selection attempts exhausted")
                else:
                    await self._bind(run, candidate)

            if span:
                span.set_attribute(ATTR_RUN_PHASE, run.phase.value)
                if run.owner_id:
                    span.set_attribute(ATTR_OWNER_ID, run.owner_id)

        return run

    async def process_current_batch(self) -> BatchUpdateResult:
        """
        Write the current page.

        Returns:
            Result of the write

        Raises:
            RunNotInitializedError: If no owner is bound
            RunStateError: If the run is complete
            BatchAlreadyProcessedError: If the current page was already written
        """
        run = self._require_bound("process the current batch")
        if run.current_batch_processed:
            raise BatchAlreadyProcessedError(run.run_id, run.current_batch_index)
        owner_id = self._bound_owner_id(run)

        with self._tracer.span(
            "backfill.orchestrator.process_current_batch",
            {
                ATTR_RUN_ID: run.run_id,
                ATTR_OWNER_ID: owner_id,
                ATTR_BATCH_INDEX: run.current_batch_index,
            },
        ) as span:
            if run.current_batch:
                result = await self._writer.apply_batch(
                    run.current_batch,
                    owner_id=owner_id,
                    resolved_value=run.resolved_value or "",
                    batch_index=run.current_batch_index,
                    run_id=run.run_id,
                    batch_range=run.range_label or None,
                )
                run.batches_processed += 1
            else:
                # trailing empty page of the full-page heuristic
                result = BatchUpdateResult(
                    updated_count=0,
                    skipped_count=0,
                    error_count=0,
                    batch_index=run.current_batch_index,
                    range_label=run.range_label,
                )

            run.current_batch_processed = True
            run.total_scanned += len(run.current_batch)
            run.total_updated += result.updated_count
            run.total_skipped += result.skipped_count
            run.total_errors += result.error_count
            if result.error_message:
                run.record_error(result.error_message)

            if span:
                span.set_attribute(ATTR_RECORDS_UPDATED, result.updated_count)
                span.set_attribute(ATTR_RECORDS_SKIPPED, result.skipped_count)

        await self._events.emit(
            EventKind.BATCH_COMPLETED,
            run.run_id,
            owner_id=owner_id,
            batch_index=result.batch_index,
            range_label=result.range_label,
            updated_count=result.updated_count,
            skipped_count=result.skipped_count,
            error_count=result.error_count,
            total_updated=run.total_updated,
            total_skipped=run.total_skipped,
            total_errors=run.total_errors,
            has_more=run.has_more_batches,
        )
        if self._history is not None:
            await self._history.update_progress(run.run_id, run.to_dict())
        return result

    async def load_next_batch(self) -> MigrationRun:
        """
        Load the page after the current one.

        Returns:
            The run, positioned on the new page

        Raises:
            RunNotInitializedError: If no owner is bound
            RunStateError: If the run is complete
            NoMoreBatchesError: If the current page was the last one
            PaginationError: If the page cannot be read; the run keeps its
                position and the call can be retried
        """
        run = self._require_bound("load the next batch")
        if not run.has_more_batches:
            raise NoMoreBatchesError(run.run_id, run.current_batch_index)
        if not run.current_batch_processed:
            logger.warning(
                "Run %s: batch %d (%s) is being left without being processed",
                run.run_id,
                run.current_batch_index,
                run.range_label,
            )

        await self._load_page(run, run.current_batch_index + 1)
        return run

    async def process_all_batches(
        self,
        on_batch_complete: BatchCallback | None = None,
    ) -> MigrationRun:
        """
        Process every remaining page of the bound owner.

        The current page is written unless it already was, then pages are
        loaded and written until none are left. The run ends in COMPLETE.

        Args:
            on_batch_complete: Called after every batch with cumulative progress

        Returns:
            The completed run

        Raises:
            RunNotInitializedError: If no owner is bound
            RunStateError: If the run is complete
            PaginationError: If a page cannot be read
        """
        run = self._require_bound("process all batches")

        while True:
            if not run.current_batch_processed:
                result = await self.process_current_batch()
                await self._notify_batch(run, result, on_batch_complete)
            if not run.has_more_batches:
                break
            await self.load_next_batch()

        await self._complete_owner(run)
        return run

    async def process_next_owner(
        self,
        on_batch_complete: BatchCallback | None = None,
    ) -> bool:
        """
        Move on to the next owner and process all of its pages.

        A run that is still bound finishes its current owner instead. A
        complete run selects a new owner, excluding every owner it already
        processed.

        Returns:
            True if an owner was processed, False when nothing was left to
            select or ``max_owners_per_run`` owners were already processed

        Raises:
            RunNotInitializedError: If initialize() was not called
        """
        return await self._advance_owner(on_batch_complete, self._config.max_owners_per_run)

    async def process_all_owners(
        self,
        on_batch_complete: BatchCallback | None = None,
        on_owner_complete: OwnerCallback | None = None,
        max_owners: int | None = None,
    ) -> MigrationRun:
        """
        Process owners until nothing is left to select.

        Initializes a run first when there is none.

        Args:
            on_batch_complete: Called after every batch with cumulative progress
            on_owner_complete: Called with the run after every finished owner
            max_owners: Stop after this many owners (defaults to max_owners_per_run)

        Returns:
            The run, in COMPLETE or NO_ELIGIBLE_WORK
        """
        if max_owners is not None and max_owners < 1:
            raise ValueError(f"max_owners must be positive, got {max_owners}")
        limit = max_owners or self._config.max_owners_per_run

        if self._run is None:
            await self.initialize()
        run = self._run
        assert run is not None

        while run.owners_processed < limit:
            if not await self._advance_owner(on_batch_complete, limit):
                break
            if on_owner_complete is not None:
                await _call(on_owner_complete, run)

        logger.info(
            "Run %s finished: %d owner(s), %d updated, %d skipped, %d errors",
            run.run_id,
            run.owners_processed,
            run.total_updated,
            run.total_skipped,
            run.total_errors,
        )
        return run

    async def reset(self) -> None:
        """
        Drop the current run.

        Releases the run's leases and records an unfinished run as cancelled.
        """
        run = self._run
        if run is None:
            return

        for owner_id in list(self._held_leases):
            await self._release_lease(run, owner_id)

        if self._history is not None:
            entry = await self._history.get(run.run_id)
            if entry is not None and not entry.status.is_terminal:
                await self._history.complete(run.run_id, HistoryStatus.CANCELLED, run.to_dict())

        logger.info("Run %s reset in phase %s", run.run_id, run.phase.value)
        await self._events.emit(EventKind.RUN_RESET, run.run_id, phase=run.phase.value)
        self._run = None

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _advance_owner(self, on_batch_complete: BatchCallback | None, limit: int) -> bool:
        run = self._run
        if run is None or run.phase in (RunPhase.UNINITIALIZED, RunPhase.SELECTING):
            raise RunNotInitializedError(
                "process the next owner", run.phase if run is not None else None
            )

        if run.phase == RunPhase.NO_ELIGIBLE_WORK:
            return False
        if run.phase == RunPhase.BOUND:
            await self.process_all_batches(on_batch_complete)
            return True
        if run.owners_processed >= limit:
            logger.info("Run %s reached its limit of %d owner(s)", run.run_id, limit)
            return False

        self._transition(run, RunPhase.SELECTING)
        run.completed_at = None
        candidate = await self._select(run)
        if candidate is None:
            self._transition(run, RunPhase.COMPLETE)
            run.completed_at = datetime.now(UTC)
            logger.info("Run %s: no further owner to select", run.run_id)
            await self._emit_run_completed(run)
            return False

        await self._bind(run, candidate)
        await self.process_all_batches(on_batch_complete)
        return True

    async def _select(self, run: MigrationRun) -> Candidate | None:
        """Select a candidate whose owner this run may take."""
        exclude = set(run.processed_owner_ids)
        attempts = 0
        try:
            for _ in range(self._config.max_selection_attempts):
                candidate = await self._selector.select_candidate(exclude, run_id=run.run_id)
                attempts += self._selector.attempts_made
                if candidate is None:
                    break
                if await self._take_lease(run, candidate.owner.id):
                    run.selection_attempts = attempts
                    return candidate

                exclude.add(candidate.owner.id)
                await self._events.emit(
                    EventKind.CANDIDATE_REJECTED,
                    run.run_id,
                    attempt=attempts,
                    product_id=candidate.product.id,
                    owner_id=candidate.owner.id,
                    reason="owner_leased",
                )
        except Exception as e:
            await self._fail(run, e)
            raise

        run.selection_attempts = attempts
        return None

    async def _bind(self, run: MigrationRun, candidate: Candidate) -> None:
        self._transition(run, RunPhase.BOUND)
        run.selected_product = candidate.product
        run.selected_owner = candidate.owner
        run.resolved_value = candidate.resolved_value
        run.is_priority_candidate = candidate.is_priority
        run.current_batch = ()
        run.current_batch_index = 0
        run.current_batch_processed = True
        run.range_label = ""
        run.has_more_batches = True
        run.pagination_cursor = None

        logger.info(
            "Run %s bound owner %s (value %s) from product %s",
            run.run_id,
            candidate.owner.id,
            candidate.resolved_value,
            candidate.product.id,
        )
        await self._load_page(run, 1)

    async def _load_page(self, run: MigrationRun, batch_index: int) -> None:
        owner_id = self._bound_owner_id(run)
        try:
            page = await self._paginator.next_page(owner_id, batch_index, run.pagination_cursor)
        except PaginationError as e:
            run.record_error(str(e))
            await self._events.emit(
                EventKind.RUN_FAILED,
                run.run_id,
                owner_id=owner_id,
                batch_index=batch_index,
                error=str(e),
                error_code=e.error_code,
            )
            if self._history is not None:
                await self._history.update_progress(run.run_id, run.to_dict())
            raise

        run.current_batch = page.records
        run.current_batch_index = page.batch_index
        run.current_batch_processed = False
        run.range_label = page.range_label
        run.has_more_batches = page.has_more
        run.pagination_cursor = page.next_cursor

        await self._events.emit(
            EventKind.PAGE_LOADED,
            run.run_id,
            owner_id=owner_id,
            batch_index=page.batch_index,
            range_label=page.range_label,
            record_count=len(page),
            has_more=page.has_more,
        )

    async def _complete_owner(self, run: MigrationRun) -> None:
        owner_id = self._bound_owner_id(run)
        self._transition(run, RunPhase.COMPLETE)
        run.owners_processed += 1
        run.processed_owner_ids.append(owner_id)
        run.completed_at = datetime.now(UTC)
        await self._release_lease(run, owner_id)

        logger.info(
            "Run %s completed owner %s after %d batch(es): %d updated, %d skipped, %d errors",
            run.run_id,
            owner_id,
            run.current_batch_index,
            run.total_updated,
            run.total_skipped,
            run.total_errors,
        )
        await self._events.emit(
            EventKind.OWNER_COMPLETED,
            run.run_id,
            owner_id=owner_id,
            batches=run.current_batch_index,
            owners_processed=run.owners_processed,
        )
        await self._emit_run_completed(run)

    async def _emit_run_completed(self, run: MigrationRun) -> None:
        await self._events.emit(
            EventKind.RUN_COMPLETED,
            run.run_id,
            total_updated=run.total_updated,
            total_skipped=run.total_skipped,
            total_errors=run.total_errors,
            owners_processed=run.owners_processed,
        )
        if self._history is not None:
            await self._history.complete(run.run_id, HistoryStatus.COMPLETED, run.to_dict())

    async def _finish_without_work(self, run: MigrationRun, reason: str) -> None:
        self._transition(run, RunPhase.NO_ELIGIBLE_WORK)
        run.completed_at = datetime.now(UTC)
        logger.info("Run %s found no eligible work: %s", run.run_id, reason)
        stats = run.eligibility.stats.to_dict() if run.eligibility else {}
        await self._events.emit(
            EventKind.NO_ELIGIBLE_WORK,
            run.run_id,
            reason=reason,
            selection_attempts=run.selection_attempts,
            **stats,
        )
        if self._history is not None:
            await self._history.complete(
                run.run_id, HistoryStatus.NO_ELIGIBLE_WORK, run.to_dict()
            )

    async def _fail(self, run: MigrationRun, error: Exception) -> None:
        """Record a failure that ends the run's current step."""
        run.record_error(str(error))
        logger.error("Run %s failed in phase %s: %s", run.run_id, run.phase.value, error)
        await self._events.emit(
            EventKind.RUN_FAILED,
            run.run_id,
            phase=run.phase.value,
            error=str(error),
            error_type=type(error).__name__,
        )
        if self._history is not None:
            await self._history.complete(
                run.run_id, HistoryStatus.FAILED, run.to_dict(), error=str(error)
            )

    async def _take_lease(self, run: MigrationRun, owner_id: str) -> bool:
        if self._lease_manager is None:
            return True
        lease = await self._lease_manager.try_acquire(owner_id, run.run_id)
        if lease is None:
            logger.info("Run %s: owner %s is leased by another run", run.run_id, owner_id)
            return False
        self._held_leases.add(owner_id)
        return True

    async def _release_lease(self, run: MigrationRun, owner_id: str) -> None:
        if self._lease_manager is None or owner_id not in self._held_leases:
            return
        self._held_leases.discard(owner_id)
        try:
            await self._lease_manager.release(owner_id, run.run_id)
        except LeaseNotHeldError:
            logger.warning("Run %s: lease on owner %s had already lapsed", run.run_id, owner_id)

    async def _notify_batch(
        self,
        run: MigrationRun,
        result: BatchUpdateResult,
        callback: BatchCallback | None,
    ) -> None:
        if callback is None:
            return
        progress = BatchProgress(
            run_id=run.run_id,
            owner_id=self._bound_owner_id(run),
            batch_index=result.batch_index,
            range_label=result.range_label,
            result=result,
            total_updated=run.total_updated,
            total_skipped=run.total_skipped,
            total_errors=run.total_errors,
            has_more=run.has_more_batches,
        )
        await _call(callback, progress)

    def _require_bound(self, operation: str) -> MigrationRun:
        run = self._run
        if run is None:
            raise RunNotInitializedError(operation)
        if run.phase == RunPhase.COMPLETE:
            raise RunStateError(
                f"Cannot {operation}: run is complete",
                current_phase=run.phase,
                operation=operation,
                run_id=run.run_id,
            )
        if run.phase != RunPhase.BOUND:
            raise RunNotInitializedError(operation, run.phase)
        return run

    def _bound_owner_id(self, run: MigrationRun) -> str:
        owner_id = run.owner_id
        if owner_id is None:
            raise RunNotInitializedError("use the bound owner", run.phase)
        return owner_id

    def _transition(self, run: MigrationRun, target: RunPhase) -> None:
        if not run.phase.can_transition_to(target):
            raise InvalidPhaseTransitionError(run.run_id, run.phase, target)
        logger.debug("Run %s: %s -> %s", run.run_id, run.phase.value, target.value)
        run.phase = target

    def __repr__(self) -> str:
        phase = self._run.phase.value if self._run is not None else "none"
        return (
            f"BackfillOrchestrator(policy={self._policy.name!r}, "
            f"batch_size={self._paginator.batch_size}, phase={phase})"
        )


async def _call(callback: Callable[[Any], Awaitable[None] | None], arg: Any) -> None:
    result = callback(arg)
    if inspect.isawaitable(result):
        await result


__all__ = [
    "BackfillOrchestrator",
    "BatchCallback",
    "OwnerCallback",
]
