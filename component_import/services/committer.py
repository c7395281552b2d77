from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from contextlib import AbstractContextManager
from typing import Any, Protocol

from ..db.repository import (
    ChunkTimeoutError,
    StorageError,
    StorageUnavailableError,
    UniqueConflictError,
)
from ..models.component import (
    ComponentGroup,
    ComponentKey,
    ComponentUpdate,
    ExistingInstances,
    InstanceAllocation,
    NormalizedRow,
)
from ..models.config_models import ImportOptions
from ..models.error_record import FILE_LEVEL_ROW, ErrorRecord
from ..models.import_run import CommitResult, ImportRun, RunProgress
from ..models.milestone import MilestoneDefinition, MilestoneTemplateDefinition
from .allocation import AllocationPlan, allocate_instances, chunked
from .templates import TemplateResolver, resolve_variant

"""Bulk transaction committer.

One sequential worker per run. Work is split into chunks of
ImportOptions.chunk_size; each chunk is one transaction on the store and
commits or rolls back as a whole. A failed chunk never takes already
committed chunks with it.

Failure handling per chunk:

- UniqueConflictError (another run raced ahead), ChunkTimeoutError, other
  StorageError: roll back, record the failure, continue with the next chunk.
  The keys of the failed chunk are poisoned: their records in later chunks
  are not written, so no key ends up with a numbering gap.
- StorageUnavailableError: roll back, stop the run, status failed.

Cancellation is checked between chunks only.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "BulkCommitter",
    "ComponentStore",
    "CHUNK_CONFLICT",
    "CHUNK_FAILED",
    "CHUNK_TIMEOUT",
    "RUN_CANCELLED",
    "SKIPPED_AFTER_CONFLICT",
    "STORAGE_UNAVAILABLE",
    "UNEXPECTED_ERROR",
]

CHUNK_CONFLICT = "CHUNK_CONFLICT"
CHUNK_TIMEOUT = "CHUNK_TIMEOUT"
CHUNK_FAILED = "CHUNK_FAILED"
STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
UNEXPECTED_ERROR = "UNEXPECTED_ERROR"
SKIPPED_AFTER_CONFLICT = "SKIPPED_AFTER_CONFLICT"
RUN_CANCELLED = "RUN_CANCELLED"


class ComponentStore(Protocol):
    """What the committer needs from storage (PostgresComponentStore in production)."""

    def transaction(self, timeout_seconds: float | None = None) -> AbstractContextManager[Any]: ...

    def find_drawings(self, cur: Any, project_id: str, numbers: Iterable[str]) -> dict[str, Any]: ...

    def create_drawings(self, cur: Any, project_id: str, numbers: Iterable[str]) -> int: ...

    def fetch_instance_stats(
        self, cur: Any, project_id: str, keys: Iterable[ComponentKey]
    ) -> dict[ComponentKey, ExistingInstances]: ...

    def insert_components(
        self, cur: Any, project_id: str, items: Sequence[tuple[InstanceAllocation, Any, Any]]
    ) -> list[Any]: ...

    def insert_milestones(self, cur: Any, items: Sequence[tuple[Any, MilestoneDefinition]]) -> int: ...

    def relabel_instances(self, cur: Any, drawing_id: Any, business_id: str, total: int) -> int: ...

    def update_component_attributes(
        self, cur: Any, drawing_id: Any, business_id: str, attributes: NormalizedRow
    ) -> int: ...

    def ensure_template(
        self, cur: Any, project_id: str, definition: MilestoneTemplateDefinition
    ) -> tuple[Any, tuple[MilestoneDefinition, ...]]: ...

    def create_run(self, cur: Any, run: ImportRun) -> None: ...

    def update_run(self, cur: Any, run: ImportRun) -> None: ...


_FAILURE_TYPES: tuple[tuple[type[Exception], str], ...] = (
    (StorageUnavailableError, STORAGE_UNAVAILABLE),
    (UniqueConflictError, CHUNK_CONFLICT),
    (ChunkTimeoutError, CHUNK_TIMEOUT),
    (StorageError, CHUNK_FAILED),
)


def _failure_type(exc: Exception) -> str:
    for cls, error_type in _FAILURE_TYPES:
        if isinstance(exc, cls):
            return error_type
    return UNEXPECTED_ERROR


def _row_span(rows: Iterable[int]) -> str:
    rows = sorted(set(rows))
    if not rows:
        return "-"
    return str(rows[0]) if rows[0] == rows[-1] else f"{rows[0]}-{rows[-1]}"


class _Counters:
    def __init__(self) -> None:
        self.instances_created = 0
        self.instances_updated = 0
        self.drawings_created = 0
        self.components: set[ComponentKey] = set()


class BulkCommitter:
    """Persists an allocation plan chunk by chunk.

    A committer holds the state of one run at a time (template cache,
    poisoned keys); create one per run or reuse it sequentially.
    """

    def __init__(
        self,
        store: ComponentStore,
        options: ImportOptions | None = None,
        *,
        resolver: TemplateResolver | None = None,
        progress_callback: Callable[[RunProgress], None] | None = None,
        cancel_event: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.options = options or ImportOptions()
        self.resolver = resolver or TemplateResolver(store)
        self.progress_callback = progress_callback
        self.cancel_event = cancel_event
        self.clock = clock
        self._poisoned: set[ComponentKey] = set()

    # -- public -----------------------------------------------------------

    def commit(self, run: ImportRun, groups: Sequence[ComponentGroup]) -> CommitResult:
        """Run the whole commit phase for already grouped rows.

        run carries the row level errors / warnings collected so far and
        receives every chunk level outcome. Never raises for storage
        failures; the outcome is in the returned CommitResult.
        """
        self._poisoned = set()
        counters = _Counters()
        plan: AllocationPlan | None = None
        self._bookkeeping("create_run", run)
        try:
            drawing_ids = self._ensure_drawings(run, groups, counters)
            existing = self._read_existing(run, groups)
        except StorageError as e:
            # without drawings or instance stats nothing can be numbered safely
            run.fatal = True
            run.start(0)
            self._record_failure(run, e, "setup", ())
        else:
            plan = allocate_instances(groups, existing, self.options.duplicate_policy)
            run.total_instances = len(plan.records)
            run.start(len(plan.records) + len(plan.updates))
            self._bookkeeping("update_run", run)
            try:
                self._commit_updates(run, plan.updates, drawing_ids, counters)
                self._commit_records(run, plan.records, existing, drawing_ids, counters)
            except StorageUnavailableError:
                logger.error("run %s halted, storage unavailable", run.run_id)
        status = run.finalize()
        self._bookkeeping("update_run", run)
        logger.info(
            "run %s finished status=%s created=%d updated=%d chunks=%d/%d",
            run.run_id,
            status.value,
            counters.instances_created,
            counters.instances_updated,
            run.chunks_committed,
            run.chunks_committed + run.chunks_failed,
        )
        total_chunks, avg_chunk, p95_chunk = run.chunk_stats.get_stats()
        return CommitResult(
            run_id=run.run_id,
            status=status,
            total_rows=run.total_rows,
            instances_created=counters.instances_created,
            components_affected=len(counters.components),
            rows_skipped=plan.rows_skipped if plan is not None else 0,
            instances_updated=counters.instances_updated,
            drawings_created=counters.drawings_created,
            chunks_committed=run.chunks_committed,
            chunks_failed=run.chunks_failed,
            elapsed_seconds=run.elapsed_seconds,
            type_counts=dict(run.type_counts),
            unknown_types=tuple(sorted(run.unknown_types)),
            errors=list(run.errors),
            warnings=list(run.warnings),
            total_chunks=total_chunks,
            avg_chunk_seconds=avg_chunk,
            p95_chunk_seconds=p95_chunk,
        )

    # -- setup ------------------------------------------------------------

    def _ensure_drawings(
        self, run: ImportRun, groups: Sequence[ComponentGroup], counters: _Counters
    ) -> dict[str, Any]:
        numbers = list(dict.fromkeys(g.drawing for g in groups))
        if not numbers:
            return {}
        with self.store.transaction(self.options.chunk_timeout_seconds) as cur:
            found = self.store.find_drawings(cur, run.project_id, numbers)
            missing = [n for n in numbers if n not in found]
            if missing:
                counters.drawings_created = self.store.create_drawings(cur, run.project_id, missing)
                found = self.store.find_drawings(cur, run.project_id, numbers)
        unresolved = [n for n in numbers if n not in found]
        if unresolved:
            raise StorageError(f"drawings not available after create: {', '.join(unresolved[:5])}")
        logger.debug("drawings ready total=%d created=%d", len(numbers), counters.drawings_created)
        return found

    def _read_existing(
        self, run: ImportRun, groups: Sequence[ComponentGroup]
    ) -> dict[ComponentKey, ExistingInstances]:
        if not groups:
            return {}
        with self.store.transaction(self.options.chunk_timeout_seconds) as cur:
            return self.store.fetch_instance_stats(cur, run.project_id, [g.key for g in groups])

    # -- chunks -----------------------------------------------------------

    def _cancelled(self, run: ImportRun) -> bool:
        if self.cancel_event is None or not self.cancel_event.is_set():
            return False
        if not run.cancelled:
            run.cancelled = True
            run.add_warning(ErrorRecord.create(
                file=run.filename,
                row=FILE_LEVEL_ROW,
                error_type=RUN_CANCELLED,
                message=f"run cancelled after {run.chunks_committed} committed chunk(s)",
            ))
            logger.warning("run %s cancelled", run.run_id)
        return True

    def _commit_updates(
        self,
        run: ImportRun,
        updates: Sequence[ComponentUpdate],
        drawing_ids: Mapping[str, Any],
        counters: _Counters,
    ) -> None:
        for index, chunk in enumerate(chunked(updates, self.options.chunk_size)):
            if self._cancelled(run):
                return
            label = f"update chunk {index + 1}"
            started = self.clock()
            try:
                with self.store.transaction(self.options.chunk_timeout_seconds) as cur:
                    updated = 0
                    for u in chunk:
                        updated += self.store.update_component_attributes(
                            cur, drawing_ids[u.drawing], u.business_id, u.attributes
                        )
                    self._check_elapsed(started, label)
            except StorageUnavailableError as e:
                self._chunk_failed(run, e, label, [u.attributes.row_number for u in chunk])
                raise
            except Exception as e:
                self._chunk_failed(run, e, label, [u.attributes.row_number for u in chunk])
            else:
                self._chunk_committed(run, started)
                counters.instances_updated += updated
                counters.components.update(u.key for u in chunk)
            self._advance(run, len(chunk))

    def _commit_records(
        self,
        run: ImportRun,
        records: Sequence[InstanceAllocation],
        existing: Mapping[ComponentKey, ExistingInstances],
        drawing_ids: Mapping[str, Any],
        counters: _Counters,
    ) -> None:
        for index, chunk in enumerate(chunked(records, self.options.chunk_size)):
            if self._cancelled(run):
                return
            label = f"chunk {index + 1}"
            writable = self._drop_poisoned(run, chunk, label)
            if not writable:
                self._advance(run, len(chunk))
                continue
            started = self.clock()
            try:
                with self.store.transaction(self.options.chunk_timeout_seconds) as cur:
                    self._write_chunk(cur, run.project_id, writable, existing, drawing_ids)
                    self._check_elapsed(started, label)
            except StorageUnavailableError as e:
                self._chunk_failed(run, e, label, [r for rec in writable for r in rec.source_rows])
                self._poisoned.update(rec.key for rec in writable)
                raise
            except Exception as e:
                self._chunk_failed(run, e, label, [r for rec in writable for r in rec.source_rows])
                self._poisoned.update(rec.key for rec in writable)
            else:
                self._chunk_committed(run, started)
                counters.instances_created += len(writable)
                counters.components.update(rec.key for rec in writable)
            self._advance(run, len(chunk))

    def _write_chunk(
        self,
        cur: Any,
        project_id: str,
        records: Sequence[InstanceAllocation],
        existing: Mapping[ComponentKey, ExistingInstances],
        drawing_ids: Mapping[str, Any],
    ) -> None:
        templates = self.resolver.ensure_templates(cur, project_id)
        variants = [resolve_variant(rec.canonical_type) for rec in records]
        items = [
            (rec, drawing_ids[rec.drawing], templates.id_for(variant))
            for rec, variant in zip(records, variants)
        ]
        component_ids = self.store.insert_components(cur, project_id, items)
        milestones = [
            (component_pk, milestone)
            for component_pk, variant in zip(component_ids, variants)
            for milestone in templates.milestones_for(variant)
        ]
        self.store.insert_milestones(cur, milestones)
        # persisted instances of a key carry the old total until its last record lands
        for rec in records:
            if rec.instance_number != rec.total_instances:
                continue
            if existing.get(rec.key, ExistingInstances()).count > 0:
                self.store.relabel_instances(
                    cur, drawing_ids[rec.drawing], rec.business_id, rec.total_instances
                )

    def _drop_poisoned(
        self, run: ImportRun, chunk: Sequence[InstanceAllocation], label: str
    ) -> list[InstanceAllocation]:
        if not self._poisoned:
            return list(chunk)
        writable = []
        skipped: dict[ComponentKey, list[InstanceAllocation]] = {}
        for rec in chunk:
            if rec.key in self._poisoned:
                skipped.setdefault(rec.key, []).append(rec)
            else:
                writable.append(rec)
        for (drawing, business_id), recs in skipped.items():
            run.add_error(ErrorRecord.create(
                file=run.filename,
                row=recs[0].source_rows[0] if recs[0].source_rows else FILE_LEVEL_ROW,
                error_type=SKIPPED_AFTER_CONFLICT,
                message=(
                    f"{label}: {len(recs)} instance(s) of {business_id} on {drawing} not written,"
                    " an earlier chunk for this component failed"
                ),
            ))
        return writable

    def _check_elapsed(self, started: float, label: str) -> None:
        timeout = self.options.chunk_timeout_seconds
        if timeout is None:
            return
        elapsed = self.clock() - started
        if elapsed > timeout:
            raise ChunkTimeoutError(f"{label} took {elapsed:.2f}s, budget {timeout:.2f}s")

    # -- bookkeeping ------------------------------------------------------

    def _chunk_committed(self, run: ImportRun, started: float) -> None:
        run.chunks_committed += 1
        run.chunk_stats.add_chunk_time(self.clock() - started)

    def _chunk_failed(
        self, run: ImportRun, exc: Exception, label: str, rows: Iterable[int]
    ) -> None:
        run.chunks_failed += 1
        # the failed transaction may have created this project's templates
        self.resolver.forget(run.project_id)
        if isinstance(exc, StorageUnavailableError):
            run.fatal = True
        self._record_failure(run, exc, label, rows)

    def _record_failure(
        self, run: ImportRun, exc: Exception, label: str, rows: Iterable[int]
    ) -> None:
        error_type = _failure_type(exc)
        if error_type == UNEXPECTED_ERROR:
            logger.exception("%s failed unexpectedly", label)
        else:
            logger.error("%s failed (%s): %s", label, error_type, exc)
        run.add_error(ErrorRecord.create(
            file=run.filename,
            row=FILE_LEVEL_ROW,
            error_type=error_type,
            message=f"{label} rows {_row_span(rows)} rolled back: {exc}",
        ))

    def _advance(self, run: ImportRun, count: int) -> None:
        progress = run.advance(count)
        if self.progress_callback is not None:
            self.progress_callback(progress)
        self._bookkeeping("update_run", run)

    def _bookkeeping(self, operation: str, run: ImportRun) -> None:
        """Persist run state; failures here are logged and never fail the run."""
        try:
            with self.store.transaction() as cur:
                getattr(self.store, operation)(cur, run)
        except StorageError as e:
            logger.warning("import_run %s failed for %s: %s", operation, run.run_id, e)
