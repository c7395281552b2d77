from __future__ import annotations

import statistics
import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from .error_record import ErrorRecord

"""ImportRun state and result models.

ImportRun is created at the start of a commit attempt and finalized once the
last chunk has been handled. It is written by the single run worker and may be
polled from other threads (progress reporting), hence the lock.
"""

__all__ = [
    "RunStatus",
    "RunProgress",
    "ImportRun",
    "ChunkStatsAccumulator",
    "PreviewResult",
    "CommitResult",
]


class RunStatus(Enum):
    """Lifecycle: pending -> processing -> (completed | partial | failed)."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.PARTIAL, RunStatus.FAILED)


@dataclass(frozen=True)
class RunProgress:
    """Point-in-time view of a run for polling / streaming collaborators.

    processed / total count work items, not spreadsheet rows: one item per
    instance to create plus one per existing component refreshed under
    update_existing. A row with quantity 3 is three items; the row count of
    the file stays on ImportRun.total_rows.
    """
    run_id: str
    status: RunStatus
    processed: int
    total: int

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 100.0 if self.status.is_terminal else 0.0
        return round(self.processed * 100.0 / self.total, 1)


class ChunkStatsAccumulator:
    """Accumulates per-chunk commit timings (count / mean / p95)."""

    def __init__(self) -> None:
        self.chunk_times: list[float] = []

    def add_chunk_time(self, elapsed_seconds: float) -> None:
        self.chunk_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Return (total_chunks, avg_chunk_seconds, p95_chunk_seconds)."""
        if not self.chunk_times:
            return (0, 0.0, 0.0)
        total = len(self.chunk_times)
        avg = statistics.mean(self.chunk_times)
        if total == 1:
            p95 = self.chunk_times[0]
        else:
            p95 = statistics.quantiles(self.chunk_times, n=20, method="inclusive")[18]
        return (total, avg, p95)


class ImportRun:
    """Aggregate statistics and outcome of one submitted file."""

    def __init__(
        self,
        project_id: str,
        filename: str,
        *,
        run_id: str | None = None,
        total_rows: int = 0,
    ) -> None:
        self.run_id = run_id or uuid.uuid4().hex
        self.project_id = project_id
        self.filename = filename
        self.total_rows = total_rows
        self.total_instances = 0
        self.type_counts: dict[str, int] = {}
        self.unknown_types: frozenset[str] = frozenset()
        self.errors: list[ErrorRecord] = []
        self.warnings: list[ErrorRecord] = []
        self.chunks_committed = 0
        self.chunks_failed = 0
        self.cancelled = False
        self.fatal = False
        self.started_at: datetime | None = None
        self.completed_at: datetime | None = None
        self.chunk_stats = ChunkStatsAccumulator()
        self._status = RunStatus.PENDING
        self._processed = 0
        self._total = 0
        self._lock = threading.Lock()

    @property
    def status(self) -> RunStatus:
        return self._status

    @property
    def processed(self) -> int:
        return self._processed

    @property
    def total(self) -> int:
        return self._total

    def start(self, total: int) -> None:
        """Enter PROCESSING with total work items (instances + updates)."""
        with self._lock:
            self._total = max(total, 0)
            self._status = RunStatus.PROCESSING
            self.started_at = datetime.now(UTC)

    def advance(self, count: int) -> RunProgress:
        """Move the processed counter forward (never backwards, never past total)."""
        with self._lock:
            if count > 0:
                self._processed = min(self._processed + count, self._total)
            return self._snapshot_locked()

    def add_error(self, record: ErrorRecord) -> None:
        with self._lock:
            self.errors.append(record)

    def add_warning(self, record: ErrorRecord) -> None:
        with self._lock:
            self.warnings.append(record)

    def finalize(self, status: RunStatus | None = None) -> RunStatus:
        """Fix the terminal status.

        Without an explicit status: completed when nothing failed and the run
        was not cancelled, partial when at least one chunk committed, failed
        otherwise.
        """
        with self._lock:
            if status is None:
                if self.fatal:
                    status = RunStatus.FAILED
                elif self.chunks_failed == 0 and not self.cancelled:
                    status = RunStatus.COMPLETED
                elif self.chunks_committed > 0:
                    status = RunStatus.PARTIAL
                else:
                    status = RunStatus.FAILED
            if not status.is_terminal:
                raise ValueError(f"finalize() requires a terminal status, got {status.value}")
            self._status = status
            self.completed_at = datetime.now(UTC)
            return status

    def snapshot(self) -> RunProgress:
        with self._lock:
            return self._snapshot_locked()

    def _snapshot_locked(self) -> RunProgress:
        return RunProgress(
            run_id=self.run_id,
            status=self._status,
            processed=self._processed,
            total=self._total,
        )

    @property
    def elapsed_seconds(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.completed_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()


@dataclass(frozen=True)
class PreviewResult:
    """Read-only analysis of a file: nothing is written in preview mode."""
    total_rows: int
    type_counts: dict[str, int]
    unknown_types: tuple[str, ...]
    estimated_instances: int
    grouped_components: int
    template_assignments: dict[str, int]
    column_mapping: dict[str, str | None]
    errors: list[ErrorRecord] = field(default_factory=list)
    warnings: list[ErrorRecord] = field(default_factory=list)
    missing_columns: tuple[str, ...] = ()

    @property
    def rejected(self) -> bool:
        return bool(self.missing_columns)


@dataclass(frozen=True)
class CommitResult:
    """Structured summary of a committed run (never a raw exception)."""
    run_id: str
    status: RunStatus
    total_rows: int
    instances_created: int
    components_affected: int
    rows_skipped: int
    instances_updated: int
    drawings_created: int
    chunks_committed: int
    chunks_failed: int
    elapsed_seconds: float
    type_counts: dict[str, int] = field(default_factory=dict)
    unknown_types: tuple[str, ...] = ()
    errors: list[ErrorRecord] = field(default_factory=list)
    warnings: list[ErrorRecord] = field(default_factory=list)
    total_chunks: int = 0
    avg_chunk_seconds: float = 0.0
    p95_chunk_seconds: float = 0.0
