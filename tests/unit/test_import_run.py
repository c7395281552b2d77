from __future__ import annotations

import threading

import pytest

from component_import.models.error_record import ErrorRecord
from component_import.models.import_run import (
    ChunkStatsAccumulator,
    ImportRun,
    RunProgress,
    RunStatus,
)


def test_lifecycle_defaults():
    run = ImportRun("P1", "f.xlsx")
    assert run.status is RunStatus.PENDING
    assert run.processed == 0 and run.total == 0
    assert len(run.run_id) == 32
    assert run.elapsed_seconds == 0.0


def test_advance_is_monotonic_and_capped():
    run = ImportRun("P1", "f.xlsx")
    run.start(5)
    assert run.status is RunStatus.PROCESSING
    assert run.advance(2).processed == 2
    assert run.advance(-3).processed == 2
    assert run.advance(10).processed == 5
    snap = run.snapshot()
    assert snap == RunProgress(run.run_id, RunStatus.PROCESSING, 5, 5)
    assert snap.percent == 100.0


@pytest.mark.parametrize(
    "committed,failed,cancelled,fatal,expected",
    [
        (3, 0, False, False, RunStatus.COMPLETED),
        (0, 0, False, False, RunStatus.COMPLETED),
        (2, 1, False, False, RunStatus.PARTIAL),
        (2, 0, True, False, RunStatus.PARTIAL),
        (0, 2, False, False, RunStatus.FAILED),
        (0, 0, True, False, RunStatus.FAILED),
        (4, 1, False, True, RunStatus.FAILED),
    ],
)
def test_finalize_status(committed, failed, cancelled, fatal, expected):
    run = ImportRun("P1", "f.xlsx")
    run.start(1)
    run.chunks_committed = committed
    run.chunks_failed = failed
    run.cancelled = cancelled
    run.fatal = fatal
    assert run.finalize() is expected
    assert run.status is expected
    assert run.completed_at is not None


def test_finalize_rejects_non_terminal_status():
    run = ImportRun("P1", "f.xlsx")
    with pytest.raises(ValueError):
        run.finalize(RunStatus.PROCESSING)


def test_percent_without_work():
    assert RunProgress("r", RunStatus.PENDING, 0, 0).percent == 0.0
    assert RunProgress("r", RunStatus.COMPLETED, 0, 0).percent == 100.0
    assert RunProgress("r", RunStatus.PROCESSING, 1, 3).percent == 33.3


def test_concurrent_advance_and_messages():
    run = ImportRun("P1", "f.xlsx")
    run.start(4000)

    def worker():
        for _ in range(1000):
            run.advance(1)
            run.add_warning(ErrorRecord.create("f.xlsx", 1, "W", "w"))

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert run.processed == 4000
    assert len(run.warnings) == 4000


def test_chunk_stats():
    acc = ChunkStatsAccumulator()
    assert acc.get_stats() == (0, 0.0, 0.0)
    acc.add_chunk_time(0.5)
    assert acc.get_stats() == (1, 0.5, 0.5)
    for t in (0.1, 0.2, 0.3, 0.4, 1.0):
        acc.add_chunk_time(t)
    total, avg, p95 = acc.get_stats()
    assert total == 6
    assert avg == pytest.approx(2.5 / 6)
    assert 0.5 < p95 <= 1.0
