from __future__ import annotations

from component_import.models.config_models import DuplicatePolicy, ImportOptions
from component_import.models.import_run import RunStatus
from component_import.services.committer import CHUNK_CONFLICT, SKIPPED_AFTER_CONFLICT
from component_import.services.orchestrator import run_import

"""Another run writes the same (drawing, business id) while ours is in flight.

The unique constraint rejects our chunk; it rolls back as a whole, chunks
already committed stay, and the affected component is left for a re-run.
"""

RECORDS = [
    {"DWG": "P-1", "TAG": "A", "TYPE": "Valve", "QTY": 2},
    {"DWG": "P-1", "TAG": "B", "TYPE": "Valve", "QTY": 3},
    {"DWG": "P-1", "TAG": "C", "TYPE": "Pipe", "QTY": 1},
]


def test_concurrent_writer_conflict(memory_store, make_rows):
    headers, rows = make_rows(RECORDS)

    # right before our second chunk (B 1..2) lands, a concurrent run commits B #1
    memory_store.before(
        "insert_components",
        lambda: memory_store.seed_component("P1", "P-1", "B", 1, 1),
        call=2,
    )
    result = run_import(
        memory_store, "P1", headers, rows, options=ImportOptions(chunk_size=2), filename="t.xlsx"
    )

    assert result.status is RunStatus.PARTIAL
    assert [e.error_type for e in result.errors] == [CHUNK_CONFLICT, SKIPPED_AFTER_CONFLICT]
    # A committed in chunk 1, C committed in chunk 3 alongside the skipped B #3
    assert memory_store.display_ids("P1", "P-1", "A") == ["A (1 of 2)", "A (2 of 2)"]
    assert memory_store.display_ids("P1", "P-1", "C") == ["C"]
    # only the concurrent writer's row exists for B: no partial sequence of ours
    assert memory_store.display_ids("P1", "P-1", "B") == ["B"]
    assert result.instances_created == 3
    assert result.components_affected == 2


def test_rerun_after_conflict_completes_the_component(memory_store, make_rows):
    headers, rows = make_rows(RECORDS)
    memory_store.before(
        "insert_components",
        lambda: memory_store.seed_component("P1", "P-1", "B", 1, 1),
        call=2,
    )
    run_import(memory_store, "P1", headers, rows, options=ImportOptions(chunk_size=2))

    result = run_import(
        memory_store, "P1", headers, rows,
        options=ImportOptions(chunk_size=2, duplicate_policy=DuplicatePolicy.SKIP_EXISTING),
    )
    assert result.status is RunStatus.COMPLETED
    assert result.instances_created == 2
    assert memory_store.display_ids("P1", "P-1", "B") == ["B (1 of 3)", "B (2 of 3)", "B (3 of 3)"]
    assert len(memory_store.instances("P1", "P-1", "A")) == 2


def test_conflicted_chunk_leaves_no_milestones(memory_store, make_rows):
    headers, rows = make_rows(RECORDS[1:2])
    memory_store.before(
        "insert_components",
        lambda: memory_store.seed_component("P1", "P-1", "B", 2, 3),
        call=1,
    )
    result = run_import(memory_store, "P1", headers, rows)
    assert result.status is RunStatus.FAILED
    assert memory_store.milestones == []
    # template rows created inside the rolled back chunk are gone as well
    assert memory_store.templates == {}
