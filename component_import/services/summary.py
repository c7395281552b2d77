from __future__ import annotations

from ..models.import_run import CommitResult, PreviewResult

"""SUMMARY line rendering.

Commit format (single line, key=value, fixed key order):

    SUMMARY run=<id> status=<status> rows=<n> created=<n> components=<n>
    skipped_rows=<n> updated=<n> drawings=<n> chunks=<ok>/<total>
    errors=<n> warnings=<n> elapsed_sec=<s> throughput_ips=<instances per second>

Preview format:

    SUMMARY preview rows=<n> components=<n> instances=<n> full=<n> reduced=<n>
    unknown_types=<n> errors=<n> warnings=<n>
"""

__all__ = [
    "format_number",
    "render_preview_line",
    "render_summary_line",
]


def format_number(value: float) -> str:
    """Integers without a decimal point, tiny values without exponent."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if abs(value) < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_line(result: CommitResult) -> str:
    """Render the SUMMARY line of a committed run.

    >>> from component_import.models.import_run import RunStatus
    >>> r = CommitResult(run_id="r1", status=RunStatus.COMPLETED, total_rows=3,
    ...     instances_created=5, components_affected=2, rows_skipped=0,
    ...     instances_updated=0, drawings_created=1, chunks_committed=1,
    ...     chunks_failed=0, elapsed_seconds=2.0)
    >>> render_summary_line(r)  # doctest: +ELLIPSIS
    'SUMMARY run=r1 status=completed rows=3 created=5 components=2 ... throughput_ips=2.5'
    """
    total_chunks = result.chunks_committed + result.chunks_failed
    if result.elapsed_seconds > 0:
        throughput = result.instances_created / result.elapsed_seconds
    else:
        throughput = 0.0
    return (
        f"SUMMARY run={result.run_id} "
        f"status={result.status.value} "
        f"rows={result.total_rows} "
        f"created={result.instances_created} "
        f"components={result.components_affected} "
        f"skipped_rows={result.rows_skipped} "
        f"updated={result.instances_updated} "
        f"drawings={result.drawings_created} "
        f"chunks={result.chunks_committed}/{total_chunks} "
        f"errors={len(result.errors)} "
        f"warnings={len(result.warnings)} "
        f"elapsed_sec={format_number(result.elapsed_seconds)} "
        f"throughput_ips={format_number(throughput)}"
    )


def render_preview_line(result: PreviewResult) -> str:
    return (
        f"SUMMARY preview "
        f"rows={result.total_rows} "
        f"components={result.grouped_components} "
        f"instances={result.estimated_instances} "
        f"full={result.template_assignments.get('fullMilestone', 0)} "
        f"reduced={result.template_assignments.get('reducedMilestone', 0)} "
        f"unknown_types={len(result.unknown_types)} "
        f"errors={len(result.errors)} "
        f"warnings={len(result.warnings)}"
    )
