from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping, Sequence
from pathlib import Path

from ..excel.reader import read_table
from ..logging.error_log import ErrorLogBuffer
from ..mapping.columns import MissingColumnsError, detect_columns, require_columns
from ..mapping.types import DEFAULT_NORMALIZER, TypeNormalizer
from ..models.component import ComponentKey, ExistingInstances, RawRow
from ..models.config_models import DuplicatePolicy, ImportConfig, ImportOptions
from ..models.error_record import FILE_LEVEL_ROW, ErrorRecord
from ..models.import_run import CommitResult, ImportRun, PreviewResult, RunProgress, RunStatus
from .allocation import allocate_instances, group_rows
from .committer import BulkCommitter, ComponentStore
from .rows import normalize_rows
from .templates import TemplateResolver, assignment_counts

"""Pipeline entry points.

preview_import / run_import work on headers + RawRows handed over by a
parser collaborator; preview_file / import_file read the file themselves.
Both modes share column detection, row normalization and grouping, so a
preview reports exactly what a commit against the same storage state would
create.

Structured results only: a missing required column comes back as a rejected
PreviewResult or a failed CommitResult, storage failures inside the commit
are folded into the run's error list.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "MISSING_REQUIRED_COLUMN",
    "import_file",
    "normalizer_for",
    "preview_file",
    "preview_import",
    "run_import",
]

MISSING_REQUIRED_COLUMN = "MISSING_REQUIRED_COLUMN"


def normalizer_for(config: ImportConfig | None, project_id: str | None = None) -> TypeNormalizer:
    """Type normalizer with the configured (global + project) aliases."""
    if config is None:
        return DEFAULT_NORMALIZER
    aliases = config.aliases_for(project_id)
    return TypeNormalizer(aliases) if aliases else DEFAULT_NORMALIZER


def _missing_columns_record(filename: str, error: MissingColumnsError) -> ErrorRecord:
    return ErrorRecord.create(
        file=filename,
        row=FILE_LEVEL_ROW,
        error_type=MISSING_REQUIRED_COLUMN,
        message=str(error),
    )


def preview_import(
    headers: Sequence[str],
    raw_rows: Iterable[RawRow],
    *,
    normalizer: TypeNormalizer | None = None,
    existing: Mapping[ComponentKey, ExistingInstances] | None = None,
    policy: DuplicatePolicy = DuplicatePolicy.APPEND,
    filename: str = "",
) -> PreviewResult:
    """Analyse a file without writing anything.

    existing: instance stats per key, when the caller wants the estimate to
    account for what is already persisted (skip / update policies).
    """
    raw_rows = list(raw_rows)
    mapping = detect_columns(headers)
    try:
        require_columns(mapping)
    except MissingColumnsError as e:
        return PreviewResult(
            total_rows=len(raw_rows),
            type_counts={},
            unknown_types=(),
            estimated_instances=0,
            grouped_components=0,
            template_assignments=assignment_counts(()),
            column_mapping=mapping.as_dict(),
            errors=[_missing_columns_record(filename, e)],
            missing_columns=e.missing,
        )

    normalized = normalize_rows(raw_rows, mapping, normalizer, filename)
    groups = group_rows(normalized.rows)
    plan = allocate_instances(groups, existing, policy)
    return PreviewResult(
        total_rows=len(raw_rows),
        type_counts=normalized.type_stats.type_counts(),
        unknown_types=tuple(sorted(normalized.type_stats.unknown)),
        estimated_instances=len(plan.records),
        grouped_components=len(groups),
        template_assignments=assignment_counts(rec.canonical_type for rec in plan.records),
        column_mapping=mapping.as_dict(),
        errors=normalized.errors,
        warnings=normalized.warnings,
    )


def _flush_error_log(error_log: ErrorLogBuffer | None, records: Iterable[ErrorRecord]) -> None:
    if error_log is None:
        return
    error_log.extend(records)
    try:
        path = error_log.flush()
    except OSError as e:
        logger.warning("error log flush failed: %s", e)
        return
    if path is not None:
        logger.info("errors written to %s", path)


def run_import(
    store: ComponentStore,
    project_id: str,
    headers: Sequence[str],
    raw_rows: Iterable[RawRow],
    *,
    options: ImportOptions | None = None,
    normalizer: TypeNormalizer | None = None,
    filename: str = "",
    error_log: ErrorLogBuffer | None = None,
    cancel_event: threading.Event | None = None,
    progress_callback: Callable[[RunProgress], None] | None = None,
    resolver: TemplateResolver | None = None,
) -> CommitResult:
    """Run the full pipeline and persist the result chunk by chunk."""
    raw_rows = list(raw_rows)
    run = ImportRun(project_id, filename, total_rows=len(raw_rows))
    mapping = detect_columns(headers)
    try:
        require_columns(mapping)
    except MissingColumnsError as e:
        logger.error("%s: %s", filename or "input", e)
        run.add_error(_missing_columns_record(filename, e))
        run.start(0)
        run.finalize(RunStatus.FAILED)
        _flush_error_log(error_log, run.errors)
        return CommitResult(
            run_id=run.run_id,
            status=run.status,
            total_rows=run.total_rows,
            instances_created=0,
            components_affected=0,
            rows_skipped=0,
            instances_updated=0,
            drawings_created=0,
            chunks_committed=0,
            chunks_failed=0,
            elapsed_seconds=run.elapsed_seconds,
            errors=list(run.errors),
        )

    normalized = normalize_rows(raw_rows, mapping, normalizer, filename)
    for record in normalized.errors:
        run.add_error(record)
    for record in normalized.warnings:
        run.add_warning(record)
    run.type_counts = normalized.type_stats.type_counts()
    run.unknown_types = normalized.type_stats.unknown
    groups = group_rows(normalized.rows)
    logger.info(
        "%s: rows=%d valid=%d components=%d project=%s",
        filename or "input", len(raw_rows), len(normalized.rows), len(groups), project_id,
    )

    committer = BulkCommitter(
        store,
        options,
        resolver=resolver,
        progress_callback=progress_callback,
        cancel_event=cancel_event,
    )
    result = committer.commit(run, groups)
    _flush_error_log(error_log, result.errors)
    return result


def preview_file(
    path: str | Path,
    *,
    normalizer: TypeNormalizer | None = None,
    existing: Mapping[ComponentKey, ExistingInstances] | None = None,
    policy: DuplicatePolicy = DuplicatePolicy.APPEND,
) -> PreviewResult:
    """Read a spreadsheet / CSV and preview it.

    Raises:
        UnreadableFileError: the file cannot be read
    """
    path = Path(path)
    table = read_table(path)
    return preview_import(
        table.headers,
        table.rows,
        normalizer=normalizer,
        existing=existing,
        policy=policy,
        filename=path.name,
    )


def import_file(
    path: str | Path,
    store: ComponentStore,
    project_id: str,
    *,
    options: ImportOptions | None = None,
    normalizer: TypeNormalizer | None = None,
    error_log: ErrorLogBuffer | None = None,
    cancel_event: threading.Event | None = None,
    progress_callback: Callable[[RunProgress], None] | None = None,
) -> CommitResult:
    """Read a spreadsheet / CSV and commit it.

    Raises:
        UnreadableFileError: the file cannot be read (nothing was written)
    """
    path = Path(path)
    table = read_table(path)
    return run_import(
        store,
        project_id,
        table.headers,
        table.rows,
        options=options,
        normalizer=normalizer,
        filename=path.name,
        error_log=error_log,
        cancel_event=cancel_event,
        progress_callback=progress_callback,
    )
